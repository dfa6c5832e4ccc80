"""Candidate models - collaborator outputs and the per-session catalog."""

from datetime import date

from pydantic import BaseModel, Field

from backend.quickplan.models.areas import AreaCandidate, ItinerarySplit
from backend.quickplan.models.common import Geo, PriceConfidence, Provenance
from backend.quickplan.models.evidence import Evidence


class PlaceResult(BaseModel):
    """Place-lookup collaborator output."""

    place_id: str
    name: str
    types: list[str] = Field(default_factory=list)
    rating: float | None = Field(default=None, ge=0, le=5)
    review_count: int | None = Field(default=None, ge=0)
    photo_ref: str | None = None
    location: Geo | None = None
    address: str | None = None
    website: str | None = None
    price_level: int | None = Field(default=None, ge=0, le=4)
    provenance: Provenance


class DiscussionPost(BaseModel):
    """Discussion-search collaborator output (ranked post)."""

    id: str
    title: str
    body: str = ""
    score: int
    community: str
    url: str | None = None
    mentions: list[str] = Field(default_factory=list)  # Area or place ids the post is about
    provenance: Provenance


class PriceQuote(BaseModel):
    """Pricing collaborator output: one vendor price for a date range."""

    entity_id: str
    vendor: str
    price_per_night: float | None = Field(default=None, gt=0)
    currency: str = "USD"
    check_in: date
    check_out: date
    is_estimate: bool = False
    provenance: Provenance


class HotelCandidate(BaseModel):
    """A hotel that can be shortlisted for a stop."""

    place_id: str
    name: str
    area_id: str
    rating: float | None = Field(default=None, ge=0, le=5)
    review_count: int | None = None
    stars: int | None = Field(default=None, ge=1, le=5)
    price_per_night: float | None = None  # None means unknown, never zero
    price_confidence: PriceConfidence = PriceConfidence.unknown
    price_source: str | None = None
    is_adults_only: bool = False
    is_all_inclusive: bool = False
    amenities: list[str] = Field(default_factory=list)
    wheelchair_accessible: bool | None = None
    location: Geo | None = None
    overall_score: float = 0.0
    evidence: list[Evidence] = Field(default_factory=list)


class HotelShortlist(BaseModel):
    """Ranked hotels for one stop."""

    stop_id: str
    area_id: str
    area_name: str
    hotel_ids: list[str] = Field(default_factory=list)
    selected_hotel_id: str | None = None
    default_hotel_id: str | None = None


class RestaurantCandidate(BaseModel):
    """A restaurant near a base."""

    id: str
    name: str
    area_id: str
    cuisine: str | None = None
    price_level: int | None = Field(default=None, ge=0, le=4)
    rating: float | None = Field(default=None, ge=0, le=5)
    review_count: int | None = None
    requires_reservation: bool = False
    best_for: list[str] = Field(default_factory=list)
    evidence: list[Evidence] = Field(default_factory=list)


class ActivityCandidate(BaseModel):
    """A concrete, verifiable place or operator for an activity type."""

    id: str
    name: str
    activity_type: str
    area_id: str
    rating: float | None = Field(default=None, ge=0, le=5)
    review_count: int | None = None
    operator_url: str | None = None
    duration_minutes: int | None = None
    evidence: list[Evidence] = Field(default_factory=list)


class CandidateCatalog(BaseModel):
    """Arena collections keyed by stable id.

    Splits, shortlists and days reference entries here by id only.
    """

    generation: int = 0
    areas: dict[str, AreaCandidate] = Field(default_factory=dict)
    splits: dict[str, ItinerarySplit] = Field(default_factory=dict)
    hotels: dict[str, HotelCandidate] = Field(default_factory=dict)
    hotels_by_area: dict[str, list[str]] = Field(default_factory=dict)
    activities: dict[str, ActivityCandidate] = Field(default_factory=dict)
    restaurants: dict[str, RestaurantCandidate] = Field(default_factory=dict)
    discussion: dict[str, DiscussionPost] = Field(default_factory=dict)

    def hotels_for_area(self, area_id: str) -> list[HotelCandidate]:
        return [self.hotels[h] for h in self.hotels_by_area.get(area_id, []) if h in self.hotels]

    def activities_for_area(self, area_id: str, activity_type: str | None = None) -> list[ActivityCandidate]:
        return [
            a
            for a in self.activities.values()
            if a.area_id == area_id and (activity_type is None or a.activity_type == activity_type)
        ]

    def restaurants_for_area(self, area_id: str) -> list[RestaurantCandidate]:
        return [r for r in self.restaurants.values() if r.area_id == area_id]
