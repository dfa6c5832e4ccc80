"""Area and split models."""

from pydantic import BaseModel, Field, model_validator

from backend.quickplan.models.common import Geo, Tier
from backend.quickplan.models.evidence import Evidence


class AreaProfile(BaseModel):
    """Raw area description produced by enrichment, before scoring."""

    id: str
    name: str
    type: str = "area"  # beach_town, city, resort_zone, mountain_town, ...
    description: str = ""
    region: str | None = None
    strengths: list[str] = Field(default_factory=list)  # e.g. surf_breaks, calm_beaches
    vibes: list[str] = Field(default_factory=list)
    cost_tier: Tier = Tier.mid
    best_for: list[str] = Field(default_factory=list)
    not_ideal_for: list[str] = Field(default_factory=list)
    overlaps: list[str] = Field(default_factory=list)  # Area ids sharing hotel inventory
    center: Geo | None = None
    evidence: list[Evidence] = Field(default_factory=list)
    hotel_count: int | None = None
    low_hotel_inventory: bool = False
    needs_hotel_indexing: bool = False


class AreaCandidate(BaseModel):
    """A scored area. Superseded, never mutated, on re-enrichment."""

    model_config = {"frozen": True}

    id: str
    name: str
    type: str
    description: str = ""
    region: str | None = None
    activity_fit_score: float = Field(..., ge=0, le=1)
    vibe_fit_score: float = Field(..., ge=0, le=1)
    budget_fit_score: float = Field(..., ge=0, le=1)
    overall_score: float = Field(..., ge=0, le=1)
    usable: bool = True
    best_for: list[str] = Field(default_factory=list)
    not_ideal_for: list[str] = Field(default_factory=list)
    why_it_fits: list[str] = Field(default_factory=list)
    caveats: list[str] = Field(default_factory=list)
    overlaps: list[str] = Field(default_factory=list)
    center: Geo | None = None
    evidence: list[Evidence] = Field(default_factory=list)
    confidence_score: float = Field(default=0.5, ge=0, le=1)
    suggested_nights: int = Field(default=2, ge=1)
    hotel_count: int | None = None
    low_hotel_inventory: bool = False
    needs_hotel_indexing: bool = False


class ItineraryStop(BaseModel):
    """One base in a split; days are 1-indexed and departure is exclusive."""

    area_id: str
    nights: int = Field(..., ge=1)
    order: int = Field(..., ge=0)
    arrival_day: int = Field(..., ge=1)
    departure_day: int = Field(..., ge=2)
    travel_day_before: bool = False

    @property
    def stop_id(self) -> str:
        return f"stop-{self.order}-{self.area_id}"

    def covers_day(self, day_number: int) -> bool:
        return self.arrival_day <= day_number < self.departure_day


class ItinerarySplit(BaseModel):
    """Ordered assignment of nights to 1-3 bases."""

    id: str
    name: str
    stops: list[ItineraryStop] = Field(..., min_length=1, max_length=3)
    fit_score: float
    friction_score: float
    feasibility_score: float
    why_this_works: str = ""
    tradeoffs: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_stop_days(self) -> "ItinerarySplit":
        """Stops must be contiguous and each cover exactly its nights."""
        expected_arrival = 1
        for index, stop in enumerate(self.stops):
            if stop.order != index:
                raise ValueError("stop order must match position")
            if stop.arrival_day != expected_arrival:
                raise ValueError("stops must be contiguous")
            if stop.departure_day - stop.arrival_day != stop.nights:
                raise ValueError("stop day span must equal its nights")
            expected_arrival = stop.departure_day
        return self

    @property
    def total_nights(self) -> int:
        return sum(stop.nights for stop in self.stops)

    @property
    def rank_score(self) -> float:
        return self.fit_score - self.friction_score
