"""Common types and enums shared across all models."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, model_validator

# JSON-serializable value types for constraint details
JsonValue = str | int | float | bool | None | dict[str, Any] | list[Any]


class Geo(BaseModel):
    """Geographic coordinates (WGS84)."""

    lat: float = Field(..., ge=-90, le=90)
    lon: float = Field(..., ge=-180, le=180)


class Tier(str, Enum):
    """Typical cost tier of an area or property."""

    budget = "budget"
    mid = "mid"
    luxury = "luxury"


class ConfidenceLevel(str, Enum):
    """How well a preference field is known."""

    unknown = "unknown"
    partial = "partial"
    inferred = "inferred"
    confirmed = "confirmed"
    complete = "complete"

    @property
    def rank(self) -> int:
        return _CONFIDENCE_RANK[self]

    @property
    def is_settled(self) -> bool:
        """Settled fields are not asked again unless contradicted."""
        return self.rank >= _CONFIDENCE_RANK[ConfidenceLevel.inferred]


_CONFIDENCE_RANK = {
    ConfidenceLevel.unknown: 0,
    ConfidenceLevel.partial: 1,
    ConfidenceLevel.inferred: 2,
    ConfidenceLevel.confirmed: 3,
    ConfidenceLevel.complete: 4,
}


class PaceLevel(str, Enum):
    """Trip pace; maps to a daily effort budget."""

    chill = "chill"
    balanced = "balanced"
    packed = "packed"


class DiningMode(str, Enum):
    """How much dining planning the traveler wants."""

    none = "none"
    list = "list"
    schedule = "schedule"
    plan = "plan"

    @property
    def schedules_dinners(self) -> bool:
        return self in (DiningMode.schedule, DiningMode.plan)


class PriceConfidence(str, Enum):
    """Provenance quality of a price."""

    real = "real"
    estimated = "estimated"
    rough = "rough"
    unknown = "unknown"


class DestinationType(str, Enum):
    """Geographic granularity of the destination."""

    country = "country"
    region = "region"
    city = "city"
    resort = "resort"


class EnrichmentType(str, Enum):
    """Independent enrichment fetch layers."""

    discussion = "discussion"
    areas = "areas"
    hotels = "hotels"
    pricing = "pricing"
    activities = "activities"
    restaurants = "restaurants"


class EnrichmentStatus(str, Enum):
    """Lifecycle of one enrichment layer."""

    pending = "pending"
    loading = "loading"
    done = "done"
    error = "error"

    @property
    def is_finished(self) -> bool:
        return self in (EnrichmentStatus.done, EnrichmentStatus.error)


class BudgetRange(BaseModel):
    """Per-night lodging budget band in USD."""

    min: int = Field(..., ge=0)
    max: int = Field(..., ge=0)

    @model_validator(mode="after")
    def validate_max_after_min(self) -> "BudgetRange":
        """Ensure max >= min."""
        if self.max < self.min:
            raise ValueError("max must be >= min")
        return self

    @property
    def midpoint(self) -> float:
        return (self.min + self.max) / 2


class Provenance(BaseModel):
    """Provenance metadata for fetched results."""

    source: str  # Source identifier (e.g., "tool.places.google", "fixtures.areas")
    ref_id: str | None = None
    source_url: str | None = None
    fetched_at: datetime
    cache_hit: bool | None = None
    response_digest: str | None = None


class ConfidenceField(str, Enum):
    """Preference fields whose confidence the orchestrator tracks."""

    destination = "destination"
    dates = "dates"
    party = "party"
    budget = "budget"
    vibe = "vibe"
    hard_nos = "hard_nos"
    pace = "pace"
    activities = "activities"
    activity_intensity = "activity_intensity"
    areas = "areas"
    split = "split"
    review_lock = "review_lock"
    hotel_preferences = "hotel_preferences"
    hotels = "hotels"
    dining_mode = "dining_mode"
    dining = "dining"
    final_review = "final_review"
    satisfaction = "satisfaction"
