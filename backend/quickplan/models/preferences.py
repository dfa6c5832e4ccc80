"""Preference models - the incrementally gathered traveler profile."""

from datetime import date, datetime
from enum import Enum

from pydantic import BaseModel, Field, ValidationInfo, field_validator

from backend.quickplan.models.common import (
    BudgetRange,
    DestinationType,
    DiningMode,
    PaceLevel,
)


class ActivityPriority(str, Enum):
    """How strongly an activity is wanted."""

    must_do = "must-do"
    nice_to_have = "nice-to-have"


class ActivityIntent(BaseModel):
    """One activity the traveler wants, with intensity details."""

    type: str
    priority: ActivityPriority = ActivityPriority.nice_to_have
    target_days: int | None = Field(default=None, ge=1)
    skill_level: str | None = None
    calm_water_required: bool = False
    must_be_in_season: bool = False

    @property
    def is_must_do(self) -> bool:
        return self.priority == ActivityPriority.must_do


class DestinationContext(BaseModel):
    """Resolved destination."""

    raw_input: str
    canonical_name: str
    type: DestinationType = DestinationType.country
    country: str | None = None

    @property
    def key(self) -> str:
        return self.canonical_name.strip().lower()


class UserNote(BaseModel):
    """Free-text note attached to a field."""

    field: str
    note: str
    created_at: datetime


class TripPreferences(BaseModel):
    """Accumulating, partially-known traveler preferences.

    Only the orchestrator mutates the live instance; every other component
    receives a snapshot and returns new values.
    """

    destination: DestinationContext | None = None
    start_date: date | None = None
    end_date: date | None = None
    trip_length: int | None = Field(default=None, ge=1, description="Nights")

    adults: int = Field(default=0, ge=0)
    children: int = Field(default=0, ge=0)
    child_ages: list[int] = Field(default_factory=list)

    budget_per_night: BudgetRange | None = None
    pace: PaceLevel | None = None
    vibes: list[str] = Field(default_factory=list)
    must_dos: list[str] = Field(default_factory=list)
    hard_nos: list[str] = Field(default_factory=list)
    selected_activities: list[ActivityIntent] = Field(default_factory=list)

    adults_only_required: bool = False
    adults_only_preferred: bool = False
    all_inclusive_preferred: bool = False
    accessibility_needs: list[str] = Field(default_factory=list)
    hotel_vibe_preferences: list[str] = Field(default_factory=list)

    dining_mode: DiningMode | None = None
    dietary_restrictions: list[str] = Field(default_factory=list)

    selected_areas: list[str] = Field(default_factory=list)
    selected_split_id: str | None = None
    max_bases: int = Field(default=2, ge=1, le=3)
    prefer_adjacent_areas: bool = False
    selected_hotels: dict[str, str] = Field(default_factory=dict)  # area_id -> place_id
    selected_restaurants: dict[str, list[str]] = Field(default_factory=dict)

    preferences_locked: bool = False
    user_notes: list[UserNote] = Field(default_factory=list)

    @field_validator("end_date")
    @classmethod
    def validate_end_after_start(cls, v: date | None, info: ValidationInfo) -> date | None:
        """Ensure end >= start."""
        start = info.data.get("start_date")
        if v is not None and start is not None and v < start:
            raise ValueError("end_date must be >= start_date")
        return v

    @property
    def nights(self) -> int | None:
        """Trip length in nights, derived from dates when not given."""
        if self.trip_length is not None:
            return self.trip_length
        if self.start_date and self.end_date:
            return max(1, (self.end_date - self.start_date).days)
        return None

    def activity(self, activity_type: str) -> ActivityIntent | None:
        for intent in self.selected_activities:
            if intent.type == activity_type:
                return intent
        return None

    def has_activity(self, *activity_types: str) -> bool:
        return any(a.type in activity_types for a in self.selected_activities)
