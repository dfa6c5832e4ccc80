"""Itinerary models - the generated day-by-day plan."""

from datetime import date, datetime, time
from enum import Enum

from pydantic import BaseModel, Field

from backend.quickplan.models.areas import ItineraryStop
from backend.quickplan.models.candidates import HotelShortlist
from backend.quickplan.models.common import DiningMode
from backend.quickplan.models.quality import UnmetConstraint


class BlockType(str, Enum):
    """Kind of content in a day slot."""

    activity = "activity"
    meal = "meal"
    transit = "transit"
    rest = "rest"
    free = "free"


class TimeSlot(str, Enum):
    """The three slots of a day."""

    morning = "morning"
    afternoon = "afternoon"
    evening = "evening"


class TransitMode(str, Enum):
    """Inter-base transfer mode."""

    drive = "drive"
    taxi = "taxi"
    bus = "bus"
    flight = "flight"
    ferry = "ferry"


class TransitInfo(BaseModel):
    """Transfer between two bases."""

    from_area_id: str
    to_area_id: str
    mode: TransitMode = TransitMode.drive
    duration_minutes: int | None = None
    distance_km: float | None = None
    cost_usd: float | None = None


class DayBlock(BaseModel):
    """Content of one slot; effort cost counts toward the daily budget."""

    id: str
    type: BlockType
    title: str
    description: str = ""
    start_time: time
    end_time: time
    duration_minutes: int = Field(..., ge=0)
    effort_cost: float = Field(..., ge=0)
    location: str | None = None
    activity_type: str | None = None
    activity_id: str | None = None
    restaurant_id: str | None = None
    hotel_id: str | None = None
    evidence_ids: list[str] = Field(default_factory=list)
    spans_afternoon: bool = False  # Full-day blocks occupy the afternoon too


class QuickPlanDay(BaseModel):
    """One day of the plan."""

    day_number: int = Field(..., ge=1)
    calendar_date: date | None = None
    stop_id: str
    area_id: str
    morning: DayBlock | None = None
    afternoon: DayBlock | None = None
    evening: DayBlock | None = None
    is_transit_day: bool = False
    transit_info: TransitInfo | None = None
    effort_budget: float
    effort_points: float = 0.0

    def blocks(self) -> list[DayBlock]:
        return [b for b in (self.morning, self.afternoon, self.evening) if b is not None]


class ScheduledDinner(BaseModel):
    """A dinner pinned to a day."""

    day_number: int
    restaurant_id: str | None = None
    title: str
    start_time: time


class DiningPlan(BaseModel):
    """Dining output for the chosen dining mode."""

    mode: DiningMode
    restaurants_by_stop: dict[str, list[str]] = Field(default_factory=dict)
    scheduled_dinners: list[ScheduledDinner] = Field(default_factory=list)
    free_nights: list[int] = Field(default_factory=list)


class QuickPlanItinerary(BaseModel):
    """The generated plan owned by one orchestration session."""

    id: str
    generation: int
    split_id: str | None = None
    stops: list[ItineraryStop]
    days: list[QuickPlanDay]
    hotel_shortlists: list[HotelShortlist] = Field(default_factory=list)
    dining_plan: DiningPlan | None = None
    evidence_refs: list[str] = Field(default_factory=list)
    confidence_summary: str = "medium"
    low_confidence: bool = False
    quality_check_passed: bool = False
    quality_score: int | None = None
    unmet_constraints: list[UnmetConstraint] = Field(default_factory=list)
    generated_at: datetime
    generation_layer: str = "full"  # full, schedule, hotels, dining
