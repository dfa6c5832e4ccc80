"""Quality models - constraints the generated plan fails to meet."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from backend.quickplan.models.common import JsonValue


class ConstraintSeverity(str, Enum):
    """Critical constraints block presenting the plan as final."""

    CRITICAL = "critical"
    WARNING = "warning"


class UnmetConstraintType(str, Enum):
    """Categories of self-check findings."""

    must_do_missing = "must_do_missing"
    hard_no_included = "hard_no_included"
    activity_count_mismatch = "activity_count_mismatch"
    travel_time_exceeded = "travel_time_exceeded"
    adults_only_violated = "adults_only_violated"
    accessibility_unmet = "accessibility_unmet"
    missing_canonical_id = "missing_canonical_id"
    unknown_price = "unknown_price"
    budget_exceeded = "budget_exceeded"
    effort_budget_exceeded = "effort_budget_exceeded"
    out_of_season = "out_of_season"


class UnmetConstraint(BaseModel):
    """A constraint the current itinerary does not satisfy.

    Derived from the itinerary and preferences; recomputed on every change.
    """

    type: UnmetConstraintType
    code: str  # Machine-usable short code, e.g., "MUST_DO_MISSING"
    message: str  # Human-readable description (1-2 sentences)
    severity: ConstraintSeverity
    affected_ids: list[str] = Field(default_factory=list)
    day_number: int | None = None
    details: dict[str, JsonValue] = Field(default_factory=dict)


class QualityCheckResult(BaseModel):
    """Outcome of the self-check battery."""

    passed: bool
    score: int = Field(..., ge=0, le=100)
    constraints: list[UnmetConstraint] = Field(default_factory=list)
    summary: str
    checked_at: datetime

    @property
    def critical(self) -> list[UnmetConstraint]:
        return [c for c in self.constraints if c.severity == ConstraintSeverity.CRITICAL]

    @property
    def warnings(self) -> list[UnmetConstraint]:
        return [c for c in self.constraints if c.severity == ConstraintSeverity.WARNING]
