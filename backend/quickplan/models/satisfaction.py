"""Satisfaction gate models."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, model_validator


class SatisfactionVerdict(str, Enum):
    yes = "yes"
    almost = "almost"
    no = "no"


class SatisfactionIssueCategory(str, Enum):
    """What the traveler is unhappy about."""

    too_many_activities = "too_many_activities"
    not_enough_activities = "not_enough_activities"
    wrong_areas = "wrong_areas"
    hotel_issues = "hotel_issues"
    dining_issues = "dining_issues"
    pace_issues = "pace_issues"
    budget_issues = "budget_issues"
    missing_must_do = "missing_must_do"
    other = "other"


class RegenerationComponent(str, Enum):
    """Pipeline component re-invoked for an issue category."""

    schedule = "schedule"
    hotels = "hotels"
    dining = "dining"
    areas = "areas"


class SatisfactionIssue(BaseModel):
    category: SatisfactionIssueCategory
    stop_id: str | None = None
    note: str | None = None


class SatisfactionResponse(BaseModel):
    """User verdict on the presented plan."""

    verdict: SatisfactionVerdict
    issues: list[SatisfactionIssue] = Field(default_factory=list)
    submitted_at: datetime

    @model_validator(mode="after")
    def validate_issues_for_almost(self) -> "SatisfactionResponse":
        """An 'almost' verdict must say what is wrong."""
        if self.verdict == SatisfactionVerdict.almost and not self.issues:
            raise ValueError("an 'almost' verdict requires at least one issue")
        return self
