"""Effort budgets and costs."""

from backend.quickplan.config import Settings
from backend.quickplan.models.common import PaceLevel

PACE_ORDER = (PaceLevel.chill, PaceLevel.balanced, PaceLevel.packed)


def pace_budget(pace: PaceLevel | None, settings: Settings) -> float:
    """Daily effort budget for a pace; unknown pace is treated as balanced."""
    match pace:
        case PaceLevel.chill:
            return settings.pace_budget_chill
        case PaceLevel.packed:
            return settings.pace_budget_packed
        case _:
            return settings.pace_budget_balanced


def effort_cost(activity_type: str, settings: Settings) -> float:
    return settings.effort_costs.get(activity_type, settings.effort_default_cost)


def is_full_day(cost: float, settings: Settings) -> bool:
    return cost >= settings.full_day_effort_threshold


def shift_pace(pace: PaceLevel | None, steps: int) -> PaceLevel:
    """Move along chill < balanced < packed, clamped at the ends."""
    index = PACE_ORDER.index(pace or PaceLevel.balanced) + steps
    return PACE_ORDER[max(0, min(len(PACE_ORDER) - 1, index))]
