"""Seasonal availability for activities.

Windows are inclusive month ranges (1-12) per destination and activity
type; a window whose start is after its end wraps the new year. Activities
without a window are available year-round.
"""

from dataclasses import dataclass
from datetime import date, timedelta

from backend.quickplan.models.preferences import ActivityIntent, TripPreferences

MONTH_NAMES = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

ACTIVITY_SEASONS: dict[str, dict[str, tuple[int, int]]] = {
    "dominican republic": {
        "whale_watching": (1, 3),
        "surf": (11, 4),
        "kitesurf": (6, 9),
    },
    "costa rica": {
        "turtle_watching": (7, 10),
        "surf": (4, 11),
    },
    "iceland": {
        "northern_lights": (9, 4),
        "puffin_watching": (5, 8),
    },
    "japan": {
        "cherry_blossoms": (3, 4),
        "skiing": (12, 3),
    },
    "portugal": {
        "surf": (9, 5),
    },
}


@dataclass(frozen=True)
class SeasonWindow:
    start_month: int
    end_month: int

    @property
    def months(self) -> set[int]:
        if self.start_month <= self.end_month:
            return set(range(self.start_month, self.end_month + 1))
        return set(range(self.start_month, 13)) | set(range(1, self.end_month + 1))

    def label(self) -> str:
        return f"{MONTH_NAMES[self.start_month - 1]}-{MONTH_NAMES[self.end_month - 1]}"


def trip_months(start: date, end: date) -> set[int]:
    """Calendar months touched by the stay, departure day excluded."""
    last = max(start, end - timedelta(days=1))
    months = set()
    year, month = start.year, start.month
    while (year, month) <= (last.year, last.month):
        months.add(month)
        year, month = (year + 1, 1) if month == 12 else (year, month + 1)
    return months


def season_window(prefs: TripPreferences, activity_type: str) -> SeasonWindow | None:
    destination = prefs.destination
    if destination is None:
        return None
    for key in (destination.canonical_name, destination.country):
        windows = ACTIVITY_SEASONS.get((key or "").strip().lower())
        if windows and activity_type in windows:
            return SeasonWindow(*windows[activity_type])
    return None


def off_season(prefs: TripPreferences) -> dict[str, SeasonWindow]:
    """Selected activity types whose window misses the trip dates.

    Unknown dates or destinations leave every activity available.
    """
    if prefs.start_date is None:
        return {}
    end = prefs.end_date or (prefs.start_date + timedelta(days=prefs.nights) if prefs.nights else prefs.start_date)
    months = trip_months(prefs.start_date, end)
    missed = {}
    for intent in prefs.selected_activities:
        window = season_window(prefs, intent.type)
        if window is not None and not (window.months & months):
            missed[intent.type] = window
    return missed


def skipped_for_season(prefs: TripPreferences) -> set[str]:
    """Off-season types the traveler only wants when in season."""
    missed = off_season(prefs)
    return {a.type for a in prefs.selected_activities if a.must_be_in_season and a.type in missed}


def schedulable(prefs: TripPreferences) -> list[ActivityIntent]:
    skipped = skipped_for_season(prefs)
    return [a for a in prefs.selected_activities if a.type not in skipped]
