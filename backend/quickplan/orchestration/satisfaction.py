"""Satisfaction gate: issue routing and surgical regeneration.

Each regeneration function returns a new itinerary built with model_copy,
replacing only the component it owns. Untouched components are carried over
as the same objects.
"""

import logging
from collections.abc import Collection, Sequence

from backend.quickplan.config import Settings
from backend.quickplan.models.areas import ItinerarySplit
from backend.quickplan.models.candidates import CandidateCatalog, HotelShortlist
from backend.quickplan.models.itinerary import BlockType, QuickPlanItinerary
from backend.quickplan.models.preferences import TripPreferences
from backend.quickplan.models.satisfaction import (
    RegenerationComponent,
    SatisfactionIssueCategory,
    SatisfactionResponse,
)
from backend.quickplan.scheduling.day_scheduler import build_dining_plan, occurrences, reassign_dinners, schedule_days
from backend.quickplan.scheduling.effort import shift_pace
from backend.quickplan.scoring.hotels import build_shortlist

logger = logging.getLogger(__name__)

ISSUE_COMPONENTS: dict[SatisfactionIssueCategory, RegenerationComponent] = {
    SatisfactionIssueCategory.too_many_activities: RegenerationComponent.schedule,
    SatisfactionIssueCategory.not_enough_activities: RegenerationComponent.schedule,
    SatisfactionIssueCategory.pace_issues: RegenerationComponent.schedule,
    SatisfactionIssueCategory.missing_must_do: RegenerationComponent.schedule,
    SatisfactionIssueCategory.other: RegenerationComponent.schedule,
    SatisfactionIssueCategory.hotel_issues: RegenerationComponent.hotels,
    SatisfactionIssueCategory.budget_issues: RegenerationComponent.hotels,
    SatisfactionIssueCategory.dining_issues: RegenerationComponent.dining,
    SatisfactionIssueCategory.wrong_areas: RegenerationComponent.areas,
}

PACE_SHIFTS: dict[SatisfactionIssueCategory, int] = {
    SatisfactionIssueCategory.too_many_activities: -1,
    SatisfactionIssueCategory.pace_issues: -1,
    SatisfactionIssueCategory.not_enough_activities: 1,
}


def components_for(response: SatisfactionResponse) -> list[RegenerationComponent]:
    """Components to re-invoke, in first-mention order, without duplicates."""
    seen: list[RegenerationComponent] = []
    for issue in response.issues:
        component = ISSUE_COMPONENTS[issue.category]
        if component not in seen:
            seen.append(component)
    return seen


def pace_shift_for(response: SatisfactionResponse) -> int:
    shift = sum(PACE_SHIFTS.get(i.category, 0) for i in response.issues)
    return max(-1, min(1, shift))


def regenerate_hotels(
    itinerary: QuickPlanItinerary,
    prefs: TripPreferences,
    catalog: CandidateCatalog,
    settings: Settings,
    *,
    stop_ids: Collection[str] | None = None,
    cheaper_first: bool = False,
    exclude: Collection[str] = (),
    exclude_shown: bool = True,
) -> QuickPlanItinerary:
    """Rebuild shortlists for the affected stops only.

    Previously shown hotels are excluded unless `exclude_shown` is False;
    when nothing else is eligible the old shortlist is kept.
    """
    stops = {s.stop_id: s for s in itinerary.stops}
    shortlists: list[HotelShortlist] = []
    for shortlist in itinerary.hotel_shortlists:
        if stop_ids is not None and shortlist.stop_id not in stop_ids:
            shortlists.append(shortlist)
            continue
        stop = stops[shortlist.stop_id]
        new_shortlist, _ = build_shortlist(
            stop,
            shortlist.area_name,
            catalog.hotels_for_area(stop.area_id),
            prefs.model_copy(update={"selected_hotels": {}}),
            settings.hotel_shortlist_size,
            exclude={*(shortlist.hotel_ids if exclude_shown else ()), *exclude},
            cheaper_first=cheaper_first,
        )
        shortlists.append(new_shortlist if new_shortlist.hotel_ids else shortlist)

    logger.info(
        "Regenerated hotel shortlists",
        extra={"structured": {"itinerary_id": itinerary.id, "stops": sorted(stop_ids or stops)}},
    )
    return itinerary.model_copy(update={"hotel_shortlists": shortlists, "generation_layer": "hotels"})


def regenerate_schedule(
    itinerary: QuickPlanItinerary,
    prefs: TripPreferences,
    split: ItinerarySplit,
    catalog: CandidateCatalog,
    settings: Settings,
    *,
    prioritize: Collection[str] = (),
) -> QuickPlanItinerary:
    """Rebuild days and the dining plan; hotel shortlists are kept.

    Must-do types in `prioritize` are placed ahead of the other must-dos.
    """
    result = schedule_days(prefs, split, catalog, settings, prioritize=prioritize)
    dining = build_dining_plan(prefs, split, catalog, result.days, settings)
    return itinerary.model_copy(
        update={
            "days": result.days,
            "dining_plan": dining,
            "unmet_constraints": result.unmet,
            "generation_layer": "schedule",
        }
    )


def regenerate_dining(
    itinerary: QuickPlanItinerary,
    prefs: TripPreferences,
    split: ItinerarySplit,
    catalog: CandidateCatalog,
    settings: Settings,
) -> QuickPlanItinerary:
    """Swap restaurants on dinner blocks and rebuild the dining plan."""
    previous = _dinner_restaurants(itinerary)
    days = reassign_dinners(itinerary.days, prefs, catalog, exclude=previous)
    # Alternatives exhausted for some area: rotate through the full list instead
    if len(_dinner_restaurants_by_day(days)) < len(_dinner_restaurants_by_day(itinerary.days)):
        days = reassign_dinners(itinerary.days, prefs, catalog)
    dining = build_dining_plan(prefs, split, catalog, days, settings)
    if itinerary.dining_plan is not None:
        dining = _rotate_lists(dining, itinerary.dining_plan.restaurants_by_stop)
    return itinerary.model_copy(update={"days": days, "dining_plan": dining, "generation_layer": "dining"})


def _dinner_restaurants(itinerary: QuickPlanItinerary) -> set[str]:
    return set(_dinner_restaurants_by_day(itinerary.days).values())


def _dinner_restaurants_by_day(days) -> dict[int, str]:
    return {
        d.day_number: d.evening.restaurant_id
        for d in days
        if d.evening is not None and d.evening.type == BlockType.meal and d.evening.restaurant_id
    }


def _rotate_lists(dining, previous: dict[str, Sequence[str]]):
    """Put restaurants not shown before first in each stop's list."""
    rotated = {}
    for stop_id, ids in dining.restaurants_by_stop.items():
        shown = set(previous.get(stop_id, []))
        rotated[stop_id] = [i for i in ids if i not in shown] + [i for i in ids if i in shown]
    return dining.model_copy(update={"restaurants_by_stop": rotated})


def shifted_preferences(prefs: TripPreferences, response: SatisfactionResponse) -> TripPreferences:
    shift = pace_shift_for(response)
    if shift == 0:
        return prefs
    return prefs.model_copy(update={"pace": shift_pace(prefs.pace, shift)})


def missing_must_dos(
    prefs: TripPreferences,
    itinerary: QuickPlanItinerary,
    response: SatisfactionResponse,
) -> list[str]:
    """Must-do types to place first after a missing must-do complaint.

    Types named in the issue notes come first, then must-dos the current
    plan holds fewer times than asked.
    """
    issues = [i for i in response.issues if i.category == SatisfactionIssueCategory.missing_must_do]
    if not issues:
        return []
    notes = " ".join((i.note or "").lower() for i in issues)

    counts: dict[str, int] = {}
    for day in itinerary.days:
        for block in day.blocks():
            if block.type == BlockType.activity and block.activity_type:
                counts[block.activity_type] = counts.get(block.activity_type, 0) + 1

    must_dos = [a for a in prefs.selected_activities if a.is_must_do]
    named = [a.type for a in must_dos if a.type.replace("_", " ") in notes or a.type in notes]
    short = [
        a.type
        for a in must_dos
        if a.type not in named and counts.get(a.type, 0) < occurrences(a, len(itinerary.days))
    ]
    return named + short
