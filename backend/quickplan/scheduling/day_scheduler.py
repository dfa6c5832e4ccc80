"""Effort-budget day scheduler and dining plan.

Greedy, deterministic placement: fixed obligations (transit, reserved
dinners) first, then one occurrence of each must-do onto the day with the
most remaining budget, then must-do repeats, then nice-to-haves by
relevance. No day ever exceeds its pace budget; must-dos that do not fit
become unmet constraints.
"""

import logging
from collections.abc import Collection, Sequence
from dataclasses import dataclass, field
from datetime import date, time, timedelta

from backend.quickplan.config import Settings
from backend.quickplan.models.areas import ItinerarySplit, ItineraryStop
from backend.quickplan.models.candidates import ActivityCandidate, CandidateCatalog, RestaurantCandidate
from backend.quickplan.models.common import DiningMode
from backend.quickplan.models.itinerary import (
    BlockType,
    DayBlock,
    DiningPlan,
    QuickPlanDay,
    ScheduledDinner,
    TimeSlot,
    TransitInfo,
)
from backend.quickplan.models.preferences import ActivityIntent, TripPreferences
from backend.quickplan.models.quality import ConstraintSeverity, UnmetConstraint, UnmetConstraintType
from backend.quickplan.scheduling.effort import effort_cost, is_full_day, pace_budget
from backend.quickplan.scheduling.seasons import schedulable

logger = logging.getLogger(__name__)

SLOT_TIMES: dict[TimeSlot, tuple[time, time]] = {
    TimeSlot.morning: (time(9, 0), time(12, 0)),
    TimeSlot.afternoon: (time(14, 0), time(17, 0)),
    TimeSlot.evening: (time(19, 0), time(21, 0)),
}
FULL_DAY_TIMES = (time(9, 0), time(17, 0))
DAYTIME_SLOTS = (TimeSlot.morning, TimeSlot.afternoon)
EVENING_ACTIVITY_TYPES = {"nightlife", "dinner"}
EPSILON = 1e-9


@dataclass
class _WorkingDay:
    day_number: int
    stop: ItineraryStop
    budget: float
    slots: dict[TimeSlot, DayBlock | None] = field(
        default_factory=lambda: {slot: None for slot in TimeSlot}
    )
    spans_afternoon: bool = False
    transit: TransitInfo | None = None

    @property
    def used(self) -> float:
        return sum(b.effort_cost for b in self.slots.values() if b is not None)

    @property
    def remaining(self) -> float:
        return self.budget - self.used

    @property
    def activity_types(self) -> set[str]:
        return {b.activity_type for b in self.slots.values() if b is not None and b.activity_type}

    def free(self, slot: TimeSlot) -> bool:
        if slot == TimeSlot.afternoon and self.spans_afternoon:
            return False
        return self.slots[slot] is None


@dataclass(frozen=True)
class ScheduleResult:
    days: list[QuickPlanDay]
    unmet: list[UnmetConstraint]
    used_activity_ids: frozenset[str] = frozenset()


def _minutes(start: time, end: time) -> int:
    return (end.hour * 60 + end.minute) - (start.hour * 60 + start.minute)


def _slot_for(day: _WorkingDay, activity_type: str, full_day: bool) -> TimeSlot | None:
    if activity_type in EVENING_ACTIVITY_TYPES:
        return TimeSlot.evening if day.free(TimeSlot.evening) else None
    if full_day:
        ok = day.free(TimeSlot.morning) and day.free(TimeSlot.afternoon)
        return TimeSlot.morning if ok else None
    for slot in DAYTIME_SLOTS:
        if day.free(slot):
            return slot
    return None


def _pick_candidate(
    catalog: CandidateCatalog,
    area_id: str,
    activity_type: str,
    used: set[str],
) -> ActivityCandidate | None:
    candidates = [
        c for c in catalog.activities_for_area(area_id, activity_type) if c.id not in used
    ]
    if not candidates:
        return None
    candidates.sort(key=lambda c: (-(c.rating or 0), -(c.review_count or 0), c.id))
    return candidates[0]


def _activity_block(
    day: _WorkingDay,
    slot: TimeSlot,
    intent: ActivityIntent,
    cost: float,
    full_day: bool,
    candidate: ActivityCandidate | None,
) -> DayBlock:
    start, end = FULL_DAY_TIMES if full_day else SLOT_TIMES[slot]
    label = intent.type.replace("_", " ")
    if candidate is not None:
        title = candidate.name
        description = f"{label.capitalize()} at {candidate.name}"
        evidence_ids = [e.place_id or e.url for e in candidate.evidence if e.place_id or e.url]
    else:
        title = label.capitalize()
        description = f"{label.capitalize()} near your base; pick a local operator"
        evidence_ids = []
    return DayBlock(
        id=f"d{day.day_number}-{slot.value}",
        type=BlockType.activity,
        title=title,
        description=description,
        start_time=start,
        end_time=end,
        duration_minutes=(candidate.duration_minutes if candidate and candidate.duration_minutes else _minutes(start, end)),
        effort_cost=cost,
        location=day.stop.area_id,
        activity_type=intent.type,
        activity_id=candidate.id if candidate else None,
        evidence_ids=[i for i in evidence_ids if i],
        spans_afternoon=full_day,
    )


def ranked_restaurants(
    prefs: TripPreferences,
    catalog: CandidateCatalog,
    area_id: str,
    exclude: Collection[str] = (),
) -> list[RestaurantCandidate]:
    """Selected restaurants first, then dietary matches, then rating."""
    selected = prefs.selected_restaurants.get(area_id, [])
    dietary = {d.lower() for d in prefs.dietary_restrictions}
    options = [r for r in catalog.restaurants_for_area(area_id) if r.id not in exclude]
    options.sort(
        key=lambda r: (
            r.id not in selected,
            -len(dietary & {b.lower() for b in r.best_for}),
            -(r.rating or 0),
            r.id,
        )
    )
    return options


def _dinner_block(day_number: int, area_id: str, restaurant: RestaurantCandidate | None, cost: float) -> DayBlock:
    start, end = SLOT_TIMES[TimeSlot.evening]
    if restaurant is not None:
        title = f"Dinner at {restaurant.name}"
        evidence_ids = [e.place_id or e.url for e in restaurant.evidence if e.place_id or e.url]
    else:
        title = "Dinner near your hotel"
        evidence_ids = []
    return DayBlock(
        id=f"d{day_number}-{TimeSlot.evening.value}",
        type=BlockType.meal,
        title=title,
        start_time=start,
        end_time=end,
        duration_minutes=_minutes(start, end),
        effort_cost=cost,
        location=area_id,
        restaurant_id=restaurant.id if restaurant else None,
        evidence_ids=[i for i in evidence_ids if i],
    )


def _transit_block(day: _WorkingDay, info: TransitInfo, cost: float) -> DayBlock:
    start, end = SLOT_TIMES[TimeSlot.morning]
    return DayBlock(
        id=f"d{day.day_number}-{TimeSlot.morning.value}",
        type=BlockType.transit,
        title=f"Transfer to {info.to_area_id.replace('-', ' ').title()}",
        start_time=start,
        end_time=end,
        duration_minutes=info.duration_minutes or _minutes(start, end),
        effort_cost=cost,
        location=info.to_area_id,
    )


def _filler_block(day_number: int, slot: TimeSlot, block_type: BlockType) -> DayBlock:
    start, end = SLOT_TIMES[slot]
    return DayBlock(
        id=f"d{day_number}-{slot.value}",
        type=block_type,
        title="Rest" if block_type == BlockType.rest else "Free time",
        start_time=start,
        end_time=end,
        duration_minutes=_minutes(start, end),
        effort_cost=0.0,
    )


def _working_days(prefs: TripPreferences, split: ItinerarySplit, settings: Settings) -> list[_WorkingDay]:
    budget = pace_budget(prefs.pace, settings)
    days = []
    previous: ItineraryStop | None = None
    for stop in split.stops:
        for day_number in range(stop.arrival_day, stop.departure_day):
            day = _WorkingDay(day_number=day_number, stop=stop, budget=budget)
            if day_number == stop.arrival_day and stop.travel_day_before and previous is not None:
                day.transit = TransitInfo(from_area_id=previous.area_id, to_area_id=stop.area_id)
            days.append(day)
        previous = stop
    return days


def _place(
    days: Sequence[_WorkingDay],
    intent: ActivityIntent,
    catalog: CandidateCatalog,
    used: set[str],
    settings: Settings,
    *,
    release_dinner: bool = False,
) -> bool:
    """Place one occurrence of an activity.

    With `release_dinner`, an evening activity may take the slot of a
    reserved dinner when no evening is free; days that need no release are
    preferred.
    """
    cost = effort_cost(intent.type, settings)
    full_day = is_full_day(cost, settings)
    options = []
    for day in days:
        if intent.type in day.activity_types:
            continue
        slot = _slot_for(day, intent.type, full_day)
        freed = 0.0
        if slot is None and release_dinner and intent.type in EVENING_ACTIVITY_TYPES:
            evening = day.slots[TimeSlot.evening]
            if evening is not None and evening.type == BlockType.meal:
                slot, freed = TimeSlot.evening, evening.effort_cost
        if slot is None or day.remaining + freed + EPSILON < cost:
            continue
        has_candidate = bool(catalog.activities_for_area(day.stop.area_id, intent.type))
        options.append((freed > 0, not has_candidate, -day.remaining, day.day_number, day, slot))
    if not options:
        return False
    *_, day, slot = min(options, key=lambda o: o[:4])
    candidate = _pick_candidate(catalog, day.stop.area_id, intent.type, used)
    if candidate is not None:
        used.add(candidate.id)
    day.slots[slot] = _activity_block(day, slot, intent, cost, full_day, candidate)
    if full_day:
        day.spans_afternoon = True
    return True


def occurrences(intent: ActivityIntent, day_count: int) -> int:
    return max(1, min(intent.target_days or 1, day_count))


def _nice_to_have_relevance(intent: ActivityIntent, catalog: CandidateCatalog, area_ids: set[str]) -> tuple:
    ratings = [
        c.rating or 0
        for c in catalog.activities.values()
        if c.activity_type == intent.type and c.area_id in area_ids
    ]
    return (-len(ratings), -max(ratings, default=0), intent.type)


def schedule_days(
    prefs: TripPreferences,
    split: ItinerarySplit,
    catalog: CandidateCatalog,
    settings: Settings,
    *,
    start_date: date | None = None,
    dinner_exclude: Collection[str] = (),
    prioritize: Collection[str] = (),
) -> ScheduleResult:
    """Build the day-by-day plan for a split.

    Every must-do gets one occurrence before any must-do gets a repeat, so a
    must-do is reported missing only when no day can hold even one instance.
    Must-do types in `prioritize` are placed ahead of the others. Activities
    that must be in season and are not on the trip dates are left out.
    """
    days = _working_days(prefs, split, settings)
    unmet: list[UnmetConstraint] = []
    used: set[str] = set()
    start_date = start_date or prefs.start_date
    intents = schedulable(prefs)

    # Fixed obligations
    for day in days:
        if day.transit is not None:
            day.slots[TimeSlot.morning] = _transit_block(day, day.transit, settings.travel_day_baseline)
    if prefs.dining_mode is not None and prefs.dining_mode.schedules_dinners:
        _assign_dinners(days, prefs, catalog, settings, dinner_exclude)
    exhausted = {d.day_number for d in days if d.remaining <= EPSILON}

    must_dos = sorted(
        (a for a in intents if a.is_must_do),
        key=lambda a: a.type not in prioritize,
    )
    placed = {
        a.type: int(_place(days, a, catalog, used, settings, release_dinner=True)) for a in must_dos
    }
    for intent in must_dos:
        wanted = occurrences(intent, len(days))
        if placed[intent.type]:
            placed[intent.type] += sum(
                1 for _ in range(wanted - 1) if _place(days, intent, catalog, used, settings)
            )

    for intent in must_dos:
        wanted = occurrences(intent, len(days))
        count = placed[intent.type]
        if count == 0:
            unmet.append(
                UnmetConstraint(
                    type=UnmetConstraintType.must_do_missing,
                    code="MUST_DO_MISSING",
                    message=f"{intent.type.replace('_', ' ').capitalize()} did not fit in any day's effort budget.",
                    severity=ConstraintSeverity.CRITICAL,
                    affected_ids=[intent.type],
                    details={"wanted": wanted, "cost": effort_cost(intent.type, settings)},
                )
            )
        elif count < wanted:
            unmet.append(
                UnmetConstraint(
                    type=UnmetConstraintType.activity_count_mismatch,
                    code="ACTIVITY_COUNT_MISMATCH",
                    message=f"Only {count} of {wanted} {intent.type.replace('_', ' ')} days fit.",
                    severity=ConstraintSeverity.WARNING,
                    affected_ids=[intent.type],
                    details={"wanted": wanted, "placed": count},
                )
            )

    area_ids = {s.area_id for s in split.stops}
    nice = sorted(
        (a for a in intents if not a.is_must_do),
        key=lambda a: _nice_to_have_relevance(a, catalog, area_ids),
    )
    for intent in nice:
        for _ in range(occurrences(intent, len(days))):
            if not _place(days, intent, catalog, used, settings):
                break

    result_days = [_finish_day(day, start_date, exhausted) for day in days]
    logger.info(
        "Scheduled days",
        extra={
            "structured": {
                "split_id": split.id,
                "days": len(result_days),
                "effort": [d.effort_points for d in result_days],
                "unmet": [u.code for u in unmet],
            }
        },
    )
    return ScheduleResult(days=result_days, unmet=unmet, used_activity_ids=frozenset(used))


def _assign_dinners(
    days: Sequence[_WorkingDay],
    prefs: TripPreferences,
    catalog: CandidateCatalog,
    settings: Settings,
    exclude: Collection[str],
) -> None:
    cost = settings.dinner_reservation_cost
    by_area: dict[str, list[RestaurantCandidate]] = {}
    for day in days:
        if day.remaining + EPSILON < cost:
            continue
        area_id = day.stop.area_id
        if area_id not in by_area:
            by_area[area_id] = ranked_restaurants(prefs, catalog, area_id, exclude)
        options = by_area[area_id]
        restaurant = options[(day.day_number - day.stop.arrival_day) % len(options)] if options else None
        day.slots[TimeSlot.evening] = _dinner_block(day.day_number, area_id, restaurant, cost)


def _finish_day(day: _WorkingDay, start_date: date | None, exhausted: set[int]) -> QuickPlanDay:
    filler = BlockType.rest if day.day_number in exhausted else BlockType.free
    blocks = dict(day.slots)
    for slot in DAYTIME_SLOTS:
        if blocks[slot] is None and day.free(slot):
            blocks[slot] = _filler_block(day.day_number, slot, filler)
    return QuickPlanDay(
        day_number=day.day_number,
        calendar_date=start_date + timedelta(days=day.day_number - 1) if start_date else None,
        stop_id=day.stop.stop_id,
        area_id=day.stop.area_id,
        morning=blocks[TimeSlot.morning],
        afternoon=blocks[TimeSlot.afternoon],
        evening=blocks[TimeSlot.evening],
        is_transit_day=day.transit is not None,
        transit_info=day.transit,
        effort_budget=day.budget,
        effort_points=round(day.used, 2),
    )


def reassign_dinners(
    days: Sequence[QuickPlanDay],
    prefs: TripPreferences,
    catalog: CandidateCatalog,
    exclude: Collection[str] = (),
) -> list[QuickPlanDay]:
    """Swap restaurants on existing dinner blocks; every other block is kept as is."""
    by_area: dict[str, list[RestaurantCandidate]] = {}
    first_day: dict[str, int] = {}
    for day in days:
        first_day.setdefault(day.stop_id, day.day_number)

    updated = []
    for day in days:
        evening = day.evening
        if evening is None or evening.type != BlockType.meal:
            updated.append(day)
            continue
        if day.area_id not in by_area:
            by_area[day.area_id] = ranked_restaurants(prefs, catalog, day.area_id, exclude)
        options = by_area[day.area_id]
        restaurant = options[(day.day_number - first_day[day.stop_id]) % len(options)] if options else None
        block = _dinner_block(day.day_number, day.area_id, restaurant, evening.effort_cost)
        updated.append(day.model_copy(update={"evening": block}))
    return updated


def build_dining_plan(
    prefs: TripPreferences,
    split: ItinerarySplit,
    catalog: CandidateCatalog,
    days: Sequence[QuickPlanDay],
    settings: Settings,
) -> DiningPlan:
    """Restaurant lists per stop; scheduled modes also pin dinners to days."""
    mode = prefs.dining_mode or DiningMode.none
    plan = DiningPlan(mode=mode)
    if mode == DiningMode.none:
        return plan

    for stop in split.stops:
        ranked = ranked_restaurants(prefs, catalog, stop.area_id)
        plan.restaurants_by_stop[stop.stop_id] = [r.id for r in ranked[: settings.restaurants_per_stop]]

    if not mode.schedules_dinners:
        return plan

    for day in days:
        evening = day.evening
        if evening is not None and evening.type == BlockType.meal:
            plan.scheduled_dinners.append(
                ScheduledDinner(
                    day_number=day.day_number,
                    restaurant_id=evening.restaurant_id,
                    title=evening.title,
                    start_time=evening.start_time,
                )
            )
        else:
            plan.free_nights.append(day.day_number)
    return plan
