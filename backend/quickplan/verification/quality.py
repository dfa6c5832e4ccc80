"""Quality self-check battery for a generated itinerary.

Each verify_* function is pure and returns a list of unmet constraints.
run_quality_checks combines them into a scored QualityCheckResult.
"""

import logging
import math
import re
from collections.abc import Iterator
from datetime import UTC, datetime

from backend.quickplan.config import Settings
from backend.quickplan.models.candidates import CandidateCatalog, HotelCandidate
from backend.quickplan.models.evidence import Evidence
from backend.quickplan.models.itinerary import BlockType, DayBlock, QuickPlanItinerary
from backend.quickplan.models.preferences import TripPreferences
from backend.quickplan.models.quality import (
    ConstraintSeverity,
    QualityCheckResult,
    UnmetConstraint,
    UnmetConstraintType,
)
from backend.quickplan.scheduling.seasons import off_season, skipped_for_season
from backend.quickplan.utils.metrics import quality_constraints_total
from backend.quickplan.verification.evidence import meets_verification_contract

logger = logging.getLogger(__name__)

CRITICAL_PENALTY = 15
WARNING_PENALTY = 5
NEAR_BUDGET_RATIO = 1.2
EPSILON = 1e-9


def _blocks(itinerary: QuickPlanItinerary) -> Iterator[tuple[int, DayBlock]]:
    for day in itinerary.days:
        for block in day.blocks():
            yield day.day_number, block


def chosen_hotels(itinerary: QuickPlanItinerary, catalog: CandidateCatalog) -> list[HotelCandidate]:
    """The selected hotel per stop, or the shortlist default."""
    hotels = []
    for shortlist in itinerary.hotel_shortlists:
        hotel_id = shortlist.selected_hotel_id or shortlist.default_hotel_id
        if hotel_id and hotel_id in catalog.hotels:
            hotels.append(catalog.hotels[hotel_id])
    return hotels


def verify_must_dos(prefs: TripPreferences, itinerary: QuickPlanItinerary) -> list[UnmetConstraint]:
    """Every must-do appears at least once; fewer than asked is a warning.

    Must-dos left out because they are out of season are reported by
    verify_seasons instead.

    Args:
        prefs: Traveler preferences with activity intents
        itinerary: Plan to check

    Returns:
        List of constraints (empty when every must-do is placed)
    """
    counts: dict[str, int] = {}
    for _, block in _blocks(itinerary):
        if block.type == BlockType.activity and block.activity_type:
            counts[block.activity_type] = counts.get(block.activity_type, 0) + 1

    constraints: list[UnmetConstraint] = []
    day_count = len(itinerary.days)
    skipped = skipped_for_season(prefs)
    for intent in prefs.selected_activities:
        if not intent.is_must_do or intent.type in skipped:
            continue
        placed = counts.get(intent.type, 0)
        wanted = max(1, min(intent.target_days or 1, day_count))
        if placed == 0:
            constraints.append(
                UnmetConstraint(
                    type=UnmetConstraintType.must_do_missing,
                    code="MUST_DO_MISSING",
                    message=f"Must-do {intent.type.replace('_', ' ')} is not in the plan.",
                    severity=ConstraintSeverity.CRITICAL,
                    affected_ids=[intent.type],
                )
            )
        elif placed < wanted:
            constraints.append(
                UnmetConstraint(
                    type=UnmetConstraintType.activity_count_mismatch,
                    code="ACTIVITY_COUNT_MISMATCH",
                    message=f"{intent.type.replace('_', ' ').capitalize()} is planned on {placed} of {wanted} days.",
                    severity=ConstraintSeverity.WARNING,
                    affected_ids=[intent.type],
                    details={"placed": placed, "wanted": wanted},
                )
            )
    return constraints


def _hard_no_pattern(phrase: str) -> re.Pattern[str]:
    words = [re.escape(w) for w in phrase.lower().replace("_", " ").split()]
    return re.compile(r"\b" + r"[\s_-]+".join(words) + r"\b")


def verify_hard_nos(
    prefs: TripPreferences,
    itinerary: QuickPlanItinerary,
    catalog: CandidateCatalog,
) -> list[UnmetConstraint]:
    """No hard-no appears in any block or chosen hotel."""
    if not prefs.hard_nos:
        return []

    texts: list[tuple[str, str, int | None]] = []  # (entity id, text, day)
    for day_number, block in _blocks(itinerary):
        text = " ".join(filter(None, [block.title, block.description, block.activity_type]))
        texts.append((block.id, text, day_number))
    for hotel in chosen_hotels(itinerary, catalog):
        texts.append((hotel.place_id, " ".join([hotel.name, *hotel.amenities]), None))

    constraints: list[UnmetConstraint] = []
    for phrase in prefs.hard_nos:
        pattern = _hard_no_pattern(phrase)
        for entity_id, text, day_number in texts:
            if pattern.search(text.lower()):
                constraints.append(
                    UnmetConstraint(
                        type=UnmetConstraintType.hard_no_included,
                        code="HARD_NO_INCLUDED",
                        message=f"The plan includes something you ruled out: {phrase}.",
                        severity=ConstraintSeverity.CRITICAL,
                        affected_ids=[entity_id],
                        day_number=day_number,
                        details={"hard_no": phrase},
                    )
                )
    return constraints


def verify_evidence(
    itinerary: QuickPlanItinerary,
    catalog: CandidateCatalog,
    settings: Settings,
) -> list[UnmetConstraint]:
    """Every referenced entity meets the verification contract.

    Generic activity blocks with no concrete operator are a warning.
    """
    constraints: list[UnmetConstraint] = []

    def unverified(entity_id: str, evidence: list[Evidence] | None, day_number: int | None) -> None:
        if evidence is not None and meets_verification_contract(
            evidence,
            min_score=settings.discussion_min_score,
            min_citations=settings.discussion_min_citations,
        ):
            return
        constraints.append(
            UnmetConstraint(
                type=UnmetConstraintType.missing_canonical_id,
                code="UNVERIFIED_ENTITY",
                message="A recommended place has no verifiable source.",
                severity=ConstraintSeverity.CRITICAL,
                affected_ids=[entity_id],
                day_number=day_number,
            )
        )

    for day_number, block in _blocks(itinerary):
        if block.activity_id:
            activity = catalog.activities.get(block.activity_id)
            unverified(block.activity_id, activity.evidence if activity else None, day_number)
        elif block.type == BlockType.activity:
            constraints.append(
                UnmetConstraint(
                    type=UnmetConstraintType.missing_canonical_id,
                    code="GENERIC_ACTIVITY",
                    message=f"No verified operator found for {block.title.lower()}.",
                    severity=ConstraintSeverity.WARNING,
                    affected_ids=[block.id],
                    day_number=day_number,
                )
            )
        if block.restaurant_id:
            restaurant = catalog.restaurants.get(block.restaurant_id)
            unverified(block.restaurant_id, restaurant.evidence if restaurant else None, day_number)

    for shortlist in itinerary.hotel_shortlists:
        for hotel_id in shortlist.hotel_ids:
            hotel = catalog.hotels.get(hotel_id)
            unverified(hotel_id, hotel.evidence if hotel else None, None)
    return constraints


def verify_budget(
    prefs: TripPreferences,
    itinerary: QuickPlanItinerary,
    catalog: CandidateCatalog,
) -> list[UnmetConstraint]:
    """Lodging spend stays within the per-night band.

    Within 20% over the band is a warning, beyond that critical. Unknown
    prices are surfaced as warnings, never treated as zero.
    """
    budget = prefs.budget_per_night
    if budget is None or budget.max <= 0:
        return []

    constraints: list[UnmetConstraint] = []
    for hotel in chosen_hotels(itinerary, catalog):
        price = hotel.price_per_night
        # Case 1: Unknown price
        if price is None:
            constraints.append(
                UnmetConstraint(
                    type=UnmetConstraintType.unknown_price,
                    code="UNKNOWN_PRICE",
                    message=f"No price is available for {hotel.name} on your dates.",
                    severity=ConstraintSeverity.WARNING,
                    affected_ids=[hotel.place_id],
                )
            )
            continue

        # Case 2: Within budget
        if price <= budget.max:
            continue

        ratio = price / budget.max
        details = {"price_per_night": price, "budget_max": budget.max, "ratio": round(ratio, 3)}
        # Case 3: Slightly over, or far over
        if ratio <= NEAR_BUDGET_RATIO:
            constraints.append(
                UnmetConstraint(
                    type=UnmetConstraintType.budget_exceeded,
                    code="NEAR_BUDGET",
                    message=f"{hotel.name} is slightly above your nightly budget.",
                    severity=ConstraintSeverity.WARNING,
                    affected_ids=[hotel.place_id],
                    details=details,
                )
            )
        else:
            constraints.append(
                UnmetConstraint(
                    type=UnmetConstraintType.budget_exceeded,
                    code="OVER_BUDGET",
                    message=f"{hotel.name} exceeds your nightly budget by more than 20%.",
                    severity=ConstraintSeverity.CRITICAL,
                    affected_ids=[hotel.place_id],
                    details=details,
                )
            )
    return constraints


def verify_hotel_requirements(
    prefs: TripPreferences,
    itinerary: QuickPlanItinerary,
    catalog: CandidateCatalog,
) -> list[UnmetConstraint]:
    """Adults-only and accessibility requirements on chosen hotels."""
    constraints: list[UnmetConstraint] = []
    for hotel in chosen_hotels(itinerary, catalog):
        if prefs.adults_only_required and not hotel.is_adults_only:
            constraints.append(
                UnmetConstraint(
                    type=UnmetConstraintType.adults_only_violated,
                    code="ADULTS_ONLY_VIOLATED",
                    message=f"{hotel.name} is not adults-only.",
                    severity=ConstraintSeverity.CRITICAL,
                    affected_ids=[hotel.place_id],
                )
            )
        if prefs.children and hotel.is_adults_only:
            constraints.append(
                UnmetConstraint(
                    type=UnmetConstraintType.adults_only_violated,
                    code="CHILDREN_AT_ADULTS_ONLY",
                    message=f"{hotel.name} does not accept children.",
                    severity=ConstraintSeverity.CRITICAL,
                    affected_ids=[hotel.place_id],
                )
            )
        if not prefs.accessibility_needs:
            continue
        if hotel.wheelchair_accessible is False:
            constraints.append(
                UnmetConstraint(
                    type=UnmetConstraintType.accessibility_unmet,
                    code="ACCESSIBILITY_UNMET",
                    message=f"{hotel.name} is not wheelchair accessible.",
                    severity=ConstraintSeverity.CRITICAL,
                    affected_ids=[hotel.place_id],
                    details={"needs": list(prefs.accessibility_needs)},
                )
            )
        elif hotel.wheelchair_accessible is None:
            constraints.append(
                UnmetConstraint(
                    type=UnmetConstraintType.accessibility_unmet,
                    code="ACCESSIBILITY_UNKNOWN",
                    message=f"Accessibility at {hotel.name} could not be confirmed.",
                    severity=ConstraintSeverity.WARNING,
                    affected_ids=[hotel.place_id],
                )
            )
    return constraints


def verify_effort(itinerary: QuickPlanItinerary) -> list[UnmetConstraint]:
    """No day exceeds its pace budget."""
    constraints: list[UnmetConstraint] = []
    for day in itinerary.days:
        total = sum(b.effort_cost for b in day.blocks())
        if total > day.effort_budget + EPSILON:
            constraints.append(
                UnmetConstraint(
                    type=UnmetConstraintType.effort_budget_exceeded,
                    code="EFFORT_BUDGET_EXCEEDED",
                    message=f"Day {day.day_number} is busier than your pace allows.",
                    severity=ConstraintSeverity.CRITICAL,
                    affected_ids=[b.id for b in day.blocks()],
                    day_number=day.day_number,
                    details={"effort": total, "budget": day.effort_budget},
                )
            )
    return constraints


def verify_logistics(itinerary: QuickPlanItinerary) -> list[UnmetConstraint]:
    """Transfer count and single-night stops (advisory only)."""
    constraints: list[UnmetConstraint] = []
    transfers = sum(1 for d in itinerary.days if d.is_transit_day)
    allowed = max(1, math.ceil(len(itinerary.days) / 3))
    if transfers > allowed:
        constraints.append(
            UnmetConstraint(
                type=UnmetConstraintType.travel_time_exceeded,
                code="TOO_MANY_TRANSFERS",
                message=f"{transfers} transfer days in a {len(itinerary.days)}-day trip.",
                severity=ConstraintSeverity.WARNING,
                details={"transfers": transfers, "allowed": allowed},
            )
        )
    for stop in itinerary.stops:
        if stop.nights == 1 and len(itinerary.stops) > 1:
            constraints.append(
                UnmetConstraint(
                    type=UnmetConstraintType.travel_time_exceeded,
                    code="SINGLE_NIGHT_STOP",
                    message="A one-night stop spends most of its time in transit.",
                    severity=ConstraintSeverity.WARNING,
                    affected_ids=[stop.stop_id],
                    day_number=stop.arrival_day,
                )
            )
    return constraints


def verify_seasons(prefs: TripPreferences) -> list[UnmetConstraint]:
    """Selected activities whose season misses the trip dates."""
    skipped = skipped_for_season(prefs)
    constraints = []
    for activity_type, window in off_season(prefs).items():
        label = activity_type.replace("_", " ").capitalize()
        if activity_type in skipped:
            message = f"{label} runs {window.label()}, outside your dates, so it was left out."
        else:
            message = f"{label} runs {window.label()}; expect limited availability on your dates."
        constraints.append(
            UnmetConstraint(
                type=UnmetConstraintType.out_of_season,
                code="OUT_OF_SEASON",
                message=message,
                severity=ConstraintSeverity.WARNING,
                affected_ids=[activity_type],
                details={
                    "season": window.label(),
                    "left_out": activity_type in skipped,
                },
            )
        )
    return constraints


def score_constraints(constraints: list[UnmetConstraint]) -> int:
    critical = sum(1 for c in constraints if c.severity == ConstraintSeverity.CRITICAL)
    warning = len(constraints) - critical
    return max(0, min(100, 100 - CRITICAL_PENALTY * critical - WARNING_PENALTY * warning))


def run_quality_checks(
    prefs: TripPreferences,
    itinerary: QuickPlanItinerary,
    catalog: CandidateCatalog,
    settings: Settings,
    now: datetime | None = None,
) -> QualityCheckResult:
    """Run the full battery; criticals fail the check."""
    constraints = [
        *verify_must_dos(prefs, itinerary),
        *verify_hard_nos(prefs, itinerary, catalog),
        *verify_evidence(itinerary, catalog, settings),
        *verify_budget(prefs, itinerary, catalog),
        *verify_hotel_requirements(prefs, itinerary, catalog),
        *verify_effort(itinerary),
        *verify_logistics(itinerary),
        *verify_seasons(prefs),
    ]
    for c in constraints:
        quality_constraints_total.labels(type=c.type.value, severity=c.severity.value).inc()

    critical = [c for c in constraints if c.severity == ConstraintSeverity.CRITICAL]
    passed = not critical
    score = score_constraints(constraints)
    if passed and not constraints:
        summary = "All checks passed."
    elif passed:
        summary = f"Passed with {len(constraints)} warning(s)."
    else:
        summary = f"{len(critical)} blocking issue(s): " + "; ".join(c.message for c in critical[:3])

    logger.info(
        "Quality check complete",
        extra={
            "structured": {
                "itinerary_id": itinerary.id,
                "generation": itinerary.generation,
                "passed": passed,
                "score": score,
                "codes": [c.code for c in constraints],
            }
        },
    )
    return QualityCheckResult(
        passed=passed,
        score=score,
        constraints=constraints,
        summary=summary,
        checked_at=now or datetime.now(UTC),
    )
