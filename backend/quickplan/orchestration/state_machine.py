"""Planning state machine as pure tables.

States run in a fixed order. Each state owns a set of confidence fields and
has a skip predicate evaluated against an immutable snapshot, so every
transition decision can be tested in isolation.
"""

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum

from backend.quickplan.models.common import ConfidenceField, ConfidenceLevel, DestinationType, DiningMode
from backend.quickplan.models.preferences import TripPreferences


class PlanningState(str, Enum):
    DESTINATION = "DESTINATION"
    DATES_OR_LENGTH = "DATES_OR_LENGTH"
    PARTY = "PARTY"
    BUDGET = "BUDGET"
    VIBE_AND_HARD_NOS = "VIBE_AND_HARD_NOS"
    ACTIVITIES_PICK = "ACTIVITIES_PICK"
    ACTIVITY_INTENSITY = "ACTIVITY_INTENSITY"
    TRADEOFFS_RESOLUTION = "TRADEOFFS_RESOLUTION"
    AREA_DISCOVERY = "AREA_DISCOVERY"
    AREA_SPLIT_SELECTION = "AREA_SPLIT_SELECTION"
    PREFERENCES_REVIEW_LOCK = "PREFERENCES_REVIEW_LOCK"
    HOTELS_SHORTLIST_AND_PICK = "HOTELS_SHORTLIST_AND_PICK"
    DINING_MODE = "DINING_MODE"
    DINING_SHORTLIST_AND_PICK = "DINING_SHORTLIST_AND_PICK"
    DAILY_ITINERARY_BUILD = "DAILY_ITINERARY_BUILD"
    QUALITY_SELF_CHECK = "QUALITY_SELF_CHECK"
    FINAL_REVIEW_AND_EDIT_LOOP = "FINAL_REVIEW_AND_EDIT_LOOP"
    SATISFACTION_GATE = "SATISFACTION_GATE"


STATE_ORDER: tuple[PlanningState, ...] = tuple(PlanningState)
TERMINAL_STATE = PlanningState.SATISFACTION_GATE


@dataclass(frozen=True)
class StateSpec:
    fields: tuple[ConfidenceField, ...] = ()  # Priority order for question selection
    is_gate: bool = False
    allow_back: bool = True


STATE_SPECS: dict[PlanningState, StateSpec] = {
    PlanningState.DESTINATION: StateSpec((ConfidenceField.destination,), allow_back=False),
    PlanningState.DATES_OR_LENGTH: StateSpec((ConfidenceField.dates,)),
    PlanningState.PARTY: StateSpec((ConfidenceField.party,)),
    PlanningState.BUDGET: StateSpec((ConfidenceField.budget,)),
    PlanningState.VIBE_AND_HARD_NOS: StateSpec(
        (ConfidenceField.vibe, ConfidenceField.hard_nos, ConfidenceField.pace)
    ),
    PlanningState.ACTIVITIES_PICK: StateSpec((ConfidenceField.activities,)),
    PlanningState.ACTIVITY_INTENSITY: StateSpec((ConfidenceField.activity_intensity,)),
    PlanningState.TRADEOFFS_RESOLUTION: StateSpec(is_gate=True),
    PlanningState.AREA_DISCOVERY: StateSpec((ConfidenceField.areas,)),
    PlanningState.AREA_SPLIT_SELECTION: StateSpec((ConfidenceField.split,)),
    PlanningState.PREFERENCES_REVIEW_LOCK: StateSpec((ConfidenceField.review_lock,), is_gate=True),
    PlanningState.HOTELS_SHORTLIST_AND_PICK: StateSpec(
        (ConfidenceField.hotel_preferences, ConfidenceField.hotels)
    ),
    PlanningState.DINING_MODE: StateSpec((ConfidenceField.dining_mode,)),
    PlanningState.DINING_SHORTLIST_AND_PICK: StateSpec((ConfidenceField.dining,)),
    PlanningState.DAILY_ITINERARY_BUILD: StateSpec(allow_back=False),
    PlanningState.QUALITY_SELF_CHECK: StateSpec(is_gate=True, allow_back=False),
    PlanningState.FINAL_REVIEW_AND_EDIT_LOOP: StateSpec((ConfidenceField.final_review,)),
    PlanningState.SATISFACTION_GATE: StateSpec(
        (ConfidenceField.satisfaction,), is_gate=True, allow_back=False
    ),
}

FIELD_OWNER: dict[ConfidenceField, PlanningState] = {
    f: state for state, spec in STATE_SPECS.items() for f in spec.fields
}


@dataclass(frozen=True)
class PreferenceSnapshot:
    """Immutable view of everything the transition table reads."""

    prefs: TripPreferences
    confidence: Mapping[ConfidenceField, ConfidenceLevel]
    active_tradeoffs: int = 0
    itinerary_ready: bool = False
    quality_cleared: bool = False

    def level(self, f: ConfidenceField) -> ConfidenceLevel:
        return self.confidence.get(f, ConfidenceLevel.unknown)


def _single_city(s: PreferenceSnapshot) -> bool:
    destination = s.prefs.destination
    return destination is not None and destination.type in (DestinationType.city, DestinationType.resort)


def _never(_: PreferenceSnapshot) -> bool:
    return False


SKIP_PREDICATES: dict[PlanningState, Callable[[PreferenceSnapshot], bool]] = {
    PlanningState.DESTINATION: _never,
    PlanningState.DATES_OR_LENGTH: _never,
    PlanningState.PARTY: _never,
    PlanningState.BUDGET: _never,
    PlanningState.VIBE_AND_HARD_NOS: _never,
    PlanningState.ACTIVITIES_PICK: _never,
    PlanningState.ACTIVITY_INTENSITY: lambda s: not s.prefs.selected_activities,
    PlanningState.TRADEOFFS_RESOLUTION: lambda s: s.active_tradeoffs == 0,
    PlanningState.AREA_DISCOVERY: _single_city,
    PlanningState.AREA_SPLIT_SELECTION: _single_city,
    PlanningState.PREFERENCES_REVIEW_LOCK: _never,
    PlanningState.HOTELS_SHORTLIST_AND_PICK: _never,
    PlanningState.DINING_MODE: _never,
    PlanningState.DINING_SHORTLIST_AND_PICK: lambda s: s.prefs.dining_mode == DiningMode.none,
    PlanningState.DAILY_ITINERARY_BUILD: _never,
    PlanningState.QUALITY_SELF_CHECK: _never,
    PlanningState.FINAL_REVIEW_AND_EDIT_LOOP: _never,
    PlanningState.SATISFACTION_GATE: _never,
}

COMPLETION_CONDITIONS: dict[PlanningState, Callable[[PreferenceSnapshot], bool]] = {
    PlanningState.TRADEOFFS_RESOLUTION: lambda s: s.active_tradeoffs == 0,
    PlanningState.DAILY_ITINERARY_BUILD: lambda s: s.itinerary_ready,
    PlanningState.QUALITY_SELF_CHECK: lambda s: s.quality_cleared,
}


def is_skipped(state: PlanningState, snapshot: PreferenceSnapshot) -> bool:
    return SKIP_PREDICATES[state](snapshot)


def missing_fields(
    state: PlanningState,
    confidence: Mapping[ConfidenceField, ConfidenceLevel],
) -> list[ConfidenceField]:
    """Owned fields not yet settled, in priority order."""
    return [
        f
        for f in STATE_SPECS[state].fields
        if not confidence.get(f, ConfidenceLevel.unknown).is_settled
    ]


def is_complete(state: PlanningState, snapshot: PreferenceSnapshot) -> bool:
    if missing_fields(state, snapshot.confidence):
        return False
    condition = COMPLETION_CONDITIONS.get(state)
    return condition(snapshot) if condition else True


def active_states(snapshot: PreferenceSnapshot) -> list[PlanningState]:
    return [s for s in STATE_ORDER if not is_skipped(s, snapshot)]


def next_state(state: PlanningState, snapshot: PreferenceSnapshot) -> PlanningState:
    """First later state that is not skipped; the terminal state if none remain."""
    index = STATE_ORDER.index(state)
    for candidate in STATE_ORDER[index + 1 :]:
        if not is_skipped(candidate, snapshot):
            return candidate
    return TERMINAL_STATE


def previous_state(state: PlanningState, snapshot: PreferenceSnapshot) -> PlanningState | None:
    """Closest earlier active state, or None when back navigation is not allowed."""
    if not STATE_SPECS[state].allow_back:
        return None
    index = STATE_ORDER.index(state)
    for candidate in reversed(STATE_ORDER[:index]):
        if not is_skipped(candidate, snapshot):
            return candidate
    return None


def current_state(snapshot: PreferenceSnapshot) -> PlanningState:
    """First active state with an unsettled field or unmet completion condition."""
    for state in STATE_ORDER:
        if is_skipped(state, snapshot):
            continue
        if not is_complete(state, snapshot):
            return state
    return TERMINAL_STATE


def can_go_back_to(current: PlanningState, target: PlanningState, snapshot: PreferenceSnapshot) -> bool:
    if not STATE_SPECS[current].allow_back:
        return False
    if STATE_ORDER.index(target) >= STATE_ORDER.index(current):
        return False
    return not is_skipped(target, snapshot)


def progress(state: PlanningState, snapshot: PreferenceSnapshot) -> float:
    """Fraction of active states before `state`, in [0, 1]."""
    states = active_states(snapshot)
    if state not in states or len(states) < 2:
        return 0.0
    return round(states.index(state) / (len(states) - 1), 3)
