"""Tradeoff detection and resolution.

Rules are a fixed table. Each rule returns the identifying facts that
triggered it (activity types, destination, phrases), or None. Tradeoff ids
are derived from those facts so new contradicting input yields a new
tradeoff, while a resolution that only adjusts intensity keeps the old id.
"""

import hashlib
import json
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from backend.quickplan.models.common import DestinationType
from backend.quickplan.models.preferences import (
    ActivityIntent,
    ActivityPriority,
    TripPreferences,
    UserNote,
)
from backend.quickplan.models.tradeoffs import (
    PreferenceConflict,
    Tradeoff,
    TradeoffOption,
    TradeoffResolution,
    TradeoffType,
)

logger = logging.getLogger(__name__)

Facts = dict[str, Any]

SURF_TYPES = ("surf", "kitesurf")
BEACH_TYPES = ("beach", "swimming", "snorkel", "snorkeling")
ADVENTURE_TYPES = ("hiking", "adventure", "diving", "dive", "day_trip")
LONG_DRIVE_TERMS = ("long drive", "driving", "car")
PARTY_VIBES = ("party", "nightlife", "lively")
CUSTOM_OPTION = "custom"


@dataclass(frozen=True)
class TradeoffRule:
    type: TradeoffType
    title: str
    description: str
    conflicting: tuple[str, ...]
    options: tuple[TradeoffOption, ...]
    detect: Callable[[TripPreferences], Facts | None]


def _nights(prefs: TripPreferences) -> int:
    return prefs.nights or 7


def _detect_calm_water_vs_surf(prefs: TripPreferences) -> Facts | None:
    surf = next((a for a in prefs.selected_activities if a.type in SURF_TYPES), None)
    if surf is None or (surf.target_days or 0) < _nights(prefs) * 0.5:
        return None
    calm = [a.type for a in prefs.selected_activities if a.calm_water_required]
    if not calm:
        return None
    return {"surf": surf.type, "calm": sorted(calm)}


def _detect_one_base_vs_many_regions(prefs: TripPreferences) -> Facts | None:
    destination = prefs.destination
    if destination is None or destination.type not in (DestinationType.country, DestinationType.region):
        return None
    if prefs.max_bases < 3 or _nights(prefs) > 7:
        return None
    return {"destination": destination.key}


def _detect_adults_only_vs_nightlife(prefs: TripPreferences) -> Facts | None:
    if prefs.children > 0 and prefs.has_activity("nightlife"):
        return {"nightlife": True, "children": prefs.children}
    return None


def _detect_no_long_drives_vs_multi_stop(prefs: TripPreferences) -> Facts | None:
    if prefs.max_bases <= 1:
        return None
    phrases = [h for h in prefs.hard_nos if any(t in h.lower() for t in LONG_DRIVE_TERMS)]
    if not phrases:
        return None
    return {"hard_nos": sorted(phrases)}


def _detect_beach_vs_adventure(prefs: TripPreferences) -> Facts | None:
    must = [a.type for a in prefs.selected_activities if a.is_must_do]
    beach = sorted(t for t in must if t in BEACH_TYPES)
    adventure = sorted(t for t in must if t in ADVENTURE_TYPES)
    if beach and adventure:
        return {"beach": beach, "adventure": adventure}
    return None


def _detect_family_friendly_vs_party(prefs: TripPreferences) -> Facts | None:
    young = sorted(age for age in prefs.child_ages if age < 12)
    if not young:
        return None
    wanted = [v.lower() for v in prefs.vibes + prefs.hotel_vibe_preferences]
    if not any(v in PARTY_VIBES for v in wanted):
        return None
    return {"young_children": young}


def _option(option_id: str, label: str, impact: str) -> TradeoffOption:
    return TradeoffOption(id=option_id, label=label, impact=impact)


def _custom(impact: str) -> TradeoffOption:
    return _option(CUSTOM_OPTION, "Something else", impact)


TRADEOFF_RULES: tuple[TradeoffRule, ...] = (
    TradeoffRule(
        type=TradeoffType.calm_water_vs_surf,
        title="Surf every day vs calm water",
        description="Good surf breaks rarely have the flat water you want for swimming.",
        conflicting=("activities.surf", "activities.calm_water"),
        options=(
            _option("prioritize_surf", "Base near the surf", "Swimming happens at a few sheltered spots"),
            _option("prioritize_calm", "Base near calm beaches", "Up to three surf days with short transfers"),
            _option("split_bases", "Split the stay", "One transfer day, one base for each"),
            _custom("Tell me what matters most and I will plan around it"),
        ),
        detect=_detect_calm_water_vs_surf,
    ),
    TradeoffRule(
        type=TradeoffType.one_base_vs_many_regions,
        title="Many regions in a short trip",
        description="Three bases in a week means a lot of packing and driving.",
        conflicting=("max_bases", "dates"),
        options=(
            _option("reduce_bases", "Two bases", "Slower pace, fewer transfer days"),
            _option("single_base_day_trips", "One base with day trips", "No hotel changes, longer day drives"),
            _option("accept_packed", "Keep three bases", "More variety, less depth in each place"),
            _custom("Name the places you cannot skip"),
        ),
        detect=_detect_one_base_vs_many_regions,
    ),
    TradeoffRule(
        type=TradeoffType.adults_only_vs_nightlife,
        title="Nightlife with kids along",
        description="Late nights out are hard to combine with traveling children.",
        conflicting=("activities.nightlife", "party"),
        options=(
            _option("skip_nightlife", "Skip nightlife", "Evenings at the hotel and sunset dinners"),
            _option("occasional_nightlife", "One night out", "Needs a hotel with a kids club or sitter"),
            _option("split_evening_plans", "Take turns", "Each adult gets a night out"),
            _custom("Describe the evenings you have in mind"),
        ),
        detect=_detect_adults_only_vs_nightlife,
    ),
    TradeoffRule(
        type=TradeoffType.no_long_drives_vs_multi_stop,
        title="No long drives vs several bases",
        description="Moving between bases usually means a long transfer.",
        conflicting=("hard_nos", "max_bases"),
        options=(
            _option("adjacent_areas_only", "Neighboring areas only", "Fewer area choices, short transfers"),
            _option("domestic_flights", "Fly between bases", "Costs more, no long drives"),
            _option("single_base", "One base", "Day trips only, same bed every night"),
            _custom("Tell me the longest drive you would accept"),
        ),
        detect=_detect_no_long_drives_vs_multi_stop,
    ),
    TradeoffRule(
        type=TradeoffType.beach_vs_adventure,
        title="Beach time vs adventure",
        description="The best beaches and the best adventure spots are often far apart.",
        conflicting=("activities.beach", "activities.adventure"),
        options=(
            _option("alternating_days", "Alternate days", "A central base, mixed days"),
            _option("split_trip", "Split the trip", "Adventure base first, beach base to finish"),
            _option("adventure_first", "Adventure first", "Active start, slow finish"),
            _custom("Tell me how you want the days divided"),
        ),
        detect=_detect_beach_vs_adventure,
    ),
    TradeoffRule(
        type=TradeoffType.family_friendly_vs_party,
        title="Young kids vs a party vibe",
        description="Lively hotels tend to be loud late at night.",
        conflicting=("party", "vibe"),
        options=(
            _option("family_resort", "Family resort", "Kids club for downtime, pool bar for adults"),
            _option("quiet_hotel", "Quiet hotel, lively town", "Calm nights, nightlife nearby"),
            _option("adjacent_properties", "Neighboring properties", "Adults and kids in separate zones"),
            _custom("Describe what works for your group"),
        ),
        detect=_detect_family_friendly_vs_party,
    ),
)

RULES_BY_TYPE = {rule.type: rule for rule in TRADEOFF_RULES}


def tradeoff_id(tradeoff_type: TradeoffType, facts: Facts) -> str:
    digest = hashlib.sha256(json.dumps(facts, sort_keys=True, default=str).encode()).hexdigest()
    return f"{tradeoff_type.value}-{digest[:8]}"


def detect_tradeoffs(prefs: TripPreferences) -> list[Tradeoff]:
    """Run every rule against a preference snapshot, in table order."""
    found = []
    for rule in TRADEOFF_RULES:
        facts = rule.detect(prefs)
        if facts is None:
            continue
        found.append(
            Tradeoff(
                id=tradeoff_id(rule.type, facts),
                type=rule.type,
                title=rule.title,
                description=rule.description,
                conflicting=list(rule.conflicting),
                options=list(rule.options),
            )
        )
    return found


def active_tradeoffs(
    prefs: TripPreferences,
    resolutions: Sequence[TradeoffResolution],
) -> list[Tradeoff]:
    """Detected tradeoffs that have no resolution yet."""
    resolved = {r.tradeoff_id for r in resolutions}
    return [t for t in detect_tradeoffs(prefs) if t.id not in resolved]


def _set_intent(prefs: TripPreferences, activity_type: str, **changes: Any) -> list[ActivityIntent]:
    return [
        a.model_copy(update=changes) if a.type == activity_type else a
        for a in prefs.selected_activities
    ]


def _preference_effect(
    prefs: TripPreferences,
    option_id: str,
    custom_text: str | None,
    now: datetime,
) -> dict[str, Any]:
    """Field updates implied by an option; empty for options that change nothing."""
    match option_id:
        case "prioritize_surf":
            return {
                "selected_activities": [
                    a.model_copy(update={"priority": ActivityPriority.nice_to_have})
                    if a.calm_water_required
                    else a
                    for a in prefs.selected_activities
                ]
            }
        case "prioritize_calm":
            surf = next((a for a in prefs.selected_activities if a.type in SURF_TYPES), None)
            if surf is None:
                return {}
            return {
                "selected_activities": _set_intent(
                    prefs, surf.type, target_days=min(surf.target_days or 3, 3)
                )
            }
        case "split_bases" | "split_trip":
            return {"max_bases": max(prefs.max_bases, 2)}
        case "reduce_bases":
            return {"max_bases": 2}
        case "single_base_day_trips" | "single_base":
            return {"max_bases": 1}
        case "skip_nightlife":
            return {
                "selected_activities": [a for a in prefs.selected_activities if a.type != "nightlife"]
            }
        case "occasional_nightlife":
            return {
                "selected_activities": _set_intent(
                    prefs, "nightlife", priority=ActivityPriority.nice_to_have, target_days=1
                )
            }
        case "adjacent_areas_only":
            return {"prefer_adjacent_areas": True}
        case "family_resort":
            vibes = [v for v in prefs.hotel_vibe_preferences if v.lower() not in PARTY_VIBES]
            return {"hotel_vibe_preferences": [*vibes, "family"]}
        case "quiet_hotel":
            vibes = [v for v in prefs.hotel_vibe_preferences if v.lower() not in PARTY_VIBES]
            return {"hotel_vibe_preferences": [*vibes, "quiet"]}
        case "custom":
            note = UserNote(field="tradeoffs", note=custom_text or "", created_at=now)
            return {"user_notes": [*prefs.user_notes, note]}
        case _:
            return {}


def apply_resolution(
    prefs: TripPreferences,
    tradeoff: Tradeoff,
    option_id: str,
    custom_text: str | None = None,
    now: datetime | None = None,
) -> tuple[TripPreferences, TradeoffResolution]:
    """Apply a chosen option to a snapshot; the input is left untouched.

    Raises:
        ValueError: Unknown option, or a custom option without text
    """
    if option_id not in {o.id for o in tradeoff.options}:
        raise ValueError(f"Unknown option {option_id!r} for tradeoff {tradeoff.id}")
    if option_id == CUSTOM_OPTION and not (custom_text or "").strip():
        raise ValueError("A custom resolution needs a description")

    now = now or datetime.now(UTC)
    updates = _preference_effect(prefs, option_id, custom_text, now)
    new_prefs = prefs.model_copy(update=updates)

    resolution = TradeoffResolution(
        tradeoff_id=tradeoff.id,
        tradeoff_type=tradeoff.type,
        option_id=option_id,
        custom_text=custom_text,
        preference_changes={
            k: new_prefs.model_dump(mode="json", include={k})[k] for k in updates
        },
        resolved_at=now,
    )
    logger.info(
        "Tradeoff resolved",
        extra={
            "structured": {
                "tradeoff_id": tradeoff.id,
                "option_id": option_id,
                "changed_fields": sorted(updates),
            }
        },
    )
    return new_prefs, resolution


def find_contradictions(prefs: TripPreferences) -> list[PreferenceConflict]:
    """Hard contradictions that no tradeoff option can resolve."""
    conflicts = []
    if prefs.adults_only_required and prefs.children > 0:
        conflicts.append(
            PreferenceConflict(
                code="ADULTS_ONLY_WITH_CHILDREN",
                message="Adults-only hotels cannot host a party that includes children.",
                fields=["hotel_preferences", "party"],
            )
        )
    hard_nos = {h.strip().lower() for h in prefs.hard_nos}
    blocked = sorted(a.type for a in prefs.selected_activities if a.is_must_do and a.type in hard_nos)
    if blocked:
        conflicts.append(
            PreferenceConflict(
                code="MUST_DO_IS_HARD_NO",
                message=f"{', '.join(blocked)} is both a must-do and a hard no.",
                fields=["activities", "hard_nos"],
            )
        )
    if prefs.children and len(prefs.child_ages) > prefs.children:
        conflicts.append(
            PreferenceConflict(
                code="CHILD_AGES_MISMATCH",
                message=f"{len(prefs.child_ages)} ages given for {prefs.children} children.",
                fields=["party"],
            )
        )
    return conflicts
