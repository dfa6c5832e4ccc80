"""Area and split scoring.

Every function here is pure: inputs are snapshots, outputs are new objects.
"""

import itertools
import logging
import math
import re
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from backend.quickplan.config import Settings
from backend.quickplan.models.areas import AreaCandidate, AreaProfile, ItinerarySplit, ItineraryStop
from backend.quickplan.models.common import BudgetRange, Tier
from backend.quickplan.models.preferences import ActivityIntent, TripPreferences

logger = logging.getLogger(__name__)

# Area strength tags that satisfy an activity type
ACTIVITY_AREA_STRENGTHS: dict[str, set[str]] = {
    "surf": {"surf_breaks"},
    "kitesurf": {"kitesurfing"},
    "swimming": {"calm_beaches", "beaches"},
    "beach": {"beaches", "calm_beaches"},
    "snorkel": {"snorkeling"},
    "snorkeling": {"snorkeling"},
    "diving": {"diving"},
    "dive": {"diving"},
    "hiking": {"hiking", "waterfalls"},
    "adventure": {"adventure", "rafting"},
    "nightlife": {"nightlife"},
    "golf": {"golf"},
    "museum": {"museums", "history"},
    "food_tour": {"food"},
    "spa": {"spa", "all_inclusive"},
    "whale_watching": {"whale_watching"},
    "shopping": {"shopping"},
    "water_sports": {"water_sports", "surf_breaks", "kitesurfing"},
    "day_trip": {"island_trips"},
}

# Calm-water activities need sheltered beaches specifically
CALM_WATER_STRENGTHS = {"calm_beaches"}

VIBE_AREA_TAGS: dict[str, set[str]] = {
    "relaxed": {"relaxed", "quiet", "calm_beaches"},
    "adventurous": {"adventurous", "adventure", "hiking"},
    "party": {"party", "nightlife", "lively"},
    "lively": {"lively", "social", "nightlife"},
    "romantic": {"romantic", "luxury"},
    "family": {"family"},
    "foodie": {"foodie", "food"},
    "cultural": {"cultural", "history", "museums"},
    "nature": {"nature", "hiking", "waterfalls"},
    "luxury": {"luxury"},
    "local": {"local", "off-the-beaten-path"},
    "quiet": {"quiet", "relaxed"},
}

# Substrings of a hard-no phrase and the area tags they rule out
HARD_NO_AREA_TAGS: dict[str, set[str]] = {
    "party": {"party", "nightlife"},
    "nightlife": {"nightlife", "party"},
    "crowd": {"lively", "social"},
    "city": {"urban", "city"},
    "cities": {"urban", "city"},
    "urban": {"urban", "city"},
    "resort": {"resort_zone", "all_inclusive"},
    "all inclusive": {"all_inclusive"},
    "all-inclusive": {"all_inclusive"},
    "touristy": {"resort_zone"},
    "remote": {"off-the-beaten-path"},
    "mountain": {"mountain_town"},
}

LUXURY_FLOOR = 400
MID_FLOOR = 150

BUDGET_FIT: dict[str, dict[Tier, float]] = {
    "luxury": {Tier.luxury: 1.0, Tier.mid: 0.7, Tier.budget: 0.5},
    "mid": {Tier.mid: 1.0, Tier.budget: 0.8, Tier.luxury: 0.6},
    "budget": {Tier.budget: 1.0, Tier.mid: 0.6, Tier.luxury: 0.3},
}


@dataclass(frozen=True)
class AreaWeights:
    """Linear weights for the overall area score."""

    activity: float = 0.4
    vibe: float = 0.35
    budget: float = 0.25

    @classmethod
    def from_settings(cls, settings: Settings) -> "AreaWeights":
        return cls(
            activity=settings.area_weight_activity,
            vibe=settings.area_weight_vibe,
            budget=settings.area_weight_budget,
        )


def slugify(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")


def _area_tags(profile: AreaProfile) -> set[str]:
    return set(profile.strengths) | set(profile.vibes) | {profile.type}


def _supports(profile: AreaProfile, intent: ActivityIntent) -> bool:
    if intent.calm_water_required:
        return bool(set(profile.strengths) & CALM_WATER_STRENGTHS)
    wanted = ACTIVITY_AREA_STRENGTHS.get(intent.type, {intent.type})
    return bool(set(profile.strengths) & wanted)


def activity_fit(profile: AreaProfile, intents: Sequence[ActivityIntent]) -> float:
    """Weighted share of activity intents the area supports (must-do 1.5, nice-to-have 1)."""
    if not intents:
        return 0.5
    total = matched = 0.0
    for intent in intents:
        weight = 1.5 if intent.is_must_do else 1.0
        total += weight
        if _supports(profile, intent):
            matched += weight
    return round(matched / total, 4)


def vibe_fit(profile: AreaProfile, prefs: TripPreferences) -> float:
    """Share of stated vibes and must-dos the area reflects."""
    tags = _area_tags(profile)
    wanted = [v.lower() for v in prefs.vibes] + [m.lower() for m in prefs.must_dos]
    if not wanted:
        return 0.5
    matched = 0
    for item in wanted:
        expansions = VIBE_AREA_TAGS.get(item, {item.replace(" ", "_")})
        readable = {t.replace("_", " ") for t in tags}
        if expansions & tags or any(tag in item for tag in readable):
            matched += 1
    return round(matched / len(wanted), 4)


def budget_fit(profile: AreaProfile, budget: BudgetRange | None) -> float:
    """Closeness of the area's cost tier to the per-night budget band."""
    if budget is None:
        return 0.5
    if budget.midpoint >= LUXURY_FLOOR:
        band = "luxury"
    elif budget.midpoint >= MID_FLOOR:
        band = "mid"
    else:
        band = "budget"
    return BUDGET_FIT[band][profile.cost_tier]


def hard_no_hits(profile: AreaProfile, hard_nos: Sequence[str]) -> list[str]:
    """Hard-nos the area conflicts with."""
    tags = _area_tags(profile)
    hits = []
    for phrase in hard_nos:
        text = phrase.strip().lower()
        ruled_out = {text.replace(" ", "_")}
        for key, area_tags in HARD_NO_AREA_TAGS.items():
            if key in text:
                ruled_out |= area_tags
        if ruled_out & tags:
            hits.append(phrase)
    return hits


def score_area(profile: AreaProfile, prefs: TripPreferences, weights: AreaWeights) -> AreaCandidate:
    """Score one area; any hard-no hit forces the area unusable with a zero score."""
    intents = prefs.selected_activities
    a_fit = activity_fit(profile, intents)
    v_fit = vibe_fit(profile, prefs)
    b_fit = budget_fit(profile, prefs.budget_per_night)
    hits = hard_no_hits(profile, prefs.hard_nos)

    overall = weights.activity * a_fit + weights.vibe * v_fit + weights.budget * b_fit
    overall = round(min(1.0, max(0.0, overall)), 4)

    why = [f"Good for {i.type.replace('_', ' ')}" for i in intents if _supports(profile, i)]
    caveats = [f"Conflicts with hard-no: {h}" for h in hits]
    caveats += [f"Not ideal for {n}" for n in profile.not_ideal_for]
    if profile.low_hotel_inventory:
        caveats.append("Few hotels found in this area")

    must_do_matches = sum(1 for i in intents if i.is_must_do and _supports(profile, i))
    nights = prefs.nights or 7
    suggested = max(1, min(2 + min(2, must_do_matches), math.ceil(nights / 2)))

    return AreaCandidate(
        id=profile.id,
        name=profile.name,
        type=profile.type,
        description=profile.description,
        region=profile.region,
        activity_fit_score=a_fit,
        vibe_fit_score=v_fit,
        budget_fit_score=b_fit,
        overall_score=0.0 if hits else overall,
        usable=not hits,
        best_for=profile.best_for,
        not_ideal_for=profile.not_ideal_for,
        why_it_fits=why,
        caveats=caveats,
        overlaps=profile.overlaps,
        center=profile.center,
        evidence=profile.evidence,
        confidence_score=round(min(1.0, 0.4 + 0.15 * len(profile.evidence)), 2),
        suggested_nights=suggested,
        hotel_count=profile.hotel_count,
        low_hotel_inventory=profile.low_hotel_inventory,
        needs_hotel_indexing=profile.needs_hotel_indexing,
    )


def score_areas(
    profiles: Sequence[AreaProfile],
    prefs: TripPreferences,
    settings: Settings,
) -> list[AreaCandidate]:
    """Score and rank areas: usable first, then overall score, then id."""
    weights = AreaWeights.from_settings(settings)
    scored = [score_area(p, prefs, weights) for p in profiles]
    scored.sort(key=lambda a: (not a.usable, -a.overall_score, a.id))

    nights = prefs.nights or 7
    limit = min(settings.max_area_candidates, max(settings.min_area_candidates, math.ceil(nights / 2) + 2))
    return scored[:limit]


def _allocations(count: int, nights: int, weights: Sequence[int]) -> list[tuple[int, ...]]:
    """Distinct night allocations: even split and a weighted split; each stop >= 1 night."""
    if count > nights:
        return []
    base, remainder = divmod(nights, count)
    even = tuple(base + (1 if i < remainder else 0) for i in range(count))

    total_weight = sum(weights) or count
    weighted = [max(1, round(nights * w / total_weight)) for w in weights]
    # Settle rounding drift on the largest stop, keeping every stop >= 1
    drift = nights - sum(weighted)
    order = sorted(range(count), key=lambda i: -weighted[i])
    idx = 0
    while drift != 0 and idx < 10 * count:
        i = order[idx % count]
        if drift > 0:
            weighted[i] += 1
            drift -= 1
        elif weighted[i] > 1:
            weighted[i] -= 1
            drift += 1
        idx += 1

    allocations = [even]
    if sum(weighted) == nights and tuple(weighted) != even:
        allocations.append(tuple(weighted))
    return allocations


def _overlapping(areas: Sequence[AreaCandidate]) -> bool:
    for a, b in itertools.combinations(areas, 2):
        if a.id in b.overlaps or b.id in a.overlaps:
            return True
    return False


def _friction(areas: Sequence[AreaCandidate], settings: Settings, prefer_adjacent: bool) -> float:
    friction = 0.0
    for prev, nxt in itertools.pairwise(areas):
        cost = settings.split_transfer_cost
        if prefer_adjacent and prev.region != nxt.region:
            cost *= settings.split_cross_region_multiplier
        friction += cost
    return round(friction, 4)


def build_split(
    areas: Sequence[AreaCandidate],
    nights_per_stop: Sequence[int],
    settings: Settings,
    *,
    prefer_adjacent: bool = False,
) -> ItinerarySplit:
    """Build a split with contiguous stop days (day 1 = arrival)."""
    stops: list[ItineraryStop] = []
    day = 1
    for order, (area, nights) in enumerate(zip(areas, nights_per_stop, strict=True)):
        stops.append(
            ItineraryStop(
                area_id=area.id,
                nights=nights,
                order=order,
                arrival_day=day,
                departure_day=day + nights,
                travel_day_before=order > 0,
            )
        )
        day += nights

    fit = round(sum(a.overall_score for a in areas) / len(areas), 4)
    friction = _friction(areas, settings, prefer_adjacent)
    short_stays = sum(1 for n in nights_per_stop if n < 2)
    feasibility = round(max(0.0, 1.0 - 0.2 * short_stays - friction), 4)

    tradeoffs: list[str] = []
    if len(areas) > 1:
        tradeoffs.append(f"{len(areas) - 1} transfer day(s)")
    if short_stays:
        tradeoffs.append(f"{short_stays} single-night stop(s)")

    return ItinerarySplit(
        id="split-" + "-".join(f"{a.id}{n}" for a, n in zip(areas, nights_per_stop, strict=True)),
        name=" + ".join(f"{n} nights {a.name}" for a, n in zip(areas, nights_per_stop, strict=True)),
        stops=stops,
        fit_score=fit,
        friction_score=friction,
        feasibility_score=feasibility,
        why_this_works="; ".join(
            f"{a.name}: {', '.join(a.why_it_fits) or a.description}" for a in areas
        ),
        tradeoffs=tradeoffs,
    )


def generate_splits(
    areas: Sequence[AreaCandidate],
    nights: int,
    max_bases: int,
    settings: Settings,
    *,
    prefer_adjacent: bool = False,
) -> list[ItinerarySplit]:
    """Enumerate and rank splits over the top usable, non-overlapping areas.

    Ranked by fit minus friction; ties go to fewer bases, then id.
    """
    pool = [a for a in areas if a.usable][: settings.split_candidate_areas]
    if not pool or nights < 1:
        return []

    splits: dict[str, ItinerarySplit] = {}
    for count in range(1, min(max_bases, nights, len(pool)) + 1):
        for combo in itertools.combinations(pool, count):
            if _overlapping(combo):
                continue
            for allocation in _allocations(count, nights, [a.suggested_nights for a in combo]):
                split = build_split(combo, allocation, settings, prefer_adjacent=prefer_adjacent)
                splits[split.id] = split

    ranked = sorted(
        splits.values(),
        key=lambda s: (-round(s.rank_score, 6), len(s.stops), s.id),
    )
    top = ranked[: settings.max_split_options]
    logger.info(
        "Generated splits",
        extra={"structured": _split_log(top, len(splits))},
    )
    return top


def _split_log(top: Sequence[ItinerarySplit], considered: int) -> dict[str, Any]:
    return {
        "considered": considered,
        "ranked": [
            {
                "id": s.id,
                "fit": s.fit_score,
                "friction": s.friction_score,
                "rank_score": round(s.rank_score, 4),
            }
            for s in top
        ],
    }
