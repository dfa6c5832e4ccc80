"""Hotel ranking and per-stop shortlists."""

import math
from collections.abc import Collection, Sequence

from backend.quickplan.models.areas import ItineraryStop
from backend.quickplan.models.candidates import HotelCandidate, HotelShortlist
from backend.quickplan.models.common import BudgetRange
from backend.quickplan.models.preferences import TripPreferences

RATING_WEIGHT = 0.4
REVIEW_WEIGHT = 0.2
PRICE_WEIGHT = 0.3
VIBE_WEIGHT = 0.1


def price_fit(price: float | None, budget: BudgetRange | None) -> float:
    """1.0 inside the band, decaying outside it; unknown prices are neutral."""
    if price is None or budget is None:
        return 0.5
    if budget.min <= price <= budget.max:
        return 1.0
    if price > budget.max:
        over = (price - budget.max) / max(budget.max, 1)
        return max(0.0, 1.0 - 2 * over)
    return 0.8


def review_confidence(review_count: int | None) -> float:
    if not review_count:
        return 0.0
    return min(1.0, math.log10(review_count) / 3)


def vibe_match(hotel: HotelCandidate, prefs: TripPreferences) -> float:
    wanted = [v.lower() for v in prefs.hotel_vibe_preferences]
    bonus = 0.0
    if prefs.all_inclusive_preferred and hotel.is_all_inclusive:
        bonus += 0.5
    if prefs.adults_only_preferred and hotel.is_adults_only:
        bonus += 0.5
    if wanted:
        amenities = {a.lower() for a in hotel.amenities}
        bonus += len([w for w in wanted if w in amenities]) / len(wanted)
    return min(1.0, bonus)


def score_hotel(hotel: HotelCandidate, prefs: TripPreferences) -> float:
    rating = (hotel.rating or 0) / 5
    score = (
        RATING_WEIGHT * rating
        + REVIEW_WEIGHT * review_confidence(hotel.review_count)
        + PRICE_WEIGHT * price_fit(hotel.price_per_night, prefs.budget_per_night)
        + VIBE_WEIGHT * vibe_match(hotel, prefs)
    )
    return round(score, 4)


def is_eligible(hotel: HotelCandidate, prefs: TripPreferences) -> bool:
    """Hard filters: adults-only requirement and known accessibility gaps."""
    if prefs.adults_only_required and not hotel.is_adults_only:
        return False
    if prefs.children and hotel.is_adults_only:
        return False
    if prefs.accessibility_needs and hotel.wheelchair_accessible is False:
        return False
    return True


def rank_hotels(
    hotels: Sequence[HotelCandidate],
    prefs: TripPreferences,
    *,
    exclude: Collection[str] = (),
    cheaper_first: bool = False,
) -> list[HotelCandidate]:
    """Eligible hotels, best first. Cheaper-first puts known prices ahead, ascending."""
    scored = [
        h.model_copy(update={"overall_score": score_hotel(h, prefs)})
        for h in hotels
        if h.place_id not in exclude and is_eligible(h, prefs)
    ]
    if cheaper_first:
        scored.sort(
            key=lambda h: (
                h.price_per_night is None,
                h.price_per_night or 0,
                -h.overall_score,
                h.place_id,
            )
        )
    else:
        scored.sort(key=lambda h: (-h.overall_score, h.place_id))
    return scored


def build_shortlist(
    stop: ItineraryStop,
    area_name: str,
    hotels: Sequence[HotelCandidate],
    prefs: TripPreferences,
    size: int,
    *,
    exclude: Collection[str] = (),
    cheaper_first: bool = False,
) -> tuple[HotelShortlist, list[HotelCandidate]]:
    """Shortlist for one stop plus the re-scored hotels it references."""
    ranked = rank_hotels(hotels, prefs, exclude=exclude, cheaper_first=cheaper_first)[:size]
    ids = [h.place_id for h in ranked]
    selected = prefs.selected_hotels.get(stop.area_id)
    shortlist = HotelShortlist(
        stop_id=stop.stop_id,
        area_id=stop.area_id,
        area_name=area_name,
        hotel_ids=ids,
        selected_hotel_id=selected if selected in ids else None,
        default_hotel_id=ids[0] if ids else None,
    )
    return shortlist, ranked
