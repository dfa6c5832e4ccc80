"""Answer parsing per confidence field.

Each parser turns a raw reply into TripPreferences updates or raises
AnswerValidationError; parsers never mutate the session.
"""

import re
from collections.abc import Callable
from datetime import date
from typing import Any

from backend.quickplan.adapters.fixtures import normalize_text
from backend.quickplan.models.common import BudgetRange, ConfidenceField, DestinationType, DiningMode, PaceLevel
from backend.quickplan.models.preferences import ActivityIntent, ActivityPriority, DestinationContext
from backend.quickplan.orchestration.session import SessionContext

MAX_NIGHTS = 30
Updates = dict[str, Any]


class AnswerValidationError(Exception):
    """A reply could not be used for its field."""

    def __init__(self, field: str, reason: str) -> None:
        super().__init__(f"{field}: {reason}")
        self.field = field
        self.reason = reason


KNOWN_DESTINATIONS: dict[str, tuple[str, DestinationType, str | None]] = {
    "dominican republic": ("Dominican Republic", DestinationType.country, "DO"),
    "dr": ("Dominican Republic", DestinationType.country, "DO"),
    "punta cana": ("Punta Cana", DestinationType.resort, "DO"),
    "samana": ("Samaná", DestinationType.region, "DO"),
    "lisbon": ("Lisbon", DestinationType.city, "PT"),
    "lisboa": ("Lisbon", DestinationType.city, "PT"),
    "costa rica": ("Costa Rica", DestinationType.country, "CR"),
    "mexico": ("Mexico", DestinationType.country, "MX"),
    "portugal": ("Portugal", DestinationType.country, "PT"),
}

BUDGET_CHOICES: dict[str, tuple[int, int]] = {
    "under-150": (0, 150),
    "150-300": (150, 300),
    "300-500": (300, 500),
    "500-plus": (500, 1500),
}

ACTIVITY_SYNONYMS = {
    "surfing": "surf",
    "kitesurfing": "kitesurf",
    "kiteboarding": "kitesurf",
    "scuba": "diving",
    "scuba_diving": "diving",
    "snorkeling": "snorkel",
    "hike": "hiking",
    "museums": "museum",
    "beaches": "beach",
    "whales": "whale_watching",
    "food": "food_tour",
}

NONE_WORDS = {"none", "nothing", "no", "n/a", "nope"}


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _as_list(value: Any) -> list[Any]:
    if isinstance(value, str):
        return [p.strip() for p in re.split(r"[,;]", value) if p.strip()]
    if isinstance(value, (list, tuple, set)):
        return list(value)
    return []


def _activity_type(raw: str) -> str:
    key = normalize_text(raw).strip().replace(" ", "_").replace("-", "_")
    return ACTIVITY_SYNONYMS.get(key, key)


def _int(value: Any, field: str, name: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise AnswerValidationError(field, f"{name} must be a whole number") from e


def parse_destination(value: Any, session: SessionContext) -> Updates:
    if isinstance(value, dict):
        name = _text(value.get("name"))
        if not name:
            raise AnswerValidationError("destination", "missing destination name")
        dest_type = DestinationType(value.get("type", DestinationType.country))
        context = DestinationContext(
            raw_input=name, canonical_name=name, type=dest_type, country=value.get("country")
        )
        return {"destination": context}

    raw = _text(value)
    if len(raw) < 2:
        raise AnswerValidationError("destination", "destination is empty")
    known = KNOWN_DESTINATIONS.get(normalize_text(raw))
    if known:
        canonical, dest_type, country = known
    else:
        canonical, dest_type, country = raw.title(), DestinationType.country, None
    return {
        "destination": DestinationContext(
            raw_input=raw, canonical_name=canonical, type=dest_type, country=country
        )
    }


def parse_dates(value: Any, session: SessionContext) -> Updates:
    if isinstance(value, dict) and value.get("start"):
        try:
            start = value["start"] if isinstance(value["start"], date) else date.fromisoformat(value["start"])
            end = value["end"] if isinstance(value.get("end"), date) else date.fromisoformat(value["end"])
        except (KeyError, TypeError, ValueError) as e:
            raise AnswerValidationError("dates", "dates must be YYYY-MM-DD") from e
        nights = (end - start).days
        if nights < 1:
            raise AnswerValidationError("dates", "end date must be after start date")
        if nights > MAX_NIGHTS:
            raise AnswerValidationError("dates", f"trips longer than {MAX_NIGHTS} nights are not supported")
        return {"start_date": start, "end_date": end, "trip_length": nights}

    if isinstance(value, dict):
        value = value.get("nights")
    if isinstance(value, str):
        match = re.search(r"\d+", value)
        if match is None:
            raise AnswerValidationError("dates", "give dates or a number of nights")
        value = match.group()
    nights = _int(value, "dates", "nights")
    if not 1 <= nights <= MAX_NIGHTS:
        raise AnswerValidationError("dates", f"nights must be between 1 and {MAX_NIGHTS}")
    return {"trip_length": nights, "start_date": None, "end_date": None}


def parse_party(value: Any, session: SessionContext) -> Updates:
    if isinstance(value, str):
        adults = re.search(r"(\d+)\s*adult", value)
        children = re.search(r"(\d+)\s*(?:child|kid)", value)
        ages = re.search(r"\(([\d,\s]+)\)", value)
        value = {
            "adults": adults.group(1) if adults else None,
            "children": children.group(1) if children else 0,
            "child_ages": [a for a in re.split(r"[,\s]+", ages.group(1)) if a] if ages else [],
        }
    if not isinstance(value, dict) or value.get("adults") is None:
        raise AnswerValidationError("party", "say how many adults are traveling")

    adults = _int(value["adults"], "party", "adults")
    children = _int(value.get("children", 0), "party", "children")
    ages = [_int(a, "party", "child age") for a in value.get("child_ages", [])]
    if adults < 1:
        raise AnswerValidationError("party", "at least one adult must travel")
    if children < 0 or len(ages) > children:
        raise AnswerValidationError("party", "more ages than children")
    if any(not 0 <= a <= 17 for a in ages):
        raise AnswerValidationError("party", "child ages must be 0-17")
    return {"adults": adults, "children": children, "child_ages": ages}


def parse_budget(value: Any, session: SessionContext) -> Updates:
    if isinstance(value, str) and value.strip().lower() in BUDGET_CHOICES:
        low, high = BUDGET_CHOICES[value.strip().lower()]
    elif isinstance(value, dict):
        low, high = _int(value.get("min"), "budget", "min"), _int(value.get("max"), "budget", "max")
    elif isinstance(value, (list, tuple)) and len(value) == 2:
        low, high = _int(value[0], "budget", "min"), _int(value[1], "budget", "max")
    elif isinstance(value, str) and (numbers := re.findall(r"\d+", value.replace(",", ""))):
        low, high = (int(numbers[0]), int(numbers[-1])) if len(numbers) > 1 else (0, int(numbers[0]))
    else:
        raise AnswerValidationError("budget", "give a per-night range in USD")
    if low < 0 or high <= 0 or low > high:
        raise AnswerValidationError("budget", "minimum must not exceed maximum")
    return {"budget_per_night": BudgetRange(min=low, max=high)}


def parse_vibe(value: Any, session: SessionContext) -> Updates:
    vibes = [str(v).strip().lower() for v in _as_list(value) if str(v).strip()]
    if not vibes:
        raise AnswerValidationError("vibe", "pick at least one vibe")
    return {"vibes": list(dict.fromkeys(vibes))}


def parse_hard_nos(value: Any, session: SessionContext) -> Updates:
    items = [str(v).strip().lower() for v in _as_list(value) if str(v).strip()]
    if isinstance(value, str) and not items:
        raise AnswerValidationError("hard_nos", "list things to avoid, or say none")
    return {"hard_nos": [i for i in dict.fromkeys(items) if i not in NONE_WORDS]}


def parse_pace(value: Any, session: SessionContext) -> Updates:
    try:
        return {"pace": PaceLevel(_text(value).lower())}
    except ValueError as e:
        raise AnswerValidationError("pace", "choose chill, balanced or packed") from e


def parse_activities(value: Any, session: SessionContext) -> Updates:
    """Accepts a list of names ('surf!' marks a must-do), dicts, or {must_do, nice_to_have}."""
    if value == [] or (isinstance(value, str) and value.strip().lower() in NONE_WORDS):
        return {"selected_activities": []}

    entries: list[tuple[str, ActivityPriority]] = []
    if isinstance(value, dict):
        entries += [(str(v), ActivityPriority.must_do) for v in _as_list(value.get("must_do", []))]
        entries += [(str(v), ActivityPriority.nice_to_have) for v in _as_list(value.get("nice_to_have", []))]
    else:
        for item in _as_list(value):
            if isinstance(item, dict):
                priority = ActivityPriority(item.get("priority", ActivityPriority.nice_to_have))
                entries.append((str(item.get("type", "")), priority))
            else:
                text = str(item)
                must = text.endswith("!")
                entries.append(
                    (text.rstrip("!"), ActivityPriority.must_do if must else ActivityPriority.nice_to_have)
                )

    existing = {a.type: a for a in session.preferences.selected_activities}
    intents: dict[str, ActivityIntent] = {}
    for raw, priority in entries:
        activity_type = _activity_type(raw)
        if not activity_type:
            continue
        base = existing.get(activity_type) or ActivityIntent(type=activity_type)
        intents[activity_type] = base.model_copy(update={"priority": priority})
    if not intents:
        raise AnswerValidationError("activities", "pick at least one activity, or say none")
    return {"selected_activities": list(intents.values())}


INTENSITY_PATTERN = re.compile(r"(?P<type>[a-z_ ]+?)\s+(?P<days>\d+)\s*days?")


def parse_activity_intensity(value: Any, session: SessionContext) -> Updates:
    """Dict of type -> {target_days, skill_level, calm_water_required, must_be_in_season, priority}, or short text."""
    current = {a.type: a for a in session.preferences.selected_activities}
    details: dict[str, dict[str, Any]] = {}
    if isinstance(value, dict):
        details = {_activity_type(k): dict(v) for k, v in value.items() if isinstance(v, dict)}
    elif isinstance(value, str):
        for clause in re.split(r"[;\n]", value.lower()):
            clause = clause.strip()
            if not clause:
                continue
            activity_type = _activity_type(clause.split()[0].rstrip(","))
            info: dict[str, Any] = {}
            if m := INTENSITY_PATTERN.search(clause):
                info["target_days"] = int(m.group("days"))
            if "every day" in clause:
                info["target_days"] = session.preferences.nights or 7
            if "calm" in clause:
                info["calm_water_required"] = True
            if "in season" in clause:
                info["must_be_in_season"] = True
            for level in ("beginner", "intermediate", "advanced"):
                if level in clause:
                    info["skill_level"] = level
            details[activity_type] = info
    if not details:
        raise AnswerValidationError("activity_intensity", "describe days and level per activity")

    unknown = sorted(set(details) - set(current))
    if unknown:
        raise AnswerValidationError("activity_intensity", f"not in your activities: {', '.join(unknown)}")

    updated = []
    for intent in session.preferences.selected_activities:
        info = details.get(intent.type)
        if info is None:
            updated.append(intent)
            continue
        changes: dict[str, Any] = {}
        if info.get("target_days") is not None:
            days = _int(info["target_days"], "activity_intensity", "days")
            if days < 1:
                raise AnswerValidationError("activity_intensity", "days must be at least 1")
            changes["target_days"] = days
        for key in ("skill_level", "calm_water_required", "must_be_in_season"):
            if key in info:
                changes[key] = info[key]
        if "priority" in info:
            changes["priority"] = ActivityPriority(info["priority"])
        updated.append(intent.model_copy(update=changes))
    return {"selected_activities": updated}


def parse_areas(value: Any, session: SessionContext) -> Updates:
    ids = [str(v) for v in _as_list(value)]
    if not ids:
        raise AnswerValidationError("areas", "select at least one area")
    unknown = [i for i in ids if i not in session.catalog.areas]
    if unknown:
        raise AnswerValidationError("areas", f"unknown areas: {', '.join(unknown)}")
    if not any(session.catalog.areas[i].usable for i in ids):
        raise AnswerValidationError("areas", "every selected area conflicts with a hard no")
    return {"selected_areas": list(dict.fromkeys(ids))}


def parse_split(value: Any, session: SessionContext) -> Updates:
    split_id = _text(value)
    if split_id not in session.catalog.splits:
        raise AnswerValidationError("split", "pick one of the listed splits")
    return {"selected_split_id": split_id}


def parse_review_lock(value: Any, session: SessionContext) -> Updates:
    if value is True or _text(value).lower() in {"lock", "yes", "confirm", "ok"}:
        return {"preferences_locked": True}
    raise AnswerValidationError("review_lock", "say lock, or go back to edit")


def parse_hotel_preferences(value: Any, session: SessionContext) -> Updates:
    chosen = {str(v).strip().lower() for v in _as_list(value)}
    if not chosen:
        raise AnswerValidationError("hotel_preferences", "pick any that apply, or no preference")
    prefs = session.preferences
    vibes = sorted(chosen - {"adults_only", "all_inclusive", "accessible", "no_preference"})
    return {
        "adults_only_required": "adults_only" in chosen,
        "all_inclusive_preferred": "all_inclusive" in chosen,
        "accessibility_needs": ["wheelchair"] if "accessible" in chosen else prefs.accessibility_needs,
        "hotel_vibe_preferences": vibes or prefs.hotel_vibe_preferences,
    }


def parse_hotels(value: Any, session: SessionContext) -> Updates:
    hotels = session.catalog.hotels
    shortlisted = {s.area_id: set(s.hotel_ids) for s in session.hotel_shortlists}
    if isinstance(value, str):
        hotel = hotels.get(value.strip())
        if hotel is None:
            raise AnswerValidationError("hotels", "pick a hotel from the shortlist")
        value = {hotel.area_id: hotel.place_id}
    if not isinstance(value, dict) or not value:
        raise AnswerValidationError("hotels", "pick a hotel from the shortlist")
    for area_id, hotel_id in value.items():
        hotel = hotels.get(hotel_id)
        if hotel is None or hotel.area_id != area_id or (shortlisted and hotel_id not in shortlisted.get(area_id, ())):
            raise AnswerValidationError("hotels", f"{hotel_id} is not on the {area_id} shortlist")
    return {"selected_hotels": {**session.preferences.selected_hotels, **value}}


def parse_dining_mode(value: Any, session: SessionContext) -> Updates:
    try:
        return {"dining_mode": DiningMode(_text(value).lower())}
    except ValueError as e:
        raise AnswerValidationError("dining_mode", "choose none, list, schedule or plan") from e


def parse_dining(value: Any, session: SessionContext) -> Updates:
    selected: dict[str, list[str]] = {}
    for rid in _as_list(value):
        restaurant = session.catalog.restaurants.get(str(rid))
        if restaurant is None:
            raise AnswerValidationError("dining", f"unknown restaurant {rid}")
        selected.setdefault(restaurant.area_id, []).append(restaurant.id)
    return {"selected_restaurants": selected}


def parse_final_review(value: Any, session: SessionContext) -> Updates:
    if value is True or _text(value).lower() in {"looks_good", "looks good", "yes", "ok", "done"}:
        return {}
    raise AnswerValidationError("final_review", "say looks good, or tell me what to change")


PARSERS: dict[ConfidenceField, Callable[[Any, SessionContext], Updates]] = {
    ConfidenceField.destination: parse_destination,
    ConfidenceField.dates: parse_dates,
    ConfidenceField.party: parse_party,
    ConfidenceField.budget: parse_budget,
    ConfidenceField.vibe: parse_vibe,
    ConfidenceField.hard_nos: parse_hard_nos,
    ConfidenceField.pace: parse_pace,
    ConfidenceField.activities: parse_activities,
    ConfidenceField.activity_intensity: parse_activity_intensity,
    ConfidenceField.areas: parse_areas,
    ConfidenceField.split: parse_split,
    ConfidenceField.review_lock: parse_review_lock,
    ConfidenceField.hotel_preferences: parse_hotel_preferences,
    ConfidenceField.hotels: parse_hotels,
    ConfidenceField.dining_mode: parse_dining_mode,
    ConfidenceField.dining: parse_dining,
    ConfidenceField.final_review: parse_final_review,
}


def _default_areas(session: SessionContext) -> Updates:
    usable = [a.id for a in session.catalog.areas.values() if a.usable]
    return {"selected_areas": usable[: session.preferences.max_bases]}


def _default_split(session: SessionContext) -> Updates:
    first = next(iter(session.catalog.splits), None)
    return {"selected_split_id": first}


# Conservative values used once retries are exhausted; the field is marked inferred.
# Destination has no default and keeps being asked.
FIELD_DEFAULTS: dict[ConfidenceField, Callable[[SessionContext], Updates]] = {
    ConfidenceField.dates: lambda s: {"trip_length": 7},
    ConfidenceField.party: lambda s: {"adults": 2, "children": 0, "child_ages": []},
    ConfidenceField.budget: lambda s: {"budget_per_night": BudgetRange(min=150, max=300)},
    ConfidenceField.vibe: lambda s: {"vibes": ["relaxed"]},
    ConfidenceField.hard_nos: lambda s: {"hard_nos": []},
    ConfidenceField.pace: lambda s: {"pace": PaceLevel.balanced},
    ConfidenceField.activities: lambda s: {},
    ConfidenceField.activity_intensity: lambda s: {},
    ConfidenceField.areas: _default_areas,
    ConfidenceField.split: _default_split,
    ConfidenceField.review_lock: lambda s: {"preferences_locked": True},
    ConfidenceField.hotel_preferences: lambda s: {},
    ConfidenceField.hotels: lambda s: {},
    ConfidenceField.dining_mode: lambda s: {"dining_mode": DiningMode.list},
    ConfidenceField.dining: lambda s: {},
    ConfidenceField.final_review: lambda s: {},
}
