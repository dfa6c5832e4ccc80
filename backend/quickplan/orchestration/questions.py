"""Question prompts and reply cards per confidence field."""

from backend.quickplan.models.common import ConfidenceField
from backend.quickplan.models.questions import (
    CandidateListCard,
    ChipsCard,
    DateRangeCard,
    DestinationCard,
    PartyCard,
    QuestionConfig,
    ReplyCard,
    ReplyCardType,
    ReplyOption,
    SatisfactionCard,
    TextCard,
    TradeoffCard,
)
from backend.quickplan.orchestration.session import SessionContext
from backend.quickplan.orchestration.state_machine import PlanningState

TRADEOFF_FIELD = "tradeoff"
QUALITY_FIELD = "quality_override"

# (first prompt, narrower retry prompt)
PROMPTS: dict[str, tuple[str, str]] = {
    ConfidenceField.destination: (
        "Where do you want to go?",
        "Which country, region or city? For example: Dominican Republic.",
    ),
    ConfidenceField.dates: (
        "When are you traveling, or for how many nights?",
        "Give a start and end date (YYYY-MM-DD) or a number of nights.",
    ),
    ConfidenceField.party: (
        "Who's coming along?",
        "How many adults, how many children, and the children's ages?",
    ),
    ConfidenceField.budget: (
        "What's your hotel budget per night?",
        "Pick a range, or give a min and max in USD per night.",
    ),
    ConfidenceField.vibe: (
        "What vibe are you after?",
        "Pick one or more: relaxed, adventurous, party, romantic, family, foodie, cultural, nature.",
    ),
    ConfidenceField.hard_nos: (
        "Anything you definitely want to avoid?",
        "List things to avoid, or say none.",
    ),
    ConfidenceField.pace: (
        "How full should the days be?",
        "Choose chill, balanced or packed.",
    ),
    ConfidenceField.activities: (
        "What do you want to do there?",
        "Pick activities from the list; mark the ones you can't miss.",
    ),
    ConfidenceField.activity_intensity: (
        "Tell me more about those activities.",
        "For each activity: how many days, your level, and whether you need calm water.",
    ),
    TRADEOFF_FIELD: (
        "Some of your preferences pull in different directions. Which way should I lean?",
        "Pick one of the options, or describe your own.",
    ),
    QUALITY_FIELD: (
        "Some parts of the plan break your rules. Keep it anyway, or change your preferences?",
        "Say keep to accept the plan as is, or edit to change your preferences.",
    ),
    ConfidenceField.areas: (
        "These areas fit you best. Which ones interest you?",
        "Select one or more areas from the list.",
    ),
    ConfidenceField.split: (
        "How should we divide the nights?",
        "Pick one of the splits.",
    ),
    ConfidenceField.review_lock: (
        "Here's what I have. Lock it in and start building?",
        "Say lock to continue, or edit to change something.",
    ),
    ConfidenceField.hotel_preferences: (
        "Anything you need from the hotel?",
        "Pick any that apply, or no preference.",
    ),
    ConfidenceField.hotels: (
        "Pick a hotel for this stop.",
        "Choose one hotel from the shortlist.",
    ),
    ConfidenceField.dining_mode: (
        "How much should I plan your meals?",
        "Choose none, list, schedule or plan.",
    ),
    ConfidenceField.dining: (
        "Any restaurants you'd like to include?",
        "Select restaurants from the list, or skip.",
    ),
    ConfidenceField.final_review: (
        "Take a look at the plan. Want to change anything?",
        "Say looks good, or tell me what to change.",
    ),
    ConfidenceField.satisfaction: (
        "Does this plan work for you?",
        "Answer yes, almost or no. If almost, tell me what's off.",
    ),
}


def _chips(values: list[str] | list[tuple[str, str]], multi: bool = False, custom: bool = False) -> ChipsCard:
    options = [
        ReplyOption(id=v, label=v.replace("_", " ").capitalize()) if isinstance(v, str) else ReplyOption(id=v[0], label=v[1])
        for v in values
    ]
    return ChipsCard(
        type=ReplyCardType.chips_multi if multi else ReplyCardType.chips,
        options=options,
        allow_custom_text=custom,
    )


BUDGET_CHOICES = [
    ("under-150", "Under $150"),
    ("150-300", "$150-300"),
    ("300-500", "$300-500"),
    ("500-plus", "$500+"),
]
VIBE_CHOICES = ["relaxed", "adventurous", "party", "romantic", "family", "foodie", "cultural", "nature", "luxury", "local"]
HARD_NO_CHOICES = ["long drives", "party scene", "crowds", "big resorts", "cities"]
ACTIVITY_CHOICES = [
    "beach", "swimming", "surf", "kitesurf", "snorkel", "diving", "hiking", "adventure",
    "golf", "spa", "nightlife", "museum", "food_tour", "whale_watching",
]
HOTEL_PREFERENCE_CHOICES = ["adults_only", "all_inclusive", "accessible", "quiet", "family", "boutique", "no_preference"]
DESTINATION_SUGGESTIONS = ["Dominican Republic", "Lisbon", "Costa Rica", "Mexico"]


def _first_stop_without_hotel(session: SessionContext) -> tuple[str | None, list[str]]:
    shortlists = [s for s in session.hotel_shortlists if s.hotel_ids]
    for shortlist in shortlists:
        if shortlist.area_id not in session.preferences.selected_hotels:
            return shortlist.area_id, shortlist.hotel_ids
    first = shortlists[0] if shortlists else None
    return (first.area_id, first.hotel_ids) if first else (None, [])


def build_card(field: str, session: SessionContext) -> ReplyCard:
    """Reply card for a field, filled from the session catalog where relevant."""
    catalog = session.catalog
    match field:
        case ConfidenceField.destination:
            return DestinationCard(type=ReplyCardType.destination, suggestions=DESTINATION_SUGGESTIONS)
        case ConfidenceField.dates:
            return DateRangeCard(type=ReplyCardType.date_range)
        case ConfidenceField.party:
            return PartyCard(type=ReplyCardType.party)
        case ConfidenceField.budget:
            return _chips(BUDGET_CHOICES, custom=True)
        case ConfidenceField.vibe:
            return _chips(VIBE_CHOICES, multi=True, custom=True)
        case ConfidenceField.hard_nos:
            return _chips(HARD_NO_CHOICES, multi=True, custom=True)
        case ConfidenceField.pace:
            return _chips(["chill", "balanced", "packed"])
        case ConfidenceField.activities:
            return _chips(ACTIVITY_CHOICES, multi=True, custom=True)
        case ConfidenceField.activity_intensity:
            return TextCard(type=ReplyCardType.text, placeholder="surf 4 days, beginner; swimming calm water only")
        case ConfidenceField.areas:
            return CandidateListCard(type=ReplyCardType.areas, candidate_ids=list(catalog.areas), multi_select=True)
        case ConfidenceField.split:
            return CandidateListCard(type=ReplyCardType.split, candidate_ids=list(catalog.splits))
        case ConfidenceField.review_lock:
            return _chips([("lock", "Lock it in"), ("edit", "Edit something")])
        case ConfidenceField.hotel_preferences:
            return _chips(HOTEL_PREFERENCE_CHOICES, multi=True)
        case ConfidenceField.hotels:
            area_id, hotel_ids = _first_stop_without_hotel(session)
            return CandidateListCard(type=ReplyCardType.hotels, candidate_ids=hotel_ids, group_id=area_id)
        case ConfidenceField.dining_mode:
            return _chips(
                [
                    ("none", "I'll wing it"),
                    ("list", "Just a list"),
                    ("schedule", "Book some dinners"),
                    ("plan", "Plan every dinner"),
                ]
            )
        case ConfidenceField.dining:
            return CandidateListCard(
                type=ReplyCardType.restaurants, candidate_ids=list(catalog.restaurants), multi_select=True
            )
        case ConfidenceField.final_review:
            return _chips([("looks_good", "Looks good"), ("make_changes", "Make changes")], custom=True)
        case ConfidenceField.satisfaction:
            return SatisfactionCard(type=ReplyCardType.satisfaction)
        case "quality_override":
            return _chips([("keep", "Keep this plan"), ("edit", "Change my preferences")])
        case _:
            raise ValueError(f"No card for field {field!r}")


def _field_name(field: str) -> str:
    return field.value if isinstance(field, ConfidenceField) else field


def build_question(state: PlanningState, field: str, session: SessionContext, attempt: int = 0) -> QuestionConfig:
    """Question for a field; retries use the narrower prompt."""
    if field == TRADEOFF_FIELD:
        tradeoff = session.active_tradeoffs[0]
        card: ReplyCard = TradeoffCard(type=ReplyCardType.tradeoff, tradeoff=tradeoff)
        question_id = f"{state.value}:{tradeoff.id}"
        prompt = f"{tradeoff.title}. {tradeoff.description}"
        if attempt:
            prompt = PROMPTS[TRADEOFF_FIELD][1]
    else:
        card = build_card(field, session)
        question_id = f"{state.value}:{_field_name(field)}"
        prompt = PROMPTS[field][1 if attempt else 0]
        if field == QUALITY_FIELD and session.quality is not None:
            prompt = f"{session.quality.summary} {prompt}"
    return QuestionConfig(
        id=question_id,
        state=state.value,
        field=_field_name(field),
        prompt=prompt,
        card=card,
        attempt=attempt,
    )
