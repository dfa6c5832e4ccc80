"""Question and reply-card models exchanged with the rendering layer."""

from enum import Enum
from typing import Annotated, Literal

from pydantic import BaseModel, Field

from backend.quickplan.models.satisfaction import SatisfactionIssueCategory
from backend.quickplan.models.tradeoffs import Tradeoff


class ReplyCardType(str, Enum):
    chips = "chips"
    chips_multi = "chips-multi"
    slider = "slider"
    date_range = "date-range"
    destination = "destination"
    party = "party"
    hotels = "hotels"
    restaurants = "restaurants"
    activities = "activities"
    tradeoff = "tradeoff"
    areas = "areas"
    split = "split"
    satisfaction = "satisfaction"
    text = "text"


class ReplyOption(BaseModel):
    id: str
    label: str
    description: str | None = None


class ChipsCard(BaseModel):
    type: Literal[ReplyCardType.chips, ReplyCardType.chips_multi]
    options: list[ReplyOption]
    allow_custom_text: bool = False


class SliderCard(BaseModel):
    type: Literal[ReplyCardType.slider]
    min: int
    max: int
    step: int = 1
    unit: str = ""


class DateRangeCard(BaseModel):
    type: Literal[ReplyCardType.date_range]
    allow_length_only: bool = True
    max_nights: int = 30


class DestinationCard(BaseModel):
    type: Literal[ReplyCardType.destination]
    suggestions: list[str] = Field(default_factory=list)


class PartyCard(BaseModel):
    type: Literal[ReplyCardType.party]
    max_adults: int = 10
    max_children: int = 8


class CandidateListCard(BaseModel):
    """Pick from catalog entries; ids reference the session catalog."""

    type: Literal[
        ReplyCardType.hotels,
        ReplyCardType.restaurants,
        ReplyCardType.activities,
        ReplyCardType.areas,
        ReplyCardType.split,
    ]
    candidate_ids: list[str]
    multi_select: bool = False
    group_id: str | None = None  # Stop or area the list belongs to


class TradeoffCard(BaseModel):
    type: Literal[ReplyCardType.tradeoff]
    tradeoff: Tradeoff
    allow_custom_text: bool = True


class SatisfactionCard(BaseModel):
    type: Literal[ReplyCardType.satisfaction]
    categories: list[SatisfactionIssueCategory] = Field(
        default_factory=lambda: list(SatisfactionIssueCategory)
    )


class TextCard(BaseModel):
    type: Literal[ReplyCardType.text]
    placeholder: str = ""


ReplyCard = Annotated[
    ChipsCard
    | SliderCard
    | DateRangeCard
    | DestinationCard
    | PartyCard
    | CandidateListCard
    | TradeoffCard
    | SatisfactionCard
    | TextCard,
    Field(discriminator="type"),
]


class QuestionConfig(BaseModel):
    """The next thing to ask the traveler."""

    id: str
    state: str
    field: str
    prompt: str
    card: ReplyCard
    attempt: int = 0
    required: bool = True
