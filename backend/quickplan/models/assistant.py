"""Text-generation collaborator response schema.

Category and type values outside the enumerations are remapped from common
synonyms before validation; anything still unknown is rejected.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator


class AssistantResponseType(str, Enum):
    question = "question"
    recommendation = "recommendation"
    clarification = "clarification"
    summary = "summary"


class RecommendationCategory(str, Enum):
    hotel = "hotel"
    restaurant = "restaurant"
    activity = "activity"
    area = "area"


RESPONSE_TYPE_SYNONYMS: dict[str, AssistantResponseType] = {
    "ask": AssistantResponseType.question,
    "questions": AssistantResponseType.question,
    "follow_up": AssistantResponseType.question,
    "recommendations": AssistantResponseType.recommendation,
    "suggestion": AssistantResponseType.recommendation,
    "suggestions": AssistantResponseType.recommendation,
    "recommend": AssistantResponseType.recommendation,
    "clarify": AssistantResponseType.clarification,
    "answer": AssistantResponseType.clarification,
    "info": AssistantResponseType.clarification,
    "overview": AssistantResponseType.summary,
    "recap": AssistantResponseType.summary,
}

CATEGORY_SYNONYMS: dict[str, RecommendationCategory] = {
    "hotels": RecommendationCategory.hotel,
    "lodging": RecommendationCategory.hotel,
    "accommodation": RecommendationCategory.hotel,
    "resort": RecommendationCategory.hotel,
    "stay": RecommendationCategory.hotel,
    "restaurants": RecommendationCategory.restaurant,
    "food": RecommendationCategory.restaurant,
    "dining": RecommendationCategory.restaurant,
    "meal": RecommendationCategory.restaurant,
    "activities": RecommendationCategory.activity,
    "experience": RecommendationCategory.activity,
    "tour": RecommendationCategory.activity,
    "attraction": RecommendationCategory.activity,
    "areas": RecommendationCategory.area,
    "neighborhood": RecommendationCategory.area,
    "neighbourhood": RecommendationCategory.area,
    "region": RecommendationCategory.area,
    "town": RecommendationCategory.area,
}


def _normalize(value: Any, enum_cls: type[Enum], synonyms: dict[str, Any]) -> Any:
    if not isinstance(value, str):
        return value
    key = value.strip().lower().replace("-", "_").replace(" ", "_")
    if key in enum_cls._value2member_map_:
        return key
    return synonyms.get(key, value)


class Recommendation(BaseModel):
    model_config = {"populate_by_name": True}

    name: str
    category: RecommendationCategory
    reason: str = ""
    place_id: str | None = Field(default=None, alias="placeId")

    @field_validator("category", mode="before")
    @classmethod
    def remap_category(cls, v: Any) -> Any:
        """Map common synonyms onto the enumerated categories."""
        return _normalize(v, RecommendationCategory, CATEGORY_SYNONYMS)


class AssistantResponse(BaseModel):
    """Strictly validated text-generation output."""

    model_config = {"extra": "forbid", "populate_by_name": True}

    type: AssistantResponseType
    message: str = Field(..., min_length=1)
    recommendations: list[Recommendation] = Field(default_factory=list)
    follow_up_question: str | None = Field(default=None, alias="followUpQuestion")

    @field_validator("type", mode="before")
    @classmethod
    def remap_type(cls, v: Any) -> Any:
        """Map common synonyms onto the enumerated response types."""
        return _normalize(v, AssistantResponseType, RESPONSE_TYPE_SYNONYMS)
