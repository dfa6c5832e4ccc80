"""Tests for the assistant client.

All tests are deterministic and do not make real network calls.
"""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from openai import OpenAIError
from pydantic import SecretStr

from backend.quickplan.config import Settings
from backend.quickplan.llm.client import (
    AssistantResponseError,
    DeterministicStubClient,
    OpenAIClient,
    describe_card,
    get_llm_client,
    parse_assistant_response,
)
from backend.quickplan.models.assistant import AssistantResponseType, RecommendationCategory
from backend.quickplan.models.common import BudgetRange
from backend.quickplan.models.evidence import Evidence, EvidenceType
from backend.quickplan.models.preferences import ActivityIntent, DestinationContext, TripPreferences
from backend.quickplan.models.questions import ChipsCard, QuestionConfig, ReplyCardType, ReplyOption


@pytest.fixture
def prefs() -> TripPreferences:
    """Preference snapshot for a week in the Dominican Republic."""
    return TripPreferences(
        destination=DestinationContext(raw_input="dr", canonical_name="Dominican Republic"),
        trip_length=7,
        budget_per_night=BudgetRange(min=150, max=300),
        selected_activities=[ActivityIntent(type="snorkel")],
    )


@pytest.fixture
def pace_question() -> QuestionConfig:
    """Open pace question."""
    return QuestionConfig(
        id="VIBE_AND_HARD_NOS:pace",
        state="VIBE_AND_HARD_NOS",
        field="pace",
        prompt="How full should the days be?",
        card=ChipsCard(
            type=ReplyCardType.chips,
            options=[ReplyOption(id=p, label=p.capitalize()) for p in ("chill", "balanced", "packed")],
        ),
    )


@pytest.fixture
def evidence() -> list[Evidence]:
    """Two verified sources."""
    return [
        Evidence(type=EvidenceType.place_reference, source="fixtures.places", place_id="fx-h-bay-1", title="Bay One"),
        Evidence(type=EvidenceType.operator_url, source="fixtures.web", url="https://example.com/snorkel"),
    ]


def mock_completion(content: str) -> MagicMock:
    response = MagicMock()
    response.choices = [MagicMock()]
    response.choices[0].message.content = content
    return response


GOOD_REPLY = json.dumps(
    {
        "type": "suggestions",
        "message": "Bayahibe has the calmest water.",
        "recommendations": [{"name": "Bay One", "category": "lodging", "placeId": "fx-h-bay-1"}],
        "followUpQuestion": "How full should the days be?",
    }
)


def test_parse_remaps_synonyms() -> None:
    """Test that type and category synonyms map onto the enumerations."""
    response = parse_assistant_response(GOOD_REPLY)

    assert response.type == AssistantResponseType.recommendation
    assert response.recommendations[0].category == RecommendationCategory.hotel
    assert response.recommendations[0].place_id == "fx-h-bay-1"
    assert response.follow_up_question == "How full should the days be?"


def test_parse_accepts_dict_and_case() -> None:
    """Test that dict input and mixed-case values are accepted."""
    response = parse_assistant_response({"type": " Clarification ", "message": "ok"})
    assert response.type == AssistantResponseType.clarification


@pytest.mark.parametrize(
    "raw",
    [
        "not json at all",
        "[1, 2]",
        json.dumps({"type": "poem", "message": "roses"}),
        json.dumps({"type": "summary", "message": ""}),
        json.dumps({"type": "summary", "message": "hi", "mood": "cheerful"}),
        json.dumps({"type": "recommendation", "message": "hi", "recommendations": [{"name": "x", "category": "spaceship"}]}),
    ],
)
def test_parse_rejects_invalid_output(raw: str) -> None:
    """Test that malformed or off-schema output raises."""
    with pytest.raises(AssistantResponseError):
        parse_assistant_response(raw)


def test_describe_card(pace_question: QuestionConfig) -> None:
    """Test the one-line reply description used in prompts."""
    assert describe_card(pace_question.card) == "choose from: Chill, Balanced, Packed"


@pytest.mark.asyncio
async def test_stub_steers_back_to_open_question(
    prefs: TripPreferences, pace_question: QuestionConfig, evidence: list[Evidence]
) -> None:
    """Test that the stub answers deterministically and repeats the open question."""
    client = DeterministicStubClient()

    first = await client.respond(message="Is it rainy?", prefs=prefs, evidence=evidence, pending_question=pace_question)
    second = await client.respond(message="Is it rainy?", prefs=prefs, evidence=evidence, pending_question=pace_question)

    assert first == second
    assert first.type == AssistantResponseType.clarification
    assert "Dominican Republic" in first.message
    assert "2 verified source(s)" in first.message
    assert first.follow_up_question == "How full should the days be?"


@pytest.mark.asyncio
async def test_stub_without_destination() -> None:
    """Test the stub before anything is known."""
    response = await DeterministicStubClient().respond(message="hi", prefs=TripPreferences())

    assert "your trip" in response.message
    assert response.follow_up_question is None


def test_context_lists_preferences_and_sources(
    prefs: TripPreferences, pace_question: QuestionConfig, evidence: list[Evidence]
) -> None:
    """Test that OpenAIClient builds the context from the snapshot."""
    client = OpenAIClient(api_key="test_key")

    context = client._build_context("Where is the calmest beach?", prefs, evidence, pace_question)

    assert "- Destination: Dominican Republic" in context
    assert "- Nights: 7" in context
    assert "- Budget per night: $150-$300" in context
    assert "snorkel (nice_to_have)" in context
    assert "- Bay One [fx-h-bay-1]" in context
    assert "[https://example.com/snorkel]" in context
    assert "(expects choose from: Chill, Balanced, Packed)" in context
    assert context.endswith("Where is the calmest beach?")


@pytest.mark.asyncio
async def test_openai_client_reprompts_after_schema_violation(
    prefs: TripPreferences, pace_question: QuestionConfig
) -> None:
    """Test that a bad reply is followed by a stricter re-prompt."""
    client = OpenAIClient(api_key="test_key", max_retries=1)
    client.client = AsyncMock()
    client.client.chat.completions.create = AsyncMock(
        side_effect=[mock_completion('{"type": "poem"}'), mock_completion(GOOD_REPLY)]
    )

    response = await client.respond(message="Where to stay?", prefs=prefs, pending_question=pace_question)

    assert response.type == AssistantResponseType.recommendation
    assert client.client.chat.completions.create.await_count == 2
    retry_messages = client.client.chat.completions.create.await_args.kwargs["messages"]
    assert retry_messages[-2] == {"role": "assistant", "content": '{"type": "poem"}'}
    assert "did not match the schema" in retry_messages[-1]["content"]


@pytest.mark.asyncio
async def test_openai_client_falls_back_after_retries(
    prefs: TripPreferences, pace_question: QuestionConfig
) -> None:
    """Test that repeated schema violations end in the stub answer."""
    client = OpenAIClient(api_key="test_key", max_retries=1)
    client.client = AsyncMock()
    client.client.chat.completions.create = AsyncMock(return_value=mock_completion("nope"))

    response = await client.respond(message="Where to stay?", prefs=prefs, pending_question=pace_question)

    assert client.client.chat.completions.create.await_count == 2
    assert response.type == AssistantResponseType.clarification
    assert response.follow_up_question == pace_question.prompt


@pytest.mark.asyncio
async def test_openai_client_falls_back_on_api_error(prefs: TripPreferences) -> None:
    """Test that an API error goes straight to the stub."""
    client = OpenAIClient(api_key="test_key", max_retries=3)
    client.client = AsyncMock()
    client.client.chat.completions.create = AsyncMock(side_effect=OpenAIError("connection reset"))

    response = await client.respond(message="hello", prefs=prefs)

    assert client.client.chat.completions.create.await_count == 1
    assert "Dominican Republic" in response.message


@pytest.mark.asyncio
async def test_get_llm_client_without_key() -> None:
    """Test that the factory returns the stub without an API key."""
    client = await get_llm_client(Settings(_env_file=None, openai_api_key=None))
    assert isinstance(client, DeterministicStubClient)


@pytest.mark.asyncio
async def test_get_llm_client_with_key() -> None:
    """Test that the factory returns the OpenAI client when a key is set."""
    settings = Settings(_env_file=None, openai_api_key=SecretStr("sk-test"), openai_model="gpt-4o", llm_max_retries=2)

    client = await get_llm_client(settings)

    assert isinstance(client, OpenAIClient)
    assert client.model == "gpt-4o"
    assert client.max_retries == 2
