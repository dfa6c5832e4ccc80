"""Text-generation collaborator for free-text questions.

Security: Reads API key from settings only, never hardcoded.
Provides a deterministic fallback when no key is present or the model keeps
returning output that violates the response schema.
"""

import json
import logging
from collections.abc import Sequence
from typing import Any, Protocol

from openai import AsyncOpenAI, OpenAIError
from pydantic import ValidationError

from backend.quickplan.config import Settings, get_settings
from backend.quickplan.models.assistant import AssistantResponse, AssistantResponseType
from backend.quickplan.models.evidence import Evidence
from backend.quickplan.models.preferences import TripPreferences
from backend.quickplan.models.questions import QuestionConfig, ReplyCard, ReplyCardType

logger = logging.getLogger(__name__)

MAX_EVIDENCE_LINES = 10


class AssistantResponseError(Exception):
    """Model output does not conform to the response schema."""


class LLMClient(Protocol):
    """Protocol for text-generation client implementations."""

    async def respond(
        self,
        *,
        message: str,
        prefs: TripPreferences,
        evidence: Sequence[Evidence] = (),
        pending_question: QuestionConfig | None = None,
    ) -> AssistantResponse:
        """Answer a free-text traveler message.

        Args:
            message: What the traveler typed
            prefs: Current preference snapshot
            evidence: Verified evidence the answer may draw on
            pending_question: The question the traveler has not answered yet

        Returns:
            AssistantResponse validated against the fixed schema
        """
        ...


def parse_assistant_response(raw: str | dict[str, Any]) -> AssistantResponse:
    """Validate model output, remapping type/category synonyms first.

    Raises:
        AssistantResponseError: Not JSON, or still invalid after remapping
    """
    try:
        data = json.loads(raw) if isinstance(raw, str) else raw
    except json.JSONDecodeError as e:
        raise AssistantResponseError(f"Response is not JSON: {e}") from e
    if not isinstance(data, dict):
        raise AssistantResponseError("Response must be a JSON object")
    try:
        return AssistantResponse.model_validate(data)
    except ValidationError as e:
        raise AssistantResponseError(str(e)) from e


def describe_card(card: ReplyCard) -> str:
    """One-line description of the expected reply, for prompts."""
    match card.type:
        case ReplyCardType.chips | ReplyCardType.chips_multi:
            return "choose from: " + ", ".join(o.label for o in card.options)
        case ReplyCardType.slider:
            return f"a number from {card.min} to {card.max} {card.unit}".rstrip()
        case ReplyCardType.date_range:
            return "travel dates or a number of nights"
        case ReplyCardType.destination:
            return "a destination"
        case ReplyCardType.party:
            return "number of adults and children, with children's ages"
        case (
            ReplyCardType.hotels
            | ReplyCardType.restaurants
            | ReplyCardType.activities
            | ReplyCardType.areas
            | ReplyCardType.split
        ):
            return f"pick from {len(card.candidate_ids)} {card.type.value}"
        case ReplyCardType.tradeoff:
            return "choose: " + ", ".join(o.label for o in card.tradeoff.options)
        case ReplyCardType.satisfaction:
            return "yes, almost or no"
        case ReplyCardType.text:
            return "free text"


class DeterministicStubClient:
    """Deterministic stub client for testing (no API key required)."""

    async def respond(
        self,
        *,
        message: str,
        prefs: TripPreferences,
        evidence: Sequence[Evidence] = (),
        pending_question: QuestionConfig | None = None,
    ) -> AssistantResponse:
        """Generate a deterministic clarification that steers back to the open question."""
        destination = prefs.destination.canonical_name if prefs.destination else "your trip"
        sources = len(evidence)
        reply = (
            f"I can't answer that in detail yet for {destination}. "
            f"I have {sources} verified source(s) so far and will use them once the plan is built."
        )
        return AssistantResponse(
            type=AssistantResponseType.clarification,
            message=reply,
            follow_up_question=pending_question.prompt if pending_question else None,
        )


class OpenAIClient:
    """OpenAI-backed client with strict response validation."""

    def __init__(self, api_key: str, model: str = "gpt-4o-mini", max_retries: int = 1):
        """Initialize OpenAI client.

        Args:
            api_key: OpenAI API key (read from settings)
            model: Model name to use
            max_retries: Re-prompts with a stricter instruction after schema violations
        """
        self.client = AsyncOpenAI(api_key=api_key)
        self.model = model
        self.max_retries = max_retries

    async def respond(
        self,
        *,
        message: str,
        prefs: TripPreferences,
        evidence: Sequence[Evidence] = (),
        pending_question: QuestionConfig | None = None,
    ) -> AssistantResponse:
        """Answer using the OpenAI API; falls back to the stub on repeated failure."""
        messages = [
            {"role": "system", "content": self._build_system_prompt()},
            {"role": "user", "content": self._build_context(message, prefs, evidence, pending_question)},
        ]

        for attempt in range(self.max_retries + 1):
            try:
                response = await self.client.chat.completions.create(
                    model=self.model,
                    messages=messages,
                    response_format={"type": "json_object"},
                    temperature=0.3,
                    max_tokens=800,
                )
            except OpenAIError as e:
                logger.error(f"OpenAI API call failed: {e}")
                break

            content = response.choices[0].message.content or ""
            try:
                return parse_assistant_response(content)
            except AssistantResponseError as e:
                logger.warning(
                    "Assistant response failed schema validation",
                    extra={"structured": {"attempt": attempt, "error": str(e)[:500]}},
                )
                messages.append({"role": "assistant", "content": content})
                messages.append({"role": "user", "content": self._stricter_instruction(str(e))})

        logger.warning("Falling back to deterministic stub client")
        stub = DeterministicStubClient()
        return await stub.respond(
            message=message,
            prefs=prefs,
            evidence=evidence,
            pending_question=pending_question,
        )

    def _build_system_prompt(self) -> str:
        """Build system prompt with the response schema."""
        return """You are a trip-planning assistant answering a traveler's side question.

Respond with a single JSON object and nothing else:
{"type": "question" | "recommendation" | "clarification" | "summary",
 "message": string,
 "recommendations": [{"name": string, "category": "hotel" | "restaurant" | "activity" | "area",
                      "reason": string, "placeId": string | null}],
 "followUpQuestion": string | null}

CRITICAL CONSTRAINTS:
- Only recommend places listed under "Verified Sources". Never invent places.
- If information is missing, say so rather than guessing.
- Keep the message under 120 words."""

    def _stricter_instruction(self, error: str) -> str:
        return (
            "Your previous reply did not match the schema: "
            f"{error[:300]}\n"
            "Reply again with ONLY the JSON object. Use exactly the listed values for "
            '"type" and "category", and no other keys.'
        )

    def _build_context(
        self,
        message: str,
        prefs: TripPreferences,
        evidence: Sequence[Evidence],
        pending_question: QuestionConfig | None,
    ) -> str:
        """Build context string from the preference snapshot."""
        lines = ["## Traveler Preferences"]
        if prefs.destination:
            lines.append(f"- Destination: {prefs.destination.canonical_name}")
        if prefs.nights:
            lines.append(f"- Nights: {prefs.nights}")
        if prefs.budget_per_night:
            lines.append(f"- Budget per night: ${prefs.budget_per_night.min}-${prefs.budget_per_night.max}")
        if prefs.selected_activities:
            lines.append(
                "- Activities: "
                + ", ".join(f"{a.type} ({a.priority.value})" for a in prefs.selected_activities)
            )
        if prefs.hard_nos:
            lines.append(f"- Hard nos: {', '.join(prefs.hard_nos)}")
        lines.append("")

        lines.append("## Verified Sources")
        if evidence:
            for e in list(evidence)[:MAX_EVIDENCE_LINES]:
                ref = e.place_id or e.url or e.source
                lines.append(f"- {e.title or e.source} [{ref}]")
        else:
            lines.append("- None yet")
        lines.append("")

        if pending_question:
            lines.append("## Open Question")
            lines.append(f"- {pending_question.prompt} (expects {describe_card(pending_question.card)})")
            lines.append("")

        lines.append("## Traveler Message")
        lines.append(message)
        return "\n".join(lines)


async def get_llm_client(settings: Settings | None = None) -> LLMClient:
    """Factory function to get the appropriate client based on config.

    Returns:
        OpenAIClient if API key is configured, DeterministicStubClient otherwise
    """
    settings = settings or get_settings()
    api_key = settings.openai_api_key

    if api_key and api_key.get_secret_value():
        logger.info("Using OpenAI client for assistant responses")
        return OpenAIClient(
            api_key=api_key.get_secret_value(),
            model=settings.openai_model,
            max_retries=settings.llm_max_retries,
        )
    logger.warning("No OpenAI API key configured, using deterministic stub client")
    return DeterministicStubClient()
