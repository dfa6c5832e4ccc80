"""Unit tests for the planning orchestrator.

Runs whole conversations against the bundled fixture collaborators.
"""

import json
from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from backend.quickplan.enrichment.pipeline import EnrichmentOrderError, EnrichmentResult
from backend.quickplan.llm.client import OpenAIClient
from backend.quickplan.models.candidates import HotelCandidate
from backend.quickplan.models.common import (
    ConfidenceField,
    ConfidenceLevel,
    DiningMode,
    EnrichmentStatus,
    EnrichmentType,
    PaceLevel,
)
from backend.quickplan.models.evidence import Evidence, EvidenceType
from backend.quickplan.models.questions import QuestionConfig, ReplyCardType
from backend.quickplan.orchestration.orchestrator import QuickPlanOrchestrator, StateTransitionError
from backend.quickplan.orchestration.questions import QUALITY_FIELD, TRADEOFF_FIELD
from backend.quickplan.orchestration.state_machine import PlanningState

F = ConfidenceField
Factory = Callable[..., QuickPlanOrchestrator]

PROFILE_ANSWERS: list[tuple[str, Any]] = [
    ("destination", "Dominican Republic"),
    ("dates", {"start": "2026-03-01", "end": "2026-03-08"}),
    ("party", "2 adults"),
    ("budget", "150-300"),
    ("vibe", "relaxed"),
    ("hard_nos", "none"),
    ("pace", "balanced"),
    ("activities", ["snorkel!", "beach"]),
    ("activity_intensity", "snorkel 2 days"),
]


async def answer_next(orch: QuickPlanOrchestrator, field: str, value: Any) -> QuestionConfig:
    question = await orch.next_question()
    assert question is not None
    assert question.field == field
    outcome = orch.answer(field, value)
    assert outcome.accepted, outcome.error
    return question


async def answer_profile(orch: QuickPlanOrchestrator, answers: list[tuple[str, Any]] | None = None) -> None:
    overrides = dict(answers or [])
    for field, value in PROFILE_ANSWERS:
        await answer_next(orch, field, overrides.get(field, value))


async def plan_trip(
    orch: QuickPlanOrchestrator,
    *,
    budget: str = "150-300",
    hotel: str = "fx-h-bay-1",
    dining_mode: str = "schedule",
) -> QuestionConfig | None:
    """Answer everything up to the final review; returns the question after dining."""
    await answer_profile(orch, [("budget", budget)])
    await answer_next(orch, "areas", ["bayahibe"])
    await answer_next(orch, "split", "split-bayahibe7")
    await answer_next(orch, "review_lock", "lock")
    await answer_next(orch, "hotel_preferences", "no_preference")
    await answer_next(orch, "hotels", hotel)
    await answer_next(orch, "dining_mode", dining_mode)
    if dining_mode != "none":
        await answer_next(orch, "dining", ["fx-r-bay-1"])
    return await orch.next_question()


class TestQuestions:
    """Test question selection and retries."""

    @pytest.mark.asyncio
    async def test_first_question_is_destination(self, make_orchestrator: Factory) -> None:
        orch = make_orchestrator()

        question = await orch.next_question()

        assert question.id == "DESTINATION:destination"
        assert question.card.type == ReplyCardType.destination
        assert question.attempt == 0
        assert orch.session.history[-1].kind == "question"

    @pytest.mark.asyncio
    async def test_vibe_state_asks_fields_in_priority_order(self, make_orchestrator: Factory) -> None:
        orch = make_orchestrator()
        for field, value in PROFILE_ANSWERS[:4]:
            await answer_next(orch, field, value)

        fields = []
        for field, value in PROFILE_ANSWERS[4:7]:
            fields.append((await answer_next(orch, field, value)).field)

        assert fields == ["vibe", "hard_nos", "pace"]

    def test_invalid_answer_retries_then_defaults(self, make_orchestrator: Factory) -> None:
        orch = make_orchestrator()

        first = orch.answer("pace", "fast")
        second = orch.answer("pace", "warp speed")
        third = orch.answer("pace", "???")

        assert not first.accepted and not first.defaulted
        assert first.question.attempt == 1
        assert first.question.prompt == "Choose chill, balanced or packed."
        assert second.question.attempt == 2
        assert third.defaulted is True
        assert orch.session.preferences.pace == PaceLevel.balanced
        assert orch.session.level(F.pace) == ConfidenceLevel.inferred
        assert F.pace not in orch.session.question_attempts

    def test_destination_is_never_defaulted(self, make_orchestrator: Factory) -> None:
        orch = make_orchestrator()

        outcomes = [orch.answer("destination", "") for _ in range(4)]

        assert not any(o.defaulted for o in outcomes)
        assert orch.session.level(F.destination) == ConfidenceLevel.unknown
        assert orch.session.question_attempts[F.destination] == 4

    def test_unknown_field_raises(self, make_orchestrator: Factory) -> None:
        with pytest.raises(StateTransitionError, match="Unknown field"):
            make_orchestrator().answer("favourite_colour", "blue")


class TestContradictions:
    """Test contradicting and conflicting answers."""

    def test_changed_confirmed_answer_needs_confirmation(self, make_orchestrator: Factory) -> None:
        orch = make_orchestrator()
        orch.answer("destination", "Dominican Republic")
        generation = orch.session.generation

        outcome = orch.answer("destination", "Lisbon")

        assert outcome.accepted is False
        assert outcome.needs_confirmation is True
        assert outcome.question.prompt.startswith(
            "Earlier you said destination Dominican Republic, now destination Lisbon."
        )
        assert orch.session.level(F.destination) == ConfidenceLevel.partial
        assert orch.session.preferences.destination.canonical_name == "Dominican Republic"
        assert orch.session.generation == generation

        confirmed = orch.answer("destination", "Lisbon")

        assert confirmed.accepted is True
        assert orch.session.preferences.destination.canonical_name == "Lisbon"
        assert orch.session.generation == generation + 1
        assert F.destination not in orch.session.pending_contradictions

    def test_keep_previous_value(self, make_orchestrator: Factory) -> None:
        orch = make_orchestrator()
        orch.answer("budget", "150-300")
        orch.answer("budget", "500-plus")

        orch.resolve_contradiction(F.budget, use_new=False)

        assert orch.session.preferences.budget_per_night.max == 300
        assert orch.session.level(F.budget) == ConfidenceLevel.confirmed

    def test_same_answer_again_changes_nothing(self, make_orchestrator: Factory) -> None:
        orch = make_orchestrator()
        orch.answer("destination", "Dominican Republic")
        generation = orch.session.generation

        outcome = orch.answer("destination", "Dominican Republic")

        assert outcome.accepted is True
        assert orch.session.generation == generation

    def test_hard_contradiction_is_rejected_without_default(self, make_orchestrator: Factory) -> None:
        orch = make_orchestrator()
        orch.answer("party", "2 adults, 1 kid (6)")

        outcomes = [orch.answer("hotel_preferences", ["adults_only"]) for _ in range(3)]

        assert [c.code for c in outcomes[0].conflicts] == ["ADULTS_ONLY_WITH_CHILDREN"]
        assert not any(o.accepted or o.defaulted for o in outcomes)
        assert orch.session.preferences.adults_only_required is False


class TestEnrichment:
    """Test enrichment runs, ordering and stale results."""

    @pytest.mark.asyncio
    async def test_out_of_order_layer_restores_status(self, make_orchestrator: Factory) -> None:
        orch = make_orchestrator()

        with pytest.raises(EnrichmentOrderError):
            await orch.run_enrichment(EnrichmentType.hotels)

        assert orch.session.enrichment_status[EnrichmentType.hotels] == EnrichmentStatus.pending

    @pytest.mark.asyncio
    async def test_stored_posts_cite_areas(self, make_orchestrator: Factory) -> None:
        orch = make_orchestrator()
        assert orch.answer("destination", "Dominican Republic").accepted

        await orch.run_enrichment(EnrichmentType.discussion)
        await orch.run_enrichment(EnrichmentType.areas)

        threads = [
            e for e in orch.session.catalog.areas["bayahibe"].evidence if e.type == EvidenceType.discussion_thread
        ]
        assert len(threads) == 2
        assert {e.community for e in threads} == {"travel", "dominicanrepublic"}

    @pytest.mark.asyncio
    async def test_stale_layer_is_discarded(self, make_orchestrator: Factory) -> None:
        class BumpingPipeline:
            """Changes a generation field while the layer is in flight."""

            orchestrator: QuickPlanOrchestrator

            async def run(self, layer, request):
                self.orchestrator.answer("vibe", "party")
                request.guard.raise_if_stale()

        pipeline = BumpingPipeline()
        orch = make_orchestrator(pipeline=pipeline)
        pipeline.orchestrator = orch

        result = await orch.run_enrichment(EnrichmentType.discussion)

        assert result is None
        assert orch.session.generation == 1
        assert orch.session.enrichment_status[EnrichmentType.discussion] == EnrichmentStatus.pending
        assert orch.session.history[-1].kind == "stale"

    @pytest.mark.asyncio
    async def test_late_result_from_old_generation_is_not_applied(self, make_orchestrator: Factory) -> None:
        class LatePipeline:
            """Returns a result tagged with the generation it was issued under."""

            orchestrator: QuickPlanOrchestrator

            async def run(self, layer, request):
                self.orchestrator.answer("vibe", "party")
                return EnrichmentResult(layer=layer, generation=request.generation, status=EnrichmentStatus.done)

        pipeline = LatePipeline()
        orch = make_orchestrator(pipeline=pipeline)
        pipeline.orchestrator = orch

        await orch.run_enrichment(EnrichmentType.discussion)

        assert orch.session.enrichment_status[EnrichmentType.discussion] == EnrichmentStatus.pending
        applied = await orch.apply_enrichment(
            EnrichmentResult(layer=EnrichmentType.discussion, generation=1, status=EnrichmentStatus.done)
        )
        assert applied is True
        assert orch.session.enrichment_status[EnrichmentType.discussion] == EnrichmentStatus.done


class TestAreas:
    """Test area discovery, single bases and fallbacks."""

    @pytest.mark.asyncio
    async def test_country_offers_areas_then_splits(self, make_orchestrator: Factory) -> None:
        orch = make_orchestrator()
        await answer_profile(orch)

        areas_question = await answer_next(orch, "areas", ["bayahibe"])
        split_question = await orch.next_question()

        assert areas_question.card.candidate_ids[0] == "bayahibe"
        assert len(areas_question.card.candidate_ids) == 6
        assert orch.session.catalog.discussion
        assert split_question.field == "split"
        assert split_question.card.candidate_ids == ["split-bayahibe7"]

    @pytest.mark.asyncio
    async def test_city_gets_a_single_base(self, make_orchestrator: Factory) -> None:
        orch = make_orchestrator()
        await answer_profile(
            orch,
            [
                ("destination", "Lisbon"),
                ("activities", ["museum"]),
                ("activity_intensity", "museum 2 days"),
            ],
        )

        question = await orch.next_question()

        session = orch.session
        assert question.field == "review_lock"
        assert list(session.catalog.areas) == ["lisbon"]
        assert session.preferences.selected_split_id == "split-lisbon7"
        assert session.level(F.areas) == ConfidenceLevel.inferred
        assert session.low_confidence is False

    @pytest.mark.asyncio
    async def test_unknown_destination_falls_back_with_low_confidence(self, make_orchestrator: Factory) -> None:
        orch = make_orchestrator()
        await answer_profile(orch, [("destination", "Atlantis")])

        question = await orch.next_question()

        session = orch.session
        assert question.field == "review_lock"
        assert list(session.catalog.areas) == ["atlantis"]
        assert session.low_confidence is True
        assert session.enrichment_status[EnrichmentType.areas] == EnrichmentStatus.error

    @pytest.mark.asyncio
    async def test_generation_bump_clears_downstream(self, make_orchestrator: Factory) -> None:
        orch = make_orchestrator()
        await answer_profile(orch)
        await answer_next(orch, "areas", ["bayahibe"])
        await answer_next(orch, "split", "split-bayahibe7")
        generation = orch.session.generation

        orch.answer("budget", "300-500")
        orch.resolve_contradiction(F.budget, use_new=True)

        session = orch.session
        assert session.generation == generation + 1
        assert session.catalog.areas == {}
        assert session.catalog.generation == session.generation
        assert session.preferences.selected_areas == []
        assert session.preferences.selected_split_id is None
        assert session.level(F.areas) == ConfidenceLevel.unknown
        assert session.level(F.split) == ConfidenceLevel.unknown
        assert set(session.enrichment_status.values()) == {EnrichmentStatus.pending}
        assert orch.current_state() == PlanningState.AREA_DISCOVERY


class TestTradeoffs:
    """Test the tradeoff gate."""

    @pytest.mark.asyncio
    async def test_tradeoff_must_be_resolved_before_areas(self, make_orchestrator: Factory) -> None:
        orch = make_orchestrator()
        await answer_profile(
            orch,
            [
                ("activities", ["surf!", "swimming!"]),
                ("activity_intensity", "surf every day; swimming calm water"),
            ],
        )

        question = await orch.next_question()
        assert question.field == TRADEOFF_FIELD
        assert question.card.type == ReplyCardType.tradeoff

        rejected = orch.answer(TRADEOFF_FIELD, "teleport")
        assert rejected.accepted is False
        assert rejected.defaulted is False

        generation = orch.session.generation
        accepted = orch.answer(TRADEOFF_FIELD, "prioritize_calm")

        assert accepted.accepted is True
        assert orch.session.preferences.activity("surf").target_days == 3
        assert orch.session.generation == generation
        assert orch.session.active_tradeoffs == []
        assert len(orch.session.resolutions) == 1
        assert (await orch.next_question()).field == "areas"


class TestNavigation:
    """Test back navigation, locking and free text."""

    def test_go_back_reopens_fields(self, make_orchestrator: Factory) -> None:
        orch = make_orchestrator()
        orch.answer("destination", "Dominican Republic")
        orch.answer("dates", "7 nights")
        orch.answer("party", "2 adults")

        state = orch.go_back(PlanningState.DATES_OR_LENGTH)

        assert state == PlanningState.DATES_OR_LENGTH
        assert orch.session.level(F.dates) == ConfidenceLevel.partial
        assert orch.session.preferences.trip_length == 7

    def test_cannot_go_forward_or_back_from_start(self, make_orchestrator: Factory) -> None:
        orch = make_orchestrator()
        with pytest.raises(StateTransitionError):
            orch.go_back(PlanningState.BUDGET)
        orch.answer("destination", "Dominican Republic")
        with pytest.raises(StateTransitionError):
            orch.go_back(PlanningState.PARTY)

    @pytest.mark.asyncio
    async def test_locked_preferences_cannot_be_answered(self, make_orchestrator: Factory) -> None:
        orch = make_orchestrator()
        await answer_profile(orch)
        await answer_next(orch, "areas", ["bayahibe"])
        await answer_next(orch, "split", "split-bayahibe7")
        await answer_next(orch, "review_lock", "lock")

        with pytest.raises(StateTransitionError, match="locked"):
            orch.answer("budget", "300-500")

    @pytest.mark.asyncio
    async def test_back_command(self, make_orchestrator: Factory) -> None:
        orch = make_orchestrator()
        orch.answer("destination", "Dominican Republic")
        orch.answer("dates", "7 nights")

        outcome = await orch.handle_free_text("  Go   back ")

        assert outcome.kind == "command"
        assert outcome.command == "back"
        assert outcome.question.field == "dates"

    @pytest.mark.asyncio
    async def test_reset_command(self, make_orchestrator: Factory) -> None:
        orch = make_orchestrator()
        orch.answer("destination", "Dominican Republic")
        old_generation = orch.session.generation

        outcome = await orch.handle_free_text("start over")

        assert outcome.command == "reset"
        assert orch.session.generation == old_generation + 1
        assert orch.session.preferences.destination is None
        assert outcome.question.field == "destination"

    @pytest.mark.asyncio
    async def test_skip_uses_default(self, make_orchestrator: Factory) -> None:
        orch = make_orchestrator()
        with pytest.raises(StateTransitionError):
            await orch.handle_free_text("skip")

        orch.answer("destination", "Dominican Republic")
        outcome = await orch.handle_free_text("skip")

        assert outcome.question.field == "party"
        assert orch.session.preferences.trip_length == 7
        assert orch.session.level(F.dates) == ConfidenceLevel.inferred

    @pytest.mark.asyncio
    async def test_note_attaches_to_open_question(self, make_orchestrator: Factory) -> None:
        orch = make_orchestrator()

        outcome = await orch.handle_free_text("Note: we hate early mornings")

        assert outcome.kind == "note"
        note = orch.session.preferences.user_notes[-1]
        assert (note.field, note.note) == ("destination", "we hate early mornings")

    @pytest.mark.asyncio
    async def test_other_text_goes_to_assistant(self, make_orchestrator: Factory) -> None:
        orch = make_orchestrator()

        outcome = await orch.handle_free_text("Is March hurricane season?")

        assert outcome.kind == "assistant"
        assert outcome.response.follow_up_question == "Where do you want to go?"
        assert orch.session.history[-1].kind == "assistant"

    @pytest.mark.asyncio
    async def test_unverified_recommendations_are_dropped(self, make_orchestrator: Factory) -> None:
        reply = {
            "type": "recommendation",
            "message": "Two places to look at.",
            "recommendations": [
                {"name": "Bay One", "category": "hotel", "placeId": "fx-h-bay-1"},
                {"name": "Casa Fantasma", "category": "hotel", "placeId": None},
                {"name": "Invented Reef Tours", "category": "activity", "placeId": "made-up-1"},
            ],
        }
        completion = MagicMock()
        completion.choices = [MagicMock()]
        completion.choices[0].message.content = json.dumps(reply)
        llm = OpenAIClient(api_key="test_key")
        llm.client = AsyncMock()
        llm.client.chat.completions.create = AsyncMock(return_value=completion)
        orch = make_orchestrator(llm=llm)
        orch.session.catalog.hotels["fx-h-bay-1"] = HotelCandidate(
            place_id="fx-h-bay-1",
            name="Bay One",
            area_id="bayahibe",
            evidence=[Evidence(type=EvidenceType.place_reference, source="fixtures.places", place_id="fx-h-bay-1")],
        )

        outcome = await orch.handle_free_text("Where should we stay?")

        assert outcome.response.message == "Two places to look at."
        assert [r.place_id for r in outcome.response.recommendations] == ["fx-h-bay-1"]

    @pytest.mark.asyncio
    async def test_summary_lines(self, make_orchestrator: Factory) -> None:
        orch = make_orchestrator()
        await answer_profile(orch)

        lines = orch.summarize_preferences()

        assert lines[:4] == [
            "Destination: Dominican Republic",
            "Dates: 2026-03-01 to 2026-03-08",
            "Party: 2 adult(s)",
            "Budget: $150-300 per night",
        ]
        assert "Activities: snorkel (must-do), beach" in lines


class TestFullPlan:
    """Test building, checking and rating a plan."""

    @pytest.mark.asyncio
    async def test_plan_reaches_final_review(self, make_orchestrator: Factory) -> None:
        orch = make_orchestrator()

        question = await plan_trip(orch)

        session = orch.session
        itinerary = session.itinerary
        assert question.field == "final_review"
        assert itinerary.generation == session.generation
        assert len(itinerary.days) == 7
        assert itinerary.quality_check_passed is True
        assert itinerary.dining_plan.mode == DiningMode.schedule
        assert session.hotel_shortlists[0].selected_hotel_id == "fx-h-bay-1"

        snorkel_days = [
            d.day_number for d in itinerary.days for b in d.blocks() if b.activity_type == "snorkel"
        ]
        assert len(snorkel_days) == 2
        assert "fx-a-bay-snork-1" in {b.activity_id for d in itinerary.days for b in d.blocks()}
        assert all(sum(b.effort_cost for b in d.blocks()) <= d.effort_budget for d in itinerary.days)

    @pytest.mark.asyncio
    async def test_satisfied_traveler_completes_session(self, make_orchestrator: Factory) -> None:
        orch = make_orchestrator()
        await plan_trip(orch)
        await answer_next(orch, "final_review", "looks good")

        await answer_next(orch, "satisfaction", "yes")

        assert orch.session.level(F.satisfaction) == ConfidenceLevel.complete
        assert await orch.next_question() is None

    @pytest.mark.asyncio
    async def test_over_budget_hotel_is_replaced_once(self, make_orchestrator: Factory) -> None:
        orch = make_orchestrator()

        question = await plan_trip(orch, budget="under-150", dining_mode="none")

        session = orch.session
        assert question.field == "final_review"
        assert session.regeneration_attempts == 1
        assert session.hotel_shortlists[0].hotel_ids == ["fx-h-bay-2", "fx-h-bay-3"]
        assert session.itinerary.generation_layer == "hotels"
        assert session.itinerary.quality_check_passed is True
        assert "bayahibe" not in session.preferences.selected_hotels

    @pytest.mark.asyncio
    async def test_failed_check_asks_keep_or_edit(self, make_orchestrator: Factory) -> None:
        orch = make_orchestrator()
        await plan_trip(orch)
        session = orch.session
        session.quality = session.quality.model_copy(update={"passed": False})
        session.regeneration_attempts = 1

        question = await orch.next_question()
        assert question.field == QUALITY_FIELD

        outcome = orch.answer(QUALITY_FIELD, "keep")

        assert outcome.accepted is True
        assert session.quality_override is True
        assert orch.current_state() == PlanningState.FINAL_REVIEW_AND_EDIT_LOOP

    @pytest.mark.asyncio
    async def test_edit_after_failed_check_unlocks_preferences(self, make_orchestrator: Factory) -> None:
        orch = make_orchestrator()
        await plan_trip(orch)
        session = orch.session
        session.quality = session.quality.model_copy(update={"passed": False})
        session.regeneration_attempts = 1

        orch.answer(QUALITY_FIELD, "edit")

        assert session.preferences.preferences_locked is False
        assert orch.current_state() == PlanningState.PREFERENCES_REVIEW_LOCK


class TestSatisfactionGate:
    """Test verdicts at the satisfaction gate."""

    async def rated_plan(self, orch: QuickPlanOrchestrator) -> None:
        await plan_trip(orch)
        await answer_next(orch, "final_review", "looks good")
        assert (await orch.next_question()).field == "satisfaction"

    @pytest.mark.asyncio
    async def test_hotel_issue_leaves_days_untouched(self, make_orchestrator: Factory) -> None:
        orch = make_orchestrator()
        await self.rated_plan(orch)
        before = orch.session.itinerary

        orch.answer("satisfaction", {"verdict": "almost", "issues": [{"category": "hotel_issues"}]})

        after = orch.session.itinerary
        assert after.days == before.days
        assert after.dining_plan == before.dining_plan
        assert after.generation_layer == "hotels"
        assert "bayahibe" not in orch.session.preferences.selected_hotels
        assert orch.session.quality is not None

    @pytest.mark.asyncio
    async def test_pace_issue_rebuilds_schedule_only(self, make_orchestrator: Factory) -> None:
        orch = make_orchestrator()
        await self.rated_plan(orch)
        before = orch.session.itinerary

        orch.answer("satisfaction", {"verdict": "almost", "issues": [{"category": "pace_issues"}]})

        after = orch.session.itinerary
        assert orch.session.preferences.pace == PaceLevel.chill
        assert after.generation_layer == "schedule"
        assert after.hotel_shortlists == before.hotel_shortlists
        assert all(d.effort_budget == 3.0 for d in after.days if not d.is_transit_day)

    @pytest.mark.asyncio
    async def test_wrong_areas_reopens_area_choice(self, make_orchestrator: Factory) -> None:
        orch = make_orchestrator()
        await self.rated_plan(orch)

        orch.answer("satisfaction", {"verdict": "almost", "issues": [{"category": "wrong_areas"}]})

        session = orch.session
        assert session.itinerary is None
        assert session.level(F.areas) == ConfidenceLevel.partial
        assert session.preferences.selected_split_id is None
        assert (await orch.next_question()).field == "areas"

    @pytest.mark.asyncio
    async def test_no_restarts_from_vibe(self, make_orchestrator: Factory) -> None:
        orch = make_orchestrator()
        await self.rated_plan(orch)
        generation = orch.session.generation

        orch.answer("satisfaction", "no")

        session = orch.session
        assert session.generation == generation + 1
        assert session.itinerary is None
        assert session.preferences.destination.canonical_name == "Dominican Republic"
        assert session.preferences.budget_per_night.max == 300
        assert session.level(F.budget) == ConfidenceLevel.confirmed
        assert session.level(F.vibe) == ConfidenceLevel.unknown
        assert orch.current_state() == PlanningState.VIBE_AND_HARD_NOS

    @pytest.mark.asyncio
    async def test_almost_without_issues_is_rejected(self, make_orchestrator: Factory) -> None:
        orch = make_orchestrator()
        await self.rated_plan(orch)

        outcome = orch.answer("satisfaction", "almost")

        assert outcome.accepted is False
        assert outcome.defaulted is False
        assert orch.session.satisfaction == []
