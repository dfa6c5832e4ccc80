"""Planning orchestrator.

The single writer of a SessionContext. Questions come from the pure state
tables; answers, tradeoff resolutions and enrichment results are committed
here. Any change to a field in GENERATION_FIELDS bumps the session
generation, which invalidates downstream candidates and discards in-flight
enrichment issued under the old generation.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError

from backend.quickplan.config import Settings, get_settings
from backend.quickplan.enrichment.executor import GenerationGuard, StaleGenerationError
from backend.quickplan.enrichment.pipeline import (
    EnrichmentOrderError,
    EnrichmentPipeline,
    EnrichmentRequest,
    EnrichmentResult,
    destination_wide_area,
)
from backend.quickplan.llm.client import LLMClient
from backend.quickplan.models.areas import AreaCandidate, ItinerarySplit
from backend.quickplan.models.assistant import AssistantResponse
from backend.quickplan.models.candidates import CandidateCatalog
from backend.quickplan.models.common import (
    ConfidenceField,
    ConfidenceLevel,
    DestinationType,
    DiningMode,
    EnrichmentStatus,
    EnrichmentType,
)
from backend.quickplan.models.evidence import Evidence
from backend.quickplan.models.itinerary import QuickPlanDay, QuickPlanItinerary
from backend.quickplan.models.preferences import UserNote
from backend.quickplan.models.quality import QualityCheckResult
from backend.quickplan.models.questions import QuestionConfig
from backend.quickplan.models.satisfaction import (
    RegenerationComponent,
    SatisfactionIssueCategory,
    SatisfactionResponse,
    SatisfactionVerdict,
)
from backend.quickplan.models.tradeoffs import PreferenceConflict, TradeoffResolution
from backend.quickplan.orchestration.answers import FIELD_DEFAULTS, PARSERS, AnswerValidationError, Updates
from backend.quickplan.orchestration.questions import QUALITY_FIELD, TRADEOFF_FIELD, build_question
from backend.quickplan.orchestration.satisfaction import (
    components_for,
    missing_must_dos,
    regenerate_dining,
    regenerate_hotels,
    regenerate_schedule,
    shifted_preferences,
)
from backend.quickplan.orchestration.session import PendingContradiction, SessionContext
from backend.quickplan.orchestration.state_machine import (
    FIELD_OWNER,
    STATE_ORDER,
    STATE_SPECS,
    PlanningState,
    PreferenceSnapshot,
    can_go_back_to,
    current_state,
    missing_fields,
    previous_state,
)
from backend.quickplan.scheduling.day_scheduler import build_dining_plan, schedule_days
from backend.quickplan.scoring.areas import AreaWeights, build_split, generate_splits, score_area, score_areas
from backend.quickplan.scoring.hotels import build_shortlist
from backend.quickplan.tradeoffs.engine import active_tradeoffs, apply_resolution, find_contradictions
from backend.quickplan.utils.metrics import (
    enrichment_results_total,
    questions_asked_total,
    stale_enrichment_discarded_total,
)
from backend.quickplan.verification.quality import run_quality_checks

logger = logging.getLogger(__name__)

GENERATION_FIELDS = frozenset(
    {
        ConfidenceField.destination,
        ConfidenceField.dates,
        ConfidenceField.budget,
        ConfidenceField.vibe,
        ConfidenceField.hard_nos,
        ConfidenceField.activities,
        ConfidenceField.activity_intensity,
    }
)
DOWNSTREAM_FIELDS = (
    ConfidenceField.areas,
    ConfidenceField.split,
    ConfidenceField.review_lock,
    ConfidenceField.hotels,
    ConfidenceField.dining,
    ConfidenceField.final_review,
    ConfidenceField.satisfaction,
)
AREA_SCOPED_LAYERS = (
    EnrichmentType.hotels,
    EnrichmentType.pricing,
    EnrichmentType.activities,
    EnrichmentType.restaurants,
)
HOTEL_ISSUES = {SatisfactionIssueCategory.hotel_issues, SatisfactionIssueCategory.budget_issues}
RESTART_STATE = PlanningState.VIBE_AND_HARD_NOS
MAX_AUTOMATIC_STEPS = 24
MAX_LLM_EVIDENCE = 20

KEEP_WORDS = {"keep", "override", "accept", "yes"}
EDIT_WORDS = {"edit", "change", "go back"}
RESET_COMMANDS = {"start over", "restart", "reset"}
BACK_COMMANDS = {"back", "go back", "previous"}
SKIP_COMMANDS = {"skip", "pass", "next"}
NOTE_PREFIX = "note:"


class StateTransitionError(Exception):
    """Illegal navigation or an answer the current state cannot accept."""


@dataclass
class AnswerOutcome:
    """Result of one answer.

    On rejection, `question` is the retry (or clarifying) question to show.
    On acceptance the caller asks `next_question()` for what comes next.
    """

    field: str
    accepted: bool
    error: str | None = None
    defaulted: bool = False
    needs_confirmation: bool = False
    conflicts: list[PreferenceConflict] = field(default_factory=list)
    question: QuestionConfig | None = None


@dataclass
class FreeTextOutcome:
    kind: str  # command, note, assistant
    command: str | None = None
    response: AssistantResponse | None = None
    question: QuestionConfig | None = None


def _field_name(f: str) -> str:
    return f.value if isinstance(f, ConfidenceField) else f


class QuickPlanOrchestrator:
    """Drives one session through the planning states."""

    def __init__(
        self,
        session: SessionContext,
        pipeline: EnrichmentPipeline,
        llm: LLMClient,
        settings: Settings | None = None,
    ) -> None:
        self.session = session
        self._pipeline = pipeline
        self._llm = llm
        self._settings = settings or get_settings()

    # ------------------------------------------------------------------
    # State and questions
    # ------------------------------------------------------------------

    def snapshot(self) -> PreferenceSnapshot:
        session = self.session
        return PreferenceSnapshot(
            prefs=session.preferences,
            confidence=dict(session.confidence),
            active_tradeoffs=len(session.active_tradeoffs),
            itinerary_ready=session.itinerary_ready,
            quality_cleared=session.quality_cleared,
        )

    def current_state(self) -> PlanningState:
        return current_state(self.snapshot())

    def select_question(self) -> QuestionConfig | None:
        """Next question for the current state, or None when nothing is asked."""
        state = self.current_state()
        f = self._field_to_ask(state)
        if f is None:
            return None
        return self._question(state, f)

    def _field_to_ask(self, state: PlanningState) -> str | None:
        session = self.session
        match state:
            case PlanningState.TRADEOFFS_RESOLUTION:
                return TRADEOFF_FIELD if session.active_tradeoffs else None
            case PlanningState.DAILY_ITINERARY_BUILD:
                return None
            case PlanningState.QUALITY_SELF_CHECK:
                if session.itinerary_ready and session.quality is not None and not session.quality_cleared:
                    return QUALITY_FIELD
                return None
            case _:
                missing = missing_fields(state, session.confidence)
                if not missing:
                    return None
                pending = [f for f in missing if f in session.pending_contradictions]
                if pending:
                    return pending[0]
                return min(missing, key=lambda f: (session.level(f).rank, missing.index(f)))

    def _question(self, state: PlanningState, f: str) -> QuestionConfig:
        session = self.session
        question = build_question(state, f, session, session.question_attempts.get(f, 0))
        pending = session.pending_contradictions.get(f)
        if pending is not None:
            prompt = (
                f"Earlier you said {_describe(pending.previous)}, now {_describe(pending.proposed)}. "
                "Which should I use?"
            )
            question = question.model_copy(update={"prompt": prompt})
        return question

    def _question_for(self, f: str) -> QuestionConfig:
        if f == TRADEOFF_FIELD:
            state = PlanningState.TRADEOFFS_RESOLUTION
        elif f == QUALITY_FIELD:
            state = PlanningState.QUALITY_SELF_CHECK
        else:
            state = FIELD_OWNER[ConfidenceField(f)]
        return self._question(state, f)

    async def next_question(self) -> QuestionConfig | None:
        """Do any automatic work the current state needs, then pick a question."""
        for _ in range(MAX_AUTOMATIC_STEPS):
            if not await self._advance(self.current_state()):
                break
        question = self.select_question()
        if question is not None:
            questions_asked_total.labels(state=question.state).inc()
            self.session.record("question", question.prompt, state=question.state, question_id=question.id)
        return question

    async def _advance(self, state: PlanningState) -> bool:
        """Run one automatic step; False when the state is waiting on the traveler."""
        session = self.session
        match state:
            case PlanningState.AREA_DISCOVERY:
                return await self._ensure_areas()
            case PlanningState.AREA_SPLIT_SELECTION:
                return self._ensure_splits()
            case PlanningState.PREFERENCES_REVIEW_LOCK:
                return self._ensure_single_base()
            case PlanningState.HOTELS_SHORTLIST_AND_PICK:
                return await self._ensure_shortlists()
            case PlanningState.DINING_SHORTLIST_AND_PICK:
                return await self._ensure_layer(EnrichmentType.restaurants)
            case PlanningState.DAILY_ITINERARY_BUILD:
                if await self._ensure_shortlists(ask_preferences=False):
                    return True
                if await self._ensure_layer(EnrichmentType.activities):
                    return True
                if session.preferences.dining_mode not in (None, DiningMode.none):
                    if await self._ensure_layer(EnrichmentType.restaurants):
                        return True
                self.build_itinerary()
                return True
            case PlanningState.QUALITY_SELF_CHECK:
                if not session.itinerary_ready:
                    return False
                if session.quality is None:
                    self.run_quality_check()
                    return True
                if not session.quality.passed and session.regeneration_attempts < self._settings.quality_max_regenerations:
                    session.regeneration_attempts += 1
                    return self._regenerate_for_quality()
                return False
            case _:
                return False

    # ------------------------------------------------------------------
    # Answers
    # ------------------------------------------------------------------

    def answer(self, f: str, value: Any) -> AnswerOutcome:
        """Parse, check for contradictions, then commit.

        Raises:
            StateTransitionError: Unknown field, or a locked field
        """
        if f == TRADEOFF_FIELD:
            return self._answer_tradeoff(value)
        if f == QUALITY_FIELD:
            return self._answer_quality(value)
        try:
            cf = ConfidenceField(f)
        except ValueError as e:
            raise StateTransitionError(f"Unknown field {f!r}") from e
        if cf == ConfidenceField.satisfaction:
            return self._answer_satisfaction(value)
        self._check_editable(cf)

        session = self.session
        try:
            updates = PARSERS[cf](value, session)
        except AnswerValidationError as e:
            return self._reject(cf, e.reason)

        candidate = session.preferences.model_copy(update=updates)
        existing = {c.code for c in find_contradictions(session.preferences)}
        conflicts = [c for c in find_contradictions(candidate) if c.code not in existing]
        if conflicts:
            return self._reject(cf, conflicts[0].message, conflicts=conflicts, allow_default=False)

        pending = session.pending_contradictions.pop(cf, None)
        if pending is None and session.level(cf).rank >= ConfidenceLevel.confirmed.rank:
            previous = {k: getattr(session.preferences, k) for k in updates}
            if previous != updates:
                session.pending_contradictions[cf] = PendingContradiction(cf, previous=previous, proposed=updates)
                session.confidence[cf] = ConfidenceLevel.partial
                session.record(
                    "contradiction",
                    f"{cf.value} contradicts a confirmed answer",
                    state=FIELD_OWNER[cf].value,
                    field=cf.value,
                )
                logger.info(
                    "Contradiction held for confirmation",
                    extra={"structured": {"session_id": session.session_id, "field": cf.value}},
                )
                return AnswerOutcome(
                    field=cf.value,
                    accepted=False,
                    needs_confirmation=True,
                    question=self._question_for(cf),
                )

        self._commit(cf, updates, ConfidenceLevel.confirmed)
        return AnswerOutcome(field=cf.value, accepted=True)

    def resolve_contradiction(self, f: ConfidenceField, use_new: bool) -> None:
        """Settle a pending contradiction without a new answer."""
        pending = self.session.pending_contradictions.pop(f, None)
        if pending is None:
            raise StateTransitionError(f"No pending contradiction for {f.value}")
        self._commit(f, pending.proposed if use_new else pending.previous, ConfidenceLevel.confirmed)

    def _check_editable(self, cf: ConfidenceField) -> None:
        if not self.session.preferences.preferences_locked:
            return
        lock_index = STATE_ORDER.index(PlanningState.PREFERENCES_REVIEW_LOCK)
        if STATE_ORDER.index(FIELD_OWNER[cf]) < lock_index:
            raise StateTransitionError(f"Preferences are locked; go back to change {cf.value}")

    def _reject(
        self,
        f: str,
        reason: str,
        *,
        conflicts: Sequence[PreferenceConflict] = (),
        allow_default: bool = True,
    ) -> AnswerOutcome:
        session = self.session
        attempts = session.question_attempts.get(f, 0) + 1
        session.question_attempts[f] = attempts
        session.record("rejected", reason, field=_field_name(f), attempt=attempts)
        logger.info(
            "Answer rejected",
            extra={
                "structured": {
                    "session_id": session.session_id,
                    "field": _field_name(f),
                    "attempt": attempts,
                    "reason": reason,
                }
            },
        )
        if allow_default and attempts > self._settings.question_max_retries and f in FIELD_DEFAULTS:
            cf = ConfidenceField(f)
            self._commit(cf, FIELD_DEFAULTS[cf](session), ConfidenceLevel.inferred)
            return AnswerOutcome(field=cf.value, accepted=False, error=reason, defaulted=True)
        return AnswerOutcome(
            field=_field_name(f),
            accepted=False,
            error=reason,
            conflicts=list(conflicts),
            question=self._question_for(f),
        )

    def _commit(self, cf: ConfidenceField, updates: Updates, level: ConfidenceLevel) -> None:
        session = self.session
        before = session.preferences
        changed = sorted(k for k, v in updates.items() if getattr(before, k) != v)
        session.preferences = before.model_copy(update=updates)
        session.confidence[cf] = level
        session.question_attempts.pop(cf, None)
        session.record(
            "answer",
            f"{cf.value} {level.value}",
            state=FIELD_OWNER[cf].value,
            field=cf.value,
            changed=changed,
        )
        if cf in GENERATION_FIELDS and changed:
            self._bump_generation(f"{cf.value} changed")
        self._after_commit(cf, set(changed))
        self._refresh_tradeoffs()

    def _after_commit(self, cf: ConfidenceField, changed: set[str]) -> None:
        """Invalidate what depends on the committed field."""
        session = self.session
        match cf:
            case ConfidenceField.activities:
                if "selected_activities" in changed and session.level(ConfidenceField.activity_intensity).is_settled:
                    session.confidence[ConfidenceField.activity_intensity] = ConfidenceLevel.partial
            case ConfidenceField.areas if changed:
                session.catalog.splits = {}
                session.preferences = session.preferences.model_copy(update={"selected_split_id": None})
                self._lower(ConfidenceField.split, ConfidenceField.hotels)
                for layer in AREA_SCOPED_LAYERS:
                    session.enrichment_status[layer] = EnrichmentStatus.pending
                self._clear_plan()
            case ConfidenceField.split if changed:
                self._lower(ConfidenceField.hotels)
                self._clear_plan()
            case ConfidenceField.hotel_preferences if changed:
                self._lower(ConfidenceField.hotels)
                self._clear_plan()
            case ConfidenceField.hotels:
                self._sync_hotel_selection()
                unpicked = [s for s in session.hotel_shortlists if s.hotel_ids and s.selected_hotel_id is None]
                if unpicked and session.level(cf) == ConfidenceLevel.confirmed:
                    session.confidence[cf] = ConfidenceLevel.partial
                if session.itinerary is not None:
                    session.itinerary = session.itinerary.model_copy(
                        update={"hotel_shortlists": list(session.hotel_shortlists)}
                    )
                    session.quality = None
            case ConfidenceField.dining_mode | ConfidenceField.dining if changed:
                session.itinerary = None
                session.quality = None

    def _lower(self, *fields: ConfidenceField) -> None:
        for f in fields:
            if self.session.level(f) != ConfidenceLevel.unknown:
                self.session.confidence[f] = ConfidenceLevel.unknown

    def _clear_plan(self) -> None:
        session = self.session
        session.hotel_shortlists = []
        session.itinerary = None
        session.quality = None
        session.quality_override = False

    def _bump_generation(self, reason: str) -> None:
        session = self.session
        session.generation += 1
        session.catalog = CandidateCatalog(generation=session.generation)
        session.area_profiles = []
        session.enrichment_status = {layer: EnrichmentStatus.pending for layer in EnrichmentType}
        session.regeneration_attempts = 0
        session.low_confidence = False
        self._clear_plan()
        self._lower(*DOWNSTREAM_FIELDS)
        session.preferences = session.preferences.model_copy(
            update={
                "selected_areas": [],
                "selected_split_id": None,
                "selected_hotels": {},
                "selected_restaurants": {},
                "preferences_locked": False,
            }
        )
        session.record("generation", reason, generation=session.generation)
        logger.info(
            "Session generation bumped",
            extra={
                "structured": {
                    "session_id": session.session_id,
                    "generation": session.generation,
                    "reason": reason,
                }
            },
        )

    def _refresh_tradeoffs(self) -> None:
        session = self.session
        session.active_tradeoffs = active_tradeoffs(session.preferences, session.resolutions)

    # ------------------------------------------------------------------
    # Tradeoffs, quality override and satisfaction answers
    # ------------------------------------------------------------------

    def resolve_tradeoff(
        self,
        tradeoff_id: str,
        option_id: str,
        custom_text: str | None = None,
    ) -> TradeoffResolution:
        """Apply one option to an active tradeoff and re-detect.

        Raises:
            StateTransitionError: The tradeoff is not active
            AnswerValidationError: Unknown option, or custom without text
        """
        session = self.session
        tradeoff = next((t for t in session.active_tradeoffs if t.id == tradeoff_id), None)
        if tradeoff is None:
            raise StateTransitionError(f"Tradeoff {tradeoff_id} is not active")
        try:
            prefs, resolution = apply_resolution(session.preferences, tradeoff, option_id, custom_text)
        except ValueError as e:
            raise AnswerValidationError(TRADEOFF_FIELD, str(e)) from e

        session.preferences = prefs
        session.resolutions.append(resolution)
        session.question_attempts.pop(TRADEOFF_FIELD, None)
        self._refresh_tradeoffs()
        if session.area_profiles:
            self._rescore_areas()
        session.record(
            "tradeoff",
            f"{tradeoff.type.value} resolved with {option_id}",
            state=PlanningState.TRADEOFFS_RESOLUTION.value,
            tradeoff_id=tradeoff.id,
            changes=resolution.preference_changes,
        )
        return resolution

    def _answer_tradeoff(self, value: Any) -> AnswerOutcome:
        session = self.session
        if not session.active_tradeoffs:
            raise StateTransitionError("No tradeoff is waiting for an answer")
        if isinstance(value, dict):
            tradeoff_id = value.get("tradeoff_id") or session.active_tradeoffs[0].id
            option_id = str(value.get("option_id", ""))
            custom_text = value.get("custom_text")
        else:
            tradeoff_id, option_id, custom_text = session.active_tradeoffs[0].id, str(value).strip(), None
        try:
            self.resolve_tradeoff(tradeoff_id, option_id, custom_text)
        except AnswerValidationError as e:
            return self._reject(TRADEOFF_FIELD, e.reason, allow_default=False)
        return AnswerOutcome(field=TRADEOFF_FIELD, accepted=True)

    def _answer_quality(self, value: Any) -> AnswerOutcome:
        choice = str(value).strip().lower()
        if choice in KEEP_WORDS:
            self.override_quality()
            return AnswerOutcome(field=QUALITY_FIELD, accepted=True)
        if choice in EDIT_WORDS:
            self._reopen(PlanningState.PREFERENCES_REVIEW_LOCK)
            return AnswerOutcome(field=QUALITY_FIELD, accepted=True)
        return self._reject(QUALITY_FIELD, "say keep or edit", allow_default=False)

    def _answer_satisfaction(self, value: Any) -> AnswerOutcome:
        f = ConfidenceField.satisfaction
        if isinstance(value, SatisfactionResponse):
            response = value
        else:
            payload = value if isinstance(value, dict) else {"verdict": str(value).strip().lower()}
            try:
                response = SatisfactionResponse.model_validate({"submitted_at": datetime.now(UTC), **payload})
            except ValidationError as e:
                reason = e.errors()[0]["msg"] if e.errors() else "answer yes, almost or no"
                return self._reject(f, reason, allow_default=False)
        self.submit_satisfaction(response)
        return AnswerOutcome(field=f.value, accepted=True)

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def go_back(self, target: PlanningState) -> PlanningState:
        """Re-open an earlier state's fields.

        Raises:
            StateTransitionError: The current state forbids going back, or the
                target is not an earlier active state
        """
        current = self.current_state()
        if not can_go_back_to(current, target, self.snapshot()):
            raise StateTransitionError(f"Cannot go back from {current.value} to {target.value}")
        self._reopen(target)
        self.session.record("transition", f"back to {target.value}", state=current.value, target=target.value)
        return self.current_state()

    def _reopen(self, target: PlanningState) -> None:
        session = self.session
        for f in STATE_SPECS[target].fields:
            if session.level(f).is_settled:
                session.confidence[f] = ConfidenceLevel.partial
        if STATE_ORDER.index(target) <= STATE_ORDER.index(PlanningState.PREFERENCES_REVIEW_LOCK):
            session.preferences = session.preferences.model_copy(update={"preferences_locked": False})
            if session.level(ConfidenceField.review_lock).is_settled:
                session.confidence[ConfidenceField.review_lock] = ConfidenceLevel.partial
        match target:
            case PlanningState.DAILY_ITINERARY_BUILD:
                session.itinerary = None
                session.quality = None
            case PlanningState.QUALITY_SELF_CHECK:
                session.quality = None
                session.quality_override = False

    def reset(self) -> SessionContext:
        """Start over. The new session's generation is ahead of the old one."""
        old = self.session
        self.session = SessionContext(session_id=old.session_id, generation=old.generation + 1)
        self.session.record("reset", "session restarted", previous_generation=old.generation)
        logger.info(
            "Session reset",
            extra={"structured": {"session_id": old.session_id, "generation": self.session.generation}},
        )
        return self.session

    # ------------------------------------------------------------------
    # Enrichment
    # ------------------------------------------------------------------

    async def run_enrichment(self, layer: EnrichmentType) -> EnrichmentResult | None:
        """Run one layer against a snapshot; None when the result went stale.

        Raises:
            EnrichmentOrderError: The layer's prerequisite has not finished
        """
        session = self.session
        generation = session.generation
        request = EnrichmentRequest(
            session_id=session.session_id,
            generation=generation,
            prefs=session.preferences.model_copy(deep=True),
            statuses=dict(session.enrichment_status),
            guard=GenerationGuard(issued=generation, current=lambda: self.session.generation),
            areas=self._plan_areas(),
            hotels=list(session.catalog.hotels.values()),
            posts=list(session.catalog.discussion.values()),
        )
        previous = session.enrichment_status[layer]
        session.enrichment_status[layer] = EnrichmentStatus.loading
        try:
            result = await self._pipeline.run(layer, request)
        except EnrichmentOrderError:
            session.enrichment_status[layer] = previous
            raise
        except StaleGenerationError:
            self._discard_stale(layer, generation)
            return None
        await self.apply_enrichment(result)
        return result

    async def apply_enrichment(self, result: EnrichmentResult) -> bool:
        """Merge a layer result; results from an older generation are discarded."""
        async with self.session.lock:
            session = self.session
            if result.generation != session.generation:
                self._discard_stale(result.layer, result.generation)
                return False

            catalog = session.catalog
            match result.layer:
                case EnrichmentType.discussion:
                    catalog.discussion.update({p.id: p for p in result.items})
                case EnrichmentType.areas:
                    session.area_profiles = list(result.items)
                    self._rescore_areas()
                case EnrichmentType.hotels | EnrichmentType.pricing:
                    for hotel in result.items:
                        catalog.hotels[hotel.place_id] = hotel
                        ids = catalog.hotels_by_area.setdefault(hotel.area_id, [])
                        if hotel.place_id not in ids:
                            ids.append(hotel.place_id)
                case EnrichmentType.activities:
                    catalog.activities.update({a.id: a for a in result.items})
                case EnrichmentType.restaurants:
                    catalog.restaurants.update({r.id: r for r in result.items})

            session.enrichment_status[result.layer] = result.status
            if result.status == EnrichmentStatus.error and result.layer != EnrichmentType.discussion:
                session.low_confidence = True
            enrichment_results_total.labels(layer=result.layer.value, outcome=result.status.value).inc()
            session.record(
                "enrichment",
                f"{result.layer.value} {result.status.value}",
                layer=result.layer.value,
                items=len(result.items),
                failures=[f.entity_id for f in result.failures],
            )
            return True

    def _discard_stale(self, layer: EnrichmentType, generation: int) -> None:
        session = self.session
        stale_enrichment_discarded_total.labels(layer=layer.value).inc()
        session.record("stale", f"{layer.value} result discarded", layer=layer.value, generation=generation)
        logger.warning(
            "Discarded stale enrichment",
            extra={
                "structured": {
                    "session_id": session.session_id,
                    "layer": layer.value,
                    "issued_generation": generation,
                    "current_generation": session.generation,
                }
            },
        )

    async def _ensure_layer(self, layer: EnrichmentType) -> bool:
        if self.session.enrichment_status[layer] != EnrichmentStatus.pending:
            return False
        await self.run_enrichment(layer)
        return True

    def _plan_areas(self) -> list[AreaCandidate]:
        areas = self.session.catalog.areas
        selected = [areas[i] for i in self.session.preferences.selected_areas if i in areas]
        if selected:
            return selected
        split = self._selected_split()
        return [areas[s.area_id] for s in split.stops if s.area_id in areas] if split else []

    def _rescore_areas(self) -> None:
        session = self.session
        scored = score_areas(session.area_profiles, session.preferences, self._settings)
        session.catalog.areas = {a.id: a for a in scored}
        if not session.level(ConfidenceField.split).is_settled:
            session.catalog.splits = {}

    async def _ensure_areas(self) -> bool:
        session = self.session
        if await self._ensure_layer(EnrichmentType.discussion):
            return True
        if await self._ensure_layer(EnrichmentType.areas):
            return True
        if not session.catalog.areas:
            self._use_destination_wide_area(low_confidence=True)
            return True
        return False

    def _ensure_splits(self) -> bool:
        session = self.session
        if session.catalog.splits:
            return False
        prefs = session.preferences
        areas = self._plan_areas()
        if not areas:
            self._use_destination_wide_area(low_confidence=True)
            return True
        nights = prefs.nights or 7
        splits = generate_splits(
            areas, nights, prefs.max_bases, self._settings, prefer_adjacent=prefs.prefer_adjacent_areas
        )
        if not splits:
            best = next((a for a in areas if a.usable), areas[0])
            splits = [build_split([best], [nights], self._settings)]
        session.catalog.splits = {s.id: s for s in splits}
        return True

    def _needs_single_base(self) -> bool:
        destination = self.session.preferences.destination
        if destination is None or destination.type not in (DestinationType.city, DestinationType.resort):
            return False
        return not self.session.catalog.splits

    def _ensure_single_base(self) -> bool:
        if not self._needs_single_base():
            return False
        self._use_destination_wide_area(low_confidence=False)
        return True

    def _use_destination_wide_area(self, *, low_confidence: bool) -> None:
        """One base covering the whole destination, with a one-stop split."""
        session = self.session
        prefs = session.preferences
        profile = destination_wide_area(prefs)
        area = score_area(profile, prefs, AreaWeights.from_settings(self._settings)).model_copy(
            update={"usable": True}
        )
        split = build_split([area], [prefs.nights or 7], self._settings)
        session.area_profiles = [profile]
        session.catalog.areas = {area.id: area}
        session.catalog.splits = {split.id: split}
        session.enrichment_status[EnrichmentType.areas] = (
            EnrichmentStatus.error if low_confidence else EnrichmentStatus.done
        )
        session.preferences = prefs.model_copy(
            update={"selected_areas": [area.id], "selected_split_id": split.id}
        )
        session.confidence[ConfidenceField.areas] = ConfidenceLevel.inferred
        session.confidence[ConfidenceField.split] = ConfidenceLevel.inferred
        session.low_confidence = session.low_confidence or low_confidence
        session.record("fallback", f"single base {area.id}", area_id=area.id, low_confidence=low_confidence)
        logger.info(
            "Using destination-wide base",
            extra={
                "structured": {
                    "session_id": session.session_id,
                    "area_id": area.id,
                    "low_confidence": low_confidence,
                }
            },
        )

    async def _ensure_shortlists(self, ask_preferences: bool = True) -> bool:
        session = self.session
        if self._ensure_single_base():
            return True
        if await self._ensure_layer(EnrichmentType.hotels):
            return True
        if await self._ensure_layer(EnrichmentType.pricing):
            return True
        if ask_preferences and not session.level(ConfidenceField.hotel_preferences).is_settled:
            return False
        if session.hotel_shortlists:
            return False
        self._build_shortlists()
        return True

    def _build_shortlists(self) -> None:
        session = self.session
        split = self._selected_split()
        if split is None:
            raise StateTransitionError("No split selected")
        catalog = session.catalog
        shortlists = []
        for stop in split.stops:
            area = catalog.areas.get(stop.area_id)
            shortlist, ranked = build_shortlist(
                stop,
                area.name if area else stop.area_id,
                catalog.hotels_for_area(stop.area_id),
                session.preferences,
                self._settings.hotel_shortlist_size,
            )
            catalog.hotels.update({h.place_id: h for h in ranked})
            shortlists.append(shortlist)
        session.hotel_shortlists = shortlists
        if not any(s.hotel_ids for s in shortlists):
            # Nothing to pick from; the plan goes ahead without a hotel choice
            session.confidence[ConfidenceField.hotels] = ConfidenceLevel.inferred
            session.low_confidence = True

    def _sync_hotel_selection(self) -> None:
        session = self.session
        selected = session.preferences.selected_hotels
        session.hotel_shortlists = [
            s.model_copy(
                update={"selected_hotel_id": selected.get(s.area_id) if selected.get(s.area_id) in s.hotel_ids else None}
            )
            for s in session.hotel_shortlists
        ]

    def _selected_split(self) -> ItinerarySplit | None:
        splits = self.session.catalog.splits
        split_id = self.session.preferences.selected_split_id
        if split_id in splits:
            return splits[split_id]
        return next(iter(splits.values()), None)

    # ------------------------------------------------------------------
    # Itinerary and quality
    # ------------------------------------------------------------------

    def build_itinerary(self) -> QuickPlanItinerary:
        """Build the full plan for the current generation."""
        session = self.session
        split = self._selected_split()
        if split is None:
            raise StateTransitionError("No split selected")
        if not session.hotel_shortlists:
            self._build_shortlists()
        prefs = session.preferences
        result = schedule_days(prefs, split, session.catalog, self._settings)
        dining = build_dining_plan(prefs, split, session.catalog, result.days, self._settings)
        itinerary = QuickPlanItinerary(
            id=f"itin-{session.session_id}-g{session.generation}-{session.next_sequence()}",
            generation=session.generation,
            split_id=split.id,
            stops=list(split.stops),
            days=result.days,
            hotel_shortlists=list(session.hotel_shortlists),
            dining_plan=dining,
            evidence_refs=_evidence_refs(result.days),
            confidence_summary=self._confidence_summary(),
            low_confidence=session.low_confidence,
            unmet_constraints=result.unmet,
            generated_at=datetime.now(UTC),
        )
        session.itinerary = itinerary
        session.quality = None
        session.quality_override = False
        session.regeneration_attempts = 0
        session.record(
            "itinerary",
            f"built {itinerary.id}",
            state=PlanningState.DAILY_ITINERARY_BUILD.value,
            split_id=split.id,
            unmet=[u.code for u in result.unmet],
        )
        return itinerary

    def _confidence_summary(self) -> str:
        session = self.session
        if session.low_confidence:
            return "low"
        inferred = sum(1 for level in session.confidence.values() if level == ConfidenceLevel.inferred)
        return "high" if inferred == 0 else "medium"

    def run_quality_check(self) -> QualityCheckResult:
        """Check the current itinerary and record the result on it."""
        session = self.session
        if not session.itinerary_ready:
            raise StateTransitionError("No itinerary for the current generation")
        result = run_quality_checks(session.preferences, session.itinerary, session.catalog, self._settings)
        session.quality = result
        session.itinerary = session.itinerary.model_copy(
            update={
                "quality_check_passed": result.passed,
                "quality_score": result.score,
                "unmet_constraints": result.constraints,
            }
        )
        session.record(
            "quality",
            result.summary,
            state=PlanningState.QUALITY_SELF_CHECK.value,
            passed=result.passed,
            score=result.score,
        )
        return result

    def override_quality(self) -> None:
        """Accept the plan despite critical findings."""
        session = self.session
        if session.quality is None:
            raise StateTransitionError("Quality check has not run")
        session.quality_override = True
        session.record(
            "override",
            "critical findings accepted",
            state=PlanningState.QUALITY_SELF_CHECK.value,
            codes=[c.code for c in session.quality.critical],
        )

    def _regenerate_for_quality(self) -> bool:
        """Replace hotels behind critical findings; False when nothing can be swapped."""
        session = self.session
        itinerary, quality = session.itinerary, session.quality
        offending = {i for c in quality.critical for i in c.affected_ids if i in session.catalog.hotels}
        if not offending:
            return False
        stop_ids = {s.stop_id for s in itinerary.hotel_shortlists if offending & set(s.hotel_ids)}
        over_budget = any(c.code == "OVER_BUDGET" for c in quality.critical)
        self._drop_hotel_selections(s.area_id for s in itinerary.hotel_shortlists if s.stop_id in stop_ids)
        regenerated = regenerate_hotels(
            itinerary,
            session.preferences,
            session.catalog,
            self._settings,
            stop_ids=stop_ids,
            cheaper_first=over_budget,
            exclude=offending,
            exclude_shown=False,
        )
        session.hotel_shortlists = list(regenerated.hotel_shortlists)
        session.itinerary = regenerated
        session.quality = None
        session.record("regenerate", "hotels replaced after quality check", stops=sorted(stop_ids))
        return True

    def _drop_hotel_selections(self, area_ids) -> None:
        drop = set(area_ids)
        session = self.session
        session.preferences = session.preferences.model_copy(
            update={"selected_hotels": {a: h for a, h in session.preferences.selected_hotels.items() if a not in drop}}
        )

    # ------------------------------------------------------------------
    # Satisfaction
    # ------------------------------------------------------------------

    def submit_satisfaction(self, response: SatisfactionResponse) -> QuickPlanItinerary | None:
        """Apply the traveler's verdict.

        yes finishes the session; almost regenerates only the components the
        issues point at; no restarts from vibe and hard-nos, keeping the
        destination, dates, party and budget.
        """
        session = self.session
        if not session.itinerary_ready:
            raise StateTransitionError("No plan to rate")
        session.satisfaction.append(response)
        session.record(
            "satisfaction",
            response.verdict.value,
            state=PlanningState.SATISFACTION_GATE.value,
            issues=[i.category.value for i in response.issues],
        )

        match response.verdict:
            case SatisfactionVerdict.yes:
                session.confidence[ConfidenceField.final_review] = ConfidenceLevel.complete
                session.confidence[ConfidenceField.satisfaction] = ConfidenceLevel.complete
                return session.itinerary
            case SatisfactionVerdict.no:
                self._restart_from(RESTART_STATE)
                return None
            case SatisfactionVerdict.almost:
                return self._regenerate(response)

    def _regenerate(self, response: SatisfactionResponse) -> QuickPlanItinerary | None:
        session = self.session
        components = components_for(response)
        session.confidence[ConfidenceField.satisfaction] = ConfidenceLevel.unknown
        if RegenerationComponent.areas in components:
            self._reopen_areas()
            return None

        split = self._selected_split()
        itinerary = session.itinerary
        for component in components:
            match component:
                case RegenerationComponent.schedule:
                    session.preferences = shifted_preferences(session.preferences, response)
                    itinerary = regenerate_schedule(
                        itinerary,
                        session.preferences,
                        split,
                        session.catalog,
                        self._settings,
                        prioritize=missing_must_dos(session.preferences, itinerary, response),
                    )
                case RegenerationComponent.hotels:
                    stop_ids = {i.stop_id for i in response.issues if i.category in HOTEL_ISSUES and i.stop_id}
                    affected = stop_ids or {s.stop_id for s in itinerary.hotel_shortlists}
                    self._drop_hotel_selections(
                        s.area_id for s in itinerary.hotel_shortlists if s.stop_id in affected
                    )
                    itinerary = regenerate_hotels(
                        itinerary,
                        session.preferences,
                        session.catalog,
                        self._settings,
                        stop_ids=affected,
                        cheaper_first=any(
                            i.category == SatisfactionIssueCategory.budget_issues for i in response.issues
                        ),
                    )
                    session.hotel_shortlists = list(itinerary.hotel_shortlists)
                case RegenerationComponent.dining:
                    itinerary = regenerate_dining(itinerary, session.preferences, split, session.catalog, self._settings)

        session.itinerary = itinerary
        session.quality = None
        session.quality_override = False
        session.record(
            "regenerate",
            "satisfaction regeneration",
            components=[c.value for c in components],
            itinerary_id=itinerary.id,
        )
        self.run_quality_check()
        return session.itinerary

    def _reopen_areas(self) -> None:
        session = self.session
        for f in (ConfidenceField.areas, ConfidenceField.split):
            session.confidence[f] = ConfidenceLevel.partial
        self._lower(
            ConfidenceField.review_lock,
            ConfidenceField.hotels,
            ConfidenceField.final_review,
            ConfidenceField.satisfaction,
        )
        session.catalog.splits = {}
        session.preferences = session.preferences.model_copy(
            update={"selected_split_id": None, "selected_hotels": {}, "preferences_locked": False}
        )
        self._clear_plan()

    def _restart_from(self, state: PlanningState) -> None:
        session = self.session
        start = STATE_ORDER.index(state)
        for f, owner in FIELD_OWNER.items():
            if STATE_ORDER.index(owner) >= start:
                session.confidence[f] = ConfidenceLevel.unknown
        session.question_attempts.clear()
        session.pending_contradictions.clear()
        self._bump_generation(f"restart from {state.value}")
        self._refresh_tradeoffs()

    # ------------------------------------------------------------------
    # Free text
    # ------------------------------------------------------------------

    async def handle_free_text(self, text: str) -> FreeTextOutcome:
        """Commands, preference notes, or a question for the assistant."""
        session = self.session
        normalized = " ".join(text.strip().lower().split())

        if normalized in RESET_COMMANDS:
            self.reset()
            return FreeTextOutcome(kind="command", command="reset", question=self.select_question())
        if normalized in BACK_COMMANDS:
            current = self.current_state()
            target = previous_state(current, self.snapshot())
            if target is None:
                raise StateTransitionError(f"Cannot go back from {current.value}")
            self.go_back(target)
            return FreeTextOutcome(kind="command", command="back", question=self.select_question())
        if normalized in SKIP_COMMANDS:
            self.skip_question()
            return FreeTextOutcome(kind="command", command="skip", question=self.select_question())

        question = self.select_question()
        if normalized.startswith(NOTE_PREFIX):
            note = UserNote(
                field=question.field if question else "general",
                note=text.strip()[len(NOTE_PREFIX) :].strip(),
                created_at=datetime.now(UTC),
            )
            session.preferences = session.preferences.model_copy(
                update={"user_notes": [*session.preferences.user_notes, note]}
            )
            session.record("note", note.note, field=note.field)
            return FreeTextOutcome(kind="note", question=question)

        response = await self._llm.respond(
            message=text,
            prefs=session.preferences.model_copy(deep=True),
            evidence=self._evidence()[:MAX_LLM_EVIDENCE],
            pending_question=question,
        )
        response = self._presentable(response)
        session.record("assistant", response.message, response_type=response.type.value)
        return FreeTextOutcome(kind="assistant", response=response, question=question)

    def skip_question(self) -> None:
        """Accept the default for the current question.

        Raises:
            StateTransitionError: The question has no default
        """
        question = self.select_question()
        if question is None or question.field not in FIELD_DEFAULTS:
            raise StateTransitionError("This question can't be skipped")
        cf = ConfidenceField(question.field)
        self._commit(cf, FIELD_DEFAULTS[cf](self.session), ConfidenceLevel.inferred)

    def _presentable(self, response: AssistantResponse) -> AssistantResponse:
        """Keep only recommendations that point at a verified catalog entity."""
        catalog = self.session.catalog
        known = {e.place_id for e in self._evidence() if e.place_id}
        known.update(catalog.hotels, catalog.activities, catalog.restaurants, catalog.areas)
        kept = [r for r in response.recommendations if r.place_id in known]
        if len(kept) == len(response.recommendations):
            return response
        logger.warning(
            "Dropped unverified recommendations",
            extra={
                "structured": {
                    "session_id": self.session.session_id,
                    "dropped": [r.name for r in response.recommendations if r.place_id not in known],
                }
            },
        )
        return response.model_copy(update={"recommendations": kept})

    def _evidence(self) -> list[Evidence]:
        catalog = self.session.catalog
        evidence: list[Evidence] = []
        for entity in [*catalog.hotels.values(), *catalog.activities.values(), *catalog.restaurants.values()]:
            evidence.extend(entity.evidence)
        return evidence

    def summarize_preferences(self) -> list[str]:
        """One line per known preference, for the review-and-lock step."""
        session = self.session
        prefs = session.preferences
        lines = []
        if prefs.destination:
            lines.append(f"Destination: {prefs.destination.canonical_name}")
        if prefs.start_date and prefs.end_date:
            lines.append(f"Dates: {prefs.start_date.isoformat()} to {prefs.end_date.isoformat()}")
        elif prefs.nights:
            lines.append(f"Length: {prefs.nights} nights")
        if prefs.adults:
            party = f"{prefs.adults} adult(s)"
            if prefs.children:
                ages = ", ".join(str(a) for a in prefs.child_ages)
                party += f", {prefs.children} child(ren)" + (f" aged {ages}" if ages else "")
            lines.append(f"Party: {party}")
        if prefs.budget_per_night:
            lines.append(f"Budget: ${prefs.budget_per_night.min}-{prefs.budget_per_night.max} per night")
        if prefs.vibes:
            lines.append(f"Vibe: {', '.join(prefs.vibes)}")
        if prefs.hard_nos:
            lines.append(f"Avoid: {', '.join(prefs.hard_nos)}")
        if prefs.pace:
            lines.append(f"Pace: {prefs.pace.value}")
        if prefs.selected_activities:
            activities = ", ".join(
                a.type + (" (must-do)" if a.is_must_do else "") for a in prefs.selected_activities
            )
            lines.append(f"Activities: {activities}")
        split = self._selected_split() if prefs.selected_split_id else None
        if split is not None:
            lines.append(f"Bases: {split.name}")
        elif prefs.selected_areas:
            names = [session.catalog.areas[a].name for a in prefs.selected_areas if a in session.catalog.areas]
            lines.append(f"Areas: {', '.join(names)}")
        for resolution in session.resolutions:
            lines.append(f"Tradeoff: {resolution.tradeoff_type.value} -> {resolution.option_id}")
        return lines


def _describe(values: dict[str, Any]) -> str:
    parts = []
    for key, value in values.items():
        if hasattr(value, "canonical_name"):
            value = value.canonical_name
        elif hasattr(value, "model_dump"):
            value = value.model_dump(mode="json")
        elif isinstance(value, list):
            value = ", ".join(getattr(v, "type", str(v)) for v in value) or "none"
        parts.append(f"{key.replace('_', ' ')} {value}")
    return "; ".join(parts)


def _evidence_refs(days: Sequence[QuickPlanDay]) -> list[str]:
    refs: dict[str, None] = {}
    for day in days:
        for block in day.blocks():
            refs.update(dict.fromkeys(block.evidence_ids))
    return list(refs)
