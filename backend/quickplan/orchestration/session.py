"""Session context for one planning conversation."""

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from backend.quickplan.models.areas import AreaProfile
from backend.quickplan.models.candidates import CandidateCatalog, HotelShortlist
from backend.quickplan.models.common import ConfidenceField, ConfidenceLevel, EnrichmentStatus, EnrichmentType
from backend.quickplan.models.itinerary import QuickPlanItinerary
from backend.quickplan.models.preferences import TripPreferences
from backend.quickplan.models.quality import QualityCheckResult
from backend.quickplan.models.satisfaction import SatisfactionResponse
from backend.quickplan.models.tradeoffs import Tradeoff, TradeoffResolution


def _initial_confidence() -> dict[ConfidenceField, ConfidenceLevel]:
    return {f: ConfidenceLevel.unknown for f in ConfidenceField}


def _initial_statuses() -> dict[EnrichmentType, EnrichmentStatus]:
    return {layer: EnrichmentStatus.pending for layer in EnrichmentType}


@dataclass(frozen=True)
class SessionEvent:
    """Append-only record of a committed change."""

    sequence: int
    kind: str  # answer, transition, contradiction, tradeoff, enrichment, stale, ...
    summary: str
    state: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass
class PendingContradiction:
    """A new value for a confirmed field, held until the traveler re-confirms."""

    field: ConfidenceField
    previous: Any
    proposed: Any


@dataclass
class SessionContext:
    """All state for one session.

    Passed by reference into every orchestrator call. Only the orchestrator
    mutates it, through its commit methods.
    """

    session_id: str
    preferences: TripPreferences = field(default_factory=TripPreferences)
    confidence: dict[ConfidenceField, ConfidenceLevel] = field(default_factory=_initial_confidence)
    generation: int = 0

    # Tradeoffs
    active_tradeoffs: list[Tradeoff] = field(default_factory=list)
    resolutions: list[TradeoffResolution] = field(default_factory=list)  # Append-only

    # Enrichment and generated plan
    enrichment_status: dict[EnrichmentType, EnrichmentStatus] = field(default_factory=_initial_statuses)
    catalog: CandidateCatalog = field(default_factory=CandidateCatalog)
    area_profiles: list[AreaProfile] = field(default_factory=list)  # Scoring inputs, kept for re-scoring
    hotel_shortlists: list[HotelShortlist] = field(default_factory=list)
    itinerary: QuickPlanItinerary | None = None
    quality: QualityCheckResult | None = None
    quality_override: bool = False
    regeneration_attempts: int = 0
    low_confidence: bool = False  # Defaults stood in for failed enrichment

    # Conversation tracking
    question_attempts: dict[ConfidenceField, int] = field(default_factory=dict)
    pending_contradictions: dict[ConfidenceField, PendingContradiction] = field(default_factory=dict)
    satisfaction: list[SatisfactionResponse] = field(default_factory=list)
    history: list[SessionEvent] = field(default_factory=list)

    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    sequence_counter: int = 0
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    def next_sequence(self) -> int:
        """Get next sequence number for events."""
        seq = self.sequence_counter
        self.sequence_counter += 1
        return seq

    def record(self, kind: str, summary: str, state: str | None = None, **details: Any) -> SessionEvent:
        event = SessionEvent(
            sequence=self.next_sequence(),
            kind=kind,
            summary=summary,
            state=state,
            details=details,
        )
        self.history.append(event)
        self.updated_at = event.at
        return event

    def level(self, f: ConfidenceField) -> ConfidenceLevel:
        return self.confidence.get(f, ConfidenceLevel.unknown)

    @property
    def itinerary_ready(self) -> bool:
        return self.itinerary is not None and self.itinerary.generation == self.generation

    @property
    def quality_cleared(self) -> bool:
        if not self.itinerary_ready or self.quality is None:
            return False
        return self.quality.passed or self.quality_override
