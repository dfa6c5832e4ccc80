"""Structured logging for enrichment fetches.

Each record carries a `structured` dict for the JSON formatter. The logger
also tracks consecutive failures per source, so a run of timeouts against
one collaborator reads as a streak and the first success after it is
logged as a recovery.
"""

import logging
from typing import Any

from backend.quickplan.enrichment.executor import FetchContext, FetchLogger

logger = logging.getLogger(__name__)

OUTCOME_LEVELS: dict[str, int] = {
    "success": logging.INFO,
    "cache_hit": logging.DEBUG,
    "timeout": logging.WARNING,
    "error": logging.WARNING,
    "breaker_open": logging.ERROR,
}


class StructuredFetchLogger(FetchLogger):
    """Logs fetch attempts and per-source failure streaks."""

    def __init__(self) -> None:
        self._streaks: dict[str, int] = {}

    def failure_streak(self, source: str) -> int:
        return self._streaks.get(source, 0)

    def log_attempt(
        self,
        ctx: FetchContext,
        attempt: int,
        outcome: str,
        latency_ms: float,
        cache_hit: bool = False,
        error_reason: str | None = None,
    ) -> None:
        previous = self.failure_streak(ctx.source)
        if outcome in ("timeout", "error"):
            self._streaks[ctx.source] = previous + 1
        elif outcome == "success":
            self._streaks.pop(ctx.source, None)

        fields: dict[str, Any] = {
            "session_id": ctx.session_id,
            "generation": ctx.generation,
            "source": ctx.source,
            "attempt": attempt,
            "outcome": outcome,
            "latency_ms": round(latency_ms, 2),
            "failure_streak": self.failure_streak(ctx.source),
        }
        if ctx.trace_id:
            fields["trace_id"] = ctx.trace_id
        if cache_hit:
            fields["cache_hit"] = True
        if error_reason:
            fields["error_reason"] = error_reason

        if outcome == "success" and previous:
            fields["recovered_after"] = previous
            logger.info(f"{ctx.source} fetch recovered after {previous} failures", extra={"structured": fields})
            return
        logger.log(
            OUTCOME_LEVELS.get(outcome, logging.WARNING),
            f"{ctx.source} fetch {outcome}",
            extra={"structured": fields},
        )
