"""Async fetch executor for enrichment collaborators.

Each call gets:
- Hard timeout per attempt
- Bounded retries with jittered backoff
- Per-source circuit breaker shared through a registry
- TTL cache keyed on the request payload
- Generation guard: a request issued under a superseded session generation
  is abandoned instead of retried or returned
- Metrics and structured logging hooks
"""

import asyncio
import hashlib
import json
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel

from backend.quickplan.config import Settings
from backend.quickplan.models.common import Provenance

T = TypeVar("T")
P = TypeVar("P", bound=BaseModel)


class FetchTimeoutError(Exception):
    """Every attempt exceeded the hard timeout."""


class FetchCircuitOpenError(Exception):
    """Circuit breaker is open for this source."""


class FetchError(Exception):
    """Fetch failed after all attempts."""


class StaleGenerationError(Exception):
    """The session generation moved on while the request was in flight."""


@dataclass
class FetchResult(Generic[T]):
    """Fetched value with provenance and the generation it was issued under."""

    value: T
    provenance: Provenance
    generation: int


@dataclass(frozen=True)
class FetchContext:
    """Tracing context for one fetch."""

    session_id: str
    source: str
    generation: int
    trace_id: str = ""


@dataclass
class GenerationGuard:
    """Compares the issuing generation against the session's live one."""

    issued: int
    current: Callable[[], int] = field(default=lambda: 0)

    @classmethod
    def fixed(cls, generation: int) -> "GenerationGuard":
        return cls(issued=generation, current=lambda: generation)

    @property
    def is_stale(self) -> bool:
        return self.current() != self.issued

    def raise_if_stale(self) -> None:
        if self.is_stale:
            raise StaleGenerationError(
                f"generation {self.issued} superseded by {self.current()}"
            )


@dataclass
class FetchConfig:
    """Per-source execution settings."""

    hard_timeout_ms: int
    retry_count: int
    retry_jitter_min_ms: int
    retry_jitter_max_ms: int
    breaker_failure_threshold: int = 5
    breaker_window_seconds: int = 60
    breaker_half_open_seconds: int = 30
    cache_ttl_seconds: int = 0

    @classmethod
    def from_settings(cls, settings: Settings) -> "FetchConfig":
        return cls(
            hard_timeout_ms=settings.fetch_hard_timeout_ms,
            retry_count=settings.fetch_retry_count,
            retry_jitter_min_ms=settings.retry_jitter_min_ms,
            retry_jitter_max_ms=settings.retry_jitter_max_ms,
            breaker_failure_threshold=settings.circuit_breaker_failures,
            breaker_window_seconds=settings.circuit_breaker_window_sec,
            breaker_half_open_seconds=settings.circuit_breaker_half_open_sec,
            cache_ttl_seconds=settings.fetch_cache_ttl_sec,
        )


class BreakerState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreaker:
    """Opens after `failure_threshold` failures inside `window_seconds`."""

    source: str
    failure_threshold: int
    window_seconds: int
    half_open_seconds: int
    state: BreakerState = BreakerState.CLOSED
    failure_times: list[datetime] = field(default_factory=list)
    opened_at: datetime | None = None

    def record_success(self) -> None:
        if self.state == BreakerState.HALF_OPEN:
            self.state = BreakerState.CLOSED
            self.failure_times.clear()
            self.opened_at = None

    def record_failure(self, now: datetime) -> None:
        cutoff = now - timedelta(seconds=self.window_seconds)
        self.failure_times = [t for t in self.failure_times if t > cutoff]
        self.failure_times.append(now)

        if self.state == BreakerState.HALF_OPEN or len(self.failure_times) >= self.failure_threshold:
            self.state = BreakerState.OPEN
            self.opened_at = now

    def allows(self, now: datetime) -> bool:
        """Whether a call may go through; moves OPEN to HALF_OPEN after the cool-off."""
        if self.state == BreakerState.OPEN and self.opened_at is not None:
            if (now - self.opened_at).total_seconds() >= self.half_open_seconds:
                self.state = BreakerState.HALF_OPEN
        return self.state != BreakerState.OPEN


class BreakerRegistry:
    """Per-source breakers shared across executor calls."""

    def __init__(self) -> None:
        self._by_source: dict[str, CircuitBreaker] = {}

    def get_or_create(self, source: str, config: FetchConfig) -> CircuitBreaker:
        if source not in self._by_source:
            self._by_source[source] = CircuitBreaker(
                source=source,
                failure_threshold=config.breaker_failure_threshold,
                window_seconds=config.breaker_window_seconds,
                half_open_seconds=config.breaker_half_open_seconds,
            )
        return self._by_source[source]

    def clear(self) -> None:
        """Clear all breakers (useful for testing)."""
        self._by_source.clear()


_global_breaker_registry = BreakerRegistry()


def get_breaker_registry() -> BreakerRegistry:
    """Get the process-wide breaker registry."""
    return _global_breaker_registry


@dataclass
class CacheEntry:
    value: Any
    fetched_at: datetime
    ttl_seconds: int

    def is_fresh(self, now: datetime) -> bool:
        return (now - self.fetched_at).total_seconds() < self.ttl_seconds


class FetchCache:
    """In-memory TTL cache for fetch results."""

    def __init__(self) -> None:
        self._entries: dict[str, CacheEntry] = {}

    @staticmethod
    def make_key(source: str, payload: BaseModel) -> str:
        """Deterministic key from the source name and request payload."""
        data = json.dumps(payload.model_dump(mode="json"), sort_keys=True)
        return f"{source}:{hashlib.sha256(data.encode()).hexdigest()}"

    def get(self, key: str, now: datetime) -> CacheEntry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if not entry.is_fresh(now):
            del self._entries[key]
            return None
        return entry

    def set(self, key: str, value: Any, ttl_seconds: int, now: datetime) -> None:
        self._entries[key] = CacheEntry(value=value, fetched_at=now, ttl_seconds=ttl_seconds)

    def clear(self) -> None:
        self._entries.clear()


class FetchMetrics:
    """Metrics interface; the default records nothing."""

    def record_latency(self, source: str, outcome: str, latency_ms: float) -> None:
        pass

    def inc_error(self, source: str, reason: str) -> None:
        pass

    def inc_cache_hit(self, source: str) -> None:
        pass


class FetchLogger:
    """Logging interface; the default logs nothing."""

    def log_attempt(
        self,
        ctx: FetchContext,
        attempt: int,
        outcome: str,
        latency_ms: float,
        cache_hit: bool = False,
        error_reason: str | None = None,
    ) -> None:
        pass


class FetchExecutor:
    """Runs one collaborator call with the full failure-handling pipeline."""

    def __init__(
        self,
        config: FetchConfig,
        metrics: FetchMetrics | None = None,
        logger: FetchLogger | None = None,
        *,
        cache: FetchCache | None = None,
        breakers: BreakerRegistry | None = None,
        sleep_fn: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        """Initialize executor.

        Args:
            config: Timeouts, retries, breaker and cache settings
            metrics: Metrics recorder (defaults to no-op)
            logger: Structured logger (defaults to no-op)
            cache: Shared cache (a private one is created if omitted)
            breakers: Breaker registry (defaults to the process-wide one)
            sleep_fn: Injectable sleep function (default: asyncio.sleep)
        """
        self.config = config
        self._metrics = metrics or FetchMetrics()
        self._logger = logger or FetchLogger()
        self._cache = cache or FetchCache()
        self._breakers = breakers or get_breaker_registry()
        self._sleep = sleep_fn or asyncio.sleep

    async def execute(
        self,
        ctx: FetchContext,
        fn: Callable[[P], Awaitable[T]],
        payload: P,
        guard: GenerationGuard | None = None,
    ) -> FetchResult[T]:
        """Execute `fn(payload)`.

        Raises:
            StaleGenerationError: The guard's generation was superseded
            FetchCircuitOpenError: Breaker is open for ctx.source
            FetchTimeoutError: All attempts timed out
            FetchError: All attempts failed
        """
        guard = guard or GenerationGuard.fixed(ctx.generation)
        guard.raise_if_stale()
        started = time.monotonic()
        now = datetime.now(UTC)

        # Cached results are served even while the breaker is open
        ttl = self.config.cache_ttl_seconds
        cache_key = FetchCache.make_key(ctx.source, payload) if ttl > 0 else None
        if cache_key is not None:
            entry = self._cache.get(cache_key, now)
            if entry is not None:
                elapsed_ms = (time.monotonic() - started) * 1000
                self._metrics.record_latency(ctx.source, "cache_hit", elapsed_ms)
                self._metrics.inc_cache_hit(ctx.source)
                self._logger.log_attempt(ctx, 0, "cache_hit", elapsed_ms, cache_hit=True)
                return FetchResult(
                    value=entry.value,
                    provenance=Provenance(
                        source=ctx.source, fetched_at=entry.fetched_at, cache_hit=True
                    ),
                    generation=guard.issued,
                )

        breaker = self._breakers.get_or_create(ctx.source, self.config)
        if not breaker.allows(now):
            self._metrics.inc_error(ctx.source, "breaker_open")
            self._logger.log_attempt(ctx, 0, "breaker_open", 0.0, error_reason="breaker_open")
            raise FetchCircuitOpenError(f"Circuit breaker open for {ctx.source}")

        last_error: Exception | None = None
        attempts = self.config.retry_count + 1
        for attempt in range(1, attempts + 1):
            guard.raise_if_stale()
            attempt_started = time.monotonic()
            try:
                value = await asyncio.wait_for(
                    fn(payload), timeout=self.config.hard_timeout_ms / 1000
                )
            except StaleGenerationError:
                raise
            except TimeoutError as e:
                last_error = e
                reason = "timeout"
            except Exception as e:
                last_error = e
                reason = type(e).__name__
            else:
                elapsed_ms = (time.monotonic() - attempt_started) * 1000
                fetched_at = datetime.now(UTC)
                breaker.record_success()
                self._metrics.record_latency(ctx.source, "success", elapsed_ms)
                self._logger.log_attempt(ctx, attempt, "success", elapsed_ms)
                if cache_key is not None:
                    self._cache.set(cache_key, value, ttl, fetched_at)
                return FetchResult(
                    value=value,
                    provenance=Provenance(source=ctx.source, fetched_at=fetched_at, cache_hit=False),
                    generation=guard.issued,
                )

            elapsed_ms = (time.monotonic() - attempt_started) * 1000
            outcome = "timeout" if reason == "timeout" else "error"
            self._metrics.inc_error(ctx.source, reason if outcome == "timeout" else "execution_error")
            self._logger.log_attempt(ctx, attempt, outcome, elapsed_ms, error_reason=reason)
            breaker.record_failure(datetime.now(UTC))

            if attempt < attempts:
                jitter_ms = random.uniform(
                    self.config.retry_jitter_min_ms, self.config.retry_jitter_max_ms
                )
                await self._sleep(jitter_ms / 1000)

        if isinstance(last_error, TimeoutError):
            raise FetchTimeoutError(f"{ctx.source} timed out after {attempts} attempt(s)")
        raise FetchError(f"{ctx.source} failed after {attempts} attempt(s)") from last_error
