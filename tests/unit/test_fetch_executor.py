"""Unit tests for the fetch executor.

Tests cover:
1. Timeout behavior
2. Retry + jitter
3. Circuit breaker (threshold, half-open, stale generations don't count)
4. Cache integration
5. Generation guard (before execute, between attempts)
6. Metrics wiring
"""

import asyncio
import logging
from datetime import UTC, datetime, timedelta

import pytest
from prometheus_client import REGISTRY
from pydantic import BaseModel

from backend.quickplan.enrichment.executor import (
    BreakerState,
    CircuitBreaker,
    FetchCache,
    FetchCircuitOpenError,
    FetchConfig,
    FetchContext,
    FetchError,
    FetchExecutor,
    FetchTimeoutError,
    GenerationGuard,
    StaleGenerationError,
    get_breaker_registry,
)
from backend.quickplan.utils.logging import StructuredFetchLogger
from backend.quickplan.utils.metrics import PrometheusFetchMetrics


class DummyPayload(BaseModel):
    """Test payload."""

    value: str


def make_config(**overrides) -> FetchConfig:
    defaults = {
        "hard_timeout_ms": 200,
        "retry_count": 1,
        "retry_jitter_min_ms": 200,
        "retry_jitter_max_ms": 500,
        "breaker_failure_threshold": 5,
        "breaker_window_seconds": 60,
        "breaker_half_open_seconds": 30,
        "cache_ttl_seconds": 0,
    }
    defaults.update(overrides)
    return FetchConfig(**defaults)


def make_ctx(source: str = "places", generation: int = 0) -> FetchContext:
    return FetchContext(session_id="s1", source=source, generation=generation)


class RecordingSleep:
    """Sleep stand-in that remembers requested delays."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class TestGenerationGuard:
    """Test GenerationGuard staleness checks."""

    def test_fixed_guard_is_never_stale(self) -> None:
        guard = GenerationGuard.fixed(3)
        assert guard.is_stale is False
        guard.raise_if_stale()

    def test_guard_goes_stale_when_generation_moves(self) -> None:
        live = {"generation": 1}
        guard = GenerationGuard(issued=1, current=lambda: live["generation"])
        assert guard.is_stale is False

        live["generation"] = 2
        assert guard.is_stale is True
        with pytest.raises(StaleGenerationError, match="superseded by 2"):
            guard.raise_if_stale()


class TestCircuitBreaker:
    """Test CircuitBreaker state transitions."""

    def make_breaker(self, threshold: int = 3) -> CircuitBreaker:
        return CircuitBreaker(
            source="test",
            failure_threshold=threshold,
            window_seconds=60,
            half_open_seconds=30,
        )

    def test_breaker_starts_closed(self) -> None:
        assert self.make_breaker().state == BreakerState.CLOSED

    def test_breaker_opens_after_threshold_failures(self) -> None:
        now = datetime.now(UTC)
        breaker = self.make_breaker()

        for _ in range(3):
            breaker.record_failure(now)

        assert breaker.state == BreakerState.OPEN
        assert breaker.allows(now) is False

    def test_failures_outside_window_are_forgotten(self) -> None:
        now = datetime.now(UTC)
        breaker = self.make_breaker()

        breaker.record_failure(now - timedelta(seconds=120))
        breaker.record_failure(now - timedelta(seconds=90))
        breaker.record_failure(now)

        assert breaker.state == BreakerState.CLOSED
        assert len(breaker.failure_times) == 1

    def test_breaker_half_opens_after_cool_off(self) -> None:
        now = datetime.now(UTC)
        breaker = self.make_breaker()
        for _ in range(3):
            breaker.record_failure(now)

        assert breaker.allows(now + timedelta(seconds=29)) is False
        assert breaker.allows(now + timedelta(seconds=30)) is True
        assert breaker.state == BreakerState.HALF_OPEN

    def test_half_open_success_closes(self) -> None:
        now = datetime.now(UTC)
        breaker = self.make_breaker()
        for _ in range(3):
            breaker.record_failure(now)
        breaker.allows(now + timedelta(seconds=31))

        breaker.record_success()

        assert breaker.state == BreakerState.CLOSED
        assert breaker.failure_times == []
        assert breaker.opened_at is None

    def test_half_open_failure_reopens_immediately(self) -> None:
        now = datetime.now(UTC)
        breaker = CircuitBreaker(source="test", failure_threshold=5, window_seconds=10, half_open_seconds=30)
        for _ in range(5):
            breaker.record_failure(now)
        later = now + timedelta(seconds=31)
        breaker.allows(later)

        breaker.record_failure(later)

        assert len(breaker.failure_times) == 1
        assert breaker.state == BreakerState.OPEN
        assert breaker.opened_at == later


class TestFetchCache:
    """Test FetchCache keys and expiry."""

    def test_key_is_deterministic_per_source_and_payload(self) -> None:
        a = FetchCache.make_key("places", DummyPayload(value="x"))
        b = FetchCache.make_key("places", DummyPayload(value="x"))
        c = FetchCache.make_key("pricing", DummyPayload(value="x"))
        d = FetchCache.make_key("places", DummyPayload(value="y"))

        assert a == b
        assert a != c
        assert a != d

    def test_expired_entries_are_dropped(self) -> None:
        cache = FetchCache()
        now = datetime.now(UTC)
        cache.set("k", "v", ttl_seconds=10, now=now)

        assert cache.get("k", now + timedelta(seconds=5)).value == "v"
        assert cache.get("k", now + timedelta(seconds=10)) is None
        assert cache.get("k", now) is None


class TestFetchExecutor:
    """Test FetchExecutor retry, timeout, breaker and cache behavior."""

    @pytest.mark.asyncio
    async def test_success_returns_value_and_provenance(self) -> None:
        executor = FetchExecutor(make_config())

        async def fn(payload: DummyPayload) -> str:
            return payload.value.upper()

        result = await executor.execute(make_ctx(generation=4), fn, DummyPayload(value="ok"))

        assert result.value == "OK"
        assert result.generation == 4
        assert result.provenance.source == "places"
        assert result.provenance.cache_hit is False

    @pytest.mark.asyncio
    async def test_retry_then_success_sleeps_with_jitter(self) -> None:
        sleep = RecordingSleep()
        executor = FetchExecutor(make_config(retry_count=1), sleep_fn=sleep)
        calls = 0

        async def flaky(payload: DummyPayload) -> str:
            nonlocal calls
            calls += 1
            if calls == 1:
                raise ConnectionError("reset")
            return "ok"

        result = await executor.execute(make_ctx(), flaky, DummyPayload(value="x"))

        assert result.value == "ok"
        assert calls == 2
        assert len(sleep.calls) == 1
        assert 0.2 <= sleep.calls[0] <= 0.5

    @pytest.mark.asyncio
    async def test_all_timeouts_raise_fetch_timeout(self) -> None:
        sleep = RecordingSleep()
        executor = FetchExecutor(make_config(hard_timeout_ms=10, retry_count=1), sleep_fn=sleep)

        async def slow(payload: DummyPayload) -> str:
            await asyncio.sleep(1)
            return "late"

        with pytest.raises(FetchTimeoutError, match="2 attempt"):
            await executor.execute(make_ctx(), slow, DummyPayload(value="x"))
        assert len(sleep.calls) == 1

    @pytest.mark.asyncio
    async def test_all_errors_raise_fetch_error_with_cause(self) -> None:
        executor = FetchExecutor(make_config(retry_count=0))

        async def broken(payload: DummyPayload) -> str:
            raise ValueError("bad response")

        with pytest.raises(FetchError) as exc_info:
            await executor.execute(make_ctx(), broken, DummyPayload(value="x"))
        assert isinstance(exc_info.value.__cause__, ValueError)

    @pytest.mark.asyncio
    async def test_breaker_opens_and_rejects_without_calling(self) -> None:
        executor = FetchExecutor(make_config(retry_count=0, breaker_failure_threshold=2))
        calls = 0

        async def broken(payload: DummyPayload) -> str:
            nonlocal calls
            calls += 1
            raise ConnectionError("down")

        for _ in range(2):
            with pytest.raises(FetchError):
                await executor.execute(make_ctx(), broken, DummyPayload(value="x"))

        with pytest.raises(FetchCircuitOpenError):
            await executor.execute(make_ctx(), broken, DummyPayload(value="x"))
        assert calls == 2

    @pytest.mark.asyncio
    async def test_breakers_are_per_source(self) -> None:
        executor = FetchExecutor(make_config(retry_count=0, breaker_failure_threshold=1))

        async def broken(payload: DummyPayload) -> str:
            raise ConnectionError("down")

        async def fine(payload: DummyPayload) -> str:
            return "ok"

        with pytest.raises(FetchError):
            await executor.execute(make_ctx("places"), broken, DummyPayload(value="x"))

        result = await executor.execute(make_ctx("pricing"), fine, DummyPayload(value="x"))
        assert result.value == "ok"
        assert get_breaker_registry().get_or_create("places", executor.config).state == BreakerState.OPEN

    @pytest.mark.asyncio
    async def test_cache_hit_skips_call(self) -> None:
        executor = FetchExecutor(make_config(cache_ttl_seconds=60))
        calls = 0

        async def fn(payload: DummyPayload) -> str:
            nonlocal calls
            calls += 1
            return f"value-{calls}"

        first = await executor.execute(make_ctx(), fn, DummyPayload(value="x"))
        second = await executor.execute(make_ctx(), fn, DummyPayload(value="x"))

        assert first.value == second.value == "value-1"
        assert second.provenance.cache_hit is True
        assert calls == 1

    @pytest.mark.asyncio
    async def test_cache_disabled_when_ttl_is_zero(self) -> None:
        executor = FetchExecutor(make_config(cache_ttl_seconds=0))
        calls = 0

        async def fn(payload: DummyPayload) -> int:
            nonlocal calls
            calls += 1
            return calls

        await executor.execute(make_ctx(), fn, DummyPayload(value="x"))
        await executor.execute(make_ctx(), fn, DummyPayload(value="x"))
        assert calls == 2

    @pytest.mark.asyncio
    async def test_stale_guard_before_execute_never_calls(self) -> None:
        executor = FetchExecutor(make_config())
        called = False

        async def fn(payload: DummyPayload) -> str:
            nonlocal called
            called = True
            return "ok"

        guard = GenerationGuard(issued=1, current=lambda: 2)
        with pytest.raises(StaleGenerationError):
            await executor.execute(make_ctx(generation=1), fn, DummyPayload(value="x"), guard=guard)
        assert called is False

    @pytest.mark.asyncio
    async def test_generation_moving_between_attempts_stops_retry(self) -> None:
        live = {"generation": 1}
        executor = FetchExecutor(make_config(retry_count=2), sleep_fn=RecordingSleep())
        calls = 0

        async def fn(payload: DummyPayload) -> str:
            nonlocal calls
            calls += 1
            live["generation"] = 2
            raise ConnectionError("down")

        guard = GenerationGuard(issued=1, current=lambda: live["generation"])
        with pytest.raises(StaleGenerationError):
            await executor.execute(make_ctx(generation=1), fn, DummyPayload(value="x"), guard=guard)
        assert calls == 1

    @pytest.mark.asyncio
    async def test_stale_error_from_call_is_not_a_breaker_failure(self) -> None:
        executor = FetchExecutor(make_config(retry_count=0, breaker_failure_threshold=1))

        async def fn(payload: DummyPayload) -> str:
            raise StaleGenerationError("moved on")

        with pytest.raises(StaleGenerationError):
            await executor.execute(make_ctx(), fn, DummyPayload(value="x"))

        breaker = get_breaker_registry().get_or_create("places", executor.config)
        assert breaker.state == BreakerState.CLOSED
        assert breaker.failure_times == []


class TestFetchMetricsWiring:
    """Test Prometheus metrics are recorded by the executor."""

    @pytest.mark.asyncio
    async def test_error_counter_increments(self) -> None:
        executor = FetchExecutor(make_config(retry_count=0), metrics=PrometheusFetchMetrics())
        labels = {"source": "metrics-test", "reason": "execution_error"}
        before = REGISTRY.get_sample_value("quickplan_fetch_errors_total", labels) or 0.0

        async def broken(payload: DummyPayload) -> str:
            raise RuntimeError("boom")

        with pytest.raises(FetchError):
            await executor.execute(make_ctx("metrics-test"), broken, DummyPayload(value="x"))

        after = REGISTRY.get_sample_value("quickplan_fetch_errors_total", labels)
        assert after == before + 1


class TestStructuredFetchLogger:
    """Test fetch attempts are logged with structured fields."""

    @pytest.mark.asyncio
    async def test_failure_logged_as_warning(self, caplog: pytest.LogCaptureFixture) -> None:
        executor = FetchExecutor(make_config(retry_count=0), logger=StructuredFetchLogger())

        async def broken(payload: DummyPayload) -> str:
            raise RuntimeError("boom")

        with caplog.at_level(logging.INFO, logger="backend.quickplan.utils.logging"):
            with pytest.raises(FetchError):
                await executor.execute(make_ctx("places", generation=2), broken, DummyPayload(value="x"))

        record = next(r for r in caplog.records if r.getMessage() == "places fetch error")
        assert record.levelno == logging.WARNING
        assert record.structured["generation"] == 2
        assert record.structured["error_reason"] == "RuntimeError"
        assert record.structured["failure_streak"] == 1

    @pytest.mark.asyncio
    async def test_success_after_failures_logged_as_recovery(self, caplog: pytest.LogCaptureFixture) -> None:
        fetch_logger = StructuredFetchLogger()
        executor = FetchExecutor(make_config(retry_count=1), logger=fetch_logger, sleep_fn=RecordingSleep())
        calls = 0

        async def flaky(payload: DummyPayload) -> str:
            nonlocal calls
            calls += 1
            if calls == 1:
                raise RuntimeError("boom")
            return payload.value

        with caplog.at_level(logging.INFO, logger="backend.quickplan.utils.logging"):
            result = await executor.execute(make_ctx("weather"), flaky, DummyPayload(value="x"))

        assert result.value == "x"
        assert [r.getMessage() for r in caplog.records] == [
            "weather fetch error",
            "weather fetch recovered after 1 failures",
        ]
        assert caplog.records[1].structured["recovered_after"] == 1
        assert fetch_logger.failure_streak("weather") == 0

    def test_streaks_are_tracked_per_source(self) -> None:
        fetch_logger = StructuredFetchLogger()

        fetch_logger.log_attempt(make_ctx("places"), 1, "timeout", 200.0, error_reason="timeout")
        fetch_logger.log_attempt(make_ctx("places"), 2, "timeout", 200.0, error_reason="timeout")
        fetch_logger.log_attempt(make_ctx("weather"), 1, "success", 12.0)

        assert fetch_logger.failure_streak("places") == 2
        assert fetch_logger.failure_streak("weather") == 0
