"""Shared pytest fixtures for all test suites."""

from collections.abc import Callable, Generator
from typing import Any

import pytest

from backend.quickplan.adapters.fixtures import (
    FixtureAreaCatalog,
    FixtureDiscussion,
    FixturePlaces,
    FixturePricing,
)
from backend.quickplan.config import Settings
from backend.quickplan.enrichment.executor import get_breaker_registry
from backend.quickplan.enrichment.pipeline import EnrichmentPipeline
from backend.quickplan.llm.client import DeterministicStubClient
from backend.quickplan.orchestration.orchestrator import QuickPlanOrchestrator
from backend.quickplan.orchestration.session import SessionContext


async def no_sleep(_: float) -> None:
    """Sleep replacement so retry and batch delays cost nothing."""
    return None


@pytest.fixture(autouse=True)
def reset_breakers() -> Generator[None, None, None]:
    """Breakers are process-wide; start every test with a clean registry."""
    get_breaker_registry().clear()
    yield
    get_breaker_registry().clear()


@pytest.fixture
def settings() -> Settings:
    """Settings with delays and caching turned off."""
    return Settings(
        _env_file=None,
        openai_api_key=None,
        enrichment_batch_delay_ms=0,
        retry_jitter_min_ms=0,
        retry_jitter_max_ms=0,
        fetch_cache_ttl_sec=0,
    )


@pytest.fixture
def pipeline(settings: Settings) -> EnrichmentPipeline:
    """Enrichment pipeline wired to the bundled fixture data."""
    return EnrichmentPipeline(
        areas=FixtureAreaCatalog(),
        places=FixturePlaces(),
        discussion=FixtureDiscussion(),
        pricing=FixturePricing(),
        settings=settings,
        sleep_fn=no_sleep,
    )


@pytest.fixture
def make_orchestrator(
    pipeline: EnrichmentPipeline, settings: Settings
) -> Callable[..., QuickPlanOrchestrator]:
    """Factory for orchestrators over a fresh session."""

    def factory(session_id: str = "s-test", **overrides: Any) -> QuickPlanOrchestrator:
        return QuickPlanOrchestrator(
            SessionContext(session_id=session_id),
            overrides.get("pipeline", pipeline),
            overrides.get("llm", DeterministicStubClient()),
            overrides.get("settings", settings),
        )

    return factory
