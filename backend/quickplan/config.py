"""Typed settings configuration - single source of truth."""

from functools import lru_cache

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_EFFORT_COSTS: dict[str, float] = {
    "beach": 1.0,
    "beach_day": 1.0,
    "spa": 1.0,
    "spa_session": 1.0,
    "dinner": 1.0,
    "swimming": 1.5,
    "snorkel": 1.5,
    "snorkeling": 1.5,
    "museum": 1.5,
    "museum_visit": 1.5,
    "shopping": 1.5,
    "nightlife": 1.5,
    "kayak": 2.0,
    "golf": 2.0,
    "food_tour": 2.0,
    "hiking_easy": 2.0,
    "surf": 2.0,
    "surf_session": 2.0,
    "half_day_tour": 2.5,
    "excursion": 2.5,
    "water_sports": 2.5,
    "diving": 3.0,
    "dive": 3.0,
    "hiking": 3.0,
    "hiking_moderate": 3.0,
    "adventure": 3.0,
    "day_trip": 3.0,
    "full_day_tour": 4.0,
}


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # External APIs
    google_places_api_key: str = ""
    places_base_url: str = "https://places.googleapis.com/v1/places:searchText"
    discussion_base_url: str = "https://www.reddit.com"
    discussion_user_agent: str = "quickplan-engine/0.1"

    # Text generation
    openai_api_key: SecretStr | None = None
    openai_model: str = "gpt-4o-mini"
    llm_max_retries: int = 1

    # Timeouts (milliseconds)
    fetch_soft_timeout_ms: int = 2000
    fetch_hard_timeout_ms: int = 4000
    fetch_retry_count: int = 1

    # Retry jitter (milliseconds)
    retry_jitter_min_ms: int = 200
    retry_jitter_max_ms: int = 500

    # Circuit breaker
    circuit_breaker_failures: int = 5
    circuit_breaker_window_sec: int = 60
    circuit_breaker_half_open_sec: int = 30

    # Cache TTL (seconds)
    fetch_cache_ttl_sec: int = 900

    # Enrichment worker pool
    enrichment_concurrency: int = 8
    enrichment_batch_delay_ms: int = 250

    # Enrichment minimum result counts
    min_area_candidates: int = 5
    max_area_candidates: int = 10
    min_hotels_per_area: int = 5
    min_hotels_for_valid_area: int = 2
    hotel_shortlist_size: int = 5
    restaurants_per_stop: int = 4

    # Evidence verification
    discussion_min_score: int = 10
    discussion_min_citations: int = 2

    # Area / split scoring
    area_weight_activity: float = 0.4
    area_weight_vibe: float = 0.35
    area_weight_budget: float = 0.25
    split_transfer_cost: float = 0.08
    split_cross_region_multiplier: float = 2.0
    split_candidate_areas: int = 6
    max_split_options: int = 5

    # Effort budget (points per day)
    pace_budget_chill: float = 3.0
    pace_budget_balanced: float = 4.0
    pace_budget_packed: float = 5.0
    effort_costs: dict[str, float] = Field(default_factory=lambda: dict(DEFAULT_EFFORT_COSTS))
    effort_default_cost: float = 2.0
    full_day_effort_threshold: float = 3.5
    travel_day_baseline: float = 2.0
    dinner_reservation_cost: float = 0.5

    # Orchestrator
    question_max_retries: int = 2
    quality_max_regenerations: int = 1


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
