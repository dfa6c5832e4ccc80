"""Prometheus metrics for enrichment fetches and planning."""

from prometheus_client import Counter, Histogram

# Fetch execution metrics
fetch_latency_ms = Histogram(
    "quickplan_fetch_latency_ms",
    "Collaborator fetch latency in milliseconds",
    ["source", "outcome"],
    buckets=[10, 50, 100, 200, 500, 1000, 2000, 4000, 8000],
)

fetch_errors_total = Counter(
    "quickplan_fetch_errors_total",
    "Total collaborator fetch errors",
    ["source", "reason"],
)

fetch_cache_hits_total = Counter(
    "quickplan_fetch_cache_hits_total",
    "Total collaborator fetch cache hits",
    ["source"],
)

# Pipeline / orchestration metrics
enrichment_results_total = Counter(
    "quickplan_enrichment_results_total",
    "Enrichment layer results applied to sessions",
    ["layer", "outcome"],
)

stale_enrichment_discarded_total = Counter(
    "quickplan_stale_enrichment_discarded_total",
    "Enrichment results discarded because the session generation moved on",
    ["layer"],
)

quality_constraints_total = Counter(
    "quickplan_quality_constraints_total",
    "Unmet constraints found by the quality self-check",
    ["type", "severity"],
)

questions_asked_total = Counter(
    "quickplan_questions_asked_total",
    "Questions issued per planning state",
    ["state"],
)


class PrometheusFetchMetrics:
    """Prometheus-based fetch metrics implementation."""

    def record_latency(self, source: str, outcome: str, latency_ms: float) -> None:
        fetch_latency_ms.labels(source=source, outcome=outcome).observe(latency_ms)

    def inc_error(self, source: str, reason: str) -> None:
        fetch_errors_total.labels(source=source, reason=reason).inc()

    def inc_cache_hit(self, source: str) -> None:
        fetch_cache_hits_total.labels(source=source).inc()
