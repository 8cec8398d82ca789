from prometheus_client import Counter, Histogram

evaluations_total = Counter(
    "analytics_evaluations_total", "Funnel and goal evaluations by outcome", ["kind", "outcome"]
)
evaluation_duration = Histogram(
    "analytics_evaluation_seconds", "Wall time of funnel and goal evaluations", ["kind"]
)
enrichment_failures_total = Counter(
    "analytics_enrichment_failures_total", "Best-effort detail computations that failed", ["kind"]
)
product_cache_requests_total = Counter(
    "analytics_product_cache_requests_total", "Product info lookups by cache result", ["result"]
)
