from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Histogram

REGISTRY = CollectorRegistry()

HEALTH_HITS = Counter("ft_api_health_hits", "Health endpoint hits", registry=REGISTRY)
BATCH_REQUESTS = Counter("ft_batch_requests", "Batch step-progress requests processed", registry=REGISTRY)
BATCH_TARGETS = Counter(
    "ft_batch_targets",
    "Batch step-progress targets by outcome",
    ["outcome"],
    registry=REGISTRY,
)
STORE_RETRIES = Counter(
    "ft_store_retries",
    "Store calls retried after transient contention",
    registry=REGISTRY,
)
BATCH_SECONDS = Histogram(
    "ft_batch_duration_seconds",
    "Wall time of one batch step-progress request",
    registry=REGISTRY,
)
