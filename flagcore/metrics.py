"""Prometheus метрики feature flags."""

from prometheus_client import Counter

flag_evaluations_total = Counter(
    "feature_flag_evaluations_total",
    "Total feature flag evaluations",
    ["reason"],
)

flag_reconciliation_total = Counter(
    "feature_flag_reconciliation_total",
    "Feature flag ensure operations by outcome",
    ["outcome"],  # created, existing, backfilled, error
)

flag_cache_loads_total = Counter(
    "feature_flag_cache_loads_total",
    "Feature flag cache fetches",
    ["status"],  # ok, error
)
