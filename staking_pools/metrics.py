# metrics.py
# Prometheus gauges and counters describing the delegators cache

from prometheus_client import Counter, Gauge

from .models import CacheSnapshot


g_cache_timestamp = Gauge(
    "staking_pools_cache_timestamp_seconds",
    "Unix time of the last committed merge.",
)
g_validators_cached = Gauge(
    "staking_pools_validators_cached",
    "Number of validators with at least one delegator in the cache.",
)
g_delegators_cached = Gauge(
    "staking_pools_delegators_cached",
    "Number of distinct delegator accounts in the cache.",
)
g_pending_validators = Gauge(
    "staking_pools_pending_validators",
    "Validators waiting for a partial refresh.",
)
c_refresh_cycles = Counter(
    "staking_pools_refresh_cycles_total",
    "Refresh cycles by kind (full, partial) and outcome.",
    ["kind", "outcome"],
)
c_persistence_failures = Counter(
    "staking_pools_persistence_failures_total",
    "Failed attempts to write the cache file.",
)


def observe_snapshot(snapshot: CacheSnapshot) -> None:
    g_cache_timestamp.set(snapshot.timestamp)
    g_validators_cached.set(len(snapshot.forward))
    g_delegators_cached.set(len(snapshot.inverse))
