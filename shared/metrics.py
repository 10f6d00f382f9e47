"""
Prometheus instrumentation for the FoodList access layer.

Every collector owns a private registry, so several clients (or tests) in
one process never collide on metric names.
"""

from typing import Optional

from prometheus_client import Counter, Histogram, Info, CollectorRegistry

NAMESPACE = "foodlist"


class MetricsCollector:
    """Counters and histograms for requests, sessions, caching and deduplication."""

    def __init__(self, client_name: str, registry: Optional[CollectorRegistry] = None):
        self.client_name = client_name
        self.registry = registry if registry is not None else CollectorRegistry()

        Info(
            "client",
            "Access layer client information",
            namespace=NAMESPACE,
            registry=self.registry
        ).info({"client": client_name, "version": "1.0.0"})

        # Gateway
        self.requests = Counter(
            "requests_total",
            "Outbound requests that produced a response",
            ["method", "endpoint", "status_code"],
            namespace=NAMESPACE,
            registry=self.registry
        )
        self.request_duration = Histogram(
            "request_duration_seconds",
            "Outbound request duration in seconds",
            ["method", "endpoint"],
            namespace=NAMESPACE,
            registry=self.registry,
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)
        )
        self.request_errors = Counter(
            "request_errors_total",
            "Requests that failed, by error code",
            ["error"],
            namespace=NAMESPACE,
            registry=self.registry
        )
        self.circuit_transitions = Counter(
            "circuit_transitions_total",
            "Circuit breaker state changes",
            ["circuit", "state"],
            namespace=NAMESPACE,
            registry=self.registry
        )

        # Credentials
        self.session_fetches = Counter(
            "session_fetch_total",
            "Session token acquisitions",
            ["outcome"],
            namespace=NAMESPACE,
            registry=self.registry
        )

        # Caching
        self.cache_lookups = Counter(
            "cache_lookups_total",
            "Persisted entity lookups by freshness",
            ["kind", "result"],
            namespace=NAMESPACE,
            registry=self.registry
        )
        self.cache_write_failures = Counter(
            "cache_write_failures_total",
            "Best-effort entity writes that failed",
            ["kind"],
            namespace=NAMESPACE,
            registry=self.registry
        )
        self.inflight_joins = Counter(
            "inflight_dedup_total",
            "Callers that joined a request already in flight",
            ["scope"],
            namespace=NAMESPACE,
            registry=self.registry
        )

    def get_sample_value(self, name: str, **labels) -> float:
        """Read a sample by its unprefixed name; 0.0 when never recorded."""
        value = self.registry.get_sample_value(f"{NAMESPACE}_{name}", labels)
        return value if value is not None else 0.0

    def record_request(self, method: str, endpoint: str, status_code: int, duration: float):
        # Query strings would explode label cardinality
        path = endpoint.split("?", 1)[0]
        self.requests.labels(method=method, endpoint=path, status_code=str(status_code)).inc()
        self.request_duration.labels(method=method, endpoint=path).observe(duration)

    def record_error(self, code: str):
        self.request_errors.labels(error=code).inc()

    def record_circuit_transition(self, circuit: str, state: str):
        self.circuit_transitions.labels(circuit=circuit, state=state).inc()

    def record_session_fetch(self, succeeded: bool):
        self.session_fetches.labels(outcome="success" if succeeded else "failure").inc()

    def record_cache_lookup(self, kind: str, result: str):
        self.cache_lookups.labels(kind=kind, result=result).inc()

    def record_cache_write_failure(self, kind: str):
        self.cache_write_failures.labels(kind=kind).inc()

    def record_inflight_join(self, scope: str):
        self.inflight_joins.labels(scope=scope).inc()


def get_metrics_collector(client_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a client component."""
    return MetricsCollector(client_name, registry)
