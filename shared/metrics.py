"""
Prometheus metrics for the Prompt Enhance Gateway.
"""

import time
from contextlib import contextmanager
from typing import Dict, Optional, Tuple

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram


# name -> (type, help, labels)
_DEFINITIONS: Dict[str, Tuple[type, str, Tuple[str, ...]]] = {
    "gateway_build_info": (Gauge, "Gateway build information", ("service", "version")),
    "http_requests_total": (Counter, "HTTP requests by route and status", ("method", "endpoint", "status_code")),
    "http_request_duration_seconds": (Histogram, "HTTP request latency", ("method", "endpoint")),
    "health_check_total": (Counter, "Health probe results", ("status",)),
    "errors_total": (Counter, "Error responses by taxonomy code", ("code",)),
    "rate_limit_decisions_total": (Counter, "Rate limiter decisions", ("mode", "decision")),
    "upstream_requests_total": (Counter, "Upstream completion calls by outcome", ("mode", "outcome")),
    "upstream_request_duration_seconds": (Histogram, "Time until upstream response headers arrive", ("mode",)),
    "tokens_issued_total": (Counter, "Session token issuance attempts", ("result",)),
    "usage_record_failures_total": (Counter, "Usage accounting writes that failed and were dropped", ("metric",)),
}


class MetricsCollector:
    """Metric families for one service instance.

    Every collector owns a private registry, so several gateway instances
    can live in one process (test suites, embedded apps).
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None, version: str = "1.0.0"):
        self.service_name = service_name
        self.registry = registry or CollectorRegistry()
        self._families = {
            name: kind(name, help_text, list(labels), registry=self.registry)
            for name, (kind, help_text, labels) in _DEFINITIONS.items()
        }
        self._families["gateway_build_info"].labels(service=service_name, version=version).set(1)

    def family(self, name: str):
        return self._families.get(name)

    def record_http_request(self, method: str, endpoint: str, status_code: int, duration: float):
        self._families["http_requests_total"].labels(method, endpoint, str(status_code)).inc()
        self._families["http_request_duration_seconds"].labels(method, endpoint).observe(duration)

    def record_health_check(self, status: str):
        self._families["health_check_total"].labels(status).inc()

    def record_error(self, code: str):
        self._families["errors_total"].labels(code).inc()

    def record_rate_limit(self, mode: str, allowed: bool):
        self._families["rate_limit_decisions_total"].labels(mode, "allowed" if allowed else "rejected").inc()

    def record_upstream(self, mode: str, outcome: str):
        self._families["upstream_requests_total"].labels(mode, outcome).inc()

    def record_token_issuance(self, result: str):
        self._families["tokens_issued_total"].labels(result).inc()

    def record_usage_failure(self, metric: str):
        self._families["usage_record_failures_total"].labels(metric).inc()

    @contextmanager
    def time_operation(self, histogram: str, **labels):
        """Observe the elapsed wall time of the block into a histogram family."""
        started = time.perf_counter()
        try:
            yield
        finally:
            self._families[histogram].labels(**labels).observe(time.perf_counter() - started)

    def sample_value(self, name: str, labels: Optional[Dict[str, str]] = None) -> Optional[float]:
        """Current value of one sample, or None if it was never observed."""
        return self.registry.get_sample_value(name, labels or {})


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    return MetricsCollector(service_name, registry)
