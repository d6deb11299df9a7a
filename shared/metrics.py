"""
Prometheus metrics for the Commerce Access Service.
"""

from typing import Any, Dict, Optional, Sequence, Tuple

from prometheus_client import CollectorRegistry, Counter, Histogram, Info, generate_latest

# name -> (type, help, labels)
METRIC_DEFINITIONS: Dict[str, Tuple[type, str, Sequence[str]]] = {
    "http_requests_total": (Counter, "Total HTTP requests", ("method", "endpoint", "status_code")),
    "http_request_duration_seconds": (Histogram, "HTTP request duration in seconds", ("method", "endpoint")),
    "health_check_total": (Counter, "Health check results", ("status",)),
    "errors_total": (Counter, "Errors by code", ("error_type", "service")),
    "business_events_total": (Counter, "Signups, logins, orders and other account events",
                              ("event_type", "service")),
    "cache_operations_total": (Counter, "Cache operations by key namespace and result",
                               ("namespace", "result")),
    "token_validations_total": (Counter, "Token validations by outcome", ("outcome",)),
    "rate_limit_hits_total": (Counter, "Requests rejected by the rate limiter", ("endpoint",)),
    "order_placement_duration_seconds": (Histogram, "Order placement duration in seconds", ("result",)),
}


class MetricsCollector:
    """Metrics for one service instance.

    Each collector owns its registry so several service instances (tests,
    workers) can coexist in one process without duplicate registrations.
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[str, Any] = {
            name: kind(name, description, list(labels), registry=self.registry)
            for name, (kind, description, labels) in METRIC_DEFINITIONS.items()
        }
        Info("service", "Service information", registry=self.registry).info({
            "service": service_name,
            "version": "1.0.0",
        })

    def record_http_request(self, method: str, endpoint: str, status_code: int, duration: float):
        self.increment_counter("http_requests_total", method=method, endpoint=endpoint,
                               status_code=str(status_code))
        self.observe_histogram("http_request_duration_seconds", duration, method=method, endpoint=endpoint)

    def record_health_check(self, status: str):
        self.increment_counter("health_check_total", status=status)

    def record_error(self, error_type: str):
        self.increment_counter("errors_total", error_type=error_type, service=self.service_name)

    def record_business_event(self, event_type: str):
        self.increment_counter("business_events_total", event_type=event_type, service=self.service_name)

    def increment_counter(self, metric_name: str, **labels):
        """Increment a counter metric. Unknown names are ignored."""
        metric = self._metrics.get(metric_name)
        if metric is not None:
            metric.labels(**labels).inc()

    def observe_histogram(self, metric_name: str, value: float, **labels):
        metric = self._metrics.get(metric_name)
        if metric is not None:
            metric.labels(**labels).observe(value)

    def sample_value(self, metric_name: str, **labels) -> Optional[float]:
        """Read back a sample value from this collector's registry."""
        return self.registry.get_sample_value(metric_name, labels)

    def export(self) -> bytes:
        """Render the registry in the Prometheus text format."""
        return generate_latest(self.registry)


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    return MetricsCollector(service_name, registry)
