"""
Shared metrics configuration for QuotaGate.
"""

from prometheus_client import Counter, Histogram, CollectorRegistry, start_http_server
from typing import Dict, Any, Optional
import time
import threading
from contextlib import contextmanager


class GateMetrics:
    """Prometheus metrics for admission decisions and synchronizations."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up gate metrics."""
        kwargs = {"registry": self.registry} if self.registry is not None else {}

        self._metrics["decisions_total"] = Counter(
            "quota_gate_decisions_total",
            "Admission decisions taken by quota gates",
            ["key", "decision"],  # admitted_local|admitted_sync|denied
            **kwargs
        )

        self._metrics["sync_total"] = Counter(
            "quota_gate_sync_total",
            "Synchronization attempts against the shared counter",
            ["key", "outcome"],  # ok|over_limit|throttled|error|decode_error
            **kwargs
        )

        self._metrics["script_reloads_total"] = Counter(
            "quota_gate_script_reloads_total",
            "Re-registrations of the synchronization script",
            ["key", "outcome"],  # ok|failed
            **kwargs
        )

        self._metrics["sync_duration_seconds"] = Histogram(
            "quota_gate_sync_duration_seconds",
            "Round-trip time of shared counter synchronizations",
            ["key"],
            **kwargs
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

    def start_metrics_server(self, port: int = 9090):
        """Start the Prometheus metrics server."""
        if self.registry is not None:
            start_http_server(port, registry=self.registry)
        else:
            start_http_server(port)

    def record_decision(self, key: str, decision: str):
        """Record an admission decision."""
        self._metrics["decisions_total"].labels(key=key, decision=decision).inc()

    def record_sync(self, key: str, outcome: str):
        """Record a synchronization outcome."""
        self._metrics["sync_total"].labels(key=key, outcome=outcome).inc()

    def record_script_reload(self, key: str, outcome: str):
        """Record a script re-registration."""
        self._metrics["script_reloads_total"].labels(key=key, outcome=outcome).inc()

    @contextmanager
    def time_sync(self, key: str):
        """Context manager to time a remote synchronization."""
        start_time = time.perf_counter()
        try:
            yield
        finally:
            self._metrics["sync_duration_seconds"].labels(key=key).observe(time.perf_counter() - start_time)


_default_metrics: Optional[GateMetrics] = None
_default_lock = threading.Lock()


def get_gate_metrics() -> GateMetrics:
    """Get the process-wide gate metrics bound to the default registry."""
    global _default_metrics
    with _default_lock:
        if _default_metrics is None:
            _default_metrics = GateMetrics()
        return _default_metrics
