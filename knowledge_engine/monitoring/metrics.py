"""
Prometheus Metrics

Defines and exports metrics for the knowledge engine operations.
"""

from contextlib import contextmanager
import time
from typing import Iterator

import structlog
from prometheus_client import Counter, Histogram

from knowledge_engine.kernel.errors import KnowledgeError

logger = structlog.get_logger()

# Singleton metrics instance
_metrics: "Metrics | None" = None


class Metrics:
    """
    Prometheus metrics for the knowledge engine.

    Tracks:
    - Operation counts and latency per facade operation
    - Search result volume per mode
    - Supersession conflicts
    """

    def __init__(self, enabled: bool = True):
        """Initialize Prometheus metrics."""
        self.operations_total = Counter(
            "knowledge_operations_total",
            "Total engine operations",
            ["operation", "outcome"],
        )

        self.operation_duration_seconds = Histogram(
            "knowledge_operation_duration_seconds",
            "Engine operation duration in seconds",
            ["operation"],
            buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
        )

        self.search_results = Histogram(
            "knowledge_search_results",
            "Number of matches per search",
            ["mode"],
            buckets=[0, 1, 5, 10, 25, 50, 100, 250, 500, 1000],
        )

        self.supersession_conflicts_total = Counter(
            "knowledge_supersession_conflicts_total",
            "Supersession attempts rejected because the decision was already superseded",
        )

        self._enabled = enabled
        logger.info("Prometheus metrics initialized", enabled=enabled)

    @property
    def enabled(self) -> bool:
        """Check if metrics are enabled."""
        return self._enabled

    def set_enabled(self, enabled: bool) -> None:
        self._enabled = enabled

    def track_operation_result(self, operation: str, outcome: str, duration: float) -> None:
        """Track a finished engine operation."""
        if not self._enabled:
            return

        self.operations_total.labels(operation=operation, outcome=outcome).inc()
        self.operation_duration_seconds.labels(operation=operation).observe(duration)

    def track_search(self, mode: str, total_count: int) -> None:
        if not self._enabled:
            return
        self.search_results.labels(mode=mode).observe(total_count)

    def track_supersession_conflict(self) -> None:
        if not self._enabled:
            return
        self.supersession_conflicts_total.inc()

    @contextmanager
    def track_operation(self, operation: str) -> Iterator[None]:
        """Context manager timing an operation; the outcome is `ok` or the error code."""
        start = time.perf_counter()
        outcome = "ok"
        try:
            yield
        except KnowledgeError as exc:
            outcome = exc.code
            raise
        except Exception:
            outcome = "error"
            raise
        finally:
            self.track_operation_result(operation, outcome, time.perf_counter() - start)


def get_metrics(enabled: bool | None = None) -> Metrics:
    """Get or create the singleton metrics instance."""
    global _metrics
    if _metrics is None:
        _metrics = Metrics(enabled=True if enabled is None else enabled)
    elif enabled is not None:
        _metrics.set_enabled(enabled)
    return _metrics
