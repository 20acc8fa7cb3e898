"""
Index metrics on the OpenTelemetry metrics API.

Without a configured meter provider every instrument is a no-op, so
recording metrics never changes behavior.
"""

import asyncio
import time
from contextlib import contextmanager

from opentelemetry import metrics as otel_metrics
from opentelemetry.metrics import Counter, Histogram, Meter

from .logging import get_logger

logger = get_logger(__name__)

_PREFIX = "hnswrag"


class MetricsCollector:
    """Centralized instrument registry for index operations."""

    def __init__(self, meter: Meter):
        self.meter = meter
        self._counters: dict[str, Counter] = {}
        self._histograms: dict[str, Histogram] = {}

        # Local tallies, handy for status output and tests
        self.totals: dict[str, int] = {}

        self._setup_default_metrics()

    def _setup_default_metrics(self):
        self.counter("operations_total", "Lifecycle operations by kind and outcome")
        self.counter("entries_inserted_total", "Vectors inserted into the graph")
        self.counter("collaborator_failures_total", "Embedding/generation/fetch failures")
        self.histogram("operation_duration_seconds", "Lifecycle operation duration", "s")
        self.histogram("retrieved_chunks", "Chunks returned per query")

    def counter(self, name: str, description: str = "", unit: str = "1") -> Counter:
        """Get or create a counter."""
        if name not in self._counters:
            self._counters[name] = self.meter.create_counter(
                f"{_PREFIX}_{name}", description=description, unit=unit
            )
        return self._counters[name]

    def histogram(self, name: str, description: str = "", unit: str = "1") -> Histogram:
        """Get or create a histogram."""
        if name not in self._histograms:
            self._histograms[name] = self.meter.create_histogram(
                f"{_PREFIX}_{name}", description=description, unit=unit
            )
        return self._histograms[name]

    def _tally(self, key: str, amount: int = 1) -> None:
        self.totals[key] = self.totals.get(key, 0) + amount

    def record_operation(self, operation: str, outcome: str, duration: float) -> None:
        attributes = {"operation": operation, "outcome": outcome}
        self._counters["operations_total"].add(1, attributes)
        self._histograms["operation_duration_seconds"].record(duration, {"operation": operation})
        self._tally(f"{operation}.{outcome}")

    def record_inserts(self, count: int) -> None:
        self._counters["entries_inserted_total"].add(count)
        self._tally("entries_inserted", count)

    def record_retrieval(self, results_count: int) -> None:
        self._histograms["retrieved_chunks"].record(results_count)

    def record_collaborator_failure(self, kind: str) -> None:
        self._counters["collaborator_failures_total"].add(1, {"kind": kind})
        self._tally(f"failure.{kind}")


_metrics_collector: MetricsCollector | None = None


def setup_metrics(meter: Meter | None = None) -> MetricsCollector:
    """Install the global collector, using the globally configured meter by default."""
    global _metrics_collector
    _metrics_collector = MetricsCollector(meter or otel_metrics.get_meter(_PREFIX))
    return _metrics_collector


def get_metrics_collector() -> MetricsCollector:
    """Get the global collector, creating a no-op backed one on first use."""
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector(otel_metrics.NoOpMeter(_PREFIX))
    return _metrics_collector


def _reset_metrics_for_tests() -> None:
    global _metrics_collector
    _metrics_collector = None


@contextmanager
def timer(operation: str):
    """Time a block and record it as a lifecycle operation.

    The block may set ``outcome`` on the yielded dict; it defaults to ``ok``,
    ``cancelled`` when it is cancelled, or ``error`` when it raises.
    """
    state = {"outcome": "ok"}
    start = time.perf_counter()
    try:
        yield state
    except asyncio.CancelledError:
        state["outcome"] = "cancelled"
        raise
    except BaseException:
        state["outcome"] = "error"
        raise
    finally:
        duration = time.perf_counter() - start
        get_metrics_collector().record_operation(operation, state["outcome"], duration)
        logger.debug(
            f"{operation} finished", ms=duration * 1000.0, outcome=state["outcome"]
        )
