"""
Workflow metrics on top of OpenTelemetry.

The collector records stage attempts, retries, breaker transitions, approval
decisions and workflow runs. Until ``setup_metrics`` is called a no-op meter
is used, so recording is always safe.
"""

import time
from collections import defaultdict, deque
from contextlib import contextmanager
from typing import Any

from opentelemetry.metrics import Counter, Histogram, Meter, NoOpMeter

from .logging import get_logger

logger = get_logger(__name__)

DURATION_WINDOW = 1000

METRIC_PREFIX = "conductor"


class MetricsCollector:
    """Centralized metrics collection and management."""

    def __init__(self, meter: Meter):
        self.meter = meter
        self._counters: dict[str, Counter] = {}
        self._histograms: dict[str, Histogram] = {}

        # In-process aggregates for summaries
        self._stage_runs = defaultdict(int)
        self._stage_successes = defaultdict(int)
        self._stage_durations = defaultdict(lambda: deque(maxlen=DURATION_WINDOW))

        self._setup_default_metrics()

    def _setup_default_metrics(self):
        self.counter("stage_runs_total", "Stages resolved")
        self.counter("stage_attempts_total", "Stage invocation attempts")
        self.counter("retries_total", "Retries scheduled after a failed attempt")
        self.counter("circuit_transitions_total", "Circuit breaker state transitions")
        self.counter("circuit_rejections_total", "Calls rejected by an open breaker")
        self.counter("approval_decisions_total", "Approval decisions by kind")
        self.counter("workflow_runs_total", "Workflow runs")
        self.histogram("stage_duration_seconds", "Stage wall time", "s")
        self.histogram("workflow_duration_seconds", "Workflow wall time", "s")

    def counter(self, name: str, description: str = "", unit: str = "1") -> Counter:
        """Get or create a counter metric."""
        if name not in self._counters:
            self._counters[name] = self.meter.create_counter(
                f"{METRIC_PREFIX}_{name}", description=description, unit=unit
            )
        return self._counters[name]

    def histogram(self, name: str, description: str = "", unit: str = "1") -> Histogram:
        """Get or create a histogram metric."""
        if name not in self._histograms:
            self._histograms[name] = self.meter.create_histogram(
                f"{METRIC_PREFIX}_{name}", description=description, unit=unit
            )
        return self._histograms[name]

    def record_stage(self, stage_id: str, status: str, duration: float, attempts: int) -> None:
        attributes = {"stage": stage_id, "status": status}
        self._counters["stage_runs_total"].add(1, attributes)
        self._histograms["stage_duration_seconds"].record(duration, attributes)

        self._stage_runs[stage_id] += 1
        if status == "succeeded":
            self._stage_successes[stage_id] += 1
        self._stage_durations[stage_id].append(duration)

    def record_attempt(self, stage_key: str, ok: bool) -> None:
        self._counters["stage_attempts_total"].add(1, {"stage": stage_key, "ok": str(ok).lower()})

    def record_retry(self, stage_key: str, error_type: str) -> None:
        self._counters["retries_total"].add(1, {"stage": stage_key, "error_type": error_type})

    def record_circuit_transition(self, key: str, from_state: str, to_state: str) -> None:
        self._counters["circuit_transitions_total"].add(
            1, {"key": key, "from": from_state, "to": to_state}
        )

    def record_circuit_rejection(self, key: str) -> None:
        self._counters["circuit_rejections_total"].add(1, {"key": key})

    def record_approval(self, stage_id: str, decision: str) -> None:
        self._counters["approval_decisions_total"].add(
            1, {"stage": stage_id, "decision": decision}
        )

    def record_workflow(self, duration: float, success: bool, stage_count: int) -> None:
        attributes = {"success": str(success).lower(), "stages": str(stage_count)}
        self._counters["workflow_runs_total"].add(1, attributes)
        self._histograms["workflow_duration_seconds"].record(duration, attributes)

    def get_stage_summary(self) -> dict[str, Any]:
        """Aggregated per-stage success rates and mean durations over the
        last ``DURATION_WINDOW`` runs."""
        summary = {}
        for stage_id, runs in self._stage_runs.items():
            durations = self._stage_durations[stage_id]
            summary[stage_id] = {
                "runs": runs,
                "successes": self._stage_successes[stage_id],
                "success_rate": self._stage_successes[stage_id] / runs if runs else 0.0,
                "avg_duration": sum(durations) / len(durations) if durations else 0.0,
            }
        return summary


_metrics_collector: MetricsCollector | None = None


def setup_metrics(meter: Meter) -> MetricsCollector:
    """Install the global metrics collector."""
    global _metrics_collector
    _metrics_collector = MetricsCollector(meter)
    return _metrics_collector


def get_metrics_collector() -> MetricsCollector:
    """Get the global collector, creating a no-op one on first use."""
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector(NoOpMeter(METRIC_PREFIX))
    return _metrics_collector


def reset_metrics() -> None:
    """Drop the global collector (used by tests)."""
    global _metrics_collector
    _metrics_collector = None


@contextmanager
def timer(metric_name: str, attributes: dict[str, str] | None = None):
    """Context manager recording elapsed seconds into a histogram."""
    start_time = time.perf_counter()
    try:
        yield
    finally:
        duration = time.perf_counter() - start_time
        get_metrics_collector().histogram(
            f"{metric_name}_duration", "Operation duration", "s"
        ).record(duration, attributes or {})
