"""
Observability for conductor workflows.

- Structured logging: single-line records with the run id as trace id
- Probes: per-operation timings stored per trace for run snapshots
- Metrics: OpenTelemetry counters and histograms for stages, retries,
  breakers, approvals and workflow runs
- Tracing: ``trace_span`` decorator over the OpenTelemetry API

Usage:
    >>> from conductor.observability import get_logger, probe
    >>> logger = get_logger(__name__)
    >>> with probe("engine.stage", trace_id, stage="draft"):
    ...     logger.info("Running stage", stage="draft")

Configuration:
    - CONDUCTOR_OBSERVABILITY__LOG_LEVEL=INFO
    - CONDUCTOR_OBSERVABILITY__ENABLE_TRACING=true
    - CONDUCTOR_OBSERVABILITY__CONSOLE_SPANS=false
"""

from .logging import get_logger, get_trace_id, set_trace_id, setup_logging
from .metrics import get_metrics_collector, setup_metrics, timer
from .probe import get_trace_metrics, probe
from .tracing import TracingManager, trace_span

__all__ = [
    "get_logger",
    "get_trace_id",
    "set_trace_id",
    "setup_logging",
    "get_metrics_collector",
    "setup_metrics",
    "timer",
    "probe",
    "get_trace_metrics",
    "TracingManager",
    "trace_span",
]
