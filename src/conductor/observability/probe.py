"""
Performance probes for workflow operations.

A probe times a block, logs it, feeds Prometheus counters and stores the
timing under the current trace id so run snapshots can include per-operation
durations.
"""

import contextlib
import time
from typing import Any

from opentelemetry import trace
from prometheus_client import Counter, Histogram

from .logging import get_logger

log = get_logger("conductor.probe")

tracer = trace.get_tracer("conductor")

REQS = Counter("conductor_ops_total", "Probed operations", ["op", "ok"])
LAT = Histogram("conductor_op_latency_seconds", "Probed operation latency", ["op"])

# trace id -> op -> timing record
_METRICS_STORE: dict[str, dict[str, Any]] = {}


@contextlib.contextmanager
def probe(op: str, trace_id: str | None = None, **labels):
    """
    Time an operation.

    Args:
        op: Operation name (e.g. "engine.stage")
        trace_id: Trace id the timing is stored under, if any
        **labels: Extra fields logged with the timing
    """
    start_time = time.perf_counter()
    ok = "true"
    error_type = None

    with tracer.start_as_current_span(op):
        try:
            yield
        except BaseException as e:
            ok = "false"
            error_type = type(e).__name__
            raise
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000

            log.debug(
                f"op={op} ok={ok}" + (f" error={error_type}" if error_type else ""),
                ms=duration_ms,
                **labels,
            )

            REQS.labels(op=op, ok=ok).inc()
            LAT.labels(op=op).observe(duration_ms / 1000.0)

            if trace_id:
                # Repeated ops in one trace are keyed op, op#2, op#3...
                ops = _METRICS_STORE.setdefault(trace_id, {})
                key = op
                n = 1
                while key in ops:
                    n += 1
                    key = f"{op}#{n}"
                ops[key] = {
                    "duration_ms": duration_ms,
                    "success": ok == "true",
                    "error_type": error_type,
                    "labels": labels,
                    "timestamp": time.time(),
                }


def get_trace_metrics(trace_id: str) -> dict[str, Any]:
    """Get all probe timings recorded for a trace id."""
    return dict(_METRICS_STORE.get(trace_id, {}))


def clear_trace_metrics(trace_id: str | None = None) -> None:
    """Clear timings for one trace id, or all of them."""
    if trace_id is None:
        _METRICS_STORE.clear()
    else:
        _METRICS_STORE.pop(trace_id, None)
