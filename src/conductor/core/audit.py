"""
Run snapshots for audit.

A snapshot bundles the workflow result, the definition fingerprint, breaker
states and the probe timings recorded under the run's trace id.
"""

import json
from pathlib import Path
from typing import Any

from ..observability.logging import get_logger
from ..observability.probe import get_trace_metrics
from .circuit_breaker import BreakerSnapshot
from .models import WorkflowResult

logger = get_logger(__name__)


def create_run_snapshot(
    result: WorkflowResult,
    breakers: list[BreakerSnapshot] | None = None,
    additional_data: dict[str, Any] | None = None,
) -> dict[str, Any]:
    timings = {
        op: {"duration_ms": data["duration_ms"], "success": data["success"], "error": data.get("error_type")}
        for op, data in get_trace_metrics(result.run_id).items()
    }

    snapshot = result.to_dict()
    snapshot["breakers"] = [
        {
            "key": b.key,
            "state": b.state.value,
            "consecutive_failures": b.consecutive_failures,
        }
        for b in breakers or []
    ]
    snapshot["timings_ms"] = timings
    snapshot["metadata"] = {
        "total_operations": len(timings),
        "failed_operations": sum(1 for t in timings.values() if not t["success"]),
        "stage_count": len(result.stages),
        "failed_stages": result.failed_stages,
        "skipped_stages": result.skipped_stages,
    }
    if additional_data:
        snapshot.update(additional_data)
    return snapshot


def save_run_snapshot(snapshot: dict[str, Any], artifacts_dir: Path | str = "artifacts") -> Path:
    """Write a snapshot to ``<artifacts_dir>/run_<run_id>.json``."""
    artifacts_path = Path(artifacts_dir)
    artifacts_path.mkdir(parents=True, exist_ok=True)

    snapshot_file = artifacts_path / f"run_{snapshot['run_id']}.json"
    snapshot_file.write_text(json.dumps(snapshot, indent=2, default=str), encoding="utf-8")
    logger.info(f"Saved run snapshot: {snapshot_file}")
    return snapshot_file
