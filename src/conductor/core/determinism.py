"""
Deterministic fingerprints of workflow definitions.

Two stage lists that compare equal produce the same fingerprint, whichever
declaration path built them. The fingerprint is recorded on every
``WorkflowResult`` and run snapshot.
"""

import dataclasses
import hashlib
import json
from collections.abc import Iterable
from enum import Enum
from typing import Any

from .models import StageDefinition


def _to_canonical(obj: Any) -> Any:
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        data = {f.name: _to_canonical(getattr(obj, f.name)) for f in dataclasses.fields(obj)}
        data["__type__"] = type(obj).__name__
        return data
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, dict):
        return {str(k): _to_canonical(v) for k, v in obj.items()}
    if isinstance(obj, list | tuple):
        return [_to_canonical(v) for v in obj]
    return obj


def canonical_form(stages: Iterable[StageDefinition]) -> list[dict[str, Any]]:
    return [_to_canonical(stage) for stage in stages]


def fingerprint(stages: Iterable[StageDefinition]) -> str:
    """SHA256 of the canonical JSON form of a stage list."""
    blob = json.dumps(
        canonical_form(stages), default=str, sort_keys=True, separators=(",", ":")
    ).encode("utf-8")
    return hashlib.sha256(blob).hexdigest()
