"""
Core workflow runtime: data model, retries, breakers, memory, approval and
the engine.
"""

from .models import (
    AgentSpec,
    Capability,
    FailureKind,
    FailureReason,
    StageDefinition,
    StageOutcome,
    StageStatus,
    TaskInput,
    TaskResult,
    ValidatorRef,
    WorkflowDefinition,
    WorkflowResult,
)
from .retry import ExponentialBackoff, FixedDelay, NoRetry, RetryExecutor, RetryPolicy

__all__ = [
    "AgentSpec",
    "Capability",
    "FailureKind",
    "FailureReason",
    "StageDefinition",
    "StageOutcome",
    "StageStatus",
    "TaskInput",
    "TaskResult",
    "ValidatorRef",
    "WorkflowDefinition",
    "WorkflowResult",
    "ExponentialBackoff",
    "FixedDelay",
    "NoRetry",
    "RetryExecutor",
    "RetryPolicy",
]
