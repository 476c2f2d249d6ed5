"""
Workflow data model.

``StageDefinition`` is the canonical, immutable description of one stage.
The programmatic builder and the YAML loader both produce it, so a workflow
declared either way compares equal field by field.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..exceptions import (
    ApprovalRejectedExhausted,
    ApprovalTimeoutError,
    CircuitOpenError,
    ConfigurationError,
    DependencyError,
    ProviderError,
    ReviewRejectedExhausted,
    ValidationError,
)
from .retry import RetryPolicy


class Capability(str, Enum):
    """Kind of work an agent is built for. Selects the agent variant."""

    GENERAL = "general"
    PLANNER = "planner"
    WRITER = "writer"
    REVIEWER = "reviewer"


class AgentKind(str, Enum):
    REGISTERED = "registered"
    EPHEMERAL = "ephemeral"


@dataclass(frozen=True)
class AgentSpec:
    """
    Which agent runs a stage.

    With ``identity`` set the stage uses the registered agent of that name.
    Otherwise a fresh ephemeral agent is built from the remaining fields for
    every stage execution.
    """

    identity: str | None = None
    capability: Capability = Capability.GENERAL
    description: str = ""
    system_prompt: str = ""
    provider: str = "default"

    @classmethod
    def registered(cls, identity: str) -> "AgentSpec":
        return cls(identity=identity)

    @classmethod
    def ephemeral(
        cls,
        capability: Capability | str = Capability.GENERAL,
        description: str = "",
        system_prompt: str = "",
        provider: str = "default",
    ) -> "AgentSpec":
        return cls(
            identity=None,
            capability=Capability(capability),
            description=description,
            system_prompt=system_prompt,
            provider=provider,
        )

    @property
    def is_registered(self) -> bool:
        return self.identity is not None


@dataclass(frozen=True)
class ValidatorRef:
    """Named validator plus its parameters, resolved at execution time."""

    name: str
    params: tuple[tuple[str, Any], ...] = ()

    @classmethod
    def of(cls, name: str, **params: Any) -> "ValidatorRef":
        frozen = tuple(
            sorted((k, tuple(v) if isinstance(v, list) else v) for k, v in params.items())
        )
        return cls(name=name, params=frozen)

    @property
    def kwargs(self) -> dict[str, Any]:
        return dict(self.params)


@dataclass(frozen=True)
class StageDefinition:
    id: str
    agent: AgentSpec
    prompt_template: str
    retry_policy: RetryPolicy
    description: str = ""
    validator: ValidatorRef | None = None
    depends_on: tuple[str, ...] = ()
    parallel: bool = False
    optional: bool = False
    requires_approval: bool = False
    reviewer: AgentSpec | None = None
    metadata: dict[str, Any] = field(default_factory=dict, hash=False)

    def __post_init__(self):
        if not self.id or not self.id.strip():
            raise ConfigurationError("stage id cannot be empty")
        if not self.prompt_template:
            raise ConfigurationError(f"stage '{self.id}' has an empty prompt template")
        if self.id in self.depends_on:
            raise ConfigurationError(f"stage '{self.id}' depends on itself")
        object.__setattr__(self, "depends_on", tuple(self.depends_on))
        object.__setattr__(self, "metadata", dict(self.metadata))


def check_dependencies(stages: list[StageDefinition]) -> None:
    """
    Stage ids must be unique and dependencies must name earlier stages, which
    also rules out cycles.
    """
    seen: set[str] = set()
    for stage in stages:
        if stage.id in seen:
            raise DependencyError(f"duplicate stage id '{stage.id}'")
        for dep in stage.depends_on:
            if dep not in seen:
                raise DependencyError(
                    f"stage '{stage.id}' depends on '{dep}', which is not declared before it"
                )
        seen.add(stage.id)


@dataclass(frozen=True)
class WorkflowDefinition:
    """A named stage list plus run-time variables and settings overrides."""

    name: str
    stages: tuple[StageDefinition, ...]
    variables: dict[str, Any] = field(default_factory=dict, hash=False)
    settings_overrides: dict[str, Any] = field(default_factory=dict, hash=False)


@dataclass(frozen=True)
class TaskInput:
    """What an agent receives for one invocation."""

    prompt: str
    context: dict[str, Any] = field(default_factory=dict)
    upstream: dict[str, "TaskResult"] = field(default_factory=dict)
    feedback: tuple[str, ...] = ()


@dataclass(frozen=True)
class TaskResult:
    output: str
    success: bool = True
    metadata: dict[str, Any] = field(default_factory=dict)


class StageStatus(str, Enum):
    PENDING = "pending"
    READY = "ready"
    EXECUTING = "executing"
    AWAITING_APPROVAL = "awaiting_approval"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    RESOLVED = "resolved"


class FailureKind(str, Enum):
    VALIDATION = "validation"
    PROVIDER = "provider"
    CIRCUIT_OPEN = "circuit_open"
    APPROVAL_TIMEOUT = "approval_timeout"
    APPROVAL_REJECTED = "approval_rejected"
    REVIEW_REJECTED = "review_rejected"
    DEPENDENCY_FAILED = "dependency_failed"
    ABORTED = "aborted"
    TIMEOUT = "timeout"
    CONFIGURATION = "configuration"
    ERROR = "error"


# Most specific first
_KIND_BY_ERROR: list[tuple[type[Exception], FailureKind]] = [
    (ValidationError, FailureKind.VALIDATION),
    (ProviderError, FailureKind.PROVIDER),
    (CircuitOpenError, FailureKind.CIRCUIT_OPEN),
    (ApprovalTimeoutError, FailureKind.APPROVAL_TIMEOUT),
    (ReviewRejectedExhausted, FailureKind.REVIEW_REJECTED),
    (ApprovalRejectedExhausted, FailureKind.APPROVAL_REJECTED),
    (ConfigurationError, FailureKind.CONFIGURATION),
]


@dataclass(frozen=True)
class FailureReason:
    kind: FailureKind
    message: str

    @classmethod
    def from_exception(cls, error: BaseException) -> "FailureReason":
        for error_type, kind in _KIND_BY_ERROR:
            if isinstance(error, error_type):
                return cls(kind, str(error))
        return cls(FailureKind.ERROR, f"{type(error).__name__}: {error}")

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


@dataclass
class StageOutcome:
    stage_id: str
    status: StageStatus
    result: TaskResult | None = None
    failure: FailureReason | None = None
    attempts: int = 0
    regenerate_count: int = 0
    optional: bool = False
    started_at: float | None = None
    resolved_at: float = field(default_factory=time.time)

    @property
    def succeeded(self) -> bool:
        return self.status == StageStatus.SUCCEEDED

    @property
    def output(self) -> str | None:
        return self.result.output if self.result else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "stage_id": self.stage_id,
            "status": self.status.value,
            "output": self.output,
            "failure": {"kind": self.failure.kind.value, "message": self.failure.message}
            if self.failure
            else None,
            "attempts": self.attempts,
            "regenerate_count": self.regenerate_count,
            "optional": self.optional,
            "started_at": self.started_at,
            "resolved_at": self.resolved_at,
        }


@dataclass
class WorkflowResult:
    """Aggregate of every stage outcome, in declaration order."""

    name: str
    run_id: str
    success: bool
    stages: dict[str, StageOutcome]
    total_elapsed: float
    fingerprint: str
    error: str | None = None

    def output(self, stage_id: str) -> str | None:
        outcome = self.stages.get(stage_id)
        return outcome.output if outcome else None

    @property
    def failed_stages(self) -> list[str]:
        return [sid for sid, o in self.stages.items() if o.status == StageStatus.FAILED]

    @property
    def skipped_stages(self) -> list[str]:
        return [sid for sid, o in self.stages.items() if o.status == StageStatus.SKIPPED]

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "run_id": self.run_id,
            "success": self.success,
            "total_elapsed": self.total_elapsed,
            "fingerprint": self.fingerprint,
            "error": self.error,
            "stages": [o.to_dict() for o in self.stages.values()],
        }
