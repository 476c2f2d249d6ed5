"""
Declarative workflow definitions in YAML.

    name: book
    settings:
      approval: {timeout: 5m, on_timeout: auto_reject}
    variables:
      topic: tide pools
    agents:
      planner: {capability: planner, description: Plans the book}
      editor: {registered: true}
    stages:
      - id: outline
        agent: planner
        prompt: Outline a short book about ${topic}
      - id: draft
        prompt: "Write the book from this outline: ${outline}"
        depends_on: [outline]
        validator: {name: min_length, params: {length: 200}}
        retry: {backoff: exponential, delay: 0.5, max_attempts: 4}
        approval: true

A stage ``agent`` names an entry of ``agents`` or, failing that, a registered
agent. Without an ``agent`` the stage gets a general-purpose ephemeral agent.
Loading produces the same ``StageDefinition`` values as ``WorkflowBuilder``.
"""

import re
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..config.settings import Settings, get_settings
from ..exceptions import ConfigurationError
from ..observability.logging import get_logger
from .models import (
    AgentSpec,
    Capability,
    StageDefinition,
    ValidatorRef,
    WorkflowDefinition,
    check_dependencies,
)
from .retry import ExponentialBackoff, FixedDelay, NoRetry, RetryPolicy, policy_from_config

logger = get_logger(__name__)

_DURATION = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*$")
_UNIT_SECONDS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0, None: 1.0}

# Settings fields given in seconds that also accept "30s", "5m", "1h"
_DURATION_FIELDS = {
    "approval": ("timeout",),
    "workflow": ("timeout",),
    "circuit_breaker": ("cooldown",),
    "retry": ("delay", "max_delay"),
}


def parse_duration(value: Any) -> float:
    if isinstance(value, int | float):
        return float(value)
    match = _DURATION.match(str(value))
    if not match:
        raise ValueError(f"invalid duration: {value!r}")
    number, unit = match.groups()
    return float(number) * _UNIT_SECONDS[unit]


class AgentModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    registered: bool = False
    identity: str | None = None
    capability: Capability = Capability.GENERAL
    description: str = ""
    system_prompt: str = ""
    provider: str = "default"

    def to_spec(self, key: str) -> AgentSpec:
        if self.registered:
            return AgentSpec.registered(self.identity or key)
        return AgentSpec.ephemeral(
            capability=self.capability,
            description=self.description,
            system_prompt=self.system_prompt,
            provider=self.provider,
        )


class RetryModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    backoff: Literal["none", "fixed", "exponential"] = "fixed"
    max_attempts: int = Field(3, gt=0)
    delay: float = Field(1.0, ge=0.0, description="Fixed delay, or the exponential base")
    multiplier: float = Field(2.0, gt=1.0)
    max_delay: float = Field(30.0, ge=0.0)

    @field_validator("delay", "max_delay", mode="before")
    @classmethod
    def parse_seconds(cls, v: Any) -> float:
        return parse_duration(v)

    def to_policy(self) -> RetryPolicy:
        if self.backoff == "none":
            return NoRetry()
        if self.backoff == "exponential":
            return ExponentialBackoff(
                base=self.delay,
                multiplier=self.multiplier,
                max_delay=self.max_delay,
                max_attempts=self.max_attempts,
            )
        return FixedDelay(delay=self.delay, max_attempts=self.max_attempts)


class ValidatorModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    params: dict[str, Any] = Field(default_factory=dict)

    def to_ref(self) -> ValidatorRef:
        return ValidatorRef.of(self.name, **self.params)


class ApprovalModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    required: bool = True


class StageModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    prompt: str
    description: str = ""
    agent: str | AgentModel | None = None
    validator: str | ValidatorModel | None = None
    retry: RetryModel | None = None
    depends_on: list[str] = Field(default_factory=list)
    parallel: bool = False
    optional: bool = False
    approval: bool | ApprovalModel = False
    reviewer: bool | str | AgentModel | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def requires_approval(self) -> bool:
        if isinstance(self.approval, ApprovalModel):
            return self.approval.required
        return self.approval


class WorkflowModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = "workflow"
    settings: dict[str, Any] = Field(default_factory=dict)
    variables: dict[str, Any] = Field(default_factory=dict)
    agents: dict[str, AgentModel] = Field(default_factory=dict)
    stages: list[StageModel] = Field(min_length=1)


def _normalize_settings(overrides: dict[str, Any]) -> dict[str, Any]:
    normalized = {}
    for section, values in overrides.items():
        if isinstance(values, dict):
            values = dict(values)
            for key in _DURATION_FIELDS.get(section, ()):
                if values.get(key) is not None:
                    values[key] = parse_duration(values[key])
        normalized[section] = values
    return normalized


def _validator_ref(validator: str | ValidatorModel | None) -> ValidatorRef | None:
    if validator is None:
        return None
    if isinstance(validator, str):
        return ValidatorRef.of(validator)
    return validator.to_ref()


def _resolve_agent(
    ref: bool | str | AgentModel | None,
    agents: dict[str, AgentModel],
    default: AgentSpec,
    stage_id: str,
) -> AgentSpec:
    if ref is None or ref is True:
        return default
    if isinstance(ref, AgentModel):
        return ref.to_spec(stage_id)
    if ref in agents:
        return agents[ref].to_spec(ref)
    return AgentSpec.registered(ref)


def parse_workflow(data: dict[str, Any], settings: Settings | None = None) -> WorkflowDefinition:
    """Build a definition from already-parsed YAML/JSON data."""
    if not isinstance(data, dict):
        raise ConfigurationError("workflow document must be a mapping")

    try:
        model = WorkflowModel.model_validate(data)
        overrides = _normalize_settings(model.settings)
        effective = (settings or get_settings()).merged(overrides)
    except ValueError as e:
        raise ConfigurationError(f"invalid workflow definition: {e}") from e

    default_retry = policy_from_config(effective.retry)
    stages = []
    for stage in model.stages:
        try:
            stages.append(
                StageDefinition(
                    id=stage.id,
                    agent=_resolve_agent(stage.agent, model.agents, AgentSpec.ephemeral(), stage.id),
                    prompt_template=stage.prompt,
                    retry_policy=stage.retry.to_policy() if stage.retry else default_retry,
                    description=stage.description,
                    validator=_validator_ref(stage.validator),
                    depends_on=tuple(stage.depends_on),
                    parallel=stage.parallel,
                    optional=stage.optional,
                    requires_approval=stage.requires_approval,
                    reviewer=_resolve_agent(
                        stage.reviewer,
                        model.agents,
                        AgentSpec.ephemeral(capability=Capability.REVIEWER),
                        stage.id,
                    )
                    if stage.reviewer not in (None, False)
                    else None,
                    metadata=stage.metadata,
                )
            )
        except ValueError as e:
            raise ConfigurationError(f"stage '{stage.id}': {e}") from e

    check_dependencies(stages)
    logger.info(f"Loaded workflow '{model.name}'", stages=len(stages))
    return WorkflowDefinition(
        name=model.name,
        stages=tuple(stages),
        variables=dict(model.variables),
        settings_overrides=overrides,
    )


def load_workflow_text(text: str, settings: Settings | None = None) -> WorkflowDefinition:
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"invalid YAML: {e}") from e
    return parse_workflow(data, settings)


def load_workflow(path: Path | str, settings: Settings | None = None) -> WorkflowDefinition:
    """Load a workflow definition from a YAML file."""
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"cannot read workflow file {path}: {e}") from e
    return load_workflow_text(text, settings)
