"""
Programmatic workflow declaration.

    definition = (
        WorkflowBuilder("book")
        .variable("topic", "tide pools")
        .stage("outline", "Outline a short book about ${topic}", capability="planner")
        .stage("draft", "Write the book from this outline:\\n${outline}",
               depends_on=["outline"], validator=ValidatorRef.of("min_length", length=200))
        .build()
    )

Stages built here compare equal to the same stages loaded from YAML.
"""

from collections.abc import Iterable
from typing import Any

from ..config.settings import Settings, get_settings
from ..exceptions import ConfigurationError
from .models import (
    AgentSpec,
    Capability,
    StageDefinition,
    ValidatorRef,
    WorkflowDefinition,
    check_dependencies,
)
from .retry import RetryPolicy, policy_from_config


def agent_spec(agent: str | AgentSpec | None, **ephemeral: Any) -> AgentSpec:
    """A name means a registered agent; ``None`` means an ephemeral one."""
    if isinstance(agent, AgentSpec):
        return agent
    if isinstance(agent, str):
        return AgentSpec.registered(agent)
    return AgentSpec.ephemeral(**ephemeral)


def validator_ref(validator: str | ValidatorRef | None) -> ValidatorRef | None:
    if validator is None or isinstance(validator, ValidatorRef):
        return validator
    return ValidatorRef.of(validator)


class WorkflowBuilder:
    def __init__(self, name: str = "workflow", settings: Settings | None = None):
        self.name = name
        self._settings = settings or get_settings()
        self._overrides: dict[str, dict[str, Any]] = {}
        self._variables: dict[str, Any] = {}
        self._stages: list[StageDefinition] = []

    @property
    def settings(self) -> Settings:
        return self._settings.merged(self._overrides)

    def variable(self, key: str, value: Any) -> "WorkflowBuilder":
        self._variables[key] = value
        return self

    def configure(self, section: str, **values: Any) -> "WorkflowBuilder":
        """Override a settings section for this workflow, e.g. ``configure("approval", timeout=5)``."""
        self._overrides.setdefault(section, {}).update(values)
        return self

    def stage(
        self,
        stage_id: str,
        prompt: str,
        *,
        agent: str | AgentSpec | None = None,
        capability: Capability | str = Capability.GENERAL,
        system_prompt: str = "",
        provider: str = "default",
        description: str = "",
        validator: str | ValidatorRef | None = None,
        retry: RetryPolicy | None = None,
        depends_on: Iterable[str] = (),
        parallel: bool = False,
        optional: bool = False,
        requires_approval: bool = False,
        reviewer: str | AgentSpec | bool | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> "WorkflowBuilder":
        try:
            spec = agent_spec(
                agent, capability=capability, system_prompt=system_prompt, provider=provider
            )
            definition = StageDefinition(
                id=stage_id,
                agent=spec,
                prompt_template=prompt,
                retry_policy=retry or policy_from_config(self.settings.retry),
                description=description,
                validator=validator_ref(validator),
                depends_on=tuple(depends_on),
                parallel=parallel,
                optional=optional,
                requires_approval=requires_approval,
                reviewer=agent_spec(reviewer, capability=Capability.REVIEWER)
                if reviewer not in (None, False)
                else None,
                metadata=metadata or {},
            )
        except ValueError as e:
            raise ConfigurationError(f"stage '{stage_id}': {e}") from e
        self._stages.append(definition)
        return self

    def stages(self) -> list[StageDefinition]:
        return list(self._stages)

    def build(self) -> WorkflowDefinition:
        check_dependencies(self._stages)
        return WorkflowDefinition(
            name=self.name,
            stages=tuple(self._stages),
            variables=dict(self._variables),
            settings_overrides={k: dict(v) for k, v in self._overrides.items()},
        )
