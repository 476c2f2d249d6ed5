"""
Agent orchestrator: owns the registry, the providers and the memory store.

Stages name agents by ``AgentSpec``. A spec with an identity resolves to the
registered agent of that name; anything else gets a fresh ephemeral agent
from the factory on every call.
"""

from dataclasses import dataclass

from ..agents.base import Agent, RegisteredAgent
from ..agents.factory import create_agent
from ..agents.providers import ReasoningProvider
from ..agents.registry import AgentRegistry
from ..config.settings import Settings, get_settings
from ..exceptions import ConfigurationError
from ..observability.logging import get_logger
from .memory import MemoryEntry, MemoryStore
from .models import AgentKind, AgentSpec, Capability

logger = get_logger(__name__)

DEFAULT_PROVIDER = "default"


@dataclass(frozen=True)
class AgentRecord:
    """Everything needed to register a long-lived agent."""

    identity: str
    provider: str = DEFAULT_PROVIDER
    description: str = ""
    system_prompt: str = ""
    capability: Capability = Capability.GENERAL
    durable_memory: bool = True


class Orchestrator:
    def __init__(
        self,
        settings: Settings | None = None,
        memory: MemoryStore | None = None,
        registry: AgentRegistry | None = None,
    ):
        self.settings = settings or get_settings()
        self.memory = memory or MemoryStore(
            cap=self.settings.memory.cap,
            persist_directory=self.settings.memory.persist_directory,
        )
        self.registry = registry or AgentRegistry()
        self._providers: dict[str, ReasoningProvider] = {}

    def register_provider(self, name: str, provider: ReasoningProvider) -> None:
        self._providers[name] = provider
        logger.info(f"Registered provider: {name}")

    def provider(self, name: str) -> ReasoningProvider:
        try:
            return self._providers[name]
        except KeyError:
            raise ConfigurationError(
                f"Unknown provider '{name}'. Available: {sorted(self._providers)}"
            ) from None

    @property
    def providers(self) -> dict[str, ReasoningProvider]:
        return dict(self._providers)

    def register_agent(self, record: AgentRecord) -> RegisteredAgent:
        """Register a long-lived agent. Duplicate identities are rejected."""
        agent = RegisteredAgent(
            identity=record.identity,
            provider=self.provider(record.provider),
            memory=self.memory if record.durable_memory else None,
            description=record.description,
            system_prompt=record.system_prompt,
            capability=record.capability,
        )
        self.registry.add(agent)
        return agent

    def unregister_agent(self, identity: str) -> None:
        self.registry.remove(identity)

    def registered_identities(self) -> list[str]:
        return self.registry.identities()

    def resolve(self, spec: AgentSpec, hint: str) -> Agent:
        """Registered agent for identity specs, a new ephemeral agent otherwise."""
        if spec.is_registered:
            return self.registry.get(spec.identity)
        return create_agent(spec, self.provider(spec.provider), hint)

    def check(self, spec: AgentSpec) -> None:
        """Raise ``ConfigurationError`` if a spec cannot be resolved."""
        if spec.is_registered:
            self.registry.get(spec.identity)
        else:
            self.provider(spec.provider)

    async def record_exchange(self, agent: Agent, prompt: str, output: str) -> None:
        """Append a finalized exchange to a registered agent's memory."""
        if agent.kind is AgentKind.REGISTERED:
            await agent.remember(prompt, output)

    def memory_snapshot(self, identity: str) -> list[MemoryEntry]:
        return self.memory.read(identity)
