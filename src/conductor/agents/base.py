"""
Agent base classes.

An agent turns a ``TaskInput`` into a ``TaskResult`` by building a prompt and
calling its reasoning provider. Two variants exist:

- ``RegisteredAgent``: long-lived, addressed by identity, with durable memory
  whose recent entries are folded into every prompt
- ``EphemeralAgent``: built for a single stage execution and discarded, no
  memory
"""

import time
import uuid
from abc import ABC

from ..core.memory import MemoryEntry, MemoryStore
from ..core.models import AgentKind, Capability, TaskInput, TaskResult
from ..observability.logging import get_logger, get_trace_id
from ..observability.probe import probe
from .providers import ReasoningProvider

logger = get_logger(__name__)


class Agent(ABC):
    kind: AgentKind

    def __init__(
        self,
        identity: str,
        provider: ReasoningProvider,
        description: str = "",
        system_prompt: str = "",
        capability: Capability = Capability.GENERAL,
    ):
        self.identity = identity
        self.provider = provider
        self.description = description
        self.system_prompt = system_prompt
        self.capability = capability

    @property
    def provider_key(self) -> str:
        return self.provider.name

    def memory_snapshot(self) -> list[MemoryEntry]:
        return []

    def build_prompt(self, task: TaskInput) -> str:
        sections = []
        header = self.system_prompt or self.description
        if header:
            sections.append(f"System: {header}")

        memory = self.memory_snapshot()
        if memory:
            lines = [f"- [{e.role.value}] {e.content}" for e in memory]
            sections.append("Memory:\n" + "\n".join(lines))

        sections.append(f"Task:\n{task.prompt}")

        if task.feedback:
            lines = [f"- {fb}" for fb in task.feedback if fb]
            if lines:
                sections.append("Revision feedback:\n" + "\n".join(lines))

        return "\n\n".join(sections)

    async def execute(self, task: TaskInput) -> TaskResult:
        prompt = self.build_prompt(task)
        start = time.perf_counter()
        with probe("agent.execute", get_trace_id(), agent=self.identity):
            output = await self.provider.invoke(prompt, dict(task.context))
        return TaskResult(
            output=output,
            success=True,
            metadata={
                "agent": self.identity,
                "agent_kind": self.kind.value,
                "provider": self.provider_key,
                "prompt": prompt,
                "duration": time.perf_counter() - start,
            },
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.identity!r}, provider={self.provider_key!r})"


class RegisteredAgent(Agent):
    kind = AgentKind.REGISTERED

    def __init__(
        self,
        identity: str,
        provider: ReasoningProvider,
        memory: MemoryStore | None = None,
        description: str = "",
        system_prompt: str = "",
        capability: Capability = Capability.GENERAL,
    ):
        super().__init__(identity, provider, description, system_prompt, capability)
        self.memory = memory

    def memory_snapshot(self) -> list[MemoryEntry]:
        return self.memory.read(self.identity) if self.memory else []

    async def remember(self, prompt: str, output: str) -> None:
        if self.memory:
            await self.memory.record_exchange(self.identity, prompt, output)


class EphemeralAgent(Agent):
    kind = AgentKind.EPHEMERAL

    @staticmethod
    def make_identity(hint: str) -> str:
        return f"{hint}-{uuid.uuid4().hex[:8]}"
