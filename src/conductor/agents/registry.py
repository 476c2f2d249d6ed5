"""
Registry of long-lived agents, keyed by identity.
"""

from ..exceptions import DuplicateAgentError, UnknownAgentError
from ..observability.logging import get_logger
from .base import RegisteredAgent

logger = get_logger(__name__)


class AgentRegistry:
    def __init__(self):
        self._agents: dict[str, RegisteredAgent] = {}

    def add(self, agent: RegisteredAgent) -> None:
        if agent.identity in self._agents:
            raise DuplicateAgentError(agent.identity)
        self._agents[agent.identity] = agent
        logger.info(f"Registered agent: {agent.identity}", provider=agent.provider_key)

    def get(self, identity: str) -> RegisteredAgent:
        try:
            return self._agents[identity]
        except KeyError:
            raise UnknownAgentError(identity) from None

    def remove(self, identity: str) -> RegisteredAgent:
        agent = self.get(identity)
        del self._agents[identity]
        return agent

    def __contains__(self, identity: object) -> bool:
        return identity in self._agents

    def __len__(self) -> int:
        return len(self._agents)

    def identities(self) -> list[str]:
        return list(self._agents)
