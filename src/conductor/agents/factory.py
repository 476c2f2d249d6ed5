"""
Ephemeral agent factory.

``create_agent`` is a pure function of the agent spec, the resolved provider
and a name hint: the same inputs always yield an equivalent agent, and nothing
is cached or registered.
"""

from ..core.models import AgentSpec, Capability
from ..observability.logging import get_logger
from .base import EphemeralAgent
from .providers import ReasoningProvider

logger = get_logger(__name__)


DEFAULT_SYSTEM_PROMPTS: dict[Capability, str] = {
    Capability.GENERAL: "You are a capable assistant. Complete the task precisely.",
    Capability.PLANNER: (
        "You are a planning assistant. Break the task into clear, ordered steps "
        "and state any assumptions."
    ),
    Capability.WRITER: (
        "You are a writing assistant. Produce complete, well-structured prose "
        "that follows the task instructions exactly."
    ),
    Capability.REVIEWER: (
        "You are a strict reviewer. Start your answer with APPROVE if the work "
        "meets the requirements, otherwise with REJECT followed by concrete, "
        "actionable feedback."
    ),
}


def create_agent(spec: AgentSpec, provider: ReasoningProvider, hint: str) -> EphemeralAgent:
    """Build a fresh ephemeral agent for one stage execution."""
    if spec.is_registered:
        raise ValueError(f"spec for registered agent '{spec.identity}' cannot build an ephemeral one")

    agent = EphemeralAgent(
        identity=EphemeralAgent.make_identity(hint),
        provider=provider,
        description=spec.description,
        system_prompt=spec.system_prompt or DEFAULT_SYSTEM_PROMPTS[spec.capability],
        capability=spec.capability,
    )
    logger.debug(f"Created ephemeral {spec.capability.value} agent {agent.identity}")
    return agent
