"""
Agents and reasoning providers.
"""

from .base import Agent, EphemeralAgent, RegisteredAgent
from .factory import create_agent
from .providers import HttpProvider, MockProvider, ReasoningProvider
from .registry import AgentRegistry

__all__ = [
    "Agent",
    "EphemeralAgent",
    "RegisteredAgent",
    "create_agent",
    "HttpProvider",
    "MockProvider",
    "ReasoningProvider",
    "AgentRegistry",
]
