"""
Conductor - multi-agent workflow orchestration.

Declare a workflow of stages, each run by an AI agent, and let the engine
execute it: dependency ordering, bounded parallelism, retries with backoff,
per-provider circuit breakers, output validation, agentic review and human
approval gates. Registered agents keep bounded conversational memory across
runs.

Quick Start:
    >>> from conductor import MockProvider, Orchestrator, WorkflowBuilder, WorkflowEngine
    >>>
    >>> orchestrator = Orchestrator()
    >>> orchestrator.register_provider("default", MockProvider())
    >>> engine = WorkflowEngine(orchestrator)
    >>>
    >>> definition = (
    ...     WorkflowBuilder("book")
    ...     .stage("outline", "Outline a book about ${topic}", capability="planner")
    ...     .stage("draft", "Write it from:\\n${outline}", depends_on=["outline"])
    ...     .variable("topic", "tide pools")
    ...     .build()
    ... )
    >>> result = await engine.run(definition)
    >>> print(result.success, result.output("draft"))

Declarative workflows live in YAML and load with ``load_workflow``; both
paths produce identical stage definitions and the same fingerprint.

Configuration:
    - CONDUCTOR_APPROVAL__TIMEOUT=300
    - CONDUCTOR_APPROVAL__ON_TIMEOUT=fail
    - CONDUCTOR_WORKFLOW__WORKER_POOL_SIZE=4
    - CONDUCTOR_CIRCUIT_BREAKER__FAILURE_THRESHOLD=5
    - CONDUCTOR_MEMORY__CAP=50
"""

__version__ = "0.1.0"

from .agents.providers import HttpProvider, MockProvider
from .config.settings import Settings, get_settings
from .core.approval import (
    ApprovalDecision,
    AutoApprovalChannel,
    ConsoleApprovalChannel,
    ScriptedApprovalChannel,
)
from .core.builder import WorkflowBuilder
from .core.engine import WorkflowEngine
from .core.loader import load_workflow, load_workflow_text
from .core.models import AgentSpec, Capability, StageDefinition, ValidatorRef, WorkflowResult
from .core.orchestrator import AgentRecord, Orchestrator
from .core.retry import ExponentialBackoff, FixedDelay, NoRetry

__all__ = [
    "HttpProvider",
    "MockProvider",
    "Settings",
    "get_settings",
    "ApprovalDecision",
    "AutoApprovalChannel",
    "ConsoleApprovalChannel",
    "ScriptedApprovalChannel",
    "WorkflowBuilder",
    "WorkflowEngine",
    "load_workflow",
    "load_workflow_text",
    "AgentSpec",
    "Capability",
    "StageDefinition",
    "ValidatorRef",
    "WorkflowResult",
    "AgentRecord",
    "Orchestrator",
    "ExponentialBackoff",
    "FixedDelay",
    "NoRetry",
]
