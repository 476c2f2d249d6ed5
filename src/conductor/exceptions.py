"""
Exception taxonomy for the conductor runtime.

Configuration errors are fatal and raised before any stage runs. Provider and
validation errors are retried inside a stage. Everything else is terminal for
the stage that raised it and is converted to a ``FailureReason`` at the stage
boundary.
"""


class ConductorError(Exception):
    """Base class for all conductor errors."""


# Configuration (fatal, never retried)


class ConfigurationError(ConductorError):
    """Invalid workflow or agent configuration."""


class DuplicateAgentError(ConfigurationError):
    """A registered agent identity is already present in the registry."""

    def __init__(self, identity: str):
        super().__init__(f"Agent '{identity}' is already registered")
        self.identity = identity


class UnknownAgentError(ConfigurationError):
    """A stage names a registered agent that does not exist."""

    def __init__(self, identity: str):
        super().__init__(f"No registered agent named '{identity}'")
        self.identity = identity


class DependencyError(ConfigurationError):
    """Duplicate stage ids, forward references or dependency cycles."""


# Stage execution


class ProviderError(ConductorError):
    """Transient reasoning provider failure. Retried and counted by the breaker."""

    def __init__(self, message: str, provider: str | None = None):
        super().__init__(message)
        self.provider = provider


class ReviewerError(ProviderError):
    """The reviewer's provider failed. Retried; charged to the reviewer's breaker only."""


class ValidationError(ConductorError):
    """Stage output rejected by its validator. Retried within the retry policy."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class CircuitOpenError(ConductorError):
    """The breaker for a provider key is open; no call was attempted."""

    def __init__(self, key: str, retry_after: float = 0.0):
        super().__init__(f"Circuit open for '{key}' (retry in {retry_after:.2f}s)")
        self.key = key
        self.retry_after = retry_after


class ApprovalError(ConductorError):
    """The approval channel failed to produce a decision."""


class ApprovalTimeoutError(ApprovalError):
    """No approval decision arrived within the configured timeout."""

    def __init__(self, stage_id: str, timeout: float):
        super().__init__(f"Approval for stage '{stage_id}' timed out after {timeout:.1f}s")
        self.stage_id = stage_id
        self.timeout = timeout


class ApprovalRejectedExhausted(ApprovalError):
    """A stage was rejected more times than the regenerate limit allows."""

    def __init__(self, stage_id: str, regenerate_count: int, feedback: str = ""):
        super().__init__(
            f"Stage '{stage_id}' rejected after {regenerate_count} regeneration(s)"
            + (f": {feedback}" if feedback else "")
        )
        self.stage_id = stage_id
        self.regenerate_count = regenerate_count
        self.feedback = feedback


class ReviewRejectedExhausted(ApprovalRejectedExhausted):
    """The agentic reviewer kept rejecting a stage past the regenerate limit."""