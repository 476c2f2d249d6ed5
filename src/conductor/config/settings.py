"""
Configuration with Pydantic Settings and validation.

All global workflow knobs live here: approval timeout and its timeout policy,
regenerate limit, memory cap, default retry behaviour, breaker threshold and
cooldown, parallelism and worker pool size. Values come from defaults,
``CONDUCTOR_*`` environment variables (``__`` separates nested sections) or a
YAML workflow's ``settings`` block applied through ``Settings.merged``.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ApprovalTimeoutPolicy(str, Enum):
    """What an approval timeout turns into. Never implicit."""

    AUTO_APPROVE = "auto_approve"
    AUTO_REJECT = "auto_reject"
    FAIL = "fail"


class ReviewFailurePolicy(str, Enum):
    """What an agentic review rejection does to the stage."""

    CONSUME_RETRY = "consume_retry"
    REGENERATE = "regenerate"


class WorkflowConfig(BaseModel):
    """Scheduler behaviour."""

    parallel_enabled: bool = Field(True)
    worker_pool_size: int = Field(4, gt=0)
    timeout: float | None = Field(None, gt=0, description="Whole-run deadline in seconds")
    artifacts_dir: Path | None = Field(None, description="Where run snapshots are written")


class RetryConfig(BaseModel):
    """Defaults for stages that do not declare their own retry policy."""

    max_attempts: int = Field(3, gt=0)
    delay: float = Field(1.0, ge=0.0)
    backoff: str = Field("fixed", description="none, fixed or exponential")
    multiplier: float = Field(2.0, gt=1.0)
    max_delay: float = Field(30.0, ge=0.0)

    @field_validator("backoff")
    @classmethod
    def validate_backoff(cls, v: str) -> str:
        allowed = {"none", "fixed", "exponential"}
        if v not in allowed:
            raise ValueError(f"backoff must be one of {sorted(allowed)}")
        return v


class CircuitBreakerConfig(BaseModel):
    failure_threshold: int = Field(5, gt=0)
    cooldown: float = Field(60.0, gt=0)


class ApprovalConfig(BaseModel):
    """Human approval and agentic review behaviour."""

    timeout: float = Field(300.0, gt=0)
    on_timeout: ApprovalTimeoutPolicy = Field(ApprovalTimeoutPolicy.FAIL)
    max_regenerate: int = Field(3, ge=0)
    review_failure_policy: ReviewFailurePolicy = Field(ReviewFailurePolicy.CONSUME_RETRY)


class MemoryConfig(BaseModel):
    cap: int = Field(50, gt=0, description="Max entries kept per agent identity")
    persist_directory: Path | None = Field(None)


class ProviderConfig(BaseModel):
    """Endpoint for the HTTP reasoning provider."""

    model: str = Field("llama3.1:8b-instruct")
    base_url: str = Field("http://localhost:11434")
    timeout: float = Field(120.0, gt=0)
    temperature: float = Field(0.1, ge=0.0, le=2.0)

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("base_url must start with http:// or https://")
        return v.rstrip("/")


class ObservabilityConfig(BaseModel):
    log_level: str = Field("INFO")
    enable_tracing: bool = Field(False)
    console_spans: bool = Field(False)
    service_name: str = Field("conductor")


class Settings(BaseSettings):
    """Main application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_prefix="CONDUCTOR_", env_nested_delimiter="__", case_sensitive=False, extra="ignore"
    )

    workflow: WorkflowConfig = Field(default_factory=WorkflowConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    circuit_breaker: CircuitBreakerConfig = Field(default_factory=CircuitBreakerConfig)
    approval: ApprovalConfig = Field(default_factory=ApprovalConfig)
    memory: MemoryConfig = Field(default_factory=MemoryConfig)
    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)

    environment: str = Field("development")

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        allowed = {"development", "staging", "production", "test"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    def merged(self, overrides: dict[str, Any] | None) -> "Settings":
        """Return a copy with nested section overrides applied and validated."""
        if not overrides:
            return self
        data = self.model_dump()
        for section, values in overrides.items():
            if isinstance(values, dict) and isinstance(data.get(section), dict):
                data[section].update(values)
            else:
                data[section] = values
        return Settings.model_validate(data)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
