"""
Configuration management with Pydantic Settings and dependency injection.
"""

from .container import Container, setup_container
from .settings import ApprovalTimeoutPolicy, ReviewFailurePolicy, Settings, get_settings

__all__ = [
    "Container",
    "setup_container",
    "ApprovalTimeoutPolicy",
    "ReviewFailurePolicy",
    "Settings",
    "get_settings",
]
