"""
Dependency injection container for the runtime's shared services.

Services are created lazily from factories on first ``get``. Resources that
are async context managers or expose ``aclose`` are closed by ``cleanup``.
"""

from contextlib import asynccontextmanager
from typing import Any

from ..observability.logging import get_logger
from .settings import Settings, get_settings

logger = get_logger(__name__)


class Container:
    """Dependency injection container with async lifecycle management."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self._services: dict[str, Any] = {}
        self._factories: dict[str, Any] = {}
        self._singletons: dict[str, Any] = {}

    def register_factory(self, name: str, factory: Any) -> None:
        """Register a factory ``factory(container)`` for a service."""
        self._factories[name] = factory

    def register_singleton(self, name: str, instance: Any) -> None:
        self._singletons[name] = instance

    def get(self, name: str, default: Any = None) -> Any:
        if name in self._singletons:
            return self._singletons[name]

        if name in self._services:
            return self._services[name]

        if name in self._factories:
            instance = self._factories[name](self)
            self._services[name] = instance
            return instance

        return default

    async def cleanup(self) -> None:
        """Close every created service that holds resources."""
        for name, resource in [*self._services.items(), *self._singletons.items()]:
            try:
                if hasattr(resource, "aclose"):
                    await resource.aclose()
                elif hasattr(resource, "__aexit__"):
                    await resource.__aexit__(None, None, None)
            except Exception as e:
                logger.error(f"Error cleaning up {name}: {e}")
        self._services.clear()

    @asynccontextmanager
    async def lifespan(self):
        try:
            yield self
        finally:
            await self.cleanup()


def setup_container(settings: Settings | None = None) -> Container:
    """Container with the default provider, orchestrator and engine factories."""
    container = Container(settings)

    def _provider_factory(c: Container):
        from ..agents.providers import HttpProvider

        return HttpProvider(c.settings.provider, name="default")

    def _memory_factory(c: Container):
        from ..core.memory import MemoryStore

        return MemoryStore(c.settings.memory.cap, c.settings.memory.persist_directory)

    def _orchestrator_factory(c: Container):
        from ..core.orchestrator import Orchestrator

        orchestrator = Orchestrator(settings=c.settings, memory=c.get("memory_store"))
        orchestrator.register_provider("default", c.get("provider"))
        return orchestrator

    def _approval_channel_factory(c: Container):
        from ..core.approval import ConsoleApprovalChannel

        return ConsoleApprovalChannel()

    def _engine_factory(c: Container):
        from ..core.engine import WorkflowEngine

        return WorkflowEngine(
            c.get("orchestrator"),
            settings=c.settings,
            approval_channel=c.get("approval_channel"),
        )

    container.register_factory("provider", _provider_factory)
    container.register_factory("memory_store", _memory_factory)
    container.register_factory("orchestrator", _orchestrator_factory)
    container.register_factory("approval_channel", _approval_channel_factory)
    container.register_factory("engine", _engine_factory)

    return container
