"""
OpenTelemetry tracing integration.

``trace_span`` wraps sync and async callables in a span. Without an
initialized ``TracingManager`` the global OpenTelemetry tracer is a no-op, so
decorated code runs unchanged in tests.
"""

import asyncio
import functools
from collections.abc import Callable
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Status, StatusCode

from .logging import get_logger

logger = get_logger(__name__)


class TracingManager:
    """Owns the SDK tracer provider for the process."""

    def __init__(self, service_name: str = "conductor", service_version: str = "0.1.0"):
        self.service_name = service_name
        self.service_version = service_version
        self.tracer_provider: TracerProvider | None = None
        self._initialized = False

    def initialize(self, console_export: bool = False) -> None:
        """Install an SDK tracer provider, optionally exporting spans to stdout."""
        if self._initialized:
            return

        resource = Resource.create(
            {"service.name": self.service_name, "service.version": self.service_version}
        )
        self.tracer_provider = TracerProvider(resource=resource)
        if console_export:
            self.tracer_provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
        trace.set_tracer_provider(self.tracer_provider)

        self._initialized = True
        logger.info("Tracing initialized", service=self.service_name)

    def shutdown(self) -> None:
        if self.tracer_provider:
            self.tracer_provider.shutdown()
        self._initialized = False


def get_tracer() -> trace.Tracer:
    return trace.get_tracer("conductor")


@contextmanager
def _span(name: str, attributes: dict[str, Any]):
    with get_tracer().start_as_current_span(name) as span:
        for key, value in attributes.items():
            span.set_attribute(key, str(value))
        try:
            yield span
        except Exception as e:
            span.record_exception(e)
            span.set_status(Status(StatusCode.ERROR, str(e)))
            raise


def trace_span(name: str | None = None, attributes: dict[str, Any] | None = None):
    """Decorator for automatic span creation."""

    def decorator(func: Callable) -> Callable:
        span_name = name or f"{func.__module__}.{func.__qualname__}"
        span_attributes = {"function.name": func.__name__, **(attributes or {})}

        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            with _span(span_name, span_attributes) as span:
                result = await func(*args, **kwargs)
                if hasattr(result, "success"):
                    span.set_attribute("result.success", bool(result.success))
                return result

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs):
            with _span(span_name, span_attributes):
                return func(*args, **kwargs)

        return async_wrapper if asyncio.iscoroutinefunction(func) else sync_wrapper

    return decorator

