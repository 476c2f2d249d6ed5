"""
Reasoning providers: the text-in, text-out boundary to a model.

Any object with a ``name`` and an ``async invoke(prompt, context)`` method is a
provider. Two are shipped:

- ``HttpProvider`` posts to an Ollama-style ``/api/generate`` endpoint
- ``MockProvider`` replays a script of responses and failures, for tests and
  dry runs
"""

import asyncio
from collections.abc import Callable, Iterable
from typing import Any, Protocol, runtime_checkable

import httpx

from ..config.settings import ProviderConfig
from ..exceptions import ProviderError
from ..observability.logging import get_logger
from ..observability.metrics import timer
from ..observability.tracing import trace_span

logger = get_logger(__name__)


@runtime_checkable
class ReasoningProvider(Protocol):
    name: str

    async def invoke(self, prompt: str, context: dict[str, Any] | None = None) -> str:
        """Return the model's text for a prompt or raise ``ProviderError``."""
        ...


class HttpProvider:
    """Provider backed by an HTTP text-generation endpoint."""

    def __init__(
        self,
        config: ProviderConfig | None = None,
        name: str = "default",
        http_client: httpx.AsyncClient | None = None,
        api_key: str | None = None,
    ):
        self.name = name
        self.config = config or ProviderConfig()
        self.api_key = api_key
        self._http_client = http_client
        self._owned_client = http_client is None

    async def __aenter__(self):
        self._client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.config.timeout),
                limits=httpx.Limits(max_connections=10, max_keepalive_connections=2),
            )
        return self._http_client

    async def aclose(self) -> None:
        if self._owned_client and self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    def _get_headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    @trace_span("provider.http.invoke")
    async def invoke(self, prompt: str, context: dict[str, Any] | None = None) -> str:
        try:
            with timer("provider_call", {"provider": self.name}):
                response = await self._client().post(
                    f"{self.config.base_url}/api/generate",
                    json={
                        "model": self.config.model,
                        "prompt": prompt,
                        "stream": False,
                        "options": {"temperature": self.config.temperature},
                    },
                    headers=self._get_headers(),
                )
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Provider '{self.name}' call failed: {e}")
            raise ProviderError(str(e) or type(e).__name__, provider=self.name) from e

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError(f"invalid JSON from provider: {e}", provider=self.name) from e

        text = data.get("response") if isinstance(data, dict) else None
        if not isinstance(text, str):
            raise ProviderError(
                f"unexpected response body: {type(data).__name__}", provider=self.name
            )
        if not text.strip():
            raise ProviderError("empty response", provider=self.name)
        return text


ScriptItem = str | Exception


class MockProvider:
    """
    Scripted provider.

    Each call consumes the next script item: a string is returned, an
    exception is raised. Once the script is used up, ``default`` produces the
    response (a callable receives the prompt).
    """

    def __init__(
        self,
        script: Iterable[ScriptItem] = (),
        name: str = "mock",
        default: str | Callable[[str], str] | None = None,
        delay: float = 0.0,
    ):
        self.name = name
        self.script: list[ScriptItem] = list(script)
        self.default = default
        self.delay = delay
        self.calls: list[str] = []
        self.active = 0
        self.max_active = 0

    @property
    def call_count(self) -> int:
        return len(self.calls)

    def push(self, *items: ScriptItem) -> None:
        self.script.extend(items)

    def fail_next(self, count: int = 1, message: str = "mock provider failure") -> None:
        self.script[0:0] = [ProviderError(message, provider=self.name) for _ in range(count)]

    async def invoke(self, prompt: str, context: dict[str, Any] | None = None) -> str:
        self.calls.append(prompt)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.script:
                item = self.script.pop(0)
                if isinstance(item, Exception):
                    raise item
                return item
            if callable(self.default):
                return self.default(prompt)
            if self.default is not None:
                return self.default
            return f"[{self.name}] response {len(self.calls)}"
        finally:
            self.active -= 1
