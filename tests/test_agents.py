"""
Tests for providers, agent variants, the factory, the registry and the
orchestrator's agent resolution.
"""

import httpx
import pytest

from conductor.agents.base import EphemeralAgent, RegisteredAgent
from conductor.agents.factory import DEFAULT_SYSTEM_PROMPTS, create_agent
from conductor.agents.providers import HttpProvider, MockProvider, ReasoningProvider
from conductor.agents.registry import AgentRegistry
from conductor.config.settings import ProviderConfig
from conductor.core.memory import MemoryStore
from conductor.core.models import AgentKind, AgentSpec, Capability, TaskInput
from conductor.core.orchestrator import AgentRecord, Orchestrator
from conductor.exceptions import (
    ConfigurationError,
    DuplicateAgentError,
    ProviderError,
    UnknownAgentError,
)


class TestMockProvider:
    @pytest.mark.asyncio
    async def test_script_then_default(self):
        provider = MockProvider(["first", ProviderError("down")], default="fallback")

        assert await provider.invoke("p1") == "first"
        with pytest.raises(ProviderError):
            await provider.invoke("p2")
        assert await provider.invoke("p3") == "fallback"
        assert provider.calls == ["p1", "p2", "p3"]

    @pytest.mark.asyncio
    async def test_callable_default_and_fail_next(self):
        provider = MockProvider(default=lambda prompt: prompt.upper())
        provider.fail_next(2)

        for _ in range(2):
            with pytest.raises(ProviderError):
                await provider.invoke("x")
        assert await provider.invoke("abc") == "ABC"

    def test_satisfies_protocol(self):
        assert isinstance(MockProvider(), ReasoningProvider)


class TestHttpProvider:
    @staticmethod
    def make(handler) -> HttpProvider:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return HttpProvider(ProviderConfig(base_url="http://model.test/"), http_client=client)

    @pytest.mark.asyncio
    async def test_posts_generate_request(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = request.read().decode()
            return httpx.Response(200, json={"response": "generated text"})

        provider = self.make(handler)
        assert await provider.invoke("hello") == "generated text"
        assert seen["url"] == "http://model.test/api/generate"
        assert '"prompt":"hello"' in seen["body"].replace(" ", "")

    @pytest.mark.asyncio
    async def test_http_error_becomes_provider_error(self):
        provider = self.make(lambda request: httpx.Response(503, text="overloaded"))

        with pytest.raises(ProviderError) as exc_info:
            await provider.invoke("hello")
        assert exc_info.value.provider == "default"

    @pytest.mark.asyncio
    async def test_empty_response_is_provider_error(self):
        provider = self.make(lambda request: httpx.Response(200, json={"response": "  "}))

        with pytest.raises(ProviderError, match="empty"):
            await provider.invoke("hello")

    @pytest.mark.parametrize("body", [[1, 2], "text", {"response": None}, {"output": "x"}])
    @pytest.mark.asyncio
    async def test_unexpected_body_is_provider_error(self, body):
        provider = self.make(lambda request: httpx.Response(200, json=body))

        with pytest.raises(ProviderError, match="unexpected response body"):
            await provider.invoke("hello")

    @pytest.mark.asyncio
    async def test_owned_client_closed_on_exit(self):
        provider = HttpProvider(ProviderConfig())
        async with provider:
            assert provider._http_client is not None
        assert provider._http_client is None


class TestAgents:
    @pytest.mark.asyncio
    async def test_prompt_sections(self):
        provider = MockProvider(default="done")
        agent = EphemeralAgent("writer-1", provider, system_prompt="Be brief.")

        result = await agent.execute(TaskInput(prompt="Write a haiku", feedback=("too long",)))

        prompt = provider.calls[0]
        assert prompt.startswith("System: Be brief.")
        assert "Task:\nWrite a haiku" in prompt
        assert "Revision feedback:\n- too long" in prompt
        assert "Memory:" not in prompt
        assert result.output == "done"
        assert result.metadata["agent_kind"] == "ephemeral"

    @pytest.mark.asyncio
    async def test_registered_agent_folds_memory_into_prompt(self):
        provider = MockProvider(default="ok")
        memory = MemoryStore(cap=10)
        agent = RegisteredAgent("editor", provider, memory=memory, description="Edits text")

        await agent.remember("earlier prompt", "earlier answer")
        await agent.execute(TaskInput(prompt="now"))

        prompt = provider.calls[0]
        assert prompt.startswith("System: Edits text")
        assert "Memory:\n- [input] earlier prompt\n- [output] earlier answer" in prompt

    @pytest.mark.asyncio
    async def test_provider_error_propagates(self):
        agent = EphemeralAgent("a-1", MockProvider([ProviderError("down")]))
        with pytest.raises(ProviderError):
            await agent.execute(TaskInput(prompt="x"))


class TestFactory:
    def test_creates_fresh_ephemeral_agents(self):
        provider = MockProvider()
        spec = AgentSpec.ephemeral(capability=Capability.PLANNER)

        first = create_agent(spec, provider, "outline")
        second = create_agent(spec, provider, "outline")

        assert first.identity != second.identity
        assert first.identity.startswith("outline-")
        assert first.kind is AgentKind.EPHEMERAL
        assert first.system_prompt == DEFAULT_SYSTEM_PROMPTS[Capability.PLANNER]

    def test_explicit_system_prompt_wins(self):
        spec = AgentSpec.ephemeral(system_prompt="Custom")
        assert create_agent(spec, MockProvider(), "x").system_prompt == "Custom"

    def test_registered_spec_rejected(self):
        with pytest.raises(ValueError):
            create_agent(AgentSpec.registered("editor"), MockProvider(), "x")


class TestRegistry:
    def test_duplicate_registration(self):
        registry = AgentRegistry()
        registry.add(RegisteredAgent("editor", MockProvider()))

        with pytest.raises(DuplicateAgentError):
            registry.add(RegisteredAgent("editor", MockProvider()))

    def test_unknown_identity(self):
        with pytest.raises(UnknownAgentError):
            AgentRegistry().get("ghost")

    def test_remove(self):
        registry = AgentRegistry()
        registry.add(RegisteredAgent("editor", MockProvider()))
        registry.remove("editor")

        assert "editor" not in registry
        assert len(registry) == 0


class TestOrchestrator:
    def test_register_and_resolve(self, orchestrator):
        agent = orchestrator.register_agent(AgentRecord("editor", description="Edits"))

        assert orchestrator.resolve(AgentSpec.registered("editor"), "stage") is agent
        assert agent.memory is orchestrator.memory

    def test_unregister(self, orchestrator):
        orchestrator.register_agent(AgentRecord("editor"))
        orchestrator.register_agent(AgentRecord("critic"))
        orchestrator.unregister_agent("editor")

        assert orchestrator.registered_identities() == ["critic"]
        with pytest.raises(UnknownAgentError):
            orchestrator.resolve(AgentSpec.registered("editor"), "stage")

    def test_register_without_durable_memory(self, orchestrator):
        agent = orchestrator.register_agent(AgentRecord("scratch", durable_memory=False))
        assert agent.memory is None

    def test_duplicate_agent_rejected(self, orchestrator):
        orchestrator.register_agent(AgentRecord("editor"))
        with pytest.raises(DuplicateAgentError):
            orchestrator.register_agent(AgentRecord("editor"))

    def test_unknown_provider(self, orchestrator):
        with pytest.raises(ConfigurationError, match="Unknown provider"):
            orchestrator.register_agent(AgentRecord("editor", provider="nope"))

    def test_resolve_ephemeral_is_fresh_each_time(self, orchestrator):
        spec = AgentSpec.ephemeral()
        first = orchestrator.resolve(spec, "draft")
        second = orchestrator.resolve(spec, "draft")

        assert first is not second
        assert first.identity not in orchestrator.registry

    def test_check(self, orchestrator):
        orchestrator.check(AgentSpec.ephemeral())
        with pytest.raises(UnknownAgentError):
            orchestrator.check(AgentSpec.registered("ghost"))
        with pytest.raises(ConfigurationError):
            orchestrator.check(AgentSpec.ephemeral(provider="other"))

    @pytest.mark.asyncio
    async def test_record_exchange_only_for_registered(self, orchestrator):
        registered = orchestrator.register_agent(AgentRecord("editor"))
        ephemeral = orchestrator.resolve(AgentSpec.ephemeral(), "draft")

        await orchestrator.record_exchange(registered, "p", "o")
        await orchestrator.record_exchange(ephemeral, "p", "o")

        assert len(orchestrator.memory_snapshot("editor")) == 2
        assert orchestrator.memory.identities() == ["editor"]

    def test_memory_uses_settings(self, settings):
        orch = Orchestrator(settings=settings.merged({"memory": {"cap": 7}}))
        assert orch.memory.cap == 7
