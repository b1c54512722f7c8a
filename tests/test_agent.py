import json

import pytest

from agent_factory.core.agent import AgentDescriptor, AgentFactory, ToolAgent, _strip_code_fence
from agent_factory.core.prompts import PromptManager
from agent_factory.core.resolver import ToolNameResolver
from agent_factory.core.router import ModelClientRouter
from agent_factory.errors import ChainExhaustedError, ToolResolutionError
from agent_factory.tools.base import ToolSourceRegistry

from conftest import FakeClient, FakeHandler


@pytest.fixture
def factory(local_source):
    router = ModelClientRouter([FakeHandler("broken", error=RuntimeError("boom")), FakeHandler("primary")])
    return AgentFactory(router, ToolNameResolver(ToolSourceRegistry([local_source])))


class TestAgentFactory:
    def test_create_routes_model_and_resolves_tools(self, factory):
        agent = factory.create(AgentDescriptor(name="helper", model="gpt-4o", tools=["echo", "ghost"]))

        assert agent.handler_name == "primary"
        assert agent.client.model == "gpt-4o"
        assert [t.name for t in agent.tools] == ["echo"]
        assert agent.unmatched == ["ghost"]
        assert agent.get_tool("echo") is not None
        assert agent.get_tool("billing") is None

    def test_exhausted_chain_propagates(self, local_source):
        router = ModelClientRouter([FakeHandler("only", accepts=False)])
        factory = AgentFactory(router, ToolNameResolver(ToolSourceRegistry([local_source])))

        with pytest.raises(ChainExhaustedError) as excinfo:
            factory.create(AgentDescriptor(name="helper", model="mystery-model"))

        assert excinfo.value.outcome.model_name == "mystery-model"

    def test_required_tool_sources(self):
        router = ModelClientRouter([FakeHandler("primary")])
        factory = AgentFactory(router, ToolNameResolver(ToolSourceRegistry()), require_tool_sources=True)

        with pytest.raises(ToolResolutionError):
            factory.create(AgentDescriptor(name="helper", model="gpt-4o", tools=["*"]))

        agent = factory.create(AgentDescriptor(name="plain", model="gpt-4o"))
        assert agent.tools == []

    def test_missing_tool_sources_are_tolerated_by_default(self):
        router = ModelClientRouter([FakeHandler("primary")])
        factory = AgentFactory(router, ToolNameResolver(ToolSourceRegistry()))

        agent = factory.create(AgentDescriptor(name="helper", model="gpt-4o", tools=["*"]))

        assert agent.tools == []
        assert agent.unmatched == ["*"]


class TestToolAgent:
    def _agent(self, factory, replies, tools=("echo",), instructions=""):
        agent = factory.create(
            AgentDescriptor(name="helper", model="gpt-4o", tools=list(tools), instructions=instructions)
        )
        agent.client = FakeClient("primary", "gpt-4o", replies)
        return agent

    def test_tool_call_then_final_answer(self, factory):
        agent = self._agent(
            factory,
            [
                json.dumps({"tool": "echo", "tool_input": {"text": "ping"}}),
                "```json\n" + json.dumps({"tool": None, "final_answer": "pong"}) + "\n```",
            ],
        )

        answer = ToolAgent(agent).run_task("say ping")

        assert answer == "pong"
        second_request = agent.client.requests[1]
        assert second_request[-1]["role"] == "user"
        assert "Result from tool 'echo'" in second_request[-1]["content"]
        assert "ping" in second_request[-1]["content"]

    def test_system_prompt_lists_tools_and_instructions(self, factory):
        agent = self._agent(factory, [json.dumps({"tool": None, "final_answer": "ok"})], instructions="Be terse.")

        ToolAgent(agent).run_task("hi")

        system = agent.client.requests[0][0]["content"]
        assert system.startswith("Be terse.")
        assert "- echo: Echo the input back." in system

    def test_unknown_tool_is_reported_back(self, factory):
        agent = self._agent(
            factory,
            [json.dumps({"tool": "nope", "tool_input": {}}), json.dumps({"tool": None, "final_answer": "gave up"})],
        )

        assert ToolAgent(agent).run_task("task") == "gave up"
        assert "Tool 'nope' is not available." in agent.client.requests[1][-1]["content"]

    def test_invalid_json_twice_returns_raw_text(self, factory):
        agent = self._agent(factory, ["not json", "still not json"])

        assert ToolAgent(agent).run_task("task") == "still not json"

    def test_step_limit(self, factory):
        call = json.dumps({"tool": "echo", "tool_input": {"text": "again"}})
        agent = self._agent(factory, [call, call])

        result = ToolAgent(agent, max_steps=2).run_task("loop")

        assert result == "Maximum tool-calling steps reached without a final answer."

    def test_agent_without_tools_asks_directly(self, factory):
        agent = self._agent(factory, ["plain answer"], tools=())

        assert ToolAgent(agent, PromptManager({"ask_system": "Custom."})).run_task("question") == "plain answer"
        assert agent.client.requests[0][0]["content"] == "Custom."


def test_strip_code_fence():
    assert _strip_code_fence('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert _strip_code_fence('{"a": 1}') == '{"a": 1}'
