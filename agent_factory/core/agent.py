"""
High-level agent assembly and execution.

Defines:
- AgentDescriptor: the declarative agent description handed over by the
  definition loader.
- AgentFactory: turns a descriptor into a LoadedAgent by routing the
  model name and resolving the tool tokens.
- ToolAgent: runs a LoadedAgent, expecting JSON responses from the model
  to decide whether to call tools or return a final answer.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from agent_factory.core.prompts import PromptManager
from agent_factory.core.resolver import ToolNameResolver
from agent_factory.core.router import ModelClientRouter
from agent_factory.errors import ChainExhaustedError, ToolResolutionError
from agent_factory.models.base import ChatResponse, ModelClient
from agent_factory.tools.base import Tool

logger = logging.getLogger(__name__)


@dataclass
class AgentDescriptor:
    """
    Declarative agent description.

    Only `model` and `tools` are interpreted here; everything else is
    carried through untouched.
    """

    name: str
    model: str
    tools: List[str] = field(default_factory=list)
    instructions: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass
class LoadedAgent:
    descriptor: AgentDescriptor
    client: ModelClient
    handler_name: str
    tools: List[Tool]
    unmatched: List[str] = field(default_factory=list)

    def get_tool(self, name: str) -> Optional[Tool]:
        for tool in self.tools:
            if tool.name == name:
                return tool
        return None


class AgentFactory:
    """
    Builds runnable agents from descriptors.

    `require_tool_sources` makes an agent that asks for tools fail when
    no tool source is registered at all; otherwise missing tools only
    show up in `LoadedAgent.unmatched`.
    """

    def __init__(
        self,
        router: ModelClientRouter,
        resolver: ToolNameResolver,
        require_tool_sources: bool = False,
    ) -> None:
        self.router = router
        self.resolver = resolver
        self.require_tool_sources = require_tool_sources

    def create(self, descriptor: AgentDescriptor) -> LoadedAgent:
        """
        Create a LoadedAgent for a descriptor.

        Raises:
            ChainExhaustedError: If no handler could build a client.
            ToolResolutionError: If tools are required but no source exists.
        """
        if descriptor.tools and self.require_tool_sources and len(self.resolver.registry) == 0:
            raise ToolResolutionError(
                f"Agent '{descriptor.name}' requests tools but no tool sources are configured.",
                agent_name=descriptor.name,
            )

        outcome = self.router.route(descriptor.model)
        if not outcome.ok:
            raise ChainExhaustedError(outcome)

        tools, unmatched = self.resolver.resolve(descriptor.tools)
        if unmatched:
            logger.warning("Agent '%s' created without tools: %s", descriptor.name, ", ".join(unmatched))

        logger.info(
            "Agent '%s' ready: model '%s' via '%s', %d tool(s)",
            descriptor.name,
            descriptor.model,
            outcome.handler_name,
            len(tools),
        )
        return LoadedAgent(
            descriptor=descriptor,
            client=outcome.client,
            handler_name=outcome.handler_name,
            tools=tools,
            unmatched=unmatched,
        )


class ToolAgent:
    """
    Tool-using agent.

    The model is expected to:
    - Receive a system prompt describing available tools and JSON format.
    - Return JSON either requesting a tool call or providing a final answer.

    JSON formats:

    1) Tool call:
       {
         "tool": "tool_name",
         "tool_input": { ... }
       }

    2) Final answer (no more tool calls):
       {
         "tool": null,
         "final_answer": "..."
       }

    An agent without tools is asked plainly, in a single turn.
    """

    def __init__(
        self,
        agent: LoadedAgent,
        prompts: Optional[PromptManager] = None,
        max_steps: int = 4,
    ) -> None:
        self.agent = agent
        self.prompts = prompts or PromptManager()
        self.max_steps = max_steps

    def ask(self, question: str) -> str:
        """
        Send a single question to the model and return the answer text.
        """
        messages: List[Dict[str, Any]] = [
            {"role": "system", "content": self.prompts.get_ask_system_prompt(self.agent.descriptor.instructions)},
            {"role": "user", "content": question},
        ]
        response: ChatResponse = self.agent.client.chat(messages=messages, stream=False)
        return response.text

    def run_task(self, task: str) -> str:
        """
        Run a task using the tool-enabled agent loop.

        Conversation pattern (roles) is kept compatible with providers
        like Perplexity that require user/assistant alternation:

        - One system message at the top.
        - Then: user, assistant, user, assistant, ...
        """
        if not self.agent.tools:
            return self.ask(task)

        system_prompt = self.prompts.get_agent_system_prompt(
            self.agent.tools, self.agent.descriptor.instructions
        )
        messages: List[Dict[str, Any]] = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": task},
        ]

        invalid_json_attempts = 0

        for _ in range(self.max_steps):
            response: ChatResponse = self.agent.client.chat(messages=messages, stream=False)
            messages.append({"role": "assistant", "content": response.text})

            raw = response.text.strip()
            try:
                parsed = json.loads(_strip_code_fence(raw))
            except json.JSONDecodeError:
                invalid_json_attempts += 1
                if invalid_json_attempts >= 2:
                    # Give up after 2 bad attempts, return raw text
                    return raw
                messages.append(
                    {
                        "role": "user",
                        "content": (
                            "Your previous message was not valid JSON. "
                            "You MUST respond with JSON ONLY as described in the system prompt. "
                            "Do not include any extra text."
                        ),
                    }
                )
                continue

            if not isinstance(parsed, dict):
                return raw

            tool_name = parsed.get("tool")
            if tool_name is None:
                final_answer = parsed.get("final_answer") or parsed.get("error")
                return str(final_answer) if final_answer else raw

            tool_input = parsed.get("tool_input") or {}
            tool = self.agent.get_tool(str(tool_name))
            if tool is None:
                messages.append({"role": "user", "content": f"Tool '{tool_name}' is not available."})
                continue

            try:
                tool_result = tool.run(tool_input)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Tool '%s' raised: %s", tool_name, exc)
                tool_result = f"Tool '{tool_name}' raised an error: {exc}"

            messages.append(
                {
                    "role": "user",
                    "content": (
                        f"Result from tool '{tool_name}' with input {tool_input}:\n"
                        f"{tool_result}"
                    ),
                }
            )

        return "Maximum tool-calling steps reached without a final answer."


def _strip_code_fence(raw: str) -> str:
    # Models sometimes wrap JSON in Markdown code fences
    if not raw.startswith("```"):
        return raw
    lines = raw.splitlines()
    if lines and lines[0].lstrip().startswith("```"):
        lines = lines[1:]
    if lines and lines[-1].strip().startswith("```"):
        lines = lines[:-1]
    return "\n".join(lines).strip()
