"""
Prompt management.

This module provides a simple PromptManager class that reads prompt
configurations from the loaded YAML configuration and exposes them
to the agent logic. It supplies default values if prompts are not
specified.
"""

import json
from typing import Any, Dict, Iterable, List, Optional

from agent_factory.tools.base import Tool

DEFAULT_ASK_PROMPT = (
    "You are a helpful assistant. Answer the user's question clearly and "
    "concisely. Do not claim to execute actions or tools in this mode."
)

DEFAULT_AGENT_PROMPT = (
    "You are a tool-using AI agent.\n\n"
    "You must always respond in JSON ONLY, with one of the following forms:\n\n"
    "1) To call a tool:\n"
    "{\n"
    '  "tool": "tool_name",\n'
    '  "tool_input": { ... }\n'
    "}\n\n"
    "2) To provide a final answer (no more tool calls):\n"
    "{\n"
    '  "tool": null,\n'
    '  "final_answer": "..."\n'
    "}\n\n"
    "Never include any non-JSON text in your response. Tool names and input "
    "must match the descriptions you are given."
)


class PromptManager:
    """
    Store and access system prompts used with and without tools.

    Prompts can be configured in the YAML file under the `prompts` key.
    Agent instructions are placed ahead of the mode prompt.
    """

    def __init__(self, prompts_cfg: Optional[Dict] = None) -> None:
        self.prompts_cfg = prompts_cfg or {}

    def get_ask_system_prompt(self, instructions: str = "") -> str:
        base = self.prompts_cfg.get("ask_system", DEFAULT_ASK_PROMPT)
        return _with_instructions(instructions, base)

    def get_agent_system_prompt(self, tools: Iterable[Tool], instructions: str = "") -> str:
        """
        Build the system prompt for tool-enabled mode.

        Args:
            tools: The tools resolved for the agent.
            instructions: The agent's own instructions, if any.

        Returns:
            A string containing the system prompt and the tool list.
        """
        base = self.prompts_cfg.get("agent_system", DEFAULT_AGENT_PROMPT)
        lines = []
        for tool in tools:
            line = f"- {tool.name}: {tool.description}" if tool.description else f"- {tool.name}"
            tool_input = describe_input(tool.input_schema)
            if tool_input:
                line += f"\n  Input: {tool_input}"
            lines.append(line)
        prompt = base + "\n\nAvailable tools:\n" + "\n".join(lines)
        return _with_instructions(instructions, prompt)


def describe_input(schema: Dict[str, Any]) -> str:
    """
    Render the properties of a JSON schema as a compact argument list.

    Example:
        {"path": string, "max_chars": integer = 8000}

    Required arguments are listed first; optional ones carry their
    default or a trailing `?`.
    """
    properties = (schema or {}).get("properties") or {}
    if not properties:
        return ""
    required = set((schema or {}).get("required") or [])
    ordered = [n for n in properties if n in required] + [n for n in properties if n not in required]

    parts: List[str] = []
    for name in ordered:
        prop = properties[name] if isinstance(properties[name], dict) else {}
        json_type = prop.get("type", "any")
        if isinstance(json_type, list):
            json_type = "|".join(str(t) for t in json_type)
        part = f'"{name}": {json_type}'
        if "default" in prop:
            part += f" = {json.dumps(prop['default'], default=str)}"
        elif name not in required:
            part += "?"
        parts.append(part)
    return "{" + ", ".join(parts) + "}"


def _with_instructions(instructions: str, prompt: str) -> str:
    instructions = (instructions or "").strip()
    if not instructions:
        return prompt
    return f"{instructions}\n\n{prompt}"
