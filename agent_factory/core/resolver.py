"""
Tool name resolution.

Turns the tool tokens of an agent definition into concrete tools. A
token is checked against these forms, in order:

    *  or  all               every tool from every source
    local/*                  every local tool
    mcp/*                    every tool from every MCP connection
    <connection>/*           every tool the named connection lists
    <connection>/<tool>      one tool from the named connection
    <tool>                   first source that has the name

Tokens that resolve to nothing are collected and returned next to the
tools; resolution never raises for a miss.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, NamedTuple, Optional

from agent_factory.tools.base import LOCAL_SOURCE_TYPE, REMOTE_SOURCE_TYPE, Tool, ToolSourceRegistry
from agent_factory.tools.remote import RemoteConnectionManager

logger = logging.getLogger(__name__)

ALL_TOKENS = ("*", "all")
WILDCARD_SUFFIX = "/*"


class ResolvedTools(NamedTuple):
    tools: List[Tool]
    unmatched: List[str]


class ToolNameResolver:
    """
    ToolNameResolver resolves tool tokens against a ToolSourceRegistry.

    The registry is only read, so one resolver can serve any number of
    agents concurrently.
    """

    def __init__(self, registry: ToolSourceRegistry) -> None:
        self.registry = registry

    def _managers(self) -> List[RemoteConnectionManager]:
        return [
            s for s in self.registry.sources_of_type(REMOTE_SOURCE_TYPE) if isinstance(s, RemoteConnectionManager)
        ]

    def resolve(self, tokens: Iterable[str]) -> ResolvedTools:
        """
        Resolve tool tokens into tools.

        Args:
            tokens: Tool tokens in the order the agent lists them.

        Returns:
            ResolvedTools with the tools (each name at most once, in the
            order first resolved) and the tokens that matched nothing.
        """
        selected: Dict[str, Tool] = {}
        unmatched: List[str] = []

        for raw in tokens:
            token = (raw or "").strip()
            if not token:
                continue

            found = self._match(token)
            if not found:
                unmatched.append(token)
                continue

            for tool in found:
                if tool.name in selected:
                    continue
                selected[tool.name] = tool
                logger.debug("Added tool '%s' from '%s' (token %s)", tool.name, tool.source_id, token)

        if unmatched:
            logger.warning("Could not find tools: %s", ", ".join(unmatched))
        return ResolvedTools(tools=list(selected.values()), unmatched=unmatched)

    def _match(self, token: str) -> List[Tool]:
        lowered = token.lower()

        if lowered in ALL_TOKENS:
            return self.registry.list_tools()

        if token.endswith(WILDCARD_SUFFIX):
            prefix = token[: -len(WILDCARD_SUFFIX)]
            return self._match_wildcard(prefix)

        if "/" in token:
            connection_name, tool_name = token.split("/", 1)
            tool = self._lookup_qualified(connection_name, tool_name)
            return [tool] if tool is not None else []

        tool = self.registry.get_tool(token)
        return [tool] if tool is not None else []

    def _match_wildcard(self, prefix: str) -> List[Tool]:
        lowered = prefix.lower()

        if lowered == LOCAL_SOURCE_TYPE:
            return [t for s in self.registry.sources_of_type(LOCAL_SOURCE_TYPE) for t in s.list_tools()]

        if lowered == REMOTE_SOURCE_TYPE:
            return [t for s in self.registry.sources_of_type(REMOTE_SOURCE_TYPE) for t in s.list_tools()]

        for manager in self._managers():
            if manager.has_connection(prefix):
                # Per-connection tools, including names another connection
                # already claimed in the global map.
                return manager.list_tools_for_connection(prefix)

        logger.debug("No MCP connection found matching pattern '%s'", prefix)
        return []

    def _lookup_qualified(self, connection_name: str, tool_name: str) -> Optional[Tool]:
        for manager in self._managers():
            tool = manager.lookup_qualified(connection_name, tool_name)
            if tool is not None:
                return tool
        return None
