"""
Base classes for tools and tool sources.

A `Tool` is a named invocable discovered from one source. A source is
anything able to claim tool names: the in-process registration table
(`LocalToolSource`) or the set of connections to external tool servers
(`RemoteConnectionManager`). Sources are kept in a `ToolSourceRegistry`
in the order they were registered, which is also the order used for
bare-name lookups.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)

LOCAL_SOURCE_TYPE = "local"
REMOTE_SOURCE_TYPE = "mcp"


@dataclass(frozen=True)
class Tool:
    """
    Represents a tool that the agent can invoke.

    `source_id` names the source that registered the tool: "local" for
    in-process tools, the connection name for tools served remotely.
    `run` calls `func` with the tool input as keyword arguments and
    returns the result as text.
    """

    name: str
    source_id: str
    func: Callable[..., Any] = field(repr=False, compare=False)
    description: str = ""
    input_schema: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    def run(self, tool_input: Optional[Dict[str, Any]] = None) -> str:
        result = self.func(**(tool_input or {}))
        if result is None:
            return ""
        if isinstance(result, str):
            return result
        if isinstance(result, (dict, list, tuple)):
            return json.dumps(result, default=str)
        return str(result)

    @property
    def qualified_name(self) -> str:
        return f"{self.source_id}/{self.name}"


class ToolSource:
    """
    A source of tools, looked up by exact name.

    Subclasses set `source_type` and implement `get_tool` and `list_tools`.
    """

    source_type = ""

    def __init__(self, name: str) -> None:
        self.name = name

    def get_tool(self, name: str) -> Optional[Tool]:
        raise NotImplementedError

    def list_tools(self) -> List[Tool]:
        raise NotImplementedError

    def has_tool(self, name: str) -> bool:
        return self.get_tool(name) is not None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, type={self.source_type!r})"


class ToolSourceRegistry:
    """
    Registers tool sources and looks tools up across them.

    Sources are consulted in registration order; when two sources claim
    the same tool name, the earlier source wins.
    """

    def __init__(self, sources: Iterable[ToolSource] = ()) -> None:
        self._sources: List[ToolSource] = []
        for source in sources:
            self.register_source(source)

    def register_source(self, source: ToolSource) -> None:
        if any(existing.name == source.name for existing in self._sources):
            logger.warning("Tool source '%s' already registered, skipping duplicate", source.name)
            return
        self._sources.append(source)
        logger.debug("Registered tool source %r", source)

    @property
    def sources(self) -> Tuple[ToolSource, ...]:
        return tuple(self._sources)

    def sources_of_type(self, source_type: str) -> List[ToolSource]:
        wanted = source_type.lower()
        return [s for s in self._sources if s.source_type.lower() == wanted]

    def get_tool(self, name: str) -> Optional[Tool]:
        for source in self._sources:
            tool = source.get_tool(name)
            if tool is not None:
                return tool
        return None

    def list_tools(self) -> List[Tool]:
        """Every distinct tool name across all sources, first claim wins."""
        tools: Dict[str, Tool] = {}
        for source in self._sources:
            for tool in source.list_tools():
                if tool.name in tools:
                    logger.debug(
                        "Tool '%s' from '%s' shadowed by '%s'",
                        tool.name,
                        tool.source_id,
                        tools[tool.name].source_id,
                    )
                    continue
                tools[tool.name] = tool
        return list(tools.values())

    def __len__(self) -> int:
        return len(self._sources)
