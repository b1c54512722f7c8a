"""
In-process tools.

Local tools are declared in a `ToolTable`, either with `register()` or
with the `@table.tool()` decorator. An entry is free-standing (a plain
function) or instance-bound: a function taking an instance as its first
argument plus a factory that builds the instance. `LocalToolSource`
resolves every factory once, at construction, and never rescans.
"""

from __future__ import annotations

import functools
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional

from agent_factory.tools.base import LOCAL_SOURCE_TYPE, Tool, ToolSource

logger = logging.getLogger(__name__)

_JSON_TYPES = {
    str: "string",
    int: "integer",
    float: "number",
    bool: "boolean",
    list: "array",
    dict: "object",
}
_JSON_TYPE_NAMES = {t.__name__: name for t, name in _JSON_TYPES.items()}


@dataclass(frozen=True)
class ToolEntry:
    """One row of the local registration table."""

    name: str
    func: Callable[..., Any]
    description: str = ""
    instance_factory: Optional[Callable[[], Any]] = None

    @property
    def requires_instance(self) -> bool:
        return self.instance_factory is not None


class ToolTable:
    """
    Ordered table of local tool registrations.

    Example:
        table = ToolTable()

        @table.tool(description="Echo the input back.")
        def echo(text: str) -> str:
            return text

        table.register(FileTools.read_file, name="read_file",
                       factory=lambda: FileTools(root_dir="workspace"))
    """

    def __init__(self, entries: Iterable[ToolEntry] = ()) -> None:
        self._entries: List[ToolEntry] = list(entries)

    def register(
        self,
        func: Callable[..., Any],
        name: Optional[str] = None,
        description: Optional[str] = None,
        factory: Optional[Callable[[], Any]] = None,
    ) -> ToolEntry:
        entry = ToolEntry(
            name=name or func.__name__,
            func=func,
            description=description if description is not None else _first_doc_line(func),
            instance_factory=factory,
        )
        self._entries.append(entry)
        return entry

    def tool(
        self,
        name: Optional[str] = None,
        description: Optional[str] = None,
        factory: Optional[Callable[[], Any]] = None,
    ) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
            self.register(func, name=name, description=description, factory=factory)
            return func

        return decorator

    def extend(self, other: Iterable[ToolEntry]) -> None:
        self._entries.extend(other)

    def __iter__(self) -> Iterator[ToolEntry]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


class LocalToolSource(ToolSource):
    """
    Tools built once from a registration table.

    Instance-bound entries whose factory fails or returns None are left
    out; that is a debug note, not an error.
    """

    source_type = LOCAL_SOURCE_TYPE

    def __init__(self, entries: Iterable[ToolEntry], name: str = "local") -> None:
        super().__init__(name=name)
        self._tools: Dict[str, Tool] = {}
        for entry in entries:
            self._add_entry(entry)
        logger.info("Local tool source initialized with %d tool(s)", len(self._tools))

    def _add_entry(self, entry: ToolEntry) -> None:
        if entry.name in self._tools:
            logger.warning("Tool '%s' already registered, skipping duplicate local entry", entry.name)
            return

        func = entry.func
        if entry.requires_instance:
            try:
                instance = entry.instance_factory()
            except Exception as exc:  # noqa: BLE001
                logger.debug("Skipping local tool '%s': instance unavailable (%s)", entry.name, exc)
                return
            if instance is None:
                logger.debug("Skipping local tool '%s': factory returned no instance", entry.name)
                return
            func = functools.partial(entry.func, instance)

        self._tools[entry.name] = Tool(
            name=entry.name,
            source_id=self.name,
            func=func,
            description=entry.description,
            input_schema=signature_schema(entry.func, skip_first=entry.requires_instance),
        )
        logger.debug("Discovered local tool: %s", entry.name)

    def get_tool(self, name: str) -> Optional[Tool]:
        return self._tools.get(name)

    def list_tools(self) -> List[Tool]:
        return list(self._tools.values())


def signature_schema(func: Callable[..., Any], skip_first: bool = False) -> Dict[str, Any]:
    """Build a JSON-schema style description of a function's parameters."""
    try:
        params = list(inspect.signature(func).parameters.values())
    except (TypeError, ValueError):
        return {"type": "object", "properties": {}}
    if skip_first and params:
        params = params[1:]

    properties: Dict[str, Any] = {}
    required: List[str] = []
    for param in params:
        if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
            continue
        prop: Dict[str, Any] = {}
        annotation = param.annotation
        if isinstance(annotation, str):
            # Postponed annotations arrive as strings.
            json_type = _JSON_TYPE_NAMES.get(annotation)
        else:
            json_type = _JSON_TYPES.get(annotation)
        if json_type:
            prop["type"] = json_type
        if param.default is inspect.Parameter.empty:
            required.append(param.name)
        else:
            prop["default"] = param.default
        properties[param.name] = prop

    schema: Dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema


def _first_doc_line(func: Callable[..., Any]) -> str:
    doc = inspect.getdoc(func) or ""
    return doc.strip().splitlines()[0] if doc.strip() else ""
