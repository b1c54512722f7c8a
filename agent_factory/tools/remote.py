"""
Tools served by external MCP (Model Context Protocol) servers.

`RemoteConnectionManager` owns one connection per configured server,
either a child process spoken to over stdio or an HTTP endpoint. The
connections live on a private asyncio event loop running in a daemon
thread, so callers use the manager synchronously: `initialize()` blocks
until every connection is up or has failed, and remote tools are
invoked with a plain `Tool.run()` call.

Each connection runs in its own task for its whole lifetime. The MCP
client contexts are task-scoped, so the task enters the context, lists
the tools, signals readiness and then parks until `close()` wakes it.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import functools
import logging
import os
import threading
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncContextManager, AsyncIterator, Callable, Dict, Iterable, List, Optional

from mcp import ClientSession, StdioServerParameters
from mcp.client.sse import sse_client
from mcp.client.stdio import stdio_client
from mcp.client.streamable_http import streamablehttp_client
from mcp.types import Implementation

from agent_factory.errors import ConfigurationError, ServerConnectionError, ToolExecutionError
from agent_factory.tools.base import REMOTE_SOURCE_TYPE, Tool, ToolSource

logger = logging.getLogger(__name__)

CLIENT_INFO = Implementation(name="agent-factory", version="0.1.0")

DEFAULT_CONNECT_TIMEOUT = 30.0
DEFAULT_CALL_TIMEOUT = 60.0


class TransportKind(str, Enum):
    SUBPROCESS = "subprocess"
    NETWORK = "network"


class ConnectionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"
    DISPOSED = "disposed"


_ALLOWED_TRANSITIONS = {
    ConnectionState.UNINITIALIZED: {ConnectionState.CONNECTING},
    ConnectionState.CONNECTING: {ConnectionState.CONNECTED, ConnectionState.FAILED},
    ConnectionState.CONNECTED: {ConnectionState.DISPOSED, ConnectionState.FAILED},
    ConnectionState.FAILED: set(),
    ConnectionState.DISPOSED: set(),
}

_TRANSPORT_ALIASES = {
    "stdio": (TransportKind.SUBPROCESS, None),
    "subprocess": (TransportKind.SUBPROCESS, None),
    "http": (TransportKind.NETWORK, "auto"),
    "https": (TransportKind.NETWORK, "auto"),
    "network": (TransportKind.NETWORK, "auto"),
    "streamable-http": (TransportKind.NETWORK, "streamable-http"),
    "sse": (TransportKind.NETWORK, "sse"),
}

_NETWORK_MODES = ("auto", "streamable-http", "sse")


@dataclass
class ConnectionDescriptor:
    """
    One configured tool server and the state of its connection.

    `transport_params` holds `command`, `args`, `env` and `cwd` for
    subprocess servers, and `url`, `headers` and `mode` for network
    servers. Either kind may carry a `timeout` in seconds.
    """

    name: str
    transport_kind: TransportKind
    transport_params: Dict[str, Any] = field(default_factory=dict)
    state: ConnectionState = ConnectionState.UNINITIALIZED
    error: Optional[str] = None

    def transition(self, new_state: ConnectionState) -> None:
        if new_state not in _ALLOWED_TRANSITIONS[self.state]:
            raise RuntimeError(
                f"Connection '{self.name}' cannot move from {self.state.value} to {new_state.value}."
            )
        self.state = new_state

    @property
    def timeout(self) -> Optional[float]:
        value = self.transport_params.get("timeout")
        return float(value) if value is not None else None

    @classmethod
    def from_config(cls, name: str, cfg: Dict[str, Any]) -> "ConnectionDescriptor":
        """
        Build a descriptor from an `mcp_servers` config entry.

        Raises:
            ConfigurationError: If the transport type is unknown or a
                required setting is missing.
        """
        if not name:
            raise ConfigurationError("MCP server entry must have a name.")
        type_key = str(cfg.get("type", "stdio")).lower()
        if type_key not in _TRANSPORT_ALIASES:
            raise ConfigurationError(
                f"MCP server type '{type_key}' is not supported for '{name}'. Use 'http' or 'stdio'."
            )
        kind, mode = _TRANSPORT_ALIASES[type_key]

        params: Dict[str, Any] = {}
        if cfg.get("timeout") is not None:
            params["timeout"] = float(cfg["timeout"])

        if kind is TransportKind.SUBPROCESS:
            command = cfg.get("command")
            if not command:
                raise ConfigurationError(f"Stdio MCP server '{name}' must have a command configured.")
            params["command"] = _expand(command)
            params["args"] = [_expand(str(a)) for a in cfg.get("args") or []]
            params["env"] = {str(k): _expand(str(v)) for k, v in (cfg.get("env") or {}).items()}
            if cfg.get("cwd"):
                params["cwd"] = _expand(cfg["cwd"])
        else:
            url = cfg.get("url")
            if not url:
                raise ConfigurationError(f"HTTP MCP server '{name}' must have a URL configured.")
            params["url"] = _expand(url)
            params["headers"] = {str(k): _expand(str(v)) for k, v in (cfg.get("headers") or {}).items()}
            params["mode"] = str(cfg.get("mode", mode)).lower()
            if params["mode"] not in _NETWORK_MODES:
                raise ConfigurationError(
                    f"MCP server '{name}' has unknown HTTP mode '{params['mode']}'."
                )

        return cls(name=name, transport_kind=kind, transport_params=params)


Connector = Callable[[ConnectionDescriptor], AsyncContextManager[Any]]


@asynccontextmanager
async def open_session(descriptor: ConnectionDescriptor) -> AsyncIterator[ClientSession]:
    """Open and initialize an MCP client session for a descriptor."""
    params = descriptor.transport_params
    async with AsyncExitStack() as stack:
        if descriptor.transport_kind is TransportKind.SUBPROCESS:
            server = StdioServerParameters(
                command=params["command"],
                args=list(params.get("args") or []),
                env={**os.environ, **params["env"]} if params.get("env") else None,
                cwd=params.get("cwd"),
            )
            session = await _enter_session(stack, stdio_client(server))
        else:
            session = await _open_network_session(stack, descriptor)
        yield session


async def _enter_session(stack: AsyncExitStack, transport: AsyncContextManager[Any]) -> ClientSession:
    streams = await stack.enter_async_context(transport)
    # streamable HTTP yields a third item (session id getter)
    read_stream, write_stream = streams[0], streams[1]
    session = await stack.enter_async_context(
        ClientSession(read_stream, write_stream, client_info=CLIENT_INFO)
    )
    await session.initialize()
    return session


async def _open_network_session(stack: AsyncExitStack, descriptor: ConnectionDescriptor) -> ClientSession:
    params = descriptor.transport_params
    url = params["url"]
    headers = params.get("headers") or None
    mode = params.get("mode", "auto")

    if mode != "sse":
        attempt = AsyncExitStack()
        try:
            session = await _enter_session(attempt, streamablehttp_client(url, headers=headers))
        except Exception as exc:  # noqa: BLE001
            try:
                await attempt.aclose()
            except Exception:  # noqa: BLE001
                pass
            if mode == "streamable-http":
                raise
            logger.debug(
                "Streamable HTTP handshake with '%s' failed (%s), falling back to SSE",
                descriptor.name,
                exc,
            )
        else:
            stack.push_async_exit(attempt)
            return session

    return await _enter_session(stack, sse_client(url, headers=headers))


class RemoteConnectionManager(ToolSource):
    """
    Connects to every configured MCP server and indexes its tools.

    Tools are kept twice: per connection (every tool a server lists) and
    in a flat global map where the first connection to claim a name wins.
    A tool dropped from the global map because of a name collision is
    still reachable with `lookup_qualified(connection, tool)`.
    """

    source_type = REMOTE_SOURCE_TYPE

    def __init__(
        self,
        connections: Iterable[ConnectionDescriptor],
        connector: Optional[Connector] = None,
        connect_timeout: Optional[float] = DEFAULT_CONNECT_TIMEOUT,
        call_timeout: Optional[float] = DEFAULT_CALL_TIMEOUT,
        name: str = "mcp",
    ) -> None:
        super().__init__(name=name)
        self.connect_timeout = connect_timeout
        self.call_timeout = call_timeout
        self._connector: Connector = connector or open_session

        self._connections: Dict[str, ConnectionDescriptor] = {}
        for conn in connections:
            key = conn.name.lower()
            if key in self._connections:
                logger.warning("MCP server '%s' configured twice, skipping duplicate", conn.name)
                continue
            self._connections[key] = conn

        self._lock = threading.Lock()
        self._initialized = False
        self._closed = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._stop: Optional[asyncio.Event] = None
        self._tasks: Dict[str, "asyncio.Task[None]"] = {}
        self._sessions: Dict[str, Any] = {}
        self._connection_tools: Dict[str, Dict[str, Tool]] = {}
        self._global_tools: Dict[str, Tool] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def initialized(self) -> bool:
        return self._initialized

    def initialize(self) -> None:
        """
        Connect to every configured server once.

        Concurrent and repeated calls are collapsed: the first caller does
        the work, the others wait on the lock and return.

        Raises:
            RuntimeError: If the manager has already been closed.
        """
        with self._lock:
            if self._closed:
                raise RuntimeError("Connection manager has been closed.")
            if self._initialized:
                return

            if self._connections:
                logger.info("Initializing %d MCP connection(s)...", len(self._connections))
                self._start_loop()
                future = asyncio.run_coroutine_threadsafe(self._connect_all(), self._loop)
                future.result()

            self._initialized = True
            connected = sum(1 for c in self._connections.values() if c.state is ConnectionState.CONNECTED)
            logger.info(
                "MCP tool source initialized with %d tool(s) from %d server(s)",
                len(self._global_tools),
                connected,
            )

    def close(self) -> None:
        """
        Dispose every live connection and clear all tool maps.

        Errors raised while closing sessions are logged and swallowed.
        The manager cannot be initialized again afterwards.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True

            if self._loop is not None:
                try:
                    future = asyncio.run_coroutine_threadsafe(self._shutdown(), self._loop)
                    future.result(timeout=self.connect_timeout)
                except Exception as exc:  # noqa: BLE001
                    logger.debug("Error while shutting down MCP connections: %s", exc)
                self._loop.call_soon_threadsafe(self._loop.stop)
                if self._thread is not None:
                    self._thread.join(timeout=5)
                    if not self._thread.is_alive():
                        self._loop.close()

            for conn in self._connections.values():
                if conn.state is ConnectionState.CONNECTED:
                    conn.transition(ConnectionState.DISPOSED)

            self._sessions.clear()
            self._tasks.clear()
            self._connection_tools.clear()
            self._global_tools.clear()
            logger.debug("MCP connection manager closed")

    def __enter__(self) -> "RemoteConnectionManager":
        self.initialize()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _start_loop(self) -> None:
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="mcp-connections",
            daemon=True,
        )
        self._thread.start()

    def _run_loop(self) -> None:
        asyncio.set_event_loop(self._loop)
        self._loop.run_forever()

    async def _connect_all(self) -> None:
        self._stop = asyncio.Event()
        ready: Dict[str, asyncio.Event] = {}
        for conn in self._connections.values():
            ready[conn.name] = asyncio.Event()
            self._tasks[conn.name] = asyncio.create_task(self._serve(conn, ready[conn.name]))

        await asyncio.gather(
            *(self._await_ready(conn, ready[conn.name]) for conn in self._connections.values())
        )

        # Claim global names in configured order so the winner of a
        # collision does not depend on which server answered first.
        for conn in self._connections.values():
            if conn.state is ConnectionState.CONNECTED:
                self._claim_global_names(conn)

    async def _await_ready(self, conn: ConnectionDescriptor, ready: asyncio.Event) -> None:
        timeout = conn.timeout if conn.timeout is not None else self.connect_timeout
        try:
            await asyncio.wait_for(ready.wait(), timeout)
        except asyncio.TimeoutError:
            if ready.is_set():
                return
            task = self._tasks.pop(conn.name, None)
            if task is not None:
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
            if conn.state is ConnectionState.CONNECTING:
                self._mark_failed(conn, f"timed out after {timeout} seconds")

    async def _serve(self, conn: ConnectionDescriptor, ready: asyncio.Event) -> None:
        conn.transition(ConnectionState.CONNECTING)
        try:
            async with self._connector(conn) as session:
                listed = await session.list_tools()
                self._connection_tools[conn.name] = self._build_tools(conn, listed.tools)
                self._sessions[conn.name] = session
                conn.transition(ConnectionState.CONNECTED)
                logger.info(
                    "Connected to MCP server '%s' with %d tool(s)",
                    conn.name,
                    len(self._connection_tools[conn.name]),
                )
                ready.set()
                await self._stop.wait()
        except Exception as exc:  # noqa: BLE001
            if conn.state is ConnectionState.CONNECTING:
                self._mark_failed(conn, exc)
            elif self._stop.is_set():
                logger.debug("Error while closing MCP server '%s': %s", conn.name, exc)
            else:
                self._mark_lost(conn, exc)
        finally:
            self._sessions.pop(conn.name, None)
            ready.set()

    async def _shutdown(self) -> None:
        if self._stop is not None:
            self._stop.set()
        tasks = list(self._tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _mark_failed(self, conn: ConnectionDescriptor, reason: Any) -> None:
        conn.error = str(reason)
        conn.transition(ConnectionState.FAILED)
        self._connection_tools.pop(conn.name, None)
        logger.warning("Failed to connect to MCP server '%s': %s", conn.name, reason)

    def _mark_lost(self, conn: ConnectionDescriptor, reason: Any) -> None:
        conn.error = f"connection lost: {reason}"
        conn.transition(ConnectionState.FAILED)
        self._sessions.pop(conn.name, None)
        self._connection_tools.pop(conn.name, None)
        # Names the lost server owned fall to the next live connection listing them.
        rebuilt: Dict[str, Tool] = {}
        for other in self._connections.values():
            if other.state is ConnectionState.CONNECTED:
                for tool_name, tool in self._connection_tools.get(other.name, {}).items():
                    rebuilt.setdefault(tool_name, tool)
        self._global_tools = rebuilt
        logger.error("Lost connection to MCP server '%s': %s", conn.name, reason)

    def _build_tools(self, conn: ConnectionDescriptor, listed: Iterable[Any]) -> Dict[str, Tool]:
        tools: Dict[str, Tool] = {}
        for remote in listed:
            if remote.name in tools:
                logger.warning("MCP server '%s' listed tool '%s' twice", conn.name, remote.name)
                continue
            tools[remote.name] = Tool(
                name=remote.name,
                source_id=conn.name,
                func=functools.partial(self._call_tool, conn.name, remote.name),
                description=getattr(remote, "description", None) or "",
                input_schema=dict(getattr(remote, "inputSchema", None) or {}),
            )
        return tools

    def _claim_global_names(self, conn: ConnectionDescriptor) -> None:
        for tool_name, tool in self._connection_tools.get(conn.name, {}).items():
            owner = self._global_tools.get(tool_name)
            if owner is not None:
                logger.warning(
                    "Tool '%s' already registered by MCP server '%s', skipping duplicate from '%s'",
                    tool_name,
                    owner.source_id,
                    conn.name,
                )
                continue
            self._global_tools[tool_name] = tool
            logger.debug("Registered MCP tool: %s from %s", tool_name, conn.name)

    # ------------------------------------------------------------------
    # Tool invocation
    # ------------------------------------------------------------------

    def _call_tool(self, connection_name: str, tool_name: str, /, **arguments: Any) -> str:
        session = self._sessions.get(connection_name)
        if session is None or self._loop is None:
            raise ServerConnectionError(
                f"MCP server '{connection_name}' is not connected.",
                connection_name=connection_name,
            )
        future = asyncio.run_coroutine_threadsafe(
            session.call_tool(tool_name, arguments),
            self._loop,
        )
        try:
            result = future.result(timeout=self.call_timeout)
        except concurrent.futures.TimeoutError as exc:
            future.cancel()
            raise ToolExecutionError(
                f"Tool '{tool_name}' on MCP server '{connection_name}' timed out after {self.call_timeout} seconds."
            ) from exc

        text = _result_text(result)
        if getattr(result, "isError", False):
            raise ToolExecutionError(f"Tool '{tool_name}' on MCP server '{connection_name}' failed: {text}")
        return text

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def list_connections(self) -> List[ConnectionDescriptor]:
        return list(self._connections.values())

    def get_connection(self, name: str) -> Optional[ConnectionDescriptor]:
        return self._connections.get(name.lower())

    def has_connection(self, name: str) -> bool:
        return name.lower() in self._connections

    def list_tools_for_connection(self, name: str) -> List[Tool]:
        conn = self.get_connection(name)
        if conn is None or conn.state is not ConnectionState.CONNECTED:
            return []
        return list(self._connection_tools.get(conn.name, {}).values())

    def lookup_qualified(self, connection_name: str, tool_name: str) -> Optional[Tool]:
        conn = self.get_connection(connection_name)
        if conn is None or conn.state is not ConnectionState.CONNECTED:
            return None
        return self._connection_tools.get(conn.name, {}).get(tool_name)

    def global_tools(self) -> Dict[str, Tool]:
        return dict(self._global_tools)

    def get_tool(self, name: str) -> Optional[Tool]:
        return self._global_tools.get(name)

    def list_tools(self) -> List[Tool]:
        return list(self._global_tools.values())


def _result_text(result: Any) -> str:
    parts: List[str] = []
    for item in getattr(result, "content", None) or []:
        if getattr(item, "type", None) == "text":
            parts.append(item.text)
        elif hasattr(item, "model_dump_json"):
            parts.append(item.model_dump_json())
        else:
            parts.append(str(item))
    return "\n".join(parts)


def _expand(value: str) -> str:
    return os.path.expandvars(value)
