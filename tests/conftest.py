from __future__ import annotations

import asyncio
from collections import Counter
from contextlib import asynccontextmanager
from types import SimpleNamespace
from typing import Any, Dict, Iterable, List, Optional

import pytest

from agent_factory.errors import ServerConnectionError
from agent_factory.models.base import ChatResponse, ModelClient, ModelClientHandler
from agent_factory.tools.local import LocalToolSource, ToolTable
from agent_factory.tools.remote import ConnectionDescriptor, RemoteConnectionManager, TransportKind


class FakeClient(ModelClient):
    """Model client replaying scripted replies."""

    def __init__(self, provider_name: str, model: str, replies: Optional[List[str]] = None) -> None:
        super().__init__(provider_name=provider_name, model=model)
        self.replies = list(replies or [])
        self.requests: List[List[Dict[str, Any]]] = []

    def chat(self, messages, stream=False):
        self.requests.append([dict(m) for m in messages])
        text = self.replies.pop(0) if self.replies else ""
        return ChatResponse(text=text, raw=None)


class FakeHandler(ModelClientHandler):
    """Handler with scripted acceptance and construction behavior."""

    def __init__(
        self,
        name: str,
        accepts: bool = True,
        error: Optional[Exception] = None,
        log: Optional[List[tuple]] = None,
    ) -> None:
        super().__init__(name=name, models=("*",))
        self.accepts = accepts
        self.error = error
        self.log = log if log is not None else []

    def can_handle(self, model_name: str) -> bool:
        self.log.append(("check", self.name, model_name))
        return self.accepts

    def create_client(self, model_name: str) -> FakeClient:
        self.log.append(("create", self.name, model_name))
        if self.error is not None:
            raise self.error
        return FakeClient(self.name, model_name)


class FakeSession:
    """Stands in for an MCP ClientSession."""

    def __init__(self, server: str, tool_names: Iterable[str], failing_tools: Iterable[str] = ()) -> None:
        self.server = server
        self.tool_names = list(tool_names)
        self.failing_tools = set(failing_tools)
        self.calls: List[tuple] = []

    async def list_tools(self):
        return SimpleNamespace(
            tools=[
                SimpleNamespace(
                    name=name,
                    description=f"{name} from {self.server}",
                    inputSchema={"type": "object", "properties": {}},
                )
                for name in self.tool_names
            ]
        )

    async def call_tool(self, name, arguments):
        self.calls.append((name, dict(arguments)))
        text = f"{self.server}:{name}:{sorted(arguments.items())}"
        return SimpleNamespace(
            content=[SimpleNamespace(type="text", text=text)],
            isError=name in self.failing_tools,
        )


class FakeConnector:
    """
    Connector serving scripted tool lists.

    Servers listed in `failing` raise on connect; servers in `hanging`
    never finish connecting.
    """

    def __init__(
        self,
        servers: Dict[str, List[str]],
        failing: Iterable[str] = (),
        hanging: Iterable[str] = (),
        failing_tools: Iterable[str] = (),
        delay: float = 0.01,
    ) -> None:
        self.servers = servers
        self.failing = set(failing)
        self.hanging = set(hanging)
        self.failing_tools = set(failing_tools)
        self.delay = delay
        self.attempts: Counter = Counter()
        self.closed: List[str] = []
        self.sessions: Dict[str, FakeSession] = {}
        self._serving: Dict[str, tuple] = {}

    def __call__(self, descriptor: ConnectionDescriptor):
        return self._open(descriptor)

    @asynccontextmanager
    async def _open(self, descriptor: ConnectionDescriptor):
        self.attempts[descriptor.name] += 1
        await asyncio.sleep(self.delay)
        if descriptor.name in self.hanging:
            await asyncio.sleep(3600)
        if descriptor.name in self.failing:
            raise ServerConnectionError("connection refused", connection_name=descriptor.name)
        session = FakeSession(descriptor.name, self.servers.get(descriptor.name, []), self.failing_tools)
        self.sessions[descriptor.name] = session
        lost = asyncio.Event()
        self._serving[descriptor.name] = (asyncio.get_running_loop(), asyncio.current_task(), lost)
        try:
            yield session
        except asyncio.CancelledError:
            # A dead transport cancels the session owner and surfaces as an error.
            if lost.is_set():
                raise ServerConnectionError("server went away", connection_name=descriptor.name)
            raise
        finally:
            self.closed.append(descriptor.name)

    def drop(self, name: str) -> None:
        """Kill a live connection and wait until its owner has handled it."""
        loop, task, lost = self._serving[name]

        async def _drop():
            lost.set()
            task.cancel()
            await asyncio.wait({task})

        asyncio.run_coroutine_threadsafe(_drop(), loop).result(timeout=5)


def make_descriptors(*names: str) -> List[ConnectionDescriptor]:
    return [
        ConnectionDescriptor(
            name=name,
            transport_kind=TransportKind.SUBPROCESS,
            transport_params={"command": "fake-server", "args": [], "env": {}},
        )
        for name in names
    ]


def billing(account: str = "acme") -> str:
    """Look up the billing status of an account."""
    return f"billing ok for {account}"


def echo(text: str) -> str:
    """Echo the input back."""
    return text


@pytest.fixture
def local_source() -> LocalToolSource:
    table = ToolTable()
    table.register(billing)
    table.register(echo)
    return LocalToolSource(table)


@pytest.fixture
def docs_and_code():
    """Connection manager for the 'docs' and 'code' servers, which both list 'search'."""
    connector = FakeConnector({"docs": ["search", "fetch"], "code": ["search", "lint"]})
    manager = RemoteConnectionManager(make_descriptors("docs", "code"), connector=connector)
    manager.initialize()
    yield manager, connector
    manager.close()
