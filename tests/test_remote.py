import asyncio
import logging
import threading
from contextlib import asynccontextmanager
from types import SimpleNamespace

import pytest

from agent_factory.errors import ConfigurationError, ServerConnectionError, ToolExecutionError
from agent_factory.tools import remote
from agent_factory.tools.remote import (
    ConnectionDescriptor,
    ConnectionState,
    RemoteConnectionManager,
    TransportKind,
)

from conftest import FakeConnector, make_descriptors


class TestConnectionDescriptor:
    def test_stdio_entry(self, monkeypatch):
        monkeypatch.setenv("DOCS_TOKEN", "secret")
        descriptor = ConnectionDescriptor.from_config(
            "docs",
            {"type": "stdio", "command": "npx", "args": ["-y", "docs-server"], "env": {"TOKEN": "${DOCS_TOKEN}"}},
        )

        assert descriptor.transport_kind is TransportKind.SUBPROCESS
        assert descriptor.transport_params["command"] == "npx"
        assert descriptor.transport_params["args"] == ["-y", "docs-server"]
        assert descriptor.transport_params["env"] == {"TOKEN": "secret"}
        assert descriptor.state is ConnectionState.UNINITIALIZED
        assert descriptor.timeout is None

    def test_http_entry_defaults_to_auto_mode(self):
        descriptor = ConnectionDescriptor.from_config(
            "github", {"type": "http", "url": "https://example.test/mcp", "timeout": 5}
        )

        assert descriptor.transport_kind is TransportKind.NETWORK
        assert descriptor.transport_params["mode"] == "auto"
        assert descriptor.timeout == 5.0

    def test_sse_type_selects_sse_mode(self):
        descriptor = ConnectionDescriptor.from_config("legacy", {"type": "sse", "url": "https://example.test/sse"})

        assert descriptor.transport_params["mode"] == "sse"

    @pytest.mark.parametrize(
        "cfg",
        [
            {"type": "stdio"},
            {"type": "http"},
            {"type": "websocket", "url": "wss://example.test"},
            {"type": "http", "url": "https://example.test", "mode": "grpc"},
        ],
    )
    def test_invalid_entries(self, cfg):
        with pytest.raises(ConfigurationError):
            ConnectionDescriptor.from_config("broken", cfg)

    def test_state_transitions(self):
        descriptor = make_descriptors("docs")[0]

        descriptor.transition(ConnectionState.CONNECTING)
        descriptor.transition(ConnectionState.CONNECTED)
        descriptor.transition(ConnectionState.DISPOSED)

        with pytest.raises(RuntimeError):
            descriptor.transition(ConnectionState.CONNECTING)

    def test_connected_can_fail(self):
        descriptor = make_descriptors("docs")[0]
        descriptor.transition(ConnectionState.CONNECTING)
        descriptor.transition(ConnectionState.CONNECTED)

        descriptor.transition(ConnectionState.FAILED)

        assert descriptor.state is ConnectionState.FAILED

    def test_failed_is_terminal(self):
        descriptor = make_descriptors("docs")[0]
        descriptor.transition(ConnectionState.CONNECTING)
        descriptor.transition(ConnectionState.FAILED)

        with pytest.raises(RuntimeError):
            descriptor.transition(ConnectionState.CONNECTED)


class TestRemoteConnectionManager:
    def test_collision_keeps_first_connection_in_global_map(self, caplog):
        caplog.set_level(logging.WARNING)
        connector = FakeConnector({"docs": ["search", "fetch"], "code": ["search"]})

        with RemoteConnectionManager(make_descriptors("docs", "code"), connector=connector) as manager:
            global_tools = manager.global_tools()

            assert sorted(global_tools) == ["fetch", "search"]
            assert global_tools["search"].source_id == "docs"
            assert manager.lookup_qualified("code", "search").source_id == "code"
            assert [t.name for t in manager.list_tools_for_connection("code")] == ["search"]
            assert "search" in caplog.text and "code" in caplog.text

    def test_lookups_ignore_connection_case(self, docs_and_code):
        manager, _ = docs_and_code

        assert manager.has_connection("DOCS")
        assert manager.lookup_qualified("Code", "lint").source_id == "code"
        assert manager.lookup_qualified("code", "missing") is None
        assert manager.lookup_qualified("nowhere", "search") is None

    def test_failed_connection_does_not_block_others(self):
        connector = FakeConnector({"docs": ["search"], "code": ["lint"]}, failing=["broken"])
        manager = RemoteConnectionManager(make_descriptors("docs", "broken", "code"), connector=connector)
        try:
            manager.initialize()

            broken = manager.get_connection("broken")
            assert broken.state is ConnectionState.FAILED
            assert "connection refused" in broken.error
            assert manager.list_tools_for_connection("broken") == []
            assert manager.get_connection("docs").state is ConnectionState.CONNECTED
            assert manager.get_connection("code").state is ConnectionState.CONNECTED
            assert sorted(manager.global_tools()) == ["lint", "search"]
        finally:
            manager.close()

    def test_slow_connection_times_out(self):
        connector = FakeConnector({"docs": ["search"], "slow": ["wait"]}, hanging=["slow"])
        manager = RemoteConnectionManager(
            make_descriptors("docs", "slow"), connector=connector, connect_timeout=0.2
        )
        try:
            manager.initialize()

            slow = manager.get_connection("slow")
            assert slow.state is ConnectionState.FAILED
            assert "timed out" in slow.error
            assert manager.get_tool("wait") is None
            assert manager.get_tool("search") is not None
        finally:
            manager.close()

    def test_concurrent_initialize_connects_once(self):
        connector = FakeConnector({"docs": ["search"], "code": ["lint"]}, delay=0.05)
        manager = RemoteConnectionManager(make_descriptors("docs", "code"), connector=connector)
        try:
            threads = [threading.Thread(target=manager.initialize) for _ in range(8)]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()
            manager.initialize()

            assert connector.attempts == {"docs": 1, "code": 1}
            assert manager.initialized
        finally:
            manager.close()

    def test_close_disposes_and_clears(self):
        connector = FakeConnector({"docs": ["search"]}, failing=["broken"])
        manager = RemoteConnectionManager(make_descriptors("docs", "broken"), connector=connector)
        manager.initialize()

        manager.close()

        assert manager.get_connection("docs").state is ConnectionState.DISPOSED
        assert manager.get_connection("broken").state is ConnectionState.FAILED
        assert connector.closed == ["docs"]
        assert manager.global_tools() == {}
        assert manager.list_tools_for_connection("docs") == []
        assert manager.lookup_qualified("docs", "search") is None

    def test_close_is_idempotent_and_final(self, docs_and_code):
        manager, _ = docs_and_code

        manager.close()
        manager.close()

        with pytest.raises(RuntimeError):
            manager.initialize()

    def test_close_without_initialize(self):
        manager = RemoteConnectionManager(make_descriptors("docs"), connector=FakeConnector({}))

        manager.close()

        assert manager.get_connection("docs").state is ConnectionState.UNINITIALIZED

    def test_duplicate_connection_names_keep_first(self):
        first, second = make_descriptors("docs", "DOCS")
        connector = FakeConnector({"docs": ["search"]})
        with RemoteConnectionManager([first, second], connector=connector) as manager:
            assert manager.list_connections() == [first]
            assert connector.attempts == {"docs": 1}

    def test_remote_tool_call(self, docs_and_code):
        manager, connector = docs_and_code

        tool = manager.lookup_qualified("code", "lint")
        result = tool.run({"path": "src"})

        assert result == "code:lint:[('path', 'src')]"
        assert connector.sessions["code"].calls == [("lint", {"path": "src"})]

    def test_remote_tool_error_result(self):
        connector = FakeConnector({"docs": ["search"]}, failing_tools=["search"])
        with RemoteConnectionManager(make_descriptors("docs"), connector=connector) as manager:
            with pytest.raises(ToolExecutionError):
                manager.get_tool("search").run({"q": "x"})

    def test_arguments_named_like_call_parameters(self):
        connector = FakeConnector({"docs": ["describe"]})
        with RemoteConnectionManager(make_descriptors("docs"), connector=connector) as manager:
            result = manager.get_tool("describe").run({"tool_name": "lint", "connection_name": "code"})

        assert result == "docs:describe:[('connection_name', 'code'), ('tool_name', 'lint')]"
        assert connector.sessions["docs"].calls == [
            ("describe", {"tool_name": "lint", "connection_name": "code"})
        ]

    def test_lost_connection_stops_reporting_tools(self, caplog):
        connector = FakeConnector({"docs": ["search", "fetch"], "code": ["search", "lint"]})
        with RemoteConnectionManager(make_descriptors("docs", "code"), connector=connector) as manager:
            stale = manager.get_tool("fetch")

            connector.drop("docs")

            docs = manager.get_connection("docs")
            assert docs.state is ConnectionState.FAILED
            assert "server went away" in docs.error
            assert manager.list_tools_for_connection("docs") == []
            assert manager.lookup_qualified("docs", "fetch") is None
            assert manager.get_tool("fetch") is None
            assert sorted(manager.global_tools()) == ["lint", "search"]
            assert manager.global_tools()["search"].source_id == "code"
            assert manager.get_connection("code").state is ConnectionState.CONNECTED
            assert "Lost connection" in caplog.text
            with pytest.raises(ServerConnectionError):
                stale.run({})

        assert manager.get_connection("docs").state is ConnectionState.FAILED

    def test_call_after_close_fails(self):
        connector = FakeConnector({"docs": ["search"]})
        manager = RemoteConnectionManager(make_descriptors("docs"), connector=connector)
        manager.initialize()
        tool = manager.get_tool("search")
        manager.close()

        with pytest.raises(ServerConnectionError):
            tool.run({"q": "x"})

    def test_no_connections(self):
        manager = RemoteConnectionManager([])
        manager.initialize()

        assert manager.initialized
        assert manager.list_tools() == []
        manager.close()


class RecordingSession:
    """Stands in for mcp.ClientSession around fake transport streams."""

    def __init__(self, read_stream, write_stream, client_info=None):
        self.streams = (read_stream, write_stream)
        self.client_info = client_info
        self.initialized = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    async def initialize(self):
        self.initialized = True


@pytest.fixture
def transports(monkeypatch):
    calls = []
    failing = set()

    def fake(label, streams):
        @asynccontextmanager
        async def factory(*args, **kwargs):
            calls.append((label, args, kwargs))
            if label in failing:
                raise ConnectionError(f"{label} handshake refused")
            yield streams

        return factory

    monkeypatch.setattr(remote, "ClientSession", RecordingSession)
    monkeypatch.setattr(remote, "streamablehttp_client", fake("streamable-http", ("http-read", "http-write", None)))
    monkeypatch.setattr(remote, "sse_client", fake("sse", ("sse-read", "sse-write")))
    monkeypatch.setattr(remote, "stdio_client", fake("stdio", ("stdio-read", "stdio-write")))
    return SimpleNamespace(calls=calls, failing=failing, labels=lambda: [c[0] for c in calls])


def open_once(descriptor):
    async def run():
        async with remote.open_session(descriptor) as session:
            return session

    return asyncio.run(run())


class TestOpenSession:
    def test_auto_mode_falls_back_to_sse(self, transports):
        transports.failing.add("streamable-http")
        descriptor = ConnectionDescriptor.from_config(
            "docs", {"type": "http", "url": "https://example.test/mcp", "headers": {"X-Team": "core"}}
        )

        session = open_once(descriptor)

        assert transports.labels() == ["streamable-http", "sse"]
        assert session.streams == ("sse-read", "sse-write")
        assert session.initialized
        assert session.client_info is remote.CLIENT_INFO
        assert transports.calls[1][2]["headers"] == {"X-Team": "core"}

    def test_auto_mode_prefers_streamable_http(self, transports):
        descriptor = ConnectionDescriptor.from_config("docs", {"type": "http", "url": "https://example.test/mcp"})

        session = open_once(descriptor)

        assert transports.labels() == ["streamable-http"]
        assert session.streams == ("http-read", "http-write")

    def test_forced_streamable_http_does_not_fall_back(self, transports):
        transports.failing.add("streamable-http")
        descriptor = ConnectionDescriptor.from_config(
            "docs", {"type": "streamable-http", "url": "https://example.test/mcp"}
        )

        with pytest.raises(ConnectionError):
            open_once(descriptor)

        assert transports.labels() == ["streamable-http"]

    def test_sse_mode_skips_streamable_http(self, transports):
        descriptor = ConnectionDescriptor.from_config("legacy", {"type": "sse", "url": "https://example.test/sse"})

        session = open_once(descriptor)

        assert transports.labels() == ["sse"]
        assert session.streams == ("sse-read", "sse-write")

    def test_stdio_env_extends_process_environment(self, transports, monkeypatch):
        monkeypatch.setenv("AGENT_FACTORY_MARKER", "inherited")
        descriptor = ConnectionDescriptor.from_config(
            "docs", {"command": "docs-server", "args": ["--stdio"], "env": {"TOKEN": "abc"}}
        )

        open_once(descriptor)

        server = transports.calls[0][1][0]
        assert server.command == "docs-server"
        assert server.args == ["--stdio"]
        assert server.env["TOKEN"] == "abc"
        assert server.env["AGENT_FACTORY_MARKER"] == "inherited"

    def test_stdio_without_env_inherits_default(self, transports):
        open_once(ConnectionDescriptor.from_config("docs", {"command": "docs-server"}))

        assert transports.calls[0][1][0].env is None
