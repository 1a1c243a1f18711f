"""
Tests for the stdio protocol client
"""

import asyncio
import json
import sys
from pathlib import Path
from unittest.mock import Mock

import pytest

from designscout.core.config import ScoutConfig
from designscout.core.exceptions import (
    BrowserConnectionError,
    ConnectionClosedError,
    NotInitializedError,
    RequestTimeoutError,
    ToolError,
)
from designscout.core.mcp import client as client_module
from designscout.core.mcp.client import MCPClient, get_client, shutdown_client

FAKE_SERVER = Path(__file__).parent / "fake_mcp_server.py"


class FakeStdin:
    def __init__(self):
        self.lines = []

    def write(self, data: bytes):
        self.lines.extend(json.loads(line) for line in data.decode().splitlines() if line)

    async def drain(self):
        pass


class FakeProcess:
    """Just enough of asyncio.subprocess.Process for the client"""

    def __init__(self, ignore_sigterm: bool = False):
        self.stdin = FakeStdin()
        self.returncode = None
        self.ignore_sigterm = ignore_sigterm
        self.signals = []
        self._exited = asyncio.Event()

    def terminate(self):
        self.signals.append("SIGTERM")
        if not self.ignore_sigterm:
            self.returncode = -15
            self._exited.set()

    def kill(self):
        self.signals.append("SIGKILL")
        self.returncode = -9
        self._exited.set()

    async def wait(self):
        await self._exited.wait()
        return self.returncode


def respond(client: MCPClient, request_id, result=None, error=None):
    message = {"jsonrpc": "2.0", "id": request_id}
    if error is not None:
        message["error"] = error
    else:
        message["result"] = result
    client._feed((json.dumps(message) + "\n").encode())


@pytest.fixture
def config():
    return ScoutConfig(request_timeout=1.0, shutdown_grace_period=0.05)


@pytest.fixture
def wired(config):
    """Client attached to a fake process, handshake already done"""
    client = MCPClient(config)
    process = FakeProcess()
    client._process = process
    client._connected = True
    client._initialized = True
    return client, process


async def _sent(process: FakeProcess, count: int = 1):
    for _ in range(100):
        if len(process.stdin.lines) >= count:
            return process.stdin.lines[count - 1]
        await asyncio.sleep(0)
    raise AssertionError("request was never written")


class TestRequests:
    """Request/response correlation"""

    @pytest.mark.asyncio
    async def test_response_resolves_request_and_clears_pending(self, wired):
        client, process = wired
        task = asyncio.create_task(client.send_request("tools/list"))
        sent = await _sent(process)

        assert sent["jsonrpc"] == "2.0"
        assert sent["method"] == "tools/list"
        assert client.pending_count == 1

        respond(client, sent["id"], {"tools": []})
        assert await task == {"tools": []}
        assert client.pending_count == 0

    @pytest.mark.asyncio
    async def test_responses_out_of_order(self, wired):
        client, process = wired
        first = asyncio.create_task(client.send_request("a"))
        second = asyncio.create_task(client.send_request("b"))
        a = await _sent(process, 1)
        b = await _sent(process, 2)

        respond(client, b["id"], "second")
        respond(client, a["id"], "first")

        assert await first == "first"
        assert await second == "second"
        assert client.pending_count == 0

    @pytest.mark.asyncio
    async def test_error_response_rejects_request(self, wired):
        client, process = wired
        task = asyncio.create_task(client.send_request("tools/call"))
        sent = await _sent(process)

        respond(client, sent["id"], error={"code": -32601, "message": "Method not found"})

        with pytest.raises(ToolError, match="Method not found"):
            await task
        assert client.pending_count == 0

    @pytest.mark.asyncio
    async def test_timeout_evicts_and_late_response_is_dropped(self, wired):
        client, process = wired
        task = asyncio.create_task(client.send_request("slow", timeout=0.01))
        sent = await _sent(process)

        with pytest.raises(RequestTimeoutError) as exc_info:
            await task
        assert exc_info.value.method == "slow"
        assert client.pending_count == 0

        # Late answer is ignored rather than crashing the reader
        respond(client, sent["id"], {"late": True})
        assert client.pending_count == 0

    @pytest.mark.asyncio
    async def test_malformed_lines_are_skipped(self, wired):
        client, process = wired
        task = asyncio.create_task(client.send_request("ping"))
        sent = await _sent(process)

        client._feed(b"not json at all\n")
        client._feed(b"\n")
        client._feed(b'{"jsonrpc": "2.0", "id": ' + str(sent["id"]).encode())
        client._feed(b', "result": "pong"}\n')

        assert await task == "pong"

    @pytest.mark.asyncio
    async def test_deeply_nested_line_does_not_stop_the_reader(self, wired):
        client, process = wired
        task = asyncio.create_task(client.send_request("ping"))
        sent = await _sent(process)

        client._feed(b"[" * 200000 + b"\n")
        respond(client, sent["id"], "pong")

        assert await task == "pong"
        assert client.pending_count == 0

    @pytest.mark.asyncio
    async def test_null_error_member_is_a_success(self, wired):
        client, process = wired
        task = asyncio.create_task(client.send_request("ping"))
        sent = await _sent(process)

        client._feed((json.dumps({"jsonrpc": "2.0", "id": sent["id"], "result": "pong", "error": None}) + "\n").encode())

        assert await task == "pong"

    @pytest.mark.asyncio
    async def test_send_without_process_raises(self, config):
        client = MCPClient(config)
        with pytest.raises(ConnectionClosedError):
            await client.send_request("ping")


class TestNotifications:
    @pytest.mark.asyncio
    async def test_notifications_reach_listeners(self, wired):
        client, _ = wired
        listener = Mock()
        client.add_notification_listener(listener)

        client._feed(b'{"jsonrpc":"2.0","method":"notifications/progress","params":{"p":1}}\n')
        client.remove_notification_listener(listener)
        client._feed(b'{"jsonrpc":"2.0","method":"notifications/progress","params":{"p":2}}\n')

        listener.assert_called_once_with("notifications/progress", {"p": 1})

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_dispatch(self, wired):
        client, _ = wired
        seen = []

        def broken(method, params):
            raise RuntimeError("listener bug")

        client.add_notification_listener(broken)
        client.add_notification_listener(lambda m, p: seen.append(m))
        client._feed(b'{"jsonrpc":"2.0","method":"notifications/message","params":{}}\n')

        assert seen == ["notifications/message"]

    @pytest.mark.asyncio
    async def test_async_listener_failures_are_collected(self, wired, caplog):
        client, _ = wired
        seen = []

        async def broken(method, params):
            raise RuntimeError("async listener bug")

        async def working(method, params):
            seen.append(method)

        client.add_notification_listener(broken)
        client.add_notification_listener(working)
        client._feed(b'{"jsonrpc":"2.0","method":"notifications/message","params":{}}\n')
        assert len(client._listener_tasks) == 2

        for _ in range(5):
            await asyncio.sleep(0)

        assert seen == ["notifications/message"]
        assert client._listener_tasks == set()
        assert "async listener bug" in caplog.text

    @pytest.mark.asyncio
    async def test_send_notification_has_no_id(self, wired):
        client, process = wired
        await client.send_notification("notifications/initialized", {})

        assert process.stdin.lines == [
            {"jsonrpc": "2.0", "method": "notifications/initialized", "params": {}}
        ]
        assert client.pending_count == 0


class TestToolCalls:
    @pytest.mark.asyncio
    async def test_call_tool_returns_result(self, wired):
        client, process = wired
        task = asyncio.create_task(client.call_tool("playwright_navigate", {"url": "https://mobbin.com"}))
        sent = await _sent(process)

        assert sent["method"] == "tools/call"
        assert sent["params"] == {"name": "playwright_navigate", "arguments": {"url": "https://mobbin.com"}}

        result = {"content": [{"type": "text", "text": "Navigated"}], "isError": False}
        respond(client, sent["id"], result)
        assert await task == result

    @pytest.mark.asyncio
    async def test_is_error_result_raises_tool_error(self, wired):
        client, process = wired
        task = asyncio.create_task(client.call_tool("playwright_click", {"selector": "#missing"}))
        sent = await _sent(process)

        respond(client, sent["id"], {"content": [{"type": "text", "text": "Timeout 30000ms exceeded"}], "isError": True})

        with pytest.raises(ToolError) as exc_info:
            await task
        assert exc_info.value.tool == "playwright_click"
        assert "Timeout 30000ms exceeded" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_protocol_error_names_the_tool(self, wired):
        client, process = wired
        task = asyncio.create_task(client.call_tool("playwright_fill", {}))
        sent = await _sent(process)

        respond(client, sent["id"], error={"code": -32602, "message": "Invalid params"})

        with pytest.raises(ToolError, match="playwright_fill failed: Invalid params"):
            await task

    @pytest.mark.asyncio
    async def test_call_tool_before_handshake(self, config):
        client = MCPClient(config)
        client._process = FakeProcess()
        client._connected = True

        with pytest.raises(NotInitializedError):
            await client.call_tool("playwright_navigate", {"url": "x"})


class TestShutdown:
    @pytest.mark.asyncio
    async def test_disconnect_rejects_pending(self, wired):
        client, process = wired
        task = asyncio.create_task(client.send_request("slow"))
        await _sent(process)

        await client.disconnect()

        with pytest.raises(ConnectionClosedError):
            await task
        assert client.pending_count == 0
        assert not client.connected
        assert process.stdin.lines[-1]["method"] == "notifications/cancelled"
        assert process.signals == ["SIGTERM"]

    @pytest.mark.asyncio
    async def test_disconnect_kills_stubborn_process(self, config):
        client = MCPClient(config)
        process = FakeProcess(ignore_sigterm=True)
        client._process = process
        client._connected = True
        client._initialized = True

        await client.disconnect()

        assert process.signals == ["SIGTERM", "SIGKILL"]

    @pytest.mark.asyncio
    async def test_disconnect_without_process_is_safe(self, config):
        client = MCPClient(config)
        await client.disconnect()
        assert not client.connected

    @pytest.mark.asyncio
    async def test_malformed_handshake_tears_down_process(self, config):
        client = MCPClient(config)
        process = FakeProcess()
        client._process = process

        task = asyncio.create_task(client.connect())
        sent = await _sent(process)
        assert sent["method"] == "initialize"
        respond(client, sent["id"], {"serverInfo": {"name": "broken"}})

        with pytest.raises(BrowserConnectionError, match="Malformed initialize response"):
            await task
        assert not client.connected
        assert client.pending_count == 0
        assert process.signals == ["SIGTERM"]

    @pytest.mark.asyncio
    async def test_spawn_failure_is_a_connection_error(self):
        client = MCPClient(ScoutConfig(server_command=["/nonexistent/design-scout-server"]))
        with pytest.raises(BrowserConnectionError):
            await client.connect()
        assert not client.connected


class TestSingleton:
    @pytest.mark.asyncio
    async def test_get_client_is_shared_until_shutdown(self, config):
        first = get_client(config)
        assert get_client() is first

        await shutdown_client()
        assert client_module._client is None
        assert get_client(config) is not first
        await shutdown_client()


@pytest.mark.integration
class TestAgainstFakeServer:
    """Runs the real subprocess plumbing against a scripted stdio server"""

    @pytest.fixture
    def server_config(self):
        return ScoutConfig(
            server_command=[sys.executable, str(FAKE_SERVER)],
            request_timeout=5.0,
            shutdown_grace_period=1.0,
        )

    @pytest.mark.asyncio
    async def test_handshake_and_tool_call(self, server_config):
        client = MCPClient(server_config)
        await client.connect()
        try:
            assert client.connected
            assert "playwright_navigate" in client.available_tools
            assert client.server_info["name"] == "fake-playwright"

            result = await client.call_tool("playwright_navigate", {"url": "https://mobbin.com"})
            assert result["content"][0]["text"] == "Navigated to https://mobbin.com"

            with pytest.raises(ToolError):
                await client.call_tool("playwright_click", {"selector": "#missing"})
        finally:
            await client.disconnect()

        assert not client.connected
        assert client.pending_count == 0

    @pytest.mark.asyncio
    async def test_server_crash_fails_pending_request(self, server_config):
        client = MCPClient(server_config)
        await client.connect()
        try:
            with pytest.raises(ConnectionClosedError):
                await client.call_tool("crash", {})
            assert not client.connected
        finally:
            await client.disconnect()
