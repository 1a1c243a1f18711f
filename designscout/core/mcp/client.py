"""
Stdio client for the Playwright automation server

Owns the child process and the request/response/notification bookkeeping.
Nothing outside this module touches the pending-request map.
"""

import asyncio
import inspect
import itertools
import logging
import os
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Set

from ..config import ScoutConfig
from ..exceptions import (
    BrowserConnectionError,
    ConnectionClosedError,
    NotInitializedError,
    RequestTimeoutError,
    ToolError,
)
from .protocol import (
    PROTOCOL_VERSION,
    ErrorResponse,
    Notification,
    Request,
    Response,
    decode_line,
    encode,
    is_error_result,
    result_texts,
)

logger = logging.getLogger(__name__)

NotificationListener = Callable[[str, Dict[str, Any]], Any]


@dataclass
class PendingRequest:
    """One in-flight request, keyed by id"""

    id: int
    method: str
    future: asyncio.Future
    timer: Optional[asyncio.TimerHandle] = None


class MCPClient:
    """
    Client for one automation-server process.

    Usage:
        client = MCPClient(config)
        await client.connect()
        result = await client.call_tool("playwright_navigate", {"url": "https://mobbin.com"})
        await client.disconnect()
    """

    def __init__(self, config: Optional[ScoutConfig] = None):
        self.config = config or ScoutConfig()
        self._process: Optional[asyncio.subprocess.Process] = None
        self._pending: Dict[int, PendingRequest] = {}
        self._ids = itertools.count(1)
        self._buffer = b""
        self._reader_task: Optional[asyncio.Task] = None
        self._stderr_task: Optional[asyncio.Task] = None
        self._listeners: List[NotificationListener] = []
        self._listener_tasks: Set[asyncio.Task] = set()
        self._connect_lock = asyncio.Lock()
        self._connected = False
        self._initialized = False
        self.server_capabilities: Dict[str, Any] = {}
        self.server_info: Dict[str, Any] = {}
        self.available_tools: List[str] = []

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def connected(self) -> bool:
        return self._connected and self._initialized

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def add_notification_listener(self, listener: NotificationListener):
        self._listeners.append(listener)

    def remove_notification_listener(self, listener: NotificationListener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self):
        """Spawn the server (if needed), handshake and list tools"""
        if self.connected:
            return

        async with self._connect_lock:
            if self.connected:
                return

            try:
                if self._process is None or self._process.returncode is not None:
                    await self._spawn()
                if self.config.startup_delay:
                    await asyncio.sleep(self.config.startup_delay)
                await self._initialize()
                await self._list_tools()
            except BrowserConnectionError:
                await self._abort_connect()
                raise
            except Exception as e:
                await self._abort_connect()
                raise BrowserConnectionError(f"Failed to connect to automation server: {e}") from e

            self._connected = True
            logger.info(f"✅ Connected to automation server ({len(self.available_tools)} tools)")

    async def _spawn(self):
        command = self.config.server_command
        logger.info(f"Starting automation server: {' '.join(command)}")
        env = {**os.environ, "NODE_ENV": "production"}
        try:
            self._process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except (OSError, ValueError) as e:
            raise BrowserConnectionError(f"Could not spawn {command[0]!r}: {e}") from e

        self._buffer = b""
        self._reader_task = asyncio.create_task(self._read_stdout(self._process))
        self._stderr_task = asyncio.create_task(self._read_stderr(self._process))

    async def _initialize(self):
        response = await self.send_request(
            "initialize",
            {
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": {"tools": {}},
                "clientInfo": {
                    "name": self.config.client_name,
                    "version": self.config.client_version,
                },
            },
        )
        if not isinstance(response, dict) or not isinstance(response.get("capabilities"), dict):
            raise BrowserConnectionError(f"Malformed initialize response: {response!r}")

        self.server_capabilities = response["capabilities"]
        self.server_info = response.get("serverInfo") or {}
        await self.send_notification("notifications/initialized", {})
        self._initialized = True
        logger.debug(f"Server capabilities: {self.server_capabilities}")

    async def _list_tools(self):
        response = await self.send_request("tools/list", {})
        tools = response.get("tools") if isinstance(response, dict) else None
        if isinstance(tools, list):
            self.available_tools = [t["name"] for t in tools if isinstance(t, dict) and "name" in t]
        else:
            logger.warning(f"No tools found in tools/list response: {response!r}")
            self.available_tools = []

    async def _abort_connect(self):
        process = self._process
        self._process = None
        self._fail_pending(ConnectionClosedError("Connection attempt aborted"))
        self._reset_state()
        if process is not None and process.returncode is None:
            await self._terminate(process)
        self._cancel_readers()

    async def disconnect(self):
        """Cancel politely, then SIGTERM, then SIGKILL after the grace period"""
        process = self._process
        if process is not None and self._initialized:
            try:
                await self.send_notification("notifications/cancelled", {})
            except Exception as e:
                logger.warning(f"Failed to send shutdown notification: {e}")

        self._process = None
        self._fail_pending(ConnectionClosedError("MCP connection closed"))
        self._reset_state()

        if process is not None and process.returncode is None:
            await self._terminate(process)
        self._cancel_readers()
        logger.info("Disconnected from automation server")

    async def _terminate(self, process: asyncio.subprocess.Process):
        try:
            process.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(process.wait(), timeout=self.config.shutdown_grace_period)
        except asyncio.TimeoutError:
            logger.warning("Automation server ignored SIGTERM, killing it")
            try:
                process.kill()
            except ProcessLookupError:
                return
            await process.wait()

    def _cancel_readers(self):
        current = asyncio.current_task()
        for task in (self._reader_task, self._stderr_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
        self._reader_task = None
        self._stderr_task = None

    def _reset_state(self):
        self._connected = False
        self._initialized = False
        self.available_tools = []
        self.server_capabilities = {}
        self._buffer = b""

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> Any:
        """Invoke a server tool and return its result object"""
        if not self._connected:
            await self.connect()
        if not self._initialized:
            raise NotInitializedError("MCP client not properly initialized")

        logger.debug(f"Using tool {name} with args {sorted((arguments or {}).keys())}")
        try:
            result = await self.send_request("tools/call", {"name": name, "arguments": arguments or {}})
        except ToolError as e:
            raise ToolError(name, str(e), e.data) from e

        if is_error_result(result):
            message = " ".join(result_texts(result)) or "tool reported an error"
            raise ToolError(name, message, result)
        return result

    async def send_request(
        self, method: str, params: Optional[Dict[str, Any]] = None, timeout: Optional[float] = None
    ) -> Any:
        """Send a request and wait for the correlated response"""
        process = self._process
        if process is None or process.stdin is None:
            raise ConnectionClosedError("MCP process not available")

        loop = asyncio.get_running_loop()
        request = Request(id=next(self._ids), method=method, params=params or {})
        deadline = self.config.request_timeout if timeout is None else timeout

        entry = PendingRequest(id=request.id, method=method, future=loop.create_future())
        entry.timer = loop.call_later(deadline, self._expire, request.id, deadline)
        self._pending[request.id] = entry

        logger.debug(f"→ request {request.id} {method}")
        try:
            process.stdin.write(encode(request))
            await process.stdin.drain()
        except (ConnectionError, RuntimeError, OSError) as e:
            self._evict(request.id)
            raise ConnectionClosedError(f"Failed to send request: {e}") from e

        return await entry.future

    async def send_notification(self, method: str, params: Optional[Dict[str, Any]] = None):
        """Fire-and-forget message; no pending entry is created"""
        process = self._process
        if process is None or process.stdin is None:
            raise ConnectionClosedError("MCP process not available")
        logger.debug(f"→ notification {method}")
        process.stdin.write(encode(Notification(method=method, params=params or {})))
        await process.stdin.drain()

    def _evict(self, request_id: int) -> Optional[PendingRequest]:
        entry = self._pending.pop(request_id, None)
        if entry is not None and entry.timer is not None:
            entry.timer.cancel()
        return entry

    def _expire(self, request_id: int, deadline: float):
        entry = self._pending.pop(request_id, None)
        if entry is None or entry.future.done():
            return
        logger.warning(f"Request {request_id} ({entry.method}) timed out after {deadline:g}s")
        entry.future.set_exception(
            RequestTimeoutError(
                f"Request {request_id} ({entry.method}) timed out after {deadline:g} seconds",
                request_id=request_id,
                method=entry.method,
            )
        )

    def _fail_pending(self, error: Exception):
        pending = list(self._pending.values())
        self._pending.clear()
        for entry in pending:
            if entry.timer is not None:
                entry.timer.cancel()
            if not entry.future.done():
                entry.future.set_exception(error)

    # ------------------------------------------------------------------
    # Incoming traffic
    # ------------------------------------------------------------------

    async def _read_stdout(self, process: asyncio.subprocess.Process):
        try:
            while True:
                chunk = await process.stdout.read(65536)
                if not chunk:
                    break
                self._feed(chunk)
        except asyncio.CancelledError:
            raise
        finally:
            if self._process is process:
                logger.warning(f"Automation server exited (code {process.returncode})")
                self._process = None
                self._fail_pending(ConnectionClosedError("MCP connection closed"))
                self._reset_state()

    async def _read_stderr(self, process: asyncio.subprocess.Process):
        while True:
            line = await process.stderr.readline()
            if not line:
                return
            text = line.decode("utf-8", errors="replace").strip()
            if text:
                logger.debug(f"[server] {text}")

    def _feed(self, data: bytes):
        """Buffer raw stdout bytes and dispatch every complete line"""
        self._buffer += data
        *lines, self._buffer = self._buffer.split(b"\n")
        for line in lines:
            if line.strip():
                self._dispatch_line(line)

    def _dispatch_line(self, line: bytes):
        try:
            message = decode_line(line)
        except ValueError as e:
            logger.error(f"Failed to parse server message: {e}")
            logger.debug(f"Raw data: {line[:500]!r}")
            return

        if isinstance(message, (Response, ErrorResponse)):
            entry = self._evict(message.id) if isinstance(message.id, int) else None
            if entry is None:
                logger.debug(f"Dropping response for unknown or expired request {message.id}")
                return
            if entry.future.done():
                return
            if isinstance(message, ErrorResponse):
                logger.debug(f"← request {message.id} failed: {message.message}")
                entry.future.set_exception(ToolError("", message.message, message.data))
            else:
                logger.debug(f"← request {message.id} ok")
                entry.future.set_result(message.result)
        elif isinstance(message, Notification):
            logger.debug(f"← notification {message.method}")
            self._emit(message.method, message.params)
        else:
            logger.debug(f"Ignoring unexpected message: {line[:200]!r}")

    def _emit(self, method: str, params: Dict[str, Any]):
        for listener in list(self._listeners):
            try:
                outcome = listener(method, params)
                if inspect.isawaitable(outcome):
                    task = asyncio.ensure_future(outcome)
                    self._listener_tasks.add(task)
                    task.add_done_callback(self._listener_done)
            except Exception as e:
                logger.error(f"Notification listener failed: {e}")

    def _listener_done(self, task: asyncio.Task):
        self._listener_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Notification listener failed: {task.exception()}")


# ----------------------------------------------------------------------
# Process-wide singleton
# ----------------------------------------------------------------------

_client: Optional[MCPClient] = None


def get_client(config: Optional[ScoutConfig] = None) -> MCPClient:
    """Return the shared client, creating it on first use"""
    global _client
    if _client is None:
        _client = MCPClient(config)
    return _client


async def shutdown_client():
    """Disconnect and forget the shared client"""
    global _client
    if _client is not None:
        client, _client = _client, None
        await client.disconnect()
