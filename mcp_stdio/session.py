"""
A single connection to one MCP tool server.

    ┌────────────┐  lines   ┌───────────┐  dicts   ┌────────────┐
    │ child stdout│ ───────▶│ read task │ ───────▶ │ dispatcher │──▶ CorrelationTable
    └────────────┘          └───────────┘  queue   └────────────┘

The read task only decodes frames; the dispatcher owns all correlation
bookkeeping. Requests from many callers can be in flight at once and
are matched purely by id.

A session is single-use: open() once, close() once. Reconnecting means
building a new session (see ToolServerManager).
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from mcp_stdio.codec import encode_message, read_messages
from mcp_stdio.config import ServerConfig
from mcp_stdio.correlation import CorrelationTable
from mcp_stdio.errors import (
    HandshakeError,
    InvalidRequest,
    McpError,
    RemoteError,
    SpawnError,
    TransportClosed,
    format_error,
)
from mcp_stdio.resolver import CommandResolver, PassthroughResolver
from mcp_stdio.transport import (
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
    StdioTransport,
)
from mcp_stdio.types import Tool, ToolCallResult

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"
CLIENT_INFO = {"name": "mcp-stdio", "version": "0.1.0"}

DEFAULT_SETTLE_DELAY = 0.5
DEFAULT_HANDSHAKE_TIMEOUT = 10.0
DEFAULT_CALL_TIMEOUT = 60.0

# How long to wait for exit status after stdout closes
EXIT_GRACE = 1.0


class ServerSession:
    """
    Live connection to a tool server process.

    Responsibilities:
    - Spawn the process and run the read/dispatch tasks
    - Drive the initialize → initialized → tools/list handshake
    - Correlate requests with responses (with per-request deadlines)
    - Invoke tools, turning every failure into an error result
    """

    def __init__(
        self,
        name: str,
        config: ServerConfig,
        *,
        resolver: CommandResolver | None = None,
        settle_delay: float = DEFAULT_SETTLE_DELAY,
        handshake_timeout: float = DEFAULT_HANDSHAKE_TIMEOUT,
        call_timeout: float = DEFAULT_CALL_TIMEOUT,
    ):
        self.name = name
        self.config = config
        self.resolver = resolver or PassthroughResolver()
        self.settle_delay = settle_delay
        self.handshake_timeout = handshake_timeout
        self.call_timeout = call_timeout

        self.tools: list[Tool] = []
        self.connected = False
        self.last_error: str | None = None

        self._transport: StdioTransport | None = None
        self._pending: CorrelationTable[Any] | None = None
        self._inbox: asyncio.Queue[dict[str, Any] | None] | None = None
        self._tasks: list[asyncio.Task] = []
        self._request_id = 0
        self._closing = False

    @property
    def is_connected(self) -> bool:
        return self.connected and self._transport is not None and self._transport.is_alive()

    @property
    def pending_count(self) -> int:
        return len(self._pending) if self._pending is not None else 0

    @property
    def transport(self) -> StdioTransport | None:
        return self._transport

    # ── lifecycle ───────────────────────────────────────────

    async def open(self) -> list[Tool]:
        """
        Spawn the server and complete the handshake.

        Returns:
            The tools the server advertises.

        Raises:
            SpawnError, RequestTimeout, TransportClosed, RemoteError or
            HandshakeError. On any failure the process is already gone.
        """
        cfg = self.config
        command = self.resolver.resolve(cfg.command)
        logger.debug(f"Connecting to {self.name}: {command} {list(cfg.args)}")

        self._transport = StdioTransport(
            command,
            cfg.args,
            env=dict(cfg.env) if cfg.env else None,
            cwd=cfg.cwd,
            label=self.name,
            on_exit=self._on_exit,
        )
        self._pending = CorrelationTable()
        self._inbox = asyncio.Queue()

        await self._transport.start()
        self._tasks = [
            asyncio.create_task(self._read_loop(), name=f"mcp-read-{self.name}"),
            asyncio.create_task(self._dispatch_loop(), name=f"mcp-dispatch-{self.name}"),
        ]

        try:
            if self.settle_delay > 0:
                await asyncio.sleep(self.settle_delay)
            if not self._transport.is_alive():
                raise SpawnError(
                    f"Process exited immediately with code {self._transport.returncode}. "
                    f"{self._transport.stderr_tail[-200:]}".strip()
                )

            await self._initialize()
            self.tools = await self._list_tools()
        except asyncio.CancelledError:
            await self.close()
            raise
        except Exception as e:
            self.last_error = str(e)
            logger.debug(f"Failed to initialize {self.name}: {e}")
            await self.close()
            if isinstance(e, McpError):
                raise
            raise HandshakeError(f"Handshake with {self.name} failed: {e}") from e

        self.connected = True
        logger.info(f"Connected to {self.name} with {len(self.tools)} tools")
        return list(self.tools)

    async def close(self) -> None:
        """Reject everything pending, stop the tasks and the process."""
        self._closing = True
        self.connected = False

        if self._pending is not None:
            settled = self._pending.reject_all(
                lambda: TransportClosed(f"Disconnected from {self.name}")
            )
            if settled:
                logger.debug(f"[{self.name}] Rejected {settled} pending requests on close")

        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

        if self._transport is not None:
            await self._transport.stop()

    # ── handshake ───────────────────────────────────────────

    async def _initialize(self) -> None:
        await self.request(
            "initialize",
            {
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": {},
                "clientInfo": CLIENT_INFO,
            },
            timeout=self.handshake_timeout,
        )
        await self.notify("notifications/initialized")

    async def _list_tools(self) -> list[Tool]:
        result = await self.request("tools/list", timeout=self.handshake_timeout)
        raw = result.get("tools") if isinstance(result, dict) else None
        return [
            Tool.from_dict(t)
            for t in raw or []
            if isinstance(t, dict) and isinstance(t.get("name"), str)
        ]

    # ── requests ────────────────────────────────────────────

    async def request(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> Any:
        """Send a request and wait for its result (or raise)."""
        transport = self._transport
        if transport is None or self._pending is None:
            raise TransportClosed(f"{self.name} is not running")
        if not transport.is_alive():
            raise TransportClosed(f"Server process has exited (code {transport.returncode})")

        self._request_id += 1
        request = JsonRpcRequest(id=self._request_id, method=method, params=params)
        # Fail before registering: an unencodable request never reaches the server
        try:
            encode_message(request.to_dict())
        except (TypeError, ValueError) as e:
            raise InvalidRequest(f"Cannot encode {method} request: {e}") from e

        if timeout is None:
            timeout = self.call_timeout
        future = self._pending.register(request.id, timeout, method)
        try:
            await transport.send(request.to_dict())
        except TransportClosed as e:
            self._pending.reject(request.id, e)
        else:
            logger.debug(f"[{self.name}] Sent {method} request (id={request.id})")
        return await future

    async def notify(self, method: str, params: dict[str, Any] | None = None) -> None:
        if self._transport is None:
            raise TransportClosed(f"{self.name} is not running")
        await self._transport.send(JsonRpcNotification(method, params).to_dict())

    async def call_tool(
        self,
        tool_name: str,
        arguments: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> ToolCallResult:
        """
        Call a tool. Never raises: failures come back with is_error=True.

        A timeout, transport failure or JSON-RPC error marks the session
        disconnected. A result with isError set by the server does not,
        and neither do arguments that cannot be encoded.
        """
        try:
            result = await self.request(
                "tools/call",
                {"name": tool_name, "arguments": arguments or {}},
                timeout=timeout,
            )
        except InvalidRequest as e:
            logger.warning(f"Tool call {self.name}/{tool_name} not sent: {e}")
            return ToolCallResult.failure(f"Tool call failed: {e}")
        except Exception as e:
            self.connected = False
            self.last_error = str(e)
            logger.warning(f"Tool call {self.name}/{tool_name} failed: {e}")
            message = str(e) if isinstance(e, RemoteError) else format_error(e)
            return ToolCallResult.failure(f"Tool call failed: {message}")

        return ToolCallResult.from_dict(result)

    # ── inbound ─────────────────────────────────────────────

    async def _read_loop(self) -> None:
        try:
            async for message in read_messages(self._transport.stdout, self.name):
                self._inbox.put_nowait(message)
        finally:
            self._inbox.put_nowait(None)

    async def _dispatch_loop(self) -> None:
        while True:
            message = await self._inbox.get()
            if message is None:
                break
            try:
                await self._dispatch(message)
            except Exception:
                logger.exception(f"[{self.name}] Error dispatching message")
        await self._on_stdout_closed()

    async def _dispatch(self, message: dict[str, Any]) -> None:
        if JsonRpcResponse.is_response(message):
            response = JsonRpcResponse.from_dict(message)
            if not isinstance(response.id, int):
                logger.debug(f"[{self.name}] Ignoring response with id {response.id!r}")
                return
            if response.is_error:
                self._pending.reject(response.id, RemoteError.from_dict(response.error))
            else:
                self._pending.resolve(response.id, response.result)
            return

        method = message.get("method")
        if not isinstance(method, str):
            logger.debug(f"[{self.name}] Ignoring message without method or id")
            return
        if "id" in message:
            await self._answer(message["id"], method)
        else:
            logger.debug(f"[{self.name}] Notification: {method}")

    async def _answer(self, request_id: Any, method: str) -> None:
        """Reply to a server-initiated request (only ping is supported)."""
        reply: dict[str, Any] = {"jsonrpc": "2.0", "id": request_id}
        if method == "ping":
            reply["result"] = {}
        else:
            reply["error"] = {"code": -32601, "message": f"Method not found: {method}"}
        try:
            await self._transport.send(reply)
        except TransportClosed as e:
            logger.debug(f"[{self.name}] Could not answer {method}: {e}")

    async def _on_stdout_closed(self) -> None:
        code = await self._transport.wait_exit(EXIT_GRACE)
        reason = (
            f"Server process exited (code {code})" if code is not None
            else "Server closed its output stream"
        )
        tail = self._transport.stderr_tail.strip()
        if tail:
            reason = f"{reason}: {tail[-200:]}"

        if not self._closing:
            self.connected = False
            self.last_error = self.last_error or reason
        self._pending.reject_all(lambda: TransportClosed(reason))

    def _on_exit(self, code: int) -> None:
        if self._closing:
            return
        self.connected = False
        if code != 0:
            tail = self._transport.stderr_tail if self._transport else ""
            self.last_error = tail or f"Server process exited (code {code})"
            logger.warning(f"Server {self.name} exited with code {code}")
        else:
            logger.info(f"Server {self.name} exited")
