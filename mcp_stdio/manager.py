"""
Tool Server Manager — owns the MCP server sessions for one CLI session.

The manager is the only thing the rest of the application talks to.
It knows which servers are configured, which are live, and reconnects
a dead server once when a tool call needs it.

Usage:
    async with ToolServerManager(McpConfig.load()) as manager:
        for name in manager.list_servers():
            try:
                await manager.connect(name)
            except McpError as e:
                print(format_error(e, name))

        result = await manager.call_tool("filesystem", "read_file", {"path": "/tmp/x"})
        if result.is_error:
            ...
    # every server process is stopped here, however the block exits
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from mcp_stdio.config import McpConfig
from mcp_stdio.errors import ServerNotConfigured, TransportClosed, format_error
from mcp_stdio.resolver import CommandResolver
from mcp_stdio.session import (
    DEFAULT_CALL_TIMEOUT,
    DEFAULT_HANDSHAKE_TIMEOUT,
    DEFAULT_SETTLE_DELAY,
    ServerSession,
)
from mcp_stdio.types import ServerState, ServerStatus, Tool, ToolCallResult

logger = logging.getLogger(__name__)


class ToolServerManager:
    """
    Manages the lifecycle of MCP tool server processes.

    Per server name:  absent → connecting → connected ⇄ disconnected

    - connect() either registers a fully handshaken session or leaves
      nothing behind
    - call_tool() never raises; a missing or dead session gets exactly
      one reconnect attempt
    - disconnect_all() is the teardown path (also run by __aexit__)
    """

    def __init__(
        self,
        config: McpConfig | None = None,
        *,
        resolver: CommandResolver | None = None,
        settle_delay: float = DEFAULT_SETTLE_DELAY,
        handshake_timeout: float = DEFAULT_HANDSHAKE_TIMEOUT,
        call_timeout: float = DEFAULT_CALL_TIMEOUT,
    ):
        self.config = config if config is not None else McpConfig.load()
        self.resolver = resolver
        self.settle_delay = settle_delay
        self.handshake_timeout = handshake_timeout
        self.call_timeout = call_timeout
        self._sessions: dict[str, ServerSession] = {}
        self._connecting: dict[str, asyncio.Task] = {}

    async def __aenter__(self) -> "ToolServerManager":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect_all()

    # ── connection management ───────────────────────────────

    def list_servers(self) -> list[str]:
        """Configured server names, whether or not they are running."""
        return list(self.config.servers)

    async def connect(self, name: str) -> list[Tool]:
        """
        Start a server and discover its tools.

        Concurrent calls for the same name share a single attempt.

        Returns:
            The server's tools.

        Raises:
            ServerNotConfigured, TransportClosed if disconnect_all() cancels
            the attempt, or whatever the handshake failed with.
        """
        if name not in self.config.servers:
            raise ServerNotConfigured(name)

        task = self._connecting.get(name)
        if task is None:
            task = asyncio.create_task(self._connect(name), name=f"mcp-connect-{name}")
            self._connecting[name] = task
            task.add_done_callback(lambda _t, n=name: self._connecting.pop(n, None))
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            # Only the caller's own cancellation propagates; a connect
            # cancelled by disconnect_all() is reported as a closed transport
            if not task.cancelled():
                raise
            raise TransportClosed(f"Connection to {name} was cancelled") from None

    async def _connect(self, name: str) -> list[Tool]:
        old = self._sessions.pop(name, None)
        if old is not None:
            await old.close()

        session = ServerSession(
            name,
            self.config.servers[name],
            resolver=self.resolver,
            settle_delay=self.settle_delay,
            handshake_timeout=self.handshake_timeout,
            call_timeout=self.call_timeout,
        )
        try:
            tools = await session.open()
        except Exception as e:
            logger.error(f"Failed to connect to {name}: {e}")
            raise

        self._sessions[name] = session
        logger.info(f"Started {name}: tools={[t.name for t in tools]}")
        return tools

    async def disconnect(self, name: str) -> None:
        """Stop a server and forget it."""
        session = self._sessions.pop(name, None)
        if session is not None:
            await session.close()
            logger.info(f"Stopped {name}")

    async def disconnect_all(self) -> None:
        """Stop all servers, including ones still connecting."""
        for task in list(self._connecting.values()):
            task.cancel()
        if self._connecting:
            await asyncio.gather(*self._connecting.values(), return_exceptions=True)

        names = list(self._sessions)
        await asyncio.gather(*(self.disconnect(n) for n in names), return_exceptions=True)

    # ── tool calls ──────────────────────────────────────────

    async def call_tool(
        self,
        name: str,
        tool_name: str,
        arguments: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> ToolCallResult:
        """
        Call a tool on a server, reconnecting once if needed.

        Args:
            name: Which server to call
            tool_name: Which tool on that server
            arguments: Tool parameters
            timeout: Seconds to wait (default: the manager's call_timeout)

        Returns:
            The tool result; failures are is_error=True with a message.
        """
        if name not in self.config.servers:
            return ToolCallResult.failure(str(ServerNotConfigured(name)))

        session = self._sessions.get(name)
        if session is None or not session.is_connected:
            logger.info(f"Server {name} not connected, attempting reconnect...")
            try:
                await self.connect(name)
            except Exception as e:
                return ToolCallResult.failure(
                    f'Failed to reconnect to "{name}": {format_error(e)}'
                )
            session = self._sessions.get(name)
            if session is None or not session.is_connected:
                return ToolCallResult.failure(f'Server "{name}" not available')

        logger.debug(f"Calling tool '{tool_name}' on server '{name}' with args: {arguments}")
        return await session.call_tool(tool_name, arguments, timeout)

    # ── status ──────────────────────────────────────────────

    def get_session(self, name: str) -> ServerSession | None:
        return self._sessions.get(name)

    def state(self, name: str) -> ServerState:
        if name in self._connecting:
            return ServerState.CONNECTING
        session = self._sessions.get(name)
        if session is None:
            return ServerState.ABSENT
        return ServerState.CONNECTED if session.is_connected else ServerState.DISCONNECTED

    def is_server_connected(self, name: str) -> bool:
        return self.state(name) is ServerState.CONNECTED

    def get_server_error(self, name: str) -> str | None:
        session = self._sessions.get(name)
        return session.last_error if session else None

    def get_connected_servers(self) -> list[str]:
        return [n for n, s in self._sessions.items() if s.is_connected]

    def get_all_tools(self) -> dict[str, list[Tool]]:
        """Tools of every connected server, keyed by server name."""
        return {n: list(s.tools) for n, s in self._sessions.items() if s.is_connected}

    def get_total_tool_count(self) -> int:
        return sum(len(tools) for tools in self.get_all_tools().values())

    def server_status(self) -> list[ServerStatus]:
        """Status of every configured server, for display."""
        statuses = []
        for name in self.list_servers():
            state = self.state(name)
            session = self._sessions.get(name)
            statuses.append(ServerStatus(
                name=name,
                state=state,
                tools=list(session.tools) if state is ServerState.CONNECTED else [],
                error=session.last_error if session and state is not ServerState.CONNECTED else None,
            ))
        return statuses
