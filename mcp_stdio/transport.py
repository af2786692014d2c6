"""
Transport layer for MCP tool communication.

Implements:
  - JSON-RPC 2.0 message types (request, notification, response)
  - StdioTransport: a supervised child process whose stdin/stdout carry
    newline-delimited JSON-RPC (MCP's native local transport)

The transport only moves lines. Request/response correlation lives in
ServerSession; see session.py.
"""

from __future__ import annotations

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Sequence

from mcp_stdio.codec import STREAM_LIMIT, encode_message
from mcp_stdio.errors import SpawnError, TransportClosed

logger = logging.getLogger(__name__)

# How much trailing stderr to keep for diagnostics
STDERR_TAIL_CHARS = 500


@dataclass
class JsonRpcRequest:
    """JSON-RPC 2.0 request."""
    id: int
    method: str
    params: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        message: dict[str, Any] = {"jsonrpc": "2.0", "id": self.id, "method": self.method}
        if self.params is not None:
            message["params"] = self.params
        return message


@dataclass
class JsonRpcNotification:
    """JSON-RPC 2.0 notification (no id, no reply)."""
    method: str
    params: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        message: dict[str, Any] = {"jsonrpc": "2.0", "method": self.method}
        if self.params is not None:
            message["params"] = self.params
        return message


@dataclass
class JsonRpcResponse:
    """JSON-RPC 2.0 response."""
    id: Any
    result: Any = None
    error: dict | None = None

    @classmethod
    def from_dict(cls, message: dict[str, Any]) -> "JsonRpcResponse":
        error = message.get("error")
        return cls(
            id=message.get("id"),
            result=message.get("result"),
            error=error if isinstance(error, dict) else None,
        )

    @staticmethod
    def is_response(message: dict[str, Any]) -> bool:
        return "id" in message and "method" not in message and (
            "result" in message or "error" in message
        )

    @property
    def is_error(self) -> bool:
        return self.error is not None


class Transport(ABC):
    """Abstract line transport to a single tool server."""

    @abstractmethod
    async def start(self) -> None:
        """Start the transport (e.g., launch subprocess)."""
        ...

    @abstractmethod
    async def send(self, message: dict[str, Any]) -> None:
        """Write one message."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Stop the transport (e.g., terminate subprocess)."""
        ...

    @abstractmethod
    def is_alive(self) -> bool:
        """Check if the transport is active."""
        ...


class StdioTransport(Transport):
    """
    JSON-RPC over stdin/stdout pipes to a subprocess.

    The tool server runs as a child process. We write JSON-RPC messages
    to its stdin and expose its stdout as a StreamReader. stderr is
    drained into a bounded tail buffer used only for error reports.
    When the process exits, on_exit(returncode) is called from the loop.
    """

    def __init__(
        self,
        command: str,
        args: Sequence[str] = (),
        env: dict[str, str] | None = None,
        cwd: str | None = None,
        label: str = "",
        on_exit: Callable[[int], None] | None = None,
    ):
        """
        Args:
            command: Executable to launch (already resolved)
            args: Command-line arguments
            env: Extra environment variables, merged over os.environ
            cwd: Working directory for the child
            label: Server name used in log lines
            on_exit: Called with the return code once the process exits
        """
        self.command = command
        self.args = list(args)
        self.env = env
        self.cwd = cwd
        self.label = label or command
        self.on_exit = on_exit
        self._process: asyncio.subprocess.Process | None = None
        self._stderr_tail = ""
        self._stderr_task: asyncio.Task | None = None
        self._exit_task: asyncio.Task | None = None

    @property
    def stdout(self) -> asyncio.StreamReader:
        if self._process is None or self._process.stdout is None:
            raise TransportClosed("Transport not running. Call start() first.")
        return self._process.stdout

    @property
    def returncode(self) -> int | None:
        return self._process.returncode if self._process else None

    @property
    def stderr_tail(self) -> str:
        return self._stderr_tail

    async def start(self) -> None:
        """Launch the tool server subprocess."""
        if self.is_alive():
            logger.warning("Transport already running, stopping first")
            await self.stop()

        if self.cwd and not os.path.isdir(self.cwd):
            raise SpawnError(f"Working directory does not exist: {self.cwd}")

        logger.info(f"Starting stdio transport: {' '.join([self.command, *self.args])}")
        try:
            self._process = await asyncio.create_subprocess_exec(
                self.command,
                *self.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env={**os.environ, **self.env} if self.env else None,
                cwd=self.cwd,
                limit=STREAM_LIMIT,
            )
        except FileNotFoundError as e:
            raise SpawnError(
                f"Command not found: {self.command} (ENOENT)", missing=True
            ) from e
        except OSError as e:
            raise SpawnError(f"Failed to start {self.command}: {e}") from e

        self._stderr_tail = ""
        self._stderr_task = asyncio.create_task(self._pump_stderr())
        self._exit_task = asyncio.create_task(self._watch_exit())

    def is_alive(self) -> bool:
        """Check if the subprocess is running."""
        return self._process is not None and self._process.returncode is None

    async def send(self, message: dict[str, Any]) -> None:
        """Write one JSON-RPC message as a line on the child's stdin."""
        if not self.is_alive():
            raise TransportClosed(f"Server process has exited (code {self.returncode})")

        stdin = self._process.stdin
        try:
            stdin.write(encode_message(message))
            await stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise TransportClosed(f"Failed to write to stdin: {e}") from e

    async def wait_exit(self, timeout: float) -> int | None:
        """Wait up to `timeout` seconds for exit; returns the code or None."""
        if self._exit_task is None:
            return self.returncode
        try:
            await asyncio.wait_for(asyncio.shield(self._exit_task), timeout)
        except asyncio.TimeoutError:
            return None
        return self.returncode

    async def stop(self, timeout: float = 5.0) -> None:
        """Terminate the tool server subprocess."""
        proc = self._process
        if proc is None:
            return

        if proc.stdin and not proc.stdin.is_closing():
            proc.stdin.close()

        if proc.returncode is None:
            try:
                proc.terminate()
            except ProcessLookupError:
                pass
            try:
                await asyncio.wait_for(proc.wait(), timeout)
            except asyncio.TimeoutError:
                logger.warning(f"[{self.label}] did not exit after {timeout:g}s, killing")
                proc.kill()
                await proc.wait()

        if self._exit_task is not None:
            await asyncio.gather(self._exit_task, return_exceptions=True)
        # A grandchild may still hold stderr open
        if self._stderr_task is not None and not self._stderr_task.done():
            self._stderr_task.cancel()
            await asyncio.gather(self._stderr_task, return_exceptions=True)
        logger.info(f"Stdio transport stopped: {self.label}")

    async def _pump_stderr(self) -> None:
        stream = self._process.stderr
        while True:
            chunk = await stream.read(4096)
            if not chunk:
                return
            text = chunk.decode("utf-8", errors="replace")
            logger.debug(f"[{self.label} stderr] {text.strip()}")
            self._stderr_tail = (self._stderr_tail + text)[-STDERR_TAIL_CHARS:]

    async def _watch_exit(self) -> None:
        code = await self._process.wait()
        # Let the stderr pump catch up so the tail includes the last words
        if self._stderr_task is not None:
            try:
                await asyncio.wait_for(asyncio.shield(self._stderr_task), 1.0)
            except asyncio.TimeoutError:
                pass
        logger.debug(f"Process {self.label} exited with code {code}")
        if self.on_exit is not None:
            self.on_exit(code)
