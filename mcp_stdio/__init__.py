"""
MCP stdio client — local tool-server infrastructure for an agent CLI.

Architecture:
    ┌──────────────┐     stdio      ┌──────────────┐
    │  Agent CLI   │ ──────────── │  Tool Server  │
    │ (manager)    │  JSON-RPC    │  (subprocess) │
    └──────────────┘     pipes     └──────────────┘

Each tool server is a standalone process that communicates via
stdin/stdout using newline-delimited JSON-RPC 2.0 (the MCP protocol).

StdioTransport supervises the process. ServerSession runs the
handshake and correlates requests with responses by id.
ToolServerManager owns all sessions, reconnects on demand, and is the
API the rest of the application uses.
"""

from mcp_stdio.config import McpConfig, ServerConfig
from mcp_stdio.errors import (
    ErrorKind,
    McpError,
    classify_error,
    format_error,
    is_occupied_error,
)
from mcp_stdio.manager import ToolServerManager
from mcp_stdio.types import ContentItem, ServerState, ServerStatus, Tool, ToolCallResult

__version__ = "0.1.0"


# Bridge requires langchain — lazy import to keep the client standalone
def mcp_to_langchain_tool(*args, **kwargs):
    from mcp_stdio.bridge import mcp_to_langchain_tool as _impl
    return _impl(*args, **kwargs)


def langchain_tools(*args, **kwargs):
    from mcp_stdio.bridge import langchain_tools as _impl
    return _impl(*args, **kwargs)


__all__ = [
    "ContentItem",
    "ErrorKind",
    "McpConfig",
    "McpError",
    "ServerConfig",
    "ServerState",
    "ServerStatus",
    "Tool",
    "ToolCallResult",
    "ToolServerManager",
    "classify_error",
    "format_error",
    "is_occupied_error",
    "langchain_tools",
    "mcp_to_langchain_tool",
]
