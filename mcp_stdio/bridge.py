"""
Bridge between MCP tool servers and LangChain agents.

This module exposes the tools of connected MCP servers as LangChain
StructuredTools, so an agent loop can call them like any other tool.

Usage:
    from mcp_stdio.bridge import mcp_to_langchain_tool, langchain_tools

    # Single tool
    lc_tool = mcp_to_langchain_tool(manager, "filesystem", read_file_tool)

    # All tools from all connected servers
    tools = langchain_tools(manager)
"""

from __future__ import annotations

import json
import re
from typing import Any

from langchain_core.tools import StructuredTool

from mcp_stdio.manager import ToolServerManager
from mcp_stdio.types import Tool, ToolCallResult


def tool_id(server_name: str, tool_name: str) -> str:
    """Agent-facing name: letters, digits, _ and - only, at most 64 chars."""
    return re.sub(r"[^a-zA-Z0-9_-]", "_", f"{server_name}__{tool_name}")[:64]


def result_to_text(result: ToolCallResult) -> str:
    """Flatten a tool result into the string handed back to the model."""
    parts = []
    for item in result.content:
        if item.type == "text" and item.text is not None:
            parts.append(item.text)
        elif item.type == "image":
            parts.append(f"[image: {item.mime_type or 'unknown type'}]")
        elif item.type == "resource" and item.resource is not None:
            parts.append(item.resource.get("text") or json.dumps(item.resource))
    text = "\n".join(parts)
    return f"Error: {text}" if result.is_error else text


def mcp_to_langchain_tool(
    manager: ToolServerManager,
    server_name: str,
    tool: Tool,
    description_override: str | None = None,
) -> StructuredTool:
    """
    Create a LangChain StructuredTool that proxies to an MCP tool.

    Args:
        manager: The ToolServerManager owning the server
        server_name: Which server the tool lives on
        tool: The tool as advertised by tools/list
        description_override: Optional override for the tool description

    Returns:
        A StructuredTool whose coroutine calls manager.call_tool().
    """
    description = description_override or tool.description or f"MCP tool: {server_name}/{tool.name}"

    async def _call_mcp(**kwargs: Any) -> str:
        result = await manager.call_tool(server_name, tool.name, kwargs)
        return result_to_text(result)

    schema = tool.input_schema if tool.input_schema.get("type") == "object" else {
        "type": "object",
        "properties": {},
        "additionalProperties": True,
    }

    return StructuredTool.from_function(
        coroutine=_call_mcp,
        name=tool_id(server_name, tool.name),
        description=description,
        args_schema=schema,
    )


def langchain_tools(manager: ToolServerManager) -> list[StructuredTool]:
    """Wrap every tool of every connected server."""
    return [
        mcp_to_langchain_tool(manager, server_name, tool)
        for server_name, tools in manager.get_all_tools().items()
        for tool in tools
    ]
