"""
mcp-stdio — inspect and exercise the MCP servers in your config.

Usage:
    # Configured servers
    mcp-stdio list

    # Connect to everything and show what came up
    mcp-stdio status

    # Tools of one or more servers
    mcp-stdio tools filesystem

    # Call a tool
    mcp-stdio call filesystem read_file --args '{"path": "/tmp/notes.txt"}'

    # Other config file, debug logging, prefer bunx over npx
    mcp-stdio --config ./mcp_config.json --verbose --prefer-bunx status
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from mcp_stdio.config import McpConfig
from mcp_stdio.errors import McpError, format_error
from mcp_stdio.manager import ToolServerManager
from mcp_stdio.resolver import PassthroughResolver, PreferBunxResolver
from mcp_stdio.session import DEFAULT_CALL_TIMEOUT, DEFAULT_HANDSHAKE_TIMEOUT

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mcp-stdio",
        description="Connect to local MCP tool servers over stdio.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  mcp-stdio list
  mcp-stdio status
  mcp-stdio call echo echo --args '{"text": "hi"}'
        """,
    )
    parser.add_argument("--config", "-c", type=str, default=None, help="MCP config file (default: ~/.paean/mcp_config.json)")
    parser.add_argument("--timeout", type=float, default=DEFAULT_CALL_TIMEOUT, help="Tool call timeout in seconds")
    parser.add_argument("--handshake-timeout", type=float, default=DEFAULT_HANDSHAKE_TIMEOUT, help="Per-step handshake timeout in seconds")
    parser.add_argument("--prefer-bunx", action="store_true", help="Launch npx servers with bunx when available")
    parser.add_argument("--verbose", "-v", action="store_true", help="Show debug output")

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("list", help="List configured servers")
    sub.add_parser("status", help="Connect to all servers and report status")

    tools = sub.add_parser("tools", help="List tools of servers")
    tools.add_argument("servers", nargs="*", help="Servers to query (default: all)")

    call = sub.add_parser("call", help="Call a tool")
    call.add_argument("server", help="Server name")
    call.add_argument("tool", help="Tool name")
    call.add_argument("--args", "-a", type=str, default="{}", help="Tool arguments as a JSON object")
    call.add_argument("--json", action="store_true", help="Print the raw result as JSON")

    return parser


async def connect_servers(manager: ToolServerManager, names: list[str]) -> None:
    """Connect to each server, reporting failures without stopping."""
    for name in names:
        try:
            tools = await manager.connect(name)
            logger.info(f"  [{name}] connected — {len(tools)} tools")
        except McpError as e:
            print(f"⚠  Failed to connect to MCP server: {format_error(e, name)}")


async def run(args: argparse.Namespace) -> int:
    config = McpConfig.load(args.config)
    manager = ToolServerManager(
        config,
        resolver=PreferBunxResolver() if args.prefer_bunx else PassthroughResolver(),
        handshake_timeout=args.handshake_timeout,
        call_timeout=args.timeout,
    )

    # Leaving this block (normally, on error, or on Ctrl+C cancellation)
    # stops every server process
    async with manager:
        # ── list ──────────────────────────────────────────
        if args.command == "list":
            names = manager.list_servers()
            if not names:
                print("No MCP servers configured.")
            for name in names:
                print(f"  {name:<24} {config.servers[name].describe()}")
            return 0

        # ── status ────────────────────────────────────────
        if args.command == "status":
            await connect_servers(manager, manager.list_servers())
            for status in manager.server_status():
                line = f"  {status.name:<24} {status.state.value:<13} {len(status.tools)} tools"
                if status.error:
                    line += f"  ({format_error(status.error)})"
                print(line)
            print(f"\nTotal tools: {manager.get_total_tool_count()}")
            return 0

        # ── tools ─────────────────────────────────────────
        if args.command == "tools":
            await connect_servers(manager, args.servers or manager.list_servers())
            for name, tools in manager.get_all_tools().items():
                print(f"[{name}]")
                for tool in tools:
                    print(f"    {tool.name:<30} {tool.description or ''}")
                print()
            return 0

        # ── call ──────────────────────────────────────────
        try:
            arguments = json.loads(args.args)
        except json.JSONDecodeError as e:
            print(f"Error: --args is not valid JSON: {e}")
            return 2
        if not isinstance(arguments, dict):
            print("Error: --args must be a JSON object")
            return 2

        result = await manager.call_tool(args.server, args.tool, arguments)
        if args.json:
            print(json.dumps(result.to_dict(), indent=2))
        else:
            print(result.text)
        return 1 if result.is_error else 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        print("\nMCP servers stopped.")
        return 130


if __name__ == "__main__":
    sys.exit(main())
