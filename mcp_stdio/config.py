"""
MCP server configuration.

The config file uses the same shape as other MCP clients:

    {
      "mcpServers": {
        "filesystem": {
          "command": "npx",
          "args": ["-y", "@modelcontextprotocol/server-filesystem", "/tmp"],
          "env": {"DEBUG": "1"},
          "cwd": "/tmp"
        }
      }
    }

A missing file is not an error: it simply means no servers.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from mcp_stdio.errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "MCP_STDIO_CONFIG"
DEFAULT_CONFIG_PATH = Path.home() / ".paean" / "mcp_config.json"


def default_config_path() -> Path:
    override = os.environ.get(CONFIG_ENV_VAR)
    return Path(override).expanduser() if override else DEFAULT_CONFIG_PATH


@dataclass(frozen=True)
class ServerConfig:
    """How to launch one tool server."""
    command: str
    args: tuple[str, ...] = ()
    env: Mapping[str, str] | None = None
    cwd: str | None = None

    @classmethod
    def from_dict(cls, name: str, data: Any) -> "ServerConfig":
        if not isinstance(data, dict):
            raise ConfigError(f"{name}: server entry must be an object")

        command = data.get("command")
        if not isinstance(command, str) or not command:
            raise ConfigError(f"{name}: 'command' must be a non-empty string")

        args = data.get("args", [])
        if not isinstance(args, list) or not all(isinstance(a, str) for a in args):
            raise ConfigError(f"{name}: 'args' must be a list of strings")

        env = data.get("env")
        if env is not None and not (
            isinstance(env, dict)
            and all(isinstance(k, str) and isinstance(v, str) for k, v in env.items())
        ):
            raise ConfigError(f"{name}: 'env' must map strings to strings")

        cwd = data.get("cwd")
        if cwd is not None and not isinstance(cwd, str):
            raise ConfigError(f"{name}: 'cwd' must be a string")

        return cls(command=command, args=tuple(args), env=env, cwd=cwd)

    def describe(self) -> str:
        return " ".join([self.command, *self.args])


@dataclass(frozen=True)
class McpConfig:
    servers: dict[str, ServerConfig] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "McpConfig":
        """Build a config, skipping (and logging) malformed server entries."""
        raw = data.get("mcpServers") if isinstance(data, dict) else None
        if not isinstance(raw, dict):
            return cls()

        servers: dict[str, ServerConfig] = {}
        for name, entry in raw.items():
            try:
                servers[name] = ServerConfig.from_dict(name, entry)
            except ConfigError as e:
                logger.warning(f"Skipping MCP server entry: {e}")
        return cls(servers=servers)

    @classmethod
    def load(cls, path: str | Path | None = None) -> "McpConfig":
        """
        Read the config file.

        Args:
            path: Config location (default: $MCP_STDIO_CONFIG or ~/.paean/mcp_config.json)

        Returns:
            The parsed config; empty when the file is absent or unreadable.
        """
        config_path = Path(path).expanduser() if path else default_config_path()
        if not config_path.exists():
            logger.debug(f"Config file not found: {config_path}")
            return cls()

        try:
            data = json.loads(config_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to load MCP config {config_path}: {e}")
            return cls()

        return cls.from_dict(data)
