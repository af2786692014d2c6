from __future__ import annotations

import sys
from pathlib import Path
from typing import Callable

import pytest

from mcp_stdio.config import McpConfig, ServerConfig
from mcp_stdio.manager import ToolServerManager

FAKE_SERVER = Path(__file__).with_name("fake_server.py")


@pytest.fixture
def fake_config() -> Callable[..., ServerConfig]:
    """ServerConfig launching tests/fake_server.py with the given flags."""

    def _make(*flags: str) -> ServerConfig:
        return ServerConfig(command=sys.executable, args=(str(FAKE_SERVER), *flags))

    return _make


@pytest.fixture
def make_manager() -> Callable[..., ToolServerManager]:
    def _make(servers: dict[str, ServerConfig], **kwargs) -> ToolServerManager:
        kwargs.setdefault("settle_delay", 0)
        return ToolServerManager(McpConfig(servers=servers), **kwargs)

    return _make


@pytest.fixture
def counter_file(tmp_path: Path) -> Path:
    return tmp_path / "starts.txt"


@pytest.fixture
def start_count(counter_file: Path) -> Callable[[], int]:
    """How many times a fake server was launched with --counter-file."""

    def _count() -> int:
        return len(counter_file.read_text().splitlines()) if counter_file.exists() else 0

    return _count
