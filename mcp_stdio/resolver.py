"""
Command resolution strategies.

A resolver rewrites the configured command just before spawn. The
default leaves it alone; PreferBunxResolver swaps npx for bunx when bunx
is on PATH (faster startup for Node-based servers).
"""

from __future__ import annotations

import logging
import shutil
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)


class CommandResolver(ABC):
    @abstractmethod
    def resolve(self, command: str) -> str:
        """Return the executable to launch for a configured command."""
        ...


class PassthroughResolver(CommandResolver):
    def resolve(self, command: str) -> str:
        return command


class PreferBunxResolver(CommandResolver):
    def resolve(self, command: str) -> str:
        if command == "npx" and shutil.which("bunx"):
            logger.debug("Using bunx instead of npx")
            return "bunx"
        return command
