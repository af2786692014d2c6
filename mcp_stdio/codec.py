"""
Line codec for newline-delimited JSON-RPC over process pipes.

One line = one message. Servers launched through package runners
(npx, uvx, ...) often print banners or progress text on stdout, so any
line that is not a JSON object is dropped with a debug log instead of
breaking the reader.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator

logger = logging.getLogger(__name__)

# asyncio's default StreamReader limit (64 KiB) is too small for large tool results
STREAM_LIMIT = 16 * 1024 * 1024


def encode_message(message: dict[str, Any]) -> bytes:
    """Serialize one message as a single UTF-8 line."""
    return (json.dumps(message, separators=(",", ":")) + "\n").encode("utf-8")


def decode_line(line: bytes | str, label: str = "") -> dict[str, Any] | None:
    """
    Parse one stdout line.

    Returns:
        The decoded JSON object, or None for blank lines, non-JSON noise
        and malformed JSON.
    """
    if isinstance(line, bytes):
        line = line.decode("utf-8", errors="replace")
    text = line.strip()
    if not text:
        return None

    if not text.startswith("{"):
        logger.debug(f"[{label}] Non-JSON: {text[:80]}")
        return None

    try:
        message = json.loads(text)
    except json.JSONDecodeError as e:
        logger.debug(f"[{label}] JSON parse error: {e}")
        return None

    if not isinstance(message, dict):
        return None
    return message


async def read_messages(
    stream: asyncio.StreamReader,
    label: str = "",
) -> AsyncIterator[dict[str, Any]]:
    """Yield decoded messages from a stream until EOF."""
    while True:
        try:
            raw = await stream.readline()
        except ValueError as e:
            # Line exceeded the stream limit; the reader has already skipped it
            logger.debug(f"[{label}] Dropping oversized line: {e}")
            continue
        if not raw:
            return
        message = decode_line(raw, label)
        if message is not None:
            yield message
