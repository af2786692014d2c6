"""
Correlation of outgoing request ids with their pending completions.

Each registered id gets a future and a deadline timer. Whichever event
comes first (response, rejection, timeout, caller cancellation) removes
the entry; later events for the same id find nothing and are dropped.
All methods must be called from the event loop thread.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Generic, TypeVar

from mcp_stdio.errors import RequestTimeout

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class _Pending(Generic[T]):
    future: asyncio.Future[T]
    timer: asyncio.TimerHandle
    label: str


class CorrelationTable(Generic[T]):
    """Map of request id → pending future with a per-request deadline."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None):
        self._loop = loop or asyncio.get_running_loop()
        self._pending: dict[int, _Pending[T]] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._pending

    def register(self, request_id: int, timeout: float, label: str = "request") -> asyncio.Future[T]:
        """
        Start tracking a request.

        Args:
            request_id: Id written on the outgoing request
            timeout: Seconds until the future fails with RequestTimeout
            label: Method name, used in the timeout message

        Returns:
            Future settled by resolve(), reject() or the deadline.
        """
        if request_id in self._pending:
            raise ValueError(f"Request id {request_id} is already pending")

        future: asyncio.Future[T] = self._loop.create_future()
        timer = self._loop.call_later(timeout, self._expire, request_id, timeout)
        self._pending[request_id] = _Pending(future, timer, label)
        future.add_done_callback(lambda f, rid=request_id: self._on_done(rid, f))
        return future

    def resolve(self, request_id: int, value: T) -> bool:
        entry = self._take(request_id)
        if entry is None:
            logger.debug(f"Discarding response for unknown request id {request_id}")
            return False
        if not entry.future.done():
            entry.future.set_result(value)
        return True

    def reject(self, request_id: int, error: BaseException) -> bool:
        entry = self._take(request_id)
        if entry is None:
            logger.debug(f"Discarding error for unknown request id {request_id}: {error}")
            return False
        if not entry.future.done():
            entry.future.set_exception(error)
        return True

    def reject_all(self, error_factory: Callable[[], BaseException]) -> int:
        """Fail every pending request. Returns how many were settled."""
        count = 0
        for request_id in list(self._pending):
            if self.reject(request_id, error_factory()):
                count += 1
        return count

    def _take(self, request_id: int) -> _Pending[T] | None:
        entry = self._pending.pop(request_id, None)
        if entry is not None:
            entry.timer.cancel()
        return entry

    def _expire(self, request_id: int, timeout: float) -> None:
        entry = self._pending.pop(request_id, None)
        if entry is None:
            return
        logger.debug(f"Request {entry.label} (id={request_id}) timed out after {timeout:g}s")
        if not entry.future.done():
            entry.future.set_exception(RequestTimeout(entry.label, timeout))

    def _on_done(self, request_id: int, future: asyncio.Future[T]) -> None:
        # Caller gave up (task cancelled): drop the entry so its timer dies too
        if future.cancelled():
            self._take(request_id)
