"""Correlation table for requests waiting on the automation channel."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional

from ..config import REQUEST_TIMEOUT_SECONDS
from ..errors import RelayTimeoutError

logger = logging.getLogger(__name__)


@dataclass
class PendingRequest:
    request_id: str
    command: str
    future: asyncio.Future
    timer: asyncio.TimerHandle
    deadline: float


class PendingRequests:
    """Maps correlation ids to futures, each guarded by one deadline timer.

    A request leaves the table exactly once: through ``resolve`` (timer
    cancelled), through its timer firing, through ``fail_all``, or because the
    waiting caller went away.
    """

    def __init__(self, timeout: float = REQUEST_TIMEOUT_SECONDS):
        self.timeout = timeout
        self._pending: dict[str, PendingRequest] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._pending

    def register(self, request_id: str, command: str = "", timeout: Optional[float] = None) -> asyncio.Future:
        if request_id in self._pending:
            raise ValueError(f"Duplicate correlation id: {request_id}")

        loop = asyncio.get_running_loop()
        delay = self.timeout if timeout is None else timeout
        future = loop.create_future()
        timer = loop.call_later(delay, self._expire, request_id)
        self._pending[request_id] = PendingRequest(
            request_id=request_id,
            command=command,
            future=future,
            timer=timer,
            deadline=loop.time() + delay,
        )
        future.add_done_callback(lambda f: self._discard(request_id, f))
        return future

    def resolve(self, request_id: str, message: dict[str, Any]) -> bool:
        """Complete a request with its response frame. False if unknown or already gone."""
        entry = self._pending.pop(request_id, None)
        if entry is None:
            return False
        entry.timer.cancel()
        if not entry.future.done():
            entry.future.set_result(message)
        return True

    def fail_all(self, exc: Exception) -> int:
        entries = list(self._pending.values())
        self._pending.clear()
        for entry in entries:
            entry.timer.cancel()
            if not entry.future.done():
                entry.future.set_exception(exc)
        if entries:
            logger.warning(f"Failed {len(entries)} pending request(s): {exc}")
        return len(entries)

    def _expire(self, request_id: str):
        entry = self._pending.pop(request_id, None)
        if entry is None:
            return
        logger.warning(f"Request {request_id} ({entry.command}) timed out")
        if not entry.future.done():
            entry.future.set_exception(RelayTimeoutError())

    def _discard(self, request_id: str, future: asyncio.Future):
        # Caller cancelled (e.g. client disconnected); drop the entry and its timer
        entry = self._pending.get(request_id)
        if entry is not None and entry.future is future and future.cancelled():
            del self._pending[request_id]
            entry.timer.cancel()
