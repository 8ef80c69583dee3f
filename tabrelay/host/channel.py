"""The automation channel: one duplex stream of length-prefixed JSON frames.

Both ends use the same class. The host forwards gateway commands with
``request()`` and the session manager answers them through its handler; the
session manager can also ``request()`` unsolicited commands (ping/version) that
the host answers itself.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Awaitable, Callable, Optional

from ..config import REQUEST_TIMEOUT_SECONDS
from ..errors import ChannelDisconnectedError, RelayError, ValidationError
from ..protocol.codec import FrameTooLargeError, read_frame, write_frame
from .pending import PendingRequests

logger = logging.getLogger(__name__)

CommandHandler = Callable[[str, dict], Awaitable[Any]]


class AutomationChannel:
    """Correlates requests and responses over a single reader/writer pair."""

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        handler: Optional[CommandHandler] = None,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        name: str = "channel",
    ):
        self.name = name
        self.pending = PendingRequests(timeout)
        self._reader = reader
        self._writer = writer
        self._handler = handler
        self._write_lock = asyncio.Lock()
        self._connected = True
        self._tasks: set[asyncio.Task] = set()

    @property
    def connected(self) -> bool:
        return self._connected

    async def send(self, message: dict[str, Any]) -> None:
        if not self._connected:
            raise ChannelDisconnectedError()
        try:
            async with self._write_lock:
                await write_frame(self._writer, message)
        except (ConnectionError, RuntimeError) as e:
            raise ChannelDisconnectedError(f"Automation channel disconnected: {e}") from e

    async def request(self, command: str, params: Optional[dict] = None) -> Any:
        """Send a command and wait for its correlated response.

        Raises ``RelayTimeoutError`` when no response arrives in time,
        ``ChannelDisconnectedError`` when the stream drops first, and
        ``RelayError`` carrying the remote message when the far end reports failure.
        """
        if not self._connected:
            raise ChannelDisconnectedError()

        request_id = uuid.uuid4().hex
        future = self.pending.register(request_id, command)
        try:
            await self.send({"id": request_id, "type": "command", "command": command, "params": params or {}})
        except ChannelDisconnectedError:
            future.cancel()
            raise

        logger.debug(f"[{self.name}] -> {command} ({request_id})")
        response = await future
        if not response.get("success"):
            raise RelayError(response.get("error") or "Unknown error")
        return response.get("result")

    async def run(self) -> None:
        """Read frames until EOF, then fail everything still waiting."""
        try:
            while True:
                try:
                    message = await read_frame(self._reader)
                except FrameTooLargeError as e:
                    logger.error(f"[{self.name}] {e}; dropping connection")
                    break
                except ValidationError as e:
                    logger.warning(f"[{self.name}] Dropping malformed frame: {e}")
                    continue
                except ConnectionError as e:
                    logger.warning(f"[{self.name}] Read failed: {e}")
                    break

                if message is None:
                    logger.info(f"[{self.name}] Peer disconnected (EOF)")
                    break
                self._dispatch(message)
        finally:
            self._connected = False
            self.pending.fail_all(ChannelDisconnectedError())

    async def close(self) -> None:
        self._connected = False
        for task in list(self._tasks):
            task.cancel()
        try:
            self._writer.close()
        except RuntimeError:
            pass
        self.pending.fail_all(ChannelDisconnectedError())

    def _dispatch(self, message: dict[str, Any]):
        request_id = message.get("id")

        if "success" in message and request_id is not None:
            if not self.pending.resolve(str(request_id), message):
                logger.debug(f"[{self.name}] Response for unknown or expired id {request_id}")
            return

        command = message.get("command")
        if not command:
            logger.warning(f"[{self.name}] Ignoring frame without id or command: {str(message)[:200]}")
            return

        params = message.get("params") or {}
        task = asyncio.create_task(self._serve(request_id, command, params))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _serve(self, request_id, command: str, params: dict):
        if self._handler is None:
            reply = {"id": request_id, "success": False, "error": f"Unknown command: {command}"}
        else:
            try:
                result = await self._handler(command, params)
                reply = {"id": request_id, "success": True, "result": result}
            except RelayError as e:
                reply = {"id": request_id, "success": False, "error": str(e)}
            except Exception as e:
                logger.exception(f"[{self.name}] Command {command} failed")
                reply = {"id": request_id, "success": False, "error": str(e) or type(e).__name__}

        if request_id is None:
            return
        try:
            await self.send(reply)
        except ChannelDisconnectedError:
            logger.warning(f"[{self.name}] Could not deliver response for {command}: channel closed")
