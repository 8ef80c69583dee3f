"""Command gateway: the local Unix-socket front door of the host.

Clients send newline-delimited JSON ``{command, params, authToken}`` and get one
``{success, result?, error?}`` line back per command. Each command is checked
against the auth token and the allow-list before anything downstream is touched.
Loop commands are answered locally; everything else is forwarded over the
automation channel.
"""

from __future__ import annotations

import asyncio
import hmac
import logging
import os
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError

from ..config import MAX_BUFFER_SIZE, SOCKET_PATH
from ..constants import ALLOWED_COMMANDS, LOOP_COMMANDS
from ..errors import AuthError, ChannelDisconnectedError, CommandNotAllowedError, RelayError, ValidationError
from ..models.protocol import GatewayRequest, GatewayResponse
from ..protocol.codec import BufferOverflowError, LineBuffer, decode_line, encode_line
from .channel import AutomationChannel
from .focus_loop import FocusLoop

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 64 * 1024


class CommandGateway:
    """Terminates local client connections and multiplexes them onto one channel."""

    def __init__(
        self,
        auth_token: str,
        focus_loop: FocusLoop,
        channel: Optional[AutomationChannel] = None,
        socket_path: Path = SOCKET_PATH,
        max_buffer_size: int = MAX_BUFFER_SIZE,
    ):
        self.socket_path = Path(socket_path)
        self.max_buffer_size = max_buffer_size
        self.channel = channel
        self._auth_token = auth_token
        self._loop = focus_loop
        self._server: Optional[asyncio.AbstractServer] = None
        self._connections = 0

    # ── Lifecycle ───────────────────────────────────────────────────────────

    async def start(self):
        self.socket_path.parent.mkdir(parents=True, exist_ok=True)
        if self.socket_path.exists() or self.socket_path.is_symlink():
            try:
                self.socket_path.unlink()
            except OSError as e:
                logger.warning(f"Could not remove old socket: {e}")

        self._server = await asyncio.start_unix_server(self._handle_client, path=str(self.socket_path))
        os.chmod(self.socket_path, 0o600)
        logger.info(f"Gateway listening on {self.socket_path} (mode 0600)")

    async def close(self):
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
        try:
            self.socket_path.unlink()
        except FileNotFoundError:
            pass

    # ── Command handling ────────────────────────────────────────────────────

    def _check_token(self, token: Any) -> bool:
        if not isinstance(token, str) or not token:
            return False
        return hmac.compare_digest(token.encode("utf-8"), self._auth_token.encode("utf-8"))

    async def handle_command(self, message: dict[str, Any]) -> GatewayResponse:
        """Authorize, validate and execute one parsed command."""
        if not self._check_token(message.get("authToken")):
            logger.warning("Rejected command with invalid auth token")
            return GatewayResponse.fail(str(AuthError()))

        try:
            request = GatewayRequest.model_validate(message)
        except PydanticValidationError:
            return GatewayResponse.fail(str(ValidationError("Invalid command format")))

        if request.command not in ALLOWED_COMMANDS:
            logger.warning(f"Rejected command not on allow-list: {request.command}")
            return GatewayResponse.fail(str(CommandNotAllowedError(request.command)))

        try:
            if request.command in LOOP_COMMANDS:
                return GatewayResponse.ok(self._loop.handle(request.command, request.params))

            if self.channel is None or not self.channel.connected:
                raise ChannelDisconnectedError("Browser is not connected to the relay host")
            result = await self.channel.request(request.command, request.params)
            return GatewayResponse.ok(result)
        except RelayError as e:
            return GatewayResponse.fail(str(e))

    # ── Connections ─────────────────────────────────────────────────────────

    async def _handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        self._connections += 1
        conn_id = self._connections
        logger.info(f"Client {conn_id} connected")

        buffer = LineBuffer(self.max_buffer_size)
        write_lock = asyncio.Lock()
        tasks: set[asyncio.Task] = set()
        overflowed = False

        try:
            while True:
                try:
                    data = await reader.read(READ_CHUNK_SIZE)
                except ConnectionError as e:
                    logger.warning(f"Client {conn_id} read error: {e}")
                    break
                if not data:
                    break

                try:
                    lines = buffer.feed(data)
                except BufferOverflowError as e:
                    logger.warning(f"Client {conn_id} exceeded {e.limit} buffered bytes; disconnecting")
                    overflowed = True
                    await self._write(writer, write_lock, GatewayResponse.fail(str(e)))
                    break

                for line in lines:
                    task = asyncio.create_task(self._process_line(line, writer, write_lock))
                    tasks.add(task)
                    task.add_done_callback(tasks.discard)

            if overflowed:
                for task in tasks:
                    task.cancel()
            elif tasks:
                # Half-closed clients still get their answers
                await asyncio.gather(*tasks, return_exceptions=True)
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except ConnectionError:
                pass
            logger.info(f"Client {conn_id} disconnected")

    async def _process_line(self, line: bytes, writer: asyncio.StreamWriter, write_lock: asyncio.Lock):
        try:
            message = decode_line(line)
        except ValidationError as e:
            logger.warning(f"Invalid client message: {e}")
            response = GatewayResponse.fail("Invalid JSON")
        else:
            logger.info(f"Client command: {message.get('command')}")
            response = await self.handle_command(message)
        await self._write(writer, write_lock, response)

    async def _write(self, writer: asyncio.StreamWriter, write_lock: asyncio.Lock, response: GatewayResponse):
        try:
            async with write_lock:
                writer.write(encode_line(response.to_wire()))
                await writer.drain()
        except ConnectionError as e:
            logger.warning(f"Could not write response: {e}")
