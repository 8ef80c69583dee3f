"""Client for the relay host's command gateway."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Optional

from .config import CLIENT_TIMEOUT_SECONDS, MAX_FRAME_BYTES, SOCKET_PATH, TOKEN_PATH
from .protocol.codec import encode_line

logger = logging.getLogger(__name__)


class GatewayClient:
    """Sends one NDJSON command per connection and returns the decoded response.

    Failures to reach the host come back as ``{"success": False, "error": ...}``
    dicts, the same shape the gateway itself uses.
    """

    def __init__(
        self,
        socket_path: Path = SOCKET_PATH,
        token_path: Path = TOKEN_PATH,
        timeout: float = CLIENT_TIMEOUT_SECONDS,
        token: Optional[str] = None,
    ):
        self.socket_path = Path(socket_path)
        self.token_path = Path(token_path)
        self.timeout = timeout
        self._token = token

    def _read_token(self) -> str:
        # The host writes a new token on every start, so the file is read per command
        if self._token is not None:
            return self._token
        return self.token_path.read_text(encoding="utf-8").strip()

    async def send(self, command: str, params: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        try:
            token = self._read_token()
        except FileNotFoundError:
            return {
                "success": False,
                "error": f"Relay host is not running (no token at {self.token_path}). Start a session first.",
            }

        request = {"command": command, "params": params or {}, "authToken": token}
        try:
            return await asyncio.wait_for(self._roundtrip(request), self.timeout)
        except (FileNotFoundError, ConnectionRefusedError):
            return {"success": False, "error": f"Relay host is not listening on {self.socket_path}."}
        except asyncio.TimeoutError:
            return {"success": False, "error": f"No response from relay host within {self.timeout:.0f}s."}
        except (ConnectionError, OSError) as e:
            return {"success": False, "error": f"Relay host connection failed: {e}"}
        except json.JSONDecodeError as e:
            return {"success": False, "error": f"Invalid response from relay host: {e}"}

    async def _roundtrip(self, request: dict) -> dict:
        reader, writer = await asyncio.open_unix_connection(str(self.socket_path), limit=MAX_FRAME_BYTES)
        try:
            writer.write(encode_line(request))
            await writer.drain()
            line = await reader.readline()
            if not line:
                raise ConnectionError("connection closed before a response arrived")
            return json.loads(line)
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except (ConnectionError, OSError):
                pass
