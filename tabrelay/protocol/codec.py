"""Wire framing for the two transports.

- Automation channel: native-messaging frames, a 4-byte little-endian length
  followed by that many bytes of UTF-8 JSON.
- Gateway socket: newline-delimited JSON, one object per line.

No business logic lives here.
"""

from __future__ import annotations

import asyncio
import json
import struct
from typing import Any, Optional

from ..config import MAX_BUFFER_SIZE, MAX_FRAME_BYTES
from ..errors import ValidationError

HEADER = struct.Struct("<I")


class FrameTooLargeError(ValidationError):
    """A frame header announced more bytes than we are willing to buffer.

    The stream cannot be resynchronized after this, so callers treat it as a
    disconnect.
    """


class BufferOverflowError(ValidationError):
    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__("Message too large")


def _dumps(message: dict[str, Any]) -> bytes:
    return json.dumps(message, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


def _loads(raw: bytes) -> dict[str, Any]:
    try:
        obj = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ValidationError(f"Invalid JSON: {e}") from e
    if not isinstance(obj, dict):
        raise ValidationError("Invalid JSON: expected an object")
    return obj


# ── Length-prefixed frames ───────────────────────────────────────────────────


def encode_frame(message: dict[str, Any]) -> bytes:
    raw = _dumps(message)
    return HEADER.pack(len(raw)) + raw


def decode_frame(data: bytes, max_bytes: int = MAX_FRAME_BYTES) -> tuple[Optional[dict[str, Any]], bytes]:
    """Decode one frame from the front of ``data``.

    Returns ``(message, rest)``; ``message`` is None while the frame is incomplete.
    """
    if len(data) < HEADER.size:
        return None, data
    (length,) = HEADER.unpack_from(data)
    if length > max_bytes:
        raise FrameTooLargeError(f"Frame of {length} bytes exceeds limit of {max_bytes}")
    end = HEADER.size + length
    if len(data) < end:
        return None, data
    return _loads(data[HEADER.size:end]), data[end:]


async def read_frame(reader: asyncio.StreamReader, max_bytes: int = MAX_FRAME_BYTES) -> Optional[dict[str, Any]]:
    """Read one frame. Returns None on a clean or truncated EOF."""
    try:
        header = await reader.readexactly(HEADER.size)
    except asyncio.IncompleteReadError:
        return None
    (length,) = HEADER.unpack(header)
    if length > max_bytes:
        raise FrameTooLargeError(f"Frame of {length} bytes exceeds limit of {max_bytes}")
    try:
        raw = await reader.readexactly(length)
    except asyncio.IncompleteReadError:
        return None
    return _loads(raw)


async def write_frame(writer: asyncio.StreamWriter, message: dict[str, Any]) -> None:
    writer.write(encode_frame(message))
    await writer.drain()


# ── Newline-delimited JSON ───────────────────────────────────────────────────


def encode_line(message: dict[str, Any]) -> bytes:
    return _dumps(message) + b"\n"


def decode_line(line: bytes) -> dict[str, Any]:
    return _loads(line.strip())


class LineBuffer:
    """Accumulates socket bytes and yields complete lines.

    Partial lines stay buffered between ``feed`` calls. If the unterminated
    remainder grows past ``max_size`` a ``BufferOverflowError`` is raised and the
    buffer is dropped.
    """

    def __init__(self, max_size: int = MAX_BUFFER_SIZE):
        self.max_size = max_size
        self._buffer = bytearray()

    def __len__(self) -> int:
        return len(self._buffer)

    def feed(self, data: bytes) -> list[bytes]:
        self._buffer.extend(data)
        lines: list[bytes] = []
        if b"\n" in data:
            *lines, rest = self._buffer.split(b"\n")
            self._buffer = bytearray(rest)
        if len(self._buffer) > self.max_size:
            size = len(self._buffer)
            self._buffer.clear()
            raise BufferOverflowError(size, self.max_size)
        return [bytes(line) for line in lines if line.strip()]
