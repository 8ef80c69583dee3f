"""Relay host process.

Speaks length-prefixed frames on stdin/stdout with the session manager (or a
browser extension using native messaging) and serves local clients on a Unix
socket. A fresh auth token is generated on every start and written to a
user-only token file for trusted local clients.

Run with: python -m tabrelay.host.main
"""

from __future__ import annotations

import asyncio
import logging
import os
import platform
import secrets
import signal
import sys
import time
from pathlib import Path

from ..config import HOST_LOG_PATH, MAX_FRAME_BYTES, SOCKET_PATH, TOKEN_PATH, ensure_dirs
from ..constants import VERSION
from ..errors import ValidationError
from .channel import AutomationChannel
from .focus_loop import FocusLoop
from .gateway import CommandGateway

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"

# stdout carries protocol frames; logs go to stderr and the debug file only
logger = logging.getLogger("tabrelay-host")


def _setup_logging():
    root = logging.getLogger()
    root.setLevel(logging.INFO)

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(stderr_handler)

    try:
        fd = os.open(HOST_LOG_PATH, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        os.close(fd)
        file_handler = logging.FileHandler(HOST_LOG_PATH, mode="a", encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(file_handler)
    except OSError as e:
        logger.warning(f"Debug log disabled: {e}")


def write_token(path: Path = TOKEN_PATH) -> str:
    """Generate a new auth token and store it readable by the current user only."""
    token = secrets.token_hex(32)
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.exists():
        path.unlink()
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(token)
    return token


async def handle_peer_command(command: str, params: dict):
    """Answer commands the session manager sends on its own initiative."""
    if command == "ping":
        return {"pong": True, "timestamp": int(time.time() * 1000)}
    if command == "version":
        return {
            "host": VERSION,
            "python": platform.python_version(),
            "platform": sys.platform,
            "features": ["devtools", "network", "console", "evaluate", "loop"],
        }
    raise ValidationError(f"Unknown command: {command}")


async def open_stdio() -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader(limit=MAX_FRAME_BYTES)
    await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin.buffer)
    transport, protocol = await loop.connect_write_pipe(asyncio.streams.FlowControlMixin, sys.stdout.buffer)
    writer = asyncio.StreamWriter(transport, protocol, reader, loop)
    return reader, writer


async def run_host(
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
    socket_path: Path = SOCKET_PATH,
    token_path: Path = TOKEN_PATH,
):
    """Serve the gateway until the automation channel reaches EOF."""
    token = write_token(token_path)
    channel = AutomationChannel(reader, writer, handler=handle_peer_command, name="host")
    gateway = CommandGateway(token, FocusLoop(), channel=channel, socket_path=socket_path)
    await gateway.start()
    try:
        await channel.run()
    finally:
        await gateway.close()
        try:
            token_path.unlink()
        except FileNotFoundError:
            pass
        logger.info("Host exiting")


async def _main():
    loop = asyncio.get_running_loop()
    task = asyncio.current_task()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, task.cancel)

    reader, writer = await open_stdio()
    try:
        await run_host(reader, writer)
    except asyncio.CancelledError:
        logger.info("Received shutdown signal")


def main():
    ensure_dirs()
    _setup_logging()
    logger.info(f"Host {VERSION} started (pid {os.getpid()}, cwd {os.getcwd()})")
    try:
        asyncio.run(_main())
    except Exception:
        logger.exception("Unhandled error")
        sys.exit(1)


if __name__ == "__main__":
    main()
