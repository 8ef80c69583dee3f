"""Session Manager HTTP service.

Runs as a lightweight local web server that owns the browser and the executor
side of the automation channel. Starting it launches the browser, spawns the
relay host (``python -m tabrelay.host.main``) on pipes and serves forwarded
commands through the Coordinator. If the host exits it is respawned.

Endpoints:
    POST /start         - Launch browser and relay host
    GET  /status        - Return session state
    POST /stop          - Close browser and relay host
"""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Optional

from aiohttp import web

from ..config import (
    HOST_RESTART_DELAY_SECONDS,
    MAX_FRAME_BYTES,
    SESSION_MANAGER_HOST,
    SESSION_MANAGER_PORT,
    ensure_dirs,
)
from ..errors import RelayError
from ..host.channel import AutomationChannel
from ..models.session import SessionStatus
from .backend import BrowserBackend
from .browser import PlaywrightBackend
from .coordinator import Coordinator

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)

HOST_COMMAND = [sys.executable, "-m", "tabrelay.host.main"]


class SessionManager:
    """Owns the browser, the Coordinator and the relay host subprocess."""

    def __init__(self, backend: Optional[BrowserBackend] = None, host_command: Optional[list[str]] = None):
        self.backend = backend or PlaywrightBackend()
        self.coordinator = Coordinator(self.backend)
        self.channel: Optional[AutomationChannel] = None
        self.host_command = host_command or HOST_COMMAND
        self.host_restarts = 0
        self.state = "not_running"
        self.error: Optional[str] = None
        self._process: Optional[asyncio.subprocess.Process] = None
        self._bridge_task: Optional[asyncio.Task] = None
        self._stopping = False

    async def start(self, headless: Optional[bool] = None) -> SessionStatus:
        if self.state == "running":
            return self.status("Browser already running.")

        self.state = "starting"
        self.error = None
        try:
            await self.backend.start(headless=headless)
        except Exception as e:
            logger.error(f"Failed to start browser: {e}")
            self.state = "error"
            self.error = str(e)
            return self.status(f"Failed to start browser: {e}")

        self._stopping = False
        self._bridge_task = asyncio.create_task(self._run_bridge())
        self.state = "running"
        return self.status("Browser running. Relay host is starting.")

    async def stop(self) -> SessionStatus:
        logger.info("Stopping session manager...")
        self._stopping = True
        if self._process and self._process.returncode is None:
            self._process.terminate()
        if self._bridge_task:
            try:
                await asyncio.wait_for(self._bridge_task, timeout=5)
            except asyncio.TimeoutError:
                self._bridge_task.cancel()
                if self._process and self._process.returncode is None:
                    self._process.kill()
            self._bridge_task = None
        await self.backend.stop()
        self.state = "not_running"
        return self.status("Session stopped.")

    def status(self, message: str = "") -> SessionStatus:
        return SessionStatus(
            state=self.state,
            browser_running=self.backend.is_running,
            host_connected=self.channel is not None and self.channel.connected,
            host_restarts=self.host_restarts,
            pending_requests=len(self.channel.pending) if self.channel else 0,
            session=self.coordinator.pool.snapshot(),
            message=message,
            error=self.error,
        )

    async def _run_bridge(self):
        while not self._stopping:
            try:
                await self._run_host_once()
            except Exception:
                logger.exception("Relay host bridge failed")
            if self._stopping:
                break
            self.host_restarts += 1
            logger.warning(f"Relay host exited, restarting in {HOST_RESTART_DELAY_SECONDS}s")
            await asyncio.sleep(HOST_RESTART_DELAY_SECONDS)

    async def _run_host_once(self):
        process = await asyncio.create_subprocess_exec(
            *self.host_command,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            limit=MAX_FRAME_BYTES,
        )
        self._process = process
        channel = AutomationChannel(
            process.stdout, process.stdin, handler=self.coordinator.handle_command, name="executor"
        )
        self.channel = channel
        reader_task = asyncio.create_task(channel.run())

        try:
            info = await channel.request("version")
            logger.info(f"Relay host {info.get('host')} connected (pid {process.pid})")
        except RelayError as e:
            logger.warning(f"Relay host did not report its version: {e}")

        try:
            await reader_task
        finally:
            await channel.close()
            code = await process.wait()
            logger.info(f"Relay host exited with code {code}")
            self.channel = None
            self._process = None


# ── HTTP Handlers ────────────────────────────────────────────────────────────


async def handle_start(request: web.Request) -> web.Response:
    mgr: SessionManager = request.app["manager"]
    body = await request.json() if request.content_length else {}
    status = await mgr.start(headless=body.get("headless"))
    return web.json_response(status.model_dump(mode="json"))


async def handle_status(request: web.Request) -> web.Response:
    mgr: SessionManager = request.app["manager"]
    return web.json_response(mgr.status().model_dump(mode="json"))


async def handle_stop(request: web.Request) -> web.Response:
    mgr: SessionManager = request.app["manager"]
    status = await mgr.stop()
    return web.json_response(status.model_dump(mode="json"))


# ── App Factory ──────────────────────────────────────────────────────────────


async def on_startup(app: web.Application):
    ensure_dirs()
    if "manager" not in app:
        app["manager"] = SessionManager()
    logger.info(f"Session Manager started on {SESSION_MANAGER_HOST}:{SESSION_MANAGER_PORT}")


async def on_cleanup(app: web.Application):
    mgr: SessionManager = app["manager"]
    if mgr.state != "not_running":
        await mgr.stop()
    logger.info("Session Manager stopped.")


def create_app(manager: Optional[SessionManager] = None) -> web.Application:
    app = web.Application()
    if manager is not None:
        app["manager"] = manager
    app.on_startup.append(on_startup)
    app.on_cleanup.append(on_cleanup)

    app.router.add_post("/start", handle_start)
    app.router.add_get("/status", handle_status)
    app.router.add_post("/stop", handle_stop)

    return app


def main():
    """Run the session manager as a standalone HTTP service."""
    app = create_app()
    web.run_app(app, host=SESSION_MANAGER_HOST, port=SESSION_MANAGER_PORT)


if __name__ == "__main__":
    main()
