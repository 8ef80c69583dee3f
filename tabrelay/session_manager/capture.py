"""Serialized screen capture.

Capturing means making a tab the visible one, which every concurrent capture can
observe. One ticket at a time runs switch -> readiness -> race guard -> capture ->
downscale; waiters are served in arrival order.
"""

from __future__ import annotations

import asyncio
import base64
import io
import logging

from PIL import Image

from ..errors import CaptureRaceError
from ..models.capture import CaptureResult, CaptureTicket
from .backend import BrowserBackend
from .readiness import ReadinessDetector
from .tab_pool import TabPool

logger = logging.getLogger(__name__)


def _downscale(data: bytes, scale: float, format: str, quality: int) -> tuple[bytes, int, int]:
    with Image.open(io.BytesIO(data)) as img:
        width = max(1, round(img.width * scale))
        height = max(1, round(img.height * scale))
        resized = img.resize((width, height), Image.Resampling.LANCZOS)
        out = io.BytesIO()
        if format == "jpeg":
            resized.convert("RGB").save(out, format="JPEG", quality=quality)
        else:
            resized.save(out, format="PNG", optimize=True)
    return out.getvalue(), width, height


def _dimensions(data: bytes) -> tuple[int, int]:
    with Image.open(io.BytesIO(data)) as img:
        return img.width, img.height


class CaptureSerializer:
    def __init__(self, pool: TabPool, backend: BrowserBackend, detector: ReadinessDetector):
        self._pool = pool
        self._backend = backend
        self._detector = detector
        # asyncio.Lock wakes waiters in FIFO order
        self._lock = asyncio.Lock()
        self.captures = 0

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    async def capture(self, ticket: CaptureTicket) -> CaptureResult:
        """Run one ticket under the capture lock.

        A failure is raised to this caller only; the lock is released either way so
        the next ticket proceeds.
        """
        async with self._lock:
            return await self._run(ticket)

    async def _run(self, ticket: CaptureTicket) -> CaptureResult:
        session = await self._pool.require_session()
        target = ticket.tab_id if ticket.tab_id is not None else self._pool.get_active_tab().tab_id

        visible = await self._backend.visible_tab(session.window_id)
        switched = visible != target
        readiness = None
        if switched:
            logger.debug(f"Switching visible tab {visible} -> {target} for capture")
            await self._backend.activate_tab(target)
            self._pool.set_active(target)
            if not ticket.skip_readiness:
                readiness = await self._detector.wait_until_ready(target, ticket.readiness)

        visible = await self._backend.visible_tab(session.window_id)
        if visible != target:
            raise CaptureRaceError(target, visible)

        data = await self._backend.capture_visible(session.window_id, ticket.format, ticket.quality)
        if ticket.scale < 1.0:
            data, width, height = await asyncio.to_thread(
                _downscale, data, ticket.scale, ticket.format, ticket.quality
            )
        else:
            width, height = await asyncio.to_thread(_dimensions, data)

        self.captures += 1
        encoded = base64.b64encode(data).decode("ascii")
        return CaptureResult(
            tab_id=target,
            data_url=f"data:image/{ticket.format};base64,{encoded}",
            format=ticket.format,
            switched=switched,
            width=width,
            height=height,
            readiness=readiness,
        )
