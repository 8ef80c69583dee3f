"""
Shared fixtures: an in-memory browser backend and deterministic clocks.
"""

import asyncio
import io
import itertools
import shutil
import tempfile
from pathlib import Path

import pytest
from PIL import Image

from tabrelay.errors import RelayError, ValidationError
from tabrelay.session_manager.backend import BrowserBackend


def png_bytes(width: int, height: int = 20) -> bytes:
    out = io.BytesIO()
    Image.new("RGB", (width, height), (200, 30, 30)).save(out, format="PNG")
    return out.getvalue()


class FakeBackend(BrowserBackend):
    """Window/tab bookkeeping without a browser.

    Captured images are ``10 + tab_id`` pixels wide so tests can tell which tab
    was on screen. ``activate_tab`` and ``capture_visible`` yield to the event
    loop to expose interleaving.
    """

    def __init__(self):
        super().__init__()
        self._window_ids = itertools.count(100)
        self._tab_ids = itertools.count(1)
        self.windows: dict[int, list[int]] = {}
        self.visible: dict[int, int] = {}
        self.tab_window: dict[int, int] = {}
        self.urls: dict[int, str] = {}
        self.viewports: dict[int, tuple[int, int]] = {}
        self.closed_tabs: list[int] = []
        self.closed_windows: list[int] = []
        self.captured: list[int] = []
        self.fail_capture_for: set[int] = set()
        self.render_result = True

    async def open_window(self, url=None):
        window_id = next(self._window_ids)
        self.windows[window_id] = []
        tab_id = await self.open_tab(window_id, url)
        return window_id, tab_id

    async def open_tab(self, window_id, url=None):
        if window_id not in self.windows:
            raise ValidationError(f"Window {window_id} does not exist")
        tab_id = next(self._tab_ids)
        self.windows[window_id].append(tab_id)
        self.tab_window[tab_id] = window_id
        self.visible[window_id] = tab_id
        self.urls[tab_id] = url or "about:blank"
        return tab_id

    async def close_tab(self, tab_id):
        window_id = self.tab_window.pop(tab_id)
        self.windows[window_id].remove(tab_id)
        self.closed_tabs.append(tab_id)
        if self.visible.get(window_id) == tab_id:
            remaining = self.windows[window_id]
            self.visible[window_id] = remaining[-1] if remaining else None
        self._notify_tab_closed(tab_id)

    async def close_window(self, window_id):
        for tab_id in self.windows.pop(window_id, []):
            self.tab_window.pop(tab_id, None)
        self.visible.pop(window_id, None)
        self.closed_windows.append(window_id)
        self._notify_window_closed(window_id)

    async def window_exists(self, window_id):
        return window_id in self.windows

    async def list_windows(self):
        return [{"id": w, "tabCount": len(t)} for w, t in self.windows.items()]

    async def tab_info(self, tab_id):
        return {"url": self.urls.get(tab_id, ""), "title": f"Tab {tab_id}"}

    async def set_viewport(self, window_id, width, height):
        self.viewports[window_id] = (width, height)
        return {"windowId": window_id, "width": width, "height": height}

    async def visible_tab(self, window_id):
        return self.visible.get(window_id)

    async def activate_tab(self, tab_id):
        await asyncio.sleep(0)
        self.visible[self.tab_window[tab_id]] = tab_id
        await asyncio.sleep(0)

    async def capture_visible(self, window_id, format="png", quality=80):
        await asyncio.sleep(0)
        tab_id = self.visible[window_id]
        if tab_id in self.fail_capture_for:
            raise RelayError(f"capture failed for tab {tab_id}")
        self.captured.append(tab_id)
        return png_bytes(10 + tab_id)

    async def render_settled(self, tab_id, timeout_ms):
        return self.render_result

    async def navigate(self, tab_id, url):
        self.urls[tab_id] = url
        return {"url": url, "title": f"Tab {tab_id}", "status": 200}

    async def page_action(self, tab_id, action, params):
        return {"action": action, "tabId": tab_id}

    def console_logs(self, tab_id, level=None, clear=False, limit=100):
        return {"logs": [], "total": 0, "filtered": 0}

    # Test helpers

    def user_closes_tab(self, tab_id):
        window_id = self.tab_window.pop(tab_id)
        self.windows[window_id].remove(tab_id)
        self._notify_tab_closed(tab_id)

    def user_closes_window(self, window_id):
        self.windows.pop(window_id)
        self._notify_window_closed(window_id)


class FakeClock:
    """A clock that only moves when ``sleep`` is awaited."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds

    async def sleep(self, seconds: float):
        self.now += seconds
        await asyncio.sleep(0)


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def short_tmp():
    """A short temporary directory; Unix socket paths are limited to ~100 bytes."""
    path = Path(tempfile.mkdtemp(prefix="tr-", dir="/tmp"))
    yield path
    shutil.rmtree(path, ignore_errors=True)
