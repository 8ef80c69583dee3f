"""Abstract browser backend driven by the coordinator."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

from ..models.session import TabId
from .network import NetworkMonitor

TabClosedListener = Callable[[TabId], None]
WindowClosedListener = Callable[[TabId], None]


class BrowserBackend(ABC):
    """Window/tab primitives plus the page-level actions the coordinator forwards.

    Window and tab ids are opaque values assigned by the backend. Implementations
    report tabs or windows that close on their own through the registered
    listeners.
    """

    def __init__(self):
        self.network = NetworkMonitor()
        self._on_tab_closed: Optional[TabClosedListener] = None
        self._on_window_closed: Optional[WindowClosedListener] = None

    def set_listeners(self, on_tab_closed: TabClosedListener, on_window_closed: WindowClosedListener):
        self._on_tab_closed = on_tab_closed
        self._on_window_closed = on_window_closed

    def _notify_tab_closed(self, tab_id: TabId):
        self.network.forget_tab(tab_id)
        if self._on_tab_closed is not None:
            self._on_tab_closed(tab_id)

    def _notify_window_closed(self, window_id: TabId):
        if self._on_window_closed is not None:
            self._on_window_closed(window_id)

    @property
    def is_running(self) -> bool:
        return True

    def describe(self) -> str:
        return type(self).__name__

    async def start(self, headless: Optional[bool] = None) -> None:
        """Launch the underlying browser, if the backend has one to launch."""

    async def stop(self) -> None:
        """Release everything `start` acquired."""

    # ── Windows and tabs ────────────────────────────────────────────────────

    @abstractmethod
    async def open_window(self, url: Optional[str] = None) -> tuple[TabId, TabId]:
        """Open a new window with one tab. Returns ``(window_id, tab_id)``."""

    @abstractmethod
    async def open_tab(self, window_id: TabId, url: Optional[str] = None) -> TabId:
        """Open a tab in ``window_id``; it becomes the visible tab."""

    @abstractmethod
    async def close_tab(self, tab_id: TabId) -> None: ...

    @abstractmethod
    async def close_window(self, window_id: TabId) -> None: ...

    @abstractmethod
    async def window_exists(self, window_id: TabId) -> bool: ...

    @abstractmethod
    async def list_windows(self) -> list[dict[str, Any]]: ...

    @abstractmethod
    async def tab_info(self, tab_id: TabId) -> dict[str, Any]:
        """``{"url": ..., "title": ...}`` for a tab."""

    @abstractmethod
    async def set_viewport(self, window_id: TabId, width: int, height: int) -> dict[str, Any]: ...

    # ── Visibility and capture ──────────────────────────────────────────────

    @abstractmethod
    async def visible_tab(self, window_id: TabId) -> Optional[TabId]:
        """The tab currently shown in ``window_id``."""

    @abstractmethod
    async def activate_tab(self, tab_id: TabId) -> None:
        """Make ``tab_id`` the visible tab of its window."""

    @abstractmethod
    async def capture_visible(self, window_id: TabId, format: str = "png", quality: int = 80) -> bytes:
        """Capture the visible area of ``window_id`` as encoded image bytes."""

    @abstractmethod
    async def render_settled(self, tab_id: TabId, timeout_ms: int) -> bool:
        """Ask the page whether its last paint has stabilized."""

    # ── Page actions ────────────────────────────────────────────────────────

    @abstractmethod
    async def navigate(self, tab_id: TabId, url: str) -> dict[str, Any]: ...

    @abstractmethod
    async def page_action(self, tab_id: TabId, action: str, params: dict[str, Any]) -> Any:
        """Run a DOM-level action (getContent, click, type, ...) inside a tab."""

    @abstractmethod
    def console_logs(
        self, tab_id: TabId, level: Optional[str] = None, clear: bool = False, limit: int = 100
    ) -> dict[str, Any]: ...
