"""Command dispatch for the executor side of the automation channel.

One ``Coordinator`` is built per browser. It owns the tab pool, the capture
serializer and the readiness detector, and resolves every forwarded command
against them or against the backend's page primitives.
"""

from __future__ import annotations

import logging
import platform
import sys
import time
from typing import Any, Awaitable, Callable, Optional

from pydantic import ValidationError as PydanticValidationError

from ..config import ALLOW_NAVIGATE, MAX_TABS, POOL_EVICTION_POLICY
from ..constants import DEVICE_PRESETS, UNKNOWN_OWNER, VERSION
from ..errors import ValidationError
from ..models.capture import CaptureTicket, ReadinessOptions
from ..models.session import TabId
from .backend import BrowserBackend
from .capture import CaptureSerializer
from .ownership import verify_ownership
from .readiness import ReadinessDetector
from .tab_pool import TabPool

logger = logging.getLogger(__name__)

Handler = Callable[[dict], Awaitable[Any]]

# Commands forwarded verbatim to the backend's page primitives
PAGE_ACTIONS = frozenset({
    "getContent",
    "click",
    "type",
    "pressKey",
    "scroll",
    "waitFor",
    "evaluate",
    "getElementInfo",
    "getPageState",
    "getAccessibilitySnapshot",
})

_READINESS_KEYS = {
    "maxWait": "max_wait_ms",
    "maxWaitMs": "max_wait_ms",
    "idleThreshold": "idle_threshold_ms",
    "idleThresholdMs": "idle_threshold_ms",
    "waitForVisual": "wait_for_visual",
    "visualBudgetMs": "visual_budget_ms",
}


def _require(params: dict, key: str):
    value = params.get(key)
    if value is None or value == "":
        raise ValidationError(f"Missing required parameter: {key}")
    return value


def _dimension(params: dict, key: str) -> int:
    value = _require(params, key)
    if isinstance(value, bool) or not isinstance(value, int) or not 100 <= value <= 10000:
        raise ValidationError(f"{key} must be an integer between 100 and 10000")
    return value


class Coordinator:
    def __init__(
        self,
        backend: BrowserBackend,
        max_tabs: int = MAX_TABS,
        eviction_policy: str = POOL_EVICTION_POLICY,
        allow_navigate: bool = ALLOW_NAVIGATE,
        detector: Optional[ReadinessDetector] = None,
    ):
        self.backend = backend
        self.pool = TabPool(backend, max_tabs=max_tabs, policy=eviction_policy)
        self.detector = detector or ReadinessDetector(backend.network, backend.render_settled)
        self.capture = CaptureSerializer(self.pool, backend, self.detector)
        self.allow_navigate = allow_navigate
        backend.set_listeners(self.pool.handle_tab_removed, self.pool.handle_window_removed)

        self._handlers: dict[str, Handler] = {
            "ping": self._ping,
            "version": self._version,
            "createWindow": self._create_window,
            "closeWindow": self._close_window,
            "closeTab": self._close_tab,
            "getTabs": self._get_tabs,
            "getWindows": self._get_windows,
            "resizeWindow": self._resize_window,
            "setViewport": self._set_viewport,
            "navigate": self._navigate,
            "canNavigate": self._can_navigate,
            "screenshot": self._screenshot,
            "getConsoleLogs": self._get_console_logs,
            "getNetworkRequests": self._get_network_requests,
        }

    async def handle_command(self, command: str, params: dict) -> Any:
        params = params or {}
        handler = self._handlers.get(command)
        if handler is None and command in PAGE_ACTIONS:
            handler = self._page_action_handler(command)
        if handler is None:
            raise ValidationError(f"Unknown command: {command}")

        logger.debug(f"Handling {command}")
        try:
            return await handler(params)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid parameters for {command}: {e.errors()[0]['msg']}") from e

    # ── Helpers ─────────────────────────────────────────────────────────────

    @staticmethod
    def _owner(params: dict) -> str:
        return params.get("ownerId") or UNKNOWN_OWNER

    async def _resolve_target(self, params: dict, operation: str) -> TabId:
        """Resolve the tab a command acts on.

        An explicit ``tabId`` is ownership-checked; the implicit active tab is not.
        """
        await self.pool.require_session()
        tab_id = params.get("tabId")
        if tab_id is None:
            return self.pool.get_active_tab().tab_id
        entry = self.pool.get_entry(tab_id)
        verify_ownership(entry, self._owner(params), operation)
        return entry.tab_id

    # ── Lifecycle ───────────────────────────────────────────────────────────

    async def _ping(self, params: dict):
        return {"pong": True, "timestamp": int(time.time() * 1000)}

    async def _version(self, params: dict):
        return {
            "executor": VERSION,
            "backend": self.backend.describe(),
            "python": platform.python_version(),
            "platform": sys.platform,
        }

    # ── Window / tab ────────────────────────────────────────────────────────

    async def _create_window(self, params: dict):
        result = await self.pool.create_tab(params.get("url"), self._owner(params))
        return result.to_wire()

    async def _close_window(self, params: dict):
        return await self.pool.close_window(self._owner(params))

    async def _close_tab(self, params: dict):
        return await self.pool.close_tab(_require(params, "tabId"), self._owner(params))

    async def _get_tabs(self, params: dict):
        session = await self.pool.require_session()
        active = self.pool.get_active_tab().tab_id
        tabs = []
        for entry in self.pool.list_tabs():
            info = await self.backend.tab_info(entry.tab_id)
            tabs.append({
                "id": entry.tab_id,
                "url": info.get("url", ""),
                "title": info.get("title", ""),
                "active": entry.tab_id == active,
                "ownerId": entry.owner_id,
                "createdAt": int(entry.created_at * 1000),
            })
        return {"windowId": session.window_id, "activeTabId": active, "tabs": tabs, "maxTabs": self.pool.max_tabs}

    async def _get_windows(self, params: dict):
        session = self.pool.session
        return {
            "windows": await self.backend.list_windows(),
            "sessionWindowId": session.window_id if session else None,
        }

    async def _resize_window(self, params: dict):
        session = await self.pool.require_session()
        return await self.backend.set_viewport(session.window_id, _dimension(params, "width"), _dimension(params, "height"))

    async def _set_viewport(self, params: dict):
        session = await self.pool.require_session()
        device = params.get("device")
        if device:
            preset = DEVICE_PRESETS.get(device)
            if preset is None:
                raise ValidationError(f"Unknown device preset: {device}. Available: {', '.join(DEVICE_PRESETS)}")
            result = await self.backend.set_viewport(session.window_id, preset["width"], preset["height"])
            return {**result, "device": device, "deviceType": preset["type"]}
        return await self.backend.set_viewport(session.window_id, _dimension(params, "width"), _dimension(params, "height"))

    async def _navigate(self, params: dict):
        url = _require(params, "url")
        if not self.allow_navigate:
            raise ValidationError("Navigation is disabled")
        tab_id = await self._resolve_target(params, "navigate")
        result = await self.backend.navigate(tab_id, url)
        return {"tabId": tab_id, **result}

    async def _can_navigate(self, params: dict):
        session = self.pool.session
        return {
            "canNavigate": self.allow_navigate,
            "hasSession": session is not None,
            "tabCount": len(session.tabs) if session else 0,
        }

    # ── Content ─────────────────────────────────────────────────────────────

    def _page_action_handler(self, command: str) -> Handler:
        async def handler(params: dict):
            tab_id = await self._resolve_target(params, command)
            return await self.backend.page_action(tab_id, command, params)

        return handler

    # ── Capture ─────────────────────────────────────────────────────────────

    async def _screenshot(self, params: dict):
        tab_id = params.get("tabId")
        if tab_id is not None:
            tab_id = await self._resolve_target(params, "screenshot")

        readiness = {
            field: params[key] for key, field in _READINESS_KEYS.items() if params.get(key) is not None
        }
        ticket = CaptureTicket(
            tab_id=tab_id,
            format=params.get("format") or "png",
            quality=params.get("quality", 80),
            scale=params.get("scale", 1.0),
            skip_readiness=bool(params.get("skipReadiness", False)),
            readiness=ReadinessOptions(**readiness),
        )
        result = await self.capture.capture(ticket)
        return result.to_wire()

    # ── Devtools ────────────────────────────────────────────────────────────

    async def _get_console_logs(self, params: dict):
        tab_id = await self._resolve_target(params, "read console of")
        return self.backend.console_logs(
            tab_id,
            level=params.get("level"),
            clear=bool(params.get("clear", False)),
            limit=int(params.get("limit", 100)),
        )

    async def _get_network_requests(self, params: dict):
        tab_id = await self._resolve_target(params, "read network requests of")
        return self.backend.network.query(
            tab_id,
            type=params.get("type"),
            status=params.get("status"),
            limit=int(params.get("limit", 50)),
            clear=bool(params.get("clear", False)),
        )
