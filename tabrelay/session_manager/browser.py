"""Playwright browser backend: a window is a browser context, a tab is a page."""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from collections import defaultdict, deque
from typing import Any, Optional

from camoufox.async_api import AsyncCamoufox
from playwright.async_api import BrowserContext, ConsoleMessage, Page, Request, Response, async_playwright

from ..config import BROWSER_ENGINE, BROWSER_HEADLESS, BROWSER_TIMEOUT, MAX_CONSOLE_ENTRIES
from ..errors import RelayError, ValidationError
from ..models.session import TabId
from .backend import BrowserBackend

logger = logging.getLogger(__name__)

DEFAULT_VIEWPORT = {"width": 1366, "height": 768}
MAX_CONTENT_LENGTH = 100_000

# Resolves true after two animation frames, false when the page cannot paint in time
RENDER_SETTLED_JS = """
(timeout) => new Promise((resolve) => {
    const timer = setTimeout(() => resolve(false), timeout);
    requestAnimationFrame(() => requestAnimationFrame(() => {
        clearTimeout(timer);
        resolve(true);
    }));
})
"""

ELEMENT_INFO_JS = """
(el) => {
    const rect = el.getBoundingClientRect();
    const style = window.getComputedStyle(el);
    const attributes = {};
    for (const attr of el.attributes) attributes[attr.name] = attr.value;
    return {
        tagName: el.tagName.toLowerCase(),
        text: (el.innerText || el.textContent || "").trim().slice(0, 1000),
        value: "value" in el ? el.value : null,
        attributes,
        rect: {x: rect.x, y: rect.y, width: rect.width, height: rect.height},
        visible: rect.width > 0 && rect.height > 0 && style.visibility !== "hidden" && style.display !== "none",
        enabled: !el.disabled,
    };
}
"""

PAGE_STATE_JS = """
() => ({
    url: location.href,
    title: document.title,
    readyState: document.readyState,
    visibilityState: document.visibilityState,
    scrollX: window.scrollX,
    scrollY: window.scrollY,
    scrollHeight: document.documentElement.scrollHeight,
    viewport: {width: window.innerWidth, height: window.innerHeight},
    activeElement: document.activeElement ? document.activeElement.tagName.toLowerCase() : null,
})
"""


class PlaywrightBackend(BrowserBackend):
    """Drives Camoufox (default), Firefox or Chromium through Playwright."""

    def __init__(self, engine: str = BROWSER_ENGINE):
        super().__init__()
        self.engine = engine
        self._camoufox = None
        self._playwright = None
        self._browser = None
        self._ids = itertools.count(1)
        self._contexts: dict[TabId, BrowserContext] = {}
        self._pages: dict[TabId, Page] = {}
        self._page_window: dict[TabId, TabId] = {}
        self._visible: dict[TabId, TabId] = {}
        self._console: defaultdict[TabId, deque] = defaultdict(lambda: deque(maxlen=MAX_CONSOLE_ENTRIES))
        self._status_codes: dict[int, int] = {}
        self._closing_pages: set[TabId] = set()
        self._closing_windows: set[TabId] = set()

    @property
    def is_running(self) -> bool:
        return self._browser is not None

    def describe(self) -> str:
        return f"playwright/{self.engine}"

    async def start(self, headless: Optional[bool] = None):
        if self.is_running:
            return
        use_headless = headless if headless is not None else BROWSER_HEADLESS
        logger.info(f"Launching {self.engine} (headless={use_headless})...")

        try:
            if self.engine == "camoufox":
                self._camoufox = AsyncCamoufox(
                    headless=use_headless,
                    humanize=True,
                    i_know_what_im_doing=True,
                    config={"forceScopeAccess": True},
                    disable_coop=True,
                )
                self._browser = await self._camoufox.__aenter__()
            elif self.engine in ("firefox", "chromium"):
                self._playwright = await async_playwright().start()
                launcher = getattr(self._playwright, self.engine)
                self._browser = await launcher.launch(headless=use_headless)
            else:
                raise ValidationError(f"Unsupported browser engine: {self.engine}")
        except Exception:
            await self.stop()
            raise

    async def stop(self):
        logger.info("Stopping browser...")
        for window_id in list(self._contexts):
            try:
                await self.close_window(window_id)
            except Exception as e:
                logger.warning(f"Error closing window {window_id}: {e}")

        try:
            if self._camoufox:
                await self._camoufox.__aexit__(None, None, None)
            elif self._browser:
                await self._browser.close()
        except Exception as e:
            logger.warning(f"Error closing browser: {e}")
        finally:
            self._camoufox = None
            self._browser = None

        if self._playwright:
            try:
                await self._playwright.stop()
            except Exception as e:
                logger.warning(f"Error stopping playwright: {e}")
            self._playwright = None
        logger.info("Browser stopped.")

    # ── Registration and events ─────────────────────────────────────────────

    def _page(self, tab_id: TabId) -> Page:
        page = self._pages.get(tab_id)
        if page is None or page.is_closed():
            raise ValidationError(f"Tab {tab_id} does not exist")
        return page

    def _register_page(self, window_id: TabId, page: Page) -> TabId:
        tab_id = next(self._ids)
        self._pages[tab_id] = page
        self._page_window[tab_id] = window_id
        self._visible[window_id] = tab_id
        page.set_default_timeout(BROWSER_TIMEOUT)

        def on_request(request: Request):
            self.network.request_started(id(request), tab_id, request.url, request.method, request.resource_type)

        def on_response(response: Response):
            self._status_codes[id(response.request)] = response.status

        def on_finished(request: Request):
            self.network.request_finished(id(request), self._status_codes.pop(id(request), None))

        def on_failed(request: Request):
            self._status_codes.pop(id(request), None)
            self.network.request_failed(id(request), request.failure or "failed")

        def on_console(message: ConsoleMessage):
            self._console[tab_id].append({
                "level": message.type,
                "text": message.text,
                "timestamp": int(time.time() * 1000),
                "location": message.location,
            })

        def on_page_error(error):
            self._console[tab_id].append({
                "level": "error",
                "text": str(error),
                "timestamp": int(time.time() * 1000),
                "source": "pageerror",
            })

        page.on("request", on_request)
        page.on("response", on_response)
        page.on("requestfinished", on_finished)
        page.on("requestfailed", on_failed)
        page.on("console", on_console)
        page.on("pageerror", on_page_error)
        page.on("close", lambda _: self._on_page_closed(tab_id))
        return tab_id

    def _on_page_closed(self, tab_id: TabId):
        self._pages.pop(tab_id, None)
        self._console.pop(tab_id, None)
        window_id = self._page_window.pop(tab_id, None)
        self._notify_tab_closed(tab_id)

        if window_id is None or window_id in self._closing_windows:
            return
        remaining = [t for t, w in self._page_window.items() if w == window_id]
        if self._visible.get(window_id) == tab_id:
            self._visible[window_id] = remaining[-1] if remaining else None
        if not remaining and tab_id not in self._closing_pages:
            # The user closed the last page of a window by hand
            context = self._contexts.pop(window_id, None)
            self._visible.pop(window_id, None)
            if context is not None:
                asyncio.ensure_future(context.close())
            self._notify_window_closed(window_id)

    # ── Windows and tabs ────────────────────────────────────────────────────

    async def open_window(self, url: Optional[str] = None) -> tuple[TabId, TabId]:
        if not self.is_running:
            raise RelayError("Browser is not running")
        context = await self._browser.new_context(viewport=DEFAULT_VIEWPORT)
        window_id = next(self._ids)
        self._contexts[window_id] = context
        tab_id = await self.open_tab(window_id, url)
        logger.info(f"Opened window {window_id} with tab {tab_id}")
        return window_id, tab_id

    async def open_tab(self, window_id: TabId, url: Optional[str] = None) -> TabId:
        context = self._contexts.get(window_id)
        if context is None:
            raise ValidationError(f"Window {window_id} does not exist")
        page = await context.new_page()
        tab_id = self._register_page(window_id, page)
        if url:
            await self.navigate(tab_id, url)
        return tab_id

    async def close_tab(self, tab_id: TabId):
        page = self._page(tab_id)
        self._closing_pages.add(tab_id)
        try:
            await page.close()
        finally:
            self._closing_pages.discard(tab_id)

    async def close_window(self, window_id: TabId):
        context = self._contexts.get(window_id)
        if context is None:
            return
        self._closing_windows.add(window_id)
        try:
            await context.close()
        finally:
            self._closing_windows.discard(window_id)
            self._contexts.pop(window_id, None)
            self._visible.pop(window_id, None)
            for tab_id in [t for t, w in self._page_window.items() if w == window_id]:
                self._pages.pop(tab_id, None)
                self._page_window.pop(tab_id, None)
                self.network.forget_tab(tab_id)

    async def window_exists(self, window_id: TabId) -> bool:
        return window_id in self._contexts

    async def list_windows(self) -> list[dict[str, Any]]:
        windows = []
        for window_id in self._contexts:
            tabs = [t for t, w in self._page_window.items() if w == window_id]
            windows.append({"id": window_id, "tabCount": len(tabs), "visibleTabId": self._visible.get(window_id)})
        return windows

    async def tab_info(self, tab_id: TabId) -> dict[str, Any]:
        page = self._page(tab_id)
        try:
            title = await page.title()
        except Exception:
            title = ""
        return {"url": page.url, "title": title}

    async def set_viewport(self, window_id: TabId, width: int, height: int) -> dict[str, Any]:
        if window_id not in self._contexts:
            raise ValidationError(f"Window {window_id} does not exist")
        for tab_id, owner_window in list(self._page_window.items()):
            if owner_window == window_id:
                await self._pages[tab_id].set_viewport_size({"width": width, "height": height})
        return {"windowId": window_id, "width": width, "height": height}

    # ── Visibility and capture ──────────────────────────────────────────────

    async def visible_tab(self, window_id: TabId) -> Optional[TabId]:
        return self._visible.get(window_id)

    async def activate_tab(self, tab_id: TabId):
        page = self._page(tab_id)
        await page.bring_to_front()
        self._visible[self._page_window[tab_id]] = tab_id

    async def capture_visible(self, window_id: TabId, format: str = "png", quality: int = 80) -> bytes:
        tab_id = self._visible.get(window_id)
        if tab_id is None:
            raise RelayError(f"Window {window_id} has no visible tab")
        page = self._page(tab_id)
        if format == "jpeg":
            return await page.screenshot(type="jpeg", quality=quality)
        return await page.screenshot(type="png")

    async def render_settled(self, tab_id: TabId, timeout_ms: int) -> bool:
        return bool(await self._page(tab_id).evaluate(RENDER_SETTLED_JS, timeout_ms))

    # ── Page actions ────────────────────────────────────────────────────────

    async def navigate(self, tab_id: TabId, url: str) -> dict[str, Any]:
        page = self._page(tab_id)
        try:
            response = await page.goto(url, wait_until="domcontentloaded", timeout=BROWSER_TIMEOUT)
        except Exception as e:
            logger.warning(f"Navigation timeout, retrying with commit: {e}")
            response = await page.goto(url, wait_until="commit", timeout=BROWSER_TIMEOUT * 2)
        return {
            "url": page.url,
            "title": await page.title(),
            "status": response.status if response else None,
        }

    async def page_action(self, tab_id: TabId, action: str, params: dict[str, Any]) -> Any:
        page = self._page(tab_id)
        method = getattr(self, f"_action_{action}", None)
        if method is None:
            raise ValidationError(f"Unsupported page action: {action}")
        return await method(page, params)

    async def _action_getContent(self, page: Page, params: dict):
        selector = params.get("selector") or "body"
        if params.get("format") == "html":
            content = await page.content() if selector == "body" else await page.locator(selector).first.inner_html()
        else:
            content = await page.locator(selector).first.inner_text()
        max_length = int(params.get("maxLength", MAX_CONTENT_LENGTH))
        return {
            "url": page.url,
            "title": await page.title(),
            "content": content[:max_length],
            "truncated": len(content) > max_length,
        }

    async def _action_click(self, page: Page, params: dict):
        if params.get("selector"):
            await page.locator(params["selector"]).first.click()
            return {"clicked": params["selector"]}
        if params.get("x") is not None and params.get("y") is not None:
            await page.mouse.click(params["x"], params["y"])
            return {"clicked": {"x": params["x"], "y": params["y"]}}
        raise ValidationError("click requires a selector or x/y coordinates")

    async def _action_type(self, page: Page, params: dict):
        text = params.get("text")
        if text is None:
            raise ValidationError("Missing required parameter: text")
        if params.get("selector"):
            locator = page.locator(params["selector"]).first
            if params.get("clear", True):
                await locator.fill(text)
            else:
                await locator.press_sequentially(text)
        else:
            await page.keyboard.type(text)
        return {"typed": len(text)}

    async def _action_pressKey(self, page: Page, params: dict):
        key = params.get("key")
        if not key:
            raise ValidationError("Missing required parameter: key")
        if params.get("selector"):
            await page.locator(params["selector"]).first.press(key)
        else:
            await page.keyboard.press(key)
        return {"pressed": key}

    async def _action_scroll(self, page: Page, params: dict):
        if params.get("selector"):
            await page.locator(params["selector"]).first.scroll_into_view_if_needed()
        elif params.get("x") is not None or params.get("y") is not None:
            await page.evaluate(
                "([x, y, behavior]) => window.scrollTo({left: x, top: y, behavior})",
                [params.get("x", 0), params.get("y", 0), params.get("behavior", "instant")],
            )
        else:
            amount = int(params.get("amount", 500))
            dx, dy = {
                "up": (0, -amount),
                "down": (0, amount),
                "left": (-amount, 0),
                "right": (amount, 0),
            }.get(params.get("direction", "down"), (0, amount))
            await page.mouse.wheel(dx, dy)
        return await page.evaluate("() => ({scrollX: window.scrollX, scrollY: window.scrollY})")

    async def _action_waitFor(self, page: Page, params: dict):
        timeout = int(params.get("timeout", BROWSER_TIMEOUT))
        if params.get("selector"):
            state = params.get("state", "visible")
            await page.wait_for_selector(params["selector"], state=state, timeout=timeout)
            return {"found": params["selector"], "state": state}
        if params.get("ms") is not None:
            await asyncio.sleep(min(int(params["ms"]), timeout) / 1000)
            return {"waited": int(params["ms"])}
        await page.wait_for_load_state(params.get("loadState", "load"), timeout=timeout)
        return {"loadState": params.get("loadState", "load")}

    async def _action_evaluate(self, page: Page, params: dict):
        script = params.get("script") or params.get("expression")
        if not script:
            raise ValidationError("Missing required parameter: script")
        return {"result": await page.evaluate(script)}

    async def _action_getElementInfo(self, page: Page, params: dict):
        selector = params.get("selector")
        if not selector:
            raise ValidationError("Missing required parameter: selector")
        locator = page.locator(selector)
        count = await locator.count()
        if count == 0:
            return {"found": False, "selector": selector}
        info = await locator.first.evaluate(ELEMENT_INFO_JS)
        return {"found": True, "selector": selector, "count": count, **info}

    async def _action_getPageState(self, page: Page, params: dict):
        return await page.evaluate(PAGE_STATE_JS)

    async def _action_getAccessibilitySnapshot(self, page: Page, params: dict):
        selector = params.get("selector") or "body"
        snapshot = await page.locator(selector).first.aria_snapshot()
        return {"url": page.url, "snapshot": snapshot}

    def console_logs(
        self, tab_id: TabId, level: Optional[str] = None, clear: bool = False, limit: int = 100
    ) -> dict[str, Any]:
        buffer = self._console[tab_id]
        logs = [e for e in buffer if level is None or e["level"] == level]
        total = len(buffer)
        if clear:
            buffer.clear()
        logs = logs[-limit:] if limit > 0 else []
        return {"logs": logs, "total": total, "filtered": len(logs)}
