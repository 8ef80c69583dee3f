"""MCP Server entry point for tabrelay.

Every MCP server process is one agent. Its tools talk to the relay host's command
gateway and tag each command with this agent's owner id, so several agents can
share one browser window without closing each other's tabs.

The Session Manager HTTP service (aiohttp on localhost:8025) is auto-started by
the first agent. Later agents find the port in use and act as guests.
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

from aiohttp.web import AppRunner, TCPSite
from mcp.server.fastmcp import FastMCP

from .config import AGENT_ID, SESSION_MANAGER_HOST, SESSION_MANAGER_PORT, ensure_dirs
from .tools import browser_tools as bt
from .tools.loop_tools import detect_iterative_task, loop_status, start_loop, stop_loop
from .tools.session_tools import session_status, start_session, stop_session

# Configure logging to stderr (stdout is reserved for MCP JSON-RPC)
logging.basicConfig(
    stream=sys.stderr,
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)
logger = logging.getLogger("tabrelay")

ensure_dirs()


# ── Lifespan: auto-start Session Manager ─────────────────────────────────────


@asynccontextmanager
async def lifespan(server: FastMCP):
    """Start the Session Manager HTTP service alongside the MCP server."""
    from .session_manager.manager import create_app

    app = create_app()
    runner = AppRunner(app)
    await runner.setup()
    site = TCPSite(runner, SESSION_MANAGER_HOST, SESSION_MANAGER_PORT)
    managed = False
    try:
        await site.start()
        logger.info(
            "Session Manager auto-started on %s:%s", SESSION_MANAGER_HOST, SESSION_MANAGER_PORT
        )
        managed = True
    except OSError:
        # Port already in use: another agent owns the browser
        logger.info(
            "Session Manager already running on %s:%s, joining as guest agent %s",
            SESSION_MANAGER_HOST, SESSION_MANAGER_PORT, AGENT_ID,
        )
        await runner.cleanup()

    try:
        yield {}
    finally:
        if managed:
            await runner.cleanup()
            logger.info("Session Manager stopped.")


# ── MCP Server ───────────────────────────────────────────────────────────────

mcp = FastMCP(
    "tabrelay",
    lifespan=lifespan,
    instructions=(
        "tabrelay - shared browser automation for multiple agents. "
        "Call start_session once to launch the browser, then create_window to open your own tab "
        "(the window holds at most 10 tabs; the oldest is closed when it is full). "
        "You can only close tabs you created. Prefer get_page_state and "
        "get_accessibility_snapshot over screenshots to understand a page. "
        "Use start_loop for long iterative tasks."
    ),
)


# ── Session Tools ────────────────────────────────────────────────────────────


@mcp.tool()
async def tool_start_session(headless: bool = False) -> str:
    """Launch the shared browser and the relay host.

    Args:
        headless: If False, opens a visible browser window.
    """
    return await start_session(headless)


@mcp.tool()
async def tool_session_status() -> str:
    """Show browser, relay host and tab pool state."""
    return await session_status()


@mcp.tool()
async def tool_stop_session() -> str:
    """Close the browser and relay host. All tabs are lost."""
    return await stop_session()


# ── Window / Tab Tools ───────────────────────────────────────────────────────


@mcp.tool()
async def create_window(url: str = "") -> str:
    """Open a new tab owned by you in the shared window.

    Always call this before other browser commands. Creates the window on first
    use. Returns the tabId to pass to other tools.

    Args:
        url: Optional URL to open.
    """
    return await bt.create_window(url)


@mcp.tool()
async def navigate(url: str, tab_id: Optional[int] = None) -> str:
    """Navigate a tab to a URL.

    Args:
        url: The URL to navigate to.
        tab_id: Your tab (defaults to the active tab).
    """
    return await bt.run("navigate", url=url, tabId=tab_id)


@mcp.tool()
async def get_tabs() -> str:
    """List the tabs in the shared window with URL, title and owner."""
    return await bt.run("getTabs")


@mcp.tool()
async def close_tab(tab_id: int) -> str:
    """Close one of your tabs.

    Args:
        tab_id: Tab to close. Tabs created by other agents cannot be closed.
    """
    return await bt.close_tab(tab_id)


@mcp.tool()
async def close_window() -> str:
    """Close the shared window. Fails while other agents still have tabs open."""
    return await bt.run("closeWindow")


@mcp.tool()
async def resize_window(width: int, height: int) -> str:
    """Resize the shared window's viewport.

    Args:
        width: Width in pixels (100-10000).
        height: Height in pixels (100-10000).
    """
    return await bt.run("resizeWindow", width=width, height=height)


@mcp.tool()
async def set_viewport(device: str = "", width: int = 0, height: int = 0) -> str:
    """Set the viewport to a device preset or a custom size.

    Presets: iphone-se, iphone-14, iphone-14-pro-max, pixel-7, galaxy-s23,
    ipad-mini, ipad-pro-11, ipad-pro-12, laptop, desktop.

    Args:
        device: Preset name.
        width: Custom width (use instead of device).
        height: Custom height (use instead of device).
    """
    return await bt.run("setViewport", device=device, width=width or None, height=height or None)


# ── Content Tools ────────────────────────────────────────────────────────────


@mcp.tool()
async def get_content(selector: str = "", format: str = "text", tab_id: Optional[int] = None) -> str:
    """Get the text (or HTML) of the page or one element.

    Args:
        selector: Optional CSS selector.
        format: "text" or "html".
        tab_id: Your tab (defaults to the active tab).
    """
    return await bt.run("getContent", selector=selector, format=format, tabId=tab_id)


@mcp.tool()
async def click(selector: str, tab_id: Optional[int] = None) -> str:
    """Click an element by CSS selector.

    Args:
        selector: e.g. "button.submit", "#login-btn".
        tab_id: Your tab (defaults to the active tab).
    """
    return await bt.run("click", selector=selector, tabId=tab_id)


@mcp.tool()
async def type_text(selector: str, text: str, clear: bool = True, tab_id: Optional[int] = None) -> str:
    """Type text into an input field.

    Args:
        selector: CSS selector of the input.
        text: Text to type.
        clear: Replace existing text first (default True).
        tab_id: Your tab (defaults to the active tab).
    """
    return await bt.run("type", selector=selector, text=text, clear=clear, tabId=tab_id)


@mcp.tool()
async def press_key(key: str, selector: str = "", tab_id: Optional[int] = None) -> str:
    """Press a key such as "Enter", "Escape" or "Control+A".

    Args:
        key: Key name.
        selector: Optional element to focus first.
        tab_id: Your tab (defaults to the active tab).
    """
    return await bt.run("pressKey", key=key, selector=selector, tabId=tab_id)


@mcp.tool()
async def scroll(
    selector: str = "",
    direction: str = "down",
    amount: int = 500,
    tab_id: Optional[int] = None,
) -> str:
    """Scroll to an element or by an amount.

    Args:
        selector: Element to scroll into view.
        direction: "up", "down", "left" or "right" when no selector is given.
        amount: Pixels to scroll.
        tab_id: Your tab (defaults to the active tab).
    """
    return await bt.run("scroll", selector=selector, direction=direction, amount=amount, tabId=tab_id)


@mcp.tool()
async def wait_for(selector: str, timeout: int = 10000, tab_id: Optional[int] = None) -> str:
    """Wait for an element to appear.

    Args:
        selector: CSS selector to wait for.
        timeout: Maximum wait in milliseconds.
        tab_id: Your tab (defaults to the active tab).
    """
    return await bt.run("waitFor", selector=selector, timeout=timeout, tabId=tab_id)


@mcp.tool()
async def evaluate(expression: str, tab_id: Optional[int] = None) -> str:
    """Run JavaScript in the page and return the result.

    Args:
        expression: e.g. "document.title".
        tab_id: Your tab (defaults to the active tab).
    """
    return await bt.run("evaluate", expression=expression, tabId=tab_id)


@mcp.tool()
async def get_element(selector: str, tab_id: Optional[int] = None) -> str:
    """Get attributes, text, visibility and position of an element.

    Args:
        selector: CSS selector.
        tab_id: Your tab (defaults to the active tab).
    """
    return await bt.run("getElementInfo", selector=selector, tabId=tab_id)


@mcp.tool()
async def get_page_state(tab_id: Optional[int] = None) -> str:
    """Get structured page state (URL, title, scroll, viewport). Faster than a screenshot."""
    return await bt.run("getPageState", tabId=tab_id)


@mcp.tool()
async def get_accessibility_snapshot(selector: str = "", tab_id: Optional[int] = None) -> str:
    """Get the accessibility tree of the page or an element as YAML.

    Args:
        selector: Root element (default body).
        tab_id: Your tab (defaults to the active tab).
    """
    return await bt.run("getAccessibilitySnapshot", selector=selector, tabId=tab_id)


@mcp.tool()
async def screenshot(
    tab_id: Optional[int] = None,
    format: str = "png",
    quality: int = 80,
    scale: float = 1.0,
    skip_readiness: bool = False,
):
    """Capture the visible viewport of a tab.

    Captures are queued: only one runs at a time. If the tab is not visible it
    is brought to front and the capture waits for the page to settle.

    Args:
        tab_id: Your tab (defaults to the active tab).
        format: "png" or "jpeg".
        quality: JPEG quality 1-100.
        scale: Downscale factor (0-1].
        skip_readiness: Capture immediately after switching tabs.
    """
    return await bt.screenshot(tab_id, format, quality, scale, skip_readiness)


# ── Devtools ─────────────────────────────────────────────────────────────────


@mcp.tool()
async def get_console(level: str = "", clear: bool = False, limit: int = 100, tab_id: Optional[int] = None) -> str:
    """Get console messages and uncaught errors captured from a tab.

    Args:
        level: Filter: log, warning, error, info, debug.
        clear: Clear the buffer after reading.
        limit: Maximum entries (default 100).
        tab_id: Your tab (defaults to the active tab).
    """
    return await bt.run("getConsoleLogs", level=level, clear=clear, limit=limit, tabId=tab_id)


@mcp.tool()
async def get_network(
    type: str = "",
    status: str = "",
    clear: bool = False,
    limit: int = 50,
    tab_id: Optional[int] = None,
) -> str:
    """Get captured network requests with status codes and timing.

    Args:
        type: Resource type filter: document, script, stylesheet, image, xhr, fetch...
        status: "pending", "completed" or "error".
        clear: Clear the history after reading.
        limit: Maximum entries (default 50).
        tab_id: Your tab (defaults to the active tab).
    """
    return await bt.run("getNetworkRequests", type=type, status=status, clear=clear, limit=limit, tabId=tab_id)


# ── Focus Loop ───────────────────────────────────────────────────────────────


@mcp.tool()
async def tool_start_loop(prompt: str, max_iterations: int = 0, completion_promise: str = "") -> str:
    """Start a focus loop: the stop hook re-feeds the prompt until done.

    Args:
        prompt: Task to repeat.
        max_iterations: Upper bound, 0 for unlimited (max 10000).
        completion_promise: Text that ends the loop when output as <promise>TEXT</promise>.
    """
    return await start_loop(prompt, max_iterations, completion_promise)


@mcp.tool()
async def tool_stop_loop() -> str:
    """Stop the active focus loop."""
    return await stop_loop()


@mcp.tool()
async def tool_loop_status() -> str:
    """Show the focus loop state."""
    return await loop_status()


@mcp.tool()
async def tool_detect_iterative_task(prompt: str) -> str:
    """Check whether a task looks iterative enough for a focus loop."""
    return await detect_iterative_task(prompt)


# ── Entry Point ──────────────────────────────────────────────────────────────


def main():
    """Run the MCP server on STDIO transport."""
    logger.info(f"Starting tabrelay MCP server (agent {AGENT_ID})...")
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
