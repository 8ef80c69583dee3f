"""MCP tools for managing the shared browser session."""

from __future__ import annotations

from typing import Any

import httpx

from ..config import MAX_TABS, SESSION_MANAGER_URL

START_TIMEOUT_SECONDS = 120.0


async def _call_session_manager(method: str, path: str, json_body: dict | None = None) -> dict[str, Any]:
    """Call the session manager HTTP service; failures come back as ``{"error": ...}``."""
    try:
        async with httpx.AsyncClient(base_url=SESSION_MANAGER_URL, timeout=START_TIMEOUT_SECONDS) as client:
            resp = await client.request(method, path, json=json_body if method != "GET" else None)
            if resp.is_error:
                try:
                    detail = resp.json().get("error")
                except ValueError:
                    detail = resp.text.strip()
                return {"error": detail or f"HTTP {resp.status_code}"}
            return resp.json()

    except httpx.ConnectError:
        return {
            "error": f"Session Manager is not reachable at {SESSION_MANAGER_URL}. "
            "The first MCP server starts it automatically; standalone: tabrelay-session-manager"
        }
    except httpx.TimeoutException:
        return {"error": "Session Manager timed out while the browser was launching."}
    except httpx.HTTPError as e:
        return {"error": f"Session Manager request failed: {e}"}


def _failed(result: dict[str, Any]) -> bool:
    # Status documents carry their own "error" field next to "state"
    return "error" in result and result.get("state") is None


def describe_status(status: dict[str, Any]) -> str:
    """Render a session status document as a few readable lines."""
    lines = [f"State: {status.get('state', 'unknown')}"]
    if status.get("error"):
        lines.append(f"Error: {status['error']}")

    host = "connected" if status.get("host_connected") else "not connected"
    restarts = status.get("host_restarts") or 0
    lines.append(f"Relay host: {host}" + (f" (restarted {restarts}x)" if restarts else ""))
    if status.get("pending_requests"):
        lines.append(f"Commands in flight: {status['pending_requests']}")

    session = status.get("session")
    if not session:
        lines.append("Tabs: none (call create_window)")
    else:
        tabs = session.get("tabs") or []
        lines.append(f"Window {session.get('window_id')}: {len(tabs)}/{MAX_TABS} tabs")
        for tab in tabs:
            marker = "*" if tab.get("tab_id") == session.get("active_tab_id") else " "
            lines.append(f"  {marker} tab {tab.get('tab_id')} owned by {tab.get('owner_id')}")

    if status.get("message"):
        lines.append(status["message"])
    return "\n".join(lines)


async def start_session(headless: bool = False) -> str:
    """Launch the shared browser and the relay host.

    Args:
        headless: If False (default), opens a visible browser window.

    Returns:
        Session status message.
    """
    result = await _call_session_manager("POST", "/start", {"headless": headless})
    if _failed(result):
        return f"Error: {result['error']}"

    if result.get("state") == "error":
        return f"Browser failed to start: {result.get('error') or result.get('message', '')}"
    if result.get("state") == "running":
        return f"{result.get('message', '')} Call create_window to open a tab.".strip()
    return describe_status(result)


async def session_status() -> str:
    """Report browser, relay host and tab pool state."""
    result = await _call_session_manager("GET", "/status")
    if _failed(result):
        return f"Error: {result['error']}"
    return describe_status(result)


async def stop_session() -> str:
    """Close the browser and the relay host. Tabs are not preserved."""
    result = await _call_session_manager("POST", "/stop")
    if _failed(result):
        return f"Error: {result['error']}"
    return result.get("message") or "Session stopped."
