"""MCP tools that drive the shared browser through the relay host."""

from __future__ import annotations

import base64
import json
from typing import Any, Optional

from mcp.server.fastmcp import Image

from ..client import GatewayClient
from ..config import AGENT_ID

_client: Optional[GatewayClient] = None


def get_client() -> GatewayClient:
    global _client
    if _client is None:
        _client = GatewayClient()
    return _client


def set_client(client: Optional[GatewayClient]):
    global _client
    _client = client


async def send_command(command: str, **params: Any) -> dict:
    """Send a command tagged with this agent's owner id, dropping unset params."""
    payload = {k: v for k, v in params.items() if v is not None and v != ""}
    payload["ownerId"] = AGENT_ID
    return await get_client().send(command, payload)


def _format(response: dict) -> str:
    if not response.get("success"):
        return f"Error: {response.get('error') or 'Unknown error'}"
    result = response.get("result")
    if result is None:
        return '{"success": true}'
    return json.dumps(result, indent=2)


async def run(command: str, **params: Any) -> str:
    return _format(await send_command(command, **params))


# ── Window / tab ─────────────────────────────────────────────────────────────


async def create_window(url: str = "") -> str:
    """Open a tab in the shared window, creating the window on first use."""
    response = await send_command("createWindow", url=url)
    if not response.get("success"):
        return _format(response)
    result = response["result"]
    text = json.dumps(result, indent=2)
    if result.get("closedOldestTab") is not None:
        text += (
            f"\n\nNote: the pool was full, so the oldest tab ({result['closedOldestTab']}) was closed."
        )
    return text


async def close_tab(tab_id: int) -> str:
    return await run("closeTab", tabId=tab_id)


async def screenshot(
    tab_id: Optional[int] = None,
    format: str = "png",
    quality: int = 80,
    scale: float = 1.0,
    skip_readiness: bool = False,
):
    """Capture the tab and return it as an MCP image, or an error string."""
    response = await send_command(
        "screenshot",
        tabId=tab_id,
        format=format,
        quality=quality,
        scale=scale,
        skipReadiness=skip_readiness or None,
    )
    if not response.get("success"):
        return _format(response)

    data_url = response["result"].get("dataUrl", "")
    _, _, encoded = data_url.partition("base64,")
    return Image(data=base64.b64decode(encoded), format=format)
