import base64
import json

import pytest
from mcp.server.fastmcp import Image

from tabrelay.config import AGENT_ID
from tabrelay.tools import browser_tools, loop_tools

from conftest import png_bytes


class ScriptedClient:
    def __init__(self, responses=None):
        self.responses = responses or {}
        self.sent = []

    async def send(self, command, params=None):
        self.sent.append((command, params))
        return self.responses.get(command, {"success": True, "result": None})


@pytest.fixture
def client():
    scripted = ScriptedClient()
    browser_tools.set_client(scripted)
    yield scripted
    browser_tools.set_client(None)


class TestBrowserTools:
    async def test_owner_id_added_and_empty_params_dropped(self, client):
        await browser_tools.run("getContent", selector="", tabId=None, format="text")
        assert client.sent == [("getContent", {"format": "text", "ownerId": AGENT_ID})]

    async def test_error_formatting(self, client):
        client.responses["click"] = {"success": False, "error": "Element not found: #x"}
        assert await browser_tools.run("click", selector="#x") == "Error: Element not found: #x"

    async def test_create_window_mentions_eviction(self, client):
        client.responses["createWindow"] = {
            "success": True,
            "result": {"tabId": 11, "windowId": 100, "closedOldestTab": 1},
        }
        text = await browser_tools.create_window("https://example.com")
        assert json.loads(text.split("\n\n")[0])["tabId"] == 11
        assert "oldest tab (1) was closed" in text

    async def test_screenshot_returns_image(self, client):
        data = png_bytes(12)
        client.responses["screenshot"] = {
            "success": True,
            "result": {"tabId": 2, "dataUrl": "data:image/png;base64," + base64.b64encode(data).decode()},
        }
        image = await browser_tools.screenshot(tab_id=2)
        assert isinstance(image, Image)
        assert image.data == data
        params = client.sent[0][1]
        assert "skipReadiness" not in params
        assert params["tabId"] == 2


class TestLoopTools:
    async def test_start_loop_text(self, client):
        client.responses["startLoop"] = {
            "success": True,
            "result": {"active": True, "maxIterations": 10, "completionPromise": "DONE"},
        }
        text = await loop_tools.start_loop("fix the build", max_iterations=10, completion_promise="DONE")
        assert text.startswith("Focus loop started (10 iterations).")
        assert "<promise>DONE</promise>" in text

    async def test_stop_loop_when_idle(self, client):
        client.responses["stopLoop"] = {"success": True, "result": {"wasActive": False, "iterations": 0}}
        assert await loop_tools.stop_loop() == "No focus loop was active."

    async def test_detect_iterative_task(self):
        result = json.loads(await loop_tools.detect_iterative_task("use tdd and iterate"))
        assert result["detected"] is True


class TestSessionTools:
    def test_describe_status(self):
        from tabrelay.tools.session_tools import describe_status

        text = describe_status({
            "state": "running",
            "host_connected": True,
            "host_restarts": 2,
            "session": {
                "window_id": 100,
                "active_tab_id": 2,
                "tabs": [{"tab_id": 1, "owner_id": "A"}, {"tab_id": 2, "owner_id": "B"}],
            },
        })
        assert "Relay host: connected (restarted 2x)" in text
        assert "Window 100: 2/10 tabs" in text
        assert "  * tab 2 owned by B" in text

    def test_describe_status_without_session(self):
        from tabrelay.tools.session_tools import describe_status

        assert "Tabs: none" in describe_status({"state": "not_running"})
