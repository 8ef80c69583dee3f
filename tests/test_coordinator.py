import pytest

from tabrelay.errors import NoSessionError, OwnershipError, SessionExpiredError, ValidationError
from tabrelay.models.capture import ReadinessReport
from tabrelay.session_manager.coordinator import Coordinator


class InstantDetector:
    def __init__(self):
        self.options = []

    async def wait_until_ready(self, tab_id, options=None):
        self.options.append(options)
        return ReadinessReport()


@pytest.fixture
def detector():
    return InstantDetector()


@pytest.fixture
def coordinator(backend, detector):
    return Coordinator(backend, max_tabs=3, eviction_policy="oldest", allow_navigate=True, detector=detector)


async def create(coordinator, owner="A", url=None):
    return await coordinator.handle_command("createWindow", {"ownerId": owner, "url": url})


class TestLifecycle:
    async def test_ping(self, coordinator):
        assert (await coordinator.handle_command("ping", {}))["pong"] is True

    async def test_version(self, coordinator):
        version = await coordinator.handle_command("version", {})
        assert {"executor", "backend", "python", "platform"} <= set(version)

    async def test_unknown_command(self, coordinator):
        with pytest.raises(ValidationError, match="Unknown command: explode"):
            await coordinator.handle_command("explode", {})


class TestTabs:
    async def test_create_and_list(self, coordinator):
        first = await create(coordinator, "A", "https://example.com")
        second = await create(coordinator, "B")
        assert first["windowId"] == second["windowId"]

        tabs = await coordinator.handle_command("getTabs", {})
        assert tabs["activeTabId"] == second["tabId"]
        assert tabs["maxTabs"] == 3
        assert [(t["id"], t["ownerId"], t["active"]) for t in tabs["tabs"]] == [
            (first["tabId"], "A", False),
            (second["tabId"], "B", True),
        ]
        assert tabs["tabs"][0]["url"] == "https://example.com"

    async def test_eviction_reported(self, coordinator):
        tabs = [await create(coordinator) for _ in range(3)]
        result = await create(coordinator, "B")
        assert result["closedOldestTab"] == tabs[0]["tabId"]
        assert result["evicted"] is True

    async def test_missing_owner_defaults_to_unknown(self, coordinator):
        await coordinator.handle_command("createWindow", {})
        created = await coordinator.handle_command("createWindow", {})
        result = await coordinator.handle_command("closeTab", {"tabId": created["tabId"], "ownerId": "Z"})
        assert result["closed"] == created["tabId"]

    async def test_close_tab_requires_id(self, coordinator):
        await create(coordinator)
        with pytest.raises(ValidationError, match="tabId"):
            await coordinator.handle_command("closeTab", {"ownerId": "A"})

    async def test_close_tab_of_other_owner(self, coordinator):
        tab = await create(coordinator, "A")
        with pytest.raises(OwnershipError):
            await coordinator.handle_command("closeTab", {"tabId": tab["tabId"], "ownerId": "B"})

    async def test_get_tabs_without_session(self, coordinator):
        with pytest.raises(NoSessionError):
            await coordinator.handle_command("getTabs", {})

    async def test_get_windows(self, coordinator):
        assert (await coordinator.handle_command("getWindows", {}))["sessionWindowId"] is None
        tab = await create(coordinator)
        windows = await coordinator.handle_command("getWindows", {})
        assert windows["sessionWindowId"] == tab["windowId"]
        assert windows["windows"] == [{"id": tab["windowId"], "tabCount": 1}]

    async def test_expired_session(self, coordinator, backend):
        tab = await create(coordinator)
        backend.windows.pop(tab["windowId"])
        with pytest.raises(SessionExpiredError):
            await coordinator.handle_command("getContent", {})


class TestViewport:
    async def test_resize(self, coordinator, backend):
        tab = await create(coordinator)
        await coordinator.handle_command("resizeWindow", {"width": 800, "height": 600})
        assert backend.viewports[tab["windowId"]] == (800, 600)

    @pytest.mark.parametrize("width", [99, 10001, "800", True, None])
    async def test_resize_bounds(self, coordinator, width):
        await create(coordinator)
        with pytest.raises(ValidationError):
            await coordinator.handle_command("resizeWindow", {"width": width, "height": 600})

    async def test_device_preset(self, coordinator, backend):
        tab = await create(coordinator)
        result = await coordinator.handle_command("setViewport", {"device": "iphone-14"})
        assert result["deviceType"] == "mobile"
        assert backend.viewports[tab["windowId"]] == (390, 844)

    async def test_unknown_device(self, coordinator):
        await create(coordinator)
        with pytest.raises(ValidationError, match="Unknown device preset"):
            await coordinator.handle_command("setViewport", {"device": "toaster"})


class TestNavigateAndContent:
    async def test_navigate_active_tab(self, coordinator, backend):
        tab = await create(coordinator)
        result = await coordinator.handle_command("navigate", {"url": "https://example.org"})
        assert result["tabId"] == tab["tabId"]
        assert backend.urls[tab["tabId"]] == "https://example.org"

    async def test_navigate_disabled(self, backend, detector):
        coordinator = Coordinator(backend, allow_navigate=False, detector=detector)
        await create(coordinator)
        with pytest.raises(ValidationError, match="disabled"):
            await coordinator.handle_command("navigate", {"url": "https://example.org"})
        can = await coordinator.handle_command("canNavigate", {})
        assert can == {"canNavigate": False, "hasSession": True, "tabCount": 1}

    async def test_page_action_on_active_tab(self, coordinator):
        tab = await create(coordinator)
        result = await coordinator.handle_command("getContent", {"ownerId": "B"})
        assert result == {"action": "getContent", "tabId": tab["tabId"]}

    async def test_explicit_tab_is_ownership_checked(self, coordinator):
        tab = await create(coordinator, "A")
        with pytest.raises(OwnershipError):
            await coordinator.handle_command("click", {"tabId": tab["tabId"], "ownerId": "B", "selector": "a"})
        result = await coordinator.handle_command("click", {"tabId": tab["tabId"], "ownerId": "A"})
        assert result["action"] == "click"

    async def test_unknown_tab(self, coordinator):
        await create(coordinator)
        with pytest.raises(ValidationError, match="not part of the session"):
            await coordinator.handle_command("getPageState", {"tabId": 999})

    async def test_network_requests_for_tab(self, coordinator, backend):
        tab = await create(coordinator)
        backend.network.request_started("r1", tab["tabId"], "https://example.com/app.js", resource_type="script")
        backend.network.request_started("r2", 999, "https://other/", resource_type="script")
        result = await coordinator.handle_command("getNetworkRequests", {})
        assert [r["requestId"] for r in result["requests"]] == ["r1"]

    async def test_console_logs(self, coordinator):
        await create(coordinator)
        assert (await coordinator.handle_command("getConsoleLogs", {"level": "error"}))["total"] == 0


class TestScreenshot:
    async def test_screenshot_of_background_tab(self, coordinator, detector):
        first = await create(coordinator)
        await create(coordinator)
        result = await coordinator.handle_command(
            "screenshot", {"tabId": first["tabId"], "ownerId": "A", "maxWait": 2000, "waitForVisual": False}
        )
        assert result["tabId"] == first["tabId"]
        assert result["switched"] is True
        assert result["dataUrl"].startswith("data:image/png;base64,")
        options = detector.options[0]
        assert (options.max_wait_ms, options.wait_for_visual) == (2000, False)

    async def test_screenshot_other_owner_tab(self, coordinator):
        tab = await create(coordinator, "A")
        with pytest.raises(OwnershipError):
            await coordinator.handle_command("screenshot", {"tabId": tab["tabId"], "ownerId": "B"})

    async def test_invalid_screenshot_params(self, coordinator):
        await create(coordinator)
        with pytest.raises(ValidationError, match="Invalid parameters for screenshot"):
            await coordinator.handle_command("screenshot", {"format": "gif"})
        with pytest.raises(ValidationError):
            await coordinator.handle_command("screenshot", {"maxWait": 999999})

    async def test_window_closed_by_user(self, coordinator, backend):
        tab = await create(coordinator)
        backend.user_closes_window(tab["windowId"])
        with pytest.raises(NoSessionError):
            await coordinator.handle_command("screenshot", {})
