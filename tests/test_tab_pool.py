import asyncio

import pytest
from conftest import FakeBackend

from tabrelay.errors import NoSessionError, OwnershipError, PoolFullError, SessionExpiredError, ValidationError
from tabrelay.models.session import TabEntry
from tabrelay.session_manager.ownership import verify_ownership
from tabrelay.session_manager.tab_pool import EvictionPolicy, TabPool


@pytest.fixture
def pool(backend):
    pool = TabPool(backend, max_tabs=10, policy="oldest")
    backend.set_listeners(pool.handle_tab_removed, pool.handle_window_removed)
    return pool


async def fill(pool, owner, count):
    return [(await pool.create_tab(None, owner)).tab_id for _ in range(count)]


class TestOwnership:
    def test_owner_and_unknown_pass(self):
        verify_ownership(TabEntry(tab_id=1, owner_id="A"), "A", "close")
        verify_ownership(TabEntry(tab_id=1), "B", "close")

    def test_other_owner_rejected(self):
        with pytest.raises(OwnershipError) as exc:
            verify_ownership(TabEntry(tab_id=5, owner_id="A"), "B", "close")
        err = exc.value
        assert (err.operation, err.tab_id, err.owner_id, err.requesting_owner_id) == ("close", 5, "A", "B")
        assert "tab 5" in str(err)


class TestCreate:
    async def test_first_create_opens_window(self, pool, backend):
        result = await pool.create_tab("https://example.com", "A")
        assert result.window_id in backend.windows
        assert result.evicted is False
        assert pool.get_active_tab().tab_id == result.tab_id
        assert backend.urls[result.tab_id] == "https://example.com"

    async def test_full_pool_evicts_oldest_across_owners(self, pool, backend):
        """Ten tabs owned by A, then B creates one: tab 1 goes, tab 11 is active."""
        tabs = await fill(pool, "A", 10)
        assert tabs == list(range(1, 11))

        result = await pool.create_tab(None, "B")
        assert result.tab_id == 11
        assert result.closed_oldest_tab == 1
        assert result.evicted is True
        assert backend.closed_tabs == [1]
        assert [t.tab_id for t in pool.list_tabs()] == list(range(2, 12))
        assert pool.get_active_tab().tab_id == 11
        assert result.to_wire()["closedOldestTab"] == 1

    async def test_pool_never_exceeds_bound(self, pool):
        for i in range(25):
            await pool.create_tab(None, "A" if i % 2 else "B")
            assert len(pool.list_tabs()) <= 10
        assert len(pool.list_tabs()) == 10

    async def test_policy_none_refuses_without_side_effects(self, backend):
        pool = TabPool(backend, max_tabs=3, policy=EvictionPolicy.NONE)
        await fill(pool, "A", 3)
        with pytest.raises(PoolFullError):
            await pool.create_tab(None, "B")
        assert backend.closed_tabs == []
        assert len(pool.list_tabs()) == 3

    async def test_policy_own_evicts_callers_oldest(self, backend):
        pool = TabPool(backend, max_tabs=3, policy="own")
        await fill(pool, "A", 1)
        b_tabs = await fill(pool, "B", 2)
        result = await pool.create_tab(None, "B")
        assert result.closed_oldest_tab == b_tabs[0]
        with pytest.raises(PoolFullError):
            await pool.create_tab(None, "C")

    async def test_vanished_window_starts_new_session(self, pool, backend):
        first = await pool.create_tab(None, "A")
        backend.windows.pop(first.window_id)
        second = await pool.create_tab(None, "A")
        assert second.window_id != first.window_id
        assert [t.tab_id for t in pool.list_tabs()] == [second.tab_id]


class TestClose:
    async def test_other_owner_cannot_close(self, pool, backend):
        await fill(pool, "A", 4)
        tab = (await pool.create_tab(None, "A")).tab_id
        before = pool.list_tabs()
        with pytest.raises(OwnershipError) as exc:
            await pool.close_tab(tab, "B")
        assert (exc.value.tab_id, exc.value.owner_id, exc.value.requesting_owner_id) == (tab, "A", "B")
        assert pool.list_tabs() == before
        assert backend.closed_tabs == []

    async def test_close_active_reassigns_most_recent(self, pool):
        tabs = await fill(pool, "A", 3)
        await pool.close_tab(tabs[2], "A")
        assert pool.get_active_tab().tab_id == tabs[1]

    async def test_close_inactive_keeps_active(self, pool):
        tabs = await fill(pool, "A", 3)
        await pool.close_tab(tabs[0], "A")
        assert pool.get_active_tab().tab_id == tabs[2]

    async def test_closing_last_tab_closes_window(self, pool, backend):
        tab = await pool.create_tab(None, "A")
        result = await pool.close_tab(tab.tab_id, "A")
        assert result["windowClosed"] is True
        assert pool.session is None
        assert backend.closed_windows == [tab.window_id]

    async def test_unknown_owner_tabs_closable_by_anyone(self, pool):
        await pool.create_tab(None, "unknown")
        tab = (await pool.create_tab(None, "unknown")).tab_id
        await pool.close_tab(tab, "B")

    async def test_close_window_blocked_by_other_owner(self, pool):
        await fill(pool, "A", 2)
        await fill(pool, "B", 1)
        with pytest.raises(OwnershipError):
            await pool.close_window("A")
        assert pool.session is not None

    async def test_close_window(self, pool, backend):
        await fill(pool, "A", 2)
        await pool.create_tab(None, "unknown")
        result = await pool.close_window("A")
        assert result["closedTabs"] == 3
        assert pool.session is None
        with pytest.raises(NoSessionError):
            pool.get_active_tab()


class TestSession:
    async def test_no_session(self, pool):
        with pytest.raises(NoSessionError):
            pool.get_active_tab()
        with pytest.raises(NoSessionError):
            await pool.require_session()
        assert pool.list_tabs() == []

    async def test_active_tab_self_heals(self, pool):
        tabs = await fill(pool, "A", 3)
        pool.session.active_tab_id = 999
        assert pool.get_active_tab().tab_id == tabs[-1]
        assert pool.session.active_tab_id == tabs[-1]

    async def test_expired_window(self, pool, backend):
        result = await pool.create_tab(None, "A")
        backend.windows.pop(result.window_id)
        with pytest.raises(SessionExpiredError):
            await pool.require_session()
        assert pool.session is None

    async def test_tab_closed_outside_pool(self, pool, backend):
        tabs = await fill(pool, "A", 3)
        backend.user_closes_tab(tabs[2])
        assert [t.tab_id for t in pool.list_tabs()] == tabs[:2]
        assert pool.get_active_tab().tab_id == tabs[1]

    async def test_window_closed_outside_pool(self, pool, backend):
        result = await pool.create_tab(None, "A")
        backend.user_closes_window(result.window_id)
        assert pool.session is None

    async def test_owner_is_immutable(self, pool):
        await pool.create_tab(None, "A")
        entry = pool.get_active_tab()
        with pytest.raises(Exception):
            entry.owner_id = "B"


class GatedBackend(FakeBackend):
    """Parks the first call to ``gated`` until ``release()``."""

    def __init__(self, gated):
        super().__init__()
        self.gated = gated
        self.entered = asyncio.Event()
        self._gate = asyncio.Event()

    def release(self):
        self._gate.set()

    async def _wait_once(self, name):
        if self.gated == name:
            self.gated = None
            self.entered.set()
            await self._gate.wait()

    async def open_tab(self, window_id, url=None):
        await self._wait_once("open_tab")
        return await super().open_tab(window_id, url)

    async def window_exists(self, window_id):
        await self._wait_once("window_exists")
        return await super().window_exists(window_id)


class TestConcurrentMutations:
    async def test_close_window_sees_tab_added_while_waiting(self):
        backend = GatedBackend(gated=None)
        pool = TabPool(backend, max_tabs=10)
        await pool.create_tab(None, "A")

        backend.gated = "open_tab"
        create_b = asyncio.create_task(pool.create_tab(None, "B"))
        await backend.entered.wait()
        close_a = asyncio.create_task(pool.close_window("A"))
        await asyncio.sleep(0)
        backend.release()

        await create_b
        with pytest.raises(OwnershipError):
            await close_a
        assert [t.owner_id for t in pool.list_tabs()] == ["A", "B"]
        assert backend.closed_windows == []

    async def test_close_tab_evicted_while_waiting(self):
        backend = GatedBackend(gated=None)
        pool = TabPool(backend, max_tabs=2)
        first = (await pool.create_tab(None, "A")).tab_id
        await pool.create_tab(None, "A")

        backend.gated = "window_exists"
        create_b = asyncio.create_task(pool.create_tab(None, "B"))
        await backend.entered.wait()
        close_a = asyncio.create_task(pool.close_tab(first, "A"))
        await asyncio.sleep(0)
        backend.release()

        assert (await create_b).closed_oldest_tab == first
        with pytest.raises(ValidationError):
            await close_a
        assert backend.closed_tabs == [first]
