"""Tab pool for the single shared browsing session.

The pool is the only writer of the session: a bounded, insertion-ordered list of
tabs inside one window, each tagged with the agent that created it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from ..config import MAX_TABS, POOL_EVICTION_POLICY
from ..errors import NoSessionError, PoolFullError, SessionExpiredError, ValidationError
from ..models.session import CreateTabResult, SessionSnapshot, TabEntry, TabId
from .backend import BrowserBackend
from .ownership import verify_ownership

logger = logging.getLogger(__name__)


class EvictionPolicy(str, Enum):
    OLDEST = "oldest"  # FIFO across all owners
    OWN = "own"  # only the caller's own tabs may be evicted
    NONE = "none"  # never evict, fail when full


@dataclass
class Session:
    window_id: TabId
    tabs: list[TabEntry] = field(default_factory=list)
    active_tab_id: Optional[TabId] = None
    created_at: float = field(default_factory=time.time)

    def find(self, tab_id: TabId) -> Optional[TabEntry]:
        for entry in self.tabs:
            if entry.tab_id == tab_id:
                return entry
        return None

    def remove(self, tab_id: TabId) -> Optional[TabEntry]:
        entry = self.find(tab_id)
        if entry is None:
            return None
        self.tabs.remove(entry)
        if self.active_tab_id == tab_id:
            self.active_tab_id = self.tabs[-1].tab_id if self.tabs else None
        return entry

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            window_id=self.window_id,
            tabs=list(self.tabs),
            active_tab_id=self.active_tab_id,
            created_at=self.created_at,
        )


class TabPool:
    def __init__(
        self,
        backend: BrowserBackend,
        max_tabs: int = MAX_TABS,
        policy: EvictionPolicy | str = POOL_EVICTION_POLICY,
        clock: Callable[[], float] = time.time,
    ):
        self._backend = backend
        self.max_tabs = max_tabs
        self.policy = EvictionPolicy(policy)
        self._clock = clock
        self._session: Optional[Session] = None
        # Creation and closing await the browser; keep them from interleaving
        self._lock = asyncio.Lock()
        # Tabs we are closing ourselves; their close notifications are ignored
        self._closing: set[TabId] = set()
        self._closing_window: Optional[TabId] = None

    @property
    def session(self) -> Optional[Session]:
        return self._session

    def snapshot(self) -> Optional[SessionSnapshot]:
        return self._session.snapshot() if self._session else None

    async def require_session(self) -> Session:
        """Return the live session or raise if there is none or its window vanished."""
        session = self._session
        if session is None:
            raise NoSessionError()
        if not await self._backend.window_exists(session.window_id):
            logger.warning(f"Window {session.window_id} no longer exists, dropping session")
            if self._session is session:
                self._session = None
            raise SessionExpiredError(session.window_id)
        return session

    async def create_tab(self, url: Optional[str], owner_id: str) -> CreateTabResult:
        async with self._lock:
            session = self._session
            if session is not None and not await self._backend.window_exists(session.window_id):
                logger.info(f"Window {session.window_id} is gone, starting a new session")
                self._session = session = None

            if session is None:
                window_id, tab_id = await self._backend.open_window(url)
                entry = TabEntry(tab_id=tab_id, owner_id=owner_id, created_at=self._clock())
                self._session = Session(
                    window_id=window_id, tabs=[entry], active_tab_id=tab_id, created_at=self._clock()
                )
                logger.info(f"Created session window {window_id} with tab {tab_id} for {owner_id}")
                return CreateTabResult(tab_id=tab_id, window_id=window_id, owner_id=owner_id, tab_count=1)

            evicted_id = None
            if len(session.tabs) >= self.max_tabs:
                victim = self._pick_victim(session, owner_id)
                await self._close_backend_tab(victim.tab_id)
                session.remove(victim.tab_id)
                evicted_id = victim.tab_id
                logger.info(f"Pool full, evicted tab {victim.tab_id} (owner {victim.owner_id})")

            tab_id = await self._backend.open_tab(session.window_id, url)
            if self._session is not session:
                raise SessionExpiredError(session.window_id)

            session.tabs.append(TabEntry(tab_id=tab_id, owner_id=owner_id, created_at=self._clock()))
            session.active_tab_id = tab_id
            return CreateTabResult(
                tab_id=tab_id,
                window_id=session.window_id,
                owner_id=owner_id,
                evicted=evicted_id is not None,
                closed_oldest_tab=evicted_id,
                tab_count=len(session.tabs),
            )

    def _pick_victim(self, session: Session, owner_id: str) -> TabEntry:
        if self.policy is EvictionPolicy.OLDEST:
            return session.tabs[0]
        if self.policy is EvictionPolicy.OWN:
            for entry in session.tabs:
                if entry.owner_id == owner_id:
                    return entry
        raise PoolFullError(self.max_tabs, self.policy.value)

    async def close_tab(self, tab_id: TabId, owner_id: str) -> dict:
        # Check under the lock: a create holding it may evict the tab or add others
        async with self._lock:
            session = await self.require_session()
            entry = session.find(tab_id)
            if entry is None:
                raise ValidationError(f"Tab {tab_id} is not part of the session")
            verify_ownership(entry, owner_id, "close")

            await self._close_backend_tab(tab_id)
            session.remove(tab_id)
            result = {"closed": tab_id, "activeTabId": session.active_tab_id, "tabCount": len(session.tabs)}
            if not session.tabs and self._session is session:
                # Last tab gone: the window goes with it
                await self._close_backend_window(session.window_id)
                self._session = None
                result["windowClosed"] = True
            return result

    async def close_window(self, owner_id: str) -> dict:
        async with self._lock:
            session = self._session
            if session is None:
                raise NoSessionError()
            for entry in session.tabs:
                verify_ownership(entry, owner_id, "close the window containing")

            closed_tabs = len(session.tabs)
            await self._close_backend_window(session.window_id)
            if self._session is session:
                self._session = None
        logger.info(f"Closed session window {session.window_id}")
        return {"closed": True, "windowId": session.window_id, "closedTabs": closed_tabs}

    def get_active_tab(self) -> TabEntry:
        """Return the active tab, re-deriving it from the pool when the tracked id is stale."""
        session = self._session
        if session is None or not session.tabs:
            raise NoSessionError()
        entry = session.find(session.active_tab_id) if session.active_tab_id is not None else None
        if entry is None:
            entry = session.tabs[-1]
            logger.debug(f"Active tab {session.active_tab_id} is stale, using {entry.tab_id}")
            session.active_tab_id = entry.tab_id
        return entry

    def get_entry(self, tab_id: TabId) -> TabEntry:
        session = self._session
        if session is None:
            raise NoSessionError()
        entry = session.find(tab_id)
        if entry is None:
            raise ValidationError(f"Tab {tab_id} is not part of the session")
        return entry

    def list_tabs(self) -> list[TabEntry]:
        return list(self._session.tabs) if self._session else []

    def set_active(self, tab_id: TabId):
        if self._session is not None and self._session.find(tab_id) is not None:
            self._session.active_tab_id = tab_id

    # ── Backend notifications ───────────────────────────────────────────────

    def handle_tab_removed(self, tab_id: TabId):
        if tab_id in self._closing or self._session is None:
            return
        if self._session.remove(tab_id) is not None:
            logger.info(f"Tab {tab_id} was closed outside the pool")
            if not self._session.tabs:
                self._session = None

    def handle_window_removed(self, window_id: TabId):
        if window_id == self._closing_window:
            return
        if self._session is not None and self._session.window_id == window_id:
            logger.info(f"Session window {window_id} was closed, session destroyed")
            self._session = None

    async def _close_backend_tab(self, tab_id: TabId):
        self._closing.add(tab_id)
        try:
            await self._backend.close_tab(tab_id)
        finally:
            self._closing.discard(tab_id)

    async def _close_backend_window(self, window_id: TabId):
        self._closing_window = window_id
        try:
            await self._backend.close_window(window_id)
        finally:
            self._closing_window = None
