"""Pydantic models for the shared browsing session."""

from __future__ import annotations

import time
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..constants import UNKNOWN_OWNER

TabId = Union[int, str]


class WireModel(BaseModel):
    """Base for models serialized with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class TabEntry(WireModel):
    """One pooled tab. The owner never changes after creation."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    tab_id: TabId
    owner_id: str = UNKNOWN_OWNER
    created_at: float = Field(default_factory=time.time)


class SessionSnapshot(WireModel):
    """Read-only view of the session handed to callers."""

    window_id: TabId
    tabs: list[TabEntry] = Field(default_factory=list)
    active_tab_id: Optional[TabId] = None
    created_at: float


class CreateTabResult(WireModel):
    tab_id: TabId
    window_id: TabId
    owner_id: str
    evicted: bool = False
    closed_oldest_tab: Optional[TabId] = None
    tab_count: int = 1


class SessionStatus(BaseModel):
    """Current state of the session manager service."""

    state: str = "not_running"  # not_running, starting, running, error
    browser_running: bool = False
    host_connected: bool = False
    host_restarts: int = 0
    pending_requests: int = 0
    session: Optional[SessionSnapshot] = None
    message: str = ""
    error: Optional[str] = None
