"""Pydantic models for screen capture and page readiness."""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import Field

from ..config import (
    READINESS_IDLE_THRESHOLD_MS,
    READINESS_MAX_WAIT_MS,
    READINESS_POLL_INTERVAL_MS,
    READINESS_RENDER_TIMEOUT_MS,
    READINESS_VISUAL_BUDGET_MS,
)
from .session import TabId, WireModel


class ReadinessOptions(WireModel):
    max_wait_ms: int = Field(default=READINESS_MAX_WAIT_MS, ge=0, le=60000)
    idle_threshold_ms: int = Field(default=READINESS_IDLE_THRESHOLD_MS, ge=0)
    poll_interval_ms: int = Field(default=READINESS_POLL_INTERVAL_MS, gt=0)
    wait_for_visual: bool = True
    visual_budget_ms: int = Field(default=READINESS_VISUAL_BUDGET_MS, ge=0)
    render_timeout_ms: int = Field(default=READINESS_RENDER_TIMEOUT_MS, ge=0)


class ReadinessEvent(WireModel):
    elapsed_ms: int
    event: str
    data: dict[str, Any] = Field(default_factory=dict)


class ReadinessReport(WireModel):
    total_wait_ms: int = 0
    timeline: list[ReadinessEvent] = Field(default_factory=list)
    timed_out: bool = False


class CaptureTicket(WireModel):
    """One queued screenshot request."""

    tab_id: Optional[TabId] = None
    format: Literal["png", "jpeg"] = "png"
    quality: int = Field(default=80, ge=1, le=100)
    scale: float = Field(default=1.0, gt=0, le=1.0)
    skip_readiness: bool = False
    readiness: ReadinessOptions = Field(default_factory=ReadinessOptions)


class CaptureResult(WireModel):
    tab_id: TabId
    data_url: str
    format: str
    switched: bool = False
    width: Optional[int] = None
    height: Optional[int] = None
    readiness: Optional[ReadinessReport] = None
