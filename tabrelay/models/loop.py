"""Pydantic models for the focus loop."""

from __future__ import annotations

from typing import Optional

from pydantic import Field, field_validator

from ..config import MAX_COMPLETION_PROMISE_LENGTH, MAX_LOOP_ITERATIONS, MAX_PROMPT_LENGTH
from .session import WireModel


class LoopStartParams(WireModel):
    prompt: str = Field(min_length=1, max_length=MAX_PROMPT_LENGTH)
    max_iterations: int = Field(default=0, ge=0, le=MAX_LOOP_ITERATIONS)
    completion_promise: Optional[str] = Field(default=None, max_length=MAX_COMPLETION_PROMISE_LENGTH)

    @field_validator("prompt")
    @classmethod
    def _prompt_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("prompt must not be blank")
        return value


class LoopState(WireModel):
    active: bool = False
    prompt: str = ""
    iteration: int = 0
    max_iterations: int = 0  # 0 = unlimited
    completion_promise: Optional[str] = None
    started_at: Optional[float] = None
