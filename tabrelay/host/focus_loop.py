"""Focus-loop state: an in-memory marker for one long-running iterative task."""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from pydantic import ValidationError as PydanticValidationError

from ..config import MAX_LOOP_DURATION_SECONDS
from ..errors import ValidationError
from ..models.loop import LoopStartParams, LoopState

logger = logging.getLogger(__name__)


class FocusLoop:
    """Idle -> Active -> Idle.

    Every public call first checks the wall-clock ceiling; an Active loop older
    than ``max_duration`` seconds is reset to Idle before the call proceeds.
    """

    def __init__(self, clock: Callable[[], float] = time.time, max_duration: float = MAX_LOOP_DURATION_SECONDS):
        self._clock = clock
        self._max_duration = max_duration
        self._state = LoopState()

    def _expire_if_stale(self):
        state = self._state
        if state.active and state.started_at is not None:
            elapsed = self._clock() - state.started_at
            if elapsed > self._max_duration:
                logger.warning(
                    f"Focus loop exceeded {self._max_duration:.0f}s after {state.iteration} iteration(s); resetting"
                )
                self._state = LoopState()

    def start(self, prompt: str, max_iterations: int = 0, completion_promise: Optional[str] = None) -> LoopState:
        self._expire_if_stale()
        if self._state.active:
            raise ValidationError("A focus loop is already active. Stop it first.")
        try:
            params = LoopStartParams(
                prompt=prompt,
                max_iterations=max_iterations,
                completion_promise=completion_promise or None,
            )
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid loop parameters: {e.errors()[0]['msg']}") from e

        self._state = LoopState(
            active=True,
            prompt=params.prompt,
            iteration=0,
            max_iterations=params.max_iterations,
            completion_promise=params.completion_promise,
            started_at=self._clock(),
        )
        logger.info(f"Focus loop started (max_iterations={params.max_iterations or 'unlimited'})")
        return self.state()

    def increment_iteration(self) -> LoopState:
        """Advance the counter. No-op when idle or when the bound is reached."""
        self._expire_if_stale()
        state = self._state
        if state.active and (state.max_iterations == 0 or state.iteration < state.max_iterations):
            self._state = state.model_copy(update={"iteration": state.iteration + 1})
        return self.state()

    def stop(self) -> dict:
        self._expire_if_stale()
        previous = self._state
        self._state = LoopState()
        if previous.active:
            logger.info(f"Focus loop stopped after {previous.iteration} iteration(s)")
        return {"wasActive": previous.active, "iterations": previous.iteration}

    def state(self) -> LoopState:
        self._expire_if_stale()
        return self._state.model_copy()

    # ── Gateway commands ────────────────────────────────────────────────────

    def handle(self, command: str, params: dict) -> dict:
        """Run one loop command from the gateway and return its wire result."""
        if command == "startLoop":
            max_iterations = params.get("maxIterations", 0)
            if not isinstance(max_iterations, int) or isinstance(max_iterations, bool):
                raise ValidationError("maxIterations must be an integer")
            prompt = params.get("prompt")
            if not isinstance(prompt, str):
                raise ValidationError("prompt is required")
            return self.start(prompt, max_iterations, params.get("completionPromise")).to_wire()
        if command == "stopLoop":
            return self.stop()
        if command == "getLoopState":
            return self.state().to_wire()
        if command == "incrementLoopIteration":
            return self.increment_iteration().to_wire()
        raise ValidationError(f"Unknown loop command: {command}")
