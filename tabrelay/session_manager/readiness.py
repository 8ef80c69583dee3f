"""Page readiness detection before a capture.

A bounded polling state machine driven only by time and network/render signals:

1. fast path: nothing in flight -> one render-settlement check;
2. critical phase: wait for documents, scripts, stylesheets and XHR/fetch, or
   for ``3 x idle_threshold`` without network progress, or for ``max_wait``;
3. visual phase: wait up to ``min(visual_budget, remaining)`` for images,
   fonts and media;
4. render settlement: a short confirmation delegated to the page.

Timeouts are reported in the result, never raised.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional, Protocol

from ..constants import CRITICAL_RESOURCE_TYPES, VISUAL_RESOURCE_TYPES
from ..models.capture import ReadinessEvent, ReadinessOptions, ReadinessReport
from ..models.session import TabId

logger = logging.getLogger(__name__)

RenderProbe = Callable[[TabId, int], Awaitable[bool]]


class NetworkSignals(Protocol):
    def pending_count(self, tab_id, types=None) -> int: ...

    def activity_count(self, tab_id) -> int: ...


class _Timeline:
    def __init__(self, clock: Callable[[], float]):
        self._clock = clock
        self._start = clock()
        self.events: list[ReadinessEvent] = []

    def elapsed_ms(self) -> int:
        return int((self._clock() - self._start) * 1000)

    def mark(self, event: str, **data: Any):
        self.events.append(ReadinessEvent(elapsed_ms=self.elapsed_ms(), event=event, data=data))


class ReadinessDetector:
    def __init__(
        self,
        network: NetworkSignals,
        render_probe: RenderProbe,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._network = network
        self._render_probe = render_probe
        self._clock = clock
        self._sleep = sleep

    async def wait_until_ready(self, tab_id: TabId, options: Optional[ReadinessOptions] = None) -> ReadinessReport:
        opts = options or ReadinessOptions()
        timeline = _Timeline(self._clock)
        timed_out = False

        try:
            pending = self._network.pending_count(tab_id)
            timeline.mark("start", pending=pending)

            if pending == 0:
                settled = await self._render_check(tab_id, min(opts.render_timeout_ms, opts.max_wait_ms))
                timeline.mark("render_settled", settled=settled, fastPath=True)
            else:
                timed_out = await self._critical_phase(tab_id, opts, timeline)
                if not timed_out and opts.wait_for_visual:
                    budget_spent = await self._visual_phase(tab_id, opts, timeline)
                    timed_out = budget_spent and timeline.elapsed_ms() >= opts.max_wait_ms
                if not timed_out:
                    remaining = opts.max_wait_ms - timeline.elapsed_ms()
                    settled = await self._render_check(tab_id, min(opts.render_timeout_ms, remaining))
                    timeline.mark("render_settled", settled=settled)
        except Exception as e:
            # Best effort: a broken signal source must not block the capture
            logger.warning(f"Readiness check for tab {tab_id} failed: {e}")
            timeline.mark("error", error=str(e))

        total = timeline.elapsed_ms()
        if timed_out:
            total = min(total, opts.max_wait_ms)
            timeline.mark("timeout", maxWaitMs=opts.max_wait_ms)
        else:
            timeline.mark("complete")

        logger.debug(f"Tab {tab_id} ready after {total}ms (timed_out={timed_out})")
        return ReadinessReport(total_wait_ms=total, timeline=timeline.events, timed_out=timed_out)

    async def _critical_phase(self, tab_id: TabId, opts: ReadinessOptions, timeline: _Timeline) -> bool:
        """Returns True when ``max_wait`` ran out first."""
        stall_window = 3 * opts.idle_threshold_ms
        last_activity = self._network.activity_count(tab_id)
        last_progress_ms = timeline.elapsed_ms()

        while True:
            now = timeline.elapsed_ms()
            pending = self._network.pending_count(tab_id, CRITICAL_RESOURCE_TYPES)
            if pending == 0:
                timeline.mark("critical_idle", pending=0)
                return False

            activity = self._network.activity_count(tab_id)
            if activity != last_activity:
                last_activity = activity
                last_progress_ms = now
            elif now - last_progress_ms >= stall_window:
                timeline.mark("critical_idle", pending=pending, stalled=True)
                return False

            if now >= opts.max_wait_ms:
                timeline.mark("critical_timeout", pending=pending)
                return True

            await self._sleep(min(opts.poll_interval_ms, opts.max_wait_ms - now) / 1000)

    async def _visual_phase(self, tab_id: TabId, opts: ReadinessOptions, timeline: _Timeline) -> bool:
        """Returns True when the budget ran out with visual requests still pending."""
        start = timeline.elapsed_ms()
        budget = min(opts.visual_budget_ms, max(0, opts.max_wait_ms - start))

        while True:
            pending = self._network.pending_count(tab_id, VISUAL_RESOURCE_TYPES)
            if pending == 0:
                timeline.mark("visual_idle")
                return False
            spent = timeline.elapsed_ms() - start
            if spent >= budget:
                timeline.mark("visual_timeout", pending=pending, budgetMs=budget)
                return True
            await self._sleep(min(opts.poll_interval_ms, budget - spent) / 1000)

    async def _render_check(self, tab_id: TabId, timeout_ms: int) -> bool:
        if timeout_ms <= 0:
            return False
        try:
            return bool(await asyncio.wait_for(self._render_probe(tab_id, timeout_ms), timeout_ms / 1000))
        except asyncio.TimeoutError:
            return False
        except Exception as e:
            logger.debug(f"Render probe for tab {tab_id} failed: {e}")
            return False
