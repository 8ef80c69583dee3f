"""Per-tab network request tracking.

Fed by the browser backend's request events. Keeps a bounded history for the
``getNetworkRequests`` command and exact in-flight counts for the readiness
detector.
"""

from __future__ import annotations

import time
from collections import defaultdict, deque
from typing import Any, Callable, Iterable, Optional

from ..config import MAX_NETWORK_ENTRIES


class NetworkMonitor:
    def __init__(self, max_entries: int = MAX_NETWORK_ENTRIES, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._history: deque[dict[str, Any]] = deque(maxlen=max_entries)
        self._in_flight: dict[Any, dict[str, Any]] = {}
        self._activity: defaultdict[Any, int] = defaultdict(int)

    def request_started(self, request_id, tab_id, url: str, method: str = "GET", resource_type: str = "other"):
        entry = {
            "requestId": request_id,
            "tabId": tab_id,
            "url": url,
            "method": method,
            "type": resource_type,
            "timestamp": int(self._clock() * 1000),
            "status": "pending",
        }
        self._history.append(entry)
        self._in_flight[request_id] = entry
        self._activity[tab_id] += 1

    def request_finished(self, request_id, status_code: Optional[int] = None):
        entry = self._in_flight.pop(request_id, None)
        if entry is None:
            return
        entry["status"] = "completed"
        entry["statusCode"] = status_code
        entry["duration"] = int(self._clock() * 1000) - entry["timestamp"]
        self._activity[entry["tabId"]] += 1

    def request_failed(self, request_id, error: str = ""):
        entry = self._in_flight.pop(request_id, None)
        if entry is None:
            return
        entry["status"] = "error"
        entry["error"] = error
        entry["duration"] = int(self._clock() * 1000) - entry["timestamp"]
        self._activity[entry["tabId"]] += 1

    def forget_tab(self, tab_id):
        for request_id in [rid for rid, e in self._in_flight.items() if e["tabId"] == tab_id]:
            del self._in_flight[request_id]
        self._activity.pop(tab_id, None)

    def pending_count(self, tab_id, types: Optional[Iterable[str]] = None) -> int:
        """Number of in-flight requests for a tab, optionally limited to resource types."""
        wanted = frozenset(types) if types is not None else None
        return sum(
            1
            for e in self._in_flight.values()
            if e["tabId"] == tab_id and (wanted is None or e["type"] in wanted)
        )

    def activity_count(self, tab_id) -> int:
        """Monotonic counter of request starts and completions for a tab."""
        return self._activity[tab_id]

    def query(
        self,
        tab_id=None,
        type: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 50,
        clear: bool = False,
    ) -> dict[str, Any]:
        requests = list(self._history)
        if tab_id is not None:
            requests = [r for r in requests if r["tabId"] == tab_id]
        if type:
            requests = [r for r in requests if r["type"] == type]
        if status:
            requests = [r for r in requests if r["status"] == status]
        requests = requests[-limit:] if limit > 0 else []

        total = len(self._history)
        if clear:
            self._history.clear()

        return {
            "requests": [dict(r) for r in requests],
            "total": total,
            "filtered": len(requests),
        }
