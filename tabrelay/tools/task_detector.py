"""Heuristics that suggest when a task would benefit from a focus loop."""

from __future__ import annotations

import time
from collections import defaultdict, deque
from typing import Any, Callable, Optional

from ..constants import HIGH_CONFIDENCE_KEYWORDS, ITERATIVE_KEYWORDS, TEST_COMMAND_MARKERS

EDIT_WINDOW_SECONDS = 10 * 60
MAX_COMMAND_HISTORY = 50
MAX_EDITS_PER_FILE = 10
MAX_ERRORS = 20
RECENT_COMMANDS = 20


class TaskDetector:
    """Keyword and behavior scoring.

    Score contributions: iterative keyword 5, high-confidence keyword 4,
    three or more recent test runs 3, a file edited three or more times in ten
    minutes 2. A score of 5 is "medium" and detected, 8 is "high".
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self.enabled = True
        self.settings: dict[str, Any] = {
            "autoDetect": True,
            "autoStart": False,
            "defaultMaxIterations": 15,
        }
        self._commands: deque[dict[str, Any]] = deque(maxlen=MAX_COMMAND_HISTORY)
        self._edits: defaultdict[str, deque[float]] = defaultdict(lambda: deque(maxlen=MAX_EDITS_PER_FILE))
        self._errors: deque[dict[str, Any]] = deque(maxlen=MAX_ERRORS)

    def update_settings(self, settings: dict[str, Any]):
        self.settings.update(settings)
        self.enabled = settings.get("autoDetect", True) is not False

    def detect_iterative_task(self, prompt: Optional[str]) -> dict[str, Any]:
        if not self.enabled or not prompt:
            return {"detected": False, "confidence": "low", "score": 0}

        score = 0
        reasons = []
        lowered = prompt.lower()

        keyword = next((k for k in ITERATIVE_KEYWORDS if k in lowered), None)
        if keyword:
            score += 5
            reasons.append(f'Keyword: "{keyword}"')

        keyword = next((k for k in HIGH_CONFIDENCE_KEYWORDS if k in lowered), None)
        if keyword:
            score += 4
            reasons.append(f'High-confidence keyword: "{keyword}"')

        test_runs = [c for c in self._recent() if self._is_test_run(c)]
        if len(test_runs) >= 3:
            score += 3
            reasons.append(f"Repeated test runs: {len(test_runs)}")

        hot_files = [f for f, stamps in self._edits.items() if self._recent_edit_count(stamps) >= 3]
        if hot_files:
            score += 2
            reasons.append(f"Repeated file edits: {len(hot_files)} files")

        if score >= 8:
            confidence = "high"
        elif score >= 5:
            confidence = "medium"
        else:
            confidence = "low"

        return {
            "detected": score >= 5,
            "confidence": confidence,
            "score": score,
            "reasons": reasons,
            "suggestedMaxIterations": self.settings["defaultMaxIterations"],
            "shouldAutoStart": bool(self.settings["autoStart"]) and confidence == "high",
        }

    def record_command(self, command: str, params: Optional[dict] = None, result: Optional[dict] = None):
        params = params or {}
        failed = bool(result and result.get("isError"))
        now = self._clock()
        self._commands.append({
            "command": command,
            "params": params,
            "timestamp": now,
            "success": not failed,
        })

        if command in ("Edit", "Write") and params.get("file_path"):
            self._edits[params["file_path"]].append(now)

        if failed and result.get("text"):
            self._errors.append({"error": result["text"], "timestamp": now})

    def get_iterative_patterns(self) -> dict[str, Any]:
        recent = self._recent()
        counts: dict[str, int] = {}
        for c in recent:
            counts[c["command"]] = counts.get(c["command"], 0) + 1

        edited = []
        for path, stamps in self._edits.items():
            count = self._recent_edit_count(stamps)
            if count >= 2:
                edited.append({"file": path, "editCount": count})
        return {
            "totalCommands": len(recent),
            "commandCounts": counts,
            "failureCount": sum(1 for c in recent if not c["success"]),
            "editedFiles": edited,
            "errorCount": len(self._errors),
        }

    def reset(self):
        self._commands.clear()
        self._edits.clear()
        self._errors.clear()

    def _recent(self) -> list[dict[str, Any]]:
        return list(self._commands)[-RECENT_COMMANDS:]

    def _recent_edit_count(self, stamps) -> int:
        cutoff = self._clock() - EDIT_WINDOW_SECONDS
        return sum(1 for t in stamps if t > cutoff)

    @staticmethod
    def _is_test_run(entry: dict[str, Any]) -> bool:
        shell_command = entry["params"].get("command")
        return isinstance(shell_command, str) and any(m in shell_command for m in TEST_COMMAND_MARKERS)


task_detector = TaskDetector()
