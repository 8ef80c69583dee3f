"""Stop hook for focus loops.

Invoked by the agent runtime when a session is about to end. Reads the hook
input JSON on stdin and either exits silently (allow the exit) or prints a
``{"decision": "block", ...}`` document that feeds the loop prompt back in.

The exit is allowed when the relay host is unreachable, no loop is active, the
iteration bound is reached, or the completion promise ``<promise>TEXT</promise>``
appears in the tail of the transcript.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import sys
from pathlib import Path
from typing import Any, Optional

from .client import GatewayClient

logger = logging.getLogger("tabrelay-stop-hook")

TRANSCRIPT_TAIL_BYTES = 64 * 1024
PROMISE_RE = re.compile(r"<promise>(.*?)</promise>", re.DOTALL)


def read_transcript_tail(path: Optional[str], max_bytes: int = TRANSCRIPT_TAIL_BYTES) -> str:
    if not path:
        return ""
    try:
        with open(Path(path).expanduser(), "rb") as f:
            f.seek(0, 2)
            size = f.tell()
            f.seek(max(0, size - max_bytes))
            return f.read().decode("utf-8", errors="replace")
    except OSError as e:
        logger.debug(f"Cannot read transcript {path}: {e}")
        return ""


def promise_fulfilled(transcript: str, promise: Optional[str]) -> bool:
    if not promise:
        return False
    expected = " ".join(promise.split())
    return any(" ".join(m.split()) == expected for m in PROMISE_RE.findall(transcript))


async def evaluate(client: GatewayClient, hook_input: dict[str, Any]) -> Optional[dict[str, Any]]:
    """Return the block decision, or None to let the session end."""
    response = await client.send("getLoopState")
    if not response.get("success"):
        return None

    state = response.get("result") or {}
    if not state.get("active"):
        return None

    iteration = state.get("iteration") or 0
    max_iterations = state.get("maxIterations") or 0
    if not isinstance(iteration, int):
        iteration = 0

    if max_iterations > 0 and iteration >= max_iterations:
        await client.send("stopLoop")
        return None

    transcript = read_transcript_tail(hook_input.get("transcript_path"))
    if promise_fulfilled(transcript, state.get("completionPromise")):
        await client.send("stopLoop")
        return None

    await client.send("incrementLoopIteration")
    next_iteration = iteration + 1
    if max_iterations > 0:
        message = f"tabrelay loop iteration {next_iteration}/{max_iterations}"
    else:
        message = f"tabrelay loop iteration {next_iteration} (unlimited)"

    return {"decision": "block", "reason": state.get("prompt", ""), "systemMessage": message}


def main() -> int:
    logging.basicConfig(
        stream=sys.stderr,
        level=logging.WARNING,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )
    try:
        hook_input = json.loads(sys.stdin.read() or "{}")
    except json.JSONDecodeError:
        hook_input = {}

    decision = asyncio.run(evaluate(GatewayClient(), hook_input))
    if decision is not None:
        print(json.dumps(decision))
    return 0


if __name__ == "__main__":
    sys.exit(main())
