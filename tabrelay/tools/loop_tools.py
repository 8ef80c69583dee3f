"""MCP tools for the focus loop kept by the relay host."""

from __future__ import annotations

import json

from .browser_tools import send_command
from .task_detector import task_detector


async def start_loop(prompt: str, max_iterations: int = 0, completion_promise: str = "") -> str:
    response = await send_command(
        "startLoop",
        prompt=prompt,
        maxIterations=max_iterations,
        completionPromise=completion_promise,
    )
    if not response.get("success"):
        return f"Error: {response.get('error')}"

    state = response["result"]
    bound = f"{state['maxIterations']} iterations" if state["maxIterations"] else "unlimited iterations"
    text = f"Focus loop started ({bound})."
    if state.get("completionPromise"):
        text += f" Output <promise>{state['completionPromise']}</promise> when the task is complete."
    return text


async def stop_loop() -> str:
    response = await send_command("stopLoop")
    if not response.get("success"):
        return f"Error: {response.get('error')}"
    result = response["result"]
    if not result.get("wasActive"):
        return "No focus loop was active."
    return f"Focus loop stopped after {result.get('iterations', 0)} iterations."


async def loop_status() -> str:
    response = await send_command("getLoopState")
    if not response.get("success"):
        return f"Error: {response.get('error')}"
    return json.dumps(response["result"], indent=2)


async def detect_iterative_task(prompt: str) -> str:
    """Score a task description for focus-loop suitability."""
    return json.dumps(task_detector.detect_iterative_task(prompt), indent=2)
