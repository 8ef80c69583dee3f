"""Command-line client for the relay host.

Usage:
    tabrelay-cli ping
    tabrelay-cli createWindow --url https://example.com
    tabrelay-cli click --selector "button.submit"
    tabrelay-cli type --selector "input[name=q]" --text hello
    tabrelay-cli getConsoleLogs --level error --limit 20
    tabrelay-cli startLoop --prompt "make the tests pass" --maxIterations 20
"""

from __future__ import annotations

import argparse
import asyncio
import json
import re
import sys
from typing import Any

from .client import GatewayClient
from .config import AGENT_ID
from .constants import ALLOWED_COMMANDS


def coerce(value: str) -> Any:
    """Digits become ints and ``true``/``false`` become bools; anything else stays a string."""
    if re.fullmatch(r"\d+", value):
        return int(value)
    if value == "true":
        return True
    if value == "false":
        return False
    return value


def parse_params(tokens: list[str]) -> dict[str, Any]:
    params: dict[str, Any] = {}
    i = 0
    while i < len(tokens):
        token = tokens[i]
        if token.startswith("--") and i + 1 < len(tokens):
            params[token[2:]] = coerce(tokens[i + 1])
            i += 2
        else:
            i += 1
    return params


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tabrelay-cli",
        description="Send one command to the tabrelay host and print the result.",
        epilog="Commands: " + ", ".join(sorted(ALLOWED_COMMANDS)),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("command", help="Command name, e.g. createWindow")
    parser.add_argument("params", nargs=argparse.REMAINDER, help="--key value pairs")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    params = parse_params(args.params)
    params.setdefault("ownerId", AGENT_ID)

    response = asyncio.run(GatewayClient().send(args.command, params))
    if response.get("success"):
        print(json.dumps(response.get("result"), indent=2))
        return 0
    print(f"Error: {response.get('error')}", file=sys.stderr)
    return 1


if __name__ == "__main__":
    sys.exit(main())
