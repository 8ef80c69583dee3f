"""Application configuration loaded from environment variables."""

import os
import tempfile
import uuid
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


def _default_runtime_dir() -> Path:
    # Prefer the per-user runtime dir over a shared TMPDIR
    xdg_runtime = os.getenv("XDG_RUNTIME_DIR")
    if xdg_runtime and Path(xdg_runtime).is_dir():
        return Path(xdg_runtime) / "tabrelay"
    return Path(tempfile.gettempdir()) / "tabrelay"


# Paths
RUNTIME_DIR = Path(os.getenv("TABRELAY_RUNTIME_DIR", _default_runtime_dir()))
SOCKET_PATH = Path(os.getenv("TABRELAY_SOCKET", RUNTIME_DIR / "tabrelay.sock"))
TOKEN_PATH = Path(os.getenv("TABRELAY_TOKEN_FILE", RUNTIME_DIR / "tabrelay.token"))
HOST_LOG_PATH = Path(os.getenv("TABRELAY_LOG_FILE", RUNTIME_DIR / "tabrelay-host.log"))

# Session manager
SESSION_MANAGER_HOST = os.getenv("SESSION_MANAGER_HOST", "127.0.0.1")
SESSION_MANAGER_PORT = int(os.getenv("SESSION_MANAGER_PORT", "8025"))
SESSION_MANAGER_URL = f"http://{SESSION_MANAGER_HOST}:{SESSION_MANAGER_PORT}"

# Browser
BROWSER_ENGINE = os.getenv("BROWSER_ENGINE", "camoufox").lower()
BROWSER_HEADLESS = os.getenv("BROWSER_HEADLESS", "false").lower() == "true"
BROWSER_TIMEOUT = int(os.getenv("BROWSER_TIMEOUT", "30000"))
ALLOW_NAVIGATE = os.getenv("TABRELAY_ALLOW_NAVIGATE", "true").lower() == "true"

# Agent identity (one MCP server process == one agent)
AGENT_ID = os.getenv("TABRELAY_AGENT_ID") or uuid.uuid4().hex

# Tab pool
MAX_TABS = 10
POOL_EVICTION_POLICY = os.getenv("POOL_EVICTION_POLICY", "oldest").lower()

# Transport
MAX_BUFFER_SIZE = 10 * 1024 * 1024  # 10 MiB
MAX_FRAME_BYTES = 64 * 1024 * 1024
REQUEST_TIMEOUT_SECONDS = 30.0
CLIENT_TIMEOUT_SECONDS = 35.0
HOST_RESTART_DELAY_SECONDS = 1.0

# Readiness
READINESS_MAX_WAIT_MS = 10000
READINESS_IDLE_THRESHOLD_MS = 500
READINESS_POLL_INTERVAL_MS = 100
READINESS_VISUAL_BUDGET_MS = 3000
READINESS_RENDER_TIMEOUT_MS = 1000

# Focus loop
MAX_LOOP_ITERATIONS = 10000
MAX_LOOP_DURATION_SECONDS = 3600  # 1 hour
MAX_PROMPT_LENGTH = 10000
MAX_COMPLETION_PROMISE_LENGTH = 1000

# Network monitor
MAX_NETWORK_ENTRIES = 200
MAX_CONSOLE_ENTRIES = 500


def ensure_dirs():
    """Create the runtime directory with user-only permissions."""
    RUNTIME_DIR.mkdir(parents=True, exist_ok=True)
    os.chmod(RUNTIME_DIR, 0o700)
