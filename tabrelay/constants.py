"""Command names, resource categories and device presets."""

VERSION = "0.5.0"

# Sentinel owner for tabs that predate ownership tracking
UNKNOWN_OWNER = "unknown"

# ── Command allow-list ───────────────────────────────────────────────────────

LOOP_COMMANDS = frozenset({
    "startLoop",
    "stopLoop",
    "getLoopState",
    "incrementLoopIteration",
})

ALLOWED_COMMANDS = frozenset({
    # Lifecycle
    "ping",
    "version",
    # Window / tab
    "createWindow",
    "closeWindow",
    "closeTab",
    "getTabs",
    "getWindows",
    "resizeWindow",
    "setViewport",
    "navigate",
    "canNavigate",
    # Content
    "getContent",
    "click",
    "type",
    "pressKey",
    "scroll",
    "waitFor",
    "evaluate",
    "getElementInfo",
    "getPageState",
    "getAccessibilitySnapshot",
    # Capture
    "screenshot",
    # Devtools
    "getConsoleLogs",
    "getNetworkRequests",
}) | LOOP_COMMANDS

# ── Network resource categories ──────────────────────────────────────────────

# Requests that block a meaningful first render
CRITICAL_RESOURCE_TYPES = frozenset({
    "document",
    "main_frame",
    "sub_frame",
    "script",
    "stylesheet",
    "xhr",
    "xmlhttprequest",
    "fetch",
})

# Requests that only affect how the page looks
VISUAL_RESOURCE_TYPES = frozenset({
    "image",
    "imageset",
    "font",
    "media",
})

# ── Viewport presets (content area, not window chrome) ───────────────────────

DEVICE_PRESETS = {
    # Phones
    "iphone-se": {"width": 375, "height": 667, "type": "mobile"},
    "iphone-14": {"width": 390, "height": 844, "type": "mobile"},
    "iphone-14-pro-max": {"width": 430, "height": 932, "type": "mobile"},
    "pixel-7": {"width": 412, "height": 915, "type": "mobile"},
    "galaxy-s23": {"width": 360, "height": 780, "type": "mobile"},
    # Tablets
    "ipad-mini": {"width": 768, "height": 1024, "type": "tablet"},
    "ipad-pro-11": {"width": 834, "height": 1194, "type": "tablet"},
    "ipad-pro-12": {"width": 1024, "height": 1366, "type": "tablet"},
    # Desktop
    "laptop": {"width": 1366, "height": 768, "type": "desktop"},
    "desktop": {"width": 1920, "height": 1080, "type": "desktop"},
}

# ── Focus-loop task detection ────────────────────────────────────────────────

ITERATIVE_KEYWORDS = [
    "tdd",
    "test-driven",
    "test driven",
    "iterate",
    "iterative",
    "refactor",
    "keep trying",
    "keep fixing",
    "fix until",
    "repeat until",
    "until it passes",
    "until it works",
    "until all tests pass",
    "until the build succeeds",
    "try again",
    "retry",
    "debug until",
    "fix errors",
    "resolve issues",
    "improvement loop",
]

HIGH_CONFIDENCE_KEYWORDS = [
    "focus loop",
    "persistent iteration",
    "iterative development",
    "continuous improvement",
]

TEST_COMMAND_MARKERS = ["test", "pytest", "jest", "npm test"]
