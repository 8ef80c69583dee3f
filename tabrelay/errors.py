"""Error taxonomy shared by the host and the session manager.

Every error here is converted to ``{"success": false, "error": message}`` at the
gateway or channel boundary; none of them should take a process down.
"""

from __future__ import annotations


class RelayError(Exception):
    """Base class for all coordination errors."""


class AuthError(RelayError):
    def __init__(self, message: str = "Invalid or missing auth token"):
        super().__init__(message)


class CommandNotAllowedError(RelayError):
    def __init__(self, command: str):
        self.command = command
        super().__init__(f"Command not allowed: {command}")


class ValidationError(RelayError):
    """Malformed input: bad JSON, missing params, out-of-bounds values."""


class NoSessionError(RelayError):
    def __init__(self, message: str = "No active session. Call createWindow first."):
        super().__init__(message)


class SessionExpiredError(RelayError):
    def __init__(self, window_id=None):
        self.window_id = window_id
        super().__init__(f"Session window {window_id} is gone. Call createWindow to start a new one.")


class OwnershipError(RelayError):
    """Raised when an agent targets a tab that another agent created."""

    def __init__(self, operation: str, tab_id, owner_id: str, requesting_owner_id: str):
        self.operation = operation
        self.tab_id = tab_id
        self.owner_id = owner_id
        self.requesting_owner_id = requesting_owner_id
        super().__init__(
            f"Cannot {operation} tab {tab_id}: owned by agent {owner_id}, "
            f"requested by agent {requesting_owner_id}. "
            "Wait for the owner to release it or use another tab."
        )


class PoolFullError(RelayError):
    def __init__(self, max_tabs: int, policy: str):
        self.max_tabs = max_tabs
        self.policy = policy
        super().__init__(f"Tab pool is full ({max_tabs} tabs) and eviction policy '{policy}' allows no eviction.")


class CaptureRaceError(RelayError):
    def __init__(self, expected_tab_id, visible_tab_id):
        self.expected_tab_id = expected_tab_id
        self.visible_tab_id = visible_tab_id
        super().__init__(
            f"Tab {expected_tab_id} was switched away (now showing tab {visible_tab_id}) before capture."
        )


class RelayTimeoutError(RelayError):
    def __init__(self, message: str = "Request timed out"):
        super().__init__(message)


class ChannelDisconnectedError(RelayError):
    def __init__(self, message: str = "Automation channel disconnected"):
        super().__init__(message)
