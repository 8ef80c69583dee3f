"""Tab ownership checks."""

from __future__ import annotations

from ..constants import UNKNOWN_OWNER
from ..errors import OwnershipError
from ..models.session import TabEntry


def verify_ownership(entry: TabEntry, requesting_owner_id: str, operation: str) -> None:
    """Raise ``OwnershipError`` unless the requester may act on ``entry``.

    Tabs owned by ``"unknown"`` are open to every agent.
    """
    if entry.owner_id == UNKNOWN_OWNER or entry.owner_id == requesting_owner_id:
        return
    raise OwnershipError(operation, entry.tab_id, entry.owner_id, requesting_owner_id)
