"""Activity registry port — read-only view of a user's activities.

Both logging paths validate against this; neither writes to it.
"""

from __future__ import annotations

from typing import Protocol

from timelog.data.models import Activity


class ActivityRegistryPort(Protocol):
    """Abstract activity registry used by core modules."""

    async def list_activities(self, user_id: int) -> list[Activity]: ...
