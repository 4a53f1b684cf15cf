"""Log store port — abstract interface for persisted log entries.

The reconciler depends on this protocol, never on a specific database.
"""

from __future__ import annotations

from typing import Protocol

from timelog.data.models import LogEntry


class LogStoreError(Exception):
    """Raised when any log store operation fails."""


class LogNotFoundError(LogStoreError):
    """Raised when an update or delete targets an entry that does not exist."""

    def __init__(self, log_id: int) -> None:
        self.log_id = log_id
        super().__init__(f"Log entry {log_id} not found")


class DuplicateLogError(LogStoreError):
    """Raised when creating a second entry for an existing (user, activity, date)."""


class StoreClosedError(LogStoreError):
    """Raised when the store is used after close()."""


class LogStorePort(Protocol):
    """Abstract log store used by the reconciler and the daily log editor."""

    async def find(
        self, user_id: int, activity_id: int, log_date: str
    ) -> LogEntry | None: ...

    async def create(
        self, user_id: int, activity_id: int, log_date: str, value: float
    ) -> LogEntry: ...

    async def update(self, log_id: int, value: float) -> LogEntry: ...

    async def delete(self, log_id: int) -> None: ...

    async def list_for_date(self, user_id: int, log_date: str) -> list[LogEntry]: ...
