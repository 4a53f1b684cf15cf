"""SQLite store adapter — implements LogStorePort and ActivityRegistryPort.

Wraps the synchronous TrackerDB with asyncio.to_thread so the reconciler
and the diary never block the event loop on disk I/O.
"""

from __future__ import annotations

import asyncio
import logging

from timelog.data.db import TrackerDB
from timelog.data.models import Activity, LogEntry

logger = logging.getLogger(__name__)


class SQLiteTrackerStore:
    """SQLite implementation of the log store and activity registry ports."""

    def __init__(self, db: TrackerDB) -> None:
        self._db = db

    @property
    def db(self) -> TrackerDB:
        return self._db

    # --- ActivityRegistryPort ---

    async def list_activities(self, user_id: int) -> list[Activity]:
        return await asyncio.to_thread(self._db.list_activities, user_id)

    # --- LogStorePort ---

    async def find(
        self, user_id: int, activity_id: int, log_date: str
    ) -> LogEntry | None:
        return await asyncio.to_thread(self._db.find_log, user_id, activity_id, log_date)

    async def create(
        self, user_id: int, activity_id: int, log_date: str, value: float
    ) -> LogEntry:
        return await asyncio.to_thread(
            self._db.create_log, user_id, activity_id, log_date, value,
        )

    async def update(self, log_id: int, value: float) -> LogEntry:
        return await asyncio.to_thread(self._db.update_log, log_id, value)

    async def delete(self, log_id: int) -> None:
        await asyncio.to_thread(self._db.delete_log, log_id)

    async def list_for_date(self, user_id: int, log_date: str) -> list[LogEntry]:
        return await asyncio.to_thread(self._db.list_logs_for_date, user_id, log_date)

    def close(self) -> None:
        self._db.close()
        logger.info("Tracker store closed")
