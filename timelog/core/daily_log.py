"""
Timelog Assistant — Daily Log Editor.

Direct numeric entry for one user and one day. Each activity has a text
field; edits go through the InputDebouncer and, once the user pauses, only
the fields whose parsed value differs from what is stored are reconciled.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date
from typing import TYPE_CHECKING

from timelog.core.debouncer import DEFAULT_DELAY_SECONDS, InputDebouncer
from timelog.core.reconciler import canonical_date, normalize_value

if TYPE_CHECKING:
    from timelog.core.reconciler import LogReconciler
    from timelog.data.models import LogEntry
    from timelog.ports.log_store_port import LogStorePort

logger = logging.getLogger(__name__)


def _format_value(value: float) -> str:
    return f"{value:g}"


class DailyLogEditor:
    """Holds the text fields for one day and syncs them after each pause."""

    def __init__(
        self,
        user_id: int,
        log_date: date | str,
        reconciler: LogReconciler,
        store: LogStorePort,
        delay: float = DEFAULT_DELAY_SECONDS,
    ) -> None:
        self._user_id = user_id
        self._date = canonical_date(log_date)
        self._reconciler = reconciler
        self._store = store
        self._fields: dict[int, str] = {}
        self._persisted: dict[int, float] = {}
        self._sync_lock = asyncio.Lock()
        self._debouncer: InputDebouncer[dict[int, str]] = InputDebouncer(
            self._sync_snapshot, delay=delay, name=f"daily-log-{user_id}-{self._date}",
        )

    @property
    def date(self) -> str:
        return self._date

    @property
    def fields(self) -> dict[int, str]:
        return dict(self._fields)

    @property
    def persisted(self) -> dict[int, float]:
        return dict(self._persisted)

    async def load(self) -> dict[int, str]:
        """Seed fields and known values from what is already stored for the day."""
        entries = await self._store.list_for_date(self._user_id, self._date)
        self._persisted = {e.activity_id: e.value for e in entries}
        self._fields = {e.activity_id: _format_value(e.value) for e in entries}
        logger.debug("Loaded %d entries for user %d on %s", len(entries), self._user_id, self._date)
        return dict(self._fields)

    def edit(self, activity_id: int, text: str) -> None:
        """Record a keystroke-level change to one field."""
        self._fields[activity_id] = text
        self._debouncer.observe(dict(self._fields))

    async def flush(self) -> None:
        await self._debouncer.flush()

    async def close(self) -> None:
        await self._debouncer.close()

    async def _sync_snapshot(self, snapshot: dict[int, str]) -> None:
        # Deliveries can overlap; each diff must see what the previous one wrote.
        async with self._sync_lock:
            await self._sync_changed(snapshot)

    async def _sync_changed(self, snapshot: dict[int, str]) -> None:
        changed: list[tuple[int, float]] = []
        for activity_id, text in snapshot.items():
            value = normalize_value(text)
            if self._persisted.get(activity_id, 0.0) != value:
                changed.append((activity_id, value))

        if not changed:
            logger.debug("Settled snapshot for %s has no changes", self._date)
            return

        results = await asyncio.gather(
            *(self._sync_field(activity_id, value) for activity_id, value in changed),
            return_exceptions=True,
        )
        for (activity_id, _), result in zip(changed, results):
            if isinstance(result, Exception):
                logger.error(
                    "Failed to save activity %d on %s: %s", activity_id, self._date, result,
                )

    async def _sync_field(self, activity_id: int, value: float) -> LogEntry | None:
        entry = await self._reconciler.reconcile(self._user_id, activity_id, self._date, value)
        if entry is None:
            self._persisted.pop(activity_id, None)
        else:
            self._persisted[activity_id] = entry.value
        return entry
