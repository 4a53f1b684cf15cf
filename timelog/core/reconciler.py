"""
Timelog Assistant — Log Reconciler.

Single write path into the log store, shared by direct entry and the diary.
Given a candidate (user, activity, date, value) it decides whether to create,
update, delete, or leave the stored entry alone.

Zero, negative, blank, and non-numeric values all mean "no entry": an
existing entry is deleted and nothing is created. Clearing a field and
typing 0 are therefore the same operation.
"""

from __future__ import annotations

import asyncio
import logging
import math
import re
from contextlib import asynccontextmanager
from datetime import date
from typing import TYPE_CHECKING, AsyncIterator

if TYPE_CHECKING:
    from timelog.data.models import LogEntry
    from timelog.ports.log_store_port import LogStorePort

logger = logging.getLogger(__name__)

_TripleKey = tuple[int, int, str]

# Leading number of a string, e.g. "2.5" in "2.5h" or ".5" in ".5 pages"
_NUMBER_PREFIX = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")


def normalize_value(value: float | int | str | None) -> float:
    """Coerce raw input to a float. Blank, non-numeric, NaN and inf become 0.0.

    Strings are read up to the end of their leading number, so "2.5h" is
    2.5 and "1.2.3" is 1.2; a string with no leading number is 0.0.
    """
    if value is None:
        return 0.0
    if isinstance(value, str):
        match = _NUMBER_PREFIX.match(value.strip())
        if match is None:
            return 0.0
        value = match.group()
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(number):
        return 0.0
    return number


def canonical_date(log_date: date | str) -> str:
    """Return log_date as YYYY-MM-DD. Raises ValueError if it isn't a date."""
    if isinstance(log_date, date):
        return log_date.isoformat()
    return date.fromisoformat(log_date.strip()).isoformat()


class LogReconciler:
    """Upserts user-entered values into the log store, one triple at a time."""

    def __init__(self, store: LogStorePort) -> None:
        self._store = store
        self._locks: dict[_TripleKey, asyncio.Lock] = {}
        self._holders: dict[_TripleKey, int] = {}

    @asynccontextmanager
    async def _triple_lock(self, key: _TripleKey) -> AsyncIterator[None]:
        """Serialize read-modify-write per triple; distinct triples run freely."""
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._holders[key] = self._holders.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if self._holders[key] == 0:
                del self._holders[key]
                del self._locks[key]

    async def reconcile(
        self,
        user_id: int,
        activity_id: int,
        log_date: date | str,
        value: float | int | str | None,
    ) -> LogEntry | None:
        """Bring the stored entry for (user, activity, date) in line with value.

        Returns the entry as it now exists, or None when there is none.
        Performs at most one create, update, or delete. The activity is not
        checked for existence; that is the caller's job.
        """
        day = canonical_date(log_date)
        amount = normalize_value(value)

        async with self._triple_lock((user_id, activity_id, day)):
            existing = await self._store.find(user_id, activity_id, day)

            if amount <= 0:
                if existing is None:
                    return None
                await self._store.delete(existing.id)
                logger.info(
                    "Log #%d deleted (activity %d on %s, value %r)",
                    existing.id, activity_id, day, value,
                )
                return None

            if existing is not None:
                if existing.value == amount:
                    logger.debug("Log #%d unchanged at %s", existing.id, amount)
                    return existing
                updated = await self._store.update(existing.id, amount)
                logger.info(
                    "Log #%d updated: activity %d on %s %s → %s",
                    existing.id, activity_id, day, existing.value, amount,
                )
                return updated

            created = await self._store.create(user_id, activity_id, day, amount)
            logger.info(
                "Log #%d created: activity %d on %s = %s",
                created.id, activity_id, day, amount,
            )
            return created
