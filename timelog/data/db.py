"""
Timelog Assistant — Tracker Database.

Activities and their daily log values persist in SQLite.
One TrackerDB is opened per process (or per test) and closed explicitly;
nothing here is module-level state.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from timelog.data.models import Activity, LogEntry
from timelog.ports.log_store_port import (
    DuplicateLogError,
    LogNotFoundError,
    StoreClosedError,
)

logger = logging.getLogger(__name__)


class TrackerDB:
    """SQLite-backed storage for activities and log entries.

    Holds a single connection for its whole lifetime so that ":memory:"
    databases work; calls from worker threads are serialized with a lock.
    """

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from timelog.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._conn: sqlite3.Connection | None = sqlite3.connect(
            db_path, check_same_thread=False,
        )
        self._conn.row_factory = sqlite3.Row
        self._init_db()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Close the connection. Further calls raise StoreClosedError."""
        with self._lock:
            if self._conn is None:
                return
            self._conn.close()
            self._conn = None
        logger.debug("Tracker DB closed at %s", self._db_path)

    @property
    def closed(self) -> bool:
        return self._conn is None

    def __enter__(self) -> TrackerDB:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            if self._conn is None:
                raise StoreClosedError(f"Tracker DB at {self._db_path} is closed")
            with self._conn:
                yield self._conn

    def _init_db(self) -> None:
        """Create the activities and logs tables if they don't exist."""
        with self._transaction() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS activities (
                    id              INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id         INTEGER NOT NULL,
                    name            TEXT    NOT NULL,
                    name_normalized TEXT    NOT NULL,
                    category        TEXT    NOT NULL DEFAULT '',
                    goal            REAL    NOT NULL DEFAULT 0,
                    unit            TEXT    NOT NULL DEFAULT 'Hours',
                    UNIQUE (user_id, name_normalized)
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS logs (
                    id          INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id     INTEGER NOT NULL,
                    activity_id INTEGER NOT NULL,
                    date        TEXT    NOT NULL,
                    value       REAL    NOT NULL,
                    UNIQUE (user_id, activity_id, date)
                )
            """)
        logger.debug("Tracker tables initialized at %s", self._db_path)

    # ------------------------------------------------------------------
    # Activities
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_activity(row: sqlite3.Row) -> Activity:
        return Activity(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            name_normalized=row["name_normalized"],
            category=row["category"],
            goal=row["goal"],
            unit=row["unit"],
        )

    def add_activity(
        self,
        user_id: int,
        name: str,
        category: str = "",
        goal: float = 0.0,
        unit: str = "Hours",
    ) -> Activity:
        """Insert a new activity. Names are unique per user, ignoring case."""
        name = name.strip()
        if not name:
            raise ValueError("Activity name must not be empty")
        if goal < 0:
            raise ValueError(f"Activity goal must be non-negative, got {goal}")
        name_normalized = name.lower()

        try:
            with self._transaction() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO activities
                        (user_id, name, name_normalized, category, goal, unit)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (user_id, name, name_normalized, category.strip(), goal, unit.strip()),
                )
                activity_id = cursor.lastrowid
        except sqlite3.IntegrityError as exc:
            raise ValueError(f"Activity '{name}' already exists") from exc

        activity = Activity(
            id=activity_id,
            user_id=user_id,
            name=name,
            name_normalized=name_normalized,
            category=category.strip(),
            goal=goal,
            unit=unit.strip(),
        )
        logger.info("Activity added: #%d '%s' for user %d", activity_id, name, user_id)
        return activity

    def get_activity(self, activity_id: int) -> Activity | None:
        """Fetch a single activity by ID."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM activities WHERE id = ?", (activity_id,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_activity(row)

    def list_activities(self, user_id: int) -> list[Activity]:
        """Return a user's activities, ordered by category then name."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM activities WHERE user_id = ? ORDER BY category, name_normalized",
                (user_id,),
            ).fetchall()
        return [self._row_to_activity(r) for r in rows]

    def find_activity_by_name(self, user_id: int, name: str) -> Activity | None:
        """Case-insensitive exact match on name, scoped to a user."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM activities WHERE user_id = ? AND name_normalized = ?",
                (user_id, name.strip().lower()),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_activity(row)

    def update_activity(
        self,
        activity_id: int,
        name: str | None = None,
        category: str | None = None,
        goal: float | None = None,
        unit: str | None = None,
    ) -> Activity:
        """Change any of name/category/goal/unit. The ID never changes."""
        activity = self.get_activity(activity_id)
        if activity is None:
            raise ValueError(f"Activity {activity_id} not found")

        if name is not None:
            if not name.strip():
                raise ValueError("Activity name must not be empty")
            activity.name = name.strip()
            activity.name_normalized = activity.name.lower()
        if category is not None:
            activity.category = category.strip()
        if goal is not None:
            if goal < 0:
                raise ValueError(f"Activity goal must be non-negative, got {goal}")
            activity.goal = goal
        if unit is not None:
            activity.unit = unit.strip()

        try:
            with self._transaction() as conn:
                conn.execute(
                    """
                    UPDATE activities
                    SET name = ?, name_normalized = ?, category = ?, goal = ?, unit = ?
                    WHERE id = ?
                    """,
                    (
                        activity.name, activity.name_normalized,
                        activity.category, activity.goal, activity.unit,
                        activity_id,
                    ),
                )
        except sqlite3.IntegrityError as exc:
            raise ValueError(f"Activity '{activity.name}' already exists") from exc

        logger.info("Activity #%d updated", activity_id)
        return activity

    def delete_activity(self, activity_id: int) -> bool:
        """Permanently delete an activity together with all of its log entries."""
        with self._transaction() as conn:
            logs_deleted = conn.execute(
                "DELETE FROM logs WHERE activity_id = ?", (activity_id,),
            ).rowcount
            cursor = conn.execute(
                "DELETE FROM activities WHERE id = ?", (activity_id,),
            )
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Activity #%d deleted with %d log entries", activity_id, logs_deleted)
        return deleted

    # ------------------------------------------------------------------
    # Logs
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_log(row: sqlite3.Row) -> LogEntry:
        return LogEntry(
            id=row["id"],
            user_id=row["user_id"],
            activity_id=row["activity_id"],
            date=row["date"],
            value=row["value"],
        )

    def find_log(self, user_id: int, activity_id: int, log_date: str) -> LogEntry | None:
        """Fetch the entry for one (user, activity, date), if any."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM logs WHERE user_id = ? AND activity_id = ? AND date = ?",
                (user_id, activity_id, log_date),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_log(row)

    def create_log(
        self, user_id: int, activity_id: int, log_date: str, value: float,
    ) -> LogEntry:
        """Insert a new entry. Raises DuplicateLogError if the triple exists."""
        try:
            with self._transaction() as conn:
                cursor = conn.execute(
                    "INSERT INTO logs (user_id, activity_id, date, value) VALUES (?, ?, ?, ?)",
                    (user_id, activity_id, log_date, value),
                )
                log_id = cursor.lastrowid
        except sqlite3.IntegrityError as exc:
            raise DuplicateLogError(
                f"Log entry already exists for user {user_id}, "
                f"activity {activity_id} on {log_date}"
            ) from exc

        logger.debug("Log #%d created: activity %d on %s = %s", log_id, activity_id, log_date, value)
        return LogEntry(
            id=log_id,
            user_id=user_id,
            activity_id=activity_id,
            date=log_date,
            value=value,
        )

    def update_log(self, log_id: int, value: float) -> LogEntry:
        """Overwrite an entry's value in place."""
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE logs SET value = ? WHERE id = ?", (value, log_id),
            )
            if cursor.rowcount == 0:
                raise LogNotFoundError(log_id)
            row = conn.execute("SELECT * FROM logs WHERE id = ?", (log_id,)).fetchone()
        return self._row_to_log(row)

    def delete_log(self, log_id: int) -> None:
        """Permanently delete an entry by ID."""
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM logs WHERE id = ?", (log_id,))
        if cursor.rowcount == 0:
            raise LogNotFoundError(log_id)

    def list_logs_for_date(self, user_id: int, log_date: str) -> list[LogEntry]:
        """Return all of a user's entries for one day."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM logs WHERE user_id = ? AND date = ? ORDER BY activity_id",
                (user_id, log_date),
            ).fetchall()
        return [self._row_to_log(r) for r in rows]

    def list_logs_between(
        self, user_id: int, start_date: str, end_date: str,
    ) -> list[LogEntry]:
        """Return a user's entries with start_date <= date <= end_date."""
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT * FROM logs
                WHERE user_id = ? AND date >= ? AND date <= ?
                ORDER BY date, activity_id
                """,
                (user_id, start_date, end_date),
            ).fetchall()
        return [self._row_to_log(r) for r in rows]
