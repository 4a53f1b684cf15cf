"""
Timelog Assistant — Data Models.

Activities are the registry a user logs time against; log entries hold one
value per (user, activity, date). Both persist in SQLite. Conversation turns
live only as long as a diary session.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class Activity:
    """Something the user tracks time for, e.g. "Reading" in "Pages".

    Managed through /addactivity and /deleteactivity; the logging paths
    only read it.
    """

    id: int
    user_id: int
    name: str                  # display name, e.g. "Financial Accounting"
    name_normalized: str       # lowercased for case-insensitive lookup
    category: str = ""         # empty → uncategorized
    goal: float = 0.0          # monthly goal, in `unit`
    unit: str = "Hours"


@dataclass
class LogEntry:
    """Value logged for one activity on one day.

    At most one entry exists per (user_id, activity_id, date).
    """

    id: int
    user_id: int
    activity_id: int
    date: str                  # ISO date YYYY-MM-DD
    value: float               # always > 0; zero means "no entry"


@dataclass
class ConversationTurn:
    """One message in a diary conversation."""

    role: str                  # "user" | "assistant"
    text: str
    position: int
