"""Activity name lookup shared by the diary and the bot commands."""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from timelog.data.models import Activity


def match_activity(name: str, activities: Iterable[Activity]) -> Activity | None:
    """Case-insensitive exact match of `name` against activity display names.

    Surrounding whitespace is ignored. Returns None when nothing matches.
    """
    wanted = name.strip().lower()
    if not wanted:
        return None
    for activity in activities:
        if activity.name.strip().lower() == wanted:
            return activity
    return None
