"""
Timelog Assistant — Telegram Bot.

Telegram is the user interface for the tracker. Two ways to log time flow
through it:

- AI diary: plain text messages go to a per-chat DiarySession.
- Direct entry: /set commands edit today's values through a per-chat
  DailyLogEditor, which waits for a pause before saving.

A small set of commands manages the activity registry so the bot is usable
on its own.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import TYPE_CHECKING

from telegram import Update
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from timelog.adapters.sqlite_store import SQLiteTrackerStore
from timelog.config import settings
from timelog.core.daily_log import DailyLogEditor
from timelog.core.diary import DiarySession, DiarySetupError, local_today
from timelog.core.matcher import match_activity
from timelog.core.reconciler import LogReconciler

if TYPE_CHECKING:
    from timelog.data.db import TrackerDB
    from timelog.data.models import Activity

logger = logging.getLogger(__name__)

_GENERIC_ERROR = "Sorry, something went wrong. Please try again."

_HELP_TEXT = (
    "*Timelog Assistant*\n\n"
    "Just tell me what you did, e.g. _I read for 2 hours yesterday_, and I'll log it.\n\n"
    "/activities — list your activities\n"
    "/addactivity Name | Category | Goal | Unit — add an activity\n"
    "/deleteactivity Name — delete an activity and its logs\n"
    "/renameactivity Old = New — rename an activity\n"
    "/set Name = value — set today's value (0 clears it)\n"
    "/today — show today's log\n"
    "/start — restart the AI diary"
)


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


def _parse_activity_args(text: str) -> tuple[str, str, float, str] | None:
    """Parse "Name | Category | Goal | Unit" (all but Name optional).

    Returns (name, category, goal, unit) or None if malformed.
    """
    parts = [p.strip() for p in text.split("|")]
    if not parts or not parts[0] or len(parts) > 4:
        return None

    name = parts[0]
    category = parts[1] if len(parts) > 1 else ""
    goal = 0.0
    if len(parts) > 2 and parts[2]:
        try:
            goal = float(parts[2])
        except ValueError:
            return None
        if goal < 0:
            return None
    unit = parts[3] if len(parts) > 3 and parts[3] else "Hours"
    return name, category, goal, unit


def _parse_set_args(text: str) -> tuple[str, str] | None:
    """Parse "Name = value". The value is kept as raw text; blank clears."""
    name, sep, value = text.partition("=")
    if not sep or not name.strip():
        return None
    return name.strip(), value.strip()


def _format_activities(activities: list[Activity]) -> str:
    """Group activities by category for display."""
    grouped: dict[str, list[Activity]] = defaultdict(list)
    for activity in activities:
        grouped[activity.category or "Uncategorized"].append(activity)

    lines: list[str] = []
    for category in sorted(grouped):
        lines.append(f"*{category}*")
        for activity in grouped[category]:
            lines.append(f"  • {activity.name} — goal {activity.goal:g} {activity.unit}/month")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Per-chat state
# ---------------------------------------------------------------------------


def _store(context: ContextTypes.DEFAULT_TYPE) -> SQLiteTrackerStore:
    return context.bot_data["store"]


def _reconciler(context: ContextTypes.DEFAULT_TYPE) -> LogReconciler:
    return context.bot_data["reconciler"]


async def _get_editor(
    user_id: int, context: ContextTypes.DEFAULT_TYPE,
) -> DailyLogEditor:
    """Return today's editor for this chat, replacing yesterday's if needed."""
    today = local_today().isoformat()
    editor: DailyLogEditor | None = context.chat_data.get("daily_log")
    if editor is not None and editor.date == today:
        return editor

    if editor is not None:
        await editor.flush()
        await editor.close()

    editor = DailyLogEditor(
        user_id,
        today,
        _reconciler(context),
        _store(context),
        delay=settings.DEBOUNCE_MS / 1000,
    )
    await editor.load()
    context.chat_data["daily_log"] = editor
    return editor


async def _start_diary(
    user_id: int, context: ContextTypes.DEFAULT_TYPE,
) -> DiarySession:
    """Open a fresh diary session. Raises DiarySetupError with no activities."""
    context.chat_data.pop("diary", None)
    diary = DiarySession(
        user_id,
        _store(context),
        _reconciler(context),
        max_tool_rounds=settings.MAX_TOOL_ROUNDS,
    )
    await diary.start()
    context.chat_data["diary"] = diary
    return diary


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Greet the user and open the AI diary."""
    user_id = update.effective_user.id
    try:
        diary = await _start_diary(user_id, context)
    except DiarySetupError as exc:
        await update.message.reply_text(exc.message)
        return
    await update.message.reply_text(diary.turns[-1].text)


async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await update.message.reply_text(_HELP_TEXT, parse_mode="Markdown")


async def cmd_activities(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """List the user's activities grouped by category."""
    activities = await _store(context).list_activities(update.effective_user.id)
    if not activities:
        await update.message.reply_text(
            "No activities yet. Add one with /addactivity Name | Category | Goal | Unit"
        )
        return
    await update.message.reply_text(_format_activities(activities), parse_mode="Markdown")


async def cmd_addactivity(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Add an activity: /addactivity Reading | Personal | 300 | Pages"""
    text = " ".join(context.args or [])
    parsed = _parse_activity_args(text)
    if parsed is None:
        await update.message.reply_text(
            "Usage: /addactivity Name | Category | Goal | Unit\n"
            "Example: /addactivity Reading | Personal | 300 | Pages"
        )
        return

    name, category, goal, unit = parsed
    try:
        activity = _store(context).db.add_activity(
            update.effective_user.id, name, category=category, goal=goal, unit=unit,
        )
    except ValueError as exc:
        await update.message.reply_text(f"❌ {exc}")
        return

    # The diary's activity list is fixed at start; the next message reopens it.
    context.chat_data.pop("diary", None)
    await update.message.reply_text(
        f"✅ Added *{activity.name}* ({activity.unit})", parse_mode="Markdown",
    )


async def cmd_deleteactivity(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Delete an activity and all of its log entries."""
    name = " ".join(context.args or []).strip()
    if not name:
        await update.message.reply_text("Usage: /deleteactivity Name")
        return

    store = _store(context)
    activity = store.db.find_activity_by_name(update.effective_user.id, name)
    if activity is None:
        await update.message.reply_text(f"No activity named '{name}'.")
        return

    editor: DailyLogEditor | None = context.chat_data.pop("daily_log", None)
    if editor is not None:
        await editor.flush()
        await editor.close()

    store.db.delete_activity(activity.id)
    context.chat_data.pop("diary", None)
    await update.message.reply_text(
        f"\U0001f5d1 Deleted *{activity.name}* and its logs.", parse_mode="Markdown",
    )


async def cmd_renameactivity(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Rename an activity, keeping its id and logs: /renameactivity Old = New"""
    parsed = _parse_set_args(" ".join(context.args or []))
    if parsed is None or not parsed[1]:
        await update.message.reply_text("Usage: /renameactivity Old name = New name")
        return

    old_name, new_name = parsed
    store = _store(context)
    activity = store.db.find_activity_by_name(update.effective_user.id, old_name)
    if activity is None:
        await update.message.reply_text(f"No activity named '{old_name}'.")
        return

    try:
        renamed = store.db.update_activity(activity.id, name=new_name)
    except ValueError as exc:
        await update.message.reply_text(f"❌ {exc}")
        return

    context.chat_data.pop("diary", None)
    await update.message.reply_text(
        f"✏️ Renamed *{activity.name}* to *{renamed.name}*", parse_mode="Markdown",
    )


async def cmd_set(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Direct entry for today: /set Reading = 2.5"""
    user_id = update.effective_user.id
    parsed = _parse_set_args(" ".join(context.args or []))
    if parsed is None:
        await update.message.reply_text("Usage: /set Name = value  (0 or blank clears it)")
        return

    name, value_text = parsed
    activities = await _store(context).list_activities(user_id)
    activity = match_activity(name, activities)
    if activity is None:
        await update.message.reply_text(
            f"No activity named '{name}'. See /activities for the list."
        )
        return

    editor = await _get_editor(user_id, context)
    editor.edit(activity.id, value_text)
    await update.message.reply_text(
        f"\U0001f4dd {activity.name}: {value_text or '0'} {activity.unit} (saving…)"
    )


async def cmd_today(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Show what is logged for today."""
    user_id = update.effective_user.id
    store = _store(context)

    editor: DailyLogEditor | None = context.chat_data.get("daily_log")
    if editor is not None:
        await editor.flush()

    today = local_today().isoformat()
    try:
        entries = await store.list_for_date(user_id, today)
        activities = {a.id: a for a in await store.list_activities(user_id)}
    except Exception as exc:
        logger.error("/today store error: %s", exc)
        await update.message.reply_text(_GENERIC_ERROR)
        return

    if not entries:
        await update.message.reply_text(f"Nothing logged for {today} yet.")
        return

    lines = [f"\U0001f4c5 *{today}*"]
    for entry in entries:
        activity = activities.get(entry.activity_id)
        if activity is None:
            continue
        lines.append(f"  • {activity.name}: {entry.value:g} {activity.unit}")
    await update.message.reply_text("\n".join(lines), parse_mode="Markdown")


# ---------------------------------------------------------------------------
# Message handlers
# ---------------------------------------------------------------------------


async def handle_text(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle plain text messages — forward to the AI diary."""
    user_id = update.effective_user.id
    diary: DiarySession | None = context.chat_data.get("diary")

    try:
        if diary is None:
            diary = await _start_diary(user_id, context)
        turn = await diary.send(update.message.text)
    except DiarySetupError as exc:
        await update.message.reply_text(exc.message)
        return
    except Exception as exc:
        logger.error("Diary error for user %d: %s", user_id, exc)
        context.chat_data.pop("diary", None)
        await update.message.reply_text(_GENERIC_ERROR)
        return

    await update.message.reply_text(turn.text)


# ---------------------------------------------------------------------------
# App builder
# ---------------------------------------------------------------------------


async def _shutdown(app: Application) -> None:
    """Save pending direct-entry edits, then close the store."""
    for chat_data in app.chat_data.values():
        editor: DailyLogEditor | None = chat_data.get("daily_log")
        if editor is not None:
            await editor.flush()
            await editor.close()
    store: SQLiteTrackerStore = app.bot_data["store"]
    store.close()


def build_app(db: TrackerDB | None = None) -> Application:
    """Build and configure the Telegram Application with all handlers.

    Args:
        db: Tracker database. Defaults to a TrackerDB at DATABASE_PATH.
    """
    app = (
        ApplicationBuilder()
        .token(settings.TELEGRAM_BOT_TOKEN)
        .post_shutdown(_shutdown)
        .build()
    )

    if db is None:
        from timelog.data.db import TrackerDB
        db = TrackerDB()

    store = SQLiteTrackerStore(db)
    app.bot_data["store"] = store
    app.bot_data["reconciler"] = LogReconciler(store)

    # Commands
    app.add_handler(CommandHandler("start", cmd_start))
    app.add_handler(CommandHandler("help", cmd_help))
    app.add_handler(CommandHandler("activities", cmd_activities))
    app.add_handler(CommandHandler("addactivity", cmd_addactivity))
    app.add_handler(CommandHandler("deleteactivity", cmd_deleteactivity))
    app.add_handler(CommandHandler("renameactivity", cmd_renameactivity))
    app.add_handler(CommandHandler("set", cmd_set))
    app.add_handler(CommandHandler("today", cmd_today))

    # Text messages (non-command)
    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handle_text))

    logger.info("Telegram bot application built with %d handlers", len(app.handlers[0]))
    return app


def main() -> None:
    """Entry point: build the app and start polling."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger.info("Starting Timelog Assistant bot...")
    app = build_app()
    app.run_polling()


if __name__ == "__main__":
    main()
