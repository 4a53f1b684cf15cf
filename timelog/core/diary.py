"""
Timelog Assistant — AI Diary.

Conversational logging: the user describes what they did in free text, the
model proposes `logActivity` calls, each proposal is resolved against the
activity registry and written through the LogReconciler, and the outcomes
are fed back until the model answers in plain language.

Per user message the session moves through:

    AWAITING_USER_INPUT → MODEL_THINKING ⇄ RESOLVING_ACTION → AWAITING_USER_INPUT

The number of MODEL_THINKING ⇄ RESOLVING_ACTION rounds is capped so a
model that keeps proposing actions cannot stall the turn.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from enum import Enum
from typing import TYPE_CHECKING, Callable
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from timelog.core.matcher import match_activity
from timelog.data.models import ConversationTurn
from timelog.ports.chat_port import ChatError, ToolResult

if TYPE_CHECKING:
    from timelog.core.reconciler import LogReconciler
    from timelog.data.models import Activity
    from timelog.ports.activity_registry_port import ActivityRegistryPort
    from timelog.ports.chat_port import ChatFactory, ChatSession, ToolCall

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOOL_ROUNDS = 8

GREETING = "Hi! Tell me what you've been working on, and I'll log it for you."
SETUP_ERROR_MESSAGE = (
    "You don't have any activities yet. Please add some with /addactivity "
    "before using the AI diary."
)
FAILURE_NOTICE = "Sorry, I ran into an error. Please try that again."
ROUND_LIMIT_NOTICE = (
    "Sorry, I couldn't finish logging that. Please check /today and try again."
)


class DiarySetupError(Exception):
    """Raised when a diary cannot start because the user has no activities."""

    def __init__(self, message: str = SETUP_ERROR_MESSAGE) -> None:
        self.message = message
        super().__init__(message)


class DiaryState(Enum):
    NOT_STARTED = "not_started"
    AWAITING_USER_INPUT = "awaiting_user_input"
    MODEL_THINKING = "model_thinking"
    RESOLVING_ACTION = "resolving_action"


# ---------------------------------------------------------------------------
# Tool contract
# ---------------------------------------------------------------------------

LOG_ACTIVITY_TOOL: dict = {
    "name": "logActivity",
    "description": "Logs an activity with its duration and date.",
    "parameters": {
        "type": "object",
        "properties": {
            "activityName": {
                "type": "string",
                "description": "The name of the activity to log. Must be one of the provided activity names.",
            },
            "duration": {
                "type": "number",
                "description": (
                    "The duration spent on the activity. The unit is the one "
                    "defined for the activity (e.g., hours)."
                ),
            },
            "date": {
                "type": "string",
                "description": "The date the activity was performed, in YYYY-MM-DD format.",
            },
        },
        "required": ["activityName", "duration", "date"],
    },
}


class PendingAction(BaseModel):
    """A logActivity proposal before it is resolved against the registry.

    JSON example:
    {
        "activityName": "Reading",
        "duration": 2,
        "date": "2024-06-09"
    }
    """
    model_config = ConfigDict(populate_by_name=True)

    activity_name: str = Field(alias="activityName", min_length=1)
    duration: float
    date: str          # ISO format YYYY-MM-DD

    @field_validator("date")
    @classmethod
    def check_iso_date(cls, v: str) -> str:
        return date.fromisoformat(v.strip()).isoformat()


# ---------------------------------------------------------------------------
# System prompt for LLM
# ---------------------------------------------------------------------------

_SYSTEM_PROMPT = """\
You are an intelligent diary assistant. Your goal is to help the user log their activities.
The current date is {today}.
Here is the list of available activities the user can log time for: {activity_names}.

When the user describes what they did, identify the activity, the duration, and the date.
- The date can be relative like 'today' or 'yesterday'; always pass it as YYYY-MM-DD.
- The duration is a number, in the unit of the activity (typically hours).
- You must match the user's description to one of the available activities.
- A single message may describe several activities; call 'logActivity' once for each.

If you have all the necessary information (activity name, duration, date), call the 'logActivity' function.
If any information is missing, ask the user a clear question to get the missing details. For example, if the duration is missing, ask 'How long did you spend on that?'.
If a 'logActivity' call fails, do not guess another activity: ask the user which of the available activities they meant.
Once an activity is logged, confirm it with the user in a friendly message.
"""


def build_system_prompt(activities: list[Activity], today: date) -> str:
    activity_names = ", ".join(a.name for a in activities)
    return _SYSTEM_PROMPT.format(today=today.isoformat(), activity_names=activity_names)


def local_today() -> date:
    from timelog.config import settings

    return datetime.now(ZoneInfo(settings.TIMEZONE)).date()


# ---------------------------------------------------------------------------
# Diary session
# ---------------------------------------------------------------------------


class DiarySession:
    """One user's conversation with the diary assistant.

    Calls to the model are strictly sequential; a session serves one
    message at a time.
    """

    def __init__(
        self,
        user_id: int,
        registry: ActivityRegistryPort,
        reconciler: LogReconciler,
        chat_factory: ChatFactory | None = None,
        today: Callable[[], date] | None = None,
        max_tool_rounds: int = DEFAULT_MAX_TOOL_ROUNDS,
    ) -> None:
        if max_tool_rounds < 1:
            raise ValueError(f"max_tool_rounds must be at least 1, got {max_tool_rounds}")
        if chat_factory is None:
            from timelog.core.llm import start_chat
            chat_factory = start_chat

        self._user_id = user_id
        self._registry = registry
        self._reconciler = reconciler
        self._chat_factory = chat_factory
        self._today = today or local_today
        self._max_tool_rounds = max_tool_rounds

        self._state = DiaryState.NOT_STARTED
        self._turns: list[ConversationTurn] = []
        self._activities: list[Activity] = []
        self._chat: ChatSession | None = None

    @property
    def state(self) -> DiaryState:
        return self._state

    @property
    def turns(self) -> list[ConversationTurn]:
        return list(self._turns)

    @property
    def activities(self) -> list[Activity]:
        return list(self._activities)

    # ------------------------------------------------------------------
    # Public: lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> ConversationTurn:
        """Load the registry and open the model session.

        Raises DiarySetupError if the user has no activities; no turn is
        recorded in that case.
        """
        if self._state is not DiaryState.NOT_STARTED:
            raise RuntimeError("Diary session already started")

        activities = await self._registry.list_activities(self._user_id)
        if not activities:
            logger.info("Diary refused to start for user %d: no activities", self._user_id)
            raise DiarySetupError()

        self._activities = activities
        system_prompt = build_system_prompt(activities, self._today())
        self._chat = self._chat_factory(system_prompt, [LOG_ACTIVITY_TOOL])
        self._state = DiaryState.AWAITING_USER_INPUT

        logger.info(
            "Diary started for user %d with %d activities", self._user_id, len(activities),
        )
        return self._append("assistant", GREETING)

    # ------------------------------------------------------------------
    # Public: one user message
    # ------------------------------------------------------------------

    async def send(self, text: str) -> ConversationTurn:
        """Handle one user message and return the assistant's final turn."""
        if self._state is not DiaryState.AWAITING_USER_INPUT:
            raise RuntimeError(f"Diary cannot accept input in state {self._state.value}")

        self._append("user", text)
        self._state = DiaryState.MODEL_THINKING

        try:
            reply = await self._chat.send_message(text)

            rounds = 0
            while reply.has_tool_calls:
                if rounds >= self._max_tool_rounds:
                    logger.warning(
                        "Diary for user %d hit the %d-round limit; ending turn",
                        self._user_id, self._max_tool_rounds,
                    )
                    return self._finish_turn(ROUND_LIMIT_NOTICE)

                self._state = DiaryState.RESOLVING_ACTION
                results = [await self._resolve(call) for call in reply.tool_calls]

                self._state = DiaryState.MODEL_THINKING
                reply = await self._chat.send_tool_results(results)
                rounds += 1

        except ChatError as exc:
            logger.error("Diary turn aborted for user %d: %s", self._user_id, exc)
            return self._finish_turn(FAILURE_NOTICE)
        except Exception as exc:
            logger.exception("Unexpected diary error for user %d: %s", self._user_id, exc)
            return self._finish_turn(FAILURE_NOTICE)

        return self._finish_turn(reply.text or FAILURE_NOTICE)

    # ------------------------------------------------------------------
    # Internal: resolution
    # ------------------------------------------------------------------

    async def _resolve(self, call: ToolCall) -> ToolResult:
        """Resolve one proposal against the registry and write it."""
        if call.name != LOG_ACTIVITY_TOOL["name"]:
            logger.warning("Model called unknown tool '%s'", call.name)
            return ToolResult(
                call=call,
                success=False,
                message=f"Unknown function '{call.name}'. Only 'logActivity' is available.",
            )

        try:
            action = PendingAction.model_validate(call.args)
        except ValidationError as exc:
            logger.warning("Invalid logActivity arguments %s: %s", call.args, exc)
            return ToolResult(
                call=call,
                success=False,
                message=(
                    "The logActivity arguments were invalid: activityName must be text, "
                    "duration a number and date in YYYY-MM-DD format. "
                    "Please ask the user for the missing or unclear details."
                ),
            )

        activity = match_activity(action.activity_name, self._activities)
        if activity is None:
            logger.info(
                "Diary could not match activity '%s' for user %d",
                action.activity_name, self._user_id,
            )
            return ToolResult(
                call=call,
                success=False,
                message=(
                    f"Could not find an activity named '{action.activity_name}'. "
                    "Please ask the user to clarify which of the available activities they meant."
                ),
            )

        try:
            await self._reconciler.reconcile(
                self._user_id, activity.id, action.date, action.duration,
            )
        except Exception as exc:
            logger.error("Failed to store diary entry for '%s': %s", activity.name, exc)
            return ToolResult(
                call=call,
                success=False,
                message=f"Could not save the entry for {activity.name}. Tell the user to try again later.",
            )

        return ToolResult(
            call=call,
            success=True,
            message=(
                f"Successfully logged {action.duration:g} {activity.unit} "
                f"for {activity.name} on {action.date}."
            ),
        )

    def _finish_turn(self, text: str) -> ConversationTurn:
        turn = self._append("assistant", text)
        self._state = DiaryState.AWAITING_USER_INPUT
        return turn

    def _append(self, role: str, text: str) -> ConversationTurn:
        turn = ConversationTurn(role=role, text=text, position=len(self._turns))
        self._turns.append(turn)
        return turn
