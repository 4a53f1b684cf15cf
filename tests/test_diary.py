"""Tests for timelog.core.diary — the conversational extraction loop.

The model is replaced by a scripted ChatSession so each test controls
exactly which tool calls are proposed and in what order.
"""

from datetime import date
from unittest.mock import AsyncMock

import pytest

from timelog.core.diary import (
    FAILURE_NOTICE,
    GREETING,
    LOG_ACTIVITY_TOOL,
    ROUND_LIMIT_NOTICE,
    DiarySession,
    DiarySetupError,
    DiaryState,
    PendingAction,
    build_system_prompt,
)
from timelog.ports.chat_port import ChatError, ModelReply, ToolCall


TODAY = date(2024, 6, 10)


class ScriptedChat:
    """ChatSession double that replays canned replies and records inputs."""

    def __init__(self, replies):
        self._replies = list(replies)
        self.messages = []
        self.results = []

    def _next(self):
        reply = self._replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def send_message(self, text):
        self.messages.append(text)
        return self._next()

    async def send_tool_results(self, results):
        self.results.append(results)
        return self._next()


def _log_call(name, duration, day, call_id=""):
    return ToolCall(
        name="logActivity",
        args={"activityName": name, "duration": duration, "date": day},
        call_id=call_id,
    )


def _factory(chat, seen=None):
    def factory(system, tools):
        if seen is not None:
            seen.append((system, tools))
        return chat
    return factory


async def _started(store, reconciler, user_id, chat, **kwargs):
    diary = DiarySession(
        user_id, store, reconciler,
        chat_factory=_factory(chat), today=lambda: TODAY, **kwargs,
    )
    await diary.start()
    return diary


# ---------------------------------------------------------------------------
# Start
# ---------------------------------------------------------------------------


class TestDiaryStart:
    @pytest.mark.asyncio
    async def test_start_greets_and_awaits_input(self, store, reconciler, user_id, reading):
        seen = []
        diary = DiarySession(
            user_id, store, reconciler,
            chat_factory=_factory(ScriptedChat([]), seen), today=lambda: TODAY,
        )
        assert diary.state is DiaryState.NOT_STARTED

        turn = await diary.start()

        assert turn.role == "assistant"
        assert turn.text == GREETING
        assert turn.position == 0
        assert diary.state is DiaryState.AWAITING_USER_INPUT
        assert [a.name for a in diary.activities] == ["Reading"]

        system, tools = seen[0]
        assert "2024-06-10" in system
        assert "Reading" in system
        assert tools == [LOG_ACTIVITY_TOOL]

    @pytest.mark.asyncio
    async def test_empty_registry_refuses_to_start(self, store, reconciler, user_id):
        factory_calls = []
        diary = DiarySession(
            user_id, store, reconciler,
            chat_factory=_factory(ScriptedChat([]), factory_calls), today=lambda: TODAY,
        )

        with pytest.raises(DiarySetupError) as excinfo:
            await diary.start()

        assert "/addactivity" in excinfo.value.message
        assert diary.turns == []
        assert diary.state is DiaryState.NOT_STARTED
        assert factory_calls == []

    @pytest.mark.asyncio
    async def test_start_twice_raises(self, store, reconciler, user_id, reading):
        diary = await _started(store, reconciler, user_id, ScriptedChat([]))
        with pytest.raises(RuntimeError):
            await diary.start()

    @pytest.mark.asyncio
    async def test_send_before_start_raises(self, store, reconciler, user_id, reading):
        diary = DiarySession(
            user_id, store, reconciler,
            chat_factory=_factory(ScriptedChat([])), today=lambda: TODAY,
        )
        with pytest.raises(RuntimeError):
            await diary.send("hello")

    def test_round_cap_must_be_positive(self, store, reconciler, user_id):
        with pytest.raises(ValueError):
            DiarySession(user_id, store, reconciler, chat_factory=_factory(None), max_tool_rounds=0)


# ---------------------------------------------------------------------------
# Logging through tool calls
# ---------------------------------------------------------------------------


class TestDiaryScenarioB:
    @pytest.mark.asyncio
    async def test_relative_date_logged(self, store, reconciler, tracker_db, user_id, reading):
        chat = ScriptedChat([
            ModelReply(tool_calls=[_log_call("reading", 2, "2024-06-09")]),
            ModelReply(text="Logged 2 pages of Reading for yesterday."),
        ])
        diary = await _started(store, reconciler, user_id, chat)

        turn = await diary.send("I read for 2 hours yesterday")

        entry = tracker_db.find_log(user_id, reading.id, "2024-06-09")
        assert entry is not None
        assert entry.value == 2

        [results] = chat.results
        assert len(results) == 1
        assert results[0].success is True
        assert "Reading" in results[0].message

        assert turn.text == "Logged 2 pages of Reading for yesterday."
        assert [t.role for t in diary.turns] == ["assistant", "user", "assistant"]
        assert [t.position for t in diary.turns] == [0, 1, 2]
        assert diary.state is DiaryState.AWAITING_USER_INPUT

    @pytest.mark.asyncio
    async def test_multiple_calls_resolved_in_order(
        self, store, reconciler, tracker_db, user_id, reading,
    ):
        exercise = tracker_db.add_activity(user_id, "Exercise")
        chat = ScriptedChat([
            ModelReply(tool_calls=[
                _log_call("Exercise", 1, "2024-06-10", call_id="a"),
                _log_call("Reading", 3, "2024-06-10", call_id="b"),
            ]),
            ModelReply(text="Both logged."),
        ])
        diary = await _started(store, reconciler, user_id, chat)

        await diary.send("gym for an hour and read 3")

        [results] = chat.results
        assert [r.call.call_id for r in results] == ["a", "b"]
        assert all(r.success for r in results)
        assert tracker_db.find_log(user_id, exercise.id, "2024-06-10").value == 1
        assert tracker_db.find_log(user_id, reading.id, "2024-06-10").value == 3

    @pytest.mark.asyncio
    async def test_relogging_overwrites_value(
        self, store, reconciler, tracker_db, user_id, reading,
    ):
        chat = ScriptedChat([
            ModelReply(tool_calls=[_log_call("Reading", 2, "2024-06-10")]),
            ModelReply(text="Logged."),
            ModelReply(tool_calls=[_log_call("Reading", 4, "2024-06-10")]),
            ModelReply(text="Updated."),
        ])
        diary = await _started(store, reconciler, user_id, chat)

        await diary.send("read 2")
        await diary.send("actually 4")

        logs = tracker_db.list_logs_for_date(user_id, "2024-06-10")
        assert [(log.activity_id, log.value) for log in logs] == [(reading.id, 4)]

    @pytest.mark.asyncio
    async def test_plain_reply_without_tool_calls(self, store, reconciler, user_id, reading):
        chat = ScriptedChat([ModelReply(text="How long did you spend on that?")])
        diary = await _started(store, reconciler, user_id, chat)

        turn = await diary.send("I read today")

        assert turn.text == "How long did you spend on that?"
        assert chat.results == []


class TestDiaryScenarioC:
    @pytest.mark.asyncio
    async def test_unknown_activity_is_not_logged(
        self, store, reconciler, tracker_db, user_id, reading,
    ):
        chat = ScriptedChat([
            ModelReply(tool_calls=[_log_call("Swimming", 1, "2024-06-10")]),
            ModelReply(text="Which activity did you mean? I have Reading."),
        ])
        diary = await _started(store, reconciler, user_id, chat)

        turn = await diary.send("I swam for an hour")

        assert tracker_db.list_logs_for_date(user_id, "2024-06-10") == []
        [results] = chat.results
        assert results[0].success is False
        assert "Swimming" in results[0].message
        assert "clarify" in results[0].message
        assert turn.text == "Which activity did you mean? I have Reading."

    @pytest.mark.asyncio
    async def test_invalid_arguments_reported_back(
        self, store, reconciler, tracker_db, user_id, reading,
    ):
        bad = ToolCall(name="logActivity", args={"activityName": "Reading", "duration": "lots", "date": "yesterday"})
        chat = ScriptedChat([
            ModelReply(tool_calls=[bad]),
            ModelReply(text="How long, and on which day?"),
        ])
        diary = await _started(store, reconciler, user_id, chat)

        await diary.send("I read a lot")

        [results] = chat.results
        assert results[0].success is False
        assert tracker_db.list_logs_for_date(user_id, "2024-06-10") == []

    @pytest.mark.asyncio
    async def test_unknown_tool_reported_back(self, store, reconciler, user_id, reading):
        chat = ScriptedChat([
            ModelReply(tool_calls=[ToolCall(name="deleteEverything")]),
            ModelReply(text="I can only log activities."),
        ])
        diary = await _started(store, reconciler, user_id, chat)

        await diary.send("wipe it")

        [results] = chat.results
        assert results[0].success is False
        assert "deleteEverything" in results[0].message

    @pytest.mark.asyncio
    async def test_store_failure_reported_back(self, store, user_id, reading):
        from timelog.ports.log_store_port import LogStoreError

        broken = AsyncMock()
        broken.reconcile = AsyncMock(side_effect=LogStoreError("db locked"))
        chat = ScriptedChat([
            ModelReply(tool_calls=[_log_call("Reading", 2, "2024-06-10")]),
            ModelReply(text="Sorry, that didn't save."),
        ])
        diary = await _started(store, broken, user_id, chat)

        turn = await diary.send("read 2")

        [results] = chat.results
        assert results[0].success is False
        assert turn.text == "Sorry, that didn't save."


# ---------------------------------------------------------------------------
# Failures and limits
# ---------------------------------------------------------------------------


class TestDiaryFailures:
    @pytest.mark.asyncio
    async def test_model_error_yields_notice_and_session_recovers(
        self, store, reconciler, user_id, reading,
    ):
        chat = ScriptedChat([
            ChatError("quota exceeded"),
            ModelReply(text="Hello again."),
        ])
        diary = await _started(store, reconciler, user_id, chat)

        first = await diary.send("hi")
        assert first.text == FAILURE_NOTICE
        assert diary.state is DiaryState.AWAITING_USER_INPUT

        second = await diary.send("hi again")
        assert second.text == "Hello again."

    @pytest.mark.asyncio
    async def test_error_while_sending_results(
        self, store, reconciler, tracker_db, user_id, reading,
    ):
        chat = ScriptedChat([
            ModelReply(tool_calls=[_log_call("Reading", 2, "2024-06-10")]),
            ChatError("connection reset"),
        ])
        diary = await _started(store, reconciler, user_id, chat)

        turn = await diary.send("read 2")

        assert turn.text == FAILURE_NOTICE
        # The write already happened before the model failed
        assert tracker_db.find_log(user_id, reading.id, "2024-06-10").value == 2

    @pytest.mark.asyncio
    async def test_database_error_becomes_failed_result(self, store, user_id, reading):
        import sqlite3

        locked = AsyncMock()
        locked.reconcile = AsyncMock(side_effect=sqlite3.OperationalError("database is locked"))
        chat = ScriptedChat([
            ModelReply(tool_calls=[_log_call("Reading", 2, "2024-06-10")]),
            ModelReply(text="That didn't save, please try again."),
        ])
        diary = await _started(store, locked, user_id, chat)

        turn = await diary.send("read 2")

        [results] = chat.results
        assert results[0].success is False
        assert turn.text == "That didn't save, please try again."
        assert diary.state is DiaryState.AWAITING_USER_INPUT

    @pytest.mark.asyncio
    async def test_unexpected_error_yields_notice_and_session_recovers(
        self, store, reconciler, user_id, reading,
    ):
        chat = ScriptedChat([
            KeyError("candidates"),
            ModelReply(text="Hello again."),
        ])
        diary = await _started(store, reconciler, user_id, chat)

        first = await diary.send("hi")
        assert first.text == FAILURE_NOTICE
        assert [t.role for t in diary.turns] == ["assistant", "user", "assistant"]
        assert diary.state is DiaryState.AWAITING_USER_INPUT

        second = await diary.send("hi again")
        assert second.text == "Hello again."

    @pytest.mark.asyncio
    async def test_empty_final_text_yields_notice(self, store, reconciler, user_id, reading):
        chat = ScriptedChat([ModelReply(text="")])
        diary = await _started(store, reconciler, user_id, chat)
        assert (await diary.send("hm")).text == FAILURE_NOTICE

    @pytest.mark.asyncio
    async def test_round_limit_ends_turn(self, store, reconciler, user_id, reading):
        looping = ModelReply(tool_calls=[_log_call("Reading", 1, "2024-06-10")])
        chat = ScriptedChat([looping] * 4)
        diary = await _started(store, reconciler, user_id, chat, max_tool_rounds=3)

        turn = await diary.send("read")

        assert turn.text == ROUND_LIMIT_NOTICE
        assert len(chat.results) == 3
        assert diary.state is DiaryState.AWAITING_USER_INPUT


# ---------------------------------------------------------------------------
# Pieces
# ---------------------------------------------------------------------------


class TestPendingAction:
    def test_alias_and_date(self):
        action = PendingAction.model_validate(
            {"activityName": "Reading", "duration": 2, "date": " 2024-06-09 "}
        )
        assert action.activity_name == "Reading"
        assert action.duration == 2.0
        assert action.date == "2024-06-09"

    def test_bad_date_rejected(self):
        from pydantic import ValidationError

        with pytest.raises(ValidationError):
            PendingAction.model_validate({"activityName": "Reading", "duration": 2, "date": "06/09/2024"})

    def test_missing_name_rejected(self):
        from pydantic import ValidationError

        with pytest.raises(ValidationError):
            PendingAction.model_validate({"activityName": "", "duration": 2, "date": "2024-06-09"})


class TestBuildSystemPrompt:
    def test_lists_activities_and_date(self, reading):
        prompt = build_system_prompt([reading], TODAY)
        assert "The current date is 2024-06-10." in prompt
        assert "Reading" in prompt
        assert "logActivity" in prompt
