"""
Timelog Assistant — LLM Provider Abstraction.

Single public function `start_chat()` that opens a tool-calling chat session
with the configured provider. Provider is selected at startup via the
LLM_PROVIDER env var. Supports: gemini (default), anthropic, openai, cohere.

Tools are declared once in a provider-neutral shape:
    {"name": str, "description": str, "parameters": <JSON schema object>}
and each session translates them into its SDK's format.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from timelog.ports.chat_port import ChatError, ModelReply, ToolCall, ToolResult

logger = logging.getLogger(__name__)


def _parse_arguments(raw: str | None) -> dict[str, Any]:
    """Decode JSON-encoded tool arguments; malformed input yields {}."""
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        logger.warning("Model returned malformed tool arguments: %s (raw: %r)", exc, raw)
        return {}
    return data if isinstance(data, dict) else {}


# ---------------------------------------------------------------------------
# Base session
# ---------------------------------------------------------------------------


class _ChatBase:
    """Wraps every provider error in ChatError."""

    provider = ""

    async def send_message(self, text: str) -> ModelReply:
        try:
            return await self._send_text(text)
        except Exception as exc:
            logger.error("%s chat call failed: %s", self.provider, exc)
            raise ChatError(f"{self.provider} call failed: {exc}") from exc

    async def send_tool_results(self, results: list[ToolResult]) -> ModelReply:
        try:
            return await self._send_results(results)
        except Exception as exc:
            logger.error("%s tool-result call failed: %s", self.provider, exc)
            raise ChatError(f"{self.provider} call failed: {exc}") from exc

    async def _send_text(self, text: str) -> ModelReply:
        raise NotImplementedError

    async def _send_results(self, results: list[ToolResult]) -> ModelReply:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# Provider implementations
# ---------------------------------------------------------------------------


class _GeminiChat(_ChatBase):
    provider = "gemini"

    def __init__(
        self, api_key: str, model: str, system: str, tools: list[dict], max_tokens: int,
        chat: Any = None,
    ) -> None:
        if chat is None:
            import google.generativeai as genai

            genai.configure(api_key=api_key)
            gm = genai.GenerativeModel(
                model_name=model,
                system_instruction=system,
                tools=[{"function_declarations": tools}],
                generation_config=genai.types.GenerationConfig(max_output_tokens=max_tokens),
            )
            chat = gm.start_chat()
        self._chat = chat
        self._awaiting_results = False

    async def _send_text(self, text: str) -> ModelReply:
        if self._awaiting_results:
            # Previous turn ended without answering its function calls.
            self._chat.rewind()
            self._awaiting_results = False
        response = await self._chat.send_message_async(text)
        return self._to_reply(response)

    async def _send_results(self, results: list[ToolResult]) -> ModelReply:
        import google.generativeai as genai

        parts = [
            genai.protos.Part(
                function_response=genai.protos.FunctionResponse(
                    name=r.call.name, response=r.as_payload(),
                )
            )
            for r in results
        ]
        response = await self._chat.send_message_async(
            genai.protos.Content(role="user", parts=parts)
        )
        return self._to_reply(response)

    def _to_reply(self, response: Any) -> ModelReply:
        texts: list[str] = []
        calls: list[ToolCall] = []
        for part in response.parts:
            fn = part.function_call
            if fn.name:
                calls.append(ToolCall(name=fn.name, args=dict(fn.args)))
            elif part.text:
                texts.append(part.text)
        self._awaiting_results = bool(calls)
        return ModelReply(text="".join(texts).strip(), tool_calls=calls)


class _AnthropicChat(_ChatBase):
    provider = "anthropic"

    def __init__(
        self, api_key: str, model: str, system: str, tools: list[dict], max_tokens: int,
        client: Any = None,
    ) -> None:
        if client is None:
            import anthropic

            client = anthropic.AsyncAnthropic(api_key=api_key)
        self._client = client
        self._model = model
        self._system = system
        self._max_tokens = max_tokens
        self._tools = [
            {"name": t["name"], "description": t["description"], "input_schema": t["parameters"]}
            for t in tools
        ]
        self._messages: list[dict] = []
        self._awaiting_results = False

    async def _send_text(self, text: str) -> ModelReply:
        if self._awaiting_results:
            self._messages.pop()
            self._awaiting_results = False
        return await self._exchange([{"role": "user", "content": text}])

    async def _send_results(self, results: list[ToolResult]) -> ModelReply:
        blocks = [
            {
                "type": "tool_result",
                "tool_use_id": r.call.call_id,
                "content": json.dumps(r.as_payload()),
            }
            for r in results
        ]
        return await self._exchange([{"role": "user", "content": blocks}])

    async def _exchange(self, new_messages: list[dict]) -> ModelReply:
        pending = self._messages + new_messages
        response = await self._client.messages.create(
            model=self._model,
            max_tokens=self._max_tokens,
            system=self._system,
            tools=self._tools,
            messages=pending,
        )
        self._messages = pending + [{"role": "assistant", "content": response.content}]

        texts: list[str] = []
        calls: list[ToolCall] = []
        for block in response.content:
            if block.type == "tool_use":
                calls.append(ToolCall(name=block.name, args=dict(block.input), call_id=block.id))
            elif block.type == "text":
                texts.append(block.text)
        self._awaiting_results = bool(calls)
        return ModelReply(text="".join(texts).strip(), tool_calls=calls)


class _OpenAIChat(_ChatBase):
    provider = "openai"

    def __init__(
        self, api_key: str, model: str, system: str, tools: list[dict], max_tokens: int,
        client: Any = None,
    ) -> None:
        if client is None:
            from openai import AsyncOpenAI

            client = AsyncOpenAI(api_key=api_key)
        self._client = client
        self._model = model
        self._max_tokens = max_tokens
        self._tools = [{"type": "function", "function": t} for t in tools]
        self._messages: list[dict] = [{"role": "system", "content": system}]
        self._awaiting_results = False

    async def _send_text(self, text: str) -> ModelReply:
        if self._awaiting_results:
            self._messages.pop()
            self._awaiting_results = False
        return await self._exchange([{"role": "user", "content": text}])

    async def _send_results(self, results: list[ToolResult]) -> ModelReply:
        return await self._exchange([
            {
                "role": "tool",
                "tool_call_id": r.call.call_id,
                "content": json.dumps(r.as_payload()),
            }
            for r in results
        ])

    async def _exchange(self, new_messages: list[dict]) -> ModelReply:
        pending = self._messages + new_messages
        response = await self._client.chat.completions.create(
            model=self._model,
            max_tokens=self._max_tokens,
            messages=pending,
            tools=self._tools,
        )
        message = response.choices[0].message

        assistant: dict[str, Any] = {"role": "assistant", "content": message.content}
        calls: list[ToolCall] = []
        if message.tool_calls:
            assistant["tool_calls"] = [
                {
                    "id": tc.id,
                    "type": "function",
                    "function": {"name": tc.function.name, "arguments": tc.function.arguments},
                }
                for tc in message.tool_calls
            ]
            calls = [
                ToolCall(
                    name=tc.function.name,
                    args=_parse_arguments(tc.function.arguments),
                    call_id=tc.id,
                )
                for tc in message.tool_calls
            ]
        self._messages = pending + [assistant]
        self._awaiting_results = bool(calls)
        return ModelReply(text=(message.content or "").strip(), tool_calls=calls)


class _CohereChat(_ChatBase):
    provider = "cohere"

    def __init__(
        self, api_key: str, model: str, system: str, tools: list[dict], max_tokens: int,
        client: Any = None,
    ) -> None:
        if client is None:
            import cohere

            client = cohere.AsyncClientV2(api_key=api_key)
        self._client = client
        self._model = model
        self._max_tokens = max_tokens
        self._tools = [{"type": "function", "function": t} for t in tools]
        self._messages: list[dict] = [{"role": "system", "content": system}]
        self._awaiting_results = False

    async def _send_text(self, text: str) -> ModelReply:
        if self._awaiting_results:
            self._messages.pop()
            self._awaiting_results = False
        return await self._exchange([{"role": "user", "content": text}])

    async def _send_results(self, results: list[ToolResult]) -> ModelReply:
        return await self._exchange([
            {
                "role": "tool",
                "tool_call_id": r.call.call_id,
                "content": [
                    {"type": "document", "document": {"data": json.dumps(r.as_payload())}},
                ],
            }
            for r in results
        ])

    async def _exchange(self, new_messages: list[dict]) -> ModelReply:
        pending = self._messages + new_messages
        response = await self._client.chat(
            model=self._model,
            max_tokens=self._max_tokens,
            messages=pending,
            tools=self._tools,
        )
        message = response.message

        if message.tool_calls:
            calls = [
                ToolCall(
                    name=tc.function.name,
                    args=_parse_arguments(tc.function.arguments),
                    call_id=tc.id,
                )
                for tc in message.tool_calls
            ]
            self._messages = pending + [{
                "role": "assistant",
                "tool_plan": message.tool_plan,
                "tool_calls": message.tool_calls,
            }]
            self._awaiting_results = True
            return ModelReply(text="", tool_calls=calls)

        text = "".join(item.text for item in (message.content or []) if item.type == "text")
        self._messages = pending + [{"role": "assistant", "content": text}]
        self._awaiting_results = False
        return ModelReply(text=text.strip())


# ---------------------------------------------------------------------------
# Provider selection (runs once at first call)
# ---------------------------------------------------------------------------

_PROVIDERS: dict[str, tuple[type[_ChatBase], str]] = {
    "gemini":    (_GeminiChat,    "gemini-2.0-flash"),
    "anthropic": (_AnthropicChat, "claude-haiku-4-5-20251001"),
    "openai":    (_OpenAIChat,    "gpt-4o-mini"),
    "cohere":    (_CohereChat,    "command-a-03-2025"),
}


def _select_provider() -> tuple[type[_ChatBase], str, str]:
    """Read env vars and return (session_class, model, api_key)."""
    from timelog.config import settings

    provider_name = settings.LLM_PROVIDER.lower()
    if provider_name not in _PROVIDERS:
        raise ValueError(
            f"Unknown LLM_PROVIDER={provider_name!r}. "
            f"Supported: {', '.join(_PROVIDERS)}"
        )

    session_cls, default_model = _PROVIDERS[provider_name]
    model = settings.LLM_MODEL or default_model
    api_key = settings.LLM_API_KEY

    logger.info("LLM provider: %s, model: %s", provider_name, model)
    return session_cls, model, api_key


# Lazy singleton, populated on first call to start_chat()
_session_cls: type[_ChatBase] | None = None
_model: str = ""
_api_key: str = ""


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def start_chat(system: str, tools: list[dict]) -> _ChatBase:
    """Open a chat session with the configured provider.

    The returned object satisfies the ChatSession protocol; its calls raise
    ChatError on any provider failure.
    """
    global _session_cls, _model, _api_key
    from timelog.config import settings

    if _session_cls is None:
        _session_cls, _model, _api_key = _select_provider()

    return _session_cls(
        api_key=_api_key,
        model=_model,
        system=system,
        tools=tools,
        max_tokens=settings.LLM_MAX_TOKENS,
    )
