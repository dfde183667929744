"""
Agent LLM: OpenAI chat completions with tool calling.

The agent only depends on the small ChatModel interface below, so tests (or a
different provider) can stand in for OpenAI.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from openai import AsyncOpenAI, OpenAIError

from app.agent.tools import ToolCall
from app.core.config import LLM_API_TIMEOUT, OPENAI_API_KEY, OPENAI_LLM_MODEL
from app.core.errors import ServiceUnavailableError

logger = logging.getLogger(__name__)


@dataclass
class ChatTurn:
    """One model reply: final text, or tool calls to run before asking again."""

    content: str | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)


class ChatModel(Protocol):
    async def complete(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        *,
        temperature: float,
        max_tokens: int,
    ) -> ChatTurn: ...


def _parse_arguments(raw: Any) -> dict[str, Any] | None:
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        args = json.loads(raw)
    except (TypeError, json.JSONDecodeError):
        return None
    return args if isinstance(args, dict) else None


class OpenAIChatModel:
    """ChatModel backed by the OpenAI chat completions API."""

    def __init__(
        self,
        api_key: str = OPENAI_API_KEY,
        model: str = OPENAI_LLM_MODEL,
        timeout: float = LLM_API_TIMEOUT,
    ) -> None:
        self.model = model
        self._api_key = api_key
        self._timeout = timeout
        self._client: AsyncOpenAI | None = None

    def _get_client(self) -> AsyncOpenAI:
        if not self._api_key:
            raise ServiceUnavailableError("OPENAI_API_KEY is not configured")
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self._api_key, timeout=self._timeout)
        return self._client

    async def complete(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        *,
        temperature: float,
        max_tokens: int,
    ) -> ChatTurn:
        client = self._get_client()
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"
        logger.info("[llm:complete] IN  messages=%d tools=%d", len(messages), len(tools or []))
        try:
            response = await client.chat.completions.create(**kwargs)
        except OpenAIError as e:
            logger.warning("[llm:complete] OpenAI request failed: %s", type(e).__name__)
            raise ServiceUnavailableError(f"LLM request failed: {type(e).__name__}") from e

        msg = response.choices[0].message if response.choices else None
        if msg is None:
            raise ServiceUnavailableError("LLM returned no choices")
        content = (getattr(msg, "content", None) or "").strip() or None
        tool_calls = []
        for tc in getattr(msg, "tool_calls", None) or []:
            fn = getattr(tc, "function", None)
            if not fn:
                continue
            tool_calls.append(
                ToolCall(
                    id=getattr(tc, "id", None) or "",
                    name=getattr(fn, "name", None) or "",
                    arguments=_parse_arguments(getattr(fn, "arguments", None)),
                )
            )
        if tool_calls:
            logger.info("[llm:complete] OUT tool_calls=%s", [t.name for t in tool_calls])
        else:
            logger.info("[llm:complete] OUT content_len=%d", len(content or ""))
        return ChatTurn(content=content, tool_calls=tool_calls)
