"""
Shared test helpers: a controllable clock, a scripted chat model, and answer payloads.
"""

import copy
import json
from typing import Any

from app.agent.llm import ChatTurn
from app.agent.tools import ToolCall

SAMPLE_ANSWER: dict[str, Any] = {
    "answer_title": "Fix a desktop that won't power on",
    "one_paragraph_summary": "Check power delivery first, then internal connections, then the power supply.",
    "prereqs": ["A working power outlet"],
    "steps": [
        {
            "title": "Check the power cable",
            "detail": "Make sure the cable is seated at both ends and the wall switch is on.",
            "os": ["Windows"],
            "est_minutes": 2,
        },
        {
            "title": "Test the outlet",
            "detail": "Plug a lamp into the same outlet to confirm it has power.",
            "os": ["Windows"],
            "shell": ["echo test"],
        },
    ],
    "decision_tree": [{"if": "Fans spin but no display", "then": "Check the monitor cable", "link_step": 1}],
    "diagrams": [],
    "citations": [
        {"url": "https://support.microsoft.com/power", "title": "Microsoft Support", "quote": "Check the cable."},
        {"url": "https://www.dell.com/support/power", "title": "Dell Support", "quote": "Test the outlet."},
    ],
    "warnings": ["Do not open the power supply."],
}


def sample_answer(**overrides: Any) -> dict[str, Any]:
    data = copy.deepcopy(SAMPLE_ANSWER)
    data.update(overrides)
    return data


def citation(url: str, title: str = "Source", quote: str = "Quote.") -> dict[str, str]:
    return {"url": url, "title": title, "quote": quote}


class FakeClock:
    """Monotonic clock under test control."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedChatModel:
    """ChatModel that replays scripted turns and records every request."""

    def __init__(self, turns: list) -> None:
        self._turns = list(turns)
        self.calls: list[dict[str, Any]] = []

    async def complete(self, messages, tools=None, *, temperature, max_tokens) -> ChatTurn:
        self.calls.append({"messages": copy.deepcopy(messages), "tools": tools})
        if not self._turns:
            raise AssertionError("ScriptedChatModel ran out of turns")
        turn = self._turns.pop(0)
        if isinstance(turn, Exception):
            raise turn
        return turn


def text_turn(text: str) -> ChatTurn:
    return ChatTurn(content=text)


def json_turn(data: Any) -> ChatTurn:
    return ChatTurn(content=json.dumps(data))


def tool_turn(*calls: tuple[str, str, dict]) -> ChatTurn:
    return ChatTurn(tool_calls=[ToolCall(id=i, name=n, arguments=a) for i, n, a in calls])
