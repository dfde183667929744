"""
Tests for the agent graph: tool rounds, budget, extraction, schema and citation repair.

The LLM is replaced by ScriptedChatModel and the tools by in-process fakes.
"""

import asyncio
import json

import pytest

from app.agent.graph import CLARIFY_NOTE, REPAIR_SYSTEM_PROMPT, build_user_message, run_agent
from app.agent.tools import AGENT_TOOLS, ToolAdapters
from app.core.config import MAX_PARALLEL_TOOLS
from app.core.errors import (
    ExtractionError,
    SchemaMismatchError,
    ServiceUnavailableError,
    ToolBudgetExhaustedError,
)
from tests.helpers import ScriptedChatModel, citation, json_turn, sample_answer, text_turn, tool_turn

SAME_DOMAIN = [citation("https://support.example.com/a"), citation("https://docs.example.com/b")]


class FakeTools:
    """Records tool calls; web_search can be told to fail."""

    def __init__(self, fail_search: bool = False) -> None:
        self.fail_search = fail_search
        self.calls: list[tuple] = []

    async def web_search(self, query, top_k=5):
        self.calls.append(("web_search", query, top_k))
        if self.fail_search:
            raise RuntimeError("search backend down")
        return [{"title": "Power guide", "url": "https://support.microsoft.com/power", "snippet": "Check cables."}]

    async def fetch_page(self, url):
        self.calls.append(("fetch_page", url))
        return {"clean_text": "Check the cable.", "headings": ["Power"]}

    def adapters(self) -> ToolAdapters:
        return ToolAdapters(web_search=self.web_search, fetch_page=self.fetch_page)


def _run(llm: ScriptedChatModel, tools: FakeTools | None = None, issue: str = "Computer won't power on", **kw):
    tools = tools or FakeTools()
    os_name, device = kw.get("os", "Windows"), kw.get("device", "desktop")
    return asyncio.run(run_agent(issue, os_name, device, llm=llm, adapters=tools.adapters()))


class TestHappyPath:
    """Direct answers and answers after tool rounds."""

    def test_direct_answer(self) -> None:
        llm = ScriptedChatModel([json_turn(sample_answer())])
        answer = _run(llm)
        assert answer.answer_title == "Fix a desktop that won't power on"
        assert len(llm.calls) == 1
        assert llm.calls[0]["tools"] == AGENT_TOOLS
        user = llm.calls[0]["messages"][1]["content"]
        assert "Operating System: Windows" in user and "Device Type: desktop" in user
        assert CLARIFY_NOTE not in user

    def test_fenced_answer_with_prose(self) -> None:
        text = "Here is the answer:\n```json\n" + json.dumps(sample_answer()) + "\n```"
        answer = _run(ScriptedChatModel([text_turn(text)]))
        assert len(answer.steps) == 2

    def test_tool_round_then_answer(self) -> None:
        tools = FakeTools()
        llm = ScriptedChatModel(
            [
                tool_turn(("call_1", "web_search", {"query": "pc no power", "topK": 3})),
                json_turn(sample_answer()),
            ]
        )
        answer = _run(llm, tools)
        assert len(answer.citations) == 2
        assert tools.calls == [("web_search", "pc no power", 3)]

        second = llm.calls[1]["messages"]
        assistant, tool_msg = second[-2], second[-1]
        assert assistant["role"] == "assistant"
        assert assistant["tool_calls"][0]["id"] == "call_1"
        assert tool_msg["role"] == "tool" and tool_msg["tool_call_id"] == "call_1"
        assert json.loads(tool_msg["content"])[0]["url"] == "https://support.microsoft.com/power"

    def test_parallel_tool_results_keep_call_order(self) -> None:
        tools = FakeTools()
        llm = ScriptedChatModel(
            [
                tool_turn(
                    ("a", "fetch_page", {"url": "https://one.com"}),
                    ("b", "make_svg_diagram", {"spec": "PC -> PSU"}),
                    ("c", "web_search", {"query": "psu test"}),
                ),
                json_turn(sample_answer()),
            ]
        )
        _run(llm, tools)
        tool_msgs = [m for m in llm.calls[1]["messages"] if m["role"] == "tool"]
        assert [m["tool_call_id"] for m in tool_msgs] == ["a", "b", "c"]
        assert json.loads(tool_msgs[1]["content"])["svg"].startswith("<svg")

    def test_at_most_four_tools_in_flight(self) -> None:
        state = {"active": 0, "peak": 0}

        async def slow_search(query, top_k=5):
            state["active"] += 1
            state["peak"] = max(state["peak"], state["active"])
            await asyncio.sleep(0.01)
            state["active"] -= 1
            return []

        llm = ScriptedChatModel(
            [
                tool_turn(*((f"c{i}", "web_search", {"query": f"q{i}"}) for i in range(9))),
                json_turn(sample_answer()),
            ]
        )
        asyncio.run(
            run_agent("pc", "Windows", "desktop", llm=llm, adapters=ToolAdapters(web_search=slow_search))
        )
        assert state["peak"] == MAX_PARALLEL_TOOLS == 4
        assert len([m for m in llm.calls[1]["messages"] if m["role"] == "tool"]) == 9

    def test_failing_tool_becomes_error_marker(self) -> None:
        llm = ScriptedChatModel(
            [tool_turn(("call_1", "web_search", {"query": "pc"})), json_turn(sample_answer())]
        )
        answer = _run(llm, FakeTools(fail_search=True))
        assert answer is not None
        tool_msg = llm.calls[1]["messages"][-1]
        assert json.loads(tool_msg["content"]) == {"error": "Failed to execute web_search"}

    def test_unparseable_tool_arguments_become_error_marker(self) -> None:
        llm = ScriptedChatModel([tool_turn(("call_1", "fetch_page", None)), json_turn(sample_answer())])
        _run(llm)
        assert json.loads(llm.calls[1]["messages"][-1]["content"]) == {"error": "Failed to execute fetch_page"}

    def test_over_length_fields_are_clamped(self) -> None:
        llm = ScriptedChatModel([json_turn(sample_answer(answer_title="x" * 400))])
        assert len(_run(llm).answer_title) == 200


class TestFailures:
    """Budget exhaustion, unusable replies, and LLM outages."""

    def test_tool_budget_exhausted_after_three_rounds(self) -> None:
        llm = ScriptedChatModel([tool_turn((f"c{i}", "web_search", {"query": "pc"})) for i in range(3)])
        with pytest.raises(ToolBudgetExhaustedError):
            _run(llm)
        assert len(llm.calls) == 3

    def test_answer_on_third_round_is_accepted(self) -> None:
        llm = ScriptedChatModel(
            [
                tool_turn(("c0", "web_search", {"query": "pc"})),
                tool_turn(("c1", "web_search", {"query": "pc psu"})),
                json_turn(sample_answer()),
            ]
        )
        assert len(_run(llm).steps) == 2

    def test_prose_reply_is_extraction_failure(self) -> None:
        with pytest.raises(ExtractionError):
            _run(ScriptedChatModel([text_turn("Sorry, I am not sure what is wrong.")]))

    def test_schema_mismatch(self) -> None:
        llm = ScriptedChatModel([json_turn(sample_answer(citations=[citation("https://a.com")]))])
        with pytest.raises(SchemaMismatchError):
            _run(llm)

    def test_llm_unavailable_propagates(self) -> None:
        with pytest.raises(ServiceUnavailableError):
            _run(ScriptedChatModel([ServiceUnavailableError("LLM request failed")]))

    def test_empty_issue_rejected(self) -> None:
        with pytest.raises(ValueError):
            asyncio.run(run_agent("   ", llm=ScriptedChatModel([])))


class TestCitationRepair:
    """Repair round when every citation shares one registrable domain."""

    def test_repair_appends_citations_from_other_domains(self) -> None:
        extra = [{"url": "https://www.other.org/help", "title": "Other", "quote": "q" * 300}]
        llm = ScriptedChatModel(
            [json_turn(sample_answer(citations=SAME_DOMAIN)), text_turn("Sure: " + json.dumps(extra))]
        )
        answer = _run(llm)
        assert [c.url for c in answer.citations] == [
            "https://support.example.com/a",
            "https://docs.example.com/b",
            "https://www.other.org/help",
        ]
        assert len(answer.citations[2].quote) == 180

        repair_call = llm.calls[1]
        assert repair_call["tools"] is None
        assert repair_call["messages"][0]["content"] == REPAIR_SYSTEM_PROMPT
        assert "support.example.com" in repair_call["messages"][1]["content"]

    def test_repair_keeps_at_most_five_citations(self) -> None:
        extra = [citation(f"https://site{i}.org") for i in range(6)]
        llm = ScriptedChatModel([json_turn(sample_answer(citations=SAME_DOMAIN)), json_turn(extra)])
        assert len(_run(llm).citations) == 5

    def test_unparseable_repair_keeps_citations(self) -> None:
        llm = ScriptedChatModel([json_turn(sample_answer(citations=SAME_DOMAIN)), text_turn("I can't find any.")])
        answer = _run(llm)
        assert [c.url for c in answer.citations] == [c["url"] for c in SAME_DOMAIN]

    def test_invalid_repair_citations_are_dropped(self) -> None:
        llm = ScriptedChatModel(
            [json_turn(sample_answer(citations=SAME_DOMAIN)), json_turn([{"url": "not a url", "title": "x", "quote": "y"}])]
        )
        assert len(_run(llm).citations) == 2

    def test_repair_llm_failure_keeps_citations(self) -> None:
        llm = ScriptedChatModel(
            [json_turn(sample_answer(citations=SAME_DOMAIN)), ServiceUnavailableError("LLM request failed")]
        )
        assert len(_run(llm).citations) == 2

    def test_unexpected_repair_error_keeps_citations(self) -> None:
        llm = ScriptedChatModel(
            [json_turn(sample_answer(citations=SAME_DOMAIN)), RuntimeError("adapter bug")]
        )
        answer = _run(llm)
        assert [c.url for c in answer.citations] == [c["url"] for c in SAME_DOMAIN]

    def test_distinct_domains_skip_repair(self) -> None:
        llm = ScriptedChatModel([json_turn(sample_answer())])
        _run(llm)
        assert len(llm.calls) == 1


class TestBuildUserMessage:
    """Tests for build_user_message()."""

    def test_clarify_note_when_os_or_device_missing(self) -> None:
        assert CLARIFY_NOTE in build_user_message("VPN drops", None, "laptop")
        assert CLARIFY_NOTE in build_user_message("VPN drops", "macOS", None)
        assert CLARIFY_NOTE not in build_user_message("VPN drops", "macOS", "laptop")

    def test_runbook_hint_added_for_known_issue(self) -> None:
        text = build_user_message("printer offline", "Windows", "desktop")
        assert "Internal runbook hint for 'Printer offline'" in text
        assert "Clear print queue and restart spooler service" in text

    def test_no_hint_for_unknown_issue(self) -> None:
        assert "runbook" not in build_user_message("monitor flickers", "Windows", "desktop")

    def test_clarify_note_reaches_model(self) -> None:
        llm = ScriptedChatModel([json_turn(sample_answer())])
        _run(llm, os=None, device=None)
        assert CLARIFY_NOTE in llm.calls[0]["messages"][1]["content"]
