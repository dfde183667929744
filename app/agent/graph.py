"""
LangGraph agent: drafting → tool dispatch (loop) → finalizing → citation repair.

The model is asked for a JSON answer and may call tools first. Every loop is
bounded: at most MAX_TOOL_ROUNDS tool rounds, then one optional, tool-free
repair round when the citations all come from the same domain.
"""

import asyncio
import json
import logging
from typing import Literal, TypedDict

from langgraph.graph import END, StateGraph

from app.agent.llm import ChatModel, OpenAIChatModel
from app.agent.parsing import extract_array, parse_structured
from app.agent.rubric import quick_rubric_check
from app.agent.runbooks import find_runbook_hint, format_hint
from app.agent.tools import (
    AGENT_TOOLS,
    ToolAdapters,
    ToolCall,
    execute_tool,
    failure_marker,
    tool_result_content,
)
from app.core.config import (
    AGENT_MAX_TOKENS,
    AGENT_TEMPERATURE,
    MAX_PARALLEL_TOOLS,
    MAX_TOOL_ROUNDS,
    REPAIR_MAX_TOKENS,
    REPAIR_TEMPERATURE,
    TOOL_CALL_TIMEOUT,
)
from app.core.errors import (
    AgentError,
    ExtractionError,
    SchemaMismatchError,
    ToolBudgetExhaustedError,
)
from app.schemas.answer import Answer, SchemaError, clamp_answer, has_distinct_sources, validate_answer

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are a Level-1 IT support expert. Ask at most one clarifying question ONLY if OS/device is essential.

Use tools to SEARCH/FETCH multiple reputable sources before answering.
Prefer vendor docs. Return ONLY valid JSON per schema.
Include 2-5 citations from at least 2 different domains, with short quotes (MAXIMUM 180 characters each).
If sources conflict, pick the safest option and note it in warnings.

Return ONLY the JSON object: no text before or after it, no markdown.

The JSON must have this exact structure:
{
  "answer_title": "Brief, descriptive title",
  "one_paragraph_summary": "Concise summary of the solution",
  "prereqs": ["List of prerequisites"],
  "steps": [
    {
      "title": "Step title",
      "detail": "Detailed step description",
      "os": ["Windows", "macOS", "Linux", "Android", "iOS", "ChromeOS"],
      "est_minutes": 5,
      "shell": ["Optional shell commands"]
    }
  ],
  "decision_tree": [{"if": "Condition description", "then": "Action to take", "link_step": 1}],
  "diagrams": [{"caption": "Diagram description", "svg": "SVG content starting with <svg"}],
  "citations": [{"url": "https://example.com", "title": "Source title", "quote": "Brief quote (max 180 chars)"}],
  "warnings": ["Important warnings or notes"]
}"""

REPAIR_SYSTEM_PROMPT = (
    "You are a helpful assistant. Provide ONLY a JSON array of 1-2 additional citations from different "
    "domains to replace or augment the existing ones. Each citation must have url, title, and quote "
    "(max 180 chars)."
)

CLARIFY_NOTE = "Note: If OS or device type is essential for this issue, please ask ONE clarifying question."


class AgentState(TypedDict):
    messages: list  # chat messages in OpenAI format, strictly ordered
    pending_tool_calls: list  # ToolCall objects from the latest model turn
    rounds: int
    final_text: str
    answer: Answer | None
    error: AgentError | None


def build_user_message(issue: str, os: str | None = None, device: str | None = None) -> str:
    """User turn: the issue, OS/device when known, and a runbook hint when one matches."""
    parts = [f"Please help me resolve this IT issue: {issue}"]
    if os:
        parts.append(f"Operating System: {os}")
    if device:
        parts.append(f"Device Type: {device}")
    text = "\n".join(parts)
    if not os or not device:
        text += "\n\n" + CLARIFY_NOTE
    hint = find_runbook_hint(issue)
    if hint is not None:
        text += "\n\n" + format_hint(hint)
    return text


def _assistant_tool_message(content: str | None, calls: list[ToolCall]) -> dict:
    return {
        "role": "assistant",
        "content": content or "",
        "tool_calls": [
            {
                "id": c.id,
                "type": "function",
                "function": {"name": c.name, "arguments": json.dumps(c.arguments or {})},
            }
            for c in calls
        ],
    }


def build_graph(llm: ChatModel, adapters: ToolAdapters | None = None):
    """
    Build and compile the agent graph.
    drafting → (tool_dispatch → drafting)* → finalizing → [citation_repair] → END.
    """
    adapters = adapters or ToolAdapters()

    async def _drafting(state: AgentState) -> dict:
        """Node 1: ask the model for an answer (or for tool calls)."""
        messages = state["messages"]
        logger.info("[graph:drafting] IN  round=%d messages=%d", state["rounds"], len(messages))
        turn = await llm.complete(
            messages, AGENT_TOOLS, temperature=AGENT_TEMPERATURE, max_tokens=AGENT_MAX_TOKENS
        )
        if turn.tool_calls:
            logger.info("[graph:drafting] OUT tool_calls=%s", [c.name for c in turn.tool_calls])
            return {
                "messages": messages + [_assistant_tool_message(turn.content, turn.tool_calls)],
                "pending_tool_calls": list(turn.tool_calls),
            }
        text = turn.content or ""
        logger.info("[graph:drafting] OUT final_text_len=%d", len(text))
        return {
            "messages": messages + [{"role": "assistant", "content": text}],
            "pending_tool_calls": [],
            "final_text": text,
        }

    async def _tool_dispatch(state: AgentState) -> dict:
        """Node 2: run this turn's tool calls (at most MAX_PARALLEL_TOOLS at once), then join."""
        calls: list[ToolCall] = state["pending_tool_calls"]
        semaphore = asyncio.Semaphore(MAX_PARALLEL_TOOLS)

        async def run_one(call: ToolCall) -> dict:
            async with semaphore:
                try:
                    result = await asyncio.wait_for(execute_tool(call, adapters), TOOL_CALL_TIMEOUT)
                except Exception as e:
                    logger.warning("[graph:tool_dispatch] tool=%r failed: %s", call.name, e)
                    result = failure_marker(call.name)
            return {"role": "tool", "tool_call_id": call.id, "content": tool_result_content(result)}

        results = await asyncio.gather(*(run_one(c) for c in calls))
        rounds = state["rounds"] + 1
        update: dict = {
            "messages": state["messages"] + list(results),
            "pending_tool_calls": [],
            "rounds": rounds,
        }
        logger.info("[graph:tool_dispatch] OUT round=%d tool_results=%d", rounds, len(results))
        if rounds >= MAX_TOOL_ROUNDS:
            update["error"] = ToolBudgetExhaustedError(
                f"tool-call budget exhausted after {rounds} rounds without a final answer"
            )
        return update

    def _finalizing(state: AgentState) -> dict:
        """Node 3: extract JSON from the final text, clamp, validate."""
        try:
            payload = parse_structured(state["final_text"])
        except ExtractionError as e:
            logger.warning("[graph:finalizing] %s", e.message)
            return {"error": e}
        try:
            answer = validate_answer(clamp_answer(payload))
        except SchemaError as e:
            logger.warning("[graph:finalizing] schema mismatch path=%s msg=%s", e.path, e.message)
            return {"error": SchemaMismatchError(f"schema mismatch at {e.path or '<root>'}")}
        logger.info("[graph:finalizing] OUT steps=%d citations=%d", len(answer.steps), len(answer.citations))
        return {"answer": answer}

    async def _citation_repair(state: AgentState) -> dict:
        """Node 4 (best effort): ask for citations from other domains. Never fails the request."""
        answer: Answer = state["answer"]
        current = [c.model_dump() for c in answer.citations]
        messages = [
            {"role": "system", "content": REPAIR_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": (
                    "The current citations are not from distinct domains. Please provide additional citations "
                    "from different domains to ensure we have at least 2 unique eTLD+1 sources. "
                    f"Current citations: {json.dumps(current)}"
                ),
            },
        ]
        logger.info("[graph:citation_repair] IN  citations=%d", len(current))
        try:
            turn = await llm.complete(messages, None, temperature=REPAIR_TEMPERATURE, max_tokens=REPAIR_MAX_TOKENS)
        except Exception as e:
            logger.warning("[graph:citation_repair] request failed, keeping citations: %s", e)
            return {"answer": answer}
        extra = extract_array(turn.content or "")
        if extra is None:
            logger.warning("[graph:citation_repair] no citation array in reply, keeping citations")
            return {"answer": answer}
        payload = answer.to_payload()
        payload["citations"] = (payload["citations"][:2] + extra[:3])[:5]
        try:
            repaired = validate_answer(clamp_answer(payload))
        except SchemaError as e:
            logger.warning("[graph:citation_repair] revalidation failed path=%s, keeping citations", e.path)
            return {"answer": answer}
        logger.info("[graph:citation_repair] OUT citations=%d", len(repaired.citations))
        return {"answer": repaired}

    def _route_after_drafting(state: AgentState) -> Literal["tool_dispatch", "finalizing"]:
        return "tool_dispatch" if state["pending_tool_calls"] else "finalizing"

    def _route_after_dispatch(state: AgentState) -> Literal["drafting", "__end__"]:
        return END if state.get("error") else "drafting"

    def _route_after_finalizing(state: AgentState) -> Literal["citation_repair", "__end__"]:
        if state.get("error"):
            return END
        if has_distinct_sources(state["answer"].citations):
            return END
        logger.info("[graph:route_after_finalizing] citations not from distinct domains -> citation_repair")
        return "citation_repair"

    graph = StateGraph(AgentState)

    graph.add_node("drafting", _drafting)
    graph.add_node("tool_dispatch", _tool_dispatch)
    graph.add_node("finalizing", _finalizing)
    graph.add_node("citation_repair", _citation_repair)

    graph.set_entry_point("drafting")
    graph.add_conditional_edges("drafting", _route_after_drafting)
    graph.add_conditional_edges("tool_dispatch", _route_after_dispatch)
    graph.add_conditional_edges("finalizing", _route_after_finalizing)
    graph.add_edge("citation_repair", END)

    return graph.compile()


async def run_agent(
    issue: str,
    os: str | None = None,
    device: str | None = None,
    *,
    llm: ChatModel | None = None,
    adapters: ToolAdapters | None = None,
) -> Answer:
    """
    Run the agent to a validated Answer.
    Raises AgentError subclasses on failure, ServiceUnavailableError when the LLM is unusable.
    """
    if not issue or not str(issue).strip():
        raise ValueError("issue is required")
    logger.info("[run_agent] START issue_len=%d os=%s device_len=%d", len(issue), os, len(device or ""))
    initial: AgentState = {
        "messages": [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": build_user_message(issue.strip(), os, device)},
        ],
        "pending_tool_calls": [],
        "rounds": 0,
        "final_text": "",
        "answer": None,
        "error": None,
    }
    graph = build_graph(llm or OpenAIChatModel(), adapters)
    final = await graph.ainvoke(initial)

    error = final.get("error")
    if error is not None:
        logger.warning("[run_agent] END failed outcome=%s reason=%s", error.outcome, error.message)
        raise error
    answer = final.get("answer")
    if answer is None:
        raise AgentError("agent finished without an answer")

    report = quick_rubric_check(answer)
    if report.issues or report.warnings:
        logger.info("[run_agent] rubric issues=%s warnings=%s", report.issues, report.warnings)
    logger.info("[run_agent] END rounds=%d citations=%d", final.get("rounds", 0), len(answer.citations))
    return answer
