"""
JSON extraction from free-text model replies.

Models wrap JSON in code fences, surround it with prose, or emit near-JSON
(bare keys, trailing commas). Extraction is layered: fenced block, then the
first balanced {...} object, then the first balanced [...] array; one repair
pass is attempted if the first parse fails.
"""

import json
import logging
import re
from typing import Any

from app.core.errors import ExtractionError

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)
_STRING_RE = re.compile(r'"(?:\\.|[^"\\])*"')
_BARE_KEY_RE = re.compile(r"([{,]\s*)([A-Za-z_][\w\-]*)(\s*:)")
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_WS_RE = re.compile(r"\s+")


def _balanced(text: str, open_ch: str, close_ch: str) -> str | None:
    """Substring from the first open_ch to its matching close_ch, ignoring brackets inside strings."""
    start = text.find(open_ch)
    if start == -1:
        return None
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        c = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif c == "\\":
                escaped = True
            elif c == '"':
                in_string = False
            continue
        if c == '"':
            in_string = True
        elif c == open_ch:
            depth += 1
        elif c == close_ch:
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return None


def extract_json_text(text: str) -> str | None:
    """Pick the JSON candidate out of a reply, or None if there is nothing JSON-shaped."""
    if not text:
        return None
    fenced = _FENCE_RE.search(text)
    if fenced and fenced.group(1).strip():
        return fenced.group(1)
    return _balanced(text, "{", "}") or _balanced(text, "[", "]")


def normalize_whitespace(candidate: str) -> str:
    return _WS_RE.sub(" ", candidate).strip()


def repair_json(candidate: str) -> str:
    """Quote bare object keys and drop trailing commas, outside string literals only."""
    out: list[str] = []
    pos = 0
    for m in _STRING_RE.finditer(candidate):
        out.append(_repair_segment(candidate[pos : m.start()]))
        out.append(m.group(0))
        pos = m.end()
    out.append(_repair_segment(candidate[pos:]))
    return "".join(out)


def _repair_segment(segment: str) -> str:
    segment = _BARE_KEY_RE.sub(r'\1"\2"\3', segment)
    return _TRAILING_COMMA_RE.sub(r"\1", segment)


def _loads_with_repair(candidate: str) -> Any:
    try:
        return json.loads(candidate)
    except json.JSONDecodeError as first:
        logger.info("[parsing] first parse failed at pos=%d, trying repair", first.pos)
        return json.loads(repair_json(candidate))


def parse_structured(text: str) -> Any:
    """Extract and parse the JSON payload of a model reply. Raises ExtractionError."""
    candidate = extract_json_text(text)
    if candidate is None:
        raise ExtractionError("no valid structured response: no JSON found")
    candidate = normalize_whitespace(candidate)
    try:
        return _loads_with_repair(candidate)
    except json.JSONDecodeError as e:
        logger.debug("[parsing] unparseable candidate=%r", candidate[:500])
        raise ExtractionError("no valid structured response: JSON could not be parsed") from e


def extract_array(text: str) -> list[Any] | None:
    """First JSON array in a reply (fenced or inline), or None."""
    if not text:
        return None
    fenced = _FENCE_RE.search(text)
    source = fenced.group(1) if fenced else text
    candidate = _balanced(source, "[", "]")
    if candidate is None:
        return None
    try:
        parsed = _loads_with_repair(normalize_whitespace(candidate))
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, list) else None
