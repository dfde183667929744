"""
Agent tools: definitions and execution for tool-calling mode.

Tools: web_search (Brave Search API), fetch_page (HTML to clean text),
make_svg_diagram (text flow to SVG). Tools never raise to the agent loop:
network failures degrade to placeholder results, and anything unexpected is
turned into an error marker by execute_tool.
"""

import html
import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, TypedDict

import httpx
from bs4 import BeautifulSoup

from app.core.config import (
    BRAVE_API_KEY,
    BRAVE_SEARCH_URL,
    FETCH_API_TIMEOUT,
    FETCH_MAX_CHARS,
    FETCH_MAX_HEADINGS,
    SEARCH_API_TIMEOUT,
    USER_AGENT,
)
from app.services.text_processing import collapse_whitespace, slugify, truncate

logger = logging.getLogger(__name__)


class SearchResult(TypedDict):
    title: str
    url: str
    snippet: str


class PageContent(TypedDict):
    clean_text: str
    headings: list[str]


class DiagramResult(TypedDict):
    svg: str


class ToolName(str, Enum):
    WEB_SEARCH = "web_search"
    FETCH_PAGE = "fetch_page"
    MAKE_SVG_DIAGRAM = "make_svg_diagram"


@dataclass
class ToolCall:
    """One tool invocation requested by the model. arguments is None when they were not valid JSON."""

    id: str
    name: str
    arguments: dict[str, Any] | None


# OpenAI function-calling format: list of tool definitions
AGENT_TOOLS = [
    {
        "type": "function",
        "function": {
            "name": ToolName.WEB_SEARCH.value,
            "description": "Search the web for relevant information about the IT issue. Returns title, url and snippet per result.",
            "parameters": {
                "type": "object",
                "properties": {
                    "query": {"type": "string", "description": "Search query string"},
                    "topK": {
                        "type": "number",
                        "description": "Maximum number of results to return (default: 5)",
                        "default": 5,
                    },
                },
                "required": ["query"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": ToolName.FETCH_PAGE.value,
            "description": "Fetch a web page and return its cleaned text and top-level headings. Use on promising search results before citing them.",
            "parameters": {
                "type": "object",
                "properties": {"url": {"type": "string", "description": "URL of the page to fetch"}},
                "required": ["url"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": ToolName.MAKE_SVG_DIAGRAM.value,
            "description": "Generate an SVG diagram of an IT support flow or process.",
            "parameters": {
                "type": "object",
                "properties": {
                    "spec": {
                        "type": "string",
                        "description": 'Flow specification, e.g. "User PC -> Wi-Fi Router -> ISP Modem"',
                    }
                },
                "required": ["spec"],
            },
        },
    },
]


# --- web_search ---

_JUNK_URL_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\.pdf$",
        r"\.docx?$",
        r"\.xlsx?$",
        r"\.pptx?$",
        r"login",
        r"signin",
        r"auth",
        r"admin",
        r"dashboard",
    )
]

# Queries mentioning any of these opt out of the junk filter
_EXPLICIT_REQUEST_TERMS = ("pdf", "document", "login", "admin", "dashboard", "government", "education", "official")


def should_filter_url(url: str, query: str) -> bool:
    """True for document/login/admin style URLs, unless the query asks for that kind of content."""
    q = (query or "").lower()
    if any(term in q for term in _EXPLICIT_REQUEST_TERMS):
        return False
    return any(p.search(url or "") for p in _JUNK_URL_PATTERNS)


def _placeholder_results(query: str, reason: str) -> list[SearchResult]:
    slug = slugify(query)
    if reason == "no_key":
        return [
            {
                "title": f"How to fix {query} - Tech Support Guide",
                "url": f"https://example.com/fix-{slug}",
                "snippet": f"Comprehensive guide to resolve {query} issues on various operating systems.",
            },
            {
                "title": f"{query} Troubleshooting Steps",
                "url": f"https://support.example.com/{slug}",
                "snippet": f"Step-by-step troubleshooting for {query} problems.",
            },
            {
                "title": f"{query} - Official Support Documentation",
                "url": f"https://docs.example.com/{slug}",
                "snippet": f"Official documentation and support resources for {query} issues.",
            },
        ]
    if reason == "upstream_error":
        encoded = httpx.QueryParams({"q": query})
        return [
            {
                "title": f"Search results for: {query}",
                "url": f"https://example.com/search-{slug}",
                "snippet": f"Search results for {query}. The search provider returned an error.",
            },
            {
                "title": f"IT Support: {query}",
                "url": f"https://support.microsoft.com/search?{encoded}",
                "snippet": f"Microsoft Support documentation for {query}. Check official Microsoft support resources.",
            },
            {
                "title": f"Apple Support: {query}",
                "url": f"https://support.apple.com/search?{encoded}",
                "snippet": f"Apple Support documentation for {query}. Check official Apple support resources.",
            },
        ]
    return [
        {
            "title": f"Search results for: {query}",
            "url": f"https://example.com/search-{slug}",
            "snippet": f"Search results for {query}. Please try again later.",
        }
    ]


async def search_web(
    query: str,
    top_k: int = 5,
    *,
    api_key: str | None = None,
    client: httpx.AsyncClient | None = None,
) -> list[SearchResult]:
    """
    Search the web with the Brave Search API and drop junk URLs.

    Without an API key, or when the provider fails, returns a small
    deterministic placeholder set instead of raising.
    """
    query = collapse_whitespace(query)
    top_k = max(1, int(top_k or 5))
    key = BRAVE_API_KEY if api_key is None else api_key
    logger.info("[tools:web_search] IN  query_len=%d top_k=%d", len(query), top_k)
    if not key:
        logger.warning("[tools:web_search] no BRAVE_API_KEY, returning placeholder results")
        return _placeholder_results(query, "no_key")[:top_k]

    params = {"q": query, "count": min(top_k * 2, 50)}
    headers = {"Accept": "application/json", "X-Subscription-Token": key, "User-Agent": "ITBot/1.0"}
    try:
        if client is None:
            async with httpx.AsyncClient(timeout=SEARCH_API_TIMEOUT) as own_client:
                response = await own_client.get(BRAVE_SEARCH_URL, params=params, headers=headers)
        else:
            response = await client.get(BRAVE_SEARCH_URL, params=params, headers=headers, timeout=SEARCH_API_TIMEOUT)
        if response.status_code != 200:
            logger.warning("[tools:web_search] Brave API error %s: %s", response.status_code, response.text[:200])
            return _placeholder_results(query, "upstream_error")[:top_k]
        data = response.json()
    except httpx.TimeoutException:
        logger.warning("[tools:web_search] request timed out")
        return _placeholder_results(query, "failed")[:top_k]
    except (httpx.HTTPError, ValueError) as e:
        logger.warning("[tools:web_search] request failed: %s", e)
        return _placeholder_results(query, "failed")[:top_k]

    raw = ((data or {}).get("web") or {}).get("results") or []
    results: list[SearchResult] = []
    for r in raw:
        url = (r.get("url") or "").strip()
        if not url or should_filter_url(url, query):
            continue
        results.append({"title": r.get("title") or "", "url": url, "snippet": r.get("description") or ""})
        if len(results) >= top_k:
            break
    logger.info("[tools:web_search] OUT results=%d of raw=%d", len(results), len(raw))
    return results


# --- fetch_page ---

_STRIP_TAGS = ["script", "style", "iframe", "noscript", "meta", "link", "head"]


def extract_page_content(page_html: str) -> PageContent:
    """Clean text (collapsed, capped at FETCH_MAX_CHARS) and h1-h3 headings from HTML."""
    soup = BeautifulSoup(page_html or "", "html.parser")
    for tag in soup.find_all(_STRIP_TAGS):
        if not tag.decomposed:
            tag.decompose()
    headings: list[str] = []
    for h in soup.find_all(["h1", "h2", "h3"]):
        text = collapse_whitespace(h.get_text(" "))
        if text:
            headings.append(text)
        if len(headings) >= FETCH_MAX_HEADINGS:
            break
    root = soup.body or soup
    clean = collapse_whitespace(root.get_text(" "))
    return {"clean_text": truncate(clean, FETCH_MAX_CHARS), "headings": headings}


async def fetch_page(url: str, *, client: httpx.AsyncClient | None = None) -> PageContent:
    """Fetch a page and extract its content. Any failure yields a placeholder, never an exception."""
    logger.info("[tools:fetch_page] IN  url=%s", url)
    headers = {"User-Agent": USER_AGENT}
    try:
        if client is None:
            async with httpx.AsyncClient(timeout=FETCH_API_TIMEOUT, follow_redirects=True) as own_client:
                response = await own_client.get(url, headers=headers)
        else:
            response = await client.get(url, headers=headers, timeout=FETCH_API_TIMEOUT, follow_redirects=True)
        response.raise_for_status()
        content = extract_page_content(response.text)
    except httpx.TimeoutException:
        logger.warning("[tools:fetch_page] timed out url=%s", url)
        return _fetch_failed(url)
    except Exception as e:
        logger.warning("[tools:fetch_page] failed url=%s: %s", url, e)
        return _fetch_failed(url)
    logger.info("[tools:fetch_page] OUT text_len=%d headings=%d", len(content["clean_text"]), len(content["headings"]))
    return content


def _fetch_failed(url: str) -> PageContent:
    return {
        "clean_text": f"Unable to fetch content from {url}. Please check the URL and try again.",
        "headings": [],
    }


# --- make_svg_diagram ---

_SPLIT_RE = re.compile(r"->|→|\bto\b|\bthen\b", re.IGNORECASE)
_BOX_WIDTH = 120
_BOX_HEIGHT = 60
_ARROW_LENGTH = 40
_PADDING = 20
_FILLS = ("#e3f2fd", "#f3e5f5", "#e8f5e8", "#fff3e0", "#fce4ec")
_STROKES = ("#2196f3", "#9c27b0", "#4caf50", "#ff9800", "#e91e63")
_FONT = "Arial, sans-serif"


def make_svg_diagram(spec: str) -> DiagramResult:
    """Render "A -> B -> C" as left-to-right rounded boxes joined by arrows. Pure; cannot fail."""
    if not spec or not spec.strip():
        spec = "IT Support Flow"
    parts = [p.strip() for p in _SPLIT_RE.split(spec) if p.strip()] or ["Process"]

    width = len(parts) * (_BOX_WIDTH + _ARROW_LENGTH) + _PADDING
    height = _BOX_HEIGHT + _PADDING * 2
    out = [
        f'<svg width="{width}" height="{height}" xmlns="http://www.w3.org/2000/svg">',
        f'<rect width="{width}" height="{height}" fill="#f8f9fa" stroke="#dee2e6" stroke-width="2" rx="8"/>',
        f'<text x="{width / 2:g}" y="25" text-anchor="middle" font-family="{_FONT}" font-size="14" '
        f'font-weight="bold" fill="#495057">IT Support Flow</text>',
    ]
    if len(parts) > 1:
        out.append(
            '<defs><marker id="arrowhead" markerWidth="10" markerHeight="7" refX="9" refY="3.5" orient="auto">'
            '<polygon points="0 0, 10 3.5, 0 7" fill="#666"/></marker></defs>'
        )
    y = _PADDING + 20
    for i, part in enumerate(parts):
        x = _PADDING + i * (_BOX_WIDTH + _ARROW_LENGTH)
        label = part[:12] + "..." if len(part) > 15 else part
        out.append(
            f'<rect x="{x}" y="{y}" width="{_BOX_WIDTH}" height="{_BOX_HEIGHT}" fill="{_FILLS[i % 5]}" '
            f'stroke="{_STROKES[i % 5]}" stroke-width="2" rx="8"/>'
        )
        out.append(
            f'<text x="{x + _BOX_WIDTH // 2}" y="{y + _BOX_HEIGHT // 2 + 5}" text-anchor="middle" '
            f'font-family="{_FONT}" font-size="12" fill="#333">{html.escape(label)}</text>'
        )
        if i < len(parts) - 1:
            arrow_y = y + _BOX_HEIGHT // 2
            out.append(
                f'<line x1="{x + _BOX_WIDTH}" y1="{arrow_y}" x2="{x + _BOX_WIDTH + _ARROW_LENGTH // 2}" '
                f'y2="{arrow_y}" stroke="#666" stroke-width="2" marker-end="url(#arrowhead)"/>'
            )
    out.append("</svg>")
    return {"svg": "".join(out)}


# --- dispatch ---

@dataclass
class ToolAdapters:
    """The three capabilities handed to the agent. Swappable for tests."""

    web_search: Callable[..., Awaitable[list[SearchResult]]] = search_web
    fetch_page: Callable[..., Awaitable[PageContent]] = fetch_page
    make_svg_diagram: Callable[[str], DiagramResult] = make_svg_diagram


def failure_marker(name: str) -> dict[str, str]:
    return {"error": f"Failed to execute {name}"}


async def execute_tool(call: ToolCall, adapters: ToolAdapters | None = None) -> Any:
    """
    Execute one tool call and return a JSON-serializable result for the LLM.
    Raises on bad arguments or unknown tools; the caller turns that into a marker.
    """
    adapters = adapters or ToolAdapters()
    if call.arguments is None:
        raise ValueError(f"arguments for {call.name!r} are not valid JSON")
    args = call.arguments
    logger.info("[tools] execute_tool name=%r arg_keys=%s", call.name, sorted(args))

    match ToolName(call.name):
        case ToolName.WEB_SEARCH:
            query = str(args.get("query") or "").strip()
            if not query:
                raise ValueError("query is required")
            return await adapters.web_search(query, int(args.get("topK") or 5))
        case ToolName.FETCH_PAGE:
            url = str(args.get("url") or "").strip()
            if not url:
                raise ValueError("url is required")
            return await adapters.fetch_page(url)
        case ToolName.MAKE_SVG_DIAGRAM:
            return adapters.make_svg_diagram(str(args.get("spec") or ""))


def tool_result_content(result: Any) -> str:
    return json.dumps(result, ensure_ascii=False, default=str)
