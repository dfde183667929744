"""
Text processing helpers shared by the tools and the JSON extraction step.

Page text from the web is noisy (runs of whitespace, zero-width characters,
compatibility forms); normalizing it keeps tool results compact for the LLM.
"""

import re
import unicodedata

_WS_RE = re.compile(r"\s+")
_SLUG_RE = re.compile(r"[^a-z0-9]+")


def collapse_whitespace(text: str) -> str:
    """NFKC-normalize and collapse every whitespace run to one space."""
    if not text or not text.strip():
        return ""
    text = unicodedata.normalize("NFKC", text).replace("\u200b", "")
    return _WS_RE.sub(" ", text).strip()


def truncate(text: str, limit: int, ellipsis: str = "...") -> str:
    """Cut text to at most limit characters, ending in ellipsis when anything was dropped."""
    if not text or len(text) <= limit:
        return text or ""
    return text[: max(0, limit - len(ellipsis))] + ellipsis


def slugify(text: str) -> str:
    """URL-friendly slug: lowercase, non-alphanumerics collapsed to single dashes."""
    return _SLUG_RE.sub("-", (text or "").lower()).strip("-")
