"""
Answer contract: the structured answer the agent must return.

The model's output is untrusted JSON. It is clamped to the size limits below,
then validated into an ``Answer``; anything that does not fit raises
``SchemaError`` with the offending path.
"""

from typing import Any, Iterable, Literal
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

OSName = Literal["Windows", "macOS", "Android", "iOS", "ChromeOS", "Linux"]

TITLE_MAX = 200
SUMMARY_MAX = 1000
PREREQ_MAX = 300
STEP_TITLE_MAX = 150
STEP_DETAIL_MAX = 800
SHELL_MAX = 200
DECISION_IF_MAX = 200
DECISION_THEN_MAX = 300
CAPTION_MAX = 200
SVG_MAX = 10000
CITATION_TITLE_MAX = 200
QUOTE_MAX = 180
WARNING_MAX = 300
MIN_CITATIONS = 2
MAX_CITATIONS = 5


class SchemaError(Exception):
    """Answer payload does not match the contract. ``path`` points at the offending field."""

    def __init__(self, path: str, message: str) -> None:
        self.path = path
        self.message = message
        super().__init__(f"{path}: {message}" if path else message)


class Step(BaseModel):
    title: str = Field(..., min_length=1, max_length=STEP_TITLE_MAX)
    detail: str = Field(..., min_length=1, max_length=STEP_DETAIL_MAX)
    os: list[OSName] = Field(..., min_length=1)
    est_minutes: float | None = Field(None, gt=0)
    shell: list[str] | None = None

    @field_validator("shell")
    @classmethod
    def _shell_lengths(cls, value: list[str] | None) -> list[str] | None:
        if value is not None and any(len(s) > SHELL_MAX for s in value):
            raise ValueError(f"shell commands must be {SHELL_MAX} characters or less")
        return value


class DecisionNode(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    if_: str = Field(..., alias="if", min_length=1, max_length=DECISION_IF_MAX)
    then: str = Field(..., min_length=1, max_length=DECISION_THEN_MAX)
    link_step: int | None = Field(None, gt=0)


class Diagram(BaseModel):
    caption: str = Field(..., min_length=1, max_length=CAPTION_MAX)
    svg: str = Field(..., min_length=1, max_length=SVG_MAX)

    @field_validator("svg")
    @classmethod
    def _starts_with_svg_tag(cls, value: str) -> str:
        if not value.strip().startswith("<svg"):
            raise ValueError("SVG must start with <svg tag")
        return value


class Citation(BaseModel):
    url: str
    title: str = Field(..., min_length=1, max_length=CITATION_TITLE_MAX)
    quote: str = Field(..., max_length=QUOTE_MAX)

    @field_validator("url")
    @classmethod
    def _valid_url(cls, value: str) -> str:
        if not is_valid_url(value):
            raise ValueError("Valid URL is required")
        return value


class Answer(BaseModel):
    """Validated answer returned to clients and stored in the response cache."""

    answer_title: str = Field(..., min_length=1, max_length=TITLE_MAX)
    one_paragraph_summary: str = Field(..., min_length=1, max_length=SUMMARY_MAX)
    prereqs: list[str] = Field(default_factory=list)
    steps: list[Step] = Field(..., min_length=1)
    decision_tree: list[DecisionNode] = Field(default_factory=list)
    diagrams: list[Diagram] = Field(default_factory=list)
    citations: list[Citation] = Field(..., min_length=MIN_CITATIONS, max_length=MAX_CITATIONS)
    warnings: list[str] = Field(default_factory=list)

    @field_validator("prereqs")
    @classmethod
    def _prereq_lengths(cls, value: list[str]) -> list[str]:
        if any(len(item) > PREREQ_MAX for item in value):
            raise ValueError(f"prereqs must be {PREREQ_MAX} characters or less")
        return value

    @field_validator("warnings")
    @classmethod
    def _warning_lengths(cls, value: list[str]) -> list[str]:
        if any(len(item) > WARNING_MAX for item in value):
            raise ValueError(f"warnings must be {WARNING_MAX} characters or less")
        return value

    def to_payload(self) -> dict[str, Any]:
        """Wire form: aliases applied ("if"), unset optional fields omitted."""
        return self.model_dump(by_alias=True, exclude_none=True)


def is_valid_url(value: Any) -> bool:
    if not isinstance(value, str) or not value.strip() or any(c.isspace() for c in value):
        return False
    try:
        parts = urlsplit(value)
    except ValueError:
        return False
    return bool(parts.scheme) and bool(parts.netloc)


def _cut(value: Any, limit: int) -> Any:
    return value[:limit] if isinstance(value, str) else value


def _cut_all(values: Any, limit: int) -> Any:
    if not isinstance(values, list):
        return values
    return [_cut(v, limit) for v in values]


def _clamp_items(values: Any, limits: dict[str, int]) -> Any:
    if not isinstance(values, list):
        return values
    out = []
    for item in values:
        if isinstance(item, dict):
            item = dict(item)
            for key, limit in limits.items():
                if key in item:
                    item[key] = _cut(item[key], limit)
        out.append(item)
    return out


def clamp_answer(data: Any) -> Any:
    """
    Truncate over-length strings to their limits. Never raises.

    Works on the raw parsed payload (before validation) so over-length text is
    cut instead of rejected; fields of the wrong type are left for validation.
    """
    if isinstance(data, Answer):
        data = data.to_payload()
    if not isinstance(data, dict):
        return data
    out = dict(data)
    if "answer_title" in out:
        out["answer_title"] = _cut(out["answer_title"], TITLE_MAX)
    if "one_paragraph_summary" in out:
        out["one_paragraph_summary"] = _cut(out["one_paragraph_summary"], SUMMARY_MAX)
    if "prereqs" in out:
        out["prereqs"] = _cut_all(out["prereqs"], PREREQ_MAX)
    if "steps" in out:
        steps = _clamp_items(out["steps"], {"title": STEP_TITLE_MAX, "detail": STEP_DETAIL_MAX})
        if isinstance(steps, list):
            steps = [
                {**s, "shell": _cut_all(s["shell"], SHELL_MAX)} if isinstance(s, dict) and "shell" in s else s
                for s in steps
            ]
        out["steps"] = steps
    if "decision_tree" in out:
        out["decision_tree"] = _clamp_items(out["decision_tree"], {"if": DECISION_IF_MAX, "then": DECISION_THEN_MAX})
    if "diagrams" in out:
        out["diagrams"] = _clamp_items(out["diagrams"], {"caption": CAPTION_MAX, "svg": SVG_MAX})
    if "citations" in out:
        out["citations"] = _clamp_items(out["citations"], {"title": CITATION_TITLE_MAX, "quote": QUOTE_MAX})
    if "warnings" in out:
        out["warnings"] = _cut_all(out["warnings"], WARNING_MAX)
    return out


def validate_answer(data: Any) -> Answer:
    """Validate an untrusted payload into an Answer, or raise SchemaError."""
    try:
        return Answer.model_validate(data)
    except ValidationError as e:
        first = e.errors()[0]
        path = ".".join(str(p) for p in first.get("loc", ()))
        raise SchemaError(path, first.get("msg", "invalid value")) from e


def registrable_domain(url: str) -> str | None:
    """Last two labels of the URL's hostname (support.example.com -> example.com)."""
    try:
        host = urlsplit(url).hostname
    except ValueError:
        return None
    if not host:
        return None
    return ".".join(host.lower().split(".")[-2:])


def _citation_url(citation: Any) -> str:
    if isinstance(citation, Citation):
        return citation.url
    if isinstance(citation, dict):
        return str(citation.get("url") or "")
    return str(citation or "")


def has_distinct_sources(citations: Iterable[Any]) -> bool:
    """True when there are at least 2 citations from at least 2 registrable domains."""
    items = list(citations)
    if len(items) < 2:
        return False
    domains = {d for d in (registrable_domain(_citation_url(c)) for c in items) if d}
    return len(domains) >= 2
