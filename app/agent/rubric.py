"""Quick quality rubric for finished answers. Advisory only: results are logged."""

from dataclasses import dataclass, field
from urllib.parse import urlsplit

from app.schemas.answer import MAX_CITATIONS, MIN_CITATIONS, Answer


@dataclass
class RubricReport:
    is_valid: bool
    issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def _hostname(url: str) -> str | None:
    try:
        host = urlsplit(url).hostname
    except ValueError:
        return None
    if not host:
        return None
    return host[4:] if host.startswith("www.") else host


def quick_rubric_check(answer: Answer) -> RubricReport:
    issues: list[str] = []
    warnings: list[str] = []

    n = len(answer.citations)
    if not MIN_CITATIONS <= n <= MAX_CITATIONS:
        issues.append(f"Citations count ({n}) must be between {MIN_CITATIONS}-{MAX_CITATIONS}")
    hosts = {h for h in (_hostname(c.url) for c in answer.citations) if h}
    if len(hosts) < 2:
        issues.append(f"Citations must be from >=2 distinct domains (found {len(hosts)})")

    if not answer.steps:
        issues.append("Missing or empty steps array")
    for i, step in enumerate(answer.steps, 1):
        if not step.os:
            issues.append(f"Step {i} missing OS labels")

    if not answer.warnings:
        warnings.append("No warnings provided - consider adding warnings for risky operations")
    if not answer.decision_tree:
        warnings.append("No decision tree fallbacks provided")

    return RubricReport(is_valid=not issues, issues=issues, warnings=warnings)
