"""
Application errors for clean API error handling.

Each error carries a short ``message`` for logs. The API layer maps them to
status codes with generic bodies; the message itself is never sent to clients.
"""


class ServiceUnavailableError(Exception):
    """Raised when a required service (e.g. the LLM) is unavailable or misconfigured."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class RateLimitedError(Exception):
    """Raised when a client has no tokens left in its bucket."""

    def __init__(self, retry_after: int, remaining: float) -> None:
        self.retry_after = retry_after
        self.remaining = remaining
        self.message = f"rate limited, retry after {retry_after}s"
        super().__init__(self.message)


class InvalidRequestError(Exception):
    """Raised when the request payload fails validation. errors: [{"field", "message"}]."""

    def __init__(self, errors: list[dict[str, str]]) -> None:
        self.errors = errors
        self.message = "invalid request: " + ", ".join(e.get("field", "") for e in errors)
        super().__init__(self.message)


class AgentError(Exception):
    """Orchestration ended in the failed state. ``outcome`` is the telemetry classification."""

    outcome = "agent_failed"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ToolBudgetExhaustedError(AgentError):
    outcome = "tool_budget_exhausted"


class ExtractionError(AgentError):
    outcome = "extraction_failed"


class SchemaMismatchError(AgentError):
    outcome = "schema_mismatch"
