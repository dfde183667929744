"""
Answer service: rate limit → validate → cache → agent → cache write.

Responsibility: Compose the protection layers around the agent and record one
telemetry event per request. No HTTP types here; the API layer maps the
raised errors to responses.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from pydantic import ValidationError

from app.agent.graph import run_agent
from app.core.errors import AgentError, InvalidRequestError, RateLimitedError, ServiceUnavailableError
from app.core.rate_limiter import TokenBucketRateLimiter
from app.core.response_cache import ResponseCache
from app.core.telemetry import record_event
from app.schemas.answer import Answer
from app.schemas.query import AnswerRequest

logger = logging.getLogger(__name__)

AnswerFn = Callable[[str, str, str], Awaitable[Answer]]
PayloadReader = Callable[[], Awaitable[Any]]


@dataclass
class AnswerOutcome:
    answer: Answer
    cache_hit: bool
    cache_size: int
    remaining: float


def _default_answer_fn(issue: str, os: str, device: str) -> Awaitable[Answer]:
    return run_agent(issue, os, device)


def parse_request(payload: Any) -> AnswerRequest:
    """Validate the raw JSON body, or raise InvalidRequestError listing the offending fields."""
    try:
        return AnswerRequest.model_validate(payload)
    except ValidationError as e:
        errors = [
            {"field": ".".join(str(p) for p in err.get("loc", ())) or "body", "message": err.get("msg", "")}
            for err in e.errors()
        ]
        raise InvalidRequestError(errors) from e


class AnswerService:
    """Long-lived request handler; rate limiter and cache are injected and shared across requests."""

    def __init__(
        self,
        rate_limiter: TokenBucketRateLimiter | None = None,
        cache: ResponseCache | None = None,
        answer_fn: AnswerFn | None = None,
    ) -> None:
        self.rate_limiter = rate_limiter if rate_limiter is not None else TokenBucketRateLimiter()
        self.cache = cache if cache is not None else ResponseCache()
        self._answer_fn = answer_fn or _default_answer_fn

    async def answer(self, identity: str, read_payload: PayloadReader) -> AnswerOutcome:
        """
        Serve one request for identity. read_payload is only awaited after admission,
        so denied requests are never parsed. Raises RateLimitedError, InvalidRequestError,
        AgentError or ServiceUnavailableError.
        """
        start = time.perf_counter()
        fields: dict[str, Any] = {"identity": identity}

        def elapsed_ms() -> int:
            return int((time.perf_counter() - start) * 1000)

        if not self.rate_limiter.consume(identity):
            remaining = self.rate_limiter.remaining(identity)
            retry_after = self.rate_limiter.retry_after(identity)
            record_event(**fields, outcome="rate_limited", duration_ms=elapsed_ms())
            raise RateLimitedError(retry_after=retry_after, remaining=remaining)

        try:
            request = parse_request(await read_payload())
        except InvalidRequestError:
            record_event(**fields, outcome="invalid_input", duration_ms=elapsed_ms())
            raise
        fields.update(issue_len=len(request.issue), os=request.os, device=request.device)

        key = request.fingerprint()
        cached = self.cache.get(key)
        if cached is not None:
            record_event(**fields, outcome="cache_hit", duration_ms=elapsed_ms(), cache_hit=True)
            return AnswerOutcome(
                answer=cached,
                cache_hit=True,
                cache_size=self.cache.size(),
                remaining=self.rate_limiter.remaining(identity),
            )

        try:
            answer = await self._answer_fn(request.issue, request.os, request.device)
        except AgentError as e:
            record_event(**fields, outcome=e.outcome, duration_ms=elapsed_ms())
            raise
        except ServiceUnavailableError:
            record_event(**fields, outcome="model_unavailable", duration_ms=elapsed_ms())
            raise
        except Exception:
            record_event(**fields, outcome="agent_failed", duration_ms=elapsed_ms())
            raise

        self.cache.set(key, answer)
        record_event(**fields, outcome="ok", duration_ms=elapsed_ms(), sources_count=len(answer.citations))
        return AnswerOutcome(
            answer=answer,
            cache_hit=False,
            cache_size=self.cache.size(),
            remaining=self.rate_limiter.remaining(identity),
        )
