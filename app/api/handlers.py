"""
API handlers: read request data, call the answer service, map results/errors to HTTP.

Responsibility: Bridge HTTP types and services. Marshalling and exception-to-HTTP mapping.
Lives in the API layer so services stay free of FastAPI/HTTP types. Error bodies
are generic: no exception text, stack data or model output reaches the client.
"""

import json
import logging
import math

from fastapi import Request
from fastapi.responses import JSONResponse

from app.core.errors import AgentError, InvalidRequestError, RateLimitedError, ServiceUnavailableError
from app.schemas.query import ErrorResponse
from app.services.answer_service import AnswerService

logger = logging.getLogger(__name__)

ANONYMOUS = "anonymous"


def client_identity(request: Request) -> str:
    """First X-Forwarded-For hop, else X-Real-IP, else the peer address, else "anonymous"."""
    forwarded = (request.headers.get("x-forwarded-for") or "").split(",")[0].strip()
    if forwarded:
        return forwarded
    real_ip = (request.headers.get("x-real-ip") or "").strip()
    if real_ip:
        return real_ip
    if request.client and request.client.host:
        return request.client.host
    return ANONYMOUS


def _remaining_header(remaining: float) -> str:
    return str(max(0, math.floor(remaining)))


def _error(status_code: int, body: ErrorResponse, headers: dict[str, str] | None = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True), headers=headers)


async def _read_json(request: Request):
    raw = await request.body()
    if not raw:
        raise InvalidRequestError([{"field": "body", "message": "Request body is required"}])
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise InvalidRequestError([{"field": "body", "message": "Body must be valid JSON"}]) from e


async def handle_answer(request: Request, service: AnswerService) -> JSONResponse:
    """POST /answer: rate limit first, then parse, then cache/agent. One JSONResponse per outcome."""
    identity = client_identity(request)

    async def read_payload():
        return await _read_json(request)

    try:
        outcome = await service.answer(identity, read_payload)
    except RateLimitedError as e:
        return _error(
            429,
            ErrorResponse(error="Rate limit exceeded. Please try again later.", retry_after=e.retry_after),
            headers={"Retry-After": str(e.retry_after), "X-RateLimit-Remaining": _remaining_header(e.remaining)},
        )
    except InvalidRequestError as e:
        return _error(400, ErrorResponse(error="Invalid request data", details=e.errors))
    except ServiceUnavailableError as e:
        logger.error("[api:answer] service unavailable: %s", e.message)
        return _error(503, ErrorResponse(error="The answer service is temporarily unavailable."))
    except AgentError as e:
        logger.error("[api:answer] agent failed outcome=%s: %s", e.outcome, e.message)
        return _error(500, ErrorResponse(error="Unable to generate an answer. Please try again."))
    except Exception:
        logger.exception("[api:answer] unexpected failure")
        return _error(500, ErrorResponse(error="Internal server error"))

    return JSONResponse(
        content=outcome.answer.to_payload(),
        headers={
            "X-Cache": "HIT" if outcome.cache_hit else "MISS",
            "X-Cache-Size": str(outcome.cache_size),
            "X-RateLimit-Remaining": _remaining_header(outcome.remaining),
        },
    )
