"""
API route aggregator: register endpoints and delegate to handlers; no logic here.
"""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from app.api.handlers import handle_answer
from app.core.config import BRAVE_API_KEY, OPENAI_API_KEY
from app.schemas.answer import Answer
from app.schemas.query import AnswerRequest, ErrorResponse

logger = logging.getLogger(__name__)
router = APIRouter()


# --- System ---

@router.get("/", tags=["system"])
def root():
    return {"status": "IT support answer service running"}


@router.get("/health", tags=["system"], summary="Liveness and configuration status")
def health() -> dict:
    """Report whether the LLM and search keys are configured (presence only, never key material)."""
    return {
        "ok": True,
        "openai_configured": bool(OPENAI_API_KEY),
        "search_configured": bool(BRAVE_API_KEY),
    }


# --- Answer ---

@router.post(
    "/answer",
    tags=["answer"],
    summary="Answer an IT support question",
    description=(
        "Send {issue, os, device}; receive a structured answer with steps, decision tree, diagrams and "
        "2-5 citations. Headers: X-Cache (HIT/MISS), X-Cache-Size, X-RateLimit-Remaining. "
        "400 on invalid input, 429 when rate limited (Retry-After), 500/503 on agent failure."
    ),
    openapi_extra={
        "requestBody": {
            "required": True,
            "content": {"application/json": {"schema": AnswerRequest.model_json_schema()}},
        }
    },
    responses={
        200: {"model": Answer},
        400: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)
async def post_answer(request: Request) -> JSONResponse:
    # Body is read by the handler so rate limiting is checked before parsing.
    return await handle_answer(request, request.app.state.answer_service)
