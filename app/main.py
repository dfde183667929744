# Run from project root: uvicorn app.main:app --reload

import logging

from fastapi import FastAPI

from app.api.routes import router
from app.services.answer_service import AnswerService

logging.basicConfig(level=logging.INFO)


def create_app(answer_service: AnswerService | None = None) -> FastAPI:
    """Build the app. The answer service (rate limiter + cache) lives for the whole process."""
    app = FastAPI(title="IT Support Answer Service")
    app.state.answer_service = answer_service or AnswerService()
    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    print("IT support answer service booting...")
