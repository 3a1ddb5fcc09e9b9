# backend/lessonbook/main.py
"""
FastAPI application for the lesson booking engine.

Mounts the v1 API (availability and the Stripe webhook) and the
Prometheus metrics endpoint.
"""

import logging

from fastapi import APIRouter, FastAPI

from .core.config import settings
from .errors import register_error_handlers
from .routes.v1 import availability as availability_v1, metrics as metrics_v1, webhooks as webhooks_v1

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(
        title="Lessonbook API",
        description="Lesson scheduling and booking lifecycle",
        version="1.0.0",
        debug=settings.debug,
    )
    register_error_handlers(app)

    api_v1 = APIRouter(prefix="/api/v1")
    api_v1.include_router(availability_v1.router, prefix="/instructors")
    api_v1.include_router(webhooks_v1.router, prefix="/webhooks")
    app.include_router(api_v1)
    app.include_router(metrics_v1.router)

    logger.info(f"Lessonbook API configured for {settings.environment}")
    return app


app = create_app()
