# backend/carshare/main.py
"""
FastAPI application for the carshare booking and ledger backend.

Run with ``uvicorn carshare.main:app`` from the ``backend`` directory.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import AsyncGenerator

from fastapi import FastAPI

from .core.config import settings
from .core.redis import close_redis_client
from .core.request_context import attach_request_id_filter
from .errors import register_error_handlers
from .middleware.prometheus_middleware import PrometheusMiddleware
from .middleware.request_id import RequestIdMiddleware
from .monitoring.sentry import init_sentry
from .routes import health, prometheus
from .routes.v1 import api_v1

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s",
)
attach_request_id_filter()

logger = logging.getLogger(__name__)

API_TITLE = "Carshare API"
API_VERSION = "1.0.0"


@asynccontextmanager
async def app_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle application startup/shutdown without deprecated events."""
    logger.info("Carshare API starting up (environment=%s)", settings.environment)
    yield
    close_redis_client()
    logger.info("Carshare API shut down")


def create_app() -> FastAPI:
    init_sentry()

    application = FastAPI(
        title=API_TITLE,
        version=API_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=app_lifespan,
    )
    register_error_handlers(application)

    # Starlette runs the last-added middleware first
    application.add_middleware(PrometheusMiddleware)
    application.add_middleware(RequestIdMiddleware)

    application.include_router(health.router)
    application.include_router(prometheus.router)
    application.include_router(api_v1)
    return application


app = create_app()
