"""
FastAPI server for the order pipeline (cart, orders, delivery, payments, notifications).
"""
from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from app.api.rate_limit import limiter
from app.api.v1 import router as v1_router
from app.core.config import Settings, load_settings
from app.core.exceptions import FoodDeliveryError
from app.core.sentry_integration import capture_exception, init_sentry, setup_logging
from app.services.container import Services, build_services

logger = logging.getLogger(__name__)


async def food_delivery_error_handler(request: Request, exc: FoodDeliveryError) -> JSONResponse:
    if exc.http_status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        capture_exception(exc, path=request.url.path, kind=exc.kind)
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


def create_app(settings: Settings | None = None, services: Services | None = None) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        settings: Loaded settings (read from the environment when omitted)
        services: Prebuilt service graph; when omitted the PostgreSQL database
            is opened on startup and closed on shutdown.
    """
    settings = settings or load_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db = None
        if getattr(app.state, "services", None) is None:
            from app.infra.db import Database

            db = Database(
                settings.database_url,
                min_connections=settings.db_min_connections,
                max_connections=settings.db_max_connections,
                wait_timeout=settings.db_pool_wait_timeout,
            )
            db.init_db()
            app.state.services = build_services(settings, db)
            logger.info("Order API connected to database")
        yield
        await app.state.services.notifications.drain()
        if db is not None:
            db.close()
        logger.info("Order API shutting down")

    app = FastAPI(
        title="Food Delivery Orders API",
        description="Cart, order lifecycle and payment reconciliation",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/api/docs",
        openapi_url="/api/openapi.json",
    )
    app.state.services = services

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(FoodDeliveryError, food_delivery_error_handler)

    app.include_router(v1_router)

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok", "environment": settings.environment}

    return app


def main() -> None:
    settings = load_settings()
    setup_logging(settings.log_level)
    init_sentry(settings)
    uvicorn.run(
        create_app(settings),
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
