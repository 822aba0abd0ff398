"""FastAPI application entrypoint.

Configures logging, error tracking and CORS, includes routers, and exposes a
healthcheck endpoint.
"""

import logging
import math

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

from .database import init_db
from .deps import get_settings
from .routers import costs as costs_router
from .routers import dashboard as dashboard_router
from .routers import integrations as integrations_router
from .routers import settings as settings_router
from .telemetry import init_observability


def _json_safe_errors(errors: list) -> list:
    """Validation errors with non-finite inputs rendered as strings.

    JSON has no Infinity/NaN, so echoing such an input back would fail to
    serialize and turn a 422 into a 500.
    """
    safe = []
    for error in errors:
        value = error.get("input")
        if isinstance(value, float) and not math.isfinite(value):
            error = {**error, "input": str(value)}
        safe.append(error)
    return safe


def create_app() -> FastAPI:
    observability = init_observability()
    logger.info("[STARTUP] Observability: %s", observability)

    app = FastAPI(
        title="shopprofit API",
        description="""
        shopprofit computes store profit from Shopify revenue and the costs
        of running the store.

        This API provides endpoints for:
        - Profit dashboard with period comparison and targets
        - Marketing, fixed and manual costs
        - Ad platform credentials, account selection and spend sync (Meta, Google Ads)
        - Shop settings (transaction fee, currency, timezone) and metric targets
        """,
        version="1.0.0",
    )

    settings = get_settings()
    allowed_origins = settings.cors_origins
    logger.info("[CORS] Allowed origins: %s", allowed_origins)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=422,
            content={"detail": jsonable_encoder(_json_safe_errors(exc.errors()))},
        )

    app.include_router(dashboard_router.router)
    app.include_router(costs_router.router)
    app.include_router(settings_router.router)
    app.include_router(integrations_router.router)

    @app.get(
        "/health",
        tags=["Health"],
        summary="Health check",
    )
    def health():
        """Simple health check endpoint to verify the API is running."""
        return {"status": "ok"}

    @app.on_event("startup")
    def startup_event():
        init_db()

    return app


app = create_app()
