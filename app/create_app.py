"""
FastAPI application entry point - connection health and token refresh API
"""

import logging
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.openapi.utils import get_openapi
from fastapi.responses import JSONResponse
from fastapi_async_sqlalchemy import SQLAlchemyMiddleware

from app.api.middlewares.auto_commit import AutoCommitMiddleware
from app.api.routes import api_router
from app.environment import EnvironmentName
from app.exceptions import BaseError, ErrorType, RateLimitExceededError
from settings import settings

logger = logging.getLogger(__name__)


def _setup_error_handlers(app: FastAPI) -> None:
    """Setup FastAPI exception handlers."""

    @app.exception_handler(HTTPException)
    async def handle_http_error(request: Request, exc: HTTPException) -> JSONResponse:
        """Handle FastAPI HTTPException errors."""
        return JSONResponse(status_code=exc.status_code or 400, content={"error": exc.detail})

    @app.exception_handler(BaseError)
    async def handle_app_error(request: Request, exc: BaseError) -> JSONResponse:
        """Handle custom BaseError exceptions."""
        if exc.status_code >= 400 and exc.status_code < 500:
            logger.warning(f"A user-related (HTTP 4xx) error occurred; {exc}", extra=exc.extra)
        else:
            logger.exception(f"An unhandled app exception occurred; {exc}", extra=exc.extra)

        content: dict[str, Any] = {"error": exc.error_type.value, "error_description": exc.message}
        headers: dict[str, str] = {}
        if isinstance(exc, RateLimitExceededError) and exc.retry_after is not None:
            content["retry_after"] = exc.retry_after
            headers["Retry-After"] = str(exc.retry_after)

        return JSONResponse(status_code=exc.status_code, content=content, headers=headers)

    @app.exception_handler(Exception)
    async def handle_generic_error(request: Request, exc: Exception) -> JSONResponse:
        """Handle any unhandled exceptions."""
        logger.exception(f"An unhandled exception occurred; error: {exc}")

        return JSONResponse(status_code=500, content={"error": ErrorType.UNHANDLED_EXCEPTION.value})


def create_app(with_database: bool = True) -> FastAPI:
    """Create and configure FastAPI application."""
    app = FastAPI(
        title="Cloudsync Health API",
        description="Storage connection health, token refresh and upload recovery",
        version="1.0.0",
        debug=settings.environment == EnvironmentName.DEVELOPMENT,
    )

    # Every /v1 endpoint takes a bearer token
    def custom_openapi() -> dict[str, Any]:
        if app.openapi_schema:
            return app.openapi_schema

        openapi_schema = get_openapi(
            title=app.title,
            version=app.version,
            description=app.description,
            routes=app.routes,
        )
        openapi_schema.setdefault("components", {})["securitySchemes"] = {
            "BearerAuth": {
                "type": "http",
                "scheme": "bearer",
                "description": "The API_TOKEN, or the ADMIN_API_TOKEN for /v1/admin (without 'Bearer ' prefix)",
            }
        }
        for path, methods in openapi_schema["paths"].items():
            if not path.startswith("/v1/"):
                continue
            for method in methods:
                methods[method]["security"] = [{"BearerAuth": []}]

        app.openapi_schema = openapi_schema
        return app.openapi_schema

    setattr(app, "openapi", custom_openapi)

    _setup_error_handlers(app)

    if with_database:
        # Added first so it runs after SQLAlchemyMiddleware has opened the session
        app.add_middleware(AutoCommitMiddleware)
        app.add_middleware(
            SQLAlchemyMiddleware,
            db_url=settings.database.url,
            engine_args={
                "pool_size": settings.database.min_pool_size,
                "max_overflow": settings.database.max_pool_size - settings.database.min_pool_size,
                "pool_pre_ping": True,
                "pool_recycle": 300,
            },
        )

    app.include_router(api_router, prefix="/v1")

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "ok"}

    return app
