"""
REST API Layer for the Quit-Plan Engine.

Provides:
- FastAPI application with CORS middleware
- Plan lifecycle, phase, progress and history endpoints under /api/v1
- Exception handlers that turn engine errors into the response envelope
  with the matching HTTP status
"""

from __future__ import annotations

import logging
import os

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.api.auth import validate_secrets
from src.api.routes import router
from src.api.schemas import error_response
from src.lib import errors
from src.lib.exceptions import QuitPlanError

logger = logging.getLogger(__name__)

_ALLOWED_HEADERS: list[str] = [
    "Authorization",
    "Content-Type",
    "Accept",
    "X-Request-ID",
]

_HTTP_ERROR_CODES: dict[int, str] = {
    401: errors.AUTH_REQUIRED,
    403: errors.FORBIDDEN,
    404: errors.NOT_FOUND,
    422: errors.VALIDATION_ERROR,
}


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Includes:
    - CORS middleware with configurable origins via QUITPLAN_CORS_ORIGINS
    - Exception handlers for engine errors, request validation and HTTP errors
    - API v1 router
    - Root-level health check for load balancer probes
    - Production: /docs and /redoc disabled

    Returns:
        Configured FastAPI application instance.
    """
    validate_secrets()

    environment = os.getenv("QUITPLAN_ENVIRONMENT", "development")
    is_production = environment == "production"

    app = FastAPI(
        title="Quit-Plan Engine",
        description="Quit-plan lifecycle and progress for smoking-cessation coaching",
        version="0.1.0",
        docs_url=None if is_production else "/docs",
        redoc_url=None if is_production else "/redoc",
    )

    # -------------------------------------------------------------------------
    # Exception handlers
    # -------------------------------------------------------------------------
    @app.exception_handler(QuitPlanError)
    async def quit_plan_error_handler(request: Request, exc: QuitPlanError) -> JSONResponse:
        status_code = errors.http_status_for(exc.code)
        if status_code >= 500:
            logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
        else:
            logger.info("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
        return JSONResponse(
            status_code=status_code,
            content=error_response(exc.code, exc.message, exc.context() or None),
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.warning("Input validation failed on %s: %s", request.url.path, exc.errors())
        return JSONResponse(
            status_code=422,
            content=error_response(errors.VALIDATION_ERROR),
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        code = _HTTP_ERROR_CODES.get(exc.status_code, errors.INTERNAL_ERROR)
        return JSONResponse(
            status_code=exc.status_code,
            content=error_response(code, str(exc.detail)),
            headers=exc.headers,
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content=error_response(errors.INTERNAL_ERROR),
        )

    # -------------------------------------------------------------------------
    # CORS Middleware
    # -------------------------------------------------------------------------
    # Comma-separated list of origins, e.g. "http://localhost:3000,https://app.example.com"
    cors_origins_env = os.getenv("QUITPLAN_CORS_ORIGINS", "")
    cors_origins: list[str] = [
        origin.strip()
        for origin in cors_origins_env.split(",")
        if origin.strip()
    ]

    if is_production and "*" in cors_origins:
        raise ValueError(
            "QUITPLAN_CORS_ORIGINS contains wildcard '*' which is forbidden in production. "
            "Specify explicit origins instead."
        )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "OPTIONS"],
        allow_headers=_ALLOWED_HEADERS,
    )

    if cors_origins:
        logger.info("CORS enabled for origins: %s", cors_origins)
    else:
        logger.info("CORS: no origins configured (restrictive default)")

    app.include_router(router)

    @app.get("/health")
    async def root_health_check() -> dict[str, str]:
        """Root health check for infrastructure probes."""
        return {"status": "ok"}

    return app


__all__ = ["create_app", "router"]
