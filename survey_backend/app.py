"""
FastAPI application entry point for the survey intake service.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from survey_backend.config import Settings, get_settings
from survey_backend.db import DbClient
from survey_backend.dependencies import build_db_client
from survey_backend.errors import (
    DuplicateIdentifier,
    LimitReached,
    NotFound,
    StorageUnavailable,
    SurveyError,
    ValidationError,
)
from survey_backend.middleware import BodySizeLimitMiddleware, RateLimitMiddleware, apply_cors
from survey_backend.routes import router

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    ValidationError: 400,
    LimitReached: 403,
    NotFound: 404,
    DuplicateIdentifier: 409,
    StorageUnavailable: 503,
}


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s:%(name)s:%(message)s",
    )


async def handle_survey_error(request: Request, exc: SurveyError) -> JSONResponse:
    status_code = next(
        (code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)), 500
    )
    if isinstance(exc, StorageUnavailable):
        logger.error(
            "Storage failure on %s %s",
            request.method,
            request.url.path,
            exc_info=exc.__cause__ or exc,
        )
        return JSONResponse(
            {"error": StorageUnavailable.message, "code": exc.code},
            status_code=status_code,
        )
    return JSONResponse({"error": exc.detail, "code": exc.code}, status_code=status_code)


async def handle_http_exception(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    message = "Not found" if exc.status_code == 404 else str(exc.detail)
    return JSONResponse(
        {"error": message},
        status_code=exc.status_code,
        headers=getattr(exc, "headers", None),
    )


async def handle_request_validation_error(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return JSONResponse(
        {
            "error": "Invalid request",
            "code": ValidationError.code,
            "details": jsonable_errors(exc),
        },
        status_code=400,
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")}
        for err in exc.errors()
    ]


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse({"error": "Internal server error"}, status_code=500)


def create_app(
    settings: Settings | None = None, db: DbClient | None = None
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        client = db if db is not None else build_db_client(settings)
        app.state.db = client
        logger.info("Storage backend ready: %s", type(client).__name__)
        try:
            yield
        finally:
            logger.info("Shutting down, closing database pool...")
            client.close()

    app = FastAPI(
        title="Survey Intake API", version="0.1.0", lifespan=lifespan
    )
    app.state.settings = settings

    app.add_middleware(BodySizeLimitMiddleware, max_bytes=settings.max_body_bytes)
    app.add_middleware(
        RateLimitMiddleware,
        max_requests=settings.rate_limit_per_minute,
        trust_proxy=settings.trust_proxy,
    )
    apply_cors(app, origins=settings.cors_origins)

    app.add_exception_handler(SurveyError, handle_survey_error)
    app.add_exception_handler(StarletteHTTPException, handle_http_exception)
    app.add_exception_handler(RequestValidationError, handle_request_validation_error)
    app.add_exception_handler(Exception, handle_unexpected_error)

    app.include_router(router, prefix=settings.api_prefix)
    return app


app = create_app()
