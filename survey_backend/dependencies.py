"""
Dependency wiring for the FastAPI app.

The storage client is built once by the app lifespan and kept on
``app.state``; request handlers receive it (and the store wrapping it) via
``Depends`` instead of reaching for module globals.
"""

from __future__ import annotations

import hmac
import logging

from fastapi import Depends, HTTPException, Request

from survey_backend.config import Settings
from survey_backend.db import DbClient, InMemoryDbClient, PostgresDbClient, RequestMeta
from survey_backend.store import SurveyRecordStore

logger = logging.getLogger(__name__)


def build_db_client(settings: Settings) -> DbClient:
    """
    Pick the storage backend for this process.
    """
    if settings.use_in_memory_backends:
        return InMemoryDbClient()
    if not settings.database_url:
        logger.warning(
            "DATABASE_URL not set; surveys are kept in memory and lost on restart"
        )
        return InMemoryDbClient()
    return PostgresDbClient(settings.database_url)


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_db_client(request: Request) -> DbClient:
    return request.app.state.db


def get_survey_store(db: DbClient = Depends(get_db_client)) -> SurveyRecordStore:
    return SurveyRecordStore(db)


def client_ip(request: Request, trust_proxy: bool = True) -> str:
    if trust_proxy:
        forwarded = request.headers.get("x-forwarded-for", "")
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def get_request_meta(
    request: Request, settings: Settings = Depends(get_app_settings)
) -> RequestMeta:
    return RequestMeta(
        user_agent=request.headers.get("user-agent") or None,
        ip=client_ip(request, settings.trust_proxy),
    )


def require_admin(
    request: Request, settings: Settings = Depends(get_app_settings)
) -> None:
    if not settings.admin_key:
        raise HTTPException(status_code=501, detail="ADMIN_KEY not set on server")
    key = request.headers.get("x-admin-key") or request.query_params.get("key") or ""
    if not hmac.compare_digest(key.encode(), settings.admin_key.encode()):
        raise HTTPException(status_code=401, detail="Unauthorized")
