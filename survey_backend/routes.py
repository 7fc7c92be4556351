"""
HTTP routes for the survey intake API.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Body, Depends, Query
from fastapi.responses import JSONResponse, Response

from survey_backend.db import DbClient, RequestMeta
from survey_backend.dependencies import (
    get_db_client,
    get_request_meta,
    get_survey_store,
    require_admin,
)
from survey_backend.errors import StorageUnavailable
from survey_backend.export import CSV_MEDIA_TYPE, export_filename, render_csv
from survey_backend.schemas import (
    HealthResponse,
    ListSurveysResponse,
    SubmitResponse,
    SurveyRecordResponse,
    SurveyStatusResponse,
    SurveySubmission,
)
from survey_backend.store import DEFAULT_LIST_LIMIT, SurveyRecordStore

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health", response_model=HealthResponse, response_model_exclude_none=True)
def health(db: DbClient = Depends(get_db_client)):
    now = datetime.now(timezone.utc).isoformat()
    try:
        db_time = db.ping()
    except StorageUnavailable as exc:
        logger.error("Health check database error: %r", exc.__cause__ or exc)
        payload = HealthResponse(
            ok=False, time=now, database="disconnected", error=str(exc)
        )
        return JSONResponse(payload.model_dump(exclude_none=True), status_code=500)
    return HealthResponse(
        ok=True, time=now, database="connected", db_time=db_time.isoformat()
    )


@router.post("/saveSurvey", response_model=SubmitResponse)
def save_survey(
    payload: Optional[SurveySubmission] = Body(default=None),
    meta: RequestMeta = Depends(get_request_meta),
    store: SurveyRecordStore = Depends(get_survey_store),
):
    """
    Create the store's survey, or revise it while revisions remain.
    """
    payload = payload or SurveySubmission()
    result = store.submit(payload.store_identifier, payload.to_fields(), meta)
    return SubmitResponse(
        id=result.id,
        timestamp=result.timestamp,
        update_count=result.update_count,
        created=result.created,
    )


@router.get("/survey/{store_identifier}/status", response_model=SurveyStatusResponse)
def survey_status(
    store_identifier: str, store: SurveyRecordStore = Depends(get_survey_store)
):
    status = store.status(store_identifier)
    return SurveyStatusResponse(
        store_identifier=store_identifier.strip(),
        exists=status.exists,
        update_count=status.update_count,
        remaining_updates=status.remaining_updates,
    )


@router.get("/survey/{store_identifier}", response_model=SurveyRecordResponse)
def get_survey(
    store_identifier: str, store: SurveyRecordStore = Depends(get_survey_store)
):
    return SurveyRecordResponse.from_record(store.fetch(store_identifier))


@router.get(
    "/surveys",
    response_model=ListSurveysResponse,
    dependencies=[Depends(require_admin)],
)
def list_surveys(
    limit: int = Query(DEFAULT_LIST_LIMIT),
    offset: int = Query(0),
    store: SurveyRecordStore = Depends(get_survey_store),
):
    page = store.list(limit=limit, offset=offset)
    return ListSurveysResponse(
        rows=[record.as_dict() for record in page.rows],
        limit=page.limit,
        offset=page.offset,
        total=page.total,
        count=page.count,
    )


@router.get("/export", dependencies=[Depends(require_admin)])
def export_surveys(store: SurveyRecordStore = Depends(get_survey_store)):
    csv_text = render_csv(store.list_all())
    return Response(
        content=csv_text,
        media_type=CSV_MEDIA_TYPE,
        headers={
            "Content-Disposition": f'attachment; filename="{export_filename()}"'
        },
    )
