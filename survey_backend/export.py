"""
CSV rendering for the admin export.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Iterable

from survey_backend.db import METRIC_FIELDS, SurveyRecord

EXPORT_COLUMNS: tuple[str, ...] = (
    "id",
    "timestamp",
    "store_identifier",
    "update_count",
    *METRIC_FIELDS,
    "user_agent",
    "ip",
)

CSV_MEDIA_TYPE = "text/csv; charset=utf-8"


def _escape(value: Any) -> str:
    # Nulls stay empty and unquoted so "not reported" differs from "".
    if value is None:
        return ""
    return '"' + str(value).replace('"', '""') + '"'


def render_csv(records: Iterable[SurveyRecord]) -> str:
    lines = [",".join(EXPORT_COLUMNS)]
    for record in records:
        row = record.as_dict()
        lines.append(",".join(_escape(row[column]) for column in EXPORT_COLUMNS))
    return "\n".join(lines)


def export_filename(today: date | None = None) -> str:
    today = today or datetime.now(timezone.utc).date()
    return f"surveys_{today.isoformat()}.csv"
