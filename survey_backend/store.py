"""
Survey record store: create, bounded update, status, lookup and listing.

A store may revise its survey at most ``MAX_UPDATES`` times. Submission is a
two-step check-then-write: read the current record, then insert or update.
The unique index on ``store_identifier`` is what actually prevents two rows
for one store; when a concurrent first submission wins the race the storage
client raises ``DuplicateIdentifier`` and it is passed on to the caller.

Known gap: two concurrent *updates* to the same existing store can both read
``update_count == MAX_UPDATES - 1`` and both write ``MAX_UPDATES``. The cap is
exact for sequential submissions only.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from survey_backend.db import DbClient, RequestMeta, SurveyFields, SurveyRecord, utcnow
from survey_backend.errors import LimitReached, NotFound, ValidationError

logger = logging.getLogger(__name__)

MAX_UPDATES = 3
MAX_LIST_LIMIT = 1000
DEFAULT_LIST_LIMIT = 100


@dataclass(frozen=True)
class SubmitResult:
    id: int
    timestamp: datetime
    update_count: int
    created: bool


@dataclass(frozen=True)
class SurveyStatus:
    exists: bool
    update_count: int

    @property
    def remaining_updates(self) -> int:
        return max(0, MAX_UPDATES - self.update_count)


@dataclass
class SurveyPage:
    rows: list[SurveyRecord]
    limit: int
    offset: int
    total: int

    @property
    def count(self) -> int:
        return len(self.rows)


def normalize_identifier(identifier: Optional[str]) -> str:
    value = identifier.strip() if isinstance(identifier, str) else ""
    if not value:
        raise ValidationError("storeIdentifier is required")
    return value


def clamp_page(limit: Optional[int], offset: Optional[int]) -> tuple[int, int]:
    limit = DEFAULT_LIST_LIMIT if limit is None else limit
    offset = 0 if offset is None else offset
    return max(1, min(limit, MAX_LIST_LIMIT)), max(offset, 0)


class SurveyRecordStore:
    """Business rules over a ``DbClient``. Holds no state between calls."""

    def __init__(self, db: DbClient, max_updates: int = MAX_UPDATES):
        self.db = db
        self.max_updates = max_updates

    def submit(
        self,
        identifier: Optional[str],
        fields: SurveyFields,
        meta: RequestMeta | None = None,
    ) -> SubmitResult:
        identifier = normalize_identifier(identifier)
        meta = meta or RequestMeta()

        existing = self.db.get_record(identifier)
        if existing is None:
            # Raises DuplicateIdentifier if another submission got there first.
            record = self.db.insert_record(identifier, fields, meta, timestamp=utcnow())
            logger.info("Created survey id=%s store=%s", record.id, identifier)
            return SubmitResult(
                id=record.id,
                timestamp=record.timestamp,
                update_count=record.update_count,
                created=True,
            )

        if existing.update_count >= self.max_updates:
            logger.warning(
                "Rejected update for store=%s: limit of %s reached",
                identifier,
                self.max_updates,
            )
            raise LimitReached(identifier, existing.update_count, self.max_updates)

        record = self.db.update_record(
            identifier,
            fields,
            meta,
            update_count=existing.update_count + 1,
            timestamp=max(utcnow(), existing.timestamp),
        )
        if record is None:
            raise NotFound(f"Survey for store {identifier!r} disappeared during update")
        logger.info(
            "Updated survey id=%s store=%s update_count=%s",
            record.id,
            identifier,
            record.update_count,
        )
        return SubmitResult(
            id=record.id,
            timestamp=record.timestamp,
            update_count=record.update_count,
            created=False,
        )

    def status(self, identifier: Optional[str]) -> SurveyStatus:
        record = self.db.get_record(normalize_identifier(identifier))
        if record is None:
            return SurveyStatus(exists=False, update_count=0)
        return SurveyStatus(exists=True, update_count=record.update_count)

    def fetch(self, identifier: Optional[str]) -> SurveyRecord:
        identifier = normalize_identifier(identifier)
        record = self.db.get_record(identifier)
        if record is None:
            raise NotFound(f"No survey for store {identifier!r}")
        return record

    def list(self, limit: Optional[int] = None, offset: Optional[int] = None) -> SurveyPage:
        limit, offset = clamp_page(limit, offset)
        rows = self.db.list_records(limit=limit, offset=offset)
        return SurveyPage(
            rows=rows, limit=limit, offset=offset, total=self.db.count_records()
        )

    def list_all(self) -> list[SurveyRecord]:
        return self.db.list_all_records()
