"""
Database abstraction for Postgres and an in-memory test implementation.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional, Protocol

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    Float,
    Integer,
    Text,
    create_engine,
    func,
    insert,
    select,
    update,
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from survey_backend.errors import DuplicateIdentifier, StorageUnavailable

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SurveyFields:
    """Business metrics reported by a store. Every field is nullable."""

    store_name: Optional[str] = None
    business_type: Optional[str] = None
    monthly_revenue: Optional[int] = None
    food_cost: Optional[int] = None
    labor_cost: Optional[int] = None
    rent_cost: Optional[int] = None
    daily_customers: Optional[int] = None
    seats: Optional[int] = None
    online_revenue: Optional[int] = None
    marketing_cost: Optional[int] = None
    repeat_purchases: Optional[int] = None
    total_customers: Optional[int] = None
    utility_cost: Optional[int] = None
    average_rating: Optional[float] = None
    bad_reviews: Optional[int] = None
    total_reviews: Optional[int] = None
    social_media_mentions: Optional[int] = None
    service_bad_review_rate: Optional[float] = None
    taste_bad_review_rate: Optional[float] = None

    def as_dict(self) -> dict:
        return dataclasses.asdict(self)


METRIC_FIELDS: tuple[str, ...] = tuple(f.name for f in dataclasses.fields(SurveyFields))


@dataclass(frozen=True)
class RequestMeta:
    """Audit data captured from the request that carried a submission."""

    user_agent: Optional[str] = None
    ip: Optional[str] = None


@dataclass
class SurveyRecord:
    id: int
    store_identifier: str
    update_count: int
    timestamp: datetime
    fields: SurveyFields = field(default_factory=SurveyFields)
    user_agent: Optional[str] = None
    ip: Optional[str] = None

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "store_identifier": self.store_identifier,
            "update_count": self.update_count,
            **self.fields.as_dict(),
            "user_agent": self.user_agent,
            "ip": self.ip,
        }


class DbClient(Protocol):
    """Interface for survey storage."""

    def get_record(self, identifier: str) -> Optional[SurveyRecord]:
        ...

    def insert_record(
        self,
        identifier: str,
        fields: SurveyFields,
        meta: RequestMeta,
        *,
        timestamp: datetime,
    ) -> SurveyRecord:
        ...

    def update_record(
        self,
        identifier: str,
        fields: SurveyFields,
        meta: RequestMeta,
        *,
        update_count: int,
        timestamp: datetime,
    ) -> Optional[SurveyRecord]:
        ...

    def list_records(self, limit: int = 100, offset: int = 0) -> list[SurveyRecord]:
        ...

    def list_all_records(self) -> list[SurveyRecord]:
        ...

    def count_records(self) -> int:
        ...

    def ping(self) -> datetime:
        ...

    def close(self) -> None:
        ...


class InMemoryDbClient:
    """Simple in-memory database for development and tests."""

    def __init__(self):
        self.records: Dict[str, SurveyRecord] = {}
        self._next_id = 1
        self._lock = threading.Lock()

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        with self._lock:
            self.records.clear()
            self._next_id = 1

    def get_record(self, identifier: str) -> Optional[SurveyRecord]:
        record = self.records.get(identifier)
        return _copy(record) if record else None

    def insert_record(
        self,
        identifier: str,
        fields: SurveyFields,
        meta: RequestMeta,
        *,
        timestamp: datetime,
    ) -> SurveyRecord:
        # The lock plays the part of the unique index on store_identifier.
        with self._lock:
            if identifier in self.records:
                raise DuplicateIdentifier(identifier)
            record = SurveyRecord(
                id=self._next_id,
                store_identifier=identifier,
                update_count=0,
                timestamp=timestamp,
                fields=dataclasses.replace(fields),
                user_agent=meta.user_agent,
                ip=meta.ip,
            )
            self.records[identifier] = record
            self._next_id += 1
            return _copy(record)

    def update_record(
        self,
        identifier: str,
        fields: SurveyFields,
        meta: RequestMeta,
        *,
        update_count: int,
        timestamp: datetime,
    ) -> Optional[SurveyRecord]:
        with self._lock:
            record = self.records.get(identifier)
            if not record:
                return None
            record.fields = dataclasses.replace(fields)
            record.update_count = update_count
            record.timestamp = timestamp
            record.user_agent = meta.user_agent
            record.ip = meta.ip
            return _copy(record)

    def list_records(self, limit: int = 100, offset: int = 0) -> list[SurveyRecord]:
        ordered = sorted(self.records.values(), key=lambda r: r.id, reverse=True)
        return [_copy(r) for r in ordered[offset : offset + limit]]

    def list_all_records(self) -> list[SurveyRecord]:
        return [_copy(r) for r in sorted(self.records.values(), key=lambda r: r.id)]

    def count_records(self) -> int:
        return len(self.records)

    def ping(self) -> datetime:
        return utcnow()

    def close(self) -> None:
        pass


def _copy(record: SurveyRecord) -> SurveyRecord:
    return dataclasses.replace(record, fields=dataclasses.replace(record.fields))


def normalize_database_url(database_url: str) -> str:
    """Rewrite Heroku-style ``postgres://`` URLs for SQLAlchemy."""
    if database_url.startswith("postgres://"):
        return "postgresql://" + database_url[len("postgres://") :]
    return database_url


def _engine_kwargs(database_url: str) -> dict:
    kwargs: dict = {"future": True, "pool_pre_ping": True}
    if database_url.startswith("sqlite"):
        if ":memory:" in database_url:
            # Keep a single in-memory DB connection shared across threads.
            kwargs.update(
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        return kwargs
    kwargs["pool_recycle"] = 1800
    if (
        database_url.startswith("postgresql")
        and "localhost" not in database_url
        and "127.0.0.1" not in database_url
        and "sslmode=" not in database_url
    ):
        kwargs["connect_args"] = {"sslmode": "require"}
    return kwargs


UNIQUE_VIOLATION = "23505"


def is_identifier_conflict(exc: IntegrityError) -> bool:
    """True when ``exc`` comes from the unique index on ``store_identifier``."""
    orig = exc.orig
    pgcode = getattr(orig, "pgcode", None)
    if pgcode is not None:
        if pgcode != UNIQUE_VIOLATION:
            return False
        constraint = getattr(getattr(orig, "diag", None), "constraint_name", None)
        return constraint is None or "store_identifier" in constraint
    # SQLite: "UNIQUE constraint failed: surveys.store_identifier"
    message = str(orig)
    return "UNIQUE constraint failed" in message and "store_identifier" in message


class PostgresDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for PostgresDbClient")
        database_url = normalize_database_url(database_url)
        self.engine = create_engine(database_url, **_engine_kwargs(database_url))
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        try:
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as exc:
            self.engine.dispose()
            raise StorageUnavailable("Failed to initialize database table") from exc
        logger.info("Database table initialized successfully")

    def _to_record(self, row: "SurveyRow") -> SurveyRecord:
        timestamp = row.timestamp
        # SQLite drops tzinfo on the way back out.
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        return SurveyRecord(
            id=row.id,
            store_identifier=row.store_identifier,
            update_count=row.update_count,
            timestamp=timestamp,
            fields=SurveyFields(**{name: getattr(row, name) for name in METRIC_FIELDS}),
            user_agent=row.user_agent,
            ip=row.ip,
        )

    def get_record(self, identifier: str) -> Optional[SurveyRecord]:
        stmt = select(SurveyRow).where(SurveyRow.store_identifier == identifier)
        try:
            with self.Session() as session:
                row = session.execute(stmt).scalar_one_or_none()
                return self._to_record(row) if row else None
        except SQLAlchemyError as exc:
            raise StorageUnavailable() from exc

    def insert_record(
        self,
        identifier: str,
        fields: SurveyFields,
        meta: RequestMeta,
        *,
        timestamp: datetime,
    ) -> SurveyRecord:
        stmt = (
            insert(SurveyRow)
            .values(
                store_identifier=identifier,
                update_count=0,
                timestamp=timestamp,
                user_agent=meta.user_agent,
                ip=meta.ip,
                **fields.as_dict(),
            )
            .returning(SurveyRow)
        )
        try:
            with self.Session() as session:
                row = session.execute(stmt).scalar_one()
                record = self._to_record(row)
                session.commit()
                return record
        except IntegrityError as exc:
            if is_identifier_conflict(exc):
                raise DuplicateIdentifier(identifier) from exc
            logger.error("Insert for %s violated a constraint: %s", identifier, exc.orig)
            raise StorageUnavailable() from exc
        except SQLAlchemyError as exc:
            raise StorageUnavailable() from exc

    def update_record(
        self,
        identifier: str,
        fields: SurveyFields,
        meta: RequestMeta,
        *,
        update_count: int,
        timestamp: datetime,
    ) -> Optional[SurveyRecord]:
        stmt = (
            update(SurveyRow)
            .where(SurveyRow.store_identifier == identifier)
            .values(
                update_count=update_count,
                timestamp=timestamp,
                user_agent=meta.user_agent,
                ip=meta.ip,
                **fields.as_dict(),
            )
            .returning(SurveyRow)
            .execution_options(synchronize_session=False)
        )
        try:
            with self.Session() as session:
                row = session.execute(stmt).scalar_one_or_none()
                record = self._to_record(row) if row else None
                session.commit()
                return record
        except SQLAlchemyError as exc:
            raise StorageUnavailable() from exc

    def list_records(self, limit: int = 100, offset: int = 0) -> list[SurveyRecord]:
        stmt = select(SurveyRow).order_by(SurveyRow.id.desc()).limit(limit).offset(offset)
        try:
            with self.Session() as session:
                return [self._to_record(row) for row in session.execute(stmt).scalars()]
        except SQLAlchemyError as exc:
            raise StorageUnavailable() from exc

    def list_all_records(self) -> list[SurveyRecord]:
        stmt = select(SurveyRow).order_by(SurveyRow.id.asc())
        try:
            with self.Session() as session:
                return [self._to_record(row) for row in session.execute(stmt).scalars()]
        except SQLAlchemyError as exc:
            raise StorageUnavailable() from exc

    def count_records(self) -> int:
        try:
            with self.Session() as session:
                return session.execute(select(func.count(SurveyRow.id))).scalar_one()
        except SQLAlchemyError as exc:
            raise StorageUnavailable() from exc

    def ping(self) -> datetime:
        try:
            with self.engine.connect() as conn:
                value = conn.execute(select(func.current_timestamp())).scalar_one()
        except SQLAlchemyError as exc:
            raise StorageUnavailable() from exc
        # SQLite hands back a naive datetime or a string, depending on the driver.
        if isinstance(value, str):
            value = datetime.fromisoformat(value)
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value

    def close(self) -> None:
        self.engine.dispose()


Base = declarative_base()


class SurveyRow(Base):
    __tablename__ = "surveys"

    id = Column(Integer, primary_key=True, autoincrement=True)
    store_identifier = Column(Text, nullable=False, unique=True)
    update_count = Column(Integer, nullable=False, default=0)
    timestamp = Column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    store_name = Column(Text, nullable=True)
    business_type = Column(Text, nullable=True)
    monthly_revenue = Column(BigInteger, nullable=True)
    food_cost = Column(BigInteger, nullable=True)
    labor_cost = Column(BigInteger, nullable=True)
    rent_cost = Column(BigInteger, nullable=True)
    daily_customers = Column(Integer, nullable=True)
    seats = Column(Integer, nullable=True)
    online_revenue = Column(BigInteger, nullable=True)
    marketing_cost = Column(BigInteger, nullable=True)
    repeat_purchases = Column(Integer, nullable=True)
    total_customers = Column(Integer, nullable=True)
    utility_cost = Column(BigInteger, nullable=True)
    average_rating = Column(Float, nullable=True)
    bad_reviews = Column(Integer, nullable=True)
    total_reviews = Column(Integer, nullable=True)
    social_media_mentions = Column(Integer, nullable=True)
    service_bad_review_rate = Column(Float, nullable=True)
    taste_bad_review_rate = Column(Float, nullable=True)
    user_agent = Column(Text, nullable=True)
    ip = Column(Text, nullable=True)
