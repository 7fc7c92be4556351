import unittest
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import patch

from sqlalchemy.exc import IntegrityError, OperationalError

from survey_backend.db import (
    Base,
    PostgresDbClient,
    RequestMeta,
    SurveyFields,
    is_identifier_conflict,
    normalize_database_url,
)
from survey_backend.errors import DuplicateIdentifier, StorageUnavailable


class PostgresDbClientTests(unittest.TestCase):
    """
    Uses SQLite via SQLAlchemy URL for fast/local testing of the Postgres client logic.
    """

    def setUp(self):
        self.db = PostgresDbClient("sqlite+pysqlite:///:memory:")
        self.addCleanup(self.db.close)
        self.now = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
        self.meta = RequestMeta(user_agent="pytest", ip="10.0.0.1")

    def test_insert_and_get_record(self):
        fields = SurveyFields(store_name="Noodle Bar", monthly_revenue=50000, seats=24)
        record = self.db.insert_record("S1", fields, self.meta, timestamp=self.now)
        self.assertEqual(record.update_count, 0)
        self.assertEqual(record.store_identifier, "S1")
        self.assertEqual(record.timestamp, self.now)

        fetched = self.db.get_record("S1")
        self.assertIsNotNone(fetched)
        self.assertEqual(fetched.id, record.id)
        self.assertEqual(fetched.fields, fields)
        self.assertEqual(fetched.user_agent, "pytest")
        self.assertEqual(fetched.ip, "10.0.0.1")

    def test_get_missing_record_returns_none(self):
        self.assertIsNone(self.db.get_record("nope"))

    def test_duplicate_insert_raises_duplicate_identifier(self):
        self.db.insert_record("S2", SurveyFields(), self.meta, timestamp=self.now)
        with self.assertRaises(DuplicateIdentifier) as ctx:
            self.db.insert_record(
                "S2", SurveyFields(seats=1), self.meta, timestamp=self.now
            )
        self.assertEqual(ctx.exception.identifier, "S2")
        self.assertEqual(self.db.count_records(), 1)
        self.assertIsNone(self.db.get_record("S2").fields.seats)

    def test_update_replaces_every_field(self):
        self.db.insert_record(
            "S1",
            SurveyFields(store_name="Old", monthly_revenue=50000, average_rating=4.5),
            self.meta,
            timestamp=self.now,
        )
        later = self.now + timedelta(minutes=5)
        updated = self.db.update_record(
            "S1",
            SurveyFields(monthly_revenue=52000),
            RequestMeta(user_agent=None, ip="10.0.0.2"),
            update_count=1,
            timestamp=later,
        )
        self.assertEqual(updated.update_count, 1)
        self.assertEqual(updated.timestamp, later)
        self.assertEqual(updated.fields, SurveyFields(monthly_revenue=52000))
        self.assertIsNone(updated.user_agent)
        self.assertEqual(updated.ip, "10.0.0.2")

    def test_update_missing_record_returns_none(self):
        result = self.db.update_record(
            "ghost", SurveyFields(), self.meta, update_count=1, timestamp=self.now
        )
        self.assertIsNone(result)

    def test_zero_and_null_survive_roundtrip(self):
        fields = SurveyFields(
            monthly_revenue=0,
            average_rating=0.0,
            bad_reviews=None,
            service_bad_review_rate=0.125,
            business_type="cafe",
        )
        self.db.insert_record("S3", fields, self.meta, timestamp=self.now)
        stored = self.db.get_record("S3").fields
        self.assertEqual(stored.monthly_revenue, 0)
        self.assertIsInstance(stored.monthly_revenue, int)
        self.assertEqual(stored.average_rating, 0.0)
        self.assertIsInstance(stored.average_rating, float)
        self.assertIsNone(stored.bad_reviews)
        self.assertEqual(stored.service_bad_review_rate, 0.125)
        self.assertEqual(stored.business_type, "cafe")

    def test_list_orders_and_counts(self):
        for name in ("a", "b", "c"):
            self.db.insert_record(name, SurveyFields(), self.meta, timestamp=self.now)

        page = self.db.list_records(limit=2, offset=0)
        self.assertEqual([r.store_identifier for r in page], ["c", "b"])
        page = self.db.list_records(limit=2, offset=2)
        self.assertEqual([r.store_identifier for r in page], ["a"])

        everything = self.db.list_all_records()
        self.assertEqual([r.store_identifier for r in everything], ["a", "b", "c"])
        self.assertEqual(self.db.count_records(), 3)

    def test_ping_returns_aware_datetime(self):
        value = self.db.ping()
        self.assertIsInstance(value, datetime)
        self.assertIsNotNone(value.tzinfo)

    def test_storage_errors_become_storage_unavailable(self):
        error = OperationalError("SELECT 1", {}, Exception("connection refused"))
        with patch.object(self.db, "Session", side_effect=error):
            with self.assertRaises(StorageUnavailable) as ctx:
                self.db.get_record("S1")
        self.assertIs(ctx.exception.__cause__, error)

    def test_other_integrity_errors_are_not_duplicates(self):
        error = IntegrityError(
            "INSERT INTO surveys", {}, Exception("NOT NULL constraint failed: surveys.timestamp")
        )
        with patch.object(self.db, "Session", side_effect=error):
            with self.assertRaises(StorageUnavailable) as ctx:
                self.db.insert_record("S1", SurveyFields(), self.meta, timestamp=self.now)
        self.assertIs(ctx.exception.__cause__, error)
        self.assertNotIsInstance(ctx.exception, DuplicateIdentifier)

    def test_identifier_conflict_detection(self):
        class PgError(Exception):
            def __init__(self, pgcode, constraint_name=None):
                super().__init__("duplicate key value violates unique constraint")
                self.pgcode = pgcode
                self.diag = SimpleNamespace(constraint_name=constraint_name)

        def wrap(orig):
            return IntegrityError("INSERT INTO surveys", {}, orig)

        self.assertTrue(is_identifier_conflict(wrap(PgError("23505", "surveys_store_identifier_key"))))
        self.assertTrue(is_identifier_conflict(wrap(PgError("23505"))))
        self.assertFalse(is_identifier_conflict(wrap(PgError("23505", "surveys_pkey"))))
        self.assertFalse(is_identifier_conflict(wrap(PgError("23502"))))
        self.assertTrue(
            is_identifier_conflict(
                wrap(Exception("UNIQUE constraint failed: surveys.store_identifier"))
            )
        )
        self.assertFalse(
            is_identifier_conflict(wrap(Exception("CHECK constraint failed: surveys")))
        )

    def test_schema_creation_is_idempotent(self):
        # Startup runs create_all every time; existing tables and rows must survive.
        self.db.insert_record("S1", SurveyFields(), self.meta, timestamp=self.now)

        Base.metadata.create_all(self.db.engine)
        self.assertEqual(self.db.count_records(), 1)


class DatabaseUrlTests(unittest.TestCase):
    def test_postgres_scheme_is_rewritten(self):
        self.assertEqual(
            normalize_database_url("postgres://u:p@db.example.com/app"),
            "postgresql://u:p@db.example.com/app",
        )

    def test_other_urls_untouched(self):
        url = "postgresql+psycopg2://u:p@localhost/app"
        self.assertEqual(normalize_database_url(url), url)

    def test_empty_url_rejected(self):
        with self.assertRaises(ValueError):
            PostgresDbClient("")


if __name__ == "__main__":
    unittest.main()
