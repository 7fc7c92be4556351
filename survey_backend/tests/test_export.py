import io
import tempfile
import unittest
from contextlib import redirect_stdout
from datetime import date, datetime, timezone
from pathlib import Path
from unittest.mock import patch

from survey_backend.cli import build_parser, main
from survey_backend.config import Settings
from survey_backend.db import SurveyFields, SurveyRecord
from survey_backend.export import EXPORT_COLUMNS, export_filename, render_csv


def make_record(**fields) -> SurveyRecord:
    return SurveyRecord(
        id=7,
        store_identifier="S7",
        update_count=2,
        timestamp=datetime(2026, 10, 19, 8, 30, tzinfo=timezone.utc),
        fields=SurveyFields(**fields),
        user_agent='Mozilla "quoted"',
        ip=None,
    )


class RenderCsvTests(unittest.TestCase):
    def test_header_only_when_empty(self):
        self.assertEqual(render_csv([]), ",".join(EXPORT_COLUMNS))

    def test_values_quoted_and_nulls_empty(self):
        csv_text = render_csv([make_record(monthly_revenue=0, average_rating=4.5)])
        header, line = csv_text.split("\n")
        values = dict(zip(header.split(","), line.split(",")))
        self.assertEqual(values["id"], '"7"')
        self.assertEqual(values["timestamp"], '"2026-10-19T08:30:00+00:00"')
        self.assertEqual(values["update_count"], '"2"')
        self.assertEqual(values["monthly_revenue"], '"0"')
        self.assertEqual(values["average_rating"], '"4.5"')
        self.assertEqual(values["food_cost"], "")
        self.assertEqual(values["ip"], "")
        self.assertEqual(values["user_agent"], '"Mozilla ""quoted"""')

    def test_filename(self):
        self.assertEqual(export_filename(date(2026, 10, 19)), "surveys_2026-10-19.csv")


class CliTests(unittest.TestCase):
    def setUp(self):
        patcher = patch(
            "survey_backend.cli.get_settings",
            return_value=Settings(use_in_memory_backends=True, database_url=None),
        )
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_command_is_required(self):
        with self.assertRaises(SystemExit):
            build_parser().parse_args([])

    def test_export_to_stdout(self):
        out = io.StringIO()
        with redirect_stdout(out):
            self.assertEqual(main(["export"]), 0)
        self.assertEqual(out.getvalue().strip(), ",".join(EXPORT_COLUMNS))

    def test_export_to_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            target = Path(tmp) / "out.csv"
            self.assertEqual(main(["export", "--output", str(target)]), 0)
            self.assertTrue(target.read_text(encoding="utf-8").startswith("id,timestamp"))

    def test_init_db_without_database_url(self):
        self.assertEqual(main(["init-db"]), 1)


if __name__ == "__main__":
    unittest.main()
