"""
Command line entry point: run the API, create the schema, or dump a CSV export.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from survey_backend.config import get_settings
from survey_backend.db import PostgresDbClient
from survey_backend.dependencies import build_db_client
from survey_backend.errors import StorageUnavailable
from survey_backend.export import render_csv
from survey_backend.store import SurveyRecordStore

logger = logging.getLogger(__name__)


def _serve(args: argparse.Namespace) -> int:
    import uvicorn

    settings = get_settings()
    host = args.host or settings.host
    port = args.port or settings.port
    logger.info("Server listening on port %s.", port)
    logger.info("Health check: http://localhost:%s%s/health", port, settings.api_prefix)
    uvicorn.run(
        "survey_backend.app:app",
        host=host,
        port=port,
        reload=args.reload,
        log_level=settings.log_level.lower(),
    )
    return 0


def _init_db(args: argparse.Namespace) -> int:
    settings = get_settings()
    if not settings.database_url:
        logger.error("DATABASE_URL is not set; nothing to initialize")
        return 1
    PostgresDbClient(settings.database_url).close()
    return 0


def _export(args: argparse.Namespace) -> int:
    db = build_db_client(get_settings())
    try:
        csv_text = render_csv(SurveyRecordStore(db).list_all())
    finally:
        db.close()
    if args.output:
        Path(args.output).write_text(csv_text, encoding="utf-8")
        logger.info("Wrote export to %s", args.output)
    else:
        sys.stdout.write(csv_text + "\n")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Survey intake service")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", type=str, default=None, help="Bind address")
    serve.add_argument("--port", type=int, default=None, help="Bind port")
    serve.add_argument(
        "--reload", action="store_true", help="Reload on code changes (development)"
    )
    serve.set_defaults(func=_serve)

    init_db = subparsers.add_parser("init-db", help="Create the surveys table")
    init_db.set_defaults(func=_init_db)

    export = subparsers.add_parser("export", help="Write all surveys as CSV")
    export.add_argument(
        "-o", "--output", type=str, default=None, help="File path (default: stdout)"
    )
    export.set_defaults(func=_export)
    return parser


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(level=get_settings().log_level.upper())
    args = build_parser().parse_args(argv)
    try:
        return args.func(args)
    except StorageUnavailable as exc:
        logger.error("%s: %r", exc, exc.__cause__)
        return 1


if __name__ == "__main__":
    sys.exit(main())
