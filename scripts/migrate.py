import argparse
import os
import sys

from memostore.core import config
from memostore.core.logging import setup_logging
from memostore.db.migrations import MigrationRunner, get_schema_version, schema_session
from memostore.db.sqlite import transaction
from memostore.db.text_index import TextIndex
from memostore.errors import FatalMigrationError


def main() -> None:
    parser = argparse.ArgumentParser(description="Apply schema migrations and inspect the text index")
    parser.add_argument("--db", help="database path (defaults to DB_PATH)")
    parser.add_argument("--status", action="store_true", help="print the schema version and exit")
    parser.add_argument("--check-index", action="store_true", help="report text index drift")
    parser.add_argument("--rebuild-index", action="store_true", help="re-project every note into the text index")
    args = parser.parse_args()

    if args.db:
        os.environ["DB_PATH"] = args.db
    config.get_settings.cache_clear()
    settings = config.get_settings()
    setup_logging(settings.log_level)

    if args.status:
        with schema_session(settings.db_path) as conn:
            print(f"schema version {get_schema_version(conn)}")
        return

    try:
        version = MigrationRunner(settings.db_path, settings).run()
    except FatalMigrationError as exc:
        print(f"migration failed: {exc}", file=sys.stderr)
        raise SystemExit(1)
    print(f"schema version {version}")

    index = TextIndex()
    with schema_session(settings.db_path) as conn:
        if args.rebuild_index:
            with transaction(conn):
                count = index.rebuild(conn)
            print(f"text index rebuilt with {count} notes")
        if args.check_index:
            report = index.check(conn)
            print(
                f"missing={len(report.missing)} orphaned={len(report.orphaned)} "
                f"stale={len(report.stale)}"
            )
            if not report.consistent:
                raise SystemExit(2)


if __name__ == "__main__":
    main()
