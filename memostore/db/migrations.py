"""Versioned schema migrations.

The highest fully applied step is recorded in ``PRAGMA user_version``.
Each pending step runs in its own transaction on one dedicated connection,
and the ledger write is the last statement of that transaction, so a step
is either applied and recorded or neither.
"""
import logging
import re
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterator, List, Optional, Sequence

from memostore.core.config import Settings
from memostore.core.logging import log_event
from memostore.db.sqlite import get_connection, transaction
from memostore.db.text_index import TextIndex
from memostore.errors import FatalMigrationError, IdempotencyViolation

LOGGER_NAME = "memostore.migrations"

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


@dataclass(frozen=True)
class MigrationStep:
    version: int
    name: str
    apply: Callable[[sqlite3.Connection, Settings], None]
    foreign_keys_off: bool = False
    verify: Optional[Callable[[sqlite3.Connection], None]] = None


def get_schema_version(conn: sqlite3.Connection) -> int:
    return int(conn.execute("PRAGMA user_version").fetchone()[0])


def set_schema_version(conn: sqlite3.Connection, version: int) -> None:
    # PRAGMA arguments cannot be bound
    conn.execute(f"PRAGMA user_version = {int(version)}")


def _identifier(name: str) -> str:
    if not _IDENTIFIER.match(name or ""):
        raise ValueError(f"invalid identifier: {name!r}")
    return name


def table_exists(conn: sqlite3.Connection, table: str) -> bool:
    row = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type IN ('table', 'view') AND name = ?",
        (table,),
    ).fetchone()
    return row is not None


def column_exists(conn: sqlite3.Connection, table: str, column: str) -> bool:
    rows = conn.execute(f"PRAGMA table_info({_identifier(table)})").fetchall()
    return any(row["name"] == column for row in rows)


def add_column_if_missing(
    conn: sqlite3.Connection, table: str, column: str, definition: str
) -> bool:
    if column_exists(conn, table, column):
        return False
    conn.execute(
        f"ALTER TABLE {_identifier(table)} ADD COLUMN {_identifier(column)} {definition}"
    )
    return True


def index_columns(conn: sqlite3.Connection, table: str) -> List[tuple]:
    """(index name, unique, column tuple) for every index on ``table``."""
    result = []
    for index in conn.execute(f"PRAGMA index_list({_identifier(table)})").fetchall():
        cols = conn.execute(
            f"PRAGMA index_info({_quote(index['name'])})"
        ).fetchall()
        result.append(
            (index["name"], bool(index["unique"]), tuple(col["name"] for col in cols))
        )
    return result


def _quote(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def shadow_and_swap(
    conn: sqlite3.Connection,
    table: str,
    create_sql: str,
    columns: Sequence[str],
    indexes: Sequence[str] = (),
) -> int:
    """Rebuild ``table`` into the shape described by ``create_sql``.

    ``create_sql`` must contain a ``{table}`` placeholder for the table
    name. Rows are copied with their ids, so foreign keys pointing at the
    table stay valid. The caller owns the transaction and must pause
    foreign key enforcement around it. Returns the number of rows copied.
    """
    table = _identifier(table)
    shadow = f"{table}__shadow"
    cols = ", ".join(_identifier(col) for col in columns)
    conn.execute(f"DROP TABLE IF EXISTS {shadow}")
    conn.execute(create_sql.format(table=shadow))
    cursor = conn.execute(f"INSERT INTO {shadow} ({cols}) SELECT {cols} FROM {table}")
    copied = max(cursor.rowcount, 0)
    conn.execute(f"DROP TABLE {table}")
    conn.execute(f"ALTER TABLE {shadow} RENAME TO {table}")
    for ddl in indexes:
        conn.execute(ddl)
    return copied


def expect_columns(table: str, *columns: str) -> Callable[[sqlite3.Connection], None]:
    def verify(conn: sqlite3.Connection) -> None:
        missing = [col for col in columns if not column_exists(conn, table, col)]
        if missing:
            raise IdempotencyViolation(f"{table} is missing columns {missing}")

    return verify


def expect_tables(*tables: str) -> Callable[[sqlite3.Connection], None]:
    def verify(conn: sqlite3.Connection) -> None:
        missing = [table for table in tables if not table_exists(conn, table)]
        if missing:
            raise IdempotencyViolation(f"tables not created: {missing}")

    return verify


@contextmanager
def schema_session(db_path: str) -> Iterator[sqlite3.Connection]:
    """The one connection every schema change goes through."""
    conn = get_connection(db_path)
    try:
        yield conn
    finally:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        conn.close()


def validate_steps(steps: Sequence[MigrationStep]) -> None:
    for expected, step in enumerate(steps, start=1):
        if step.version != expected:
            raise FatalMigrationError(
                f"migration steps must be numbered contiguously from 1; "
                f"expected v{expected}, found v{step.version} ({step.name})"
            )


class MigrationRunner:
    def __init__(
        self,
        db_path: str,
        settings: Settings,
        steps: Optional[Sequence[MigrationStep]] = None,
        text_index: Optional[TextIndex] = None,
    ) -> None:
        if steps is None:
            from memostore.db.steps import STEPS

            steps = STEPS
        validate_steps(steps)
        self.db_path = db_path
        self.settings = settings
        self.steps = list(steps)
        self.text_index = text_index or TextIndex()

    @property
    def target_version(self) -> int:
        return self.steps[-1].version if self.steps else 0

    def run(self) -> int:
        with schema_session(self.db_path) as conn:
            current = get_schema_version(conn)
            if current > self.target_version:
                raise FatalMigrationError(
                    f"database schema v{current} is newer than this release "
                    f"(v{self.target_version})"
                )
            log_event(
                LOGGER_NAME,
                "migrations_start",
                current=current,
                target=self.target_version,
            )
            applied = 0
            for step in self.steps:
                if step.version <= current:
                    continue
                self._apply(conn, step)
                current = step.version
                applied += 1
            if table_exists(conn, "notes"):
                self._reconcile_text_index(conn)
            log_event(LOGGER_NAME, "migrations_done", version=current, applied=applied)
            return current

    def _apply(self, conn: sqlite3.Connection, step: MigrationStep) -> None:
        if step.foreign_keys_off:
            # no effect inside a transaction, so toggled before BEGIN
            conn.execute("PRAGMA foreign_keys = OFF")
        try:
            with transaction(conn):
                step.apply(conn, self.settings)
                if step.foreign_keys_off:
                    violations = conn.execute("PRAGMA foreign_key_check").fetchall()
                    if violations:
                        raise IdempotencyViolation(
                            f"foreign key check failed for tables "
                            f"{sorted({row[0] for row in violations})}"
                        )
                if step.verify is not None:
                    step.verify(conn)
                set_schema_version(conn, step.version)
        except FatalMigrationError as exc:
            if exc.version is not None:
                self._log_failure(step, exc)
                raise
            error = type(exc)(str(exc), step.version, step.name)
            self._log_failure(step, error)
            raise error from exc
        except Exception as exc:
            error = FatalMigrationError(str(exc), step.version, step.name)
            self._log_failure(step, error)
            raise error from exc
        finally:
            if step.foreign_keys_off:
                conn.execute("PRAGMA foreign_keys = ON")
        log_event(LOGGER_NAME, "migration_applied", version=step.version, name=step.name)

    def _reconcile_text_index(self, conn: sqlite3.Connection) -> None:
        try:
            with transaction(conn):
                backfilled = self.text_index.install(conn)
        except Exception as exc:
            error = FatalMigrationError(f"text index install failed: {exc}")
            self._log_failure(None, error)
            raise error from exc
        log_event(LOGGER_NAME, "text_index_installed", backfilled=backfilled)

    def _log_failure(self, step: Optional[MigrationStep], exc: Exception) -> None:
        log_event(
            LOGGER_NAME,
            "migration_failed",
            level=logging.ERROR,
            version=step.version if step else None,
            name=step.name if step else None,
            error=str(exc),
        )
