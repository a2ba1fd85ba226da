import logging
import sqlite3

from memostore.core.config import Settings
from memostore.core.logging import log_event
from memostore.core.security import generate_password, hash_password, verify_password
from memostore.db.migrations import (
    LOGGER_NAME,
    MigrationStep,
    add_column_if_missing,
    expect_columns,
    expect_tables,
    index_columns,
    shadow_and_swap,
)
from memostore.db.text_index import CREATE_FTS_SQL, TextIndex
from memostore.errors import IdempotencyViolation

NOW_SQL = "(strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))"

ADMIN_USERNAME = "admin"
INSECURE_DEFAULT_PASSWORDS = ("admin123",)


def _base_schema(conn: sqlite3.Connection, settings: Settings) -> None:
    conn.execute(
        f"""
        CREATE TABLE IF NOT EXISTS notes (
          id         INTEGER PRIMARY KEY AUTOINCREMENT,
          title      TEXT,
          body       TEXT,
          created_at TEXT NOT NULL DEFAULT {NOW_SQL},
          updated_at TEXT NOT NULL DEFAULT {NOW_SQL}
        );
        """
    )
    conn.execute(CREATE_FTS_SQL)
    # the first release kept tag names globally unique; v7 lifts that
    conn.execute(
        f"""
        CREATE TABLE IF NOT EXISTS tags (
          id         INTEGER PRIMARY KEY AUTOINCREMENT,
          name       TEXT NOT NULL UNIQUE,
          color      TEXT,
          created_at TEXT NOT NULL DEFAULT {NOW_SQL}
        );
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS note_tags (
          note_id INTEGER NOT NULL,
          tag_id  INTEGER NOT NULL,
          PRIMARY KEY (note_id, tag_id),
          FOREIGN KEY (note_id) REFERENCES notes(id) ON DELETE CASCADE,
          FOREIGN KEY (tag_id) REFERENCES tags(id) ON DELETE CASCADE
        );
        """
    )
    conn.execute(
        f"""
        CREATE TABLE IF NOT EXISTS users (
          id         INTEGER PRIMARY KEY AUTOINCREMENT,
          username   TEXT NOT NULL UNIQUE,
          password   TEXT NOT NULL,
          email      TEXT,
          created_at TEXT NOT NULL DEFAULT {NOW_SQL}
        );
        """
    )
    TextIndex().install(conn)


def _note_columns(conn: sqlite3.Connection, settings: Settings) -> None:
    add_column_if_missing(conn, "notes", "pinned", "INTEGER NOT NULL DEFAULT 0")
    add_column_if_missing(conn, "notes", "kind", "TEXT NOT NULL DEFAULT 'markdown'")
    # nullable: rows written before owners existed stay visible to everyone
    add_column_if_missing(conn, "notes", "owner_id", "INTEGER")


def _resources(conn: sqlite3.Connection, settings: Settings) -> None:
    conn.execute(
        f"""
        CREATE TABLE IF NOT EXISTS resources (
          id           INTEGER PRIMARY KEY AUTOINCREMENT,
          owner_id     INTEGER,
          filename     TEXT NOT NULL,
          storage_path TEXT NOT NULL,
          mime_type    TEXT,
          size         INTEGER,
          sha256       TEXT,
          created_at   TEXT NOT NULL DEFAULT {NOW_SQL},
          FOREIGN KEY (owner_id) REFERENCES users(id) ON DELETE SET NULL
        );
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS note_resources (
          note_id     INTEGER NOT NULL,
          resource_id INTEGER NOT NULL,
          PRIMARY KEY (note_id, resource_id),
          FOREIGN KEY (note_id) REFERENCES notes(id) ON DELETE CASCADE,
          FOREIGN KEY (resource_id) REFERENCES resources(id) ON DELETE CASCADE
        );
        """
    )


def _users_admin_flag(conn: sqlite3.Connection, settings: Settings) -> None:
    add_column_if_missing(conn, "users", "is_admin", "INTEGER NOT NULL DEFAULT 0")


def _bootstrap_admin(conn: sqlite3.Connection, settings: Settings) -> None:
    add_column_if_missing(
        conn, "users", "must_change_password", "INTEGER NOT NULL DEFAULT 0"
    )
    admin = conn.execute(
        """
        SELECT id, password FROM users
        WHERE is_admin = 1 OR username = ?
        ORDER BY is_admin DESC, id ASC
        LIMIT 1
        """,
        (ADMIN_USERNAME,),
    ).fetchone()

    if settings.admin_password:
        hashed = hash_password(settings.admin_password)
        if admin is not None:
            conn.execute(
                "UPDATE users SET password = ?, is_admin = 1, must_change_password = 1 WHERE id = ?",
                (hashed, admin["id"]),
            )
            user_id = admin["id"]
        else:
            cursor = conn.execute(
                """
                INSERT INTO users (username, password, email, is_admin, must_change_password)
                VALUES (?, ?, '', 1, 1)
                """,
                (ADMIN_USERNAME, hashed),
            )
            user_id = cursor.lastrowid
        log_event(LOGGER_NAME, "admin_password_from_config", user_id=user_id)
        return

    if admin is None:
        password = generate_password(16)
        cursor = conn.execute(
            """
            INSERT INTO users (username, password, email, is_admin, must_change_password)
            VALUES (?, ?, '', 1, 1)
            """,
            (ADMIN_USERNAME, hash_password(password)),
        )
        log_event(
            LOGGER_NAME,
            "admin_bootstrapped",
            level=logging.WARNING,
            user_id=cursor.lastrowid,
            username=ADMIN_USERNAME,
            password=password,
            hint="shown once; log in and change it, or set ADMIN_PASSWORD",
        )
        return

    if any(verify_password(default, admin["password"]) for default in INSECURE_DEFAULT_PASSWORDS):
        log_event(
            LOGGER_NAME,
            "admin_insecure_default_password",
            level=logging.WARNING,
            user_id=admin["id"],
        )
        conn.execute(
            "UPDATE users SET must_change_password = 1 WHERE id = ?", (admin["id"],)
        )


def _owner_isolation(conn: sqlite3.Connection, settings: Settings) -> None:
    add_column_if_missing(conn, "tags", "owner_id", "INTEGER")
    # NULL owners never collide here, so unowned tags may still repeat a name
    conn.execute(
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_tags_owner_name ON tags(owner_id, name)"
    )
    row = conn.execute(
        "SELECT id FROM users ORDER BY is_admin DESC, id ASC LIMIT 1"
    ).fetchone()
    if row is None:
        log_event(
            LOGGER_NAME,
            "owner_backfill_skipped",
            level=logging.WARNING,
            reason="no users yet; unowned notes stay visible to every owner",
        )
        return
    primary_owner = row["id"]
    notes = conn.execute(
        "UPDATE notes SET owner_id = ? WHERE owner_id IS NULL", (primary_owner,)
    ).rowcount
    tags = conn.execute(
        "UPDATE tags SET owner_id = ? WHERE owner_id IS NULL", (primary_owner,)
    ).rowcount
    log_event(
        LOGGER_NAME,
        "owner_backfill",
        owner_id=primary_owner,
        notes=notes,
        tags=tags,
    )


TAGS_TABLE_SQL = f"""
CREATE TABLE {{table}} (
  id         INTEGER PRIMARY KEY AUTOINCREMENT,
  owner_id   INTEGER,
  name       TEXT NOT NULL,
  color      TEXT,
  created_at TEXT NOT NULL DEFAULT {NOW_SQL},
  FOREIGN KEY (owner_id) REFERENCES users(id) ON DELETE SET NULL
);
"""

TAGS_INDEXES = (
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_tags_owner_name ON tags(owner_id, name)",
)


def _tags_unique_per_owner(conn: sqlite3.Connection, settings: Settings) -> None:
    copied = shadow_and_swap(
        conn,
        "tags",
        TAGS_TABLE_SQL,
        ("id", "owner_id", "name", "color", "created_at"),
        TAGS_INDEXES,
    )
    log_event(LOGGER_NAME, "tags_rebuilt", rows=copied)


def _verify_tags_unique_per_owner(conn: sqlite3.Connection) -> None:
    indexes = index_columns(conn, "tags")
    if any(unique and cols == ("name",) for _, unique, cols in indexes):
        raise IdempotencyViolation("tags.name is still globally unique")
    if not any(unique and cols == ("owner_id", "name") for _, unique, cols in indexes):
        raise IdempotencyViolation("unique index on tags(owner_id, name) is missing")


def _notebooks(conn: sqlite3.Connection, settings: Settings) -> None:
    conn.execute(
        f"""
        CREATE TABLE IF NOT EXISTS notebooks (
          id         INTEGER PRIMARY KEY AUTOINCREMENT,
          owner_id   INTEGER NOT NULL,
          name       TEXT NOT NULL,
          color      TEXT,
          sort_order INTEGER NOT NULL DEFAULT 0,
          created_at TEXT NOT NULL DEFAULT {NOW_SQL},
          updated_at TEXT NOT NULL DEFAULT {NOW_SQL},
          FOREIGN KEY (owner_id) REFERENCES users(id) ON DELETE CASCADE
        );
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS note_notebooks (
          note_id     INTEGER NOT NULL,
          notebook_id INTEGER NOT NULL,
          PRIMARY KEY (note_id, notebook_id),
          FOREIGN KEY (note_id) REFERENCES notes(id) ON DELETE CASCADE,
          FOREIGN KEY (notebook_id) REFERENCES notebooks(id) ON DELETE CASCADE
        );
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_notebooks_owner_id ON notebooks(owner_id)")
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_note_notebooks_notebook_id ON note_notebooks(notebook_id)"
    )


def _note_location(conn: sqlite3.Connection, settings: Settings) -> None:
    add_column_if_missing(conn, "notes", "location", "TEXT")
    add_column_if_missing(conn, "notes", "latitude", "REAL")
    add_column_if_missing(conn, "notes", "longitude", "REAL")


def _query_indexes(conn: sqlite3.Connection, settings: Settings) -> None:
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_notes_owner_created ON notes(owner_id, created_at DESC)"
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_notes_pinned_created ON notes(pinned DESC, created_at DESC, id DESC)"
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_note_tags_tag_id ON note_tags(tag_id)")
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_note_resources_resource_id ON note_resources(resource_id)"
    )


STEPS = (
    MigrationStep(
        1,
        "base_schema",
        _base_schema,
        verify=expect_tables("notes", "notes_fts", "tags", "note_tags", "users"),
    ),
    MigrationStep(
        2,
        "note_columns",
        _note_columns,
        verify=expect_columns("notes", "pinned", "kind", "owner_id"),
    ),
    MigrationStep(
        3,
        "resources",
        _resources,
        verify=expect_tables("resources", "note_resources"),
    ),
    MigrationStep(
        4,
        "users_admin_flag",
        _users_admin_flag,
        verify=expect_columns("users", "is_admin"),
    ),
    MigrationStep(
        5,
        "bootstrap_admin",
        _bootstrap_admin,
        verify=expect_columns("users", "must_change_password"),
    ),
    MigrationStep(
        6,
        "owner_isolation",
        _owner_isolation,
        verify=expect_columns("tags", "owner_id"),
    ),
    MigrationStep(
        7,
        "tags_unique_per_owner",
        _tags_unique_per_owner,
        foreign_keys_off=True,
        verify=_verify_tags_unique_per_owner,
    ),
    MigrationStep(
        8,
        "notebooks",
        _notebooks,
        verify=expect_tables("notebooks", "note_notebooks"),
    ),
    MigrationStep(
        9,
        "note_location",
        _note_location,
        verify=expect_columns("notes", "location", "latitude", "longitude"),
    ),
    MigrationStep(10, "query_indexes", _query_indexes),
)
