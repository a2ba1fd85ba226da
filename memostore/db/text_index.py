"""Full-text index over note bodies.

Contract: every live row in ``notes`` has exactly one row in ``notes_fts``
with ``rowid = notes.id`` and the current body; a deleted note has none.
The index is maintained by triggers, so any write path touching ``notes``
stays consistent without calling into this module. ``install`` is safe to
run on every start: it re-creates the triggers from the definitions below
and repairs the projection.
"""
import sqlite3
from dataclasses import dataclass, field
from typing import List, Optional

FTS_TABLE = "notes_fts"

TRIGGER_NAMES = ("notes_ai", "notes_ad", "notes_au")

# names used by earlier deployments; dropped so they cannot double-index
LEGACY_TRIGGER_NAMES = (
    "notes_fts_ai",
    "notes_fts_ad",
    "notes_fts_au",
    "notes_fts_insert",
    "notes_fts_delete",
    "notes_fts_update",
)

CREATE_FTS_SQL = """
CREATE VIRTUAL TABLE IF NOT EXISTS notes_fts
USING fts5(body, note_id UNINDEXED, tokenize='unicode61');
"""

TRIGGERS_SQL = (
    """
    CREATE TRIGGER notes_ai AFTER INSERT ON notes BEGIN
      INSERT INTO notes_fts(rowid, body, note_id)
      VALUES (new.id, COALESCE(new.body, ''), new.id);
    END;
    """,
    """
    CREATE TRIGGER notes_ad AFTER DELETE ON notes BEGIN
      DELETE FROM notes_fts WHERE rowid = old.id;
    END;
    """,
    # fts5 rows are replaced, never edited in place
    """
    CREATE TRIGGER notes_au AFTER UPDATE ON notes BEGIN
      DELETE FROM notes_fts WHERE rowid = old.id;
      INSERT INTO notes_fts(rowid, body, note_id)
      VALUES (new.id, COALESCE(new.body, ''), new.id);
    END;
    """,
)


@dataclass
class IndexReport:
    missing: List[int] = field(default_factory=list)
    orphaned: List[int] = field(default_factory=list)
    stale: List[int] = field(default_factory=list)

    @property
    def consistent(self) -> bool:
        return not (self.missing or self.orphaned or self.stale)


def _quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


class TextIndex:
    def install(self, conn: sqlite3.Connection) -> int:
        """Create the index if needed, reinstall its triggers and repair it.

        Returns the number of notes that had to be backfilled.
        """
        conn.execute(CREATE_FTS_SQL)
        self.drop_triggers(conn)
        for ddl in TRIGGERS_SQL:
            conn.execute(ddl)
        self.prune(conn)
        return self.backfill(conn)

    def drop_triggers(self, conn: sqlite3.Connection) -> None:
        names = TRIGGER_NAMES + LEGACY_TRIGGER_NAMES
        placeholders = ",".join("?" for _ in names)
        for master, schema in (("sqlite_master", "main"), ("sqlite_temp_master", "temp")):
            rows = conn.execute(
                f"SELECT name FROM {master} WHERE type = 'trigger' AND name IN ({placeholders})",
                names,
            ).fetchall()
            for row in rows:
                conn.execute(
                    f"DROP TRIGGER IF EXISTS {schema}.{_quote_identifier(row['name'])}"
                )
        # unqualified fallback for anything the catalog lookup missed
        for name in names:
            conn.execute(f"DROP TRIGGER IF EXISTS {_quote_identifier(name)}")

    def installed_triggers(self, conn: sqlite3.Connection) -> List[str]:
        rows = conn.execute(
            "SELECT name FROM sqlite_master WHERE type = 'trigger' AND tbl_name = 'notes' ORDER BY name"
        ).fetchall()
        return [row["name"] for row in rows]

    def backfill(self, conn: sqlite3.Connection) -> int:
        cursor = conn.execute(
            """
            INSERT INTO notes_fts(rowid, body, note_id)
            SELECT n.id, COALESCE(n.body, ''), n.id
            FROM notes n
            WHERE NOT EXISTS (SELECT 1 FROM notes_fts f WHERE f.rowid = n.id);
            """
        )
        return max(cursor.rowcount, 0)

    def prune(self, conn: sqlite3.Connection) -> int:
        cursor = conn.execute(
            "DELETE FROM notes_fts WHERE rowid NOT IN (SELECT id FROM notes)"
        )
        return max(cursor.rowcount, 0)

    def rebuild(self, conn: sqlite3.Connection) -> int:
        conn.execute("DELETE FROM notes_fts")
        return self.backfill(conn)

    def entry(self, conn: sqlite3.Connection, note_id: int) -> Optional[str]:
        row = conn.execute(
            "SELECT body FROM notes_fts WHERE rowid = ?", (note_id,)
        ).fetchone()
        return row["body"] if row else None

    def check(self, conn: sqlite3.Connection) -> IndexReport:
        missing = conn.execute(
            """
            SELECT n.id FROM notes n
            WHERE NOT EXISTS (SELECT 1 FROM notes_fts f WHERE f.rowid = n.id)
            ORDER BY n.id
            """
        ).fetchall()
        orphaned = conn.execute(
            """
            SELECT f.rowid AS id FROM notes_fts f
            WHERE NOT EXISTS (SELECT 1 FROM notes n WHERE n.id = f.rowid)
            ORDER BY f.rowid
            """
        ).fetchall()
        stale = conn.execute(
            """
            SELECT n.id FROM notes n
            JOIN notes_fts f ON f.rowid = n.id
            WHERE f.body IS NOT COALESCE(n.body, '')
            ORDER BY n.id
            """
        ).fetchall()
        return IndexReport(
            missing=[row["id"] for row in missing],
            orphaned=[row["id"] for row in orphaned],
            stale=[row["id"] for row in stale],
        )
