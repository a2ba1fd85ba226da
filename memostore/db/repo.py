import logging
import sqlite3
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from memostore.db.assemble import (
    assemble_note,
    assemble_notes,
    normalize_storage_path,
    row_to_resource,
    row_to_tag,
)
from memostore.db.migrations import get_schema_version
from memostore.db.query import (
    MAX_LIMIT,
    NOTE_COLUMNS,
    MemoFilters,
    QueryPlan,
    as_literal,
    clamp_page,
    compose,
    compose_count,
    parse_tags,
)
from memostore.db.sqlite import Database
from memostore.models.schemas import (
    Note,
    NotePage,
    OwnerStats,
    Resource,
    Tag,
    TagWithCount,
)

logger = logging.getLogger("memostore.query")

NOTE_SELECT = f"SELECT {', '.join(NOTE_COLUMNS)} FROM notes n"

TAG_COLORS = (
    "#FF6B6B", "#4ECDC4", "#45B7D1", "#FFA07A",
    "#98D8C8", "#F7DC6F", "#BB8FCE", "#85C1E2",
)


def _now_iso() -> str:
    return (
        datetime.now(timezone.utc)
        .replace(microsecond=0)
        .isoformat()
        .replace("+00:00", "Z")
    )


def tag_color(name: str) -> str:
    value = 0
    for char in name:
        value = (ord(char) + ((value << 5) - value)) & 0xFFFFFFFF
    return TAG_COLORS[value % len(TAG_COLORS)]


def _owner_clause(owner_id: Optional[int], column: str = "n.owner_id") -> Tuple[str, tuple]:
    if owner_id is None:
        return "", ()
    return f" AND ({column} = ? OR {column} IS NULL)", (owner_id,)


def _visible_note(
    conn: sqlite3.Connection, note_id: int, owner_id: Optional[int]
) -> Optional[sqlite3.Row]:
    clause, args = _owner_clause(owner_id)
    return conn.execute(
        f"{NOTE_SELECT} WHERE n.id = ?{clause}", (note_id, *args)
    ).fetchone()


def ensure_owner(conn: sqlite3.Connection, owner_id: Optional[int]) -> None:
    """Provision the users row an API key's owner id refers to.

    Tags and resources reference users(id); the placeholder password is
    not a bcrypt hash, so the account cannot log in until one is set.
    """
    if owner_id is None:
        return
    conn.execute(
        "INSERT OR IGNORE INTO users (id, username, password, email) VALUES (?, ?, '!', '')",
        (owner_id, f"owner-{owner_id}"),
    )


def _resolve_tags(
    conn: sqlite3.Connection, owner_id: Optional[int], names: Iterable[str], now: str
) -> List[int]:
    tag_ids: List[int] = []
    for name in parse_tags(list(names)):
        if owner_id is None:
            row = conn.execute(
                "SELECT id FROM tags WHERE owner_id IS NULL AND name = ? ORDER BY id LIMIT 1",
                (name,),
            ).fetchone()
        else:
            row = conn.execute(
                "SELECT id FROM tags WHERE owner_id = ? AND name = ?",
                (owner_id, name),
            ).fetchone()
        if row is not None:
            tag_ids.append(row["id"])
            continue
        cursor = conn.execute(
            "INSERT INTO tags (owner_id, name, color, created_at) VALUES (?, ?, ?, ?)",
            (owner_id, name, tag_color(name), now),
        )
        tag_ids.append(cursor.lastrowid)
    return tag_ids


def _link(
    conn: sqlite3.Connection,
    note_id: int,
    owner_id: Optional[int],
    tag_ids: Sequence[int],
    resource_ids: Sequence[int],
) -> None:
    for tag_id in tag_ids:
        conn.execute(
            "INSERT OR IGNORE INTO note_tags (note_id, tag_id) VALUES (?, ?)",
            (note_id, tag_id),
        )
    clause, args = _owner_clause(owner_id, "owner_id")
    for resource_id in resource_ids:
        if resource_id <= 0:
            continue
        # silently skips ids that do not exist or belong to someone else
        conn.execute(
            f"""
            INSERT OR IGNORE INTO note_resources (note_id, resource_id)
            SELECT ?, id FROM resources WHERE id = ?{clause}
            """,
            (note_id, resource_id, *args),
        )


def create_note(
    db: Database,
    owner_id: Optional[int],
    title: str,
    body: str,
    tags: Iterable[str] = (),
    pinned: bool = False,
    kind: str = "markdown",
    resource_ids: Sequence[int] = (),
    location: Optional[str] = None,
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
) -> Note:
    now = _now_iso()
    with db.transaction() as conn:
        ensure_owner(conn, owner_id)
        cursor = conn.execute(
            """
            INSERT INTO notes (owner_id, title, body, pinned, kind, location,
                               latitude, longitude, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                owner_id,
                title,
                body,
                1 if pinned else 0,
                (kind or "").strip() or "markdown",
                location,
                latitude,
                longitude,
                now,
                now,
            ),
        )
        note_id = cursor.lastrowid
        tag_ids = _resolve_tags(conn, owner_id, tags, now)
        _link(conn, note_id, owner_id, tag_ids, resource_ids)
        return assemble_note(conn, _visible_note(conn, note_id, None))


def update_note(
    db: Database,
    note_id: int,
    owner_id: Optional[int],
    title: str,
    body: str,
    tags: Iterable[str] = (),
    pinned: bool = False,
    kind: str = "markdown",
    resource_ids: Sequence[int] = (),
    location: Optional[str] = None,
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
) -> Optional[Note]:
    now = _now_iso()
    with db.transaction() as conn:
        if _visible_note(conn, note_id, owner_id) is None:
            return None
        conn.execute(
            """
            UPDATE notes
            SET title = ?, body = ?, pinned = ?, kind = ?, location = ?,
                latitude = ?, longitude = ?, updated_at = ?
            WHERE id = ?
            """,
            (
                title,
                body,
                1 if pinned else 0,
                (kind or "").strip() or "markdown",
                location,
                latitude,
                longitude,
                now,
                note_id,
            ),
        )
        conn.execute("DELETE FROM note_tags WHERE note_id = ?", (note_id,))
        conn.execute("DELETE FROM note_resources WHERE note_id = ?", (note_id,))
        ensure_owner(conn, owner_id)
        tag_ids = _resolve_tags(conn, owner_id, tags, now)
        _link(conn, note_id, owner_id, tag_ids, resource_ids)
        return assemble_note(conn, _visible_note(conn, note_id, None))


def delete_note(db: Database, note_id: int, owner_id: Optional[int]) -> bool:
    clause, args = _owner_clause(owner_id, "owner_id")
    with db.transaction() as conn:
        cursor = conn.execute(
            f"DELETE FROM notes WHERE id = ?{clause}", (note_id, *args)
        )
    return cursor.rowcount > 0


def delete_notes(db: Database, note_ids: Sequence[int], owner_id: Optional[int]) -> int:
    ids = [int(note_id) for note_id in note_ids]
    if not ids:
        return 0
    placeholders = ",".join("?" for _ in ids)
    clause, args = _owner_clause(owner_id, "owner_id")
    with db.transaction() as conn:
        cursor = conn.execute(
            f"DELETE FROM notes WHERE id IN ({placeholders}){clause}", (*ids, *args)
        )
    return cursor.rowcount


def get_note(db: Database, note_id: int, owner_id: Optional[int] = None) -> Optional[Note]:
    with db.snapshot() as conn:
        row = _visible_note(conn, note_id, owner_id)
        if row is None:
            return None
        return assemble_note(conn, row)


def execute(db: Database, plan: QueryPlan) -> List[Note]:
    with db.snapshot() as conn:
        rows = conn.execute(plan.sql, plan.args).fetchall()
        return assemble_notes(conn, rows)


def _page(db: Database, filters: MemoFilters, max_limit: int) -> Tuple[QueryPlan, List[Note], int]:
    plan = compose(filters, max_limit)
    count_plan = compose_count(filters)
    with db.snapshot() as conn:
        total = int(conn.execute(count_plan.sql, count_plan.args).fetchone()[0])
        rows = conn.execute(plan.sql, plan.args).fetchall()
        return plan, assemble_notes(conn, rows), total


def list_notes(db: Database, filters: MemoFilters, max_limit: int = MAX_LIMIT) -> NotePage:
    try:
        plan, items, total = _page(db, filters, max_limit)
    except sqlite3.OperationalError as exc:
        if not (filters.text or "").strip():
            raise
        # user-supplied fts5 syntax that does not parse
        logger.warning(
            {"event": "text_query_retried_as_literal", "text": filters.text, "error": str(exc)}
        )
        plan, items, total = _page(db, as_literal(filters), max_limit)
    return NotePage(
        ownerId=filters.owner_id,
        limit=plan.limit,
        offset=plan.offset,
        total=total,
        items=items,
    )


def list_tags(db: Database, owner_id: int) -> List[TagWithCount]:
    with db.snapshot() as conn:
        rows = conn.execute(
            """
            SELECT t.id, t.name, t.color, t.created_at, COUNT(nt.note_id) AS note_count
            FROM tags t
            LEFT JOIN note_tags nt ON nt.tag_id = t.id
            WHERE t.owner_id = ?
            GROUP BY t.id
            ORDER BY note_count DESC, t.created_at DESC, t.id DESC
            """,
            (owner_id,),
        ).fetchall()
    return [
        TagWithCount(**row_to_tag(row).model_dump(), noteCount=row["note_count"])
        for row in rows
    ]


def update_tag(
    db: Database, tag_id: int, owner_id: int, name: str, color: Optional[str]
) -> Optional[Tag]:
    with db.transaction() as conn:
        cursor = conn.execute(
            "UPDATE tags SET name = ?, color = COALESCE(?, color) WHERE id = ? AND owner_id = ?",
            (name.strip(), color, tag_id, owner_id),
        )
        if cursor.rowcount == 0:
            return None
        row = conn.execute(
            "SELECT id, name, color, created_at FROM tags WHERE id = ?", (tag_id,)
        ).fetchone()
    return row_to_tag(row)


def delete_tag(db: Database, tag_id: int, owner_id: int) -> bool:
    with db.transaction() as conn:
        cursor = conn.execute(
            "DELETE FROM tags WHERE id = ? AND owner_id = ?", (tag_id, owner_id)
        )
    return cursor.rowcount > 0


def merge_tags(db: Database, source_id: int, target_id: int, owner_id: int) -> bool:
    if source_id == target_id:
        return False
    with db.transaction() as conn:
        owned = conn.execute(
            "SELECT COUNT(*) FROM tags WHERE id IN (?, ?) AND owner_id = ?",
            (source_id, target_id, owner_id),
        ).fetchone()[0]
        if owned != 2:
            return False
        conn.execute(
            """
            INSERT OR IGNORE INTO note_tags (note_id, tag_id)
            SELECT note_id, ? FROM note_tags WHERE tag_id = ?
            """,
            (target_id, source_id),
        )
        conn.execute("DELETE FROM tags WHERE id = ?", (source_id,))
    return True


def create_resource(
    db: Database,
    owner_id: Optional[int],
    filename: str,
    storage_path: str,
    mime_type: Optional[str] = None,
    size: Optional[int] = None,
    sha256: Optional[str] = None,
) -> Resource:
    with db.transaction() as conn:
        ensure_owner(conn, owner_id)
        cursor = conn.execute(
            """
            INSERT INTO resources (owner_id, filename, storage_path, mime_type, size, sha256, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                owner_id,
                filename,
                normalize_storage_path(storage_path),
                mime_type,
                size,
                sha256,
                _now_iso(),
            ),
        )
        row = conn.execute(
            "SELECT * FROM resources WHERE id = ?", (cursor.lastrowid,)
        ).fetchone()
    return row_to_resource(row)


def list_resources(
    db: Database, owner_id: int, limit: int = 20, offset: int = 0
) -> Tuple[List[Resource], int]:
    limit, offset = clamp_page(limit, offset, 100)
    with db.snapshot() as conn:
        total = conn.execute(
            "SELECT COUNT(*) FROM resources WHERE owner_id = ?", (owner_id,)
        ).fetchone()[0]
        rows = conn.execute(
            """
            SELECT * FROM resources WHERE owner_id = ?
            ORDER BY created_at DESC, id DESC
            LIMIT ? OFFSET ?
            """,
            (owner_id, limit, offset),
        ).fetchall()
    return [row_to_resource(row) for row in rows], int(total)


def delete_resource(db: Database, resource_id: int, owner_id: int) -> bool:
    with db.transaction() as conn:
        cursor = conn.execute(
            "DELETE FROM resources WHERE id = ? AND owner_id = ?", (resource_id, owner_id)
        )
    return cursor.rowcount > 0


def owner_stats(db: Database, owner_id: int) -> OwnerStats:
    week_ago = "strftime('%Y-%m-%dT%H:%M:%SZ', 'now', '-7 days')"
    visible = "(owner_id = :owner OR owner_id IS NULL)"
    queries: Dict[str, str] = {
        "notesCount": f"SELECT COUNT(*) FROM notes WHERE {visible}",
        "tagsCount": "SELECT COUNT(*) FROM tags WHERE owner_id = :owner",
        "resourcesCount": "SELECT COUNT(*) FROM resources WHERE owner_id = :owner",
        "notebooksCount": "SELECT COUNT(*) FROM notebooks WHERE owner_id = :owner",
        "pinnedCount": f"SELECT COUNT(*) FROM notes WHERE {visible} AND pinned = 1",
        "notesCreated7d": f"SELECT COUNT(*) FROM notes WHERE {visible} AND created_at >= {week_ago}",
        "notesUpdated7d": f"SELECT COUNT(*) FROM notes WHERE {visible} AND updated_at >= {week_ago}",
    }
    with db.snapshot() as conn:
        values: Dict[str, Any] = {
            key: int(conn.execute(sql, {"owner": owner_id}).fetchone()[0])
            for key, sql in queries.items()
        }
    return OwnerStats(**values)


def note_counts_by_owner(db: Database) -> dict[str, int]:
    with db.snapshot() as conn:
        rows = conn.execute(
            """
            SELECT owner_id, COUNT(*)
            FROM notes
            GROUP BY owner_id;
            """
        ).fetchall()
    return {
        "unowned" if row["owner_id"] is None else str(row["owner_id"]): int(row[1])
        for row in rows
    }


def schema_version(db: Database) -> int:
    with db.connection() as conn:
        return get_schema_version(conn)
