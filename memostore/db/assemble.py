import sqlite3
from typing import Iterable, List, Optional

from memostore.models.schemas import Note, Resource, Tag


def normalize_storage_path(path: Optional[str]) -> str:
    return (path or "").strip().lstrip("/")


def resource_url(storage_path: Optional[str]) -> str:
    normalized = normalize_storage_path(storage_path)
    return f"/uploads/{normalized}" if normalized else ""


def row_to_tag(row: sqlite3.Row) -> Tag:
    return Tag(
        id=row["id"],
        name=row["name"],
        color=row["color"],
        createdAt=row["created_at"],
    )


def row_to_resource(row: sqlite3.Row) -> Resource:
    storage_path = normalize_storage_path(row["storage_path"])
    return Resource(
        id=row["id"],
        ownerId=row["owner_id"],
        filename=row["filename"],
        storagePath=storage_path,
        url=resource_url(storage_path),
        mimeType=row["mime_type"],
        size=row["size"],
        sha256=row["sha256"],
        createdAt=row["created_at"],
    )


def tags_for_note(conn: sqlite3.Connection, note_id: int) -> List[Tag]:
    rows = conn.execute(
        """
        SELECT t.id, t.name, t.color, t.created_at
        FROM tags t
        JOIN note_tags nt ON nt.tag_id = t.id
        WHERE nt.note_id = ?
        ORDER BY t.name ASC, t.id ASC
        """,
        (note_id,),
    ).fetchall()
    return [row_to_tag(row) for row in rows]


def resources_for_note(conn: sqlite3.Connection, note_id: int) -> List[Resource]:
    rows = conn.execute(
        """
        SELECT r.id, r.owner_id, r.filename, r.storage_path, r.mime_type,
               r.size, r.sha256, r.created_at
        FROM note_resources nr
        JOIN resources r ON r.id = nr.resource_id
        WHERE nr.note_id = ?
        ORDER BY r.created_at ASC, r.id ASC
        """,
        (note_id,),
    ).fetchall()
    return [row_to_resource(row) for row in rows]


def assemble_note(conn: sqlite3.Connection, row: sqlite3.Row) -> Note:
    return Note(
        id=row["id"],
        ownerId=row["owner_id"],
        title=row["title"] or "",
        body=row["body"] or "",
        pinned=bool(row["pinned"]),
        kind=row["kind"],
        location=row["location"],
        latitude=row["latitude"],
        longitude=row["longitude"],
        tags=tags_for_note(conn, row["id"]),
        resources=resources_for_note(conn, row["id"]),
        createdAt=row["created_at"],
        updatedAt=row["updated_at"],
    )


def assemble_notes(conn: sqlite3.Connection, rows: Iterable[sqlite3.Row]) -> List[Note]:
    # Two lookups per row. Pages are capped at MAX_LIMIT rows, so this stays
    # bounded; a larger page size should switch to one query per page keyed
    # by the page's note ids and grouped here.
    return [assemble_note(conn, row) for row in rows]
