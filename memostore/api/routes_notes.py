from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from memostore.core.auth import require_owner
from memostore.db import repo
from memostore.db.query import MemoFilters, query_shape
from memostore.models.schemas import Note, NoteBatchDelete, NoteIn, NotePage, RowIdPath

router = APIRouter(prefix="/api/v1/owners/{ownerId}/notes", tags=["notes"])


def _validate_note(note: NoteIn, request: Request) -> NoteIn:
    settings = request.app.state.settings
    note.title = note.title.strip()
    note.body = note.body.strip()
    if not note.title and not note.body:
        raise HTTPException(status_code=400, detail="Title and body cannot both be empty")
    if len(note.title) > settings.max_title_len:
        raise HTTPException(status_code=400, detail="Title too long")
    if len(note.body) > settings.max_body_len:
        raise HTTPException(status_code=400, detail="Body too long")
    if len(note.tags) > settings.max_tags:
        raise HTTPException(status_code=400, detail="Too many tags")
    return note


@router.get("", response_model=NotePage)
def list_notes(
    request: Request,
    ownerId: int = Depends(require_owner),
    q: Optional[str] = Query(None),
    tags: Optional[str] = Query(None),
    tag: Optional[str] = Query(None),
    date_from: Optional[str] = Query(None, alias="from"),
    date_to: Optional[str] = Query(None, alias="to"),
    pinned: Optional[str] = Query(None),
    kind: Optional[str] = Query(None),
    limit: int = Query(50),
    offset: int = Query(0),
) -> NotePage:
    filters = MemoFilters.from_params(
        q=q,
        tags=tags if tags else tag,
        date_from=date_from,
        date_to=date_to,
        pinned=pinned,
        kind=kind,
        owner_id=ownerId,
        limit=limit,
        offset=offset,
    )
    page = repo.list_notes(
        request.app.state.db, filters, request.app.state.settings.max_page_size
    )
    request.app.state.metrics.record_query(query_shape(filters), len(page.items))
    return page


@router.post("", status_code=status.HTTP_201_CREATED, response_model=Note)
def create_note(
    payload: NoteIn,
    request: Request,
    ownerId: int = Depends(require_owner),
) -> Note:
    payload = _validate_note(payload, request)
    return repo.create_note(
        request.app.state.db,
        ownerId,
        payload.title,
        payload.body,
        payload.tags,
        payload.pinned,
        payload.kind,
        payload.resourceIds,
        payload.location,
        payload.latitude,
        payload.longitude,
    )


# registered before /{noteId} so "batch" is not read as a note id
@router.delete("/batch")
def delete_notes(
    payload: NoteBatchDelete,
    request: Request,
    ownerId: int = Depends(require_owner),
) -> dict:
    deleted = repo.delete_notes(request.app.state.db, payload.ids, ownerId)
    return {"success": True, "deleted": deleted}


@router.get("/{noteId}", response_model=Note)
def get_note(
    noteId: RowIdPath,
    request: Request,
    ownerId: int = Depends(require_owner),
) -> Note:
    note = repo.get_note(request.app.state.db, noteId, ownerId)
    if note is None:
        raise HTTPException(status_code=404, detail="Note not found")
    return note


@router.put("/{noteId}", response_model=Note)
def update_note(
    noteId: RowIdPath,
    payload: NoteIn,
    request: Request,
    ownerId: int = Depends(require_owner),
) -> Note:
    payload = _validate_note(payload, request)
    note = repo.update_note(
        request.app.state.db,
        noteId,
        ownerId,
        payload.title,
        payload.body,
        payload.tags,
        payload.pinned,
        payload.kind,
        payload.resourceIds,
        payload.location,
        payload.latitude,
        payload.longitude,
    )
    if note is None:
        raise HTTPException(status_code=404, detail="Note not found")
    return note


@router.delete("/{noteId}")
def delete_note(
    noteId: RowIdPath,
    request: Request,
    ownerId: int = Depends(require_owner),
) -> dict:
    if not repo.delete_note(request.app.state.db, noteId, ownerId):
        raise HTTPException(status_code=404, detail="Note not found")
    return {"success": True}
