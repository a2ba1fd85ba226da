import sqlite3
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request

from memostore.core.auth import require_owner
from memostore.db import repo
from memostore.models.schemas import RowIdPath, Tag, TagMerge, TagUpdate, TagWithCount

router = APIRouter(prefix="/api/v1/owners/{ownerId}/tags", tags=["tags"])


@router.get("", response_model=List[TagWithCount])
def list_tags(
    request: Request,
    ownerId: int = Depends(require_owner),
) -> List[TagWithCount]:
    return repo.list_tags(request.app.state.db, ownerId)


@router.put("/{tagId}", response_model=Tag)
def update_tag(
    tagId: RowIdPath,
    payload: TagUpdate,
    request: Request,
    ownerId: int = Depends(require_owner),
) -> Tag:
    try:
        tag = repo.update_tag(
            request.app.state.db, tagId, ownerId, payload.name, payload.color
        )
    except sqlite3.IntegrityError:
        raise HTTPException(status_code=409, detail="Tag name already in use") from None
    if tag is None:
        raise HTTPException(status_code=404, detail="Tag not found")
    return tag


@router.delete("/{tagId}")
def delete_tag(
    tagId: RowIdPath,
    request: Request,
    ownerId: int = Depends(require_owner),
) -> dict:
    if not repo.delete_tag(request.app.state.db, tagId, ownerId):
        raise HTTPException(status_code=404, detail="Tag not found")
    return {"success": True}


@router.post("/{tagId}/merge")
def merge_tag(
    tagId: RowIdPath,
    payload: TagMerge,
    request: Request,
    ownerId: int = Depends(require_owner),
) -> dict:
    if not repo.merge_tags(request.app.state.db, tagId, payload.targetId, ownerId):
        raise HTTPException(status_code=404, detail="Tag not found")
    return {"success": True, "targetId": payload.targetId}
