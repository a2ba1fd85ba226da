from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from memostore.core.auth import require_owner
from memostore.db import repo
from memostore.models.schemas import Resource, ResourceIn, RowIdPath

router = APIRouter(prefix="/api/v1/owners/{ownerId}/resources", tags=["resources"])


@router.get("")
def list_resources(
    request: Request,
    ownerId: int = Depends(require_owner),
    limit: int = Query(20),
    offset: int = Query(0),
) -> dict:
    items, total = repo.list_resources(request.app.state.db, ownerId, limit, offset)
    return {"items": [item.model_dump() for item in items], "total": total}


@router.post("", status_code=status.HTTP_201_CREATED, response_model=Resource)
def register_resource(
    payload: ResourceIn,
    request: Request,
    ownerId: int = Depends(require_owner),
) -> Resource:
    return repo.create_resource(
        request.app.state.db,
        ownerId,
        payload.filename,
        payload.storagePath,
        payload.mimeType,
        payload.size,
        payload.sha256,
    )


@router.delete("/{resourceId}")
def delete_resource(
    resourceId: RowIdPath,
    request: Request,
    ownerId: int = Depends(require_owner),
) -> dict:
    if not repo.delete_resource(request.app.state.db, resourceId, ownerId):
        raise HTTPException(status_code=404, detail="Resource not found")
    return {"success": True}
