from fastapi import APIRouter, Depends, Request

from memostore.core.auth import require_owner
from memostore.db import repo
from memostore.models.schemas import OwnerStats

router = APIRouter(prefix="/api/v1/owners/{ownerId}/stats", tags=["stats"])


@router.get("", response_model=OwnerStats)
def owner_stats(
    request: Request,
    ownerId: int = Depends(require_owner),
) -> OwnerStats:
    return repo.owner_stats(request.app.state.db, ownerId)
