from fastapi import APIRouter, Request

from memostore.db import repo
from memostore.models.schemas import MetricsResponse

router = APIRouter(prefix="/api/v1/metrics", tags=["metrics"])


@router.get("", response_model=MetricsResponse)
def metrics(request: Request) -> MetricsResponse:
    db = request.app.state.db
    return MetricsResponse(
        **request.app.state.metrics.snapshot(),
        notes={"byOwner": repo.note_counts_by_owner(db)},
        pool=db.stats(),
    )
