import logging
import sqlite3
from datetime import datetime, timezone

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from memostore.db import repo
from memostore.models.schemas import HealthResponse

logger = logging.getLogger("memostore.health")

router = APIRouter(prefix="/api/v1/health", tags=["health"])


@router.get("", response_model=HealthResponse)
def health(request: Request):
    now = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    try:
        version = repo.schema_version(request.app.state.db)
    except (sqlite3.Error, TimeoutError) as exc:
        logger.warning({"event": "health_db_unavailable", "error": str(exc)})
        body = HealthResponse(status="unavailable", time=now, schemaVersion=None)
        return JSONResponse(status_code=503, content=body.model_dump())
    expected = request.app.state.schema_version
    status = "ok" if version == expected else "schema_mismatch"
    return HealthResponse(status=status, time=now, schemaVersion=version)
