from typing import FrozenSet

from fastapi import Depends, HTTPException, Request
from fastapi.security import APIKeyHeader

from memostore.core.config import Settings

API_KEY_HEADER = APIKeyHeader(name="X-API-Key", auto_error=False)


def owners_for_key(settings: Settings, api_key: str | None) -> FrozenSet[int]:
    if not api_key or api_key not in settings.api_keys:
        raise HTTPException(status_code=401, detail="Invalid API key")
    return frozenset(settings.api_keys[api_key])


def require_owner(
    request: Request,
    ownerId: int,
    api_key: str | None = Depends(API_KEY_HEADER),
) -> int:
    """Resolve the path's owner id, checked against the key's owner set."""
    owners = owners_for_key(request.app.state.settings, api_key)
    if ownerId not in owners:
        raise HTTPException(status_code=403, detail="Owner not authorized")
    return ownerId
