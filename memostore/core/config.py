import json
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Dict, Optional, Set


def _get_env(name: str, default: str | None = None) -> str | None:
    value = os.getenv(name)
    return value if value is not None else default


def _parse_api_keys(raw: str | None) -> Dict[str, Set[int]]:
    if not raw:
        return {}
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError("API_KEYS_JSON must be a JSON object")
    parsed: Dict[str, Set[int]] = {}
    for key, owners in data.items():
        if not isinstance(owners, list):
            raise ValueError("API_KEYS_JSON values must be lists")
        parsed[str(key)] = {int(owner) for owner in owners}
    return parsed


@dataclass(frozen=True)
class Settings:
    db_path: str
    api_keys: Dict[str, Set[int]]
    admin_password: Optional[str]
    db_max_connections: int
    max_page_size: int
    max_title_len: int
    max_body_len: int
    max_tags: int
    log_level: str


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    db_path = _get_env("DB_PATH", "./data/notes.db")
    api_keys_json = _get_env("API_KEYS_JSON")
    admin_password = (_get_env("ADMIN_PASSWORD") or "").strip() or None
    db_max_connections = max(1, int(_get_env("DB_MAX_CONNECTIONS", "4")))
    max_page_size = max(1, int(_get_env("MAX_PAGE_SIZE", "200")))
    max_title_len = int(_get_env("MAX_TITLE_LEN", "200"))
    max_body_len = int(_get_env("MAX_BODY_LEN", "50000"))
    max_tags = int(_get_env("MAX_TAGS", "50"))
    log_level = _get_env("LOG_LEVEL", "INFO")

    return Settings(
        db_path=db_path,
        api_keys=_parse_api_keys(api_keys_json),
        admin_password=admin_password,
        db_max_connections=db_max_connections,
        max_page_size=max_page_size,
        max_title_len=max_title_len,
        max_body_len=max_body_len,
        max_tags=max_tags,
        log_level=log_level,
    )
