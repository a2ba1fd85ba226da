import logging
from typing import Any

REQUEST_LOGGER = "memostore.request"


def setup_logging(log_level: str) -> None:
    level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(message)s")
    # basicConfig is a no-op once the host (uvicorn, pytest) installed handlers
    logging.getLogger("memostore").setLevel(level)


def log_request(data: dict[str, Any]) -> None:
    logging.getLogger(REQUEST_LOGGER).info(data)


def log_event(
    logger_name: str, event: str, level: int = logging.INFO, **fields: Any
) -> None:
    """Emit one structured record: ``{"event": event, **fields}``."""
    logging.getLogger(logger_name).log(level, {"event": event, **fields})
