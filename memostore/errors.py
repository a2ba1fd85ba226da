from typing import Optional


class FatalMigrationError(Exception):
    def __init__(self, message: str, version: Optional[int] = None, name: Optional[str] = None):
        self.version = version
        self.name = name
        if version is not None:
            message = f"migration v{version} ({name}) failed: {message}"
        super().__init__(message)


class IdempotencyViolation(FatalMigrationError):
    """A step finished but its expected post-condition does not hold."""


class QueryComposeError(ValueError):
    def __init__(self, field: str, value: str, reason: str):
        self.field = field
        self.value = value
        super().__init__(f"{field}={value!r}: {reason}")
