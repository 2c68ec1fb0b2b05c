"""
Engine error taxonomy.

Services raise these; the FastAPI handler in main.py renders them as
``{"error": code, "detail": message, ...}`` with the class's HTTP status.
"""

from typing import Optional


class EngineError(Exception):
    status_code = 500
    code = "engine_error"

    def __init__(self, detail: str, extra: Optional[dict] = None):
        super().__init__(detail)
        self.detail = detail
        self.extra = extra or {}

    def to_dict(self) -> dict:
        return {"error": self.code, "detail": self.detail, **self.extra}


class Unauthenticated(EngineError):
    """No caller identity was forwarded by the auth service."""
    status_code = 401
    code = "unauthenticated"


class NotFound(EngineError):
    """Attempt or test does not exist."""
    status_code = 404
    code = "not_found"


class Forbidden(EngineError):
    """Caller is not the student who owns the attempt."""
    status_code = 403
    code = "forbidden"


class SectionLocked(EngineError):
    """
    Write targeted a locked or completed section.

    Non-fatal: the client should refresh its authoritative state.
    """
    status_code = 423
    code = "section_locked"


class Conflict(EngineError):
    """Operation is not valid in the attempt's current state."""
    status_code = 409
    code = "conflict"


class Transient(EngineError):
    """Storage or network failure. Safe to retry."""
    status_code = 503
    code = "transient"

    def __init__(self, detail: str, retry_after: int = 1, extra: Optional[dict] = None):
        super().__init__(detail, extra)
        self.retry_after = retry_after


class ConfigurationError(EngineError):
    """Test definition cannot be run (no sections, invalid duration)."""
    status_code = 422
    code = "configuration_error"
