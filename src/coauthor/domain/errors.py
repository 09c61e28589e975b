from __future__ import annotations

"""Domain error taxonomy.

Every error carries the HTTP status it maps to and a message that is safe to
show to a client. Details meant for operators go to the logs, not here.
"""

from typing import Optional


class CoauthorError(Exception):
    status_code: int = 500
    default_message: str = "Request failed"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class InvalidRequest(CoauthorError):
    status_code = 400
    default_message = "Invalid request"


class ValidationFailure(InvalidRequest):
    default_message = "Validation failed"


class Unauthorized(CoauthorError):
    status_code = 403
    default_message = "Access denied"


class NotFound(CoauthorError):
    status_code = 404
    default_message = "Not found"


class ProjectNotFound(NotFound):
    default_message = "Project not found"


class AIServiceUnavailable(CoauthorError):
    status_code = 503
    default_message = "AI service is temporarily unavailable. Please try again in a moment."

    def __init__(self, message: Optional[str] = None, *, attempts: int = 0, last_error: Optional[str] = None) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


class PersistenceFailure(CoauthorError):
    status_code = 500
    default_message = "Failed to save changes"
