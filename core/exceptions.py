from typing import Any, Dict, Optional

from constants.messages import Messages


class AppError(Exception):
    """Base application error carrying a message key and an HTTP status."""

    status_code: int = 500
    default_key: str = "SERVER_ERROR"

    def __init__(
        self,
        message_key: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ):
        self.message_key = message_key or self.default_key
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message_key)

    def message(self, lang: str = Messages.DEFAULT_LANG) -> str:
        return Messages.get(self.message_key, lang)

    def to_dict(self, lang: str = Messages.DEFAULT_LANG) -> Dict[str, Any]:
        body = {"error": self.message(lang), "code": self.message_key}
        if self.details:
            body["details"] = self.details
        return body


class AuthError(AppError):
    status_code = 401
    default_key = "UNAUTHORIZED"


class NotFoundError(AppError):
    status_code = 404
    default_key = "SESSION_NOT_FOUND"


class ForbiddenError(AppError):
    status_code = 403
    default_key = "SESSION_FORBIDDEN"


class InvalidStateError(AppError):
    status_code = 400
    default_key = "INVALID_ACTION"


class GenerationInProgressError(InvalidStateError):
    status_code = 409
    default_key = "GENERATION_IN_PROGRESS"


class ValidationError(AppError):
    status_code = 400
    default_key = "INVALID_DATA"


class GenerationError(AppError):
    status_code = 503
    default_key = "GENERATION_FAILED"


class RateLimitError(AppError):
    status_code = 429
    default_key = "RATE_LIMITED"
