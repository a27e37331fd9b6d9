from __future__ import annotations


class MarketRunError(Exception):
    """Base for errors surfaced to API callers with a stable code."""

    status = 400
    code = "BAD_REQUEST"

    def __init__(self, message: str = "", *, code: str | None = None, details: dict | None = None):
        super().__init__(message or self.code)
        self.message = message or self.code
        if code:
            self.code = code
        self.details = details or {}

    def to_dict(self) -> dict:
        payload = {
            "ok": False,
            "error": self.code,
            "message": self.message,
            "status": int(self.status),
        }
        if self.details:
            payload["details"] = self.details
        return payload


class BadRequestError(MarketRunError):
    status = 400
    code = "BAD_REQUEST"


class ForbiddenError(MarketRunError):
    status = 403
    code = "FORBIDDEN"


class NotFoundError(MarketRunError):
    status = 404
    code = "NOT_FOUND"


class ConflictError(MarketRunError):
    status = 409
    code = "CONFLICT"


class UnauthorizedError(MarketRunError):
    status = 401
    code = "UNAUTHORIZED"
