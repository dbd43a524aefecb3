"""Errors: domain exception hierarchy for the Edemy API.

Invariants:
    - Every AppError carries a machine-readable code and an HTTP status
    - to_response() never includes internal details, only message/code/extra

Design Decisions:
    - Services raise these directly; routers do not translate exceptions
    - Extra keyword arguments (field, action, ...) are passed through to the
      client unchanged so the frontend can branch on them
"""

from typing import Any, Dict


class AppError(Exception):
    status_code = 500
    default_code = "INTERNAL_ERROR"

    def __init__(self, message: str, code: str = None, **extra: Any):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.extra = extra

    def to_response(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"success": False, "message": self.message, "code": self.code}
        body.update(self.extra)
        return body


class BadRequestError(AppError):
    status_code = 400
    default_code = "BAD_REQUEST"


class UnauthorizedError(AppError):
    status_code = 401
    default_code = "UNAUTHORIZED"


class ForbiddenError(AppError):
    status_code = 403
    default_code = "FORBIDDEN"


class NotFoundError(AppError):
    status_code = 404
    default_code = "NOT_FOUND"


class ConflictError(AppError):
    status_code = 409
    default_code = "CONFLICT"


class LockedError(AppError):
    status_code = 423
    default_code = "ACCOUNT_LOCKED"


class TooManyRequestsError(AppError):
    status_code = 429
    default_code = "RATE_LIMITED"


class ServiceError(AppError):
    status_code = 500
    default_code = "INTERNAL_ERROR"


class PaymentProviderError(AppError):
    status_code = 502
    default_code = "PAYMENT_PROVIDER_ERROR"


class ServiceUnavailableError(AppError):
    status_code = 503
    default_code = "SERVICE_UNAVAILABLE"
