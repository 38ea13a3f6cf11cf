"""
Typed errors raised by the access-control write paths.

Each error carries a stable ``code`` (the kind reported to callers) and an
HTTP status used by the exception handler in ``app.main``. Resolution and
menu reads never raise these for "no access": absence from the result is
the denial.
"""
from typing import Any, Optional
from fastapi import status


class AccessControlError(Exception):
    """Base class for catalog mutation errors."""

    code: str = "INTERNAL_ERROR"
    message: str = "An internal error occurred"
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: Optional[str] = None, code: Optional[str] = None, **details: Any) -> None:
        self.message = message or self.message
        self.code = code or self.code
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"kind": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(AccessControlError):
    """Missing or malformed field, rejected before any write."""

    code = "VALIDATION_ERROR"
    message = "Invalid request"
    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(AccessControlError):
    """Referenced role, permission, feature, plan, tenant, user or menu is absent."""

    code = "NOT_FOUND"
    message = "Resource not found"
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(AccessControlError):
    """Duplicate key or delete of a row that is still referenced."""

    code = "CONFLICT"
    message = "Conflicting resource state"
    status_code = status.HTTP_409_CONFLICT


class CyclicMenuError(ConflictError):
    """A parent assignment would make the menu hierarchy cyclic."""

    code = "CYCLIC_MENU"
    message = "Menu parent assignment would create a cycle"


class AuthorizationError(AccessControlError):
    """Non-super-admin actor mutating a protected (system) record."""

    code = "AUTHORIZATION_ERROR"
    message = "Not allowed to modify this resource"
    status_code = status.HTTP_403_FORBIDDEN


class SubscriptionMismatchError(AccessControlError):
    """Feature permission assignment names a feature the plan does not own."""

    code = "SUBSCRIPTION_MISMATCH"
    message = "Feature does not belong to the subscription plan"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
