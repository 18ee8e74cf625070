# Overview: Service error taxonomy shared by services and routes.

"""
Every service-layer failure that a caller can act on is a ServiceError.
Routes render them as {"success": false, "message": ...} with the class's
status_code. Anything that is not a ServiceError is an unexpected failure
and is logged and rendered as a 500 by the route.
"""

from __future__ import annotations


class ServiceError(Exception):
    """Base class for expected, caller-visible failures."""
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"success": False, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(ServiceError):
    """Malformed or missing input."""
    status_code = 400


class ConfigurationError(ValidationError):
    """Caller identity is missing a link the operation needs (e.g. agent id)."""


class NotFoundError(ServiceError):
    """No such order, agent, agency or product."""
    status_code = 404


class ForbiddenError(ServiceError):
    """Role or ownership mismatch."""
    status_code = 403


class ConflictError(ServiceError):
    """Business rule violation detected before any mutation."""
    status_code = 400


class InsufficientStockError(ConflictError):
    pass


class IllegalTransitionError(ConflictError):
    pass


class InvalidOTPError(ConflictError):
    """Wrong and expired codes deliberately share one message."""

    def __init__(self, message: str = "Invalid or expired OTP"):
        super().__init__(message)


class InternalError(ServiceError):
    """Storage or transaction failure."""
    status_code = 500
