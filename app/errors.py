"""Application error taxonomy.

Every error carries the HTTP status it maps to. ``main.py`` turns them into
the ``{success, message, errors}`` envelope.
"""

from typing import Any


class AppError(Exception):
    """Base class for errors that are safe to show to API clients."""

    status_code: int = 500
    message: str = "Internal server error"

    def __init__(self, message: str | None = None, errors: list[dict[str, Any]] | None = None) -> None:
        self.message = message or self.message
        self.errors = errors
        super().__init__(self.message)

    def to_response(self) -> dict[str, Any]:
        """Render the error as a response envelope."""
        body: dict[str, Any] = {"success": False, "message": self.message}
        if self.errors:
            body["errors"] = self.errors
        return body


class ValidationError(AppError):
    status_code = 400
    message = "Validation failed"


class ConflictError(AppError):
    status_code = 409
    message = "Resource already exists"


class Unauthorized(AppError):
    status_code = 401
    message = "Access token required"


class TokenExpired(Unauthorized):
    message = "Token expired"


class TokenInvalid(Unauthorized):
    message = "Invalid token"


class SessionExpired(Unauthorized):
    message = "Session expired due to inactivity"


class InvalidCredentials(AppError):
    status_code = 401
    message = "Invalid credentials"


class AccountLocked(AppError):
    status_code = 423
    message = "Account is temporarily locked due to too many failed login attempts"


class InvalidTwoFactorCode(AppError):
    status_code = 400
    message = "Invalid two-factor authentication code"


class NoPendingSetup(AppError):
    status_code = 400
    message = "No setup session found. Please start the setup process again."


class InternalError(AppError):
    pass
