"""
Application Errors

Every failure a request handler can report maps to one of these classes.
The FastAPI exception handlers in main.py turn them into
``{"ok": false, "message": ...}`` with the class's HTTP status.
"""

from typing import Optional


class MilkError(Exception):
    """Base class for errors reported to API clients."""

    status_code: int = 500
    default_message: str = "Internal error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidInput(MilkError):
    """Missing or malformed request fields."""
    status_code = 400
    default_message = "Invalid input"


class DuplicateAccount(MilkError):
    status_code = 409
    default_message = "Account already exists"


class Unauthenticated(MilkError):
    """Missing, invalid or expired session token."""
    status_code = 401
    default_message = "Unauthenticated"


class MissingPassword(Unauthenticated):
    default_message = "Password required"


class InvalidCredentials(Unauthenticated):
    default_message = "Wrong password"


class NotFound(MilkError):
    status_code = 404
    default_message = "Not found"


class Internal(MilkError):
    status_code = 500
