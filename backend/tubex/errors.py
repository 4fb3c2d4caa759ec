# Overview: Typed application errors carrying an HTTP-style status code.

from __future__ import annotations


class AppError(Exception):
    """
    Base class for domain errors surfaced to API callers.

    Services raise these; routes translate them into JSON responses using
    status_code. Anything that is not an AppError is treated as a 500.
    """
    status_code = 500

    def __init__(self, message: str, status_code: int | None = None, details: dict | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"success": False, "error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(AppError):
    """400-level input or state-machine problem."""
    status_code = 400


class ForbiddenError(AppError):
    """403: actor may not perform this mutation."""
    status_code = 403


class NotFoundError(AppError):
    """404: referenced entity does not exist."""
    status_code = 404


class ConflictError(AppError):
    """409-level business rule conflict (e.g., product already in a price list)."""
    status_code = 409


class InternalError(AppError):
    """500: unexpected failure the caller cannot fix (e.g., migration count mismatch)."""
    status_code = 500
