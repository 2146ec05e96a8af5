"""Domain errors raised by the service layer and rendered by the API."""

from typing import Any


class MealAppError(Exception):
    status_code = 500

    def __init__(self, message: str, details: dict[str, Any] | None = None, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.message}
        body.update(self.details)
        return body


class ValidationError(MealAppError):
    status_code = 400


class Unauthorized(MealAppError):
    status_code = 401


class NotFound(MealAppError):
    status_code = 404


class Forbidden(MealAppError):
    status_code = 403


class Conflict(MealAppError):
    status_code = 409


class DuplicateUpload(Conflict):
    """The exact same file bytes were uploaded before."""


class DuplicatePeriod(Conflict):
    """A file for an overlapping period of the same type was uploaded before."""


class ExternalServiceError(MealAppError):
    status_code = 502
