"""
Domain errors raised by the survey record store and its storage clients.

The HTTP layer maps each ``code`` to a status; nothing in here knows about
transport concerns.
"""

from __future__ import annotations


class SurveyError(Exception):
    """Base class for all survey intake failures."""

    code = "survey_error"
    message = "Survey error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.message)

    @property
    def detail(self) -> str:
        return str(self)


class ValidationError(SurveyError):
    """Input is missing or malformed. Retry only after fixing the request."""

    code = "validation_error"
    message = "Invalid submission"


class LimitReached(SurveyError):
    """The record has used up its revisions. Terminal for that identifier."""

    code = "limit_reached"
    message = "Update limit reached"

    def __init__(self, identifier: str, update_count: int, max_updates: int):
        self.identifier = identifier
        self.update_count = update_count
        self.max_updates = max_updates
        super().__init__(
            f"Store {identifier!r} has already been updated "
            f"{update_count} times (limit {max_updates})"
        )


class DuplicateIdentifier(SurveyError):
    """The storage engine rejected a second row for the same identifier."""

    code = "duplicate_identifier"
    message = "A survey for this store identifier already exists"

    def __init__(self, identifier: str):
        self.identifier = identifier
        super().__init__(
            f"A survey for store {identifier!r} was created concurrently; "
            "resubmit to update it"
        )


class NotFound(SurveyError):
    code = "not_found"
    message = "Survey not found"


class StorageUnavailable(SurveyError):
    """The storage engine failed. Transient; the store never retries."""

    code = "storage_unavailable"
    message = "Database error"
