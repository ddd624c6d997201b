"""Exceptions raised by the notes service.

Each NotesError carries the HTTP status and error code it is rendered with, so
the API layer can turn any of them into a JSON response in one place.
"""

from typing import Any, Optional


class NotesError(Exception):
    """Base class for errors surfaced to API clients."""

    status_code = 500
    error = "internal_error"

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        body = {"error": self.error, "message": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


class NoteNotFoundError(NotesError):
    status_code = 404
    error = "not_found"

    def __init__(self, note_id: int):
        super().__init__(f"Note {note_id} not found")
        self.note_id = note_id


class InvalidNoteError(NotesError):
    status_code = 400
    error = "invalid_request"


class StoreUnavailableError(NotesError):
    status_code = 503
    error = "store_unavailable"


class ConfigurationError(RuntimeError):
    """Raised at startup when required settings are missing or invalid."""
