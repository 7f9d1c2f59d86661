"""Exceptions raised by the relay core and the record store."""

from typing import Optional


class RelayError(Exception):
    """Base class for caption-relay errors."""


class ConnectFailure(RelayError):
    """Raised when the upstream feed cannot be connected or reconnected."""


class PersistenceError(RelayError):
    """Raised when a record-store call fails."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class RecordNotFoundError(RelayError):
    """Raised when a transcription request record does not exist."""

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Transcription request {request_id} not found")


class SessionStateError(RelayError):
    """Raised when a session operation is invoked from the wrong state."""
