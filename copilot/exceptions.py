"""Error types raised by the ingestion subsystem."""


class CopilotError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code: int = 500
    retryable: bool = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(CopilotError):
    """Malformed request. Rejected before any state change."""

    status_code = 400


class ChunkTooLargeError(ValidationError):
    status_code = 413


class SessionNotFoundError(CopilotError):
    status_code = 404

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session '{session_id}' not found")
        self.session_id = session_id


class ChunkNotFoundError(CopilotError):
    status_code = 404

    def __init__(self, session_id: str, chunk_index: int) -> None:
        super().__init__(f"Chunk {chunk_index} of session '{session_id}' not found")
        self.session_id = session_id
        self.chunk_index = chunk_index


class TicketError(CopilotError):
    """Upload ticket is unknown or expired."""

    status_code = 403


class TicketAlreadyUsedError(TicketError):
    status_code = 409


class TransientStorageError(CopilotError):
    """Chunk write failed. Nothing was committed and the client may retry."""

    status_code = 503
    retryable = True
