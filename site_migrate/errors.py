"""Error taxonomy for archive, transfer and migration operations."""

from typing import Any, Dict, Optional


class MigrationError(Exception):
    """Base exception for site-migrate errors."""
    pass


class IntegrityError(MigrationError):
    """Checksum mismatch on archive read or upload verification."""
    pass


class FormatError(MigrationError):
    """Missing or malformed manifest, payload or container."""
    pass


class EncodingError(MigrationError):
    """Payload could not be serialized."""
    pass


class WriteError(MigrationError):
    """Container or chunk file could not be written."""
    pass


class NotFoundError(MigrationError):
    pass


class ConflictError(MigrationError):
    """Another job already holds the lock."""

    def __init__(self, context: str, lock: Optional[Dict[str, Any]] = None):
        self.context = context
        self.lock = lock or {}
        super().__init__(
            f"Another {context} job is running. Please wait until it finishes."
        )


class ConfirmationRequired(MigrationError):
    """Control-flow signal: a destructive step needs explicit confirmation."""

    def __init__(self, summary: Optional[Dict[str, Any]] = None):
        self.summary = summary or {}
        super().__init__("Confirmation required before continuing.")


class PartialWriteError(MigrationError):
    """An individual asset or row failed to copy or insert."""

    def __init__(self, message: str, table: Optional[str] = None):
        self.table = table
        super().__init__(message)


class DatabaseImportError(PartialWriteError):
    pass


class StepError(MigrationError):
    """A pipeline step failed; carries a user-facing title."""

    def __init__(self, title: str, message: str):
        self.title = title
        self.message = message
        super().__init__(f"{title}: {message}")


class ChunkError(MigrationError):
    """Failure scoped to a single chunk request."""
    pass


class InvalidChunkError(ChunkError):
    pass


class ChunkOutOfBoundsError(ChunkError):
    pass


class JobNotFoundError(ChunkError):
    pass


class JobCancelledError(ChunkError):
    pass


class DangerousStatementSkipped(UserWarning):
    """Raw SQL statement skipped by the DROP/TRUNCATE/unscoped DELETE filter."""

    def __init__(self, statement: str):
        self.statement = statement
        super().__init__(f"Skipped potentially dangerous query: {statement[:100]}")
