"""
Error taxonomy for the migration engine.

Connection-level errors abort the enclosing operation; record-level errors
are absorbed by the caller and counted.
"""


class MigrationError(Exception):
    """Base class for every error raised by the migration engine."""


class ConnectionFailure(MigrationError):
    """The legacy store or the target system could not be reached."""


class RecordError(MigrationError):
    """A single record could not be used. Always recovered locally."""


class ParseFailure(RecordError):
    """A raw legacy record or NDJSON line could not be decoded."""


class ValidationFailure(RecordError):
    """A canonical record breaks a structural invariant."""


class StateConflict(MigrationError):
    """Illegal migration session state transition."""


class ForwardFailure(MigrationError):
    """The target system rejected or failed a forwarded job."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ForwardTimeout(ForwardFailure):
    """The target system did not answer within the configured timeout."""


class PayloadTooLarge(MigrationError):
    def __init__(self, limit: int):
        super().__init__(f"request body exceeds {limit} bytes")
        self.limit = limit


class WriteFailure(MigrationError):
    """The export destination could not be fully written."""
