"""
errors.py - Error Types

Every failure the store, alert engine, parsers or command runner can
report is one of these. Each carries a short machine-readable code that
the HTTP layer turns into a status code.
"""

from __future__ import annotations


class HostmonError(Exception):
    code = "internal_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(HostmonError):
    """Unknown alert configuration or history id."""

    code = "not_found"


class AlertStateError(HostmonError):
    """The alert is not in a state that allows the requested transition."""

    code = "invalid_state"


class ValidationError(HostmonError):
    """Bad caller input, e.g. a timestamp that is not ISO-8601."""

    code = "validation_error"


class SchemaInvariantError(HostmonError):
    """Stored data breaks a schema rule (a sample without its network row)."""

    code = "schema_invariant"


class StorageFailure(HostmonError):
    code = "storage_failure"


class TransportFailure(HostmonError):
    """A diagnostic command could not be run at all."""

    code = "transport_failure"


class ParseFailure(HostmonError):
    """
    Diagnostic output did not match any known pattern.

    `excerpt` holds the start of the offending text so the caller can see
    what came back.
    """

    code = "parse_failure"

    def __init__(self, message: str, excerpt: str = ""):
        super().__init__(message)
        self.excerpt = excerpt
