"""
Exception Taxonomy

Lookup and argument errors reach the calling collaborator as distinct
types so they can be translated into user-facing responses.
Precondition violations mean a bug upstream and are not meant to be caught.
Structural violations are never raised: the validator reports them as data.
"""


class AttendChainError(Exception):
    """Base exception for attendchain."""


class NotFoundError(AttendChainError, LookupError):
    """Unknown chain id."""


class InvalidArgumentError(AttendChainError, ValueError):
    """Unrecognized event status or missing required creation field."""


class PreconditionViolation(AttendChainError, RuntimeError):
    """Ledger operation called in an impossible state (e.g. append before genesis)."""


class ConfigError(AttendChainError):
    """Configuration is missing, invalid, or inconsistent."""


class StorageError(AttendChainError):
    """Persisted ledger data could not be read or written."""
