"""
attendchain - hash-linked, append-only attendance ledger.

Org units, sub-units and leaf entities each own a proof-of-work chain;
child chains are anchored to their parent's history at creation.
"""

from .errors import (
    AttendChainError,
    NotFoundError,
    InvalidArgumentError,
    PreconditionViolation,
    ConfigError,
    StorageError,
)
from .integration.manager import ChainManager

__version__ = "1.0.0"

__all__ = [
    'ChainManager',
    'AttendChainError',
    'NotFoundError',
    'InvalidArgumentError',
    'PreconditionViolation',
    'ConfigError',
    'StorageError',
]
