"""
Hashing Helpers

Canonical encoding and SHA-256 digests for ledger blocks:
- Canonical JSON (sorted keys, compact separators)
- SHA-256 hex digests
- Leading-zero difficulty checks (hex characters, not bits)

The canonical encoding makes a block hash independent of the order in
which record fields were inserted.
"""

import hashlib
import json
import re
from typing import Any


HASH_HEX_LENGTH = 64  # SHA-256 digest as hex
_HEX64 = re.compile(r'^[0-9a-f]{64}$')


def canonical_json(data: Any) -> str:
    """
    Encode data as canonical JSON.

    Args:
        data: Any JSON-compatible structure

    Returns:
        Compact JSON string with sorted keys
    """
    return json.dumps(
        data,
        sort_keys=True,
        separators=(',', ':'),
        ensure_ascii=False,
        default=str,
    )


def sha256_hex(data: bytes) -> str:
    """Compute the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def hash_object(data: Any) -> str:
    """Compute the SHA-256 hex digest of a structure's canonical JSON."""
    return sha256_hex(canonical_json(data).encode('utf-8'))


def difficulty_target(difficulty: int) -> str:
    """Prefix a hash must start with to satisfy the difficulty."""
    return '0' * difficulty


def meets_difficulty(hash_hex: str, difficulty: int) -> bool:
    """Check if a hex hash has at least `difficulty` leading zeros."""
    return isinstance(hash_hex, str) and hash_hex.startswith(difficulty_target(difficulty))


def count_leading_zeros(hash_hex: str) -> int:
    """Count leading zero hex characters in a hash."""
    return len(hash_hex) - len(hash_hex.lstrip('0'))


def is_sha256_hex(value: Any) -> bool:
    """True if value is a lowercase 64-character hex string."""
    return isinstance(value, str) and bool(_HEX64.match(value))


def to_json_native(data: Any) -> Any:
    """
    Detached copy of data exactly as canonical_json encodes it.

    Nested containers are rebuilt and non-JSON values (dates, etc.) become
    strings, so the stored form is the hashed form.
    """
    return json.loads(canonical_json(data))
