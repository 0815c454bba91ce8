"""
Block Module

Implements the sealed unit of every ledger chain:
- SHA-256 over a canonical encoding of the block header and payload
- Proof of Work with a leading-zero hex target
- Immutable blocks (frozen dataclass)

A block is only constructed once mining has produced its final nonce
and hash, so no caller ever sees a block in an unsealed state.
"""

import itertools
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Tuple

from ..core_crypto.hashing import (
    count_leading_zeros,
    hash_object,
    meets_difficulty,
    to_json_native,
)
from ..errors import InvalidArgumentError

logger = logging.getLogger(__name__)


# ============================================================================
# Constants
# ============================================================================

ROOT_PREVIOUS_HASH = "0"  # previous_hash of a root chain's genesis block
DEFAULT_DIFFICULTY = 4  # Number of leading zero hex characters required
MAX_DIFFICULTY = 64


def utc_timestamp() -> str:
    """Current time as an ISO-8601 UTC string."""
    return datetime.now(timezone.utc).isoformat()


def compute_block_hash(
    index: int,
    creation_time: str,
    payload: Iterable[Dict[str, Any]],
    previous_hash: str,
    nonce: int
) -> str:
    """Compute the hash for a block's fields (public function)."""
    return hash_object({
        'index': index,
        'creation_time': creation_time,
        'payload': list(payload),
        'previous_hash': previous_hash,
        'nonce': nonce,
    })


# ============================================================================
# Proof of Work
# ============================================================================

class ProofOfWork:
    """
    Proof of Work with adjustable difficulty.

    Difficulty is measured in leading zero HEX CHARACTERS of the hash.
    There is no iteration cap: mining runs until a nonce is found.
    """

    def __init__(self, difficulty: int = DEFAULT_DIFFICULTY):
        """
        Initialize PoW with given difficulty.

        Args:
            difficulty: Number of leading zero hex characters (1-64)
        """
        if isinstance(difficulty, bool) or not isinstance(difficulty, int) \
                or not 1 <= difficulty <= MAX_DIFFICULTY:
            raise InvalidArgumentError(
                f"Difficulty must be an integer between 1 and {MAX_DIFFICULTY}"
            )
        self.difficulty = difficulty

    @property
    def target(self) -> str:
        """Prefix a valid hash must start with."""
        return '0' * self.difficulty

    def hash_meets_target(self, hash_hex: str) -> bool:
        """Check if a hash meets the difficulty target."""
        return meets_difficulty(hash_hex, self.difficulty)

    def mine(
        self,
        index: int,
        creation_time: str,
        payload: Tuple[Dict[str, Any], ...],
        previous_hash: str
    ) -> Tuple[int, str]:
        """
        Search for a nonce whose block hash meets the target.

        Returns:
            Tuple of (nonce, hash)
        """
        for nonce in itertools.count():
            block_hash = compute_block_hash(
                index, creation_time, payload, previous_hash, nonce
            )
            if self.hash_meets_target(block_hash):
                return nonce, block_hash
        raise AssertionError("unreachable")


# ============================================================================
# Block Structure (Immutable)
# ============================================================================

@dataclass(frozen=True)
class Block:
    """
    Immutable block structure.

    The payload tuple holds transaction records (dicts). The tuple and the
    block fields cannot be reassigned; validation still recomputes the hash
    so in-memory tampering with a record is detected.
    """
    index: int
    creation_time: str
    payload: Tuple[Dict[str, Any], ...]
    previous_hash: str
    nonce: int
    hash: str
    tier_tag: str

    @classmethod
    def seal(
        cls,
        index: int,
        payload: Iterable[Dict[str, Any]],
        previous_hash: str,
        tier_tag: str,
        difficulty: int = DEFAULT_DIFFICULTY
    ) -> 'Block':
        """
        Build and mine a new block.

        Args:
            index: Position in the chain
            payload: Transaction records (stored as detached JSON-native copies)
            previous_hash: Hash this block links to
            tier_tag: Tier of the owning chain
            difficulty: Leading zero hex characters required

        Returns:
            The sealed block
        """
        records = tuple(to_json_native(dict(record)) for record in payload)
        creation_time = utc_timestamp()
        nonce, block_hash = ProofOfWork(difficulty).mine(
            index, creation_time, records, previous_hash
        )
        block = cls(
            index=index,
            creation_time=creation_time,
            payload=records,
            previous_hash=previous_hash,
            nonce=nonce,
            hash=block_hash,
            tier_tag=tier_tag,
        )
        logger.debug(
            "block_mined",
            extra={"tier": tier_tag, "index": index, "nonce": nonce, "hash": block_hash},
        )
        return block

    def compute_hash(self) -> str:
        """Recompute the hash from the stored fields."""
        return compute_block_hash(
            self.index, self.creation_time, self.payload,
            self.previous_hash, self.nonce
        )

    def is_valid(self, difficulty: int = DEFAULT_DIFFICULTY) -> bool:
        """
        Check the block against its own hash.

        True only if the recomputed hash equals the stored hash and the
        stored hash satisfies the leading-zero target.
        """
        if self.compute_hash() != self.hash:
            return False
        return meets_difficulty(self.hash, difficulty)

    @property
    def record(self) -> Dict[str, Any]:
        """The block's first transaction record (empty dict if none)."""
        return self.payload[0] if self.payload else {}

    @property
    def leading_zeros(self) -> int:
        return count_leading_zeros(self.hash)

    def to_dict(self) -> Dict[str, Any]:
        """Convert block to dictionary for serialization."""
        return {
            'index': self.index,
            'creation_time': self.creation_time,
            'payload': [dict(record) for record in self.payload],
            'previous_hash': self.previous_hash,
            'nonce': self.nonce,
            'hash': self.hash,
            'tier_tag': self.tier_tag,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Block':
        """Create block from dictionary."""
        return cls(
            index=data['index'],
            creation_time=data['creation_time'],
            payload=tuple(dict(record) for record in data['payload']),
            previous_hash=data['previous_hash'],
            nonce=data['nonce'],
            hash=data['hash'],
            tier_tag=data['tier_tag'],
        )

    def __str__(self) -> str:
        return (
            f"Block #{self.index} [{self.tier_tag}]\n"
            f"  Hash: {self.hash[:16]}...\n"
            f"  Prev: {self.previous_hash[:16]}...\n"
            f"  Nonce: {self.nonce}\n"
            f"  Records: {len(self.payload)}"
        )
