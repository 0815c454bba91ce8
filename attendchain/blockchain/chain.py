"""
Chain Module

Generic append-only sequence of sealed blocks:
- Genesis seeding with a caller-chosen previous hash
- Append with automatic linkage to the tip
- Structural validation (hash, proof of work, continuity)

Every mutation holds the chain's own lock from reading the tip until the
new block is pushed, so two concurrent appends cannot both link to the
same predecessor.
"""

import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union

from .block import Block, DEFAULT_DIFFICULTY, ProofOfWork, utc_timestamp
from ..errors import PreconditionViolation


Payload = Union[Dict[str, Any], Sequence[Dict[str, Any]]]


@dataclass(frozen=True)
class StructureReport:
    """Result of a chain's structural validation."""
    valid: bool
    errors: List[str] = field(default_factory=list)
    block_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'valid': self.valid,
            'errors': list(self.errors),
            'block_count': self.block_count,
        }


class Chain:
    """
    An append-only chain of blocks for one entity.

    Blocks are never mutated or removed once appended.
    """

    def __init__(self, chain_id: str, tier_tag: str,
                 difficulty: int = DEFAULT_DIFFICULTY):
        """
        Initialize an empty chain.

        Args:
            chain_id: Unique identifier of the chain
            tier_tag: Tier the chain belongs to
            difficulty: PoW difficulty (leading zero hex characters)
        """
        self.chain_id = chain_id
        self.tier_tag = tier_tag
        self._pow = ProofOfWork(difficulty)
        self._blocks: List[Block] = []
        self._lock = threading.RLock()

    @property
    def difficulty(self) -> int:
        return self._pow.difficulty

    @property
    def blocks(self) -> List[Block]:
        """Get the blocks (read-only view)."""
        return list(self._blocks)

    @property
    def length(self) -> int:
        return len(self._blocks)

    @property
    def tip(self) -> Optional[Block]:
        """The most recently appended block, or None for an empty chain."""
        return self._blocks[-1] if self._blocks else None

    @property
    def genesis(self) -> Optional[Block]:
        return self._blocks[0] if self._blocks else None

    def append_genesis(self, payload: Payload, previous_hash: str) -> Block:
        """
        Mine block 0.

        Args:
            payload: Genesis record(s)
            previous_hash: "0" for a root chain, else the parent's tip hash

        Raises:
            PreconditionViolation: If the chain already has blocks
        """
        with self._lock:
            if self._blocks:
                raise PreconditionViolation(
                    f"Chain {self.chain_id} already has a genesis block"
                )
            block = Block.seal(
                index=0,
                payload=self._normalize(payload),
                previous_hash=previous_hash,
                tier_tag=self.tier_tag,
                difficulty=self.difficulty,
            )
            self._blocks.append(block)
            return block

    def append(self, payload: Payload) -> Block:
        """
        Mine a new block linked to the current tip.

        Args:
            payload: A record or a list of records

        Returns:
            The newly appended block

        Raises:
            PreconditionViolation: If called before genesis
        """
        with self._lock:
            previous = self.tip
            if previous is None:
                raise PreconditionViolation(
                    f"Cannot append to chain {self.chain_id} before genesis"
                )
            block = Block.seal(
                index=len(self._blocks),
                payload=self._normalize(payload),
                previous_hash=previous.hash,
                tier_tag=self.tier_tag,
                difficulty=self.difficulty,
            )
            self._blocks.append(block)
            return block

    @staticmethod
    def _normalize(payload: Payload) -> List[Dict[str, Any]]:
        if isinstance(payload, dict):
            return [payload]
        return list(payload)

    def _load_blocks(self, blocks: Sequence[Block]) -> None:
        """Adopt already-sealed blocks (used when restoring from storage)."""
        with self._lock:
            if self._blocks:
                raise PreconditionViolation(
                    f"Chain {self.chain_id} is not empty"
                )
            self._blocks.extend(blocks)

    def validate_structure(self) -> StructureReport:
        """
        Validate every block's hash/PoW and the previous-hash continuity.

        Never raises; an empty chain is reported invalid.
        """
        blocks = self.blocks
        if not blocks:
            return StructureReport(valid=False, errors=["No blocks in chain"], block_count=0)

        errors = []
        for i, block in enumerate(blocks):
            if not block.is_valid(self.difficulty):
                errors.append(f"Block {i} is invalid: hash or proof-of-work mismatch")
            if i > 0 and block.previous_hash != blocks[i - 1].hash:
                errors.append(
                    f"Block {i}: previous_hash doesn't match block {i - 1}'s hash"
                )

        return StructureReport(valid=not errors, errors=errors, block_count=len(blocks))

    def hash_set(self) -> frozenset:
        """Every hash this chain has ever sealed."""
        return frozenset(block.hash for block in self._blocks)

    def index_of_hash(self, block_hash: str) -> int:
        """Index of the block with the given hash, or -1."""
        for block in self.blocks:
            if block.hash == block_hash:
                return block.index
        return -1

    def stats(self) -> Dict[str, Any]:
        """Summary counters for display."""
        genesis, tip = self.genesis, self.tip
        return {
            'chain_id': self.chain_id,
            'tier_tag': self.tier_tag,
            'block_count': self.length,
            'difficulty': self.difficulty,
            'genesis_hash': genesis.hash if genesis else None,
            'latest_hash': tip.hash if tip else None,
            'timestamp': utc_timestamp(),
        }

    def to_dict(self) -> Dict[str, Any]:
        """Serialize blocks with a validation summary."""
        report = self.validate_structure()
        return {
            'chain_id': self.chain_id,
            'tier_tag': self.tier_tag,
            'difficulty': self.difficulty,
            'validation': {'valid': report.valid, 'errors': report.errors},
            'blocks': [block.to_dict() for block in self.blocks],
        }
