"""
Unit tests for the Block and Chain modules.

Tests:
- Canonical hashing helpers
- Proof of Work
- Block sealing and immutability
- Chain genesis, append and structural validation
"""

import dataclasses

import pytest

from attendchain.blockchain.block import (
    Block, ProofOfWork, compute_block_hash,
    ROOT_PREVIOUS_HASH, MAX_DIFFICULTY
)
from attendchain.blockchain.chain import Chain
from attendchain.core_crypto.hashing import (
    canonical_json, hash_object, meets_difficulty,
    count_leading_zeros, is_sha256_hex
)
from attendchain.errors import InvalidArgumentError, PreconditionViolation


class TestHashing:
    """Tests for the canonical encoding helpers."""

    def test_canonical_json_ignores_key_order(self):
        """Insertion order must not change the encoding."""
        assert canonical_json({'b': 1, 'a': 2}) == canonical_json({'a': 2, 'b': 1})
        assert canonical_json({'b': 1, 'a': 2}) == '{"a":2,"b":1}'

    def test_hash_object_is_hex_digest(self):
        digest = hash_object({'x': 1})
        assert is_sha256_hex(digest)
        assert digest == hash_object({'x': 1})

    def test_meets_difficulty(self):
        assert meets_difficulty('00ab' + 'f' * 60, 2)
        assert not meets_difficulty('0fab' + 'f' * 60, 2)

    def test_count_leading_zeros(self):
        assert count_leading_zeros('000a' + 'f' * 60) == 3
        assert count_leading_zeros('f' * 64) == 0

    def test_is_sha256_hex_rejects_bad_values(self):
        assert not is_sha256_hex('abc')
        assert not is_sha256_hex('G' * 64)
        assert not is_sha256_hex(None)


class TestProofOfWork:
    """Tests for Proof of Work."""

    def test_target_is_zero_prefix(self):
        """Target should be `difficulty` zero hex characters."""
        assert ProofOfWork(difficulty=3).target == '000'

    def test_hash_meets_target(self):
        pow = ProofOfWork(difficulty=2)
        assert pow.hash_meets_target('00' + 'f' * 62)
        assert not pow.hash_meets_target('0f' + 'f' * 62)

    def test_mining_finds_valid_nonce(self):
        """Mining should return a nonce whose hash meets the target."""
        pow = ProofOfWork(difficulty=2)
        payload = ({'type': 'TEST'},)
        nonce, block_hash = pow.mine(0, '2024-01-01T00:00:00+00:00', payload, ROOT_PREVIOUS_HASH)

        assert block_hash.startswith('00')
        assert block_hash == compute_block_hash(
            0, '2024-01-01T00:00:00+00:00', payload, ROOT_PREVIOUS_HASH, nonce
        )

    def test_invalid_difficulty_rejected(self):
        """Difficulty outside 1..64 should raise error."""
        with pytest.raises(InvalidArgumentError):
            ProofOfWork(difficulty=0)
        with pytest.raises(InvalidArgumentError):
            ProofOfWork(difficulty=MAX_DIFFICULTY + 1)
        with pytest.raises(ValueError):
            ProofOfWork(difficulty=True)


class TestBlock:
    """Tests for Block structure."""

    def test_sealed_block_is_valid(self):
        block = Block.seal(0, [{'type': 'TEST'}], ROOT_PREVIOUS_HASH, 'test', difficulty=2)

        assert block.is_valid(2)
        assert block.hash.startswith('00')
        assert block.compute_hash() == block.hash
        assert block.leading_zeros >= 2

    def test_block_immutable(self):
        """Block should be immutable (frozen)."""
        block = Block.seal(0, [{'type': 'TEST'}], ROOT_PREVIOUS_HASH, 'test', difficulty=1)

        with pytest.raises(dataclasses.FrozenInstanceError):
            block.nonce = 42

    def test_record_is_first_payload_entry(self):
        block = Block.seal(0, [{'type': 'A'}, {'type': 'B'}], ROOT_PREVIOUS_HASH, 'test', difficulty=1)
        assert block.record == {'type': 'A'}

    def test_record_of_empty_payload(self):
        block = Block.seal(0, [], ROOT_PREVIOUS_HASH, 'test', difficulty=1)
        assert block.record == {}

    def test_payload_tamper_detected(self):
        """Changing a record after sealing invalidates the block."""
        block = Block.seal(0, [{'status': 'Present'}], ROOT_PREVIOUS_HASH, 'test', difficulty=1)
        block.payload[0]['status'] = 'Absent'

        assert not block.is_valid(1)

    def test_difficulty_above_mined_level_fails(self):
        block = Block.seal(0, [{'type': 'TEST'}], ROOT_PREVIOUS_HASH, 'test', difficulty=1)
        assert not block.is_valid(MAX_DIFFICULTY)

    def test_dict_round_trip_preserves_hash(self):
        block = Block.seal(3, [{'type': 'TEST', 'n': 1}], 'ab' * 32, 'test', difficulty=1)
        restored = Block.from_dict(block.to_dict())

        assert restored == block
        assert restored.is_valid(1)


class TestChain:
    """Tests for the generic append-only chain."""

    def test_append_before_genesis_rejected(self):
        chain = Chain('c1', 'test', difficulty=1)
        with pytest.raises(PreconditionViolation):
            chain.append({'type': 'X'})

    def test_second_genesis_rejected(self):
        chain = Chain('c1', 'test', difficulty=1)
        chain.append_genesis({'type': 'G'}, ROOT_PREVIOUS_HASH)
        with pytest.raises(PreconditionViolation):
            chain.append_genesis({'type': 'G'}, ROOT_PREVIOUS_HASH)

    def test_genesis_uses_given_previous_hash(self):
        chain = Chain('c1', 'test', difficulty=1)
        parent_hash = 'f' * 64
        genesis = chain.append_genesis({'type': 'G'}, parent_hash)

        assert genesis.index == 0
        assert genesis.previous_hash == parent_hash
        assert chain.genesis is genesis

    def test_append_links_to_tip(self):
        chain = Chain('c1', 'test', difficulty=1)
        genesis = chain.append_genesis({'type': 'G'}, ROOT_PREVIOUS_HASH)
        second = chain.append({'type': 'U'})
        third = chain.append([{'type': 'U'}, {'type': 'U2'}])

        assert second.index == 1 and second.previous_hash == genesis.hash
        assert third.index == 2 and third.previous_hash == second.hash
        assert len(third.payload) == 2
        assert chain.tip is third
        assert chain.length == 3

    def test_empty_chain_invalid(self):
        """An empty chain is reported invalid, never raised."""
        report = Chain('c1', 'test', difficulty=1).validate_structure()

        assert not report.valid
        assert report.errors == ["No blocks in chain"]
        assert report.block_count == 0

    def test_valid_chain(self):
        chain = Chain('c1', 'test', difficulty=1)
        chain.append_genesis({'type': 'G'}, ROOT_PREVIOUS_HASH)
        for i in range(3):
            chain.append({'type': 'U', 'n': i})

        report = chain.validate_structure()
        assert report.valid
        assert report.errors == []
        assert report.block_count == 4

    def test_blocks_returns_copy(self):
        chain = Chain('c1', 'test', difficulty=1)
        chain.append_genesis({'type': 'G'}, ROOT_PREVIOUS_HASH)
        chain.blocks.clear()

        assert chain.length == 1

    def test_tampered_block_reported_once(self):
        chain = Chain('c1', 'test', difficulty=1)
        chain.append_genesis({'type': 'G'}, ROOT_PREVIOUS_HASH)
        chain.append({'type': 'U', 'value': 1})
        chain.append({'type': 'U', 'value': 2})

        chain.blocks[1].payload[0]['value'] = 99
        report = chain.validate_structure()

        assert not report.valid
        assert report.errors == ["Block 1 is invalid: hash or proof-of-work mismatch"]

    def test_hash_lookup(self):
        chain = Chain('c1', 'test', difficulty=1)
        genesis = chain.append_genesis({'type': 'G'}, ROOT_PREVIOUS_HASH)
        second = chain.append({'type': 'U'})

        assert chain.index_of_hash(second.hash) == 1
        assert chain.index_of_hash('0' * 64) == -1
        assert chain.hash_set() == {genesis.hash, second.hash}

    def test_stats(self):
        chain = Chain('c1', 'test', difficulty=1)
        genesis = chain.append_genesis({'type': 'G'}, ROOT_PREVIOUS_HASH)
        stats = chain.stats()

        assert stats['block_count'] == 1
        assert stats['genesis_hash'] == genesis.hash
        assert stats['latest_hash'] == genesis.hash
