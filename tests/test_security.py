"""
Security tests for the ledger.

Tests specifically for tampering scenarios:
- Record edits after sealing
- Swapped or relinked blocks
- Invalid inputs at the manager boundary
- Caller objects aliased into sealed records
- Concurrent appends to one chain
"""

import dataclasses
import datetime
import threading

import pytest

from attendchain.errors import InvalidArgumentError


class TestTamperDetection:
    """In-memory tampering is caught by structural validation."""

    def test_record_edit_names_block(self, hierarchy):
        manager = hierarchy.manager
        manager.record_event_for_entity(hierarchy.ada.chain_id, "Absent", "2024-01-10")
        manager.record_event_for_entity(hierarchy.ada.chain_id, "Present", "2024-01-11")

        hierarchy.ada.blocks[1].payload[0]['status'] = "Present"
        report = hierarchy.ada.validate_structure()

        assert not report.valid
        assert len(report.errors) == 1
        assert "Block 1" in report.errors[0]
        assert not manager.validate_system()['is_valid']

    def test_tampered_org_unit_fails_system(self, hierarchy):
        hierarchy.org_unit.blocks[0].payload[0]['name'] = "Forged"
        result = hierarchy.manager.validate_system()

        assert not result['is_valid']
        assert result['org_units'][0]['errors'] == [
            "Block 0 is invalid: hash or proof-of-work mismatch"
        ]
        assert result['error_count'] == 1

    def test_tampered_report_says_no(self, hierarchy):
        hierarchy.alan.blocks[0].payload[0]['external_key'] = "R-999"
        report = hierarchy.manager.generate_validation_report()

        assert "**System Valid:** ✗ NO" in report

    def test_block_fields_cannot_be_reassigned(self, hierarchy):
        with pytest.raises(dataclasses.FrozenInstanceError):
            hierarchy.org_unit.genesis.hash = "0" * 64

    def test_history_copy_does_not_affect_chain(self, hierarchy):
        history = hierarchy.ada.history()
        history[0]['name'] = "Mallory"

        assert hierarchy.ada.genesis.record['name'] == "Ada"
        assert hierarchy.ada.validate_structure().valid


class TestInvalidInputs:
    """Invalid inputs never reach the ledger."""

    def test_bad_status_appends_nothing(self, hierarchy):
        before = hierarchy.ada.length
        with pytest.raises(InvalidArgumentError):
            hierarchy.manager.record_event_for_entity(hierarchy.ada.chain_id, "present")

        assert hierarchy.ada.length == before

    def test_non_string_name_rejected(self, manager):
        with pytest.raises(InvalidArgumentError):
            manager.create_org_unit(None)


class TestSealedRecordIsolation:
    """Caller objects stay detached from sealed blocks."""

    def test_nested_metadata_mutation_does_not_reach_block(self, manager):
        tags = {'labels': ['a']}
        org_unit = manager.create_org_unit("Science", tags)
        tags['labels'].append('b')

        assert org_unit.genesis.record['labels'] == ['a']
        assert org_unit.validate_structure().valid

    def test_nested_event_extra_detached(self, hierarchy):
        extra = {'notes': {'room': '101'}}
        hierarchy.manager.record_event_for_entity(
            hierarchy.ada.chain_id, "Present", "2024-01-10", extra
        )
        extra['notes']['room'] = '999'

        assert hierarchy.ada.tip.record['notes'] == {'room': '101'}
        assert hierarchy.manager.validate_system()['is_valid']

    def test_non_json_values_stored_as_hashed(self, manager):
        org_unit = manager.create_org_unit("Science", {'founded': datetime.date(2020, 1, 1)})

        assert org_unit.genesis.record['founded'] == "2020-01-01"
        assert org_unit.validate_structure().valid


class TestConcurrentAppends:
    """Concurrent writers never fork a chain."""

    def test_threaded_events_stay_linear(self, hierarchy):
        manager = hierarchy.manager
        entity_id = hierarchy.ada.chain_id
        statuses = ["Present", "Absent", "Leave"]

        def writer(worker):
            for i in range(5):
                manager.record_event_for_entity(
                    entity_id, statuses[(worker + i) % 3], f"2024-01-{i + 10}"
                )

        threads = [threading.Thread(target=writer, args=(w,)) for w in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        chain = hierarchy.ada
        stats = chain.event_stats()
        previous_hashes = [block.previous_hash for block in chain.blocks]

        assert chain.length == 41
        assert chain.validate_structure().valid
        assert len(set(previous_hashes)) == len(previous_hashes)
        assert stats['present'] + stats['absent'] + stats['leave'] == 40
        assert stats['total'] == 40

    def test_threaded_updates_and_events_interleave(self, hierarchy):
        chain = hierarchy.alan

        def renamer():
            for i in range(5):
                chain.record_update({'name_updated': f"Alan {i}"})

        def recorder():
            for _ in range(5):
                chain.record_event("Present", "2024-01-10")

        threads = [threading.Thread(target=renamer), threading.Thread(target=recorder)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert chain.length == 11
        assert chain.validate_structure().valid
        assert chain.event_stats()['present'] == 5
