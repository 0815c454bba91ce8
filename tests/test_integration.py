"""
Integration tests for AttendChain.

Tests end-to-end workflows combining the manager, validator and storage.
"""

import datetime
import json

import pytest

from attendchain.errors import StorageError
from attendchain.integration.manager import ChainManager
from attendchain.storage.json_store import JsonChainStore, chain_from_dict, chain_to_dict


class TestLedgerWorkflow:
    """End-to-end ledger scenarios."""

    def test_single_event_workflow(self):
        """Org unit -> sub-unit -> entity -> one event."""
        manager = ChainManager(difficulty=2)
        science = manager.create_org_unit("Science")
        physics = manager.create_sub_unit("Physics", science.chain_id)
        ada = manager.add_leaf_entity("Ada", "R-1", physics.chain_id)

        manager.record_event_for_entity(ada.chain_id, "Present", "2024-01-10")
        stats = ada.event_stats()

        assert stats['total'] == 1
        assert stats['present'] == 1
        assert ada.length == 2
        assert ada.tip.hash.startswith("00")

    def test_delete_org_unit_workflow(self, hierarchy):
        hierarchy.manager.delete_org_unit(hierarchy.org_unit.chain_id, "closed")

        assert hierarchy.sub_unit.current_state()['status'] == "deleted"
        ada_state = hierarchy.ada.current_state()
        assert ada_state['status'] == "deleted"
        assert "closed" in ada_state['reason']

    def test_full_hierarchy_validates(self, manager):
        for o in range(2):
            org_unit = manager.create_org_unit(f"Org {o}")
            for s in range(2):
                sub_unit = manager.create_sub_unit(f"Sub {o}.{s}", org_unit.chain_id)
                for e in range(2):
                    entity = manager.add_leaf_entity(
                        f"Entity {o}.{s}.{e}", f"K-{o}{s}{e}", sub_unit.chain_id
                    )
                    manager.record_event_for_entity(entity.chain_id, "Present", "2024-01-10")

        result = manager.validate_system()

        assert result['is_valid']
        assert len(result['org_units']) == 2
        assert len(result['sub_units']) == 4
        assert len(result['leaf_entities']) == 8
        assert all(r['parent_linkage_valid'] for r in result['sub_units'] + result['leaf_entities'])


class TestStorage:
    """Persistence round trips through JSON files."""

    def test_system_round_trip(self, hierarchy, tmp_path):
        manager = hierarchy.manager
        manager.record_event_for_entity(hierarchy.ada.chain_id, "Present", "2024-01-10")
        manager.update_leaf_entity(hierarchy.alan.chain_id, {'name_updated': "Alan T."})

        store = JsonChainStore(tmp_path / "data")
        store.save_system(manager)
        restored = store.load_system(difficulty=1)

        ada = restored.get_leaf_entity(hierarchy.ada.chain_id)
        alan = restored.get_leaf_entity(hierarchy.alan.chain_id)
        assert [b.hash for b in ada.blocks] == [b.hash for b in hierarchy.ada.blocks]
        assert ada.event_stats()['present'] == 1
        assert alan.name == "Alan T."
        assert restored.validate_system()['is_valid']
        assert len(restored.get_leaf_entities_by_sub_unit(hierarchy.sub_unit.chain_id)) == 2

    def test_tier_files_created(self, tmp_path):
        JsonChainStore(tmp_path)
        for filename in ("org_units.json", "sub_units.json", "leaf_entities.json"):
            assert json.loads((tmp_path / filename).read_text()) == {}

    def test_save_chain(self, hierarchy, tmp_path):
        store = JsonChainStore(tmp_path)
        store.save_chain(hierarchy.ada)
        loaded = store.load_chain("leaf_entity", hierarchy.ada.chain_id)

        assert loaded.name == "Ada"
        assert loaded.external_key == "R-1"

    def test_tampered_file_loads_but_fails_validation(self, hierarchy, tmp_path):
        data = chain_to_dict(hierarchy.org_unit)
        data['blocks'][0]['payload'][0]['name'] = "Forged"
        chain = chain_from_dict(data)

        assert not chain.validate_structure().valid

    def test_malformed_chain_data(self):
        with pytest.raises(StorageError):
            chain_from_dict({'tier_tag': 'org_unit'})

    def test_non_string_payload_entry_rejected(self, hierarchy):
        data = chain_to_dict(hierarchy.org_unit)
        data['blocks'][0]['payload'] = ["x"]

        with pytest.raises(StorageError):
            chain_from_dict(data)

    def test_date_metadata_round_trip(self, manager, tmp_path):
        org_unit = manager.create_org_unit("Science", {'founded': datetime.date(2020, 1, 1)})
        store = JsonChainStore(tmp_path)
        store.save_system(manager)
        restored = store.load_system(difficulty=1).get_org_unit(org_unit.chain_id)

        assert restored.genesis.record['founded'] == "2020-01-01"
        assert restored.genesis.hash == org_unit.genesis.hash
        assert restored.validate_structure().valid

    def test_corrupt_file_raises(self, tmp_path):
        store = JsonChainStore(tmp_path)
        (tmp_path / "org_units.json").write_text("{not json")

        with pytest.raises(StorageError):
            store.load_system()

    def test_backup_and_restore(self, hierarchy, tmp_path):
        store = JsonChainStore(tmp_path / "data")
        store.save_system(hierarchy.manager)
        backup = tmp_path / "backup.json"
        store.create_backup(backup)

        store.clear()
        assert store.load_system(difficulty=1).get_all_org_units() == {}

        store.import_backup(backup)
        restored = store.load_system(difficulty=1)
        assert hierarchy.org_unit.chain_id in restored.get_all_org_units()
        assert len(restored.get_all_leaf_entities()) == 2


class TestDemo:
    """The console entry point runs end to end."""

    def test_main_runs(self, tmp_path, monkeypatch, capsys):
        from attendchain import main as demo

        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("ATTENDCHAIN_LEDGER__DIFFICULTY", "1")
        monkeypatch.setenv("ATTENDCHAIN_STORAGE__DATA_DIR", str(tmp_path / "data"))
        demo.main()

        out = capsys.readouterr().out
        assert "System valid: True" in out
        assert "Restored system valid: True" in out
        assert (tmp_path / "data" / "leaf_entities.json").exists()
