"""
AttendChain - Main Entry Point

Walks through the ledger end to end:
- Org unit / sub-unit / leaf entity creation with parent linkage
- Attendance recording and per-entity counters
- Rename and soft delete with cascade
- Tamper detection by the validator
- Persistence to the configured data directory
"""

import logging
from pathlib import Path

from .config import Config
from .integration.manager import ChainManager
from .storage.json_store import JsonChainStore


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging for the demo (idempotent)."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def load_config() -> Config:
    """Repo defaults when config/default.yaml is present, else built-in defaults."""
    if (Path.cwd() / "config" / "default.yaml").exists():
        return Config.from_repo_defaults()
    return Config()


def print_header(title):
    """Print a formatted section header"""
    print("\n" + "═" * 70)
    print(f"  {title}")
    print("═" * 70)


def print_step(step_num, description):
    """Print a numbered step"""
    print(f"\n  [{step_num}] {description}")


def main():
    """Main entry point for AttendChain."""
    config = load_config()
    configure_logging(config.logging.level)

    print("=" * 50)
    print("Welcome to AttendChain")
    print("=" * 50)
    print(f"\n  Difficulty: {config.ledger.difficulty} leading zero hex characters")

    manager = ChainManager(difficulty=config.ledger.difficulty)

    print_header("PART 1: BUILDING THE HIERARCHY")

    print_step("1.1", "Creating org unit 'Engineering'")
    org_unit = manager.create_org_unit("Engineering", {"description": "Faculty of Engineering"})
    print(f"  Genesis hash: {org_unit.tip.hash[:24]}...")

    print_step("1.2", "Creating sub-unit 'CS-A' (linked to the org unit's tip)")
    sub_unit = manager.create_sub_unit("CS-A", org_unit.chain_id)
    print(f"  Genesis previous_hash: {sub_unit.genesis.previous_hash[:24]}...")

    print_step("1.3", "Adding leaf entities")
    alice = manager.add_leaf_entity("Alice", "R-001", sub_unit.chain_id)
    bob = manager.add_leaf_entity("Bob", "R-002", sub_unit.chain_id)
    for entity in (alice, bob):
        print(f"  {entity.name} ({entity.external_key}) -> {entity.chain_id[:12]}...")

    print_header("PART 2: RECORDING ATTENDANCE")

    manager.record_event_for_entity(alice.chain_id, "Present", "2025-01-15")
    manager.record_event_for_entity(alice.chain_id, "Leave", "2025-01-16")
    manager.record_event_for_entity(bob.chain_id, "Absent", "2025-01-15")

    print_step("2.1", "Attendance for 2025-01-15")
    for row in manager.sub_unit_events_by_date(sub_unit.chain_id, "2025-01-15"):
        print(f"  {row['name']:<10} {row['status']}")

    print_step("2.2", "Alice's counters")
    stats = alice.event_stats()
    print(f"  total={stats['total']} present={stats['present']} "
          f"absent={stats['absent']} leave={stats['leave']}")

    print_header("PART 3: RENAME AND CASCADE DELETE")

    print_step("3.1", "Renaming Bob")
    manager.update_leaf_entity(bob.chain_id, {"name_updated": "Robert"})
    print(f"  Current name: {bob.name}")
    print(f"  Genesis record name: {bob.genesis.record['name']}")

    print_step("3.2", "Deleting the sub-unit")
    manager.delete_sub_unit(sub_unit.chain_id, "Merged")
    for entity in (alice, bob):
        print(f"  {entity.name}: {entity.current_state()['reason']}")

    print_header("PART 4: VALIDATION")

    validation = manager.validate_system()
    print(f"\n  System valid: {validation['is_valid']}")
    print("\n" + manager.generate_validation_report())

    print_header("PART 5: PERSISTENCE")

    store = JsonChainStore(config.storage.data_dir)
    store.save_system(manager)
    restored = store.load_system(config.ledger.difficulty)
    print(f"\n  Saved to {config.storage.data_dir}")
    print(f"  Restored system valid: {restored.validate_system()['is_valid']}")


if __name__ == "__main__":
    main()
