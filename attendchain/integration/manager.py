"""
Chain Manager Module

Owns every chain of the three-tier ledger and is the only writer:
- Creation with parent linkage (parent tip hash captured at creation)
- Updates, renames and soft deletes with cascade to descendants
- Attendance recording on leaf entities
- Cross-tier queries, validation and export

Deletion never removes anything: it appends a terminal UPDATE record to
the chain and, for org units and sub-units, to every descendant.
"""

import logging
import threading
import uuid
from collections import defaultdict
from datetime import date as date_type
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from ..blockchain.block import Block, DEFAULT_DIFFICULTY, utc_timestamp
from ..blockchain.tiers import (
    LEAF_ENTITY,
    ORG_UNIT,
    SUB_UNIT,
    DELETED,
    EventStatus,
    TierChain,
    TierSpec,
    new_leaf_entity_chain,
    new_org_unit_chain,
    new_sub_unit_chain,
    normalize_date,
)
from ..blockchain import validator
from ..blockchain.validator import SystemSnapshot
from ..errors import InvalidArgumentError, NotFoundError

logger = logging.getLogger(__name__)


def _new_id() -> str:
    return uuid.uuid4().hex


def _require_text(value: Any, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidArgumentError(f"{field} is required")
    return value.strip()


class ChainStore:
    """
    Id-indexed store of one tier's chains plus a parent -> children index.

    Guarded by the owning manager's lock.
    """

    def __init__(self, spec: TierSpec):
        self.spec = spec
        self._chains: Dict[str, TierChain] = {}
        self._children: Dict[str, List[str]] = defaultdict(list)

    def add(self, chain: TierChain) -> None:
        self._chains[chain.chain_id] = chain
        if chain.parent_id is not None:
            self._children[chain.parent_id].append(chain.chain_id)

    def get(self, chain_id: str) -> TierChain:
        chain = self._chains.get(chain_id)
        if chain is None:
            raise NotFoundError(f"{self.spec.tag} {chain_id} not found")
        return chain

    def __contains__(self, chain_id: str) -> bool:
        return chain_id in self._chains

    def children_of(self, parent_id: str) -> List[TierChain]:
        return [self._chains[c] for c in self._children.get(parent_id, [])]

    def all(self) -> Dict[str, TierChain]:
        return dict(self._chains)


class ChainManager:
    """
    Orchestrates the org unit, sub-unit and leaf entity tiers.

    Global uniqueness of leaf entity external keys is left to callers;
    `external_key_in_use` is provided for that check.
    """

    def __init__(self, difficulty: int = DEFAULT_DIFFICULTY,
                 id_factory: Optional[Callable[[], str]] = None):
        """
        Initialize an empty system.

        Args:
            difficulty: PoW difficulty for every new chain
            id_factory: Source of chain ids (uuid4 hex by default)
        """
        self.difficulty = difficulty
        self._new_id = id_factory or _new_id
        self._org_units = ChainStore(ORG_UNIT)
        self._sub_units = ChainStore(SUB_UNIT)
        self._leaf_entities = ChainStore(LEAF_ENTITY)
        self._lock = threading.RLock()

    @classmethod
    def restore(
        cls,
        org_units: Mapping[str, TierChain],
        sub_units: Mapping[str, TierChain],
        leaf_entities: Mapping[str, TierChain],
        difficulty: int = DEFAULT_DIFFICULTY
    ) -> 'ChainManager':
        """Adopt chains rebuilt from storage."""
        manager = cls(difficulty=difficulty)
        for chain in org_units.values():
            manager._org_units.add(chain)
        for chain in sub_units.values():
            manager._sub_units.add(chain)
        for chain in leaf_entities.values():
            manager._leaf_entities.add(chain)
        logger.info(
            "system_restored",
            extra={
                "org_units": len(org_units),
                "sub_units": len(sub_units),
                "leaf_entities": len(leaf_entities),
            },
        )
        return manager

    def _allocate_id(self, store: ChainStore) -> str:
        chain_id = self._new_id()
        while chain_id in store:
            chain_id = self._new_id()
        return chain_id

    # ========================================================================
    # Org Units
    # ========================================================================

    def create_org_unit(self, name: str,
                        metadata: Optional[Mapping[str, Any]] = None) -> TierChain:
        """Create an org unit chain (root tier, genesis previous_hash "0")."""
        name = _require_text(name, "name")
        with self._lock:
            chain = new_org_unit_chain(self._allocate_id(self._org_units), name, self.difficulty)
            chain.initialize({**(metadata or {}), 'created_at': utc_timestamp()})
            self._org_units.add(chain)
        logger.info("org_unit_created", extra={"chain_id": chain.chain_id, "chain_name": name})
        return chain

    def get_org_unit(self, org_unit_id: str) -> TierChain:
        with self._lock:
            return self._org_units.get(org_unit_id)

    def get_all_org_units(self) -> Dict[str, TierChain]:
        with self._lock:
            return self._org_units.all()

    def update_org_unit(self, org_unit_id: str, deltas: Mapping[str, Any]) -> Block:
        return self.get_org_unit(org_unit_id).record_update(deltas)

    def delete_org_unit(self, org_unit_id: str,
                        reason: str = ORG_UNIT.default_delete_reason) -> None:
        """Mark the org unit deleted and cascade to its sub-units and their entities."""
        with self._lock:
            org_unit = self._org_units.get(org_unit_id)
            children = self._sub_units.children_of(org_unit_id)
        org_unit.mark_deleted(reason)
        logger.info("org_unit_deleted", extra={"chain_id": org_unit_id, "reason": reason})
        for sub_unit in children:
            self.delete_sub_unit(
                sub_unit.chain_id,
                f"Cascade: parent org unit deleted ({reason})",
            )

    # ========================================================================
    # Sub-units
    # ========================================================================

    def create_sub_unit(self, name: str, org_unit_id: str,
                        metadata: Optional[Mapping[str, Any]] = None) -> TierChain:
        """
        Create a sub-unit under an org unit.

        The genesis block links to the org unit's tip hash at this moment.

        Raises:
            NotFoundError: If the org unit does not exist
        """
        name = _require_text(name, "name")
        with self._lock:
            parent = self._org_units.get(org_unit_id)
            chain = new_sub_unit_chain(
                self._allocate_id(self._sub_units), name, org_unit_id,
                parent.tip.hash, self.difficulty,
            )
            chain.initialize({**(metadata or {}), 'created_at': utc_timestamp()})
            self._sub_units.add(chain)
        logger.info(
            "sub_unit_created",
            extra={"chain_id": chain.chain_id, "chain_name": name, "org_unit_id": org_unit_id},
        )
        return chain

    def get_sub_unit(self, sub_unit_id: str) -> TierChain:
        with self._lock:
            return self._sub_units.get(sub_unit_id)

    def get_all_sub_units(self) -> Dict[str, TierChain]:
        with self._lock:
            return self._sub_units.all()

    def get_sub_units_by_org_unit(self, org_unit_id: str) -> List[TierChain]:
        with self._lock:
            return self._sub_units.children_of(org_unit_id)

    def update_sub_unit(self, sub_unit_id: str, deltas: Mapping[str, Any]) -> Block:
        return self.get_sub_unit(sub_unit_id).record_update(deltas)

    def delete_sub_unit(self, sub_unit_id: str,
                        reason: str = SUB_UNIT.default_delete_reason) -> None:
        """Mark the sub-unit deleted and cascade to its leaf entities."""
        with self._lock:
            sub_unit = self._sub_units.get(sub_unit_id)
            children = self._leaf_entities.children_of(sub_unit_id)
        sub_unit.mark_deleted(reason)
        logger.info("sub_unit_deleted", extra={"chain_id": sub_unit_id, "reason": reason})
        for entity in children:
            entity.mark_deleted(f"Cascade: parent sub-unit deleted ({reason})")

    # ========================================================================
    # Leaf Entities
    # ========================================================================

    def add_leaf_entity(self, name: str, external_key: str, sub_unit_id: str,
                        metadata: Optional[Mapping[str, Any]] = None) -> TierChain:
        """
        Add a leaf entity under a sub-unit.

        Raises:
            InvalidArgumentError: If name or external key is missing
            NotFoundError: If the sub-unit does not exist
        """
        name = _require_text(name, "name")
        external_key = _require_text(external_key, "external_key")
        with self._lock:
            parent = self._sub_units.get(sub_unit_id)
            chain = new_leaf_entity_chain(
                self._allocate_id(self._leaf_entities), name, external_key,
                sub_unit_id, parent.parent_id, parent.tip.hash, self.difficulty,
            )
            chain.initialize({**(metadata or {}), 'created_at': utc_timestamp()})
            self._leaf_entities.add(chain)
        logger.info(
            "leaf_entity_added",
            extra={"chain_id": chain.chain_id, "external_key": external_key,
                   "sub_unit_id": sub_unit_id},
        )
        return chain

    def get_leaf_entity(self, entity_id: str) -> TierChain:
        with self._lock:
            return self._leaf_entities.get(entity_id)

    def get_all_leaf_entities(self) -> Dict[str, TierChain]:
        with self._lock:
            return self._leaf_entities.all()

    def get_leaf_entities_by_sub_unit(self, sub_unit_id: str) -> List[TierChain]:
        with self._lock:
            return self._leaf_entities.children_of(sub_unit_id)

    def get_leaf_entities_by_org_unit(self, org_unit_id: str) -> List[TierChain]:
        with self._lock:
            return [
                entity
                for sub_unit in self._sub_units.children_of(org_unit_id)
                for entity in self._leaf_entities.children_of(sub_unit.chain_id)
            ]

    def update_leaf_entity(self, entity_id: str, deltas: Mapping[str, Any]) -> Block:
        return self.get_leaf_entity(entity_id).record_update(deltas)

    def remove_leaf_entity(self, entity_id: str,
                           reason: str = LEAF_ENTITY.default_delete_reason) -> Block:
        block = self.get_leaf_entity(entity_id).mark_deleted(reason)
        logger.info("leaf_entity_removed", extra={"chain_id": entity_id, "reason": reason})
        return block

    def external_key_in_use(self, external_key: str,
                            exclude_entity_id: Optional[str] = None) -> bool:
        """True if an active leaf entity already uses the external key."""
        with self._lock:
            chains = self._leaf_entities.all()
        return any(
            chain.external_key == external_key and not chain.is_deleted
            for entity_id, chain in chains.items()
            if entity_id != exclude_entity_id
        )

    # ========================================================================
    # Attendance
    # ========================================================================

    def record_event_for_entity(
        self,
        entity_id: str,
        status: Union[EventStatus, str],
        date: Union[str, date_type, None] = None,
        metadata: Optional[Mapping[str, Any]] = None
    ) -> Block:
        """
        Record an attendance event on a leaf entity's chain.

        Raises:
            NotFoundError: Unknown entity
            InvalidArgumentError: Unrecognized status
        """
        block = self.get_leaf_entity(entity_id).record_event(status, date, metadata)
        logger.info(
            "event_recorded",
            extra={"chain_id": entity_id, "status": block.record.get('status'),
                   "date": block.record.get('date')},
        )
        return block

    def event_history_for_entity(self, entity_id: str) -> List[Dict[str, Any]]:
        return self.get_leaf_entity(entity_id).event_history()

    def sub_unit_events_by_date(self, sub_unit_id: str,
                                date: Union[str, date_type]) -> List[Dict[str, Any]]:
        """
        Attendance on one date across a sub-unit's leaf entities.

        Dates match by exact string equality (date objects are converted to
        ISO format first).
        """
        day = normalize_date(date)
        with self._lock:
            self._sub_units.get(sub_unit_id)
            entities = self._leaf_entities.children_of(sub_unit_id)

        rows = []
        for entity in entities:
            for event in entity.event_history():
                if event['date'] == day:
                    rows.append({
                        'entity_id': entity.chain_id,
                        'name': entity.name,
                        'external_key': entity.external_key,
                        'status': event['status'],
                        'creation_time': event['creation_time'],
                        'block_index': event['block_index'],
                    })
        return rows

    def org_unit_events_by_date(self, org_unit_id: str,
                                date: Union[str, date_type]) -> List[Dict[str, Any]]:
        """Attendance on one date for every sub-unit of an org unit."""
        with self._lock:
            self._org_units.get(org_unit_id)
            sub_units = self._sub_units.children_of(org_unit_id)
        return [
            {
                'sub_unit_id': sub_unit.chain_id,
                'name': sub_unit.name,
                'records': self.sub_unit_events_by_date(sub_unit.chain_id, date),
            }
            for sub_unit in sub_units
        ]

    # ========================================================================
    # Search
    # ========================================================================

    @staticmethod
    def _active_states(chains: Mapping[str, TierChain]) -> List[tuple]:
        found = []
        for chain_id, chain in chains.items():
            state = chain.current_state()
            if state is not None and state.get('status') != DELETED:
                found.append((chain_id, chain, state))
        return found

    def search_org_units(self, query: str) -> List[Dict[str, Any]]:
        """Case-insensitive substring search on name (deleted excluded)."""
        needle = query.lower()
        return [
            {'id': chain_id, **state}
            for chain_id, chain, state in self._active_states(self.get_all_org_units())
            if needle in str(state.get('name', '')).lower()
        ]

    def search_sub_units(self, query: str) -> List[Dict[str, Any]]:
        needle = query.lower()
        return [
            {'id': chain_id, **state}
            for chain_id, chain, state in self._active_states(self.get_all_sub_units())
            if needle in str(state.get('name', '')).lower()
        ]

    def search_leaf_entities(self, query: str) -> List[Dict[str, Any]]:
        """Search on name or external key; results carry event stats."""
        needle = query.lower()
        return [
            {'id': chain_id, **state, 'stats': chain.event_stats()}
            for chain_id, chain, state in self._active_states(self.get_all_leaf_entities())
            if needle in str(state.get('name', '')).lower()
            or needle in str(state.get('external_key', '')).lower()
        ]

    # ========================================================================
    # Validation and Export
    # ========================================================================

    def snapshot(self) -> SystemSnapshot:
        """Read-only view of all chains for the validator."""
        with self._lock:
            return SystemSnapshot.of(
                self._org_units.all(),
                self._sub_units.all(),
                self._leaf_entities.all(),
            )

    def validate_system(self) -> Dict[str, Any]:
        result = validator.validate_system(self.snapshot())
        if not result['is_valid']:
            logger.warning("system_validation_failed", extra={"errors": result['error_count']})
        return result

    def generate_validation_report(self) -> str:
        return validator.generate_report(self.snapshot())

    def check_org_unit_tamper_impact(self, org_unit_id: str) -> Dict[str, Any]:
        self.get_org_unit(org_unit_id)
        return validator.check_org_unit_tamper_impact(self.snapshot(), org_unit_id)

    def check_sub_unit_tamper_impact(self, sub_unit_id: str) -> Dict[str, Any]:
        self.get_sub_unit(sub_unit_id)
        return validator.check_sub_unit_tamper_impact(self.snapshot(), sub_unit_id)

    def system_snapshot(self) -> Dict[str, Any]:
        """Current-state projection of every chain."""
        snap = self.snapshot()
        return {
            'timestamp': utc_timestamp(),
            'org_units': [
                {'id': cid, 'state': c.current_state(), 'block_count': c.length}
                for cid, c in snap.org_units.items()
            ],
            'sub_units': [
                {'id': cid, 'state': c.current_state(), 'block_count': c.length}
                for cid, c in snap.sub_units.items()
            ],
            'leaf_entities': [
                {'id': cid, 'state': c.current_state(), 'block_count': c.length,
                 'stats': c.event_stats()}
                for cid, c in snap.leaf_entities.items()
            ],
        }

    def system_statistics(self) -> Dict[str, Any]:
        """Chain counts per tier, total blocks and total attendance records."""
        snapshot = self.system_snapshot()
        rows = snapshot['org_units'] + snapshot['sub_units'] + snapshot['leaf_entities']
        return {
            'timestamp': snapshot['timestamp'],
            'org_units': len(snapshot['org_units']),
            'sub_units': len(snapshot['sub_units']),
            'leaf_entities': len(snapshot['leaf_entities']),
            'total_blocks': sum(row['block_count'] for row in rows),
            'attendance_records': sum(
                row['stats']['total'] for row in snapshot['leaf_entities']
            ),
        }

    def system_export(self) -> Dict[str, Any]:
        """Full serialized block histories plus a validation result."""
        snap = self.snapshot()
        return {
            'timestamp': utc_timestamp(),
            'difficulty': self.difficulty,
            'validation': validator.validate_system(snap),
            'org_units': {cid: c.to_dict() for cid, c in snap.org_units.items()},
            'sub_units': {cid: c.to_dict() for cid, c in snap.sub_units.items()},
            'leaf_entities': {cid: c.to_dict() for cid, c in snap.leaf_entities.items()},
        }
