"""
Tier Chains

One ledger type serves all three tiers of the hierarchy:

    org unit  ->  sub-unit  ->  leaf entity

A TierSpec names the record types, identity fields and parent field of a
tier; the projection functions below read a chain's blocks through that
spec. Only the leaf tier records attendance events.

History is never rewritten. A rename or a deletion is a new UPDATE record;
the current name and running event counters are caches over the blocks.
"""

import logging
from dataclasses import dataclass
from datetime import date as date_type, datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from .block import Block, DEFAULT_DIFFICULTY, ROOT_PREVIOUS_HASH, utc_timestamp
from .chain import Chain
from ..errors import InvalidArgumentError, PreconditionViolation

logger = logging.getLogger(__name__)


# ============================================================================
# Tier Specifications
# ============================================================================

@dataclass(frozen=True)
class TierSpec:
    """Strategy describing one tier's record shapes."""
    tag: str
    label: str
    id_field: str
    parent_field: Optional[str]
    identity_fields: Tuple[str, ...]
    default_delete_reason: str
    tracks_events: bool = False

    @property
    def genesis_type(self) -> str:
        return f"{self.label}_GENESIS"

    @property
    def update_type(self) -> str:
        return f"{self.label}_UPDATE"

    @property
    def state_types(self) -> Tuple[str, str]:
        """Record types that carry entity state (as opposed to events)."""
        return (self.genesis_type, self.update_type)


ORG_UNIT = TierSpec(
    tag="org_unit",
    label="ORG_UNIT",
    id_field="org_unit_id",
    parent_field=None,
    identity_fields=(),
    default_delete_reason="Org unit removed",
)

SUB_UNIT = TierSpec(
    tag="sub_unit",
    label="SUB_UNIT",
    id_field="sub_unit_id",
    parent_field="org_unit_id",
    identity_fields=("org_unit_id",),
    default_delete_reason="Sub-unit removed",
)

LEAF_ENTITY = TierSpec(
    tag="leaf_entity",
    label="LEAF_ENTITY",
    id_field="entity_id",
    parent_field="sub_unit_id",
    identity_fields=("external_key", "sub_unit_id", "org_unit_id"),
    default_delete_reason="Entity removed",
    tracks_events=True,
)

TIERS: Dict[str, TierSpec] = {spec.tag: spec for spec in (ORG_UNIT, SUB_UNIT, LEAF_ENTITY)}
GENESIS_TYPES = frozenset(spec.genesis_type for spec in TIERS.values())

EVENT_RECORD_TYPE = "ATTENDANCE_RECORD"
DELETED = "deleted"
ACTIVE = "active"


class EventStatus(Enum):
    """Recognized attendance statuses."""
    PRESENT = "Present"
    ABSENT = "Absent"
    LEAVE = "Leave"

    @property
    def counter_key(self) -> str:
        return self.value.lower()

    @classmethod
    def parse(cls, status: Union['EventStatus', str]) -> 'EventStatus':
        """
        Resolve a status value.

        Raises:
            InvalidArgumentError: If the status is not recognized
        """
        if isinstance(status, cls):
            return status
        for member in cls:
            if member.value == status:
                return member
        allowed = ", ".join(member.value for member in cls)
        raise InvalidArgumentError(
            f"Invalid attendance status {status!r}. Must be one of: {allowed}"
        )


# ============================================================================
# Projection Functions
# ============================================================================

def strip_keys(data: Optional[Mapping[str, Any]], keys: Iterable[str]) -> Dict[str, Any]:
    """Copy data without the given keys (caller timestamps are dropped)."""
    dropped = set(keys)
    return {k: v for k, v in (data or {}).items() if k not in dropped}


def build_record(
    spec: TierSpec,
    record_type: str,
    chain_id: str,
    name: str,
    identity: Mapping[str, Any],
    fields: Mapping[str, Any]
) -> Dict[str, Any]:
    """Assemble a payload record: type, identity, current name, then fields."""
    record = {'type': record_type, spec.id_field: chain_id, 'name': name}
    record.update(identity)
    record.update(fields)
    return record


def normalize_date(value: Union[str, date_type, None]) -> str:
    """Dates are stored as strings; date/datetime objects become ISO format."""
    if value is None:
        return datetime.now(timezone.utc).date().isoformat()
    if isinstance(value, (date_type, datetime)):
        return value.isoformat()
    return str(value)


def project_name(blocks: Sequence[Block], fallback: str) -> str:
    """The name carried by the most recent record that has one."""
    for block in reversed(blocks):
        name = block.record.get('name')
        if name:
            return name
    return fallback


def latest_description(blocks: Sequence[Block]) -> Optional[str]:
    for block in reversed(blocks):
        record = block.record
        if record.get('description_updated'):
            return record['description_updated']
        if record.get('description'):
            return record['description']
    return None


def project_current_state(
    spec: TierSpec,
    chain_id: str,
    name: str,
    identity: Mapping[str, Any],
    blocks: Sequence[Block]
) -> Optional[Dict[str, Any]]:
    """
    Reconstruct the entity's current state from its blocks.

    Scans from the tip backward. A deletion record wins outright;
    otherwise the newest GENESIS/UPDATE record is projected, with its own
    fields applied last.
    """
    if not blocks:
        return None

    created_at = blocks[0].record.get('created_at')
    description = latest_description(blocks)

    for block in reversed(blocks):
        record = block.record
        if record.get('status') == DELETED:
            return {
                'status': DELETED,
                'deleted_at': block.creation_time,
                'reason': record.get('reason'),
            }
        if record.get('type') in spec.state_types:
            state = {spec.id_field: chain_id, 'name': name}
            state.update(identity)
            state.update({
                'description': description,
                'created_at': created_at or record.get('created_at'),
                'status': ACTIVE,
                'last_updated': block.creation_time,
            })
            state.update(record)
            return state
    return None


def project_history(blocks: Sequence[Block]) -> List[Dict[str, Any]]:
    """One entry per block: block metadata followed by the record verbatim."""
    history = []
    for block in blocks:
        record = block.record
        entry = {
            'block_index': block.index,
            'creation_time': block.creation_time,
            'hash': block.hash,
            'action': record.get('type'),
            'status': record.get('status', ACTIVE),
        }
        entry.update(record)
        history.append(entry)
    return history


def tally_events(blocks: Sequence[Block]) -> Dict[str, int]:
    """Count event records per status (used only when rebuilding a chain)."""
    counts = {status.counter_key: 0 for status in EventStatus}
    for block in blocks:
        record = block.record
        if record.get('type') != EVENT_RECORD_TYPE:
            continue
        try:
            counts[EventStatus.parse(record.get('status')).counter_key] += 1
        except InvalidArgumentError:
            logger.warning(
                "unrecognized_event_status",
                extra={"index": block.index, "status": record.get('status')},
            )
    return counts


# ============================================================================
# Tier Chain
# ============================================================================

class TierChain(Chain):
    """
    A chain for one org unit, sub-unit or leaf entity.

    Identity fields (parent ids, external key) are fixed at construction.
    The display name may change through `name_updated` deltas.
    """

    def __init__(
        self,
        spec: TierSpec,
        chain_id: str,
        name: str,
        identity: Optional[Mapping[str, Any]] = None,
        parent_hash: Optional[str] = None,
        difficulty: int = DEFAULT_DIFFICULTY
    ):
        """
        Create an empty tier chain.

        Args:
            spec: Tier strategy (ORG_UNIT, SUB_UNIT or LEAF_ENTITY)
            chain_id: Unique chain id
            name: Initial display name
            identity: Values for spec.identity_fields
            parent_hash: Parent tip hash captured at creation (child tiers)
            difficulty: PoW difficulty
        """
        super().__init__(chain_id, spec.tag, difficulty)
        identity = dict(identity or {})
        missing = [f for f in spec.identity_fields if not identity.get(f)]
        if missing:
            raise InvalidArgumentError(
                f"Missing identity fields for {spec.tag}: {', '.join(missing)}"
            )
        if spec.parent_field and not parent_hash:
            raise InvalidArgumentError(f"A {spec.tag} chain needs its parent's hash")

        self.spec = spec
        self._identity = {f: identity[f] for f in spec.identity_fields}
        self._name = name
        self.parent_hash = parent_hash if spec.parent_field else ROOT_PREVIOUS_HASH
        self._event_counts = (
            {status.counter_key: 0 for status in EventStatus}
            if spec.tracks_events else {}
        )
        now = utc_timestamp()
        self.metadata = {'created_at': now, 'updated_at': now}

    # ========================================================================
    # Identity
    # ========================================================================

    @property
    def name(self) -> str:
        """Current display name (reflects renames)."""
        return self._name

    @property
    def identity(self) -> Dict[str, Any]:
        return dict(self._identity)

    @property
    def parent_id(self) -> Optional[str]:
        if self.spec.parent_field is None:
            return None
        return self._identity.get(self.spec.parent_field)

    @property
    def org_unit_id(self) -> Optional[str]:
        if self.spec is ORG_UNIT:
            return self.chain_id
        return self._identity.get('org_unit_id')

    @property
    def external_key(self) -> Optional[str]:
        return self._identity.get('external_key')

    # ========================================================================
    # Recording
    # ========================================================================

    def initialize(self, creation_payload: Optional[Mapping[str, Any]] = None) -> Block:
        """
        Seed the genesis block.

        Caller metadata is kept except `timestamp`; the block's own creation
        time is authoritative.
        """
        fields = strip_keys(creation_payload, ('timestamp',))
        record = build_record(
            self.spec, self.spec.genesis_type, self.chain_id,
            self._name, self._identity, fields
        )
        return self.append_genesis(record, self.parent_hash)

    def record_update(self, deltas: Mapping[str, Any]) -> Block:
        """
        Append an UPDATE record.

        A `name_updated` delta becomes the current name for this record and
        every later one; earlier blocks keep the old name.
        """
        fields = strip_keys(deltas, ('timestamp', 'updated_at'))
        with self._lock:
            name = fields.get('name_updated') or self._name
            record = build_record(
                self.spec, self.spec.update_type, self.chain_id,
                name, self._identity, fields
            )
            block = self.append(record)
            self._name = record.get('name') or name
            self.metadata['updated_at'] = utc_timestamp()
        return block

    def mark_deleted(self, reason: Optional[str] = None) -> Block:
        """Append a terminal deletion record. No block is removed."""
        return self.record_update({
            'status': DELETED,
            'reason': reason or self.spec.default_delete_reason,
        })

    # ========================================================================
    # Projections
    # ========================================================================

    def current_state(self) -> Optional[Dict[str, Any]]:
        """Current state projected from the blocks (None if empty)."""
        return project_current_state(
            self.spec, self.chain_id, self._name, self._identity, self.blocks
        )

    @property
    def is_deleted(self) -> bool:
        state = self.current_state()
        return state is not None and state.get('status') == DELETED

    def history(self) -> List[Dict[str, Any]]:
        """Every block's record in order, with block metadata."""
        return project_history(self.blocks)

    def verify_parent_linkage(self, expected_parent_hash: str) -> bool:
        """Strict check: genesis previous_hash equals the given hash."""
        genesis = self.genesis
        return genesis is not None and genesis.previous_hash == expected_parent_hash

    # ========================================================================
    # Events (leaf tier)
    # ========================================================================

    def _require_events(self) -> None:
        if not self.spec.tracks_events:
            raise PreconditionViolation(f"{self.spec.tag} chains do not record events")

    def record_event(
        self,
        status: Union[EventStatus, str],
        date: Union[str, date_type, None] = None,
        extra: Optional[Mapping[str, Any]] = None
    ) -> Block:
        """
        Append an attendance record and bump its running counter.

        Args:
            status: One of EventStatus (or its string value)
            date: Calendar date; defaults to today (UTC)
            extra: Additional fields; timestamps are dropped

        Raises:
            InvalidArgumentError: If the status is not recognized
        """
        self._require_events()
        event_status = EventStatus.parse(status)
        fields = strip_keys(extra, ('timestamp', 'updated_at', 'type'))
        fields.update({'status': event_status.value, 'date': normalize_date(date)})

        with self._lock:
            record = build_record(
                self.spec, EVENT_RECORD_TYPE, self.chain_id,
                self._name, self._identity, fields
            )
            block = self.append(record)
            self._event_counts[event_status.counter_key] += 1
            self.metadata['updated_at'] = utc_timestamp()
        return block

    def event_history(self) -> List[Dict[str, Any]]:
        """Attendance records only, in block order."""
        self._require_events()
        return [
            {
                'block_index': block.index,
                'hash': block.hash,
                'creation_time': block.creation_time,
                'date': block.record.get('date'),
                'status': block.record.get('status'),
                'nonce': block.nonce,
            }
            for block in self.blocks
            if block.record.get('type') == EVENT_RECORD_TYPE
        ]

    def event_stats(self) -> Dict[str, Any]:
        self._require_events()
        stats = {
            'entity_id': self.chain_id,
            'name': self._name,
            'external_key': self.external_key,
            'total': max(self.length - 1, 0),  # genesis excluded
        }
        stats.update(self._event_counts)
        return stats

    def complete_ledger(self) -> List[Dict[str, Any]]:
        """Per-block dump including genesis, for audit display."""
        self._require_events()
        return [
            {
                'block_index': block.index,
                'creation_time': block.creation_time,
                'hash': block.hash,
                'previous_hash': block.previous_hash,
                'nonce': block.nonce,
                'type': block.record.get('type'),
                'status': block.record.get('status', block.record.get('type')),
                'data': dict(block.record),
            }
            for block in self.blocks
        ]

    # ========================================================================
    # Serialization
    # ========================================================================

    def to_dict(self) -> Dict[str, Any]:
        """Self-describing dump: identity, validation summary and blocks."""
        report = self.validate_structure()
        validation = {'valid': report.valid, 'errors': report.errors}
        if self.spec.parent_field:
            validation['parent_linkage_valid'] = self.verify_parent_linkage(self.parent_hash)

        data = {
            'chain_id': self.chain_id,
            'tier_tag': self.tier_tag,
            'name': self._name,
            'identity': self.identity,
            'parent_hash': self.parent_hash,
            'difficulty': self.difficulty,
            'metadata': dict(self.metadata),
            'validation': validation,
            'blocks': [block.to_dict() for block in self.blocks],
        }
        if self.spec.tracks_events:
            data['event_stats'] = self.event_stats()
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'TierChain':
        """
        Rebuild a chain from `to_dict` output.

        Blocks are adopted as stored; the cached name and event counters are
        recomputed from them.
        """
        spec = TIERS.get(data.get('tier_tag'))
        if spec is None:
            raise InvalidArgumentError(f"Unknown tier tag: {data.get('tier_tag')!r}")

        chain = cls(
            spec,
            data['chain_id'],
            data.get('name', ''),
            identity=data.get('identity'),
            parent_hash=data.get('parent_hash'),
            difficulty=data.get('difficulty', DEFAULT_DIFFICULTY),
        )
        chain._load_blocks([Block.from_dict(block) for block in data.get('blocks', [])])
        chain._name = project_name(chain.blocks, chain._name)
        if spec.tracks_events:
            chain._event_counts = tally_events(chain.blocks)
        if data.get('metadata'):
            chain.metadata = dict(data['metadata'])
        return chain

    def __repr__(self) -> str:
        return f"TierChain({self.spec.tag}, {self.chain_id!r}, name={self._name!r}, blocks={self.length})"


# ============================================================================
# Factories
# ============================================================================

def new_org_unit_chain(chain_id: str, name: str,
                       difficulty: int = DEFAULT_DIFFICULTY) -> TierChain:
    return TierChain(ORG_UNIT, chain_id, name, difficulty=difficulty)


def new_sub_unit_chain(chain_id: str, name: str, org_unit_id: str,
                       parent_hash: str,
                       difficulty: int = DEFAULT_DIFFICULTY) -> TierChain:
    return TierChain(
        SUB_UNIT, chain_id, name,
        identity={'org_unit_id': org_unit_id},
        parent_hash=parent_hash,
        difficulty=difficulty,
    )


def new_leaf_entity_chain(chain_id: str, name: str, external_key: str,
                          sub_unit_id: str, org_unit_id: str,
                          parent_hash: str,
                          difficulty: int = DEFAULT_DIFFICULTY) -> TierChain:
    return TierChain(
        LEAF_ENTITY, chain_id, name,
        identity={
            'external_key': external_key,
            'sub_unit_id': sub_unit_id,
            'org_unit_id': org_unit_id,
        },
        parent_hash=parent_hash,
        difficulty=difficulty,
    )
