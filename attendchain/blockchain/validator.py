"""
Validator Module

Multi-level audit of the three-tier ledger:
- Per-chain structure (hash, proof of work, continuity)
- Genesis record type and the six essential block fields
- Parent linkage: a child's genesis previous_hash must appear somewhere in
  its parent's history
- Tamper impact: which descendants a compromised chain would orphan

All functions are pure over a read-only snapshot. Violations are returned
as data so an audit always completes, even over a partly broken system.
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .block import Block, utc_timestamp
from .tiers import EVENT_RECORD_TYPE, GENESIS_TYPES, TierChain
from ..core_crypto.hashing import is_sha256_hex, meets_difficulty


ESSENTIAL_FIELDS = (
    "index - block number (0, 1, 2, ...)",
    "creation_time - ISO-8601 creation time",
    "payload - non-empty list of records",
    "previous_hash - link to the preceding block",
    "nonce - proof-of-work counter (integer)",
    "hash - SHA-256 digest (64 hex characters)",
)


@dataclass(frozen=True)
class SystemSnapshot:
    """Read-only view of every chain, keyed by id, per tier."""
    org_units: Mapping[str, TierChain]
    sub_units: Mapping[str, TierChain]
    leaf_entities: Mapping[str, TierChain]

    @classmethod
    def of(
        cls,
        org_units: Mapping[str, TierChain],
        sub_units: Mapping[str, TierChain],
        leaf_entities: Mapping[str, TierChain]
    ) -> 'SystemSnapshot':
        return cls(
            org_units=MappingProxyType(dict(org_units)),
            sub_units=MappingProxyType(dict(sub_units)),
            leaf_entities=MappingProxyType(dict(leaf_entities)),
        )


# ============================================================================
# Block-level checks
# ============================================================================

def validate_genesis_block(block: Optional[Block]) -> bool:
    """Genesis must be index 0 and carry a tier GENESIS record."""
    if block is None:
        return False
    return block.index == 0 and block.record.get('type') in GENESIS_TYPES


def validate_proof_of_work(blocks: Sequence[Block], difficulty: int) -> Dict[str, Any]:
    valid_blocks = sum(1 for b in blocks if meets_difficulty(b.hash, difficulty))
    return {
        'is_valid': valid_blocks == len(blocks),
        'difficulty': difficulty,
        'blocks_checked': len(blocks),
        'valid_blocks': valid_blocks,
    }


def validate_hash_chain(blocks: Sequence[Block]) -> Dict[str, Any]:
    errors = []
    for i in range(1, len(blocks)):
        current, previous = blocks[i], blocks[i - 1]
        if current.previous_hash != previous.hash:
            errors.append(
                f"Block {i}: previous_hash mismatch. "
                f"Expected {previous.hash}, got {current.previous_hash}"
            )
    return {
        'is_valid': not errors,
        'errors': errors,
        'blocks_checked': len(blocks),
    }


def validate_essential_fields(block: Block) -> Dict[str, Any]:
    """Check that the six essential fields are present and well-formed."""
    fields = {
        'index': isinstance(block.index, int) and not isinstance(block.index, bool)
                 and block.index >= 0,
        'creation_time': bool(block.creation_time),
        'payload': isinstance(block.payload, (list, tuple)) and len(block.payload) > 0,
        'previous_hash': isinstance(block.previous_hash, str) and bool(block.previous_hash),
        'nonce': isinstance(block.nonce, int) and not isinstance(block.nonce, bool),
        'hash': is_sha256_hex(block.hash),
    }
    missing = [name for name, present in fields.items() if not present]
    return {
        'is_valid': not missing,
        'missing_fields': missing,
        'present_fields_count': len(fields) - len(missing),
        'essential_fields_count': len(fields),
    }


def validate_chain_essential_fields(blocks: Sequence[Block]) -> Dict[str, Any]:
    issues = []
    for block in blocks:
        result = validate_essential_fields(block)
        if not result['is_valid']:
            issues.append({'block_index': block.index, 'validation': result})
    return {
        'is_valid': not issues,
        'total_blocks': len(blocks),
        'blocks_with_issues': len(issues),
        'issues': issues,
        'summary': f"{len(blocks) - len(issues)}/{len(blocks)} blocks have all 6 essential fields",
    }


def check_parent_linkage(chain: TierChain, parent: Optional[TierChain]) -> Dict[str, Any]:
    """
    Look for the child's genesis previous_hash anywhere in the parent.

    Parents keep growing after spawning children, so the link is checked
    against the parent's full history, not its current tip.
    """
    genesis = chain.genesis
    link_hash = genesis.previous_hash if genesis else None

    if parent is None or parent.length == 0:
        return {
            'parent_linkage_valid': False,
            'parent_hash_info': f"BROKEN: parent chain {chain.parent_id} not found",
            'linked_parent_block': None,
        }

    index = parent.index_of_hash(link_hash) if link_hash else -1
    if index >= 0:
        info = f"linked to parent block {index}"
    else:
        info = f"BROKEN: previous_hash {link_hash} not found in parent chain"
    return {
        'parent_linkage_valid': index >= 0,
        'parent_hash_info': info,
        'linked_parent_block': index if index >= 0 else None,
    }


# ============================================================================
# Chain-level validators
# ============================================================================

def _chain_result(chain: TierChain, kind: str) -> Dict[str, Any]:
    structure = chain.validate_structure()
    blocks = chain.blocks
    essential = validate_chain_essential_fields(blocks)
    return {
        'type': kind,
        'chain_id': chain.chain_id,
        'chain_name': chain.name,
        'block_count': len(blocks),
        'is_valid': structure.valid and essential['is_valid'],
        'errors': list(structure.errors),
        'genesis_block_valid': validate_genesis_block(chain.genesis),
        'pow_valid': validate_proof_of_work(blocks, chain.difficulty),
        'hash_chain_valid': validate_hash_chain(blocks),
        'essential_fields_valid': essential['is_valid'],
        'essential_fields_summary': essential['summary'],
        'essential_fields_issues': essential['issues'],
        'compliance': {
            'fields': list(ESSENTIAL_FIELDS),
            'compliant': essential['is_valid'],
        },
    }


def _with_parent_linkage(result: Dict[str, Any], chain: TierChain,
                         parent: Optional[TierChain], kind: str) -> Dict[str, Any]:
    linkage = check_parent_linkage(chain, parent)
    result.update(linkage)
    result['parent_id'] = chain.parent_id
    result['is_valid'] = result['is_valid'] and linkage['parent_linkage_valid']
    result['dependency_impact'] = (
        "No impact" if linkage['parent_linkage_valid']
        else f"{kind} chain broken: {linkage['parent_hash_info']}"
    )
    return result


def validate_org_unit_chain(chain: TierChain) -> Dict[str, Any]:
    return _chain_result(chain, "ORG_UNIT")


def validate_sub_unit_chain(chain: TierChain, parent: Optional[TierChain]) -> Dict[str, Any]:
    result = _chain_result(chain, "SUB_UNIT")
    return _with_parent_linkage(result, chain, parent, "Sub-unit")


def validate_leaf_entity_chain(chain: TierChain, parent: Optional[TierChain]) -> Dict[str, Any]:
    result = _chain_result(chain, "LEAF_ENTITY")
    result['chain_name'] = f"{chain.name} ({chain.external_key})"
    result['event_records'] = sum(
        1 for b in chain.blocks if b.record.get('type') == EVENT_RECORD_TYPE
    )
    result['event_stats'] = chain.event_stats()
    return _with_parent_linkage(result, chain, parent, "Leaf entity")


def validate_system(snapshot: SystemSnapshot) -> Dict[str, Any]:
    """
    Validate every chain in the system.

    Returns:
        Dict with is_valid (AND over all chains), per-tier results and a
        timestamp
    """
    org_units = [validate_org_unit_chain(c) for c in snapshot.org_units.values()]
    sub_units = [
        validate_sub_unit_chain(c, snapshot.org_units.get(c.parent_id))
        for c in snapshot.sub_units.values()
    ]
    leaf_entities = [
        validate_leaf_entity_chain(c, snapshot.sub_units.get(c.parent_id))
        for c in snapshot.leaf_entities.values()
    ]
    all_results = org_units + sub_units + leaf_entities
    return {
        'is_valid': all(r['is_valid'] for r in all_results),
        'timestamp': utc_timestamp(),
        'org_units': org_units,
        'sub_units': sub_units,
        'leaf_entities': leaf_entities,
        'error_count': sum(len(r['errors']) for r in all_results),
    }


# ============================================================================
# Tamper Impact
# ============================================================================

def check_sub_unit_tamper_impact(snapshot: SystemSnapshot, sub_unit_id: str) -> Dict[str, Any]:
    """Leaf entities orphaned if the sub-unit chain were compromised."""
    impacted = [
        entity_id for entity_id, chain in snapshot.leaf_entities.items()
        if chain.parent_id == sub_unit_id
    ]
    return {
        'tampered_sub_unit_id': sub_unit_id,
        'impacted_leaf_entities': impacted,
        'impacted_leaf_entity_count': len(impacted),
        'cascade_impact': f"Tampering sub-unit affects {len(impacted)} leaf entities",
    }


def check_org_unit_tamper_impact(snapshot: SystemSnapshot, org_unit_id: str) -> Dict[str, Any]:
    """Sub-units and leaf entities orphaned if the org unit were compromised."""
    impacted_sub_units = [
        sub_unit_id for sub_unit_id, chain in snapshot.sub_units.items()
        if chain.parent_id == org_unit_id
    ]
    impacted_entities: List[str] = []
    for sub_unit_id in impacted_sub_units:
        impacted_entities.extend(
            check_sub_unit_tamper_impact(snapshot, sub_unit_id)['impacted_leaf_entities']
        )
    return {
        'tampered_org_unit_id': org_unit_id,
        'impacted_sub_units': impacted_sub_units,
        'impacted_sub_unit_count': len(impacted_sub_units),
        'impacted_leaf_entities': impacted_entities,
        'impacted_leaf_entity_count': len(impacted_entities),
        'cascade_impact': (
            f"Tampering org unit affects {len(impacted_sub_units)} sub-units "
            f"and {len(impacted_entities)} leaf entities"
        ),
    }


# ============================================================================
# Report
# ============================================================================

def _mark(ok: bool) -> str:
    return "✓" if ok else "✗"


def render_report(validation: Mapping[str, Any]) -> str:
    """Render a validate_system result as Markdown."""
    lines = [
        "# Ledger System Validation Report",
        "",
        f"**Timestamp:** {validation['timestamp']}",
        f"**System Valid:** {'✓ YES' if validation['is_valid'] else '✗ NO'}",
        "",
        "## Org Unit Chains",
    ]
    for result in validation['org_units']:
        lines.append(f"### {result['chain_name']}")
        lines.append(f"- Status: {_mark(result['is_valid'])} {'Valid' if result['is_valid'] else 'Invalid'}")
        lines.append(f"- Blocks: {result['block_count']}")
        lines.append(f"- PoW Valid: {_mark(result['pow_valid']['is_valid'])}")
        lines.append(f"- Essential Fields: {result['essential_fields_summary']}")
        if result['errors']:
            lines.append("- Errors:")
            lines.extend(f"  - {error}" for error in result['errors'])

    for title, key, extra in (
        ("Sub-unit Chains", 'sub_units', None),
        ("Leaf Entity Chains", 'leaf_entities', 'event_records'),
    ):
        lines.append("")
        lines.append(f"## {title}")
        for result in validation[key]:
            lines.append(f"### {result['chain_name']}")
            lines.append(f"- Status: {_mark(result['is_valid'])} {'Valid' if result['is_valid'] else 'Invalid'}")
            lines.append(f"- Blocks: {result['block_count']}")
            if extra:
                lines.append(f"- Attendance Records: {result[extra]}")
            lines.append(f"- Parent Linkage: {_mark(result['parent_linkage_valid'])} {result['parent_hash_info']}")
            lines.append(f"- PoW Valid: {_mark(result['pow_valid']['is_valid'])}")
            lines.append(f"- Essential Fields: {result['essential_fields_summary']}")
            if result['errors']:
                lines.append("- Errors:")
                lines.extend(f"  - {error}" for error in result['errors'])
            if not result['parent_linkage_valid']:
                lines.append(f"- **Impact:** {result['dependency_impact']}")

    return "\n".join(lines) + "\n"


def generate_report(snapshot: SystemSnapshot) -> str:
    """Validate the system and render the result."""
    return render_report(validate_system(snapshot))
