# Blockchain Module
"""
Three-tier ledger implementation including:
- Blocks sealed with SHA-256 Proof of Work (leading zero hex characters)
- Generic append-only chains with structural validation
- Tier chains for org units, sub-units and leaf entities
- Multi-level validator (structure, parent linkage, tamper impact)

Security features:
- Immutable blocks (frozen dataclass)
- Append-only history: updates and deletions are new blocks
- Child chains anchored to a parent block hash at creation
"""

from .block import (
    Block,
    ProofOfWork,
    compute_block_hash,
    DEFAULT_DIFFICULTY,
    ROOT_PREVIOUS_HASH,
)

from .chain import (
    Chain,
    StructureReport,
)

from .tiers import (
    TierChain,
    TierSpec,
    EventStatus,
    ORG_UNIT,
    SUB_UNIT,
    LEAF_ENTITY,
    TIERS,
    EVENT_RECORD_TYPE,
    new_org_unit_chain,
    new_sub_unit_chain,
    new_leaf_entity_chain,
)

from .validator import (
    SystemSnapshot,
    validate_system,
    validate_org_unit_chain,
    validate_sub_unit_chain,
    validate_leaf_entity_chain,
    check_org_unit_tamper_impact,
    check_sub_unit_tamper_impact,
    generate_report,
)

__all__ = [
    # Block
    'Block',
    'ProofOfWork',
    'compute_block_hash',
    'DEFAULT_DIFFICULTY',
    'ROOT_PREVIOUS_HASH',
    # Chain
    'Chain',
    'StructureReport',
    # Tiers
    'TierChain',
    'TierSpec',
    'EventStatus',
    'ORG_UNIT',
    'SUB_UNIT',
    'LEAF_ENTITY',
    'TIERS',
    'EVENT_RECORD_TYPE',
    'new_org_unit_chain',
    'new_sub_unit_chain',
    'new_leaf_entity_chain',
    # Validator
    'SystemSnapshot',
    'validate_system',
    'validate_org_unit_chain',
    'validate_sub_unit_chain',
    'validate_leaf_entity_chain',
    'check_org_unit_tamper_impact',
    'check_sub_unit_tamper_impact',
    'generate_report',
]
