"""
JSON Chain Store

Persists a whole system as one JSON file per tier:

    <data_dir>/org_units.json
    <data_dir>/sub_units.json
    <data_dir>/leaf_entities.json

Each file maps chain id -> TierChain.to_dict(). Loading rebuilds the
chains and hands them to ChainManager.restore(). A chain whose blocks no
longer validate is still loaded (and logged) so it can be audited.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Mapping

from ..blockchain.block import DEFAULT_DIFFICULTY
from ..blockchain.tiers import LEAF_ENTITY, ORG_UNIT, SUB_UNIT, TierChain
from ..errors import AttendChainError, StorageError
from ..integration.manager import ChainManager

logger = logging.getLogger(__name__)

TIER_FILES = {
    ORG_UNIT.tag: "org_units.json",
    SUB_UNIT.tag: "sub_units.json",
    LEAF_ENTITY.tag: "leaf_entities.json",
}


def chain_to_dict(chain: TierChain) -> Dict[str, Any]:
    """Serialize a chain to a self-describing dict."""
    return chain.to_dict()


def chain_from_dict(data: Mapping[str, Any]) -> TierChain:
    """
    Rebuild a chain from its serialized form.

    Raises:
        StorageError: If the data is malformed
    """
    try:
        chain = TierChain.from_dict(data)
    except (KeyError, TypeError, ValueError, AttendChainError) as exc:
        raise StorageError(f"Malformed chain data: {exc}") from exc

    report = chain.validate_structure()
    if not report.valid:
        logger.warning(
            "loaded_chain_invalid",
            extra={"chain_id": chain.chain_id, "errors": report.errors},
        )
    return chain


class JsonChainStore:
    """File-backed persistence for a ChainManager."""

    def __init__(self, data_dir: Path):
        """
        Initialize the store, creating empty tier files if needed.

        Args:
            data_dir: Directory holding the tier files
        """
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        for filename in TIER_FILES.values():
            path = self.data_dir / filename
            if not path.exists():
                self._write(path, {})

    def _path(self, tier_tag: str) -> Path:
        try:
            return self.data_dir / TIER_FILES[tier_tag]
        except KeyError:
            raise StorageError(f"Unknown tier tag: {tier_tag!r}") from None

    @staticmethod
    def _read(path: Path) -> Dict[str, Any]:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise StorageError(f"Cannot read {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise StorageError(f"{path} does not contain a JSON object")
        return data

    @staticmethod
    def _write(path: Path, data: Mapping[str, Any]) -> None:
        tmp = path.with_suffix(path.suffix + ".tmp")
        try:
            tmp.write_text(json.dumps(data, indent=2), encoding="utf-8")
            tmp.replace(path)
        except (OSError, TypeError, ValueError) as exc:
            raise StorageError(f"Cannot write {path}: {exc}") from exc

    # ========================================================================
    # Single chains
    # ========================================================================

    def save_chain(self, chain: TierChain) -> None:
        """Insert or replace one chain in its tier file."""
        path = self._path(chain.tier_tag)
        data = self._read(path)
        data[chain.chain_id] = chain_to_dict(chain)
        self._write(path, data)

    def load_chain(self, tier_tag: str, chain_id: str) -> TierChain:
        data = self._read(self._path(tier_tag))
        if chain_id not in data:
            raise StorageError(f"No stored {tier_tag} chain {chain_id}")
        return chain_from_dict(data[chain_id])

    # ========================================================================
    # Whole system
    # ========================================================================

    def save_system(self, manager: ChainManager) -> None:
        snapshot = manager.snapshot()
        for tier_tag, chains in (
            (ORG_UNIT.tag, snapshot.org_units),
            (SUB_UNIT.tag, snapshot.sub_units),
            (LEAF_ENTITY.tag, snapshot.leaf_entities),
        ):
            self._write(
                self._path(tier_tag),
                {chain_id: chain_to_dict(chain) for chain_id, chain in chains.items()},
            )
        logger.info("system_saved", extra={"data_dir": str(self.data_dir)})

    def load_tier(self, tier_tag: str) -> Dict[str, TierChain]:
        return {
            chain_id: chain_from_dict(chain_data)
            for chain_id, chain_data in self._read(self._path(tier_tag)).items()
        }

    def load_system(self, difficulty: int = DEFAULT_DIFFICULTY) -> ChainManager:
        """Rebuild a ChainManager from the tier files."""
        return ChainManager.restore(
            self.load_tier(ORG_UNIT.tag),
            self.load_tier(SUB_UNIT.tag),
            self.load_tier(LEAF_ENTITY.tag),
            difficulty=difficulty,
        )

    def clear(self) -> None:
        for filename in TIER_FILES.values():
            self._write(self.data_dir / filename, {})

    # ========================================================================
    # Backups
    # ========================================================================

    def create_backup(self, backup_path: Path) -> None:
        """Write all three tier files into one backup document."""
        backup = {
            tier_tag: self._read(self._path(tier_tag))
            for tier_tag in TIER_FILES
        }
        self._write(Path(backup_path), backup)

    def import_backup(self, backup_path: Path) -> None:
        """Replace the tier files with the contents of a backup."""
        backup = self._read(Path(backup_path))
        for tier_tag in TIER_FILES:
            if tier_tag in backup:
                self._write(self._path(tier_tag), backup[tier_tag])
