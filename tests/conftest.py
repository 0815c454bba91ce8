"""Shared fixtures: low difficulty so mining stays fast."""

from types import SimpleNamespace

import pytest

from attendchain.integration.manager import ChainManager


TEST_DIFFICULTY = 1


@pytest.fixture()
def manager() -> ChainManager:
    return ChainManager(difficulty=TEST_DIFFICULTY)


@pytest.fixture()
def hierarchy(manager: ChainManager) -> SimpleNamespace:
    """One org unit, one sub-unit and two leaf entities."""
    org_unit = manager.create_org_unit("Science", {"description": "Faculty of Science"})
    sub_unit = manager.create_sub_unit("Physics", org_unit.chain_id)
    ada = manager.add_leaf_entity("Ada", "R-1", sub_unit.chain_id)
    alan = manager.add_leaf_entity("Alan", "R-2", sub_unit.chain_id)
    return SimpleNamespace(
        manager=manager,
        org_unit=org_unit,
        sub_unit=sub_unit,
        ada=ada,
        alan=alan,
    )
