# Storage Module
"""
JSON file persistence for ledger chains.
"""

from .json_store import JsonChainStore, chain_from_dict, chain_to_dict

__all__ = [
    'JsonChainStore',
    'chain_from_dict',
    'chain_to_dict',
]
