# Integration Module
"""
Chain manager: the single owner and writer of every ledger chain.
"""

from .manager import ChainManager, ChainStore

__all__ = [
    'ChainManager',
    'ChainStore',
]
