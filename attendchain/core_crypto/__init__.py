# Core Cryptography Module
"""
Hashing primitives for the ledger:
- Canonical JSON encoding
- SHA-256 hex digests
- Leading-zero difficulty checks
"""
