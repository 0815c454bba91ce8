# AttendChain Test Suite
"""
Test suite including:
- Unit tests (blocks, chains, tier chains, validator)
- Integration tests (manager workflows, persistence)
- Security tests (tampering, invalid inputs)

Run with: pytest
"""
