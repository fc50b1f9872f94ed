"""
entgen Test Suite.

This package contains:
- unit/: Unit tests per compiler phase and runtime contract
- builders.py: Helpers for building schema sets in tests
"""
