"""
DocQuery Test Suite.

This package contains:
- unit/: Unit tests (no I/O beyond temporary directories, fake stores)
- integration/: Integration tests (in-memory SQLite store, HTTP gateway, CLI)
"""
