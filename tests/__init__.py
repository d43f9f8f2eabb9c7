"""
Folio Test Suite.

This package contains:
- unit/: Unit tests (in-memory storage, mocked webhooks)
- integration/: Integration tests (wired server on SQLite)
"""
