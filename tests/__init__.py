"""
entmigrate Test Suite.

This package contains:
- unit/: Unit tests (no database)
- integration/: Integration tests (SQLite files through SQLAlchemy)
- e2e/: End-to-end tests (live MySQL and PostgreSQL servers)
"""
