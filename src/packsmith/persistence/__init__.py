"""
packsmith — persistence

File: src/packsmith/persistence/__init__.py

Purpose
- SQLite state DB access, migrations, and the durable store implementations
  used by the CLI.

Non-functional requirements
- SQLite-first; avoid heavy DB dependencies.
"""
