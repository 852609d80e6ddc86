"""
packsmith — package root

File: src/packsmith/__init__.py

Purpose
- Deterministic spec-pack engine: canonical archives, diffs, patches, proposals
  and governance gating for reviewable spec artifacts.

Functional requirements
- Must not have side effects at import time (no config loading, no logging init).

Non-functional requirements
- Keep the import surface small; heavy submodules are imported lazily by callers.
"""

from __future__ import annotations

__version__ = "1.1.1"

__all__ = ["__version__"]
