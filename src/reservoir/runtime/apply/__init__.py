# src/reservoir/runtime/apply/__init__.py
"""Domain-specific apply modules.

Each module owns a subset of tx types and returns None for the rest. The
active logic version (runtime/logic.py) decides which of them run.

NOTE: Keep this package import-safe (no imports of runtime/logic.py from here).
"""

from __future__ import annotations

__all__ = [
    "init",
    "ledger",
    "tax",
    "reward_pool",
    "roles",
    "rescue",
    "upgrade",
]
