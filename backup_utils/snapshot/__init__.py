"""
Snapshot store for backup_utils.

Snapshots are sibling directories named by increasing id, each with one
subdirectory per datastore plus `strategy` and `version` files. A `current`
symlink names the most recently committed snapshot and is the dedup base for
the next backup.
"""

from .models import (
    Snapshot,
    SnapshotInfo,
    Strategy,
    parse_version,
    strategy_for_version,
    version_at_least,
)
from .store import SnapshotStore

__all__ = [
    'Snapshot',
    'SnapshotInfo',
    'Strategy',
    'SnapshotStore',
    'parse_version',
    'strategy_for_version',
    'version_at_least',
]
