"""
Test doubles for backup_utils.

FakeAppliance replaces ssh/rsync; the snapshot factories build committed
snapshots on disk.
"""

from .fake_appliance import ENTRY_HOST, Call, FakeAppliance, Transfer
from .snapshots import RSYNC_FILES, TARBALL_FILES, build_snapshot, write_files

__all__ = [
    'ENTRY_HOST',
    'Call',
    'FakeAppliance',
    'Transfer',
    'RSYNC_FILES',
    'TARBALL_FILES',
    'build_snapshot',
    'write_files',
]
