"""
Datastore steps for backup_utils.

Provides:
- DatastoreDispatcher: ordered, applicable steps and their routines
- restore_dispatcher() / backup_dispatcher(): dispatchers with the built-in tables
"""

from .backup import BACKUP_ROUTINES
from .dispatcher import (
    BACKUP_ORDER,
    RESTORE_ORDER,
    DatastoreDispatcher,
    DatastoreStep,
    StepContext,
    StepName,
    StepSpec,
    Topology,
)
from .restore import RESTORE_ROUTINES


def restore_dispatcher() -> DatastoreDispatcher:
    return DatastoreDispatcher(RESTORE_ROUTINES, RESTORE_ORDER)


def backup_dispatcher() -> DatastoreDispatcher:
    return DatastoreDispatcher(BACKUP_ROUTINES, BACKUP_ORDER)


__all__ = [
    'DatastoreDispatcher',
    'DatastoreStep',
    'StepContext',
    'StepName',
    'StepSpec',
    'Topology',
    'RESTORE_ORDER',
    'BACKUP_ORDER',
    'restore_dispatcher',
    'backup_dispatcher',
]
