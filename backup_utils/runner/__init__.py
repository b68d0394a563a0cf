"""
Backup and restore runners.

Provides:
- RestoreOrchestrator: gated, ordered restore with remote status reporting
- BackupRunner: snapshot creation
- StateMachine: restore session states
- RemoteStatusReporter: the remote status file
"""

from .backup import BackupRunner, BackupSession
from .restore import RestoreOrchestrator, RestoreSession, TargetInfo, probe_target
from .state import State, StateEvent, StateMachine
from .status import RemoteStatusReporter, RestoreStatus

__all__ = [
    'BackupRunner',
    'BackupSession',
    'RestoreOrchestrator',
    'RestoreSession',
    'TargetInfo',
    'probe_target',
    'State',
    'StateEvent',
    'StateMachine',
    'RemoteStatusReporter',
    'RestoreStatus',
]
