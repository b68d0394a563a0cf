"""
backup_utils - backup and restore for multi-node appliance clusters

Snapshots are taken over ssh/rsync into a local, deduplicated snapshot chain
and restored onto a standalone appliance or a cluster, one datastore at a
time, while the target publishes restore progress.

Usage:
    # From the command line
    backup-utils backup --host ghe.example.com
    backup-utils restore ghe-standby.example.com

    # Programmatically
    from backup_utils import RemoteHost, RestoreOrchestrator, SSHTarget, SnapshotStore

    snapshot = SnapshotStore("./data").resolve()
    with RemoteHost(SSHTarget.parse("ghe-standby.example.com")) as remote:
        session = RestoreOrchestrator(remote, snapshot, force=True).run()
"""

__version__ = "1.0.0"

# Main exports
from .cluster import RemoteHost, SSHTarget, TopologyResolver, TunnelTransport
from .runner import BackupRunner, RestoreOrchestrator, RestoreStatus, RemoteStatusReporter
from .snapshot import Snapshot, SnapshotStore, Strategy

__all__ = [
    # Version
    "__version__",
    # Cluster access
    "RemoteHost",
    "SSHTarget",
    "TopologyResolver",
    "TunnelTransport",
    # Runners
    "BackupRunner",
    "RestoreOrchestrator",
    "RestoreStatus",
    "RemoteStatusReporter",
    # Snapshots
    "Snapshot",
    "SnapshotStore",
    "Strategy",
]
