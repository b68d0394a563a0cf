"""
BackupRunner - takes one snapshot of the target.

Flow: probe target → pick strategy from its version → begin snapshot → run
backup steps → hardlink unchanged dumps → commit → prune.

A failure anywhere before commit removes the partial snapshot; `current`
keeps pointing at the previous one.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from ..cluster.ssh import RemoteHost
from ..cluster.topology import TopologyResolver
from ..cluster.tunnel import TunnelTransport
from ..datastores import DatastoreDispatcher, DatastoreStep, StepContext, backup_dispatcher
from ..errors import StepFailedError
from ..snapshot.models import Snapshot, Strategy, strategy_for_version
from ..snapshot.store import SnapshotStore
from .restore import probe_target

logger = logging.getLogger(__name__)


@dataclass
class BackupSession:
    """State of one backup run."""
    target: str
    snapshot: Snapshot
    target_version: str
    is_cluster: bool = False
    strategy: Optional[Strategy] = None
    restore_settings: bool = True    # Settings are always captured
    completed_steps: List[str] = field(default_factory=list)
    linked_files: int = 0
    pruned: List[str] = field(default_factory=list)


class BackupRunner:
    """Writes a new snapshot from the target into a SnapshotStore."""

    def __init__(
        self,
        remote: RemoteHost,
        store: SnapshotStore,
        dispatcher: Optional[DatastoreDispatcher] = None,
        resolver: Optional[TopologyResolver] = None,
        tunnel: Optional[TunnelTransport] = None,
        parallel: bool = False,
    ):
        self.remote = remote
        self.store = store
        self.dispatcher = dispatcher or backup_dispatcher()
        self.resolver = resolver or TopologyResolver(remote)
        self.tunnel = tunnel or TunnelTransport(remote)
        self.parallel = parallel
        self._on_step: Optional[Callable[[DatastoreStep, int, int], None]] = None

    def on_step(self, callback: Callable[[DatastoreStep, int, int], None]):
        """Register callback invoked before each step (step, index, total)."""
        self._on_step = callback

    def run(self) -> BackupSession:
        """
        Take a snapshot.

        Returns:
            The finished session; its snapshot is committed and current

        Raises:
            UnreachableHostError: If the target cannot be probed
            SnapshotError: If another backup is running
            StepFailedError: If a datastore step failed
        """
        info = probe_target(self.remote)
        strategy = strategy_for_version(info.version)
        logger.info("Backing up %s (version %s, strategy %s)", self.remote.target, info.version, strategy.value)

        snapshot = self.store.begin(strategy=strategy, version=info.version)
        session = BackupSession(
            target=str(self.remote.target),
            snapshot=snapshot,
            target_version=info.version,
            is_cluster=info.is_cluster,
            strategy=strategy,
        )
        try:
            self._run_steps(session)
            session.linked_files = self.store.link_unchanged(snapshot)
            self.store.commit(snapshot)
        except BaseException:
            logger.error("Backup failed; removing partial snapshot %s", snapshot.id)
            self.store.abort(snapshot)
            raise

        session.pruned = self.store.prune()
        return session

    def _run_steps(self, session: BackupSession) -> None:
        snapshot = session.snapshot
        dedup_base = self.store.data_dir / snapshot.parent if snapshot.parent else None
        context = StepContext(
            snapshot=snapshot,
            remote=self.remote,
            resolver=self.resolver,
            tunnel=self.tunnel,
            dedup_base=dedup_base,
            parallel=self.parallel,
        )
        steps = self.dispatcher.steps(session)
        for index, step in enumerate(steps, 1):
            if self._on_step:
                self._on_step(step, index, len(steps))
            logger.info("Backing up %s", step.name.value)
            try:
                step.run(context)
            except Exception as e:
                logger.error("Backup of %s failed: %s", step.name.value, e)
                raise StepFailedError(step.name.value, e) from e
            session.completed_steps.append(step.name.value)
