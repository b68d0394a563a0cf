"""
RestoreOrchestrator - gates, sequences and reports one restore session.

State machine:
INIT → VALIDATING → RESTORING → COMPLETE

- VALIDATING probes the target and applies the gates. A failed gate ends
  the session before anything is published or changed on the target.
- RESTORING publishes "restoring", registers "failed" as the default
  outcome, then runs each datastore step in order, stopping at the first
  failure. No step is retried.
- COMPLETE is published only after every step succeeded. Steps that change
  the control channel (ssh host keys) run after that.
"""

import logging
import re
import shlex
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, List, Optional

from ..cluster.ssh import RemoteHost
from ..cluster.topology import TopologyResolver
from ..cluster.tunnel import TunnelTransport
from ..datastores import DatastoreDispatcher, DatastoreStep, StepContext, restore_dispatcher
from ..errors import (
    MaintenanceModeError,
    OperatorAbort,
    PreconditionError,
    StepFailedError,
    TransportError,
    UnreachableHostError,
    VersionMismatchError,
)
from ..snapshot.models import Snapshot, Strategy, parse_version, version_at_least
from .state import State, StateMachine
from .status import RemoteStatusReporter, RestoreStatus

logger = logging.getLogger(__name__)

MINIMUM_TARGET_VERSION = "2.2.0"
MINIMUM_CLUSTER_SNAPSHOT_VERSION = "2.5.0"

RELEASE_FILE = "/etc/github/enterprise-release"
CONFIGURED_MARKER = "/etc/github/configured"
CLUSTER_MARKER = "/etc/github/cluster"
REPLICATION_MARKER = "/data/user/common/repl-state"
MAINTENANCE_PAGE = "/data/github/current/public/system/maintenance.html"

RELEASE_VERSION_RE = re.compile(r"^RELEASE_VERSION=[\"']?([^\"'\s]+)", re.MULTILINE)


@dataclass
class TargetInfo:
    """What the target reported about itself."""
    version: str
    is_configured: bool = False
    is_cluster: bool = False
    is_replica: bool = False


def probe_target(remote: RemoteHost) -> TargetInfo:
    """
    Read version and role markers from the target.

    Raises:
        UnreachableHostError: If the host cannot be reached or reports no version
    """
    try:
        release = remote.read_file(RELEASE_FILE)
    except (TransportError, OSError) as e:
        raise UnreachableHostError(f"Could not reach {remote.target}: {e}") from e
    if release is None:
        raise UnreachableHostError(f"Could not read the appliance version from {remote.target}")

    match = RELEASE_VERSION_RE.search(release)
    if not match:
        raise UnreachableHostError(f"{remote.target} did not report a release version")

    version = match.group(1)
    try:
        parse_version(version)
    except ValueError as e:
        raise UnreachableHostError(f"{remote.target} reported an invalid version: {version}") from e

    def has(path: str) -> bool:
        return remote.test(f"test -f {shlex.quote(path)}")

    return TargetInfo(
        version=version,
        is_configured=has(CONFIGURED_MARKER),
        is_cluster=has(CLUSTER_MARKER),
        is_replica=has(REPLICATION_MARKER),
    )


@dataclass
class RestoreSession:
    """State of one restore, owned by the orchestrator."""
    target: str
    snapshot: Snapshot
    target_version: Optional[str] = None
    is_cluster: bool = False
    is_configured: bool = False
    is_replica: bool = False
    restore_settings: bool = False
    strategy: Optional[Strategy] = None
    status: Optional[RestoreStatus] = None
    completed_steps: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def topology(self) -> str:
        return "cluster" if self.is_cluster else "standalone"


class RestoreOrchestrator:
    """Runs a restore session against one target."""

    def __init__(
        self,
        remote: RemoteHost,
        snapshot: Snapshot,
        restore_settings: bool = False,
        force: bool = False,
        confirm: Optional[Callable[[RestoreSession], None]] = None,
        reporter: Optional[RemoteStatusReporter] = None,
        dispatcher: Optional[DatastoreDispatcher] = None,
        resolver: Optional[TopologyResolver] = None,
        tunnel: Optional[TunnelTransport] = None,
        parallel: bool = False,
    ):
        """
        Args:
            remote: Entry host of the target
            snapshot: Committed snapshot to restore
            restore_settings: Restore settings and license (-c)
            force: Skip the confirmation prompt (-f)
            confirm: Called before anything is changed; raises OperatorAbort to decline
            reporter: Status publisher (default: the well-known status file)
            dispatcher: Step table (default: built-in restore routines)
            resolver: Cluster member lookup
            tunnel: Transport to cluster members
            parallel: Run fan-out transfers concurrently
        """
        self.remote = remote
        self.snapshot = snapshot
        self.restore_settings = restore_settings
        self.force = force
        self.confirm = confirm
        self.reporter = reporter or RemoteStatusReporter(remote)
        self.dispatcher = dispatcher or restore_dispatcher()
        self.resolver = resolver or TopologyResolver(remote)
        self.tunnel = tunnel or TunnelTransport(remote)
        self.parallel = parallel

        self.state_machine = StateMachine()
        self.session: Optional[RestoreSession] = None

        # Callbacks
        self._on_state_change: Optional[Callable[[State, State, Dict], None]] = None
        self._on_step: Optional[Callable[[DatastoreStep, int, int], None]] = None

    def on_state_change(self, callback: Callable[[State, State, Dict], None]):
        """Register callback for state changes."""
        self._on_state_change = callback

    def on_step(self, callback: Callable[[DatastoreStep, int, int], None]):
        """Register callback invoked before each step (step, index, total)."""
        self._on_step = callback

    # =========================================================================
    # Session
    # =========================================================================

    def run(self) -> RestoreSession:
        """
        Run the restore.

        Returns:
            The finished session

        Raises:
            PreconditionError: A validation gate failed (nothing was changed)
            OperatorAbort: The operator declined at the prompt
            StepFailedError: A datastore step failed
        """
        try:
            self._transition(State.VALIDATING)
            session = self._validate()
            self._confirm(session)

            self._transition(State.RESTORING, {"strategy": session.strategy.value})
            steps = self.dispatcher.steps(session)
            with self.failure_status(session):
                self._publish(session, RestoreStatus.RESTORING)
                self._pause_background_jobs()
                for step in (s for s in steps if not s.after_complete):
                    self._run_step(session, step, steps)
                self._apply_config(session)
                self._publish(session, RestoreStatus.COMPLETE)

            # Host key changes can drop the control channel; status is final by now
            for step in (s for s in steps if s.after_complete):
                self._run_step(session, step, steps)

            self._transition(State.COMPLETE)
            return session

        except OperatorAbort:
            self._transition(State.FAILED, {"reason": "operator_abort"})
            raise
        except BaseException as e:
            if not self.state_machine.is_terminal():
                self._transition(State.FAILED, {"error": str(e) or type(e).__name__})
            raise

    @contextmanager
    def failure_status(self, session: RestoreSession) -> Iterator[RestoreSession]:
        """
        Publish "failed" on every exit from the block unless "complete" was
        published inside it.

        An interrupt arriving while "failed" is being published can still
        leave the target reporting "restoring".
        """
        try:
            yield session
        finally:
            if session.status != RestoreStatus.COMPLETE:
                self._publish(session, RestoreStatus.FAILED)

    # =========================================================================
    # Validation
    # =========================================================================

    def _validate(self) -> RestoreSession:
        info = probe_target(self.remote)
        logger.info(
            "Target %s: version %s, %s, %s",
            self.remote.target, info.version,
            "cluster" if info.is_cluster else "standalone",
            "configured" if info.is_configured else "unconfigured",
        )
        session = RestoreSession(
            target=str(self.remote.target),
            snapshot=self.snapshot,
            target_version=info.version,
            is_cluster=info.is_cluster,
            is_configured=info.is_configured,
            is_replica=info.is_replica,
            restore_settings=self.restore_settings,
        )
        self.session = session

        if not version_at_least(info.version, MINIMUM_TARGET_VERSION):
            raise VersionMismatchError(
                f"Target version {info.version} is not supported "
                f"(minimum {MINIMUM_TARGET_VERSION})"
            )

        self.dispatcher.resolve_strategy(session)

        if session.is_cluster:
            snapshot_version = self.snapshot.version
            if not self._snapshot_at_least(MINIMUM_CLUSTER_SNAPSHOT_VERSION):
                raise VersionMismatchError(
                    f"Snapshot {self.snapshot.id} (version {snapshot_version or 'unknown'}) "
                    f"cannot be restored to a cluster; "
                    f"minimum {MINIMUM_CLUSTER_SNAPSHOT_VERSION}"
                )

        if session.is_configured and not session.is_cluster:
            if not self.remote.test(f"test -f {shlex.quote(MAINTENANCE_PAGE)}"):
                raise MaintenanceModeError(
                    f"{session.target} is not in maintenance mode. "
                    f"Enable maintenance mode before restoring."
                )

        if not session.is_configured:
            # Legacy targets already failed the minimum version check; legacy
            # data now arrives only as a legacy snapshot
            if self._is_legacy_snapshot() and not self.restore_settings:
                raise PreconditionError(
                    f"Snapshot {self.snapshot.id} is from a legacy release; "
                    f"restoring it to an unconfigured target requires -c"
                )
            session.restore_settings = True
            logger.info("Target is unconfigured; settings will be restored")

        if session.is_replica:
            self._warn(
                session,
                "Target is part of a replication pair; replication will be "
                "interrupted and must be set up again after the restore",
            )
        return session

    def _snapshot_at_least(self, minimum: str) -> bool:
        try:
            return self.snapshot.version is not None and version_at_least(self.snapshot.version, minimum)
        except ValueError:
            return False

    def _is_legacy_snapshot(self) -> bool:
        try:
            return self.snapshot.version is not None and parse_version(self.snapshot.version)[0] < 2
        except ValueError:
            return False

    def _confirm(self, session: RestoreSession) -> None:
        if self.force or not session.is_configured or self.confirm is None:
            return
        self.confirm(session)

    # =========================================================================
    # Steps
    # =========================================================================

    def _run_step(self, session: RestoreSession, step: DatastoreStep, steps: List[DatastoreStep]) -> None:
        if self._on_step:
            self._on_step(step, steps.index(step) + 1, len(steps))
        logger.info("Restoring %s", step.name.value)
        context = StepContext(
            snapshot=session.snapshot,
            remote=self.remote,
            resolver=self.resolver,
            tunnel=self.tunnel,
            parallel=self.parallel,
        )
        try:
            step.run(context)
        except Exception as e:
            logger.error("Restore of %s failed: %s", step.name.value, e)
            raise StepFailedError(step.name.value, e) from e
        session.completed_steps.append(step.name.value)

    def _pause_background_jobs(self) -> None:
        try:
            result = self.remote.run("ghe-maintenance-jobs stop", check=False)
        except OSError as e:
            logger.warning("Could not pause background jobs: %s", e)
            return
        if not result.ok:
            logger.warning("Could not pause background jobs: %s", result.stderr.strip())

    def _apply_config(self, session: RestoreSession) -> None:
        if session.is_cluster:
            command = "ghe-cluster-config-apply"
        elif session.is_configured:
            command = "ghe-config-apply"
        else:
            return

        logger.info("Applying configuration (%s)", command)
        try:
            self.remote.run(command)
        except (TransportError, OSError) as e:
            self._warn(session, f"Configuration apply reported a problem: {e}")

    # =========================================================================
    # Helpers
    # =========================================================================

    def _publish(self, session: RestoreSession, status: RestoreStatus) -> None:
        session.status = status
        self.reporter.publish(status)

    def _warn(self, session: RestoreSession, message: str) -> None:
        logger.warning(message)
        session.warnings.append(message)

    def _transition(self, to_state: State, metadata: Optional[Dict] = None):
        """Transition state machine and notify callbacks."""
        from_state = self.state_machine.state
        self.state_machine.transition(to_state, metadata)

        if self._on_state_change:
            self._on_state_change(from_state, to_state, metadata or {})
