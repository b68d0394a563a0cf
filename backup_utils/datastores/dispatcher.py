"""
DatastoreDispatcher - picks the routine for each datastore step.

Routines are looked up in a table keyed by (step, topology, strategy):

    (StepName.REPOSITORIES, Topology.CLUSTER, None)               cluster path
    (StepName.REPOSITORIES, Topology.STANDALONE, Strategy.RSYNC)  rsync path
    (StepName.MYSQL, None, None)                                  any target

Cluster entries are consulted first, so a cluster target never falls through
to a legacy strategy routine. The strategy is read once from the snapshot.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from ..cluster.ssh import RemoteHost
from ..cluster.topology import TopologyResolver
from ..cluster.tunnel import TunnelTransport
from ..errors import PreconditionError
from ..snapshot.models import Snapshot, Strategy

logger = logging.getLogger(__name__)


class Topology(str, Enum):
    """Target topology; the two have disjoint routine sets."""
    CLUSTER = "cluster"
    STANDALONE = "standalone"


class StepName(str, Enum):
    """Independently restorable units of target state."""
    SETTINGS = "settings"
    MYSQL = "mysql"
    REDIS = "redis"
    AUTHORIZED_KEYS = "authorized-keys"
    REPOSITORIES = "repositories"
    PAGES = "pages"
    STORAGE = "storage"
    ASSETS = "assets"
    HOOKSHOT = "hookshot"
    ELASTICSEARCH = "elasticsearch"
    SSH_HOST_KEYS = "ssh-host-keys"


@dataclass
class StepContext:
    """Everything a routine may touch while it runs."""
    snapshot: Snapshot
    remote: RemoteHost
    resolver: TopologyResolver
    tunnel: TunnelTransport
    dedup_base: Optional[Path] = None      # Backup only: prior committed snapshot
    parallel: bool = False                 # Run fan-out transfers concurrently

    def base_dir(self, name: str) -> Optional[Path]:
        """Datastore directory in the dedup base, if it exists."""
        if self.dedup_base is None:
            return None
        path = self.dedup_base / name
        return path if path.is_dir() else None


Routine = Callable[[StepContext], None]
RoutineKey = Tuple[StepName, Optional[Topology], Optional[Strategy]]
Predicate = Callable[[object], bool]


def always(session) -> bool:
    return True


def cluster_only(session) -> bool:
    return bool(session.is_cluster)


def standalone_only(session) -> bool:
    return not session.is_cluster


def settings_requested(session) -> bool:
    return bool(session.restore_settings)


@dataclass(frozen=True)
class StepSpec:
    """A position in the fixed step order."""
    name: StepName
    applies: Predicate
    rationale: str
    after_complete: bool = False    # Runs after status "complete" is published


@dataclass
class DatastoreStep:
    """A step resolved for one session."""
    name: StepName
    routine: Routine
    rationale: str = ""
    after_complete: bool = False

    def run(self, context: StepContext) -> None:
        self.routine(context)


# Restore order. Data dependencies, not source order, decide position.
RESTORE_ORDER: List[StepSpec] = [
    StepSpec(StepName.SETTINGS, settings_requested,
             "settings and license shape everything restored after them"),
    StepSpec(StepName.MYSQL, always, "primary metadata"),
    StepSpec(StepName.REDIS, always, "job and cache state tied to mysql"),
    StepSpec(StepName.AUTHORIZED_KEYS, always, "credentials before repository access"),
    StepSpec(StepName.REPOSITORIES, always, "source-control data"),
    StepSpec(StepName.PAGES, always, "published page content"),
    StepSpec(StepName.STORAGE, cluster_only, "sharded blob storage"),
    StepSpec(StepName.ASSETS, standalone_only, "per-appliance asset storage"),
    StepSpec(StepName.HOOKSHOT, always, "hook configuration and deliveries"),
    StepSpec(StepName.ELASTICSEARCH, always, "derived indices after repository and blob data"),
    StepSpec(StepName.SSH_HOST_KEYS, standalone_only,
             "host keys change the control channel; last, after status is final",
             after_complete=True),
]

# Backup captures everything the restore side can consume.
BACKUP_ORDER: List[StepSpec] = [
    StepSpec(StepName.SETTINGS, always, "settings and license"),
    StepSpec(StepName.SSH_HOST_KEYS, always, "host keys"),
    StepSpec(StepName.MYSQL, always, "primary metadata"),
    StepSpec(StepName.REDIS, always, "job and cache state"),
    StepSpec(StepName.AUTHORIZED_KEYS, always, "credentials"),
    StepSpec(StepName.REPOSITORIES, always, "source-control data"),
    StepSpec(StepName.PAGES, always, "published page content"),
    StepSpec(StepName.STORAGE, cluster_only, "sharded blob storage"),
    StepSpec(StepName.ASSETS, standalone_only, "per-appliance asset storage"),
    StepSpec(StepName.HOOKSHOT, always, "hook configuration and deliveries"),
    StepSpec(StepName.ELASTICSEARCH, always, "search indices"),
]


class DatastoreDispatcher:
    """Resolves the ordered, applicable steps for a session."""

    def __init__(self, routines: Dict[RoutineKey, Routine], order: List[StepSpec]):
        self.routines = routines
        self.order = order

    @staticmethod
    def topology_of(session) -> Topology:
        return Topology.CLUSTER if session.is_cluster else Topology.STANDALONE

    def resolve_strategy(self, session) -> Strategy:
        """
        Strategy recorded in the session's snapshot.

        Resolved once per session and cached on it; the live target is never
        consulted.
        """
        if session.strategy is not None:
            return session.strategy
        strategy = session.snapshot.strategy
        if strategy is None:
            raise PreconditionError(
                f"Snapshot {session.snapshot.id} has no recorded backup strategy"
            )
        session.strategy = strategy
        logger.debug("Snapshot %s strategy: %s", session.snapshot.id, strategy.value)
        return strategy

    def routine_for(self, step: StepName, session) -> Routine:
        """
        Look up the routine for a step.

        Raises:
            LookupError: If no routine is registered for this combination
        """
        topology = self.topology_of(session)
        strategy = self.resolve_strategy(session)

        if topology == Topology.CLUSTER:
            keys = [(step, topology, None), (step, topology, strategy)]
        else:
            keys = [(step, topology, strategy), (step, topology, None)]
        keys.extend([(step, None, strategy), (step, None, None)])

        for key in keys:
            routine = self.routines.get(key)
            if routine is not None:
                return routine
        raise LookupError(
            f"No routine for step '{step.value}' "
            f"({topology.value}, {strategy.value})"
        )

    def steps(self, session) -> List[DatastoreStep]:
        """Applicable steps for the session, in execution order."""
        resolved = []
        for spec in self.order:
            if not spec.applies(session):
                logger.debug("Skipping %s: not applicable", spec.name.value)
                continue
            resolved.append(DatastoreStep(
                name=spec.name,
                routine=self.routine_for(spec.name, session),
                rationale=spec.rationale,
                after_complete=spec.after_complete,
            ))
        return resolved
