"""
Tests for step ordering and routine lookup.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import pytest

from backup_utils.datastores import (
    DatastoreDispatcher,
    RESTORE_ORDER,
    StepName,
    Topology,
    backup_dispatcher,
    restore_dispatcher,
)
from backup_utils.datastores import backup as backup_routines
from backup_utils.datastores import restore as restore_routines
from backup_utils.errors import PreconditionError
from backup_utils.snapshot import Snapshot, Strategy


@dataclass
class FakeSession:
    snapshot: Snapshot
    is_cluster: bool = False
    restore_settings: bool = False
    strategy: Optional[Strategy] = None


def session_for(strategy=Strategy.RSYNC, **kwargs):
    snapshot = Snapshot(id="20261016T010000", path=Path("/nonexistent"), strategy=strategy, version="2.13.0")
    return FakeSession(snapshot=snapshot, **kwargs)


def names(steps):
    return [step.name for step in steps]


class TestRestoreOrder:
    def test_standalone_rsync(self):
        steps = restore_dispatcher().steps(session_for(restore_settings=True))

        assert names(steps) == [
            StepName.SETTINGS, StepName.MYSQL, StepName.REDIS, StepName.AUTHORIZED_KEYS,
            StepName.REPOSITORIES, StepName.PAGES, StepName.ASSETS, StepName.HOOKSHOT,
            StepName.ELASTICSEARCH, StepName.SSH_HOST_KEYS,
        ]
        assert [s.name for s in steps if s.after_complete] == [StepName.SSH_HOST_KEYS]

    def test_settings_only_when_requested(self):
        steps = restore_dispatcher().steps(session_for(restore_settings=False))
        assert StepName.SETTINGS not in names(steps)

    def test_cluster_skips_standalone_paths(self):
        steps = restore_dispatcher().steps(session_for(is_cluster=True))

        assert StepName.STORAGE in names(steps)
        assert StepName.ASSETS not in names(steps)
        assert StepName.SSH_HOST_KEYS not in names(steps)

    def test_indices_after_repository_and_blob_data(self):
        order = [spec.name for spec in RESTORE_ORDER]
        es = order.index(StepName.ELASTICSEARCH)
        for data in (StepName.REPOSITORIES, StepName.PAGES, StepName.STORAGE, StepName.ASSETS):
            assert order.index(data) < es
        assert order[-1] == StepName.SSH_HOST_KEYS


class TestRoutineFor:
    def test_cluster_takes_precedence_over_strategy(self):
        dispatcher = restore_dispatcher()
        for strategy in (Strategy.RSYNC, Strategy.TARBALL):
            session = session_for(strategy=strategy, is_cluster=True)
            routine = dispatcher.routine_for(StepName.REPOSITORIES, session)
            assert routine is restore_routines.restore_repositories_cluster

    def test_standalone_uses_strategy(self):
        dispatcher = restore_dispatcher()

        rsync = dispatcher.routine_for(StepName.REPOSITORIES, session_for(strategy=Strategy.RSYNC))
        tarball = dispatcher.routine_for(StepName.REPOSITORIES, session_for(strategy=Strategy.TARBALL))

        assert rsync is restore_routines.restore_repositories_rsync
        assert tarball is restore_routines.restore_repositories_tarball

    def test_topology_independent_routine(self):
        dispatcher = restore_dispatcher()
        for is_cluster in (False, True):
            routine = dispatcher.routine_for(StepName.MYSQL, session_for(is_cluster=is_cluster))
            assert routine is restore_routines.restore_mysql

    def test_unregistered_combination(self):
        dispatcher = DatastoreDispatcher({}, RESTORE_ORDER)
        with pytest.raises(LookupError, match="mysql"):
            dispatcher.routine_for(StepName.MYSQL, session_for())

    def test_backup_hookshot_cluster_uses_first_success_routine(self):
        routine = backup_dispatcher().routine_for(StepName.HOOKSHOT, session_for(is_cluster=True))
        assert routine is backup_routines.backup_hookshot_cluster


class TestResolveStrategy:
    def test_read_once_from_snapshot(self):
        session = session_for(strategy=Strategy.TARBALL)
        dispatcher = restore_dispatcher()

        assert dispatcher.resolve_strategy(session) == Strategy.TARBALL
        session.snapshot.strategy = Strategy.RSYNC
        assert dispatcher.resolve_strategy(session) == Strategy.TARBALL

    def test_missing_strategy_is_precondition_error(self):
        with pytest.raises(PreconditionError):
            restore_dispatcher().resolve_strategy(session_for(strategy=None))


def test_every_restore_step_resolves_for_every_combination():
    dispatcher = restore_dispatcher()
    for topology in Topology:
        for strategy in Strategy:
            session = session_for(
                strategy=strategy,
                is_cluster=topology == Topology.CLUSTER,
                restore_settings=True,
            )
            assert dispatcher.steps(session)


def test_every_backup_step_resolves_for_every_combination():
    dispatcher = backup_dispatcher()
    for is_cluster in (False, True):
        for strategy in Strategy:
            assert dispatcher.steps(session_for(strategy=strategy, is_cluster=is_cluster, restore_settings=True))
