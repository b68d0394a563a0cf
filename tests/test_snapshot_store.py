"""
Tests for the snapshot store: current pointer, abort, dedup, prune, lock.
"""

import os
import threading

import pytest

from backup_utils.errors import SnapshotError
from backup_utils.snapshot import Snapshot, SnapshotStore, Strategy
from backup_utils.snapshot.models import parse_version, strategy_for_version, version_at_least

from .mocks import RSYNC_FILES, build_snapshot, write_files


class TestCommit:
    def test_current_points_at_last_of_n_commits(self, store):
        ids = [build_snapshot(store).id for _ in range(4)]

        assert store.current().id == ids[-1]
        assert os.readlink(store.current_link) == ids[-1]

    def test_ids_increase(self, store):
        ids = [build_snapshot(store).id for _ in range(3)]
        assert len(set(ids)) == 3
        assert [s.id for s in store.list_snapshots()] == ids

    def test_commit_records_metadata(self, store):
        snapshot = build_snapshot(store, strategy=Strategy.TARBALL, version="1.9.3")

        loaded = store.resolve(snapshot.id)
        assert loaded.strategy == Strategy.TARBALL
        assert loaded.version == "1.9.3"
        assert not (snapshot.path / SnapshotStore.INCOMPLETE).exists()
        assert not store.lock_path.exists()

    def test_commit_is_idempotent(self, store):
        snapshot = build_snapshot(store)
        store.commit(snapshot)

        assert store.current().id == snapshot.id

    def test_no_chain_before_first_commit(self, store):
        assert not store.committed()
        assert store.dedup_base() is None

        snapshot = build_snapshot(store)

        assert store.committed()
        assert store.dedup_base() == snapshot.path

    def test_begin_records_parent(self, store):
        first = build_snapshot(store)
        second = store.begin(strategy=Strategy.RSYNC, version="2.13.0")
        assert second.parent == first.id
        store.abort(second)


class TestAbort:
    def test_aborted_snapshot_never_becomes_current(self, store):
        good = build_snapshot(store)
        partial = store.begin(strategy=Strategy.RSYNC, version="2.13.0")
        write_files(partial, {"mysql/mysql.sql.gz": b"half"})

        store.abort(partial)

        assert store.current().id == good.id
        assert not partial.path.exists()
        assert not store.lock_path.exists()

    def test_abort_refuses_committed(self, store):
        snapshot = build_snapshot(store)
        with pytest.raises(SnapshotError):
            store.abort(snapshot)

    def test_interleaved_aborts(self, store):
        committed = []
        for n in range(5):
            snapshot = store.begin(strategy=Strategy.RSYNC, version="2.13.0")
            write_files(snapshot, RSYNC_FILES)
            if n % 2:
                store.abort(snapshot)
            else:
                store.commit(snapshot)
                committed.append(snapshot.id)

        assert store.current().id == committed[-1]


class TestResolve:
    def test_default_is_current(self, store):
        build_snapshot(store)
        latest = build_snapshot(store)

        assert store.resolve().id == latest.id
        assert store.resolve("current").id == latest.id

    def test_specific_snapshot(self, store):
        first = build_snapshot(store)
        build_snapshot(store)

        assert store.resolve(first.id).id == first.id

    def test_missing_snapshot(self, store):
        build_snapshot(store)
        with pytest.raises(SnapshotError, match="not found"):
            store.resolve("20000101T000000")

    def test_incomplete_snapshot(self, store):
        partial = store.begin(strategy=Strategy.RSYNC, version="2.13.0")
        with pytest.raises(SnapshotError, match="incomplete"):
            store.resolve(partial.id)

    def test_empty_store(self, store):
        with pytest.raises(SnapshotError, match="No committed snapshots"):
            store.resolve()


class TestDedup:
    def test_unchanged_backup_has_no_unique_bytes(self, store):
        first = build_snapshot(store)

        second = store.begin(strategy=Strategy.RSYNC, version="2.13.0")
        write_files(second, RSYNC_FILES)
        linked = store.link_unchanged(second)
        store.commit(second)

        assert linked == len(RSYNC_FILES)
        assert store.unique_bytes(second) == 0
        assert store.unique_bytes(first) == 0

    def test_changed_file_is_unique(self, store):
        build_snapshot(store)

        second = store.begin(strategy=Strategy.RSYNC, version="2.13.0")
        files = dict(RSYNC_FILES)
        files["mysql/mysql.sql.gz"] = b"a different dump\n"
        write_files(second, files)
        store.link_unchanged(second)
        store.commit(second)

        assert store.unique_bytes(second) == len(b"a different dump\n")

    def test_first_snapshot_has_nothing_to_link(self, store):
        snapshot = store.begin(strategy=Strategy.RSYNC, version="2.13.0")
        write_files(snapshot, RSYNC_FILES)

        assert store.link_unchanged(snapshot) == 0
        assert store.unique_bytes(snapshot) == sum(len(c) for c in RSYNC_FILES.values())
        store.abort(snapshot)


class TestPrune:
    def test_keeps_newest(self, store):
        ids = [build_snapshot(store).id for _ in range(5)]

        removed = store.prune(keep=2)

        assert removed == ids[:3]
        assert [s.id for s in store.list_snapshots()] == ids[3:]
        assert store.current().id == ids[-1]

    def test_removes_stale_incomplete(self, store):
        stale = store.begin(strategy=Strategy.RSYNC, version="2.13.0")
        store.lock_path.unlink()
        good = build_snapshot(store)

        removed = store.prune()

        assert stale.id in removed
        assert store.current().id == good.id

    def test_never_removes_current(self, store):
        only = build_snapshot(store)
        assert store.prune(keep=0) == []
        assert store.current().id == only.id


class TestLock:
    def test_second_backup_refused_while_running(self, store):
        running = store.begin(strategy=Strategy.RSYNC, version="2.13.0")

        with pytest.raises(SnapshotError, match="already in progress"):
            store.begin(strategy=Strategy.RSYNC, version="2.13.0")
        store.abort(running)

    def test_stale_lock_is_cleared(self, store):
        stale = store.begin(strategy=Strategy.RSYNC, version="2.13.0")
        # A pid that cannot exist
        store.lock_path.write_text(f"{stale.id} 999999999\n")

        fresh = store.begin(strategy=Strategy.RSYNC, version="2.13.0")

        assert fresh.id != stale.id
        assert not stale.path.exists()
        assert fresh.path.exists()
        assert store.lock_path.read_text().split() == [fresh.id, str(os.getpid())]
        store.abort(fresh)

    def test_unwritten_marker_counts_as_running(self, store):
        store.lock_path.write_text("")

        with pytest.raises(SnapshotError, match="already in progress"):
            store.begin(strategy=Strategy.RSYNC, version="2.13.0")
        assert store.list_snapshots() == []

    def test_concurrent_begin_admits_one(self, store):
        barrier = threading.Barrier(6)
        started, refused = [], []

        def begin():
            barrier.wait()
            try:
                started.append(store.begin(strategy=Strategy.RSYNC, version="2.13.0"))
            except SnapshotError:
                refused.append(True)

        threads = [threading.Thread(target=begin) for _ in range(6)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(started) == 1
        assert len(refused) == 5
        assert [s.id for s in store.list_snapshots()] == [started[0].id]
        store.abort(started[0])


class TestDataDir:
    def test_relative_data_dir_is_made_absolute(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)

        store = SnapshotStore("./data")

        assert store.data_dir == tmp_path.resolve() / "data"
        assert build_snapshot(store).path.is_absolute()
        assert store.dedup_base().is_absolute()


class TestVersions:
    def test_parse_version_ignores_qualifiers(self):
        assert parse_version("2.5.0.rc1") == (2, 5, 0)
        assert parse_version("v2.13") == (2, 13)

    def test_version_at_least_pads(self):
        assert version_at_least("2.5", "2.5.0")
        assert not version_at_least("2.4.9", "2.5.0")
        assert version_at_least("2.10.0", "2.5.0")

    def test_strategy_for_version(self):
        assert strategy_for_version("2.0.0") == Strategy.RSYNC
        assert strategy_for_version("1.9.3") == Strategy.TARBALL

    def test_invalid_strategy_file(self, tmp_path):
        (tmp_path / "strategy").write_text("zip\n")
        with pytest.raises(ValueError, match="Unknown backup strategy"):
            Snapshot.load(tmp_path)
