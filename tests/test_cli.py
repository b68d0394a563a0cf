"""
Tests for the command-line entry point and its exit codes.
"""

import signal
from io import StringIO

import pytest
from rich.console import Console

from backup_utils.cli import (
    EXIT_ABORTED,
    EXIT_FAILED,
    EXIT_INTERRUPTED,
    EXIT_OK,
    EXIT_PRECONDITION,
    main,
    parse_args,
)
from backup_utils.snapshot import SnapshotStore

from .mocks import ENTRY_HOST, FakeAppliance, build_snapshot


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    for name in ("GHE_HOSTNAME", "GHE_RESTORE_HOST", "GHE_DATA_DIR", "GHE_NUM_SNAPSHOTS",
                 "GHE_EXTRA_SSH_OPTS", "GHE_VERBOSE", "BACKUP_UTILS_CONFIG"):
        monkeypatch.delenv(name, raising=False)
    (tmp_path / "empty.toml").write_text("")
    return tmp_path


@pytest.fixture
def output():
    return StringIO()


@pytest.fixture
def snapshot(workdir):
    return build_snapshot(SnapshotStore(workdir / "data"))


def run_cli(workdir, output, *argv, appliance=None, answers=""):
    argv = [*argv, "--config", str(workdir / "empty.toml"), "--data-dir", str(workdir / "data")]
    return main(
        argv,
        runner=appliance,
        console=Console(file=output, width=200),
        stdin=StringIO(answers),
    )


class TestRestoreCommand:
    def test_forced_restore(self, workdir, output, snapshot):
        appliance = FakeAppliance()

        code = run_cli(workdir, output, "restore", ENTRY_HOST, "-f", appliance=appliance)

        assert code == EXIT_OK
        assert appliance.statuses == ["restoring", "complete"]
        assert "Restore complete" in output.getvalue()
        assert snapshot.id in output.getvalue()

    def test_confirmed_restore(self, workdir, output, snapshot):
        appliance = FakeAppliance()

        code = run_cli(workdir, output, "restore", ENTRY_HOST, appliance=appliance, answers="yes\n")

        assert code == EXIT_OK
        assert "WARNING" in output.getvalue()

    def test_declined_restore_changes_nothing(self, workdir, output, snapshot):
        appliance = FakeAppliance()

        code = run_cli(workdir, output, "restore", ENTRY_HOST, appliance=appliance, answers="\nno\n")

        assert code == EXIT_ABORTED
        assert "restoring" not in appliance.statuses
        assert appliance.transfers == []
        assert "Nothing was changed" in output.getvalue()

    def test_restore_host_from_environment(self, workdir, output, snapshot, monkeypatch):
        monkeypatch.setenv("GHE_RESTORE_HOST", ENTRY_HOST)
        appliance = FakeAppliance(configured=False)

        assert run_cli(workdir, output, "restore", appliance=appliance) == EXIT_OK
        assert appliance.calls[0].host == ENTRY_HOST

    def test_missing_host(self, workdir, output, snapshot):
        code = run_cli(workdir, output, "restore", appliance=FakeAppliance())

        assert code == EXIT_PRECONDITION
        assert "GHE_RESTORE_HOST" in output.getvalue()

    def test_missing_snapshot(self, workdir, output):
        code = run_cli(workdir, output, "restore", ENTRY_HOST, "-f", appliance=FakeAppliance())
        assert code == EXIT_PRECONDITION

    def test_unknown_snapshot_id(self, workdir, output, snapshot):
        code = run_cli(workdir, output, "restore", ENTRY_HOST, "-f", "-s", "20200101T000000",
                       appliance=FakeAppliance())
        assert code == EXIT_PRECONDITION

    def test_gate_failure(self, workdir, output, snapshot):
        appliance = FakeAppliance(maintenance=False)

        code = run_cli(workdir, output, "restore", ENTRY_HOST, "-f", appliance=appliance)

        assert code == EXIT_PRECONDITION
        assert "maintenance mode" in output.getvalue()
        assert appliance.statuses == []

    def test_step_failure(self, workdir, output, snapshot):
        appliance = FakeAppliance(fail_commands={"ghe-import-mysql": 1})

        code = run_cli(workdir, output, "restore", ENTRY_HOST, "-f", appliance=appliance)

        assert code == EXIT_FAILED
        assert appliance.statuses == ["restoring", "failed"]
        assert "mysql" in output.getvalue()

    def test_interrupt(self, workdir, output, snapshot):
        appliance = FakeAppliance()

        def runner(argv, **kwargs):
            if "ghe-import-mysql" in argv[-1]:
                raise KeyboardInterrupt
            return appliance(argv, **kwargs)

        code = run_cli(workdir, output, "restore", ENTRY_HOST, "-f", appliance=runner)

        assert code == EXIT_INTERRUPTED
        assert appliance.statuses == ["restoring", "failed"]

    def test_sigterm_handler_restored(self, workdir, output, snapshot):
        before = signal.getsignal(signal.SIGTERM)
        run_cli(workdir, output, "restore", ENTRY_HOST, "-f", appliance=FakeAppliance())
        assert signal.getsignal(signal.SIGTERM) is before


class TestBackupCommand:
    def test_backup(self, workdir, output):
        appliance = FakeAppliance()

        code = run_cli(workdir, output, "backup", "--host", ENTRY_HOST, appliance=appliance)

        assert code == EXIT_OK
        current = SnapshotStore(workdir / "data").current()
        assert current is not None
        assert "Backup complete" in output.getvalue()

    def test_missing_host(self, workdir, output):
        assert run_cli(workdir, output, "backup", appliance=FakeAppliance()) == EXIT_PRECONDITION

    def test_unreachable(self, workdir, output):
        code = run_cli(workdir, output, "backup", "--host", ENTRY_HOST, appliance=FakeAppliance(reachable=False))
        assert code == EXIT_PRECONDITION


class TestSnapshotsCommand:
    def test_lists_snapshots(self, workdir, output, snapshot):
        assert run_cli(workdir, output, "snapshots") == EXIT_OK

        text = output.getvalue()
        assert snapshot.id in text
        assert "current" in text

    def test_empty(self, workdir, output):
        assert run_cli(workdir, output, "snapshots") == EXIT_OK
        assert "No snapshots" in output.getvalue()


def test_parse_restore_flags():
    args = parse_args(["restore", "ghe.example.com:122", "-f", "-c", "-s", "20261016T010000"])

    assert args.restore_host == "ghe.example.com:122"
    assert args.force and args.restore_settings
    assert args.snapshot == "20261016T010000"
    assert args.verbose is None


def test_command_is_required():
    with pytest.raises(SystemExit):
        parse_args([])
