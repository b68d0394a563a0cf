"""
CLI - Command-line interface for backup_utils.

Commands:
    restore [<host>] [-f] [-c] [-s <snapshot>] [-v]
    backup [--host <host>] [-v]
    snapshots

Exit codes:
    0    success
    1    a datastore step failed
    2    precondition or configuration error (nothing was changed)
    3    operator declined at the confirmation prompt
    130  interrupted
"""

import argparse
import signal
import sys
from typing import List, Optional, TextIO

from rich.console import Console

from . import __version__
from .cluster.ssh import CommandRunner, RemoteHost, SSHTarget
from .config import Config
from .errors import (
    BackupUtilsError,
    ConfigError,
    OperatorAbort,
    PreconditionError,
    SnapshotError,
    StepFailedError,
)
from .log import setup_logging
from .runner.backup import BackupRunner
from .runner.restore import RestoreOrchestrator, RestoreSession
from .snapshot.store import SnapshotStore
from .ui.console import ConsoleUI
from .ui.interaction import confirm_restore

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_PRECONDITION = 2
EXIT_ABORTED = 3
EXIT_INTERRUPTED = 130


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="backup-utils",
        description="Backup and restore for appliance clusters",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    backup-utils backup --host ghe.example.com
    backup-utils snapshots
    backup-utils restore ghe-standby.example.com
    backup-utils restore ghe-new.example.com:122 -s 20261016T010000 -c

Environment Variables:
    GHE_HOSTNAME        Appliance to back up
    GHE_RESTORE_HOST    Default restore host
    GHE_DATA_DIR        Snapshot directory
    GHE_NUM_SNAPSHOTS   Snapshots kept after a backup
    GHE_EXTRA_SSH_OPTS  Extra ssh options
        """,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", help="Config file (default: search standard locations)")
    common.add_argument("--data-dir", dest="data_dir", help="Snapshot directory")
    common.add_argument("--log-file", dest="log_file", help="Also write a debug log here")
    common.add_argument("-v", "--verbose", action="store_true", default=None,
                        help="Show progress and debug output")

    subparsers = parser.add_subparsers(dest="command", required=True)

    restore = subparsers.add_parser("restore", parents=[common], help="Restore a snapshot onto a host")
    restore.add_argument("restore_host", nargs="?", metavar="host",
                         help="Restore host, [user@]host[:port] (default: GHE_RESTORE_HOST)")
    restore.add_argument("-f", "--force", action="store_true",
                         help="Do not prompt for confirmation")
    restore.add_argument("-c", "--config-settings", dest="restore_settings", action="store_true",
                         help="Restore settings and license even on a configured host")
    restore.add_argument("-s", "--snapshot", dest="snapshot",
                         help="Snapshot id to restore (default: current)")
    restore.add_argument("--parallel", action="store_true",
                         help="Transfer to cluster members concurrently")
    restore.set_defaults(handler=cmd_restore)

    backup = subparsers.add_parser("backup", parents=[common], help="Take a snapshot of a host")
    backup.add_argument("--host", dest="hostname", help="Host to back up (default: GHE_HOSTNAME)")
    backup.add_argument("--parallel", action="store_true",
                        help="Transfer from cluster members concurrently")
    backup.set_defaults(handler=cmd_backup)

    snapshots = subparsers.add_parser("snapshots", parents=[common], help="List local snapshots")
    snapshots.set_defaults(handler=cmd_snapshots)

    return parser.parse_args(argv)


# =============================================================================
# Commands
# =============================================================================

def _ssh_target(host: str, config: Config) -> SSHTarget:
    try:
        return SSHTarget.parse(
            host,
            user=config.target.user,
            port=config.target.port,
            extra_opts=config.target.extra_ssh_opts,
        )
    except ValueError as e:
        raise ConfigError(str(e)) from e


def cmd_restore(args, config: Config, ui: ConsoleUI, runner: Optional[CommandRunner] = None,
                stdin: Optional[TextIO] = None) -> int:
    host = config.target.restore_host
    if not host:
        raise ConfigError("No restore host given. Pass <host> or set GHE_RESTORE_HOST.")

    store = SnapshotStore(config.storage.path, config.storage.num_snapshots)
    snapshot = store.resolve(args.snapshot)
    target = _ssh_target(host, config)
    ui.print_banner("Restoring to", str(target), snapshot.id)

    def confirm(session: RestoreSession) -> None:
        confirm_restore(session.target, session.snapshot.id, console=ui.console, stream=stdin)

    with RemoteHost(target, runner=runner) as remote:
        orchestrator = RestoreOrchestrator(
            remote,
            snapshot,
            restore_settings=args.restore_settings,
            force=args.force,
            confirm=confirm,
            parallel=args.parallel,
        )
        orchestrator.on_state_change(ui.print_state_change)
        orchestrator.on_step(ui.print_step)
        session = orchestrator.run()

    ui.print_restore_result(session)
    return EXIT_OK


def cmd_backup(args, config: Config, ui: ConsoleUI, runner: Optional[CommandRunner] = None,
               stdin: Optional[TextIO] = None) -> int:
    host = config.target.hostname
    if not host:
        raise ConfigError("No host to back up. Pass --host or set GHE_HOSTNAME.")

    store = SnapshotStore(config.storage.path, config.storage.num_snapshots)
    target = _ssh_target(host, config)
    ui.print_banner("Backing up", str(target))

    with RemoteHost(target, runner=runner) as remote:
        backup = BackupRunner(remote, store, parallel=args.parallel)
        backup.on_step(ui.print_step)
        session = backup.run()

    ui.print_backup_result(session, store.unique_bytes(session.snapshot))
    return EXIT_OK


def cmd_snapshots(args, config: Config, ui: ConsoleUI, runner: Optional[CommandRunner] = None,
                  stdin: Optional[TextIO] = None) -> int:
    store = SnapshotStore(config.storage.path, config.storage.num_snapshots)
    ui.print_snapshots(store.list_snapshots())
    return EXIT_OK


# =============================================================================
# Entry points
# =============================================================================

def _raise_interrupt(signum, frame):
    raise KeyboardInterrupt(f"signal {signum}")


def main(
    argv: Optional[List[str]] = None,
    runner: Optional[CommandRunner] = None,
    console: Optional[Console] = None,
    stdin: Optional[TextIO] = None,
) -> int:
    """
    Main entry point.

    Returns:
        Process exit code
    """
    args = parse_args(argv)
    ui = ConsoleUI(console=console)

    # SIGTERM unwinds like Ctrl-C so tunnels and status are cleaned up
    previous_handler = signal.signal(signal.SIGTERM, _raise_interrupt)
    try:
        config = Config.load(args.config).override_from_args(args)
        errors = config.validate()
        if errors:
            raise ConfigError("; ".join(errors))
        setup_logging(config.output.verbose, config.output.log_file)
        return args.handler(args, config, ui, runner=runner, stdin=stdin)

    except OperatorAbort as e:
        ui.print_warning(f"{e}. Nothing was changed.")
        return EXIT_ABORTED
    except (PreconditionError, ConfigError, SnapshotError) as e:
        ui.print_error(str(e))
        return EXIT_PRECONDITION
    except StepFailedError as e:
        ui.print_error(str(e))
        return EXIT_FAILED
    except BackupUtilsError as e:
        ui.print_error(str(e))
        return EXIT_FAILED
    except KeyboardInterrupt:
        ui.print_error("Interrupted")
        return EXIT_INTERRUPTED
    finally:
        signal.signal(signal.SIGTERM, previous_handler)


def restore_main(argv: Optional[List[str]] = None) -> int:
    """`backup-utils-restore` shortcut for `backup-utils restore`."""
    args = sys.argv[1:] if argv is None else argv
    return main(["restore", *args])


def backup_main(argv: Optional[List[str]] = None) -> int:
    """`backup-utils-backup` shortcut for `backup-utils backup`."""
    args = sys.argv[1:] if argv is None else argv
    return main(["backup", *args])


if __name__ == "__main__":
    sys.exit(main())
