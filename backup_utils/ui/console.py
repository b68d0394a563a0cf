"""
ConsoleUI - Rich-based console interface.

Operator-facing output: banners, state changes, step progress, results.
Diagnostics go through logging instead.
"""

from typing import Dict, List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .. import __version__
from ..datastores import DatastoreStep
from ..runner.backup import BackupSession
from ..runner.restore import RestoreSession
from ..runner.state import State
from ..snapshot.models import SnapshotInfo


STATE_COLORS = {
    State.INIT: "dim",
    State.VALIDATING: "cyan",
    State.RESTORING: "yellow",
    State.COMPLETE: "bold green",
    State.FAILED: "bold red",
}


def format_bytes(size: int) -> str:
    """Human-readable byte count."""
    value = float(size)
    for unit in ("B", "KB", "MB", "GB", "TB"):
        if value < 1024 or unit == "TB":
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} TB"


class ConsoleUI:
    """
    Rich console interface for backup_utils.
    """

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def print_banner(self, action: str, target: str, snapshot_id: Optional[str] = None):
        """Print the operation banner."""
        lines = [f"[bold cyan]Appliance backup utilities[/] [dim]v{__version__}[/]",
                 f"{action} [bold]{target}[/]"]
        if snapshot_id:
            lines.append(f"[dim]Snapshot:[/] {snapshot_id}")
        self.console.print(Panel("\n".join(lines), border_style="cyan"))

    def print_state_change(self, from_state: State, to_state: State, metadata: Optional[Dict] = None):
        """Display state transition."""
        color = STATE_COLORS.get(to_state, "white")
        self.console.print(f"[dim]{from_state.name}[/] -> [{color}]{to_state.name}[/]")

    def print_step(self, step: DatastoreStep, index: int, total: int):
        """Display the step about to run."""
        self.console.print(f"  [dim][{index}/{total}][/] {step.name.value}")

    def print_warning(self, message: str):
        self.console.print(f"[yellow]Warning:[/] {message}")

    def print_error(self, message: str):
        self.console.print(f"[bold red]Error:[/] {message}")

    # =========================================================================
    # Results
    # =========================================================================

    def print_restore_result(self, session: RestoreSession):
        """Summarize a finished restore."""
        table = Table(show_header=False, box=None)
        table.add_column("Key", style="dim")
        table.add_column("Value")
        table.add_row("Target", f"{session.target} ({session.topology}, {session.target_version})")
        table.add_row("Snapshot", session.snapshot.id)
        table.add_row("Strategy", session.strategy.value if session.strategy else "-")
        table.add_row("Steps", ", ".join(session.completed_steps) or "-")
        table.add_row("Status", session.status.value if session.status else "-")
        self.console.print(Panel(table, title="Restore complete", border_style="green"))
        for warning in session.warnings:
            self.print_warning(warning)

    def print_backup_result(self, session: BackupSession, unique_bytes: int):
        """Summarize a finished backup."""
        table = Table(show_header=False, box=None)
        table.add_column("Key", style="dim")
        table.add_column("Value")
        table.add_row("Snapshot", session.snapshot.id)
        table.add_row("Strategy", session.strategy.value if session.strategy else "-")
        table.add_row("Steps", ", ".join(session.completed_steps) or "-")
        table.add_row("New data", format_bytes(unique_bytes))
        if session.pruned:
            table.add_row("Pruned", ", ".join(session.pruned))
        self.console.print(Panel(table, title="Backup complete", border_style="green"))

    def print_snapshots(self, snapshots: List[SnapshotInfo]):
        """Display the snapshot chain."""
        if not snapshots:
            self.console.print("[dim]No snapshots.[/]")
            return
        table = Table(title="Snapshots")
        table.add_column("Id")
        table.add_column("Strategy")
        table.add_column("Version")
        table.add_column("Unique", justify="right")
        table.add_column("State")
        for info in snapshots:
            if info.is_current:
                state = "[bold green]current[/]"
            elif info.committed:
                state = "committed"
            else:
                state = "[yellow]incomplete[/]"
            table.add_row(
                info.id,
                info.strategy or "-",
                info.version or "-",
                format_bytes(info.unique_bytes),
                state,
            )
        self.console.print(table)
