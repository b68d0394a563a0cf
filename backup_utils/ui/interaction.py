"""
Operator confirmation before a destructive restore.

Handles:
- "yes" (any case) proceeds
- empty input asks again
- anything else, or end of input, aborts
"""

from typing import Optional, TextIO

from rich.console import Console
from rich.panel import Panel

from ..errors import OperatorAbort

PROMPT = "Type [bold]yes[/] to continue: "


def confirm_restore(
    target: str,
    snapshot_id: str,
    console: Optional[Console] = None,
    stream: Optional[TextIO] = None,
) -> None:
    """
    Ask the operator to confirm overwriting target.

    Args:
        target: Restore host shown to the operator
        snapshot_id: Snapshot being restored
        console: Console to prompt on
        stream: Input source (default: stdin)

    Raises:
        OperatorAbort: On any answer other than "yes"
    """
    console = console or Console()
    console.print(Panel(
        f"All data on [bold]{target}[/] will be overwritten with data from "
        f"snapshot [bold]{snapshot_id}[/].\n"
        "Please verify that this is the correct restore host before continuing.",
        title="WARNING",
        border_style="bold red",
    ))

    while True:
        answer = _read_answer(console, stream)
        if answer is None:
            raise OperatorAbort("No confirmation received")
        if answer == "":
            continue
        if answer.lower() == "yes":
            return
        raise OperatorAbort(f"Restore not confirmed (answered {answer!r})")


def _read_answer(console: Console, stream: Optional[TextIO]) -> Optional[str]:
    """One stripped line of input; None at end of input."""
    try:
        raw = console.input(PROMPT, stream=stream)
    except EOFError:
        return None
    if stream is not None and raw == "":
        return None
    return raw.strip()
