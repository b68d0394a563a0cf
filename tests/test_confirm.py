"""
Tests for the restore confirmation prompt.
"""

from io import StringIO

import pytest
from rich.console import Console

from backup_utils.errors import OperatorAbort
from backup_utils.ui.interaction import confirm_restore


def ask(answers: str):
    output = StringIO()
    console = Console(file=output, width=120)
    confirm_restore("ghe.example.com", "20261016T010000", console=console, stream=StringIO(answers))
    return output.getvalue()


@pytest.mark.parametrize("answer", ["yes\n", "YES\n", "  Yes  \n"])
def test_yes_in_any_case_proceeds(answer):
    output = ask(answer)

    assert "ghe.example.com" in output
    assert "20261016T010000" in output


def test_blank_lines_ask_again():
    output = ask("\n\nyes\n")
    assert output.count("to continue") == 3


def test_blank_then_no_aborts():
    with pytest.raises(OperatorAbort, match="no"):
        ask("\nno\n")


@pytest.mark.parametrize("answer", ["y\n", "no\n", "yes please\n"])
def test_anything_else_aborts(answer):
    with pytest.raises(OperatorAbort):
        ask(answer)


@pytest.mark.parametrize("answers", ["", "\n\n"])
def test_end_of_input_aborts(answers):
    with pytest.raises(OperatorAbort, match="No confirmation"):
        ask(answers)
