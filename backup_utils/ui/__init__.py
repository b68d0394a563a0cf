"""
User interface components for backup_utils.
"""

from .console import ConsoleUI, format_bytes
from .interaction import confirm_restore

__all__ = [
    'ConsoleUI',
    'confirm_restore',
    'format_bytes',
]
