"""
Entry point for running backup_utils as a module.

Usage:
    python -m backup_utils restore ghe-standby.example.com
"""

import sys

from .cli import main

if __name__ == "__main__":
    sys.exit(main())
