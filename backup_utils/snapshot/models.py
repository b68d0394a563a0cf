"""
Data models for the snapshot store.
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Tuple
import re


STRATEGY_FILE = "strategy"
VERSION_FILE = "version"


class Strategy(str, Enum):
    """How datastore content was captured at backup time."""
    RSYNC = "rsync"        # Directory trees, deduplicated with --link-dest
    TARBALL = "tarball"    # Legacy single-archive exports

    @classmethod
    def parse(cls, value: str) -> 'Strategy':
        """Parse a recorded strategy tag, rejecting anything unknown."""
        try:
            return cls(value.strip())
        except ValueError:
            raise ValueError(f"Unknown backup strategy: {value.strip()!r}") from None


# Targets at or above this version are backed up with rsync
RSYNC_MINIMUM_VERSION = "2.0.0"


def parse_version(version: str) -> Tuple[int, ...]:
    """
    Parse a dotted version string into a comparable tuple.

    Trailing qualifiers ("2.5.0.rc1", "2.6.3-beta") are ignored.
    """
    match = re.match(r"^\s*v?(\d+(?:\.\d+)*)", version or "")
    if not match:
        raise ValueError(f"Invalid version string: {version!r}")
    return tuple(int(part) for part in match.group(1).split("."))


def version_at_least(version: str, minimum: str) -> bool:
    """Check version >= minimum, padding the shorter tuple with zeros."""
    have = parse_version(version)
    want = parse_version(minimum)
    width = max(len(have), len(want))
    return have + (0,) * (width - len(have)) >= want + (0,) * (width - len(want))


def strategy_for_version(version: str) -> Strategy:
    """Pick the backup strategy for a live target version."""
    if version_at_least(version, RSYNC_MINIMUM_VERSION):
        return Strategy.RSYNC
    return Strategy.TARBALL


@dataclass
class Snapshot:
    """One point-in-time backup directory."""

    id: str
    path: Path
    strategy: Optional[Strategy] = None
    version: Optional[str] = None
    parent: Optional[str] = None           # Snapshot id used as dedup base
    committed: bool = False

    def datastore_dir(self, name: str) -> Path:
        """Directory holding one datastore's data."""
        return self.path / name

    def has_datastore(self, name: str) -> bool:
        """True if the datastore directory exists and holds anything."""
        path = self.datastore_dir(name)
        return path.is_dir() and any(path.iterdir())

    def write_metadata(self) -> None:
        """Record strategy and version files."""
        if self.strategy is None or self.version is None:
            raise ValueError("Snapshot strategy and version must be set before recording")
        (self.path / STRATEGY_FILE).write_text(f"{self.strategy.value}\n")
        (self.path / VERSION_FILE).write_text(f"{self.version}\n")

    @classmethod
    def load(cls, path: Path, committed: bool = True) -> 'Snapshot':
        """Load a snapshot directory with its recorded metadata."""
        strategy = None
        version = None
        strategy_path = path / STRATEGY_FILE
        version_path = path / VERSION_FILE
        if strategy_path.exists():
            strategy = Strategy.parse(strategy_path.read_text())
        if version_path.exists():
            version = version_path.read_text().strip() or None
        return cls(
            id=path.name,
            path=path,
            strategy=strategy,
            version=version,
            committed=committed,
        )


@dataclass
class SnapshotInfo:
    """Summary info for listing snapshots."""
    id: str
    strategy: Optional[str]
    version: Optional[str]
    committed: bool
    is_current: bool
    unique_bytes: int = 0
