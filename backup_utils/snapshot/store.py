"""
SnapshotStore - append-only chain of timestamped backup snapshots.

Directory layout:
    <data_dir>/
    ├── 20261016T010000/          # committed snapshot
    │   ├── strategy              # "rsync" or "tarball"
    │   ├── version               # target version at backup time
    │   ├── mysql/
    │   └── repositories/
    ├── 20261017T010000/          # snapshot being written
    │   └── incomplete            # present until commit
    ├── current -> 20261016T010000
    └── in-progress               # "<snapshot id> <pid>" while a backup runs

The `current` symlink is only ever swapped with a rename, so readers see
either the previous committed snapshot or the new one.
"""

import hashlib
import logging
import os
import re
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

from ..errors import SnapshotError
from .models import Snapshot, SnapshotInfo, Strategy

logger = logging.getLogger(__name__)

SNAPSHOT_ID_RE = re.compile(r"^(\d{8}T\d{6})(?:-(\d+))?$")
HASH_CHUNK_SIZE = 1024 * 1024


def _sort_key(snapshot_id: str) -> Tuple[str, int]:
    match = SNAPSHOT_ID_RE.match(snapshot_id)
    if not match:
        return (snapshot_id, 0)
    return (match.group(1), int(match.group(2) or 0))


def _file_digest(path: Path) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(HASH_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


class SnapshotStore:
    """Manages snapshot directories and the `current` pointer."""

    CURRENT = "current"
    IN_PROGRESS = "in-progress"
    INCOMPLETE = "incomplete"

    def __init__(self, data_dir: Path, num_snapshots: int = 10):
        """
        Initialize snapshot store.

        Args:
            data_dir: Directory holding all snapshots
            num_snapshots: Committed snapshots kept by prune()
        """
        self.data_dir = Path(data_dir).expanduser().resolve()
        self.num_snapshots = num_snapshots
        self.data_dir.mkdir(parents=True, exist_ok=True)

    @property
    def current_link(self) -> Path:
        return self.data_dir / self.CURRENT

    @property
    def lock_path(self) -> Path:
        return self.data_dir / self.IN_PROGRESS

    # =========================================================================
    # Backup lifecycle
    # =========================================================================

    def begin(
        self,
        strategy: Optional[Strategy] = None,
        version: Optional[str] = None,
    ) -> Snapshot:
        """
        Allocate a new snapshot directory.

        Args:
            strategy: Backup strategy to record at commit
            version: Target version to record at commit

        Returns:
            The new (uncommitted) snapshot

        Raises:
            SnapshotError: If another backup is still running
        """
        # Allocated before any stale snapshot is cleared, so its id is never reissued
        snapshot_id = self._new_id()
        self._acquire_lock(snapshot_id)

        path = self.data_dir / snapshot_id
        try:
            path.mkdir(parents=True)
            (path / self.INCOMPLETE).touch()
        except OSError:
            self._release_lock(snapshot_id)
            raise

        current = self.current()
        snapshot = Snapshot(
            id=snapshot_id,
            path=path,
            strategy=strategy,
            version=version,
            parent=current.id if current else None,
        )
        logger.info("Started snapshot %s (dedup base: %s)", snapshot_id, snapshot.parent or "none")
        return snapshot

    def committed(self) -> bool:
        """Check whether a committed snapshot chain exists."""
        return self.current() is not None

    def dedup_base(self) -> Optional[Path]:
        """Path of the prior committed snapshot, used as hardlink base."""
        current = self.current()
        return current.path if current else None

    def commit(self, snapshot: Snapshot) -> None:
        """
        Mark a snapshot complete and point `current` at it.

        Metadata is written and the incomplete marker removed before the
        pointer swap. Committing the snapshot `current` already points at is
        a no-op.
        """
        if self._current_id() == snapshot.id:
            snapshot.committed = True
            self._release_lock(snapshot.id)
            return
        if not snapshot.path.is_dir():
            raise SnapshotError(f"Snapshot directory missing: {snapshot.path}")

        snapshot.write_metadata()
        incomplete = snapshot.path / self.INCOMPLETE
        if incomplete.exists():
            incomplete.unlink()

        tmp_link = self.data_dir / f".{self.CURRENT}.{os.getpid()}"
        if tmp_link.is_symlink() or tmp_link.exists():
            tmp_link.unlink()
        os.symlink(snapshot.id, tmp_link)
        os.replace(tmp_link, self.current_link)

        snapshot.committed = True
        self._release_lock(snapshot.id)
        logger.info("Committed snapshot %s", snapshot.id)

    def abort(self, snapshot: Snapshot) -> None:
        """Remove a partial snapshot directory."""
        if snapshot.committed or self._current_id() == snapshot.id:
            raise SnapshotError(f"Refusing to abort committed snapshot {snapshot.id}")
        shutil.rmtree(snapshot.path, ignore_errors=True)
        self._release_lock(snapshot.id)
        logger.info("Aborted snapshot %s", snapshot.id)

    # =========================================================================
    # Query operations
    # =========================================================================

    def current(self) -> Optional[Snapshot]:
        """Get the snapshot `current` points at, if any."""
        snapshot_id = self._current_id()
        if snapshot_id is None:
            return None
        path = self.data_dir / snapshot_id
        if not path.is_dir():
            return None
        snapshot = Snapshot.load(path)
        snapshot.committed = True
        return snapshot

    def resolve(self, snapshot_id: Optional[str] = None) -> Snapshot:
        """
        Find a committed snapshot to restore from.

        Args:
            snapshot_id: Snapshot id, or None/"current" for the current one

        Raises:
            SnapshotError: If the snapshot is missing or incomplete
        """
        if snapshot_id in (None, "", self.CURRENT):
            snapshot = self.current()
            if snapshot is None:
                raise SnapshotError(f"No committed snapshots in {self.data_dir}")
            return snapshot

        path = self.data_dir / snapshot_id
        if not SNAPSHOT_ID_RE.match(snapshot_id) or not path.is_dir():
            raise SnapshotError(f"Snapshot not found: {snapshot_id}")
        if (path / self.INCOMPLETE).exists():
            raise SnapshotError(f"Snapshot {snapshot_id} is incomplete")
        return Snapshot.load(path)

    def list_snapshots(self) -> List[SnapshotInfo]:
        """
        List all snapshot directories.

        Returns:
            List of SnapshotInfo sorted oldest first
        """
        current_id = self._current_id()
        infos = []
        for snapshot_id in self._snapshot_ids():
            path = self.data_dir / snapshot_id
            committed = not (path / self.INCOMPLETE).exists()
            try:
                snapshot = Snapshot.load(path, committed=committed)
            except ValueError as e:
                logger.warning("Skipping snapshot %s: %s", snapshot_id, e)
                continue
            infos.append(SnapshotInfo(
                id=snapshot_id,
                strategy=snapshot.strategy.value if snapshot.strategy else None,
                version=snapshot.version,
                committed=committed,
                is_current=snapshot_id == current_id,
                unique_bytes=self.unique_bytes(snapshot),
            ))
        return infos

    # =========================================================================
    # Dedup
    # =========================================================================

    def link_unchanged(self, snapshot: Snapshot) -> int:
        """
        Hardlink files identical to the dedup base.

        Compares each regular file against the same relative path in the
        prior committed snapshot and replaces identical ones with a link to
        the base copy.

        Returns:
            Number of files replaced with links
        """
        if snapshot.parent is None:
            return 0
        base = self.data_dir / snapshot.parent
        if not base.is_dir():
            return 0

        linked = 0
        for path in self._walk_files(snapshot.path):
            rel = path.relative_to(snapshot.path)
            if len(rel.parts) == 1:
                # Top-level metadata files are tiny and rewritten every commit
                continue
            base_file = base / rel
            if not base_file.is_file() or base_file.is_symlink():
                continue
            stat, base_stat = path.stat(), base_file.stat()
            if stat.st_ino == base_stat.st_ino and stat.st_dev == base_stat.st_dev:
                continue
            if stat.st_size != base_stat.st_size:
                continue
            if _file_digest(path) != _file_digest(base_file):
                continue

            tmp = path.with_name(f".{path.name}.link")
            os.link(base_file, tmp)
            os.replace(tmp, path)
            linked += 1

        if linked:
            logger.info("Linked %d unchanged files from %s", linked, snapshot.parent)
        return linked

    def unique_bytes(self, snapshot: Snapshot) -> int:
        """Datastore bytes in a snapshot that are not hardlinked anywhere else."""
        total = 0
        for path in self._walk_files(snapshot.path):
            if len(path.relative_to(snapshot.path).parts) == 1:
                continue
            stat = path.stat()
            if stat.st_nlink == 1:
                total += stat.st_size
        return total

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def prune(self, keep: Optional[int] = None) -> List[str]:
        """
        Remove old snapshots, keeping the newest committed ones.

        Incomplete snapshots older than `current` are removed as well. The
        snapshot `current` points at is never removed.

        Args:
            keep: Committed snapshots to keep (default: num_snapshots)

        Returns:
            Ids of removed snapshots
        """
        keep = self.num_snapshots if keep is None else keep
        keep = max(keep, 1)
        current_id = self._current_id()
        in_flight = self._locked_id()

        committed_ids = []
        stale_ids = []
        for snapshot_id in self._snapshot_ids():
            if (self.data_dir / snapshot_id / self.INCOMPLETE).exists():
                if snapshot_id != in_flight and (
                    current_id is None or _sort_key(snapshot_id) < _sort_key(current_id)
                ):
                    stale_ids.append(snapshot_id)
            else:
                committed_ids.append(snapshot_id)

        expired = committed_ids[:-keep] if len(committed_ids) > keep else []
        removed = []
        for snapshot_id in stale_ids + expired:
            if snapshot_id == current_id:
                continue
            logger.info("Pruning snapshot %s", snapshot_id)
            shutil.rmtree(self.data_dir / snapshot_id, ignore_errors=True)
            removed.append(snapshot_id)
        return removed

    # =========================================================================
    # Internals
    # =========================================================================

    def _new_id(self) -> str:
        base = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
        existing = self._snapshot_ids()
        latest = existing[-1] if existing else None
        if latest and _sort_key(latest)[0] > base:
            # Clock went backwards; stay monotonic
            base = _sort_key(latest)[0]

        candidate = base
        suffix = 0
        while (self.data_dir / candidate).exists() or (
            latest is not None and _sort_key(candidate) <= _sort_key(latest)
        ):
            suffix += 1
            candidate = f"{base}-{suffix}"
        return candidate

    def _snapshot_ids(self) -> List[str]:
        ids = [
            p.name for p in self.data_dir.iterdir()
            if p.is_dir() and not p.is_symlink() and SNAPSHOT_ID_RE.match(p.name)
        ]
        return sorted(ids, key=_sort_key)

    def _current_id(self) -> Optional[str]:
        if not self.current_link.is_symlink():
            return None
        return Path(os.readlink(self.current_link)).name

    def _locked_id(self) -> Optional[str]:
        if not self.lock_path.exists():
            return None
        parts = self.lock_path.read_text().split()
        return parts[0] if parts else None

    def _acquire_lock(self, snapshot_id: str) -> None:
        """Create the in-progress marker, replacing it once if its owner is gone."""
        for attempt in range(2):
            try:
                fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                if attempt:
                    raise SnapshotError("A backup is already in progress") from None
                self._clear_stale_lock()
                continue
            with os.fdopen(fd, "w") as f:
                f.write(f"{snapshot_id} {os.getpid()}\n")
            return

    def _clear_stale_lock(self) -> None:
        try:
            parts = self.lock_path.read_text().split()
        except FileNotFoundError:
            return
        snapshot_id = parts[0] if parts else None
        pid = int(parts[1]) if len(parts) > 1 and parts[1].isdigit() else None

        # An empty marker is one another process has created but not yet written
        if pid is None or _pid_alive(pid):
            raise SnapshotError(
                f"A backup is already in progress (snapshot {snapshot_id or 'unknown'}, "
                f"pid {pid or 'unknown'}); remove {self.lock_path} if it is not"
            )

        logger.warning("Removing stale in-progress marker for snapshot %s", snapshot_id)
        if snapshot_id and snapshot_id != self._current_id():
            stale = self.data_dir / snapshot_id
            if (stale / self.INCOMPLETE).exists():
                shutil.rmtree(stale, ignore_errors=True)
        try:
            self.lock_path.unlink()
        except FileNotFoundError:
            pass

    def _release_lock(self, snapshot_id: str) -> None:
        if self._locked_id() == snapshot_id:
            self.lock_path.unlink()

    @staticmethod
    def _walk_files(root: Path) -> Iterator[Path]:
        for dirpath, _dirnames, filenames in os.walk(root):
            for name in filenames:
                path = Path(dirpath) / name
                if path.is_file() and not path.is_symlink():
                    yield path
