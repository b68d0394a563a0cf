"""
FakeAppliance - stands in for ssh and rsync in tests.

It is a CommandRunner: RemoteHost and TunnelTransport hand it the argv they
would execute. It records every call and answers remote commands from a
small in-memory model of an appliance (marker files, cluster members,
status file, directory trees).
"""

import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Set

from backup_utils.cluster.ssh import CommandResult
from backup_utils.datastores.layout import LICENSE_FILE
from backup_utils.runner.restore import (
    CLUSTER_MARKER,
    CONFIGURED_MARKER,
    MAINTENANCE_PAGE,
    RELEASE_FILE,
    REPLICATION_MARKER,
)
from backup_utils.runner.status import STATUS_FILE

ENTRY_HOST = "ghe.example.com"


@dataclass
class Call:
    """One remote command."""
    host: str
    command: str
    argv: List[str]
    stdin_path: Optional[Path] = None
    stdout_path: Optional[Path] = None


@dataclass
class Transfer:
    """One rsync invocation."""
    host: str
    source: str
    destination: str
    pull: bool
    argv: List[str]
    link_dest: Optional[str] = None

    @property
    def remote_dir(self) -> str:
        remote = self.source if self.pull else self.destination
        return remote.split(":", 1)[1].rstrip("/")


@dataclass
class FakeAppliance:
    """In-memory appliance answering ssh and rsync argv."""
    version: str = "2.13.0"
    configured: bool = True
    cluster: bool = False
    replica: bool = False
    maintenance: bool = True
    reachable: bool = True
    members: Dict[str, List[str]] = field(default_factory=dict)
    trees: Dict[str, Dict[str, bytes]] = field(default_factory=dict)
    dirs: Set[str] = field(default_factory=set)
    fail_commands: Dict[str, int] = field(default_factory=dict)
    fail_hosts: Set[str] = field(default_factory=set)
    rsync_returncode: int = 0

    calls: List[Call] = field(default_factory=list)
    transfers: List[Transfer] = field(default_factory=list)
    statuses: List[str] = field(default_factory=list)
    files: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        self.files.setdefault(RELEASE_FILE, f"RELEASE_PLATFORM=standard\nRELEASE_VERSION={self.version}\n")
        self.files.setdefault(LICENSE_FILE, "license-data")
        for flag, path in (
            (self.configured, CONFIGURED_MARKER),
            (self.cluster, CLUSTER_MARKER),
            (self.replica, REPLICATION_MARKER),
            (self.maintenance, MAINTENANCE_PAGE),
        ):
            if flag:
                self.files.setdefault(path, "")

    # =========================================================================
    # Queries used by assertions
    # =========================================================================

    @property
    def commands(self) -> List[str]:
        return [call.command for call in self.calls]

    def ran(self, fragment: str) -> bool:
        return any(fragment in command for command in self.commands)

    def index_of(self, fragment: str) -> int:
        for index, command in enumerate(self.commands):
            if fragment in command:
                return index
        raise AssertionError(f"{fragment!r} was never run; ran {self.commands}")

    def transfers_to(self, host: str) -> List[Transfer]:
        return [t for t in self.transfers if t.host == host]

    # =========================================================================
    # CommandRunner
    # =========================================================================

    def __call__(self, argv, stdin_path=None, stdout_path=None, timeout=None) -> CommandResult:
        argv = [str(a) for a in argv]
        if argv[0] == "rsync":
            return self._rsync(argv)
        if "-O" in argv:
            return CommandResult(argv, 0)

        split = argv.index("--")
        host = argv[split - 1].split("@")[-1]
        command = argv[split + 1]
        self.calls.append(Call(host, command, argv, stdin_path, stdout_path))

        if not self.reachable:
            return CommandResult(argv, 255, "", "ssh: connect to host: Connection refused")
        for fragment, returncode in self.fail_commands.items():
            if fragment in command:
                return CommandResult(argv, returncode, "", f"{fragment} failed")

        result = self._answer(argv, command)
        if stdout_path is not None and result.ok:
            Path(stdout_path).write_bytes(f"output of {command}\n".encode())
            result = CommandResult(argv, result.returncode, "", result.stderr)
        return result

    def _answer(self, argv: List[str], command: str) -> CommandResult:
        words = shlex.split(command.split("|")[0]) if command.strip() else []
        if words[:1] == ["cat"] and len(words) == 2:
            if words[1] in self.files:
                return CommandResult(argv, 0, self.files[words[1]])
            return CommandResult(argv, 1, "", f"cat: {words[1]}: No such file or directory")
        if words[:2] == ["test", "-f"]:
            return CommandResult(argv, 0 if words[2] in self.files else 1)
        if words[:2] == ["test", "-d"]:
            return CommandResult(argv, 0 if words[2] in self.dirs else 1)
        if words[:1] == ["echo"] and "tee" in command:
            value = words[1]
            self.statuses.append(value)
            self.files[STATUS_FILE] = f"{value}\n"
            return CommandResult(argv, 0)
        if words[:1] == ["ghe-cluster-nodes"]:
            role = words[words.index("--role") + 1]
            lines = "\n".join(self.members.get(role, []))
            return CommandResult(argv, 0, lines + "\n" if lines else "")
        return CommandResult(argv, 0)

    def _rsync(self, argv: List[str]) -> CommandResult:
        source, destination = argv[-2], argv[-1]
        pull = "@" in source and ":" in source
        remote = source if pull else destination
        host = remote.split(":", 1)[0].split("@")[-1]
        link_dest = next((a.split("=", 1)[1] for a in argv if a.startswith("--link-dest=")), None)
        transfer = Transfer(host, source, destination, pull, argv, link_dest)
        self.transfers.append(transfer)

        if host in self.fail_hosts:
            return CommandResult(argv, 23, "", f"rsync: connection to {host} failed")
        if pull:
            local = Path(destination)
            for rel, content in self.trees.get(transfer.remote_dir, {}).items():
                path = local / rel
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_bytes(content)
        return CommandResult(argv, self.rsync_returncode)
