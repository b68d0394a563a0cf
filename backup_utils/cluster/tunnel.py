"""
TunnelTransport - reach internal-only cluster members through the entry host.

A TunnelConfig is an ssh_config with one block per member whose ProxyCommand
runs `nc` on the entry host. The file exists only inside `with_tunnel()`:

    config = transport.build_tunnel(members)
    with transport.with_tunnel(config):
        transport.run_over_tunnel(config, member, "ghe-storage-check")

Two transfer modes:
- first_success: data identical on every member; stop at the first member
  passing a predicate. No match is a no-op.
- fan_out: data sharded across members; visit all, fail if any fails.
"""

import logging
import os
import shlex
import tempfile
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, TypeVar

from ..errors import FanOutError, TransportError
from .ssh import CommandResult, RemoteHost, check_rsync, rsync_command
from .topology import Node

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class TunnelConfig:
    """Proxy configuration for one operation."""
    entry_destination: str
    entry_port: int
    entry_opts: List[str]
    members: List[Node]
    path: Optional[Path] = None
    member_user: str = "admin"
    proxy_command: str = "nc.openbsd %h %p"

    def render(self) -> str:
        """Render the ssh_config text."""
        entry = ["ssh", "-q", *self.entry_opts, "-p", str(self.entry_port), self.entry_destination]
        proxy = f"{shlex.join(entry)} {self.proxy_command}"
        blocks = []
        for member in self.members:
            # Internal hops use addresses we cannot verify independently
            blocks.append("\n".join([
                f"Host {member.hostname}",
                "  ServerAliveInterval 60",
                f"  ProxyCommand {proxy}",
                "  StrictHostKeyChecking no",
                "  UserKnownHostsFile /dev/null",
                "  LogLevel ERROR",
            ]))
        return "\n\n".join(blocks) + "\n"

    @property
    def active(self) -> bool:
        return self.path is not None and self.path.exists()


class TunnelTransport:
    """Executes commands and transfers on cluster members via the entry host."""

    def __init__(self, entry: RemoteHost):
        self.entry = entry
        self.runner = entry.runner

    def build_tunnel(self, members: List[Node]) -> TunnelConfig:
        """
        Build the proxy configuration for members.

        Nothing touches disk until with_tunnel() is entered.
        """
        target = self.entry.target
        return TunnelConfig(
            entry_destination=target.destination,
            entry_port=target.port,
            entry_opts=list(target.extra_opts),
            members=list(members),
            member_user=target.user,
        )

    @contextmanager
    def with_tunnel(self, config: TunnelConfig) -> Iterator[TunnelConfig]:
        """
        Write the tunnel config for the duration of the block.

        The file is unlinked on every exit path, including KeyboardInterrupt.
        """
        fd, name = tempfile.mkstemp(prefix="backup-utils-ssh-config-")
        config.path = Path(name)
        try:
            with os.fdopen(fd, "w") as f:
                f.write(config.render())
            logger.debug("Tunnel config %s for %d member(s)", name, len(config.members))
            yield config
        finally:
            try:
                os.unlink(name)
            except FileNotFoundError:
                pass
            config.path = None

    def run_with_tunnel(self, config: TunnelConfig, body: Callable[[TunnelConfig], T]) -> T:
        """Run body(config) with the tunnel active."""
        with self.with_tunnel(config):
            return body(config)

    # =========================================================================
    # Commands and transfers
    # =========================================================================

    def _member_ssh(self, config: TunnelConfig, member: Node) -> List[str]:
        if not config.active:
            raise RuntimeError("Tunnel is not active; use with_tunnel()")
        return ["ssh", "-F", str(config.path), "-o", "BatchMode=yes", "-p", str(member.port)]

    def run_over_tunnel(
        self,
        config: TunnelConfig,
        member: Node,
        command: str,
        check: bool = True,
        stdin_path: Optional[Path] = None,
    ) -> CommandResult:
        """Run a remote command on a member."""
        argv = self._member_ssh(config, member) + [
            f"{config.member_user}@{member.hostname}", "--", command,
        ]
        logger.debug("$ [%s] %s", member.hostname, command)
        result = self.runner(argv, stdin_path=stdin_path, timeout=self.entry.timeout)
        if check and not result.ok:
            raise TransportError(argv, result.returncode, result.stderr.strip())
        return result

    def transfer_over_tunnel(
        self,
        config: TunnelConfig,
        member: Node,
        local_path: Path,
        remote_path: str,
        dedup_base: Optional[Path] = None,
        pull: bool = False,
        delete: bool = False,
    ) -> CommandResult:
        """
        rsync a directory tree to (or from) a member.

        Args:
            config: Active tunnel
            member: Cluster member
            local_path: Local directory
            remote_path: Directory on the member
            dedup_base: Hardlink base; unchanged files are linked, not re-sent
            pull: Copy member -> local instead of local -> member
            delete: Remove files on the receiving side missing from the source
        """
        remote = f"{config.member_user}@{member.hostname}:{remote_path.rstrip('/')}/"
        local = f"{str(local_path).rstrip('/')}/"
        source, destination = (remote, local) if pull else (local, remote)
        argv = rsync_command(
            self._member_ssh(config, member), source, destination,
            link_dest=dedup_base, delete=delete,
        )
        logger.debug("$ [%s] rsync %s -> %s", member.hostname, source, destination)
        return check_rsync(self.runner(argv, timeout=self.entry.timeout))

    # =========================================================================
    # Transfer modes
    # =========================================================================

    @staticmethod
    def first_success(
        members: List[Node],
        predicate: Callable[[Node], bool],
        action: Callable[[Node], object],
    ) -> Optional[Node]:
        """
        Run action on the first member satisfying predicate.

        Members are probed in order; nothing after the chosen member is
        contacted. Returns the chosen member, or None if none qualified.
        """
        for member in members:
            if not predicate(member):
                logger.debug("%s does not qualify, trying next member", member.hostname)
                continue
            action(member)
            return member
        logger.info("No member qualified; nothing to transfer")
        return None

    @staticmethod
    def fan_out(
        members: List[Node],
        action: Callable[[Node], object],
        parallel: bool = False,
        max_workers: int = 4,
    ) -> None:
        """
        Run action on every member.

        Every member is visited even after a failure; any failure fails the
        whole operation with FanOutError naming the failed members.
        """
        failures: Dict[str, BaseException] = {}

        def visit(member: Node) -> None:
            try:
                action(member)
            except Exception as e:
                logger.error("%s failed: %s", member.hostname, e)
                failures[member.hostname] = e

        if parallel and len(members) > 1:
            with ThreadPoolExecutor(max_workers=max_workers) as pool:
                list(pool.map(visit, members))
        else:
            for member in members:
                visit(member)

        if failures:
            raise FanOutError(failures)
