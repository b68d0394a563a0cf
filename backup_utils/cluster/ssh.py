"""
SSH and rsync primitives for the entry host.

Provides:
- SSHTarget parsing ("user@host:port")
- RemoteHost: remote commands over one multiplexed ssh connection
- rsync command building with --link-dest dedup
- run_process: the one place subprocess is invoked
"""

import logging
import shlex
import shutil
import subprocess
import tempfile
from contextlib import ExitStack
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from ..errors import TransportError

logger = logging.getLogger(__name__)

DEFAULT_SSH_USER = "admin"
DEFAULT_SSH_PORT = 122
CONNECT_TIMEOUT = 30  # seconds
TIMEOUT_RETURNCODE = 124

# rsync: "Partial transfer due to vanished source files"
RSYNC_VANISHED = 24

# Appliance data directories are owned by the git user
REMOTE_RSYNC_PATH = "sudo -u git rsync"


@dataclass
class CommandResult:
    """Outcome of one local or remote command."""
    argv: List[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


CommandRunner = Callable[..., CommandResult]


def run_process(
    argv: Sequence[str],
    stdin_path: Optional[Path] = None,
    stdout_path: Optional[Path] = None,
    timeout: Optional[int] = None,
) -> CommandResult:
    """
    Run a command, optionally streaming stdin from / stdout to local files.

    Args:
        argv: Command and arguments
        stdin_path: File fed to the command's stdin
        stdout_path: File receiving the command's stdout (binary)
        timeout: Seconds before the command is killed

    Returns:
        CommandResult (stdout is empty when streamed to a file)
    """
    argv = [str(a) for a in argv]
    with ExitStack() as stack:
        stdin = stack.enter_context(open(stdin_path, "rb")) if stdin_path else subprocess.DEVNULL
        stdout = stack.enter_context(open(stdout_path, "wb")) if stdout_path else subprocess.PIPE
        try:
            result = subprocess.run(
                argv,
                stdin=stdin,
                stdout=stdout,
                stderr=subprocess.PIPE,
                timeout=timeout,
                check=False,
            )
        except subprocess.TimeoutExpired:
            return CommandResult(argv, TIMEOUT_RETURNCODE, "", f"timed out after {timeout}s")

    out = result.stdout.decode(errors="replace") if isinstance(result.stdout, bytes) else ""
    err = result.stderr.decode(errors="replace") if isinstance(result.stderr, bytes) else ""
    return CommandResult(argv, result.returncode, out, err)


@dataclass
class SSHTarget:
    """An ssh endpoint: the externally reachable appliance or a cluster member."""
    host: str
    user: str = DEFAULT_SSH_USER
    port: int = DEFAULT_SSH_PORT
    extra_opts: List[str] = field(default_factory=list)

    @classmethod
    def parse(
        cls,
        spec: str,
        user: str = DEFAULT_SSH_USER,
        port: int = DEFAULT_SSH_PORT,
        extra_opts: Optional[List[str]] = None,
    ) -> 'SSHTarget':
        """
        Parse "host", "user@host", "host:port" or "user@host:port".

        IPv6 addresses are written "[addr]" or "[addr]:port"; a bare address
        with several colons is taken as a host without a port. Explicit parts
        of the spec win over the defaults passed in.
        """
        spec = spec.strip()
        if not spec:
            raise ValueError("Host must not be empty")
        if "@" in spec:
            user, spec = spec.split("@", 1)

        port_str = None
        if spec.startswith("["):
            host, sep, rest = spec[1:].partition("]")
            if not sep or (rest and not rest.startswith(":")):
                raise ValueError(f"Invalid host: {spec!r}")
            if rest:
                port_str = rest[1:]
        elif spec.count(":") == 1:
            host, port_str = spec.split(":")
        else:
            host = spec

        if not host:
            raise ValueError("Host must not be empty")
        if port_str is not None:
            if not port_str.isdigit():
                raise ValueError(f"Invalid ssh port: {port_str!r}")
            port = int(port_str)
        return cls(host=host, user=user, port=port, extra_opts=list(extra_opts or []))

    @property
    def destination(self) -> str:
        return f"{self.user}@{self.host}"

    @property
    def rsync_destination(self) -> str:
        """Destination as rsync expects it before ":path"."""
        host = f"[{self.host}]" if ":" in self.host else self.host
        return f"{self.user}@{host}"

    def __str__(self) -> str:
        host = f"[{self.host}]" if ":" in self.host else self.host
        return f"{host}:{self.port}"


def rsync_command(
    ssh_command: Sequence[str],
    source: str,
    destination: str,
    link_dest: Optional[Path] = None,
    delete: bool = False,
    rsync_path: Optional[str] = REMOTE_RSYNC_PATH,
) -> List[str]:
    """
    Build an rsync invocation over the given ssh command.

    Args:
        ssh_command: ssh argv used as rsync's remote shell
        source: Source path ("user@host:/path/" for pulls)
        destination: Destination path
        link_dest: Prior snapshot directory; unchanged files are hardlinked
        delete: Remove destination files missing from the source
        rsync_path: rsync command run on the remote side
    """
    cmd = ["rsync", "-a", "--numeric-ids", "-e", shlex.join(ssh_command)]
    if rsync_path:
        cmd.append(f"--rsync-path={rsync_path}")
    if delete:
        cmd.append("--delete")
    if link_dest is not None:
        cmd.append(f"--link-dest={link_dest}")
    cmd.extend([source, destination])
    return cmd


def check_rsync(result: CommandResult) -> CommandResult:
    """Raise TransportError unless rsync succeeded (vanished files allowed)."""
    if result.returncode == RSYNC_VANISHED:
        logger.warning("rsync: some source files vanished during transfer")
        return result
    if not result.ok:
        raise TransportError(result.argv, result.returncode, result.stderr.strip())
    return result


class RemoteHost:
    """
    Runs commands on the entry host.

    Used as a context manager, all commands share one ssh control master
    which is closed on exit.
    """

    def __init__(
        self,
        target: SSHTarget,
        runner: Optional[CommandRunner] = None,
        timeout: Optional[int] = None,
    ):
        self.target = target
        self.runner = runner or run_process
        self.timeout = timeout
        self._control_dir: Optional[str] = None

    def __enter__(self) -> 'RemoteHost':
        self._control_dir = tempfile.mkdtemp(prefix="backup-utils-ssh-")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def close(self) -> None:
        """Close the control master and remove its socket directory."""
        if self._control_dir is None:
            return
        control_dir, self._control_dir = self._control_dir, None
        try:
            result = self.runner(
                ["ssh", "-o", f"ControlPath={control_dir}/%C", "-O", "exit",
                 "-p", str(self.target.port), self.target.destination],
                timeout=10,
            )
            if not result.ok:
                logger.debug("Control master exit: %s", result.stderr.strip())
        except OSError as e:
            logger.debug("Control master exit failed: %s", e)
        finally:
            shutil.rmtree(control_dir, ignore_errors=True)

    def ssh_base(self) -> List[str]:
        """ssh argv up to (not including) the destination."""
        cmd = ["ssh", "-o", "BatchMode=yes", "-o", f"ConnectTimeout={CONNECT_TIMEOUT}"]
        if self._control_dir is not None:
            cmd.extend([
                "-o", "ControlMaster=auto",
                "-o", f"ControlPath={self._control_dir}/%C",
                "-o", "ControlPersist=10m",
            ])
        cmd.extend(self.target.extra_opts)
        cmd.extend(["-p", str(self.target.port)])
        return cmd

    def ssh_command(self, command: str) -> List[str]:
        return self.ssh_base() + [self.target.destination, "--", command]

    def run(
        self,
        command: str,
        check: bool = True,
        stdin_path: Optional[Path] = None,
        stdout_path: Optional[Path] = None,
    ) -> CommandResult:
        """
        Run a remote command.

        Args:
            command: Shell command executed on the host
            check: Raise TransportError on non-zero exit
            stdin_path: Local file streamed to the command's stdin
            stdout_path: Local file receiving the command's stdout

        Returns:
            CommandResult
        """
        argv = self.ssh_command(command)
        logger.debug("$ %s", command)
        result = self.runner(argv, stdin_path=stdin_path, stdout_path=stdout_path, timeout=self.timeout)
        if check and not result.ok:
            raise TransportError(argv, result.returncode, result.stderr.strip())
        return result

    def test(self, command: str) -> bool:
        """True if the remote command exits zero."""
        return self.run(command, check=False).ok

    def read_file(self, path: str) -> Optional[str]:
        """Contents of a remote file, or None if it cannot be read."""
        result = self.run(f"cat {shlex.quote(path)}", check=False)
        return result.stdout if result.ok else None

    def rsync(
        self,
        local_path: Path,
        remote_path: str,
        pull: bool = False,
        link_dest: Optional[Path] = None,
        delete: bool = False,
    ) -> CommandResult:
        """
        Transfer a directory tree to or from the host.

        Args:
            local_path: Local directory
            remote_path: Directory on the host
            pull: Copy host -> local instead of local -> host
            link_dest: Hardlink base for unchanged files on the receiving side
            delete: Remove files on the receiving side missing from the source
        """
        remote = f"{self.target.rsync_destination}:{remote_path.rstrip('/')}/"
        local = f"{str(local_path).rstrip('/')}/"
        source, destination = (remote, local) if pull else (local, remote)
        argv = rsync_command(self.ssh_base(), source, destination, link_dest=link_dest, delete=delete)
        logger.debug("$ rsync %s -> %s", source, destination)
        return check_rsync(self.runner(argv, timeout=self.timeout))
