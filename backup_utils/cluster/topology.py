"""
Cluster topology discovery.

Members are looked up fresh for every operation and never cached.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from ..errors import TransportError
from .ssh import DEFAULT_SSH_PORT, RemoteHost

logger = logging.getLogger(__name__)

ONLINE = "online"


class Role:
    """Cluster role tags used by datastore routines."""
    GIT_SERVER = "git-server"
    PAGES_SERVER = "pages-server"
    STORAGE_SERVER = "storage-server"
    HOOKSHOT_SERVER = "hookshot-server"
    ELASTICSEARCH_SERVER = "elasticsearch-server"


@dataclass(frozen=True)
class Node:
    """A cluster member."""
    hostname: str
    role: str
    port: int = DEFAULT_SSH_PORT
    status: str = ONLINE

    @property
    def online(self) -> bool:
        return self.status == ONLINE


def parse_members(output: str, role: str, port: int = DEFAULT_SSH_PORT) -> List[Node]:
    """
    Parse `ghe-cluster-nodes` output.

    One member per line: "<hostname> [<status>]". A missing status means
    online. Blank lines and comments are skipped, duplicates dropped.
    """
    nodes = {}
    for line in output.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        parts = line.split()
        hostname = parts[0]
        status = parts[1].lower() if len(parts) > 1 else ONLINE
        if hostname not in nodes:
            nodes[hostname] = Node(hostname=hostname, role=role, port=port, status=status)
    return list(nodes.values())


class TopologyResolver:
    """Discovers cluster members through the entry host's control plane."""

    def __init__(self, remote: RemoteHost, member_port: Optional[int] = None):
        self.remote = remote
        self.member_port = member_port or remote.target.port

    def members_with_role(self, role: str) -> List[Node]:
        """
        Online members carrying a role, sorted by hostname.

        A failed query yields an empty list: nothing to do, not an error.
        """
        try:
            result = self.remote.run(f"ghe-cluster-nodes --role {role}", check=False)
        except (TransportError, OSError) as e:
            logger.warning("Could not list %s members: %s", role, e)
            return []

        if not result.ok:
            logger.warning(
                "Could not list %s members (exit %d): %s",
                role, result.returncode, result.stderr.strip(),
            )
            return []

        nodes = parse_members(result.stdout, role, self.member_port)
        online = sorted((n for n in nodes if n.online), key=lambda n: n.hostname)
        skipped = len(nodes) - len(online)
        if skipped:
            logger.info("Skipping %d offline %s member(s)", skipped, role)
        logger.debug("%s members: %s", role, ", ".join(n.hostname for n in online) or "none")
        return online
