"""
RemoteStatusReporter - publishes restore progress on the target.

Other processes on the appliance read the status file to avoid operating on
a half-restored system. Publishing is best effort: a transport failure is
logged and never replaces the outcome being reported.
"""

import logging
import shlex
from enum import Enum
from typing import Optional

from ..cluster.ssh import RemoteHost
from ..errors import TransportError

logger = logging.getLogger(__name__)

STATUS_FILE = "/data/user/common/ghe-restore-status"


class RestoreStatus(str, Enum):
    """Values written to the remote status file."""
    RESTORING = "restoring"
    FAILED = "failed"
    COMPLETE = "complete"
    UNKNOWN = "unknown"    # Never written; returned for missing/garbled values


class RemoteStatusReporter:
    """Writes a single status value to a well-known path on the target."""

    def __init__(self, remote: RemoteHost, path: str = STATUS_FILE):
        self.remote = remote
        self.path = path
        self.last_published: Optional[RestoreStatus] = None

    def publish(self, status: RestoreStatus) -> bool:
        """
        Write status to the target.

        Returns:
            True if the write succeeded
        """
        if status == RestoreStatus.UNKNOWN:
            raise ValueError("UNKNOWN is not a publishable status")

        quoted = shlex.quote(self.path)
        command = f"echo {status.value} | sudo tee {quoted} >/dev/null"
        try:
            self.remote.run(command)
        except (TransportError, OSError) as e:
            logger.warning("Could not publish restore status '%s': %s", status.value, e)
            return False

        self.last_published = status
        logger.debug("Published restore status: %s", status.value)
        return True

    def read(self) -> RestoreStatus:
        """Read the current status; anything unrecognised is UNKNOWN."""
        try:
            content = self.remote.read_file(self.path)
        except (TransportError, OSError) as e:
            logger.warning("Could not read restore status: %s", e)
            return RestoreStatus.UNKNOWN
        if content is None:
            return RestoreStatus.UNKNOWN
        try:
            status = RestoreStatus(content.strip())
        except ValueError:
            return RestoreStatus.UNKNOWN
        return status
