import pytest

from backup_utils.cluster import RemoteHost, SSHTarget
from backup_utils.snapshot import SnapshotStore

from .mocks import ENTRY_HOST, FakeAppliance


@pytest.fixture
def appliance():
    return FakeAppliance()


@pytest.fixture
def remote(appliance):
    return RemoteHost(SSHTarget.parse(ENTRY_HOST), runner=appliance)


@pytest.fixture
def store(tmp_path):
    return SnapshotStore(tmp_path / "data", num_snapshots=3)
