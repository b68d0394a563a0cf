"""
Tests for entry-host addressing and remote command construction.
"""

from pathlib import Path

import pytest

from backup_utils.cluster import CommandResult, RemoteHost, SSHTarget


@pytest.mark.parametrize("spec,user,host,port", [
    ("ghe.example.com", "admin", "ghe.example.com", 122),
    ("root@ghe.example.com:2222", "root", "ghe.example.com", 2222),
    ("10.0.0.5:22", "admin", "10.0.0.5", 22),
    ("[2001:db8::10]", "admin", "2001:db8::10", 122),
    ("[2001:db8::10]:2222", "admin", "2001:db8::10", 2222),
    ("git@[fe80::1]:22", "git", "fe80::1", 22),
    ("2001:db8::10", "admin", "2001:db8::10", 122),
])
def test_parse(spec, user, host, port):
    target = SSHTarget.parse(spec)

    assert (target.user, target.host, target.port) == (user, host, port)


@pytest.mark.parametrize("spec", ["", "ghe.example.com:ssh", "[2001:db8::10", "[2001:db8::10]2222", "[]:122"])
def test_parse_rejects(spec):
    with pytest.raises(ValueError):
        SSHTarget.parse(spec)


def test_ipv6_display_and_rsync_destination():
    target = SSHTarget.parse("[2001:db8::10]:2222")

    assert str(target) == "[2001:db8::10]:2222"
    assert target.destination == "admin@2001:db8::10"
    assert target.rsync_destination == "admin@[2001:db8::10]"


def test_rsync_to_ipv6_host_brackets_address(tmp_path):
    calls = []

    def runner(argv, **kwargs):
        calls.append(argv)
        return CommandResult(list(argv), 0)

    remote = RemoteHost(SSHTarget.parse("[2001:db8::10]"), runner=runner)
    remote.rsync(Path(tmp_path), "/data/repositories")

    assert calls[-1][-1] == "admin@[2001:db8::10]:/data/repositories/"
    assert calls[-1][-2].startswith(str(tmp_path))
