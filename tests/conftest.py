"""Shared fixtures for mpssh tests."""

import io
import stat
from pathlib import Path

import pytest

from mpssh.config import Config
from mpssh.hosts import HostList

# Stands in for the ssh client: drops every flag, exports the target host
# and runs the remote command locally.
FAKE_SSH = """#!/bin/sh
while [ $# -gt 2 ]; do shift; done
MPSSH_TARGET=$1
export MPSSH_TARGET
exec /bin/sh -c "$2"
"""


@pytest.fixture
def fake_ssh(tmp_path: Path) -> Path:
    path = tmp_path / "fake-ssh"
    path.write_text(FAKE_SSH)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def make_config(fake_ssh: Path):
    def _make(**kwargs) -> Config:
        kwargs.setdefault("command", "true")
        kwargs.setdefault("ssh_path", str(fake_ssh))
        return Config(**kwargs)

    return _make


@pytest.fixture
def make_hosts():
    def _make(*names: str, user: str = "tester") -> HostList:
        return HostList.from_lines(names, default_user=user)

    return _make


class Console:
    """Captured stdout/stderr pair for the formatter."""

    def __init__(self) -> None:
        self.stdout = io.StringIO()
        self.stderr = io.StringIO()

    @property
    def out_lines(self) -> list[str]:
        return self.stdout.getvalue().splitlines()

    @property
    def err_lines(self) -> list[str]:
        return self.stderr.getvalue().splitlines()


@pytest.fixture
def console() -> Console:
    return Console()
