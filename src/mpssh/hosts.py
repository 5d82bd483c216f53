"""Host list loader for mpssh."""

from __future__ import annotations

import getpass
import logging
import re
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Iterator, TextIO

from .errors import HostListError

logger = logging.getLogger(__name__)

LABEL_MARKER = "="
COMMENT_MARKER = "#"
STDIN_SOURCE = "-"

# [user@]host[:port], anything after the host token is ignored
_HOST_RE = re.compile(
    r"^(?:(?P<user>[A-Za-z0-9._-]+)@)?(?P<host>[A-Za-z0-9._-]+)(?::(?P<port>\S*))?"
)


@dataclass(frozen=True)
class Host:
    """A single target. Identity is the (user, hostname, port) triple."""

    user: str
    hostname: str
    port: int | None = None  # None means "port not set"
    label: str | None = field(default=None, compare=False)

    @property
    def login(self) -> str:
        return f"{self.user}@{self.hostname}"

    def __str__(self) -> str:
        if self.port is None:
            return self.login
        return f"{self.login}:{self.port}"


def _parse_port(raw: str | None) -> int | None:
    if not raw or not raw.isdigit():
        return None
    port = int(raw)
    if not 0 < port < 65536:
        return None
    return port


def parse_host_line(line: str, default_user: str, label: str | None = None) -> Host | None:
    """Parse one host list line. Returns None for lines that yield no host."""
    line = line.strip()
    if not line or line.startswith((COMMENT_MARKER, LABEL_MARKER)):
        return None
    match = _HOST_RE.match(line)
    if not match:
        return None
    return Host(
        user=match.group("user") or default_user,
        hostname=match.group("host"),
        port=_parse_port(match.group("port")),
        label=label,
    )


class HostList:
    """Ordered, deduplicated sequence of hosts in admission order."""

    def __init__(self) -> None:
        self._hosts: list[Host] = []
        self._seen: set[Host] = set()
        self.max_user_len = 0
        self.max_host_len = 0

    def add(self, host: Host) -> bool:
        """Append a host unless an identical one is already present."""
        if host in self._seen:
            return False
        self._seen.add(host)
        self._hosts.append(host)
        self.max_user_len = max(self.max_user_len, len(host.user))
        self.max_host_len = max(self.max_host_len, len(host.hostname))
        return True

    def __len__(self) -> int:
        return len(self._hosts)

    def __iter__(self) -> Iterator[Host]:
        return iter(self._hosts)

    def __getitem__(self, index: int) -> Host:
        return self._hosts[index]

    @classmethod
    def from_lines(
        cls,
        lines: Iterable[str],
        default_user: str,
        label: str | None = None,
    ) -> HostList:
        """Build a host list from text lines, keeping only `label` hosts if given."""
        hosts = cls()
        current_label: str | None = None
        for lineno, line in enumerate(lines, 1):
            stripped = line.strip()
            if stripped.startswith(LABEL_MARKER):
                current_label = stripped[len(LABEL_MARKER):].strip() or None
                continue
            host = parse_host_line(stripped, default_user, current_label)
            if host is None:
                if stripped and not stripped.startswith(COMMENT_MARKER):
                    logger.debug("Skipping malformed host line %d: %r", lineno, stripped)
                continue
            if label is not None and host.label != label:
                continue
            if not hosts.add(host):
                logger.debug("Dropping duplicate host %s", host)
        return hosts


def load_hosts(
    source: str | Path,
    default_user: str | None = None,
    label: str | None = None,
    stdin: TextIO | None = None,
) -> HostList:
    """Load a host list from a file path, or from stdin when source is '-'."""
    user = default_user or getpass.getuser()

    if str(source) == STDIN_SOURCE:
        if stdin is None:
            stdin = sys.stdin
            # Undecodable lines are skipped like any other malformed line
            stdin.reconfigure(errors="replace")
        hosts = HostList.from_lines(stdin, user, label)
    else:
        try:
            with open(source, encoding="utf-8", errors="replace") as f:
                hosts = HostList.from_lines(f, user, label)
        except OSError as e:
            raise HostListError(f"Cannot read host list {source}: {e}") from e

    if not hosts:
        if label is not None:
            raise HostListError(f"No hosts labeled '{label}' in {source}")
        raise HostListError(f"No hosts found in {source}")

    logger.debug("Loaded %d hosts from %s", len(hosts), source)
    return hosts
