"""Exceptions raised by mpssh."""

from __future__ import annotations


class MpsshError(Exception):
    """Base class for mpssh errors."""


class HostListError(MpsshError):
    """The host source could not be read or yielded no usable hosts."""


class SpawnError(MpsshError):
    """The ssh client could not be started for a host."""

    def __init__(self, host: object, reason: str) -> None:
        super().__init__(f"{host}: {reason}")
        self.host = host
        self.reason = reason
