"""Execution slot: per-host runtime record."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import IO

from .hosts import Host

logger = logging.getLogger(__name__)

SIGNALED_STATUS = 255


class SlotState(Enum):
    """Lifecycle of a host's execution."""

    PENDING = "pending"
    RUNNING = "running"
    DRAINING = "draining"
    DONE = "done"
    FAILED = "failed"  # spawn failed, never ran


class Stream(Enum):
    """Output stream of a remote command."""

    STDOUT = "out"
    STDERR = "err"


def exit_status(returncode: int) -> int:
    """Map a returncode to the recorded status. Killed by a signal means 255."""
    if returncode < 0:
        return SIGNALED_STATUS
    return returncode


class LineBuffer:
    """Bounded accumulator for one stream.

    A record is complete on newline, or when `capacity` bytes have been
    accumulated without one (forced break). A newline right after a forced
    break ends that same record and yields nothing.
    """

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._buf = bytearray()
        self._after_break = False  # previous record ended by a forced break

    def __len__(self) -> int:
        return len(self._buf)

    def feed(self, data: bytes) -> list[bytes]:
        """Add bytes and return the records they completed."""
        records = []
        for byte in data:
            if byte == 0x0A:
                if not self._after_break:
                    records.append(bytes(self._buf))
                    self._buf.clear()
                self._after_break = False
                continue
            self._after_break = False
            self._buf.append(byte)
            if len(self._buf) >= self.capacity:
                records.append(bytes(self._buf))
                self._buf.clear()
                self._after_break = True
        return records

    def flush(self) -> bytes | None:
        """Return the dangling partial record, if any, and empty the buffer."""
        self._after_break = False
        if not self._buf:
            return None
        record = bytes(self._buf)
        self._buf.clear()
        return record


class FileSink:
    """Per-host per-stream output file, opened on first write."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self.bytes_written = 0
        self._fh: IO[str] | None = None
        self._broken = False

    def write(self, text: str) -> None:
        if self._broken:
            return
        try:
            if self._fh is None:
                self._fh = open(self.path, "w")
            self._fh.write(text + "\n")
            self._fh.flush()
        except OSError as e:
            logger.error("Unable to write %s: %s", self.path, e)
            self._broken = True
            return
        self.bytes_written += len(text) + 1

    def close(self) -> None:
        """Close the file, removing it if nothing was ever written."""
        if self._fh is not None:
            self._fh.close()
            self._fh = None
        if self.bytes_written == 0 and self.path.exists():
            try:
                self.path.unlink()
            except OSError as e:
                logger.warning("Unable to remove empty %s: %s", self.path, e)


@dataclass
class StreamPipe:
    """One output stream of a slot: pipe ends plus its line buffer."""

    stream: Stream
    buffer: LineBuffer
    read_fd: int = -1
    write_fd: int = -1
    eof: bool = False
    sink: FileSink | None = None

    def open(self) -> None:
        self.read_fd, self.write_fd = os.pipe()

    def close_write(self) -> None:
        if self.write_fd >= 0:
            os.close(self.write_fd)
            self.write_fd = -1

    def close_read(self) -> None:
        if self.read_fd >= 0:
            os.close(self.read_fd)
            self.read_fd = -1


@dataclass
class ExecutionSlot:
    """Runtime record for one host's in-flight or just-finished execution."""

    host: Host
    line_length: int
    state: SlotState = SlotState.PENDING
    pid: int | None = None
    exit_status: int | None = None
    produced_output: bool = False
    finished: bool = False  # terminal line emitted
    index: int = -1  # position in the pool slab
    streams: dict[Stream, StreamPipe] = field(init=False)

    def __post_init__(self) -> None:
        self.streams = {
            stream: StreamPipe(stream, LineBuffer(self.line_length))
            for stream in Stream
        }

    @property
    def stdout(self) -> StreamPipe:
        return self.streams[Stream.STDOUT]

    @property
    def stderr(self) -> StreamPipe:
        return self.streams[Stream.STDERR]

    def open_pipes(self) -> None:
        """Create both output pipes. On failure nothing is left open."""
        try:
            for pipe in self.streams.values():
                pipe.open()
        except OSError:
            self.close_pipes()
            raise

    def open_sinks(self, outdir: Path) -> None:
        for stream, pipe in self.streams.items():
            pipe.sink = FileSink(outdir / f"{self.host.login}.{stream.value}")

    def close_pipes(self) -> None:
        for pipe in self.streams.values():
            pipe.close_write()
            pipe.close_read()

    def release(self) -> None:
        """Close every descriptor and file sink the slot holds."""
        self.close_pipes()
        for pipe in self.streams.values():
            if pipe.sink is not None:
                pipe.sink.close()
