"""Readiness-driven draining of every active slot's output pipes."""

from __future__ import annotations

import asyncio
import logging
import os

from .formatter import OutputFormatter
from .slot import ExecutionSlot, Stream, StreamPipe

logger = logging.getLogger(__name__)

READ_CHUNK = 4096


class Multiplexer:
    """Registers slot pipes with the event loop and drains them when readable."""

    def __init__(self, loop: asyncio.AbstractEventLoop, formatter: OutputFormatter) -> None:
        self.loop = loop
        self.formatter = formatter
        self._watched: set[int] = set()

    def watch(self, slot: ExecutionSlot) -> None:
        """Start draining both streams of a running slot."""
        for pipe in slot.streams.values():
            os.set_blocking(pipe.read_fd, False)
            self.loop.add_reader(pipe.read_fd, self._on_readable, slot, pipe.stream)
            self._watched.add(pipe.read_fd)

    def unwatch(self, slot: ExecutionSlot) -> None:
        for pipe in slot.streams.values():
            self._unwatch_fd(pipe.read_fd)

    def _unwatch_fd(self, fd: int) -> None:
        if fd in self._watched:
            self.loop.remove_reader(fd)
            self._watched.discard(fd)

    def _on_readable(self, slot: ExecutionSlot, stream: Stream) -> None:
        self.drain(slot, stream)

    def drain(self, slot: ExecutionSlot, stream: Stream) -> None:
        """Read everything currently available on one stream.

        Complete records are emitted as they are found. A partial line stays
        in the buffer; it is only flushed by `flush`.
        """
        pipe = slot.streams[stream]
        if pipe.eof or pipe.read_fd < 0:
            return
        while True:
            try:
                data = os.read(pipe.read_fd, READ_CHUNK)
            except InterruptedError:
                continue
            except BlockingIOError:
                return
            except OSError as e:
                logger.warning("%s: read error on std%s: %s", slot.host, stream.value, e)
                self._end_of_stream(pipe)
                return
            if not data:
                self._end_of_stream(pipe)
                return
            for record in pipe.buffer.feed(data):
                self.formatter.record(slot, stream, record)

    def _end_of_stream(self, pipe: StreamPipe) -> None:
        pipe.eof = True
        self._unwatch_fd(pipe.read_fd)

    def flush(self, slot: ExecutionSlot) -> None:
        """Drain both streams and emit any dangling partial line, once."""
        for stream, pipe in slot.streams.items():
            self.drain(slot, stream)
            record = pipe.buffer.flush()
            if record is not None:
                self.formatter.record(slot, stream, record)
