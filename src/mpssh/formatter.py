"""Rendering of output records to the console and per-host files."""

from __future__ import annotations

import sys
from typing import Callable, TextIO

from .hosts import Host, HostList
from .slot import ExecutionSlot, Stream

GREEN = "\033[1;32m"
RED = "\033[1;31m"
RESET = "\033[0;39m"

# (plain, colored) markers
OUT_MARKER = ("->", f"{GREEN}->{RESET}")
ERR_MARKER = ("=>", f"{RED}=>{RESET}")
RET_MARKER = ("=:", f"{GREEN}=:{RESET}", f"{RED}=:{RESET}")

# Type alias for output callback
OutputCallback = Callable[[Host, Stream, str], None]  # (host, stream, text) -> None


def _isatty(stream: TextIO) -> bool:
    try:
        return stream.isatty()
    except (AttributeError, ValueError):
        return False


class OutputFormatter:
    """Formats flushed records for one run."""

    def __init__(
        self,
        hosts: HostList,
        *,
        blind: bool = False,
        verbose: bool = False,
        print_exit: bool = False,
        show_user: bool = False,
        stdout: TextIO | None = None,
        stderr: TextIO | None = None,
        on_output: OutputCallback | None = None,
    ) -> None:
        self.total = len(hosts)
        self.user_width = hosts.max_user_len
        self.host_width = hosts.max_host_len
        self.blind = blind
        self.verbose = verbose
        self.print_exit = print_exit
        self.show_user = show_user
        self.stdout = stdout or sys.stdout
        self.stderr = stderr or sys.stderr
        self.on_output = on_output
        self.completed = 0
        self._progress_shown = False

    def label(self, host: Host) -> str:
        if self.show_user:
            return f"{host.user:>{self.user_width}}@{host.hostname:<{self.host_width}}"
        return f"{host.hostname:<{self.host_width}}"

    def progress(self) -> str:
        if not self.verbose:
            return ""
        width = len(str(self.total))
        return f"[{self.completed:>{width}}/{self.total}] "

    def record(self, slot: ExecutionSlot, stream: Stream, data: bytes) -> None:
        """Emit one complete record to every active destination."""
        text = data.decode("utf-8", errors="replace")
        slot.produced_output = True

        sink = slot.streams[stream].sink
        if sink is not None:
            sink.write(text)

        if not self.blind:
            console = self.stdout if stream is Stream.STDOUT else self.stderr
            markers = OUT_MARKER if stream is Stream.STDOUT else ERR_MARKER
            marker = markers[1] if _isatty(console) else markers[0]
            console.write(f"{self.label(slot.host)} {self.progress()}{marker} {text}\n")
            console.flush()

        if self.on_output:
            self.on_output(slot.host, stream, text)

    def finish(self, slot: ExecutionSlot) -> None:
        """Emit the terminal line for a finished slot. Only the first call prints."""
        if slot.finished:
            return
        slot.finished = True
        self.completed += 1

        if self.print_exit:
            tty = _isatty(self.stdout)
            if not tty:
                marker = RET_MARKER[0]
            else:
                marker = RET_MARKER[2] if slot.exit_status else RET_MARKER[1]
            self.stdout.write(
                f"{self.label(slot.host)} {self.progress()}{marker} {slot.exit_status}\n"
            )
            self.stdout.flush()
        elif self.blind and self.verbose:
            # Single progress line, rewritten in place
            self.stdout.write(f"\r{self.label(slot.host)} {self.progress()}")
            self.stdout.flush()
            self._progress_shown = True
        elif self.verbose and not slot.produced_output:
            self.stdout.write(f"{self.label(slot.host)} {self.progress()}".rstrip() + "\n")
            self.stdout.flush()

    def close(self) -> None:
        """End the in-place progress line, if one was started."""
        if self._progress_shown:
            self.stdout.write("\n")
            self.stdout.flush()
            self._progress_shown = False
