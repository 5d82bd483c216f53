"""Bounded-concurrency execution of the ssh client across a host list."""

from __future__ import annotations

import asyncio
import logging
import shlex
from collections import deque
from dataclasses import dataclass, field
from typing import IO, Callable

from .config import Config
from .errors import SpawnError
from .formatter import OutputFormatter
from .hosts import Host, HostList
from .multiplexer import Multiplexer
from .pool import SlotPool
from .slot import ExecutionSlot, SlotState, exit_status

logger = logging.getLogger(__name__)

# Seconds to wait for terminated children before killing them
TERMINATE_GRACE = 5.0
# Seconds to wait for a killed child to be reaped
KILL_WAIT = 1.0

# Type alias for status callback
StatusCallback = Callable[[Host, SlotState, "int | None"], None]  # (host, state, exit status)


@dataclass
class Completion:
    """A child process has exited."""

    pid: int
    returncode: int


@dataclass
class RunSummary:
    """Outcome of a run."""

    total: int
    done: int = 0
    statuses: dict[Host, int] = field(default_factory=dict)
    spawn_failures: dict[Host, SpawnError] = field(default_factory=dict)

    @property
    def failed(self) -> list[Host]:
        """Hosts whose command finished with a non-zero status."""
        return [host for host, status in self.statuses.items() if status != 0]


def script_bootstrap(script_args: list[str] | None = None) -> str:
    """Remote command that stores stdin as a script, runs it and removes it."""
    run = '"$f"'
    if script_args:
        run += " " + " ".join(shlex.quote(arg) for arg in script_args)
    return (
        'f=$(mktemp /tmp/mpssh.XXXXXX) || exit 255; '
        f'cat > "$f" && chmod 700 "$f" && {run}; '
        'rc=$?; rm -f "$f"; exit $rc'
    )


def build_ssh_command(config: Config, host: Host) -> list[str]:
    """Argument vector for the ssh client for one host."""
    argv = [config.ssh_path, "-l", host.user]
    if host.port is not None:
        argv += ["-p", str(host.port)]
    argv += [
        f"-oStrictHostKeyChecking={'yes' if config.host_key_check else 'no'}",
        f"-oConnectTimeout={config.connect_timeout}",
        "-oPreferredAuthentications=publickey",
        "-oBatchMode=yes",
        host.hostname,
    ]
    if config.script is not None:
        argv.append(script_bootstrap(config.script_args))
    else:
        argv.append(config.command or "")
    return argv


class Scheduler:
    """Admits hosts into a bounded pool of ssh children and reaps them."""

    def __init__(
        self,
        config: Config,
        hosts: HostList,
        formatter: OutputFormatter,
        on_status: StatusCallback | None = None,
    ) -> None:
        self.config = config
        self.hosts = hosts
        self.formatter = formatter
        self.on_status = on_status
        self.max_children = config.effective_children(len(hosts))
        self.pool = SlotPool(self.max_children, config.line_length)
        self.summary = RunSummary(total=len(hosts))
        self._processes: dict[int, asyncio.subprocess.Process] = {}
        self._watchers: set[asyncio.Task] = set()
        self._events: asyncio.Queue[Completion] | None = None
        self._mux: Multiplexer | None = None

    def _emit_status(self, slot: ExecutionSlot, state: SlotState) -> None:
        """Move a slot to a new state and report it."""
        slot.state = state
        if self.on_status:
            self.on_status(slot.host, state, slot.exit_status)

    async def run(self) -> RunSummary:
        """Run the command on every host. Returns when all have finished."""
        loop = asyncio.get_running_loop()
        self._events = asyncio.Queue()
        self._mux = Multiplexer(loop, self.formatter)
        pending = deque(self.hosts)

        try:
            while pending or self.pool:
                if pending and self.pool.has_capacity:
                    await self._admit(pending.popleft())
                    if pending and self.config.delay:
                        await asyncio.sleep(self.config.delay)
                can_admit = bool(pending) and self.pool.has_capacity
                await self._wait(block=bool(self.pool) and not can_admit)
        except asyncio.CancelledError:
            logger.warning("Run cancelled, terminating %d ssh sessions", len(self.pool))
            await self._terminate_all()
            raise
        finally:
            self.formatter.close()

        return self.summary

    async def _wait(self, block: bool) -> None:
        """Wait for completions, or just let pending I/O run when not blocking."""
        if block:
            self._reap(await self._events.get())
        else:
            await asyncio.sleep(0)
        while not self._events.empty():
            self._reap(self._events.get_nowait())

    async def _admit(self, host: Host) -> None:
        slot = self.pool.admit(host)
        try:
            slot.open_pipes()
        except OSError as e:
            self._spawn_failed(slot, f"unable to create pipes: {e}")
            return

        if self.config.outdir is not None:
            slot.open_sinks(self.config.outdir)

        argv = build_ssh_command(self.config, host)
        logger.debug("Spawning %s", shlex.join(argv))

        stdin: IO[bytes] | int = asyncio.subprocess.DEVNULL
        script = None
        try:
            if self.config.script is not None:
                script = stdin = open(self.config.script, "rb")
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=stdin,
                stdout=slot.stdout.write_fd,
                stderr=slot.stderr.write_fd,
            )
        except OSError as e:
            self._spawn_failed(slot, f"unable to spawn {self.config.ssh_path}: {e}")
            return
        finally:
            if script is not None:
                script.close()

        # Only the child writes to the pipes now
        slot.stdout.close_write()
        slot.stderr.close_write()

        self.pool.bind(slot, process.pid)
        self._processes[process.pid] = process
        self._emit_status(slot, SlotState.RUNNING)
        self._mux.watch(slot)

        task = asyncio.create_task(self._watch_completion(process))
        self._watchers.add(task)
        task.add_done_callback(self._watchers.discard)

    def _spawn_failed(self, slot: ExecutionSlot, reason: str) -> None:
        error = SpawnError(slot.host, reason)
        logger.error("%s", error)
        self.pool.remove(slot)
        slot.release()
        self.summary.spawn_failures[slot.host] = error
        self._emit_status(slot, SlotState.FAILED)

    async def _watch_completion(self, process: asyncio.subprocess.Process) -> None:
        returncode = await process.wait()
        self._events.put_nowait(Completion(process.pid, returncode))

    def _reap(self, event: Completion) -> None:
        """Finalize the slot of an exited child."""
        slot = self.pool.find_by_process(event.pid)
        if slot is None:
            logger.warning("Reaped unknown process %d", event.pid)
            return
        self._processes.pop(event.pid, None)
        slot.exit_status = exit_status(event.returncode)
        self._emit_status(slot, SlotState.DRAINING)

        self._mux.flush(slot)
        self._mux.unwatch(slot)
        self.formatter.finish(slot)

        self.pool.remove(slot)
        slot.release()
        self.summary.done += 1
        self.summary.statuses[slot.host] = slot.exit_status
        self._emit_status(slot, SlotState.DONE)

    async def _terminate_all(self) -> None:
        """Stop every in-flight child and release all slots."""
        for slot in self.pool.walk():
            process = self._processes.get(slot.pid)
            if process is not None and process.returncode is None:
                try:
                    process.terminate()
                except ProcessLookupError:
                    pass

        if self._watchers:
            _, still_running = await asyncio.wait(
                set(self._watchers), timeout=TERMINATE_GRACE
            )
            for task in still_running:
                task.cancel()

        while not self._events.empty():
            self._reap(self._events.get_nowait())

        for slot in self.pool.walk():
            process = self._processes.get(slot.pid)
            if process is not None:
                returncode = await self._kill(process)
                if returncode is not None:
                    self._reap(Completion(process.pid, returncode))
                    continue
                self._processes.pop(slot.pid, None)
            self._mux.unwatch(slot)
            self.pool.remove(slot)
            slot.release()

    async def _kill(self, process: asyncio.subprocess.Process) -> int | None:
        """SIGKILL a child and wait for it. Returns None if it never exits."""
        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
        try:
            return await asyncio.wait_for(process.wait(), timeout=KILL_WAIT)
        except asyncio.TimeoutError:
            logger.error("ssh process %d did not exit after SIGKILL", process.pid)
            return None
