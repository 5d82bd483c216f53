"""TUI Dashboard for mpssh."""

from __future__ import annotations

from dataclasses import dataclass

from rich.markup import escape
from textual.app import App, ComposeResult
from textual.message import Message
from textual.reactive import reactive
from textual.widgets import DataTable, Footer, Header, RichLog, Static
from textual.worker import Worker, WorkerCancelled, WorkerFailed

from .config import Config
from .executor import RunSummary, Scheduler
from .formatter import OutputFormatter
from .hosts import Host, HostList
from .slot import SlotState, Stream

STATE_STYLES = {
    SlotState.PENDING: "dim",
    SlotState.RUNNING: "yellow",
    SlotState.DRAINING: "yellow",
    SlotState.DONE: "green",
    SlotState.FAILED: "bold red",
}


class StatusBar(Static):
    """Bottom status bar showing overall progress."""

    completed: reactive[int] = reactive(0)
    total: reactive[int] = reactive(0)
    active: reactive[int] = reactive(0)
    running: reactive[bool] = reactive(True)

    def render(self) -> str:
        status = f"{self.active} running" if self.running else "Complete"
        return f"Progress: {self.completed}/{self.total} hosts complete | {status} | Press 'q' to quit"


@dataclass
class HostOutput(Message):
    """Message for a host's output record."""
    host: Host
    stream: Stream
    line: str


@dataclass
class HostStatusChange(Message):
    """Message for a host's state change."""
    host: Host
    state: SlotState
    exit_status: int | None


class Dashboard(App):
    """Main TUI Dashboard application."""

    CSS = """
    #host-table {
        height: 40%;
        border: solid $primary;
    }

    #output-log {
        height: 1fr;
        border: solid $primary;
        padding: 0 1;
    }

    StatusBar {
        dock: bottom;
        height: 1;
        background: $surface;
        padding: 0 1;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("escape", "quit", "Quit"),
    ]

    def __init__(self, config: Config, hosts: HostList, **kwargs) -> None:
        super().__init__(**kwargs)
        self.config = config
        self.hosts = hosts
        self.summary: RunSummary | None = None
        self.scheduler: Scheduler | None = None
        self._worker: Worker | None = None
        self._label_width = hosts.max_user_len + hosts.max_host_len + 1

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        yield DataTable(id="host-table", cursor_type="row")
        yield RichLog(id="output-log", highlight=False, markup=True, wrap=True, auto_scroll=True)
        yield StatusBar(id="status-bar")
        yield Footer()

    def on_mount(self) -> None:
        """Start execution when the app mounts."""
        table = self.query_one("#host-table", DataTable)
        for name in ("Host", "Label", "Status", "Exit"):
            table.add_column(name, key=name.lower())
        for host in self.hosts:
            table.add_row(
                str(host), escape(host.label or ""), self._styled(SlotState.PENDING), "", key=str(host)
            )

        status_bar = self.query_one("#status-bar", StatusBar)
        status_bar.total = len(self.hosts)

        # Console echo would corrupt the screen; file sinks still work
        formatter = OutputFormatter(
            self.hosts,
            blind=True,
            show_user=self.config.show_user,
            on_output=self._on_output,
        )
        self.scheduler = Scheduler(self.config, self.hosts, formatter, on_status=self._on_status)

        self._worker = self.run_worker(self._run_execution(), exclusive=True)

    async def _run_execution(self) -> RunSummary | None:
        """Run the scheduler and keep its summary."""
        if self.scheduler:
            self.summary = await self.scheduler.run()
        return self.summary

    @staticmethod
    def _styled(state: SlotState) -> str:
        return f"[{STATE_STYLES[state]}]{state.value}[/]"

    def on_worker_state_changed(self, event: Worker.StateChanged) -> None:
        """Handle worker completion."""
        if event.worker == self._worker and event.state == event.worker.state.SUCCESS:
            status_bar = self.query_one("#status-bar", StatusBar)
            status_bar.running = False

    def _on_output(self, host: Host, stream: Stream, line: str) -> None:
        self.post_message(HostOutput(host, stream, line))

    def _on_status(self, host: Host, state: SlotState, exit_status: int | None) -> None:
        self.post_message(HostStatusChange(host, state, exit_status))

    def on_host_output(self, message: HostOutput) -> None:
        """Handle HostOutput message in main thread."""
        log = self.query_one("#output-log", RichLog)
        prefix = escape(f"{message.host.login:<{self._label_width}}")
        line = escape(message.line)
        if message.stream is Stream.STDERR:
            log.write(f"[cyan]{prefix}[/cyan] [red]=> {line}[/red]")
        else:
            log.write(f"[cyan]{prefix}[/cyan] -> {line}")

    def on_host_status_change(self, message: HostStatusChange) -> None:
        """Handle HostStatusChange message in main thread."""
        table = self.query_one("#host-table", DataTable)
        row = str(message.host)
        table.update_cell(row, "status", self._styled(message.state))
        if message.exit_status is not None:
            style = "green" if message.exit_status == 0 else "red"
            table.update_cell(row, "exit", f"[{style}]{message.exit_status}[/]")

        status_bar = self.query_one("#status-bar", StatusBar)
        if message.state is SlotState.RUNNING:
            status_bar.active += 1
        elif message.state is SlotState.DONE:
            status_bar.active -= 1
            status_bar.completed += 1
        elif message.state is SlotState.FAILED:
            status_bar.completed += 1

    async def action_quit(self) -> None:
        """Quit the application, stopping any running ssh sessions."""
        if self._worker and self._worker.is_running:
            self._worker.cancel()
            try:
                await self._worker.wait()
            except (WorkerCancelled, WorkerFailed):
                pass
        self.exit()
