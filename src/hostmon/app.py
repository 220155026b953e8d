"""hostmon - Textual dashboard over the performance monitor."""

import logging
from enum import Enum
from queue import Empty, Queue

from textual import work
from textual.app import App, ComposeResult
from textual.containers import Container, Horizontal
from textual.css.query import NoMatches
from textual.logging import TextualHandler
from textual.widgets import DataTable, Footer, Static

from hostmon.config import HostmonConfig
from hostmon.models import OptimizationSuggestion, PerformanceResult, ProcessInfo, Snapshot
from hostmon.monitor import PerformanceMonitor, Sampler, SamplerUpdate, build_monitor

logger = logging.getLogger(__name__)


class SortKey(Enum):
    """Sort keys for the process table."""

    CPU = "cpu"
    MEM = "mem"
    PID = "pid"
    USER = "user"


def format_bytes(size: float) -> str:
    """Format bytes as human-readable string."""
    for unit in ["B", "K", "M", "G", "T"]:
        if size < 1024:
            return f"{size:5.1f}{unit}" if unit != "B" else f"{int(size):5d}{unit}"
        size = size / 1024
    return f"{size:.1f}P"


def _bar(percent: float, colour: str) -> str:
    length = min(int(percent / 5), 20)
    return f"[{colour}]█[/{colour}]" * length + "[dim]░[/dim]" * (20 - length)


class HeaderStats(Static):
    """Header widget showing CPU, memory and disk statistics."""

    DEFAULT_CSS = """
    HeaderStats {
        height: auto;
        min-height: 5;
        padding: 1;
        background: $surface;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize HeaderStats."""
        super().__init__(*args, **kwargs)
        self._snapshot: Snapshot | None = None

    @property
    def snapshot(self) -> Snapshot | None:
        return self._snapshot

    def compose(self) -> ComposeResult:
        """Compose the header stats layout."""
        yield Horizontal(
            Static(self._get_cpu_info(), id="cpu-info"),
            Static(self._get_mem_info(), id="mem-info"),
        )

    def update_stats(self, snapshot: Snapshot) -> None:
        """Update the statistics from a snapshot."""
        self._snapshot = snapshot
        try:
            cpu_info = self.query_one("#cpu-info", Static)
            mem_info = self.query_one("#mem-info", Static)
        except NoMatches:
            return  # Widget not mounted yet
        cpu_info.update(self._get_cpu_info())
        mem_info.update(self._get_mem_info())

    def _get_cpu_info(self) -> str:
        """Get CPU info display."""
        if self._snapshot is None:
            return "Loading CPU info..."
        cpu = self._snapshot.cpu
        lines = [
            f"CPU{i:<2} \\[{_bar(usage, 'green')}] {usage:5.1f}%"
            for i, usage in enumerate(cpu.per_core)
        ]
        load = cpu.load_average
        lines.append(f"Load average: {load[0]:.2f} {load[1]:.2f} {load[2]:.2f}")
        return "\n".join(lines)

    def _get_mem_info(self) -> str:
        """Get memory and disk info display."""
        if self._snapshot is None:
            return "Loading memory info..."
        memory, disk = self._snapshot.memory, self._snapshot.disk

        swap_percent = memory.swap_used / memory.swap_total * 100 if memory.swap_total else 0.0
        disk_percent = disk.used / disk.total * 100 if disk.total else 0.0

        # Use escaped brackets for the bar containers
        return (
            f"Mem\\[{_bar(memory.pressure, 'cyan')}] "
            f"{format_bytes(memory.used)}/{format_bytes(memory.total)}\n"
            f"Swp\\[{_bar(swap_percent, 'yellow')}] "
            f"{format_bytes(memory.swap_used)}/{format_bytes(memory.swap_total)}\n"
            f"Dsk\\[{_bar(disk_percent, 'magenta')}] "
            f"{format_bytes(disk.used)}/{format_bytes(disk.total)}\n"
            f"I/O: read {format_bytes(disk.read_bps)}/s write {format_bytes(disk.write_bps)}/s"
        )


class ProcessTable(Container):
    """Container for the process data table."""

    DEFAULT_CSS = """
    ProcessTable {
        height: 1fr;
        border: solid $primary;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize ProcessTable."""
        super().__init__(*args, **kwargs)
        self._current_pids: set[int] = set()
        self._sort_key: SortKey = SortKey.CPU
        self._sort_reverse: bool = True  # Default: descending for CPU

    @property
    def sort_key(self) -> SortKey:
        """Get current sort key."""
        return self._sort_key

    def cycle_sort(self) -> SortKey:
        """Cycle to the next sort key and return it."""
        keys = list(SortKey)
        self._sort_key = keys[(keys.index(self._sort_key) + 1) % len(keys)]
        self._sort_reverse = self._sort_key in (SortKey.CPU, SortKey.MEM)
        return self._sort_key

    def compose(self) -> ComposeResult:
        """Compose the process table."""
        yield DataTable(id="process-table")

    def on_mount(self) -> None:
        """Initialize the data table when mounted."""
        table = self.query_one("#process-table", DataTable)
        table.cursor_type = "row"

        table.add_column("PID", key="pid", width=8)
        table.add_column("USER", key="user", width=10)
        table.add_column("S", key="state", width=10)
        table.add_column("CPU%", key="cpu", width=8)
        table.add_column("MEM%", key="mem", width=8)
        table.add_column("RES", key="rss", width=8)
        table.add_column("Name", key="name")

    def update_processes(self, processes: list[ProcessInfo]) -> None:
        """
        Update the process table with new data.

        Existing rows are updated cell by cell; only vanished or new PIDs
        remove or add rows.
        """
        table = self.query_one("#process-table", DataTable)
        sorted_processes = self._sort_processes(processes)
        new_pids = {proc.pid for proc in sorted_processes}

        for pid in self._current_pids - new_pids:
            table.remove_row(str(pid))

        for proc in sorted_processes:
            row_key = str(proc.pid)
            cells = self._cells(proc)
            if proc.pid in self._current_pids:
                for column, value in cells.items():
                    table.update_cell(row_key, column, value)
            else:
                table.add_row(*cells.values(), key=row_key)

        self._current_pids = new_pids

    def _sort_processes(self, processes: list[ProcessInfo]) -> list[ProcessInfo]:
        """Sort processes based on the current sort key."""
        key_func = {
            SortKey.CPU: lambda p: p.cpu,
            SortKey.MEM: lambda p: p.memory,
            SortKey.PID: lambda p: p.pid,
            SortKey.USER: lambda p: p.user.lower(),
        }
        return sorted(processes, key=key_func[self._sort_key], reverse=self._sort_reverse)

    @staticmethod
    def _cells(proc: ProcessInfo) -> dict[str, str]:
        return {
            "pid": str(proc.pid),
            "user": proc.user[:10],
            "state": proc.state,
            "cpu": f"{proc.cpu:5.1f}",
            "mem": f"{proc.memory:5.1f}",
            "rss": format_bytes(proc.memory_mb * 1024 * 1024),
            "name": proc.name[:50],
        }


def format_suggestion(suggestion: OptimizationSuggestion) -> str:
    """Render one suggestion as a single markup line."""
    target = f" {suggestion.app}" if suggestion.app else ""
    line = f"\\[{suggestion.impact.value}] {suggestion.type.value}{target}: {suggestion.reason}"
    if suggestion.command:
        line += f"  ({suggestion.command})"
    return line


class SuggestionsPanel(Static):
    """Latest optimization suggestions."""

    DEFAULT_CSS = """
    SuggestionsPanel {
        height: auto;
        max-height: 10;
        padding: 0 1;
        border: solid $secondary;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.suggestions: list[OptimizationSuggestion] = []
        self.error_message: str | None = None

    def show(self, suggestions: list[OptimizationSuggestion]) -> None:
        self.suggestions = list(suggestions)
        self.error_message = None
        if not suggestions:
            self.update("No suggestions: system looks healthy")
            return
        self.update("\n".join(format_suggestion(s) for s in suggestions))

    def show_error(self, message: str) -> None:
        self.suggestions = []
        self.error_message = message
        self.update(f"[red]Optimize failed:[/red] {message}")


class HostmonApp(App):
    """Main hostmon application."""

    TITLE = "hostmon"
    SUB_TITLE = "Host Telemetry Monitor"

    CSS = """
    Screen {
        layout: vertical;
    }

    #header-stats {
        dock: top;
        height: auto;
        min-height: 6;
    }

    Horizontal {
        height: auto;
    }

    #cpu-info {
        width: 1fr;
        padding-right: 2;
    }

    #mem-info {
        width: 1fr;
        padding-left: 2;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("f6", "sort", "Sort"),
        ("o", "optimize", "Optimize"),
    ]

    def __init__(self, monitor: PerformanceMonitor, poll_rate: float = 5.0) -> None:
        """Initialize the HostmonApp."""
        super().__init__()
        self._monitor = monitor
        self._update_queue: Queue[SamplerUpdate] = Queue()
        self._sampler = Sampler(monitor, self._update_queue, poll_rate=poll_rate)

    def compose(self) -> ComposeResult:
        """Compose the application layout."""
        yield HeaderStats(id="header-stats")
        yield ProcessTable()
        yield SuggestionsPanel("Press o for optimization suggestions", id="suggestions")
        yield Footer()

    def on_mount(self) -> None:
        """Start the sampler when the app is mounted."""
        self._sampler.start()
        self.set_interval(0.5, self._check_for_updates)

    def on_unmount(self) -> None:
        self._sampler.stop()

    def _check_for_updates(self) -> None:
        """Drain the queue and render the most recent update."""
        update = None
        while True:
            try:
                update = self._update_queue.get_nowait()
            except Empty:
                break

        if update is not None:
            self._update_ui(update)

    def _update_ui(self, update: SamplerUpdate) -> None:
        """Update the UI with a sampler update."""
        if update.current.is_success:
            self.query_one("#header-stats", HeaderStats).update_stats(update.current.data)
        else:
            self.notify(update.current.error or "sampling failed", severity="error")

        if update.processes.is_success:
            self.query_one(ProcessTable).update_processes(update.processes.data)

    def action_sort(self) -> None:
        """Handle sort action - cycle through sort keys."""
        new_sort_key = self.query_one(ProcessTable).cycle_sort()
        self.notify(f"Sort: {new_sort_key.value.upper()}")

    def action_optimize(self) -> None:
        self.query_one(SuggestionsPanel).update("Analyzing...")
        self._run_optimize()

    @work(thread=True, exclusive=True)
    def _run_optimize(self) -> None:
        result = self._monitor.optimize()
        self.call_from_thread(self._show_optimize_result, result)

    def _show_optimize_result(self, result: PerformanceResult) -> None:
        panel = self.query_one(SuggestionsPanel)
        if result.is_success:
            panel.show(result.data)
        else:
            panel.show_error(result.error or "unknown error")

    def action_quit(self) -> None:
        """Handle quit action with graceful cleanup."""
        self._sampler.stop()
        self.exit()


def main() -> None:
    """Entry point for the hostmon dashboard."""
    config = HostmonConfig.from_env()
    logging.basicConfig(level=config.log_level, handlers=[TextualHandler()])
    monitor = build_monitor(config)
    logger.info("hostmon dashboard starting (db=%s, poll=%.1fs)", config.db_path, config.poll_rate)
    try:
        HostmonApp(monitor, poll_rate=config.poll_rate).run()
    finally:
        monitor.close()


if __name__ == "__main__":
    main()
