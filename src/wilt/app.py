"""wilt - Main Textual application."""

import asyncio
import signal
import time
from datetime import datetime

import structlog
from rich.text import Text
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical, VerticalScroll
from textual.css.query import NoMatches
from textual.widgets import Footer, Sparkline, Static
from textual.worker import Worker

from wilt.engine import Engine
from wilt.errors import WiltError
from wilt.models import Command, ProcessIdentity, RecordView, Snapshot

log = structlog.get_logger()

INFO_WIDTH = 22


def format_bytes(size: float) -> str:
    """Format bytes as human-readable string."""
    for unit in ["B", "K", "M", "G", "T"]:
        if size < 1024:
            return f"{size:5.1f}{unit}" if unit != "B" else f"{int(size):5d}{unit}"
        size = size / 1024
    return f"{size:.1f}P"


def format_duration(seconds: float) -> str:
    """Format a duration as 42s, 3m07s, 2h03m07s or 1d02h03m07s."""
    total = int(seconds)
    days, rest = divmod(total, 86400)
    hours, rest = divmod(rest, 3600)
    minutes, secs = divmod(rest, 60)
    if days:
        return f"{days}d{hours:02d}h{minutes:02d}m{secs:02d}s"
    if hours:
        return f"{hours}h{minutes:02d}m{secs:02d}s"
    if minutes:
        return f"{minutes}m{secs:02d}s"
    return f"{secs}s"


def format_start(start_time: float, lifetime: float) -> str:
    """Format a start time, adding the date once the process is a day old."""
    started = datetime.fromtimestamp(start_time)
    if lifetime < 86400:
        return started.strftime("%H:%M")
    return started.strftime("%a %b %d %H:%M")


def _format_total(total: int | None) -> str:
    return "n/a" if total is None else format_bytes(total).strip()


def _right(text: Text) -> Text:
    text.align("right", INFO_WIDTH)
    return text


def render_info(record: RecordView, query: str, now: float) -> Text:
    """Build the info column of an entry: name, pid, start time and run time."""
    before, matched, after = record.split_name(query)
    name = Text.assemble(
        (before, "dim #d29dc0"),
        (matched, "bold #ff5cb0"),
        (after, "dim #d29dc0"),
    )
    name.truncate(INFO_WIDTH, overflow="ellipsis")
    lifetime = record.lifetime(now)
    pid = Text(str(record.pid), style="italic dim #808a9f")
    start = Text(format_start(record.identity.start_time, lifetime), style="dim #808a9f")
    duration = Text(format_duration(lifetime), style="#808a9f")

    if record.collapsed:
        return Text("\n").join(
            [
                Text.assemble(name, " ", pid),
                _right(Text.assemble(duration, " ", start)),
            ]
        )
    return Text("\n").join(
        [
            name,
            _right(pid),
            _right(start),
            _right(duration),
        ]
    )


def render_status(snapshot: Snapshot) -> Text:
    """Build the one-line summary shown above the entries."""
    layout = "collapsed" if snapshot.collapsed_default else "expanded"
    return Text.assemble(
        ("watching ", "dim"),
        (snapshot.query, "bold #ff5cb0"),
        f"  {snapshot.alive_count} alive",
        (f"  {snapshot.wilted_count} wilted", "dim"),
        (f"  {layout}", "dim"),
    )


class StatusLine(Static):
    """One-line summary of the tracked set."""

    DEFAULT_CSS = """
    StatusLine {
        height: 1;
        padding: 0 1;
        background: $surface;
    }
    """

    def update_status(self, snapshot: Snapshot) -> None:
        """Update the status line from an engine snapshot."""
        self.update(render_status(snapshot))


class EntryView(Vertical):
    """One tracked process: info column and memory, CPU and disk charts."""

    DEFAULT_CSS = """
    EntryView {
        height: auto;
        margin-bottom: 1;
    }

    EntryView.-wilted {
        opacity: 50%;
    }

    EntryView > Horizontal {
        height: auto;
    }

    EntryView .info {
        width: 22;
        height: auto;
    }

    EntryView .metric {
        width: 1fr;
        height: auto;
        margin-left: 1;
    }

    EntryView .metric-header {
        height: 1;
    }

    EntryView Sparkline {
        height: 3;
    }

    EntryView.-collapsed Sparkline {
        height: 1;
    }

    EntryView .io-charts {
        height: auto;
    }

    EntryView .io-charts Sparkline {
        width: 1fr;
    }

    EntryView .mem Sparkline > .sparkline--max-color {
        color: #e280c1;
    }

    EntryView .mem Sparkline > .sparkline--min-color {
        color: #e280c1 40%;
    }

    EntryView .cpu Sparkline > .sparkline--max-color {
        color: #bad29f;
    }

    EntryView .cpu Sparkline > .sparkline--min-color {
        color: #bad29f 40%;
    }

    EntryView .read-chart > .sparkline--max-color {
        color: #8fa7e0;
    }

    EntryView .read-chart > .sparkline--min-color {
        color: #8fa7e0 40%;
    }

    EntryView .write-chart > .sparkline--max-color {
        color: #f6ab65;
    }

    EntryView .write-chart > .sparkline--min-color {
        color: #f6ab65 40%;
    }
    """

    def __init__(self, record: RecordView, query: str, now: float, **kwargs) -> None:
        """Initialize EntryView."""
        super().__init__(**kwargs)
        self._record = record
        self._query = query
        self._now = now

    @property
    def record(self) -> RecordView:
        return self._record

    def compose(self) -> ComposeResult:
        """Compose the entry layout."""
        with Horizontal():
            yield Static(classes="info")
            with Vertical(classes="metric mem"):
                yield Static(classes="metric-header mem-header")
                yield Sparkline([], summary_function=max, classes="mem-chart")
            with Vertical(classes="metric cpu"):
                yield Static(classes="metric-header cpu-header")
                yield Sparkline([], summary_function=max, classes="cpu-chart")
            with Vertical(classes="metric io"):
                yield Static(classes="metric-header io-header")
                with Horizontal(classes="io-charts"):
                    yield Sparkline([], summary_function=max, classes="read-chart")
                    yield Sparkline([], summary_function=max, classes="write-chart")

    def on_mount(self) -> None:
        """Render the record this entry was created with."""
        self._refresh_display()

    def update_record(self, record: RecordView, query: str, now: float) -> None:
        """Update the entry from a fresh record view."""
        self._record = record
        self._query = query
        self._now = now
        self._refresh_display()

    def _refresh_display(self) -> None:
        """Refresh the display with current data."""
        record = self._record
        self.set_class(record.collapsed, "-collapsed")
        self.set_class(record.is_wilted, "-wilted")
        try:
            self.query_one(".info", Static).update(render_info(record, self._query, self._now))
            self.query_one(".mem-header", Static).update(self._memory_header())
            self.query_one(".cpu-header", Static).update(self._cpu_header())
            self.query_one(".io-header", Static).update(self._io_header())
            self.query_one(".mem-chart", Sparkline).data = record.memory_series
            self.query_one(".cpu-chart", Sparkline).data = record.cpu_series
            self.query_one(".read-chart", Sparkline).data = record.read_series
            self.query_one(".write-chart", Sparkline).data = record.write_series
        except NoMatches:
            pass  # Children not composed yet; on_mount renders again

    def _memory_header(self) -> Text:
        latest = self._record.latest
        current = latest.memory_rss if latest else 0
        return Text.assemble(
            ("mem ", "#e280c1"),
            format_bytes(current).strip(),
            ("  peak ", "dim"),
            format_bytes(self._record.peak_memory).strip(),
        )

    def _cpu_header(self) -> Text:
        series = self._record.cpu_series
        current = series[-1] if series else 0.0
        peak = max(series, default=0.0)
        return Text.assemble(
            ("cpu ", "#bad29f"),
            f"{current:5.1f}%",
            ("  peak ", "dim"),
            f"{peak:5.1f}%",
        )

    def _io_header(self) -> Text:
        latest = self._record.latest
        read_total = latest.read_total if latest else 0
        write_total = latest.write_total if latest else 0
        return Text.assemble(
            ("read ", "#8fa7e0"),
            _format_total(read_total),
            ("  wrote ", "#f6ab65"),
            _format_total(write_total),
        )


class EntryList(VerticalScroll):
    """Scrollable list of tracked processes in discovery order."""

    DEFAULT_CSS = """
    EntryList {
        height: 1fr;
        padding: 0 1;
    }

    EntryList > #empty {
        color: $text-muted;
        padding: 1;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize EntryList."""
        super().__init__(*args, **kwargs)
        self._entries: dict[ProcessIdentity, EntryView] = {}

    @property
    def entries(self) -> dict[ProcessIdentity, EntryView]:
        """Mounted entries keyed by process identity."""
        return self._entries

    def compose(self) -> ComposeResult:
        """Compose the list with its empty-state placeholder."""
        yield Static("Waiting for matching processes...", id="empty")

    def update_entries(self, snapshot: Snapshot, now: float) -> None:
        """
        Reconcile mounted entries with a snapshot.

        Entries are updated in place by identity; entries missing from the
        snapshot (after a reset) are removed. New records are appended. If a
        reset reordered the records still on screen, every entry is rebuilt
        in discovery order.
        """
        order = [record.identity for record in snapshot.records]
        current = set(order)
        for identity in [identity for identity in self._entries if identity not in current]:
            self._entries.pop(identity).remove()

        if order[: len(self._entries)] != list(self._entries):
            for entry in self._entries.values():
                entry.remove()
            self._entries = {}

        for record in snapshot.records:
            entry = self._entries.get(record.identity)
            if entry is None:
                entry = EntryView(record, snapshot.query, now)
                self._entries[record.identity] = entry
                self.mount(entry)
            else:
                entry.update_record(record, snapshot.query, now)

        try:
            self.query_one("#empty", Static).display = not snapshot.records
        except NoMatches:
            pass


class WiltApp(App):
    """Main wilt application."""

    TITLE = "wilt"
    SUB_TITLE = "Process Watcher"

    CSS = """
    Screen {
        layout: vertical;
    }

    #status {
        dock: top;
    }
    """

    BINDINGS = [
        Binding("q", "quit", "Quit"),
        Binding("ctrl+c", "quit", "Quit", show=False, priority=True),
        Binding("r", "reset", "Reset"),
        Binding("C,shift+c", "collapse_all", "Collapse"),
        Binding("E,shift+e", "expand_all", "Expand"),
    ]

    def __init__(self, engine: Engine, refresh_interval: float = 0.25) -> None:
        """
        Initialize the WiltApp.

        Args:
            engine: Started or unstarted engine to drive and render.
            refresh_interval: Seconds between snapshot pulls.
        """
        super().__init__()
        self._engine = engine
        self._refresh_interval = refresh_interval
        self._seen_generation = -1
        self._engine_worker: Worker | None = None
        self._signals_installed = False

    @property
    def engine(self) -> Engine:
        return self._engine

    def compose(self) -> ComposeResult:
        """Compose the application layout."""
        yield StatusLine(id="status")
        yield EntryList(id="entries")
        yield Footer()

    def on_mount(self) -> None:
        """Start the engine loop when the app is mounted."""
        self._engine_worker = self.run_worker(self._drive_engine(), name="engine", exclusive=True)
        # Set up a timer to pull snapshots from the engine
        self.set_interval(self._refresh_interval, self._check_for_updates)
        self._install_signal_handlers()
        self._check_for_updates()

    def on_unmount(self) -> None:
        """Remove signal handlers installed on mount."""
        if self._signals_installed:
            asyncio.get_running_loop().remove_signal_handler(signal.SIGTERM)
            self._signals_installed = False

    async def _drive_engine(self) -> None:
        """Run the engine loop, exiting the app when it stops."""
        try:
            await self._engine.run()
        except WiltError as exc:
            log.error("engine_failed", error=str(exc))
            self.exit(return_code=1, message=str(exc))
            return
        self._check_for_updates()
        self.exit()

    def _install_signal_handlers(self) -> None:
        try:
            asyncio.get_running_loop().add_signal_handler(
                signal.SIGTERM, self._engine.request_quit
            )
        except (NotImplementedError, RuntimeError):
            # No signal handlers outside the main thread or on Windows
            return
        self._signals_installed = True

    def _check_for_updates(self) -> None:
        """Pull the latest snapshot and refresh the UI if it changed."""
        snapshot = self._engine.latest_snapshot()
        if snapshot.generation == self._seen_generation:
            return
        self._seen_generation = snapshot.generation
        self._update_ui(snapshot)

    def _update_ui(self, snapshot: Snapshot) -> None:
        """Update the UI with the new snapshot."""
        now = time.time()
        try:
            self.query_one("#status", StatusLine).update_status(snapshot)
            self.query_one(EntryList).update_entries(snapshot, now)
        except NoMatches:
            pass  # Screen is being torn down

    def action_quit(self) -> None:
        """Handle quit action; the engine loop stops and the app exits."""
        if self._engine_worker is None or self._engine_worker.is_finished:
            self.exit()
            return
        self._engine.post(Command.QUIT)

    def action_reset(self) -> None:
        self._engine.post(Command.RESET)

    def action_collapse_all(self) -> None:
        self._engine.post(Command.COLLAPSE_ALL)

    def action_expand_all(self) -> None:
        self._engine.post(Command.EXPAND_ALL)
