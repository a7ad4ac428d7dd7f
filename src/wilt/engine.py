"""Tick/input loop driving the matcher, sampler and registry."""

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog

from wilt.errors import EnumerationError, StartupError
from wilt.matcher import Matcher
from wilt.models import Command, SampleFailure, Snapshot
from wilt.registry import Registry, SampleSource
from wilt.sampler import Sampler

log = structlog.get_logger()

T = TypeVar("T")

KEYMAP: dict[str, Command] = {
    "r": Command.RESET,
    "C": Command.COLLAPSE_ALL,
    "E": Command.EXPAND_ALL,
    "q": Command.QUIT,
    "ctrl+c": Command.QUIT,
}


class Engine:
    """
    Cooperative scheduler for process tracking.

    One loop selects between a periodic timer and a queue of user commands,
    handling one event at a time. Each tick runs discovery, sampling and wilt
    detection in that order and then publishes an immutable Snapshot, which
    the renderer pulls with latest_snapshot().
    """

    def __init__(
        self,
        query: str,
        *,
        matcher: Matcher | None = None,
        sampler: SampleSource | None = None,
        registry: Registry | None = None,
        interval: float = 1.0,
        read_timeout: float = 0.5,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Initialize the Engine.

        Args:
            query: Process name query.
            matcher: Process matcher. Built from the query by default.
            sampler: Per-process sampler. A psutil Sampler by default.
            registry: Record store. An empty Registry by default.
            interval: Seconds between ticks.
            read_timeout: Seconds one OS read may take inside the run loop.
            sleep: Timer source awaited between ticks.
            clock: Wall clock used for wilt and snapshot times.
        """
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        if read_timeout <= 0:
            raise ValueError(f"read_timeout must be positive, got {read_timeout}")
        self._query = query
        self._matcher = matcher if matcher is not None else Matcher(query)
        self._sampler = sampler if sampler is not None else Sampler(clock=clock)
        self._registry = registry if registry is not None else Registry()
        self._interval = interval
        self._read_timeout = read_timeout
        self._sleep = sleep
        self._clock = clock
        self._commands: asyncio.Queue[Command] = asyncio.Queue()
        self._started = False
        self._quit = False
        self._tick_count = 0
        self._generation = 0
        self._latest = Snapshot(
            query=query,
            records=(),
            collapsed_default=self._registry.collapsed_default,
        )

    @property
    def query(self) -> str:
        return self._query

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def read_timeout(self) -> float:
        return self._read_timeout

    @property
    def registry(self) -> Registry:
        return self._registry

    @property
    def quit_requested(self) -> bool:
        return self._quit

    @property
    def tick_count(self) -> int:
        return self._tick_count

    def latest_snapshot(self) -> Snapshot:
        """Get the most recently published snapshot."""
        return self._latest

    def start(self) -> Snapshot:
        """
        Run the first tick.

        Raises:
            StartupError: If the process list cannot be enumerated.
        """
        try:
            snapshot = self.tick()
        except EnumerationError as exc:
            raise StartupError(str(exc)) from exc
        self._started = True
        log.info("engine_started", query=self._query, interval=self._interval)
        return snapshot

    def tick(self) -> Snapshot:
        """
        Run one discovery, sampling and wilt-detection pass inline.

        Used for the startup tick, before any event loop runs. The run loop
        uses tick_async() instead.
        """
        matches = self._matcher.find()
        self._registry.discover(matches)
        now = self._clock()
        self._registry.sample_alive(self._sampler, now)
        self._registry.wilt_missing(matches, now)
        self._tick_count += 1
        return self._publish()

    async def tick_async(self) -> Snapshot:
        """
        Run one tick with every OS read off the event loop and time-limited.

        A process read that overruns read_timeout counts as a transient
        failure for that process only. A process list that overruns it skips
        the tick, and the next timer tick tries again.
        """
        try:
            matches = await self._bounded(self._matcher.find)
        except asyncio.TimeoutError:
            log.warning("enumeration_timeout", timeout=self._read_timeout)
            return self._latest
        self._registry.discover(matches)
        now = self._clock()
        for identity, previous in self._registry.alive():
            try:
                result = await self._bounded(self._sampler.sample, identity, previous)
            except asyncio.TimeoutError:
                log.warning("sample_timeout", pid=identity.pid, timeout=self._read_timeout)
                result = SampleFailure.TRANSIENT
            self._registry.record_sample(identity, result, now)
        self._registry.wilt_missing(matches, now)
        self._tick_count += 1
        return self._publish()

    async def _bounded(self, func: Callable[..., T], *args) -> T:
        # The worker thread may outlive the timeout; its result is dropped
        loop = asyncio.get_running_loop()
        return await asyncio.wait_for(
            loop.run_in_executor(None, func, *args), timeout=self._read_timeout
        )

    def post(self, command: Command) -> None:
        """Queue a command for the run loop."""
        self._commands.put_nowait(command)

    def press(self, key: str) -> Command | None:
        """Queue the command bound to a key. Unbound keys are ignored."""
        command = KEYMAP.get(key)
        if command is not None:
            self.post(command)
        return command

    def apply(self, command: Command) -> Snapshot:
        """Apply a command right away."""
        log.debug("command", command=command.value)
        if command is Command.QUIT:
            self._quit = True
        else:
            self._registry.apply(command)
        return self._publish()

    def request_quit(self) -> None:
        """Stop the run loop after the current step."""
        self.apply(Command.QUIT)
        # Wake the run loop if it is waiting on the timer
        self.post(Command.QUIT)

    async def run(self) -> None:
        """Tick on the timer and apply commands until QUIT."""
        if not self._started:
            self.start()

        timer = asyncio.ensure_future(self._sleep(self._interval))
        command = asyncio.ensure_future(self._commands.get())
        try:
            while not self._quit:
                done, _ = await asyncio.wait(
                    {timer, command}, return_when=asyncio.FIRST_COMPLETED
                )
                if command in done:
                    self.apply(command.result())
                    command = asyncio.ensure_future(self._commands.get())
                if timer in done and not self._quit:
                    timer.result()
                    await self.tick_async()
                    timer = asyncio.ensure_future(self._sleep(self._interval))
        finally:
            timer.cancel()
            command.cancel()
            log.info("engine_stopped", ticks=self._tick_count)

    def _publish(self) -> Snapshot:
        self._generation += 1
        self._latest = Snapshot(
            query=self._query,
            records=self._registry.snapshot(),
            collapsed_default=self._registry.collapsed_default,
            quit_requested=self._quit,
            tick_count=self._tick_count,
            generation=self._generation,
            taken_at=self._clock(),
        )
        return self._latest
