"""Resource sampling for tracked processes."""

import time
from collections.abc import Callable
from typing import Any

import psutil
import structlog

from wilt.models import ProcessIdentity, Sample, SampleFailure

log = structlog.get_logger()


class Sampler:
    """
    Read memory, CPU and disk counters for one process identity.

    Rates are computed against the previous sample for the same identity,
    which the caller passes in. A process that has exited, or whose pid now
    belongs to a different process, is reported as SampleFailure.GONE.
    Any other read error is SampleFailure.TRANSIENT. Nothing is raised.
    """

    def __init__(
        self,
        process_factory: Callable[[int], Any] = psutil.Process,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Initialize the Sampler.

        Args:
            process_factory: Builds a process handle from a pid.
            clock: Wall clock used to timestamp samples.
        """
        self._process_factory = process_factory
        self._clock = clock

    def sample(
        self, identity: ProcessIdentity, previous: Sample | None = None
    ) -> Sample | SampleFailure:
        """
        Take one sample of a process.

        Args:
            identity: The process to read.
            previous: The last sample taken for this identity, if any.
        """
        try:
            proc = self._process_factory(identity.pid)
            # Use oneshot() context manager for efficient attribute access
            with proc.oneshot():
                if proc.create_time() != identity.start_time:
                    # The pid was recycled by an unrelated process
                    return SampleFailure.GONE
                if proc.status() == psutil.STATUS_ZOMBIE:
                    return SampleFailure.GONE
                memory_rss = proc.memory_info().rss
                cpu = proc.cpu_times()
                read_total, write_total = self._read_io(proc)
        except psutil.NoSuchProcess:
            # ZombieProcess is a NoSuchProcess too
            return SampleFailure.GONE
        except (psutil.AccessDenied, OSError) as exc:
            log.debug("sample_transient", pid=identity.pid, error=str(exc))
            return SampleFailure.TRANSIENT

        now = self._clock()
        cpu_time = cpu.user + cpu.system

        if previous is None or now <= previous.timestamp:
            return Sample(
                timestamp=now,
                memory_rss=memory_rss,
                cpu_percent=0.0,
                read_delta=0,
                write_delta=0,
                cpu_time=cpu_time,
                read_total=read_total,
                write_total=write_total,
            )

        interval = now - previous.timestamp
        cpu_percent = max(0.0, (cpu_time - previous.cpu_time) / interval * 100.0)
        return Sample(
            timestamp=now,
            memory_rss=memory_rss,
            cpu_percent=cpu_percent,
            read_delta=_delta(read_total, previous.read_total),
            write_delta=_delta(write_total, previous.write_total),
            interval=interval,
            cpu_time=cpu_time,
            read_total=read_total,
            write_total=write_total,
        )

    @staticmethod
    def _read_io(proc: Any) -> tuple[int | None, int | None]:
        """Read cumulative disk bytes, or Nones where the OS will not say."""
        # io_counters() does not exist on macOS
        io_counters = getattr(proc, "io_counters", None)
        if io_counters is None:
            return (None, None)
        try:
            counters = io_counters()
        except psutil.AccessDenied:
            return (None, None)
        return (counters.read_bytes, counters.write_bytes)


def _delta(current: int | None, previous: int | None) -> int:
    """Bytes since the previous reading; zero unless both readings are known."""
    if current is None or previous is None:
        return 0
    return max(0, current - previous)
