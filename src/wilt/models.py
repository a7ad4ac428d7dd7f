"""Data models for wilt."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


@dataclass(slots=True, frozen=True)
class ProcessIdentity:
    """Identity of one process instance.

    The pid alone is not enough: the OS recycles pids, so a process is
    identified by its pid together with its create time.
    """

    pid: int
    start_time: float  # Seconds since the epoch, as reported by psutil

    @property
    def started(self) -> datetime:
        """Get the process start time as a local datetime."""
        return datetime.fromtimestamp(self.start_time)


@dataclass(slots=True, frozen=True)
class Sample:
    """Immutable reading of one process at one tick."""

    timestamp: float
    memory_rss: int  # Bytes
    cpu_percent: float  # 0.0 - 100.0 * core_count
    read_delta: int  # Bytes read since the previous sample
    write_delta: int  # Bytes written since the previous sample
    interval: float = 0.0  # Seconds since the previous sample, 0.0 on the first
    cpu_time: float = 0.0  # Cumulative user + system seconds
    read_total: int | None = None  # None when the OS would not report disk counters
    write_total: int | None = None

    @property
    def read_rate(self) -> float:
        """Bytes read per second over the interval."""
        return self.read_delta / self.interval if self.interval > 0 else 0.0

    @property
    def write_rate(self) -> float:
        """Bytes written per second over the interval."""
        return self.write_delta / self.interval if self.interval > 0 else 0.0


class SampleFailure(Enum):
    """Why a sample could not be taken."""

    GONE = "gone"  # The identity no longer resolves to a live process
    TRANSIENT = "transient"  # Retry on the next tick


class LifecycleState(Enum):
    """Lifecycle of a tracked process record."""

    ALIVE = "alive"
    WILTED = "wilted"


class Command(Enum):
    """User commands understood by the engine."""

    RESET = "reset"
    COLLAPSE_ALL = "collapse_all"
    EXPAND_ALL = "expand_all"
    QUIT = "quit"


@dataclass(slots=True, frozen=True)
class RecordView:
    """Read-only view of a process record, handed to the renderer."""

    identity: ProcessIdentity
    name: str
    state: LifecycleState
    collapsed: bool
    samples: tuple[Sample, ...]
    peak_memory: int
    discovery_order: int
    wilted_at: float | None = None

    @property
    def pid(self) -> int:
        return self.identity.pid

    @property
    def is_wilted(self) -> bool:
        return self.state is LifecycleState.WILTED

    @property
    def latest(self) -> Sample | None:
        """The most recent sample, if any."""
        return self.samples[-1] if self.samples else None

    def lifetime(self, now: float) -> float:
        """Seconds the process has been running, frozen at the time it wilted."""
        end = self.wilted_at if self.wilted_at is not None else now
        return max(0.0, end - self.identity.start_time)

    def split_name(self, query: str) -> tuple[str, str, str]:
        """Split the name around the first occurrence of query."""
        if not query or query not in self.name:
            return (self.name, "", "")
        return self.name.partition(query)

    @property
    def memory_series(self) -> list[int]:
        return [sample.memory_rss for sample in self.samples]

    @property
    def cpu_series(self) -> list[float]:
        return [sample.cpu_percent for sample in self.samples]

    @property
    def read_series(self) -> list[float]:
        return [sample.read_rate for sample in self.samples]

    @property
    def write_series(self) -> list[float]:
        return [sample.write_rate for sample in self.samples]


@dataclass(slots=True, frozen=True)
class Snapshot:
    """Immutable view of the whole engine state at one moment."""

    query: str
    records: tuple[RecordView, ...]
    collapsed_default: bool = False
    quit_requested: bool = False
    tick_count: int = 0
    generation: int = 0
    taken_at: float = 0.0

    @property
    def alive_count(self) -> int:
        return sum(1 for record in self.records if not record.is_wilted)

    @property
    def wilted_count(self) -> int:
        return sum(1 for record in self.records if record.is_wilted)
