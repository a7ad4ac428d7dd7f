"""Shared test fixtures for wilt."""

from collections.abc import Iterable

import pytest

from wilt.errors import EnumerationError
from wilt.models import ProcessIdentity, Sample, SampleFailure


def make_sample(
    timestamp: float = 1000.0,
    memory_rss: int = 1024,
    cpu_percent: float = 0.0,
    read_delta: int = 0,
    write_delta: int = 0,
    interval: float = 0.0,
) -> Sample:
    """Create a Sample for testing."""
    return Sample(
        timestamp=timestamp,
        memory_rss=memory_rss,
        cpu_percent=cpu_percent,
        read_delta=read_delta,
        write_delta=write_delta,
        interval=interval,
    )


class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float = 1.0) -> None:
        self.now += seconds


class FakeMatcher:
    """Matcher returning whatever processes the test says are running."""

    def __init__(self, processes: dict[ProcessIdentity, str] | None = None) -> None:
        self.processes: dict[ProcessIdentity, str] = dict(processes or {})
        self.fail = False
        self.calls = 0

    def find(self) -> dict[ProcessIdentity, str]:
        self.calls += 1
        if self.fail:
            raise EnumerationError("cannot list processes: permission denied")
        return dict(self.processes)


class FakeSampler:
    """Sampler that grows memory by one KiB per call, with scripted failures."""

    def __init__(self, clock: FakeClock | None = None) -> None:
        self.clock = clock or FakeClock()
        self.failures: dict[ProcessIdentity, list[SampleFailure]] = {}
        self.calls: list[ProcessIdentity] = []

    def fail_next(self, identity: ProcessIdentity, failures: Iterable[SampleFailure]) -> None:
        self.failures.setdefault(identity, []).extend(failures)

    def sample(
        self, identity: ProcessIdentity, previous: Sample | None = None
    ) -> Sample | SampleFailure:
        self.calls.append(identity)
        pending = self.failures.get(identity)
        if pending:
            return pending.pop(0)
        memory = previous.memory_rss + 1024 if previous else 1024
        return make_sample(timestamp=self.clock(), memory_rss=memory)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def matcher() -> FakeMatcher:
    return FakeMatcher()


@pytest.fixture
def sampler(clock: FakeClock) -> FakeSampler:
    return FakeSampler(clock)
