"""Tests for the Sampler class."""

import contextlib
import os
from types import SimpleNamespace

import psutil
import pytest
from conftest import FakeClock

from wilt.models import ProcessIdentity, Sample, SampleFailure
from wilt.sampler import Sampler

IDENTITY = ProcessIdentity(pid=4242, start_time=500.0)


class FakeProcess:
    """Stand-in for psutil.Process with settable counters."""

    def __init__(
        self,
        create_time: float = 500.0,
        status: str = psutil.STATUS_SLEEPING,
        rss: int = 4096,
        user: float = 1.0,
        system: float = 0.5,
        read_bytes: int = 0,
        write_bytes: int = 0,
        io_error: Exception | None = None,
        memory_error: Exception | None = None,
    ) -> None:
        self._create_time = create_time
        self._status = status
        self.rss = rss
        self.user = user
        self.system = system
        self.read_bytes = read_bytes
        self.write_bytes = write_bytes
        self.io_error = io_error
        self.memory_error = memory_error

    def oneshot(self):
        return contextlib.nullcontext()

    def create_time(self) -> float:
        return self._create_time

    def status(self) -> str:
        return self._status

    def memory_info(self):
        if self.memory_error is not None:
            raise self.memory_error
        return SimpleNamespace(rss=self.rss)

    def cpu_times(self):
        return SimpleNamespace(user=self.user, system=self.system)

    def io_counters(self):
        if self.io_error is not None:
            raise self.io_error
        return SimpleNamespace(read_bytes=self.read_bytes, write_bytes=self.write_bytes)


def sampler_for(proc, clock: FakeClock) -> Sampler:
    return Sampler(process_factory=lambda pid: proc, clock=clock)


def test_first_sample_has_zero_deltas(clock):
    proc = FakeProcess(rss=8192, read_bytes=1000, write_bytes=2000)

    sample = sampler_for(proc, clock).sample(IDENTITY)

    assert isinstance(sample, Sample)
    assert sample.memory_rss == 8192
    assert sample.cpu_percent == 0.0
    assert sample.read_delta == 0
    assert sample.write_delta == 0
    assert sample.interval == 0.0
    assert sample.read_total == 1000
    assert sample.write_total == 2000
    assert sample.timestamp == clock.now


def test_deltas_against_previous_sample(clock):
    proc = FakeProcess(user=1.0, system=0.0, read_bytes=1000, write_bytes=0)
    sampler = sampler_for(proc, clock)
    first = sampler.sample(IDENTITY)

    clock.advance(2.0)
    proc.user = 2.0  # One CPU second over two wall seconds
    proc.read_bytes = 5000
    proc.write_bytes = 600
    second = sampler.sample(IDENTITY, first)

    assert second.interval == 2.0
    assert second.cpu_percent == pytest.approx(50.0)
    assert second.read_delta == 4000
    assert second.write_delta == 600
    assert second.read_rate == 2000.0
    assert second.write_rate == 300.0


def test_counter_going_backwards_clamps_to_zero(clock):
    proc = FakeProcess(read_bytes=5000)
    sampler = sampler_for(proc, clock)
    first = sampler.sample(IDENTITY)

    clock.advance(1.0)
    proc.read_bytes = 10
    second = sampler.sample(IDENTITY, first)

    assert second.read_delta == 0


def test_recycled_pid_is_gone(clock):
    proc = FakeProcess(create_time=999.0)

    assert sampler_for(proc, clock).sample(IDENTITY) is SampleFailure.GONE


def test_zombie_is_gone(clock):
    proc = FakeProcess(status=psutil.STATUS_ZOMBIE)

    assert sampler_for(proc, clock).sample(IDENTITY) is SampleFailure.GONE


@pytest.mark.parametrize(
    "error",
    [psutil.NoSuchProcess(4242), psutil.ZombieProcess(4242)],
)
def test_vanished_process_is_gone(clock, error):
    def factory(pid):
        raise error

    sampler = Sampler(process_factory=factory, clock=clock)

    assert sampler.sample(IDENTITY) is SampleFailure.GONE


@pytest.mark.parametrize("error", [psutil.AccessDenied(4242), OSError("EIO")])
def test_read_error_is_transient(clock, error):
    proc = FakeProcess(memory_error=error)

    assert sampler_for(proc, clock).sample(IDENTITY) is SampleFailure.TRANSIENT


def test_denied_io_counters_are_unknown(clock):
    proc = FakeProcess(rss=100, io_error=psutil.AccessDenied(4242))

    sample = sampler_for(proc, clock).sample(IDENTITY)

    assert isinstance(sample, Sample)
    assert sample.memory_rss == 100
    assert sample.read_total is None
    assert sample.write_total is None


def test_counters_becoming_readable_do_not_spike(clock):
    """Test the first readable counters after a denied read give a zero delta."""
    proc = FakeProcess(io_error=psutil.AccessDenied(4242))
    sampler = sampler_for(proc, clock)
    first = sampler.sample(IDENTITY)

    clock.advance(1.0)
    proc.io_error = None
    proc.read_bytes = 10**9
    proc.write_bytes = 10**6
    second = sampler.sample(IDENTITY, first)

    assert second.read_delta == 0
    assert second.write_delta == 0
    assert second.read_total == 10**9

    clock.advance(1.0)
    proc.read_bytes += 4096
    third = sampler.sample(IDENTITY, second)

    assert third.read_delta == 4096
    assert third.write_delta == 0


def test_counters_becoming_denied_give_zero_delta(clock):
    proc = FakeProcess(read_bytes=5000)
    sampler = sampler_for(proc, clock)
    first = sampler.sample(IDENTITY)

    clock.advance(1.0)
    proc.io_error = psutil.AccessDenied(4242)
    second = sampler.sample(IDENTITY, first)

    assert second.read_delta == 0
    assert second.read_total is None


def test_missing_io_counters_are_unknown(clock):
    proc = FakeProcess()
    proc.io_counters = None  # As on platforms without io_counters()

    sample = sampler_for(proc, clock).sample(IDENTITY)

    assert isinstance(sample, Sample)
    assert sample.read_total is None
    assert sample.read_delta == 0


def test_samples_current_process():
    """Test a real psutil read of this test process."""
    me = psutil.Process(os.getpid())
    identity = ProcessIdentity(pid=me.pid, start_time=me.create_time())
    sampler = Sampler()

    first = sampler.sample(identity)
    second = sampler.sample(identity, first)

    assert isinstance(first, Sample)
    assert isinstance(second, Sample)
    assert first.memory_rss > 0
    assert second.cpu_percent >= 0.0
    assert second.timestamp >= first.timestamp


def test_real_process_with_wrong_start_time_is_gone():
    me = psutil.Process(os.getpid())
    identity = ProcessIdentity(pid=me.pid, start_time=me.create_time() - 1000.0)

    assert Sampler().sample(identity) is SampleFailure.GONE
