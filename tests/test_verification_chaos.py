"""Verification Test: Chaos Monkey - Random process termination resilience.

Spawns real `sleep` processes, terminates them while the engine is watching,
and checks that nothing crashes and that every terminated process wilts.
Other `sleep` processes on the machine may match too, so assertions only
look at the pids these tests spawned.
"""

import asyncio
import random
import shutil
import subprocess
import time

import pytest

from wilt.engine import Engine
from wilt.models import Command, LifecycleState, Snapshot

pytestmark = pytest.mark.skipif(shutil.which("sleep") is None, reason="needs a sleep binary")


def spawn_sleepers(count: int, duration: str = "60") -> list[subprocess.Popen]:
    return [subprocess.Popen(["sleep", duration]) for _ in range(count)]


def states_by_pid(snapshot: Snapshot, pids: set[int]) -> dict[int, LifecycleState]:
    return {record.pid: record.state for record in snapshot.records if record.pid in pids}


def cleanup(processes: list[subprocess.Popen]) -> None:
    for p in processes:
        if p.poll() is None:
            p.terminate()
    for p in processes:
        p.wait(timeout=5.0)


class TestChaosMonkey:
    """Chaos Monkey verification suite tests."""

    def test_terminated_processes_wilt(self):
        """
        Test that processes killed between ticks wilt and the rest stay alive.
        """
        processes = spawn_sleepers(20)
        pids = {p.pid for p in processes}
        engine = Engine("sleep", interval=0.1)

        try:
            snapshot = engine.start()
            assert set(states_by_pid(snapshot, pids)) == pids

            victims = random.sample(processes, 10)
            for p in victims:
                p.terminate()
            for p in victims:
                p.wait(timeout=5.0)

            snapshot = engine.tick()

            states = states_by_pid(snapshot, pids)
            for p in processes:
                expected = LifecycleState.WILTED if p in victims else LifecycleState.ALIVE
                assert states[p.pid] is expected

        finally:
            cleanup(processes)

    def test_unreaped_child_wilts(self):
        """
        Test that a child that exited but was not yet reaped counts as gone.

        The zombie still shows up in the process list under its old name.
        """
        p = subprocess.Popen(["sleep", "0.2"])
        engine = Engine("sleep", interval=0.1)

        try:
            snapshot = engine.start()
            assert states_by_pid(snapshot, {p.pid}) == {p.pid: LifecycleState.ALIVE}

            time.sleep(0.5)  # Exited, not reaped
            snapshot = engine.tick()

            assert states_by_pid(snapshot, {p.pid}) == {p.pid: LifecycleState.WILTED}
        finally:
            p.wait(timeout=5.0)

    @pytest.mark.asyncio
    async def test_run_loop_survives_churn(self):
        """
        Test the run loop keeps ticking while processes come and go.
        """
        processes = spawn_sleepers(10)
        engine = Engine("sleep", interval=0.05)
        task = asyncio.create_task(engine.run())

        try:
            deadline = time.monotonic() + 2.0
            while time.monotonic() < deadline:
                alive = [p for p in processes if p.poll() is None]
                if alive and random.random() < 0.5:
                    random.choice(alive).terminate()
                if random.random() < 0.3:
                    processes.extend(spawn_sleepers(1, "5"))
                await asyncio.sleep(0.05)
                assert not task.done(), "engine loop stopped during churn"

            for p in processes:
                if p.poll() is None:
                    p.terminate()
            for p in processes:
                p.wait(timeout=5.0)

            ticks = engine.tick_count
            while engine.tick_count < ticks + 2:
                await asyncio.sleep(0.05)

            states = states_by_pid(engine.latest_snapshot(), {p.pid for p in processes})
            assert states
            assert all(state is LifecycleState.WILTED for state in states.values())
            assert engine.tick_count >= 10

        finally:
            engine.post(Command.QUIT)
            await asyncio.wait_for(task, timeout=5.0)
            cleanup(processes)
