"""Registry of tracked processes and their lifecycle."""

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Protocol

import structlog

from wilt.history import History
from wilt.models import (
    Command,
    LifecycleState,
    ProcessIdentity,
    RecordView,
    Sample,
    SampleFailure,
)

log = structlog.get_logger()


class SampleSource(Protocol):
    def sample(
        self, identity: ProcessIdentity, previous: Sample | None = None
    ) -> Sample | SampleFailure: ...


@dataclass(slots=True)
class ProcessRecord:
    """Mutable state of one tracked process. Owned by the Registry."""

    identity: ProcessIdentity
    name: str
    history: History
    discovery_order: int
    collapsed: bool = False
    state: LifecycleState = LifecycleState.ALIVE
    peak_memory: int = 0
    wilted_at: float | None = None

    @property
    def is_alive(self) -> bool:
        return self.state is LifecycleState.ALIVE

    def push(self, sample: Sample) -> None:
        """Record a sample. Wilted records never take samples."""
        if not self.is_alive:
            raise RuntimeError(f"cannot add a sample to wilted process {self.identity.pid}")
        self.history.push(sample)
        self.peak_memory = max(self.peak_memory, sample.memory_rss)

    def wilt(self, now: float) -> bool:
        """Move to the wilted state. Returns False if already wilted."""
        if not self.is_alive:
            return False
        self.state = LifecycleState.WILTED
        self.wilted_at = now
        return True

    def view(self) -> RecordView:
        return RecordView(
            identity=self.identity,
            name=self.name,
            state=self.state,
            collapsed=self.collapsed,
            samples=self.history.snapshot(),
            peak_memory=self.peak_memory,
            discovery_order=self.discovery_order,
            wilted_at=self.wilted_at,
        )


class Registry:
    """
    Store of every process record, keyed by process identity.

    Records are kept in discovery order. A record wilts when its process
    disappears and stays wilted until the next reset.
    """

    def __init__(self, history_capacity: int = 120, collapsed_default: bool = False) -> None:
        """
        Initialize the Registry.

        Args:
            history_capacity: Samples kept per record.
            collapsed_default: Whether newly discovered records start collapsed.
        """
        if history_capacity < 1:
            raise ValueError(f"history_capacity must be at least 1, got {history_capacity}")
        self._history_capacity = history_capacity
        self._collapsed_default = collapsed_default
        self._records: dict[ProcessIdentity, ProcessRecord] = {}
        self._next_order = 0

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, identity: object) -> bool:
        return identity in self._records

    @property
    def history_capacity(self) -> int:
        return self._history_capacity

    @property
    def collapsed_default(self) -> bool:
        """Collapsed flag given to records discovered from now on."""
        return self._collapsed_default

    def get(self, identity: ProcessIdentity) -> RecordView | None:
        record = self._records.get(identity)
        return record.view() if record is not None else None

    def discover(self, matches: Mapping[ProcessIdentity, str]) -> list[RecordView]:
        """
        Add a record for every matched identity not yet tracked.

        Returns:
            Views of the records that were added.
        """
        added: list[RecordView] = []
        for identity, name in matches.items():
            if identity in self._records:
                continue
            record = ProcessRecord(
                identity=identity,
                name=name,
                history=History(self._history_capacity),
                discovery_order=self._next_order,
                collapsed=self._collapsed_default,
            )
            self._next_order += 1
            self._records[identity] = record
            log.info("process_discovered", pid=identity.pid, name=name, order=record.discovery_order)
            added.append(record.view())
        return added

    def sample_alive(self, sampler: SampleSource, now: float) -> list[ProcessIdentity]:
        """
        Sample every alive record once.

        Returns:
            Identities that wilted because the sampler reported them gone.
        """
        gone: list[ProcessIdentity] = []
        for identity, previous in self.alive():
            if self.record_sample(identity, sampler.sample(identity, previous), now):
                gone.append(identity)
        return gone

    def alive(self) -> list[tuple[ProcessIdentity, Sample | None]]:
        """List alive identities with their latest sample, in discovery order."""
        return [
            (record.identity, record.history.latest)
            for record in self._records.values()
            if record.is_alive
        ]

    def record_sample(
        self, identity: ProcessIdentity, result: Sample | SampleFailure, now: float
    ) -> bool:
        """
        Apply one sampler result to a record.

        Results for identities that are no longer tracked or no longer alive
        are dropped.

        Returns:
            True if the result wilted the record.
        """
        record = self._records.get(identity)
        if record is None or not record.is_alive or result is SampleFailure.TRANSIENT:
            return False
        if result is SampleFailure.GONE:
            self._wilt(record, now, reason="gone")
            return True
        record.push(result)
        return False

    def wilt_missing(
        self, matches: Mapping[ProcessIdentity, str], now: float
    ) -> list[ProcessIdentity]:
        """
        Wilt every alive record whose identity was not matched this tick.

        Returns:
            Identities that wilted.
        """
        missing: list[ProcessIdentity] = []
        for identity, record in self._records.items():
            if record.is_alive and identity not in matches:
                self._wilt(record, now, reason="unmatched")
                missing.append(identity)
        return missing

    def reset(self) -> None:
        """Forget every record and restart discovery order at zero."""
        count = len(self._records)
        self._records = {}
        self._next_order = 0
        log.info("registry_reset", dropped=count)

    def collapse_all(self) -> None:
        self._set_collapsed(True)

    def expand_all(self) -> None:
        self._set_collapsed(False)

    def apply(self, command: Command) -> None:
        """Apply a registry command. QUIT is not a registry command."""
        if command is Command.RESET:
            self.reset()
        elif command is Command.COLLAPSE_ALL:
            self.collapse_all()
        elif command is Command.EXPAND_ALL:
            self.expand_all()
        else:
            raise ValueError(f"not a registry command: {command}")

    def snapshot(self) -> tuple[RecordView, ...]:
        """Return read-only views of every record in discovery order."""
        records = sorted(self._records.values(), key=lambda record: record.discovery_order)
        return tuple(record.view() for record in records)

    def _set_collapsed(self, collapsed: bool) -> None:
        self._collapsed_default = collapsed
        for record in self._records.values():
            record.collapsed = collapsed

    @staticmethod
    def _wilt(record: ProcessRecord, now: float, reason: str) -> None:
        if record.wilt(now):
            log.info(
                "process_wilted",
                pid=record.identity.pid,
                name=record.name,
                reason=reason,
                samples=len(record.history),
            )
