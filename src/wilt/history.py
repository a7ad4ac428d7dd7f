"""Fixed-capacity sample history."""

from wilt.models import Sample


class History:
    """Circular buffer of samples for one process record.

    Slots are allocated once, up front. Pushing into a full buffer overwrites
    the oldest sample.
    """

    __slots__ = ("_slots", "_start", "_size")

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError(f"History capacity must be at least 1, got {capacity}")
        self._slots: list[Sample | None] = [None] * capacity
        self._start = 0  # Index of the oldest sample
        self._size = 0

    def __len__(self) -> int:
        """Return number of samples retained."""
        return self._size

    @property
    def capacity(self) -> int:
        """Return maximum number of samples the buffer can hold."""
        return len(self._slots)

    @property
    def is_full(self) -> bool:
        return self._size == len(self._slots)

    @property
    def latest(self) -> Sample | None:
        """Return the most recent sample, or None when empty."""
        if self._size == 0:
            return None
        return self._slots[(self._start + self._size - 1) % len(self._slots)]

    def push(self, sample: Sample) -> None:
        """Append a sample, evicting the oldest one when at capacity."""
        capacity = len(self._slots)
        if self._size < capacity:
            self._slots[(self._start + self._size) % capacity] = sample
            self._size += 1
        else:
            self._slots[self._start] = sample
            self._start = (self._start + 1) % capacity

    def snapshot(self) -> tuple[Sample, ...]:
        """Return the retained samples, oldest first, as an immutable copy."""
        capacity = len(self._slots)
        return tuple(
            self._slots[(self._start + offset) % capacity]  # type: ignore[misc]
            for offset in range(self._size)
        )
