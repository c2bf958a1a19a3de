from __future__ import annotations

import dataclasses
import time
from collections.abc import Callable
from threading import Lock


@dataclasses.dataclass(frozen=True)
class CounterSnapshot:
    unread_messages: int = 0
    total_unread_messages: int = 0
    undone_tasks: int = 0
    expired_tasks: int = 0
    total_comments: int = 0
    group_delayed_tasks: int = 0
    group_comments: int = 0
    valid: bool = False
    last_update: float = 0.0


class SnapshotCache:
    """Latest counter snapshot plus the "is a refresh due?" policy.

    A valid snapshot is refreshed every `poll_interval_seconds`, an invalid one
    every `retry_floor_seconds`. `force_update()` makes the next online check
    return True regardless of timing.
    """

    def __init__(
        self,
        *,
        poll_interval_seconds: float = 30,
        retry_floor_seconds: float = 30,
        clock: Callable[[], float] = time.monotonic,
        is_online: Callable[[], bool] = lambda: True,
    ) -> None:
        self.poll_interval_seconds = max(0.0, float(poll_interval_seconds))
        self.retry_floor_seconds = max(0.0, float(retry_floor_seconds))
        self._clock = clock
        self._is_online = is_online
        self._lock = Lock()
        self._current = CounterSnapshot()
        self._last_valid: CounterSnapshot | None = None
        self._previous: CounterSnapshot | None = None
        self._forced = False
        self._generation = 0

    def now(self) -> float:
        return float(self._clock())

    def should_fetch(self) -> bool:
        if not self._is_online():
            return False
        now = self.now()
        with self._lock:
            if self._forced:
                return True
            last = float(self._current.last_update)
            if now < last:
                # Clock went backwards (monotonic reset / restart).
                return True
            elapsed = now - last
            if self._current.valid:
                return elapsed >= self.poll_interval_seconds
            return elapsed >= self.retry_floor_seconds

    def generation(self) -> int:
        """Bumped by every `force_update()`; lets a fetch tell whether it was overtaken."""
        with self._lock:
            return self._generation

    def record_result(self, snapshot: CounterSnapshot, *, generation: int | None = None) -> None:
        with self._lock:
            self._current = snapshot
            if snapshot.valid:
                self._previous = self._last_valid
                self._last_valid = snapshot
            # A force_update() that arrived mid-fetch still wins the next tick.
            if generation is None or generation == self._generation:
                self._forced = False

    def force_update(self) -> None:
        with self._lock:
            self._current = dataclasses.replace(self._current, valid=False, last_update=0.0)
            self._forced = True
            self._generation += 1

    def is_forced(self) -> bool:
        with self._lock:
            return self._forced

    def get_cached(self) -> CounterSnapshot:
        with self._lock:
            return self._current

    def previous(self) -> CounterSnapshot | None:
        """The valid snapshot recorded before the latest valid one (None until there are two)."""
        with self._lock:
            return self._previous
