from __future__ import annotations

from threading import Lock
from typing import Protocol


class ForceUpdatable(Protocol):
    def force_update(self) -> None: ...


class ScopeSelector:
    """Global (group 0) vs. single-group scope. Any change forces a refresh."""

    def __init__(self, *, cache: ForceUpdatable, group_id: int = 0) -> None:
        self._cache = cache
        self._lock = Lock()
        self._group_id = self._check(group_id)

    @staticmethod
    def _check(group_id: int) -> int:
        if isinstance(group_id, bool) or not isinstance(group_id, int):
            raise ValueError(f'group id must be an int, got {group_id!r}')
        if group_id < 0:
            raise ValueError(f'group id must be >= 0, got {group_id}')
        return group_id

    def set_group(self, group_id: int) -> None:
        gid = self._check(group_id)
        with self._lock:
            self._group_id = gid
        self._cache.force_update()

    def get_group(self) -> int:
        with self._lock:
            return self._group_id

    def clear_group(self) -> None:
        self.set_group(0)

    def is_global(self) -> bool:
        return self.get_group() == 0
