from __future__ import annotations

import time
from collections.abc import Callable

from .fetchers import CounterFetchers, EngineContext, RemoteClient
from .notifier import ChangeNotifier, MessageSink, NotifyPolicy
from .scope import ScopeSelector
from .snapshot import CounterSnapshot, SnapshotCache


class CounterEngine:
    """Poll-side wiring: cache policy -> fetchers -> cache -> notifier.

    `tick()` is called from the poll thread. The read surface (`get_cached_snapshot`,
    `should_fetch`, `force_update`, `set_group`, `get_group`) is safe to call from any thread.
    """

    def __init__(
        self,
        *,
        client: RemoteClient,
        sink: MessageSink,
        is_online: Callable[[], bool] = lambda: True,
        is_engaged: Callable[[], bool] = lambda: False,
        clock: Callable[[], float] = time.monotonic,
        poll_interval_seconds: float = 30,
        retry_floor_seconds: float = 30,
        today_ttl_seconds: float = 60,
        policies: dict[str, NotifyPolicy] | None = None,
        log: Callable[[str], None] | None = None,
    ) -> None:
        self._clock = clock
        self._log = log
        self.cache = SnapshotCache(
            poll_interval_seconds=poll_interval_seconds,
            retry_floor_seconds=retry_floor_seconds,
            clock=clock,
            is_online=is_online,
        )
        self.scope = ScopeSelector(cache=self.cache)
        self.ctx = EngineContext(client=client, scope=self.scope, clock=clock, today_ttl_seconds=today_ttl_seconds)
        self.fetchers = CounterFetchers(self.ctx)
        self.notifier = ChangeNotifier(
            sink=sink,
            policies=policies,
            is_engaged=is_engaged,
            group_name=self.fetchers.group_name,
        )
        self.cache.force_update()

    def _say(self, msg: str) -> None:
        if self._log is not None:
            self._log(msg)

    def tick(self) -> CounterSnapshot | None:
        """Fetch and publish a snapshot if one is due. Returns it, or None when nothing ran."""
        if not self.cache.should_fetch():
            return None
        generation = self.cache.generation()
        group_id = self.scope.get_group()
        snap = self.fetchers.fetch_snapshot(group_id=group_id)
        self.cache.record_result(snap, generation=generation)
        self._say(
            f'snapshot valid={snap.valid} group={group_id} dialogs={snap.unread_messages} '
            f'total={snap.total_unread_messages} undone={snap.undone_tasks} expired={snap.expired_tasks} '
            f'all={snap.total_comments} group_delayed={snap.group_delayed_tasks} group_all={snap.group_comments}'
        )
        self.notifier.process(snap, previous=self.cache.previous(), group_id=group_id, now=self._clock())
        return snap

    def reload_client(self, client: RemoteClient) -> None:
        """Swap credentials: drop identity/date caches and refetch on the next tick."""
        self.ctx.reset(client)
        self.cache.force_update()
        self._say('bitrix client reloaded')

    def get_cached_snapshot(self) -> CounterSnapshot:
        return self.cache.get_cached()

    def should_fetch(self) -> bool:
        return self.cache.should_fetch()

    def force_update(self) -> None:
        self.cache.force_update()

    def set_group(self, group_id: int) -> None:
        self.scope.set_group(group_id)

    def get_group(self) -> int:
        return self.scope.get_group()
