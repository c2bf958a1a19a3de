from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from .bitrix_api import Params
from .extract import (
    classify_count_result,
    clamp_u16,
    extract_group_name,
    extract_today,
    extract_total,
    extract_total_unread,
    extract_unread_dialogs,
    extract_user_id,
    resolve_count,
)
from .snapshot import CounterSnapshot

# tasks.task.list STATUS values: 1 new, 2 pending, 3 in progress, 4 awaiting control, 6 deferred.
# 5 is "completed".
ACTIVE_TASK_STATUSES = (1, 2, 3, 4, 6)
COMPLETED_TASK_STATUS = 5


class RemoteClient(Protocol):
    def request(self, method: str, params: Params | None = None) -> str: ...


class GroupLookup(Protocol):
    def get_group(self) -> int: ...


@dataclass(frozen=True)
class FetchResult:
    value: int = 0
    ok: bool = False


@dataclass(frozen=True)
class GroupStats:
    delayed: int = 0
    all_tasks: int = 0
    ok: bool = False


@dataclass(frozen=True)
class _TodayEntry:
    date: str
    fetched_ts: float


class EngineContext:
    """Shared state of one Bitrix account: the client plus identity and server-date caches.

    Cached values are immutable and replaced by a single attribute assignment, so the
    delivery thread can read them while the poll thread refreshes them.
    """

    def __init__(
        self,
        *,
        client: RemoteClient,
        scope: GroupLookup,
        clock: Callable[[], float] = time.monotonic,
        today_ttl_seconds: float = 60,
    ) -> None:
        self.client = client
        self.scope = scope
        self._clock = clock
        self.today_ttl_seconds = max(0.0, float(today_ttl_seconds))
        self._identity: int | None = None
        self._today: _TodayEntry | None = None

    def reset(self, client: RemoteClient | None = None) -> None:
        if client is not None:
            self.client = client
        self._identity = None
        self._today = None

    def now(self) -> float:
        return float(self._clock())

    def identity(self) -> int | None:
        uid = self._identity
        if uid is not None:
            return uid
        uid = extract_user_id(self.client.request('user.current'))
        if uid is not None:
            self._identity = uid
        return uid

    def today(self) -> str | None:
        now = float(self._clock())
        entry = self._today
        if entry is not None and 0 <= now - entry.fetched_ts < self.today_ttl_seconds:
            return entry.date
        date = extract_today(self.client.request('server.time'))
        if date is None:
            return None
        self._today = _TodayEntry(date=date, fetched_ts=now)
        return date


def _delayed_params(*, user_id: int, today: str, group_id: int = 0) -> list[tuple[str, object]]:
    params: list[tuple[str, object]] = []
    if group_id:
        params.append(('filter[GROUP_ID]', group_id))
    params.extend(
        [
            ('filter[!DEADLINE]', ''),
            ('filter[<DEADLINE]', today),
            ('filter[RESPONSIBLE_ID]', user_id),
            ('filter[!STATUS]', COMPLETED_TASK_STATUS),
            ('nav_params[nPageSize]', 1),
            ('nav_params[iNumPage]', 1),
            ('select[]', 'ID'),
        ]
    )
    return params


def _active_params(*, user_id: int, group_id: int = 0) -> list[tuple[str, object]]:
    params: list[tuple[str, object]] = []
    if group_id:
        params.append(('filter[GROUP_ID]', group_id))
    params.append(('filter[RESPONSIBLE_ID]', user_id))
    params.extend(('filter[STATUS][]', s) for s in ACTIVE_TASK_STATUSES)
    params.extend([('nav_params[nPageSize]', 1), ('nav_params[iNumPage]', 1), ('select[]', 'ID')])
    return params


class CounterFetchers:
    def __init__(self, ctx: EngineContext) -> None:
        self.ctx = ctx

    def _request(self, method: str, params: Params | None = None) -> str:
        return self.ctx.client.request(method, params)

    def unread_messages(self) -> FetchResult:
        n = extract_unread_dialogs(self._request('im.counters.get'))
        if n is None:
            return FetchResult()
        return FetchResult(value=n, ok=True)

    def total_unread_messages(self) -> FetchResult:
        n = extract_total_unread(self._request('im.counters.get'))
        if n is None:
            return FetchResult()
        return FetchResult(value=n, ok=True)

    def undone_tasks(self) -> FetchResult:
        uid = self.ctx.identity()
        if uid is None:
            return FetchResult()
        params = [
            ('FILTER[USER_ID]', uid),
            ('SELECT[]', 'ID'),
            ('SELECT[]', 'USER_ID'),
            ('SELECT[]', 'STATUS'),
            ('SELECT[]', 'STATUS_ID'),
            ('SELECT[]', 'STATUS_NAME'),
        ]
        res = classify_count_result(self._request('bizproc.task.list', params))
        if res is None:
            return FetchResult()
        return FetchResult(value=resolve_count(res, user_id=uid), ok=True)

    def delayed_tasks(self, group_id: int = 0) -> FetchResult:
        uid = self.ctx.identity()
        if uid is None:
            return FetchResult()
        today = self.ctx.today()
        if today is None:
            return FetchResult()
        n = extract_total(self._request('tasks.task.list', _delayed_params(user_id=uid, today=today, group_id=group_id)))
        if n is None:
            return FetchResult()
        return FetchResult(value=n, ok=True)

    def expired_tasks(self) -> FetchResult:
        return self.delayed_tasks(0)

    def active_tasks(self, group_id: int = 0) -> FetchResult:
        uid = self.ctx.identity()
        if uid is None:
            return FetchResult()
        n = extract_total(self._request('tasks.task.list', _active_params(user_id=uid, group_id=group_id)))
        if n is None:
            return FetchResult()
        return FetchResult(value=n, ok=True)

    def all_tasks(self, group_id: int = 0) -> FetchResult:
        """Active + delayed tasks of the current user.

        Only a missing identity or server date fails the aggregate; an empty or
        unparsable count response contributes 0.
        """
        if self.ctx.identity() is None or self.ctx.today() is None:
            return FetchResult()
        delayed = self.delayed_tasks(group_id)
        active = self.active_tasks(group_id)
        return FetchResult(value=clamp_u16(delayed.value + active.value), ok=True)

    def group_stats(self, group_id: int) -> GroupStats:
        gid = int(group_id or 0)
        if gid <= 0:
            return GroupStats()
        if self.ctx.identity() is None or self.ctx.today() is None:
            return GroupStats()
        delayed = self.delayed_tasks(gid)
        active = self.active_tasks(gid)
        return GroupStats(delayed=delayed.value, all_tasks=clamp_u16(delayed.value + active.value), ok=True)

    def group_name(self, group_id: int) -> str:
        gid = int(group_id or 0)
        if gid <= 0:
            return ''
        return extract_group_name(self._request('sonet_group.get', [('FILTER[ID]', gid)]))

    def fetch_snapshot(self, now: float | None = None, *, group_id: int | None = None) -> CounterSnapshot:
        """Run every fetcher; one failing never stops the others. `valid` follows unread messages only.

        `last_update` is `now` when given, else the context clock read after the last request.
        """
        unread = self.unread_messages()
        total_unread = self.total_unread_messages()
        undone = self.undone_tasks()
        expired = self.expired_tasks()

        if group_id is None:
            group_id = self.ctx.scope.get_group()
        group = GroupStats()
        if group_id:
            group = self.group_stats(group_id)
            # Kept for older consumers; the group screen shows group_comments instead.
            comments = total_unread.value
        else:
            total = self.all_tasks(0)
            comments = total.value if total.ok else total_unread.value

        return CounterSnapshot(
            unread_messages=unread.value,
            total_unread_messages=total_unread.value,
            undone_tasks=undone.value,
            expired_tasks=expired.value,
            total_comments=comments,
            group_delayed_tasks=group.delayed,
            group_comments=group.all_tasks,
            valid=unread.ok,
            last_update=float(self.ctx.now() if now is None else now),
        )
