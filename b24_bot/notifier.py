from __future__ import annotations

import html
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from .outbox import KIND_ADVISORY, KIND_ALERT, OutboundMessage
from .snapshot import CounterSnapshot

METRIC_UNREAD = 'unread'
METRIC_UNDONE = 'undone'
METRIC_EXPIRED = 'expired'
METRICS = (METRIC_UNREAD, METRIC_UNDONE, METRIC_EXPIRED)

_LABELS = {
    METRIC_UNREAD: ('📨', 'Unread Messages'),
    METRIC_UNDONE: ('📋', 'Undone Tasks'),
    METRIC_EXPIRED: ('⏰', 'Expired Tasks'),
}


@dataclass(frozen=True)
class NotifyPolicy:
    delta_threshold: int
    rate_limit_seconds: float


DEFAULT_POLICIES: dict[str, NotifyPolicy] = {
    METRIC_UNREAD: NotifyPolicy(delta_threshold=3, rate_limit_seconds=5 * 60),
    METRIC_UNDONE: NotifyPolicy(delta_threshold=2, rate_limit_seconds=10 * 60),
    METRIC_EXPIRED: NotifyPolicy(delta_threshold=1, rate_limit_seconds=15 * 60),
}


@dataclass
class NotifyState:
    policy: NotifyPolicy
    last_notified_value: int = 0
    last_notify_ts: float = 0.0


class MessageSink(Protocol):
    def put(self, msg: OutboundMessage) -> bool: ...

    def set_status(self, text: str) -> None: ...


def metric_values(snap: CounterSnapshot, *, group_id: int) -> dict[str, int]:
    """Headline counters. In group mode the third one is the group's delayed tasks."""
    third = snap.group_delayed_tasks if group_id else snap.expired_tasks
    return {
        METRIC_UNREAD: int(snap.unread_messages),
        METRIC_UNDONE: int(snap.undone_tasks),
        METRIC_EXPIRED: int(third),
    }


def format_status_line(snap: CounterSnapshot, *, group_id: int) -> str:
    v = metric_values(snap, group_id=group_id)
    return f'📌 Bitrix — 📨 {v[METRIC_UNREAD]} • 📋 {v[METRIC_UNDONE]} • ⏰ {v[METRIC_EXPIRED]}'


def format_alert(metric: str, value: int, *, previous: int, group_name: str = '') -> str:
    icon, label = _LABELS[metric]
    arrow = '⬆️' if value > previous else '⬇️'
    text = f'{icon} <b>{label}:</b> {value} {arrow}'
    if group_name:
        text += f'\n📁 <b>Group:</b> {html.escape(group_name, quote=False)}'
    return text


def format_advisory(metric: str, value: int) -> str:
    icon, label = _LABELS[metric]
    return f'{icon} <b>{label} (suppressed):</b> {value}'


def _is_zero_crossing(prev: int, cur: int) -> bool:
    return (prev == 0 and cur > 0) or (prev > 0 and cur == 0)


class ChangeNotifier:
    """Turns consecutive valid snapshots into rate-limited alerts.

    Per metric, for a changed value:
      - 0 -> N or N -> 0: alert right away;
      - otherwise alert only if the value moved at least `delta_threshold` away from the
        last alerted value and `rate_limit_seconds` passed since that alert;
      - otherwise, while `is_engaged()` is true, queue a "(suppressed)" advisory that
        does not touch the rate-limit state.
    `previous` is the last valid snapshot before `snap`, owned by the snapshot cache;
    None means `snap` only seeds the state. Invalid snapshots are ignored and leave
    the status line showing the last trusted values.
    """

    def __init__(
        self,
        *,
        sink: MessageSink,
        policies: dict[str, NotifyPolicy] | None = None,
        is_engaged: Callable[[], bool] = lambda: False,
        group_name: Callable[[int], str] | None = None,
    ) -> None:
        self._sink = sink
        pol = dict(DEFAULT_POLICIES)
        pol.update(policies or {})
        self._states = {m: NotifyState(policy=pol[m]) for m in METRICS}
        self._is_engaged = is_engaged
        self._group_name = group_name

    def state(self, metric: str) -> NotifyState:
        return self._states[metric]

    def _engaged(self) -> bool:
        try:
            return bool(self._is_engaged())
        except Exception:
            return False

    def _lookup_group_name(self, group_id: int) -> str:
        if not group_id or self._group_name is None:
            return ''
        try:
            return str(self._group_name(group_id) or '')
        except Exception:
            return ''

    def process(
        self,
        snap: CounterSnapshot,
        *,
        previous: CounterSnapshot | None,
        group_id: int,
        now: float,
    ) -> list[OutboundMessage]:
        if not snap.valid:
            return []
        self._sink.set_status(format_status_line(snap, group_id=group_id))

        current = metric_values(snap, group_id=group_id)
        if previous is None or not previous.valid:
            for m in METRICS:
                st = self._states[m]
                st.last_notified_value = current[m]
                st.last_notify_ts = float(now)
            return []

        before = metric_values(previous, group_id=group_id)
        out: list[OutboundMessage] = []
        for m in METRICS:
            cur = current[m]
            prev = before[m]
            if cur == prev:
                continue
            st = self._states[m]
            due = (
                abs(cur - st.last_notified_value) >= st.policy.delta_threshold
                and float(now) - st.last_notify_ts >= st.policy.rate_limit_seconds
            )
            if _is_zero_crossing(prev, cur) or due:
                name = self._lookup_group_name(group_id) if m == METRIC_EXPIRED else ''
                msg = OutboundMessage(text=format_alert(m, cur, previous=prev, group_name=name), kind=KIND_ALERT)
                st.last_notified_value = cur
                st.last_notify_ts = float(now)
            elif self._engaged():
                msg = OutboundMessage(text=format_advisory(m, cur), kind=KIND_ADVISORY)
            else:
                continue
            self._sink.put(msg)
            out.append(msg)
        return out
