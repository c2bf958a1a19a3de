import json
import unittest
from collections.abc import Sequence

from b24_bot.engine import CounterEngine
from b24_bot.outbox import OutboundQueue


class _Bitrix:
    def __init__(self, *, unread: int = 0, user_id: int = 7) -> None:
        self.unread = unread
        self.user_id = user_id
        self.online = True
        self.calls: list[str] = []

    def request(self, method: str, params: Sequence[tuple[str, object]] | None = None) -> str:
        self.calls.append(method)
        if method == 'user.current':
            return json.dumps({'result': {'ID': self.user_id}})
        if method == 'server.time':
            return json.dumps({'result': '2024-05-10T09:00:00+03:00'})
        if method == 'im.counters.get':
            return json.dumps({'result': {'TYPE': {'DIALOG': self.unread, 'ALL': self.unread}}})
        if method == 'bizproc.task.list':
            return json.dumps({'result': []})
        if method == 'tasks.task.list':
            return json.dumps({'total': 0})
        if method == 'sonet_group.get':
            return json.dumps({'result': {'NAME': 'Office move'}})
        return ''


class _Clock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestCounterEngine(unittest.TestCase):
    def _engine(self, client: _Bitrix, clock: _Clock, outbox: OutboundQueue) -> CounterEngine:
        return CounterEngine(
            client=client,
            sink=outbox,
            is_online=lambda: client.online,
            clock=clock,
            poll_interval_seconds=30,
            retry_floor_seconds=30,
        )

    def test_first_tick_fetches_immediately_and_seeds(self) -> None:
        client = _Bitrix(unread=2)
        clock = _Clock()
        outbox = OutboundQueue()
        engine = self._engine(client, clock, outbox)

        self.assertTrue(engine.should_fetch())
        snap = engine.tick()
        self.assertIsNotNone(snap)
        self.assertTrue(engine.get_cached_snapshot().valid)
        self.assertEqual(engine.get_cached_snapshot().unread_messages, 2)
        self.assertEqual(outbox.take_status(), '📌 Bitrix — 📨 2 • 📋 0 • ⏰ 0')
        self.assertEqual(len(outbox), 0)

        # Nothing due until the poll interval passes.
        self.assertIsNone(engine.tick())
        clock.now += 30
        self.assertIsNotNone(engine.tick())

    def test_zero_crossing_alert_is_queued(self) -> None:
        client = _Bitrix(unread=0)
        clock = _Clock()
        outbox = OutboundQueue()
        engine = self._engine(client, clock, outbox)
        engine.tick()

        client.unread = 5
        clock.now += 30
        engine.tick()
        msg = outbox.get_nowait()
        assert msg is not None
        self.assertEqual(msg.text, '📨 <b>Unread Messages:</b> 5 ⬆️')

    def test_offline_skips_ticks(self) -> None:
        client = _Bitrix()
        client.online = False
        engine = self._engine(client, _Clock(), OutboundQueue())
        self.assertFalse(engine.should_fetch())
        self.assertIsNone(engine.tick())
        self.assertEqual(client.calls, [])

    def test_set_group_forces_next_tick(self) -> None:
        client = _Bitrix(unread=1)
        clock = _Clock()
        engine = self._engine(client, clock, OutboundQueue())
        engine.tick()
        self.assertFalse(engine.should_fetch())

        engine.set_group(253)
        self.assertEqual(engine.get_group(), 253)
        self.assertTrue(engine.should_fetch())
        client.calls.clear()
        engine.tick()
        self.assertIn('tasks.task.list', client.calls)
        self.assertFalse(engine.should_fetch())

    def test_failed_fetch_retries_after_floor(self) -> None:
        client = _Bitrix()
        clock = _Clock()
        engine = self._engine(client, clock, OutboundQueue())
        client.request = lambda method, params=None: ''  # type: ignore[method-assign]
        snap = engine.tick()
        assert snap is not None
        self.assertFalse(snap.valid)
        self.assertEqual(snap.last_update, 1000.0)

        clock.now += 29
        self.assertFalse(engine.should_fetch())
        clock.now += 1
        self.assertTrue(engine.should_fetch())

    def test_outage_keeps_last_valid_status(self) -> None:
        client = _Bitrix(unread=4)
        clock = _Clock()
        outbox = OutboundQueue()
        engine = self._engine(client, clock, outbox)
        engine.tick()
        self.assertEqual(outbox.take_status(), '📌 Bitrix — 📨 4 • 📋 0 • ⏰ 0')

        working = client.request
        client.request = lambda method, params=None: ''  # type: ignore[method-assign]
        clock.now += 31
        snap = engine.tick()
        assert snap is not None
        self.assertFalse(snap.valid)
        self.assertIsNone(outbox.take_status())
        self.assertEqual(len(outbox), 0)

        # Recovery compares against the last valid snapshot, not the failed one.
        client.request = working  # type: ignore[method-assign]
        client.unread = 0
        clock.now += 30
        engine.tick()
        self.assertEqual(outbox.take_status(), '📌 Bitrix — 📨 0 • 📋 0 • ⏰ 0')
        msg = outbox.get_nowait()
        assert msg is not None
        self.assertEqual(msg.text, '📨 <b>Unread Messages:</b> 0 ⬇️')

    def test_reload_client_resets_identity(self) -> None:
        first = _Bitrix(user_id=7)
        clock = _Clock()
        engine = self._engine(first, clock, OutboundQueue())
        engine.tick()

        second = _Bitrix(user_id=8)
        engine.reload_client(second)
        self.assertTrue(engine.should_fetch())
        engine.tick()
        self.assertIn('user.current', second.calls)
        self.assertEqual(engine.ctx.identity(), 8)
