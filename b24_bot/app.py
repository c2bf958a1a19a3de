from __future__ import annotations

import threading
import time
from collections.abc import Callable
from pathlib import Path

from .bitrix_api import BitrixClient, mask_endpoint
from .commands import ScopeCommandInterpreter
from .config import BotConfig
from .delivery import DeliveryWorker
from .engine import CounterEngine
from .logs import make_logger
from .notifier import METRIC_EXPIRED, METRIC_UNDONE, METRIC_UNREAD, NotifyPolicy
from .outbox import KIND_REPLY, OutboundMessage, OutboundQueue
from .telegram_api import TelegramAPI

POLL_TICK_SECONDS = 1.0
DRAIN_INTERVAL_SECONDS = 0.1
STARTUP_MESSAGE = '@office_b24_bot connected'


def engaged_flag(path: Path | None) -> Callable[[], bool]:
    """The user counts as "engaged" (focus session running) while the flag file exists."""

    def _is_engaged() -> bool:
        if path is None:
            return False
        try:
            return path.exists()
        except OSError:
            return False

    return _is_engaged


def build_policies(cfg: BotConfig) -> dict[str, NotifyPolicy]:
    return {
        METRIC_UNREAD: NotifyPolicy(
            delta_threshold=cfg.notify_unread_delta, rate_limit_seconds=cfg.notify_unread_window_seconds
        ),
        METRIC_UNDONE: NotifyPolicy(
            delta_threshold=cfg.notify_undone_delta, rate_limit_seconds=cfg.notify_undone_window_seconds
        ),
        METRIC_EXPIRED: NotifyPolicy(
            delta_threshold=cfg.notify_expired_delta, rate_limit_seconds=cfg.notify_expired_window_seconds
        ),
    }


def build_client(cfg: BotConfig) -> BitrixClient:
    return BitrixClient(
        hostname=cfg.b24_hostname,
        rest_endpoint=cfg.b24_rest_endpoint,
        timeout_seconds=cfg.b24_timeout_seconds,
        probe_seconds=cfg.b24_probe_seconds,
        log_path=cfg.log_dir / 'bitrix-api.log',
    )


def main() -> int:
    cfg = BotConfig.from_env()

    log = make_logger('b24-bot', cfg.log_dir / 'bot.log')
    client = build_client(cfg)
    api = TelegramAPI(token=cfg.tg_token, root_url=cfg.tg_api_url, log_path=cfg.log_dir / 'tg-api.log')
    outbox = OutboundQueue(maxsize=cfg.tg_outbox_size, log=log)

    engine = CounterEngine(
        client=client,
        sink=outbox,
        is_online=client.is_online,
        is_engaged=engaged_flag(cfg.engaged_flag_file),
        poll_interval_seconds=cfg.b24_poll_interval_seconds,
        retry_floor_seconds=cfg.b24_retry_floor_seconds,
        today_ttl_seconds=cfg.b24_today_ttl_seconds,
        policies=build_policies(cfg),
        log=make_logger('b24-engine', cfg.log_dir / 'engine.log'),
    )
    interpreter = ScopeCommandInterpreter(scope=engine.scope, lookups=engine.fetchers, log=log)
    worker = DeliveryWorker(
        api=api,
        chat_id=cfg.tg_chat_id,
        outbox=outbox,
        commands=interpreter,
        poll_timeout_seconds=cfg.tg_poll_timeout_seconds,
        inbound_interval_seconds=cfg.tg_inbound_interval_seconds,
        log=make_logger('b24-delivery', cfg.log_dir / 'delivery.log'),
    )

    username = ''
    try:
        me = api.get_me().get('result') or {}
        username = str(me.get('username') or '') if isinstance(me, dict) else ''
    except Exception as e:
        log(f'getMe failed: {e}')

    if cfg.startup_message_enabled:
        outbox.put(OutboundMessage(text=STARTUP_MESSAGE, formatted=False, kind=KIND_REPLY))

    stop = threading.Event()

    def poll_loop() -> None:
        while not stop.is_set():
            try:
                engine.tick()
            except Exception as e:
                log(f'poll tick failed: {e}')
            stop.wait(POLL_TICK_SECONDS)

    def delivery_loop() -> None:
        worker.run(stop, drain_interval_seconds=DRAIN_INTERVAL_SECONDS)

    t_poll = threading.Thread(target=poll_loop, name='b24-poll', daemon=True)
    t_delivery = threading.Thread(target=delivery_loop, name='b24-delivery', daemon=True)
    t_poll.start()
    t_delivery.start()

    print(
        f'b24_bot running as @{username or "?"} '
        f'(bitrix={cfg.b24_hostname}{mask_endpoint(cfg.b24_rest_endpoint)}, log_dir={cfg.log_dir})'
    )

    try:
        while not stop.is_set():
            time.sleep(1.0)
            if not t_poll.is_alive():
                print('b24_bot: poll thread died; exiting')
                stop.set()
                break
            if not t_delivery.is_alive():
                print('b24_bot: delivery thread died; exiting')
                stop.set()
                break
    except KeyboardInterrupt:
        stop.set()
    return 0


if __name__ == '__main__':
    raise SystemExit(main())
