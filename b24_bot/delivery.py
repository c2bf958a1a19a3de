from __future__ import annotations

import time
from collections.abc import Callable
from threading import Event
from typing import Any, Protocol

from .outbox import KIND_STATUS, OutboundMessage, OutboundQueue
from .telegram_api import is_missing_message_error, is_not_modified_error, message_id_of

STATUS_RETRY_SECONDS = 5.0
# getUpdates long-polls on the delivery thread, so queued alerts wait at most this long.
MAX_POLL_TIMEOUT_SECONDS = 5


class ChatAPI(Protocol):
    def get_updates(self, *, offset: int | None, timeout: int, limit: int = 100) -> list[dict[str, Any]]: ...

    def send_message(
        self,
        *,
        chat_id: int,
        text: str,
        parse_mode: str | None = None,
        disable_web_page_preview: bool = True,
        timeout: int = 30,
    ) -> dict[str, Any]: ...

    def edit_message_text(
        self,
        *,
        chat_id: int,
        message_id: int,
        text: str,
        parse_mode: str | None = None,
        disable_web_page_preview: bool = True,
    ) -> dict[str, Any]: ...


class CommandHandler(Protocol):
    def handle(self, text: str) -> list[OutboundMessage]: ...


class DeliveryWorker:
    """Consumer side of the outbox plus inbound command polling.

    Runs on its own thread: drains queued messages often, and asks Telegram for
    new updates at the slower `inbound_interval_seconds` pace. Only messages from
    `chat_id` are handed to the command handler.
    """

    def __init__(
        self,
        *,
        api: ChatAPI,
        chat_id: int,
        outbox: OutboundQueue,
        commands: CommandHandler,
        poll_timeout_seconds: int = 0,
        inbound_interval_seconds: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        log: Callable[[str], None] | None = None,
    ) -> None:
        self.api = api
        self.chat_id = int(chat_id)
        self.outbox = outbox
        self.commands = commands
        self.poll_timeout_seconds = max(0, min(MAX_POLL_TIMEOUT_SECONDS, int(poll_timeout_seconds or 0)))
        self.inbound_interval_seconds = max(0.0, float(inbound_interval_seconds))
        self._clock = clock
        self._log = log
        self.offset: int | None = None
        self.status_message_id = 0
        self._next_inbound_ts = 0.0
        self._status_retry_ts = 0.0

    def _say(self, msg: str) -> None:
        if self._log is not None:
            self._log(msg)

    def _send(self, msg: OutboundMessage) -> int:
        resp = self.api.send_message(
            chat_id=self.chat_id,
            text=msg.text,
            parse_mode='HTML' if msg.formatted else None,
        )
        return message_id_of(resp)

    def _push_status(self, text: str) -> None:
        if self.status_message_id:
            try:
                self.api.edit_message_text(
                    chat_id=self.chat_id,
                    message_id=self.status_message_id,
                    text=text,
                    parse_mode='HTML',
                )
                return
            except RuntimeError as e:
                if is_not_modified_error(e):
                    return
                if not is_missing_message_error(e):
                    raise
                self._say(f'status message {self.status_message_id} is gone; sending a new one')
                self.status_message_id = 0
        self.status_message_id = self._send(OutboundMessage(text=text, formatted=True, kind=KIND_STATUS))

    def drain_once(self, *, max_items: int = 20) -> int:
        """Deliver the pending status line and up to `max_items` queued messages."""
        sent = 0
        now = float(self._clock())
        status = self.outbox.take_status() if now >= self._status_retry_ts else None
        if status:
            try:
                self._push_status(status)
                sent += 1
            except Exception as e:
                self._say(f'status update failed, retry in {STATUS_RETRY_SECONDS:g}s: {e}')
                self.outbox.restore_status(status)
                self._status_retry_ts = now + STATUS_RETRY_SECONDS

        for _ in range(max(0, int(max_items))):
            msg = self.outbox.get_nowait()
            if msg is None:
                break
            try:
                self._send(msg)
                sent += 1
            except Exception as e:
                self._say(f'send {msg.kind} failed, dropped: {e}')
        return sent

    def poll_inbound_once(self) -> int:
        """Fetch new updates and dispatch authorized text messages. Returns how many were handled."""
        updates = self.api.get_updates(offset=self.offset, timeout=self.poll_timeout_seconds)
        handled = 0
        max_update_id = None
        for upd in updates:
            uid = upd.get('update_id')
            if isinstance(uid, int):
                max_update_id = max(max_update_id or 0, uid)
            msg = upd.get('message')
            if not isinstance(msg, dict):
                continue
            chat = msg.get('chat') or {}
            try:
                chat_id = int(chat.get('id') or 0) if isinstance(chat, dict) else 0
            except (TypeError, ValueError):
                chat_id = 0
            if chat_id != self.chat_id:
                self._say(f'ignored message from unauthorized chat {chat_id}')
                continue
            text = msg.get('text')
            if not isinstance(text, str) or not text.strip():
                continue
            for reply in self.commands.handle(text):
                self.outbox.put(reply)
            handled += 1
        if max_update_id is not None:
            self.offset = int(max_update_id) + 1
        return handled

    def tick(self) -> None:
        self.drain_once()
        now = float(self._clock())
        if now < self._next_inbound_ts:
            return
        self._next_inbound_ts = now + self.inbound_interval_seconds
        try:
            self.poll_inbound_once()
        except Exception as e:
            self._say(f'getUpdates failed: {e}')

    def run(self, stop: Event, *, drain_interval_seconds: float = 0.1) -> None:
        while not stop.is_set():
            try:
                self.tick()
            except Exception as e:
                self._say(f'delivery tick failed: {e}')
            stop.wait(max(0.01, float(drain_interval_seconds)))
