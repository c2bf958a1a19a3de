from __future__ import annotations

from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from threading import Lock

KIND_ALERT = 'alert'
KIND_ADVISORY = 'advisory'
KIND_REPLY = 'reply'
KIND_STATUS = 'status'


@dataclass(frozen=True)
class OutboundMessage:
    text: str
    formatted: bool = True
    kind: str = KIND_ALERT


class OutboundQueue:
    """Bounded FIFO between the poll loop (producer) and the delivery loop (consumer).

    `put()` never blocks: when the queue is full the new message is dropped.
    The status line lives in its own single slot; only the latest text is kept.
    """

    def __init__(self, *, maxsize: int = 20, log: Callable[[str], None] | None = None) -> None:
        self.maxsize = max(1, int(maxsize))
        self._log = log
        self._lock = Lock()
        self._items: deque[OutboundMessage] = deque()
        self._status: str | None = None
        self._dropped = 0

    def put(self, msg: OutboundMessage) -> bool:
        with self._lock:
            if len(self._items) >= self.maxsize:
                self._dropped += 1
                dropped = True
            else:
                self._items.append(msg)
                dropped = False
        if dropped and self._log is not None:
            self._log(f'outbox full ({self.maxsize}), dropped {msg.kind}: {msg.text[:60]!r}')
        return not dropped

    def get_nowait(self) -> OutboundMessage | None:
        with self._lock:
            if not self._items:
                return None
            return self._items.popleft()

    def set_status(self, text: str) -> None:
        with self._lock:
            self._status = str(text or '')

    def take_status(self) -> str | None:
        with self._lock:
            s = self._status
            self._status = None
            return s

    def restore_status(self, text: str) -> None:
        """Put back a status that failed to deliver, unless a newer one arrived meanwhile."""
        with self._lock:
            if self._status is None:
                self._status = str(text or '')

    def dropped_count(self) -> int:
        with self._lock:
            return self._dropped

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
