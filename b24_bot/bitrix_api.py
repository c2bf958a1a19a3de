from __future__ import annotations

import socket
import time
import urllib.error
import urllib.parse
import urllib.request
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from threading import Lock

from .logs import write_log

Params = Sequence[tuple[str, object]]


@dataclass
class _ProbeState:
    online: bool = True
    next_probe_ts: float = 0.0
    lock: Lock = field(default_factory=Lock, repr=False, compare=False)


def mask_endpoint(endpoint: str) -> str:
    """Hide the webhook secret: `/rest/356/qejx...` -> `/rest/35...[masked]`."""
    s = str(endpoint or '')
    if len(s) > 15:
        return s[:8] + '...[masked]'
    return '[endpoint]'


def encode_params(params: Params | None) -> str:
    pairs: list[tuple[str, str]] = []
    for key, value in params or ():
        k = str(key or '').strip()
        if not k:
            continue
        pairs.append((k, '' if value is None else str(value)))
    return urllib.parse.urlencode(pairs, safe='[]')


@dataclass(frozen=True)
class BitrixClient:
    """Bitrix24 REST webhook client.

    `request()` never raises: an empty string means "no connectivity, non-200 status or timeout".
    The engine does not look at HTTP status codes.
    """

    hostname: str
    rest_endpoint: str
    timeout_seconds: int = 5
    probe_seconds: int = 10
    log_path: Path | None = None

    _probe: _ProbeState = field(default_factory=_ProbeState, init=False, repr=False, compare=False)

    def _log(self, msg: str) -> None:
        write_log('b24-api', self.log_path, msg)

    def _host_port(self) -> tuple[str, int]:
        u = urllib.parse.urlparse(self.hostname)
        host = u.hostname or ''
        port = u.port or (80 if u.scheme == 'http' else 443)
        return host, int(port)

    def url_for(self, method: str, params: Params | None = None) -> str:
        url = f'{self.hostname.rstrip("/")}{self.rest_endpoint}{method}'
        query = encode_params(params)
        if query:
            url = url + '?' + query
        return url

    def _get_once(self, url: str) -> str:
        req = urllib.request.Request(url, method='GET', headers={'Accept': 'application/json'})
        try:
            with urllib.request.urlopen(req, timeout=int(self.timeout_seconds)) as resp:
                return resp.read().decode('utf-8', errors='replace')
        except urllib.error.HTTPError as e:
            raise RuntimeError(f'Bitrix24 HTTPError {e.code}') from e
        except (urllib.error.URLError, TimeoutError, ConnectionError, OSError) as e:
            raise RuntimeError(f'Bitrix24 URLError: {e}') from e

    def request(self, method: str, params: Params | None = None) -> str:
        if not self.is_online():
            self._log(f'offline, skipping {method}')
            return ''
        url = self.url_for(method, params)
        self._log(f'calling {method} -> {self.hostname}{mask_endpoint(self.rest_endpoint)}{method}')
        try:
            return self._get_once(url)
        except RuntimeError as e:
            self._log(f'{method} failed: {e}')
            if str(e).startswith('Bitrix24 URLError:'):
                self._mark_offline()
            return ''

    def _mark_offline(self) -> None:
        with self._probe.lock:
            self._probe.online = False
            self._probe.next_probe_ts = time.time() + max(1, int(self.probe_seconds))

    def is_online(self) -> bool:
        """TCP reachability of the Bitrix host, re-probed at most every `probe_seconds`."""
        now = time.time()
        with self._probe.lock:
            if now < float(self._probe.next_probe_ts or 0.0):
                return bool(self._probe.online)
            self._probe.next_probe_ts = now + max(1, int(self.probe_seconds))

        host, port = self._host_port()
        online = False
        if host:
            try:
                with socket.create_connection((host, port), timeout=min(3, int(self.timeout_seconds))):
                    online = True
            except OSError:
                online = False

        with self._probe.lock:
            changed = bool(self._probe.online) != online
            self._probe.online = online
        if changed:
            self._log('host reachable again' if online else f'host {host}:{port} unreachable')
        return online
