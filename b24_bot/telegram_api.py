from __future__ import annotations

import json
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .logs import write_log


def is_not_modified_error(e: Exception) -> bool:
    """editMessageText with identical text is rejected by Telegram; that is not a failure for us."""
    return 'message is not modified' in str(e).lower()


def is_missing_message_error(e: Exception) -> bool:
    s = str(e).lower()
    return "message to edit not found" in s or "message can't be edited" in s


@dataclass(frozen=True)
class TelegramAPI:
    token: str
    root_url: str = 'https://api.telegram.org'
    log_path: Path | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, 'root_url', (self.root_url or '').strip().rstrip('/'))

    @property
    def base_url(self) -> str:
        if not self.root_url:
            raise RuntimeError('Telegram API base URL is empty')
        return f'{self.root_url}/bot{self.token}/'

    def _log(self, msg: str) -> None:
        write_log('tg-api', self.log_path, msg)

    def _build_request(self, method: str, params: dict[str, Any]) -> urllib.request.Request:
        url = self.base_url + method
        headers = {'Content-Type': 'application/json; charset=utf-8'}
        if method == 'getUpdates':
            query = urllib.parse.urlencode({k: v for k, v in params.items() if v is not None})
            if query:
                url = url + '?' + query
            return urllib.request.Request(url, method='GET', headers=headers)
        payload = json.dumps(params, ensure_ascii=False).encode('utf-8')
        return urllib.request.Request(url, data=payload, method='POST', headers=headers)

    def _request_json(self, method: str, params: dict[str, Any] | None = None, timeout: int = 30) -> dict[str, Any]:
        req = self._build_request(method, dict(params or {}))
        try:
            with urllib.request.urlopen(req, timeout=timeout) as resp:
                raw = resp.read().decode('utf-8', errors='replace')
        except urllib.error.HTTPError as e:
            try:
                raw = e.read().decode('utf-8', errors='replace')
            except Exception:
                raw = str(e)
            raise RuntimeError(f'Telegram HTTPError {e.code}: {raw}') from e
        except (urllib.error.URLError, TimeoutError, ConnectionError, OSError) as e:
            raise RuntimeError(f'Telegram URLError: {e}') from e

        try:
            obj = json.loads(raw or '{}')
        except json.JSONDecodeError as e:
            raise RuntimeError(f'Telegram invalid JSON: {raw[:500]}') from e
        if not isinstance(obj, dict):
            raise RuntimeError(f'Telegram invalid JSON (not an object): {raw[:500]}')
        if not obj.get('ok', False):
            raise RuntimeError(f'Telegram API error: {obj}')
        return obj

    def get_updates(self, *, offset: int | None, timeout: int, limit: int = 100) -> list[dict[str, Any]]:
        params: dict[str, Any] = {
            'timeout': int(timeout),
            'limit': int(limit),
            'allowed_updates': json.dumps(['message']),
        }
        if offset is not None:
            params['offset'] = int(offset)
        obj = self._request_json('getUpdates', params=params, timeout=int(timeout) + 5)
        result = obj.get('result') or []
        if not isinstance(result, list):
            return []
        return [x for x in result if isinstance(x, dict)]

    def send_message(
        self,
        *,
        chat_id: int,
        text: str,
        parse_mode: str | None = None,
        disable_web_page_preview: bool = True,
        timeout: int = 30,
    ) -> dict[str, Any]:
        params: dict[str, Any] = {
            'chat_id': int(chat_id),
            'text': text,
            'disable_web_page_preview': bool(disable_web_page_preview),
        }
        if parse_mode:
            params['parse_mode'] = str(parse_mode)
        return self._request_json('sendMessage', params=params, timeout=int(timeout))

    def edit_message_text(
        self,
        *,
        chat_id: int,
        message_id: int,
        text: str,
        parse_mode: str | None = None,
        disable_web_page_preview: bool = True,
    ) -> dict[str, Any]:
        params: dict[str, Any] = {
            'chat_id': int(chat_id),
            'message_id': int(message_id),
            'text': text,
            'disable_web_page_preview': bool(disable_web_page_preview),
        }
        if parse_mode:
            params['parse_mode'] = str(parse_mode)
        return self._request_json('editMessageText', params=params, timeout=30)

    def get_me(self) -> dict[str, Any]:
        return self._request_json('getMe', params={}, timeout=20)


def message_id_of(resp: dict[str, Any]) -> int:
    result = resp.get('result') if isinstance(resp, dict) else None
    if not isinstance(result, dict):
        return 0
    try:
        return int(result.get('message_id') or 0)
    except (TypeError, ValueError):
        return 0
