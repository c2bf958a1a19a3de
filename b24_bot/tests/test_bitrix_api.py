import tempfile
import unittest
import urllib.error
import urllib.parse
from pathlib import Path
from unittest.mock import patch

from b24_bot.bitrix_api import BitrixClient, encode_params, mask_endpoint


class _FakeHTTPResponse:
    def __init__(self, payload: bytes) -> None:
        self._payload = payload

    def read(self) -> bytes:
        return self._payload

    def __enter__(self) -> '_FakeHTTPResponse':
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> bool:
        return False


class _FakeSocket:
    def __enter__(self) -> '_FakeSocket':
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> bool:
        return False


def _client() -> BitrixClient:
    return BitrixClient(hostname='https://x.bitrix24.ru', rest_endpoint='/rest/356/secretcode/', probe_seconds=10)


class TestBitrixClient(unittest.TestCase):
    def test_encode_params_keeps_repeated_keys_and_brackets(self) -> None:
        q = encode_params([('filter[STATUS][]', 1), ('filter[STATUS][]', 2), ('filter[!DEADLINE]', ''), ('', 'x')])
        self.assertEqual(q.count('filter[STATUS][]='), 2)
        pairs = urllib.parse.parse_qsl(q, keep_blank_values=True)
        self.assertEqual(pairs, [('filter[STATUS][]', '1'), ('filter[STATUS][]', '2'), ('filter[!DEADLINE]', '')])

    def test_url_for(self) -> None:
        c = _client()
        self.assertEqual(c.url_for('user.current'), 'https://x.bitrix24.ru/rest/356/secretcode/user.current')
        url = c.url_for('sonet_group.get', [('FILTER[ID]', 253)])
        self.assertEqual(url, 'https://x.bitrix24.ru/rest/356/secretcode/sonet_group.get?FILTER[ID]=253')

    def test_mask_endpoint_hides_secret(self) -> None:
        self.assertEqual(mask_endpoint('/rest/356/secretcode/'), '/rest/35...[masked]')
        self.assertEqual(mask_endpoint('/rest/1/'), '[endpoint]')

    def test_request_returns_body(self) -> None:
        seen: list[str] = []

        def fake_urlopen(req: object, timeout: int = 0) -> _FakeHTTPResponse:
            seen.append(getattr(req, 'full_url', ''))
            return _FakeHTTPResponse(b'{"result": {"ID": "7"}}')

        c = _client()
        with (
            patch('b24_bot.bitrix_api.socket.create_connection', lambda *a, **k: _FakeSocket()),
            patch('b24_bot.bitrix_api.urllib.request.urlopen', fake_urlopen),
            patch('builtins.print'),
        ):
            body = c.request('user.current')
        self.assertEqual(body, '{"result": {"ID": "7"}}')
        self.assertEqual(seen, ['https://x.bitrix24.ru/rest/356/secretcode/user.current'])

    def test_http_error_returns_empty_string(self) -> None:
        def fake_urlopen(req: object, timeout: int = 0) -> _FakeHTTPResponse:
            raise urllib.error.HTTPError(getattr(req, 'full_url', ''), 401, 'Unauthorized', {}, None)

        c = _client()
        with (
            patch('b24_bot.bitrix_api.socket.create_connection', lambda *a, **k: _FakeSocket()),
            patch('b24_bot.bitrix_api.urllib.request.urlopen', fake_urlopen),
            patch('builtins.print'),
        ):
            self.assertEqual(c.request('user.current'), '')
            # HTTP errors do not mark the host offline.
            self.assertTrue(c.is_online())

    def test_url_error_marks_offline_until_next_probe(self) -> None:
        now = [1000.0]
        probes: list[tuple[str, int]] = []
        calls: list[str] = []

        def fake_connect(addr: tuple[str, int], timeout: float = 0) -> _FakeSocket:
            probes.append(addr)
            return _FakeSocket()

        def fake_urlopen(req: object, timeout: int = 0) -> _FakeHTTPResponse:
            calls.append(getattr(req, 'full_url', ''))
            raise urllib.error.URLError('timed out')

        c = _client()
        with (
            patch('b24_bot.bitrix_api.time.time', lambda: now[0]),
            patch('b24_bot.bitrix_api.socket.create_connection', fake_connect),
            patch('b24_bot.bitrix_api.urllib.request.urlopen', fake_urlopen),
            patch('builtins.print'),
        ):
            self.assertEqual(c.request('im.counters.get'), '')
            self.assertEqual(probes, [('x.bitrix24.ru', 443)])
            self.assertEqual(len(calls), 1)

            # Within the probe window the client reports offline and skips the network.
            now[0] = 1005.0
            self.assertFalse(c.is_online())
            self.assertEqual(c.request('im.counters.get'), '')
            self.assertEqual(len(calls), 1)

            # After the window a fresh TCP probe brings it back.
            now[0] = 1011.0
            self.assertTrue(c.is_online())
            self.assertEqual(len(probes), 2)

    def test_probe_failure_reports_offline(self) -> None:
        def fake_connect(addr: tuple[str, int], timeout: float = 0) -> _FakeSocket:
            raise OSError('no route to host')

        c = _client()
        with (
            patch('b24_bot.bitrix_api.socket.create_connection', fake_connect),
            patch('builtins.print'),
        ):
            self.assertFalse(c.is_online())
            self.assertEqual(c.request('server.time'), '')

    def test_request_log_masks_secret(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            log_path = Path(td) / 'logs' / 'bitrix-api.log'
            c = BitrixClient(
                hostname='https://x.bitrix24.ru',
                rest_endpoint='/rest/356/secretcode/',
                log_path=log_path,
            )
            with (
                patch('b24_bot.bitrix_api.socket.create_connection', lambda *a, **k: _FakeSocket()),
                patch('b24_bot.bitrix_api.urllib.request.urlopen', lambda req, timeout=0: _FakeHTTPResponse(b'{}')),
                patch('builtins.print'),
            ):
                c.request('user.current')
            text = log_path.read_text(encoding='utf-8')
        self.assertIn('[b24-api] calling user.current', text)
        self.assertNotIn('secretcode', text)
