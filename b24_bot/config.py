from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


def _load_dotenv(path: Path) -> None:
    """Best-effort .env loader (no dependencies).

    Supports:
      - KEY=VALUE
      - export KEY=VALUE

    Does not override already-set env vars.
    """
    try:
        if not path.exists():
            return
        content = path.read_text(encoding='utf-8', errors='replace')
    except OSError:
        return

    for raw_line in content.splitlines():
        line = raw_line.strip()
        if not line or line.startswith('#'):
            continue
        if line.startswith('export '):
            line = line[len('export ') :].strip()
        if '=' not in line:
            continue
        key, value = line.split('=', 1)
        key = key.strip()
        if not key or key in os.environ:
            continue
        value = value.strip().strip("'").strip('"')
        os.environ[key] = value


def _env_bool(name: str, default: bool = False) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    v = v.strip().lower()
    if v in {'1', 'true', 'yes', 'y', 'on'}:
        return True
    if v in {'0', 'false', 'no', 'n', 'off'}:
        return False
    return default


def _env_int(name: str, default: int) -> int:
    v = os.getenv(name)
    if v is None:
        return default
    try:
        return int(v.strip())
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    v = os.getenv(name)
    if v is None:
        return default
    try:
        return float(v.strip().replace(',', '.'))
    except ValueError:
        return default


def normalize_rest_endpoint(raw: str) -> str:
    """Return the webhook path as `/rest/<user>/<code>/`.

    People often paste the full webhook URL; keep only the path part.
    """
    s = (raw or '').strip()
    if '://' in s:
        after = s.split('://', 1)[1]
        _, slash, path = after.partition('/')
        s = '/' + path if slash else ''
    if not s:
        return ''
    if not s.startswith('/'):
        s = '/' + s
    if not s.endswith('/'):
        s = s + '/'
    return s


def normalize_hostname(raw: str) -> str:
    s = (raw or '').strip().rstrip('/')
    if s and '://' not in s:
        s = 'https://' + s
    return s


@dataclass(frozen=True)
class BotConfig:
    repo_root: Path

    # Telegram
    tg_token: str
    tg_chat_id: int
    tg_api_url: str
    tg_poll_timeout_seconds: int
    tg_inbound_interval_seconds: float
    tg_outbox_size: int

    # Bitrix24
    b24_hostname: str
    b24_rest_endpoint: str
    b24_timeout_seconds: int
    b24_poll_interval_seconds: int
    b24_retry_floor_seconds: int
    b24_today_ttl_seconds: int
    b24_probe_seconds: int

    # Notification thresholds
    notify_unread_delta: int
    notify_unread_window_seconds: int
    notify_undone_delta: int
    notify_undone_window_seconds: int
    notify_expired_delta: int
    notify_expired_window_seconds: int

    engaged_flag_file: Path | None
    log_dir: Path
    startup_message_enabled: bool

    @staticmethod
    def default_repo_root() -> Path:
        # If b24_bot/ sits at repo root, parents[1] is repo root.
        here = Path(__file__).resolve()
        return Path(os.getenv('B24_REPO_ROOT', str(here.parents[1]))).resolve()

    @classmethod
    def from_env(cls) -> BotConfig:
        repo_root = cls.default_repo_root()

        # Load optional env files (if present).
        _load_dotenv(repo_root / 'b24_bot' / '.env')
        _load_dotenv(repo_root / '.env.b24_bot')

        tg_token = (os.getenv('TG_BOT_TOKEN') or '').strip()
        if not tg_token:
            raise RuntimeError('TG_BOT_TOKEN is required')
        tg_chat_id = _env_int('TG_CHAT_ID', 0)
        if tg_chat_id == 0:
            raise RuntimeError('TG_CHAT_ID is required')

        tg_api_url = (os.getenv('TG_API_URL') or 'https://api.telegram.org').strip().rstrip('/')
        # Long polling delays outbox draining on the same thread.
        tg_poll_timeout_seconds = max(0, min(5, _env_int('TG_POLL_TIMEOUT_SECONDS', 0)))
        tg_inbound_interval_seconds = max(0.2, min(60.0, _env_float('TG_INBOUND_INTERVAL_SECONDS', 1.0)))
        tg_outbox_size = max(1, min(1000, _env_int('TG_OUTBOX_SIZE', 20)))

        b24_hostname = normalize_hostname(os.getenv('B24_HOSTNAME') or '')
        if not b24_hostname:
            raise RuntimeError('B24_HOSTNAME is required')
        b24_rest_endpoint = normalize_rest_endpoint(os.getenv('B24_REST_ENDPOINT') or '')
        if not b24_rest_endpoint:
            raise RuntimeError('B24_REST_ENDPOINT is required')

        b24_timeout_seconds = max(1, min(60, _env_int('B24_TIMEOUT_SECONDS', 5)))
        b24_poll_interval_seconds = max(5, min(3600, _env_int('B24_POLL_INTERVAL_SECONDS', 30)))
        b24_retry_floor_seconds = max(5, min(3600, _env_int('B24_RETRY_FLOOR_SECONDS', 30)))
        b24_today_ttl_seconds = max(1, min(3600, _env_int('B24_TODAY_TTL_SECONDS', 60)))
        b24_probe_seconds = max(1, min(600, _env_int('B24_PROBE_SECONDS', 10)))

        notify_unread_delta = max(1, _env_int('NOTIFY_UNREAD_DELTA', 3))
        notify_unread_window_seconds = max(0, _env_int('NOTIFY_UNREAD_WINDOW_MINUTES', 5)) * 60
        notify_undone_delta = max(1, _env_int('NOTIFY_UNDONE_DELTA', 2))
        notify_undone_window_seconds = max(0, _env_int('NOTIFY_UNDONE_WINDOW_MINUTES', 10)) * 60
        notify_expired_delta = max(1, _env_int('NOTIFY_EXPIRED_DELTA', 1))
        notify_expired_window_seconds = max(0, _env_int('NOTIFY_EXPIRED_WINDOW_MINUTES', 15)) * 60

        engaged_raw = (os.getenv('B24_ENGAGED_FLAG_FILE') or '').strip()
        engaged_flag_file: Path | None = None
        if engaged_raw:
            p = Path(engaged_raw)
            engaged_flag_file = (p if p.is_absolute() else (repo_root / p)).resolve()

        log_dir = Path(os.getenv('B24_LOG_DIR', str(repo_root / 'logs' / 'b24-bot'))).resolve()
        startup_message_enabled = _env_bool('TG_STARTUP_MESSAGE', True)

        return cls(
            repo_root=repo_root,
            tg_token=tg_token,
            tg_chat_id=tg_chat_id,
            tg_api_url=tg_api_url,
            tg_poll_timeout_seconds=tg_poll_timeout_seconds,
            tg_inbound_interval_seconds=tg_inbound_interval_seconds,
            tg_outbox_size=tg_outbox_size,
            b24_hostname=b24_hostname,
            b24_rest_endpoint=b24_rest_endpoint,
            b24_timeout_seconds=b24_timeout_seconds,
            b24_poll_interval_seconds=b24_poll_interval_seconds,
            b24_retry_floor_seconds=b24_retry_floor_seconds,
            b24_today_ttl_seconds=b24_today_ttl_seconds,
            b24_probe_seconds=b24_probe_seconds,
            notify_unread_delta=notify_unread_delta,
            notify_unread_window_seconds=notify_unread_window_seconds,
            notify_undone_delta=notify_undone_delta,
            notify_undone_window_seconds=notify_undone_window_seconds,
            notify_expired_delta=notify_expired_delta,
            notify_expired_window_seconds=notify_expired_window_seconds,
            engaged_flag_file=engaged_flag_file,
            log_dir=log_dir,
            startup_message_enabled=startup_message_enabled,
        )
