from __future__ import annotations

import time
from collections.abc import Callable
from pathlib import Path


def write_log(tag: str, log_path: Path | None, msg: str) -> None:
    """`[tag] msg` to stdout plus a timestamped line in `log_path` (best-effort)."""
    if not msg:
        return
    line = f'[{tag}] {msg}'
    try:
        print(line, flush=True)
    except Exception:
        pass
    if log_path is None:
        return
    try:
        ts = time.strftime('%Y-%m-%d %H:%M:%S')
        log_path.parent.mkdir(parents=True, exist_ok=True)
        with log_path.open('a', encoding='utf-8') as f:
            f.write(f'[{ts}] {line}\n')
    except Exception:
        pass


def make_logger(tag: str, log_path: Path | None) -> Callable[[str], None]:
    def _log(msg: str) -> None:
        write_log(tag, log_path, msg)

    return _log
