from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Union

U16_MAX = 65535

_RAW_TOTAL_RE = re.compile(r'"(?:total|TOTAL)"\s*:\s*(\d+)')
_YMD_RE = re.compile(r'(\d{4}-\d{2}-\d{2})')

# bizproc.task.list: STATUS=0 means the task is still waiting for the user.
UNDONE_STATUS = 0


@dataclass(frozen=True)
class ExplicitTotal:
    total: int


@dataclass(frozen=True)
class ItemList:
    items: tuple[dict[str, Any], ...]


CountResult = Union[ExplicitTotal, ItemList]


def clamp_u16(n: int) -> int:
    return max(0, min(U16_MAX, int(n)))


def parse_json(raw: str) -> Any | None:
    s = (raw or '').strip()
    if not s:
        return None
    try:
        return json.loads(s)
    except json.JSONDecodeError:
        return None


def as_int(v: object) -> int | None:
    """Bitrix returns numbers either as JSON ints or as numeric strings."""
    if isinstance(v, bool):
        return None
    if isinstance(v, int):
        return v
    if isinstance(v, str):
        s = v.strip()
        if s.isdigit() or (s.startswith('-') and s[1:].isdigit()):
            return int(s)
    return None


def _result_obj(raw: str) -> dict[str, Any] | None:
    doc = parse_json(raw)
    if not isinstance(doc, dict):
        return None
    result = doc.get('result')
    return result if isinstance(result, dict) else None


def extract_total(raw: str) -> int | None:
    """Server-reported total of a list query.

    Looks at `total`/`TOTAL` at the root and under `result`. Bodies that are not valid JSON
    (truncated, garbage around them) are scanned for a `"total":<digits>` fragment.
    """
    doc = parse_json(raw)
    if isinstance(doc, dict):
        for holder in (doc, doc.get('result')):
            if not isinstance(holder, dict):
                continue
            for key in ('total', 'TOTAL'):
                n = as_int(holder.get(key))
                if n is not None:
                    return clamp_u16(n)
        return None
    m = _RAW_TOTAL_RE.search(raw or '')
    if not m:
        return None
    return clamp_u16(int(m.group(1)))


def extract_unread_dialogs(raw: str) -> int | None:
    """`im.counters.get`: dialogs with unread messages (`TYPE.DIALOG`, fallback `DIALOG`)."""
    result = _result_obj(raw)
    if result is None:
        return None
    type_obj = result.get('TYPE')
    if isinstance(type_obj, dict):
        n = as_int(type_obj.get('DIALOG'))
        if n is not None:
            return clamp_u16(n)
    n = as_int(result.get('DIALOG'))
    return clamp_u16(n) if n is not None else 0


def extract_total_unread(raw: str) -> int | None:
    """`im.counters.get`: all unread messages (`TYPE.ALL`, fallback `TYPE.MESSENGER`)."""
    result = _result_obj(raw)
    if result is None:
        return None
    type_obj = result.get('TYPE')
    if not isinstance(type_obj, dict):
        return 0
    for key in ('ALL', 'MESSENGER'):
        n = as_int(type_obj.get(key))
        if n is not None:
            return clamp_u16(n)
    return 0


def extract_user_id(raw: str) -> int | None:
    result = _result_obj(raw)
    if result is None:
        return None
    uid = as_int(result.get('ID'))
    if uid is None or uid <= 0:
        return None
    return uid


def extract_today(raw: str) -> str | None:
    """`server.time` -> `YYYY-MM-DD`.

    Known shapes: `result` is the datetime string, `result.time`/`result.TIME`, or a root `time`.
    """
    doc = parse_json(raw)
    if not isinstance(doc, dict):
        return None
    candidates: list[object] = []
    result = doc.get('result')
    if isinstance(result, str):
        candidates.append(result)
    elif isinstance(result, dict):
        candidates.extend([result.get('time'), result.get('TIME')])
    candidates.append(doc.get('time'))
    for c in candidates:
        if not isinstance(c, str) or not c.strip():
            continue
        m = _YMD_RE.search(c)
        if m:
            return m.group(1)
        # The first non-empty field decides; a dateless one is not retried against `time`.
        return None
    return None


def classify_count_result(raw: str) -> CountResult | None:
    """Map a list response onto `ExplicitTotal | ItemList`.

    Order matters and is fixed: top-level `result` array, then `result.tasks` array,
    then `result.total`. The first shape that matches wins.
    """
    doc = parse_json(raw)
    if not isinstance(doc, dict):
        return None
    result = doc.get('result')
    if isinstance(result, list):
        return ItemList(items=tuple(x for x in result if isinstance(x, dict)))
    if not isinstance(result, dict):
        return None
    tasks = result.get('tasks')
    if isinstance(tasks, list):
        return ItemList(items=tuple(x for x in tasks if isinstance(x, dict)))
    total = result.get('total')
    if isinstance(total, int) and not isinstance(total, bool):
        return ExplicitTotal(total=clamp_u16(total))
    return None


def count_undone(items: tuple[dict[str, Any], ...], *, user_id: int) -> int:
    n = 0
    for t in items:
        if as_int(t.get('USER_ID')) != int(user_id):
            continue
        if as_int(t.get('STATUS')) != UNDONE_STATUS:
            continue
        n += 1
    return clamp_u16(n)


def resolve_count(res: CountResult, *, user_id: int) -> int:
    if isinstance(res, ExplicitTotal):
        return clamp_u16(res.total)
    return count_undone(res.items, user_id=user_id)


def extract_group_name(raw: str) -> str:
    """`sonet_group.get`: `result` is an object or an array; name is `NAME` or `name`."""
    doc = parse_json(raw)
    if not isinstance(doc, dict):
        return ''
    result = doc.get('result')
    group: object = None
    if isinstance(result, dict):
        group = result
    elif isinstance(result, list) and result:
        group = result[0]
    if not isinstance(group, dict):
        return ''
    for key in ('NAME', 'name'):
        v = group.get(key)
        if isinstance(v, str) and v.strip():
            return v.strip()
    return ''
