from __future__ import annotations

import enum
import html
from collections.abc import Callable
from typing import Protocol

from .fetchers import GroupStats
from .outbox import KIND_REPLY, OutboundMessage

HELP_TEXT = (
    '📊 @office_b24_bot\n\n'
    'Bitrix24:\n'
    '/b24groups - Configure groups/projects IDs\n'
    'Notifications are sent when counts change'
)
GROUP_PROMPT = 'Send group/project ID (single group).\nExample: 253'
SWITCH_BACK_HINT = 'Reply ALL to switch back now.'
DIGITS_ONLY_RETRY = 'Only numeric group IDs are supported, e.g. 253.'
NEXT_ACTION_RETRY = 'Reply ALL to switch back, or send another group ID.'
SWITCHED_TO_ALL = 'OK. Switched back to ALL delayed-by-me mode.'

# uint32 upper bound of Bitrix group ids.
_MAX_GROUP_ID = 0xFFFFFFFF


class ScopeCommandState(enum.Enum):
    IDLE = 'idle'
    AWAIT_GROUP_ID = 'await_group_id'
    AWAIT_NEXT_ACTION = 'await_next_action'


class MessageKind(enum.Enum):
    HELP = 'help'
    CONFIGURE = 'configure'
    DIGITS = 'digits'
    ALL = 'all'
    OTHER = 'other'


class ScopeSetter(Protocol):
    def set_group(self, group_id: int) -> None: ...

    def clear_group(self) -> None: ...


class GroupLookups(Protocol):
    def group_name(self, group_id: int) -> str: ...

    def group_stats(self, group_id: int) -> GroupStats: ...


def parse_group_id(text: str) -> int | None:
    s = (text or '').strip()
    if not s or not s.isascii() or not s.isdigit():
        return None
    gid = int(s)
    if gid <= 0 or gid > _MAX_GROUP_ID:
        return None
    return gid


def classify_message(text: str) -> MessageKind:
    s = (text or '').strip()
    cmd = s.split(maxsplit=1)[0].lower() if s else ''
    # `/help@office_b24_bot` in group chats.
    cmd = cmd.split('@', 1)[0]
    if cmd in {'/start', '/help'}:
        return MessageKind.HELP
    if cmd == '/b24groups':
        return MessageKind.CONFIGURE
    if parse_group_id(s) is not None:
        return MessageKind.DIGITS
    if s.lower() == 'all':
        return MessageKind.ALL
    return MessageKind.OTHER


def format_group_saved(*, group_id: int, name: str, stats: GroupStats) -> str:
    lines = ['<b>Group saved!</b>', f'ID: <b>{group_id}</b>']
    if name:
        lines.append(f'Name: <b>{html.escape(name, quote=False)}</b>')
    lines.append(f'Delayed tasks: <b>{int(stats.delayed or 0)}</b>')
    lines.append(f'All tasks: <b>{int(stats.all_tasks or 0)}</b>')
    text = '\n'.join(lines)
    text += '\n\nReply <b>ALL</b> to switch back to <b>ALL delayed-by-me</b> mode.\n'
    text += 'Or send another <b>group ID</b>.'
    return text


_Handler = Callable[['ScopeCommandInterpreter', str], 'list[OutboundMessage]']


class ScopeCommandInterpreter:
    """Chat state machine for choosing between the global view and one Bitrix group.

    Dispatch is a table keyed by (state, message kind). Pairs missing from the table
    are ignored without a reply.
    """

    def __init__(
        self,
        *,
        scope: ScopeSetter,
        lookups: GroupLookups,
        log: Callable[[str], None] | None = None,
    ) -> None:
        self._scope = scope
        self._lookups = lookups
        self._log = log
        self.state = ScopeCommandState.IDLE

    def _say(self, msg: str) -> None:
        if self._log is not None:
            self._log(msg)

    @staticmethod
    def _reply(text: str) -> OutboundMessage:
        return OutboundMessage(text=text, formatted=True, kind=KIND_REPLY)

    def handle(self, text: str) -> list[OutboundMessage]:
        kind = classify_message(text)
        handler = _TRANSITIONS.get((self.state, kind))
        if handler is None:
            return []
        before = self.state
        out = handler(self, text)
        if self.state != before:
            self._say(f'scope state {before.value} -> {self.state.value}')
        return out

    def _on_help(self, _text: str) -> list[OutboundMessage]:
        return [self._reply(HELP_TEXT)]

    def _on_configure(self, _text: str) -> list[OutboundMessage]:
        self.state = ScopeCommandState.AWAIT_GROUP_ID
        return [self._reply(GROUP_PROMPT)]

    def _select_group(self, text: str) -> list[OutboundMessage]:
        gid = parse_group_id(text)
        if gid is None:
            return []
        self._scope.set_group(gid)
        self.state = ScopeCommandState.AWAIT_NEXT_ACTION

        name = ''
        stats = GroupStats()
        try:
            name = self._lookups.group_name(gid)
        except Exception as e:
            self._say(f'group {gid} name lookup failed: {e}')
        try:
            stats = self._lookups.group_stats(gid)
        except Exception as e:
            self._say(f'group {gid} stats lookup failed: {e}')
        self._say(f'selected group {gid} name={name!r} delayed={stats.delayed} all={stats.all_tasks}')
        return [self._reply(format_group_saved(group_id=gid, name=name, stats=stats))]

    def _on_digits_after_prompt(self, text: str) -> list[OutboundMessage]:
        out = self._select_group(text)
        out.append(self._reply(SWITCH_BACK_HINT))
        return out

    def _on_all(self, _text: str) -> list[OutboundMessage]:
        self._scope.clear_group()
        self.state = ScopeCommandState.IDLE
        return [self._reply(SWITCHED_TO_ALL)]

    def _retry_digits(self, _text: str) -> list[OutboundMessage]:
        return [self._reply(DIGITS_ONLY_RETRY)]

    def _retry_next_action(self, _text: str) -> list[OutboundMessage]:
        return [self._reply(NEXT_ACTION_RETRY)]


_S = ScopeCommandState
_K = MessageKind

_TRANSITIONS: dict[tuple[ScopeCommandState, MessageKind], _Handler] = {}
for _state in ScopeCommandState:
    _TRANSITIONS[(_state, _K.HELP)] = ScopeCommandInterpreter._on_help
    _TRANSITIONS[(_state, _K.CONFIGURE)] = ScopeCommandInterpreter._on_configure
_TRANSITIONS.update(
    {
        (_S.IDLE, _K.DIGITS): ScopeCommandInterpreter._select_group,
        (_S.AWAIT_GROUP_ID, _K.DIGITS): ScopeCommandInterpreter._on_digits_after_prompt,
        (_S.AWAIT_GROUP_ID, _K.ALL): ScopeCommandInterpreter._retry_digits,
        (_S.AWAIT_GROUP_ID, _K.OTHER): ScopeCommandInterpreter._retry_digits,
        (_S.AWAIT_NEXT_ACTION, _K.DIGITS): ScopeCommandInterpreter._select_group,
        (_S.AWAIT_NEXT_ACTION, _K.ALL): ScopeCommandInterpreter._on_all,
        (_S.AWAIT_NEXT_ACTION, _K.OTHER): ScopeCommandInterpreter._retry_next_action,
    }
)
