"""Render context and tag resolution."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Callable, Union

from vatic.bus.events import InboundMessage
from vatic.config.dictionary import Dictionary
from vatic.config.secrets import SecretsResolver
from vatic.errors import RenderError, SecretNotFound, UndefinedVariable
from vatic.memory.sqlite_store import MemoryEntry, MemoryStore
from vatic.template.parser import Tag

if TYPE_CHECKING:
    from vatic.providers.base import AgentBackend

LoopValue = Union[int, MemoryEntry]

DATE_FORMAT = "%Y-%m-%d"
DATETIME_FORMAT = "%Y-%m-%d %H:%M"
DURATION_UNITS = {"d": "days", "h": "hours", "m": "minutes"}


@dataclass(frozen=True)
class RenderContext:
    """
    Everything a template may read, captured once per run.

    ``snapshot`` pins the memory store: entries appended after the context
    was captured are invisible to ``memory`` tags and ``memories`` loops.
    """

    now: datetime = field(default_factory=lambda: datetime.now().astimezone())
    alias: str | None = None
    dictionary: Dictionary = field(default_factory=Dictionary)
    secrets: SecretsResolver = field(default_factory=SecretsResolver)
    store: MemoryStore | None = None
    snapshot: int | None = None
    message: InboundMessage | None = None
    result: str | None = None
    agent: "AgentBackend | None" = None
    loop_vars: dict[str, LoopValue] = field(default_factory=dict)

    @classmethod
    def capture(
        cls,
        *,
        alias: str,
        dictionary: Dictionary,
        secrets: SecretsResolver,
        store: MemoryStore | None = None,
        agent: "AgentBackend | None" = None,
        message: InboundMessage | None = None,
        now: datetime | None = None,
    ) -> "RenderContext":
        return cls(
            now=now or datetime.now().astimezone(),
            alias=alias,
            dictionary=dictionary,
            secrets=secrets,
            store=store,
            snapshot=store.last_sequence(alias) if store else None,
            message=message,
            agent=agent,
        )

    def with_result(self, result: str) -> "RenderContext":
        return replace(self, result=result)

    def with_loop_var(self, name: str, value: LoopValue) -> "RenderContext":
        return replace(self, loop_vars={**self.loop_vars, name: value})

    def memories(self, limit: int | None) -> list[MemoryEntry]:
        if self.store is None or self.alias is None:
            return []
        return self.store.recent(self.alias, limit, upto=self.snapshot)


def resolve_tag(tag: Tag, ctx: RenderContext) -> str:
    """Resolve one tag to text. Pipes are applied by the renderer."""
    name = tag.name

    if name.startswith("custom:"):
        return _resolve_custom(_unquote(name[len("custom:"):]), ctx)
    if name.startswith("proxy:"):
        return _resolve_proxy(_unquote(name[len("proxy:"):]), ctx)
    if "." in name:
        var, _, attr = name.partition(".")
        return _resolve_loop_field(var, attr, ctx)

    handler = TAGS.get(name)
    if handler is not None:
        return handler(tag, ctx)

    if name in ctx.loop_vars:
        value = ctx.loop_vars[name]
        return value.result if isinstance(value, MemoryEntry) else str(value)

    raise RenderError(f"unknown tag '{name}'")


def _date(tag: Tag, ctx: RenderContext) -> str:
    return (ctx.now + _offset(tag, ctx)).strftime(DATE_FORMAT)


def _datetime(tag: Tag, ctx: RenderContext) -> str:
    return (ctx.now + _offset(tag, ctx)).strftime(DATETIME_FORMAT)


def _datetimeiso(tag: Tag, ctx: RenderContext) -> str:
    return (ctx.now + _offset(tag, ctx)).astimezone().isoformat(timespec="seconds")


def _result(tag: Tag, ctx: RenderContext) -> str:
    if ctx.result is None:
        raise UndefinedVariable("'result' is only defined in output and history templates")
    return ctx.result


def _message(tag: Tag, ctx: RenderContext) -> str:
    if ctx.message is None:
        raise UndefinedVariable("'message' is only defined for channel-triggered runs")
    return ctx.message.text


def _sender(tag: Tag, ctx: RenderContext) -> str:
    if ctx.message is None:
        raise UndefinedVariable("'sender' is only defined for channel-triggered runs")
    return ctx.message.sender


def _memory(tag: Tag, ctx: RenderContext) -> str:
    n = 0
    if "minus" in tag.params:
        raw = resolve_param(tag.params["minus"], ctx)
        try:
            n = int(raw)
        except ValueError:
            raise RenderError(f"invalid memory offset '{raw}'") from None
        if n < 0:
            raise RenderError(f"invalid memory offset '{raw}'")
    if ctx.store is None or ctx.alias is None:
        raise UndefinedVariable("'memory' needs a job memory store")
    entry = ctx.store.nth_from_end(ctx.alias, n, upto=ctx.snapshot)
    if entry is None:
        raise UndefinedVariable(f"no memory entry {n} runs back for '{ctx.alias}'")
    return entry.result


TAGS: dict[str, Callable[[Tag, RenderContext], str]] = {
    "date": _date,
    "datetime": _datetime,
    "datetimeiso": _datetimeiso,
    "result": _result,
    "message": _message,
    "sender": _sender,
    "memory": _memory,
}


def _resolve_custom(key: str, ctx: RenderContext) -> str:
    value = ctx.dictionary.get(key)
    if value is None:
        raise UndefinedVariable(f"unknown dictionary key 'custom:{key}'")
    return value


def _resolve_proxy(name: str, ctx: RenderContext) -> str:
    try:
        return ctx.secrets.resolve(name)
    except SecretNotFound as e:
        raise UndefinedVariable(f"unknown secret for 'proxy:{name}'") from e


def _resolve_loop_field(var: str, attr: str, ctx: RenderContext) -> str:
    if var not in ctx.loop_vars:
        raise UndefinedVariable(f"unknown loop variable '{var}'")
    value = ctx.loop_vars[var]
    if not isinstance(value, MemoryEntry):
        raise RenderError(f"index variable '{var}' has no field '{attr}'")
    if attr == "date":
        return value.created_at.strftime(DATE_FORMAT)
    if attr == "datetime":
        return value.created_at.strftime(DATETIME_FORMAT)
    if attr == "result":
        return value.result
    if attr == "summary":
        return value.summary or ""
    raise RenderError(f"memory entry has no field '{attr}'")


def resolve_param(raw: str, ctx: RenderContext) -> str:
    """
    Resolve a tag parameter value.

    ``"1d"`` and ``1d`` are literals. ``i"d"`` prefixes the quoted suffix
    with the value of the integer loop variable ``i``.
    """
    if '"' not in raw:
        return raw
    head, _, rest = raw.partition('"')
    suffix = rest.rstrip('"')
    if not head:
        return suffix
    if head not in ctx.loop_vars:
        raise UndefinedVariable(f"unknown loop variable '{head}' in '{raw}'")
    value = ctx.loop_vars[head]
    if isinstance(value, MemoryEntry):
        raise RenderError(f"loop variable '{head}' is not an index, cannot interpolate")
    return f"{value}{suffix}"


def parse_duration(text: str) -> timedelta:
    """``1d``, ``2h`` or ``30m``."""
    if len(text) < 2 or text[-1] not in DURATION_UNITS:
        raise RenderError(f"invalid duration '{text}' (expected <n>d, <n>h or <n>m)")
    try:
        amount = int(text[:-1])
    except ValueError:
        raise RenderError(f"invalid duration number in '{text}'") from None
    return timedelta(**{DURATION_UNITS[text[-1]]: amount})


def _offset(tag: Tag, ctx: RenderContext) -> timedelta:
    total = timedelta()
    if "minus" in tag.params:
        total -= parse_duration(resolve_param(tag.params["minus"], ctx))
    if "plus" in tag.params:
        total += parse_duration(resolve_param(tag.params["plus"], ctx))
    return total


def _unquote(text: str) -> str:
    if len(text) >= 2 and text[0] == text[-1] == '"':
        return text[1:-1]
    return text
