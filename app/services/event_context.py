"""Per-event logging context.

While the engine processes one event, every log line it emits (ledger,
streak, badges, certificate) should say WHICH event it belongs to.  The
worker may process events for many users concurrently on the same event
loop, so the identifiers live in ContextVars: each asyncio task sees its
own values, and nothing has to be threaded through every call.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar

CONTEXT_FIELDS = ("event_id", "user_id", "course_id", "event_kind")

_vars: dict[str, ContextVar[str]] = {
    name: ContextVar(name, default="-") for name in CONTEXT_FIELDS
}


@contextmanager
def event_context(**fields: str | None) -> Iterator[None]:
    """Bind context fields for the duration of a ``with`` block.

    Unknown field names raise ``KeyError``; ``None`` values are skipped.
    """
    tokens = []
    try:
        for name, value in fields.items():
            if value is None:
                continue
            tokens.append((_vars[name], _vars[name].set(str(value))))
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


def current_context() -> dict[str, str]:
    return {name: var.get() for name, var in _vars.items()}


class EventContextFilter(logging.Filter):
    """Copies the current event context onto every LogRecord.

    A filter (not a formatter) because formatters can only read fields
    that already exist on the record.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        for name, var in _vars.items():
            if getattr(record, name, None) is None:
                setattr(record, name, var.get())
        return True
