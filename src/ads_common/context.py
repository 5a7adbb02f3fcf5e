from __future__ import annotations

import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

_corr_id_ctx: ContextVar[str | None] = ContextVar("corr_id", default=None)


def new_corr_id() -> str:
    return uuid.uuid4().hex


def current_corr_id() -> str | None:
    """Correlation id of the tool call running in this task, if any."""
    return _corr_id_ctx.get()


@contextmanager
def corr_id_scope(corr_id: str | None = None) -> Iterator[str]:
    """Bind a correlation id for the duration of one routed call.

    Each asyncio task gets its own copy of the context, so concurrent calls
    never see each other's id.
    """
    cid = corr_id or new_corr_id()
    token = _corr_id_ctx.set(cid)
    try:
        yield cid
    finally:
        _corr_id_ctx.reset(token)
