from __future__ import annotations

import re
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

REQUEST_ID_HEADER = "X-Request-ID"
MAX_REQUEST_ID_LENGTH = 128
_REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9._:\-]+$")

_request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)


def generate_request_id() -> str:
    """Generate a random request id."""
    return uuid.uuid4().hex


def resolve_request_id(incoming: str | None) -> str:
    """Reuse a well-formed incoming id, otherwise generate one."""
    if incoming:
        candidate = incoming.strip()
        if len(candidate) <= MAX_REQUEST_ID_LENGTH and _REQUEST_ID_PATTERN.match(candidate):
            return candidate
    return generate_request_id()


def set_request_id(request_id: str | None) -> None:
    """Store request id in context (None to clear)."""
    _request_id_ctx.set(request_id)


def get_request_id() -> Optional[str]:
    """Return current request id if set."""
    return _request_id_ctx.get()


@contextmanager
def request_id_scope(request_id: str) -> Iterator[str]:
    token = _request_id_ctx.set(request_id)
    try:
        yield request_id
    finally:
        _request_id_ctx.reset(token)
