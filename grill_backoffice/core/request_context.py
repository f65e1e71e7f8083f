from __future__ import annotations

from contextvars import ContextVar


_REQUEST_ID_CTX: ContextVar[str | None] = ContextVar("request_id", default=None)
_EVENT_ID_CTX: ContextVar[str | None] = ContextVar("event_id", default=None)


def set_request_context(*, request_id: str | None = None, event_id: str | None = None) -> None:
    if request_id is not None:
        _REQUEST_ID_CTX.set(request_id)
    if event_id is not None:
        _EVENT_ID_CTX.set(event_id)


def get_request_id() -> str | None:
    return _REQUEST_ID_CTX.get()


def get_event_id() -> str | None:
    return _EVENT_ID_CTX.get()


def clear_request_context() -> None:
    _REQUEST_ID_CTX.set(None)
    _EVENT_ID_CTX.set(None)
