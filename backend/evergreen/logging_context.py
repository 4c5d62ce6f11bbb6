from __future__ import annotations

import logging
from contextlib import contextmanager
from contextvars import ContextVar, Token
from typing import Any, Iterator

import sentry_sdk

# Copied onto every log record; the JSON formatter drops the unset ones.
CONTEXT_FIELDS = ("request_id", "user_id", "stripe_event_id", "checkout_session_id")

_log_context: ContextVar[dict[str, Any]] = ContextVar("log_context", default={})


class RequestContextFilter(logging.Filter):
    """Copy request and billing context from ContextVars onto log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        context = _log_context.get({})
        for field in CONTEXT_FIELDS:
            if getattr(record, field, None) is None:
                setattr(record, field, context.get(field))
        return True


def push_request_context(request_id: str) -> Token:
    return _log_context.set({"request_id": request_id})


def pop_request_context(token: Token) -> None:
    _log_context.reset(token)


def set_user_context(user_id: str | None) -> None:
    context = _log_context.get({})
    if context:
        context["user_id"] = user_id
    else:  # middleware bypassed (tests, scripts)
        _log_context.set({"user_id": user_id})
    sentry_sdk.set_user({"id": user_id} if user_id else None)


@contextmanager
def bound_context(**fields: Any) -> Iterator[None]:
    """Layer extra fields over the current context for the duration of a block."""
    token = _log_context.set({**_log_context.get({}), **fields})
    for key, value in fields.items():
        if value is not None:
            sentry_sdk.set_tag(key, value)
    try:
        yield
    finally:
        _log_context.reset(token)


__all__ = [
    "CONTEXT_FIELDS",
    "RequestContextFilter",
    "bound_context",
    "pop_request_context",
    "push_request_context",
    "set_user_context",
]
