# Overview: Fire-and-forget success/failure reporting for operator actions.

"""
Notification sink

WHY: The admin surface shows a toast for each completed or rejected action.
The operations core reports outcomes here and never waits on, retries, or
fails because of a sink.

Sinks are plain callables taking (kind, message, success, context).
Rejected operations report through report_failures(): the sink gets
success=False with the error class name and its details in the context.
"""

from __future__ import annotations

from functools import wraps
from typing import Callable

from flask import current_app

from .errors import FulfillmentError


Sink = Callable[[str, str, bool, dict], None]

_sinks: list[Sink] = []


def register_sink(sink: Sink) -> None:
    if sink not in _sinks:
        _sinks.append(sink)


def unregister_sink(sink: Sink) -> None:
    if sink in _sinks:
        _sinks.remove(sink)


def notify(kind: str, message: str, *, success: bool = True, **context) -> None:
    """Report an outcome to every registered sink. Sink errors are logged only."""
    current_app.logger.info("notify kind=%s success=%s %s", kind, success, message)
    for sink in list(_sinks):
        try:
            sink(kind, message, success, context)
        except Exception:
            current_app.logger.exception("Notification sink failed for %s", kind)


def report_failures(kind: str):
    """
    Decorator for service operations: a FulfillmentError is reported to the
    sinks as a failed `kind` notification, then re-raised unchanged.
    """
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except FulfillmentError as e:
                notify(
                    kind,
                    str(e),
                    success=False,
                    error=type(e).__name__,
                    details=dict(e.details),
                )
                raise
        return wrapper
    return decorator
