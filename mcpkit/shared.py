"""Definitions shared by clients and servers: metadata, middleware, keepalive."""

from __future__ import annotations

import contextlib
import threading
from datetime import timedelta
from typing import Any, Callable, Iterable, Protocol

LATEST_PROTOCOL_VERSION = "2025-06-18"

SUPPORTED_PROTOCOL_VERSIONS = (
    LATEST_PROTOCOL_VERSION,
    "2025-03-26",
    "2024-11-05",
)

CODE_RESOURCE_NOT_FOUND = -32002
# The method exists and was called properly, but the peer does not support it.
CODE_UNSUPPORTED_METHOD = -31001

PROGRESS_TOKEN_KEY = "progressToken"

# A method handler is called as handler(session, method, params) -> result.
MethodHandler = Callable[[Any, str, Any], Any]
Middleware = Callable[[MethodHandler], MethodHandler]


class Meta(dict):
    """Additional metadata for requests, responses and other values."""

    def get_progress_token(self) -> Any:
        """Return the progress token, or None if there is none."""
        return self.get(PROGRESS_TOKEN_KEY)

    def set_progress_token(self, token: int | str) -> None:
        """Set the progress token; it must be an int or a string."""
        if isinstance(token, bool) or not isinstance(token, (int, str)):
            raise TypeError(
                f"progress token {token!r} is of type {type(token).__name__}, not int or string"
            )
        self[PROGRESS_TOKEN_KEY] = token


def add_middleware(handler: MethodHandler, middleware: Iterable[Middleware]) -> MethodHandler:
    """Wrap ``handler`` in ``middleware``; the first middleware runs outermost."""
    for wrap in reversed(list(middleware)):
        handler = wrap(handler)
    return handler


class KeepaliveSession(Protocol):
    def ping(self, timeout: float) -> Any: ...

    def close(self) -> Any: ...


class Keepalive:
    """Pings a session periodically, closing it when a ping fails."""

    def __init__(self, session: KeepaliveSession, interval: float | timedelta) -> None:
        if isinstance(interval, timedelta):
            interval = interval.total_seconds()
        if interval <= 0:
            raise ValueError("keepalive interval must be positive")
        self._session = session
        self._interval = float(interval)
        self._stopped = threading.Event()
        self._thread = threading.Thread(target=self._run, name="keepalive", daemon=True)

    def _run(self) -> None:
        while not self._stopped.wait(self._interval):
            try:
                self._session.ping(timeout=self._interval / 2)
            except Exception:
                with contextlib.suppress(Exception):
                    self._session.close()
                return

    def cancel(self) -> None:
        """Stop sending pings."""
        self._stopped.set()


def start_keepalive(session: KeepaliveSession, interval: float | timedelta) -> Keepalive:
    """Start pinging ``session`` every ``interval`` seconds in the background.

    Each ping gets half the interval as its timeout. If a ping fails, the
    session is closed and pinging stops.
    """
    keepalive = Keepalive(session, interval)
    keepalive._thread.start()
    return keepalive