"""Pieces of the streamable HTTP transport: event IDs, Accept checks and reconnect backoff."""

from __future__ import annotations

import dataclasses
import random
import re
from typing import Iterable

PROTOCOL_VERSION_HEADER = "Mcp-Protocol-Version"
SESSION_ID_HEADER = "Mcp-Session-Id"

EVENT_STREAM = "text/event-stream"
APPLICATION_JSON = "application/json"

_METHOD_NOT_ALLOWED = 405
_MAX_INT64 = 2**63 - 1
_DECIMAL = re.compile(r"[+-]?[0-9]+")


@dataclasses.dataclass(frozen=True)
class ReconnectOptions:
    """Parameters for client reconnect attempts.

    Delays are in seconds. A ``max_retries`` of 0 or less means never retry.
    """

    max_retries: int = 5
    grow_factor: float = 1.5
    initial_delay: float = 1.0
    max_delay: float = 30.0

    def __post_init__(self) -> None:
        if self.max_retries > 0 and self.grow_factor < 1.0:
            raise ValueError("grow_factor must be at least 1.0 when retrying")


DEFAULT_RECONNECT_OPTIONS = ReconnectOptions()


def format_event_id(stream_id: int, index: int) -> str:
    """Return the event ID for message ``index`` of logical stream ``stream_id``."""
    return f"{stream_id}_{index}"


def _parse_nonnegative(text: str) -> int:
    if not _DECIMAL.fullmatch(text):
        raise ValueError(f"invalid number {text!r}")
    value = int(text)
    if value < 0 or value > _MAX_INT64:
        raise ValueError(f"number {text!r} out of range")
    return value


def parse_event_id(event_id: str) -> tuple[int, int]:
    """Split an event ID into its stream ID and message index.

    Raises ValueError if the ID is malformed.
    """
    parts = event_id.split("_")
    if len(parts) != 2:
        raise ValueError(f"malformed event ID {event_id!r}")
    try:
        return _parse_nonnegative(parts[0]), _parse_nonnegative(parts[1])
    except ValueError as exc:
        raise ValueError(f"malformed event ID {event_id!r}") from exc


def calculate_reconnect_delay(options: ReconnectOptions, attempt: int) -> float:
    """Return the delay in seconds before reconnect ``attempt``.

    The delay grows exponentially, is capped at ``max_delay``, and has full
    jitter added: the result lies in ``[backoff, 2 * backoff)``.
    """
    backoff = min(options.initial_delay * options.grow_factor**attempt, options.max_delay)
    if backoff <= 0:
        raise ValueError("reconnect delay must be positive")
    return backoff + random.random() * backoff


def is_resumable(status_code: int, content_type: str) -> bool:
    """Report whether a response is an SSE stream that can be resumed."""
    if status_code == _METHOD_NOT_ALLOWED:
        return False
    return EVENT_STREAM in (content_type or "")


def check_accept(method: str, accept_values: Iterable[str]) -> None:
    """Check the Accept header values of a request to a streamable endpoint.

    GET requests must accept event streams; all other requests must accept
    both JSON and event streams. Raises ValueError otherwise.
    """
    json_ok = stream_ok = False
    for item in ",".join(accept_values).split(","):
        kind = item.strip()
        if kind == APPLICATION_JSON:
            json_ok = True
        elif kind == EVENT_STREAM:
            stream_ok = True
    if method == "GET":
        if not stream_ok:
            raise ValueError("Accept must contain 'text/event-stream' for GET requests")
    elif not (json_ok and stream_ok):
        raise ValueError(
            "Accept must contain both 'application/json' and 'text/event-stream'"
        )