"""Server-side session state for the streamable HTTP transport.

A session receives messages through POST requests. Outgoing messages are
queued by logical stream. Stream 0 collects messages that do not belong to
an incoming request; every POST gets a fresh stream that stays open until
each call it carried has been answered.
"""

from __future__ import annotations

import collections
import itertools
import threading
from typing import Any, Iterable

from .transport import (
    ConnectionClosedError,
    Message,
    Request,
    Response,
    encode_message,
    read_batch,
)
from .util import rand_text

DEFAULT_STREAM = 0


class StreamableServerTransport:
    """The server half of one streamable HTTP session.

    It is its own connection: ``read`` yields messages posted by the client,
    and ``write`` queues messages on the stream of the request they relate to.
    Each stream being served by an HTTP response has a signal, a
    ``threading.Event`` that is set when new messages are queued for it or
    when the session closes.
    """

    def __init__(self, session_id: str | None = None) -> None:
        self._id = rand_text() if session_id is None else session_id
        self._stream_ids = itertools.count(1)
        self._cond = threading.Condition()
        self._incoming: collections.deque[Message] = collections.deque()
        self._closed = False
        self._outgoing: dict[int, list[bytes]] = {}
        self._signals: dict[int, threading.Event] = {}
        self._request_streams: dict[Any, int] = {}
        self._stream_requests: dict[int, set[Any]] = {}

    def session_id(self) -> str:
        return self._id

    def connect(self) -> StreamableServerTransport:
        """Return the session's connection, which is the transport itself."""
        return self

    @property
    def closed(self) -> bool:
        """Whether the session has been closed."""
        with self._cond:
            return self._closed

    def accept_post(
        self, messages: bytes | str | Iterable[Message]
    ) -> tuple[int, threading.Event]:
        """Accept the messages of a POST request.

        ``messages`` is either the raw request body or decoded messages. A new
        logical stream is allocated for the response; the calls among the
        messages are recorded as outstanding on it, and every message is made
        available to ``read``. Returns the stream ID and its signal.
        """
        if isinstance(messages, (bytes, str)):
            if not messages:
                raise ValueError("POST requires a non-empty body")
            try:
                msgs, _ = read_batch(messages)
            except ValueError as exc:
                raise ValueError(f"malformed payload: {exc}") from exc
        else:
            msgs = list(messages)

        calls = {msg.id for msg in msgs if isinstance(msg, Request) and msg.is_call()}
        signal = threading.Event()
        with self._cond:
            stream_id = next(self._stream_ids)
            if calls:
                self._stream_requests[stream_id] = set(calls)
            for call_id in calls:
                self._request_streams[call_id] = stream_id
            self._signals[stream_id] = signal
            self._incoming.extend(msgs)
            self._cond.notify_all()
        return stream_id, signal

    def open_stream(self, stream_id: int = DEFAULT_STREAM) -> threading.Event:
        """Claim a stream for an HTTP response and return its signal.

        At most one response may serve a stream at a time; a second claim
        raises ValueError.
        """
        with self._cond:
            if stream_id in self._signals:
                raise ValueError("stream ID conflicts with ongoing stream")
            signal = threading.Event()
            if self._closed:
                signal.set()
            self._signals[stream_id] = signal
            return signal

    def release_stream(self, stream_id: int) -> None:
        """Give up the claim on a stream when its HTTP response ends."""
        with self._cond:
            self._signals.pop(stream_id, None)

    def take_outgoing(self, stream_id: int) -> list[bytes]:
        """Remove and return the encoded messages queued for a stream."""
        with self._cond:
            return self._outgoing.pop(stream_id, [])

    def outstanding(self, stream_id: int) -> int:
        """Return the number of unanswered calls that arrived on a stream."""
        with self._cond:
            return len(self._stream_requests.get(stream_id, ()))

    def read(self, timeout: float | None = None) -> Message:
        """Return the next message from the client.

        Raises EOFError once the session is closed and TimeoutError if no
        message arrives within ``timeout`` seconds.
        """
        with self._cond:
            ready = self._cond.wait_for(
                lambda: self._incoming or self._closed, timeout=timeout
            )
            if not ready:
                raise TimeoutError("no message received")
            if self._closed:
                raise EOFError("session is closed")
            return self._incoming.popleft()

    def write(self, msg: Message, for_request: Any = None) -> None:
        """Queue a message for the client.

        A response goes to the stream of the call it answers; another message
        goes to the stream of ``for_request``, the incoming call being handled
        when it was sent, if any. Messages for a stream with no outstanding
        calls go to the default stream.
        """
        reply_to = None
        if isinstance(msg, Response):
            for_request = reply_to = msg.id

        data = encode_message(msg)

        with self._cond:
            if self._closed:
                raise ConnectionClosedError("session is closed")
            stream_id = DEFAULT_STREAM
            if for_request is not None:
                stream_id = self._request_streams.get(for_request, DEFAULT_STREAM)
            if stream_id != DEFAULT_STREAM and stream_id not in self._stream_requests:
                # The stream is logically done; keep the message rather than drop it.
                stream_id = DEFAULT_STREAM

            self._outgoing.setdefault(stream_id, []).append(data)
            if reply_to is not None:
                pending = self._stream_requests.get(stream_id)
                if pending is not None:
                    pending.discard(reply_to)
                    if not pending:
                        del self._stream_requests[stream_id]

            signal = self._signals.get(stream_id)
            if signal is not None:
                signal.set()

    def close(self) -> None:
        """Close the session, waking readers and every open stream."""
        with self._cond:
            if self._closed:
                return
            self._closed = True
            self._cond.notify_all()
            for signal in self._signals.values():
                signal.set()