"""JSON-RPC messages and newline-delimited JSON transports."""

from __future__ import annotations

import dataclasses
import json
import sys
import threading
from typing import Any, Protocol, TextIO, Union

JSONRPC_VERSION = "2.0"


class ConnectionClosedError(ConnectionError):
    """Raised when sending on a connection that is closed or closing."""


class WireError(Exception):
    """A JSON-RPC error object, as carried by a response."""

    def __init__(self, code: int = 0, message: str = "", data: Any = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, WireError):
            return NotImplemented
        return (self.code, self.message, self.data) == (other.code, other.message, other.data)

    def __hash__(self) -> int:
        return hash((self.code, self.message))

    def __repr__(self) -> str:
        return f"WireError(code={self.code!r}, message={self.message!r}, data={self.data!r})"

    def to_json(self) -> dict[str, Any]:
        obj: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            obj["data"] = self.data
        return obj


MessageID = Union[int, str, None]


@dataclasses.dataclass
class Request:
    """A JSON-RPC call, or a notification when it has no id."""

    method: str
    params: Any = None
    id: MessageID = None

    def is_call(self) -> bool:
        """Report whether the request expects a response."""
        return self.id is not None


@dataclasses.dataclass
class Response:
    """A JSON-RPC response to the call with the same id."""

    id: MessageID
    result: Any = None
    error: WireError | None = None


Message = Union[Request, Response]


def _check_id(raw: Any) -> MessageID:
    if raw is None:
        return None
    if isinstance(raw, bool):
        raise ValueError(f"invalid message id {raw!r}")
    if isinstance(raw, int) or isinstance(raw, str):
        return raw
    if isinstance(raw, float) and raw.is_integer():
        return int(raw)
    raise ValueError(f"invalid message id {raw!r}")


def _message_from_obj(obj: Any) -> Message:
    if not isinstance(obj, dict):
        raise ValueError("JSON-RPC message must be an object")
    if obj.get("jsonrpc") != JSONRPC_VERSION:
        raise ValueError(
            f"invalid message version tag {obj.get('jsonrpc')!r}; expected {JSONRPC_VERSION!r}"
        )
    msg_id = _check_id(obj.get("id"))
    method = obj.get("method")
    if method:
        if not isinstance(method, str):
            raise ValueError(f"invalid method {method!r}")
        return Request(method=method, params=obj.get("params"), id=msg_id)
    if msg_id is None:
        raise ValueError("invalid request: response has no id")
    error = None
    raw_error = obj.get("error")
    if raw_error is not None:
        if not isinstance(raw_error, dict):
            raise ValueError("JSON-RPC error must be an object")
        error = WireError(
            code=raw_error.get("code", 0),
            message=raw_error.get("message", ""),
            data=raw_error.get("data"),
        )
    return Response(id=msg_id, result=obj.get("result"), error=error)


def _message_to_obj(msg: Message) -> dict[str, Any]:
    obj: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION}
    if isinstance(msg, Request):
        if msg.id is not None:
            obj["id"] = msg.id
        obj["method"] = msg.method
        if msg.params is not None:
            obj["params"] = msg.params
        return obj
    if isinstance(msg, Response):
        obj["id"] = msg.id
        if msg.error is not None:
            obj["error"] = msg.error.to_json()
        else:
            obj["result"] = msg.result
        return obj
    raise TypeError(f"cannot encode {type(msg).__name__} as a JSON-RPC message")


def _dumps(value: Any) -> bytes:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def _loads(data: str | bytes) -> Any:
    try:
        return json.loads(data)
    except json.JSONDecodeError as exc:
        raise ValueError(f"invalid JSON: {exc}") from exc


def decode_message(data: str | bytes) -> Message:
    """Decode a single JSON-RPC message."""
    return _message_from_obj(_loads(data))


def encode_message(msg: Message) -> bytes:
    """Encode a single JSON-RPC message as compact JSON."""
    return _dumps(_message_to_obj(msg))


def read_batch(data: str | bytes) -> tuple[list[Message], bool]:
    """Decode either one message or an array of messages.

    Returns the messages and whether the payload was a batch.
    """
    decoded = _loads(data)
    if isinstance(decoded, list):
        if not decoded:
            raise ValueError("empty batch")
        return [_message_from_obj(item) for item in decoded], True
    return [_message_from_obj(decoded)], False


def marshal_messages(msgs: list[Message]) -> bytes:
    """Encode messages as a JSON array."""
    try:
        objs = [_message_to_obj(msg) for msg in msgs]
    except TypeError as exc:
        raise ValueError(f"encoding batch message: {exc}") from exc
    return _dumps(objs)


class _Connection(Protocol):
    def read(self) -> Message: ...

    def write(self, msg: Message) -> None: ...

    def close(self) -> None: ...

    def session_id(self) -> str: ...


class _Transport(Protocol):
    def connect(self) -> _Connection: ...


@dataclasses.dataclass
class _MessageBatch:
    """Incoming calls of one batch and the responses collected for them."""

    unresolved: dict[Any, int] = dataclasses.field(default_factory=dict)
    responses: list[Response | None] = dataclasses.field(default_factory=list)


class IOConnection:
    """A connection exchanging newline-delimited JSON over binary streams.

    Incoming batches are answered with a single batch of responses once every
    call in them has been answered. With a positive ``batch_size``, outgoing
    requests and notifications are sent in batches of that size.
    """

    def __init__(self, reader: Any, writer: Any, batch_size: int = 0) -> None:
        self._reader = reader
        self._writer = writer
        self._batch_size = batch_size
        self._outgoing: list[Message] = []
        self._queue: list[Message] = []
        self._batch_lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._batches: dict[Any, _MessageBatch] = {}

    def session_id(self) -> str:
        return ""

    def _add_batch(self, batch: _MessageBatch) -> None:
        with self._batch_lock:
            for msg_id in batch.unresolved:
                if msg_id in self._batches:
                    raise ValueError(
                        f"invalid request: batch contains previously seen request {msg_id!r}"
                    )
            for msg_id in batch.unresolved:
                self._batches[msg_id] = batch

    def _update_batch(self, resp: Response) -> tuple[list[Response] | None, bool]:
        with self._batch_lock:
            batch = self._batches.pop(resp.id, None)
            if batch is None:
                return None, False
            index = batch.unresolved.pop(resp.id, None)
            if index is None:
                raise RuntimeError("internal error: inconsistent batches")
            batch.responses[index] = resp
            if not batch.unresolved:
                return [r for r in batch.responses if r is not None], True
            return None, True

    def _read_line(self) -> bytes:
        while True:
            line = self._reader.readline()
            if not line:
                raise EOFError("EOF")
            if isinstance(line, str):
                line = line.encode("utf-8")
            if line.strip():
                return line

    def read(self) -> Message:
        """Return the next incoming message; raise EOFError at end of stream."""
        if self._queue:
            return self._queue.pop(0)
        msgs, is_batch = read_batch(self._read_line())
        self._queue = msgs[1:]
        if is_batch:
            batch = _MessageBatch()
            for msg in msgs:
                if isinstance(msg, Request) and msg.is_call():
                    if msg.id in batch.unresolved:
                        self._queue = []
                        raise ValueError(f"duplicate message ID {msg.id!r}")
                    batch.unresolved[msg.id] = len(batch.responses)
                    batch.responses.append(None)
            if batch.unresolved:
                self._add_batch(batch)
        return msgs[0]

    def _send(self, data: bytes) -> None:
        with self._write_lock:
            self._writer.write(data + b"\n")
            flush = getattr(self._writer, "flush", None)
            if flush is not None:
                flush()

    def write(self, msg: Message) -> None:
        """Send a message, or hold it back until its batch is complete."""
        if isinstance(msg, Response):
            responses, in_batch = self._update_batch(msg)
            if in_batch:
                if responses:
                    self._send(marshal_messages(responses))
                return
        elif self._batch_size > 0:
            self._outgoing.append(msg)
            if len(self._outgoing) >= self._batch_size:
                pending, self._outgoing = self._outgoing, []
                self._send(marshal_messages(pending))
            return
        try:
            data = encode_message(msg)
        except TypeError as exc:
            raise ValueError(f"marshaling message: {exc}") from exc
        self._send(data)

    def close(self) -> None:
        """Close both underlying streams."""
        errors = []
        streams = [self._reader]
        if self._writer is not self._reader:
            streams.append(self._writer)
        for stream in streams:
            try:
                stream.close()
            except Exception as exc:
                errors.append(exc)
        if errors:
            raise errors[0]


class IOTransport:
    """A transport over a binary reader and writer, which may be one object."""

    def __init__(self, reader: Any, writer: Any = None) -> None:
        self._reader = reader
        self._writer = reader if writer is None else writer

    def connect(self) -> IOConnection:
        return IOConnection(self._reader, self._writer)


class StdioTransport(IOTransport):
    """A transport over the process's standard input and output."""

    def __init__(self) -> None:
        super().__init__(sys.stdin.buffer, sys.stdout.buffer)


class _Channel:
    """A one-directional in-memory byte stream."""

    def __init__(self) -> None:
        self._buf = bytearray()
        self._closed = False
        self._cond = threading.Condition()

    def write(self, data: bytes) -> int:
        with self._cond:
            if self._closed:
                raise ConnectionClosedError("write on closed pipe")
            self._buf += data
            self._cond.notify_all()
        return len(data)

    def readline(self) -> bytes:
        with self._cond:
            while b"\n" not in self._buf and not self._closed:
                self._cond.wait()
            end = self._buf.find(b"\n")
            end = len(self._buf) if end < 0 else end + 1
            line = bytes(self._buf[:end])
            del self._buf[:end]
            return line

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._cond.notify_all()


class _PipeEnd:
    """One end of a bidirectional in-memory pipe."""

    def __init__(self, inbound: _Channel, outbound: _Channel) -> None:
        self._inbound = inbound
        self._outbound = outbound

    def readline(self) -> bytes:
        return self._inbound.readline()

    def write(self, data: bytes) -> int:
        return self._outbound.write(data)

    def flush(self) -> None:
        pass

    def close(self) -> None:
        self._inbound.close()
        self._outbound.close()


class InMemoryTransport(IOTransport):
    """A transport over one end of an in-memory pipe."""


def new_in_memory_transports() -> tuple[InMemoryTransport, InMemoryTransport]:
    """Return two in-memory transports connected to each other."""
    a_to_b, b_to_a = _Channel(), _Channel()
    return (
        InMemoryTransport(_PipeEnd(b_to_a, a_to_b)),
        InMemoryTransport(_PipeEnd(a_to_b, b_to_a)),
    )


class LoggingConnection:
    """A connection that logs every message read or written."""

    def __init__(self, delegate: _Connection, log: TextIO) -> None:
        self._delegate = delegate
        self._log = log

    def session_id(self) -> str:
        return self._delegate.session_id()

    def _record(self, verb: str, msg: Message) -> None:
        try:
            text = encode_message(msg).decode("utf-8")
        except (TypeError, ValueError) as exc:
            self._log.write(f"LoggingTransport: failed to marshal: {exc}")
            text = ""
        self._log.write(f"{verb}: {text}\n")

    def read(self) -> Message:
        try:
            msg = self._delegate.read()
        except Exception as exc:
            self._log.write(f"read error: {exc}")
            raise
        self._record("read", msg)
        return msg

    def write(self, msg: Message) -> None:
        try:
            self._delegate.write(msg)
        except Exception as exc:
            self._log.write(f"write error: {exc}")
            raise
        self._record("write", msg)

    def close(self) -> None:
        self._delegate.close()


class LoggingTransport:
    """A transport that delegates to another, logging its messages."""

    def __init__(self, delegate: _Transport, log: TextIO) -> None:
        self._delegate = delegate
        self._log = log

    def connect(self) -> LoggingConnection:
        return LoggingConnection(self._delegate.connect(), self._log)