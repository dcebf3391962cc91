import io
import json

import pytest

from mcpkit.transport import (
    ConnectionClosedError,
    IOConnection,
    IOTransport,
    LoggingTransport,
    Request,
    Response,
    WireError,
    decode_message,
    encode_message,
    marshal_messages,
    new_in_memory_transports,
    read_batch,
)


def test_encode_request_pinned():
    assert encode_message(Request("test", id=1)) == b'{"jsonrpc":"2.0","id":1,"method":"test"}'


def test_encode_notification_omits_id():
    data = encode_message(Request("notifications/initialized", params={}))
    assert json.loads(data) == {"jsonrpc": "2.0", "method": "notifications/initialized", "params": {}}


@pytest.mark.parametrize(
    "msg",
    [
        Request("tools/call", params={"name": "greet"}, id=7),
        Request("notifications/progress", params={"progress": 1}),
        Response(id="abc", result={"ok": True}),
        Response(id=3, error=WireError(code=-32601, message="no such method")),
    ],
)
def test_message_round_trip(msg):
    assert decode_message(encode_message(msg)) == msg


def test_request_is_call():
    assert Request("ping", id=0).is_call() is True
    assert Request("notifications/initialized").is_call() is False


def test_decode_rejects_bad_version():
    with pytest.raises(ValueError, match="version"):
        decode_message('{"jsonrpc":"1.0","id":1,"method":"x"}')


def test_decode_rejects_response_without_id():
    with pytest.raises(ValueError):
        decode_message('{"jsonrpc":"2.0","result":1}')


def test_read_batch_single_and_array():
    msgs, is_batch = read_batch(b'{"jsonrpc":"2.0","id":1,"method":"a"}')
    assert (msgs, is_batch) == ([Request("a", id=1)], False)
    msgs, is_batch = read_batch(
        b'[{"jsonrpc":"2.0","id":1,"method":"a"},{"jsonrpc":"2.0","method":"b"}]'
    )
    assert (msgs, is_batch) == ([Request("a", id=1), Request("b")], True)


def test_read_batch_empty_is_error():
    with pytest.raises(ValueError, match="empty batch"):
        read_batch(b"[]")


def test_marshal_messages():
    data = marshal_messages([Request("a", id=1), Response(id=2, result=5)])
    assert json.loads(data) == [
        {"jsonrpc": "2.0", "id": 1, "method": "a"},
        {"jsonrpc": "2.0", "id": 2, "result": 5},
    ]


def test_batch_framing():
    out = io.BytesIO()
    conn = IOConnection(io.BytesIO(), out, batch_size=2)

    # The first write is held back until the batch is full.
    conn.write(Request("test", id=1))
    assert out.getvalue() == b""

    # The second write flushes both messages as one batch.
    conn.write(Request("test", id=2))
    wire = out.getvalue()
    assert wire.endswith(b"\n")

    reader = IOConnection(io.BytesIO(wire), io.BytesIO())
    first = reader.read()
    second = reader.read()
    assert [first.id, second.id] == [1, 2]


def _batch_conn(payload: bytes):
    out = io.BytesIO()
    return IOConnection(io.BytesIO(payload), out), out


def test_incoming_batch_answered_as_batch():
    payload = (
        b'[{"jsonrpc":"2.0","id":1,"method":"a"},'
        b'{"jsonrpc":"2.0","method":"n"},'
        b'{"jsonrpc":"2.0","id":2,"method":"b"}]\n'
    )
    conn, out = _batch_conn(payload)
    assert [conn.read() for _ in range(3)] == [
        Request("a", id=1),
        Request("n"),
        Request("b", id=2),
    ]
    conn.write(Response(id=2, result="two"))
    assert out.getvalue() == b""
    conn.write(Response(id=1, result="one"))
    assert json.loads(out.getvalue()) == [
        {"jsonrpc": "2.0", "id": 1, "result": "one"},
        {"jsonrpc": "2.0", "id": 2, "result": "two"},
    ]


def test_response_outside_batch_written_alone():
    conn, out = _batch_conn(b'{"jsonrpc":"2.0","id":9,"method":"a"}\n')
    assert conn.read() == Request("a", id=9)
    conn.write(Response(id=9, result=None))
    assert out.getvalue() == b'{"jsonrpc":"2.0","id":9,"result":null}\n'


def test_duplicate_id_in_batch():
    conn, _ = _batch_conn(
        b'[{"jsonrpc":"2.0","id":1,"method":"a"},{"jsonrpc":"2.0","id":1,"method":"b"}]\n'
    )
    with pytest.raises(ValueError, match="duplicate"):
        conn.read()


def test_previously_seen_id_across_batches():
    conn, _ = _batch_conn(
        b'[{"jsonrpc":"2.0","id":1,"method":"a"}]\n'
        b'[{"jsonrpc":"2.0","id":1,"method":"b"}]\n'
    )
    assert conn.read() == Request("a", id=1)
    with pytest.raises(ValueError, match="previously seen"):
        conn.read()


def test_read_at_end_of_stream():
    conn, _ = _batch_conn(b"\n")
    with pytest.raises(EOFError):
        conn.read()


def test_io_transport_session_id_is_empty():
    conn = IOTransport(io.BytesIO(), io.BytesIO()).connect()
    assert conn.session_id() == ""


def test_in_memory_transports_exchange_messages():
    left, right = new_in_memory_transports()
    a, b = left.connect(), right.connect()
    a.write(Request("ping", id=1))
    assert b.read() == Request("ping", id=1)
    b.write(Response(id=1, result={}))
    assert a.read() == Response(id=1, result={})


def test_in_memory_close_ends_both_sides():
    left, right = new_in_memory_transports()
    a, b = left.connect(), right.connect()
    a.close()
    with pytest.raises(EOFError):
        b.read()
    with pytest.raises(ConnectionClosedError):
        a.write(Request("ping", id=1))


def test_logging_transport_logs_messages():
    left, right = new_in_memory_transports()
    log = io.StringIO()
    a = LoggingTransport(left, log).connect()
    b = LoggingTransport(right, log).connect()
    a.write(Request("test", id=1))
    assert b.read() == Request("test", id=1)
    assert log.getvalue() == (
        'write: {"jsonrpc":"2.0","id":1,"method":"test"}\n'
        'read: {"jsonrpc":"2.0","id":1,"method":"test"}\n'
    )
    assert b.session_id() == ""


def test_logging_transport_logs_read_error():
    left, right = new_in_memory_transports()
    log = io.StringIO()
    b = LoggingTransport(right, log).connect()
    left.connect().close()
    with pytest.raises(EOFError):
        b.read()
    assert log.getvalue() == "read error: EOF"