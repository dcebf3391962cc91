import pytest

from mcpkit.streamable import (
    DEFAULT_RECONNECT_OPTIONS,
    ReconnectOptions,
    calculate_reconnect_delay,
    check_accept,
    format_event_id,
    is_resumable,
    parse_event_id,
)


@pytest.mark.parametrize(
    "sid, idx", [(0, 0), (0, 1), (1, 0), (1, 1), (1234, 5678)]
)
def test_event_id_round_trip(sid, idx):
    event_id = format_event_id(sid, idx)
    assert parse_event_id(event_id) == (sid, idx)


def test_format_event_id_value():
    assert format_event_id(1234, 5678) == "1234_5678"


@pytest.mark.parametrize(
    "event_id", ["", "_", "1_", "_1", "a_1", "1_a", "-1_1", "1_-1", "1_2_3", " 1_2"]
)
def test_parse_event_id_invalid(event_id):
    with pytest.raises(ValueError):
        parse_event_id(event_id)


def test_parse_event_id_out_of_range():
    with pytest.raises(ValueError):
        parse_event_id(f"{2**63}_0")


def test_default_reconnect_options():
    assert DEFAULT_RECONNECT_OPTIONS == ReconnectOptions(
        max_retries=5, grow_factor=1.5, initial_delay=1.0, max_delay=30.0
    )


def test_reconnect_options_rejects_shrinking_factor():
    with pytest.raises(ValueError):
        ReconnectOptions(max_retries=3, grow_factor=0.5)


@pytest.mark.parametrize("attempt, backoff", [(0, 1.0), (1, 1.5), (2, 2.25)])
def test_reconnect_delay_bounds(attempt, backoff):
    for _ in range(50):
        delay = calculate_reconnect_delay(DEFAULT_RECONNECT_OPTIONS, attempt)
        assert backoff <= delay < 2 * backoff


def test_reconnect_delay_capped():
    opts = ReconnectOptions(max_retries=5, grow_factor=2.0, initial_delay=1.0, max_delay=4.0)
    for _ in range(50):
        delay = calculate_reconnect_delay(opts, 10)
        assert 4.0 <= delay < 8.0


def test_reconnect_delay_zero_raises():
    opts = ReconnectOptions(max_retries=0, initial_delay=0.0)
    with pytest.raises(ValueError):
        calculate_reconnect_delay(opts, 0)


@pytest.mark.parametrize(
    "status, content_type, want",
    [
        (200, "text/event-stream", True),
        (200, "text/event-stream; charset=utf-8", True),
        (405, "text/event-stream", False),
        (200, "application/json", False),
        (200, "", False),
    ],
)
def test_is_resumable(status, content_type, want):
    assert is_resumable(status, content_type) is want


def test_check_accept_multiple_headers():
    assert check_accept("POST", ["text/plain", "application/json, text/event-stream"]) is None


def test_check_accept_get_needs_stream_only():
    assert check_accept("GET", ["text/event-stream"]) is None
    with pytest.raises(ValueError, match="GET"):
        check_accept("GET", ["application/json"])


@pytest.mark.parametrize("method", ["POST", "DELETE", "PUT"])
def test_check_accept_requires_both(method):
    with pytest.raises(ValueError, match="both"):
        check_accept(method, ["text/event-stream"])
    with pytest.raises(ValueError, match="both"):
        check_accept(method, [])