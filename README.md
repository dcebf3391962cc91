# mcpkit

Building blocks for Model Context Protocol (MCP) sessions in Python. It uses
only the standard library.

## Modules

### `mcpkit.util`

- `rand_text()` returns a random 26-character string over the base32 alphabet,
  suitable as a session identifier.
- `json_names(cls)` returns the JSON keys a dataclass marshals into. Fields whose
  names start with an underscore, and fields with `metadata={"json": "-"}`, are
  left out; `metadata={"json": "name,omitempty"}` renames a field and omits it
  when empty.
- `marshal_struct_with_map(obj, map_field)` encodes a dataclass as JSON, inlining
  the dict held in `map_field` as extra keys. A key that duplicates a field's
  JSON name raises `ValueError`.
- `unmarshal_struct_with_map(data, cls, map_field)` is the inverse: it builds a
  `cls` and collects unknown keys into `map_field`.

### `mcpkit.shared`

- `Meta` is a `dict` of metadata with `get_progress_token()` and
  `set_progress_token(token)`; the token must be an `int` or a `str`, otherwise
  `TypeError` is raised.
- `add_middleware(handler, middleware)` wraps a method handler so that the
  first middleware in the list runs outermost.
- `start_keepalive(session, interval)` pings a session (any object with
  `ping(timeout=...)` and `close()`) every `interval` seconds on a background
  thread, closing the session and stopping if a ping fails. It returns a
  `Keepalive` whose `cancel()` stops the pings.
- Constants: `LATEST_PROTOCOL_VERSION`, `SUPPORTED_PROTOCOL_VERSIONS`,
  `CODE_RESOURCE_NOT_FOUND`, `CODE_UNSUPPORTED_METHOD`.

### `mcpkit.transport`

- JSON-RPC 2.0 messages: `Request` (a notification when `id` is `None`;
  `is_call()` says whether it expects a response), `Response` and `WireError`.
- `encode_message`, `decode_message`, `read_batch` (one message or an array,
  returning `(messages, is_batch)`) and `marshal_messages`. Malformed input
  raises `ValueError`.
- `IOConnection` exchanges newline-delimited JSON over binary streams. Calls
  that arrive in a batch are answered with one batch of responses once all have
  been answered; with `batch_size > 0`, outgoing requests and notifications are
  held back and sent in batches of that size. `read()` raises `EOFError` at end
  of stream.
- Transports, each with `connect()`: `IOTransport`, `StdioTransport`,
  `InMemoryTransport` (a connected pair from `new_in_memory_transports()`) and
  `LoggingTransport`, whose `LoggingConnection` writes every message read or
  written to a text stream.
- `ConnectionClosedError` is raised when writing to a closed in-memory pipe.

### `mcpkit.streamable`

Helpers for the streamable HTTP transport:

- `format_event_id(stream_id, index)` and `parse_event_id(event_id)`; the
  latter raises `ValueError` for malformed IDs.
- `check_accept(method, accept_values)` raises `ValueError` unless a GET
  accepts `text/event-stream` and any other method accepts both
  `application/json` and `text/event-stream`.
- `ReconnectOptions` (`max_retries`, `grow_factor`, `initial_delay`,
  `max_delay`, delays in seconds) and `calculate_reconnect_delay(options,
  attempt)`, which gives an exponential, capped delay with full jitter.
- `is_resumable(status_code, content_type)`.

### `mcpkit.server_stream`

`StreamableServerTransport` holds the state of one server session: posted
messages (`accept_post`, `read`), logical streams (`open_stream`,
`release_stream`), outgoing messages queued per stream (`write`,
`take_outgoing`) and the calls still unanswered on each stream
(`outstanding`). Each stream being served has a `threading.Event` signal that
is set when messages are queued for it or when the session is closed.

## Example

```python
from mcpkit.transport import Request, new_in_memory_transports

left, right = new_in_memory_transports()
client = left.connect()
server = right.connect()

client.write(Request(method="ping", id=1))
msg = server.read()
assert msg.method == "ping" and msg.is_call()
```

Event IDs round-trip:

```python
from mcpkit.streamable import format_event_id, parse_event_id

assert parse_event_id(format_event_id(3, 7)) == (3, 7)
```

## What it does not do

mcpkit has no MCP client or server sessions, no tools, prompts or resources,
and no HTTP server or client. `StreamableServerTransport` keeps a session's
bookkeeping, but serving it over HTTP (writing SSE events, status codes,
headers) and reconnecting from the client side are left to the caller.

## Running the tests

```
pip install -e ".[test]"
pytest
```