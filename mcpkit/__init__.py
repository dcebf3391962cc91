"""Building blocks for Model Context Protocol sessions: JSON-RPC messages, transports, middleware and streamable HTTP state."""

__version__ = "0.1.0"
__all__ = ["util", "shared", "transport", "streamable", "server_stream"]