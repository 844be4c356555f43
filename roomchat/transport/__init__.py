"""Broker transport: STOMP frames and connections.

Connection classes are imported from their submodule lazily so that the
frame codec can be used by the broker without importing aiohttp.
"""

from roomchat.transport.frames import StompFrame, decode_frames, encode_frame

__all__ = [
    "StompFrame",
    "decode_frames",
    "encode_frame",
]


def __getattr__(name: str):
    """Lazy imports for connection classes."""
    _connection_names = {
        "TransportConnection", "StompWebSocketConnection", "InProcessConnection",
        "STOMP_SUBPROTOCOLS", "create_connection",
    }
    if name in _connection_names:
        from roomchat.transport import connection as _conn
        return getattr(_conn, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
