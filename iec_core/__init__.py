"""IEC 62056-21 Core - Protocol and connection handling."""

from .lrc import BlockCheck, compute_lrc
from .telegram import (
    FramerState,
    HandshakeReceived,
    Telegram,
    TelegramFramer,
    build_query,
)
from .connection import (
    ConnectionParams,
    ConnectionType,
    MeterConnection,
    TcpConnection,
    SerialConnection,
    TransportEvent,
    create_connection
)

__all__ = [
    "BlockCheck",
    "compute_lrc",
    "FramerState",
    "HandshakeReceived",
    "Telegram",
    "TelegramFramer",
    "build_query",
    "ConnectionParams",
    "ConnectionType",
    "MeterConnection",
    "TcpConnection",
    "SerialConnection",
    "TransportEvent",
    "create_connection",
]
