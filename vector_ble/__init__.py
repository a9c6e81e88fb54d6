"""Client for pairing with and configuring Vector robots over BLE."""

from __future__ import annotations

from .ble_client import VectorBleakClient
from .config import VectorBleConfig
from .core.connection import VectorConnection
from .core.exceptions import (
    AuthenticationFailure,
    ConnectionClosed,
    HandshakeCancelled,
    HandshakeError,
    MessageDecodeError,
    RequestRejected,
    TransferError,
    VectorBleError,
)
from .core.pending import TIMED_OUT
from .core.session_manager import ConnectionState
from .core.session_store import FileSessionStore, InMemorySessionStore, SessionStore

__version__ = "0.1.0"

__all__ = [
    "TIMED_OUT",
    "AuthenticationFailure",
    "ConnectionClosed",
    "ConnectionState",
    "FileSessionStore",
    "HandshakeCancelled",
    "HandshakeError",
    "InMemorySessionStore",
    "MessageDecodeError",
    "RequestRejected",
    "SessionStore",
    "TransferError",
    "VectorBleConfig",
    "VectorBleError",
    "VectorBleakClient",
    "VectorConnection",
]
