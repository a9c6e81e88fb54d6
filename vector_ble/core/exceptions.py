"""Exceptions raised by the Vector BLE protocol engine."""

from __future__ import annotations

from typing import Any


class VectorBleError(Exception):
    """Base class for all protocol engine errors."""


class MessageDecodeError(VectorBleError):
    """A frame could not be decoded into a message."""


class HandshakeError(VectorBleError):
    """An operation was attempted in the wrong handshake state."""


class HandshakeCancelled(HandshakeError):
    """The connection was cancelled before it was authenticated."""


class AuthenticationFailure(VectorBleError):
    """An incoming frame failed AEAD authentication."""


class ConnectionClosed(VectorBleError):
    """The connection was cleaned up while a request was pending."""


class RequestRejected(VectorBleError):
    """The robot answered a request with a failure."""

    def __init__(self, name: str, response: Any = None, message: str | None = None) -> None:
        self.name = name
        self.response = response
        super().__init__(message or f"Request '{name}' was rejected: {response!r}")


class TransferError(RequestRejected):
    """A log transfer could not be started."""

    def __init__(self, exit_code: int, response: Any = None) -> None:
        self.exit_code = exit_code
        super().__init__(
            "logs", response, f"Log transfer refused with exit code {exit_code}"
        )
