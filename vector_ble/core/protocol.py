from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from .messages import RtsMessage

_LOGGER = logging.getLogger(__name__)


class MessageDispatcher:
    """Routes decoded RTS messages to the handler registered for their type."""

    def __init__(self) -> None:
        """Initialize an empty routing table."""
        self._routes: dict[type[RtsMessage], tuple[Callable[[Any], None], bool]] = {}

    def register(
        self,
        message_type: type[RtsMessage],
        handler: Callable[[Any], None],
        *,
        requires_encryption: bool = False,
    ) -> None:
        """Route a message type to a handler.

        Args:
            message_type: The RtsMessage subclass to route.
            handler: Called with the decoded message.
            requires_encryption: Drop the message unless it arrived over the
                encrypted channel.
        """
        self._routes[message_type] = (handler, requires_encryption)

    def dispatch(self, message: RtsMessage, encrypted: bool) -> bool:
        """Deliver a message to its handler.

        Args:
            message: The decoded message.
            encrypted: Whether the frame was received encrypted.

        Returns:
            True if a handler consumed the message.
        """
        route = self._routes.get(type(message))
        if route is None:
            _LOGGER.debug("No handler for %s, dropping", type(message).__name__)
            return False

        handler, requires_encryption = route
        if requires_encryption and not encrypted:
            _LOGGER.warning(
                "Dropping %s received before encryption", type(message).__name__
            )
            return False

        _LOGGER.debug("Dispatching %s", type(message).__name__)
        handler(message)
        return True
