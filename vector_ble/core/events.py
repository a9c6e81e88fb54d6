"""Observer registration for connection events."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

_LOGGER = logging.getLogger(__name__)


class EventHook:
    """A list of callbacks invoked in registration order."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._handlers: list[Callable[..., Any]] = []

    def __len__(self) -> int:
        return len(self._handlers)

    def subscribe(self, handler: Callable[..., Any]) -> Callable[[], None]:
        """Register a callback.

        Returns:
            A function that removes the callback again.
        """
        self._handlers.append(handler)
        return lambda: self.unsubscribe(handler)

    def unsubscribe(self, handler: Callable[..., Any]) -> None:
        """Remove a callback; unknown callbacks are ignored."""
        if handler in self._handlers:
            self._handlers.remove(handler)

    def fire(self, *args: Any) -> None:
        """Invoke every subscriber with the given arguments."""
        for handler in list(self._handlers):
            try:
                handler(*args)
            except Exception:  # pylint: disable=broad-except
                _LOGGER.exception("Error in %s event handler", self.name)
