"""Correlation of outgoing requests with the robot's single responses.

The RTS wire format carries no request id, so every call gets a local id and
a response is handed to the oldest pending request with the matching
operation name.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Final, TypeVar

_LOGGER = logging.getLogger(__name__)

_T = TypeVar("_T")


class _Sentinel(Enum):
    TIMED_OUT = "timed out"


TIMED_OUT: Final = _Sentinel.TIMED_OUT


@dataclass
class PendingRequest:
    """One outstanding request."""

    request_id: int
    name: str
    future: asyncio.Future[Any]


class RequestCorrelator:
    """Tracks outstanding requests by id, in issue order."""

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self._pending: dict[int, PendingRequest] = {}

    def _live(self) -> list[PendingRequest]:
        return [p for p in self._pending.values() if not p.future.done()]

    def __len__(self) -> int:
        return len(self._live())

    @property
    def awaiting(self) -> str | None:
        """Name of the most recently issued request that is still pending."""
        live = self._live()
        return live[-1].name if live else None

    def register(self, name: str) -> PendingRequest:
        """Create a pending slot for a request about to be sent.

        Args:
            name: The operation name, e.g. "wifi-scan".

        Returns:
            The pending request holding the future the caller awaits.
        """
        loop = asyncio.get_running_loop()
        pending = PendingRequest(
            request_id=next(self._ids), name=name, future=loop.create_future()
        )
        self._pending[pending.request_id] = pending
        # A caller that gives up (timeout, cancellation) frees its slot
        pending.future.add_done_callback(
            lambda _: self._pending.pop(pending.request_id, None)
        )
        _LOGGER.debug("Registered request %d (%s)", pending.request_id, name)
        return pending

    def discard(self, request_id: int) -> None:
        """Forget a request without notifying its caller."""
        pending = self._pending.pop(request_id, None)
        if pending is not None and not pending.future.done():
            pending.future.cancel()

    def _oldest(self, name: str) -> PendingRequest | None:
        for pending in self._live():
            if pending.name == name:
                return pending
        return None

    def resolve(self, name: str, result: Any) -> bool:
        """Complete the oldest pending request with this name.

        Returns:
            True if a request was resolved.
        """
        pending = self._oldest(name)
        if pending is None:
            _LOGGER.debug("No pending '%s' request for response", name)
            return False

        _LOGGER.debug("Resolving request %d (%s)", pending.request_id, name)
        self._pending.pop(pending.request_id, None)
        pending.future.set_result(result)
        return True

    def reject(self, name: str, error: BaseException) -> bool:
        """Fail the oldest pending request with this name.

        Returns:
            True if a request was rejected.
        """
        pending = self._oldest(name)
        if pending is None:
            _LOGGER.debug("No pending '%s' request for failure: %s", name, error)
            return False

        _LOGGER.debug(
            "Rejecting request %d (%s): %s", pending.request_id, name, error
        )
        self._pending.pop(pending.request_id, None)
        pending.future.set_exception(error)
        return True

    def reject_awaiting(self, error: BaseException) -> bool:
        """Fail the most recently issued pending request."""
        name = self.awaiting
        if name is None:
            _LOGGER.debug("Dropping failure with nothing pending: %s", error)
            return False
        return self.reject(name, error)

    def fail_all(self, error: BaseException) -> None:
        """Fail every outstanding request."""
        for pending in list(self._pending.values()):
            if not pending.future.done():
                pending.future.set_exception(error)
        self._pending.clear()


async def with_timeout(future: asyncio.Future[_T], timeout: float) -> _T | _Sentinel:
    """Race an already issued request against a deadline.

    Args:
        future: The pending result; it is cancelled if the deadline wins.
        timeout: Seconds before giving up.

    Returns:
        The operation's result, or TIMED_OUT if the deadline passed first.
        The late result of a timed-out operation is discarded.
    """
    try:
        return await asyncio.wait_for(future, timeout)
    except asyncio.TimeoutError:
        _LOGGER.warning("Request timed out after %.1fs", timeout)
        return TIMED_OUT
