"""Interface for Vector BLE communication."""

from abc import ABC, abstractmethod
from collections.abc import Callable, MutableMapping

from .models import CachedSession


class VectorBLEInterface(ABC):
    """Abstract base class for Vector BLE transports.

    Transports move opaque frames; they know nothing about encryption or
    message contents.
    """

    @abstractmethod
    async def connect(self, address: str) -> bool:
        """Connect to the robot.

        Args:
            address: The MAC address or platform identifier of the robot.

        Returns:
            True if connection was successful, False otherwise.
        """

    @abstractmethod
    async def disconnect(self) -> None:
        """Disconnect from the robot."""

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Check if currently connected to the robot."""

    @property
    @abstractmethod
    def sessions(self) -> MutableMapping[str, CachedSession]:
        """In-memory session cache keyed by the hex robot public key."""

    @abstractmethod
    def send(self, data: bytes) -> None:
        """Queue a frame for delivery to the robot.

        Args:
            data: The frame bytes.
        """

    @abstractmethod
    def try_disconnect(self) -> None:
        """Request a disconnect without waiting for it."""

    @abstractmethod
    def on_receive(self, handler: Callable[[bytes], None]) -> None:
        """Register a handler for complete frames from the robot.

        Args:
            handler: A function that takes the frame bytes.
        """

    @abstractmethod
    def on_receive_unsubscribe(self, handler: Callable[[bytes], None]) -> None:
        """Remove a handler registered with on_receive."""
