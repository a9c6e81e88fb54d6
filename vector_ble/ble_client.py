"""Bleak transport for talking to a Vector robot."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, MutableMapping
from enum import IntEnum
from typing import Any

from bleak import BleakClient
from bleak.exc import BleakError

from .const import (
    MAX_PACKET_SIZE,
    VECTOR_READ_CHAR_UUID,
    VECTOR_SERVICE_UUID,
    VECTOR_WRITE_CHAR_UUID,
)
from .core.ble_interface import VectorBLEInterface
from .core.messages import is_handshake_frame
from .core.models import CachedSession

_LOGGER = logging.getLogger(__name__)

MAX_PAYLOAD_SIZE = MAX_PACKET_SIZE - 1
SIZE_MASK = 0x3F


class Multipart(IntEnum):
    """Position of a packet within a message (top two header bits)."""

    CONTINUE = 0b00
    END = 0b01
    START = 0b10
    SOLO = 0b11


def _header(part: Multipart, size: int) -> int:
    return (part << 6) | (size & SIZE_MASK)


def split_packets(data: bytes) -> list[bytes]:
    """Split a message into BLE packets of at most MAX_PACKET_SIZE bytes.

    Args:
        data: The message bytes.

    Returns:
        The packets, each with a one byte header.
    """
    if len(data) <= MAX_PAYLOAD_SIZE:
        return [bytes([_header(Multipart.SOLO, len(data))]) + data]

    packets = []
    for offset in range(0, len(data), MAX_PAYLOAD_SIZE):
        chunk = data[offset : offset + MAX_PAYLOAD_SIZE]
        if offset == 0:
            part = Multipart.START
        elif offset + MAX_PAYLOAD_SIZE >= len(data):
            part = Multipart.END
        else:
            part = Multipart.CONTINUE
        packets.append(bytes([_header(part, len(chunk))]) + chunk)
    return packets


class PacketAssembler:
    """Joins BLE packets back into whole messages."""

    def __init__(self) -> None:
        self._buffer = bytearray()
        self._in_message = False

    def feed(self, packet: bytes) -> bytes | None:
        """Add one packet.

        Returns:
            The complete message once its last packet arrived, else None.
        """
        if not packet:
            return None

        part = Multipart(packet[0] >> 6)
        size = packet[0] & SIZE_MASK
        payload = bytes(packet[1 : 1 + size])

        if part == Multipart.SOLO:
            self._reset()
            return payload

        if part == Multipart.START:
            if self._in_message:
                _LOGGER.warning("Dropping incomplete message of %d bytes", len(self._buffer))
            self._buffer = bytearray(payload)
            self._in_message = True
            return None

        if not self._in_message:
            _LOGGER.warning("Dropping %s packet outside of a message", part.name)
            return None

        self._buffer += payload
        if part == Multipart.END:
            message = bytes(self._buffer)
            self._reset()
            return message
        return None

    def _reset(self) -> None:
        self._buffer = bytearray()
        self._in_message = False


class VectorBleakClient(VectorBLEInterface):
    """Concrete VectorBLEInterface using a direct bleak connection.

    The robot opens every connection with a 5-byte link handshake that the
    client echoes back; later frames are handed to the receive handlers.
    """

    def __init__(self) -> None:
        self._client: BleakClient | None = None
        self._address: str | None = None
        self._assembler = PacketAssembler()
        self._handlers: list[Callable[[bytes], None]] = []
        self._sessions: dict[str, CachedSession] = {}
        self._handshake_echoed = False
        self._write_queue: asyncio.Queue[bytes] = asyncio.Queue()
        self._writer_task: asyncio.Task[None] | None = None
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def is_connected(self) -> bool:
        return self._client is not None and self._client.is_connected

    @property
    def sessions(self) -> MutableMapping[str, CachedSession]:
        return self._sessions

    async def connect(self, address: str) -> bool:
        """Connect to the robot and subscribe to its read characteristic.

        Args:
            address: The MAC address or platform identifier of the robot.

        Returns:
            True if connection was successful, False otherwise.
        """
        self._address = address
        self._handshake_echoed = False
        self._assembler = PacketAssembler()
        _LOGGER.debug("Attempting to connect to Vector at %s", address)

        try:
            self._client = BleakClient(
                address,
                disconnected_callback=self._handle_disconnect,
                services=[VECTOR_SERVICE_UUID],
            )
            await self._client.connect()
            await self._client.start_notify(
                VECTOR_READ_CHAR_UUID, self._handle_notification
            )
        except BleakError as err:
            _LOGGER.error("Bleak error while connecting to Vector at %s: %s", address, err)
            self._client = None
            return False
        except asyncio.TimeoutError:
            _LOGGER.error("Timed out connecting to Vector at %s", address)
            self._client = None
            return False

        self._writer_task = asyncio.get_running_loop().create_task(self._writer())
        _LOGGER.info("Connected to Vector at %s", address)
        return True

    async def disconnect(self) -> None:
        """Disconnect from the robot."""
        if self._writer_task is not None:
            self._writer_task.cancel()
            self._writer_task = None

        if self._client:
            _LOGGER.debug("Disconnecting from Vector at %s", self._address)
            try:
                await self._client.disconnect()
            except BleakError as err:
                _LOGGER.warning("Error during disconnect: %s", err)
            finally:
                self._client = None

    def try_disconnect(self) -> None:
        task = asyncio.get_running_loop().create_task(self.disconnect())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def send(self, data: bytes) -> None:
        if not self.is_connected:
            _LOGGER.error("Cannot send: Not connected to robot")
            return
        self._write_queue.put_nowait(bytes(data))

    def on_receive(self, handler: Callable[[bytes], None]) -> None:
        self._handlers.append(handler)

    def on_receive_unsubscribe(self, handler: Callable[[bytes], None]) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    async def _writer(self) -> None:
        """Write queued messages packet by packet, one message at a time."""
        while True:
            data = await self._write_queue.get()
            client = self._client
            if client is None:
                continue
            try:
                for packet in split_packets(data):
                    await client.write_gatt_char(
                        VECTOR_WRITE_CHAR_UUID, packet, response=False
                    )
            except BleakError as err:
                _LOGGER.error("Error writing to Vector characteristic: %s", err)

    def _handle_notification(self, _: Any, data: bytearray) -> None:
        message = self._assembler.feed(bytes(data))
        if message is None:
            return

        _LOGGER.debug("Received message: %s", message.hex())
        if not self._handshake_echoed and is_handshake_frame(message):
            self._handshake_echoed = True
            self.send(message)
            return

        for handler in list(self._handlers):
            handler(message)

    def _handle_disconnect(self, _: BleakClient) -> None:
        _LOGGER.info("Vector at %s disconnected", self._address)
        if self._writer_task is not None:
            self._writer_task.cancel()
            self._writer_task = None
        self._client = None
