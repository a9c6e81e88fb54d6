"""Shared fixtures: an in-process transport and a robot speaking the server side."""

from __future__ import annotations

from collections.abc import Callable, MutableMapping

import pytest

from vector_ble.config import VectorBleConfig
from vector_ble.core.ble_interface import VectorBLEInterface
from vector_ble.core.connection import VectorConnection
from vector_ble.core.crypto import (
    KeyPair,
    SessionKeys,
    aead_decrypt,
    aead_encrypt,
    derive_pin_key,
    generate_key_pair,
    increment_nonce,
    server_session_keys,
)
from vector_ble.core.messages import (
    RtsChallengeMessage,
    RtsChallengeSuccessMessage,
    RtsConnRequest,
    RtsMessage,
    RtsNonceMessage,
    decode_frame,
    encode_frame,
)
from vector_ble.core.models import CachedSession
from vector_ble.core.session_store import InMemorySessionStore

PIN = "123456"
TO_ROBOT_NONCE = bytes(range(24))
TO_DEVICE_NONCE = bytes(range(100, 124))


class FakeTransport(VectorBLEInterface):
    """Records sent frames and lets tests push frames to the handlers."""

    def __init__(self) -> None:
        self.sent: list[bytes] = []
        self.handlers: list[Callable[[bytes], None]] = []
        self.disconnect_requests = 0
        self._sessions: dict[str, CachedSession] = {}
        self._connected = True

    async def connect(self, address: str) -> bool:
        self._connected = True
        return True

    async def disconnect(self) -> None:
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def sessions(self) -> MutableMapping[str, CachedSession]:
        return self._sessions

    def send(self, data: bytes) -> None:
        self.sent.append(bytes(data))

    def try_disconnect(self) -> None:
        self.disconnect_requests += 1

    def on_receive(self, handler: Callable[[bytes], None]) -> None:
        self.handlers.append(handler)

    def on_receive_unsubscribe(self, handler: Callable[[bytes], None]) -> None:
        # Raises on a second removal
        self.handlers.remove(handler)

    def deliver(self, data: bytes) -> None:
        for handler in list(self.handlers):
            handler(data)


class CountingSessionStore(InMemorySessionStore):
    """In-memory store that counts deletions and saves."""

    def __init__(self) -> None:
        super().__init__()
        self.deleted: list[bytes] = []
        self.saves = 0

    def delete_session(self, peer_public_key: bytes) -> None:
        self.deleted.append(bytes(peer_public_key))
        super().delete_session(peer_public_key)

    def save(self) -> None:
        self.saves += 1


class FakeRobot:
    """Plays the robot's side of RTS v2 against a FakeTransport."""

    def __init__(self, transport: FakeTransport, pin: str = PIN) -> None:
        self.transport = transport
        self.pin = pin
        self.key_pair: KeyPair = generate_key_pair()
        self.session_keys: SessionKeys | None = None
        self._encrypt_nonce = TO_DEVICE_NONCE
        self._decrypt_nonce = TO_ROBOT_NONCE
        self._read_index = 0

    @property
    def public_key(self) -> bytes:
        return self.key_pair.public_key

    def derive_keys(self, client_public_key: bytes) -> None:
        rx, tx = server_session_keys(self.key_pair, client_public_key)
        self.session_keys = SessionKeys(
            encrypt=derive_pin_key(tx, self.pin), decrypt=derive_pin_key(rx, self.pin)
        )

    def adopt(self, client_keys: SessionKeys) -> None:
        self.session_keys = SessionKeys(
            encrypt=client_keys.decrypt, decrypt=client_keys.encrypt
        )

    def send_plain(self, msg: RtsMessage) -> None:
        self.transport.deliver(encode_frame(msg))

    def send_encrypted(self, msg: RtsMessage) -> None:
        assert self.session_keys is not None
        data = aead_encrypt(
            self.session_keys.encrypt, self._encrypt_nonce, encode_frame(msg)
        )
        self._encrypt_nonce = increment_nonce(self._encrypt_nonce)
        self.transport.deliver(data)

    def _next_frame(self) -> bytes:
        frame = self.transport.sent[self._read_index]
        self._read_index += 1
        return frame

    def read_plain(self) -> RtsMessage | None:
        return decode_frame(self._next_frame())

    def read_encrypted(self) -> RtsMessage | None:
        assert self.session_keys is not None
        plaintext = aead_decrypt(
            self.session_keys.decrypt, self._decrypt_nonce, self._next_frame()
        )
        self._decrypt_nonce = increment_nonce(self._decrypt_nonce)
        return decode_frame(plaintext)

    @property
    def unread(self) -> int:
        return len(self.transport.sent) - self._read_index

    def request_connection(self) -> RtsMessage | None:
        self.send_plain(RtsConnRequest(public_key=self.public_key))
        return self.read_plain()

    def send_nonces(self) -> None:
        self.send_plain(
            RtsNonceMessage(
                to_robot_nonce=TO_ROBOT_NONCE, to_device_nonce=TO_DEVICE_NONCE
            )
        )


def pair(robot: FakeRobot, connection: VectorConnection) -> None:
    """Run a complete first-time pairing; needs a running event loop."""
    response = robot.request_connection()
    robot.derive_keys(response.public_key)  # type: ignore[union-attr]
    robot.send_nonces()
    connection.enter_pin(robot.pin)
    robot.read_plain()  # ack
    robot.send_encrypted(RtsChallengeMessage(number=41))
    robot.read_encrypted()  # challenge reply
    robot.send_encrypted(RtsChallengeSuccessMessage())
    assert connection.is_authenticated


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def store() -> CountingSessionStore:
    return CountingSessionStore()


@pytest.fixture
def config() -> VectorBleConfig:
    return VectorBleConfig()


@pytest.fixture
def connection(
    transport: FakeTransport, store: CountingSessionStore, config: VectorBleConfig
) -> VectorConnection:
    return VectorConnection(transport, store, config)


@pytest.fixture
def robot(transport: FakeTransport) -> FakeRobot:
    return FakeRobot(transport)
