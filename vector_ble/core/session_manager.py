from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, MutableMapping
from enum import IntEnum

from ..const import DEFAULT_CONNECT_TIMEOUT_SECONDS
from .channel import EncryptedChannel
from .crypto import KeyPair, SessionKeys, derive_session_keys, generate_key_pair
from .exceptions import HandshakeError
from .messages import (
    RtsAck,
    RtsChallengeMessage,
    RtsChallengeSuccessMessage,
    RtsConnRequest,
    RtsConnResponse,
    RtsConnType,
    RtsMessage,
    RtsNonceMessage,
    RtsTag,
)
from .models import CachedSession, NonceState
from .session_store import SessionStore

_LOGGER = logging.getLogger(__name__)


class ConnectionState(IntEnum):
    """Handshake progress of a connection."""

    IDLE = 0
    CONNECTING = 1
    AWAITING_NONCE = 2
    AWAITING_PIN = 3
    AWAITING_CHALLENGE = 4
    AWAITING_CHALLENGE_SUCCESS = 5
    AUTHENTICATED = 6
    CANCELLED = 7


class HandshakeStateMachine:
    """Drives pairing and reconnection with a robot.

    First-time pairing generates an ephemeral key pair, waits for the user to
    type the PIN shown on the robot, derives keys from the key exchange and
    the PIN and finally answers the robot's challenge. Reconnection reuses
    stored keys and skips both the PIN and the challenge.
    """

    def __init__(
        self,
        send: Callable[[RtsMessage], None],
        channel: EncryptedChannel,
        store: SessionStore,
        session_cache: MutableMapping[str, CachedSession],
        *,
        on_ready_for_pin: Callable[[], None],
        on_authenticated: Callable[[], None],
        on_cancel: Callable[[], None],
        timeout: float = DEFAULT_CONNECT_TIMEOUT_SECONDS,
    ) -> None:
        """Initialize the handshake.

        Args:
            send: Sends a message over the connection.
            channel: The channel that receives keys and nonces.
            store: Persistent session store, consulted first.
            session_cache: In-memory session cache, consulted second.
            on_ready_for_pin: Called when the user must enter the PIN.
            on_authenticated: Called once the session is authenticated.
            on_cancel: Called when the handshake is cancelled.
            timeout: Seconds to wait for the nonce message when pairing.
        """
        self._send = send
        self._channel = channel
        self._store = store
        self._session_cache = session_cache
        self._on_ready_for_pin = on_ready_for_pin
        self._on_authenticated = on_authenticated
        self._on_cancel = on_cancel
        self._timeout = timeout
        self._timeout_handle: asyncio.TimerHandle | None = None

        self.state = ConnectionState.IDLE
        self.first_time_pair = True
        self.keys_authorized = False
        self.remote_identity: bytes | None = None
        self.key_pair: KeyPair | None = None
        self.session_keys: SessionKeys | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.state == ConnectionState.AUTHENTICATED

    def _lookup_session(self, remote: bytes) -> CachedSession | None:
        """Find keys from a previous session: persistent store first, then cache."""
        saved = self._store.get_session(remote)
        if saved is not None:
            key_pair = self._store.get_keys()
            if key_pair is not None:
                _LOGGER.debug("Found stored session for %s", remote.hex())
                return CachedSession(session_keys=saved, key_pair=key_pair)
            _LOGGER.warning("Stored session for %s has no local keys", remote.hex())

        cached = self._session_cache.get(remote.hex())
        if cached is not None:
            _LOGGER.debug("Found cached session for %s", remote.hex())
        return cached

    def on_conn_request(self, msg: RtsConnRequest) -> None:
        """Answer the robot's connection request."""
        if self.state != ConnectionState.IDLE:
            _LOGGER.warning("Ignoring connection request in state %s", self.state.name)
            return

        self.state = ConnectionState.CONNECTING
        self.remote_identity = msg.public_key

        previous = self._lookup_session(msg.public_key)
        if previous is not None:
            self.first_time_pair = False
            self.key_pair = previous.key_pair
            self.session_keys = previous.session_keys
            self._channel.install_keys(previous.session_keys)
            connection_type = RtsConnType.RECONNECTION
        else:
            self.first_time_pair = True
            self.key_pair = generate_key_pair()
            self._timeout_handle = asyncio.get_running_loop().call_later(
                self._timeout, self._on_timeout
            )
            connection_type = RtsConnType.FIRST_TIME_PAIR

        _LOGGER.info(
            "Connection request from %s, responding with %s",
            msg.public_key.hex(),
            connection_type.name,
        )
        self.state = ConnectionState.AWAITING_NONCE
        self._send(
            RtsConnResponse(
                connection_type=connection_type, public_key=self.key_pair.public_key
            )
        )

    def on_nonce_message(self, msg: RtsNonceMessage) -> None:
        """Install the nonces and either finish reconnecting or ask for the PIN."""
        if self.state != ConnectionState.AWAITING_NONCE:
            _LOGGER.warning("Ignoring nonce message in state %s", self.state.name)
            return

        self.cancel_timer()
        self._channel.install_nonces(
            NonceState(
                encrypt_nonce=msg.to_robot_nonce, decrypt_nonce=msg.to_device_nonce
            )
        )

        if not self.first_time_pair:
            # The ack itself still goes out in the clear
            self._send(RtsAck(rts_connection_tag=RtsTag.RTS_NONCE_MESSAGE))
            self._channel.activate()
            self._authorize()
            return

        self.state = ConnectionState.AWAITING_PIN
        _LOGGER.info("Waiting for PIN entry")
        self._on_ready_for_pin()

    def enter_pin(self, pin: str) -> None:
        """Derive the session keys from the PIN shown on the robot.

        Args:
            pin: The PIN typed by the user.

        Raises:
            HandshakeError: If the robot is not waiting for a PIN.
        """
        if self.state != ConnectionState.AWAITING_PIN:
            raise HandshakeError(f"Not waiting for a PIN (state {self.state.name})")
        assert self.key_pair is not None and self.remote_identity is not None

        self.session_keys = derive_session_keys(self.key_pair, self.remote_identity, pin)
        self._channel.install_keys(self.session_keys)
        self._send(RtsAck(rts_connection_tag=RtsTag.RTS_NONCE_MESSAGE))
        self._channel.activate()
        self.state = ConnectionState.AWAITING_CHALLENGE

    def on_challenge_message(self, msg: RtsChallengeMessage) -> None:
        """Prove we can decrypt by answering with the challenge plus one."""
        if not self._channel.encrypted:
            _LOGGER.warning("Ignoring challenge before encryption")
            return

        self._send(RtsChallengeMessage(number=(msg.number + 1) & 0xFFFFFFFF))
        if self.state == ConnectionState.AWAITING_CHALLENGE:
            self.state = ConnectionState.AWAITING_CHALLENGE_SUCCESS

    def on_challenge_success_message(self, msg: RtsChallengeSuccessMessage) -> None:
        """Mark the keys as authorized by the robot."""
        if self.state != ConnectionState.AWAITING_CHALLENGE_SUCCESS:
            _LOGGER.debug("Ignoring challenge success in state %s", self.state.name)
            return
        self._authorize()

    def _authorize(self) -> None:
        assert self.remote_identity is not None
        assert self.key_pair is not None and self.session_keys is not None

        self.keys_authorized = True
        self.state = ConnectionState.AUTHENTICATED
        self._session_cache[self.remote_identity.hex()] = CachedSession(
            session_keys=self.session_keys, key_pair=self.key_pair
        )
        _LOGGER.info("Session with %s authenticated", self.remote_identity.hex())
        self._on_authenticated()

    def abort(self, reason: str) -> None:
        """Cancel the handshake (timeout or robot-initiated)."""
        if self.state == ConnectionState.CANCELLED:
            return

        _LOGGER.warning("Cancelling connection: %s", reason)
        self.cancel_timer()
        self.state = ConnectionState.CANCELLED
        self._on_cancel()

    def invalidate(self) -> None:
        """Drop out of the authenticated state after the keys were rejected.

        Unlike abort, the owner is not notified; it already handles the failure.
        """
        self.cancel_timer()
        self.state = ConnectionState.CANCELLED

    def _on_timeout(self) -> None:
        self._timeout_handle = None
        self.abort(f"no nonce message within {self._timeout:.1f}s")

    def cancel_timer(self) -> None:
        """Stop waiting for the nonce message."""
        if self._timeout_handle is not None:
            self._timeout_handle.cancel()
            self._timeout_handle = None
