from __future__ import annotations

import logging

from .crypto import SessionKeys, aead_decrypt, aead_encrypt, increment_nonce
from .exceptions import AuthenticationFailure, HandshakeError
from .models import NonceState

_LOGGER = logging.getLogger(__name__)


class EncryptedChannel:
    """Seals and opens frames once the handshake has installed keys and nonces."""

    def __init__(self) -> None:
        """Initialize an inactive channel."""
        self._session_keys: SessionKeys | None = None
        self._nonces: NonceState | None = None
        self.encrypted = False
        self.compromised = False

    @property
    def session_keys(self) -> SessionKeys | None:
        """The installed session keys."""
        return self._session_keys

    @property
    def nonces(self) -> NonceState | None:
        """A snapshot of the current nonce counters."""
        return self._nonces.model_copy() if self._nonces else None

    def install_keys(self, session_keys: SessionKeys) -> None:
        """Install the per-direction keys for this session."""
        self._session_keys = session_keys

    def install_nonces(self, nonces: NonceState) -> None:
        """Install the initial nonce counters received from the robot."""
        self._nonces = nonces.model_copy()

    def activate(self) -> None:
        """Start encrypting and decrypting every frame.

        Raises:
            HandshakeError: If keys or nonces are missing.
        """
        if self._session_keys is None or self._nonces is None:
            raise HandshakeError("Cannot encrypt without session keys and nonces")
        _LOGGER.debug("Encrypted channel active")
        self.encrypted = True

    def wrap(self, plaintext: bytes) -> bytes:
        """Encrypt an outgoing frame.

        Args:
            plaintext: The serialized frame.

        Returns:
            The ciphertext with its authentication tag.

        Raises:
            AuthenticationFailure: If an incoming frame already failed to
                authenticate with these keys.
        """
        if not self.encrypted or self._session_keys is None or self._nonces is None:
            raise HandshakeError("Channel is not encrypted")
        if self.compromised:
            raise AuthenticationFailure("Channel is compromised")

        ciphertext = aead_encrypt(
            self._session_keys.encrypt, self._nonces.encrypt_nonce, plaintext
        )
        # Advance only after the cipher call succeeded
        self._nonces.encrypt_nonce = increment_nonce(self._nonces.encrypt_nonce)
        return ciphertext

    def unwrap(self, ciphertext: bytes) -> bytes:
        """Decrypt an incoming frame.

        Args:
            ciphertext: The received frame.

        Returns:
            The plaintext frame.

        Raises:
            AuthenticationFailure: If the frame does not authenticate. The
                decrypt nonce is left untouched and the channel is marked
                compromised.
        """
        if not self.encrypted or self._session_keys is None or self._nonces is None:
            raise HandshakeError("Channel is not encrypted")
        if self.compromised:
            raise AuthenticationFailure("Channel is compromised")

        try:
            plaintext = aead_decrypt(
                self._session_keys.decrypt, self._nonces.decrypt_nonce, ciphertext
            )
        except AuthenticationFailure:
            _LOGGER.error(
                "Failed to decrypt %d byte frame with nonce %s",
                len(ciphertext),
                self._nonces.decrypt_nonce.hex(),
            )
            self.compromised = True
            raise

        self._nonces.decrypt_nonce = increment_nonce(self._nonces.decrypt_nonce)
        return plaintext
