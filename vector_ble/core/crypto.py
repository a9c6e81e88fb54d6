from __future__ import annotations

import logging
from typing import Final

from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey
from nacl import bindings
from nacl.encoding import RawEncoder
from nacl.exceptions import CryptoError
from nacl.hash import blake2b
from pydantic import BaseModel, ConfigDict, Field

from .exceptions import AuthenticationFailure

_LOGGER = logging.getLogger(__name__)

# Vector uses libsodium: X25519 key exchange and XChaCha20-Poly1305-IETF
PUBLIC_KEY_SIZE: Final = 32
PRIVATE_KEY_SIZE: Final = 32
SESSION_KEY_SIZE: Final = 32
NONCE_SIZE: Final = bindings.crypto_aead_xchacha20poly1305_ietf_NPUBBYTES  # 24
TAG_SIZE: Final = bindings.crypto_aead_xchacha20poly1305_ietf_ABYTES  # 16


class KeyPair(BaseModel):
    """An X25519 key pair in raw form."""

    model_config = ConfigDict(frozen=True)

    public_key: bytes = Field(min_length=PUBLIC_KEY_SIZE, max_length=PUBLIC_KEY_SIZE)
    private_key: bytes = Field(
        min_length=PRIVATE_KEY_SIZE, max_length=PRIVATE_KEY_SIZE, repr=False
    )


class SessionKeys(BaseModel):
    """Container for the per-direction symmetric session keys."""

    model_config = ConfigDict(frozen=True)

    encrypt: bytes = Field(
        min_length=SESSION_KEY_SIZE, max_length=SESSION_KEY_SIZE, repr=False
    )
    decrypt: bytes = Field(
        min_length=SESSION_KEY_SIZE, max_length=SESSION_KEY_SIZE, repr=False
    )


def generate_key_pair() -> KeyPair:
    """Generate a new X25519 key pair.

    Returns:
        The raw 32-byte public and private keys.
    """
    private_key = X25519PrivateKey.generate()
    return KeyPair(
        public_key=private_key.public_key().public_bytes_raw(),
        private_key=private_key.private_bytes_raw(),
    )


def load_key_pair(private_key_bytes: bytes) -> KeyPair:
    """Rebuild a key pair from its raw private key.

    Args:
        private_key_bytes: The 32-byte private key.

    Returns:
        The key pair including the matching public key.
    """
    if len(private_key_bytes) != PRIVATE_KEY_SIZE:
        raise ValueError(f"Invalid private key size: {len(private_key_bytes)}")

    private_key = X25519PrivateKey.from_private_bytes(private_key_bytes)
    return KeyPair(
        public_key=private_key.public_key().public_bytes_raw(),
        private_key=private_key_bytes,
    )


def _check_public_key(public_key: bytes) -> None:
    if len(public_key) != PUBLIC_KEY_SIZE:
        raise ValueError(f"Invalid peer public key size: {len(public_key)}")


def client_session_keys(
    key_pair: KeyPair, server_public_key: bytes
) -> tuple[bytes, bytes]:
    """Compute the client side shared secrets with libsodium crypto_kx.

    Args:
        key_pair: The local (client) key pair.
        server_public_key: The robot's public key.

    Returns:
        A tuple of (rx, tx) shared secrets.
    """
    _check_public_key(server_public_key)
    return bindings.crypto_kx_client_session_keys(
        key_pair.public_key, key_pair.private_key, server_public_key
    )


def server_session_keys(
    key_pair: KeyPair, client_public_key: bytes
) -> tuple[bytes, bytes]:
    """Compute the server side shared secrets.

    The robot plays this role; it is used here to verify the client side.

    Returns:
        A tuple of (rx, tx) shared secrets.
    """
    _check_public_key(client_public_key)
    return bindings.crypto_kx_server_session_keys(
        key_pair.public_key, key_pair.private_key, client_public_key
    )


def derive_pin_key(shared_secret: bytes, pin: str) -> bytes:
    """Bind a shared secret to the PIN shown on the robot's face.

    Args:
        shared_secret: One direction of the key exchange output.
        pin: The PIN entered by the user.

    Returns:
        The 32-byte keyed BLAKE2b digest of the shared secret.
    """
    return blake2b(
        shared_secret,
        digest_size=SESSION_KEY_SIZE,
        key=pin.encode("utf-8"),
        encoder=RawEncoder,
    )


def derive_session_keys(
    key_pair: KeyPair, peer_public_key: bytes, pin: str
) -> SessionKeys:
    """Derive the final session keys for a first-time pairing.

    Args:
        key_pair: The local ephemeral key pair.
        peer_public_key: The robot's public key from the connection request.
        pin: The PIN entered by the user.

    Returns:
        The encrypt (tx) and decrypt (rx) keys.
    """
    _LOGGER.debug("Deriving session keys with peer %s", peer_public_key.hex())
    shared_rx, shared_tx = client_session_keys(key_pair, peer_public_key)
    return SessionKeys(
        encrypt=derive_pin_key(shared_tx, pin),
        decrypt=derive_pin_key(shared_rx, pin),
    )


def increment_nonce(nonce: bytes) -> bytes:
    """Increment a nonce as a little-endian integer, wrapping on overflow."""
    value = (int.from_bytes(nonce, "little") + 1) % (1 << (8 * len(nonce)))
    return value.to_bytes(len(nonce), "little")


def aead_encrypt(key: bytes, nonce: bytes, data: bytes) -> bytes:
    """Encrypt data using XChaCha20-Poly1305-IETF.

    Args:
        key: 32-byte key.
        nonce: 24-byte nonce.
        data: Plaintext data.

    Returns:
        The ciphertext followed by the 16-byte authentication tag.
    """
    return bindings.crypto_aead_xchacha20poly1305_ietf_encrypt(data, None, nonce, key)


def aead_decrypt(key: bytes, nonce: bytes, data: bytes) -> bytes:
    """Decrypt data using XChaCha20-Poly1305-IETF.

    Args:
        key: 32-byte key.
        nonce: 24-byte nonce.
        data: Ciphertext with appended 16-byte tag.

    Returns:
        The decrypted plaintext.

    Raises:
        AuthenticationFailure: If the tag does not verify.
    """
    if len(data) < TAG_SIZE:
        raise AuthenticationFailure(f"Frame too short to authenticate: {len(data)}")

    try:
        return bindings.crypto_aead_xchacha20poly1305_ietf_decrypt(
            bytes(data), None, nonce, key
        )
    except CryptoError as err:
        raise AuthenticationFailure("Frame failed authentication") from err
