"""
Core models for the Vector BLE protocol engine.
"""

from pydantic import BaseModel, ConfigDict, Field

from .crypto import NONCE_SIZE, KeyPair, SessionKeys


class NonceState(BaseModel):
    """
    Per-direction nonce counters for the encrypted channel.
    """

    encrypt_nonce: bytes = Field(min_length=NONCE_SIZE, max_length=NONCE_SIZE)
    decrypt_nonce: bytes = Field(min_length=NONCE_SIZE, max_length=NONCE_SIZE)


class CachedSession(BaseModel):
    """
    In-memory session cache entry, keyed by the robot's public key.
    """

    model_config = ConfigDict(frozen=True)

    session_keys: SessionKeys
    key_pair: KeyPair


class UpdateProgress(BaseModel):
    """
    Last status reported for a firmware update.
    """

    status: int
    current: int = 0
    expected: int = 0


class LogTransfer(BaseModel):
    """
    An in-progress log download.
    """

    file_id: int
    chunks: list[bytes] = Field(default_factory=list)
    expected_chunk_count: int | None = None

    @property
    def received_bytes(self) -> int:
        return sum(len(chunk) for chunk in self.chunks)
