"""Persistent storage of paired robot sessions."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path

from pydantic import BaseModel, Field, SecretStr, ValidationError, field_serializer

from .crypto import KeyPair, SessionKeys, load_key_pair

_LOGGER = logging.getLogger(__name__)


class SessionStore(ABC):
    """Abstract store for per-robot session keys and the local key pair."""

    @abstractmethod
    def get_session(self, peer_public_key: bytes) -> SessionKeys | None:
        """Look up the session keys for a robot.

        Args:
            peer_public_key: The robot's public key.

        Returns:
            The stored tx/rx keys, or None.
        """

    @abstractmethod
    def get_keys(self) -> KeyPair | None:
        """Get the local key pair used for reconnections."""

    @abstractmethod
    def set_session(self, peer_public_key: bytes, session_keys: SessionKeys) -> None:
        """Remember the session keys for a robot."""

    @abstractmethod
    def set_keys(self, key_pair: KeyPair) -> None:
        """Remember the local key pair."""

    @abstractmethod
    def delete_session(self, peer_public_key: bytes) -> None:
        """Forget a robot so the next connection pairs from scratch."""

    @abstractmethod
    def save(self) -> None:
        """Flush changes to the backing storage."""


class InMemorySessionStore(SessionStore):
    """Session store that keeps everything in process memory."""

    def __init__(self) -> None:
        self._sessions: dict[bytes, SessionKeys] = {}
        self._key_pair: KeyPair | None = None

    def get_session(self, peer_public_key: bytes) -> SessionKeys | None:
        return self._sessions.get(bytes(peer_public_key))

    def get_keys(self) -> KeyPair | None:
        return self._key_pair

    def set_session(self, peer_public_key: bytes, session_keys: SessionKeys) -> None:
        self._sessions[bytes(peer_public_key)] = session_keys

    def set_keys(self, key_pair: KeyPair) -> None:
        self._key_pair = key_pair

    def delete_session(self, peer_public_key: bytes) -> None:
        self._sessions.pop(bytes(peer_public_key), None)

    def save(self) -> None:
        pass


class StoredSession(BaseModel):
    """
    Session keys for one robot as written to disk (hex encoded).
    """

    tx: SecretStr
    rx: SecretStr

    @field_serializer("tx", "rx", when_used="json")
    def _reveal(self, value: SecretStr) -> str:
        return value.get_secret_value()


class SessionFile(BaseModel):
    """
    On-disk layout of the session file.
    """

    private_key: SecretStr | None = None  # Local private key (Hex encoded)
    public_key: str | None = None  # Local public key (Hex encoded)
    sessions: dict[str, StoredSession] = Field(default_factory=dict)

    @field_serializer("private_key", when_used="json")
    def _reveal(self, value: SecretStr | None) -> str | None:
        return value.get_secret_value() if value is not None else None


class FileSessionStore(SessionStore):
    """Session store backed by a JSON file."""

    def __init__(self, path: Path | str) -> None:
        """Load the session file if it exists.

        Args:
            path: Location of the JSON session file.
        """
        self._path = Path(path)
        self._data = self._load()

    def _load(self) -> SessionFile:
        if not self._path.exists():
            return SessionFile()
        try:
            return SessionFile.model_validate_json(self._path.read_text("utf-8"))
        except ValidationError as err:
            _LOGGER.error("Ignoring unreadable session file %s: %s", self._path, err)
            return SessionFile()

    def get_session(self, peer_public_key: bytes) -> SessionKeys | None:
        stored = self._data.sessions.get(peer_public_key.hex())
        if stored is None:
            return None
        return SessionKeys(
            encrypt=bytes.fromhex(stored.tx.get_secret_value()),
            decrypt=bytes.fromhex(stored.rx.get_secret_value()),
        )

    def get_keys(self) -> KeyPair | None:
        if self._data.private_key is None:
            return None
        return load_key_pair(bytes.fromhex(self._data.private_key.get_secret_value()))

    def set_session(self, peer_public_key: bytes, session_keys: SessionKeys) -> None:
        self._data.sessions[peer_public_key.hex()] = StoredSession(
            tx=SecretStr(session_keys.encrypt.hex()),
            rx=SecretStr(session_keys.decrypt.hex()),
        )

    def set_keys(self, key_pair: KeyPair) -> None:
        self._data.private_key = SecretStr(key_pair.private_key.hex())
        self._data.public_key = key_pair.public_key.hex()

    def delete_session(self, peer_public_key: bytes) -> None:
        if self._data.sessions.pop(peer_public_key.hex(), None) is not None:
            _LOGGER.info("Deleted session for %s", peer_public_key.hex())

    def clear(self) -> None:
        """Forget every robot and the local key pair."""
        self._data = SessionFile()

    def save(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp_path.write_text(self._data.model_dump_json(indent=2), "utf-8")
        tmp_path.replace(self._path)
        _LOGGER.debug("Saved %d sessions to %s", len(self._data.sessions), self._path)
