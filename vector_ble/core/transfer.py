"""Log download reassembly and firmware update progress tracking."""

from __future__ import annotations

import logging
import time
from enum import Enum, IntEnum
from typing import Final

from pydantic import BaseModel

from ..const import LOG_ARTIFACT_PREFIX, LOG_ARTIFACT_SUFFIX
from .exceptions import TransferError
from .messages import RtsFileDownload, RtsLogResponse, RtsOtaUpdateResponse
from .models import LogTransfer, UpdateProgress

_LOGGER = logging.getLogger(__name__)

LOG_EXIT_SUCCESS: Final = 0


class OtaStatus(IntEnum):
    """Firmware update status codes reported by the robot."""

    IDLE = 0
    UNKNOWN = 1
    IN_PROGRESS = 2
    COMPLETED = 3
    REBOOTING = 4
    # Anything from here up is an error
    ERROR = 5


class UpdateOutcome(Enum):
    """What a status update means for the request waiting on it."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class LogArtifact(BaseModel):
    """A completed log download."""

    name: str
    data: bytes
    response: RtsFileDownload


def artifact_name(prefix: str = LOG_ARTIFACT_PREFIX, now: float | None = None) -> str:
    """Build a timestamped file name for downloaded logs."""
    stamp = time.strftime("%Y-%m-%d-%H-%M-%S", time.localtime(now))
    return f"{prefix}-{stamp}{LOG_ARTIFACT_SUFFIX}"


class LogReassembler:
    """Collects file chunks for the log transfer the robot acknowledged."""

    def __init__(self) -> None:
        self._transfer: LogTransfer | None = None

    @property
    def transfer(self) -> LogTransfer | None:
        return self._transfer

    def start(self, response: RtsLogResponse) -> None:
        """Adopt the transfer id from a log request acknowledgement.

        Raises:
            TransferError: If the robot refused to start the transfer. The
                current accumulator is left as it was.
        """
        if response.exit_code != LOG_EXIT_SUCCESS:
            _LOGGER.error("Log request failed with exit code %d", response.exit_code)
            raise TransferError(response.exit_code, response)

        _LOGGER.info("Starting log transfer %d", response.file_id)
        self._transfer = LogTransfer(file_id=response.file_id)

    def accept(self, chunk: RtsFileDownload) -> bool:
        """Append a chunk if it belongs to the active transfer.

        Chunks are assumed to arrive in order; they are appended as received.

        Returns:
            True if the chunk was accepted.
        """
        if self._transfer is None or chunk.file_id != self._transfer.file_id:
            _LOGGER.debug(
                "Ignoring chunk %d/%d for unknown transfer %d",
                chunk.packet_number,
                chunk.packet_total,
                chunk.file_id,
            )
            return False

        expected = self._transfer.expected_chunk_count
        if expected is not None and expected != chunk.packet_total:
            _LOGGER.warning(
                "Log %d changed its chunk total from %d to %d",
                chunk.file_id,
                expected,
                chunk.packet_total,
            )
        self._transfer.chunks.append(chunk.file_chunk)
        self._transfer.expected_chunk_count = chunk.packet_total
        _LOGGER.debug(
            "Log chunk %d/%d (%d bytes so far)",
            chunk.packet_number,
            chunk.packet_total,
            self._transfer.received_bytes,
        )
        return True

    @staticmethod
    def is_last(chunk: RtsFileDownload) -> bool:
        return chunk.packet_number == chunk.packet_total

    def finish(self) -> bytes:
        """Return the concatenated bytes of the active transfer and close it."""
        if self._transfer is None:
            raise TransferError(-1)
        data = b"".join(self._transfer.chunks)
        _LOGGER.info(
            "Log transfer %d complete: %d bytes", self._transfer.file_id, len(data)
        )
        self._transfer = None
        return data


class UpdateProgressMonitor:
    """Remembers the last update status and classifies status codes."""

    def __init__(self) -> None:
        self.last: UpdateProgress | None = None

    def record(self, response: RtsOtaUpdateResponse) -> UpdateProgress:
        self.last = UpdateProgress(
            status=response.status,
            current=response.current,
            expected=response.expected,
        )
        _LOGGER.debug(
            "Update status %d (%d/%d)",
            response.status,
            response.current,
            response.expected,
        )
        return self.last

    @staticmethod
    def start_outcome(status: int) -> UpdateOutcome:
        """Classify a status for a pending update-start request."""
        if status == OtaStatus.COMPLETED:
            return UpdateOutcome.SUCCEEDED
        if status >= OtaStatus.ERROR:
            return UpdateOutcome.FAILED
        return UpdateOutcome.PENDING

    @staticmethod
    def cancel_outcome(status: int) -> UpdateOutcome:
        """Classify a status for a pending update-cancel request."""
        if status == OtaStatus.IN_PROGRESS:
            return UpdateOutcome.PENDING
        return UpdateOutcome.SUCCEEDED
