"""Runtime configuration for a Vector BLE connection."""

from pydantic import BaseModel, ConfigDict, Field

from .const import (
    DEFAULT_CONNECT_TIMEOUT_SECONDS,
    DEFAULT_STATUS_TIMEOUT_SECONDS,
    DEFAULT_WIFI_CONNECT_TIMEOUT_SECONDS,
    LOG_ARTIFACT_PREFIX,
)


class VectorBleConfig(BaseModel):
    """Tunable settings for a single robot connection."""

    model_config = ConfigDict(frozen=True)

    # Seconds to wait for the nonce message after a first-time pairing response
    connect_timeout: float = Field(default=DEFAULT_CONNECT_TIMEOUT_SECONDS, gt=0)
    # Deadline for status queries; other operations are unbounded
    status_timeout: float = Field(default=DEFAULT_STATUS_TIMEOUT_SECONDS, gt=0)
    wifi_connect_timeout: int = Field(
        default=DEFAULT_WIFI_CONNECT_TIMEOUT_SECONDS, ge=0, le=255
    )
    # Write keys back to the session store once the robot authorizes them
    persist_sessions: bool = True
    log_artifact_prefix: str = LOG_ARTIFACT_PREFIX
