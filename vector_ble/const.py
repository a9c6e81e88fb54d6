"""Constants for the Vector BLE client."""

from typing import Final

# Vector BLE service and characteristic UUIDs
VECTOR_SERVICE_UUID: Final = "0000fee3-0000-1000-8000-00805f9b34fb"
VECTOR_READ_CHAR_UUID: Final = "7d2a4bda-d29b-4152-b725-2491478c5cd7"
VECTOR_WRITE_CHAR_UUID: Final = "30619f2d-0f26-4d3f-9b9f-5b8d8a5fb5e9"

# BLE packets carry a 1-byte header and at most 19 bytes of payload
MAX_PACKET_SIZE: Final = 20

# Link-level handshake: 0x01 + 4-byte protocol version
HANDSHAKE_DISCRIMINATOR: Final = 0x01
HANDSHAKE_FRAME_SIZE: Final = 5

DEFAULT_CONNECT_TIMEOUT_SECONDS: Final = 3.0
DEFAULT_STATUS_TIMEOUT_SECONDS: Final = 3.0
DEFAULT_WIFI_CONNECT_TIMEOUT_SECONDS: Final = 15
DEFAULT_WIFI_AUTH_TYPE: Final = 6

# Passed as the SSID to forget every stored network
FORGET_ALL_NETWORKS: Final = "!all"

LOG_ARTIFACT_PREFIX: Final = "vector-logs"
LOG_ARTIFACT_SUFFIX: Final = ".tar.bz2"

PAIRING_FAILED_MESSAGE: Final = (
    "Pairing failed. Double press robot button and try again. "
    "You may need to do 'ble-clear'."
)
