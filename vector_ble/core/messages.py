"""RTS (robot-to-phone) message definitions and their CLAD wire encoding.

Frame format (little-endian):
    [ExternalComms tag][RtsConnection tag][RtsConnection_2 tag][payload]

Strings are a u8 length followed by UTF-8 bytes, lists are a u8 count
followed by the items and file chunks are a u16 length followed by bytes.
"""

from __future__ import annotations

import ipaddress
import logging
import struct
from enum import IntEnum
from typing import ClassVar, Final

from pydantic import BaseModel, Field

from ..const import HANDSHAKE_DISCRIMINATOR, HANDSHAKE_FRAME_SIZE
from .crypto import NONCE_SIZE, PUBLIC_KEY_SIZE
from .exceptions import MessageDecodeError

_LOGGER = logging.getLogger(__name__)


class ExternalCommsTag(IntEnum):
    """Outermost union tag."""

    RTS_CONNECTION = 0x01


class RtsConnectionTag(IntEnum):
    """Protocol version union tag."""

    RTS_CONNECTION_2 = 0x02


class RtsTag(IntEnum):
    """RtsConnection_2 message tags."""

    ERROR = 0x00
    RTS_CONN_REQUEST = 0x01
    RTS_CONN_RESPONSE = 0x02
    RTS_NONCE_MESSAGE = 0x03
    RTS_CHALLENGE_MESSAGE = 0x04
    RTS_CHALLENGE_SUCCESS_MESSAGE = 0x05
    RTS_WIFI_CONNECT_REQUEST = 0x06
    RTS_WIFI_CONNECT_RESPONSE = 0x07
    RTS_WIFI_IP_REQUEST = 0x08
    RTS_WIFI_IP_RESPONSE = 0x09
    RTS_STATUS_REQUEST = 0x0A
    RTS_STATUS_RESPONSE_2 = 0x0B
    RTS_WIFI_SCAN_REQUEST = 0x0C
    RTS_WIFI_SCAN_RESPONSE_2 = 0x0D
    RTS_OTA_UPDATE_REQUEST = 0x0E
    RTS_OTA_UPDATE_RESPONSE = 0x0F
    RTS_CANCEL_PAIRING = 0x10
    RTS_FORCE_DISCONNECT = 0x11
    RTS_ACK = 0x12
    RTS_WIFI_ACCESS_POINT_REQUEST = 0x13
    RTS_WIFI_ACCESS_POINT_RESPONSE = 0x14
    RTS_SSH_REQUEST = 0x15
    RTS_SSH_RESPONSE = 0x16
    RTS_OTA_CANCEL_REQUEST = 0x17
    RTS_LOG_REQUEST = 0x18
    RTS_LOG_RESPONSE = 0x19
    RTS_FILE_DOWNLOAD = 0x1A
    RTS_WIFI_FORGET_REQUEST = 0x1B
    RTS_WIFI_FORGET_RESPONSE = 0x1C
    RTS_RESPONSE = 0x1D


class RtsConnType(IntEnum):
    """Connection response type."""

    FIRST_TIME_PAIR = 0
    RECONNECTION = 1


IPV4_SIZE: Final = 4
IPV6_SIZE: Final = 16


class _Writer:
    """Accumulates little-endian CLAD fields."""

    def __init__(self) -> None:
        self._buf = bytearray()

    def u8(self, value: int) -> None:
        self._buf += struct.pack("<B", value)

    def u16(self, value: int) -> None:
        self._buf += struct.pack("<H", value)

    def u32(self, value: int) -> None:
        self._buf += struct.pack("<I", value)

    def u64(self, value: int) -> None:
        self._buf += struct.pack("<Q", value)

    def boolean(self, value: bool) -> None:
        self.u8(1 if value else 0)

    def fixed(self, data: bytes, size: int) -> None:
        if len(data) != size:
            raise ValueError(f"Expected {size} bytes, got {len(data)}")
        self._buf += data

    def string(self, value: str) -> None:
        raw = value.encode("utf-8")
        if len(raw) > 0xFF:
            raise ValueError(f"String too long for u8 length prefix: {len(raw)}")
        self.u8(len(raw))
        self._buf += raw

    def blob(self, data: bytes) -> None:
        if len(data) > 0xFFFF:
            raise ValueError(f"Blob too long for u16 length prefix: {len(data)}")
        self.u16(len(data))
        self._buf += data

    def getvalue(self) -> bytes:
        return bytes(self._buf)


class _Reader:
    """Consumes little-endian CLAD fields, raising on truncation."""

    def __init__(self, data: bytes) -> None:
        self._data = data
        self._offset = 0

    def _take(self, size: int) -> bytes:
        end = self._offset + size
        if end > len(self._data):
            raise MessageDecodeError(
                f"Frame truncated: need {size} bytes at offset {self._offset}, "
                f"have {len(self._data) - self._offset}"
            )
        chunk = self._data[self._offset : end]
        self._offset = end
        return chunk

    def _unpack(self, fmt: str) -> int:
        return struct.unpack(fmt, self._take(struct.calcsize(fmt)))[0]  # type: ignore[no-any-return]

    def u8(self) -> int:
        return self._unpack("<B")

    def u16(self) -> int:
        return self._unpack("<H")

    def u32(self) -> int:
        return self._unpack("<I")

    def u64(self) -> int:
        return self._unpack("<Q")

    def boolean(self) -> bool:
        return self.u8() != 0

    def fixed(self, size: int) -> bytes:
        return self._take(size)

    def string(self) -> str:
        raw = self._take(self.u8())
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as err:
            raise MessageDecodeError(f"Invalid UTF-8 string: {err}") from err

    def blob(self) -> bytes:
        return self._take(self.u16())


class RtsMessage(BaseModel):
    """Base class for RtsConnection_2 messages. Empty messages need no overrides."""

    TAG: ClassVar[RtsTag]

    def pack_payload(self, writer: _Writer) -> None:
        pass

    @classmethod
    def unpack_payload(cls, reader: _Reader) -> RtsMessage:
        return cls()


# --- HANDSHAKE ---


class RtsConnRequest(RtsMessage):
    TAG: ClassVar[RtsTag] = RtsTag.RTS_CONN_REQUEST

    public_key: bytes = Field(min_length=PUBLIC_KEY_SIZE, max_length=PUBLIC_KEY_SIZE)

    def pack_payload(self, writer: _Writer) -> None:
        writer.fixed(self.public_key, PUBLIC_KEY_SIZE)

    @classmethod
    def unpack_payload(cls, reader: _Reader) -> RtsConnRequest:
        return cls(public_key=reader.fixed(PUBLIC_KEY_SIZE))


class RtsConnResponse(RtsMessage):
    TAG: ClassVar[RtsTag] = RtsTag.RTS_CONN_RESPONSE

    connection_type: RtsConnType
    public_key: bytes = Field(min_length=PUBLIC_KEY_SIZE, max_length=PUBLIC_KEY_SIZE)

    def pack_payload(self, writer: _Writer) -> None:
        writer.u8(self.connection_type)
        writer.fixed(self.public_key, PUBLIC_KEY_SIZE)

    @classmethod
    def unpack_payload(cls, reader: _Reader) -> RtsConnResponse:
        return cls(
            connection_type=RtsConnType(reader.u8()),
            public_key=reader.fixed(PUBLIC_KEY_SIZE),
        )


class RtsNonceMessage(RtsMessage):
    """Initial nonces; 'to robot' seeds our encrypt counter, 'to device' our decrypt counter."""

    TAG: ClassVar[RtsTag] = RtsTag.RTS_NONCE_MESSAGE

    to_robot_nonce: bytes = Field(min_length=NONCE_SIZE, max_length=NONCE_SIZE)
    to_device_nonce: bytes = Field(min_length=NONCE_SIZE, max_length=NONCE_SIZE)

    def pack_payload(self, writer: _Writer) -> None:
        writer.fixed(self.to_robot_nonce, NONCE_SIZE)
        writer.fixed(self.to_device_nonce, NONCE_SIZE)

    @classmethod
    def unpack_payload(cls, reader: _Reader) -> RtsNonceMessage:
        return cls(
            to_robot_nonce=reader.fixed(NONCE_SIZE),
            to_device_nonce=reader.fixed(NONCE_SIZE),
        )


class RtsChallengeMessage(RtsMessage):
    TAG: ClassVar[RtsTag] = RtsTag.RTS_CHALLENGE_MESSAGE

    number: int = Field(ge=0, le=0xFFFFFFFF)

    def pack_payload(self, writer: _Writer) -> None:
        writer.u32(self.number)

    @classmethod
    def unpack_payload(cls, reader: _Reader) -> RtsChallengeMessage:
        return cls(number=reader.u32())


class RtsChallengeSuccessMessage(RtsMessage):
    TAG: ClassVar[RtsTag] = RtsTag.RTS_CHALLENGE_SUCCESS_MESSAGE


class RtsAck(RtsMessage):
    TAG: ClassVar[RtsTag] = RtsTag.RTS_ACK

    rts_connection_tag: int

    def pack_payload(self, writer: _Writer) -> None:
        writer.u8(self.rts_connection_tag)

    @classmethod
    def unpack_payload(cls, reader: _Reader) -> RtsAck:
        return cls(rts_connection_tag=reader.u8())


class RtsCancelPairing(RtsMessage):
    TAG: ClassVar[RtsTag] = RtsTag.RTS_CANCEL_PAIRING


class RtsForceDisconnect(RtsMessage):
    TAG: ClassVar[RtsTag] = RtsTag.RTS_FORCE_DISCONNECT


# --- WIFI ---


class RtsWifiScanRequest(RtsMessage):
    TAG: ClassVar[RtsTag] = RtsTag.RTS_WIFI_SCAN_REQUEST


class RtsWifiScanResult(BaseModel):
    """One network seen by the robot."""

    auth_type: int
    signal_strength: int
    wifi_ssid_hex: str
    hidden: bool = False
    provisioned: bool = False

    @property
    def ssid(self) -> str:
        return hex_to_ssid(self.wifi_ssid_hex)


class RtsWifiScanResponse(RtsMessage):
    TAG: ClassVar[RtsTag] = RtsTag.RTS_WIFI_SCAN_RESPONSE_2

    status_code: int
    scan_result: list[RtsWifiScanResult] = Field(default_factory=list)

    def pack_payload(self, writer: _Writer) -> None:
        writer.u8(self.status_code)
        writer.u8(len(self.scan_result))
        for result in self.scan_result:
            writer.u8(result.auth_type)
            writer.u8(result.signal_strength)
            writer.string(result.wifi_ssid_hex)
            writer.boolean(result.hidden)
            writer.boolean(result.provisioned)

    @classmethod
    def unpack_payload(cls, reader: _Reader) -> RtsWifiScanResponse:
        status_code = reader.u8()
        results = [
            RtsWifiScanResult(
                auth_type=reader.u8(),
                signal_strength=reader.u8(),
                wifi_ssid_hex=reader.string(),
                hidden=reader.boolean(),
                provisioned=reader.boolean(),
            )
            for _ in range(reader.u8())
        ]
        return cls(status_code=status_code, scan_result=results)


class RtsWifiConnectRequest(RtsMessage):
    TAG: ClassVar[RtsTag] = RtsTag.RTS_WIFI_CONNECT_REQUEST

    wifi_ssid_hex: str
    password: str
    timeout: int = Field(ge=0, le=0xFF)
    auth_type: int
    hidden: bool = False

    def pack_payload(self, writer: _Writer) -> None:
        writer.string(self.wifi_ssid_hex)
        writer.string(self.password)
        writer.u8(self.timeout)
        writer.u8(self.auth_type)
        writer.boolean(self.hidden)

    @classmethod
    def unpack_payload(cls, reader: _Reader) -> RtsWifiConnectRequest:
        return cls(
            wifi_ssid_hex=reader.string(),
            password=reader.string(),
            timeout=reader.u8(),
            auth_type=reader.u8(),
            hidden=reader.boolean(),
        )


class RtsWifiConnectResponse(RtsMessage):
    TAG: ClassVar[RtsTag] = RtsTag.RTS_WIFI_CONNECT_RESPONSE

    wifi_ssid_hex: str
    wifi_state: int
    connect_result: int

    def pack_payload(self, writer: _Writer) -> None:
        writer.string(self.wifi_ssid_hex)
        writer.u8(self.wifi_state)
        writer.u8(self.connect_result)

    @classmethod
    def unpack_payload(cls, reader: _Reader) -> RtsWifiConnectResponse:
        return cls(
            wifi_ssid_hex=reader.string(),
            wifi_state=reader.u8(),
            connect_result=reader.u8(),
        )


class RtsWifiForgetRequest(RtsMessage):
    TAG: ClassVar[RtsTag] = RtsTag.RTS_WIFI_FORGET_REQUEST

    delete_all: bool
    wifi_ssid_hex: str = ""

    def pack_payload(self, writer: _Writer) -> None:
        writer.boolean(self.delete_all)
        writer.string(self.wifi_ssid_hex)

    @classmethod
    def unpack_payload(cls, reader: _Reader) -> RtsWifiForgetRequest:
        return cls(delete_all=reader.boolean(), wifi_ssid_hex=reader.string())


class RtsWifiForgetResponse(RtsMessage):
    TAG: ClassVar[RtsTag] = RtsTag.RTS_WIFI_FORGET_RESPONSE

    did_delete: bool
    wifi_ssid_hex: str = ""

    def pack_payload(self, writer: _Writer) -> None:
        writer.boolean(self.did_delete)
        writer.string(self.wifi_ssid_hex)

    @classmethod
    def unpack_payload(cls, reader: _Reader) -> RtsWifiForgetResponse:
        return cls(did_delete=reader.boolean(), wifi_ssid_hex=reader.string())


class RtsWifiAccessPointRequest(RtsMessage):
    TAG: ClassVar[RtsTag] = RtsTag.RTS_WIFI_ACCESS_POINT_REQUEST

    enable: bool

    def pack_payload(self, writer: _Writer) -> None:
        writer.boolean(self.enable)

    @classmethod
    def unpack_payload(cls, reader: _Reader) -> RtsWifiAccessPointRequest:
        return cls(enable=reader.boolean())


class RtsWifiAccessPointResponse(RtsMessage):
    TAG: ClassVar[RtsTag] = RtsTag.RTS_WIFI_ACCESS_POINT_RESPONSE

    enabled: bool
    ssid: str = ""
    password: str = ""

    def pack_payload(self, writer: _Writer) -> None:
        writer.boolean(self.enabled)
        writer.string(self.ssid)
        writer.string(self.password)

    @classmethod
    def unpack_payload(cls, reader: _Reader) -> RtsWifiAccessPointResponse:
        return cls(
            enabled=reader.boolean(), ssid=reader.string(), password=reader.string()
        )


class RtsWifiIpRequest(RtsMessage):
    TAG: ClassVar[RtsTag] = RtsTag.RTS_WIFI_IP_REQUEST


class RtsWifiIpResponse(RtsMessage):
    TAG: ClassVar[RtsTag] = RtsTag.RTS_WIFI_IP_RESPONSE

    has_ipv4: bool
    has_ipv6: bool
    ipv4: bytes = Field(default=bytes(IPV4_SIZE), min_length=IPV4_SIZE, max_length=IPV4_SIZE)
    ipv6: bytes = Field(default=bytes(IPV6_SIZE), min_length=IPV6_SIZE, max_length=IPV6_SIZE)

    @property
    def addresses(self) -> list[str]:
        """The robot's addresses in printable form."""
        result = []
        if self.has_ipv4:
            result.append(str(ipaddress.IPv4Address(self.ipv4)))
        if self.has_ipv6:
            result.append(str(ipaddress.IPv6Address(self.ipv6)))
        return result

    def pack_payload(self, writer: _Writer) -> None:
        writer.boolean(self.has_ipv4)
        writer.boolean(self.has_ipv6)
        writer.fixed(self.ipv4, IPV4_SIZE)
        writer.fixed(self.ipv6, IPV6_SIZE)

    @classmethod
    def unpack_payload(cls, reader: _Reader) -> RtsWifiIpResponse:
        return cls(
            has_ipv4=reader.boolean(),
            has_ipv6=reader.boolean(),
            ipv4=reader.fixed(IPV4_SIZE),
            ipv6=reader.fixed(IPV6_SIZE),
        )


# --- STATUS ---


class RtsStatusRequest(RtsMessage):
    TAG: ClassVar[RtsTag] = RtsTag.RTS_STATUS_REQUEST


class RtsStatusResponse(RtsMessage):
    TAG: ClassVar[RtsTag] = RtsTag.RTS_STATUS_RESPONSE_2

    wifi_ssid_hex: str
    wifi_state: int
    access_point: bool
    ble_state: int
    battery_state: int
    version: str
    ota_in_progress: bool
    has_owner: bool

    def pack_payload(self, writer: _Writer) -> None:
        writer.string(self.wifi_ssid_hex)
        writer.u8(self.wifi_state)
        writer.boolean(self.access_point)
        writer.u8(self.ble_state)
        writer.u8(self.battery_state)
        writer.string(self.version)
        writer.boolean(self.ota_in_progress)
        writer.boolean(self.has_owner)

    @classmethod
    def unpack_payload(cls, reader: _Reader) -> RtsStatusResponse:
        return cls(
            wifi_ssid_hex=reader.string(),
            wifi_state=reader.u8(),
            access_point=reader.boolean(),
            ble_state=reader.u8(),
            battery_state=reader.u8(),
            version=reader.string(),
            ota_in_progress=reader.boolean(),
            has_owner=reader.boolean(),
        )


# --- FIRMWARE UPDATE ---


class RtsOtaUpdateRequest(RtsMessage):
    TAG: ClassVar[RtsTag] = RtsTag.RTS_OTA_UPDATE_REQUEST

    url: str

    def pack_payload(self, writer: _Writer) -> None:
        writer.string(self.url)

    @classmethod
    def unpack_payload(cls, reader: _Reader) -> RtsOtaUpdateRequest:
        return cls(url=reader.string())


class RtsOtaCancelRequest(RtsMessage):
    TAG: ClassVar[RtsTag] = RtsTag.RTS_OTA_CANCEL_REQUEST


class RtsOtaUpdateResponse(RtsMessage):
    TAG: ClassVar[RtsTag] = RtsTag.RTS_OTA_UPDATE_RESPONSE

    status: int
    current: int = 0
    expected: int = 0

    def pack_payload(self, writer: _Writer) -> None:
        writer.u8(self.status)
        writer.u64(self.current)
        writer.u64(self.expected)

    @classmethod
    def unpack_payload(cls, reader: _Reader) -> RtsOtaUpdateResponse:
        return cls(status=reader.u8(), current=reader.u64(), expected=reader.u64())


# --- LOGS ---


class RtsLogRequest(RtsMessage):
    TAG: ClassVar[RtsTag] = RtsTag.RTS_LOG_REQUEST

    mode: int = 0
    filters: list[str] = Field(default_factory=list)

    def pack_payload(self, writer: _Writer) -> None:
        writer.u8(self.mode)
        writer.u8(len(self.filters))
        for item in self.filters:
            writer.string(item)

    @classmethod
    def unpack_payload(cls, reader: _Reader) -> RtsLogRequest:
        mode = reader.u8()
        return cls(mode=mode, filters=[reader.string() for _ in range(reader.u8())])


class RtsLogResponse(RtsMessage):
    TAG: ClassVar[RtsTag] = RtsTag.RTS_LOG_RESPONSE

    exit_code: int
    file_id: int

    def pack_payload(self, writer: _Writer) -> None:
        writer.u8(self.exit_code)
        writer.u32(self.file_id)

    @classmethod
    def unpack_payload(cls, reader: _Reader) -> RtsLogResponse:
        return cls(exit_code=reader.u8(), file_id=reader.u32())


class RtsFileDownload(RtsMessage):
    TAG: ClassVar[RtsTag] = RtsTag.RTS_FILE_DOWNLOAD

    status: int = 0
    file_id: int
    packet_number: int
    packet_total: int
    file_chunk: bytes = b""

    def pack_payload(self, writer: _Writer) -> None:
        writer.u8(self.status)
        writer.u32(self.file_id)
        writer.u32(self.packet_number)
        writer.u32(self.packet_total)
        writer.blob(self.file_chunk)

    @classmethod
    def unpack_payload(cls, reader: _Reader) -> RtsFileDownload:
        return cls(
            status=reader.u8(),
            file_id=reader.u32(),
            packet_number=reader.u32(),
            packet_total=reader.u32(),
            file_chunk=reader.blob(),
        )


# --- GENERIC ---


class RtsResponse(RtsMessage):
    """Generic failure reply to whichever request is outstanding."""

    TAG: ClassVar[RtsTag] = RtsTag.RTS_RESPONSE

    code: int
    text: str = ""

    def pack_payload(self, writer: _Writer) -> None:
        writer.u16(self.code)
        writer.string(self.text)

    @classmethod
    def unpack_payload(cls, reader: _Reader) -> RtsResponse:
        return cls(code=reader.u16(), text=reader.string())


MESSAGE_TYPES: Final[dict[int, type[RtsMessage]]] = {
    cls.TAG: cls
    for cls in (
        RtsConnRequest,
        RtsConnResponse,
        RtsNonceMessage,
        RtsChallengeMessage,
        RtsChallengeSuccessMessage,
        RtsAck,
        RtsCancelPairing,
        RtsForceDisconnect,
        RtsWifiScanRequest,
        RtsWifiScanResponse,
        RtsWifiConnectRequest,
        RtsWifiConnectResponse,
        RtsWifiForgetRequest,
        RtsWifiForgetResponse,
        RtsWifiAccessPointRequest,
        RtsWifiAccessPointResponse,
        RtsWifiIpRequest,
        RtsWifiIpResponse,
        RtsStatusRequest,
        RtsStatusResponse,
        RtsOtaUpdateRequest,
        RtsOtaCancelRequest,
        RtsOtaUpdateResponse,
        RtsLogRequest,
        RtsLogResponse,
        RtsFileDownload,
        RtsResponse,
    )
}


def ssid_to_hex(ssid: str) -> str:
    """Encode an SSID the way the robot expects it on the wire."""
    return ssid.encode("utf-8").hex()


def hex_to_ssid(ssid_hex: str) -> str:
    """Decode a hex SSID from the robot, replacing invalid bytes."""
    try:
        return bytes.fromhex(ssid_hex).decode("utf-8", errors="replace")
    except ValueError:
        return ssid_hex


def is_handshake_frame(data: bytes) -> bool:
    """Check whether a frame is the 5-byte link handshake."""
    return len(data) == HANDSHAKE_FRAME_SIZE and data[0] == HANDSHAKE_DISCRIMINATOR


def encode_frame(message: RtsMessage) -> bytes:
    """Wrap a message in the ExternalComms/RtsConnection_2 envelope.

    Args:
        message: The message to serialize.

    Returns:
        The plaintext frame.
    """
    writer = _Writer()
    writer.u8(ExternalCommsTag.RTS_CONNECTION)
    writer.u8(RtsConnectionTag.RTS_CONNECTION_2)
    writer.u8(message.TAG)
    message.pack_payload(writer)
    return writer.getvalue()


def decode_frame(data: bytes) -> RtsMessage | None:
    """Decode a plaintext frame.

    Args:
        data: The frame bytes.

    Returns:
        The decoded message, or None if any envelope or message tag is
        unknown to this client.

    Raises:
        MessageDecodeError: If a known message is truncated or malformed.
    """
    reader = _Reader(bytes(data))
    comms_tag = reader.u8()
    if comms_tag != ExternalCommsTag.RTS_CONNECTION:
        _LOGGER.debug("Ignoring ExternalComms tag %#x", comms_tag)
        return None

    version_tag = reader.u8()
    if version_tag != RtsConnectionTag.RTS_CONNECTION_2:
        _LOGGER.debug("Ignoring RtsConnection tag %#x", version_tag)
        return None

    tag = reader.u8()
    message_cls = MESSAGE_TYPES.get(tag)
    if message_cls is None:
        _LOGGER.debug("Ignoring RtsConnection_2 tag %#x", tag)
        return None

    try:
        return message_cls.unpack_payload(reader)
    except ValueError as err:
        # pydantic.ValidationError and enum lookups both derive from ValueError
        raise MessageDecodeError(f"Invalid {message_cls.__name__}: {err}") from err
