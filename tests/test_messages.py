"""Unit tests for the RTS wire codec."""

import pytest

from vector_ble.core.exceptions import MessageDecodeError
from vector_ble.core.messages import (
    RtsAck,
    RtsConnRequest,
    RtsConnResponse,
    RtsConnType,
    RtsFileDownload,
    RtsLogRequest,
    RtsStatusResponse,
    RtsTag,
    RtsWifiIpResponse,
    RtsWifiScanResponse,
    RtsWifiScanResult,
    decode_frame,
    encode_frame,
    hex_to_ssid,
    is_handshake_frame,
    ssid_to_hex,
)


def test_encode_envelope():
    """Test that every frame carries the RtsConnection_2 envelope."""
    frame = encode_frame(RtsAck(rts_connection_tag=RtsTag.RTS_NONCE_MESSAGE))

    assert frame == bytes([0x01, 0x02, RtsTag.RTS_ACK, RtsTag.RTS_NONCE_MESSAGE])


def test_conn_response_layout():
    """Test the connection response payload layout."""
    public_key = bytes(range(32))
    frame = encode_frame(
        RtsConnResponse(connection_type=RtsConnType.RECONNECTION, public_key=public_key)
    )

    assert frame[:3] == bytes([0x01, 0x02, RtsTag.RTS_CONN_RESPONSE])
    assert frame[3] == RtsConnType.RECONNECTION
    assert frame[4:] == public_key


def test_decode_conn_request():
    """Test decoding the robot's connection request."""
    public_key = b"\xaa" * 32
    frame = bytes([0x01, 0x02, RtsTag.RTS_CONN_REQUEST]) + public_key

    msg = decode_frame(frame)

    assert isinstance(msg, RtsConnRequest)
    assert msg.public_key == public_key


def test_decode_status_response():
    """Test decoding a status response with strings and flags."""
    sent = RtsStatusResponse(
        wifi_ssid_hex=ssid_to_hex("AnkiNet"),
        wifi_state=1,
        access_point=False,
        ble_state=1,
        battery_state=2,
        version="1.8.1.6051",
        ota_in_progress=False,
        has_owner=True,
    )

    assert decode_frame(encode_frame(sent)) == sent


def test_decode_scan_response():
    """Test decoding a list of scan results."""
    sent = RtsWifiScanResponse(
        status_code=0,
        scan_result=[
            RtsWifiScanResult(auth_type=6, signal_strength=3, wifi_ssid_hex=ssid_to_hex("home")),
            RtsWifiScanResult(
                auth_type=0, signal_strength=1, wifi_ssid_hex=ssid_to_hex("cafe"), hidden=True
            ),
        ],
    )

    msg = decode_frame(encode_frame(sent))

    assert isinstance(msg, RtsWifiScanResponse)
    assert [r.ssid for r in msg.scan_result] == ["home", "cafe"]
    assert msg.scan_result[1].hidden


def test_log_request_filters():
    """Test the log request list encoding."""
    frame = encode_frame(RtsLogRequest(mode=0, filters=["a", "bc"]))

    assert frame[3:] == bytes([0, 2, 1]) + b"a" + bytes([2]) + b"bc"


def test_file_download_chunk():
    """Test the u16 length prefixed file chunk."""
    sent = RtsFileDownload(file_id=7, packet_number=1, packet_total=3, file_chunk=b"x" * 300)

    msg = decode_frame(encode_frame(sent))

    assert isinstance(msg, RtsFileDownload)
    assert msg.file_chunk == b"x" * 300


def test_wifi_ip_addresses():
    """Test formatting of the robot's addresses."""
    msg = RtsWifiIpResponse(
        has_ipv4=True, has_ipv6=False, ipv4=bytes([192, 168, 1, 20])
    )

    assert msg.addresses == ["192.168.1.20"]


def test_unknown_tag_is_ignored():
    """Test that an unknown message tag decodes to None."""
    assert decode_frame(bytes([0x01, 0x02, 0xEE, 0x00])) is None


def test_foreign_envelope_is_ignored():
    """Test that other protocol versions decode to None."""
    assert decode_frame(bytes([0x01, 0x05, RtsTag.RTS_ACK, 0x03])) is None
    assert decode_frame(bytes([0x04, 0x02, RtsTag.RTS_ACK, 0x03])) is None


def test_truncated_frame_raises():
    """Test that a short payload is reported as malformed."""
    frame = bytes([0x01, 0x02, RtsTag.RTS_CONN_REQUEST]) + b"\x00" * 10

    with pytest.raises(MessageDecodeError):
        decode_frame(frame)


def test_invalid_enum_raises():
    """Test that an out-of-range connection type is reported as malformed."""
    frame = bytes([0x01, 0x02, RtsTag.RTS_CONN_RESPONSE, 0x09]) + b"\x00" * 32

    with pytest.raises(MessageDecodeError):
        decode_frame(frame)


def test_is_handshake_frame():
    """Test recognition of the 5-byte link handshake."""
    assert is_handshake_frame(bytes([0x01, 0x02, 0x00, 0x00, 0x00]))
    assert not is_handshake_frame(bytes([0x02, 0x02, 0x00, 0x00, 0x00]))
    assert not is_handshake_frame(bytes([0x01, 0x02, 0x00, 0x00]))


def test_ssid_hex():
    """Test SSID hex encoding."""
    assert ssid_to_hex("AB") == "4142"
    assert hex_to_ssid("4142") == "AB"
    assert hex_to_ssid("zz") == "zz"
