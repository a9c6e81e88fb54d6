"""Tests for authenticated operations on a VectorConnection."""

import asyncio

import pytest
from conftest import pair

from vector_ble.config import VectorBleConfig
from vector_ble.core.connection import VectorConnection
from vector_ble.core.exceptions import (
    AuthenticationFailure,
    ConnectionClosed,
    HandshakeError,
    RequestRejected,
    TransferError,
)
from vector_ble.core.messages import (
    RtsCancelPairing,
    RtsFileDownload,
    RtsLogRequest,
    RtsLogResponse,
    RtsOtaCancelRequest,
    RtsOtaUpdateRequest,
    RtsOtaUpdateResponse,
    RtsResponse,
    RtsStatusRequest,
    RtsStatusResponse,
    RtsWifiAccessPointRequest,
    RtsWifiAccessPointResponse,
    RtsWifiConnectRequest,
    RtsWifiConnectResponse,
    RtsWifiForgetRequest,
    RtsWifiForgetResponse,
    RtsWifiIpRequest,
    RtsWifiIpResponse,
    RtsWifiScanRequest,
    RtsWifiScanResponse,
    RtsWifiScanResult,
    ssid_to_hex,
)
from vector_ble.core.pending import TIMED_OUT

STATUS = RtsStatusResponse(
    wifi_ssid_hex=ssid_to_hex("home"),
    wifi_state=1,
    access_point=False,
    ble_state=1,
    battery_state=0,
    version="1.8.1",
    ota_in_progress=False,
    has_owner=True,
)


async def _start(coro):
    """Run an operation until it is waiting for the robot."""
    task = asyncio.ensure_future(coro)
    await asyncio.sleep(0)
    return task


@pytest.mark.asyncio
async def test_operation_requires_authentication(connection):
    """Test that requests are refused before pairing completes."""
    with pytest.raises(HandshakeError):
        await connection.wifi_scan()


@pytest.mark.asyncio
async def test_wifi_scan_and_connect(connection, robot):
    """Test scanning and connecting with the scanned auth type."""
    pair(robot, connection)
    scan = RtsWifiScanResponse(
        status_code=0,
        scan_result=[
            RtsWifiScanResult(auth_type=3, signal_strength=2, wifi_ssid_hex=ssid_to_hex("home"))
        ],
    )

    task = await _start(connection.wifi_scan())
    assert isinstance(robot.read_encrypted(), RtsWifiScanRequest)
    robot.send_encrypted(scan)
    assert await task == scan
    assert [r.ssid for r in connection.scan_results] == ["home"]

    task = await _start(connection.wifi_connect("home", "secret"))
    request = robot.read_encrypted()
    assert request == RtsWifiConnectRequest(
        wifi_ssid_hex=ssid_to_hex("home"), password="secret", timeout=15, auth_type=3
    )
    response = RtsWifiConnectResponse(
        wifi_ssid_hex=ssid_to_hex("home"), wifi_state=1, connect_result=0
    )
    robot.send_encrypted(response)
    assert await task == response


@pytest.mark.asyncio
async def test_wifi_connect_defaults_for_unscanned_network(connection, robot):
    """Test the default auth type for a network missing from the scan."""
    pair(robot, connection)

    task = await _start(connection.wifi_connect("other", "pw", timeout=30))
    request = robot.read_encrypted()

    assert request.auth_type == 6
    assert request.timeout == 30
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task


@pytest.mark.asyncio
async def test_wifi_forget(connection, robot):
    """Test forgetting one network and all networks."""
    pair(robot, connection)

    task = await _start(connection.wifi_forget("home"))
    assert robot.read_encrypted() == RtsWifiForgetRequest(
        delete_all=False, wifi_ssid_hex=ssid_to_hex("home")
    )
    robot.send_encrypted(RtsWifiForgetResponse(did_delete=True, wifi_ssid_hex=ssid_to_hex("home")))
    assert (await task).did_delete

    task = await _start(connection.wifi_forget("!all"))
    assert robot.read_encrypted() == RtsWifiForgetRequest(delete_all=True)
    robot.send_encrypted(RtsWifiForgetResponse(did_delete=True))
    await task


@pytest.mark.asyncio
async def test_wifi_access_point_and_ip(connection, robot):
    """Test the access point toggle and the address query."""
    pair(robot, connection)

    task = await _start(connection.wifi_access_point(True))
    assert robot.read_encrypted() == RtsWifiAccessPointRequest(enable=True)
    robot.send_encrypted(RtsWifiAccessPointResponse(enabled=True, ssid="Vector A1B2", password="pw"))
    assert (await task).ssid == "Vector A1B2"

    task = await _start(connection.wifi_ip())
    assert isinstance(robot.read_encrypted(), RtsWifiIpRequest)
    robot.send_encrypted(RtsWifiIpResponse(has_ipv4=True, has_ipv6=False, ipv4=bytes([10, 0, 0, 2])))
    assert (await task).addresses == ["10.0.0.2"]


@pytest.mark.asyncio
async def test_status(connection, robot):
    """Test the status query."""
    pair(robot, connection)

    task = await _start(connection.status())
    assert isinstance(robot.read_encrypted(), RtsStatusRequest)
    robot.send_encrypted(STATUS)

    assert await task == STATUS


@pytest.mark.asyncio
async def test_status_timeout(transport, store, robot):
    """Test that an unanswered status query times out and a late reply is dropped."""
    connection = VectorConnection(transport, store, VectorBleConfig(status_timeout=0.01))
    printed = []
    connection.on_print.subscribe(printed.append)
    pair(robot, connection)

    assert await connection.status() is TIMED_OUT
    assert printed == ["Request timed out."]

    robot.read_encrypted()
    robot.send_encrypted(STATUS)


@pytest.mark.asyncio
async def test_status_is_sent_before_waiting(connection, robot):
    """Test that the status query goes out on the first step of the call."""
    pair(robot, connection)

    task = asyncio.ensure_future(connection.status())
    await asyncio.sleep(0)

    assert isinstance(robot.read_encrypted(), RtsStatusRequest)
    robot.send_encrypted(STATUS)
    assert await task == STATUS


@pytest.mark.asyncio
async def test_same_name_requests_do_not_orphan(connection, robot):
    """Test that two status queries each get a response in order."""
    pair(robot, connection)
    other = STATUS.model_copy(update={"version": "2.0.0"})

    first = await _start(connection.status())
    second = await _start(connection.status())
    robot.send_encrypted(STATUS)
    robot.send_encrypted(other)

    assert await first == STATUS
    assert await second == other


@pytest.mark.asyncio
async def test_generic_response_rejects_request(connection, robot):
    """Test that a nack fails the outstanding request."""
    pair(robot, connection)

    task = await _start(connection.wifi_ip())
    robot.send_encrypted(RtsResponse(code=403, text="Not cloud authorized"))

    with pytest.raises(RequestRejected) as err:
        await task
    assert err.value.name == "wifi-ip"
    assert err.value.response.code == 403


@pytest.mark.asyncio
async def test_update_start_succeeds(connection, robot):
    """Test that an update resolves once, on the completed status."""
    pair(robot, connection)
    printed = []
    bars = []
    connection.on_print.subscribe(printed.append)
    connection.on_new_progress_bar.subscribe(lambda: bars.append("new"))
    connection.on_update_progress_bar.subscribe(lambda current, total: bars.append((current, total)))

    task = await _start(connection.update_start("http://ota/latest"))
    assert robot.read_encrypted() == RtsOtaUpdateRequest(url="http://ota/latest")

    for status, current in ((1, 0), (1, 10), (2, 50)):
        robot.send_encrypted(RtsOtaUpdateResponse(status=status, current=current, expected=100))
        await asyncio.sleep(0)
        assert not task.done()

    robot.send_encrypted(RtsOtaUpdateResponse(status=3, current=100, expected=100))
    result = await task
    assert result.status == 3

    # A repeated completion has nobody left to resolve
    robot.send_encrypted(RtsOtaUpdateResponse(status=3, current=100, expected=100))

    assert printed == ["Updating robot with OTA from http://ota/latest"]
    assert bars == ["new", (0, 100), (10, 100), (50, 100), (100, 100)]
    assert connection.update_progress.status == 3
    assert connection.update_progress.current == 100


@pytest.mark.asyncio
async def test_update_start_fails(connection, robot):
    """Test that an error status rejects the update."""
    pair(robot, connection)
    progress = []
    connection.on_update_progress.subscribe(progress.append)

    task = await _start(connection.update_start("http://ota/bad"))
    robot.send_encrypted(RtsOtaUpdateResponse(status=1))
    robot.send_encrypted(RtsOtaUpdateResponse(status=5))

    with pytest.raises(RequestRejected):
        await task
    assert [p.status for p in progress] == [1, 5]
    assert connection.update_progress.status == 5


@pytest.mark.asyncio
async def test_update_cancel(connection, robot):
    """Test that a cancel waits while the update is still running."""
    pair(robot, connection)

    task = await _start(connection.update_cancel())
    assert isinstance(robot.read_encrypted(), RtsOtaCancelRequest)
    robot.send_encrypted(RtsOtaUpdateResponse(status=2))
    await asyncio.sleep(0)
    assert not task.done()

    robot.send_encrypted(RtsOtaUpdateResponse(status=0))
    assert (await task).status == 0


@pytest.mark.asyncio
async def test_unsolicited_update_status_is_recorded(connection, robot):
    """Test that status updates are tracked with nothing pending."""
    pair(robot, connection)

    robot.send_encrypted(RtsOtaUpdateResponse(status=2, current=5, expected=9))

    assert connection.update_progress.current == 5


@pytest.mark.asyncio
async def test_logs_download(connection, robot):
    """Test log reassembly from acknowledged chunks."""
    pair(robot, connection)
    downloaded = []
    progress = []
    connection.on_logs_downloaded.subscribe(lambda name, data: downloaded.append((name, data)))
    connection.on_log_progress.subscribe(progress.append)

    task = await _start(connection.logs())
    assert robot.read_encrypted() == RtsLogRequest(mode=0, filters=[])
    robot.send_encrypted(RtsLogResponse(exit_code=0, file_id=7))
    robot.send_encrypted(RtsFileDownload(file_id=8, packet_number=1, packet_total=1, file_chunk=b"??"))
    for number, chunk in enumerate((b"abc", b"def", b"gh"), start=1):
        robot.send_encrypted(
            RtsFileDownload(file_id=7, packet_number=number, packet_total=3, file_chunk=chunk)
        )

    artifact = await task
    assert artifact.data == b"abcdefgh"
    assert artifact.name.startswith("vector-logs-")
    assert artifact.name.endswith(".tar.bz2")
    assert downloaded == [(artifact.name, b"abcdefgh")]
    assert [p.packet_number for p in progress] == [1, 2, 3]


@pytest.mark.asyncio
async def test_logs_refused(connection, robot):
    """Test that a failed log request rejects with the exit code."""
    pair(robot, connection)

    task = await _start(connection.logs())
    robot.send_encrypted(RtsLogResponse(exit_code=2, file_id=0))

    with pytest.raises(TransferError) as err:
        await task
    assert err.value.exit_code == 2


@pytest.mark.asyncio
async def test_chunks_without_log_request_are_ignored(connection, robot):
    """Test that chunks for an unacknowledged transfer produce nothing."""
    pair(robot, connection)
    downloaded = []
    connection.on_logs_downloaded.subscribe(lambda name, data: downloaded.append(data))

    robot.send_encrypted(RtsFileDownload(file_id=1, packet_number=1, packet_total=1, file_chunk=b"x"))

    assert downloaded == []


@pytest.mark.asyncio
async def test_cancel_pairing(connection, robot):
    """Test that cancelling pairing sends the cancel message."""
    robot.request_connection()

    connection.cancel_pairing()

    assert robot.read_plain() == RtsCancelPairing()


@pytest.mark.asyncio
async def test_authentication_failure_fails_pending(connection, robot, store, transport):
    """Test that a bad frame discards the session and fails the caller."""
    pair(robot, connection)
    saves = store.saves

    task = await _start(connection.status())
    transport.deliver(b"\x00" * 40)
    transport.deliver(b"\x00" * 40)

    with pytest.raises(AuthenticationFailure):
        await task
    assert store.deleted == [robot.public_key]
    assert store.saves == saves + 1
    assert robot.public_key.hex() not in transport.sessions


@pytest.mark.asyncio
async def test_operations_refused_after_authentication_failure(connection, robot, transport):
    """Test that rejected keys leave the connection unusable without sending."""
    pair(robot, connection)
    transport.deliver(b"\x00" * 40)
    sent = len(transport.sent)

    assert not connection.is_authenticated
    with pytest.raises(AuthenticationFailure):
        await connection.wifi_scan()
    with pytest.raises(AuthenticationFailure):
        await connection.status()
    assert len(transport.sent) == sent


@pytest.mark.asyncio
async def test_cleanup_is_idempotent(connection, robot, transport):
    """Test that cleanup twice neither raises nor completes twice."""
    pair(robot, connection)
    task = await _start(connection.wifi_scan())

    connection.cleanup()
    connection.cleanup()

    with pytest.raises(ConnectionClosed):
        await task
    assert transport.handlers == []

    robot.send_encrypted(RtsWifiScanResponse(status_code=0))
    with pytest.raises(ConnectionClosed):
        await connection.wifi_scan()
