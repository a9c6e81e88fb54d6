"""A single RTS session with a Vector robot."""

from __future__ import annotations

import logging
from typing import Any

from ..config import VectorBleConfig
from ..const import DEFAULT_WIFI_AUTH_TYPE, FORGET_ALL_NETWORKS, PAIRING_FAILED_MESSAGE
from .ble_interface import VectorBLEInterface
from .channel import EncryptedChannel
from .events import EventHook
from .exceptions import (
    AuthenticationFailure,
    ConnectionClosed,
    HandshakeCancelled,
    HandshakeError,
    MessageDecodeError,
    RequestRejected,
    TransferError,
)
from .messages import (
    RtsCancelPairing,
    RtsChallengeMessage,
    RtsChallengeSuccessMessage,
    RtsConnRequest,
    RtsFileDownload,
    RtsLogRequest,
    RtsLogResponse,
    RtsMessage,
    RtsNonceMessage,
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
    decode_frame,
    encode_frame,
    is_handshake_frame,
    ssid_to_hex,
)
from .models import UpdateProgress
from .pending import TIMED_OUT, PendingRequest, RequestCorrelator, with_timeout
from .protocol import MessageDispatcher
from .session_manager import ConnectionState, HandshakeStateMachine
from .session_store import SessionStore
from .transfer import (
    LogArtifact,
    LogReassembler,
    UpdateOutcome,
    UpdateProgressMonitor,
    artifact_name,
)

_LOGGER = logging.getLogger(__name__)

WIFI_SCAN: str = "wifi-scan"
WIFI_CONNECT: str = "wifi-connect"
WIFI_FORGET: str = "wifi-forget"
WIFI_ACCESS_POINT: str = "wifi-access-point"
WIFI_IP: str = "wifi-ip"
STATUS: str = "status"
UPDATE_START: str = "update-start"
UPDATE_CANCEL: str = "update-cancel"
LOGS: str = "logs"


class VectorConnection:
    """Client side of one RTS v2 connection.

    Owns the handshake, the encrypted channel, the pending requests and the
    log accumulator for a single robot. Frames are processed one at a time
    on the event loop as the transport delivers them.
    """

    def __init__(
        self,
        transport: VectorBLEInterface,
        store: SessionStore,
        config: VectorBleConfig | None = None,
    ) -> None:
        """Attach to a transport and start listening for the robot.

        Args:
            transport: The BLE transport carrying frames.
            store: Persistent session store.
            config: Timeouts and persistence settings.
        """
        self._transport = transport
        self._store = store
        self._config = config or VectorBleConfig()
        self._channel = EncryptedChannel()
        self._requests = RequestCorrelator()
        self._logs = LogReassembler()
        self._ota = UpdateProgressMonitor()
        self._dispatcher = MessageDispatcher()
        self._scan_results: list[RtsWifiScanResult] = []
        self._has_progress_bar = False
        self._closed = False

        self.on_authenticated = EventHook("authenticated")
        self.on_ready_for_pin = EventHook("ready_for_pin")
        self.on_update_progress = EventHook("update_progress")
        self.on_log_progress = EventHook("log_progress")
        self.on_logs_downloaded = EventHook("logs_downloaded")
        self.on_print = EventHook("print")
        self.on_command_done = EventHook("command_done")
        self.on_new_progress_bar = EventHook("new_progress_bar")
        self.on_update_progress_bar = EventHook("update_progress_bar")

        self._handshake = HandshakeStateMachine(
            self.send,
            self._channel,
            store,
            transport.sessions,
            on_ready_for_pin=lambda: self.on_ready_for_pin.fire(self),
            on_authenticated=lambda: self.on_authenticated.fire(self),
            on_cancel=self._cancel_connection,
            timeout=self._config.connect_timeout,
        )
        self._register_routes()

        if self._config.persist_sessions:
            self.on_authenticated.subscribe(self._persist_session)

        transport.on_receive(self.receive)

    def _register_routes(self) -> None:
        route = self._dispatcher.register
        route(RtsConnRequest, self._handshake.on_conn_request)
        route(RtsNonceMessage, self._handshake.on_nonce_message)
        route(RtsChallengeMessage, self._handshake.on_challenge_message)
        route(
            RtsChallengeSuccessMessage,
            self._handshake.on_challenge_success_message,
            requires_encryption=True,
        )

        responses: dict[type[RtsMessage], str] = {
            RtsWifiConnectResponse: WIFI_CONNECT,
            RtsStatusResponse: STATUS,
            RtsWifiForgetResponse: WIFI_FORGET,
            RtsWifiAccessPointResponse: WIFI_ACCESS_POINT,
            RtsWifiIpResponse: WIFI_IP,
        }
        for message_type, name in responses.items():
            route(
                message_type,
                lambda msg, name=name: self._requests.resolve(name, msg),
                requires_encryption=True,
            )
        route(RtsWifiScanResponse, self._on_wifi_scan_response, requires_encryption=True)
        route(RtsOtaUpdateResponse, self._on_ota_update_response, requires_encryption=True)
        route(RtsResponse, self._on_response, requires_encryption=True)
        route(RtsLogResponse, self._on_log_response, requires_encryption=True)
        route(RtsFileDownload, self._on_file_download, requires_encryption=True)

    # --- STATE ---

    @property
    def state(self) -> ConnectionState:
        return self._handshake.state

    @property
    def is_authenticated(self) -> bool:
        return self._handshake.is_authenticated

    @property
    def encrypted(self) -> bool:
        return self._channel.encrypted

    @property
    def keys_authorized(self) -> bool:
        return self._handshake.keys_authorized

    @property
    def first_time_pair(self) -> bool:
        return self._handshake.first_time_pair

    @property
    def remote_identity(self) -> bytes | None:
        return self._handshake.remote_identity

    @property
    def channel(self) -> EncryptedChannel:
        return self._channel

    @property
    def update_progress(self) -> UpdateProgress | None:
        """Last firmware update status seen, kept after the update finishes."""
        return self._ota.last

    @property
    def scan_results(self) -> list[RtsWifiScanResult]:
        return list(self._scan_results)

    # --- FRAMES ---

    def send(self, message: RtsMessage) -> None:
        """Serialize, encrypt if the channel is active, and transmit a message."""
        data = encode_frame(message)
        _LOGGER.debug("Sending %s (%d bytes)", type(message).__name__, len(data))
        if self._channel.encrypted:
            data = self._channel.wrap(data)
        self._transport.send(data)

    def receive(self, data: bytes) -> None:
        """Process one frame from the transport."""
        if self._closed:
            return
        data = bytes(data)

        # The link handshake is always plaintext and shorter than any sealed frame
        if is_handshake_frame(data):
            self._handshake.abort("robot restarted the link handshake")
            return

        encrypted = self._channel.encrypted
        if encrypted:
            if self._channel.compromised:
                _LOGGER.debug("Dropping frame on compromised channel")
                return
            try:
                data = self._channel.unwrap(data)
            except AuthenticationFailure as err:
                self._on_authentication_failure(err)
                return

        try:
            message = decode_frame(data)
        except MessageDecodeError as err:
            _LOGGER.warning("Dropping malformed frame: %s", err)
            return

        if message is None:
            return
        self._dispatcher.dispatch(message, encrypted)

    def _on_authentication_failure(self, err: AuthenticationFailure) -> None:
        remote = self._handshake.remote_identity
        _LOGGER.error("Error decrypting frame, discarding session: %s", err)
        if remote is not None:
            self._store.delete_session(remote)
            self._store.save()
            self._transport.sessions.pop(remote.hex(), None)
        self._handshake.invalidate()
        self.on_print.fire("Error decrypting message from robot. Pair again.")
        self._requests.fail_all(err)

    def _cancel_connection(self) -> None:
        self.on_print.fire(PAIRING_FAILED_MESSAGE)
        self._transport.try_disconnect()
        self._requests.fail_all(HandshakeCancelled("Pairing was cancelled"))
        self.on_command_done.fire()

    def _persist_session(self, _connection: VectorConnection) -> None:
        handshake = self._handshake
        if (
            handshake.remote_identity is None
            or handshake.session_keys is None
            or handshake.key_pair is None
        ):
            return
        self._store.set_session(handshake.remote_identity, handshake.session_keys)
        self._store.set_keys(handshake.key_pair)
        self._store.save()

    def cleanup(self) -> None:
        """Detach from the transport; safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._handshake.cancel_timer()
        self._transport.on_receive_unsubscribe(self.receive)
        self._requests.fail_all(ConnectionClosed("Connection closed"))
        _LOGGER.debug("Connection cleaned up")

    # --- HANDLERS ---

    def _on_wifi_scan_response(self, msg: RtsWifiScanResponse) -> None:
        self._scan_results = list(msg.scan_result)
        self._requests.resolve(WIFI_SCAN, msg)

    def _on_response(self, msg: RtsResponse) -> None:
        name = self._requests.awaiting
        _LOGGER.warning("Robot rejected '%s': %d %s", name, msg.code, msg.text)
        if name is not None:
            self._requests.reject_awaiting(RequestRejected(name, msg))

    def _on_ota_update_response(self, msg: RtsOtaUpdateResponse) -> None:
        self._ota.record(msg)
        self.on_update_progress.fire(msg)
        if self._has_progress_bar:
            self.on_update_progress_bar.fire(msg.current, msg.expected)

        awaiting = self._requests.awaiting
        if awaiting == UPDATE_START:
            outcome = self._ota.start_outcome(msg.status)
        elif awaiting == UPDATE_CANCEL:
            outcome = self._ota.cancel_outcome(msg.status)
        else:
            return

        if outcome is UpdateOutcome.SUCCEEDED:
            self._requests.resolve(awaiting, msg)
        elif outcome is UpdateOutcome.FAILED:
            self._requests.reject(awaiting, RequestRejected(awaiting, msg))

    def _on_log_response(self, msg: RtsLogResponse) -> None:
        try:
            self._logs.start(msg)
        except TransferError as err:
            self._requests.reject(LOGS, err)

    def _on_file_download(self, msg: RtsFileDownload) -> None:
        if not self._logs.accept(msg):
            return

        self.on_log_progress.fire(msg)
        if self._has_progress_bar:
            self.on_update_progress_bar.fire(msg.packet_number, msg.packet_total)

        if self._logs.is_last(msg):
            name = artifact_name(self._config.log_artifact_prefix)
            data = self._logs.finish()
            self.on_logs_downloaded.fire(name, data)
            self._requests.resolve(LOGS, LogArtifact(name=name, data=data, response=msg))

    # --- OPERATIONS ---

    def enter_pin(self, pin: str) -> None:
        """Supply the PIN shown on the robot's face."""
        self._handshake.enter_pin(pin)

    def cancel_pairing(self) -> None:
        """Tell the robot to abandon pairing; no response is expected."""
        self.send(RtsCancelPairing())

    def _issue(self, name: str, message: RtsMessage) -> PendingRequest:
        """Register and send a request without waiting for the reply."""
        if self._closed:
            raise ConnectionClosed("Connection closed")
        if self._channel.compromised:
            raise AuthenticationFailure("Session keys were rejected; pair again")
        if not self._handshake.is_authenticated:
            raise HandshakeError(f"Cannot send '{name}' before authentication")

        pending = self._requests.register(name)
        try:
            self.send(message)
        except Exception:
            self._requests.discard(pending.request_id)
            raise
        return pending

    async def _request(self, name: str, message: RtsMessage) -> Any:
        return await self._issue(name, message).future

    def _start_progress_bar(self, notice: str) -> None:
        self._has_progress_bar = True
        self.on_print.fire(notice)
        self.on_new_progress_bar.fire()

    async def wifi_scan(self) -> RtsWifiScanResponse:
        """Ask the robot which networks it can see."""
        return await self._request(WIFI_SCAN, RtsWifiScanRequest())  # type: ignore[no-any-return]

    async def wifi_connect(
        self,
        ssid: str,
        password: str,
        auth_type: int | None = None,
        timeout: int | None = None,
    ) -> RtsWifiConnectResponse:
        """Connect the robot to a network.

        Args:
            ssid: Network name.
            password: Network password.
            auth_type: Auth type; taken from the last scan when omitted.
            timeout: Seconds the robot should try before giving up.
        """
        if auth_type is None:
            auth_type = next(
                (r.auth_type for r in self._scan_results if r.ssid == ssid),
                DEFAULT_WIFI_AUTH_TYPE,
            )
        request = RtsWifiConnectRequest(
            wifi_ssid_hex=ssid_to_hex(ssid),
            password=password,
            timeout=self._config.wifi_connect_timeout if timeout is None else timeout,
            auth_type=auth_type,
            hidden=False,
        )
        return await self._request(WIFI_CONNECT, request)  # type: ignore[no-any-return]

    async def wifi_forget(self, ssid: str) -> RtsWifiForgetResponse:
        """Forget one network, or all of them when ssid is "!all"."""
        delete_all = ssid == FORGET_ALL_NETWORKS
        request = RtsWifiForgetRequest(
            delete_all=delete_all, wifi_ssid_hex="" if delete_all else ssid_to_hex(ssid)
        )
        return await self._request(WIFI_FORGET, request)  # type: ignore[no-any-return]

    async def wifi_access_point(self, enable: bool) -> RtsWifiAccessPointResponse:
        """Turn the robot's own access point on or off."""
        return await self._request(  # type: ignore[no-any-return]
            WIFI_ACCESS_POINT, RtsWifiAccessPointRequest(enable=enable)
        )

    async def wifi_ip(self) -> RtsWifiIpResponse:
        """Get the robot's IPv4/IPv6 addresses."""
        return await self._request(WIFI_IP, RtsWifiIpRequest())  # type: ignore[no-any-return]

    async def status(self, timeout: float | None = None) -> Any:
        """Get the robot's status.

        Returns:
            The RtsStatusResponse, or TIMED_OUT if the robot did not answer
            within the status deadline.
        """
        deadline = self._config.status_timeout if timeout is None else timeout
        pending = self._issue(STATUS, RtsStatusRequest())
        result = await with_timeout(pending.future, deadline)
        if result is TIMED_OUT:
            self.on_print.fire("Request timed out.")
        return result

    async def update_start(self, url: str) -> RtsOtaUpdateResponse:
        """Start a firmware update and wait until it completes.

        Raises:
            RequestRejected: If the robot reports an update error.
        """
        self._start_progress_bar(f"Updating robot with OTA from {url}")
        try:
            return await self._request(UPDATE_START, RtsOtaUpdateRequest(url=url))  # type: ignore[no-any-return]
        finally:
            self._has_progress_bar = False

    async def update_cancel(self) -> RtsOtaUpdateResponse:
        """Cancel a firmware update and wait until the robot stops it."""
        return await self._request(UPDATE_CANCEL, RtsOtaCancelRequest())  # type: ignore[no-any-return]

    async def logs(self) -> LogArtifact:
        """Download the robot's logs.

        Raises:
            TransferError: If the robot refuses to start the transfer.
        """
        self._start_progress_bar("Downloading logs...")
        try:
            return await self._request(LOGS, RtsLogRequest(mode=0, filters=[]))  # type: ignore[no-any-return]
        finally:
            self._has_progress_bar = False
