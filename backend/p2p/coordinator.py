"""
Connection coordinator that drives WiFi Direct discovery and connection.

Issues requests to the platform, tracks the session state and fans out
events (log, devices_changed, connection_changed, status_changed,
this_device_changed) to registered callbacks. Platform failures never
propagate to callers; they are translated and reported as log and status
events instead.
"""

import itertools
import logging

from config import GROUP_OWNER_INTENT
from p2p.activity import ActivityLog
from p2p.exceptions import PlatformUnsupported, RequestRejected
from p2p.models import (
    ConnectConfig,
    ConnectionInfo,
    CoordinatorState,
    DeviceStatus,
    FailureReason,
    PeerDevice,
    WpsSetup,
)
from p2p.platform import P2pPlatform
from p2p.receiver import EventDemultiplexer

logger = logging.getLogger(__name__)

_FAILURE_REASONS = {
    FailureReason.P2P_UNSUPPORTED: "P2P unsupported",
    FailureReason.ERROR: "internal error",
    FailureReason.BUSY: "system busy",
}

_DEVICE_STATUSES = {
    DeviceStatus.AVAILABLE: "available",
    DeviceStatus.INVITED: "invited",
    DeviceStatus.CONNECTED: "connected",
    DeviceStatus.FAILED: "failed",
    DeviceStatus.UNAVAILABLE: "unavailable",
}

SEPARATOR = "=" * 32


def failure_reason_to_string(reason: int) -> str:
    return _FAILURE_REASONS.get(reason, f"unknown error ({reason})")


def device_status_to_string(status: int) -> str:
    return _DEVICE_STATUSES.get(status, f"unknown ({status})")


def pick_auto_connect_target(devices: list[PeerDevice]) -> PeerDevice | None:
    """First AVAILABLE device, else the first device, else None."""
    for device in devices:
        if device.status == DeviceStatus.AVAILABLE:
            return device
    return devices[0] if devices else None


class ConnectionCoordinator:
    """Owns the platform handle and the P2P session state."""

    def __init__(
        self,
        platform: P2pPlatform,
        group_owner_intent: int = GROUP_OWNER_INTENT,
        activity: ActivityLog | None = None,
    ) -> None:
        self._platform = platform
        self._group_owner_intent = group_owner_intent
        self._activity = activity if activity is not None else ActivityLog()
        self._state = CoordinatorState()
        self._devices: list[PeerDevice] = []
        self._receiver: EventDemultiplexer | None = None
        self._ready = False
        self._event_callbacks: list = []  # async fn(event_type, data)

        # Request ids per kind, used to drop superseded completions
        self._request_ids = itertools.count(1)
        self._latest_request: dict[str, int] = {}

    # --- State ---

    @property
    def state(self) -> CoordinatorState:
        return self._state.model_copy()

    @property
    def is_connected(self) -> bool:
        return self._state.is_connected

    @property
    def is_discovering(self) -> bool:
        return self._state.is_discovering

    @property
    def connected_device(self) -> PeerDevice | None:
        return self._state.connected_device

    @property
    def connection_info(self) -> ConnectionInfo | None:
        return self._state.connection_info

    @property
    def auto_connect_pending(self) -> bool:
        return self._state.auto_connect_pending

    @property
    def discovered_devices(self) -> list[PeerDevice]:
        return list(self._devices)

    @property
    def activity(self) -> ActivityLog:
        return self._activity

    @property
    def is_ready(self) -> bool:
        return self._ready

    # --- Events ---

    def on_event(self, callback) -> None:
        """Register callback: async fn(event_type: str, data: dict)."""
        self._event_callbacks.append(callback)

    async def _emit(self, event_type: str, data: dict) -> None:
        for cb in self._event_callbacks:
            try:
                await cb(event_type, data)
            except Exception as e:
                logger.error(f"Event callback error: {e}")

    async def log(self, message: str) -> None:
        """Record an activity line and publish it."""
        logger.info(message)
        entry = self._activity.append(message)
        await self._emit("log", {"message": message, "line": entry.format()})

    async def _set_status(self, status: str) -> None:
        await self._emit("status_changed", {"status": status})

    async def _notify_connection(self, connected: bool, info: ConnectionInfo | None) -> None:
        await self._emit(
            "connection_changed",
            {
                "connected": connected,
                "info": info.model_dump(mode="json") if info else None,
            },
        )

    # --- Request bookkeeping ---

    def _begin(self, kind: str) -> int:
        request_id = next(self._request_ids)
        self._latest_request[kind] = request_id
        return request_id

    def _is_stale(self, kind: str, request_id: int) -> bool:
        if self._latest_request.get(kind) != request_id:
            logger.debug(f"Ignoring superseded {kind} completion (request {request_id})")
            return True
        return False

    async def _require_ready(self, report: bool = True) -> bool:
        if self._ready:
            return True
        if report:
            await self.log("[ERROR] WiFi Direct is not initialized")
        return False

    # --- Lifecycle ---

    async def initialize(self) -> bool:
        """Acquire the platform handle. Returns False if P2P is unsupported."""
        await self.log("Initializing WiFi Direct...")
        try:
            await self._platform.initialize(on_channel_lost=self._on_channel_lost)
        except PlatformUnsupported as e:
            await self.log(f"[ERROR] This device does not support WiFi Direct ({e})")
            return False
        self._ready = True
        await self.log("WiFi Direct initialized")
        return True

    async def _on_channel_lost(self) -> None:
        await self.log("[WARNING] WiFi Direct channel disconnected")

    def register_receiver(self) -> bool:
        if not self._ready:
            logger.error("Cannot register broadcast receiver before initialization")
            return False
        if self._receiver is not None:
            return True
        self._receiver = EventDemultiplexer(self)
        self._platform.register_receiver(self._receiver.on_receive)
        self._activity.append("Broadcast receiver registered")
        logger.info("Broadcast receiver registered")
        return True

    def unregister_receiver(self) -> None:
        if self._receiver is None:
            return
        try:
            self._platform.unregister_receiver(self._receiver.on_receive)
            self._activity.append("Broadcast receiver unregistered")
            logger.info("Broadcast receiver unregistered")
        except ValueError as e:
            logger.warning(f"Unregister receiver error: {e}")
        self._receiver = None

    async def shutdown(self) -> None:
        """Stop discovery, disconnect and release the platform. Safe to repeat."""
        if not self._ready and self._receiver is None:
            return

        await self.log("Shutting down WiFi Direct coordinator...")
        if self._state.is_discovering:
            await self.stop_discovery()
        if self._state.is_connected:
            await self.disconnect()
        self.unregister_receiver()
        if self._ready:
            self._ready = False
            await self._platform.close()

        self._state = CoordinatorState()
        self._devices = []
        self._latest_request.clear()
        await self.log("WiFi Direct coordinator shut down")

    # --- Discovery ---

    async def discover_peers(self) -> None:
        """Ask the platform to start discovery. Results arrive via broadcasts."""
        if not await self._require_ready():
            return

        await self.log("Searching for nearby WiFi Direct devices...")
        await self._set_status("Status: searching for devices...")

        request_id = self._begin("discovery")
        try:
            await self._platform.discover_peers()
        except RequestRejected as e:
            if self._is_stale("discovery", request_id):
                return
            self._state.is_discovering = False
            reason = failure_reason_to_string(e.reason)
            await self.log(f"[ERROR] Device discovery failed: {reason}")
            await self._set_status(f"Status: discovery failed ({reason})")
            return

        if self._is_stale("discovery", request_id):
            return
        self._state.is_discovering = True
        await self.log("Discovery started, waiting for the platform to report peers...")

    async def stop_discovery(self) -> None:
        if not await self._require_ready(report=False):
            return

        request_id = self._begin("discovery")
        try:
            await self._platform.stop_peer_discovery()
        except RequestRejected as e:
            if self._is_stale("discovery", request_id):
                return
            await self.log(f"[WARNING] Failed to stop discovery: {failure_reason_to_string(e.reason)}")
            return

        if self._is_stale("discovery", request_id):
            return
        self._state.is_discovering = False
        await self.log("Discovery stopped")
        await self._set_status("Status: idle")

    async def request_peers(self) -> None:
        """Pull the peer snapshot and run a pending auto-connect."""
        if not await self._require_ready(report=False):
            return

        request_id = self._begin("peers")
        try:
            devices = await self._platform.request_peers()
        except RequestRejected as e:
            if not self._is_stale("peers", request_id):
                await self.log(f"[WARNING] Failed to fetch peers: {failure_reason_to_string(e.reason)}")
            return

        if self._is_stale("peers", request_id):
            return

        self._devices = list(devices)
        if not devices:
            await self.log("Device list updated: no devices found")
        else:
            await self.log(f"Found {len(devices)} device(s):")
            for index, device in enumerate(devices, start=1):
                await self.log(
                    f"  [{index}] {device.device_name} ({device.device_address}) - "
                    f"{device_status_to_string(device.status)}"
                )

        await self._emit(
            "devices_changed",
            {"devices": [d.model_dump(mode="json") for d in devices]},
        )

        if self._state.auto_connect_pending and not self._state.is_connected and devices:
            await self.log("Auto-connect: connecting to the first available device...")
            target = pick_auto_connect_target(devices)
            self._state.auto_connect_pending = False
            await self.connect_to_device(target)

    # --- Connection ---

    async def connect_to_device(self, device: PeerDevice) -> None:
        """Send a push-button connect request to ``device``."""
        if not await self._require_ready():
            return

        await self.log(SEPARATOR)
        await self.log(f"Connecting to: {device.device_name}")
        await self.log(f"  Address: {device.device_address}")
        await self.log(f"  Type: {device.primary_device_type}")
        await self.log(f"  Status: {device_status_to_string(device.status)}")
        await self.log(SEPARATOR)
        await self._set_status(f"Status: connecting to {device.device_name}...")

        config = ConnectConfig(
            device_address=device.device_address,
            wps_setup=WpsSetup.PBC,
            group_owner_intent=self._group_owner_intent,
        )

        request_id = self._begin("connect")
        try:
            await self._platform.connect(config)
        except RequestRejected as e:
            if self._is_stale("connect", request_id):
                return
            reason = failure_reason_to_string(e.reason)
            await self.log(f"[ERROR] Connect request failed: {reason}")
            await self._set_status(f"Status: connection failed ({reason})")
            return

        if self._is_stale("connect", request_id):
            return
        # Not confirmed until a connection broadcast reports a formed group
        self._state.connected_device = device
        await self.log("Connect request sent, waiting for the peer to accept...")
        await self.log("(The peer may show a pairing prompt)")

    async def auto_discover_and_connect(self) -> None:
        """Discover peers and connect to the first usable one once they arrive."""
        if not await self._require_ready():
            return

        await self.log(SEPARATOR)
        await self.log("Starting one-tap auto-connect")
        await self.log(SEPARATOR)

        if self._state.is_connected:
            await self.log("Already connected, disconnecting first...")
            await self.disconnect()

        self._state.auto_connect_pending = True
        await self.discover_peers()

    async def request_connection_info(self) -> None:
        if not await self._require_ready(report=False):
            return

        request_id = self._begin("connection_info")
        try:
            info = await self._platform.request_connection_info()
        except RequestRejected as e:
            if not self._is_stale("connection_info", request_id):
                await self.log(
                    f"[WARNING] Failed to fetch connection info: {failure_reason_to_string(e.reason)}"
                )
            return

        if self._is_stale("connection_info", request_id):
            return

        self._state.connection_info = info
        if info.group_formed:
            self._state.is_connected = True
            role = "this device" if info.is_group_owner else "peer"
            await self.log(SEPARATOR)
            await self.log("WiFi Direct connection established!")
            await self.log(f"  Group Owner: {role}")
            await self.log(f"  Group Owner IP: {info.group_owner_address}")
            await self.log(SEPARATOR)
            await self._set_status("Status: connected")
            await self._notify_connection(True, info)
        else:
            self._state.is_connected = False
            await self.log("Connection info updated: no group formed")
            await self._notify_connection(False, None)

    async def disconnect(self) -> None:
        """Remove the current group, falling back to cancelling the connect."""
        if not await self._require_ready(report=False):
            return

        await self.log("Disconnecting WiFi Direct...")
        await self._set_status("Status: disconnecting...")

        request_id = self._begin("disconnect")
        try:
            await self._platform.remove_group()
        except RequestRejected as e:
            if self._is_stale("disconnect", request_id):
                return
            await self.log(f"[WARNING] Failed to remove group: {failure_reason_to_string(e.reason)}")
            await self._cancel_connect(request_id)
            return

        if self._is_stale("disconnect", request_id):
            return
        self._clear_connection()
        await self.log("Disconnected")
        await self._set_status("Status: disconnected")
        await self._notify_connection(False, None)

    async def _cancel_connect(self, request_id: int) -> None:
        try:
            await self._platform.cancel_connect()
        except RequestRejected as e:
            if self._is_stale("disconnect", request_id):
                return
            await self.log(f"[WARNING] Failed to cancel connection: {failure_reason_to_string(e.reason)}")
            await self._set_status("Status: disconnect error")
            return

        if self._is_stale("disconnect", request_id):
            return
        self._clear_connection()
        await self.log("Connection cancelled")
        await self._set_status("Status: disconnected")
        await self._notify_connection(False, None)

    def _clear_connection(self) -> None:
        self._state.is_connected = False
        self._state.connected_device = None
        self._state.connection_info = None

    # --- Broadcast handlers ---

    async def on_wifi_p2p_enabled(self, enabled: bool) -> None:
        if enabled:
            await self.log("WiFi Direct is enabled")
        else:
            await self.log("[WARNING] WiFi Direct is disabled, turn on WiFi")
            await self._set_status("Status: WiFi Direct disabled")

    async def on_disconnected(self) -> None:
        # An in-flight connection-info fetch must not re-mark the link as up
        self._begin("connection_info")
        self._clear_connection()
        await self._set_status("Status: disconnected")
        await self._notify_connection(False, None)

    async def on_this_device_changed(self, device: PeerDevice) -> None:
        self._state.this_device = device
        await self._emit("this_device_changed", {"device": device.model_dump(mode="json")})
