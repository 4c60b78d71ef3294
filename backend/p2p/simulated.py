"""
In-memory WiFi Direct platform.

Behaves like a platform stack from the coordinator's point of view: requests
complete or are rejected, and state changes are announced by broadcasts.
Scenario drivers (``publish_peers``, ``form_group`` ...) let callers play the
part of the radio stack.
"""

import asyncio
import logging
from collections import defaultdict, deque

from p2p.exceptions import PlatformUnsupported, RequestRejected
from p2p.models import (
    WIFI_P2P_STATE_DISABLED,
    WIFI_P2P_STATE_ENABLED,
    BroadcastAction,
    ConnectConfig,
    ConnectionInfo,
    DeviceStatus,
    FailureReason,
    P2pBroadcast,
    PeerDevice,
)
from p2p.platform import ChannelLostCallback, P2pPlatform

logger = logging.getLogger(__name__)

DEFAULT_GROUP_OWNER_ADDRESS = "192.168.49.1"


class SimulatedP2pPlatform(P2pPlatform):
    """Scriptable platform used by the demo backend and the test suite."""

    def __init__(
        self,
        supported: bool = True,
        peers: list[PeerDevice] | None = None,
        this_device: PeerDevice | None = None,
        auto_respond: bool = False,
    ) -> None:
        super().__init__()
        self.supported = supported
        self.peers: list[PeerDevice] = list(peers or [])
        self.this_device = this_device
        self.connection_info = ConnectionInfo()
        self.auto_respond = auto_respond

        self.calls: list[str] = []
        self.connect_requests: list[ConnectConfig] = []
        self._rejections: dict[str, deque[int]] = defaultdict(deque)
        self._tasks: set[asyncio.Task] = set()

    # --- Scripting ---

    def reject_next(self, method: str, reason: int = FailureReason.ERROR) -> None:
        """Make the next call to ``method`` fail with ``reason``."""
        self._rejections[method].append(int(reason))

    def call_count(self, method: str) -> int:
        return self.calls.count(method)

    async def _request(self, method: str) -> None:
        self.calls.append(method)
        # Completions are delivered on a later loop iteration
        await asyncio.sleep(0)
        if self._rejections[method]:
            raise RequestRejected(self._rejections[method].popleft())

    def _schedule(self, coro) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # --- Requests ---

    async def initialize(self, on_channel_lost: ChannelLostCallback | None = None) -> None:
        self.calls.append("initialize")
        if not self.supported:
            raise PlatformUnsupported("simulated device has no P2P support")
        self._on_channel_lost = on_channel_lost
        if self.auto_respond:
            self._schedule(self.set_enabled(True))
            if self.this_device:
                self._schedule(self.set_this_device(self.this_device))

    async def discover_peers(self) -> None:
        await self._request("discover_peers")
        if self.auto_respond:
            self._schedule(self.publish_peers(self.peers))

    async def stop_peer_discovery(self) -> None:
        await self._request("stop_peer_discovery")

    async def request_peers(self) -> list[PeerDevice]:
        await self._request("request_peers")
        return list(self.peers)

    async def connect(self, config: ConnectConfig) -> None:
        self.connect_requests.append(config)
        await self._request("connect")
        if self.auto_respond:
            self._schedule(self.form_group())

    async def remove_group(self) -> None:
        await self._request("remove_group")
        if self.auto_respond:
            self._schedule(self.drop_group())

    async def cancel_connect(self) -> None:
        await self._request("cancel_connect")

    async def request_connection_info(self) -> ConnectionInfo:
        await self._request("request_connection_info")
        return self.connection_info

    async def close(self) -> None:
        self.calls.append("close")
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
        self._on_channel_lost = None

    # --- Scenario drivers ---

    async def publish_peers(self, devices: list[PeerDevice]) -> None:
        """Replace the peer snapshot and announce it."""
        self.peers = list(devices)
        await self.send_broadcast(P2pBroadcast(action=BroadcastAction.PEERS_CHANGED))

    async def form_group(
        self,
        is_group_owner: bool = False,
        group_owner_address: str = DEFAULT_GROUP_OWNER_ADDRESS,
    ) -> None:
        """Pretend group negotiation finished and announce the connection."""
        self.connection_info = ConnectionInfo(
            group_formed=True,
            is_group_owner=is_group_owner,
            group_owner_address=group_owner_address,
        )
        if self.connect_requests:
            address = self.connect_requests[-1].device_address
            self.peers = [
                p.model_copy(update={"status": DeviceStatus.CONNECTED})
                if p.device_address == address else p
                for p in self.peers
            ]
        await self.send_broadcast(
            P2pBroadcast(action=BroadcastAction.CONNECTION_CHANGED, network_connected=True)
        )

    async def drop_group(self) -> None:
        """Tear the group down and announce the disconnection."""
        self.connection_info = ConnectionInfo()
        self.peers = [
            p.model_copy(update={"status": DeviceStatus.AVAILABLE})
            if p.status == DeviceStatus.CONNECTED else p
            for p in self.peers
        ]
        await self.send_broadcast(
            P2pBroadcast(action=BroadcastAction.CONNECTION_CHANGED, network_connected=False)
        )

    async def set_enabled(self, enabled: bool) -> None:
        state = WIFI_P2P_STATE_ENABLED if enabled else WIFI_P2P_STATE_DISABLED
        await self.send_broadcast(
            P2pBroadcast(action=BroadcastAction.STATE_CHANGED, wifi_p2p_state=state)
        )

    async def set_this_device(self, device: PeerDevice) -> None:
        self.this_device = device
        await self.send_broadcast(
            P2pBroadcast(action=BroadcastAction.THIS_DEVICE_CHANGED, device=device)
        )

    async def lose_channel(self) -> None:
        logger.info("Simulated P2P channel lost")
        await self._channel_lost()
