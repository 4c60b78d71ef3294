"""
Broadcast demultiplexer.

Routes the four platform broadcast kinds to the coordinator. Holds no state
of its own, so duplicate or out-of-order delivery is harmless.
"""

import logging
from typing import TYPE_CHECKING

from p2p.models import WIFI_P2P_STATE_ENABLED, BroadcastAction, P2pBroadcast

if TYPE_CHECKING:
    from p2p.coordinator import ConnectionCoordinator

logger = logging.getLogger(__name__)


class EventDemultiplexer:
    """Dispatches platform broadcasts to a ConnectionCoordinator."""

    def __init__(self, coordinator: "ConnectionCoordinator") -> None:
        self._coordinator = coordinator

    async def on_receive(self, broadcast: P2pBroadcast) -> None:
        coordinator = self._coordinator
        action = broadcast.action

        if action == BroadcastAction.STATE_CHANGED:
            enabled = broadcast.wifi_p2p_state == WIFI_P2P_STATE_ENABLED
            await coordinator.on_wifi_p2p_enabled(enabled)

        elif action == BroadcastAction.PEERS_CHANGED:
            await coordinator.log("[Broadcast] Peer list changed, fetching latest list...")
            await coordinator.request_peers()

        elif action == BroadcastAction.CONNECTION_CHANGED:
            if broadcast.network_connected:
                await coordinator.log("[Broadcast] WiFi Direct connected, fetching connection info...")
                await coordinator.request_connection_info()
            else:
                await coordinator.log("[Broadcast] WiFi Direct connection lost")
                await coordinator.on_disconnected()

        elif action == BroadcastAction.THIS_DEVICE_CHANGED:
            device = broadcast.device
            if device is not None:
                await coordinator.log(
                    f"[Broadcast] This device: {device.device_name} ({device.device_address})"
                )
                await coordinator.on_this_device_changed(device)

        else:
            logger.debug(f"Ignoring unknown broadcast: {action}")
