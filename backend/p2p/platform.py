"""
Platform abstraction for the WiFi Direct stack.

A platform performs the real work (radio, discovery protocol, WPS, group
formation) and reports back in two ways: each request either completes or
raises ``RequestRejected``, and state changes arrive later as broadcasts
delivered to every registered receiver.
"""

import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable

from p2p.models import ConnectConfig, ConnectionInfo, P2pBroadcast, PeerDevice

logger = logging.getLogger(__name__)

BroadcastCallback = Callable[[P2pBroadcast], Awaitable[None]]
ChannelLostCallback = Callable[[], Awaitable[None]]


class P2pPlatform(ABC):
    """Base class for WiFi Direct backends."""

    def __init__(self) -> None:
        self._receivers: list[BroadcastCallback] = []
        self._on_channel_lost: ChannelLostCallback | None = None

    # --- Broadcast source ---

    def register_receiver(self, callback: BroadcastCallback) -> None:
        """Register an async fn(broadcast) for platform broadcasts."""
        self._receivers.append(callback)

    def unregister_receiver(self, callback: BroadcastCallback) -> None:
        """Remove a receiver. Raises ValueError if it was never registered."""
        self._receivers.remove(callback)

    async def send_broadcast(self, broadcast: P2pBroadcast) -> None:
        """Deliver a broadcast to every registered receiver."""
        logger.debug(f"Broadcast: {broadcast.action.value}")
        for receiver in list(self._receivers):
            try:
                await receiver(broadcast)
            except Exception as e:
                logger.error(f"Broadcast receiver error: {e}", exc_info=True)

    async def _channel_lost(self) -> None:
        if self._on_channel_lost:
            await self._on_channel_lost()

    # --- Requests ---

    @abstractmethod
    async def initialize(self, on_channel_lost: ChannelLostCallback | None = None) -> None:
        """Acquire the P2P service. Raises PlatformUnsupported."""

    @abstractmethod
    async def discover_peers(self) -> None:
        ...

    @abstractmethod
    async def stop_peer_discovery(self) -> None:
        ...

    @abstractmethod
    async def request_peers(self) -> list[PeerDevice]:
        """Return the current peer snapshot."""

    @abstractmethod
    async def connect(self, config: ConnectConfig) -> None:
        ...

    @abstractmethod
    async def remove_group(self) -> None:
        ...

    @abstractmethod
    async def cancel_connect(self) -> None:
        ...

    @abstractmethod
    async def request_connection_info(self) -> ConnectionInfo:
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release the P2P service."""


def create_platform(backend: str, **kwargs) -> P2pPlatform:
    """Build the platform backend named by ``backend``."""
    if backend == "simulated":
        from p2p.simulated import SimulatedP2pPlatform

        return SimulatedP2pPlatform(**kwargs)
    if backend == "wpa_cli":
        from p2p.wpa_cli import WpaCliPlatform

        return WpaCliPlatform(**kwargs)
    raise ValueError(f"Unknown P2P backend: {backend!r}")
