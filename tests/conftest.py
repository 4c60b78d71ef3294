"""Shared fixtures for the DirectLink test suite."""

import pytest

from p2p.coordinator import ConnectionCoordinator
from p2p.models import DeviceStatus, PeerDevice
from p2p.simulated import SimulatedP2pPlatform


def make_device(name: str, status: DeviceStatus = DeviceStatus.AVAILABLE, suffix: int = 1) -> PeerDevice:
    return PeerDevice(
        device_name=name,
        device_address=f"02:00:00:00:00:{suffix:02x}",
        primary_device_type="1-0050F204-1",
        status=status,
    )


class EventRecorder:
    """Collects coordinator events in arrival order."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict]] = []

    async def __call__(self, event_type: str, data: dict) -> None:
        self.events.append((event_type, data))

    def of(self, event_type: str) -> list[dict]:
        return [data for kind, data in self.events if kind == event_type]

    def clear(self) -> None:
        self.events.clear()


@pytest.fixture
def platform():
    return SimulatedP2pPlatform()


@pytest.fixture
def recorder():
    return EventRecorder()


@pytest.fixture
async def coordinator(platform, recorder):
    coord = ConnectionCoordinator(platform)
    coord.on_event(recorder)
    assert await coord.initialize()
    assert coord.register_receiver()
    yield coord
    await coord.shutdown()
