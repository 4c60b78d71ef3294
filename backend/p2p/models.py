"""Pydantic models for WiFi Direct peers, connections and broadcasts."""

from datetime import datetime
from enum import Enum, IntEnum

from pydantic import BaseModel, ConfigDict, Field


class DeviceStatus(IntEnum):
    """Peer status as reported by the platform."""
    CONNECTED = 0
    INVITED = 1
    FAILED = 2
    AVAILABLE = 3
    UNAVAILABLE = 4


class FailureReason(IntEnum):
    """Reason codes a platform attaches to a rejected request."""
    ERROR = 0
    P2P_UNSUPPORTED = 1
    BUSY = 2


class WpsSetup(str, Enum):
    PBC = "pbc"
    DISPLAY = "display"
    KEYPAD = "keypad"


class PeerDevice(BaseModel):
    """A nearby WiFi Direct device from the platform's peer snapshot."""
    model_config = ConfigDict(frozen=True)

    device_name: str
    device_address: str  # P2P device MAC address
    primary_device_type: str = ""
    status: DeviceStatus = DeviceStatus.UNAVAILABLE


class ConnectionInfo(BaseModel):
    """Group formation info returned by a connectivity query."""
    model_config = ConfigDict(frozen=True)

    group_formed: bool = False
    is_group_owner: bool = False
    group_owner_address: str | None = None


class ConnectConfig(BaseModel):
    """Parameters for a connect request."""
    device_address: str
    wps_setup: WpsSetup = WpsSetup.PBC
    group_owner_intent: int = Field(default=0, ge=-1, le=15)


# --- Broadcasts ---

WIFI_P2P_STATE_DISABLED = 1
WIFI_P2P_STATE_ENABLED = 2


class BroadcastAction(str, Enum):
    STATE_CHANGED = "p2p_state_changed"
    PEERS_CHANGED = "peers_changed"
    CONNECTION_CHANGED = "connection_changed"
    THIS_DEVICE_CHANGED = "this_device_changed"


class P2pBroadcast(BaseModel):
    """A state-change notification delivered by the platform.

    Only the extra matching the action is populated: ``wifi_p2p_state`` for
    STATE_CHANGED, ``network_connected`` for CONNECTION_CHANGED and ``device``
    for THIS_DEVICE_CHANGED.
    """
    action: BroadcastAction
    wifi_p2p_state: int | None = None
    network_connected: bool | None = None
    device: PeerDevice | None = None


# --- Coordinator ---

class CoordinatorState(BaseModel):
    """Everything the coordinator knows about the current P2P session."""
    is_connected: bool = False
    is_discovering: bool = False
    connected_device: PeerDevice | None = None
    connection_info: ConnectionInfo | None = None
    auto_connect_pending: bool = False
    this_device: PeerDevice | None = None


class ActivityEntry(BaseModel):
    timestamp: datetime
    message: str

    def format(self) -> str:
        return f"[{self.timestamp.strftime('%H:%M:%S')}] {self.message}"
