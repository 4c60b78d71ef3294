"""REST API routes for DirectLink.

Every action route only issues the platform request; the outcome is reported
asynchronously over the WebSocket event stream.
"""

import logging

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from config import APP_NAME, DEVICE_NAME
from p2p.coordinator import pick_auto_connect_target

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

# Injected by main.py at startup
_coordinator = None


def init_routes(coordinator) -> None:
    """Inject the coordinator into the routes module."""
    global _coordinator
    _coordinator = coordinator


def state_payload() -> dict:
    return {
        "app": APP_NAME,
        "device_name": DEVICE_NAME,
        "ready": _coordinator.is_ready,
        **_coordinator.state.model_dump(mode="json"),
    }


# --- State ---

@router.get("/state")
async def get_state():
    return state_payload()


@router.get("/devices")
async def list_devices():
    """Return the latest peer snapshot."""
    devices = _coordinator.discovered_devices
    return {"devices": [d.model_dump(mode="json") for d in devices]}


# --- Discovery ---

@router.post("/discovery/start")
async def start_discovery():
    await _coordinator.discover_peers()
    return state_payload()


@router.post("/discovery/stop")
async def stop_discovery():
    await _coordinator.stop_discovery()
    return state_payload()


@router.post("/discovery/toggle")
async def toggle_discovery():
    """Start discovery, or stop it if it is already running."""
    if _coordinator.is_discovering:
        await _coordinator.stop_discovery()
    else:
        await _coordinator.discover_peers()
    return state_payload()


# --- Connection ---

class ConnectBody(BaseModel):
    device_address: str | None = None


@router.post("/connect")
async def connect(body: ConnectBody):
    """Connect to a discovered device, or the first usable one if none is named."""
    devices = _coordinator.discovered_devices
    if body.device_address:
        device = next((d for d in devices if d.device_address == body.device_address), None)
        if device is None:
            raise HTTPException(status_code=404, detail="Device not found")
    else:
        device = pick_auto_connect_target(devices)
        if device is None:
            raise HTTPException(status_code=404, detail="No devices discovered")

    logger.info(f"Connect requested via API: {device.device_name}")
    await _coordinator.connect_to_device(device)
    return state_payload()


@router.post("/auto-connect")
async def auto_connect():
    await _coordinator.auto_discover_and_connect()
    return state_payload()


@router.post("/disconnect")
async def disconnect():
    await _coordinator.disconnect()
    return state_payload()


# --- Activity log ---

@router.get("/logs")
async def get_logs():
    return {"logs": _coordinator.activity.lines()}


@router.delete("/logs")
async def clear_logs():
    _coordinator.activity.clear()
    await _coordinator.log("Log cleared")
    return {"logs": _coordinator.activity.lines()}
