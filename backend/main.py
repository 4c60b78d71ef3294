"""
DirectLink: FastAPI application entry point.

Initializes the WiFi Direct coordinator on startup, serves the REST API and
streams coordinator events over a WebSocket.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from api.routes import init_routes, router, state_payload
from api.websocket import ConnectionManager
from config import API_HOST, API_PORT, APP_NAME, DEVICE_NAME, LOG_LEVEL, P2P_BACKEND
from p2p.coordinator import ConnectionCoordinator
from p2p.models import DeviceStatus, PeerDevice
from p2p.platform import P2pPlatform, create_platform

# --- Logging ---
logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Peers offered by the simulated backend
DEMO_PEERS = [
    PeerDevice(
        device_name="DESKTOP-LIVINGROOM",
        device_address="02:1a:11:f0:3c:01",
        primary_device_type="1-0050F204-1",
        status=DeviceStatus.AVAILABLE,
    ),
    PeerDevice(
        device_name="Pixel-7",
        device_address="02:1a:11:f0:3c:02",
        primary_device_type="10-0050F204-5",
        status=DeviceStatus.UNAVAILABLE,
    ),
]


def build_platform(backend: str = P2P_BACKEND) -> P2pPlatform:
    if backend == "simulated":
        return create_platform(
            backend,
            peers=DEMO_PEERS,
            this_device=PeerDevice(
                device_name=DEVICE_NAME,
                device_address="02:1a:11:f0:3c:00",
                status=DeviceStatus.AVAILABLE,
            ),
            auto_respond=True,
        )
    return create_platform(backend)


def build_app(coordinator: ConnectionCoordinator) -> FastAPI:
    """Create the FastAPI app around an existing coordinator."""
    ws_manager = ConnectionManager(snapshot=state_payload)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Start/stop the WiFi Direct coordinator."""
        logger.info(f"Starting {APP_NAME} services...")

        try:
            coordinator.on_event(ws_manager.handle_event)
            if await coordinator.initialize():
                coordinator.register_receiver()
                await coordinator.log("WiFi Direct is ready")
            logger.info(f"{APP_NAME} ready. API: {API_HOST}:{API_PORT}")

            yield

        except Exception as e:
            logger.error(f"Startup failed: {e}", exc_info=True)
            raise
        finally:
            logger.info(f"Shutting down {APP_NAME} services...")
            await coordinator.shutdown()

    app = FastAPI(
        title=APP_NAME,
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:5173", "http://127.0.0.1:5173",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    init_routes(coordinator)
    app.include_router(router)

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        await ws_manager.connect(websocket)
        try:
            while True:
                # Keep the connection alive; we don't expect client messages
                await websocket.receive_text()
        except WebSocketDisconnect:
            await ws_manager.disconnect(websocket)
        except Exception:
            await ws_manager.disconnect(websocket)

    return app


# --- Service singletons ---
coordinator = ConnectionCoordinator(build_platform())
app = build_app(coordinator)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host=API_HOST,
        port=API_PORT,
        log_level="info",
    )
