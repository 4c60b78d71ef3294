"""Application-wide configuration constants."""

import os
import platform

# --- Identity ---
APP_NAME = "DirectLink"
DEVICE_NAME = os.getenv("P2P_DEVICE_NAME", platform.node())  # default to hostname

# --- API ---
API_HOST = os.getenv("API_HOST", "127.0.0.1")
API_PORT = int(os.getenv("API_PORT", "8766"))

# --- WiFi Direct ---
P2P_BACKEND = os.getenv("P2P_BACKEND", "simulated")  # "simulated" | "wpa_cli"
P2P_INTERFACE = os.getenv("P2P_INTERFACE", "wlan0")
WPA_CLI_PATH = os.getenv("WPA_CLI_PATH", "wpa_cli")
WPA_CLI_TIMEOUT = 10  # seconds
POLL_INTERVAL = float(os.getenv("P2P_POLL_INTERVAL", "2"))  # seconds

# 0 = prefer being the client, 15 = prefer being group owner, -1 = let the stack decide
GROUP_OWNER_INTENT = int(os.getenv("P2P_GROUP_OWNER_INTENT", "0"))

# --- Logging ---
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_HISTORY_SIZE = int(os.getenv("LOG_HISTORY_SIZE", "500"))
