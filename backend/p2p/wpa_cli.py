"""
wpa_supplicant WiFi Direct platform.

Drives P2P through ``wpa_cli`` and polls the supplicant to turn observed
changes (peer set, group interface, local device) into broadcasts.
"""

import asyncio
import logging
import re

from config import POLL_INTERVAL, P2P_INTERFACE, WPA_CLI_PATH, WPA_CLI_TIMEOUT
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
    WpsSetup,
)
from p2p.platform import ChannelLostCallback, P2pPlatform

logger = logging.getLogger(__name__)

MAC_RE = re.compile(r"^([0-9a-f]{2}:){5}[0-9a-f]{2}$", re.IGNORECASE)
GROUP_IFACE_RE = re.compile(r"(p2p-[\w-]+-\d+)")


def parse_key_values(output: str) -> dict[str, str]:
    """Parse ``key=value`` lines from wpa_cli output."""
    values = {}
    for line in output.splitlines():
        if "=" in line:
            key, _, value = line.partition("=")
            values[key.strip()] = value.strip()
    return values


def check_reply(output: str) -> None:
    """Raise RequestRejected unless wpa_cli answered OK."""
    lines = output.strip().splitlines()
    reply = lines[-1].strip() if lines else ""
    if reply == "OK":
        return
    if reply.startswith("FAIL-BUSY"):
        raise RequestRejected(FailureReason.BUSY, reply)
    if reply.startswith("UNKNOWN COMMAND"):
        raise RequestRejected(FailureReason.P2P_UNSUPPORTED, reply)
    raise RequestRejected(FailureReason.ERROR, reply or "empty reply")


class WpaCliPlatform(P2pPlatform):
    """P2P platform backed by a local wpa_supplicant."""

    def __init__(
        self,
        interface: str = P2P_INTERFACE,
        wpa_cli: str = WPA_CLI_PATH,
        poll_interval: float = POLL_INTERVAL,
        timeout: float = WPA_CLI_TIMEOUT,
    ) -> None:
        super().__init__()
        self.interface = interface
        self._wpa_cli = wpa_cli
        self._poll_interval = poll_interval
        self._timeout = timeout
        self._poll_task: asyncio.Task | None = None

        # Last observed supplicant state, compared on every poll
        self._enabled: bool | None = None
        self._known_peers: tuple[str, ...] | None = None
        self._group_interface: str | None = None
        self._this_device: PeerDevice | None = None
        self._pending_address: str | None = None

    # --- wpa_cli plumbing ---

    async def _run_wpa_cli(self, *args: str, interface: str | None = None) -> str:
        """Run a wpa_cli command and return its stdout."""
        cmd = [self._wpa_cli, "-i", interface or self.interface, *args]
        logger.debug(f"Running: {' '.join(cmd)}")

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise PlatformUnsupported(f"{self._wpa_cli} not found") from e
        except OSError as e:
            raise PlatformUnsupported(f"cannot run {self._wpa_cli}: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self._timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise RequestRejected(FailureReason.BUSY, f"wpa_cli {args[0]} timed out")

        if proc.returncode != 0:
            logger.warning(f"wpa_cli returned {proc.returncode}: {stderr.decode(errors='replace').strip()}")

        return stdout.decode("utf-8", errors="replace").strip()

    async def _query(self, *args: str, interface: str | None = None) -> str:
        """Run a command on a request path; a missing wpa_cli is a rejection."""
        try:
            return await self._run_wpa_cli(*args, interface=interface)
        except PlatformUnsupported as e:
            raise RequestRejected(FailureReason.P2P_UNSUPPORTED, str(e)) from e

    async def _command(self, *args: str, interface: str | None = None) -> str:
        """Run a request command; any non-OK reply is a rejection."""
        output = await self._query(*args, interface=interface)
        check_reply(output)
        return output

    async def _find_group_interface(self) -> str | None:
        output = await self._query("interface")
        match = GROUP_IFACE_RE.search(output)
        return match.group(1) if match else None

    async def _peer_addresses(self) -> list[str]:
        output = await self._query("p2p_peers")
        return [line.strip() for line in output.splitlines() if MAC_RE.match(line.strip())]

    def _peer_status(self, address: str) -> DeviceStatus:
        if address == self._pending_address:
            return DeviceStatus.CONNECTED if self._group_interface else DeviceStatus.INVITED
        return DeviceStatus.AVAILABLE

    # --- Requests ---

    async def initialize(self, on_channel_lost: ChannelLostCallback | None = None) -> None:
        status = parse_key_values(await self._run_wpa_cli("status"))
        if "p2p_device_address" not in status:
            raise PlatformUnsupported(f"{self.interface} has no P2P device")

        self._on_channel_lost = on_channel_lost
        self._poll_task = asyncio.create_task(self._poll_loop())
        logger.info(f"wpa_cli platform ready on {self.interface}")

    async def discover_peers(self) -> None:
        await self._command("p2p_find")

    async def stop_peer_discovery(self) -> None:
        await self._command("p2p_stop_find")

    async def request_peers(self) -> list[PeerDevice]:
        addresses = await self._peer_addresses()

        peers = []
        for address in addresses:
            info = parse_key_values(await self._query("p2p_peer", address))
            if not info:
                # Peer expired between the two calls
                continue
            peers.append(
                PeerDevice(
                    device_name=info.get("device_name", ""),
                    device_address=address,
                    primary_device_type=info.get("pri_dev_type", ""),
                    status=self._peer_status(address),
                )
            )
        return peers

    async def connect(self, config: ConnectConfig) -> None:
        if config.wps_setup == WpsSetup.PBC:
            method = ["pbc"]
        elif config.wps_setup == WpsSetup.DISPLAY:
            method = ["pin", "display"]
        else:
            raise RequestRejected(FailureReason.ERROR, "keypad setup needs a PIN")

        args = ["p2p_connect", config.device_address, *method]
        if config.group_owner_intent >= 0:
            args.append(f"go_intent={config.group_owner_intent}")

        if config.wps_setup == WpsSetup.DISPLAY:
            # Replies with the generated PIN instead of OK
            output = await self._query(*args)
            if not output.isdigit():
                check_reply(output)
            logger.info(f"WPS PIN for {config.device_address}: {output}")
        else:
            await self._command(*args)
        self._pending_address = config.device_address

    async def remove_group(self) -> None:
        group = self._group_interface or await self._find_group_interface()
        if group is None:
            raise RequestRejected(FailureReason.ERROR, "no active P2P group")
        await self._command("p2p_group_remove", group)
        self._pending_address = None

    async def cancel_connect(self) -> None:
        await self._command("p2p_cancel")
        self._pending_address = None

    async def request_connection_info(self) -> ConnectionInfo:
        group = await self._find_group_interface()
        if group is None:
            return ConnectionInfo()

        status = parse_key_values(await self._query("status", interface=group))
        is_group_owner = status.get("mode") == "P2P GO"
        return ConnectionInfo(
            group_formed=status.get("wpa_state") == "COMPLETED",
            is_group_owner=is_group_owner,
            group_owner_address=status.get("ip_address") if is_group_owner else None,
        )

    async def close(self) -> None:
        if self._poll_task:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None
        self._on_channel_lost = None
        logger.info("wpa_cli platform closed")

    # --- Polling ---

    async def _poll_loop(self) -> None:
        """Periodically compare supplicant state and broadcast changes."""
        while True:
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"P2P poll failed: {e}")

            await asyncio.sleep(self._poll_interval)

    async def poll_once(self) -> None:
        try:
            status = parse_key_values(await self._run_wpa_cli("status"))
        except PlatformUnsupported:
            status = {}

        enabled = "p2p_device_address" in status
        if enabled != self._enabled:
            was_enabled = self._enabled
            self._enabled = enabled
            state = WIFI_P2P_STATE_ENABLED if enabled else WIFI_P2P_STATE_DISABLED
            await self.send_broadcast(
                P2pBroadcast(action=BroadcastAction.STATE_CHANGED, wifi_p2p_state=state)
            )
            if was_enabled and not enabled:
                await self._channel_lost()
        if not enabled:
            return

        group = await self._find_group_interface()
        if (group is None) != (self._group_interface is None):
            self._group_interface = group
            self._known_peers = None  # peer statuses changed too
            await self.send_broadcast(
                P2pBroadcast(
                    action=BroadcastAction.CONNECTION_CHANGED,
                    network_connected=group is not None,
                )
            )
        self._group_interface = group

        name = await self._run_wpa_cli("get", "device_name")
        device = PeerDevice(
            device_name="" if name.startswith("FAIL") else name,
            device_address=status["p2p_device_address"],
            status=DeviceStatus.CONNECTED if group else DeviceStatus.AVAILABLE,
        )
        if device != self._this_device:
            self._this_device = device
            await self.send_broadcast(
                P2pBroadcast(action=BroadcastAction.THIS_DEVICE_CHANGED, device=device)
            )

        peers = tuple(await self._peer_addresses())
        if peers != self._known_peers:
            self._known_peers = peers
            await self.send_broadcast(P2pBroadcast(action=BroadcastAction.PEERS_CHANGED))
