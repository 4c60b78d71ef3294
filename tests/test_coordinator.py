"""Tests for ConnectionCoordinator state handling."""

import asyncio

from conftest import EventRecorder, make_device
from p2p.coordinator import (
    ConnectionCoordinator,
    device_status_to_string,
    failure_reason_to_string,
    pick_auto_connect_target,
)
from p2p.models import ConnectionInfo, DeviceStatus, FailureReason, WpsSetup
from p2p.simulated import SimulatedP2pPlatform


def log_messages(recorder: EventRecorder) -> list[str]:
    return [data["message"] for data in recorder.of("log")]


def statuses(recorder: EventRecorder) -> list[str]:
    return [data["status"] for data in recorder.of("status_changed")]


class TestLookups:

    def test_failure_reasons(self):
        assert failure_reason_to_string(FailureReason.P2P_UNSUPPORTED) == "P2P unsupported"
        assert failure_reason_to_string(FailureReason.ERROR) == "internal error"
        assert failure_reason_to_string(FailureReason.BUSY) == "system busy"
        assert failure_reason_to_string(42) == "unknown error (42)"

    def test_device_statuses(self):
        assert device_status_to_string(DeviceStatus.AVAILABLE) == "available"
        assert device_status_to_string(DeviceStatus.INVITED) == "invited"
        assert device_status_to_string(7) == "unknown (7)"

    def test_pick_target_prefers_first_available(self):
        busy = make_device("PC-B", DeviceStatus.UNAVAILABLE, 2)
        free = make_device("PC-A", DeviceStatus.AVAILABLE, 1)
        other = make_device("PC-C", DeviceStatus.AVAILABLE, 3)
        assert pick_auto_connect_target([busy, free, other]) == free

    def test_pick_target_falls_back_to_first(self):
        invited = make_device("PC-B", DeviceStatus.INVITED, 2)
        failed = make_device("PC-C", DeviceStatus.FAILED, 3)
        assert pick_auto_connect_target([invited, failed]) == invited

    def test_pick_target_empty(self):
        assert pick_auto_connect_target([]) is None


class TestInitialization:

    async def test_unsupported_platform_is_logged_not_raised(self, recorder):
        platform = SimulatedP2pPlatform(supported=False)
        coord = ConnectionCoordinator(platform)
        coord.on_event(recorder)

        assert await coord.initialize() is False
        assert not coord.is_ready
        assert any("does not support WiFi Direct" in m for m in log_messages(recorder))

    async def test_requests_before_initialize_do_nothing(self, recorder):
        platform = SimulatedP2pPlatform()
        coord = ConnectionCoordinator(platform)
        coord.on_event(recorder)

        await coord.discover_peers()
        await coord.connect_to_device(make_device("PC-A"))
        await coord.disconnect()

        assert platform.calls == []
        assert "[ERROR] WiFi Direct is not initialized" in log_messages(recorder)
        assert coord.register_receiver() is False

    async def test_auto_connect_before_initialize_stays_idle(self, recorder):
        platform = SimulatedP2pPlatform()
        coord = ConnectionCoordinator(platform)
        coord.on_event(recorder)

        await coord.auto_discover_and_connect()

        assert not coord.auto_connect_pending
        assert platform.calls == []
        assert log_messages(recorder) == ["[ERROR] WiFi Direct is not initialized"]

    async def test_channel_lost_is_logged(self, coordinator, platform, recorder):
        await platform.lose_channel()
        assert "[WARNING] WiFi Direct channel disconnected" in log_messages(recorder)

    async def test_failing_callback_does_not_block_others(self, platform):
        coord = ConnectionCoordinator(platform)
        seen = []

        async def broken(event_type, data):
            raise RuntimeError("boom")

        async def working(event_type, data):
            seen.append(event_type)

        coord.on_event(broken)
        coord.on_event(working)
        await coord.initialize()
        assert "log" in seen
        await coord.shutdown()


class TestDiscovery:

    async def test_accepted_discovery_sets_flag(self, coordinator, platform, recorder):
        await coordinator.discover_peers()

        assert coordinator.is_discovering
        assert platform.call_count("discover_peers") == 1
        assert "Status: searching for devices..." in statuses(recorder)

    async def test_rejected_discovery_reports_reason(self, coordinator, platform, recorder):
        platform.reject_next("discover_peers", FailureReason.BUSY)
        await coordinator.discover_peers()

        assert not coordinator.is_discovering
        assert "[ERROR] Device discovery failed: system busy" in log_messages(recorder)
        assert statuses(recorder)[-1] == "Status: discovery failed (system busy)"

    async def test_flag_follows_last_accepted_request(self, coordinator, platform):
        await coordinator.discover_peers()
        await coordinator.stop_discovery()
        assert not coordinator.is_discovering

        await coordinator.discover_peers()
        assert coordinator.is_discovering

        platform.reject_next("stop_peer_discovery")
        await coordinator.stop_discovery()
        assert coordinator.is_discovering

    async def test_superseded_start_completion_is_ignored(self, coordinator, recorder):
        await asyncio.gather(coordinator.discover_peers(), coordinator.stop_discovery())

        assert not coordinator.is_discovering
        assert not any(m.startswith("Discovery started") for m in log_messages(recorder))

    async def test_peer_snapshot_replaces_list(self, coordinator, platform, recorder):
        first = [make_device("PC-A", suffix=1), make_device("PC-B", suffix=2)]
        second = [make_device("PC-C", suffix=3)]

        await platform.publish_peers(first)
        assert coordinator.discovered_devices == first

        await platform.publish_peers(second)
        assert coordinator.discovered_devices == second

        updates = recorder.of("devices_changed")
        assert len(updates) == 2
        assert [d["device_name"] for d in updates[-1]["devices"]] == ["PC-C"]

    async def test_empty_snapshot_is_logged(self, coordinator, platform, recorder):
        await platform.publish_peers([])
        assert coordinator.discovered_devices == []
        assert "Device list updated: no devices found" in log_messages(recorder)


class TestAutoConnect:

    async def test_selects_first_available_device(self, coordinator, platform):
        pc_a = make_device("PC-A", DeviceStatus.AVAILABLE, 1)
        pc_b = make_device("PC-B", DeviceStatus.UNAVAILABLE, 2)

        await coordinator.auto_discover_and_connect()
        assert coordinator.auto_connect_pending
        assert platform.call_count("discover_peers") == 1

        await platform.publish_peers([pc_a, pc_b])

        assert platform.call_count("connect") == 1
        assert platform.connect_requests[0].device_address == pc_a.device_address
        assert coordinator.connected_device == pc_a
        assert not coordinator.auto_connect_pending

    async def test_available_device_later_in_list(self, coordinator, platform):
        pc_b = make_device("PC-B", DeviceStatus.UNAVAILABLE, 2)
        pc_a = make_device("PC-A", DeviceStatus.AVAILABLE, 1)

        await coordinator.auto_discover_and_connect()
        await platform.publish_peers([pc_b, pc_a])

        assert platform.call_count("connect") == 1
        assert platform.connect_requests[0].device_address == pc_a.device_address

    async def test_falls_back_to_first_device(self, coordinator, platform):
        pc_b = make_device("PC-B", DeviceStatus.UNAVAILABLE, 2)

        await coordinator.auto_discover_and_connect()
        await platform.publish_peers([pc_b])

        assert platform.call_count("connect") == 1
        assert platform.connect_requests[0].device_address == pc_b.device_address

    async def test_empty_list_keeps_request_pending(self, coordinator, platform):
        await coordinator.auto_discover_and_connect()
        await platform.publish_peers([])

        assert platform.call_count("connect") == 0
        assert coordinator.auto_connect_pending

        await platform.publish_peers([make_device("PC-A")])
        assert platform.call_count("connect") == 1
        assert not coordinator.auto_connect_pending

    async def test_auto_connect_is_one_shot(self, coordinator, platform):
        await coordinator.auto_discover_and_connect()
        await platform.publish_peers([make_device("PC-A")])
        await platform.publish_peers([make_device("PC-A"), make_device("PC-B", suffix=2)])

        assert platform.call_count("connect") == 1

    async def test_connect_uses_push_button_config(self, coordinator, platform):
        await coordinator.auto_discover_and_connect()
        await platform.publish_peers([make_device("PC-A")])

        config = platform.connect_requests[0]
        assert config.wps_setup == WpsSetup.PBC
        assert config.group_owner_intent == 0

    async def test_disconnects_existing_connection_first(self, coordinator, platform):
        await coordinator.connect_to_device(make_device("PC-A"))
        await platform.form_group()
        assert coordinator.is_connected

        await coordinator.auto_discover_and_connect()

        assert platform.call_count("remove_group") == 1
        assert not coordinator.is_connected
        assert coordinator.auto_connect_pending
        assert platform.call_count("discover_peers") == 1


class TestConnection:

    async def test_accepted_connect_is_speculative(self, coordinator, platform):
        device = make_device("PC-A")
        await coordinator.connect_to_device(device)

        assert coordinator.connected_device == device
        assert not coordinator.is_connected

    async def test_rejected_connect_leaves_state(self, coordinator, platform, recorder):
        platform.reject_next("connect", FailureReason.ERROR)
        await coordinator.connect_to_device(make_device("PC-A"))

        assert coordinator.connected_device is None
        assert statuses(recorder)[-1] == "Status: connection failed (internal error)"

    async def test_group_formed_marks_connected(self, coordinator, platform, recorder):
        await coordinator.connect_to_device(make_device("PC-A"))
        await platform.form_group(is_group_owner=True, group_owner_address="192.168.49.1")

        assert coordinator.is_connected
        assert coordinator.connection_info == ConnectionInfo(
            group_formed=True, is_group_owner=True, group_owner_address="192.168.49.1"
        )
        changes = recorder.of("connection_changed")
        assert changes[-1]["connected"] is True
        assert changes[-1]["info"]["group_owner_address"] == "192.168.49.1"
        assert statuses(recorder)[-1] == "Status: connected"

    async def test_group_not_formed_reports_disconnected(self, coordinator, platform, recorder):
        platform.connection_info = ConnectionInfo(group_formed=False)
        await coordinator.request_connection_info()

        assert not coordinator.is_connected
        assert recorder.of("connection_changed") == [{"connected": False, "info": None}]

    async def test_disconnect_broadcast_clears_state_once(self, coordinator, platform, recorder):
        await coordinator.connect_to_device(make_device("PC-A"))
        await platform.form_group()
        assert coordinator.is_connected
        recorder.clear()

        await platform.drop_group()

        assert not coordinator.is_connected
        assert coordinator.connected_device is None
        assert coordinator.connection_info is None
        assert recorder.of("connection_changed") == [{"connected": False, "info": None}]

    async def test_info_fetched_before_disconnect_event_is_ignored(self, coordinator, platform, recorder):
        platform.connection_info = ConnectionInfo(
            group_formed=True, is_group_owner=False, group_owner_address="192.168.49.1"
        )

        await asyncio.gather(coordinator.request_connection_info(), coordinator.on_disconnected())

        assert not coordinator.is_connected
        assert coordinator.connection_info is None
        assert "WiFi Direct connection established!" not in log_messages(recorder)
        assert recorder.of("connection_changed") == [{"connected": False, "info": None}]

    async def test_disconnect_removes_group(self, coordinator, platform, recorder):
        await coordinator.connect_to_device(make_device("PC-A"))
        await platform.form_group()
        recorder.clear()

        await coordinator.disconnect()

        assert platform.call_count("remove_group") == 1
        assert platform.call_count("cancel_connect") == 0
        assert not coordinator.is_connected
        assert coordinator.connected_device is None
        assert recorder.of("connection_changed") == [{"connected": False, "info": None}]

    async def test_disconnect_falls_back_to_cancel(self, coordinator, platform):
        await coordinator.connect_to_device(make_device("PC-A"))
        platform.reject_next("remove_group")

        await coordinator.disconnect()

        assert platform.call_count("cancel_connect") == 1
        assert coordinator.connected_device is None
        assert not coordinator.is_connected

    async def test_cancel_failure_is_only_reported(self, coordinator, platform, recorder):
        await coordinator.connect_to_device(make_device("PC-A"))
        await platform.form_group()
        platform.reject_next("remove_group")
        platform.reject_next("cancel_connect", FailureReason.BUSY)

        await coordinator.disconnect()

        assert platform.call_count("remove_group") == 1
        assert platform.call_count("cancel_connect") == 1
        assert statuses(recorder)[-1] == "Status: disconnect error"
        assert "[WARNING] Failed to cancel connection: system busy" in log_messages(recorder)


class TestBroadcastHandlers:

    async def test_disabled_state_updates_status(self, coordinator, platform, recorder):
        await platform.set_enabled(False)
        assert statuses(recorder)[-1] == "Status: WiFi Direct disabled"

    async def test_enabled_state_is_logged(self, coordinator, platform, recorder):
        await platform.set_enabled(True)
        assert "WiFi Direct is enabled" in log_messages(recorder)

    async def test_this_device_is_forwarded(self, coordinator, platform, recorder):
        me = make_device("my-laptop", suffix=0xAA)
        await platform.set_this_device(me)

        assert coordinator.state.this_device == me
        assert recorder.of("this_device_changed")[-1]["device"]["device_name"] == "my-laptop"


class TestShutdown:

    async def test_shutdown_stops_and_disconnects(self, coordinator, platform):
        await coordinator.discover_peers()
        await coordinator.connect_to_device(make_device("PC-A"))
        await platform.form_group()

        await coordinator.shutdown()

        assert platform.call_count("stop_peer_discovery") == 1
        assert platform.call_count("remove_group") == 1
        assert platform.call_count("close") == 1
        assert not coordinator.is_ready
        assert coordinator.state.is_connected is False
        assert coordinator.discovered_devices == []

    async def test_shutdown_twice_makes_no_extra_calls(self, coordinator, platform):
        await coordinator.discover_peers()
        await coordinator.shutdown()
        calls = list(platform.calls)

        await coordinator.shutdown()

        assert platform.calls == calls

    async def test_broadcasts_ignored_after_shutdown(self, coordinator, platform):
        await coordinator.shutdown()
        await platform.publish_peers([make_device("PC-A")])

        assert coordinator.discovered_devices == []
        assert platform.call_count("request_peers") == 0
