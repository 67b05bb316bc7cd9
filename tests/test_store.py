"""Tests for the device state store."""

import asyncio
from unittest.mock import Mock

import pytest

from lifx_dj.colors import HSBK
from lifx_dj.exceptions import QueryTimeoutError
from lifx_dj.lights.store import (
    DEFAULT_COLOR,
    UNGROUPED_ID,
    DeviceType,
    StateStore,
    StoreChange,
)

from conftest import (
    KITCHEN,
    LIVING_ROOM,
    NO_GROUP,
    add_device,
    make_device,
    script_device,
    state_group,
)

BLUE = HSBK(43690, 65535, 65535, 3500)


class TestRegistration:
    """Discovery feeding the store."""

    async def test_new_device_defaults(self, store, registry):
        """A newly discovered device starts with placeholder state."""
        registry.register("d073d5aabbcc", 56700, "192.168.1.20", "d0:73:d5:aa:bb:cc")

        state = store.get_device("d073d5aabbcc")
        assert state.label == "aabbcc"
        assert state.color == DEFAULT_COLOR
        assert state.online is True
        assert state.selected is False
        assert state.device_type is DeviceType.UNKNOWN
        assert state.product_id == 0

        await store.wait_idle()

    async def test_discovery_triggers_refresh(self, store, registry, client):
        """Registering a device queries its state."""
        script_device(client, "d073d5aabbcc", label="Desk")
        registry.register("d073d5aabbcc", 56700, "192.168.1.20", "d0:73:d5:aa:bb:cc")
        await store.wait_idle()

        state = store.get_device("d073d5aabbcc")
        assert state.label == "Desk"
        assert state.device_type is DeviceType.LIGHT
        assert len(client.requests) == 4

    async def test_scenario_living_room(self, store, registry, client):
        """Discover, refresh, select the group and set a colour."""
        script_device(client, "d073d5000001", label="Lamp", group_label="Living Room")
        registry.register("d073d5000001", 56700, "192.168.1.10", "d0:73:d5:00:00:01")
        await store.wait_idle()

        state = store.get_device("d073d5000001")
        assert state.color == HSBK(0, 0, 32768, 3500)
        assert state.label == "Lamp"

        groups = store.get_sorted_groups()
        assert [g.label for g in groups] == ["Living Room"]

        store.select_group(groups[0].id)
        assert store.selected_devices == ("d073d5000001",)

        store.set_color(BLUE)

        assert store.get_device("d073d5000001").color == BLUE
        sent = client.sent_to("d073d5000001")
        assert len(sent) == 1
        assert sent[0].name == "LightSetColor"
        assert sent[0].payload["color"] == (43690, 65535, 65535, 3500)
        assert sent[0].payload["duration"] == 250


class TestRefresh:
    """query_device_state and refresh_all."""

    async def test_concurrent_refreshes_are_deduplicated(self, store, client):
        """Overlapping refreshes for one device share a single query sequence."""
        script_device(client, "d073d5000001")
        device = make_device("d073d5000001")
        client.gate = asyncio.Event()

        tasks = [asyncio.create_task(store.query_device_state(device)) for _ in range(5)]
        await asyncio.sleep(0.01)
        client.gate.set()
        await asyncio.gather(*tasks)

        assert len(client.requests) == 4

        # The guard is released once the refresh completes
        await store.query_device_state(device)
        assert len(client.requests) == 8

    async def test_partial_failure_keeps_other_results(self, store, client):
        """A failing label query doesn't discard colour, group or type."""
        script_device(client, "d073d5000001", color=(1000, 2000, 3000, 4000))
        client.replies["d073d5000001"]["GetLabel"] = QueryTimeoutError("d073d5000001", "GetLabel", 1.0)

        await store.query_device_state(make_device("d073d5000001"))

        state = store.get_device("d073d5000001")
        assert state.online is True
        assert state.color == HSBK(1000, 2000, 3000, 4000)
        assert state.group == "Living Room"
        assert state.device_type is DeviceType.LIGHT
        assert state.label == "000001"

    async def test_all_queries_failing_marks_offline(self, store, client, clock):
        """Only a refresh where every query fails takes a device offline."""
        device = await add_device(store, client, "d073d5000001")
        assert store.get_device("d073d5000001").online is True

        client.replies.clear()
        clock.advance(30)
        await store.query_device_state(device)

        state = store.get_device("d073d5000001")
        assert state.online is False
        assert state.last_seen < clock.now

    async def test_successful_refresh_updates_last_seen(self, store, client, clock):
        device = await add_device(store, client, "d073d5000001")
        clock.advance(5)
        await store.query_device_state(device)

        assert store.get_device("d073d5000001").last_seen == clock.now

    async def test_power_from_color_reply(self, store, client):
        await add_device(store, client, "d073d5000001", power=False)
        assert store.get_device("d073d5000001").power is False

    async def test_switch_is_classified_and_color_ignored(self, store, client):
        """Switch products never take colour from a state reply."""
        await add_device(store, client, "d073d5000009", product=70, color=(100, 100, 100, 3500))

        state = store.get_device("d073d5000009")
        assert state.device_type is DeviceType.SWITCH
        assert state.product_id == 70
        assert state.color == DEFAULT_COLOR

    async def test_switch_product_ids_are_configurable(self, registry, client):
        store = StateStore(registry, client, switch_product_ids=[999])
        await add_device(store, client, "d073d5000001", product=70)
        await add_device(store, client, "d073d5000002", product=999)

        assert store.get_device("d073d5000001").device_type is DeviceType.LIGHT
        assert store.get_device("d073d5000002").device_type is DeviceType.SWITCH

    async def test_refresh_all_clears_scanning(self, store, registry, client):
        script_device(client, "d073d5000001")
        script_device(client, "d073d5000002")
        registry.register("d073d5000001", 56700, "192.168.1.10", "d0:73:d5:00:00:01")
        registry.register("d073d5000002", 56700, "192.168.1.11", "d0:73:d5:00:00:02")
        await store.wait_idle()
        assert store.is_scanning is True

        client.requests.clear()
        await store.refresh_all()

        assert store.is_scanning is False
        assert len(client.requests) == 8


class TestGroups:
    """Group derivation and ordering."""

    async def test_group_change_moves_device(self, store, client):
        """A device that changes group leaves the old one, which disappears when empty."""
        device = await add_device(store, client, "d073d5000001")
        living_room_id = store.get_device("d073d5000001").group_id

        client.replies["d073d5000001"]["GetGroup"] = state_group(KITCHEN, "Kitchen")
        await store.query_device_state(device)

        assert store.get_group(living_room_id) is None
        state = store.get_device("d073d5000001")
        assert state.group == "Kitchen"
        assert store.get_group(state.group_id).devices == ["d073d5000001"]

    async def test_empty_group_goes_to_ungrouped(self, store, client):
        await add_device(store, client, "d073d5000001", group=NO_GROUP, group_label="")

        state = store.get_device("d073d5000001")
        assert state.group_id == UNGROUPED_ID
        assert store.get_group(UNGROUPED_ID).label == "Ungrouped"

    async def test_sorted_groups(self, store, client):
        """Groups sort by label with the ungrouped group last."""
        await add_device(store, client, "d073d5000001", group=NO_GROUP, group_label="")
        await add_device(store, client, "d073d5000002", group=LIVING_ROOM, group_label="living room")
        await add_device(store, client, "d073d5000003", group=KITCHEN, group_label="Kitchen")

        labels = [g.label for g in store.get_sorted_groups()]
        assert labels == ["Kitchen", "living room", "Ungrouped"]

    async def test_groups_with_only_switches_are_hidden(self, store, client):
        await add_device(store, client, "d073d5000001", group=KITCHEN, group_label="Kitchen", product=89)
        await add_device(store, client, "d073d5000002")

        assert [g.label for g in store.get_sorted_groups()] == ["Living Room"]

    async def test_group_devices_sorted_by_label(self, store, client):
        await add_device(store, client, "d073d5000001", label="Zeta")
        await add_device(store, client, "d073d5000002", label="alpha")
        await add_device(store, client, "d073d5000003", label="Switch", product=71)

        group_id = store.get_device("d073d5000001").group_id
        labels = [s.label for s in store.get_group_devices(group_id)]
        assert labels == ["alpha", "Zeta"]

    async def test_toggle_group(self, store, client):
        await add_device(store, client, "d073d5000001")
        group_id = store.get_device("d073d5000001").group_id

        store.toggle_group(group_id)
        assert store.get_group(group_id).expanded is False
        store.toggle_group(group_id)
        assert store.get_group(group_id).expanded is True

    def test_unknown_group_is_ignored(self, store):
        store.toggle_group("nope")
        store.select_group("nope")
        assert store.version == 0


class TestSelection:
    """Selection intents."""

    async def test_toggle_select(self, store, client):
        await add_device(store, client, "d073d5000001")

        store.toggle_select("d073d5000001")
        assert store.selected_devices == ("d073d5000001",)
        store.toggle_select("d073d5000001")
        assert store.selected_devices == ()

    async def test_select_device_is_exclusive(self, store, client):
        await add_device(store, client, "d073d5000001")
        await add_device(store, client, "d073d5000002")
        store.select_all()

        store.select_device("d073d5000002")

        assert store.selected_devices == ("d073d5000002",)
        assert store.get_device("d073d5000001").selected is False

    async def test_select_all_skips_offline(self, store, client):
        await add_device(store, client, "d073d5000001")
        await add_device(store, client, "d073d5000002", online=False)

        store.select_all()

        assert store.selected_devices == ("d073d5000001",)

    async def test_select_none(self, store, client):
        await add_device(store, client, "d073d5000001")
        store.select_all()
        store.select_none()
        assert store.selected_devices == ()

    async def test_select_group_twice_restores_selection(self, store, client):
        """Selecting a fully online group twice selects and then deselects it."""
        await add_device(store, client, "d073d5000001")
        await add_device(store, client, "d073d5000002")
        await add_device(store, client, "d073d5000003", group=KITCHEN, group_label="Kitchen")
        store.toggle_select("d073d5000003")
        group_id = store.get_device("d073d5000001").group_id
        before = store.selected_devices

        store.select_group(group_id)
        assert set(store.selected_devices) == {"d073d5000001", "d073d5000002", "d073d5000003"}

        store.select_group(group_id)
        assert store.selected_devices == before

    async def test_select_group_completes_partial_selection(self, store, client):
        await add_device(store, client, "d073d5000001")
        await add_device(store, client, "d073d5000002")
        store.toggle_select("d073d5000001")

        store.select_group(store.get_device("d073d5000001").group_id)

        assert set(store.selected_devices) == {"d073d5000001", "d073d5000002"}

    async def test_select_group_leaves_offline_members(self, store, client):
        await add_device(store, client, "d073d5000001")
        device = await add_device(store, client, "d073d5000002")
        client.replies.pop("d073d5000002")
        await store.query_device_state(device)

        store.select_group(store.get_device("d073d5000001").group_id)

        assert store.selected_devices == ("d073d5000001",)

    async def test_selected_devices_exclude_switches(self, store, client):
        await add_device(store, client, "d073d5000001")
        await add_device(store, client, "d073d5000002", product=70)
        store.select_all()

        assert [d.serial for d in store.get_selected_devices()] == ["d073d5000001"]


class TestCommands:
    """Colour and power intents."""

    async def test_set_color_without_selection_is_noop(self, store, client):
        await add_device(store, client, "d073d5000001")
        version = store.version

        store.set_color(BLUE)

        assert client.unicasts == []
        assert store.version == version

    async def test_set_color_skips_offline_and_switches(self, store, client):
        await add_device(store, client, "d073d5000001")
        await add_device(store, client, "d073d5000002", product=70)
        device = await add_device(store, client, "d073d5000003")
        store.select_all()
        client.replies.pop("d073d5000003")
        await store.query_device_state(device)

        store.set_color(BLUE, duration=0)

        assert [d.serial for _, d in client.unicasts] == ["d073d5000001"]
        assert client.unicasts[0][0].payload["duration"] == 0

    async def test_failed_send_keeps_optimistic_color(self, store, client):
        """A command that fails to go out isn't rolled back."""
        await add_device(store, client, "d073d5000001")
        await add_device(store, client, "d073d5000002")
        store.select_all()
        client.failing.add("d073d5000001")

        store.set_color(BLUE)

        assert store.get_device("d073d5000001").color == BLUE
        assert store.get_device("d073d5000002").color == BLUE
        assert len(client.sent_to("d073d5000002")) == 1

    async def test_set_power(self, store, client):
        await add_device(store, client, "d073d5000001", power=False)
        store.select_all()

        store.set_power(True)

        assert store.get_device("d073d5000001").power is True
        command = client.sent_to("d073d5000001")[0]
        assert command.name == "LightSetPower"
        assert command.payload["power_level"] == 65535

    async def test_toggle_power_any_on_turns_all_off(self, store, client):
        """With one light on and one off, toggling turns both off, then both on."""
        await add_device(store, client, "d073d5000001", power=True)
        await add_device(store, client, "d073d5000002", power=False)
        store.select_all()

        store.toggle_power()
        assert store.get_device("d073d5000001").power is False
        assert store.get_device("d073d5000002").power is False

        store.toggle_power()
        assert store.get_device("d073d5000001").power is True
        assert store.get_device("d073d5000002").power is True

    def test_toggle_power_without_selection_is_noop(self, store, client):
        store.toggle_power()
        assert client.unicasts == []


class TestNotifications:
    """Change subscription."""

    async def test_one_notification_per_operation(self, store, client):
        await add_device(store, client, "d073d5000001")
        await add_device(store, client, "d073d5000002")
        listener = Mock()
        store.subscribe(listener)
        version = store.version

        store.select_all()

        listener.assert_called_once()
        change = listener.call_args.args[0]
        assert isinstance(change, StoreChange)
        assert change.version == version + 1
        assert change.touches("selection")
        assert change.touches("device", "d073d5000001")
        assert change.touches("device", "d073d5000002")

    async def test_refresh_is_one_atomic_update(self, store, client):
        device = await add_device(store, client, "d073d5000001")
        listener = Mock()
        store.subscribe(listener)

        await store.query_device_state(device)

        listener.assert_called_once()
        change = listener.call_args.args[0]
        assert change.touches("device", "d073d5000001")
        assert change.touches("group")

    async def test_unsubscribe(self, store, client):
        await add_device(store, client, "d073d5000001")
        listener = Mock()
        unsubscribe = store.subscribe(listener)
        unsubscribe()

        store.select_all()

        listener.assert_not_called()

    async def test_failing_listener_doesnt_block_others(self, store, client):
        await add_device(store, client, "d073d5000001")
        store.subscribe(Mock(side_effect=RuntimeError("boom")))
        listener = Mock()
        store.subscribe(listener)

        store.select_all()

        listener.assert_called_once()

    async def test_snapshot_is_a_copy(self, store, client):
        await add_device(store, client, "d073d5000001")
        snapshot = store.snapshot()

        store.select_all()

        assert snapshot.selected == ()
        assert snapshot.devices[0].selected is False
        assert store.snapshot().version == snapshot.version + 1
