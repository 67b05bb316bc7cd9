"""
Per-device state cache.

The StateStore is the only writer of device, group and selection state.
Readers either take copies (get_device, snapshot, ...) or subscribe to
change notifications. Every logical operation is applied as one atomic
update: listeners see a single StoreChange naming every entity it touched,
never an intermediate state.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Iterable, Iterator, Optional

from ..colors import HSBK
from ..config.schema import DEFAULT_SWITCH_PRODUCT_IDS
from . import commands
from .client import DISPATCH_ERRORS, Client
from .registry import Device, DeviceRegistry

logger = logging.getLogger(__name__)

UNGROUPED_ID = "ungrouped"
UNGROUPED_LABEL = "Ungrouped"
DEFAULT_COLOR = HSBK(hue=0, saturation=0, brightness=32768, kelvin=3500)


class DeviceType(Enum):
    """Device class derived from the product id."""
    LIGHT = "light"
    SWITCH = "switch"
    UNKNOWN = "unknown"


@dataclass
class DeviceState:
    """Everything the store knows about one device."""
    serial: str
    device: Device
    label: str
    group: str = ""
    group_id: str = ""
    power: bool = False
    color: HSBK = DEFAULT_COLOR
    online: bool = True
    selected: bool = False
    last_seen: float = 0.0
    device_type: DeviceType = DeviceType.UNKNOWN
    product_id: int = 0


@dataclass
class GroupState:
    """A group derived from the membership devices report."""
    id: str
    label: str
    devices: list[str] = field(default_factory=list)
    expanded: bool = True


@dataclass(frozen=True)
class StoreChange:
    """
    Notification for one atomic update.

    keys holds (kind, id) pairs: ("device", serial), ("group", group_id),
    ("selection", None) and ("scanning", None).
    """
    version: int
    keys: frozenset[tuple[str, Optional[str]]]

    def touches(self, kind: str, key: Optional[str] = None) -> bool:
        if key is None:
            return any(k == kind for k, _ in self.keys)
        return (kind, key) in self.keys


@dataclass(frozen=True)
class StoreSnapshot:
    """Immutable copy of the store at one version."""
    version: int
    devices: tuple[DeviceState, ...]
    groups: tuple[GroupState, ...]
    selected: tuple[str, ...]
    is_scanning: bool


StoreListener = Callable[[StoreChange], None]


def _text(value: Any) -> str:
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="replace")
    return str(value or "").replace("\x00", "").strip()


def _group_id(value: Any) -> str:
    """Normalise the 16-byte group identifier to a hex string."""
    if isinstance(value, str):
        return value.lower()
    if isinstance(value, (bytes, bytearray)):
        if len(value) == 16:
            return bytes(value).hex()
        # Already hex-encoded
        return bytes(value).decode("ascii", errors="replace").lower()
    if isinstance(value, (list, tuple)):
        return bytes(b & 0xFF for b in value).hex()
    return ""


def _failed(result: Any) -> bool:
    return result is None or isinstance(result, BaseException)


def _copy_group(group: GroupState) -> GroupState:
    return replace(group, devices=list(group.devices))


class StateStore:
    """
    Reactive cache of device state.

    Usage:
        store = StateStore(registry, transport.client)
        unsubscribe = store.subscribe(lambda change: redraw(change))

        store.select_all()
        store.set_color(COLOR_PRESETS["blue"])
    """

    def __init__(
        self,
        registry: DeviceRegistry,
        client: Client,
        switch_product_ids: Iterable[int] = DEFAULT_SWITCH_PRODUCT_IDS,
        clock: Callable[[], float] = time.time,
    ):
        self._registry = registry
        self._client = client
        self._switch_product_ids = frozenset(switch_product_ids)
        self._clock = clock

        self._devices: dict[str, DeviceState] = {}
        self._groups: dict[str, GroupState] = {}
        self._selected: list[str] = []
        self._is_scanning = True

        # Serials with a refresh in flight
        self._pending_queries: set[str] = set()
        self._tasks: set[asyncio.Task] = set()

        self._listeners: list[StoreListener] = []
        self._version = 0
        self._batch_depth = 0
        self._changed: set[tuple[str, Optional[str]]] = set()

        registry.add_listener(self.register_device)

    # ------------------------------------------------------------------
    # Change notification
    # ------------------------------------------------------------------

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        """Register a change listener. Returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    @contextmanager
    def _batch(self) -> Iterator[None]:
        self._batch_depth += 1
        try:
            yield
        finally:
            self._batch_depth -= 1
            if self._batch_depth == 0 and self._changed:
                self._emit()

    def _touch(self, kind: str, key: Optional[str] = None) -> None:
        self._changed.add((kind, key))
        if self._batch_depth == 0:
            self._emit()

    def _emit(self) -> None:
        self._version += 1
        change = StoreChange(self._version, frozenset(self._changed))
        self._changed.clear()
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:
                logger.exception("Store listener failed")

    # ------------------------------------------------------------------
    # Read model
    # ------------------------------------------------------------------

    @property
    def version(self) -> int:
        return self._version

    @property
    def is_scanning(self) -> bool:
        return self._is_scanning

    @property
    def selected_devices(self) -> tuple[str, ...]:
        return tuple(self._selected)

    @property
    def devices(self) -> list[DeviceState]:
        return [replace(state) for state in self._devices.values()]

    @property
    def groups(self) -> list[GroupState]:
        return [_copy_group(group) for group in self._groups.values()]

    def get_device(self, serial: str) -> Optional[DeviceState]:
        state = self._devices.get(serial)
        return replace(state) if state else None

    def get_group(self, group_id: str) -> Optional[GroupState]:
        group = self._groups.get(group_id)
        return _copy_group(group) if group else None

    def snapshot(self) -> StoreSnapshot:
        return StoreSnapshot(
            version=self._version,
            devices=tuple(self.devices),
            groups=tuple(self.groups),
            selected=tuple(self._selected),
            is_scanning=self._is_scanning,
        )

    def get_selected_devices(self) -> list[Device]:
        """Device handles of the selected lights, in registration order."""
        return [
            self._devices[serial].device
            for serial in self._selected
            if self._devices[serial].device_type is not DeviceType.SWITCH
        ]

    def get_group_devices(self, group_id: str) -> list[DeviceState]:
        """Lights in a group (switches excluded), sorted by label."""
        group = self._groups.get(group_id)
        if group is None:
            return []
        members = [
            self._devices[serial]
            for serial in group.devices
            if serial in self._devices
            and self._devices[serial].device_type is not DeviceType.SWITCH
        ]
        members.sort(key=lambda state: state.label.casefold())
        return [replace(state) for state in members]

    def get_sorted_groups(self) -> list[GroupState]:
        """
        Groups holding at least one light, sorted by label.

        The ungrouped pseudo-group always sorts last.
        """
        def has_lights(group: GroupState) -> bool:
            return any(
                serial in self._devices
                and self._devices[serial].device_type is not DeviceType.SWITCH
                for serial in group.devices
            )

        groups = [group for group in self._groups.values() if has_lights(group)]
        groups.sort(key=lambda g: (g.id == UNGROUPED_ID, g.label.casefold()))
        return [_copy_group(group) for group in groups]

    # ------------------------------------------------------------------
    # Discovery and refresh
    # ------------------------------------------------------------------

    def register_device(self, device: Device) -> None:
        """Create or refresh the record for a device and query its state."""
        serial = device.serial
        with self._batch():
            state = self._devices.get(serial)
            if state is None:
                self._devices[serial] = DeviceState(
                    serial=serial,
                    device=device,
                    label=serial[-6:],
                    last_seen=self._clock(),
                )
            else:
                state.device = device
                state.last_seen = self._clock()
            self._touch("device", serial)

        self._spawn(self.query_device_state(device))

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def wait_idle(self) -> None:
        """Wait for every refresh started by register_device to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def query_device_state(self, device: Device) -> None:
        """
        Refresh one device.

        At most one refresh per serial is in flight; overlapping calls
        return immediately. The four queries run concurrently and settle
        independently, so one failing query never discards the others.
        """
        serial = device.serial
        if serial in self._pending_queries:
            return
        self._pending_queries.add(serial)

        try:
            results = await asyncio.gather(
                self._client.request(commands.get_color(), device),
                self._client.request(commands.get_label(), device),
                self._client.request(commands.get_group(), device),
                self._client.request(commands.get_version(), device),
                return_exceptions=True,
            )
            self._apply_refresh(device, *results)
        finally:
            self._pending_queries.discard(serial)

    def _apply_refresh(
        self,
        device: Device,
        color_reply: Any,
        label_reply: Any,
        group_reply: Any,
        version_reply: Any,
    ) -> None:
        serial = device.serial
        replies = (color_reply, label_reply, group_reply, version_reply)

        with self._batch():
            state = self._devices.get(serial)
            if state is None:
                state = DeviceState(serial=serial, device=device, label=serial[-6:])
                self._devices[serial] = state

            if not _failed(version_reply):
                state.product_id = int(getattr(version_reply, "product", 0) or 0)
                if state.product_id in self._switch_product_ids:
                    state.device_type = DeviceType.SWITCH
                else:
                    state.device_type = DeviceType.LIGHT

            if not _failed(color_reply) and state.device_type is not DeviceType.SWITCH:
                hue, saturation, brightness, kelvin = color_reply.color
                state.color = HSBK(hue, saturation, brightness, kelvin)
                power_level = getattr(color_reply, "power_level", None)
                if power_level is not None:
                    state.power = power_level > 0

            if not _failed(label_reply):
                label = _text(getattr(label_reply, "label", ""))
                if label:
                    state.label = label

            if not _failed(group_reply):
                self._apply_group(
                    state,
                    _group_id(getattr(group_reply, "group", "")),
                    _text(getattr(group_reply, "label", "")),
                )

            if all(_failed(reply) for reply in replies):
                state.online = False
                logger.info("Device %s did not answer any query, marking offline", serial)
            else:
                state.online = True
                state.last_seen = self._clock()
                for reply in replies:
                    if isinstance(reply, BaseException):
                        logger.debug("Partial refresh of %s: %s", serial, reply)

            self._touch("device", serial)

    def _apply_group(self, state: DeviceState, group_id: str, label: str) -> None:
        if not label or not group_id.strip("0"):
            group_id, label = UNGROUPED_ID, UNGROUPED_LABEL

        previous = state.group_id
        if previous and previous != group_id:
            self._remove_from_group(previous, state.serial)

        state.group = label
        state.group_id = group_id

        group = self._groups.get(group_id)
        if group is None:
            self._groups[group_id] = GroupState(id=group_id, label=label, devices=[state.serial])
        else:
            group.label = label
            if state.serial not in group.devices:
                group.devices.append(state.serial)
        self._touch("group", group_id)

    def _remove_from_group(self, group_id: str, serial: str) -> None:
        group = self._groups.get(group_id)
        if group is None:
            return
        if serial in group.devices:
            group.devices.remove(serial)
        if not group.devices:
            del self._groups[group_id]
        self._touch("group", group_id)

    async def refresh_all(self) -> None:
        """Re-query every known device, one after another."""
        with self._batch():
            self._is_scanning = True
            self._touch("scanning")
        try:
            for device in self._registry:
                await self.query_device_state(device)
        finally:
            with self._batch():
                self._is_scanning = False
                self._touch("scanning")

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def _update_selected_list(self) -> None:
        self._selected = [serial for serial, state in self._devices.items() if state.selected]
        self._touch("selection")

    def _set_selected(self, state: DeviceState, selected: bool) -> None:
        if state.selected != selected:
            state.selected = selected
            self._touch("device", state.serial)

    def toggle_select(self, serial: str) -> None:
        state = self._devices.get(serial)
        if state is None:
            return
        with self._batch():
            self._set_selected(state, not state.selected)
            self._update_selected_list()

    def select_device(self, serial: str) -> None:
        """Select only this device."""
        if serial not in self._devices:
            return
        with self._batch():
            for state in self._devices.values():
                self._set_selected(state, state.serial == serial)
            self._update_selected_list()

    def select_all(self) -> None:
        """Select every online device."""
        with self._batch():
            for state in self._devices.values():
                if state.online:
                    self._set_selected(state, True)
            self._update_selected_list()

    def select_none(self) -> None:
        with self._batch():
            for state in self._devices.values():
                self._set_selected(state, False)
            self._update_selected_list()

    def select_group(self, group_id: str) -> None:
        """
        Toggle a whole group.

        A fully selected group is deselected; otherwise every online
        member is selected.
        """
        group = self._groups.get(group_id)
        if group is None:
            return

        members = [self._devices[serial] for serial in group.devices if serial in self._devices]
        all_selected = all(state.selected for state in members)

        with self._batch():
            for state in members:
                if state.online:
                    self._set_selected(state, not all_selected)
            self._update_selected_list()

    def toggle_group(self, group_id: str) -> None:
        """Flip a group's expanded flag."""
        group = self._groups.get(group_id)
        if group is None:
            return
        group.expanded = not group.expanded
        self._touch("group", group_id)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def _dispatch(self, command: commands.Command, state: DeviceState) -> None:
        try:
            self._client.unicast(command, state.device)
        except DISPATCH_ERRORS as e:
            logger.debug("%s to %s failed: %s", command.name, state.serial, e)

    def set_color(self, color: HSBK, duration: float = 250) -> None:
        """
        Fade every selected, online light to color.

        The cached colour is updated immediately and is not rolled back if
        the command fails to go out.
        """
        if not self._selected:
            return

        command = commands.set_color_hsbk(color, duration)
        with self._batch():
            for serial in self._selected:
                state = self._devices.get(serial)
                if state is None or not state.online:
                    continue
                if state.device_type is DeviceType.SWITCH:
                    continue
                state.color = color
                self._touch("device", serial)
                self._dispatch(command, state)

    def set_power(self, on: bool, duration: float = 0) -> None:
        """Switch every selected, online device on or off."""
        if not self._selected:
            return

        command = commands.set_power(on, duration)
        with self._batch():
            for serial in self._selected:
                state = self._devices.get(serial)
                if state is None or not state.online:
                    continue
                state.power = on
                self._touch("device", serial)
                self._dispatch(command, state)

    def toggle_power(self) -> None:
        """If any selected device is on, turn all off; otherwise turn all on."""
        if not self._selected:
            return
        any_on = any(
            self._devices[serial].power for serial in self._selected if serial in self._devices
        )
        self.set_power(not any_on)
