"""Registry of devices seen on the network."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterator, Optional

logger = logging.getLogger(__name__)


def serial_from_target(target: str) -> str:
    """Turn a MAC-style target ("d0:73:d5:01:02:03") into a serial ("d073d5010203")."""
    return target.replace(":", "").lower()


@dataclass
class Device:
    """
    Handle for one physical device.

    The serial is the stable identity; address and port follow the device
    around the network and are refreshed on every announcement.
    """
    serial: str
    address: str
    port: int
    target: str


class DeviceRegistry:
    """
    Mutable set of known devices keyed by serial.

    Iterating the registry is lazy and live: a device registered while an
    iteration is in progress is still reached by that iteration.
    """

    def __init__(self):
        self._devices: dict[str, Device] = {}
        self._order: list[str] = []
        self._on_added: list[Callable[[Device], None]] = []

    def add_listener(self, callback: Callable[[Device], None]) -> None:
        """Call callback(device) whenever a new serial is registered."""
        self._on_added.append(callback)

    def remove_listener(self, callback: Callable[[Device], None]) -> None:
        if callback in self._on_added:
            self._on_added.remove(callback)

    def register(self, serial: str, port: int, address: str, target: str) -> Device:
        """
        Upsert a device.

        Known serials only get their address fields refreshed. A new serial
        creates the device and notifies the added listeners.
        """
        device = self._devices.get(serial)
        if device is not None:
            device.address = address
            device.port = port
            device.target = target
            return device

        device = Device(serial=serial, address=address, port=port, target=target)
        self._devices[serial] = device
        self._order.append(serial)
        logger.info("Discovered device %s at %s:%d", serial, address, port)

        for callback in list(self._on_added):
            callback(device)
        return device

    def get(self, serial: str) -> Optional[Device]:
        return self._devices.get(serial)

    def __iter__(self) -> Iterator[Device]:
        index = 0
        while index < len(self._order):
            yield self._devices[self._order[index]]
            index += 1

    def __len__(self) -> int:
        return len(self._order)

    def __contains__(self, serial: object) -> bool:
        return serial in self._devices
