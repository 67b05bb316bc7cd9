"""Pytest fixtures and fakes for tests."""

import asyncio
from pathlib import Path
from tempfile import TemporaryDirectory
from types import SimpleNamespace
from typing import Any, Optional

import pytest

from lifx_dj.exceptions import QueryTimeoutError, TransportClosedError
from lifx_dj.lights.commands import Command
from lifx_dj.lights.registry import Device, DeviceRegistry
from lifx_dj.lights.store import StateStore

LIVING_ROOM = bytes(range(1, 17))
KITCHEN = bytes(range(17, 33))
NO_GROUP = bytes(16)


class FakeClient:
    """
    Stand-in for lights.client.Client.

    Records unicasts and answers requests from scripted replies keyed by
    serial and command name. Unscripted requests time out.
    """

    def __init__(self):
        self.unicasts: list[tuple[Command, Device]] = []
        self.requests: list[tuple[Command, Device]] = []
        self.replies: dict[str, dict[str, Any]] = {}
        self.failing: set[str] = set()
        self.gate: Optional[asyncio.Event] = None

    def unicast(self, command: Command, device: Device) -> None:
        if device.serial in self.failing:
            raise TransportClosedError("unicast")
        self.unicasts.append((command, device))

    async def request(self, command: Command, device: Device, timeout=None) -> Any:
        self.requests.append((command, device))
        if self.gate is not None:
            await self.gate.wait()
        reply = self.replies.get(device.serial, {}).get(command.name)
        if reply is None:
            raise QueryTimeoutError(device.serial, command.name, 1.0)
        if isinstance(reply, BaseException):
            raise reply
        return reply

    def sent_to(self, serial: str) -> list[Command]:
        return [command for command, device in self.unicasts if device.serial == serial]


class FakeClock:
    """Manually advanced clock, in seconds."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_device(serial: str = "d073d5000001", address: str = "192.168.1.10") -> Device:
    target = ":".join(serial[i:i + 2] for i in range(0, 12, 2))
    return Device(serial=serial, address=address, port=56700, target=target)


def light_state(hue=0, saturation=0, brightness=32768, kelvin=3500, power_level=65535, label="Lamp"):
    return SimpleNamespace(
        color=[hue, saturation, brightness, kelvin],
        power_level=power_level,
        label=label,
    )


def state_label(label: str):
    return SimpleNamespace(label=label)


def state_group(group: bytes, label: str):
    return SimpleNamespace(group=group, label=label, updated_at=0)


def state_version(product: int = 27):
    return SimpleNamespace(vendor=1, product=product, version=0)


def script_device(
    client: FakeClient,
    serial: str,
    label: str = "Lamp",
    group: bytes = LIVING_ROOM,
    group_label: str = "Living Room",
    product: int = 27,
    power: bool = True,
    color: tuple = (0, 0, 32768, 3500),
) -> None:
    """Script all four state replies for one device."""
    hue, saturation, brightness, kelvin = color
    client.replies[serial] = {
        "LightGet": light_state(hue, saturation, brightness, kelvin, 65535 if power else 0, label),
        "GetLabel": state_label(label),
        "GetGroup": state_group(group, group_label),
        "GetVersion": state_version(product),
    }


async def add_device(store: StateStore, client: FakeClient, serial: str, **kwargs) -> Device:
    """
    Make a device known to the store and refresh it once.

    Pass online=False to leave the device unscripted so its refresh fails.
    """
    online = kwargs.pop("online", True)
    if online:
        script_device(client, serial, **kwargs)
    device = make_device(serial)
    await store.query_device_state(device)
    return device


@pytest.fixture
def temp_dir():
    """Create a temporary directory that gets cleaned up."""
    with TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def client():
    return FakeClient()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry():
    return DeviceRegistry()


@pytest.fixture
def store(registry, client, clock):
    return StateStore(registry, client, clock=clock)
