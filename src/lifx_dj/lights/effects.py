"""
Free-running light effects.

Waveform effects are fire-and-forget: the firmware runs them. Candle and
rainbow are software effects driven by a periodic task, in the same way
as the DJ engine's beat clock.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional

from ..colors import COLOR_PRESETS, HSBK, MAX_U16
from . import commands
from .client import DISPATCH_ERRORS, Client
from .commands import Command, Waveform
from .registry import Device

logger = logging.getLogger(__name__)

WAVEFORM_CYCLES = 10


class EffectType(str, Enum):
    PULSE = "pulse"
    BREATHE = "breathe"
    STROBE = "strobe"
    RAINBOW = "rainbow"
    CANDLE = "candle"


# effect -> (waveform, skew ratio)
WAVEFORM_EFFECTS: dict[EffectType, tuple[Waveform, float]] = {
    EffectType.PULSE: (Waveform.PULSE, 0.3),
    EffectType.BREATHE: (Waveform.SINE, 0.5),
    EffectType.STROBE: (Waveform.PULSE, 0.1),
}


@dataclass
class EffectConfig:
    """Parameters for one effect run."""
    type: EffectType
    speed: float = 1000  # period in ms
    intensity: float = 1.0
    colors: list[HSBK] = field(default_factory=list)

    def __post_init__(self):
        self.type = EffectType(self.type)
        self.intensity = max(0.0, min(1.0, float(self.intensity)))


def _unicast(client: Client, command: Command, device: Device) -> None:
    try:
        client.unicast(command, device)
    except DISPATCH_ERRORS as e:
        logger.debug("%s to %s failed: %s", command.name, device.serial, e)


def apply_waveform_effect(client: Client, devices: Iterable[Device], config: EffectConfig) -> None:
    """
    Start a firmware waveform on every device.

    Runs for a fixed number of cycles and then returns the lights to their
    previous colour.
    """
    waveform, skew_ratio = WAVEFORM_EFFECTS.get(config.type, (Waveform.SINE, 0.5))
    color = config.colors[0] if config.colors else COLOR_PRESETS["blue"]

    command = commands.set_waveform(
        True,
        color.hue,
        color.saturation,
        color.brightness * config.intensity,
        color.kelvin,
        config.speed,
        WAVEFORM_CYCLES,
        skew_ratio,
        waveform,
    )
    for device in devices:
        _unicast(client, command, device)


class _PeriodicEffect:
    """Base for effects that push a new frame on a fixed interval."""

    def __init__(self, client: Client, interval_ms: float):
        self._client = client
        self.interval_ms = interval_ms
        self._devices: list[Device] = []
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None

    def start(self, devices: Iterable[Device]) -> None:
        self.stop()
        self._devices = list(devices)
        self._reset()
        self._task = asyncio.get_running_loop().create_task(self._run())

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    def _reset(self) -> None:
        pass

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_ms / 1000)
            for device, command in self.frame():
                _unicast(self._client, command, device)

    def frame(self) -> list[tuple[Device, Command]]:
        raise NotImplementedError


class CandleEffect(_PeriodicEffect):
    """Random warm flicker on every device."""

    INTERVAL_MS = 150

    def __init__(self, client: Client, rng: Optional[random.Random] = None):
        super().__init__(client, self.INTERVAL_MS)
        self._rng = rng or random.Random()

    def frame(self) -> list[tuple[Device, Command]]:
        frame = []
        for device in self._devices:
            hue = 5000 + self._rng.random() * 3000
            brightness = 20000 + self._rng.random() * 25000
            duration = 100 + self._rng.random() * 200
            frame.append((device, commands.set_color(hue, MAX_U16, brightness, 2000, duration)))
        return frame


class RainbowEffect(_PeriodicEffect):
    """Hues spread evenly across the devices, rotating every tick."""

    HUE_STEP = 500

    def __init__(self, client: Client, speed: float = 50):
        super().__init__(client, speed)
        self.hue_offset = 0

    def start(self, devices: Iterable[Device], speed: Optional[float] = None) -> None:
        if speed is not None:
            self.interval_ms = speed
        super().start(devices)

    def _reset(self) -> None:
        self.hue_offset = 0

    def frame(self) -> list[tuple[Device, Command]]:
        self.hue_offset = (self.hue_offset + self.HUE_STEP) % MAX_U16
        count = len(self._devices)
        frame = []
        for i, device in enumerate(self._devices):
            hue = (self.hue_offset + i * MAX_U16 / count) % MAX_U16
            frame.append((device, commands.set_color(hue, MAX_U16, MAX_U16, 3500, self.interval_ms)))
        return frame
