"""
DJ engine - the beat clock that drives pattern frames.

The DJEngine owns one periodic task. Each tick advances the beat counter,
renders a frame from the pattern library and unicasts the resulting
commands to the target devices.

Reconfiguring a running engine restarts the timer at the new interval,
which resets the beat phase (the counter itself keeps counting).
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import replace
from typing import Any, Callable, Iterable, Optional

from ..lights.client import DISPATCH_ERRORS, Client
from ..lights.commands import Command
from ..lights.registry import Device
from .library import Cue, DJConfig, render_frame

logger = logging.getLogger(__name__)

# Tap tempo only accepts gaps strictly inside this window (milliseconds)
TAP_MIN_MS = 200
TAP_MAX_MS = 2000

ConfigListener = Callable[[DJConfig], None]


class DJEngine:
    """
    Beat-synchronised pattern scheduler.

    Two states: stopped and running. All methods are synchronous and must
    be called from the event loop thread.

    Usage:
        engine = DJEngine(transport.client)
        engine.start(store.get_selected_devices(), {"bpm": 128})
        engine.update_config(pattern="strobe")
        engine.tap_tempo()
        engine.stop()
    """

    def __init__(
        self,
        client: Client,
        config: Optional[DJConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        rng: Optional[random.Random] = None,
    ):
        self._client = client
        self._config = config or DJConfig()
        self._clock = clock
        self._rng = rng or random.Random()

        self._devices: list[Device] = []
        self._beat_count = 0
        self._timer: Optional[asyncio.Task] = None
        self._last_tap: Optional[float] = None
        self._listeners: list[ConfigListener] = []

    # ------------------------------------------------------------------
    # Read model
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._timer is not None

    @property
    def config(self) -> DJConfig:
        """A copy of the live configuration."""
        return replace(self._config)

    @property
    def beat_count(self) -> int:
        return self._beat_count

    @property
    def devices(self) -> list[Device]:
        return list(self._devices)

    def subscribe(self, listener: ConfigListener) -> Callable[[], None]:
        """
        Call listener(config) whenever the configuration or run state changes.

        Returns a function that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        config = self.config
        for listener in list(self._listeners):
            try:
                listener(config)
            except Exception:
                logger.exception("DJ config listener failed")

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def start(self, devices: Iterable[Device], overrides: Optional[dict[str, Any]] = None) -> None:
        """
        Start (or restart) on a new device list.

        The beat counter resets to zero; the first tick fires one beat
        interval from now.
        """
        self._cancel_timer()
        self._devices = list(devices)
        if overrides:
            self._config = replace(self._config, **overrides)
        self._beat_count = 0
        self._start_timer()

        logger.info(
            "DJ engine started: %s at %s BPM on %d device(s)",
            self._config.pattern.value, self._config.bpm, len(self._devices),
        )
        self._notify()

    def stop(self) -> None:
        """Stop the beat clock. Safe to call in any state."""
        if self._cancel_timer():
            logger.info("DJ engine stopped after %d beats", self._beat_count)
            self._notify()

    def update_config(self, **changes: Any) -> None:
        """
        Merge changes into the live configuration.

        Values are validated the same way as a new DJConfig. A running
        engine restarts its timer at the new interval.
        """
        self._config = replace(self._config, **changes)
        if self._timer is not None:
            self._cancel_timer()
            self._start_timer()
        self._notify()

    def tap_tempo(self) -> Optional[int]:
        """
        Register a tap.

        When the previous tap is more than 200 ms and less than 2000 ms ago
        the tempo becomes round(60000 / gap) and is returned. Every tap
        becomes the anchor for the next one.
        """
        now = self._clock()
        bpm = None
        if self._last_tap is not None:
            interval_ms = (now - self._last_tap) * 1000
            if TAP_MIN_MS < interval_ms < TAP_MAX_MS:
                bpm = round(60000 / interval_ms)
                self.update_config(bpm=bpm)
        self._last_tap = now
        return bpm

    # ------------------------------------------------------------------
    # Beat clock
    # ------------------------------------------------------------------

    def _start_timer(self) -> None:
        interval = self._config.beat_interval_ms / 1000
        self._timer = asyncio.get_running_loop().create_task(self._run(interval))

    def _cancel_timer(self) -> bool:
        if self._timer is None:
            return False
        self._timer.cancel()
        self._timer = None
        return True

    async def _run(self, interval: float) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time() + interval
        while True:
            await asyncio.sleep(max(0.0, next_tick - loop.time()))
            try:
                self._on_beat()
            except Exception:
                logger.exception("DJ beat %d failed", self._beat_count)
            next_tick += interval
            # Don't burst to catch up after a stall
            if next_tick < loop.time():
                next_tick = loop.time() + interval

    def _on_beat(self) -> None:
        if not self._devices:
            return

        self._beat_count += 1
        loop = asyncio.get_running_loop()
        for device, cues in self.compute_frame(self._beat_count):
            for cue in cues:
                if cue.delay_ms > 0:
                    loop.call_later(cue.delay_ms / 1000, self._dispatch, cue.command, device)
                else:
                    self._dispatch(cue.command, device)

    def compute_frame(self, beat_count: int) -> list[tuple[Device, list[Cue]]]:
        """Render one frame over the current device list without sending it."""
        if not self._devices:
            return []
        frame = render_frame(beat_count, len(self._devices), self._config, self._rng)
        return list(zip(self._devices, frame))

    def _dispatch(self, command: Command, device: Device) -> None:
        try:
            self._client.unicast(command, device)
        except DISPATCH_ERRORS as e:
            logger.debug("%s to %s failed: %s", command.name, device.serial, e)
