"""
DJ pattern library.

Each pattern is a pure function of (beat, device index, device count,
config) returning the cues for one device on that beat. Nothing here
touches the network; the engine dispatches the cues.

Only the random pattern draws from the RNG it is handed, so every other
pattern renders the same frame for the same beat and config.
"""

from __future__ import annotations

import math
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from ..colors import COLOR_PRESETS, HSBK, MAX_U16
from ..lights import commands
from ..lights.commands import Command, Waveform

MIN_BPM = 30
MAX_BPM = 300
MIN_SUBDIVISION = 0.25
MAX_SUBDIVISION = 4

# Fallback when the colour list is empty
DEFAULT_COLOR = COLOR_PRESETS["blue"]


class DJPattern(str, Enum):
    """Beat-synchronised light patterns."""
    CHASE = "chase"
    STROBE = "strobe"
    ALTERNATE = "alternate"
    WAVE = "wave"
    RANDOM = "random"
    PULSE = "pulse"
    BLACKOUT = "blackout"


def _default_colors() -> list[HSBK]:
    return [COLOR_PRESETS["blue"], COLOR_PRESETS["purple"], COLOR_PRESETS["pink"]]


@dataclass
class DJConfig:
    """
    Live DJ configuration.

    bpm is clamped to 30-300, intensity to 0-1 and subdivision to 0.25-4
    on construction (2 = two ticks per beat). Non-finite bpm or
    subdivision and a subdivision <= 0 raise ValueError.
    """
    bpm: float = 120
    pattern: DJPattern = DJPattern.CHASE
    colors: list[HSBK] = field(default_factory=_default_colors)
    intensity: float = 1.0
    subdivision: float = 1

    def __post_init__(self):
        if not math.isfinite(self.bpm):
            raise ValueError(f"bpm must be finite, got {self.bpm}")
        if not math.isfinite(self.subdivision) or self.subdivision <= 0:
            raise ValueError(f"subdivision must be positive, got {self.subdivision}")
        self.bpm = max(MIN_BPM, min(MAX_BPM, self.bpm))
        self.subdivision = max(MIN_SUBDIVISION, min(MAX_SUBDIVISION, self.subdivision))
        self.intensity = max(0.0, min(1.0, float(self.intensity)))
        self.pattern = DJPattern(self.pattern)
        self.colors = list(self.colors)

    @property
    def beat_interval_ms(self) -> float:
        """Milliseconds between ticks."""
        return 60000 / self.bpm / self.subdivision

    def color_at(self, index: int) -> HSBK:
        if not self.colors:
            return DEFAULT_COLOR
        return self.colors[index % len(self.colors)]


@dataclass(frozen=True)
class Cue:
    """A command for one device, sent delay_ms after the tick."""
    command: Command
    delay_ms: float = 0


PatternFunc = Callable[[int, int, int, DJConfig, random.Random], list[Cue]]


def _set(color: HSBK, brightness: float, duration_ms: float, hue=None, saturation=None) -> Cue:
    return Cue(commands.set_color(
        color.hue if hue is None else hue,
        color.saturation if saturation is None else saturation,
        brightness,
        color.kelvin,
        duration_ms,
    ))


def chase(beat: int, index: int, count: int, config: DJConfig, rng: random.Random) -> list[Cue]:
    """One light at a time; the rest dim to 10%."""
    color = config.color_at(beat)
    if index == beat % count:
        return [_set(color, color.brightness * config.intensity, 50)]
    return [_set(color, color.brightness * 0.1 * config.intensity, 100, hue=0, saturation=0)]


def strobe(beat: int, index: int, count: int, config: DJConfig, rng: random.Random) -> list[Cue]:
    """Everything on for even beats, off for odd beats."""
    color = config.color_at(beat)
    brightness = color.brightness * config.intensity if beat % 2 == 0 else 0
    return [_set(color, brightness, 0)]


def alternate(beat: int, index: int, count: int, config: DJConfig, rng: random.Random) -> list[Cue]:
    """Even and odd lights swap every beat."""
    color = config.color_at(beat)
    if index % 2 == beat % 2:
        return [_set(color, color.brightness * config.intensity, 50)]
    return [_set(color, color.brightness * 0.2, 50)]


def wave(beat: int, index: int, count: int, config: DJConfig, rng: random.Random) -> list[Cue]:
    """The colour list rolls across the lights, fading over most of the beat."""
    color = config.color_at(beat + index)
    return [_set(color, color.brightness * config.intensity, config.beat_interval_ms * 0.8)]


def random_colors(beat: int, index: int, count: int, config: DJConfig, rng: random.Random) -> list[Cue]:
    color = config.color_at(rng.randrange(len(config.colors))) if config.colors else DEFAULT_COLOR
    return [_set(color, color.brightness * config.intensity, 50)]


def pulse(beat: int, index: int, count: int, config: DJConfig, rng: random.Random) -> list[Cue]:
    """One transient sine swell per beat, run by the firmware."""
    color = config.color_at(beat)
    return [Cue(commands.set_waveform(
        True,
        color.hue,
        color.saturation,
        color.brightness * config.intensity,
        color.kelvin,
        config.beat_interval_ms,
        1,
        0.5,
        Waveform.SINE,
    ))]


BLACKOUT_DELAY_MS = 50


def blackout(beat: int, index: int, count: int, config: DJConfig, rng: random.Random) -> list[Cue]:
    """Flash at full brightness, then go dark shortly after."""
    color = config.color_at(beat)
    return [
        _set(color, MAX_U16 * config.intensity, 0),
        Cue(
            commands.set_color(0, 0, 0, color.kelvin, 50),
            delay_ms=BLACKOUT_DELAY_MS,
        ),
    ]


PATTERNS: dict[DJPattern, PatternFunc] = {
    DJPattern.CHASE: chase,
    DJPattern.STROBE: strobe,
    DJPattern.ALTERNATE: alternate,
    DJPattern.WAVE: wave,
    DJPattern.RANDOM: random_colors,
    DJPattern.PULSE: pulse,
    DJPattern.BLACKOUT: blackout,
}


def render_frame(
    beat: int,
    device_count: int,
    config: DJConfig,
    rng: random.Random,
) -> list[list[Cue]]:
    """Cues for every device on one beat, indexed like the device list."""
    pattern = PATTERNS[config.pattern]
    return [pattern(beat, i, device_count, config, rng) for i in range(device_count)]
