"""Colour palettes and tempo subdivisions for DJ mode."""

from dataclasses import dataclass, replace

from ..colors import COLOR_PRESETS, HSBK


@dataclass(frozen=True)
class Palette:
    name: str
    colors: tuple[HSBK, ...]


PALETTES: list[Palette] = [
    Palette("Party", (
        COLOR_PRESETS["blue"], COLOR_PRESETS["purple"], COLOR_PRESETS["pink"], COLOR_PRESETS["cyan"],
    )),
    Palette("Fire", (COLOR_PRESETS["red"], COLOR_PRESETS["orange"], COLOR_PRESETS["yellow"])),
    Palette("Ocean", (COLOR_PRESETS["blue"], COLOR_PRESETS["cyan"], COLOR_PRESETS["green"])),
    Palette("Sunset", (
        COLOR_PRESETS["red"], COLOR_PRESETS["orange"], COLOR_PRESETS["pink"], COLOR_PRESETS["purple"],
    )),
    Palette("RGB", (COLOR_PRESETS["red"], COLOR_PRESETS["green"], COLOR_PRESETS["blue"])),
    Palette("Mono", (COLOR_PRESETS["white"], replace(COLOR_PRESETS["white"], brightness=10000))),
]

# (label, subdivision); higher subdivision = more ticks per beat
SUBDIVISIONS: list[tuple[str, float]] = [
    ("1/4", 4),
    ("1/2", 2),
    ("1x", 1),
    ("2x", 0.5),
    ("4x", 0.25),
]


def get_palette(name: str) -> Palette:
    """Look up a palette by name, ignoring case."""
    for palette in PALETTES:
        if palette.name.lower() == name.lower():
            return palette
    available = ", ".join(p.name for p in PALETTES)
    raise KeyError(f"Unknown palette '{name}'. Available: {available}")


def list_palettes() -> list[str]:
    return [p.name for p in PALETTES]
