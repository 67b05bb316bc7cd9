"""Beat-synchronised DJ patterns."""

from .engine import DJEngine
from .library import Cue, DJConfig, DJPattern, PATTERNS, render_frame
from .palettes import PALETTES, SUBDIVISIONS, Palette, get_palette, list_palettes

__all__ = [
    "DJEngine",
    "Cue",
    "DJConfig",
    "DJPattern",
    "PATTERNS",
    "render_frame",
    "PALETTES",
    "SUBDIVISIONS",
    "Palette",
    "get_palette",
    "list_palettes",
]
