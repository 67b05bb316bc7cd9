"""
HSBK colour values and conversions.

LIFX devices speak HSBK: hue, saturation and brightness as 16-bit integers
(0-65535) plus a white point in kelvin (1500-9000).
"""

import colorsys
import math
import re
from dataclasses import dataclass, replace
from typing import Any, NamedTuple

MAX_U16 = 65535
MIN_KELVIN = 1500
MAX_KELVIN = 9000


def _clamp(value: float, low: int, high: int) -> int:
    return max(low, min(high, int(round(value))))


@dataclass(frozen=True)
class HSBK:
    """Device-native colour value."""
    hue: int
    saturation: int
    brightness: int
    kelvin: int = 3500

    def clamped(self) -> "HSBK":
        """Return a copy with every component forced into its device range."""
        return HSBK(
            hue=_clamp(self.hue, 0, MAX_U16),
            saturation=_clamp(self.saturation, 0, MAX_U16),
            brightness=_clamp(self.brightness, 0, MAX_U16),
            kelvin=_clamp(self.kelvin, MIN_KELVIN, MAX_KELVIN),
        )

    def scaled(self, factor: float) -> "HSBK":
        """Return a copy with brightness multiplied by factor."""
        return replace(self, brightness=round(self.brightness * factor))

    def as_list(self) -> list[int]:
        """Wire order used by the protocol: [hue, saturation, brightness, kelvin]."""
        return [self.hue, self.saturation, self.brightness, self.kelvin]

    def as_dict(self) -> dict[str, int]:
        return {
            "hue": self.hue,
            "saturation": self.saturation,
            "brightness": self.brightness,
            "kelvin": self.kelvin,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "HSBK":
        """Build from a mapping, filling missing keys with neutral defaults."""
        return cls(
            hue=int(data.get("hue", 0)),
            saturation=int(data.get("saturation", 0)),
            brightness=int(data.get("brightness", MAX_U16)),
            kelvin=int(data.get("kelvin", 3500)),
        ).clamped()


class RGB(NamedTuple):
    """8-bit RGB triple."""
    r: int
    g: int
    b: int


def kelvin_to_rgb(kelvin: int) -> RGB:
    """Approximate the RGB appearance of a black-body white point."""
    temp = kelvin / 100

    if temp <= 66:
        r = 255.0
        g = max(0.0, min(255.0, 99.4708025861 * math.log(temp) - 161.1195681661))
    else:
        r = max(0.0, min(255.0, 329.698727446 * math.pow(temp - 60, -0.1332047592)))
        g = max(0.0, min(255.0, 288.1221695283 * math.pow(temp - 60, -0.0755148492)))

    if temp >= 66:
        b = 255.0
    elif temp <= 19:
        b = 0.0
    else:
        b = max(0.0, min(255.0, 138.5177312231 * math.log(temp - 10) - 305.0447927307))

    return RGB(round(r), round(g), round(b))


def hsbk_to_rgb(color: HSBK) -> RGB:
    """
    Convert HSBK to 8-bit RGB.

    Fully desaturated colours are rendered from the kelvin white point.
    """
    h = color.hue / MAX_U16
    s = color.saturation / MAX_U16
    v = color.brightness / MAX_U16

    if s == 0:
        white = kelvin_to_rgb(color.kelvin)
        return RGB(round(white.r * v), round(white.g * v), round(white.b * v))

    r, g, b = colorsys.hsv_to_rgb(h % 1.0, s, v)
    return RGB(round(r * 255), round(g * 255), round(b * 255))


def rgb_to_hsbk(rgb: RGB, kelvin: int = 3500) -> HSBK:
    """Convert 8-bit RGB to HSBK with the given white point."""
    h, s, v = colorsys.rgb_to_hsv(rgb.r / 255, rgb.g / 255, rgb.b / 255)
    return HSBK(
        hue=round(h * MAX_U16),
        saturation=round(s * MAX_U16),
        brightness=round(v * MAX_U16),
        kelvin=kelvin,
    )


def rgb_to_hex(rgb: RGB) -> str:
    return f"#{rgb.r:02x}{rgb.g:02x}{rgb.b:02x}"


def hsbk_to_hex(color: HSBK) -> str:
    return rgb_to_hex(hsbk_to_rgb(color))


_HEX_RE = re.compile(r"^#?([a-f\d]{2})([a-f\d]{2})([a-f\d]{2})$", re.IGNORECASE)


def hex_to_rgb(hex_color: str) -> RGB:
    """Parse "#RRGGBB" (leading # optional). Unparseable input yields white."""
    match = _HEX_RE.match(hex_color)
    if not match:
        return RGB(255, 255, 255)
    return RGB(*(int(part, 16) for part in match.groups()))


def lerp_hsbk(a: HSBK, b: HSBK, t: float) -> HSBK:
    """
    Interpolate between two colours.

    Hue takes the shortest way around the colour wheel.
    """
    hue_diff = b.hue - a.hue
    if hue_diff > 32767:
        hue_diff -= MAX_U16
    if hue_diff < -32767:
        hue_diff += MAX_U16

    hue = a.hue + hue_diff * t
    if hue < 0:
        hue += MAX_U16
    if hue > MAX_U16:
        hue -= MAX_U16

    return HSBK(
        hue=round(hue),
        saturation=round(a.saturation + (b.saturation - a.saturation) * t),
        brightness=round(a.brightness + (b.brightness - a.brightness) * t),
        kelvin=round(a.kelvin + (b.kelvin - a.kelvin) * t),
    )


COLOR_PRESETS: dict[str, HSBK] = {
    "red": HSBK(0, 65535, 65535, 3500),
    "orange": HSBK(6000, 65535, 65535, 3500),
    "yellow": HSBK(10920, 65535, 65535, 3500),
    "green": HSBK(21845, 65535, 65535, 3500),
    "cyan": HSBK(32767, 65535, 65535, 3500),
    "blue": HSBK(43690, 65535, 65535, 3500),
    "purple": HSBK(49151, 65535, 65535, 3500),
    "pink": HSBK(58981, 45000, 65535, 3500),
    "white": HSBK(0, 0, 65535, 5500),
    "warm_white": HSBK(0, 0, 65535, 2700),
    "cool_white": HSBK(0, 0, 65535, 9000),
}


def parse_color(value: Any) -> HSBK:
    """
    Accept a preset name, a "#rrggbb" string or an HSBK mapping.

    Raises:
        ValueError: The value is none of those
    """
    if isinstance(value, str):
        if value.startswith("#"):
            return rgb_to_hsbk(hex_to_rgb(value))
        if value in COLOR_PRESETS:
            return COLOR_PRESETS[value]
        raise ValueError(f"Unknown colour '{value}'")
    if isinstance(value, dict):
        return HSBK.from_dict(value)
    raise ValueError(f"Unsupported colour value: {value!r}")
