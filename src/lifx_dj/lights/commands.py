"""
Protocol command builders.

Every builder is a pure function returning an immutable Command. Header
fields (target, source, sequence) are only attached when the client packs
the command for sending, so one Command can be reused for any device.

Values are expected to be pre-clamped by callers; builders only round to
integers, they do not validate ranges.
"""

from dataclasses import dataclass, field
from enum import IntEnum
from types import MappingProxyType
from typing import Any, Mapping, Optional

from aiolifx import msgtypes

from ..colors import HSBK


class Waveform(IntEnum):
    """Waveform types for SetWaveform commands."""
    SAW = 0
    SINE = 1
    HALF_SINE = 2
    TRIANGLE = 3
    PULSE = 4


def _frozen(payload: dict[str, Any]) -> Mapping[str, Any]:
    return MappingProxyType(payload)


@dataclass(frozen=True)
class Command:
    """A protocol message that has not been addressed yet."""
    message_type: type
    payload: Mapping[str, Any] = field(default_factory=lambda: _frozen({}))
    response_type: Optional[type] = None

    @property
    def name(self) -> str:
        return self.message_type.__name__

    def pack(
        self,
        target: str,
        source: int,
        sequence: int,
        ack: bool = False,
        response: bool = False,
    ) -> bytes:
        """Encode as a datagram addressed to target (a MAC string)."""
        payload = {
            key: list(value) if isinstance(value, tuple) else value
            for key, value in self.payload.items()
        }
        message = self.message_type(
            target,
            source,
            sequence,
            payload,
            ack_requested=ack,
            response_requested=response,
        )
        return message.packed_message


# =============================================================================
# QUERIES
# =============================================================================

def get_service() -> Command:
    """Discovery request, broadcast to find devices."""
    return Command(msgtypes.GetService, response_type=msgtypes.StateService)


def get_color() -> Command:
    """Light state query. The reply carries colour, power and label."""
    return Command(msgtypes.LightGet, response_type=msgtypes.LightState)


def get_power() -> Command:
    return Command(msgtypes.GetPower, response_type=msgtypes.StatePower)


def get_label() -> Command:
    return Command(msgtypes.GetLabel, response_type=msgtypes.StateLabel)


def get_group() -> Command:
    return Command(msgtypes.GetGroup, response_type=msgtypes.StateGroup)


def get_version() -> Command:
    """Hardware version query. The reply carries the product id."""
    return Command(msgtypes.GetVersion, response_type=msgtypes.StateVersion)


# =============================================================================
# SETTERS
# =============================================================================

def set_color(
    hue: float,
    saturation: float,
    brightness: float,
    kelvin: float,
    duration_ms: float = 0,
) -> Command:
    """Fade to a colour over duration_ms milliseconds."""
    return Command(
        msgtypes.LightSetColor,
        _frozen({
            "color": (round(hue), round(saturation), round(brightness), round(kelvin)),
            "duration": round(duration_ms),
        }),
    )


def set_color_hsbk(color: HSBK, duration_ms: float = 0) -> Command:
    return set_color(color.hue, color.saturation, color.brightness, color.kelvin, duration_ms)


def set_power(on: bool, duration_ms: float = 0) -> Command:
    """Switch the light on or off, ramping over duration_ms."""
    return Command(
        msgtypes.LightSetPower,
        _frozen({
            "power_level": 65535 if on else 0,
            "duration": round(duration_ms),
        }),
    )


def skew_ratio_to_wire(ratio: float) -> int:
    """Map a 0-1 skew ratio to the signed 16-bit value on the wire."""
    ratio = max(0.0, min(1.0, ratio))
    return round(ratio * 65535) - 32768


def set_waveform(
    transient: bool,
    hue: float,
    saturation: float,
    brightness: float,
    kelvin: float,
    period_ms: float,
    cycles: float,
    skew_ratio: float,
    waveform: Waveform,
) -> Command:
    """
    Run a firmware waveform effect.

    Args:
        transient: Return to the original colour when the effect ends
        hue, saturation, brightness, kelvin: Target colour
        period_ms: Length of one cycle
        cycles: Number of cycles to run
        skew_ratio: Duty cycle, 0.0-1.0
        waveform: Shape of the transition
    """
    return Command(
        msgtypes.LightSetWaveform,
        _frozen({
            "transient": 1 if transient else 0,
            "color": (round(hue), round(saturation), round(brightness), round(kelvin)),
            "period": round(period_ms),
            "cycles": float(cycles),
            "skew_ratio": skew_ratio_to_wire(skew_ratio),
            "waveform": int(waveform),
        }),
    )
