"""Configuration dataclasses."""

from dataclasses import dataclass, field

from ..colors import HSBK, COLOR_PRESETS

# LIFX Switch, LIFX Switch+
DEFAULT_SWITCH_PRODUCT_IDS = (70, 71, 89)


@dataclass
class TransportConfig:
    """UDP transport configuration."""
    bind_host: str = "0.0.0.0"
    bind_port: int = 0  # 0 = ephemeral
    broadcast_address: str = "255.255.255.255"
    device_port: int = 56700
    discovery_interval: float = 0.5  # seconds between GetService broadcasts
    request_timeout: float = 1.0  # seconds to wait for a state reply


@dataclass
class DJDefaults:
    """Initial DJ engine configuration."""
    bpm: int = 120
    pattern: str = "chase"
    colors: list[HSBK] = field(default_factory=lambda: [
        COLOR_PRESETS["blue"],
        COLOR_PRESETS["purple"],
        COLOR_PRESETS["pink"],
    ])
    intensity: float = 1.0
    subdivision: float = 1


@dataclass
class ControlConfig:
    """WebSocket control server configuration."""
    host: str = "localhost"
    port: int = 9876
    status_interval: float = 1.0


@dataclass
class Settings:
    """Main application configuration."""
    transport: TransportConfig = field(default_factory=TransportConfig)
    dj: DJDefaults = field(default_factory=DJDefaults)
    control: ControlConfig = field(default_factory=ControlConfig)
    switch_product_ids: list[int] = field(
        default_factory=lambda: list(DEFAULT_SWITCH_PRODUCT_IDS)
    )

    @classmethod
    def with_defaults(cls) -> "Settings":
        """Create settings with sensible defaults."""
        return cls()
