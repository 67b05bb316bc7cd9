"""Configuration schema and loading."""

from .schema import (
    Settings,
    TransportConfig,
    DJDefaults,
    ControlConfig,
    DEFAULT_SWITCH_PRODUCT_IDS,
)
from .loader import load_settings, save_settings

__all__ = [
    "Settings",
    "TransportConfig",
    "DJDefaults",
    "ControlConfig",
    "DEFAULT_SWITCH_PRODUCT_IDS",
    "load_settings",
    "save_settings",
]
