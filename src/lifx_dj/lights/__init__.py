"""LIFX LAN light control modules."""

from .client import Client
from .commands import Command, Waveform
from .effects import CandleEffect, EffectConfig, EffectType, RainbowEffect, apply_waveform_effect
from .registry import Device, DeviceRegistry
from .store import DeviceState, DeviceType, GroupState, StateStore, StoreChange, StoreSnapshot
from .transport import LanTransport

__all__ = [
    "Client",
    "Command",
    "Waveform",
    "CandleEffect",
    "EffectConfig",
    "EffectType",
    "RainbowEffect",
    "apply_waveform_effect",
    "Device",
    "DeviceRegistry",
    "DeviceState",
    "DeviceType",
    "GroupState",
    "StateStore",
    "StoreChange",
    "StoreSnapshot",
    "LanTransport",
]
