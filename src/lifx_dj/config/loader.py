"""Configuration file loading and saving."""

import logging
from pathlib import Path
from typing import Any

import yaml

from ..exceptions import ConfigurationError
from ..colors import HSBK, parse_color
from .schema import (
    Settings,
    TransportConfig,
    DJDefaults,
    ControlConfig,
)

logger = logging.getLogger(__name__)


def _parse_color(value: Any, config_path: Path) -> HSBK:
    try:
        return parse_color(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"bad colour {value!r}: {e}", str(config_path)) from e


def _section(data: dict, name: str, config_path: Path) -> dict:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigurationError(f"'{name}' must be a mapping", str(config_path))
    return section


def load_settings(config_path: Path) -> Settings:
    """Load settings from a YAML file. A missing file yields defaults."""
    if not config_path.exists():
        logger.info("No config at %s, using defaults", config_path)
        return Settings.with_defaults()

    try:
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"cannot parse YAML: {e}", str(config_path)) from e

    if not isinstance(data, dict):
        raise ConfigurationError("top level must be a mapping", str(config_path))

    try:
        transport_data = _section(data, "transport", config_path)
        defaults = TransportConfig()
        transport = TransportConfig(
            bind_host=str(transport_data.get("bind_host", defaults.bind_host)),
            bind_port=int(transport_data.get("bind_port", defaults.bind_port)),
            broadcast_address=str(
                transport_data.get("broadcast_address", defaults.broadcast_address)
            ),
            device_port=int(transport_data.get("device_port", defaults.device_port)),
            discovery_interval=float(
                transport_data.get("discovery_interval", defaults.discovery_interval)
            ),
            request_timeout=float(
                transport_data.get("request_timeout", defaults.request_timeout)
            ),
        )

        dj_data = _section(data, "dj", config_path)
        dj = DJDefaults()
        if "colors" in dj_data:
            colors = [_parse_color(c, config_path) for c in dj_data["colors"] or []]
        else:
            colors = dj.colors
        dj = DJDefaults(
            bpm=int(dj_data.get("bpm", dj.bpm)),
            pattern=str(dj_data.get("pattern", dj.pattern)),
            colors=colors,
            intensity=float(dj_data.get("intensity", dj.intensity)),
            subdivision=float(dj_data.get("subdivision", dj.subdivision)),
        )

        control_data = _section(data, "control", config_path)
        control_defaults = ControlConfig()
        control = ControlConfig(
            host=str(control_data.get("host", control_defaults.host)),
            port=int(control_data.get("port", control_defaults.port)),
            status_interval=float(
                control_data.get("status_interval", control_defaults.status_interval)
            ),
        )

        switch_ids = data.get("switch_product_ids")
        if switch_ids is None:
            switch_product_ids = Settings().switch_product_ids
        else:
            switch_product_ids = [int(pid) for pid in switch_ids]
    except (TypeError, ValueError) as e:
        raise ConfigurationError(str(e), str(config_path)) from e

    return Settings(
        transport=transport,
        dj=dj,
        control=control,
        switch_product_ids=switch_product_ids,
    )


def save_settings(settings: Settings, config_path: Path) -> None:
    """Save settings to a YAML file."""
    data: dict[str, Any] = {
        "transport": {
            "bind_host": settings.transport.bind_host,
            "bind_port": settings.transport.bind_port,
            "broadcast_address": settings.transport.broadcast_address,
            "device_port": settings.transport.device_port,
            "discovery_interval": settings.transport.discovery_interval,
            "request_timeout": settings.transport.request_timeout,
        },
        "dj": {
            "bpm": settings.dj.bpm,
            "pattern": settings.dj.pattern,
            "colors": [
                {
                    "hue": c.hue,
                    "saturation": c.saturation,
                    "brightness": c.brightness,
                    "kelvin": c.kelvin,
                }
                for c in settings.dj.colors
            ],
            "intensity": settings.dj.intensity,
            "subdivision": settings.dj.subdivision,
        },
        "control": {
            "host": settings.control.host,
            "port": settings.control.port,
            "status_interval": settings.control.status_interval,
        },
        "switch_product_ids": list(settings.switch_product_ids),
    }

    with open(config_path, "w") as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=False)
