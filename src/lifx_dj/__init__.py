"""lifx-dj: LAN control and beat-synchronised patterns for LIFX lights."""

__version__ = "0.1.0"
