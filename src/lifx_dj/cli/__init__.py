"""
CLI entry points for lifx-dj.

Contains the main executable scripts:
- discover: list devices, groups and their state
- serve: light controller with the WebSocket control server
"""

from .discover import main as discover_main
from .serve import main as serve_main

__all__ = [
    "discover_main",
    "serve_main",
]
