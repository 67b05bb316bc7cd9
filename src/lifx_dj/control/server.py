"""WebSocket control server for lifx-dj.

Exposes the state store, DJ engine and effects via WebSocket on
localhost:9876. Runs on the same event loop as the transport.
"""

import asyncio
import json
import logging
from typing import Any

from aiohttp import web, WSMsgType

from ..colors import hsbk_to_hex, parse_color
from ..lights.client import Client
from ..lights.effects import (
    CandleEffect,
    EffectConfig,
    EffectType,
    RainbowEffect,
    apply_waveform_effect,
)
from ..lights.store import StateStore, StoreChange
from ..patterns import DJEngine
from ..patterns.palettes import get_palette

logger = logging.getLogger(__name__)

# Default port for control server
DEFAULT_PORT = 9876
STATUS_INTERVAL = 1.0


class ControlServer:
    """WebSocket server for remote control of the lights."""

    def __init__(
        self,
        store: StateStore,
        client: Client,
        dj_engine: DJEngine,
        candle: CandleEffect,
        rainbow: RainbowEffect,
        host: str = "localhost",
        port: int = DEFAULT_PORT,
        status_interval: float = STATUS_INTERVAL,
    ):
        self.store = store
        self.client = client
        self.dj_engine = dj_engine
        self.candle = candle
        self.rainbow = rainbow
        self.host = host
        self.port = port
        self.status_interval = status_interval

        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None
        self._clients: set[web.WebSocketResponse] = set()
        self._running = False
        self._status_task: asyncio.Task | None = None
        self._broadcast_task: asyncio.Task | None = None
        self._unsubscribe: list = []
        self._tasks: set[asyncio.Task] = set()

    def build_app(self) -> web.Application:
        """Create the aiohttp application with the /ws route."""
        app = web.Application()
        app.router.add_get("/ws", self._handle_websocket)
        app.on_startup.append(self._on_startup)
        app.on_shutdown.append(self._on_shutdown)
        return app

    async def _on_startup(self, app: web.Application) -> None:
        self._unsubscribe = [
            self.store.subscribe(self._on_store_change),
            self.dj_engine.subscribe(self._schedule_broadcast),
        ]
        self._running = True
        self._status_task = asyncio.get_running_loop().create_task(self._status_loop())

    async def _on_shutdown(self, app: web.Application) -> None:
        self._running = False
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe = []

        if self._status_task is not None:
            self._status_task.cancel()
            self._status_task = None

        # Close all client connections
        for ws in list(self._clients):
            await ws.close()
        self._clients.clear()

    async def _handle_websocket(self, request: web.Request) -> web.WebSocketResponse:
        """Handle incoming WebSocket connection."""
        ws = web.WebSocketResponse()
        await ws.prepare(request)

        self._clients.add(ws)
        logger.info("Client connected (%d total)", len(self._clients))

        try:
            await ws.send_json(self._get_status())

            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    try:
                        data = json.loads(msg.data)
                    except json.JSONDecodeError:
                        await ws.send_json({"type": "error", "message": "Invalid JSON"})
                        continue
                    if not isinstance(data, dict):
                        await ws.send_json({"type": "error", "message": "Expected a JSON object"})
                        continue
                    try:
                        await self._handle_command(data, ws)
                    except (ValueError, TypeError, KeyError) as e:
                        await ws.send_json({"type": "error", "message": str(e)})
                elif msg.type == WSMsgType.ERROR:
                    logger.warning("WebSocket error: %s", ws.exception())
        finally:
            self._clients.discard(ws)
            logger.info("Client disconnected (%d total)", len(self._clients))

        return ws

    async def _handle_command(self, data: dict, ws: web.WebSocketResponse) -> None:
        """Handle a command from client."""
        cmd_type = data.get("type")

        if cmd_type == "get_status":
            await ws.send_json(self._get_status())

        elif cmd_type == "select_device":
            self.store.select_device(data["serial"])

        elif cmd_type == "toggle_select":
            self.store.toggle_select(data["serial"])

        elif cmd_type == "select_all":
            self.store.select_all()

        elif cmd_type == "select_none":
            self.store.select_none()

        elif cmd_type == "select_group":
            self.store.select_group(data["group_id"])

        elif cmd_type == "toggle_group":
            self.store.toggle_group(data["group_id"])

        elif cmd_type == "set_color":
            color = parse_color(data["color"])
            self.store.set_color(color, float(data.get("duration", 250)))

        elif cmd_type == "set_power":
            self.store.set_power(bool(data["on"]), float(data.get("duration", 0)))

        elif cmd_type == "toggle_power":
            self.store.toggle_power()

        elif cmd_type == "refresh":
            task = asyncio.get_running_loop().create_task(self.store.refresh_all())
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        elif cmd_type == "dj_start":
            self._stop_effects()
            overrides = self._dj_changes(data.get("config") or {})
            self.dj_engine.start(self.store.get_selected_devices(), overrides)
            self._schedule_broadcast()

        elif cmd_type == "dj_stop":
            self.dj_engine.stop()
            self._schedule_broadcast()

        elif cmd_type == "dj_update":
            self.dj_engine.update_config(**self._dj_changes(data.get("config") or {}))

        elif cmd_type == "tap_tempo":
            bpm = self.dj_engine.tap_tempo()
            await ws.send_json({"type": "tap_tempo", "bpm": bpm})

        elif cmd_type == "set_palette":
            palette = get_palette(data["name"])
            self.dj_engine.update_config(colors=list(palette.colors))

        elif cmd_type == "start_effect":
            self._start_effect(data)
            self._schedule_broadcast()

        elif cmd_type == "stop_effects":
            self._stop_effects()
            self._schedule_broadcast()

        else:
            await ws.send_json({"type": "error", "message": f"Unknown command: {cmd_type}"})

    def _dj_changes(self, raw: dict) -> dict:
        """Translate JSON config fields into DJConfig keyword arguments."""
        changes = {}
        for key in ("bpm", "pattern", "intensity", "subdivision"):
            if key in raw:
                changes[key] = raw[key]
        if "colors" in raw:
            changes["colors"] = [parse_color(c) for c in raw["colors"]]
        if "palette" in raw:
            changes["colors"] = list(get_palette(raw["palette"]).colors)
        return changes

    def _start_effect(self, data: dict) -> None:
        config = EffectConfig(
            type=data["effect"],
            speed=float(data.get("speed", 1000)),
            intensity=float(data.get("intensity", 1.0)),
            colors=[parse_color(c) for c in data.get("colors", [])],
        )
        devices = self.store.get_selected_devices()
        self.dj_engine.stop()
        self._stop_effects()

        if config.type == EffectType.CANDLE:
            self.candle.start(devices)
        elif config.type == EffectType.RAINBOW:
            self.rainbow.start(devices, config.speed if "speed" in data else None)
        else:
            apply_waveform_effect(self.client, devices, config)

    def _stop_effects(self) -> None:
        self.candle.stop()
        self.rainbow.stop()

    def _active_effect(self) -> str | None:
        if self.candle.is_running:
            return EffectType.CANDLE.value
        if self.rainbow.is_running:
            return EffectType.RAINBOW.value
        return None

    def _get_status(self) -> dict:
        """Get current store and engine status."""
        snapshot = self.store.snapshot()
        config = self.dj_engine.config

        return {
            "type": "status",
            "version": snapshot.version,
            "scanning": snapshot.is_scanning,
            "devices": [
                {
                    "serial": state.serial,
                    "label": state.label,
                    "group": state.group,
                    "group_id": state.group_id,
                    "power": state.power,
                    "color": state.color.as_dict(),
                    "hex": hsbk_to_hex(state.color),
                    "online": state.online,
                    "selected": state.selected,
                    "type": state.device_type.value,
                    "product_id": state.product_id,
                }
                for state in snapshot.devices
            ],
            "groups": [
                {
                    "id": group.id,
                    "label": group.label,
                    "devices": group.devices,
                    "expanded": group.expanded,
                }
                for group in self.store.get_sorted_groups()
            ],
            "selected": list(snapshot.selected),
            "dj": {
                "running": self.dj_engine.is_running,
                "bpm": config.bpm,
                "pattern": config.pattern.value,
                "intensity": config.intensity,
                "subdivision": config.subdivision,
                "colors": [c.as_dict() for c in config.colors],
                "beat": self.dj_engine.beat_count,
            },
            "effect": self._active_effect(),
        }

    def _schedule_broadcast(self, *_: Any) -> None:
        """Coalesce change notifications into one broadcast per loop iteration."""
        if self._broadcast_task is not None or not self._clients:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._broadcast_task = loop.create_task(self._deferred_broadcast())

    async def _deferred_broadcast(self) -> None:
        try:
            await asyncio.sleep(0)
        finally:
            self._broadcast_task = None
        await self._broadcast_status()

    async def _broadcast_status(self) -> None:
        """Broadcast status to all connected clients."""
        if not self._clients:
            return

        status = self._get_status()
        dead_clients = set()

        for ws in list(self._clients):
            try:
                await ws.send_json(status)
            except (ConnectionError, RuntimeError) as e:
                logger.debug("Dropping client: %s", e)
                dead_clients.add(ws)

        self._clients -= dead_clients

    async def _status_loop(self) -> None:
        """Periodically broadcast status to all clients."""
        while self._running:
            await self._broadcast_status()
            await asyncio.sleep(self.status_interval)

    async def start(self) -> None:
        """Start the server."""
        self._app = self.build_app()

        self._runner = web.AppRunner(self._app)
        await self._runner.setup()

        self._site = web.TCPSite(self._runner, self.host, self.port)
        await self._site.start()

        logger.info("WebSocket server running on ws://%s:%d/ws", self.host, self.port)

    def _on_store_change(self, change: StoreChange) -> None:
        self._schedule_broadcast()

    async def stop(self) -> None:
        """Stop the server."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
