"""Run the light controller: discovery, state store, DJ engine and control server."""

import asyncio
import logging
import signal
from pathlib import Path

import click

from ..config import Settings
from ..control import ControlServer
from ..exceptions import TransportBindError
from ..lights import CandleEffect, DeviceRegistry, LanTransport, RainbowEffect, StateStore
from ..patterns import DJConfig, DJEngine
from .common import DEFAULT_CONFIG_PATH, load_settings_or_exit, setup_logging

logger = logging.getLogger(__name__)

# Listen this long before the first full refresh
INITIAL_SCAN_SECONDS = 2.0


def build_dj_config(settings: Settings) -> DJConfig:
    dj = settings.dj
    return DJConfig(
        bpm=dj.bpm,
        pattern=dj.pattern,
        colors=list(dj.colors),
        intensity=dj.intensity,
        subdivision=dj.subdivision,
    )


async def run(settings: Settings) -> None:
    """Run until SIGINT or SIGTERM."""
    registry = DeviceRegistry()
    transport = LanTransport(registry, settings.transport)
    client = transport.client

    store = StateStore(registry, client, settings.switch_product_ids)
    dj_engine = DJEngine(client, build_dj_config(settings))
    candle = CandleEffect(client)
    rainbow = RainbowEffect(client)
    server = ControlServer(
        store,
        client,
        dj_engine,
        candle,
        rainbow,
        host=settings.control.host,
        port=settings.control.port,
        status_interval=settings.control.status_interval,
    )

    await transport.open()
    await server.start()
    click.echo(f"Control server on ws://{settings.control.host}:{settings.control.port}/ws")
    click.echo("Press Ctrl+C to exit")

    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()
    loop.add_signal_handler(signal.SIGINT, shutdown_event.set)
    loop.add_signal_handler(signal.SIGTERM, shutdown_event.set)

    async def initial_scan() -> None:
        await asyncio.sleep(INITIAL_SCAN_SECONDS)
        await store.refresh_all()
        logger.info("Initial scan finished: %d device(s)", len(registry))

    scan_task = loop.create_task(initial_scan())

    try:
        await shutdown_event.wait()
    finally:
        click.echo("Stopping...")
        scan_task.cancel()
        dj_engine.stop()
        candle.stop()
        rainbow.stop()
        await server.stop()
        transport.close()
        await transport.wait_closed()


@click.command()
@click.option(
    "--config", "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=DEFAULT_CONFIG_PATH,
    show_default=True,
    help="YAML settings file",
)
@click.option("--host", default=None, help="Control server host (overrides config)")
@click.option("--port", type=int, default=None, help="Control server port (overrides config)")
@click.option("-v", "--verbose", count=True, help="Increase verbosity (-v INFO, -vv DEBUG)")
def main(config_path: Path, host: str | None, port: int | None, verbose: int) -> None:
    """Control LIFX lights over the LAN with beat-synchronised DJ patterns."""
    setup_logging(verbose)
    settings = load_settings_or_exit(config_path)
    if host is not None:
        settings.control.host = host
    if port is not None:
        settings.control.port = port

    click.echo("=" * 60)
    click.echo("  lifx-dj")
    click.echo("=" * 60)

    try:
        build_dj_config(settings)
    except ValueError as e:
        raise click.ClickException(f"Invalid dj settings: {e}") from e

    try:
        asyncio.run(run(settings))
    except TransportBindError as e:
        raise click.ClickException(e.get_full_message()) from e


if __name__ == "__main__":
    main()
