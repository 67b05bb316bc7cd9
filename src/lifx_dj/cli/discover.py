"""Discover LIFX devices on the local network and print what they report."""

import asyncio
from pathlib import Path

import click

from ..colors import hsbk_to_hex
from ..config import Settings
from ..exceptions import TransportBindError
from ..lights import DeviceRegistry, DeviceType, LanTransport, StateStore
from .common import DEFAULT_CONFIG_PATH, load_settings_or_exit, setup_logging


async def discover(settings: Settings, wait: float) -> StateStore:
    """Listen for `wait` seconds, refresh every device found, and return the store."""
    registry = DeviceRegistry()
    transport = LanTransport(registry, settings.transport)
    store = StateStore(registry, transport.client, settings.switch_product_ids)

    await transport.open()
    try:
        await asyncio.sleep(wait)
        await store.wait_idle()
        await store.refresh_all()
    finally:
        transport.close()
        await transport.wait_closed()
    return store


def print_store(store: StateStore) -> None:
    devices = store.devices
    click.echo(f"Found {len(devices)} device(s)")
    click.echo()

    for group in store.get_sorted_groups():
        click.echo(f"{group.label}")
        click.echo("-" * 60)
        for state in store.get_group_devices(group.id):
            power = "on " if state.power else "off"
            status = "" if state.online else "  (offline)"
            click.echo(
                f"  {state.label:<25} {state.serial}  {power}  "
                f"{hsbk_to_hex(state.color)}  {state.device.address}{status}"
            )
        click.echo()

    switches = [state for state in devices if state.device_type is DeviceType.SWITCH]
    if switches:
        click.echo("Switches")
        click.echo("-" * 60)
        for state in switches:
            click.echo(f"  {state.label:<25} {state.serial}  product {state.product_id}")
        click.echo()


@click.command()
@click.option(
    "--config", "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=DEFAULT_CONFIG_PATH,
    show_default=True,
    help="YAML settings file",
)
@click.option("--wait", type=float, default=3.0, show_default=True, help="Seconds to listen for devices")
@click.option("-v", "--verbose", count=True, help="Increase verbosity (-v INFO, -vv DEBUG)")
def main(config_path: Path, wait: float, verbose: int) -> None:
    """Discover LIFX devices and show their groups and state."""
    setup_logging(verbose)
    settings = load_settings_or_exit(config_path)

    click.echo("=" * 60)
    click.echo("  LIFX Device Discovery")
    click.echo("=" * 60)
    click.echo()

    try:
        store = asyncio.run(discover(settings, wait))
    except TransportBindError as e:
        raise click.ClickException(e.get_full_message()) from e

    print_store(store)


if __name__ == "__main__":
    main()
