"""Helpers shared by the CLI entry points."""

import logging
from pathlib import Path

import click

from ..config import Settings, load_settings
from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config.yaml")


def setup_logging(verbose: int) -> None:
    """
    Configure console logging.

    Args:
        verbose: Verbosity count (0 = WARNING, 1 = INFO, 2+ = DEBUG)
    """
    if verbose >= 2:
        level = logging.DEBUG
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.WARNING

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )
    logger.debug("Logging configured: level=%s", logging.getLevelName(level))


def load_settings_or_exit(config_path: Path) -> Settings:
    """Load settings, turning configuration errors into a clean CLI failure."""
    try:
        return load_settings(config_path)
    except ConfigurationError as e:
        raise click.ClickException(e.get_full_message()) from e
