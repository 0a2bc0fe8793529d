"""k8s-inventory CLI: tell Anchore which images are in use in a cluster.

Commands:
    (default)   Collect the inventory once (adhoc) or forever (periodic)
    version     Show the agent version
    config      Show the resolved configuration with secrets masked
"""

from __future__ import annotations

import logging
import sys

import click

from k8s_inventory import __version__
from k8s_inventory.agent import run_adhoc, run_periodic
from k8s_inventory.config import AppConfig, ConfigError, load_config
from k8s_inventory.log import level_from_verbosity, setup_logging
from k8s_inventory.presenter import PRESENTERS

logger = logging.getLogger(__name__)


def _load(
    config_path: str | None,
    mode: str | None,
    output: str | None,
    verbose_inventory_reports: bool,
) -> AppConfig:
    try:
        cfg = load_config(config_path)
    except ConfigError as e:
        click.echo(f"Error loading config: {e}", err=True)
        sys.exit(1)

    # CLI flags win over the config file and environment
    update: dict[str, object] = {}
    if mode:
        update["mode"] = mode
    if output:
        update["output"] = output
    if verbose_inventory_reports:
        update["verbose_inventory_reports"] = True
    return cfg.model_copy(update=update)


def _init_logging(cfg: AppConfig, verbosity: int) -> None:
    try:
        level = level_from_verbosity(cfg.log.level, verbosity, cfg.quiet)
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    setup_logging(level, structured=cfg.log.structured, file=cfg.log.file)


# --- Root group ---


@click.group(invoke_without_command=True)
@click.version_option(version=__version__)
@click.option("--config", "-c", "config_path", default=None, help="Path to .k8s-inventory.yaml")
@click.option("--verbose", "-v", "verbosity", count=True, help="Increase log verbosity (-v, -vv)")
@click.option(
    "--mode", "-m", type=click.Choice(["adhoc", "periodic"]), default=None,
    help="Run once (adhoc) or on an interval (periodic)",
)
@click.option(
    "--output", "-o", type=click.Choice(PRESENTERS), default=None,
    help="Report output format",
)
@click.option(
    "--verbose-inventory-reports", is_flag=True,
    help="Print every inventory report, also in periodic mode",
)
@click.pass_context
def cli(
    ctx: click.Context,
    config_path: str | None,
    verbosity: int,
    mode: str | None,
    output: str | None,
    verbose_inventory_reports: bool,
) -> None:
    """k8s-inventory: report the images in use in a Kubernetes cluster to Anchore."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    if ctx.invoked_subcommand is not None:
        return

    cfg = _load(config_path, mode, output, verbose_inventory_reports)
    _init_logging(cfg, verbosity)
    logger.debug("Application config:\n%s", cfg.redacted())

    if cfg.mode == "periodic":
        try:
            run_periodic(cfg)
        except KeyboardInterrupt:
            logger.info("Interrupted, shutting down")
        return

    try:
        run_adhoc(cfg, out=sys.stdout)
    except Exception as e:
        logger.debug("Adhoc run failed", exc_info=True)
        click.echo(click.style("ERROR", fg="red") + f"  {e}", err=True)
        sys.exit(1)


# --- version command ---


@cli.command()
def version() -> None:
    """Show the agent version."""
    click.echo(f"k8s-inventory {__version__}")


# --- config command ---


@cli.command("config")
@click.pass_context
def show_config(ctx: click.Context) -> None:
    """Show the resolved configuration (secrets masked)."""
    cfg = _load(ctx.obj.get("config_path"), None, None, False)
    click.echo(cfg.redacted(), nl=False)
