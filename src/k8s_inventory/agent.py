"""Agent run modes.

- ``adhoc``: collect once, deliver (when Anchore is configured), print.
- ``periodic``: register in the background, report health in the
  background, and collect every ``polling_interval_seconds``.

Usage::

    from k8s_inventory.agent import run_adhoc
    from k8s_inventory.config import load_config

    report = run_adhoc(load_config())
"""

from __future__ import annotations

import logging
import threading
from typing import TextIO

from k8s_inventory.anchore.client import AnchoreClient
from k8s_inventory.collector import ClientFactory, get_inventory_report
from k8s_inventory.config import AppConfig
from k8s_inventory.healthreporter import GatedReportInfo, periodically_send_health_report
from k8s_inventory.integration import Channels, perform_registration
from k8s_inventory.kube import build_client_factory
from k8s_inventory.models import Report
from k8s_inventory.reporter import handle_report

logger = logging.getLogger(__name__)

# how often a blocked wait re-checks the stop event
_STOP_POLL_SECONDS = 1.0


def run_adhoc(
    cfg: AppConfig,
    client_factory: ClientFactory | None = None,
    anchore: AnchoreClient | None = None,
    out: TextIO | None = None,
) -> Report:
    """One collection cycle. Errors propagate to the caller."""
    factory = client_factory or build_client_factory(cfg.kubeconfig)
    if anchore is None and cfg.anchore.is_valid():
        anchore = AnchoreClient(cfg.anchore)

    report = get_inventory_report(cfg, factory)
    handle_report(report, cfg, anchore, out=out, echo=True)
    return report


def run_periodic(
    cfg: AppConfig,
    stop: threading.Event | None = None,
    client_factory: ClientFactory | None = None,
    anchore: AnchoreClient | None = None,
    out: TextIO | None = None,
) -> None:
    """Collect and deliver until *stop* is set. Cycle failures are logged."""
    stop = stop or threading.Event()
    factory = client_factory or build_client_factory(cfg.kubeconfig)
    if anchore is None and cfg.anchore.is_valid():
        anchore = AnchoreClient(cfg.anchore)

    ch = Channels()
    gated = GatedReportInfo()

    if anchore is not None:
        threading.Thread(
            target=_register,
            args=(cfg, anchore, ch, factory),
            name="registration",
            daemon=True,
        ).start()
        threading.Thread(
            target=periodically_send_health_report,
            args=(cfg, anchore, ch, gated, stop),
            name="health-reporter",
            daemon=True,
        ).start()

        logger.info("Waiting for inventory reporting to be enabled")
        while not ch.inventory_reporting_enabled.is_set():
            if stop.wait(_STOP_POLL_SECONDS):
                return
        if not ch.inventory_reporting_enabled.delivered:
            logger.warning("Registration ended without enabling inventory reporting, reporting anyway")
    else:
        logger.info("Anchore details not specified, running without registration")

    while True:
        try:
            report = get_inventory_report(cfg, factory)
        except Exception as exc:
            logger.error("Failed to get Inventory Report: %s", exc)
        else:
            try:
                handle_report(
                    report, cfg, anchore, gated,
                    health_enabled=ch.health_reporting_enabled.delivered,
                    out=out,
                )
            except Exception as exc:
                logger.error("Failed to handle Inventory Report: %s", exc)

        logger.info("Waiting %d seconds for next poll...", cfg.polling_interval_seconds)
        if stop.wait(cfg.polling_interval_seconds):
            return


def _register(
    cfg: AppConfig, anchore: AnchoreClient, ch: Channels, factory: ClientFactory,
) -> None:
    try:
        perform_registration(cfg, anchore, ch, factory)
    except Exception as exc:
        logger.error("Integration registration failed: %s", exc)
