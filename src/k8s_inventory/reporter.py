"""Deliver inventory reports to Anchore.

A report is routed per account, optionally split into namespace batches,
and POSTed batch by batch. Each batch outcome is recorded for the health
reporter when health reporting is active.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Callable
from datetime import datetime
from typing import TextIO

from k8s_inventory.anchore.client import AnchoreClient
from k8s_inventory.config import AppConfig
from k8s_inventory.healthreporter import GatedReportInfo, set_report_info_no_blocking
from k8s_inventory.models import BatchInfo, InventoryReportInfo, Namespace, Report, now_utc
from k8s_inventory.presenter import present
from k8s_inventory.routing import build_account_reports, route_namespaces, slice_report
from k8s_inventory.tracker import track_time

logger = logging.getLogger(__name__)


class ReportError(Exception):
    """Raised when one or more inventory report batches could not be delivered."""


def post_report(
    report: Report,
    client: AnchoreClient,
    account: str,
    user: str | None = None,
    password: str | None = None,
) -> None:
    """POST a single report to the detected inventory endpoint."""
    path = client.inventory_api_path()
    body = report.to_json().encode("utf-8")
    with track_time(f"Reporting results to Anchore for cluster: {report.cluster_name}"):
        client.post(
            body, path, operation="inventory report",
            account=account, user=user, password=password,
        )
    logger.debug("Successfully reported results to Anchore for account %s", account)


def split_batches(report: Report, batch_namespaces: int) -> list[Report]:
    """Split *report* into reports of at most *batch_namespaces* namespaces.

    ``0`` (or a report that already fits) means a single batch.
    """
    if batch_namespaces <= 0 or len(report.namespaces) <= batch_namespaces:
        return [report]
    chunks: list[list[Namespace]] = [
        report.namespaces[i:i + batch_namespaces]
        for i in range(0, len(report.namespaces), batch_namespaces)
    ]
    return [slice_report(report, chunk) for chunk in chunks]


def handle_report(
    report: Report,
    cfg: AppConfig,
    client: AnchoreClient | None,
    gated: GatedReportInfo | None = None,
    health_enabled: bool = False,
    now: Callable[[], datetime] = now_utc,
    out: TextIO | None = None,
    echo: bool | None = None,
) -> None:
    """Send *report* to every account it routes to, then optionally echo it.

    *echo* overrides ``verbose_inventory_reports``.

    Raises:
        ReportError: If any batch for any account failed. Every batch is
            still attempted.
    """
    if client is not None and cfg.anchore.is_valid():
        failed = _deliver(report, cfg, client, gated if health_enabled else None, now)
        if failed:
            raise ReportError(
                "unable to report inventory to Anchore for account(s): " + ", ".join(failed)
            )
        logger.info("Inventory report sent to Anchore")
    else:
        logger.info("Anchore details not specified, not reporting inventory")

    if cfg.verbose_inventory_reports if echo is None else echo:
        present(report, cfg.output, out or sys.stdout)


def _deliver(
    report: Report,
    cfg: AppConfig,
    client: AnchoreClient,
    gated: GatedReportInfo | None,
    now: Callable[[], datetime],
) -> list[str]:
    routed = route_namespaces(cfg.anchore.account, report.namespaces, cfg.account_routes)
    # every account gets a report each cycle, empty when nothing routed to it
    for account in (cfg.anchore.account, *cfg.account_routes):
        if account not in routed:
            logger.debug("No namespaces for account %s, sending an empty inventory report", account)
            routed[account] = []
    failed: list[str] = []

    for account, account_report in build_account_reports(report, routed).items():
        route = cfg.account_routes.get(account)
        user = route.user if route and route.user else cfg.anchore.user
        password = route.password if route and route.password else cfg.anchore.password

        batches = split_batches(account_report, cfg.inventory_report_limits.namespaces)
        info = InventoryReportInfo(
            report_timestamp=report.timestamp,
            account_name=account,
            sent_as_user=user,
            batch_size=len(batches),
        )

        for index, batch in enumerate(batches, start=1):
            logger.info(
                "Sending inventory report batch %d/%d (%d namespaces) to account %s",
                index, len(batches), len(batch.namespaces), account,
            )
            error = ""
            try:
                post_report(batch, client, account, user, password)
            except Exception as exc:
                logger.error(
                    "Failed to send inventory report batch %d/%d for account %s: %s",
                    index, len(batches), account, exc,
                )
                error = str(exc)
                info.has_errors = True
            else:
                info.last_successful_index = index

            info.batches.append(BatchInfo(batch_index=index, send_timestamp=now(), error=error))
            if gated is not None:
                set_report_info_no_blocking(account, index, info.model_copy(deep=True), gated)

        if info.has_errors:
            failed.append(account)

    return failed
