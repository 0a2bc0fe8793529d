"""Periodic health reports for a registered integration.

The inventory loop tells the health reporter about the *latest* delivery per
account through :class:`GatedReportInfo`. Both sides only ever try the lock:
a health report sent with stale bookkeeping, or a dropped bookkeeping
update, is preferred over stalling either loop.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from k8s_inventory.anchore.client import AnchoreClient, server_lacks_agent_health_api_support
from k8s_inventory.config import AppConfig
from k8s_inventory.integration import Channels
from k8s_inventory.models import (
    HealthData,
    HealthReport,
    Integration,
    InventoryReportInfo,
    now_utc,
    parse_timestamp,
)

logger = logging.getLogger(__name__)

HEALTH_PROTOCOL_VERSION = 1
HEALTH_DATA_VERSION = 1
HEALTH_DATA_TYPE = "k8s_inventory_agent"
HEALTH_REPORT_API_PATH_V2 = "v2/system/integrations/{{id}}/health-report"

# how often the wait for registration re-checks the stop event
_STOP_POLL_SECONDS = 1.0


@dataclass
class GatedReportInfo:
    """Latest inventory delivery per account, shared between two threads."""

    access_gate: threading.Lock = field(default_factory=threading.Lock)
    account_inventory_reports: dict[str, InventoryReportInfo] = field(default_factory=dict)


def get_account_report_info_no_blocking(
    gated: GatedReportInfo,
    polling_interval_seconds: int,
    now: Callable[[], datetime] = now_utc,
) -> dict[str, InventoryReportInfo]:
    """Prune inactive accounts and return a snapshot, or ``{}`` if busy.

    An account is inactive once its latest report is older than two polling
    intervals.
    """
    if not gated.access_gate.acquire(blocking=False):
        logger.debug("Unable to obtain lock to get account inventory report information. Continuing.")
        return {}

    try:
        logger.debug("Removing inventory report info for accounts that are no longer active")
        current = now()
        inactive_age = timedelta(seconds=2 * polling_interval_seconds)
        stale: list[str] = []

        for account, info in gated.account_inventory_reports.items():
            try:
                report_time = parse_timestamp(info.report_timestamp)
            except ValueError as exc:
                logger.error("Failed to parse report_timestamp %r: %s", info.report_timestamp, exc)
                continue
            if current - report_time > inactive_age:
                stale.append(account)

        for account in stale:
            logger.debug("Account no longer considered active: %s", account)
            del gated.account_inventory_reports[account]

        return dict(gated.account_inventory_reports)
    finally:
        gated.access_gate.release()


def set_report_info_no_blocking(
    account: str, batch_index: int, info: InventoryReportInfo, gated: GatedReportInfo,
) -> bool:
    """Record *info* as the latest delivery for *account*.

    Returns False when the lock was busy and the update was dropped.
    """
    if not gated.access_gate.acquire(blocking=False):
        logger.debug(
            "Unable to obtain lock to include inventory report timestamped %s for %s "
            "(batch %d/%d) in health report. Continuing.",
            info.report_timestamp, account, batch_index, info.batch_size,
        )
        return False
    try:
        logger.debug(
            "Setting report (%s) for account '%s': batch %d/%d",
            info.report_timestamp, account, batch_index, info.batch_size,
        )
        gated.account_inventory_reports[account] = info
        return True
    finally:
        gated.access_gate.release()


def send_health_report(
    cfg: AppConfig,
    client: AnchoreClient,
    integration: Integration,
    gated: GatedReportInfo,
    new_uuid: Callable[[], uuid.UUID] = uuid.uuid4,
    now: Callable[[], datetime] = now_utc,
) -> HealthReport:
    """Build and POST one health report. Raises on delivery failure."""
    last_reports = get_account_report_info_no_blocking(
        gated, cfg.polling_interval_seconds, now,
    )
    current = now()
    uptime = current - integration.started_at if integration.started_at else None
    integration.uptime = uptime

    report = HealthReport(
        uuid=str(new_uuid()),
        protocol_version=HEALTH_PROTOCOL_VERSION,
        timestamp=current,
        uptime=uptime,
        health_report_interval=cfg.health_report_interval_seconds,
        health_data=HealthData(
            type=HEALTH_DATA_TYPE,
            version=HEALTH_DATA_VERSION,
            errors=[],
            account_k8s_inventory_reports=last_reports,
        ),
    )

    logger.info(
        "Sending health report (uuid:%s) covering %d accounts",
        report.uuid, len(last_reports),
    )
    body = report.model_dump_json(exclude_none=True).encode("utf-8")
    client.post(body, HEALTH_REPORT_API_PATH_V2, id=integration.uuid, operation="health report")
    return report


def periodically_send_health_report(
    cfg: AppConfig,
    client: AnchoreClient,
    ch: Channels,
    gated: GatedReportInfo,
    stop: threading.Event,
) -> None:
    """Health report loop; returns when *stop* is set or reporting is impossible."""
    while not ch.integration_obj.is_set():
        if stop.wait(_STOP_POLL_SECONDS):
            return
    integration = ch.integration_obj.wait()
    if integration is None:
        logger.info("Registration did not complete, health reporting disabled")
        return
    logger.info("Health reporting started")

    interval = cfg.health_report_interval_seconds
    while True:
        logger.info("Waiting %d seconds to send health report...", interval)
        if stop.wait(interval):
            return
        try:
            send_health_report(cfg, client, integration, gated)
        except Exception as exc:
            if server_lacks_agent_health_api_support(exc):
                logger.warning("Anchore does not support health reports, stopping health reporting")
                return
            logger.error("Failed to send health report to Anchore: %s", exc)
