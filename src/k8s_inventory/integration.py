"""Registration of this agent as an Anchore integration instance.

The protocol runs once at startup:

1. Wait for an Anchore that supports integrations (>= 5.11). Older
   versions still get inventory reports, just no registration or health
   reports, and the check keeps polling in case Anchore is upgraded.
2. Register, retrying while Anchore is offline.
3. Hand the registered Integration to the health reporter.

Dependent threads are signalled through :class:`Channels`; every signal is
closed when registration ends, successfully or not, so nothing waits
forever.
"""

from __future__ import annotations

import logging
import os
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from packaging.version import InvalidVersion
from packaging.version import Version as SemVer

from k8s_inventory.anchore.client import (
    AnchoreClient,
    InvalidResponseError,
    incorrect_credentials,
    server_is_offline,
    user_lacks_api_privileges,
)
from k8s_inventory.config import AppConfig
from k8s_inventory.kube import KubeClient
from k8s_inventory.lifecycle import LifecycleSignal
from k8s_inventory.models import Integration, Registration, Version, now_utc
from k8s_inventory.routing import accounts_and_namespaces

logger = logging.getLogger(__name__)

REQUIRED_ANCHORE_VERSION = SemVer("5.11")
INTEGRATION_TYPE = "k8s_inventory_agent"
REGISTER_API_PATH_V2 = "v2/system/integrations/registration"
APP_VERSION_LABEL = "app.kubernetes.io/version"

VERSION_START_BACKOFF = 2.0
VERSION_MAX_BACKOFF = 3600.0
REGISTER_START_BACKOFF = 2.0
REGISTER_MAX_BACKOFF = 600.0


class RegistrationError(Exception):
    """Raised when registration gives up after its retry budget."""


@dataclass
class Channels:
    """Signals raised by registration for the other agent threads."""

    integration_obj: LifecycleSignal[Integration] = field(
        default_factory=lambda: LifecycleSignal("integration_obj"),
    )
    health_reporting_enabled: LifecycleSignal[bool] = field(
        default_factory=lambda: LifecycleSignal("health_reporting_enabled"),
    )
    inventory_reporting_enabled: LifecycleSignal[bool] = field(
        default_factory=lambda: LifecycleSignal("inventory_reporting_enabled"),
    )

    def close(self) -> None:
        self.integration_obj.close()
        self.health_reporting_enabled.close()
        self.inventory_reporting_enabled.close()


def _next_backoff(backoff: float, max_backoff: float) -> float:
    return min(backoff * 2, max_backoff)


def enable_inventory_reporting(ch: Channels) -> None:
    if ch.inventory_reporting_enabled.signal(True):
        logger.info("Activating inventory reporting")


def enable_health_reporting(ch: Channels, integration: Integration) -> None:
    logger.info("Activating health reporting")
    ch.integration_obj.signal(integration)
    ch.health_reporting_enabled.signal(True)


def await_version(
    client: AnchoreClient,
    ch: Channels,
    max_retry: int = -1,
    start_backoff: float = VERSION_START_BACKOFF,
    max_backoff: float = VERSION_MAX_BACKOFF,
    sleep: Callable[[float], None] = time.sleep,
) -> Version:
    """Poll Anchore until it runs a version that supports integrations.

    A negative *max_retry* retries forever. Errors other than Anchore being
    offline (or reporting an unparseable version) are returned at once.
    """
    backoff = start_backoff
    attempt = 0
    while True:
        retry = False
        err: Exception | None = None

        try:
            anchore_version = client.get_version()
        except Exception as exc:
            err = exc
        else:
            try:
                version = SemVer(anchore_version.service.version)
            except InvalidVersion:
                logger.error(
                    "Failed to parse received service version: %r. Will try again in %ss",
                    anchore_version.service.version, backoff,
                )
                retry = True
            else:
                logger.info(
                    "Successfully determined service version: %s for Enterprise: %s",
                    version, client.url,
                )
                if version >= REQUIRED_ANCHORE_VERSION:
                    logger.info(
                        "Proceeding with integration registration since Enterprise v%s supports that",
                        version,
                    )
                    return anchore_version
                if not ch.inventory_reporting_enabled.delivered:
                    logger.info(
                        "Proceeding without integration registration and health reporting "
                        "since Enterprise v%s does not support that",
                        version,
                    )
                    enable_inventory_reporting(ch)
                retry = True

        attempt += 1
        if 0 <= max_retry < attempt:
            logger.info("Failed to get Enterprise version after %d attempts", attempt)
            raise RegistrationError(f"failed to get Enterprise version after {attempt} attempts")

        if err is not None and server_is_offline(err):
            logger.info("Anchore is offline. Will try again in %ss", backoff)
            retry = True

        if not retry:
            logger.error("Failed to get service version for Enterprise: %s, %s", client.url, err)
            raise err  # type: ignore[misc]

        sleep(backoff)
        backoff = _next_backoff(backoff, max_backoff)


def register(
    registration: Registration,
    client: AnchoreClient,
    max_retry: int = -1,
    start_backoff: float = REGISTER_START_BACKOFF,
    max_backoff: float = REGISTER_MAX_BACKOFF,
    now: Callable[[], datetime] = now_utc,
    sleep: Callable[[float], None] = time.sleep,
) -> Integration:
    """POST the registration, retrying only while Anchore is offline.

    Missing privileges and bad credentials are configuration problems and
    are raised immediately.
    """
    backoff = start_backoff
    attempt = 0
    while True:
        try:
            integration = _do_register(registration, client, now)
        except Exception as err:
            attempt += 1
            if 0 <= max_retry < attempt:
                logger.error(
                    "Failed to register agent (registration_id:%s / registration_instance_id:%s) "
                    "after %d attempts",
                    registration.registration_id, registration.registration_instance_id, attempt,
                )
                raise RegistrationError(f"failed to register after {attempt} attempts") from err

            if server_is_offline(err):
                logger.info("Anchore is offline. Will try again in %ss", backoff)
                sleep(backoff)
                backoff = _next_backoff(backoff, max_backoff)
                continue

            if user_lacks_api_privileges(err):
                logger.error(
                    "Specified user lacks required privileges to register and send health reports: %s",
                    err,
                )
            elif incorrect_credentials(err):
                logger.error("Failed to register due to invalid credentials (wrong username or password)")
            else:
                logger.error(
                    "Failed to register integration agent "
                    "(registration_id:%s / registration_instance_id:%s): %s",
                    registration.registration_id, registration.registration_instance_id, err,
                )
            raise

        logger.info(
            "Successfully registered %s agent: %s (registration_id:%s / registration_instance_id:%s) with %s",
            registration.type, registration.name, registration.registration_id,
            registration.registration_instance_id, client.url,
        )
        logger.info("This agent's integration uuid is %s", integration.uuid)
        return integration


def _do_register(
    registration: Registration, client: AnchoreClient, now: Callable[[], datetime],
) -> Integration:
    logger.info(
        "Registering %s agent: %s (registration_id:%s / registration_instance_id:%s) with %s",
        registration.type, registration.name, registration.registration_id,
        registration.registration_instance_id, client.url,
    )
    registration.uptime = now() - registration.started_at
    body = registration.model_dump_json(exclude_none=True).encode("utf-8")
    raw = client.post(body, REGISTER_API_PATH_V2, operation="integration registration")
    if not raw:
        raise InvalidResponseError("integration registration: empty response body")
    integration = Integration.model_validate_json(raw)
    if not integration.uuid:
        raise InvalidResponseError("integration registration: response has no integration uuid")
    return integration


def get_instance_data_from_k8s(
    kube: KubeClient | None, namespace: str, pod_name: str,
) -> tuple[str, str, str]:
    """Walk Pod -> ReplicaSet -> Deployment owner references.

    Returns ``(deployment_uid, deployment_name, app_version)``, or empty
    strings when any step cannot be resolved.
    """
    if kube is None:
        logger.error("Kubernetes client not initialized. Unable to interact with K8s cluster.")
        return "", "", ""
    if not namespace or not pod_name:
        return "", "", ""

    try:
        pod = kube.get_pod(namespace, pod_name)
        replica_set_name = _owner_name(pod)
        if not replica_set_name:
            return "", "", ""
        replica_set = kube.get_replica_set(namespace, replica_set_name)
        deployment_name = _owner_name(replica_set)
        if not deployment_name:
            return "", "", ""
        deployment = kube.get_deployment(namespace, deployment_name)
    except Exception as exc:
        logger.error("Failed to resolve owning deployment of pod %s: %s", pod_name, exc)
        return "", "", ""

    labels = deployment.metadata.labels or {}
    registration_id = deployment.metadata.uid or ""
    app_version = labels.get(APP_VERSION_LABEL, "")
    logger.debug(
        "Determined integration values for agent from K8s, registration_id: %s, "
        "instance_name: %s, app_version: %s",
        registration_id, deployment_name, app_version,
    )
    return registration_id, deployment_name, app_version


def _owner_name(obj: Any) -> str:
    refs = obj.metadata.owner_references or []
    return refs[0].name if refs else ""


def get_registration_info(
    cfg: AppConfig,
    kube: KubeClient | None,
    namespace: str,
    pod_name: str,
    new_uuid: Callable[[], uuid.UUID] = uuid.uuid4,
    now: Callable[[], datetime] = now_utc,
) -> Registration:
    """Build the registration request from config and deployment metadata."""
    logger.debug(
        "Attempting to determine values from K8s Deployment for Pod: %s in Namespace: %s",
        pod_name, namespace,
    )
    registration_id, instance_name, app_version = get_instance_data_from_k8s(
        kube, namespace, pod_name,
    )
    reg = cfg.registration

    if reg.registration_id:
        logger.debug("Using registration_id specified in config: %s", reg.registration_id)
        registration_id = reg.registration_id
    if not registration_id:
        logger.debug("Generating UUIDv4 to use as registration_id")
        registration_id = str(new_uuid())

    registration_instance_id = pod_name or str(new_uuid())
    instance_name = reg.integration_name or instance_name
    description = reg.integration_description

    accounts, namespaces = accounts_and_namespaces(cfg.account_routes)

    return Registration(
        registration_id=registration_id,
        registration_instance_id=registration_instance_id,
        type=INTEGRATION_TYPE,
        name=instance_name,
        description=description,
        version=app_version,
        started_at=now(),
        uptime=timedelta(0),
        username=cfg.anchore.user,
        explicitly_account_bound=accounts,
        namespaces=namespaces,
        cluster_name=cfg.kubeconfig.cluster,
        namespace=namespace,
        health_report_interval=cfg.health_report_interval_seconds,
    )


def perform_registration(
    cfg: AppConfig,
    client: AnchoreClient,
    ch: Channels,
    kube_factory: Callable[[], KubeClient] | None = None,
    environ: Any = None,
) -> Integration:
    """Run the whole registration protocol; closes every signal on exit."""
    environ = os.environ if environ is None else environ
    try:
        await_version(client, ch)

        kube: KubeClient | None = None
        if kube_factory is not None:
            try:
                kube = kube_factory()
            except Exception as exc:
                logger.error("Failed to get Kubernetes client: %s", exc)

        registration = get_registration_info(
            cfg, kube, environ.get("POD_NAMESPACE", ""), environ.get("HOSTNAME", ""),
        )
        integration = register(registration, client)

        enable_health_reporting(ch, integration)
        enable_inventory_reporting(ch)
        return integration
    finally:
        ch.close()
