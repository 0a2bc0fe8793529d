"""Core data models for the k8s-inventory agent.

Defines the schemas for:
- Inventory objects (namespaces, nodes, pods, containers)
- The inventory report delivered to Anchore
- Integration registration (what we send, what Anchore returns)
- Health reports and per-account delivery bookkeeping

Timestamps are always serialized as UTC RFC3339 (``2006-01-02T15:04:05Z``).
Durations are serialized as a JSON number of seconds.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer

RFC3339 = "%Y-%m-%dT%H:%M:%SZ"


def format_timestamp(value: datetime) -> str:
    """Format a datetime as a UTC RFC3339 string with second precision."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).strftime(RFC3339)


def parse_timestamp(value: str) -> datetime:
    """Parse an RFC3339 timestamp into an aware UTC datetime."""
    return datetime.fromisoformat(value.replace("Z", "+00:00")).astimezone(UTC)


def now_utc() -> datetime:
    return datetime.now(tz=UTC).replace(microsecond=0)


Timestamp = Annotated[
    datetime,
    PlainSerializer(format_timestamp, return_type=str, when_used="json"),
]

Seconds = Annotated[
    timedelta,
    PlainSerializer(lambda d: d.total_seconds(), return_type=float, when_used="json"),
]


# --- Inventory ---


class Namespace(BaseModel):
    name: str
    uid: str = ""
    annotations: dict[str, str] | None = None
    labels: dict[str, str] | None = None


class Node(BaseModel):
    name: str
    uid: str = ""
    annotations: dict[str, str] | None = None
    labels: dict[str, str] | None = None
    arch: str | None = None
    container_runtime_version: str | None = None
    kernel_version: str | None = None
    kube_proxy_version: str | None = None
    kubelet_version: str | None = None
    operating_system: str | None = None


class Pod(BaseModel):
    name: str
    uid: str = ""
    namespace_uid: str = ""
    node_uid: str | None = None
    annotations: dict[str, str] | None = None
    labels: dict[str, str] | None = None


class Container(BaseModel):
    id: str = ""
    name: str
    pod_uid: str = ""
    image_tag: str = ""
    image_digest: str = ""


class ReportItem(BaseModel):
    """Result for a single namespace, emitted by a collection worker."""

    namespace: Namespace
    pods: list[Pod] = Field(default_factory=list)
    containers: list[Container] = Field(default_factory=list)


class Report(BaseModel):
    """A complete inventory snapshot; the unit of delivery to Anchore."""

    model_config = ConfigDict(populate_by_name=True)

    timestamp: str
    cluster_name: str = ""
    namespaces: list[Namespace] = Field(default_factory=list)
    nodes: list[Node] = Field(default_factory=list)
    pods: list[Pod] = Field(default_factory=list)
    containers: list[Container] = Field(default_factory=list)
    server_version_metadata: dict[str, Any] | None = Field(
        default=None, alias="serverVersionMetadata",
    )

    def to_json(self, indent: int | None = None) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True, indent=indent)


# --- Anchore service ---


class _APIVersion(BaseModel):
    version: str = ""


class _DBVersion(BaseModel):
    schema_version: str = ""


class _ServiceVersion(BaseModel):
    version: str = ""


class Version(BaseModel):
    """Response body of Anchore's ``GET /version``."""

    api: _APIVersion = Field(default_factory=_APIVersion)
    db: _DBVersion = Field(default_factory=_DBVersion)
    service: _ServiceVersion = Field(default_factory=_ServiceVersion)


# --- Integration ---


class HealthStatus(BaseModel):
    """State of the integration wrt errors encountered performing its tasks."""

    state: str | None = None
    reason: str | None = None
    details: Any = None


class LifeCycleStatus(BaseModel):
    """State of the integration from Anchore's perspective."""

    state: str | None = None
    reason: str | None = None
    details: Any = None
    updated_at: Timestamp | None = None


class Registration(BaseModel):
    """Registration request sent once at startup."""

    registration_id: str
    registration_instance_id: str
    type: str
    name: str = ""
    description: str = ""
    version: str = ""
    started_at: Timestamp
    uptime: Seconds | None = None
    username: str = ""
    explicitly_account_bound: list[str] = Field(default_factory=list)
    namespaces: list[str] = Field(default_factory=list)
    configuration: dict[str, Any] | None = None
    cluster_name: str = ""
    namespace: str = ""
    health_report_interval: int = 0


class Integration(BaseModel):
    """This agent's registered identity, as returned by Anchore."""

    uuid: str = ""
    type: str = ""
    name: str = ""
    description: str = ""
    version: str = ""
    reported_status: HealthStatus | None = None
    integration_status: LifeCycleStatus | None = None
    started_at: Timestamp | None = None
    last_seen: Timestamp | None = None
    uptime: Seconds | None = None
    username: str = ""
    account_name: str = ""
    explicitly_account_bound: list[str] = Field(default_factory=list)
    accounts: list[str] = Field(default_factory=list)
    namespaces: list[str] = Field(default_factory=list)
    configuration: dict[str, Any] | None = None
    cluster_name: str = ""
    namespace: str = ""
    health_report_interval: int = 0
    registration_id: str = ""
    registration_instance_id: str = ""


# --- Health reporting ---


class BatchInfo(BaseModel):
    batch_index: int
    send_timestamp: Timestamp
    error: str = ""


class InventoryReportInfo(BaseModel):
    """Audit trail of one inventory report delivery for an account."""

    report_timestamp: str
    account_name: str
    sent_as_user: str = ""
    batch_size: int = 0
    last_successful_index: int = -1
    has_errors: bool = False
    batches: list[BatchInfo] = Field(default_factory=list)


class HealthData(BaseModel):
    type: str
    version: int
    errors: list[str] = Field(default_factory=list)
    account_k8s_inventory_reports: dict[str, InventoryReportInfo] = Field(
        default_factory=dict,
    )


class HealthReport(BaseModel):
    uuid: str
    protocol_version: int
    timestamp: Timestamp
    uptime: Seconds | None = None
    health_report_interval: int = 0
    health_data: HealthData
