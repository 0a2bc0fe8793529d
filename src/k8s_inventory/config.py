"""Config file loading and auto-discovery for the k8s-inventory agent.

Searches for ``.k8s-inventory.yaml`` in the current directory and parent
directories, parses it into an :class:`AppConfig`, then applies a small set
of ``K8S_INVENTORY_*`` environment overrides (credentials and endpoints are
usually injected into the pod through the environment).

Keys may be written hyphenated (``polling-interval-seconds``) or with
underscores (``polling_interval_seconds``).
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from k8s_inventory.presenter import PRESENTERS

CONFIG_FILENAME = ".k8s-inventory.yaml"
ENV_PREFIX = "K8S_INVENTORY_"
REDACTED = "******"


class ConfigError(Exception):
    """Raised when the configuration file is invalid or cannot be loaded."""


def _hyphenate(name: str) -> str:
    return name.replace("_", "-")


class _Section(BaseModel):
    model_config = ConfigDict(alias_generator=_hyphenate, populate_by_name=True)


class HTTPConfig(_Section):
    insecure: bool = False
    timeout_seconds: int = Field(10, ge=1)


class AnchoreInfo(_Section):
    """Where and as whom inventory and health reports are sent."""

    url: str = ""
    user: str = ""
    password: str = ""
    account: str = "admin"
    http: HTTPConfig = Field(default_factory=HTTPConfig)

    def is_valid(self) -> bool:
        return bool(self.url and self.user and self.password)


class KubeConf(_Section):
    path: str = ""
    context: str = ""
    cluster: str = ""
    in_cluster: bool = False


class KubernetesAPI(_Section):
    request_timeout_seconds: int = Field(60, ge=1)
    request_batch_size: int = Field(100, ge=1)
    worker_pool_size: int = Field(100, ge=1)


class NamespaceSelectors(_Section):
    include: list[str] = Field(default_factory=list)
    exclude: list[str] = Field(default_factory=list)
    ignore_empty: bool = False


class AccountRoute(_Section):
    user: str = ""
    password: str = ""
    namespaces: list[str] = Field(default_factory=list)


class ResourceMetadata(_Section):
    include_annotations: list[str] = Field(default_factory=list)
    include_labels: list[str] = Field(default_factory=list)
    disable: bool = False


class MetadataCollection(_Section):
    namespaces: ResourceMetadata = Field(default_factory=ResourceMetadata)
    nodes: ResourceMetadata = Field(default_factory=ResourceMetadata)
    pods: ResourceMetadata = Field(default_factory=ResourceMetadata)


class MissingTagPolicy(_Section):
    policy: str = "digest"
    tag: str = "UNKNOWN"

    @field_validator("policy")
    @classmethod
    def _check_policy(cls, v: str) -> str:
        v = v.lower()
        if v not in ("digest", "dummy", "drop"):
            raise ValueError(f"Invalid missing tag policy: {v}. Must be digest, dummy or drop")
        return v


class RegistrationConfig(_Section):
    registration_id: str = ""
    integration_name: str = ""
    integration_description: str = ""


class InventoryReportLimits(_Section):
    namespaces: int = Field(0, ge=0)
    """Maximum namespaces per inventory report batch. 0 disables batching."""


class LogConfig(_Section):
    level: str = ""
    file: str = ""
    structured: bool = False


class AppConfig(_Section):
    """Parsed agent configuration."""

    config_path: Path | None = None
    mode: str = "adhoc"
    output: str = "json"
    quiet: bool = False
    verbose_inventory_reports: bool = False
    polling_interval_seconds: int = Field(300, ge=1)
    health_report_interval_seconds: int = Field(60, ge=1)
    ignore_not_running: bool = True
    log: LogConfig = Field(default_factory=LogConfig)
    kubeconfig: KubeConf = Field(default_factory=KubeConf)
    kubernetes: KubernetesAPI = Field(default_factory=KubernetesAPI)
    namespace_selectors: NamespaceSelectors = Field(default_factory=NamespaceSelectors)
    account_routes: dict[str, AccountRoute] = Field(default_factory=dict)
    metadata_collection: MetadataCollection = Field(default_factory=MetadataCollection)
    missing_tag_policy: MissingTagPolicy = Field(default_factory=MissingTagPolicy)
    registration: RegistrationConfig = Field(default_factory=RegistrationConfig)
    inventory_report_limits: InventoryReportLimits = Field(
        default_factory=InventoryReportLimits,
    )
    anchore: AnchoreInfo = Field(default_factory=AnchoreInfo)

    @field_validator("mode")
    @classmethod
    def _check_mode(cls, v: str) -> str:
        v = v.lower()
        if v not in ("adhoc", "periodic"):
            raise ValueError(f"Invalid mode: {v}. Must be one of adhoc, periodic")
        return v

    @field_validator("output")
    @classmethod
    def _check_output(cls, v: str) -> str:
        v = v.lower()
        if v not in PRESENTERS:
            raise ValueError(f"Invalid output: {v}. Must be one of {', '.join(PRESENTERS)}")
        return v

    def redacted(self) -> str:
        """YAML rendering of the config with secrets masked, for logging."""
        data = self.model_dump(mode="json", exclude={"config_path"})
        if data["anchore"]["password"]:
            data["anchore"]["password"] = REDACTED
        for route in data["account_routes"].values():
            if route["password"]:
                route["password"] = REDACTED
        return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)


# env var suffix -> path into the raw config mapping
_ENV_OVERRIDES: dict[str, tuple[str, ...]] = {
    "ANCHORE_URL": ("anchore", "url"),
    "ANCHORE_USER": ("anchore", "user"),
    "ANCHORE_PASSWORD": ("anchore", "password"),
    "ANCHORE_ACCOUNT": ("anchore", "account"),
    "MODE": ("mode",),
    "POLLING_INTERVAL_SECONDS": ("polling_interval_seconds",),
    "LOG_LEVEL": ("log", "level"),
}


def find_config(start: Path | None = None) -> Path | None:
    """Walk from *start* (default ``cwd()``) up to the filesystem root.

    Returns the first ``.k8s-inventory.yaml`` found, or ``None``.
    """
    current = (start or Path.cwd()).resolve()
    while True:
        candidate = current / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            return None
        current = parent


def load_config(
    path: str | Path | None = None,
    *,
    auto_discover: bool = True,
    environ: dict[str, str] | None = None,
) -> AppConfig:
    """Load the agent config.

    Resolution order:

    1. Explicit *path* (error if it doesn't exist).
    2. Auto-discover by walking parent directories.
    3. Defaults.

    Environment overrides are applied on top in every case.

    Raises:
        ConfigError: If the file cannot be read, parsed, or validated.
    """
    config_path: Path | None = None

    if path is not None:
        config_path = Path(path).resolve()
        if not config_path.is_file():
            raise ConfigError(f"Config file not found: {config_path}")
    elif auto_discover:
        config_path = find_config()

    data: dict[str, Any] = {}
    if config_path is not None:
        data = _read_yaml(config_path)

    data = _normalize_keys(data)
    _apply_env_overrides(data, os.environ if environ is None else environ)

    try:
        cfg = AppConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e

    return cfg.model_copy(update={"config_path": config_path})


def _read_yaml(config_path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(
            f"Expected a YAML mapping in {config_path}, got {type(data).__name__}"
        )
    return data


def _normalize_keys(data: dict[str, Any]) -> dict[str, Any]:
    """Convert hyphenated keys to underscores.

    The mapping directly under ``account_routes`` is keyed by account name,
    so those keys are left as written.
    """
    out: dict[str, Any] = {}
    for key, value in data.items():
        norm = key.replace("-", "_") if isinstance(key, str) else key
        if isinstance(value, dict):
            if norm == "account_routes":
                value = {
                    account: _normalize_keys(route) if isinstance(route, dict) else route
                    for account, route in value.items()
                }
            else:
                value = _normalize_keys(value)
        out[norm] = value
    return out


def _apply_env_overrides(data: dict[str, Any], environ: Any) -> None:
    for suffix, keys in _ENV_OVERRIDES.items():
        value = environ.get(ENV_PREFIX + suffix)
        if value is None or value == "":
            continue
        node = data
        for key in keys[:-1]:
            node = node.setdefault(key, {})
        node[keys[-1]] = value
