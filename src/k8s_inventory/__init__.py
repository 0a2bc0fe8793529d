"""k8s-inventory: tells Anchore which container images are in use in a Kubernetes cluster."""

__version__ = "1.0.0"

from k8s_inventory.agent import run_adhoc, run_periodic
from k8s_inventory.anchore.client import AnchoreClient, AnchoreError, APIClientError
from k8s_inventory.collector import CollectionError, get_inventory_report
from k8s_inventory.config import AppConfig, ConfigError, find_config, load_config
from k8s_inventory.healthreporter import GatedReportInfo
from k8s_inventory.integration import Channels, RegistrationError, perform_registration
from k8s_inventory.models import (
    Container,
    HealthReport,
    Integration,
    InventoryReportInfo,
    Namespace,
    Node,
    Pod,
    Registration,
    Report,
)
from k8s_inventory.reporter import ReportError, handle_report

__all__ = [
    "AnchoreClient",
    "AnchoreError",
    "APIClientError",
    "AppConfig",
    "Channels",
    "CollectionError",
    "ConfigError",
    "Container",
    "find_config",
    "GatedReportInfo",
    "get_inventory_report",
    "handle_report",
    "HealthReport",
    "Integration",
    "InventoryReportInfo",
    "load_config",
    "Namespace",
    "Node",
    "perform_registration",
    "Pod",
    "Registration",
    "RegistrationError",
    "Report",
    "ReportError",
    "run_adhoc",
    "run_periodic",
    "__version__",
]
