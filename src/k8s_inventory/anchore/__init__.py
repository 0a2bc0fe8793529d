"""HTTP client for the Anchore Enterprise API."""

from k8s_inventory.anchore.client import (
    AnchoreClient,
    AnchoreError,
    APIClientError,
    InvalidResponseError,
    incorrect_credentials,
    server_is_offline,
    server_lacks_agent_health_api_support,
    user_lacks_api_privileges,
)

__all__ = [
    "APIClientError",
    "AnchoreClient",
    "AnchoreError",
    "InvalidResponseError",
    "incorrect_credentials",
    "server_is_offline",
    "server_lacks_agent_health_api_support",
    "user_lacks_api_privileges",
]
