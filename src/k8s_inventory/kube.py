"""Kubernetes API access via the official ``kubernetes`` Python client.

Supports kubeconfig file, in-cluster config, or the default kubeconfig with
an optional context. :class:`KubeClient` narrows the client down to the
handful of calls the agent makes; list calls return ``(items, continue)``
so callers can paginate without knowing about list metadata.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from kubernetes import client, config
from kubernetes.client.exceptions import ApiException

from k8s_inventory.config import KubeConf

__all__ = ["ApiException", "KubeClient", "build_client_factory", "is_forbidden"]


def is_forbidden(exc: BaseException) -> bool:
    return isinstance(exc, ApiException) and exc.status == 403


def _continue_token(result: Any) -> str:
    metadata = getattr(result, "metadata", None)
    return getattr(metadata, "_continue", None) or ""


class KubeClient:
    """Thin wrapper over ``CoreV1Api``, ``AppsV1Api`` and ``VersionApi``.

    Each worker thread builds its own instance (its own ``ApiClient`` and
    connection pool).
    """

    def __init__(self, api_client: Any) -> None:
        self._api_client = api_client
        self._core = client.CoreV1Api(api_client)
        self._apps = client.AppsV1Api(api_client)
        self._version = client.VersionApi(api_client)

    # --- Lists (paginated) ---

    def list_namespaces(
        self, limit: int, continue_token: str, timeout_seconds: int,
    ) -> tuple[list[Any], str]:
        result = self._core.list_namespace(
            **_list_kwargs(limit, continue_token, timeout_seconds),
        )
        return list(result.items or []), _continue_token(result)

    def list_nodes(
        self, limit: int, continue_token: str, timeout_seconds: int,
    ) -> tuple[list[Any], str]:
        result = self._core.list_node(
            **_list_kwargs(limit, continue_token, timeout_seconds),
        )
        return list(result.items or []), _continue_token(result)

    def list_pods(
        self, namespace: str, limit: int, continue_token: str, timeout_seconds: int,
    ) -> tuple[list[Any], str]:
        result = self._core.list_namespaced_pod(
            namespace, **_list_kwargs(limit, continue_token, timeout_seconds),
        )
        return list(result.items or []), _continue_token(result)

    # --- Single objects ---

    def get_pod(self, namespace: str, name: str) -> Any:
        return self._core.read_namespaced_pod(name=name, namespace=namespace)

    def get_replica_set(self, namespace: str, name: str) -> Any:
        return self._apps.read_namespaced_replica_set(name=name, namespace=namespace)

    def get_deployment(self, namespace: str, name: str) -> Any:
        return self._apps.read_namespaced_deployment(name=name, namespace=namespace)

    def server_version(self) -> dict[str, Any]:
        """Cluster version info, keyed the way the API server serializes it."""
        info = self._version.get_code()
        return self._api_client.sanitize_for_serialization(info)


def _list_kwargs(limit: int, continue_token: str, timeout_seconds: int) -> dict[str, Any]:
    kwargs: dict[str, Any] = {"limit": limit, "timeout_seconds": timeout_seconds}
    if continue_token:
        kwargs["_continue"] = continue_token
    return kwargs


def _load_configuration(kube_conf: KubeConf) -> client.Configuration:
    configuration = client.Configuration()
    if kube_conf.in_cluster:
        config.load_incluster_config(client_configuration=configuration)
        return configuration

    kwargs: dict[str, Any] = {"client_configuration": configuration}
    if kube_conf.path:
        kwargs["config_file"] = kube_conf.path
    if kube_conf.context:
        kwargs["context"] = kube_conf.context
    config.load_kube_config(**kwargs)
    return configuration


def build_client_factory(kube_conf: KubeConf) -> Callable[[], KubeClient]:
    """Load the kube config once; return a factory of independent clients."""
    configuration = _load_configuration(kube_conf)

    def factory() -> KubeClient:
        return KubeClient(client.ApiClient(configuration))

    return factory
