"""In-memory stand-ins for the Kubernetes API, shared by the test modules.

Objects are real ``kubernetes.client`` models so the conversion code sees
exactly what the API client would hand it.
"""

from __future__ import annotations

import threading
from typing import Any

from kubernetes.client import (
    V1Container,
    V1ContainerStatus,
    V1Deployment,
    V1Namespace,
    V1Node,
    V1NodeStatus,
    V1NodeSystemInfo,
    V1ObjectMeta,
    V1OwnerReference,
    V1Pod,
    V1PodSpec,
    V1PodStatus,
    V1ReplicaSet,
)
from kubernetes.client.exceptions import ApiException

from k8s_inventory.config import AppConfig

# --- Builders ---


def make_namespace(name: str, uid: str | None = None, labels: dict | None = None,
                   annotations: dict | None = None) -> V1Namespace:
    return V1Namespace(metadata=V1ObjectMeta(
        name=name, uid=uid or f"uid-{name}", labels=labels, annotations=annotations,
    ))


def make_node(name: str, uid: str | None = None, labels: dict | None = None) -> V1Node:
    return V1Node(
        metadata=V1ObjectMeta(name=name, uid=uid or f"uid-{name}", labels=labels),
        status=V1NodeStatus(node_info=V1NodeSystemInfo(
            architecture="amd64",
            boot_id="boot",
            container_runtime_version="containerd://1.7.2",
            kernel_version="6.1.0",
            kube_proxy_version="v1.29.0",
            kubelet_version="v1.29.0",
            machine_id="machine",
            operating_system="linux",
            os_image="Debian GNU/Linux 12",
            system_uuid="system",
        )),
    )


def container_status(name: str, image: str, image_id: str = "", container_id: str = "") -> V1ContainerStatus:
    return V1ContainerStatus(
        name=name,
        image=image,
        image_id=image_id,
        container_id=container_id or None,
        ready=True,
        restart_count=0,
    )


def make_pod(
    name: str,
    namespace: str,
    node_name: str | None = "node-1",
    containers: list[tuple[str, str]] | None = None,
    statuses: list[V1ContainerStatus] | None = None,
    init_containers: list[tuple[str, str]] | None = None,
    init_statuses: list[V1ContainerStatus] | None = None,
    phase: str = "Running",
    uid: str | None = None,
    owner: str | None = None,
    labels: dict | None = None,
) -> V1Pod:
    owners = None
    if owner:
        owners = [V1OwnerReference(api_version="apps/v1", kind="ReplicaSet", name=owner, uid=f"uid-{owner}")]
    return V1Pod(
        metadata=V1ObjectMeta(
            name=name,
            namespace=namespace,
            uid=uid or f"uid-{name}",
            owner_references=owners,
            labels=labels,
        ),
        spec=V1PodSpec(
            node_name=node_name,
            containers=[V1Container(name=n, image=i) for n, i in (containers or [])],
            init_containers=[V1Container(name=n, image=i) for n, i in init_containers] if init_containers else None,
        ),
        status=V1PodStatus(
            phase=phase,
            container_statuses=statuses,
            init_container_statuses=init_statuses,
        ),
    )


def make_replica_set(name: str, namespace: str, deployment: str) -> V1ReplicaSet:
    return V1ReplicaSet(metadata=V1ObjectMeta(
        name=name,
        namespace=namespace,
        uid=f"uid-{name}",
        owner_references=[V1OwnerReference(
            api_version="apps/v1", kind="Deployment", name=deployment, uid=f"uid-{deployment}",
        )],
    ))


def make_deployment(name: str, namespace: str, uid: str, labels: dict | None = None) -> V1Deployment:
    return V1Deployment(metadata=V1ObjectMeta(name=name, namespace=namespace, uid=uid, labels=labels))


def make_config(**overrides: Any) -> AppConfig:
    """AppConfig with small timeouts, suitable for threaded tests."""
    data: dict[str, Any] = {
        "kubernetes": {"request_timeout_seconds": 5, "request_batch_size": 2, "worker_pool_size": 4},
        "kubeconfig": {"cluster": "test-cluster"},
    }
    data.update(overrides)
    return AppConfig.model_validate(data)


# --- Fake client ---


class FakeKube:
    """Implements the ``KubeClient`` surface over in-memory objects.

    List calls honour ``limit`` and hand out integer continue tokens so
    pagination is exercised for real.
    """

    def __init__(
        self,
        namespaces: list[V1Namespace] | None = None,
        nodes: list[V1Node] | None = None,
        pods: list[V1Pod] | None = None,
        replica_sets: list[V1ReplicaSet] | None = None,
        deployments: list[V1Deployment] | None = None,
        pod_errors: dict[str, Exception] | None = None,
        node_error: Exception | None = None,
        blocked: dict[str, threading.Event] | None = None,
    ) -> None:
        self.namespaces = namespaces or []
        self.nodes = nodes or []
        self.pods = pods or []
        self.replica_sets = {rs.metadata.name: rs for rs in replica_sets or []}
        self.deployments = {d.metadata.name: d for d in deployments or []}
        self.pod_errors = pod_errors or {}
        self.node_error = node_error
        self.blocked = blocked or {}
        self.calls: list[tuple] = []
        self._lock = threading.Lock()

    def _record(self, *call: Any) -> None:
        with self._lock:
            self.calls.append(call)

    @staticmethod
    def _page(items: list[Any], limit: int, token: str) -> tuple[list[Any], str]:
        start = int(token or 0)
        end = start + limit
        return items[start:end], str(end) if end < len(items) else ""

    def list_namespaces(self, limit: int, continue_token: str, timeout_seconds: int):
        self._record("list_namespaces", limit, continue_token, timeout_seconds)
        return self._page(self.namespaces, limit, continue_token)

    def list_nodes(self, limit: int, continue_token: str, timeout_seconds: int):
        self._record("list_nodes", limit, continue_token, timeout_seconds)
        if self.node_error is not None:
            raise self.node_error
        return self._page(self.nodes, limit, continue_token)

    def list_pods(self, namespace: str, limit: int, continue_token: str, timeout_seconds: int):
        self._record("list_pods", namespace, limit, continue_token, timeout_seconds)
        if namespace in self.blocked:
            self.blocked[namespace].wait()
        if namespace in self.pod_errors:
            raise self.pod_errors[namespace]
        pods = [p for p in self.pods if p.metadata.namespace == namespace]
        return self._page(pods, limit, continue_token)

    def get_pod(self, namespace: str, name: str):
        for p in self.pods:
            if p.metadata.namespace == namespace and p.metadata.name == name:
                return p
        raise ApiException(status=404, reason="Not Found")

    def get_replica_set(self, namespace: str, name: str):
        try:
            return self.replica_sets[name]
        except KeyError:
            raise ApiException(status=404, reason="Not Found") from None

    def get_deployment(self, namespace: str, name: str):
        try:
            return self.deployments[name]
        except KeyError:
            raise ApiException(status=404, reason="Not Found") from None

    def server_version(self) -> dict[str, Any]:
        self._record("server_version")
        return {"major": "1", "minor": "29", "gitVersion": "v1.29.0", "platform": "linux/amd64"}
