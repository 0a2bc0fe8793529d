"""Pod retrieval per namespace and conversion to Pod records."""

from __future__ import annotations

import logging
from typing import Any

from k8s_inventory.config import ResourceMetadata
from k8s_inventory.inventory.util import filter_metadata, paginate
from k8s_inventory.models import Node, Pod
from k8s_inventory.tracker import track_time

logger = logging.getLogger(__name__)


class PodFetchError(Exception):
    """Raised when the pods of a namespace cannot be listed."""


def fetch_pods_in_namespace(
    kube, batch_size: int, timeout_seconds: int, namespace: str,
) -> list[Any]:
    def list_page(limit: int, token: str, timeout: int) -> tuple[list[Any], str]:
        return kube.list_pods(namespace, limit, token, timeout)

    with track_time(f"Fetching pods in namespace: {namespace}"):
        try:
            return list(paginate(list_page, batch_size, timeout_seconds))
        except Exception as exc:
            raise PodFetchError(f"failed to list pods in namespace {namespace}: {exc}") from exc


def process_pods(
    pods: list[Any],
    namespace_uid: str,
    nodes: dict[str, Node],
    metadata: ResourceMetadata | None = None,
) -> list[Pod]:
    """Build Pod records; the node UID is empty when the node is unknown."""
    metadata = metadata or ResourceMetadata()
    result: list[Pod] = []
    for p in pods:
        meta = p.metadata
        node_name = p.spec.node_name if p.spec is not None else None
        node = nodes.get(node_name) if node_name else None

        pod = Pod(
            name=meta.name,
            uid=meta.uid or "",
            namespace_uid=namespace_uid,
            node_uid=node.uid if node is not None else "",
        )
        if not metadata.disable:
            pod.annotations = filter_metadata(meta.annotations, metadata.include_annotations)
            pod.labels = filter_metadata(meta.labels, metadata.include_labels)
        result.append(pod)
    return result
