"""Node retrieval, keyed by node name for pod -> node UID resolution."""

from __future__ import annotations

import logging

from k8s_inventory.config import ResourceMetadata
from k8s_inventory.inventory.util import filter_metadata, paginate
from k8s_inventory.kube import is_forbidden
from k8s_inventory.models import Node
from k8s_inventory.tracker import track_time

logger = logging.getLogger(__name__)


def fetch_nodes(
    kube,
    batch_size: int,
    timeout_seconds: int,
    metadata: ResourceMetadata | None = None,
) -> dict[str, Node]:
    """List all nodes.

    A service account without permission to list nodes is tolerated: the
    inventory is produced without node data.
    """
    metadata = metadata or ResourceMetadata()
    nodes: dict[str, Node] = {}
    with track_time("Fetching nodes"):
        try:
            for obj in paginate(kube.list_nodes, batch_size, timeout_seconds):
                node = _to_node(obj, metadata)
                nodes[node.name] = node
        except Exception as exc:
            if is_forbidden(exc):
                logger.warning("Failed to list nodes: %s", exc)
                return {}
            raise
    return nodes


def _to_node(obj, metadata: ResourceMetadata) -> Node:
    meta = obj.metadata
    info = obj.status.node_info if obj.status is not None else None

    node = Node(
        name=meta.name,
        uid=meta.uid or "",
        arch=getattr(info, "architecture", None),
        container_runtime_version=getattr(info, "container_runtime_version", None),
        kernel_version=getattr(info, "kernel_version", None),
        kube_proxy_version=getattr(info, "kube_proxy_version", None),
        kubelet_version=getattr(info, "kubelet_version", None),
        operating_system=getattr(info, "operating_system", None),
    )
    if not metadata.disable:
        node.annotations = filter_metadata(meta.annotations, metadata.include_annotations)
        node.labels = filter_metadata(meta.labels, metadata.include_labels)
    return node
