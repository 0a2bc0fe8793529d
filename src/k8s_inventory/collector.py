"""Inventory collection: one cycle produces one Report.

Namespaces and nodes are listed up front; pods are then fetched per
namespace by a pool of worker threads pulling from a pre-filled queue.
The coordinator waits for one result per namespace. Any worker error, or
no result arriving within ``request_timeout_seconds`` of the previous one,
stops the pool and fails the whole cycle; the next scheduled cycle is the
retry.
"""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable
from datetime import datetime

from k8s_inventory.config import AppConfig
from k8s_inventory.inventory.containers import get_containers_from_pods
from k8s_inventory.inventory.namespaces import fetch_namespaces
from k8s_inventory.inventory.nodes import fetch_nodes
from k8s_inventory.inventory.pods import fetch_pods_in_namespace, process_pods
from k8s_inventory.kube import KubeClient
from k8s_inventory.models import Namespace, Node, Report, ReportItem, format_timestamp, now_utc

logger = logging.getLogger(__name__)

ClientFactory = Callable[[], KubeClient]


class CollectionError(Exception):
    """Raised when an inventory cycle cannot produce a complete report."""


def get_inventory_report(
    cfg: AppConfig,
    client_factory: ClientFactory,
    now: Callable[[], datetime] = now_utc,
) -> Report:
    """Run one complete inventory cycle."""
    logger.info("Starting inventory collection")
    k8s = cfg.kubernetes
    kube = client_factory()

    try:
        server_version = kube.server_version()
    except Exception as exc:
        raise CollectionError(f"failed to get cluster server version: {exc}") from exc

    try:
        namespaces = fetch_namespaces(
            kube,
            k8s.request_batch_size,
            k8s.request_timeout_seconds,
            cfg.namespace_selectors.exclude,
            cfg.namespace_selectors.include,
            cfg.metadata_collection.namespaces,
        )
    except Exception as exc:
        raise CollectionError(f"failed to list namespaces: {exc}") from exc

    try:
        nodes = fetch_nodes(
            kube,
            k8s.request_batch_size,
            k8s.request_timeout_seconds,
            cfg.metadata_collection.nodes,
        )
    except Exception as exc:
        raise CollectionError(f"failed to list nodes: {exc}") from exc

    items = collect_report_items(cfg, client_factory, namespaces, nodes)

    if cfg.namespace_selectors.ignore_empty:
        items = [item for item in items if item.pods]

    report = Report(
        timestamp=format_timestamp(now()),
        cluster_name=cfg.kubeconfig.cluster,
        namespaces=[item.namespace for item in items],
        nodes=list(nodes.values()),
        pods=[pod for item in items for pod in item.pods],
        containers=[c for item in items for c in item.containers],
        server_version_metadata=server_version,
    )
    logger.info(
        "Got Inventory Report with %d containers running across %d namespaces",
        len(report.containers),
        len(report.namespaces),
    )
    return report


def collect_report_items(
    cfg: AppConfig,
    client_factory: ClientFactory,
    namespaces: list[Namespace],
    nodes: dict[str, Node],
) -> list[ReportItem]:
    """Fan pod retrieval out over the worker pool and gather the results.

    The timeout bounds the gap between two results, not the whole cycle.
    """
    if not namespaces:
        return []

    work: queue.Queue[Namespace] = queue.Queue(maxsize=len(namespaces))
    for ns in namespaces:
        work.put_nowait(ns)

    results: queue.Queue[ReportItem | BaseException] = queue.Queue()
    stop = threading.Event()

    pool_size = min(cfg.kubernetes.worker_pool_size, len(namespaces))
    for i in range(pool_size):
        threading.Thread(
            target=_pod_worker,
            args=(cfg, client_factory, work, nodes, results, stop),
            name=f"pod-worker-{i}",
            daemon=True,
        ).start()

    timeout = cfg.kubernetes.request_timeout_seconds
    collected: list[ReportItem] = []
    try:
        while len(collected) < len(namespaces):
            try:
                message = results.get(timeout=timeout)
            except queue.Empty:
                raise CollectionError("timed out waiting for results") from None
            if isinstance(message, BaseException):
                raise CollectionError(str(message)) from message
            collected.append(message)
    finally:
        stop.set()

    return collected


def _pod_worker(
    cfg: AppConfig,
    client_factory: ClientFactory,
    work: queue.Queue[Namespace],
    nodes: dict[str, Node],
    results: queue.Queue[ReportItem | BaseException],
    stop: threading.Event,
) -> None:
    # each worker needs its own client
    try:
        kube = client_factory()
    except Exception as exc:
        results.put(exc)
        return

    while not stop.is_set():
        try:
            namespace = work.get_nowait()
        except queue.Empty:
            return
        try:
            item = _collect_namespace(cfg, kube, namespace, nodes)
        except Exception as exc:
            results.put(exc)
            return
        results.put(item)


def _collect_namespace(
    cfg: AppConfig, kube: KubeClient, namespace: Namespace, nodes: dict[str, Node],
) -> ReportItem:
    pods = fetch_pods_in_namespace(
        kube,
        cfg.kubernetes.request_batch_size,
        cfg.kubernetes.request_timeout_seconds,
        namespace.name,
    )
    logger.info('There are %d pods in namespace "%s"', len(pods), namespace.name)

    return ReportItem(
        namespace=namespace,
        pods=process_pods(pods, namespace.uid, nodes, cfg.metadata_collection.pods),
        containers=get_containers_from_pods(
            pods,
            cfg.ignore_not_running,
            cfg.missing_tag_policy.policy,
            cfg.missing_tag_policy.tag,
        ),
    )
