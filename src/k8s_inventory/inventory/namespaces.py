"""Namespace retrieval and include/exclude filtering.

Exclusion patterns that are valid DNS-1123 labels (i.e. could be a real
namespace name) are matched exactly; anything else is treated as a regular
expression and searched for in the namespace name. An include list, when
set, takes absolute precedence over the exclusions.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable

from k8s_inventory.config import ResourceMetadata
from k8s_inventory.inventory.util import filter_metadata, paginate
from k8s_inventory.models import Namespace
from k8s_inventory.tracker import track_time

logger = logging.getLogger(__name__)

ExcludeCheck = Callable[[str], bool]

VALID_NAMESPACE_RE = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")


def _regex_check(pattern: str) -> ExcludeCheck:
    compiled = re.compile(pattern)
    return lambda namespace: compiled.search(namespace) is not None


def _set_check(names: frozenset[str]) -> ExcludeCheck:
    return lambda namespace: namespace in names


def build_exclusion_checklist(patterns: Iterable[str]) -> list[ExcludeCheck]:
    """Build one check per regex pattern plus a single exact-match set check."""
    checks: list[ExcludeCheck] = []
    exact: set[str] = set()

    for pattern in patterns:
        if VALID_NAMESPACE_RE.match(pattern):
            exact.add(pattern)
        else:
            checks.append(_regex_check(pattern))

    if exact:
        checks.append(_set_check(frozenset(exact)))
    return checks


def is_excluded(checks: list[ExcludeCheck], namespace: str) -> bool:
    return any(check(namespace) for check in checks)


def filter_namespaces(
    namespaces: Iterable[Namespace],
    excludes: list[str],
    includes: list[str],
) -> list[Namespace]:
    """Apply include/exclude rules to a namespace snapshot.

    With a non-empty *includes* the result is exactly the included names
    present in the snapshot, in include order; exclusions are not consulted.
    """
    snapshot = list(namespaces)

    if includes:
        by_name = {ns.name: ns for ns in snapshot}
        missing = [name for name in includes if name not in by_name]
        if missing:
            logger.warning("Included namespaces not found in cluster: %s", ", ".join(missing))
        return [by_name[name] for name in dict.fromkeys(includes) if name in by_name]

    checks = build_exclusion_checklist(excludes)
    return [ns for ns in snapshot if not is_excluded(checks, ns.name)]


def fetch_namespaces(
    kube,
    batch_size: int,
    timeout_seconds: int,
    excludes: list[str],
    includes: list[str],
    metadata: ResourceMetadata | None = None,
) -> list[Namespace]:
    """List every namespace in the cluster and apply the filters."""
    metadata = metadata or ResourceMetadata()
    with track_time("Fetching namespaces"):
        snapshot = [
            _to_namespace(ns, metadata)
            for ns in paginate(kube.list_namespaces, batch_size, timeout_seconds)
        ]
    return filter_namespaces(snapshot, excludes, includes)


def _to_namespace(obj, metadata: ResourceMetadata) -> Namespace:
    meta = obj.metadata
    if metadata.disable:
        return Namespace(name=meta.name, uid=meta.uid or "")
    return Namespace(
        name=meta.name,
        uid=meta.uid or "",
        annotations=filter_metadata(meta.annotations, metadata.include_annotations),
        labels=filter_metadata(meta.labels, metadata.include_labels),
    )
