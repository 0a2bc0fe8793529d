"""Container extraction from pods.

The image tag is only authoritative in the pod spec, while the digest and
runtime container ID only exist in the pod status. Both sources are merged
by container name, init containers first, spec before status, so status
values attach to the entries seeded from the pod spec.
"""

from __future__ import annotations

import re
from typing import Any

from k8s_inventory.models import Container

DIGEST_RE = re.compile(r"@(sha\d{3}:[A-Za-z0-9]{32,})")
TAG_RE = re.compile(r":\w[\w.-]{0,127}$", re.ASCII)

POD_RUNNING = "Running"


def _strip_digest(image: str | None) -> str:
    return (image or "").split("@")[0]


def _digest_from_image_id(image_id: str | None) -> str:
    match = DIGEST_RE.search(image_id or "")
    return match.group(1) if match else ""


def has_tag(image_tag: str) -> bool:
    return TAG_RE.search(image_tag) is not None


def get_containers_in_pod(pod: Any, missing_tag_policy: str = "digest", dummy_tag: str = "UNKNOWN") -> list[Container]:
    pod_uid = pod.metadata.uid or ""
    containers: dict[str, Container] = {}

    def from_spec(c: Any) -> None:
        found = containers.get(c.name)
        if found is not None:
            found.image_tag = _strip_digest(c.image)
            found.pod_uid = pod_uid
        else:
            containers[c.name] = Container(
                name=c.name, pod_uid=pod_uid, image_tag=_strip_digest(c.image),
            )

    def from_status(c: Any) -> None:
        digest = _digest_from_image_id(c.image_id)
        found = containers.get(c.name)
        if found is not None:
            found.id = c.container_id or ""
            found.image_digest = digest
        else:
            containers[c.name] = Container(
                id=c.container_id or "",
                name=c.name,
                pod_uid=pod_uid,
                image_tag=_strip_digest(c.image),
                image_digest=digest,
            )

    spec = pod.spec
    status = pod.status
    for c in (spec.init_containers if spec else None) or []:
        from_spec(c)
    for c in (status.init_container_statuses if status else None) or []:
        from_status(c)
    for c in (spec.containers if spec else None) or []:
        from_spec(c)
    for c in (status.container_statuses if status else None) or []:
        from_status(c)

    for c in containers.values():
        if has_tag(c.image_tag):
            continue
        if missing_tag_policy == "dummy":
            c.image_tag = f"{c.image_tag}:{dummy_tag}"
        elif missing_tag_policy == "digest" and c.image_digest:
            c.image_tag = f"{c.image_tag}:{c.image_digest.split(':')[-1]}"

    return list(containers.values())


def get_containers_from_pods(
    pods: list[Any],
    ignore_not_running: bool = True,
    missing_tag_policy: str = "digest",
    dummy_tag: str = "UNKNOWN",
) -> list[Container]:
    """Containers across *pods*; untagged images are dropped under ``drop``."""
    result: list[Container] = []
    for pod in pods:
        phase = pod.status.phase if pod.status is not None else None
        if ignore_not_running and phase != POD_RUNNING:
            continue
        for c in get_containers_in_pod(pod, missing_tag_policy, dummy_tag):
            if missing_tag_policy == "drop" and not has_tag(c.image_tag):
                continue
            result.append(c)
    return result
