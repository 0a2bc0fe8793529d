"""Render an inventory report to a text stream."""

from __future__ import annotations

from typing import TextIO

from k8s_inventory.models import Report

PRESENTERS = ("json", "table")

_TABLE_COLUMNS = ("NAMESPACE", "POD", "CONTAINER", "IMAGE TAG", "REPO DIGEST")


def present_json(report: Report, out: TextIO) -> None:
    out.write(report.to_json(indent=2))
    out.write("\n")


def table_rows(report: Report) -> list[tuple[str, ...]]:
    """One row per container, sorted by namespace, pod and container."""
    ns_names = {ns.uid: ns.name for ns in report.namespaces}
    pods = {pod.uid: pod for pod in report.pods}

    rows: list[tuple[str, ...]] = []
    for c in report.containers:
        pod = pods.get(c.pod_uid)
        pod_name = pod.name if pod else ""
        namespace = ns_names.get(pod.namespace_uid, "") if pod else ""
        rows.append((namespace, pod_name, c.name, c.image_tag, c.image_digest))
    rows.sort()
    return rows


def present_table(report: Report, out: TextIO) -> None:
    rows = table_rows(report)
    if not rows:
        out.write("No containers found\n")
        return

    widths = [
        max(len(col), *(len(row[i]) for row in rows))
        for i, col in enumerate(_TABLE_COLUMNS)
    ]
    for row in (_TABLE_COLUMNS, *rows):
        line = "  ".join(value.ljust(widths[i]) for i, value in enumerate(row))
        out.write(line.rstrip() + "\n")


def present(report: Report, output: str, out: TextIO) -> None:
    """Write *report* to *out* in the named format (``json`` or ``table``)."""
    if output == "json":
        present_json(report, out)
    elif output == "table":
        present_table(report, out)
    else:
        raise ValueError(f"Unknown output format: {output!r}")
