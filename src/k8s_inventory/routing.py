"""Account routing: which Anchore account(s) receive which namespaces.

Routing is fan-out, not partition: a namespace matching the patterns of two
accounts is delivered to both. Namespaces matching no route go to the
default account.
"""

from __future__ import annotations

from collections.abc import Iterable

from k8s_inventory.config import AccountRoute
from k8s_inventory.inventory.namespaces import build_exclusion_checklist, is_excluded
from k8s_inventory.models import Namespace, Report


def route_namespaces(
    default_account: str,
    namespaces: Iterable[Namespace],
    routes: dict[str, AccountRoute],
) -> dict[str, list[Namespace]]:
    """Map accounts to the namespaces they should receive.

    Route patterns follow the namespace filter rules: valid namespace
    names match exactly, anything else is a regular expression.
    """
    checklists = {
        account: build_exclusion_checklist(route.namespaces)
        for account, route in routes.items()
    }

    routed: dict[str, list[Namespace]] = {}
    for ns in namespaces:
        matched = False
        for account, checks in checklists.items():
            if is_excluded(checks, ns.name):
                routed.setdefault(account, []).append(ns)
                matched = True
        if not matched:
            routed.setdefault(default_account, []).append(ns)
    return routed


def build_account_reports(
    report: Report, routed: dict[str, list[Namespace]],
) -> dict[str, Report]:
    """Slice *report* into one report per account.

    Each slice carries the account's namespaces, their pods and containers,
    and only the nodes those pods run on.
    """
    return {
        account: slice_report(report, namespaces)
        for account, namespaces in routed.items()
    }


def slice_report(report: Report, namespaces: list[Namespace]) -> Report:
    """Copy of *report* restricted to *namespaces* and what runs in them."""
    nodes_by_uid = {node.uid: node for node in report.nodes}
    ns_uids = {ns.uid for ns in namespaces}
    pods = [p for p in report.pods if p.namespace_uid in ns_uids]
    pod_uids = {p.uid for p in pods}
    node_uids = dict.fromkeys(p.node_uid for p in pods if p.node_uid)

    return report.model_copy(update={
        "namespaces": list(namespaces),
        "pods": pods,
        "containers": [c for c in report.containers if c.pod_uid in pod_uids],
        "nodes": [nodes_by_uid[uid] for uid in node_uids if uid in nodes_by_uid],
    })


def accounts_and_namespaces(routes: dict[str, AccountRoute]) -> tuple[list[str], list[str]]:
    """Accounts explicitly bound by routes, and the namespaces they name."""
    accounts = sorted(routes)
    namespaces = sorted({ns for route in routes.values() for ns in route.namespaces})
    return accounts, namespaces
