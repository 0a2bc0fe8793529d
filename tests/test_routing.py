"""Tests for per-account routing of namespaces and report slicing."""

from __future__ import annotations

from k8s_inventory.config import AccountRoute
from k8s_inventory.models import Container, Namespace, Node, Pod, Report
from k8s_inventory.routing import (
    accounts_and_namespaces,
    build_account_reports,
    route_namespaces,
    slice_report,
)


def _ns(*names: str) -> list[Namespace]:
    return [Namespace(name=n, uid=f"uid-{n}") for n in names]


def _routed_names(routed: dict[str, list[Namespace]]) -> dict[str, list[str]]:
    return {account: [ns.name for ns in nss] for account, nss in routed.items()}


class TestRouteNamespaces:
    def test_no_routes_goes_to_default(self) -> None:
        routed = route_namespaces("admin", _ns("a", "b"), {})
        assert _routed_names(routed) == {"admin": ["a", "b"]}

    def test_fan_out_to_every_matching_account(self) -> None:
        routes = {
            "account-a": AccountRoute(namespaces=["^team-.*"]),
            "account-b": AccountRoute(namespaces=["team-shared"]),
        }
        routed = route_namespaces("admin", _ns("team-x", "team-shared", "other"), routes)
        assert _routed_names(routed) == {
            "account-a": ["team-x", "team-shared"],
            "account-b": ["team-shared"],
            "admin": ["other"],
        }

    def test_default_absent_when_all_matched(self) -> None:
        routes = {"acme": AccountRoute(namespaces=[".*"])}
        assert _routed_names(route_namespaces("admin", _ns("a"), routes)) == {"acme": ["a"]}

    def test_accounts_without_namespaces_are_omitted(self) -> None:
        routes = {"acme": AccountRoute(namespaces=["nothing-here"])}
        assert "acme" not in route_namespaces("admin", _ns("a"), routes)


def _report() -> Report:
    return Report(
        timestamp="2024-05-01T12:00:00Z",
        namespaces=_ns("a", "b"),
        nodes=[Node(name="n1", uid="node-1"), Node(name="n2", uid="node-2")],
        pods=[
            Pod(name="pa", uid="pod-a", namespace_uid="uid-a", node_uid="node-1"),
            Pod(name="pb", uid="pod-b", namespace_uid="uid-b", node_uid="node-2"),
            Pod(name="pb2", uid="pod-b2", namespace_uid="uid-b", node_uid=""),
        ],
        containers=[
            Container(name="ca", pod_uid="pod-a", image_tag="a:1"),
            Container(name="cb", pod_uid="pod-b", image_tag="b:1"),
        ],
    )


class TestReportSlicing:
    def test_slice_keeps_related_objects(self) -> None:
        sliced = slice_report(_report(), _ns("b"))
        assert [p.name for p in sliced.pods] == ["pb", "pb2"]
        assert [c.name for c in sliced.containers] == ["cb"]
        assert [n.uid for n in sliced.nodes] == ["node-2"]
        assert sliced.timestamp == "2024-05-01T12:00:00Z"

    def test_build_account_reports(self) -> None:
        reports = build_account_reports(_report(), {"x": _ns("a"), "y": _ns("a", "b")})
        assert [ns.name for ns in reports["x"].namespaces] == ["a"]
        assert len(reports["y"].pods) == 3
        assert [n.uid for n in reports["x"].nodes] == ["node-1"]

    def test_original_untouched(self) -> None:
        report = _report()
        slice_report(report, _ns("a"))
        assert len(report.pods) == 3


class TestAccountsAndNamespaces:
    def test_sorted_and_deduplicated(self) -> None:
        routes = {
            "zeta": AccountRoute(namespaces=["shared", "z"]),
            "alpha": AccountRoute(namespaces=["a", "shared"]),
        }
        assert accounts_and_namespaces(routes) == (["alpha", "zeta"], ["a", "shared", "z"])
