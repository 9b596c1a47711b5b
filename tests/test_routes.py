# /*
# Copyright 2026 The Lab Manager Authors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# */

"""Tests for route derivation and reconciliation."""

from __future__ import annotations

from unittest.mock import patch

import pytest
import yaml

from conftest import namespace_item, service_item
from lab_manager.errors import KubectlError
from lab_manager.routes import (
    ReconcileSummary,
    RouteResolutionError,
    RouteStatus,
    ServiceDescriptor,
    derive_route,
    namespace_regions,
    reconcile_routes,
)

ENABLED = {"compliance.routing/enabled": "true"}


def _cluster(services: list[dict], namespaces: list[dict]):
    """Return a kubectl_get_json stand-in serving the given objects."""
    def _get(args, timeout=None):
        if args[0] == "services":
            return {"items": services}
        if args[0] == "namespaces":
            return {"items": namespaces}
        raise AssertionError(f"unexpected kubectl get {args}")
    return _get


def _applied_docs(mock_apply) -> list[dict]:
    docs = []
    for call in mock_apply.call_args_list:
        docs.extend(call.args[0])
    return docs


class TestServiceDescriptor:
    """Tests for reading routing hints off a Service."""

    def test_from_manifest(self):
        svc = ServiceDescriptor.from_manifest(service_item("web", "ns1", ENABLED, ports=[80, 443]))
        assert svc.namespace == "ns1"
        assert svc.name == "web"
        assert svc.ports == (80, 443)
        assert svc.routing_enabled

    def test_routing_disabled_unless_exactly_true(self):
        svc = ServiceDescriptor("ns1", "web", labels={"compliance.routing/enabled": "True"})
        assert not svc.routing_enabled

    def test_host_prefers_label_over_annotation(self):
        svc = ServiceDescriptor(
            "ns1", "web",
            labels={"compliance.routing/host": "api"},
            annotations={"compliance.routing/host": "other"},
        )
        assert svc.routing_host() == "api"

    def test_host_falls_back_to_annotation_then_name(self):
        annotated = ServiceDescriptor("ns1", "web", annotations={"compliance.routing/host": "portal"})
        assert annotated.routing_host() == "portal"
        assert ServiceDescriptor("ns1", "web").routing_host() == "web"

    def test_port_label_wins_over_declared_ports(self):
        svc = ServiceDescriptor("ns1", "web", labels={"compliance.routing/port": "8443"}, ports=(80,))
        assert svc.routing_port() == 8443

    def test_port_annotation_used_when_no_label(self):
        svc = ServiceDescriptor("ns1", "web", annotations={"compliance.routing/port": "9000"}, ports=(80,))
        assert svc.routing_port() == 9000

    def test_port_defaults_to_first_declared(self):
        assert ServiceDescriptor("ns1", "web", ports=(8080, 9090)).routing_port() == 8080

    def test_port_unresolved_without_ports(self):
        assert ServiceDescriptor("ns1", "web").routing_port() is None

    @pytest.mark.parametrize("value", ["http", "0", "70000", "-1"])
    def test_invalid_explicit_port_is_unresolved(self, value):
        svc = ServiceDescriptor("ns1", "web", labels={"compliance.routing/port": value}, ports=(80,))
        assert svc.routing_port() is None


class TestDeriveRoute:
    """Tests for deriving a single route object."""

    def test_reference_example(self, mesh_cfg):
        svc = ServiceDescriptor(
            "ns1", "svc-a",
            labels={**ENABLED, "compliance.routing/host": "api", "compliance.routing/port": "8080"},
        )
        route = derive_route(svc, {"ns1": "us"}, mesh_cfg)

        assert route.name == "route-svc-a"
        assert route.namespace == "ns1"
        assert route.host == "us-api.example.com"
        assert route.service == "svc-a"
        assert route.port == 8080
        assert route.gateway == "istio-system/dev-sim-gateway"

    def test_manifest_shape(self, mesh_cfg):
        route = derive_route(ServiceDescriptor("ns1", "svc-a", ports=(8080,)), {"ns1": "us"}, mesh_cfg)
        manifest = route.manifest()

        assert manifest["kind"] == "VirtualService"
        assert manifest["apiVersion"] == "networking.istio.io/v1beta1"
        assert manifest["metadata"]["name"] == "route-svc-a"
        assert manifest["metadata"]["labels"]["app.kubernetes.io/managed-by"] == "lab-manager"
        assert manifest["spec"]["hosts"] == ["us-svc-a.example.com"]
        assert manifest["spec"]["gateways"] == ["istio-system/dev-sim-gateway"]
        destination = manifest["spec"]["http"][0]["route"][0]["destination"]
        assert destination == {"host": "svc-a", "port": {"number": 8080}}

    def test_missing_region_raises(self, mesh_cfg):
        with pytest.raises(RouteResolutionError) as exc_info:
            derive_route(ServiceDescriptor("ns2", "svc-b", ports=(80,)), {"ns1": "us"}, mesh_cfg)
        assert exc_info.value.status == RouteStatus.SKIPPED_NO_REGION

    def test_missing_port_raises(self, mesh_cfg):
        with pytest.raises(RouteResolutionError) as exc_info:
            derive_route(ServiceDescriptor("ns1", "svc-b"), {"ns1": "us"}, mesh_cfg)
        assert exc_info.value.status == RouteStatus.SKIPPED_NO_PORT


class TestNamespaceRegions:
    def test_unlabeled_namespaces_omitted(self):
        data = {"items": [namespace_item("ns1", "us"), namespace_item("kube-system")]}
        assert namespace_regions(data) == {"ns1": "us"}


class TestReconcileRoutes:
    """Tests for a full reconciliation pass."""

    @patch("lab_manager.routes.kubectl_apply", return_value=(True, "", ""))
    @patch("lab_manager.routes.kubectl_get_json")
    def test_applies_one_route_per_service(self, mock_get, mock_apply, mesh_cfg):
        mock_get.side_effect = _cluster(
            [
                service_item("svc-a", "ns1", {**ENABLED, "compliance.routing/host": "api",
                                               "compliance.routing/port": "8080"}),
                service_item("svc-b", "ns2", ENABLED, ports=[9090]),
            ],
            [namespace_item("ns1", "us"), namespace_item("ns2", "eu")],
        )

        summary = reconcile_routes(mesh_cfg)

        assert summary.ok
        assert summary.applied == 2
        docs = _applied_docs(mock_apply)
        assert [d["spec"]["hosts"][0] for d in docs] == ["us-api.example.com", "eu-svc-b.example.com"]

    @patch("lab_manager.routes.kubectl_apply", return_value=(True, "", ""))
    @patch("lab_manager.routes.kubectl_get_json")
    def test_services_without_label_are_ignored(self, mock_get, mock_apply, mesh_cfg):
        mock_get.side_effect = _cluster(
            [service_item("plain", "ns1", {"compliance.routing/enabled": "false"}, ports=[80])],
            [namespace_item("ns1", "us")],
        )

        summary = reconcile_routes(mesh_cfg)

        assert summary.outcomes == []
        mock_apply.assert_not_called()

    @patch("lab_manager.routes.kubectl_apply", return_value=(True, "", ""))
    @patch("lab_manager.routes.kubectl_get_json")
    def test_unresolved_region_and_port_are_skipped(self, mock_get, mock_apply, mesh_cfg):
        mock_get.side_effect = _cluster(
            [
                service_item("no-region", "orphan", ENABLED, ports=[80]),
                service_item("no-port", "ns1", ENABLED),
                service_item("ok", "ns1", ENABLED, ports=[80]),
            ],
            [namespace_item("ns1", "us"), namespace_item("orphan")],
        )

        summary = reconcile_routes(mesh_cfg)

        statuses = {o.service: o.status for o in summary.outcomes}
        assert statuses == {
            "no-region": RouteStatus.SKIPPED_NO_REGION,
            "no-port": RouteStatus.SKIPPED_NO_PORT,
            "ok": RouteStatus.APPLIED,
        }
        assert summary.skipped == 2
        assert summary.ok
        assert mock_apply.call_count == 1

    @patch("lab_manager.routes.kubectl_apply")
    @patch("lab_manager.routes.kubectl_get_json")
    def test_apply_failure_does_not_stop_pass(self, mock_get, mock_apply, mesh_cfg):
        mock_get.side_effect = _cluster(
            [service_item("bad", "ns1", ENABLED, ports=[80]), service_item("good", "ns1", ENABLED, ports=[80])],
            [namespace_item("ns1", "us")],
        )
        mock_apply.side_effect = [(False, "", "admission webhook denied"), (True, "", "")]

        summary = reconcile_routes(mesh_cfg)

        assert [o.status for o in summary.outcomes] == [RouteStatus.FAILED, RouteStatus.APPLIED]
        assert "admission webhook denied" in summary.outcomes[0].message
        assert summary.failed == 1
        assert not summary.ok

    @patch("lab_manager.routes.kubectl_apply")
    @patch("lab_manager.routes.kubectl_get_json")
    def test_listing_failure_aborts_pass(self, mock_get, mock_apply, mesh_cfg):
        mock_get.side_effect = KubectlError(["get", "namespaces", "-o", "json"], "connection refused")

        with pytest.raises(KubectlError):
            reconcile_routes(mesh_cfg)
        mock_apply.assert_not_called()

    @patch("lab_manager.routes.kubectl_apply", return_value=(True, "", ""))
    @patch("lab_manager.routes.kubectl_get_json")
    def test_repeated_passes_produce_identical_routes(self, mock_get, mock_apply, mesh_cfg):
        mock_get.side_effect = _cluster(
            [service_item("svc-a", "ns1", ENABLED, ports=[8080])],
            [namespace_item("ns1", "us")],
        )

        reconcile_routes(mesh_cfg)
        reconcile_routes(mesh_cfg)

        first, second = (call.args[0] for call in mock_apply.call_args_list)
        assert yaml.safe_dump(first) == yaml.safe_dump(second)

    @patch("lab_manager.routes.kubectl_apply")
    @patch("lab_manager.routes.kubectl_get_json")
    def test_dry_run_applies_nothing(self, mock_get, mock_apply, mesh_cfg):
        mock_get.side_effect = _cluster(
            [service_item("svc-a", "ns1", ENABLED, ports=[8080])],
            [namespace_item("ns1", "us")],
        )

        summary = reconcile_routes(mesh_cfg, dry_run=True)

        mock_apply.assert_not_called()
        assert summary.outcomes[0].status == RouteStatus.PLANNED
        assert summary.outcomes[0].route.host == "us-svc-a.example.com"


class TestReconcileSummary:
    def test_empty_summary_is_ok(self):
        summary = ReconcileSummary()
        assert summary.ok
        assert (summary.applied, summary.skipped, summary.failed) == (0, 0, 0)
