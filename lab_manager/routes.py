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

"""Route reconciliation: derive Istio VirtualServices from labeled Services.

Every pass regenerates the full set of route objects from the current
Services and namespace region labels and applies them with create-or-update
semantics, so re-running a pass with unchanged inputs changes nothing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from rich.panel import Panel
from rich.table import Table

from lab_manager import console, logger
from lab_manager.config import MeshConfig
from lab_manager.constants import (
    ISTIO_NETWORKING_API,
    LABEL_MANAGED_BY,
    LABEL_REGION,
    LABEL_ROUTING_ENABLED,
    LABEL_ROUTING_HOST,
    LABEL_ROUTING_PORT,
    MANAGED_BY_VALUE,
    ROUTE_NAME_PREFIX,
)
from lab_manager.errors import KubectlError, LabError
from lab_manager.utils import dump_manifests, kubectl_apply, kubectl_get_json


class RouteStatus(str, Enum):
    APPLIED = "applied"
    PLANNED = "planned"
    SKIPPED_NO_REGION = "skipped (unresolved region)"
    SKIPPED_NO_PORT = "skipped (unresolved port)"
    FAILED = "failed"


class RouteResolutionError(LabError):
    """A Service cannot be turned into a route; the pass skips it."""

    def __init__(self, status: RouteStatus, message: str) -> None:
        super().__init__(message)
        self.status = status


# ============================================================================
# Inputs
# ============================================================================

@dataclass(frozen=True)
class ServiceDescriptor:
    """The parts of a Kubernetes Service the reconciler reads.

    Attributes:
        namespace: Namespace of the Service.
        name: Service name.
        labels: Service labels.
        annotations: Service annotations.
        ports: Declared port numbers, in declaration order.
    """

    namespace: str
    name: str
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    ports: tuple[int, ...] = ()

    @classmethod
    def from_manifest(cls, item: dict[str, Any]) -> ServiceDescriptor:
        metadata = item.get("metadata") or {}
        spec = item.get("spec") or {}
        ports = tuple(p["port"] for p in spec.get("ports") or [] if isinstance(p.get("port"), int))
        return cls(
            namespace=metadata.get("namespace", ""),
            name=metadata.get("name", ""),
            labels=dict(metadata.get("labels") or {}),
            annotations=dict(metadata.get("annotations") or {}),
            ports=ports,
        )

    @property
    def routing_enabled(self) -> bool:
        return self.labels.get(LABEL_ROUTING_ENABLED) == "true"

    def _lookup(self, key: str) -> str | None:
        for source in (self.labels, self.annotations):
            value = source.get(key)
            if value:
                return value
        return None

    def routing_host(self) -> str:
        """Host component: host label, else host annotation, else the Service name."""
        return self._lookup(LABEL_ROUTING_HOST) or self.name

    def routing_port(self) -> int | None:
        """Port: port label, else port annotation, else the first declared port.

        An explicit label or annotation that is not a valid port number
        resolves to None rather than falling through to the declared ports.
        """
        explicit = self._lookup(LABEL_ROUTING_PORT)
        if explicit is not None:
            return _parse_port(explicit)
        return self.ports[0] if self.ports else None


def _parse_port(value: str) -> int | None:
    try:
        port = int(value.strip())
    except ValueError:
        return None
    return port if 0 < port < 65536 else None


def namespace_regions(namespaces: dict[str, Any]) -> dict[str, str]:
    """Map namespace name to region code from a ``kubectl get ns -o json`` result.

    Namespaces without a region label are omitted.
    """
    regions = {}
    for item in namespaces.get("items", []):
        metadata = item.get("metadata") or {}
        region = (metadata.get("labels") or {}).get(LABEL_REGION)
        if region:
            regions[metadata["name"]] = region
    return regions


# ============================================================================
# Derivation
# ============================================================================

@dataclass(frozen=True)
class RouteObject:
    """A derived VirtualService binding an external host to a Service port."""

    name: str
    namespace: str
    host: str
    service: str
    port: int
    gateway: str

    def manifest(self) -> dict[str, Any]:
        return {
            "apiVersion": ISTIO_NETWORKING_API,
            "kind": "VirtualService",
            "metadata": {
                "name": self.name,
                "namespace": self.namespace,
                "labels": {LABEL_MANAGED_BY: MANAGED_BY_VALUE},
            },
            "spec": {
                "hosts": [self.host],
                "gateways": [self.gateway],
                "http": [
                    {"route": [{"destination": {"host": self.service, "port": {"number": self.port}}}]},
                ],
            },
        }


def route_name(service_name: str) -> str:
    return f"{ROUTE_NAME_PREFIX}{service_name}"


def derive_route(svc: ServiceDescriptor, regions: dict[str, str], mesh_cfg: MeshConfig) -> RouteObject:
    """Derive the route object for one Service.

    Args:
        svc: The routing-enabled Service.
        regions: Namespace-to-region mapping.
        mesh_cfg: Supplies the ingress domain and gateway reference.

    Returns:
        The derived RouteObject.

    Raises:
        RouteResolutionError: If the region or the port cannot be resolved.
    """
    region = regions.get(svc.namespace)
    if not region:
        raise RouteResolutionError(
            RouteStatus.SKIPPED_NO_REGION,
            f"Namespace {svc.namespace} has no {LABEL_REGION} label; skipping Service {svc.namespace}/{svc.name}",
        )
    port = svc.routing_port()
    if port is None:
        raise RouteResolutionError(
            RouteStatus.SKIPPED_NO_PORT,
            f"Could not determine Service port for {svc.namespace}/{svc.name}; skipping",
        )
    return RouteObject(
        name=route_name(svc.name),
        namespace=svc.namespace,
        host=f"{region}-{svc.routing_host()}.{mesh_cfg.domain}",
        service=svc.name,
        port=port,
        gateway=mesh_cfg.gateway_ref,
    )


# ============================================================================
# Reconciliation
# ============================================================================

@dataclass(frozen=True)
class RouteOutcome:
    namespace: str
    service: str
    status: RouteStatus
    route: RouteObject | None = None
    message: str = ""


@dataclass
class ReconcileSummary:
    """Per-Service outcomes of one reconciliation pass."""

    outcomes: list[RouteOutcome] = field(default_factory=list)

    def count(self, *statuses: RouteStatus) -> int:
        return sum(1 for o in self.outcomes if o.status in statuses)

    @property
    def applied(self) -> int:
        return self.count(RouteStatus.APPLIED, RouteStatus.PLANNED)

    @property
    def skipped(self) -> int:
        return self.count(RouteStatus.SKIPPED_NO_REGION, RouteStatus.SKIPPED_NO_PORT)

    @property
    def failed(self) -> int:
        return self.count(RouteStatus.FAILED)

    @property
    def ok(self) -> bool:
        return self.failed == 0


def list_routable_services() -> list[ServiceDescriptor]:
    """List Services in all namespaces carrying the routing-enabled label.

    Raises:
        KubectlError: If the Services cannot be listed.
    """
    data = kubectl_get_json(["services", "--all-namespaces", "-l", f"{LABEL_ROUTING_ENABLED}=true"])
    services = [ServiceDescriptor.from_manifest(item) for item in data.get("items", [])]
    return [svc for svc in services if svc.routing_enabled]


def list_namespace_regions() -> dict[str, str]:
    """Read the namespace-to-region mapping from the cluster.

    Raises:
        KubectlError: If the namespaces cannot be listed.
    """
    return namespace_regions(kubectl_get_json(["namespaces"]))


def apply_route(route: RouteObject) -> None:
    """Create or update a route object.

    Raises:
        KubectlError: If kubectl rejects the manifest.
    """
    ok, _, stderr = kubectl_apply([route.manifest()])
    if not ok:
        raise KubectlError(["apply", "-f", "-"], stderr)


def reconcile_routes(mesh_cfg: MeshConfig, dry_run: bool = False) -> ReconcileSummary:
    """Run one reconciliation pass.

    Listing failures abort the pass. Resolution problems and apply failures
    are recorded per Service and do not stop the remaining Services.

    Args:
        mesh_cfg: Ingress domain and gateway settings.
        dry_run: Derive and print routes without applying them.

    Returns:
        The per-Service summary.

    Raises:
        KubectlError: If Services or namespaces cannot be listed.
    """
    console.print(Panel.fit(f"Reconciling routes from Services ({LABEL_ROUTING_ENABLED}=true)", style="bold blue"))
    regions = list_namespace_regions()
    services = list_routable_services()
    summary = ReconcileSummary()
    if not services:
        console.print(f"[yellow]\u2139\ufe0f  No Services found with label {LABEL_ROUTING_ENABLED}=true. Nothing to do.[/yellow]")
        return summary

    for svc in services:
        try:
            route = derive_route(svc, regions, mesh_cfg)
        except RouteResolutionError as err:
            logger.warning("%s", err)
            summary.outcomes.append(RouteOutcome(svc.namespace, svc.name, err.status, message=str(err)))
            continue

        if dry_run:
            console.print(dump_manifests([route.manifest()]), markup=False, highlight=False)
            summary.outcomes.append(RouteOutcome(svc.namespace, svc.name, RouteStatus.PLANNED, route))
            continue

        try:
            apply_route(route)
        except KubectlError as err:
            logger.error("Failed to apply VirtualService for %s/%s: %s", svc.namespace, svc.name, err.stderr.strip())
            summary.outcomes.append(RouteOutcome(svc.namespace, svc.name, RouteStatus.FAILED, route, str(err)))
            continue
        logger.info(
            "Applied/updated VirtualService: %s/%s (host: %s -> %s:%d)",
            route.namespace, route.name, route.host, route.service, route.port,
        )
        summary.outcomes.append(RouteOutcome(svc.namespace, svc.name, RouteStatus.APPLIED, route))
    return summary


def print_summary(summary: ReconcileSummary) -> None:
    """Render the per-Service outcomes as a table."""
    table = Table(title="Route reconciliation")
    table.add_column("Service")
    table.add_column("Status")
    table.add_column("Host")
    table.add_column("Backend")
    styles = {
        RouteStatus.APPLIED: "green",
        RouteStatus.PLANNED: "cyan",
        RouteStatus.FAILED: "red",
    }
    for outcome in summary.outcomes:
        style = styles.get(outcome.status, "yellow")
        route = outcome.route
        table.add_row(
            f"{outcome.namespace}/{outcome.service}",
            f"[{style}]{outcome.status.value}[/{style}]",
            route.host if route else "-",
            f"{route.service}:{route.port}" if route else "-",
        )
    console.print(table)
    console.print(
        f"Reconciliation complete: {summary.applied} applied, "
        f"{summary.skipped} skipped, {summary.failed} failed."
    )
