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

"""Mesh bring-up (Sail, Istio, TLS, regions, gateway), lab add-ons, and validation."""

from __future__ import annotations

import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import sh
from rich.panel import Panel

from lab_manager import console, logger
from lab_manager.config import MeshConfig
from lab_manager.constants import (
    ADDONS,
    CRD_PEER_AUTHENTICATION,
    DEPLOY_INGRESS_GATEWAY,
    DEPLOY_ISTIOD,
    DEPLOY_SAIL_OPERATOR,
    HELM_CHART_GATEWAY,
    HELM_CHART_SAIL,
    HELM_RELEASE_INGRESS,
    HELM_RELEASE_SAIL,
    HELM_REPO_ISTIO,
    HELM_REPO_ISTIO_URL,
    HELM_REPO_SAIL,
    HELM_REPO_SAIL_URL,
    INGRESS_GATEWAY_SELECTOR,
    ISTIO_NETWORKING_API,
    KUBECTL_LONG_TIMEOUT_SECONDS,
    LABEL_ISTIO_INJECTION,
    LABEL_REGION,
    NS_SAIL_OPERATOR,
    REL_COMPLIANCE_SYSTEM,
    REL_ISTIO_MANIFEST,
    REL_REGION_POLICIES,
    ROLLOUT_TIMEOUT,
    TLS_CERT_DAYS,
    TLS_KEY_BITS,
    addon_value,
)
from lab_manager.errors import KubectlError
from lab_manager.utils import (
    bundled_manifest_path,
    kubectl_apply,
    kubectl_resource_exists,
    render_manifest,
    require_command,
    run_kubectl,
)


# ============================================================================
# Shared helpers
# ============================================================================

def ensure_namespace(namespace: str) -> None:
    """Create a namespace if it does not exist.

    Raises:
        RuntimeError: If namespace creation fails for another reason.
    """
    ok, _, stderr = run_kubectl(["create", "namespace", namespace])
    if not ok and "AlreadyExists" not in stderr:
        raise RuntimeError(f"Failed to create namespace {namespace}: {stderr}")


def wait_rollout(namespace: str, deployment: str, timeout: str = ROLLOUT_TIMEOUT) -> None:
    """Block until a deployment has rolled out.

    Raises:
        RuntimeError: If the rollout does not complete within *timeout*.
    """
    ok, _, stderr = run_kubectl(
        ["-n", namespace, "rollout", "status", f"deploy/{deployment}", f"--timeout={timeout}"],
        timeout=KUBECTL_LONG_TIMEOUT_SECONDS,
    )
    if not ok:
        raise RuntimeError(f"Deployment {namespace}/{deployment} not ready: {stderr[:200]}")


def _apply_file(ref: str) -> None:
    ok, _, stderr = run_kubectl(["apply", "-f", ref], timeout=KUBECTL_LONG_TIMEOUT_SECONDS)
    if not ok:
        raise KubectlError(["apply", "-f", ref], stderr)


def _helm_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def helm_upgrade_install(
    release: str,
    chart: str,
    namespace: str,
    values: dict[str, Any] | None = None,
    extra_args: tuple[str, ...] = (),
) -> None:
    """Run ``helm upgrade --install`` with ``--set`` overrides."""
    set_args = [item for key, val in (values or {}).items() for item in ("--set", f"{key}={_helm_value(val)}")]
    sh.helm(
        "upgrade", "--install", release, chart,
        "--namespace", namespace,
        "--create-namespace",
        *set_args,
        *extra_args,
    )


def helm_repo_add(name: str, url: str) -> None:
    sh.helm("repo", "add", name, url, "--force-update")
    sh.helm("repo", "update", name)


# ============================================================================
# Sail operator and Istio
# ============================================================================

def install_sail_operator() -> None:
    """Install the Sail operator for declarative Istio management."""
    console.print(Panel.fit("Installing Sail Operator", style="bold blue"))
    require_command("helm")
    helm_repo_add(HELM_REPO_SAIL, HELM_REPO_SAIL_URL)
    ensure_namespace(NS_SAIL_OPERATOR)
    helm_upgrade_install(
        HELM_RELEASE_SAIL, HELM_CHART_SAIL, NS_SAIL_OPERATOR,
        extra_args=("--wait", f"--timeout={ROLLOUT_TIMEOUT}"),
    )
    wait_rollout(NS_SAIL_OPERATOR, DEPLOY_SAIL_OPERATOR)
    console.print("[green]\u2705 Sail Operator installed[/green]")


def deploy_istio(mesh_cfg: MeshConfig, manifest: Path | None = None) -> None:
    """Apply the Istio mesh CRs and install the ingress gateway.

    Args:
        mesh_cfg: Supplies the gateway namespace.
        manifest: Istio CR manifest, defaulting to the bundled ambient profile.

    Raises:
        RuntimeError: If the Sail operator is missing or a rollout does not finish.
    """
    console.print(Panel.fit("Deploying Istio mesh", style="bold blue"))
    if not kubectl_resource_exists(["-n", NS_SAIL_OPERATOR, "deploy", DEPLOY_SAIL_OPERATOR]):
        raise RuntimeError("Sail Operator not found. Run 'lab-manager mesh sail-up' first.")

    manifest = manifest or bundled_manifest_path(REL_ISTIO_MANIFEST)
    if not manifest.is_file():
        raise RuntimeError(f"Istio manifest not found: {manifest}")
    _apply_file(str(manifest))

    console.print("[yellow]\u2139\ufe0f  Waiting for Istio control plane...[/yellow]")
    wait_rollout(mesh_cfg.gateway_namespace, DEPLOY_ISTIOD)

    console.print("[yellow]\u2139\ufe0f  Installing ingress gateway...[/yellow]")
    helm_repo_add(HELM_REPO_ISTIO, HELM_REPO_ISTIO_URL)
    helm_upgrade_install(
        HELM_RELEASE_INGRESS, HELM_CHART_GATEWAY, mesh_cfg.gateway_namespace,
        extra_args=("--wait", f"--timeout={ROLLOUT_TIMEOUT}"),
    )
    wait_rollout(mesh_cfg.gateway_namespace, DEPLOY_INGRESS_GATEWAY)
    console.print("[green]\u2705 Istio mesh deployed[/green]")


# ============================================================================
# TLS, regions, gateway
# ============================================================================

def create_tls_secret(mesh_cfg: MeshConfig) -> None:
    """Create a self-signed wildcard certificate and store it as a TLS secret.

    Raises:
        RuntimeError: If openssl or kubectl fails.
    """
    domain = mesh_cfg.domain
    secret = mesh_cfg.tls_secret
    namespace = mesh_cfg.gateway_namespace
    console.print(Panel.fit(f"Creating wildcard TLS secret {namespace}/{secret} for *.{domain}", style="bold blue"))
    ensure_namespace(namespace)

    with tempfile.TemporaryDirectory() as tmpdir:
        key = str(Path(tmpdir) / "tls.key")
        crt = str(Path(tmpdir) / "tls.crt")
        try:
            sh.openssl(
                "req", "-x509", "-nodes",
                "-newkey", f"rsa:{TLS_KEY_BITS}",
                "-days", str(TLS_CERT_DAYS),
                "-keyout", key, "-out", crt,
                "-subj", f"/CN=*.{domain}",
                "-addext", f"subjectAltName = DNS:*.{domain}, DNS:{domain}",
            )
        except sh.ErrorReturnCode as err:
            raise RuntimeError("OpenSSL failed to create self-signed cert") from err

        ok, secret_yaml, stderr = run_kubectl([
            "-n", namespace, "create", "secret", "tls", secret,
            "--key", key, "--cert", crt,
            "--dry-run=client", "-o", "yaml",
        ])
        if not ok:
            raise RuntimeError(f"Failed to render TLS secret: {stderr[:200]}")

    ok, _, stderr = kubectl_apply(secret_yaml)
    if not ok:
        raise RuntimeError(f"Failed to apply TLS secret: {stderr[:200]}")
    console.print(f"[green]\u2705 TLS secret ready: {namespace}/{secret}[/green]")


def ensure_region_namespace(namespace: str, region: str) -> None:
    """Create a region namespace and label it for injection and routing.

    Raises:
        RuntimeError: If the namespace cannot be created or labeled.
    """
    ensure_namespace(namespace)
    ok, _, stderr = run_kubectl([
        "label", "ns", namespace,
        f"{LABEL_ISTIO_INJECTION}=enabled",
        f"{LABEL_REGION}={region}",
        "--overwrite",
    ])
    if not ok:
        raise RuntimeError(f"Failed to label namespace {namespace}: {stderr[:200]}")


def apply_region_policies(namespace: str) -> bool:
    """Apply the fixed mTLS, authorization, and network policies to a namespace.

    Returns:
        False if Istio CRDs are absent and the policies were skipped.

    Raises:
        KubectlError: If the policies are rejected.
    """
    if not kubectl_resource_exists(["crd", CRD_PEER_AUTHENTICATION]):
        logger.warning("Istio CRDs not found. Skipping mTLS/AuthZ policies in namespace %s.", namespace)
        return False
    ok, _, stderr = kubectl_apply(render_manifest(REL_REGION_POLICIES, NAMESPACE=namespace))
    if not ok:
        raise KubectlError(["apply", "-f", "-"], stderr)
    return True


def setup_regions(mesh_cfg: MeshConfig) -> None:
    """Create every configured region namespace and apply its policies."""
    console.print(Panel.fit("Creating region namespaces", style="bold blue"))
    bindings = mesh_cfg.region_bindings
    for namespace, region in bindings:
        ensure_region_namespace(namespace, region)
        console.print(f"[green]  \u2713 {namespace} ({LABEL_REGION}={region})[/green]")
    for namespace, _ in bindings:
        apply_region_policies(namespace)
    console.print(f"[green]\u2705 Regions ready: {', '.join(ns for ns, _ in bindings)}[/green]")


def wildcard_gateway_manifest(mesh_cfg: MeshConfig) -> dict[str, Any]:
    """Build the shared HTTPS gateway serving ``*.<domain>``."""
    hosts = [f"*.{mesh_cfg.domain}"]
    return {
        "apiVersion": ISTIO_NETWORKING_API,
        "kind": "Gateway",
        "metadata": {"name": mesh_cfg.gateway, "namespace": mesh_cfg.gateway_namespace},
        "spec": {
            "selector": dict(INGRESS_GATEWAY_SELECTOR),
            "servers": [
                {
                    "port": {"number": 443, "name": "https", "protocol": "HTTPS"},
                    "tls": {"mode": "SIMPLE", "credentialName": mesh_cfg.tls_secret},
                    "hosts": hosts,
                },
                {
                    "port": {"number": 80, "name": "http", "protocol": "HTTP"},
                    "tls": {"httpsRedirect": True},
                    "hosts": hosts,
                },
            ],
        },
    }


def apply_gateway(mesh_cfg: MeshConfig) -> None:
    """Apply the wildcard gateway.

    Raises:
        KubectlError: If the gateway is rejected.
    """
    console.print(Panel.fit(f"Applying wildcard gateway {mesh_cfg.gateway_ref}", style="bold blue"))
    ok, _, stderr = kubectl_apply([wildcard_gateway_manifest(mesh_cfg)])
    if not ok:
        raise KubectlError(["apply", "-f", "-"], stderr)
    console.print(f"[green]\u2705 Gateway applied: {mesh_cfg.gateway_ref} (hosts *.{mesh_cfg.domain})[/green]")


# ============================================================================
# Lab add-ons
# ============================================================================

def _resolve_ref(ref: str) -> str:
    """Map ``bundled:<file>`` to the packaged file path; other refs pass through."""
    if ref.startswith("bundled:"):
        return str(bundled_manifest_path(ref.removeprefix("bundled:")))
    return ref


def _run_waits(waits: list[dict[str, str]]) -> None:
    for wait in waits:
        ok, _, stderr = run_kubectl([
            "wait", f"--for=condition={wait['condition']}",
            f"--timeout={wait.get('timeout', ROLLOUT_TIMEOUT)}",
            wait["resource"], "-n", wait["namespace"],
        ], timeout=KUBECTL_LONG_TIMEOUT_SECONDS)
        if not ok:
            raise RuntimeError(f"{wait['namespace']}/{wait['resource']} not {wait['condition']}: {stderr[:200]}")


def install_addon(name: str, ingress_host: str) -> None:
    """Install one add-on from the catalog.

    Args:
        name: Catalog key.
        ingress_host: Host name handed to charts that declare ``hostname_value``.

    Raises:
        KeyError: If the add-on is not in the catalog.
        RuntimeError: If an install step or readiness wait fails.
    """
    entry = addon_value("addons", name)
    if entry is None:
        raise KeyError(f"Unknown add-on '{name}'")
    console.print(Panel.fit(f"Installing {name}", style="bold blue"))

    for ref in entry.get("manifests", []):
        _apply_file(_resolve_ref(ref))

    helm = entry.get("helm")
    if helm:
        require_command("helm")
        helm_repo_add(helm["repo"], helm["repo_url"])
        values = dict(helm.get("values") or {})
        if helm.get("hostname_value"):
            values[helm["hostname_value"]] = ingress_host
        helm_upgrade_install(helm["release"], helm["chart"], helm["namespace"], values)

    argv = entry.get("cli")
    if argv:
        require_command(argv[0])
        try:
            sh.Command(argv[0])(*map(_resolve_ref, argv[1:]))
        except sh.ErrorReturnCode as err:
            raise RuntimeError(f"{argv[0]} failed: {err.stderr.decode(errors='replace')[:200]}") from err

    _run_waits(entry.get("wait", []))
    console.print(f"[green]\u2705 {name} installed[/green]")


def select_addons(names: list[str] | None = None) -> list[str]:
    """Return the add-ons to act on, in catalog order.

    Args:
        names: Subset of add-ons, or None for the whole lab.

    Raises:
        KeyError: If a name is not in the catalog.
    """
    order = ADDONS.get("lab_order", [])
    if names is None:
        return list(order)
    unknown = sorted(set(names) - set(ADDONS.get("addons") or {}))
    if unknown:
        raise KeyError(f"Unknown add-on(s): {', '.join(unknown)}")
    return [n for n in order if n in names]


def install_lab_addons(ingress_host: str, names: list[str] | None = None) -> None:
    """Install lab add-ons in catalog order.

    The compliance-system RBAC is applied last, and only for a full install.

    Args:
        ingress_host: Host name for charts that publish an ingress.
        names: Subset of add-ons to install, or None for all.

    Raises:
        KeyError: If a name is not in the catalog; nothing is installed.
    """
    selected = select_addons(names)
    for name in selected:
        install_addon(name, ingress_host)
    if names is not None:
        console.print(f"[green]\u2705 Installed: {', '.join(selected)}[/green]")
        return
    console.print(Panel.fit("Applying compliance manifests", style="bold blue"))
    _apply_file(str(bundled_manifest_path(REL_COMPLIANCE_SYSTEM)))
    console.print("[green]\u2705 Compliance lab ready[/green]")


def uninstall_addon(name: str) -> None:
    """Remove one add-on installed by install_addon.

    CLI-installed add-ons are left in place; their tools own their teardown.
    """
    entry = addon_value("addons", name)
    if entry is None:
        raise KeyError(f"Unknown add-on '{name}'")
    helm = entry.get("helm")
    if helm:
        try:
            sh.helm("uninstall", helm["release"], "--namespace", helm["namespace"])
        except sh.ErrorReturnCode as err:
            logger.warning("helm uninstall %s failed: %s", helm["release"], err.stderr.decode(errors="replace")[:200])
    for ref in map(_resolve_ref, reversed(entry.get("manifests", []))):
        ok, _, stderr = run_kubectl(
            ["delete", "-f", ref, "--ignore-not-found"], timeout=KUBECTL_LONG_TIMEOUT_SECONDS
        )
        if not ok:
            logger.warning("Failed to delete %s: %s", ref, stderr[:200])
    if entry.get("cli"):
        logger.info("Skipping %s: installed by %s, remove it with that tool", name, entry["cli"][0])
    console.print(f"[green]  \u2713 {name} removed[/green]")


def uninstall_lab_addons(names: list[str] | None = None) -> None:
    """Remove lab add-ons in reverse catalog order.

    The compliance manifests are deleted first, and only when the whole lab
    is being removed.

    Raises:
        KeyError: If a name is not in the catalog; nothing is removed.
    """
    selected = select_addons(names)
    if names is not None:
        for name in reversed(selected):
            uninstall_addon(name)
        console.print(f"[green]\u2705 Removed: {', '.join(selected)}[/green]")
        return
    console.print(Panel.fit("Removing compliance lab", style="bold blue"))
    run_kubectl(["delete", "-f", str(bundled_manifest_path(REL_COMPLIANCE_SYSTEM)), "--ignore-not-found"])
    for name in reversed(selected):
        uninstall_addon(name)
    console.print("[green]\u2705 Compliance lab removed[/green]")


# ============================================================================
# Validation
# ============================================================================

@dataclass(frozen=True)
class Check:
    name: str
    ok: bool


def _deployment_ready(namespace: str, deployment: str) -> bool:
    ok, _, _ = run_kubectl(["-n", namespace, "rollout", "status", f"deploy/{deployment}", "--timeout=1s"])
    return ok


def validate_environment(mesh_cfg: MeshConfig) -> list[Check]:
    """Check the cluster, control plane, TLS secret, regions, and gateway.

    Returns:
        One Check per item checked, in report order.
    """
    ns = mesh_cfg.gateway_namespace
    checks = [Check("kubectl can reach the cluster", run_kubectl(["cluster-info"])[0])]
    for deployment in (DEPLOY_ISTIOD, DEPLOY_INGRESS_GATEWAY):
        exists = kubectl_resource_exists(["-n", ns, "deploy", deployment])
        checks.append(Check(f"{deployment} deployment exists", exists))
        checks.append(Check(f"{deployment} rollout ready", exists and _deployment_ready(ns, deployment)))
    checks.append(Check(
        f"TLS secret present: {ns}/{mesh_cfg.tls_secret}",
        kubectl_resource_exists(["-n", ns, "secret", mesh_cfg.tls_secret]),
    ))

    for namespace, region in mesh_cfg.region_bindings:
        ok, stdout, _ = run_kubectl(["get", "ns", namespace, "-o", "jsonpath={.metadata.labels}"])
        checks.append(Check(f"namespace exists: {namespace}", ok))
        if not ok:
            continue
        checks.append(Check(f"{namespace} labeled {LABEL_REGION}={region}", f'"{LABEL_REGION}":"{region}"' in stdout))
        for kind, name in (
            ("peerauthentication", "default"),
            ("authorizationpolicy", "allow-ingress"),
            ("networkpolicy", "baseline-istio-access"),
        ):
            checks.append(Check(
                f"{namespace} {kind} {name} present",
                kubectl_resource_exists(["-n", namespace, kind, name]),
            ))

    checks.append(Check(
        f"Gateway present: {mesh_cfg.gateway_ref}",
        kubectl_resource_exists(["-n", ns, "gateway", mesh_cfg.gateway]),
    ))
    return checks


def print_checks(checks: list[Check]) -> bool:
    """Print check results and return True if all passed."""
    for check in checks:
        if check.ok:
            console.print(f"[green][ OK ][/green] {check.name}", highlight=False)
        else:
            console.print(f"[red]\\[FAIL][/red] {check.name}", highlight=False)
    passed = all(c.ok for c in checks)
    if passed:
        console.print("[green]\u2705 All core checks passed. You can now add routes or deploy sample services.[/green]")
    else:
        console.print("[red]\u274c Some checks failed. See messages above.[/red]")
    return passed
