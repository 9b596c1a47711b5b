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

"""k3d cluster lifecycle and kubeconfig handling."""

from __future__ import annotations

import json
from pathlib import Path

import sh
from rich.panel import Panel

from lab_manager import console
from lab_manager.config import ClusterConfig
from lab_manager.utils import run_kubectl


def list_clusters() -> list[dict]:
    """Return k3d's view of existing clusters."""
    return json.loads(str(sh.k3d("cluster", "list", "-o", "json")) or "[]")


def cluster_exists(cfg: ClusterConfig) -> bool:
    return any(c.get("name") == cfg.cluster_name for c in list_clusters())


def create_cluster(cfg: ClusterConfig) -> bool:
    """Create the k3d cluster with 80/443 mapped to the load balancer.

    An existing cluster with the same name is left untouched.

    Args:
        cfg: k3d cluster configuration.

    Returns:
        True if a cluster was created, False if it already existed.
    """
    console.print(Panel.fit(f"Creating k3d cluster: {cfg.cluster_name}", style="bold blue"))
    if cluster_exists(cfg):
        console.print("[yellow]   Cluster already exists. Skipping create.[/yellow]")
        return False

    args = [
        "cluster", "create", cfg.cluster_name,
        "--agents", str(cfg.agents),
        "--port", f"{cfg.http_port}@loadbalancer",
        "--port", f"{cfg.https_port}@loadbalancer",
        "--timeout", cfg.timeout,
        "--wait",
    ]
    if cfg.disable_traefik:
        args += ["--k3s-arg", "--disable=traefik@server:0"]
    sh.k3d(*args)
    console.print("[green]\u2705 Cluster created successfully[/green]")
    return True


def write_kubeconfig(cfg: ClusterConfig) -> Path:
    """Write the cluster kubeconfig and return its path."""
    path = Path(str(sh.k3d("kubeconfig", "write", cfg.cluster_name)).strip())
    console.print(f"[green]  \u2713 Kubeconfig written to: {path}[/green]")
    console.print(f"    export KUBECONFIG={path}")
    return path


def delete_cluster(cfg: ClusterConfig) -> None:
    """Delete the k3d cluster. A missing cluster is not an error."""
    console.print(f"[yellow]\u2139\ufe0f  Deleting k3d cluster '{cfg.cluster_name}'...[/yellow]")
    try:
        sh.k3d("cluster", "delete", cfg.cluster_name)
        console.print(f"[green]\u2705 Cluster '{cfg.cluster_name}' deleted[/green]")
    except sh.ErrorReturnCode_1:
        console.print(f"[yellow]\u26a0\ufe0f  Cluster '{cfg.cluster_name}' not found or already deleted[/yellow]")


def cluster_status() -> None:
    """Print k3d clusters and, when reachable, the Kubernetes nodes."""
    console.print(Panel.fit("k3d clusters", style="bold blue"))
    for cluster in list_clusters():
        servers = cluster.get("serversRunning", "?")
        agents = cluster.get("agentsRunning", "?")
        console.print(f"  {cluster.get('name')}: servers={servers} agents={agents}")
    ok, stdout, _ = run_kubectl(["get", "nodes", "-o", "wide"])
    if ok:
        console.print(Panel.fit("Kubernetes nodes", style="bold blue"))
        console.print(stdout, markup=False, highlight=False)
    else:
        console.print("[yellow]\u26a0\ufe0f  kubectl cannot reach the cluster (set KUBECONFIG?)[/yellow]")
