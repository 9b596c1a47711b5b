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

"""Cluster subcommands (up, down, status)."""

from __future__ import annotations

import typer

from lab_manager.cluster import cluster_status, create_cluster, delete_cluster, write_kubeconfig
from lab_manager.config import ClusterConfig
from lab_manager.utils import require_command

app = typer.Typer(help="Manage the local k3d cluster.")


def _cluster_config(cluster_name: str | None, agents: int | None = None) -> ClusterConfig:
    cfg = ClusterConfig()
    overrides: dict = {}
    if cluster_name is not None:
        overrides["cluster_name"] = cluster_name
    if agents is not None:
        overrides["agents"] = agents
    if overrides:
        cfg = cfg.model_copy(update=overrides)
    return cfg


@app.command()
def up(
    cluster_name: str | None = typer.Option(None, "--cluster-name", help="k3d cluster name"),
    agents: int | None = typer.Option(None, "--agents", help="Number of agent nodes"),
) -> None:
    """Create the k3d cluster and write its kubeconfig."""
    require_command("k3d")
    cfg = _cluster_config(cluster_name, agents)
    create_cluster(cfg)
    write_kubeconfig(cfg)


@app.command()
def down(
    cluster_name: str | None = typer.Option(None, "--cluster-name", help="k3d cluster name"),
) -> None:
    """Delete the k3d cluster."""
    require_command("k3d")
    delete_cluster(_cluster_config(cluster_name))


@app.command()
def status() -> None:
    """Show k3d clusters and Kubernetes nodes."""
    require_command("k3d")
    cluster_status()
