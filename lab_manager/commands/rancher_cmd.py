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

"""Rancher subcommands (container lifecycle, credentials, cluster registration)."""

from __future__ import annotations

from pathlib import Path

import typer

from lab_manager import console
from lab_manager.config import (
    RancherConfig,
    detect_environment,
    display_rancher_config,
    rancher_config_candidates,
    rancher_config_path,
    resolve_rancher_config,
)
from lab_manager.constants import DEFAULT_CONFIG_DIR, DEFAULT_RANCHER_CLUSTER_NAME
from lab_manager.rancher import RancherClient, configure_rancher, wait_for_rancher
from lab_manager.rancher_container import (
    prune_docker,
    purge_rancher_state,
    rancher_down,
    rancher_running,
    rancher_up,
)
from lab_manager.registration import deregister_cluster, register_cluster

app = typer.Typer(help="Run Rancher locally and register clusters with it.")

CONFIG_DIR_OPTION = typer.Option(
    Path(DEFAULT_CONFIG_DIR), "--config-dir", help="Directory holding rancher.<env> files"
)


def _rancher_config(config_dir: Path) -> RancherConfig:
    return resolve_rancher_config(rancher_config_candidates(config_dir))


@app.command()
def up(config_dir: Path = CONFIG_DIR_OPTION) -> None:
    """Start the Rancher server container."""
    rancher_up(_rancher_config(config_dir))


@app.command()
def down(config_dir: Path = CONFIG_DIR_OPTION) -> None:
    """Stop and remove the Rancher server container."""
    rancher_down(_rancher_config(config_dir))


@app.command()
def reset(
    config_dir: Path = CONFIG_DIR_OPTION,
    purge_state: bool = typer.Option(False, "--purge-state", help="Also wipe the Rancher state directory"),
) -> None:
    """Recreate the Rancher server container."""
    cfg = _rancher_config(config_dir)
    rancher_down(cfg)
    if purge_state or cfg.auto_state_purge:
        purge_rancher_state(Path(cfg.state_dir))
    rancher_up(cfg)


@app.command()
def configure(
    config_dir: Path = CONFIG_DIR_OPTION,
    url: str | None = typer.Option(None, "--url", help="Rancher server URL"),
    username: str = typer.Option("admin", "--username", help="Rancher admin user"),
    password: str | None = typer.Option(None, "--password", help="Rancher admin password"),
) -> None:
    """Obtain an API token and write the environment's Rancher config file."""
    cfg = _rancher_config(config_dir)
    url = url or cfg.url or typer.prompt("Rancher URL")
    path = rancher_config_path(config_dir, detect_environment(config_dir))
    if not (cfg.bearer_token and RancherClient(cfg.model_copy(update={"url": url})).token_is_valid()):
        password = password or typer.prompt(f"Password for {username}", hide_input=True)
    configure_rancher(cfg, url, username, password or "", path)
    display_rancher_config(resolve_rancher_config([path]))


def _offer_docker_prune(
    cfg: RancherConfig, yes: bool = False, question: str = "Prune unused Docker containers, images and networks?",
) -> None:
    if cfg.auto_docker_prune or yes or typer.confirm(question):
        volumes = cfg.prune_docker_volumes or (not yes and typer.confirm("Also prune unused volumes?"))
        prune_docker(volumes=volumes)


@app.command()
def cleanup(
    config_dir: Path = CONFIG_DIR_OPTION,
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Prune Docker resources and optionally purge Rancher state."""
    cfg = _rancher_config(config_dir)
    _offer_docker_prune(cfg, yes)
    state_dir = Path(cfg.state_dir)
    if cfg.auto_state_purge or (not yes and typer.confirm(f"Purge Rancher state under {state_dir}?")):
        purge_rancher_state(state_dir)


@app.command()
def register(
    name: str = typer.Argument(DEFAULT_RANCHER_CLUSTER_NAME, help="Cluster name in Rancher"),
    config_dir: Path = CONFIG_DIR_OPTION,
    reuse_existing: bool = typer.Option(
        False, "--reuse-existing", help="Reuse a Rancher cluster object with the same name"),
    wait: bool = typer.Option(
        True, "--wait/--no-wait", help="Start the Rancher container if needed and wait for its API"),
) -> None:
    """Register the current kube context with Rancher.

    Docker artifacts left over from the registration are pruned afterwards,
    following the same auto-prune settings as ``cleanup``.
    """
    cfg = _rancher_config(config_dir)
    if wait and cfg.is_configured:
        if not rancher_running(cfg):
            console.print("[yellow]   Rancher container not running; starting it[/yellow]")
            rancher_up(cfg)
        wait_for_rancher(RancherClient(cfg), cfg)
    result = register_cluster(cfg, name, reuse_existing=reuse_existing)
    if not result.ok:
        raise typer.Exit(code=1)
    console.print(f"   Cluster ID: {result.session.cluster_id}")
    _offer_docker_prune(cfg, question="Prune unused Docker containers, images and networks after registration?")


@app.command()
def deregister(
    name: str = typer.Argument(DEFAULT_RANCHER_CLUSTER_NAME, help="Cluster name in Rancher"),
    config_dir: Path = CONFIG_DIR_OPTION,
) -> None:
    """Remove a cluster object from Rancher."""
    if not deregister_cluster(_rancher_config(config_dir), name):
        raise typer.Exit(code=1)
