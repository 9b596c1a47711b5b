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

"""Local Rancher server container lifecycle and host cleanup."""

from __future__ import annotations

import shutil
from pathlib import Path

import docker
from rich.panel import Panel

from lab_manager import console, logger
from lab_manager.config import RancherConfig
from lab_manager.constants import RANCHER_CONTAINER_PORTS, RANCHER_SSL_MOUNT

RANCHER_IMAGE_REPO = "rancher/rancher"


def _get_container(client: docker.DockerClient, name: str):
    try:
        return client.containers.get(name)
    except docker.errors.NotFound:
        return None


def rancher_running(cfg: RancherConfig) -> bool:
    """Return True if the configured Rancher container is running."""
    client = docker.from_env()
    try:
        container = _get_container(client, cfg.container_name)
        return container is not None and container.status == "running"
    finally:
        client.close()


def rancher_up(cfg: RancherConfig) -> None:
    """Start the Rancher server container unless it is already running.

    A stopped container with the same name is removed first.

    Args:
        cfg: Rancher config with container name, image, and certificate paths.
    """
    console.print(Panel.fit("Starting Rancher container", style="bold blue"))
    client = docker.from_env()
    try:
        container = _get_container(client, cfg.container_name)
        if container is not None and container.status == "running":
            console.print(f"[green]\u2705 Rancher container '{cfg.container_name}' is already running[/green]")
            return
        if container is not None:
            console.print(f"[yellow]   Removing existing {container.status} Rancher container[/yellow]")
            container.remove()

        cert_file, key_file, ca_file = cfg.cert_paths()
        client.containers.run(
            cfg.image,
            name=cfg.container_name,
            detach=True,
            privileged=True,
            restart_policy={"Name": "unless-stopped"},
            ports=RANCHER_CONTAINER_PORTS,
            volumes={
                cert_file: {"bind": f"{RANCHER_SSL_MOUNT}/cert.pem", "mode": "ro"},
                key_file: {"bind": f"{RANCHER_SSL_MOUNT}/key.pem", "mode": "ro"},
                ca_file: {"bind": f"{RANCHER_SSL_MOUNT}/cacerts.pem", "mode": "ro"},
            },
        )
    finally:
        client.close()
    console.print(f"[green]\u2705 Rancher container '{cfg.container_name}' started[/green]")
    console.print("[yellow]   It may take a few minutes to become available.[/yellow]")


def rancher_down(cfg: RancherConfig) -> bool:
    """Stop and remove the Rancher container.

    Returns:
        True if a container was removed, False if none existed.
    """
    console.print(Panel.fit("Stopping Rancher container", style="bold blue"))
    client = docker.from_env()
    try:
        container = _get_container(client, cfg.container_name)
        if container is None:
            console.print(f"[yellow]\u26a0\ufe0f  Rancher container '{cfg.container_name}' not found[/yellow]")
            return False
        container.stop()
        container.remove()
    finally:
        client.close()
    console.print(f"[green]\u2705 Rancher container '{cfg.container_name}' removed[/green]")
    return True


def _layers_size(client: docker.DockerClient) -> str:
    size = client.df().get("LayersSize") or 0
    return f"{size / (1024 ** 3):.2f} GiB"


def prune_docker(volumes: bool = False) -> None:
    """Prune stopped containers, unused images and networks, and Rancher images.

    Args:
        volumes: Also prune unused volumes.
    """
    console.print(Panel.fit("Pruning Docker resources", style="bold blue"))
    client = docker.from_env()
    try:
        console.print(f"[yellow]   Image layers before cleanup: {_layers_size(client)}[/yellow]")
        client.containers.prune()
        client.images.prune(filters={"dangling": False})
        client.networks.prune()
        if volumes:
            console.print("[yellow]   Pruning unused volumes...[/yellow]")
            client.volumes.prune()
        for image in client.images.list(name=RANCHER_IMAGE_REPO):
            try:
                client.images.remove(image.id, force=True)
            except docker.errors.APIError as err:
                logger.warning("Could not remove image %s: %s", image.id[:19], err)
        console.print(f"[yellow]   Image layers after cleanup: {_layers_size(client)}[/yellow]")
    finally:
        client.close()
    console.print("[green]\u2705 Docker cleanup complete[/green]")


def purge_rancher_state(state_dir: Path) -> bool:
    """Delete everything under the Rancher state directory, keeping the directory.

    Returns:
        False if the directory does not exist, True after purging.

    Raises:
        RuntimeError: If the contents cannot be removed.
    """
    if not state_dir.is_dir():
        console.print(f"[yellow]   Rancher directory '{state_dir}' not found; skipping.[/yellow]")
        return False
    console.print(f"[yellow]\u2139\ufe0f  Purging contents of {state_dir}...[/yellow]")
    try:
        for child in state_dir.iterdir():
            if child.is_dir() and not child.is_symlink():
                shutil.rmtree(child)
            else:
                child.unlink()
    except PermissionError as err:
        raise RuntimeError(f"Permission denied purging {state_dir}; re-run with sufficient privileges") from err
    console.print(f"[green]\u2705 Purged {state_dir}[/green]")
    return True
