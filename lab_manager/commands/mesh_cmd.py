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

"""Mesh subcommands (sail-up, istio-up, tls-up, regions-up, gateway-up, validate)."""

from __future__ import annotations

from pathlib import Path

import typer

from lab_manager.components import (
    apply_gateway,
    create_tls_secret,
    deploy_istio,
    install_sail_operator,
    print_checks,
    setup_regions,
    validate_environment,
)
from lab_manager.config import MeshConfig, display_mesh_config, warn_if_default_domain
from lab_manager.utils import require_command

app = typer.Typer(help="Bring up the Istio service mesh and regions.")


def _mesh_config(domain: str | None = None) -> MeshConfig:
    mesh_cfg = MeshConfig()
    if domain is not None:
        mesh_cfg = mesh_cfg.model_copy(update={"ingress_domain": domain})
    warn_if_default_domain(mesh_cfg)
    return mesh_cfg


@app.command("sail-up")
def sail_up() -> None:
    """Install the Sail operator."""
    install_sail_operator()


@app.command("istio-up")
def istio_up(
    manifest: Path | None = typer.Option(None, "--manifest", help="Istio CR manifest to apply"),
) -> None:
    """Deploy Istio through the Sail operator."""
    deploy_istio(_mesh_config(), manifest)


@app.command("tls-up")
def tls_up(
    domain: str | None = typer.Option(None, "--domain", help="Ingress domain (overrides LAB_INGRESS_DOMAIN)"),
) -> None:
    """Create the wildcard TLS secret for the ingress domain."""
    require_command("openssl")
    mesh_cfg = _mesh_config(domain)
    display_mesh_config(mesh_cfg)
    create_tls_secret(mesh_cfg)


@app.command("regions-up")
def regions_up() -> None:
    """Create region namespaces with labels and baseline policies."""
    setup_regions(_mesh_config())


@app.command("gateway-up")
def gateway_up(
    domain: str | None = typer.Option(None, "--domain", help="Ingress domain (overrides LAB_INGRESS_DOMAIN)"),
) -> None:
    """Apply the wildcard HTTPS gateway."""
    apply_gateway(_mesh_config(domain))


@app.command()
def validate() -> None:
    """Check that the mesh, regions, and gateway are in place."""
    if not print_checks(validate_environment(_mesh_config())):
        raise typer.Exit(code=1)
