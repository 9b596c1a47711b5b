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

"""Route reconciliation subcommand."""

from __future__ import annotations

import typer

from lab_manager.config import MeshConfig, warn_if_default_domain
from lab_manager.routes import print_summary, reconcile_routes

app = typer.Typer(help="Publish labeled services through the mesh gateway.")


@app.command()
def reconcile(
    dry_run: bool = typer.Option(False, "--dry-run", help="Compute routes without applying them"),
    domain: str | None = typer.Option(None, "--domain", help="Ingress domain (overrides LAB_INGRESS_DOMAIN)"),
) -> None:
    """Create or update one VirtualService per labeled Service."""
    mesh_cfg = MeshConfig()
    if domain is not None:
        mesh_cfg = mesh_cfg.model_copy(update={"ingress_domain": domain})
    warn_if_default_domain(mesh_cfg)
    summary = reconcile_routes(mesh_cfg, dry_run=dry_run)
    print_summary(summary)
    if not summary.ok:
        raise typer.Exit(code=1)
