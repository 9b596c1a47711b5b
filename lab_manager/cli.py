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

"""
cli.py - Unified CLI for the compliance lab.

Subcommands:
    cluster    k3d cluster lifecycle (up, down, status)
    mesh       Istio mesh bring-up (sail-up, istio-up, tls-up, regions-up, gateway-up, validate)
    lab        Compliance lab add-ons (up, down, reset)
    routes     Publish labeled Services through the gateway (reconcile)
    rancher    Rancher control plane (up, down, reset, configure, cleanup, register, deregister)

Examples:
    # Local cluster with mesh and regions
    lab-manager cluster up
    lab-manager mesh sail-up && lab-manager mesh istio-up
    LAB_INGRESS_DOMAIN=dev.example.com lab-manager mesh tls-up
    lab-manager mesh regions-up && lab-manager mesh gateway-up

    # Preview routes without applying
    lab-manager routes reconcile --dry-run

    # Register the current cluster with Rancher
    lab-manager rancher register compliance-lab

For detailed usage information, run: lab-manager --help
"""

from __future__ import annotations

import logging
import sys

import typer

from lab_manager import console
from lab_manager.commands import (
    cluster_cmd,
    lab_cmd,
    mesh_cmd,
    rancher_cmd,
    routes_cmd,
)

app = typer.Typer(
    help="Unified CLI for the compliance lab.",
    no_args_is_help=True,
)


@app.callback()
def _main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Initialize logging for all subcommands."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )


app.add_typer(cluster_cmd.app, name="cluster")
app.add_typer(mesh_cmd.app, name="mesh")
app.add_typer(lab_cmd.app, name="lab")
app.add_typer(routes_cmd.app, name="routes")
app.add_typer(rancher_cmd.app, name="rancher")


def main() -> None:
    try:
        app()
    except Exception as e:
        console.print(f"[red]\u274c {e}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
