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

"""Compliance lab subcommands (up, down, reset)."""

from __future__ import annotations

import typer

from lab_manager.components import install_lab_addons, select_addons, uninstall_lab_addons
from lab_manager.config import MeshConfig, warn_if_default_domain

app = typer.Typer(help="Install or remove the compliance lab add-ons.")


def _ingress_host(host: str | None) -> str:
    if host is not None:
        return host
    mesh_cfg = MeshConfig()
    warn_if_default_domain(mesh_cfg)
    return f"rancher.{mesh_cfg.domain}"


def _checked_addons(addon: list[str] | None) -> list[str] | None:
    if not addon:
        return None
    try:
        select_addons(addon)
    except KeyError as err:
        raise typer.BadParameter(err.args[0], param_hint="--addon") from err
    return addon


@app.command()
def up(
    addon: list[str] | None = typer.Option(None, "--addon", help="Install only this add-on (repeatable)"),
    host: str | None = typer.Option(None, "--host", help="Ingress host for charts that publish one"),
) -> None:
    """Install the compliance lab add-ons."""
    names = _checked_addons(addon)
    install_lab_addons(_ingress_host(host), names)


@app.command()
def down(
    addon: list[str] | None = typer.Option(None, "--addon", help="Remove only this add-on (repeatable)"),
) -> None:
    """Remove the compliance lab add-ons."""
    uninstall_lab_addons(_checked_addons(addon))


@app.command()
def reset(
    host: str | None = typer.Option(None, "--host", help="Ingress host for charts that publish one"),
) -> None:
    """Remove and reinstall the compliance lab."""
    uninstall_lab_addons()
    install_lab_addons(_ingress_host(host))
