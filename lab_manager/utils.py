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

"""Utility functions for kubectl, manifest loading, and command checks."""

from __future__ import annotations

import json
import subprocess
from pathlib import Path
from string import Template
from typing import Any

import sh
import yaml

from lab_manager.constants import KUBECTL_TIMEOUT_SECONDS, MANIFESTS_DIR
from lab_manager.errors import KubectlError


def require_command(cmd: str) -> None:
    """Check if a command exists on the system PATH.

    Args:
        cmd: Name of the CLI command to check.

    Raises:
        RuntimeError: If the command is not found.
    """
    try:
        sh.which(cmd)
    except sh.ErrorReturnCode as err:
        raise RuntimeError(f"Required command '{cmd}' not found. Please install it first.") from err


def run_kubectl(
    args: list[str],
    timeout: int = KUBECTL_TIMEOUT_SECONDS,
    input: str | None = None,
) -> tuple[bool, str, str]:
    """Run a kubectl command via subprocess and return (success, stdout, stderr).

    Args:
        args: kubectl arguments (e.g. ``["get", "pods", "-n", "default"]``).
        timeout: Maximum seconds to wait for the command to complete.
        input: Text to feed on stdin, e.g. a manifest for ``apply -f -``.

    Returns:
        Tuple of (success, stdout, stderr).
    """
    try:
        result = subprocess.run(
            ["kubectl", *args],
            capture_output=True,
            text=True,
            timeout=timeout,
            input=input,
        )
        return result.returncode == 0, result.stdout, result.stderr
    except (subprocess.SubprocessError, OSError) as exc:
        return False, "", str(exc)


def kubectl_get_json(args: list[str], timeout: int = KUBECTL_TIMEOUT_SECONDS) -> dict:
    """Run ``kubectl get ... -o json`` and parse the result.

    Args:
        args: Arguments following ``get``.
        timeout: Maximum seconds to wait for kubectl.

    Returns:
        Parsed JSON object.

    Raises:
        KubectlError: If kubectl fails or prints something other than JSON.
    """
    full_args = ["get", *args, "-o", "json"]
    ok, stdout, stderr = run_kubectl(full_args, timeout=timeout)
    if not ok:
        raise KubectlError(full_args, stderr)
    try:
        return json.loads(stdout)
    except json.JSONDecodeError as err:
        raise KubectlError(full_args, f"invalid JSON output: {err}") from err


def dump_manifests(documents: list[dict[str, Any]]) -> str:
    """Serialize manifests as a multi-document YAML stream."""
    return "---\n".join(yaml.safe_dump(doc, default_flow_style=False, sort_keys=False) for doc in documents)


def kubectl_apply(documents: list[dict[str, Any]] | str, timeout: int = KUBECTL_TIMEOUT_SECONDS) -> tuple[bool, str, str]:
    """Pipe manifests into ``kubectl apply -f -``.

    Args:
        documents: Manifest dictionaries, or an already-rendered YAML stream.
        timeout: Maximum seconds to wait for kubectl.

    Returns:
        Tuple of (success, stdout, stderr).
    """
    text = documents if isinstance(documents, str) else dump_manifests(documents)
    return run_kubectl(["apply", "-f", "-"], timeout=timeout, input=text)


def kubectl_resource_exists(args: list[str]) -> bool:
    """Return True if ``kubectl get <args>`` finds the resource."""
    ok, _, _ = run_kubectl(["get", *args])
    return ok


def render_manifest(name: str, **values: str) -> str:
    """Read a bundled manifest and substitute ``${VAR}`` placeholders.

    Args:
        name: File name under the bundled manifests directory.
        **values: Placeholder values.

    Returns:
        Rendered YAML text.
    """
    return Template((MANIFESTS_DIR / name).read_text()).substitute(values)


def bundled_manifest_path(name: str) -> Path:
    return MANIFESTS_DIR / name
