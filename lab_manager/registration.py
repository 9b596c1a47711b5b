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

"""Cluster registration with a Rancher control plane.

Registration walks a fixed sequence of states:

    UNCONFIGURED -> AUTHENTICATING_PRECHECK -> CLUSTER_CREATE_REQUESTED
    -> CLUSTER_PROVISIONING -> CLUSTER_READY -> TOKEN_REQUESTED
    -> TOKEN_MANIFEST_PENDING -> MANIFEST_APPLIED

Any unrecoverable condition moves the run to FAILED. Unlike route
reconciliation, registration is not idempotent: every run creates a new
remote cluster object unless ``reuse_existing`` is set.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from rich.panel import Panel

from lab_manager import console, logger
from lab_manager.config import RancherConfig
from lab_manager.constants import RANCHER_STATE_PROVISIONING
from lab_manager.errors import ConnectivityError, KubectlError, LabError, ManifestApplyError
from lab_manager.polling import poll
from lab_manager.rancher import RancherClient
from lab_manager.utils import kubectl_apply


class RegistrationState(str, Enum):
    UNCONFIGURED = "unconfigured"
    AUTHENTICATING_PRECHECK = "authenticating-precheck"
    CLUSTER_CREATE_REQUESTED = "cluster-create-requested"
    CLUSTER_PROVISIONING = "cluster-provisioning"
    CLUSTER_READY = "cluster-ready"
    TOKEN_REQUESTED = "token-requested"
    TOKEN_MANIFEST_PENDING = "token-manifest-pending"
    MANIFEST_APPLIED = "manifest-applied"
    FAILED = "failed"


@dataclass
class RegistrationSession:
    """Ephemeral state of one registration run. Never persisted.

    Attributes:
        cluster_name: Name of the cluster object in Rancher.
        cluster_id: Identifier assigned by Rancher.
        cluster_state: Last observed cluster state.
        token_id: Registration token identifier, if Rancher returned one.
        manifest_url: URL of the registration manifest.
        reused: Whether an existing cluster object was reused.
    """

    cluster_name: str
    cluster_id: str | None = None
    cluster_state: str | None = None
    token_id: str | None = None
    manifest_url: str | None = None
    reused: bool = False


@dataclass(frozen=True)
class RegistrationResult:
    ok: bool
    state: RegistrationState
    session: RegistrationSession
    message: str
    failed_at: RegistrationState | None = None
    error: LabError | None = None


def apply_manifest_text(text: str) -> None:
    """Apply a manifest stream to the current kube context.

    Raises:
        KubectlError: If kubectl rejects the manifest.
    """
    ok, _, stderr = kubectl_apply(text)
    if not ok:
        raise KubectlError(["apply", "-f", "-"], stderr)


def _cluster_ready(state: str | None) -> bool:
    return bool(state) and state != RANCHER_STATE_PROVISIONING


class ClusterRegistration:
    """One registration run against a Rancher server.

    Args:
        cfg: Rancher endpoint, credential, and poll bounds.
        cluster_name: Name for the remote cluster object.
        client: API client; built from *cfg* when omitted.
        apply_manifest: Applies the downloaded manifest locally.
        sleep: Sleep function used between polls.
        reuse_existing: Look the cluster up by name before creating one.
    """

    def __init__(
        self,
        cfg: RancherConfig,
        cluster_name: str,
        *,
        client: RancherClient | None = None,
        apply_manifest: Callable[[str], None] = apply_manifest_text,
        sleep: Callable[[float], None] = time.sleep,
        reuse_existing: bool = False,
    ) -> None:
        self.cfg = cfg
        self.client = client
        self.apply_manifest = apply_manifest
        self.sleep = sleep
        self.reuse_existing = reuse_existing
        self.state = RegistrationState.UNCONFIGURED
        self.session = RegistrationSession(cluster_name=cluster_name)

    def _enter(self, state: RegistrationState) -> None:
        logger.debug("registration %s: %s -> %s", self.session.cluster_name, self.state.value, state.value)
        self.state = state

    def run(self) -> RegistrationResult:
        """Drive the run to MANIFEST_APPLIED or FAILED.

        Returns:
            The result; ``failed_at`` names the state in which a failure occurred.
        """
        try:
            self._precheck()
            self._create_cluster()
            self._wait_cluster_ready()
            self._request_token()
            self._wait_manifest_url()
            self._apply_manifest()
        except LabError as err:
            failed_at = self.state
            self._enter(RegistrationState.FAILED)
            return RegistrationResult(
                ok=False,
                state=self.state,
                session=self.session,
                message=str(err),
                failed_at=failed_at,
                error=err,
            )
        return RegistrationResult(
            ok=True,
            state=self.state,
            session=self.session,
            message=(
                f"Cluster '{self.session.cluster_name}' registration initiated. "
                "It may take a few minutes for the cluster to become active in Rancher."
            ),
        )

    # -- steps --

    def _precheck(self) -> None:
        self.cfg.require_configured()
        if self.client is None:
            self.client = RancherClient(self.cfg)
        self._enter(RegistrationState.AUTHENTICATING_PRECHECK)
        console.print("[yellow]\u2139\ufe0f  Validating Rancher API and token...[/yellow]")
        self.client.check_access()

    def _create_cluster(self) -> None:
        self._enter(RegistrationState.CLUSTER_CREATE_REQUESTED)
        name = self.session.cluster_name
        if self.reuse_existing:
            existing = self.client.find_cluster(name)
            if existing is not None:
                self.session.cluster_id = existing["id"]
                self.session.reused = True
                console.print(f"[yellow]   Reusing existing cluster object {existing['id']}[/yellow]")
                return

        console.print(f"[yellow]\u2139\ufe0f  Creating cluster '{name}' in Rancher...[/yellow]")
        body = self.client.create_cluster(name)
        cluster_id = body.get("id")
        if not cluster_id:
            raise ConnectivityError(f"Rancher did not assign an id to cluster '{name}'", body=str(body))
        self.session.cluster_id = cluster_id
        console.print(f"[green]  \u2713 Cluster object created with ID: {cluster_id}[/green]")

    def _fetch_cluster_state(self) -> str | None:
        state = self.client.get_cluster(self.session.cluster_id).get("state") or None
        self.session.cluster_state = state
        return state

    def _wait_cluster_ready(self) -> None:
        self._enter(RegistrationState.CLUSTER_PROVISIONING)
        attempts = self.cfg.cluster_poll_attempts
        result = poll(
            self._fetch_cluster_state,
            interval=self.cfg.cluster_poll_interval,
            max_attempts=attempts,
            until=_cluster_ready,
            retry_on=(ConnectivityError,),
            on_wait=lambda n, _: logger.info("Waiting for cluster to finish provisioning... (%d/%d)", n, attempts),
            sleep=self.sleep,
        )
        state = result.unwrap(
            f"Cluster '{self.session.cluster_name}' did not become ready in Rancher after "
            f"{attempts * self.cfg.cluster_poll_interval:.0f}s"
        )
        self._enter(RegistrationState.CLUSTER_READY)
        console.print(f"[green]  \u2713 Cluster state is now '{state}'[/green]")

    def _request_token(self) -> None:
        self._enter(RegistrationState.TOKEN_REQUESTED)
        console.print("[yellow]\u2139\ufe0f  Generating registration token...[/yellow]")
        body = self.client.create_registration_token(self.session.cluster_id)
        self.session.token_id = body.get("id") or None

    def _fetch_manifest_url(self) -> str | None:
        url = None
        if self.session.token_id:
            try:
                url = self.client.get_registration_token(self.session.token_id).get("manifestUrl")
            except ConnectivityError as err:
                logger.debug("Direct token lookup failed, falling back to list: %s", err)
        if not url:
            for token in self.client.list_registration_tokens(self.session.cluster_id):
                if token.get("manifestUrl"):
                    url = token["manifestUrl"]
                    break
        self.session.manifest_url = url or None
        return self.session.manifest_url

    def _wait_manifest_url(self) -> None:
        self._enter(RegistrationState.TOKEN_MANIFEST_PENDING)
        attempts = self.cfg.manifest_poll_attempts
        result = poll(
            self._fetch_manifest_url,
            interval=self.cfg.manifest_poll_interval,
            max_attempts=attempts,
            until=bool,
            retry_on=(ConnectivityError,),
            on_wait=lambda n, _: logger.info("Waiting for manifest URL... (%d/%d)", n, attempts),
            sleep=self.sleep,
        )
        url = result.unwrap("Failed to generate registration token (manifestUrl not ready)")
        console.print(f"[green]  \u2713 Registration manifest URL obtained: {url}[/green]")

    def _apply_manifest(self) -> None:
        url = self.session.manifest_url
        console.print("[yellow]\u2139\ufe0f  Applying registration manifest to cluster...[/yellow]")
        try:
            text = self.client.fetch_manifest(url)
            self.apply_manifest(text)
        except (ConnectivityError, KubectlError) as err:
            raise ManifestApplyError(
                f"Failed to apply registration manifest from {url}: {err}. "
                f"Rancher cluster object {self.session.cluster_id} was left behind; "
                "run deregister to remove it.",
                cluster_id=self.session.cluster_id,
                manifest_url=url,
            ) from err
        self._enter(RegistrationState.MANIFEST_APPLIED)


def register_cluster(cfg: RancherConfig, cluster_name: str, **kwargs) -> RegistrationResult:
    """Register the current kube context with Rancher as *cluster_name*.

    Keyword arguments are passed to ClusterRegistration.
    """
    console.print(Panel.fit(f"Registering cluster '{cluster_name}' with Rancher", style="bold blue"))
    result = ClusterRegistration(cfg, cluster_name, **kwargs).run()
    if result.ok:
        console.print(f"[green]\u2705 {result.message}[/green]")
    else:
        console.print(f"[red]\u274c Registration failed during {result.failed_at.value}: {result.message}[/red]")
    return result


def deregister_cluster(cfg: RancherConfig, cluster_name: str, client: RancherClient | None = None) -> bool:
    """Remove the named cluster object from Rancher.

    A cluster that does not exist counts as already deregistered.

    Returns:
        True if the cluster is gone, False if the lookup or delete failed.

    Raises:
        ConfigurationError: If the endpoint or credential is missing.
    """
    cfg.require_configured()
    client = client or RancherClient(cfg)
    console.print(Panel.fit(f"Deregistering cluster '{cluster_name}' from Rancher", style="bold blue"))
    try:
        existing = client.find_cluster(cluster_name)
        if existing is None:
            console.print(f"[yellow]\u26a0\ufe0f  Cluster '{cluster_name}' not found in Rancher. Skipping.[/yellow]")
            return True
        console.print(f"[yellow]   Found cluster ID: {existing['id']}[/yellow]")
        client.delete_cluster(existing["id"])
    except ConnectivityError as err:
        console.print(f"[red]\u274c Failed to deregister cluster from Rancher: {err}[/red]")
        return False
    console.print("[green]\u2705 Cluster deregistration successful[/green]")
    return True
