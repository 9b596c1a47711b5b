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

"""Rancher management API client."""

from __future__ import annotations

import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

import requests

from lab_manager import console, logger
from lab_manager.config import RancherConfig, write_rancher_env
from lab_manager.constants import RANCHER_API_PREFIX, RANCHER_PUBLIC_PREFIX
from lab_manager.errors import ConnectivityError
from lab_manager.polling import poll


class RancherClient:
    """Thin wrapper over the Rancher v3 API.

    Non-2xx responses and transport failures raise ConnectivityError.
    """

    def __init__(self, cfg: RancherConfig, session: requests.Session | None = None) -> None:
        self.base_url = cfg.api_url
        self.timeout = cfg.request_timeout
        self.session = session or requests.Session()
        self.session.verify = cfg.verify_tls
        self.session.headers.update({"Content-Type": "application/json"})
        if cfg.bearer_token:
            self.session.headers.update({"Authorization": f"Bearer {cfg.bearer_token}"})

    # -- plumbing --

    def _send(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        try:
            return self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as err:
            raise ConnectivityError(f"{method} {url} failed: {err}") from err

    def _api(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        return self._send(method, f"{self.base_url}{RANCHER_API_PREFIX}{path}", **kwargs)

    @staticmethod
    def _checked(resp: requests.Response, action: str) -> dict[str, Any]:
        if not 200 <= resp.status_code < 300:
            raise ConnectivityError(f"Failed to {action}", status=resp.status_code, body=resp.text)
        try:
            body = resp.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}

    # -- reachability --

    def is_reachable(self) -> bool:
        """Return True if the unauthenticated public endpoint answers 200."""
        try:
            resp = self._send("GET", f"{self.base_url}{RANCHER_PUBLIC_PREFIX}")
        except ConnectivityError:
            return False
        return resp.status_code == 200

    def token_is_valid(self) -> bool:
        try:
            resp = self._api("GET", "")
        except ConnectivityError:
            return False
        return resp.status_code == 200

    def check_access(self) -> None:
        """Verify the API is reachable and the bearer token is accepted.

        Raises:
            ConnectivityError: On transport failure or any status other than 200.
        """
        resp = self._api("GET", "")
        if resp.status_code != 200:
            raise ConnectivityError("Rancher API not reachable or token invalid", status=resp.status_code)

    # -- clusters --

    def create_cluster(self, name: str) -> dict[str, Any]:
        resp = self._api("POST", "/clusters", json={"type": "cluster", "name": name})
        return self._checked(resp, f"create cluster '{name}'")

    def get_cluster(self, cluster_id: str) -> dict[str, Any]:
        return self._checked(self._api("GET", f"/clusters/{cluster_id}"), f"get cluster {cluster_id}")

    def find_cluster(self, name: str) -> dict[str, Any] | None:
        """Look up a cluster object by name, returning None if absent."""
        body = self._checked(self._api("GET", "/clusters", params={"name": name}), f"look up cluster '{name}'")
        for item in body.get("data") or []:
            if item.get("name") == name and item.get("id"):
                return item
        return None

    def delete_cluster(self, cluster_id: str) -> None:
        self._checked(self._api("DELETE", f"/clusters/{cluster_id}"), f"delete cluster {cluster_id}")

    # -- registration tokens --

    def create_registration_token(self, cluster_id: str) -> dict[str, Any]:
        resp = self._api(
            "POST", "/clusterregistrationtokens",
            json={"type": "clusterRegistrationToken", "clusterId": cluster_id},
        )
        return self._checked(resp, "create cluster registration token")

    def get_registration_token(self, token_id: str) -> dict[str, Any]:
        resp = self._api("GET", f"/clusterregistrationtokens/{token_id}")
        return self._checked(resp, f"get registration token {token_id}")

    def list_registration_tokens(self, cluster_id: str) -> list[dict[str, Any]]:
        resp = self._api("GET", "/clusterregistrationtokens", params={"clusterId": cluster_id})
        return list(self._checked(resp, "list registration tokens").get("data") or [])

    def fetch_manifest(self, url: str) -> str:
        """Download a registration manifest from the URL the token advertised."""
        resp = self._send("GET", url, allow_redirects=True)
        if not 200 <= resp.status_code < 300:
            raise ConnectivityError("Failed to fetch registration manifest", status=resp.status_code, body=resp.text)
        return resp.text

    # -- credentials --

    def login(self, username: str, password: str) -> str:
        """Log in with a local user and return the session token.

        Raises:
            ConnectivityError: If the login is rejected or returns no token.
        """
        resp = self._send(
            "POST", f"{self.base_url}{RANCHER_PUBLIC_PREFIX}/localProviders/local",
            params={"action": "login"},
            json={"username": username, "password": password},
            headers={"Authorization": None},
        )
        token = self._checked(resp, "authenticate to Rancher").get("token")
        if not token:
            raise ConnectivityError("Failed to authenticate to Rancher. Check URL and credentials", body=resp.text)
        return token

    def set_server_url(self, url: str, bearer: str) -> bool:
        resp = self._api(
            "PUT", "/settings/server-url",
            json={"name": "server-url", "value": url},
            headers={"Authorization": f"Bearer {bearer}"},
        )
        return 200 <= resp.status_code < 300

    def create_api_token(self, name: str, bearer: str) -> str:
        """Mint a non-expiring API token and return it as ``id:secret``."""
        resp = self._api(
            "POST", "/token",
            json={"type": "token", "name": name, "ttl": 0},
            headers={"Authorization": f"Bearer {bearer}"},
        )
        body = self._checked(resp, "create API token")
        token_id, secret = body.get("id"), body.get("token")
        if not token_id or not secret:
            raise ConnectivityError("Failed to create API token", body=resp.text)
        return f"{token_id}:{secret}"


def wait_for_rancher(
    client: RancherClient,
    cfg: RancherConfig,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    """Block until the Rancher public endpoint answers, within the configured bound.

    Raises:
        PollTimeoutError: If the API is still unreachable after the last attempt.
    """
    console.print(f"[yellow]\u2139\ufe0f  Waiting for Rancher API at {client.base_url}...[/yellow]")
    result = poll(
        client.is_reachable,
        interval=cfg.api_ready_poll_interval,
        max_attempts=cfg.api_ready_attempts,
        until=bool,
        on_wait=lambda n, _: logger.debug("Rancher API not reachable yet (%d/%d)", n, cfg.api_ready_attempts),
        sleep=sleep,
    )
    result.unwrap(
        f"Rancher API not reachable at {client.base_url} after "
        f"{cfg.api_ready_attempts * cfg.api_ready_poll_interval:.0f}s"
    )
    console.print("[green]\u2705 Rancher API is reachable[/green]")


def configure_rancher(
    cfg: RancherConfig,
    url: str,
    username: str,
    password: str,
    config_path: Path,
    client: RancherClient | None = None,
) -> str:
    """Obtain a long-lived API token and persist it to *config_path*.

    An existing token in *cfg* is kept when the server still accepts it;
    otherwise a session login mints a new non-expiring token.

    Args:
        cfg: Current Rancher config; its token is tried first.
        url: Rancher server URL to configure.
        username: Local admin user name.
        password: Local admin password.
        config_path: Env file to write.
        client: API client override, built from *url* when omitted.

    Returns:
        The bearer token that was saved.

    Raises:
        ConnectivityError: If Rancher is unreachable or rejects the login.
    """
    cfg = cfg.model_copy(update={"url": url})
    client = client or RancherClient(cfg)
    console.print("[yellow]\u2139\ufe0f  Checking Rancher API reachability...[/yellow]")
    if not client.is_reachable():
        raise ConnectivityError(f"Unable to reach Rancher at {url}. Ensure Rancher is running and accessible")

    if cfg.bearer_token and client.token_is_valid():
        console.print("[green]  \u2713 Existing token is valid[/green]")
        write_rancher_env(config_path, cfg, url, cfg.bearer_token)
        console.print(f"[green]\u2705 Configuration saved to {config_path}[/green]")
        return cfg.bearer_token
    if cfg.bearer_token:
        console.print("[yellow]   Existing token is invalid or expired. Generating a new one...[/yellow]")

    console.print("[yellow]\u2139\ufe0f  Authenticating to Rancher...[/yellow]")
    session_token = client.login(username, password)

    if client.set_server_url(url, session_token):
        console.print(f"[green]  \u2713 server-url set to {url}[/green]")
    else:
        logger.warning("Failed to set Rancher server-url; continuing")

    token = client.create_api_token(f"lab-manager-{int(time.time())}", session_token)
    write_rancher_env(config_path, cfg, url, token)
    console.print(f"[green]\u2705 Configuration saved to {config_path}[/green]")
    return token
