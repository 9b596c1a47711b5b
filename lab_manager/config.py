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

"""Configuration classes, config-file resolution, and config display."""

from __future__ import annotations

import re
import socket
from fnmatch import fnmatch
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from rich.panel import Panel

from lab_manager import console, logger
from lab_manager.constants import (
    API_READY_MAX_ATTEMPTS,
    API_READY_POLL_INTERVAL_SECONDS,
    CLUSTER_POLL_INTERVAL_SECONDS,
    CLUSTER_POLL_MAX_ATTEMPTS,
    DEFAULT_AGENTS,
    DEFAULT_CERT_DIR,
    DEFAULT_CLUSTER_NAME,
    DEFAULT_CLUSTER_TIMEOUT,
    DEFAULT_CONFIG_DIR,
    DEFAULT_HTTP_PORT,
    DEFAULT_HTTPS_PORT,
    DEFAULT_INGRESS_DOMAIN,
    DEFAULT_RANCHER_CONTAINER,
    DEFAULT_RANCHER_IMAGE,
    DEFAULT_RANCHER_REQUEST_TIMEOUT,
    DEFAULT_RANCHER_STATE_DIR,
    DEFAULT_REGIONS,
    ENVIRONMENTS,
    MANIFEST_POLL_INTERVAL_SECONDS,
    MANIFEST_POLL_MAX_ATTEMPTS,
    NS_ISTIO_SYSTEM,
    RANCHER_CONFIG_PREFIX,
    RANCHER_PLACEHOLDER_URL,
)
from lab_manager.errors import ConfigurationError


# ============================================================================
# Configuration classes
# ============================================================================

class ClusterConfig(BaseSettings):
    """k3d cluster configuration, auto-loaded from LAB_* env vars.

    Attributes:
        cluster_name: Name of the k3d cluster.
        agents: Number of agent nodes to create.
        http_port: Host-to-loadbalancer mapping for HTTP.
        https_port: Host-to-loadbalancer mapping for HTTPS.
        disable_traefik: Whether to disable the bundled Traefik ingress.
        timeout: k3d wait timeout.
    """

    model_config = SettingsConfigDict(env_prefix="LAB_", extra="ignore")

    cluster_name: str = DEFAULT_CLUSTER_NAME
    agents: int = Field(default=DEFAULT_AGENTS, ge=0, le=20)
    http_port: str = Field(default=DEFAULT_HTTP_PORT, pattern=r"^\d+:\d+$")
    https_port: str = Field(default=DEFAULT_HTTPS_PORT, pattern=r"^\d+:\d+$")
    disable_traefik: bool = True
    timeout: str = DEFAULT_CLUSTER_TIMEOUT


class MeshConfig(BaseSettings):
    """Ingress domain, gateway, and region settings, auto-loaded from LAB_* env vars.

    Blank name fields are derived from the environment, which is in turn
    derived from the ingress domain.

    Attributes:
        ingress_domain: Base domain for gateway and route hosts.
        environment: Environment hint (local, dev, staging, prod), or blank to derive.
        tls_secret_name: Wildcard TLS secret name, or blank for ``<env>-wildcard-tls``.
        gateway_name: Shared gateway name, or blank for ``<env>-sim-gateway``.
        gateway_namespace: Namespace holding the gateway and its TLS secret.
        regions: Region namespaces as ``namespace:region`` pairs.
    """

    model_config = SettingsConfigDict(env_prefix="LAB_", extra="ignore")

    ingress_domain: str = ""
    environment: str = ""
    tls_secret_name: str = ""
    gateway_name: str = ""
    gateway_namespace: str = NS_ISTIO_SYSTEM
    regions: list[str] = Field(default_factory=lambda: list(DEFAULT_REGIONS))

    @property
    def domain(self) -> str:
        return self.ingress_domain or DEFAULT_INGRESS_DOMAIN

    @property
    def env(self) -> str:
        return self.environment or derive_environment(self.ingress_domain)

    @property
    def tls_secret(self) -> str:
        return self.tls_secret_name or f"{self.env}-wildcard-tls"

    @property
    def gateway(self) -> str:
        return self.gateway_name or f"{self.env}-sim-gateway"

    @property
    def gateway_ref(self) -> str:
        """Gateway reference as used by routes in other namespaces."""
        return f"{self.gateway_namespace}/{self.gateway}"

    @property
    def region_bindings(self) -> list[tuple[str, str]]:
        """Parse ``regions`` into (namespace, region) pairs.

        Raises:
            ConfigurationError: If an entry is not ``namespace:region``.
        """
        bindings = []
        for entry in self.regions:
            ns, sep, region = entry.partition(":")
            if not sep or not ns or not region:
                raise ConfigurationError(f"Invalid region entry '{entry}', expected namespace:region")
            bindings.append((ns, region))
        return bindings


class RancherConfig(BaseSettings):
    """Rancher control-plane settings, auto-loaded from RANCHER_* env vars.

    Attributes:
        url: Base URL of the Rancher server.
        bearer_token: API token sent as a bearer credential.
        verify_tls: Whether to verify the server certificate.
        request_timeout: Per-request timeout in seconds.
        cluster_poll_interval: Seconds between cluster-state polls.
        cluster_poll_attempts: Maximum cluster-state polls.
        manifest_poll_interval: Seconds between manifest-URL polls.
        manifest_poll_attempts: Maximum manifest-URL polls.
        api_ready_poll_interval: Seconds between API availability checks.
        api_ready_attempts: Maximum API availability checks.
        container_name: Name of the local Rancher container.
        image: Rancher server image.
        state_dir: Host directory holding Rancher state.
        cert_dir: Host directory holding the server certificates.
        cert_file: Server certificate path, or blank for the default under cert_dir.
        key_file: Server key path, or blank for the default under cert_dir.
        ca_file: CA bundle path, or blank for the default under cert_dir.
        auto_docker_prune: Prune Docker artifacts during teardown without asking.
        prune_docker_volumes: Also prune volumes when pruning.
        auto_state_purge: Purge state_dir during cleanup without asking.
    """

    model_config = SettingsConfigDict(env_prefix="RANCHER_", extra="ignore")

    url: str = ""
    bearer_token: str = ""
    verify_tls: bool = False
    request_timeout: int = Field(default=DEFAULT_RANCHER_REQUEST_TIMEOUT, ge=1)
    cluster_poll_interval: float = Field(default=CLUSTER_POLL_INTERVAL_SECONDS, ge=0)
    cluster_poll_attempts: int = Field(default=CLUSTER_POLL_MAX_ATTEMPTS, ge=1)
    manifest_poll_interval: float = Field(default=MANIFEST_POLL_INTERVAL_SECONDS, ge=0)
    manifest_poll_attempts: int = Field(default=MANIFEST_POLL_MAX_ATTEMPTS, ge=1)
    api_ready_poll_interval: float = Field(default=API_READY_POLL_INTERVAL_SECONDS, ge=0)
    api_ready_attempts: int = Field(default=API_READY_MAX_ATTEMPTS, ge=1)
    container_name: str = DEFAULT_RANCHER_CONTAINER
    image: str = DEFAULT_RANCHER_IMAGE
    state_dir: str = DEFAULT_RANCHER_STATE_DIR
    cert_dir: str = DEFAULT_CERT_DIR
    cert_file: str = ""
    key_file: str = ""
    ca_file: str = ""
    auto_docker_prune: bool = False
    prune_docker_volumes: bool = False
    auto_state_purge: bool = False

    @property
    def is_configured(self) -> bool:
        return bool(self.url and self.bearer_token and RANCHER_PLACEHOLDER_URL not in self.url)

    @property
    def api_url(self) -> str:
        return self.url.rstrip("/")

    def cert_paths(self) -> tuple[str, str, str]:
        """Return (cert, key, ca) host paths, defaulting under cert_dir."""
        base = Path(self.cert_dir)
        return (
            self.cert_file or str(base / "tls.crt.pem"),
            self.key_file or str(base / "tls.key.pem"),
            self.ca_file or str(base / "ca-bundle.pem"),
        )

    def require_configured(self) -> None:
        """Raise if the endpoint or credential is missing.

        Raises:
            ConfigurationError: If URL or bearer token is absent or a placeholder.
        """
        if not self.is_configured:
            raise ConfigurationError(
                "Rancher API details are not configured. Run 'lab-manager rancher configure' first."
            )


# ============================================================================
# Environment derivation
# ============================================================================

_DOMAIN_ENV_PATTERNS: list[tuple[str, tuple[str, ...]]] = [
    ("prod", ("prod.*", "*.prod.*", "prod")),
    ("staging", ("staging.*", "*.staging.*", "stage", "staging")),
    ("dev", ("dev.*", "*.dev.*", "dev")),
    ("local", ("local.*", "*.local.*", "local")),
]


def derive_environment(ingress_domain: str) -> str:
    """Derive the environment name from an ingress domain.

    Args:
        ingress_domain: Base ingress domain (may be blank).

    Returns:
        One of ``local``, ``dev``, ``staging``, ``prod``; ``dev`` when nothing matches.
    """
    for env, patterns in _DOMAIN_ENV_PATTERNS:
        if any(fnmatch(ingress_domain, p) for p in patterns):
            return env
    return "dev"


def environment_from_hostname(hostname: str) -> str:
    """Guess the environment from the host name."""
    if re.match(r"^(localhost|.*\.local)$", hostname):
        return "local"
    if "dev" in hostname:
        return "dev"
    if re.search(r"stage|staging", hostname):
        return "staging"
    if re.search(r"prod|production", hostname):
        return "prod"
    return "dev"


def rancher_config_path(config_dir: Path, env: str) -> Path:
    return config_dir / f"{RANCHER_CONFIG_PREFIX}.{env}"


def detect_environment(config_dir: Path = Path(DEFAULT_CONFIG_DIR), hostname: str | None = None) -> str:
    """Pick the environment whose config file exists, else guess from the host name.

    Args:
        config_dir: Directory holding ``rancher.<env>`` files.
        hostname: Host name override, or None to use the local host name.

    Returns:
        The environment name.
    """
    for env in ENVIRONMENTS:
        if rancher_config_path(config_dir, env).is_file():
            return env
    return environment_from_hostname(hostname if hostname is not None else socket.gethostname())


# ============================================================================
# Config resolution
# ============================================================================

def rancher_config_candidates(
    config_dir: Path = Path(DEFAULT_CONFIG_DIR),
    hostname: str | None = None,
) -> list[Path]:
    """List candidate Rancher config files in resolution order.

    Explicit environment files come first in ``local, dev, staging, prod``
    order; the host-name-derived environment is appended when it is not
    already listed ahead of the others.

    Args:
        config_dir: Directory holding ``rancher.<env>`` files.
        hostname: Host name override, or None to use the local host name.

    Returns:
        Ordered list of candidate paths. Paths need not exist.
    """
    candidates = [rancher_config_path(config_dir, env) for env in ENVIRONMENTS]
    guessed = rancher_config_path(
        config_dir, environment_from_hostname(hostname if hostname is not None else socket.gethostname())
    )
    if guessed not in candidates:
        candidates.append(guessed)
    return candidates


def resolve_rancher_config(candidates: list[Path]) -> RancherConfig:
    """Return the first fully-populated Rancher config among the candidates.

    Resolution priority per candidate: RANCHER_* environment variables >
    values in the candidate file > defaults.

    Args:
        candidates: Ordered candidate env files; missing files are skipped.

    Returns:
        The first configured RancherConfig, or the environment-only config
        when no candidate yields both a URL and a token.
    """
    for path in candidates:
        if not path.is_file():
            continue
        cfg = RancherConfig(_env_file=path)
        if cfg.is_configured:
            logger.debug("Rancher config resolved from %s", path)
            return cfg
        logger.debug("Rancher config %s is incomplete; trying next candidate", path)
    return RancherConfig()


def write_rancher_env(path: Path, cfg: RancherConfig, url: str, token: str) -> None:
    """Persist the Rancher endpoint and credential in dotenv format.

    Args:
        path: Destination file; parent directories are created.
        cfg: Current config supplying the certificate paths to record.
        url: Rancher server URL.
        token: Bearer token to store.
    """
    cert_file, key_file, ca_file = cfg.cert_paths()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        "# Rancher API Configuration\n"
        f'export RANCHER_URL="{url}"\n'
        f'export RANCHER_BEARER_TOKEN="{token}"\n'
        "\n"
        "# SSL certificates on the host (used by the Rancher container)\n"
        f'export RANCHER_CERT_DIR="{cfg.cert_dir}"\n'
        f'export RANCHER_CERT_FILE="{cert_file}"\n'
        f'export RANCHER_KEY_FILE="{key_file}"\n'
        f'export RANCHER_CA_FILE="{ca_file}"\n'
    )
    path.chmod(0o600)


# ============================================================================
# Display
# ============================================================================

def warn_if_default_domain(mesh_cfg: MeshConfig) -> None:
    if not mesh_cfg.ingress_domain:
        logger.warning("LAB_INGRESS_DOMAIN not set; defaulting to '%s' for local testing", DEFAULT_INGRESS_DOMAIN)


def display_mesh_config(mesh_cfg: MeshConfig) -> None:
    """Print the resolved mesh settings."""
    console.print(Panel.fit("Configuration", style="bold blue"))
    console.print("[yellow]Mesh:[/yellow]")
    console.print(f"  ingress_domain  : {mesh_cfg.domain}")
    console.print(f"  environment     : {mesh_cfg.env}")
    console.print(f"  gateway         : {mesh_cfg.gateway_ref}")
    console.print(f"  tls_secret      : {mesh_cfg.tls_secret}")


def display_rancher_config(cfg: RancherConfig) -> None:
    """Print the resolved Rancher settings with the token masked."""
    token = cfg.bearer_token
    masked = f"{token[:6]}...{token[-4:]}" if len(token) > 12 else ("***" if token else "(unset)")
    console.print(Panel.fit("Configuration", style="bold blue"))
    console.print("[yellow]Rancher:[/yellow]")
    console.print(f"  url             : {cfg.api_url or '(unset)'}")
    console.print(f"  bearer_token    : {masked}")
    console.print(f"  verify_tls      : {cfg.verify_tls}")
    console.print(f"  cluster poll    : {cfg.cluster_poll_attempts} x {cfg.cluster_poll_interval}s")
    console.print(f"  manifest poll   : {cfg.manifest_poll_attempts} x {cfg.manifest_poll_interval}s")
