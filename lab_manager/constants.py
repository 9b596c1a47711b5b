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

"""Constants, add-on catalog loading, and the addon_value helper."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

# -- Resolved paths --
PACKAGE_DIR = Path(__file__).resolve().parent
MANIFESTS_DIR = PACKAGE_DIR / "manifests"


def load_addons() -> dict:
    """Load the lab add-on catalog from addons.yaml.

    Returns:
        Parsed YAML content as a nested dictionary.
    """
    with open(PACKAGE_DIR / "addons.yaml") as f:
        return yaml.safe_load(f)


ADDONS = load_addons()


def addon_value(*keys: str, default: Any = None) -> Any:
    """Safely traverse the ADDONS dict by key path.

    Args:
        *keys: Sequence of dictionary keys to traverse.
        default: Value to return if any key is missing.

    Returns:
        The value at the nested key path, or *default* if not found.
    """
    node = ADDONS
    for key in keys:
        if not isinstance(node, dict):
            return default
        node = node.get(key)
        if node is None:
            return default
    return node


# -- Routing labels --
LABEL_ROUTING_ENABLED = "compliance.routing/enabled"
LABEL_ROUTING_HOST = "compliance.routing/host"
LABEL_ROUTING_PORT = "compliance.routing/port"
LABEL_REGION = "compliance.region"
LABEL_ISTIO_INJECTION = "istio-injection"
LABEL_MANAGED_BY = "app.kubernetes.io/managed-by"
MANAGED_BY_VALUE = "lab-manager"
ROUTE_NAME_PREFIX = "route-"

# -- Istio resources --
ISTIO_NETWORKING_API = "networking.istio.io/v1beta1"
CRD_PEER_AUTHENTICATION = "peerauthentications.security.istio.io"
DEPLOY_ISTIOD = "istiod"
DEPLOY_INGRESS_GATEWAY = "istio-ingressgateway"
INGRESS_GATEWAY_SELECTOR = {"istio": "ingressgateway"}

# -- Namespaces --
NS_ISTIO_SYSTEM = "istio-system"
NS_SAIL_OPERATOR = "sail-operator"

# -- Sail operator --
HELM_REPO_SAIL = "sailoperator"
HELM_REPO_SAIL_URL = "https://istio-ecosystem.github.io/sail-operator"
HELM_CHART_SAIL = "sailoperator/sail-operator"
HELM_RELEASE_SAIL = "sail-operator"
DEPLOY_SAIL_OPERATOR = "sail-operator"

# -- Istio ingress gateway chart --
HELM_REPO_ISTIO = "istio"
HELM_REPO_ISTIO_URL = "https://istio-release.storage.googleapis.com/charts"
HELM_CHART_GATEWAY = "istio/gateway"
HELM_RELEASE_INGRESS = "istio-ingressgateway"

# -- Bundled manifests --
REL_ISTIO_MANIFEST = "istio-ambient.yaml"
REL_REGION_POLICIES = "region-policies.yaml"
REL_COMPLIANCE_SYSTEM = "compliance-system.yaml"

# -- Rollout timeouts --
ROLLOUT_TIMEOUT = "300s"
KUBECTL_TIMEOUT_SECONDS = 30
KUBECTL_LONG_TIMEOUT_SECONDS = 660

# -- k3d cluster defaults --
DEFAULT_CLUSTER_NAME = "enterprise-sim"
DEFAULT_AGENTS = 1
DEFAULT_HTTP_PORT = "80:80"
DEFAULT_HTTPS_PORT = "443:443"
DEFAULT_CLUSTER_TIMEOUT = "120s"

# -- Mesh defaults --
DEFAULT_INGRESS_DOMAIN = "localhost"
DEFAULT_REGIONS = ("region-us:us", "region-eu:eu", "region-ap:ap")
ENVIRONMENTS = ("local", "dev", "staging", "prod")
TLS_CERT_DAYS = 365
TLS_KEY_BITS = 2048

# -- Rancher API --
RANCHER_API_PREFIX = "/v3"
RANCHER_PUBLIC_PREFIX = "/v3-public"
RANCHER_PLACEHOLDER_URL = "your-rancher-url"
RANCHER_STATE_PROVISIONING = "provisioning"
DEFAULT_RANCHER_CLUSTER_NAME = "compliance-lab"
DEFAULT_RANCHER_REQUEST_TIMEOUT = 30
CLUSTER_POLL_INTERVAL_SECONDS = 5
CLUSTER_POLL_MAX_ATTEMPTS = 12
MANIFEST_POLL_INTERVAL_SECONDS = 5
MANIFEST_POLL_MAX_ATTEMPTS = 60
API_READY_POLL_INTERVAL_SECONDS = 5
API_READY_MAX_ATTEMPTS = 60

# -- Rancher container --
DEFAULT_RANCHER_CONTAINER = "rancher"
DEFAULT_RANCHER_IMAGE = "rancher/rancher:latest"
DEFAULT_RANCHER_STATE_DIR = "/var/lib/rancher"
DEFAULT_CERT_DIR = "/etc/ssl"
RANCHER_CONTAINER_PORTS = {"80/tcp": 8080, "443/tcp": 8443}
RANCHER_SSL_MOUNT = "/etc/rancher/ssl"

# -- Rancher config files --
DEFAULT_CONFIG_DIR = "config"
RANCHER_CONFIG_PREFIX = "rancher"
