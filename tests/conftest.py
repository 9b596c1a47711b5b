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
Shared pytest fixtures for lab-manager tests.

No test touches a real cluster, Docker daemon, or Rancher server:
collaborators are replaced with unittest.mock patches or the in-memory
fakes defined here, and poll intervals are zero.
"""

from __future__ import annotations

import os

import pytest

from lab_manager.config import MeshConfig, RancherConfig


@pytest.fixture(autouse=True)
def _isolate_settings_env(monkeypatch):
    """Drop LAB_* and RANCHER_* variables so settings only see what a test sets."""
    for key in list(os.environ):
        if key.startswith(("LAB_", "RANCHER_")):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def mesh_cfg() -> MeshConfig:
    return MeshConfig(ingress_domain="example.com")


@pytest.fixture
def rancher_cfg() -> RancherConfig:
    """A configured Rancher endpoint with zero poll intervals."""
    return RancherConfig(
        url="https://rancher.example.com",
        bearer_token="token-abc:secret",
        cluster_poll_interval=0,
        manifest_poll_interval=0,
        api_ready_poll_interval=0,
    )


def service_item(
    name: str,
    namespace: str,
    labels: dict | None = None,
    annotations: dict | None = None,
    ports: list[int] | None = None,
) -> dict:
    """Build a Service as returned by ``kubectl get services -o json``."""
    return {
        "metadata": {
            "name": name,
            "namespace": namespace,
            "labels": labels or {},
            "annotations": annotations or {},
        },
        "spec": {"ports": [{"port": p} for p in (ports or [])]},
    }


def namespace_item(name: str, region: str | None = None) -> dict:
    labels = {"compliance.region": region} if region else {}
    return {"metadata": {"name": name, "labels": labels}}


class FakeRancher:
    """In-memory stand-in for RancherClient.

    Attributes are plain lists and dicts so tests can script responses and
    inspect the calls that were made.
    """

    def __init__(self) -> None:
        self.access_error: Exception | None = None
        self.cluster_states: list[str | None] = ["active"]
        self.created: list[str] = []
        self.create_error: Exception | None = None
        self.create_response: dict = {"id": "c-abc12"}
        self.existing: dict[str, dict] = {}
        self.find_error: Exception | None = None
        self.token_create_error: Exception | None = None
        self.token_response: dict = {"id": "c-abc12:default-token"}
        self.token_urls: list[str | None] = ["https://rancher.example.com/v3/import/xyz.yaml"]
        self.token_lookup_error: Exception | None = None
        self.listed_tokens: list[dict] = []
        self.token_requests = 0
        self.token_lookups = 0
        self.manifest_text = "apiVersion: v1\nkind: Namespace\nmetadata:\n  name: cattle-system\n"
        self.manifest_error: Exception | None = None
        self.deleted: list[str] = []
        self.delete_error: Exception | None = None
        self.get_cluster_calls = 0

    def check_access(self) -> None:
        if self.access_error is not None:
            raise self.access_error

    def find_cluster(self, name: str) -> dict | None:
        if self.find_error is not None:
            raise self.find_error
        return self.existing.get(name)

    def create_cluster(self, name: str) -> dict:
        self.created.append(name)
        if self.create_error is not None:
            raise self.create_error
        return dict(self.create_response)

    def get_cluster(self, cluster_id: str) -> dict:
        self.get_cluster_calls += 1
        state = self.cluster_states.pop(0) if len(self.cluster_states) > 1 else self.cluster_states[0]
        if isinstance(state, Exception):
            raise state
        return {"id": cluster_id, "state": state}

    def create_registration_token(self, cluster_id: str) -> dict:
        self.token_requests += 1
        if self.token_create_error is not None:
            raise self.token_create_error
        return dict(self.token_response)

    def get_registration_token(self, token_id: str) -> dict:
        self.token_lookups += 1
        if self.token_lookup_error is not None:
            raise self.token_lookup_error
        url = self.token_urls.pop(0) if len(self.token_urls) > 1 else self.token_urls[0]
        return {"id": token_id, "manifestUrl": url}

    def list_registration_tokens(self, cluster_id: str) -> list[dict]:
        self.token_lookups += 1
        return list(self.listed_tokens)

    def fetch_manifest(self, url: str) -> str:
        if self.manifest_error is not None:
            raise self.manifest_error
        return self.manifest_text

    def delete_cluster(self, cluster_id: str) -> None:
        if self.delete_error is not None:
            raise self.delete_error
        self.deleted.append(cluster_id)


@pytest.fixture
def fake_rancher() -> FakeRancher:
    return FakeRancher()
