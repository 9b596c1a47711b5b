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

"""Tests for the Rancher API client, availability wait, and configure flow."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
import requests

from lab_manager.config import RancherConfig, resolve_rancher_config
from lab_manager.errors import ConnectivityError, PollTimeoutError
from lab_manager.rancher import RancherClient, configure_rancher, wait_for_rancher


def _response(status: int = 200, body=None, text: str = "") -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    resp.text = text
    if body is None:
        resp.json.side_effect = ValueError("no json")
    else:
        resp.json.return_value = body
    return resp


@pytest.fixture
def session() -> MagicMock:
    mock_session = MagicMock()
    mock_session.headers = {}
    return mock_session


@pytest.fixture
def client(rancher_cfg, session) -> RancherClient:
    return RancherClient(rancher_cfg, session=session)


class TestRancherClient:
    """Tests for request construction and response handling."""

    def test_session_setup(self, client, session):
        assert session.headers["Authorization"] == "Bearer token-abc:secret"
        assert session.verify is False
        assert client.base_url == "https://rancher.example.com"

    def test_is_reachable(self, client, session):
        session.request.return_value = _response(200)
        assert client.is_reachable()
        session.request.assert_called_with(
            "GET", "https://rancher.example.com/v3-public", timeout=30,
        )

    def test_unreachable_on_transport_error(self, client, session):
        session.request.side_effect = requests.ConnectionError("refused")
        assert not client.is_reachable()

    def test_unreachable_on_non_200(self, client, session):
        session.request.return_value = _response(503)
        assert not client.is_reachable()

    def test_check_access_rejects_bad_token(self, client, session):
        session.request.return_value = _response(401)
        with pytest.raises(ConnectivityError) as exc_info:
            client.check_access()
        assert exc_info.value.status == 401

    def test_create_cluster(self, client, session):
        session.request.return_value = _response(201, {"id": "c-abc12", "name": "lab"})

        body = client.create_cluster("lab")

        assert body["id"] == "c-abc12"
        args, kwargs = session.request.call_args
        assert args == ("POST", "https://rancher.example.com/v3/clusters")
        assert kwargs["json"] == {"type": "cluster", "name": "lab"}

    def test_error_status_carries_body(self, client, session):
        session.request.return_value = _response(422, text='{"code":"NotUnique"}')
        with pytest.raises(ConnectivityError) as exc_info:
            client.create_cluster("lab")
        assert exc_info.value.status == 422
        assert "NotUnique" in str(exc_info.value)

    def test_transport_error_becomes_connectivity_error(self, client, session):
        session.request.side_effect = requests.Timeout("read timed out")
        with pytest.raises(ConnectivityError):
            client.get_cluster("c-abc12")

    def test_find_cluster_matches_exact_name(self, client, session):
        session.request.return_value = _response(200, {"data": [
            {"id": "c-1", "name": "lab-old"},
            {"id": "c-2", "name": "lab"},
        ]})
        assert client.find_cluster("lab")["id"] == "c-2"
        assert client.find_cluster("absent") is None

    def test_list_registration_tokens(self, client, session):
        session.request.return_value = _response(200, {"data": [{"id": "t1", "manifestUrl": "u"}]})
        assert client.list_registration_tokens("c-1") == [{"id": "t1", "manifestUrl": "u"}]
        assert session.request.call_args.kwargs["params"] == {"clusterId": "c-1"}

    def test_fetch_manifest(self, client, session):
        session.request.return_value = _response(200, text="kind: Namespace\n")
        assert client.fetch_manifest("https://rancher.example.com/v3/import/x.yaml") == "kind: Namespace\n"

    def test_login_returns_session_token(self, client, session):
        session.request.return_value = _response(201, {"token": "session-token"})

        assert client.login("admin", "pw") == "session-token"
        kwargs = session.request.call_args.kwargs
        assert kwargs["params"] == {"action": "login"}
        assert kwargs["json"] == {"username": "admin", "password": "pw"}

    def test_login_without_token_fails(self, client, session):
        session.request.return_value = _response(201, {})
        with pytest.raises(ConnectivityError):
            client.login("admin", "pw")

    def test_create_api_token(self, client, session):
        session.request.return_value = _response(201, {"id": "token-x", "token": "secret"})
        assert client.create_api_token("lab-manager-1", "session-token") == "token-x:secret"
        assert session.request.call_args.kwargs["json"]["ttl"] == 0


class TestWaitForRancher:
    def test_returns_once_reachable(self, rancher_cfg):
        client = MagicMock(base_url="https://rancher.example.com")
        client.is_reachable.side_effect = [False, False, True]
        sleeps: list[float] = []

        wait_for_rancher(client, rancher_cfg, sleep=sleeps.append)

        assert client.is_reachable.call_count == 3
        assert len(sleeps) == 2

    def test_times_out(self, rancher_cfg):
        cfg = rancher_cfg.model_copy(update={"api_ready_attempts": 3})
        client = MagicMock(base_url="https://rancher.example.com")
        client.is_reachable.return_value = False

        with pytest.raises(PollTimeoutError):
            wait_for_rancher(client, cfg, sleep=lambda _: None)
        assert client.is_reachable.call_count == 3


class TestConfigureRancher:
    """Tests for the credential bootstrap flow."""

    def test_reuses_valid_token(self, rancher_cfg, tmp_path):
        client = MagicMock()
        client.is_reachable.return_value = True
        client.token_is_valid.return_value = True
        path = tmp_path / "rancher.dev"

        token = configure_rancher(rancher_cfg, "https://rancher.example.com", "admin", "", path, client=client)

        assert token == "token-abc:secret"
        client.login.assert_not_called()
        assert resolve_rancher_config([path]).bearer_token == "token-abc:secret"

    def test_mints_new_token(self, tmp_path):
        client = MagicMock()
        client.is_reachable.return_value = True
        client.login.return_value = "session-token"
        client.set_server_url.return_value = False
        client.create_api_token.return_value = "token-new:secret"
        path = tmp_path / "rancher.dev"

        token = configure_rancher(RancherConfig(), "https://rancher.example.com", "admin", "pw", path, client=client)

        assert token == "token-new:secret"
        client.login.assert_called_once_with("admin", "pw")
        client.set_server_url.assert_called_once_with("https://rancher.example.com", "session-token")
        cfg = resolve_rancher_config([path])
        assert cfg.url == "https://rancher.example.com"
        assert cfg.bearer_token == "token-new:secret"

    def test_unreachable_server(self, tmp_path):
        client = MagicMock()
        client.is_reachable.return_value = False

        with pytest.raises(ConnectivityError):
            configure_rancher(RancherConfig(), "https://rancher.example.com", "admin", "pw",
                              tmp_path / "rancher.dev", client=client)
        assert not (tmp_path / "rancher.dev").exists()
