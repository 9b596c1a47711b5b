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

"""Error taxonomy for lab operations."""

from __future__ import annotations

from typing import Any


class LabError(RuntimeError):
    """Base class for all lab-manager failures."""


class ConfigurationError(LabError):
    """Missing or invalid endpoint, credential, or setting. Never retried."""


class ConnectivityError(LabError):
    """Remote API unreachable or returned a non-2xx response.

    Attributes:
        status: HTTP status code, or None when no response was received.
        body: Excerpt of the response body, if any.
    """

    def __init__(self, message: str, status: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status = status
        self.body = body

    def __str__(self) -> str:
        text = super().__str__()
        if self.status is not None:
            text = f"{text} (HTTP {self.status})"
        if self.body:
            text = f"{text}: {self.body[:200]}"
        return text


class PollTimeoutError(LabError):
    """A bounded poll ran out of attempts.

    Attributes:
        attempts: Number of attempts made.
        last_value: The last value observed before giving up.
    """

    def __init__(self, message: str, attempts: int, last_value: Any = None) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.last_value = last_value


class ManifestApplyError(LabError):
    """The registration manifest could not be fetched or applied.

    The remote cluster object already exists when this is raised, so
    ``cluster_id`` names the object a deregister will need to clean up.
    """

    def __init__(self, message: str, cluster_id: str, manifest_url: str) -> None:
        super().__init__(message)
        self.cluster_id = cluster_id
        self.manifest_url = manifest_url


class KubectlError(LabError):
    """A kubectl invocation failed."""

    def __init__(self, args: list[str], stderr: str) -> None:
        super().__init__(f"kubectl {' '.join(args)} failed: {stderr.strip()[:200]}")
        self.args_list = args
        self.stderr = stderr
