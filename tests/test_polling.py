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

"""Tests for the bounded polling helper."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from lab_manager.errors import ConnectivityError, PollTimeoutError
from lab_manager.polling import PollResult, poll


class TestPoll:
    """Tests for poll()."""

    def test_returns_first_accepted_value(self):
        fetch = MagicMock(side_effect=["provisioning", "provisioning", "active"])
        sleeps: list[float] = []

        result = poll(fetch, interval=5, max_attempts=12, until=lambda s: s == "active", sleep=sleeps.append)

        assert result.ok
        assert result.value == "active"
        assert result.attempts == 3
        assert sleeps == [5, 5]

    def test_stops_at_bound_with_last_value(self):
        fetch = MagicMock(return_value="provisioning")

        result = poll(fetch, interval=0, max_attempts=4, until=lambda s: s == "active", sleep=lambda _: None)

        assert not result.ok
        assert result.value == "provisioning"
        assert result.attempts == 4
        assert fetch.call_count == 4

    def test_retried_exception_counts_as_not_ready(self):
        fetch = MagicMock(side_effect=[ConnectivityError("boom"), "ready"])

        result = poll(
            fetch, interval=0, max_attempts=3, until=bool,
            retry_on=(ConnectivityError,), sleep=lambda _: None,
        )

        assert result.ok
        assert result.attempts == 2

    def test_timeout_after_exceptions_keeps_error(self):
        err = ConnectivityError("still down")
        fetch = MagicMock(side_effect=err)

        result = poll(
            fetch, interval=0, max_attempts=2, until=bool,
            retry_on=(ConnectivityError,), sleep=lambda _: None,
        )

        assert not result.ok
        assert result.value is None
        assert result.error is err

    def test_other_exceptions_propagate(self):
        fetch = MagicMock(side_effect=ValueError("bad payload"))

        with pytest.raises(ValueError):
            poll(fetch, interval=0, max_attempts=5, until=bool, sleep=lambda _: None)
        assert fetch.call_count == 1

    def test_on_wait_reports_attempt_and_value(self):
        seen = []
        poll(
            MagicMock(side_effect=[None, None, "x"]),
            interval=0, max_attempts=5, until=bool,
            on_wait=lambda n, v: seen.append((n, v)),
            sleep=lambda _: None,
        )
        assert seen == [(1, None), (2, None)]


class TestPollResult:
    def test_unwrap_returns_value(self):
        assert PollResult(ok=True, value="active", attempts=1).unwrap("unused") == "active"

    def test_unwrap_raises_on_timeout(self):
        with pytest.raises(PollTimeoutError) as exc_info:
            PollResult(ok=False, value="provisioning", attempts=12).unwrap("not ready")
        assert exc_info.value.attempts == 12
        assert exc_info.value.last_value == "provisioning"
        assert str(exc_info.value) == "not ready"
