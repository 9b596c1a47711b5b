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

"""Bounded fixed-interval polling with a typed success/timeout result."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_exception_type,
    retry_if_not_result,
    stop_after_attempt,
    wait_fixed,
)

from lab_manager.errors import PollTimeoutError

T = TypeVar("T")


@dataclass(frozen=True)
class PollResult(Generic[T]):
    """Outcome of a bounded poll.

    Attributes:
        ok: Whether the predicate was satisfied within the bound.
        value: The satisfying value, or the last observed value on timeout.
        attempts: Number of fetches made.
        error: The last retried exception when the final attempt raised.
    """

    ok: bool
    value: T | None
    attempts: int
    error: BaseException | None = None

    def unwrap(self, message: str) -> T:
        """Return the value, or raise PollTimeoutError with *message*."""
        if not self.ok:
            raise PollTimeoutError(message, attempts=self.attempts, last_value=self.value)
        return self.value


def poll(
    fetch: Callable[[], T],
    *,
    interval: float,
    max_attempts: int,
    until: Callable[[T], bool],
    retry_on: tuple[type[BaseException], ...] = (),
    on_wait: Callable[[int, Any], None] | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> PollResult[T]:
    """Call *fetch* until *until* accepts its result or the attempt bound is hit.

    Args:
        fetch: Zero-argument callable producing the observed value.
        interval: Seconds to sleep between attempts.
        max_attempts: Maximum number of fetches, including the first.
        until: Predicate that ends polling when it returns True.
        retry_on: Exception types treated as "not ready yet"; others propagate.
        on_wait: Called with (attempt_number, last_value) before each sleep.
        sleep: Sleep function, replaceable in tests.

    Returns:
        PollResult with ``ok`` set when the predicate was satisfied.
    """
    attempts = 0

    def _fetch() -> T:
        nonlocal attempts
        attempts += 1
        return fetch()

    def _before_sleep(state: RetryCallState) -> None:
        if on_wait is None:
            return
        value = None if state.outcome.failed else state.outcome.result()
        on_wait(state.attempt_number, value)

    retrying = Retrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_fixed(interval),
        retry=retry_if_not_result(until) | retry_if_exception_type(retry_on),
        before_sleep=_before_sleep,
        sleep=sleep,
    )
    try:
        value = retrying(_fetch)
    except RetryError as err:
        last = err.last_attempt
        if last.failed:
            return PollResult(ok=False, value=None, attempts=attempts, error=last.exception())
        return PollResult(ok=False, value=last.result(), attempts=attempts)
    return PollResult(ok=True, value=value, attempts=attempts)
