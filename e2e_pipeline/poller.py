# /*
# Copyright 2026 The Grove Authors.
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


"""Threshold polling against an asynchronously advancing counter."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass

from tenacity import RetryError, Retrying, retry_if_result, stop_after_delay, stop_never, wait_fixed

from e2e_pipeline import console, logger
from e2e_pipeline.errors import PollTimeout


@dataclass
class PollState:
    """Progress of one poll loop.

    Attributes:
        threshold: Value the counter must exceed.
        interval: Seconds slept between samples.
        no_timeout: Whether the loop is unbounded.
        observed: Last sampled value, or None before the first sample.
        samples: Number of samples taken.
    """

    threshold: int
    interval: float
    no_timeout: bool
    observed: int | None = None
    samples: int = 0


class ReadinessPoller:
    """Samples a counter until it exceeds a threshold.

    The deadline is an explicit choice: pass ``timeout`` in seconds, or
    ``no_timeout=True`` to poll forever. A stalled counter with ``no_timeout``
    blocks the run until an outer bound (the CI job timeout) kills it.

    Args:
        timeout: Seconds after which polling gives up, or None.
        no_timeout: Poll without a deadline. Required when ``timeout`` is None.
        sleep: Sleep function, replaceable in tests.

    Raises:
        ValueError: If neither or both of ``timeout`` and ``no_timeout`` are given.
    """

    def __init__(
        self,
        *,
        timeout: float | None = None,
        no_timeout: bool = False,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if timeout is None and not no_timeout:
            raise ValueError("ReadinessPoller needs a timeout or an explicit no_timeout=True")
        if timeout is not None and no_timeout:
            raise ValueError("timeout and no_timeout=True are mutually exclusive")
        if timeout is not None and timeout < 0:
            raise ValueError("timeout must not be negative")
        self.timeout = timeout
        self.no_timeout = no_timeout
        self._sleep = sleep
        self.state: PollState | None = None

    def wait_until(self, sample_fn: Callable[[], int], threshold: int, interval: float) -> int:
        """Block until ``sample_fn()`` returns a value greater than ``threshold``.

        Sleeps ``interval`` seconds between samples, never after the last one.

        Args:
            sample_fn: Returns the latest counter value. Errors propagate at once.
            threshold: Value the counter must exceed.
            interval: Seconds between samples.

        Returns:
            The first sampled value above ``threshold``.

        Raises:
            PollTimeout: If the timeout passes first.
        """
        state = PollState(threshold=threshold, interval=interval, no_timeout=self.no_timeout)
        self.state = state
        if self.no_timeout:
            logger.warning(
                "Polling with no timeout: if the counter stops advancing this step blocks "
                "until the job is killed (set E2E_POLL_TIMEOUT to bound it)"
            )

        def _sample() -> int:
            value = int(sample_fn())
            state.observed = value
            state.samples += 1
            console.print(f"Current version {value} (waiting for > {threshold})")
            return value

        retrying = Retrying(
            stop=stop_never if self.timeout is None else stop_after_delay(self.timeout),
            wait=wait_fixed(interval),
            retry=retry_if_result(lambda value: value <= threshold),
            sleep=self._sleep,
            reraise=True,
        )
        try:
            return retrying(_sample)
        except RetryError as err:
            raise PollTimeout(
                f"Counter still at {state.observed} after {self.timeout:g}s "
                f"({state.samples} samples); expected > {threshold}"
            ) from err
