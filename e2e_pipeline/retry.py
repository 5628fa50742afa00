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


"""Whole-stage retry for transient infrastructure failures."""

from __future__ import annotations

import enum
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import TypeVar

from tenacity import RetryCallState, Retrying, retry_if_exception

from e2e_pipeline import console, logger
from e2e_pipeline.constants import DEFAULT_TRANSIENT_EXIT_LIMITS
from e2e_pipeline.errors import PipelineError

T = TypeVar("T")


class ExitClass(str, enum.Enum):
    """Failure classification."""

    TRANSIENT = "transient"
    TERMINAL = "terminal"


@dataclass
class RetryRecord:
    """Retry bookkeeping for one stage invocation.

    Attributes:
        exit_class: Classification of the last failure (TERMINAL until one is seen).
        attempts: Attempts made so far.
        limit: Retries allowed for the last failure's exit code.
        exit_code: Exit code of the last failure, or None.
    """

    exit_class: ExitClass = ExitClass.TERMINAL
    attempts: int = 0
    limit: int = 0
    exit_code: int | None = None


class RetryPolicy:
    """Retries a whole stage when it fails with a transient exit code.

    Args:
        limits: Retry limit per transient exit code of an infrastructure fault.
            Any other code is terminal.
    """

    def __init__(self, limits: Mapping[int, int] = DEFAULT_TRANSIENT_EXIT_LIMITS) -> None:
        self.limits = dict(limits)
        self.records: dict[str, RetryRecord] = {}

    def classify(self, error: BaseException) -> ExitClass:
        """Classify a failure as transient or terminal.

        Only infrastructure faults (``retryable`` errors) are looked up in the
        exit-code table; anything else is terminal.
        """
        if not isinstance(error, PipelineError) or not error.retryable:
            return ExitClass.TERMINAL
        if error.exit_code in self.limits:
            return ExitClass.TRANSIENT
        return ExitClass.TERMINAL

    def limit_for(self, error: BaseException | None) -> int:
        """Retries allowed for ``error``; zero for terminal failures."""
        if error is None or self.classify(error) is ExitClass.TERMINAL:
            return 0
        return self.limits[error.exit_code]

    def call(self, stage_id: str, fn: Callable[[], T]) -> T:
        """Run ``fn``, rerunning it from the start on transient failures.

        Args:
            stage_id: Key for the retry record.
            fn: The whole-stage callable.

        Returns:
            Whatever ``fn`` returns.

        Raises:
            PipelineError: The last failure, once it is terminal or the limit is spent.
        """
        record = RetryRecord()
        self.records[stage_id] = record

        def _attempt() -> T:
            record.attempts += 1
            try:
                return fn()
            except PipelineError as err:
                record.exit_class = self.classify(err)
                record.limit = self.limit_for(err)
                record.exit_code = err.exit_code
                raise

        def _stop(retry_state: RetryCallState) -> bool:
            return retry_state.attempt_number > self.limit_for(retry_state.outcome.exception())

        def _before_sleep(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception()
            logger.warning("Stage %s failed transiently (%s), retrying", stage_id, error)
            console.print(
                f"[yellow]\u26a0\ufe0f  Stage '{stage_id}' hit transient exit status {record.exit_code}; "
                f"retry {retry_state.attempt_number}/{record.limit}[/yellow]"
            )

        retrying = Retrying(
            retry=retry_if_exception(lambda err: self.classify(err) is ExitClass.TRANSIENT),
            stop=_stop,
            before_sleep=_before_sleep,
            reraise=True,
        )
        return retrying(_attempt)
