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


"""Error taxonomy for pipeline runs.

Every error carries the process exit code the CLI reports to the scheduler.
Errors are fail-fast: the first one raised out of a stage ends the run, unless
``RetryPolicy`` classifies its exit code as transient.
"""

from __future__ import annotations

from e2e_pipeline.constants import EXIT_FAILURE, EXIT_INVOCATION, EXIT_PRECONDITION, EXIT_TIMEOUT


class PipelineError(Exception):
    """Base exception for pipeline runs.

    Only infrastructure faults set ``retryable``; whether one is retried then
    depends on its exit code.
    """

    default_exit_code = EXIT_FAILURE
    retryable = False

    def __init__(self, message: str, exit_code: int | None = None) -> None:
        super().__init__(message)
        self.exit_code = self.default_exit_code if exit_code is None else exit_code


class InvocationError(PipelineError):
    """Bad or missing CLI argument or configuration value."""

    default_exit_code = EXIT_INVOCATION


class PreconditionMissing(PipelineError):
    """A required input (tool, environment file) is absent."""

    default_exit_code = EXIT_PRECONDITION


class CommandFailed(PipelineError):
    """An external command exited non-zero."""

    retryable = True

    def __init__(self, command: str, exit_code: int, stderr: str = "") -> None:
        super().__init__(f"'{command}' exited with status {exit_code}", exit_code)
        self.command = command
        self.stderr = stderr


class CommandTimeout(PipelineError):
    """An external command exceeded its wall-clock bound and was killed."""

    retryable = True

    default_exit_code = EXIT_TIMEOUT

    def __init__(self, command: str, timeout: float) -> None:
        super().__init__(f"'{command}' timed out after {timeout:g}s")
        self.command = command
        self.timeout = timeout


class ArtifactMissing(PipelineError):
    """The artifact store has no object under the requested name."""


class ArtifactStagingFailure(PipelineError):
    """A downloaded artifact could not be placed in the staging area."""


class ClusterStartFailure(PipelineError):
    """The cluster did not reach a ready state."""

    retryable = True


class ClusterProfileConflict(ClusterStartFailure):
    """A start was requested while a different profile is active."""

    retryable = False


class ClusterStopFailure(PipelineError):
    """The cluster stop command failed."""

    retryable = True


class TestAssertionFailure(PipelineError):
    """A test command reported failures. Carries the command's exit code."""

    __test__ = False


class ControlCommandFailure(PipelineError):
    """An inspection or control command against the running cluster failed."""

    retryable = True


class StageTimeout(PipelineError):
    """A stage step exceeded its imposed wall-clock bound."""

    default_exit_code = EXIT_TIMEOUT


class PollTimeout(PipelineError):
    """The readiness poll deadline passed before the threshold was crossed."""

    default_exit_code = EXIT_TIMEOUT


class StageInvariantError(PipelineError):
    """The stage list is inconsistent (programming error, never retried)."""
