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


"""Dev cluster preparation, profile lifecycle, and scoped acquisition."""

from __future__ import annotations

import enum
import shutil
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from e2e_pipeline import console, logger, section
from e2e_pipeline.constants import (
    REL_CI_COMPONENTS_ENV,
    REL_USER_COMPONENTS_ENV,
    TASK_CI_KILL,
    TASK_CI_START,
    TASK_CLEAN_DATA,
    TASK_KILL,
    TASK_LINK_BINARIES,
    TASK_PRE_START,
    TASK_RUNNER,
)
from e2e_pipeline.errors import (
    ClusterProfileConflict,
    ClusterStartFailure,
    ClusterStopFailure,
    CommandFailed,
    CommandTimeout,
    PreconditionMissing,
)
from e2e_pipeline.utils import CommandRunner


class StopMode(str, enum.Enum):
    """How a cluster is torn down."""

    GRACEFUL = "graceful"
    """Stop and collect logs for post-mortem diagnostics."""
    FAST = "fast"
    """Stop without collecting logs."""


_STOP_TASKS = {
    StopMode.GRACEFUL: TASK_CI_KILL,
    StopMode.FAST: TASK_KILL,
}


class ClusterController:
    """Starts and stops named cluster profiles, one at a time.

    Args:
        runner: Command runner used for ``cargo make`` tasks.
        workdir: Repository checkout holding the dev cluster tooling.
    """

    def __init__(self, runner: CommandRunner, workdir: Path) -> None:
        self.runner = runner
        self.workdir = workdir
        self.active_profile: str | None = None
        self._prepared = False

    def _task(self, *args: str) -> None:
        self.runner.stream(TASK_RUNNER, "make", *args)

    def prepare(self) -> None:
        """Install the CI component config and link binaries, once per run.

        Raises:
            PreconditionMissing: If the CI component env file is absent.
            ClusterStartFailure: If the config cannot be installed or a preparation task fails.
        """
        if self._prepared:
            return
        section("Prepare dev cluster")
        source = self.workdir / REL_CI_COMPONENTS_ENV
        if not source.is_file():
            raise PreconditionMissing(f"CI component config not found: {source}")
        try:
            shutil.copyfile(source, self.workdir / REL_USER_COMPONENTS_ENV)
        except OSError as err:
            raise ClusterStartFailure(f"Installing the CI component config failed: {err}") from err
        try:
            self._task(TASK_PRE_START)
            self._task(TASK_LINK_BINARIES)
        except CommandFailed as err:
            raise ClusterStartFailure(f"Dev cluster preparation failed: {err}", err.exit_code) from err
        self._prepared = True
        console.print("[green]\u2705 Dev cluster prepared[/green]")

    def clean_data(self) -> None:
        """Remove data left behind by earlier clusters.

        Raises:
            ClusterStartFailure: If the cluster is running or the task fails.
        """
        if self.active_profile is not None:
            raise ClusterStartFailure(f"Cannot clean data while '{self.active_profile}' is running")
        try:
            self._task(TASK_CLEAN_DATA)
        except CommandFailed as err:
            raise ClusterStartFailure(f"Cleaning cluster data failed: {err}", err.exit_code) from err

    def start(self, profile: str) -> None:
        """Start ``profile``; a no-op if it is already the active profile.

        Raises:
            ClusterProfileConflict: If a different profile is active.
            ClusterStartFailure: If the cluster does not come up.
        """
        if self.active_profile == profile:
            logger.info("Cluster profile %s already running", profile)
            return
        if self.active_profile is not None:
            raise ClusterProfileConflict(
                f"Cannot start '{profile}' while '{self.active_profile}' is running; stop it first"
            )
        console.print(f"[yellow]\u2139\ufe0f  Starting cluster profile '{profile}'...[/yellow]")
        try:
            self._task(TASK_CI_START, profile)
        except (CommandFailed, CommandTimeout) as err:
            raise ClusterStartFailure(f"Cluster profile '{profile}' failed to start: {err}", err.exit_code) from err
        self.active_profile = profile
        console.print(f"[green]\u2705 Cluster profile '{profile}' is up[/green]")

    def stop(self, mode: StopMode = StopMode.GRACEFUL) -> None:
        """Stop the active cluster. The controller forgets the profile either way.

        Raises:
            ClusterStopFailure: If the stop task fails.
        """
        profile = self.active_profile
        section("Kill cluster")
        console.print(f"[yellow]\u2139\ufe0f  Stopping cluster ({mode.value})...[/yellow]")
        try:
            self._task(_STOP_TASKS[mode])
        except (CommandFailed, CommandTimeout) as err:
            raise ClusterStopFailure(f"Stopping cluster '{profile}' failed: {err}", err.exit_code) from err
        finally:
            self.active_profile = None
        console.print("[green]\u2705 Cluster stopped[/green]")

    def stop_quietly(self, mode: StopMode = StopMode.GRACEFUL) -> None:
        """Best-effort stop: failures are logged, never raised."""
        try:
            self.stop(mode)
        except ClusterStopFailure as err:
            logger.warning("%s", err)
            console.print(f"[yellow]\u26a0\ufe0f  {err}[/yellow]")

    @contextmanager
    def acquire(self, profile: str, stop_mode: StopMode = StopMode.GRACEFUL, keep: bool = False) -> Iterator[str]:
        """Hold ``profile`` for the duration of the block.

        A different active profile is stopped first. The cluster is stopped
        with ``stop_mode`` on every exit path, except a successful exit with
        ``keep`` set, which leaves it up for the next holder.

        Args:
            profile: Cluster profile to hold.
            stop_mode: Teardown mode on release.
            keep: Leave the cluster running after a successful block.

        Yields:
            The active profile.
        """
        if self.active_profile is not None and self.active_profile != profile:
            self.stop_quietly(StopMode.GRACEFUL)
        try:
            self.start(profile)
            yield profile
        except BaseException:
            self.stop_quietly(stop_mode)
            raise
        if not keep:
            self.stop_quietly(stop_mode)
