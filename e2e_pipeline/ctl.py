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


"""Generated env file loading and risectl inspection/control commands."""

from __future__ import annotations

import re
from pathlib import Path

from dotenv import dotenv_values

from e2e_pipeline import logger
from e2e_pipeline.errors import CommandFailed, ControlCommandFailure, PreconditionMissing
from e2e_pipeline.utils import CommandRunner

_VERSION_ID_RE = re.compile(r"^\s*id:\s*(\d+)", re.MULTILINE)


def load_ctl_env(env_file: Path | None) -> dict[str, str]:
    """Read the ``risectl-env`` file written by cluster start.

    The file is shell-sourceable dotenv: ``[export ]KEY=VALUE`` lines with
    optional quotes and ``#`` comments.

    Args:
        env_file: Path to the env file, or None when PREFIX_CONFIG is unset.

    Returns:
        The variables the file defines.

    Raises:
        PreconditionMissing: If the location is unknown or the file is absent or unreadable.
    """
    if env_file is None:
        raise PreconditionMissing(
            "PREFIX_CONFIG is not set, so the risectl-env file cannot be located. "
            "Did you start the cluster using `./risedev d`?"
        )
    if not env_file.is_file():
        raise PreconditionMissing(
            f"risectl-env file not found at {env_file}. Did you start the cluster using `./risedev d`?"
        )

    try:
        values = dotenv_values(env_file)
    except OSError as err:
        raise PreconditionMissing(f"risectl-env file at {env_file} cannot be read: {err}") from err

    env: dict[str, str] = {}
    for key, value in values.items():
        if value is None:
            logger.warning("Ignoring env entry without a value: %s", key)
            continue
        env[key] = value
    return env


def parse_version_id(output: str) -> int:
    """Extract the current version id from ``hummock list-version`` output.

    Raises:
        ControlCommandFailure: If the output has no ``id:`` line.
    """
    match = _VERSION_ID_RE.search(output)
    if match is None:
        raise ControlCommandFailure("No version id found in list-version output")
    return int(match.group(1))


class RiseCtl:
    """Runs ``risectl`` subcommands of the engine binary against a running cluster.

    Args:
        runner: Command runner.
        binary: Staged engine binary.
        env: Connection parameters from the generated env file.
    """

    def __init__(self, runner: CommandRunner, binary: Path, env: dict[str, str]) -> None:
        self.runner = runner
        self.binary = binary
        self.env = env

    def current_version_id(self) -> int:
        """Sample the latest storage version id."""
        try:
            output = self.runner.capture(self.binary, "risectl", "hummock", "list-version", env=self.env)
        except CommandFailed as err:
            raise ControlCommandFailure(f"Listing versions failed: {err}", err.exit_code) from err
        return parse_version_id(output)

    def run(self, *args: str) -> None:
        """Issue a control command such as ``meta pause``.

        Raises:
            ControlCommandFailure: If the command fails.
        """
        try:
            self.runner.stream(self.binary, "risectl", *args, env=self.env)
        except CommandFailed as err:
            raise ControlCommandFailure(f"risectl {' '.join(args)} failed: {err}", err.exit_code) from err
