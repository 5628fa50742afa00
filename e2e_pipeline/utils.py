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


"""Utility functions for running external commands and checking prerequisites."""

from __future__ import annotations

import os
import sys
from collections.abc import Mapping
from pathlib import Path

import sh

from e2e_pipeline import logger
from e2e_pipeline.errors import CommandFailed, CommandTimeout, PreconditionMissing


def require_command(cmd: str) -> None:
    """Check if a command exists on the system PATH.

    Args:
        cmd: Name of the CLI command to check.

    Raises:
        PreconditionMissing: If the command is not found.
    """
    try:
        sh.which(cmd)
    except sh.ErrorReturnCode as err:
        raise PreconditionMissing(f"Required command '{cmd}' not found. Please install it first.") from err


def render_command(cmd: str | Path, args: tuple[str, ...]) -> str:
    """Join a command and its arguments for log and error messages."""
    return " ".join([str(cmd), *args])


class CommandRunner:
    """Runs external commands through ``sh``.

    ``stream`` forwards output to the CI log as it is produced, ``capture``
    returns stdout for parsing. Both raise ``CommandFailed`` on a non-zero exit
    and ``CommandTimeout`` when a wall-clock bound is exceeded.

    Args:
        cwd: Working directory for every command.
    """

    def __init__(self, cwd: Path | None = None) -> None:
        self.cwd = cwd

    def _call_kwargs(self, env: Mapping[str, str] | None, timeout: float | None) -> dict:
        kwargs: dict = {}
        if self.cwd is not None:
            kwargs["_cwd"] = str(self.cwd)
        if env:
            kwargs["_env"] = {**os.environ, **env}
        if timeout is not None:
            kwargs["_timeout"] = timeout
        return kwargs

    def _invoke(self, cmd: str | Path, args: tuple[str, ...], kwargs: dict, timeout: float | None):
        rendered = render_command(cmd, args)
        logger.debug("Running: %s", rendered)
        try:
            return sh.Command(str(cmd))(*args, **kwargs)
        except sh.CommandNotFound as err:
            raise PreconditionMissing(f"Command '{cmd}' not found") from err
        except sh.TimeoutException as err:
            raise CommandTimeout(rendered, timeout or 0) from err
        except sh.ErrorReturnCode as err:
            stderr = err.stderr.decode(errors="replace") if err.stderr else ""
            raise CommandFailed(rendered, err.exit_code, stderr) from err

    def stream(
        self,
        cmd: str | Path,
        *args: str,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> None:
        """Run a command, forwarding its output to the CI log.

        Args:
            cmd: Program name or path.
            *args: Program arguments.
            env: Extra environment variables layered over the current environment.
            timeout: Wall-clock bound in seconds, or None.

        Raises:
            CommandFailed: If the command exits non-zero.
            CommandTimeout: If the command exceeds ``timeout``.
        """
        kwargs = self._call_kwargs(env, timeout)
        kwargs.update(_out=sys.stdout, _err=sys.stderr)
        self._invoke(cmd, args, kwargs, timeout)

    def capture(
        self,
        cmd: str | Path,
        *args: str,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> str:
        """Run a command and return its stdout.

        Args:
            cmd: Program name or path.
            *args: Program arguments.
            env: Extra environment variables layered over the current environment.
            timeout: Wall-clock bound in seconds, or None.

        Returns:
            The command's standard output.

        Raises:
            CommandFailed: If the command exits non-zero.
            CommandTimeout: If the command exceeds ``timeout``.
        """
        return str(self._invoke(cmd, args, self._call_kwargs(env, timeout), timeout))
