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


"""Configuration classes, RunConfig, and config resolution/display."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict
from rich.panel import Panel

from e2e_pipeline import console, logger
from e2e_pipeline.constants import (
    DEFAULT_ARTIFACT_DIR,
    DEFAULT_PG_PORT,
    DEFAULT_SQLSMITH_COUNT,
    DEFAULT_STAGE_FILE,
    DEFAULT_STATE_STORE,
    GATE_COMPACTION,
    GATE_FUZZING,
    RISECTL_ENV_FILE,
)
from e2e_pipeline.errors import InvocationError


# ============================================================================
# Configuration classes
# ============================================================================

class PipelineSettings(BaseSettings):
    """Feature flags and knobs set by the CI job environment.

    Attributes:
        run_compaction: Whether the compaction test block runs (RUN_COMPACTION).
        run_sqlsmith: Whether the fuzzing block runs (RUN_SQLSMITH).
        sqlsmith_count: Number of fuzz queries to generate (SQLSMITH_COUNT).
        prefix_config: Directory holding the generated risectl-env file (PREFIX_CONFIG).
    """

    model_config = SettingsConfigDict(extra="ignore", env_ignore_empty=True)

    run_compaction: bool = False
    run_sqlsmith: bool = False
    sqlsmith_count: int = Field(default=DEFAULT_SQLSMITH_COUNT, ge=1)
    prefix_config: Path | None = None


class RunnerSettings(BaseSettings):
    """Runner tunables, auto-loaded from E2E_* env vars.

    Attributes:
        workdir: Repository checkout the pipeline runs in.
        artifact_dir: Staging directory for downloaded binaries, relative to workdir.
        pg_port: Frontend port the assertion runner connects to.
        poll_timeout: Readiness poll deadline in seconds, or None for no deadline.
        state_store: State store URL handed to the compaction test binary.
        stage_file: Stage descriptor YAML file.
    """

    model_config = SettingsConfigDict(env_prefix="E2E_", extra="ignore", env_ignore_empty=True)

    workdir: Path = Field(default_factory=Path.cwd)
    artifact_dir: Path = Path(DEFAULT_ARTIFACT_DIR)
    pg_port: int = Field(default=DEFAULT_PG_PORT, ge=1, le=65535)
    poll_timeout: float | None = Field(default=None, gt=0)
    state_store: str = DEFAULT_STATE_STORE
    stage_file: Path = DEFAULT_STAGE_FILE


# ============================================================================
# Run configuration
# ============================================================================

@dataclass(frozen=True)
class RunConfig:
    """Immutable configuration for one pipeline run.

    Built once at startup and passed to every component.

    Attributes:
        profile: Build profile selecting the artifact variant.
        run_compaction: Whether the compaction block is enabled.
        run_sqlsmith: Whether the fuzzing block is enabled.
        sqlsmith_count: Fuzz iteration volume.
        prefix_config: Directory of the generated env file, or None if unset.
        workdir: Repository checkout the pipeline runs in.
        artifact_dir: Absolute staging directory for binaries.
        pg_port: Frontend port for the assertion runner.
        poll_timeout: Readiness poll deadline in seconds, or None.
        state_store: State store URL for the compaction test.
        stage_file: Stage descriptor YAML file.
    """

    profile: str
    run_compaction: bool = False
    run_sqlsmith: bool = False
    sqlsmith_count: int = DEFAULT_SQLSMITH_COUNT
    prefix_config: Path | None = None
    workdir: Path = Path(".")
    artifact_dir: Path = Path(DEFAULT_ARTIFACT_DIR)
    pg_port: int = DEFAULT_PG_PORT
    poll_timeout: float | None = None
    state_store: str = DEFAULT_STATE_STORE
    stage_file: Path = DEFAULT_STAGE_FILE

    @property
    def poll_no_timeout(self) -> bool:
        """Whether readiness polling is explicitly unbounded."""
        return self.poll_timeout is None

    @property
    def env_file(self) -> Path | None:
        """Location of the generated risectl-env file, or None if PREFIX_CONFIG is unset."""
        if self.prefix_config is None:
            return None
        return self.prefix_config / RISECTL_ENV_FILE

    @property
    def gates(self) -> dict[str, bool]:
        """Feature flag values keyed by gate name."""
        return {GATE_COMPACTION: self.run_compaction, GATE_FUZZING: self.run_sqlsmith}

    def template_vars(self) -> dict[str, str]:
        """Values available to ``{placeholder}`` expansion in stage step arguments."""
        return {
            "profile": self.profile,
            "sqlsmith_count": str(self.sqlsmith_count),
            "state_store": self.state_store,
            "workdir": str(self.workdir),
        }


def resolve_config(profile: str) -> RunConfig:
    """Merge the CLI profile with environment settings into a RunConfig.

    Args:
        profile: Build profile from the ``-p`` option.

    Returns:
        The immutable run configuration.

    Raises:
        InvocationError: If the profile is blank or an environment value is invalid.
    """
    if not profile.strip():
        raise InvocationError("Profile must not be empty (-p <profile>)")
    try:
        pipeline = PipelineSettings()
        runner = RunnerSettings()
    except ValidationError as err:
        raise InvocationError(f"Invalid environment configuration:\n{err}") from err

    workdir = runner.workdir.resolve()
    artifact_dir = runner.artifact_dir
    if not artifact_dir.is_absolute():
        artifact_dir = workdir / artifact_dir

    if pipeline.run_compaction and pipeline.prefix_config is None:
        logger.warning("RUN_COMPACTION is set but PREFIX_CONFIG is not; the compaction stage will fail")

    return RunConfig(
        profile=profile,
        run_compaction=pipeline.run_compaction,
        run_sqlsmith=pipeline.run_sqlsmith,
        sqlsmith_count=pipeline.sqlsmith_count,
        prefix_config=pipeline.prefix_config,
        workdir=workdir,
        artifact_dir=artifact_dir,
        pg_port=runner.pg_port,
        poll_timeout=runner.poll_timeout,
        state_store=runner.state_store,
        stage_file=runner.stage_file,
    )


# ============================================================================
# Display
# ============================================================================

def display_config(run_cfg: RunConfig) -> None:
    """Print the resolved run configuration.

    Args:
        run_cfg: Resolved run configuration.
    """
    console.print(Panel.fit("Configuration", style="bold blue"))
    console.print(f"  profile         : {run_cfg.profile}")
    console.print(f"  workdir         : {run_cfg.workdir}")
    console.print(f"  artifact_dir    : {run_cfg.artifact_dir}")
    console.print(f"  pg_port         : {run_cfg.pg_port}")
    console.print(f"  stage_file      : {run_cfg.stage_file}")

    console.print("[yellow]Compaction:[/yellow]")
    console.print(f"  enabled         : {run_cfg.run_compaction}")
    if run_cfg.run_compaction:
        console.print(f"  env_file        : {run_cfg.env_file or '(PREFIX_CONFIG unset)'}")
        poll_timeout = "none (unbounded)" if run_cfg.poll_no_timeout else f"{run_cfg.poll_timeout:g}s"
        console.print(f"  poll_timeout    : {poll_timeout}")

    console.print("[yellow]Fuzzing:[/yellow]")
    console.print(f"  enabled         : {run_cfg.run_sqlsmith}")
    if run_cfg.run_sqlsmith:
        console.print(f"  sqlsmith_count  : {run_cfg.sqlsmith_count}")
