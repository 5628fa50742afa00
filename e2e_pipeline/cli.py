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


"""
cli.py - End-to-end test pipeline for query engine builds.

Commands:
    run     Stage artifacts, drive the cluster through every enabled stage, tear down
    plan    Show the resolved configuration and which stages would run

Environment Variables:
    RUN_COMPACTION   Enable the compaction test block (1/true)
    RUN_SQLSMITH     Enable the fuzzing block (1/true)
    SQLSMITH_COUNT   Number of fuzz queries (default: 100)
    PREFIX_CONFIG    Directory holding the generated risectl-env file
    E2E_*            Runner tunables (E2E_POLL_TIMEOUT, E2E_ARTIFACT_DIR, ...)

Examples:
    # Core stages against a release build
    e2e-pipeline run -p ci-release

    # Include the compaction and fuzzing blocks
    RUN_COMPACTION=1 RUN_SQLSMITH=1 SQLSMITH_COUNT=1000 e2e-pipeline run -p ci-release

    # Show what would run
    e2e-pipeline plan -p ci-dev
"""

from __future__ import annotations

import logging
import sys

import typer

from e2e_pipeline import console
from e2e_pipeline.config import display_config, resolve_config
from e2e_pipeline.errors import PipelineError
from e2e_pipeline.pipeline import display_plan, run_pipeline
from e2e_pipeline.stages import load_stage_plan

app = typer.Typer(
    help="End-to-end test pipeline for query engine builds.",
    no_args_is_help=True,
)


@app.callback()
def _main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Initialize logging for all subcommands."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )


@app.command()
def run(
    profile: str = typer.Option(..., "-p", "--profile", help="Build profile, e.g. ci-release"),
) -> None:
    """Run every enabled stage in order, stopping at the first failure."""
    try:
        run_cfg = resolve_config(profile)
        display_config(run_cfg)
        result = run_pipeline(run_cfg)
    except PipelineError as e:
        console.print(f"[red]\u274c {e}[/red]")
        sys.exit(e.exit_code)
    if result.error is not None:
        sys.exit(result.exit_code)


@app.command()
def plan(
    profile: str = typer.Option(..., "-p", "--profile", help="Build profile, e.g. ci-release"),
) -> None:
    """Show the resolved configuration and the stage plan without running anything."""
    try:
        run_cfg = resolve_config(profile)
        stage_plan = load_stage_plan(run_cfg.stage_file)
    except PipelineError as e:
        console.print(f"[red]\u274c {e}[/red]")
        sys.exit(e.exit_code)
    display_config(run_cfg)
    display_plan(run_cfg, stage_plan)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
