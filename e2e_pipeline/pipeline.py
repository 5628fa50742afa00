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


"""Stage sequencing: the generic runner loop over declarative stage descriptors."""

from __future__ import annotations

import enum
from collections.abc import Sequence
from dataclasses import dataclass, field

from rich.panel import Panel

from e2e_pipeline import console, logger, section
from e2e_pipeline.artifacts import ArtifactProvisioner, BuildkiteArtifactStore
from e2e_pipeline.cluster import ClusterController, StopMode
from e2e_pipeline.config import RunConfig
from e2e_pipeline.constants import ARTIFACT_AGENT, ENGINE_BINARY, SLT_RUNNER, TASK_RUNNER
from e2e_pipeline.ctl import RiseCtl, load_ctl_env
from e2e_pipeline.errors import (
    CommandFailed,
    CommandTimeout,
    PipelineError,
    StageInvariantError,
    StageTimeout,
    TestAssertionFailure,
)
from e2e_pipeline.gates import FeatureGate
from e2e_pipeline.poller import ReadinessPoller
from e2e_pipeline.retry import RetryPolicy
from e2e_pipeline.stages import (
    CtlStep,
    ExecStep,
    SltStep,
    StagePlan,
    Step,
    TestStage,
    WaitVersionStep,
    load_stage_plan,
)
from e2e_pipeline.utils import CommandRunner, render_command, require_command


class SequencerState(str, enum.Enum):
    IDLE = "idle"
    ARTIFACTS_STAGED = "artifacts_staged"
    CLUSTER_UP = "cluster_up"
    RUNNING = "running"
    CLUSTER_DOWN = "cluster_down"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class RunResult:
    """Outcome of a pipeline run.

    Attributes:
        state: Terminal state, COMPLETED or FAILED.
        completed: Ids of stages that passed, in order.
        skipped: Ids of stages whose gate was off.
        reports: Test report names emitted.
        failed_stage: Id of the stage that failed, or None.
        error: The error that ended the run, or None.
    """

    state: SequencerState = SequencerState.IDLE
    completed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    reports: list[str] = field(default_factory=list)
    failed_stage: str | None = None
    error: PipelineError | None = None

    @property
    def exit_code(self) -> int:
        if self.error is None:
            return 0
        return self.error.exit_code


@dataclass
class _StageContext:
    """Per-attempt state shared between the steps of one stage."""

    ctl: RiseCtl | None = None
    reports: list[str] = field(default_factory=list)


class StageSequencer:
    """Runs stages in order, failing fast on the first unrecoverable error.

    For each enabled stage: stage artifacts, hold the stage's cluster profile,
    run the steps, release the cluster. The cluster is released on every exit
    path. A disabled gate skips the whole stage before any side effect.

    Args:
        run_cfg: Immutable run configuration.
        stages: Ordered stage descriptors.
        provisioner: Artifact provisioner.
        cluster: Cluster controller.
        gate: Feature gate.
        runner: Command runner for test and control commands.
        poller: Readiness poller for ``wait_version`` steps.
        retry_policy: Whole-stage retry wrapper.

    Raises:
        StageInvariantError: If a stage names an unknown gate.
    """

    def __init__(
        self,
        run_cfg: RunConfig,
        stages: Sequence[TestStage],
        provisioner: ArtifactProvisioner,
        cluster: ClusterController,
        gate: FeatureGate,
        runner: CommandRunner,
        poller: ReadinessPoller,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        unknown = sorted({s.gate for s in stages if s.gate is not None and s.gate not in gate.flags})
        if unknown:
            raise StageInvariantError(f"Stages reference unknown gates: {', '.join(unknown)}")
        self.run_cfg = run_cfg
        self.stages = list(stages)
        self.provisioner = provisioner
        self.cluster = cluster
        self.gate = gate
        self.runner = runner
        self.poller = poller
        self.retry_policy = retry_policy or RetryPolicy()
        self.state = SequencerState.IDLE
        self.history: list[tuple[SequencerState, str | None]] = []

    def _transition(self, state: SequencerState, stage_id: str | None = None) -> None:
        logger.debug("%s -> %s (%s)", self.state.value, state.value, stage_id)
        self.state = state
        self.history.append((state, stage_id))

    def run(self) -> RunResult:
        """Run every enabled stage in order.

        Returns:
            The run result; ``state`` is FAILED with ``error`` set on the first failure.
        """
        result = RunResult()
        for stage in self.stages:
            if not self.gate.enabled(stage.gate):
                console.print(f"[yellow]\u2139\ufe0f  Skipping '{stage.id}' (gate '{stage.gate}' is off)[/yellow]")
                result.skipped.append(stage.id)
                continue
            try:
                reports = self.retry_policy.call(stage.id, lambda stage=stage: self._run_stage(stage))
            except PipelineError as err:
                self._transition(SequencerState.FAILED, stage.id)
                console.print(f"[red]\u274c Stage '{stage.id}' failed: {err}[/red]")
                result.state = SequencerState.FAILED
                result.failed_stage = stage.id
                result.error = err
                return result
            result.completed.append(stage.id)
            result.reports.extend(reports)

        if self.cluster.active_profile is not None:
            self.cluster.stop_quietly(StopMode.GRACEFUL)
        self._transition(SequencerState.COMPLETED)
        result.state = SequencerState.COMPLETED
        console.print(f"[green]\u2705 All {len(result.completed)} stages passed[/green]")
        return result

    def _run_stage(self, stage: TestStage) -> list[str]:
        section(stage.title)
        self.provisioner.ensure(self.run_cfg.profile, stage.artifacts)
        self._transition(SequencerState.ARTIFACTS_STAGED, stage.id)

        self.cluster.prepare()
        if stage.clean_data:
            if self.cluster.active_profile is not None:
                self.cluster.stop_quietly(StopMode.GRACEFUL)
            self.cluster.clean_data()

        ctx = _StageContext()
        with self.cluster.acquire(stage.cluster_profile, stage.stop_mode, keep=stage.keep_cluster):
            self._transition(SequencerState.CLUSTER_UP, stage.id)
            self._check_invariants(stage)
            self._transition(SequencerState.RUNNING, stage.id)
            for step in stage.steps:
                self._run_step(stage, step, ctx)
        if not stage.keep_cluster:
            self._transition(SequencerState.CLUSTER_DOWN, stage.id)
        return ctx.reports

    def _check_invariants(self, stage: TestStage) -> None:
        if self.cluster.active_profile != stage.cluster_profile:
            raise StageInvariantError(
                f"Stage '{stage.id}' needs cluster profile '{stage.cluster_profile}' "
                f"but '{self.cluster.active_profile}' is active"
            )
        unstaged = [name for name in stage.artifacts if not self.provisioner.staged(name)]
        if unstaged:
            raise StageInvariantError(f"Stage '{stage.id}' artifacts not staged: {', '.join(unstaged)}")

    # ------------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------------

    def _run_step(self, stage: TestStage, step: Step, ctx: _StageContext) -> None:
        if isinstance(step, SltStep):
            self._run_slt(step, ctx)
        elif isinstance(step, WaitVersionStep):
            self._run_wait_version(step, ctx)
        elif isinstance(step, CtlStep):
            self._run_ctl(stage, step, ctx)
        elif isinstance(step, ExecStep):
            self._run_exec(step)
        else:
            raise StageInvariantError(f"Stage '{stage.id}' has an unsupported step: {step!r}")

    def _run_slt(self, step: SltStep, ctx: _StageContext) -> None:
        args = ["-p", str(self.run_cfg.pg_port), "-d", step.database]
        if step.extended:
            args += ["-e", "postgres-extended"]
        args.append(step.files)
        report = None
        if step.report:
            report = f"{step.report}-{self.run_cfg.profile}"
            args += ["--junit", report]
        try:
            self.runner.stream(SLT_RUNNER, *args)
        except CommandFailed as err:
            raise TestAssertionFailure(f"Tests failed for {step.files}", err.exit_code) from err
        if report:
            ctx.reports.append(report)

    def _run_wait_version(self, step: WaitVersionStep, ctx: _StageContext) -> None:
        section("Wait for data ingestion")
        env = load_ctl_env(self.run_cfg.env_file)
        ctx.ctl = RiseCtl(self.runner, self.provisioner.path(ENGINE_BINARY), env)
        self.poller.wait_until(ctx.ctl.current_version_id, step.threshold, step.interval)

    def _run_ctl(self, stage: TestStage, step: CtlStep, ctx: _StageContext) -> None:
        if ctx.ctl is None:
            raise StageInvariantError(f"Stage '{stage.id}' issues a control command before wait_version")
        section(f"risectl {' '.join(step.args)}")
        ctx.ctl.run(*step.args)

    def _run_exec(self, step: ExecStep) -> None:
        binary = self.provisioner.path(step.binary)
        template_vars = self.run_cfg.template_vars()
        args = [arg.format(**template_vars) for arg in step.args]
        try:
            self.runner.stream(binary, *args, timeout=step.timeout)
        except CommandTimeout as err:
            raise StageTimeout(f"{step.binary} exceeded its {step.timeout:g}s bound") from err
        except CommandFailed as err:
            raise TestAssertionFailure(f"{render_command(step.binary, tuple(args))} failed", err.exit_code) from err


# ============================================================================
# Composition
# ============================================================================

def _check_prerequisites() -> None:
    """Check CLI tools the pipeline shells out to."""
    console.print(Panel.fit("Checking prerequisites", style="bold blue"))
    for cmd in (ARTIFACT_AGENT, TASK_RUNNER, SLT_RUNNER):
        require_command(cmd)
    console.print("[green]\u2705 All required tools are available[/green]")


def build_sequencer(run_cfg: RunConfig, plan: StagePlan, runner: CommandRunner | None = None) -> StageSequencer:
    """Wire the components for one run.

    Args:
        run_cfg: Immutable run configuration.
        plan: Validated stage plan.
        runner: Command runner, or None for one rooted at the workdir.

    Returns:
        A sequencer ready to run.
    """
    runner = runner or CommandRunner(cwd=run_cfg.workdir)
    provisioner = ArtifactProvisioner(
        BuildkiteArtifactStore(runner), plan.catalog(), run_cfg.workdir, run_cfg.artifact_dir,
    )
    return StageSequencer(
        run_cfg,
        plan.stages,
        provisioner=provisioner,
        cluster=ClusterController(runner, run_cfg.workdir),
        gate=FeatureGate(run_cfg.gates),
        runner=runner,
        poller=ReadinessPoller(timeout=run_cfg.poll_timeout, no_timeout=run_cfg.poll_no_timeout),
    )


def run_pipeline(run_cfg: RunConfig) -> RunResult:
    """Check prerequisites, load the stage plan, and run it.

    Args:
        run_cfg: Immutable run configuration.

    Returns:
        The run result.

    Raises:
        PipelineError: If prerequisites or the stage plan are invalid.
    """
    plan = load_stage_plan(run_cfg.stage_file)
    _check_prerequisites()
    return build_sequencer(run_cfg, plan).run()


def display_plan(run_cfg: RunConfig, plan: StagePlan) -> None:
    """Print which stages would run for ``run_cfg``.

    Args:
        run_cfg: Immutable run configuration.
        plan: Validated stage plan.
    """
    gate = FeatureGate(run_cfg.gates)
    console.print(Panel.fit("Stage plan", style="bold blue"))
    for index, stage in enumerate(plan.stages, start=1):
        enabled = gate.enabled(stage.gate)
        marker = "[green]run [/green]" if enabled else "[yellow]skip[/yellow]"
        gate_note = f" (gate: {stage.gate})" if stage.gate else ""
        console.print(f"  {index}. {marker} {stage.id:<16} {stage.cluster_profile:<20}{gate_note}")
        if enabled:
            console.print(f"       artifacts: {', '.join(stage.artifacts) or '-'}")
            console.print(f"       steps    : {', '.join(step.kind for step in stage.steps)}")
