"""Shared fixtures: a scripted command runner and an in-memory artifact store."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from e2e_pipeline.artifacts import ArtifactProvisioner
from e2e_pipeline.cluster import ClusterController
from e2e_pipeline.config import RunConfig
from e2e_pipeline.errors import ArtifactMissing
from e2e_pipeline.gates import FeatureGate
from e2e_pipeline.pipeline import StageSequencer
from e2e_pipeline.poller import ReadinessPoller
from e2e_pipeline.stages import load_stage_plan
from e2e_pipeline.utils import render_command


class ScriptedRunner:
    """Records commands instead of running them; fails on request."""

    def __init__(self):
        self.calls: list[str] = []
        self.envs: dict[int, dict] = {}
        self.timeouts: dict[int, float | None] = {}
        self.versions: list[int] = []
        self.observer = None
        self._failures: list[list] = []

    def fail_on(self, fragment: str, error: Exception, times: int | None = None) -> None:
        """Raise ``error`` for commands containing ``fragment`` (``times`` times, or always)."""
        self._failures.append([fragment, error, times])

    def _record(self, cmd, args, env, timeout) -> str:
        line = render_command(cmd, args)
        self.envs[len(self.calls)] = env
        self.timeouts[len(self.calls)] = timeout
        self.calls.append(line)
        if self.observer is not None:
            self.observer(line)
        for failure in self._failures:
            fragment, error, times = failure
            if fragment in line and times != 0:
                if times is not None:
                    failure[2] = times - 1
                raise error
        return line

    def stream(self, cmd, *args, env=None, timeout=None):
        self._record(cmd, args, env, timeout)

    def capture(self, cmd, *args, env=None, timeout=None):
        self._record(cmd, args, env, timeout)
        value = self.versions.pop(0)
        return f"HummockVersion {{\n    id: {value},\n    levels: {{}},\n}}\n"

    def index(self, fragment: str) -> int:
        """Position of the first recorded command containing ``fragment``."""
        return next(i for i, line in enumerate(self.calls) if fragment in line)

    def matching(self, fragment: str) -> list[str]:
        return [line for line in self.calls if fragment in line]


class FakeStore:
    """Artifact store writing a small file per downloaded object."""

    def __init__(self):
        self.downloads: list[str] = []
        self.missing: set[str] = set()

    def download(self, remote: str, dest_dir: Path) -> None:
        self.downloads.append(remote)
        if remote in self.missing:
            raise ArtifactMissing(f"Artifact '{remote}' could not be downloaded")
        if "*" not in remote:
            (dest_dir / remote).write_text(f"binary:{remote}\n")


@pytest.fixture
def workdir(tmp_path):
    ci_dir = tmp_path / "ci"
    ci_dir.mkdir()
    (ci_dir / "risedev-components.ci.env").write_text("ENABLE_MINIO=true\n")
    return tmp_path


@pytest.fixture
def run_config(workdir):
    return RunConfig(profile="ci-release", workdir=workdir, artifact_dir=workdir / "target" / "debug")


@pytest.fixture
def runner():
    return ScriptedRunner()


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def stage_plan():
    return load_stage_plan()


@pytest.fixture
def sleep():
    return MagicMock()


@pytest.fixture
def make_sequencer(stage_plan, runner, store, sleep):
    def _make(run_cfg: RunConfig) -> StageSequencer:
        provisioner = ArtifactProvisioner(store, stage_plan.catalog(), run_cfg.workdir, run_cfg.artifact_dir)
        return StageSequencer(
            run_cfg,
            stage_plan.stages,
            provisioner=provisioner,
            cluster=ClusterController(runner, run_cfg.workdir),
            gate=FeatureGate(run_cfg.gates),
            runner=runner,
            poller=ReadinessPoller(timeout=run_cfg.poll_timeout, no_timeout=run_cfg.poll_no_timeout, sleep=sleep),
        )

    return _make
