"""Tests for stage descriptor loading and validation."""

from __future__ import annotations

import pytest
import yaml

from e2e_pipeline.cluster import StopMode
from e2e_pipeline.errors import StageInvariantError
from e2e_pipeline.stages import CtlStep, ExecStep, SltStep, WaitVersionStep, load_stage_plan


def _write_plan(tmp_path, stages, artifacts=None):
    path = tmp_path / "stages.yaml"
    path.write_text(yaml.safe_dump({"artifacts": artifacts or {"risingwave": {}}, "stages": stages}))
    return path


def _stage(**overrides):
    stage = {
        "id": "streaming",
        "title": "streaming",
        "cluster_profile": "ci-3cn-1fe",
        "artifacts": ["risingwave"],
        "steps": [{"kind": "slt", "files": "./e2e_test/streaming/**/*.slt"}],
    }
    stage.update(overrides)
    return stage


class TestDefaultPlan:
    def test_stage_order(self, stage_plan):
        assert [s.id for s in stage_plan.stages] == [
            "streaming", "batch", "generated", "extended-query", "compaction", "fuzzing",
        ]

    def test_gates(self, stage_plan):
        gates = {s.id: s.gate for s in stage_plan.stages}

        assert gates["compaction"] == "compaction"
        assert gates["fuzzing"] == "fuzzing"
        assert gates["streaming"] is None

    def test_compaction_steps(self, stage_plan):
        compaction = stage_plan.stages[4]

        assert compaction.cluster_profile == "ci-compaction-test"
        assert compaction.clean_data is True
        assert [type(step) for step in compaction.steps] == [SltStep, WaitVersionStep, CtlStep, CtlStep, ExecStep]
        assert compaction.steps[1].threshold == 95
        assert compaction.steps[1].interval == 5
        assert compaction.steps[2].args == ("meta", "pause")

    def test_fuzzing_is_bounded_and_fast_stopped(self, stage_plan):
        fuzzing = stage_plan.stages[5]

        assert fuzzing.stop_mode is StopMode.FAST
        assert fuzzing.steps[0].timeout == 1200

    def test_catalog(self, stage_plan):
        catalog = stage_plan.catalog()

        assert catalog["risingwave"].remote_name("ci-release") == "risingwave-ci-release"
        assert catalog["generated-tests"].rename is False
        assert catalog["generated-tests"].executable is False


class TestValidation:
    def test_missing_file(self, tmp_path):
        with pytest.raises(StageInvariantError, match="not found"):
            load_stage_plan(tmp_path / "missing.yaml")

    def test_duplicate_ids(self, tmp_path):
        path = _write_plan(tmp_path, [_stage(), _stage()])

        with pytest.raises(StageInvariantError, match="duplicate stage id"):
            load_stage_plan(path)

    def test_unknown_gate(self, tmp_path):
        path = _write_plan(tmp_path, [_stage(gate="nightly")])

        with pytest.raises(StageInvariantError, match="unknown gate"):
            load_stage_plan(path)

    def test_undeclared_artifact(self, tmp_path):
        path = _write_plan(tmp_path, [_stage(artifacts=["risingwave", "sqlsmith"])])

        with pytest.raises(StageInvariantError, match="undeclared artifacts: sqlsmith"):
            load_stage_plan(path)

    def test_ctl_before_wait_version(self, tmp_path):
        path = _write_plan(tmp_path, [_stage(steps=[{"kind": "ctl", "args": ["meta", "pause"]}])])

        with pytest.raises(StageInvariantError, match="preceding wait_version"):
            load_stage_plan(path)

    def test_exec_binary_must_be_staged(self, tmp_path):
        path = _write_plan(tmp_path, [_stage(steps=[{"kind": "exec", "binary": "sqlsmith"}])])

        with pytest.raises(StageInvariantError, match="not in the stage artifacts"):
            load_stage_plan(path)

    def test_polling_needs_engine_binary(self, tmp_path):
        path = _write_plan(
            tmp_path,
            [_stage(artifacts=[], steps=[{"kind": "wait_version", "threshold": 95}])],
        )

        with pytest.raises(StageInvariantError, match="risingwave"):
            load_stage_plan(path)

    def test_unknown_step_kind(self, tmp_path):
        path = _write_plan(tmp_path, [_stage(steps=[{"kind": "shell", "cmd": "ls"}])])

        with pytest.raises(StageInvariantError):
            load_stage_plan(path)

    def test_empty_steps(self, tmp_path):
        path = _write_plan(tmp_path, [_stage(steps=[])])

        with pytest.raises(StageInvariantError):
            load_stage_plan(path)

    def test_unknown_field(self, tmp_path):
        path = _write_plan(tmp_path, [_stage(retries=3)])

        with pytest.raises(StageInvariantError):
            load_stage_plan(path)


class TestExecPlaceholders:
    def _exec_stage(self, *args):
        return _stage(
            artifacts=["risingwave", "sqlsmith"],
            steps=[{"kind": "exec", "binary": "sqlsmith", "args": list(args)}],
        )

    def test_known_placeholders_and_escaped_braces(self, tmp_path):
        path = _write_plan(
            tmp_path,
            [self._exec_stage("--count", "{sqlsmith_count}", "--filter", "{{not_a_field}}")],
            artifacts={"risingwave": {}, "sqlsmith": {}},
        )

        step = load_stage_plan(path).stages[0].steps[0]

        assert step.args == ("--count", "{sqlsmith_count}", "--filter", "{{not_a_field}}")

    @pytest.mark.parametrize("arg,message", [
        ("{count}", "unknown placeholders"),
        ("{}", "unknown placeholders"),
        ('{"a": 1}', "unknown placeholders"),
        ("{state_store", "not a valid template"),
        ("json}", "not a valid template"),
    ])
    def test_bad_placeholders_rejected_at_load(self, tmp_path, arg, message):
        path = _write_plan(tmp_path, [self._exec_stage(arg)], artifacts={"risingwave": {}, "sqlsmith": {}})

        with pytest.raises(StageInvariantError, match=message):
            load_stage_plan(path)
