"""Tests for env file loading and risectl commands."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from e2e_pipeline.ctl import RiseCtl, load_ctl_env, parse_version_id
from e2e_pipeline.errors import CommandFailed, ControlCommandFailure, PreconditionMissing

LIST_VERSION_OUTPUT = """\
HummockVersion {
    id: 97,
    levels: {
        2: Levels { levels: [], l0: None },
    },
    max_committed_epoch: 3085863538704384,
}
"""


class TestLoadCtlEnv:
    def test_parses_exports_and_quotes(self, tmp_path):
        env_file = tmp_path / "risectl-env"
        env_file.write_text(
            "# generated by risedev\n"
            "\n"
            'export RW_META_ADDR="http://127.0.0.1:5690"\n'
            "RW_HUMMOCK_URL='hummock+minio://a:b@127.0.0.1:9301/hummock001'\n"
            "PLAIN=value\n"
            "ORPHAN\n"
        )

        assert load_ctl_env(env_file) == {
            "RW_META_ADDR": "http://127.0.0.1:5690",
            "RW_HUMMOCK_URL": "hummock+minio://a:b@127.0.0.1:9301/hummock001",
            "PLAIN": "value",
        }

    def test_inline_comments_are_not_part_of_values(self, tmp_path):
        env_file = tmp_path / "risectl-env"
        env_file.write_text(
            "export RW_META_ADDR=http://127.0.0.1:5690 # meta\n"
            "export RW_FRONTEND_PORT=\"4566\"  # frontend\n"
        )

        assert load_ctl_env(env_file) == {
            "RW_META_ADDR": "http://127.0.0.1:5690",
            "RW_FRONTEND_PORT": "4566",
        }

    def test_missing_file(self, tmp_path):
        with pytest.raises(PreconditionMissing, match=r"Did you start the cluster using `\./risedev d`\?") as exc_info:
            load_ctl_env(tmp_path / "risectl-env")

        assert exc_info.value.exit_code == 3

    def test_unknown_location(self):
        with pytest.raises(PreconditionMissing, match="PREFIX_CONFIG"):
            load_ctl_env(None)


class TestParseVersionId:
    def test_extracts_id(self):
        assert parse_version_id(LIST_VERSION_OUTPUT) == 97

    def test_no_id(self):
        with pytest.raises(ControlCommandFailure):
            parse_version_id("error: meta unreachable\n")


class TestRiseCtl:
    def test_current_version_id(self):
        runner = MagicMock()
        runner.capture.return_value = LIST_VERSION_OUTPUT
        ctl = RiseCtl(runner, Path("/bin/risingwave"), {"RW_META_ADDR": "x"})

        assert ctl.current_version_id() == 97
        runner.capture.assert_called_once_with(
            Path("/bin/risingwave"), "risectl", "hummock", "list-version", env={"RW_META_ADDR": "x"},
        )

    def test_run_streams_with_env(self):
        runner = MagicMock()

        RiseCtl(runner, Path("/bin/risingwave"), {"K": "v"}).run("meta", "pause")

        runner.stream.assert_called_once_with(Path("/bin/risingwave"), "risectl", "meta", "pause", env={"K": "v"})

    def test_failures_are_control_command_failures(self):
        runner = MagicMock()
        runner.stream.side_effect = CommandFailed("risectl", 2)
        runner.capture.side_effect = CommandFailed("risectl", 2)
        ctl = RiseCtl(runner, Path("/bin/risingwave"), {})

        with pytest.raises(ControlCommandFailure, match="disable-commit-epoch"):
            ctl.run("hummock", "disable-commit-epoch")
        with pytest.raises(ControlCommandFailure):
            ctl.current_version_id()
