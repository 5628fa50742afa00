"""Tests for FeatureGate."""

from __future__ import annotations

import pytest

from e2e_pipeline.gates import FeatureGate


class TestFeatureGate:
    def test_ungated_always_enabled(self):
        assert FeatureGate({}).enabled(None) is True

    def test_flag_values(self):
        gate = FeatureGate({"compaction": True, "fuzzing": False})

        assert gate.enabled("compaction") is True
        assert gate.enabled("fuzzing") is False

    def test_unknown_gate(self):
        with pytest.raises(KeyError, match="nightly"):
            FeatureGate({"compaction": True}).enabled("nightly")

    def test_flags_captured_at_construction(self):
        flags = {"compaction": False}
        gate = FeatureGate(flags)
        flags["compaction"] = True

        assert gate.enabled("compaction") is False
        with pytest.raises(TypeError):
            gate.flags["compaction"] = True
