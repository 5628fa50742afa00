"""Tests for ReadinessPoller."""

from __future__ import annotations

import logging
from unittest.mock import MagicMock

import pytest

from e2e_pipeline.errors import ControlCommandFailure, PollTimeout
from e2e_pipeline.poller import ReadinessPoller


def _counter(*values):
    return MagicMock(side_effect=list(values))


class TestReadinessPoller:
    def test_waits_until_threshold_crossed(self):
        sleep = MagicMock()
        sample = _counter(10, 40, 70, 96)

        value = ReadinessPoller(no_timeout=True, sleep=sleep).wait_until(sample, threshold=95, interval=5)

        assert value == 96
        assert sample.call_count == 4
        assert sleep.call_count == 3
        sleep.assert_called_with(5)

    def test_first_sample_above_threshold_never_sleeps(self):
        sleep = MagicMock()

        value = ReadinessPoller(no_timeout=True, sleep=sleep).wait_until(_counter(120), threshold=95, interval=5)

        assert value == 120
        sleep.assert_not_called()

    def test_equal_to_threshold_keeps_polling(self):
        sleep = MagicMock()
        sample = _counter(95, 96)

        ReadinessPoller(no_timeout=True, sleep=sleep).wait_until(sample, threshold=95, interval=1)

        assert sample.call_count == 2
        assert sleep.call_count == 1

    def test_state_tracks_samples(self):
        poller = ReadinessPoller(no_timeout=True, sleep=MagicMock())

        poller.wait_until(_counter(1, 2, 3), threshold=2, interval=5)

        assert poller.state.samples == 3
        assert poller.state.observed == 3
        assert poller.state.threshold == 2
        assert poller.state.no_timeout is True

    def test_zero_timeout_gives_up_after_one_sample(self):
        sleep = MagicMock()
        sample = _counter(10, 20)

        with pytest.raises(PollTimeout, match="expected > 95") as exc_info:
            ReadinessPoller(timeout=0, sleep=sleep).wait_until(sample, threshold=95, interval=5)

        assert exc_info.value.exit_code == 124
        assert sample.call_count == 1
        sleep.assert_not_called()

    def test_sample_errors_propagate_immediately(self):
        sleep = MagicMock()
        sample = MagicMock(side_effect=ControlCommandFailure("no version id"))

        with pytest.raises(ControlCommandFailure):
            ReadinessPoller(no_timeout=True, sleep=sleep).wait_until(sample, threshold=95, interval=5)

        assert sample.call_count == 1
        sleep.assert_not_called()

    def test_unbounded_poll_warns(self, caplog):
        with caplog.at_level(logging.WARNING, logger="e2e_pipeline"):
            ReadinessPoller(no_timeout=True, sleep=MagicMock()).wait_until(_counter(100), threshold=95, interval=5)

        assert "no timeout" in caplog.text

    def test_bounded_poll_does_not_warn(self, caplog):
        with caplog.at_level(logging.WARNING, logger="e2e_pipeline"):
            ReadinessPoller(timeout=60, sleep=MagicMock()).wait_until(_counter(100), threshold=95, interval=5)

        assert "no timeout" not in caplog.text


class TestReadinessPollerConstruction:
    def test_deadline_choice_is_required(self):
        with pytest.raises(ValueError, match="no_timeout"):
            ReadinessPoller()

    def test_timeout_and_no_timeout_are_exclusive(self):
        with pytest.raises(ValueError, match="mutually exclusive"):
            ReadinessPoller(timeout=10, no_timeout=True)

    def test_negative_timeout_rejected(self):
        with pytest.raises(ValueError, match="negative"):
            ReadinessPoller(timeout=-1)
