"""Tests for the capture quality analyzer."""
from dataclasses import replace

import pytest

from scancert.capture.quality_analyzer import CaptureQualityAnalyzer, frame_intervals_ms, rejection_category
from scancert.core.models import CaptureResult

from conftest import make_capture, make_frame


@pytest.fixture
def analyzer():
    return CaptureQualityAnalyzer()


class TestCaptureQualityAnalyzer:
    """Statistics and warnings of CaptureQualityAnalyzer.analyze."""

    def test_clean_capture_passes(self, analyzer):
        capture = make_capture([make_frame(i) for i in range(1, 6)])

        summary = analyzer.analyze(capture)

        assert summary.reliability_pass is True
        assert summary.reliability_warnings == ()
        assert summary.accepted_ratio == pytest.approx(1.0)
        assert summary.timestamp_coverage_ratio == pytest.approx(1.0)
        assert summary.frame_interval_mean_ms == pytest.approx(100.0)
        assert summary.frame_interval_jitter_ms == pytest.approx(0.0)
        assert summary.rejection_counts == {}

    def test_small_and_mostly_rejected_capture(self, analyzer):
        frames = [make_frame(1), make_frame(2, accepted=False, sharpness=0.5)]
        summary = analyzer.analyze(make_capture(frames, required=1))

        assert "total_frames=2 < 3" in summary.reliability_warnings
        assert summary.rejection_counts == {"low_sharpness": 1}
        assert summary.reliability_pass is False

    def test_low_accepted_ratio(self, analyzer):
        frames = [make_frame(1)] + [make_frame(i, accepted=False, exposure=0.4) for i in range(2, 5)]
        summary = analyzer.analyze(make_capture(frames, required=1))

        assert "accepted_ratio=0.25 < 0.5" in summary.reliability_warnings
        assert summary.rejection_counts == {"low_exposure": 3}

    def test_unverified_locks_are_reported(self, analyzer):
        capture = make_capture([make_frame(i) for i in range(1, 4)],
                               exposure_verified=None, white_balance_verified=False)
        summary = analyzer.analyze(capture)

        assert "exposure_lock_not_verified (status=unknown)" in summary.reliability_warnings
        assert "white_balance_lock_not_verified (status=failed)" in summary.reliability_warnings

    def test_missing_timestamps_lower_coverage(self, analyzer):
        frames = [make_frame(1), make_frame(2), make_frame(3, timestamped=False), make_frame(4, timestamped=False)]
        summary = analyzer.analyze(make_capture(frames))

        assert summary.timestamp_coverage_ratio == pytest.approx(0.5)
        assert "timestamp_coverage=0.5 < 1" in summary.reliability_warnings

    def test_jitter_above_limit(self, analyzer):
        frames = [replace(make_frame(i), source_timestamp_ms=ms)
                  for i, ms in enumerate((0.0, 100.0, 130.0, 250.0), start=1)]
        summary = analyzer.analyze(make_capture(frames))

        # intervals 100, 30, 120
        assert summary.frame_interval_jitter_ms > 10.0
        assert any(w.startswith("frame_interval_jitter_ms=") for w in summary.reliability_warnings)

    def test_non_monotonic_timestamps(self, analyzer):
        capture = make_capture([make_frame(i) for i in range(1, 4)])
        capture = replace(capture, frame_timestamps_monotonic=False)

        summary = analyzer.analyze(capture)

        assert "frame_timestamps_not_monotonic" in summary.reliability_warnings

    def test_reliability_not_met_is_reported(self, analyzer):
        frames = [make_frame(1), make_frame(2), make_frame(3, accepted=False, sharpness=0.5)]
        summary = analyzer.analyze(make_capture(frames, required=3))

        assert any(w.startswith("capture_reliability_not_met (accepted_frames=2")
                   for w in summary.reliability_warnings)


class TestHelpers:
    def test_rejection_category_order(self):
        assert rejection_category(make_frame(1, accepted=False, sharpness=0.1, exposure=0.1)) == "low_sharpness"
        assert rejection_category(make_frame(1, accepted=False, exposure=0.1)) == "low_exposure"
        assert rejection_category(make_frame(1, accepted=False)) == "manual_reject"

    def test_intervals_are_sorted_and_positive(self):
        frames = [replace(make_frame(i), source_timestamp_ms=ms)
                  for i, ms in enumerate((300.0, 100.0, 100.0, 200.0), start=1)]
        assert frame_intervals_ms(frames) == [100.0, 100.0]

    def test_capture_invariant(self):
        """A capture can never accept more frames than it captured."""
        capture = make_capture([make_frame(1)], required=1)
        with pytest.raises(ValueError):
            replace(capture, accepted_frame_count=2)
        with pytest.raises(ValueError):
            replace(capture, reliability_target_met=False)
        assert isinstance(capture, CaptureResult)
