"""Tests for the calibration quality gates."""
from datetime import datetime, timezone

import pytest

from scancert.calibration.gate_evaluator import evaluate_calibration_gates
from scancert.core.models import CalibrationResidualSamples, CalibrationResult
from scancert.core.utils import format_metric, percentile
from scancert.underlay.pattern_validator import UnderlayPatternValidator


def make_calibration(reprojection: float = 0.2) -> CalibrationResult:
    return CalibrationResult(
        calibration_profile_id="calib-test",
        calibrated_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
        reprojection_error_px=reprojection,
        scale_error_mm=0.07,
        is_within_tolerance=True,
        notes="",
        calibration_mode="frame-derived",
    )


def make_underlay(scale_confidence: float = 0.9, pose_quality: float = 0.8):
    return UnderlayPatternValidator().validate(
        "Mata-10mm-grid", 10.0, [10.0, 10.01, 9.99],
        scale_confidence=scale_confidence, pose_quality=pose_quality)


def residuals(*values):
    return CalibrationResidualSamples(tuple(values), tuple(0.1 for _ in values))


class TestPercentile:
    def test_linear_interpolation(self):
        """Rank 0.95 * (n - 1) = 3.8 lies between 0.18 and 0.85."""
        value = percentile([0.10, 0.12, 0.16, 0.18, 0.85], 95)

        assert value == pytest.approx(0.18 + 0.8 * (0.85 - 0.18))
        assert 0.18 < value < 0.85

    def test_unsorted_input(self):
        assert percentile([0.85, 0.10, 0.18, 0.12, 0.16], 95) == pytest.approx(0.716)

    def test_empty_and_single(self):
        assert percentile([], 95) == 0.0
        assert percentile([0.3], 95) == pytest.approx(0.3)

    def test_format_metric(self):
        assert format_metric(0.6) == "0.6"
        assert format_metric(0.716) == "0.716"
        assert format_metric(3.0) == "3"


class TestCalibrationGates:
    """Gate order, fallbacks and idempotence of evaluate_calibration_gates."""

    def test_all_gates_pass(self):
        failures = evaluate_calibration_gates(make_calibration(), residuals(0.2, 0.3, 0.4), make_underlay(), False)

        assert failures == []

    def test_percentile_gate(self):
        failures = evaluate_calibration_gates(
            make_calibration(), residuals(0.10, 0.12, 0.16, 0.18, 0.85), make_underlay(), False)

        assert failures == ["reprojection_p95=0.716 > 0.6"]

    def test_scalar_fallback_without_samples(self):
        failures = evaluate_calibration_gates(make_calibration(0.55), residuals(), make_underlay(), False)

        assert failures == ["reprojection_error=0.55 > 0.5"]

    def test_scalar_ignored_when_samples_exist(self):
        failures = evaluate_calibration_gates(make_calibration(0.55), residuals(0.2, 0.2, 0.2), make_underlay(), False)

        assert failures == []

    def test_strict_intrinsic_gate(self):
        calibration = make_calibration()

        assert evaluate_calibration_gates(calibration, residuals(0.2), make_underlay(), False) == []
        assert evaluate_calibration_gates(calibration, residuals(0.2), make_underlay(), True) == \
            ["intrinsic_frames=0 < 3"]

    def test_underlay_gates_in_order(self):
        failures = evaluate_calibration_gates(
            make_calibration(), residuals(0.2), make_underlay(scale_confidence=0.5, pose_quality=0.3), True)

        assert failures == [
            "intrinsic_frames=0 < 3",
            "scale_confidence=0.5 < 0.7",
            "pose_quality=0.3 < 0.45",
        ]

    def test_idempotent(self):
        args = (make_calibration(0.7), residuals(0.1, 0.9, 0.4), make_underlay(0.6, 0.4), True)

        assert evaluate_calibration_gates(*args) == evaluate_calibration_gates(*args)
