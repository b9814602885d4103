"""Tests for underlay box-size estimation and pattern validation."""
import sys

import numpy as np
import pytest

from scancert.calibration.checkerboard import find_checkerboard
from scancert.calibration.intrinsic_calibration import IntrinsicCalibrationService
from scancert.capture.synthetic import render_checkerboard
from scancert.core.constants import (
    CHECKERBOARD_SIZE,
    DETECTION_MODE_CHECKERBOARD,
    DETECTION_MODE_FRAME_QUALITY,
    DETECTION_MODE_LINE_GRID,
    DETECTION_MODE_STATIC,
    NEUTRAL_POSE_SCORE,
)
from scancert.underlay import box_size_estimator
from scancert.underlay.box_size_estimator import (
    UnderlayBoxSizeEstimator,
    cluster_positions,
    estimate_from_frame_quality,
    estimate_pose_metrics,
    median_line_spacing,
    static_fallback_estimate,
)
from scancert.underlay.pattern_validator import UnderlayPatternValidator, mad_inliers

from conftest import make_capture, make_frame


@pytest.fixture
def estimator():
    return UnderlayBoxSizeEstimator()


@pytest.fixture
def validator():
    return UnderlayPatternValidator()


class TestUnderlayBoxSizeEstimator:
    """Path selection of UnderlayBoxSizeEstimator.estimate."""

    @pytest.mark.asyncio
    async def test_checkerboard_geometry_path(self, estimator, checkerboard_frames):
        estimate = await estimator.estimate(make_capture(checkerboard_frames), 10.0)

        assert estimate.detection_mode == DETECTION_MODE_CHECKERBOARD
        assert estimate.geometry_derived is True
        assert len(estimate.measured_box_sizes_mm) >= 3
        assert all(9.78 <= size <= 10.22 for size in estimate.measured_box_sizes_mm)
        assert estimate.homography_inlier_ratio > 0.9
        assert estimate.grid_spacing_px > 0.0

    @pytest.mark.asyncio
    async def test_line_grid_path(self, estimator, line_grid_frames):
        estimate = await estimator.estimate(make_capture(line_grid_frames), 10.0)

        assert estimate.detection_mode == DETECTION_MODE_LINE_GRID
        assert estimate.geometry_derived is False
        assert estimate.grid_spacing_px == pytest.approx(40.0, abs=4.0)
        assert all(9.82 <= size <= 10.18 for size in estimate.measured_box_sizes_mm)

    @pytest.mark.asyncio
    async def test_frame_quality_path_without_previews(self, estimator):
        capture = make_capture([make_frame(i) for i in range(1, 8)])

        estimate = await estimator.estimate(capture, 10.0)

        assert estimate.detection_mode == DETECTION_MODE_FRAME_QUALITY
        assert len(estimate.measured_box_sizes_mm) == 5

    @pytest.mark.asyncio
    async def test_static_fallback_without_accepted_frames(self, estimator):
        frames = [make_frame(i, accepted=False, sharpness=0.4) for i in range(1, 4)]

        estimate = await estimator.estimate(make_capture(frames, required=0), 10.0)

        assert estimate.detection_mode == DETECTION_MODE_STATIC
        assert estimate.measured_box_sizes_mm == (9.96, 10.04, 10.02)
        assert estimate.scale_confidence == pytest.approx(0.25)
        assert estimate.pose_quality == pytest.approx(0.20)

    def test_frame_quality_sample_bias(self):
        sample = estimate_from_frame_quality(make_frame(1, sharpness=0.0, exposure=0.0), 10.0)

        assert sample.measured_box_size_mm == pytest.approx(10.138)

    def test_static_estimate_is_relative_to_expected(self):
        assert static_fallback_estimate(5.0).measured_box_sizes_mm == (4.96, 5.04, 5.02)


class TestLineClustering:
    def test_cluster_positions_merges_close_values(self):
        assert cluster_positions([10.0, 12.0, 50.0, 51.0, 90.0]) == [11.0, 50.5, 90.0]

    def test_median_spacing_needs_four_lines(self):
        assert median_line_spacing([0.0, 40.0, 80.0]) is None
        assert median_line_spacing([0.0, 40.0, 80.0, 120.0, 161.0]) == pytest.approx(40.0)


class TestPoseMetrics:
    """Pose score of the checkerboard path with and without intrinsics."""

    def test_neutral_score_without_intrinsics(self):
        corners = find_checkerboard(render_checkerboard(1))

        assert estimate_pose_metrics(corners, CHECKERBOARD_SIZE, 10.0, None) == (NEUTRAL_POSE_SCORE, 0.0)

    @pytest.mark.asyncio
    async def test_solved_intrinsics_blend_frontal_and_reprojection(self, session, checkerboard_frames):
        calibration = await IntrinsicCalibrationService().calibrate(session, make_capture(checkerboard_frames))
        intrinsics = calibration.intrinsic_calibration
        assert intrinsics is not None

        corners = find_checkerboard(render_checkerboard(1))
        score, rms = estimate_pose_metrics(corners, CHECKERBOARD_SIZE, 10.0, intrinsics)

        assert rms > 0.0
        assert 0.0 <= score <= 1.0
        assert score != NEUTRAL_POSE_SCORE

    @pytest.mark.asyncio
    async def test_estimator_reports_pose_error_with_intrinsics(self, estimator, session, checkerboard_frames):
        capture = make_capture(checkerboard_frames)
        calibration = await IntrinsicCalibrationService().calibrate(session, capture)

        estimate = await estimator.estimate(capture, 10.0, calibration.intrinsic_calibration)

        assert estimate.detection_mode == DETECTION_MODE_CHECKERBOARD
        assert estimate.pose_reprojection_error_px > 0.0
        assert 0.0 <= estimate.pose_quality <= 1.0

    @pytest.mark.asyncio
    async def test_geometry_failure_only_skips_the_frame(self, estimator, checkerboard_frames, monkeypatch):
        def singular(*args, **kwargs):
            raise np.linalg.LinAlgError("Singular matrix")

        monkeypatch.setattr(box_size_estimator, "estimate_from_checkerboard", singular)

        estimate = await estimator.estimate(make_capture(checkerboard_frames), 10.0)

        assert estimate.detection_mode != DETECTION_MODE_CHECKERBOARD
        assert len(estimate.measured_box_sizes_mm) >= 3


class TestUnderlayPatternValidator:
    """Robust statistics of UnderlayPatternValidator.validate."""

    def test_mad_rejects_outlier(self, validator):
        samples = [9.98, 10.02, 10.01, 9.99, 10.00, 11.20]

        result = validator.validate("Mata-10mm-grid", 10.0, samples)

        assert 11.20 not in result.inlier_box_sizes_mm
        assert len(result.inlier_box_sizes_mm) < len(result.measured_box_sizes_mm)
        assert set(result.inlier_box_sizes_mm) <= set(result.measured_box_sizes_mm)
        assert result.max_absolute_error_mm == pytest.approx(0.02)
        assert result.passed is True
        assert result.fit_confidence == pytest.approx(5 / 6 * (1 - 0.012 / 0.2))

    def test_empty_input(self, validator):
        result = validator.validate("Mata-10mm-grid", 10.0, [])

        assert result.performed is False
        assert result.passed is False
        assert result.fit_confidence == 0.0
        assert result.scale_confidence == 0.0
        assert result.pose_quality == 0.0
        assert result.max_absolute_error_mm == sys.float_info.max

    def test_small_sets_are_not_filtered(self, validator):
        result = validator.validate("Mata-10mm-grid", 10.0, [10.0, 10.5, 9.9])

        assert result.inlier_box_sizes_mm == (10.0, 10.5, 9.9)
        assert result.max_absolute_error_mm == pytest.approx(0.5)
        assert result.passed is False

    def test_zero_mad_skips_filtering(self):
        assert mad_inliers([10.0, 10.0, 10.0, 12.0]) == [10.0, 10.0, 10.0, 12.0]

    def test_confidences_default_to_fit(self, validator):
        result = validator.validate("Mata-10mm-grid", 10.0, [10.02, 9.98, 10.01])

        assert result.scale_confidence == pytest.approx(result.fit_confidence)
        assert result.pose_quality == pytest.approx(result.fit_confidence * 0.95)

    def test_supplied_confidences_are_kept(self, validator):
        result = validator.validate("Mata-10mm-grid", 10.0, [10.0, 10.0, 10.0],
                                    scale_confidence=0.8, pose_quality=0.6)

        assert result.scale_confidence == pytest.approx(0.8)
        assert result.pose_quality == pytest.approx(0.6)
        assert result.fit_confidence == pytest.approx(1.0)

    def test_validate_estimate_carries_mode(self, validator):
        estimate = static_fallback_estimate(10.0)

        result = validator.validate_estimate(estimate, "Mata-10mm-grid", 10.0)

        assert result.detection_mode == DETECTION_MODE_STATIC
        assert result.scale_confidence == pytest.approx(0.25)
        assert result.passed is True
        assert result.geometry_derived is False
