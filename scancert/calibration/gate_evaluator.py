"""
Calibration quality gates.
"""

from typing import List

from ..core.constants import (
    MAX_REPROJECTION_ERROR_PERCENTILE_PX,
    MAX_REPROJECTION_ERROR_PX,
    MIN_UNDERLAY_POSE_QUALITY,
    MIN_UNDERLAY_SCALE_CONFIDENCE,
    MIN_USABLE_INTRINSIC_FRAMES,
    REPROJECTION_ERROR_PERCENTILE,
)
from ..core.models import CalibrationResidualSamples, CalibrationResult, UnderlayVerificationResult
from ..core.utils import format_metric, percentile


def evaluate_calibration_gates(
    calibration: CalibrationResult,
    residuals: CalibrationResidualSamples,
    underlay: UnderlayVerificationResult,
    require_intrinsic_frames: bool
) -> List[str]:
    """
    Evaluate the calibration gates.

    Args:
        calibration: Calibration result
        residuals: Residual samples; the reprojection percentile is used when
            there are any, the scalar reprojection error otherwise
        underlay: Underlay verification supplying scale confidence and pose quality
        require_intrinsic_frames: Fail when too few views were used for intrinsics

    Returns:
        Failure strings in gate order; empty when every gate passes
    """
    failures = []

    used = calibration.used_intrinsic_frames
    if require_intrinsic_frames and used < MIN_USABLE_INTRINSIC_FRAMES:
        failures.append(f"intrinsic_frames={used} < {MIN_USABLE_INTRINSIC_FRAMES}")

    samples = residuals.reprojection_residual_samples_px
    if samples:
        p = percentile(samples, REPROJECTION_ERROR_PERCENTILE)
        if p > MAX_REPROJECTION_ERROR_PERCENTILE_PX:
            failures.append(f"reprojection_p{REPROJECTION_ERROR_PERCENTILE}={format_metric(p)} > "
                            f"{format_metric(MAX_REPROJECTION_ERROR_PERCENTILE_PX)}")
    elif calibration.reprojection_error_px > MAX_REPROJECTION_ERROR_PX:
        failures.append(f"reprojection_error={format_metric(calibration.reprojection_error_px)} > "
                        f"{format_metric(MAX_REPROJECTION_ERROR_PX)}")

    if underlay.scale_confidence < MIN_UNDERLAY_SCALE_CONFIDENCE:
        failures.append(f"scale_confidence={format_metric(underlay.scale_confidence)} < "
                        f"{format_metric(MIN_UNDERLAY_SCALE_CONFIDENCE)}")

    if underlay.pose_quality < MIN_UNDERLAY_POSE_QUALITY:
        failures.append(f"pose_quality={format_metric(underlay.pose_quality)} < "
                        f"{format_metric(MIN_UNDERLAY_POSE_QUALITY)}")

    return failures
