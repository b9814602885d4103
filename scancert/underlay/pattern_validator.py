"""
Underlay print verification with robust outlier rejection.
"""

import sys
import logging
from typing import List, Optional, Sequence

from ..core.constants import (
    DETECTION_MODE_STATIC,
    MAD_REJECTION_FACTOR,
    MIN_SAMPLES_FOR_MAD,
    MIN_UNDERLAY_SAMPLES,
    POSE_FROM_FIT_FACTOR,
    UNDERLAY_TOLERANCE_MM,
)
from ..core.models import UnderlayVerificationResult
from ..core.utils import clamp, median
from .box_size_estimator import UnderlayBoxSizeEstimate

logger = logging.getLogger(__name__)

MAD_EPSILON = 1e-9


def mad_inliers(samples: Sequence[float]) -> List[float]:
    """
    Samples within ``3 * MAD`` of the median, in input order.

    Filtering is skipped for fewer than four samples or a vanishing MAD, and
    the full set is returned when fewer than three samples would survive.
    """
    values = list(samples)
    if len(values) < MIN_SAMPLES_FOR_MAD:
        return values

    center = median(values)
    mad = median([abs(v - center) for v in values])
    if mad <= MAD_EPSILON:
        return values

    limit = MAD_REJECTION_FACTOR * mad
    inliers = [v for v in values if abs(v - center) <= limit]
    if len(inliers) < MIN_UNDERLAY_SAMPLES:
        return values
    return inliers


class UnderlayPatternValidator:
    """Validates measured underlay box sizes against the printed size."""

    def validate(
        self,
        underlay_pattern_id: str,
        expected_box_size_mm: float,
        measured_box_sizes_mm: Sequence[float],
        tolerance_mm: float = UNDERLAY_TOLERANCE_MM,
        detection_mode: str = DETECTION_MODE_STATIC,
        scale_confidence: Optional[float] = None,
        pose_quality: Optional[float] = None,
        diagnostics: Optional[dict] = None
    ) -> UnderlayVerificationResult:
        """
        Validate measured box sizes.

        Args:
            underlay_pattern_id: Printed pattern id
            expected_box_size_mm: Printed box size
            measured_box_sizes_mm: Measured box sizes
            tolerance_mm: Maximum allowed absolute error
            detection_mode: Detection path that produced the measurements
            scale_confidence: Scale confidence from the estimator, derived from
                the fit confidence when omitted
            pose_quality: Pose quality from the estimator, derived from the fit
                confidence when omitted
            diagnostics: Geometry diagnostics copied onto the result
                (grid spacing, inlier ratio, pose error, geometry flag)

        Returns:
            Verification result; ``passed`` iff the max inlier error is within tolerance
        """
        measured = tuple(float(v) for v in measured_box_sizes_mm)
        extra = diagnostics or {}

        if not measured:
            logger.warning(f"No measured boxes for underlay {underlay_pattern_id}")
            return UnderlayVerificationResult(
                performed=False,
                underlay_pattern_id=underlay_pattern_id,
                detection_mode=detection_mode,
                expected_box_size_mm=expected_box_size_mm,
                measured_box_sizes_mm=(),
                inlier_box_sizes_mm=(),
                mean_box_size_mm=0.0,
                max_absolute_error_mm=sys.float_info.max,
                mean_absolute_error_mm=sys.float_info.max,
                fit_confidence=0.0,
                scale_confidence=0.0,
                pose_quality=0.0,
                tolerance_mm=tolerance_mm,
                passed=False,
                notes="No measured underlay boxes provided.",
                **extra,
            )

        inliers = tuple(mad_inliers(measured))
        errors = [abs(v - expected_box_size_mm) for v in inliers]
        mean_size = sum(inliers) / len(inliers)
        max_error = max(errors)
        mean_error = sum(errors) / len(errors)

        inlier_ratio = len(inliers) / len(measured)
        tolerance = max(tolerance_mm, 1e-9)
        fit = clamp(inlier_ratio * (1.0 - min(1.0, mean_error / tolerance)), 0.0, 1.0)

        scale = clamp(scale_confidence, 0.0, 1.0) if scale_confidence is not None else fit
        pose = clamp(pose_quality, 0.0, 1.0) if pose_quality is not None else clamp(fit * POSE_FROM_FIT_FACTOR, 0.0, 1.0)

        passed = max_error <= tolerance_mm
        rejected = len(measured) - len(inliers)
        notes = (f"Underlay print scale verification {'passed' if passed else 'failed'} "
                 f"({detection_mode}; inliers={len(inliers)}/{len(measured)}"
                 f"{f'; rejected={rejected}' if rejected else ''}).")

        return UnderlayVerificationResult(
            performed=True,
            underlay_pattern_id=underlay_pattern_id,
            detection_mode=detection_mode,
            expected_box_size_mm=expected_box_size_mm,
            measured_box_sizes_mm=measured,
            inlier_box_sizes_mm=inliers,
            mean_box_size_mm=mean_size,
            max_absolute_error_mm=max_error,
            mean_absolute_error_mm=mean_error,
            fit_confidence=fit,
            scale_confidence=scale,
            pose_quality=pose,
            tolerance_mm=tolerance_mm,
            passed=passed,
            notes=notes,
            **extra,
        )

    def validate_estimate(
        self,
        estimate: UnderlayBoxSizeEstimate,
        underlay_pattern_id: str,
        expected_box_size_mm: float,
        tolerance_mm: float = UNDERLAY_TOLERANCE_MM
    ) -> UnderlayVerificationResult:
        """Validate an estimator result, carrying its confidences and diagnostics."""
        return self.validate(
            underlay_pattern_id,
            expected_box_size_mm,
            estimate.measured_box_sizes_mm,
            tolerance_mm=tolerance_mm,
            detection_mode=estimate.detection_mode,
            scale_confidence=estimate.scale_confidence,
            pose_quality=estimate.pose_quality,
            diagnostics={
                "grid_spacing_px": estimate.grid_spacing_px,
                "grid_spacing_std_dev_px": estimate.grid_spacing_std_dev_px,
                "homography_inlier_ratio": estimate.homography_inlier_ratio,
                "pose_reprojection_error_px": estimate.pose_reprojection_error_px,
                "geometry_derived": estimate.geometry_derived,
            },
        )
