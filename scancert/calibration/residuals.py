"""
Residual samples feeding the reprojection percentile gate.
"""

import logging
from typing import Optional

from ..core.cancellation import ensure_token, CancellationToken
from ..core.constants import (
    FALLBACK_REPROJECTION_RESIDUALS_PX,
    FALLBACK_SCALE_RESIDUALS_MM,
    MAX_RESIDUAL_SAMPLE_FRAMES,
    MIN_RESIDUAL_SAMPLES,
)
from ..core.models import CalibrationResidualSamples, CalibrationResult, CaptureResult
from ..core.utils import clamp

logger = logging.getLogger(__name__)

PAD_REPROJECTION_PX = 0.42
PAD_SCALE_MM = 0.12


class CalibrationResidualProvider:
    """
    Per-sample reprojection and scale residuals for a calibration.

    Prefers the per-view RMS errors of the intrinsic solve; otherwise
    derives samples from the quality of up to eight frames.
    """

    async def get_residual_samples(
        self,
        calibration: CalibrationResult,
        capture: Optional[CaptureResult] = None,
        token: Optional[CancellationToken] = None
    ) -> CalibrationResidualSamples:
        ensure_token(token).raise_if_cancelled("residual sampling")

        intrinsics = calibration.intrinsic_calibration
        if intrinsics is not None and intrinsics.per_view_reprojection_errors_px:
            reprojection = intrinsics.per_view_reprojection_errors_px
            scale = tuple(
                clamp(0.03 + value * 0.18, 0.01, 0.6) for value in reprojection
            )
            return CalibrationResidualSamples(reprojection, scale, source="intrinsic-per-view")

        if capture is None or not capture.frames:
            logger.debug(f"No frames for {calibration.calibration_profile_id}; using fallback residuals")
            return CalibrationResidualSamples(
                FALLBACK_REPROJECTION_RESIDUALS_PX, FALLBACK_SCALE_RESIDUALS_MM, source="fallback-static")

        frames = [f for f in capture.frames if f.accepted] or list(capture.frames)
        frames = frames[:MAX_RESIDUAL_SAMPLE_FRAMES]

        reprojection = [
            clamp(0.08 + (1.0 - f.sharpness_score) * 0.90 + abs(f.exposure_score - 0.5) * 0.35, 0.05, 1.50)
            for f in frames
        ]
        scale = [
            clamp(0.03 + (1.0 - f.sharpness_score) * 0.20 + abs(f.exposure_score - 0.5) * 0.12, 0.01, 0.60)
            for f in frames
        ]
        while len(reprojection) < MIN_RESIDUAL_SAMPLES:
            reprojection.append(PAD_REPROJECTION_PX)
        while len(scale) < MIN_RESIDUAL_SAMPLES:
            scale.append(PAD_SCALE_MM)

        return CalibrationResidualSamples(tuple(reprojection), tuple(scale), source="frame-quality")
