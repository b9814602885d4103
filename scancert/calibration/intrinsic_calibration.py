"""
Intrinsic calibration engine.

Detects the checkerboard underlay in the accepted preview images and solves
the camera matrix and distortion coefficients. When fewer than the minimum
number of views yield corners, reprojection and scale error are estimated
from frame quality instead and the result is labelled accordingly.
"""

import asyncio
import logging
import os
from collections import Counter
from dataclasses import dataclass
from typing import List, Optional, Tuple

import cv2
import numpy as np

from ..core.cancellation import ensure_token, CancellationToken
from ..core.constants import (
    CALIBRATION_MODE_CHECKERBOARD,
    CALIBRATION_MODE_FRAME_HEURISTIC,
    CALIBRATION_MODE_STATIC,
    CHECKER_SQUARE_SIZE_MM,
    CHECKERBOARD_REPROJECTION_RANGE_PX,
    CHECKERBOARD_SCALE_RANGE_MM,
    CHECKERBOARD_SIZE,
    HEURISTIC_REPROJECTION_RANGE_PX,
    HEURISTIC_SCALE_RANGE_MM,
    MIN_INTRINSIC_FRAMES,
    REASON_CATEGORIES,
    REPROJECTION_TOLERANCE_PX,
    SCALE_TOLERANCE_MM,
    IntrinsicReason,
)
from ..core.models import (
    CalibrationResult,
    CaptureFrame,
    CaptureResult,
    IntrinsicCalibrationDetails,
    IntrinsicDiagnosticsSummary,
    IntrinsicFrameInclusionDiagnostic,
    ScanSession,
    utc_now,
)
from ..core.utils import clamp, mean_or_zero
from .checkerboard import create_object_points, find_checkerboard

logger = logging.getLogger(__name__)

STATIC_REPROJECTION_ERROR_PX = 0.42
STATIC_SCALE_ERROR_MM = 0.12


@dataclass
class _FrameDetection:
    frame_id: str
    reason: str
    corners: Optional[np.ndarray] = None
    image_size: Optional[Tuple[int, int]] = None


def summarize_intrinsic_diagnostics(
    diagnostics: List[IntrinsicFrameInclusionDiagnostic]
) -> IntrinsicDiagnosticsSummary:
    """Totals and rejection counts (keys sorted) over per-frame diagnostics."""
    rejected = [d for d in diagnostics if not d.included]
    by_reason = Counter(d.reason_code for d in rejected)
    by_category = Counter(d.reason_category for d in rejected)
    return IntrinsicDiagnosticsSummary(
        total_frames_evaluated=len(diagnostics),
        usable_frames=len(diagnostics) - len(rejected),
        rejected_frames=len(rejected),
        rejected_frames_by_reason=dict(sorted(by_reason.items())),
        rejected_frames_by_category=dict(sorted(by_category.items())),
        frame_diagnostics=tuple(diagnostics),
    )


def _diagnostic(frame_id: str, reason: str) -> IntrinsicFrameInclusionDiagnostic:
    return IntrinsicFrameInclusionDiagnostic(
        frame_id=frame_id,
        included=reason == IntrinsicReason.USED,
        reason_code=reason,
        reason_category=REASON_CATEGORIES.get(reason, "other"),
    )


def heuristic_calibration_errors(frames: List[CaptureFrame]) -> Tuple[float, float, str]:
    """
    Reprojection and scale error estimated from frame quality.

    Uses the accepted frames, or every frame when none was accepted.

    Returns:
        (reprojection_error_px, scale_error_mm, calibration_mode)
    """
    if not frames:
        return STATIC_REPROJECTION_ERROR_PX, STATIC_SCALE_ERROR_MM, CALIBRATION_MODE_STATIC

    selected = [f for f in frames if f.accepted] or list(frames)
    sharpness = mean_or_zero(f.sharpness_score for f in selected)
    exposure = mean_or_zero(f.exposure_score for f in selected)

    reprojection = clamp(0.12 + (1.0 - sharpness) * 0.30 + abs(exposure - 0.5) * 0.10,
                         *HEURISTIC_REPROJECTION_RANGE_PX)
    scale = clamp(0.035 + (1.0 - sharpness) * 0.12 + abs(exposure - 0.5) * 0.05,
                  *HEURISTIC_SCALE_RANGE_MM)
    return reprojection, scale, CALIBRATION_MODE_FRAME_HEURISTIC


class IntrinsicCalibrationService:
    """
    Camera intrinsic calibration from checkerboard previews.

    Args:
        pattern_size: Inner corners (columns, rows)
        square_size_mm: Checker square size in mm
        min_frames: Minimum views with detected corners for a solve
    """

    def __init__(self,
                 pattern_size: Tuple[int, int] = CHECKERBOARD_SIZE,
                 square_size_mm: float = CHECKER_SQUARE_SIZE_MM,
                 min_frames: int = MIN_INTRINSIC_FRAMES):
        self.pattern_size = pattern_size
        self.square_size_mm = square_size_mm
        self.min_frames = min_frames
        self.object_points = create_object_points(pattern_size, square_size_mm)

    async def calibrate(
        self,
        session: ScanSession,
        capture: Optional[CaptureResult] = None,
        token: Optional[CancellationToken] = None
    ) -> CalibrationResult:
        """
        Calibrate the camera for ``session``.

        Args:
            session: Scan session
            capture: Capture result whose accepted previews are analyzed
            token: Cancellation token, checked before each preview read

        Returns:
            Calibration result; ``intrinsic_calibration`` is set only when the
            checkerboard solve ran
        """
        token = ensure_token(token)
        frames = list(capture.frames) if capture is not None else []

        detections = []
        for frame in (f for f in frames if f.accepted):
            token.raise_if_cancelled("intrinsic calibration")
            detections.append(await asyncio.to_thread(self._detect, frame))

        diagnostics = self._check_image_sizes(detections)
        summary = summarize_intrinsic_diagnostics(diagnostics)
        usable = [d for d in detections if d.reason == IntrinsicReason.USED]

        intrinsics = None
        if len(usable) >= self.min_frames:
            token.raise_if_cancelled("intrinsic calibration")
            intrinsics, reprojection, scale = await asyncio.to_thread(self._solve, usable, summary)
            mode = f"{CALIBRATION_MODE_CHECKERBOARD}; framesUsed={len(usable)}"
        else:
            reprojection, scale, mode = heuristic_calibration_errors(frames)
            logger.info(f"Only {len(usable)} checkerboard view(s) usable; using {mode} calibration estimate")

        within = reprojection <= REPROJECTION_TOLERANCE_PX and scale <= SCALE_TOLERANCE_MM
        notes = (f"Calibration completed within configured tolerances ({mode})."
                 if within else f"Calibration exceeded configured tolerances ({mode}).")
        logger.info(f"Calibration {session.session_id.hex}: reprojection={reprojection:.3f}px "
                    f"scale={scale:.3f}mm ({mode})")

        return CalibrationResult(
            calibration_profile_id=f"calib-{session.session_id.hex}",
            calibrated_at=utc_now(),
            reprojection_error_px=reprojection,
            scale_error_mm=scale,
            is_within_tolerance=within,
            notes=notes,
            calibration_mode=mode.split(";")[0],
            intrinsic_calibration=intrinsics,
            intrinsic_diagnostics=summary,
        )

    def _detect(self, frame: CaptureFrame) -> _FrameDetection:
        path = frame.preview_image_path
        if not path or not os.path.isfile(path):
            return _FrameDetection(frame.frame_id, IntrinsicReason.PREVIEW_MISSING)

        try:
            image = cv2.imread(path, cv2.IMREAD_GRAYSCALE)
            if image is None or image.size == 0:
                return _FrameDetection(frame.frame_id, IntrinsicReason.IMAGE_READ_FAILED)

            corners = find_checkerboard(image, self.pattern_size)
            if corners is None:
                return _FrameDetection(frame.frame_id, IntrinsicReason.CORNERS_NOT_FOUND)

            height, width = image.shape[:2]
            return _FrameDetection(frame.frame_id, IntrinsicReason.USED, corners, (width, height))
        except (cv2.error, ValueError, OSError) as e:
            logger.warning(f"Checkerboard detection failed for {frame.frame_id}: {e}")
            return _FrameDetection(frame.frame_id, IntrinsicReason.PROCESSING_ERROR)

    @staticmethod
    def _check_image_sizes(detections: List[_FrameDetection]) -> List[IntrinsicFrameInclusionDiagnostic]:
        """Views whose size differs from the first usable view are processing errors."""
        reference = next((d.image_size for d in detections if d.reason == IntrinsicReason.USED), None)
        for detection in detections:
            if detection.reason == IntrinsicReason.USED and detection.image_size != reference:
                logger.warning(f"Preview {detection.frame_id} has size {detection.image_size}, expected {reference}")
                detection.reason = IntrinsicReason.PROCESSING_ERROR
                detection.corners = None
        return [_diagnostic(d.frame_id, d.reason) for d in detections]

    def _solve(
        self,
        usable: List[_FrameDetection],
        summary: IntrinsicDiagnosticsSummary
    ) -> Tuple[IntrinsicCalibrationDetails, float, float]:
        image_size = usable[0].image_size
        object_points = [self.object_points for _ in usable]
        image_points = [d.corners for d in usable]

        rms, camera_matrix, dist_coeffs, rvecs, tvecs = cv2.calibrateCamera(
            object_points, image_points, image_size, None, None
        )

        per_view = []
        for objp, imgp, rvec, tvec in zip(object_points, image_points, rvecs, tvecs):
            projected, _ = cv2.projectPoints(objp, rvec, tvec, camera_matrix, dist_coeffs)
            residuals = projected.reshape(-1, 2) - imgp.reshape(-1, 2)
            per_view.append(float(np.sqrt(np.mean(np.sum(residuals ** 2, axis=1)))))

        distortion = [float(v) for v in np.asarray(dist_coeffs).ravel()]
        mean_abs_distortion = float(np.mean(np.abs(distortion))) if distortion else 0.0

        reprojection = clamp(float(rms), *CHECKERBOARD_REPROJECTION_RANGE_PX)
        scale = clamp(0.03 + reprojection * 0.18 + mean_abs_distortion * 0.02, *CHECKERBOARD_SCALE_RANGE_MM)
        logger.debug(f"Intrinsic solve over {len(usable)} views: rms={rms:.4f}px, per-view={per_view}")

        rejected_reasons = tuple(f"{d.frame_id}:{d.reason_code}" for d in summary.frame_diagnostics if not d.included)
        details = IntrinsicCalibrationDetails(
            pattern_type="checkerboard",
            pattern_columns=self.pattern_size[0],
            pattern_rows=self.pattern_size[1],
            square_size_mm=self.square_size_mm,
            image_width_px=image_size[0],
            image_height_px=image_size[1],
            camera_matrix=tuple(float(v) for v in np.asarray(camera_matrix).ravel()),
            distortion_coefficients=tuple(distortion),
            used_frame_ids=tuple(d.frame_id for d in usable),
            rejected_frame_reasons=rejected_reasons,
            rejected_frame_reason_counts=summary.rejected_frames_by_reason,
            rejected_frame_category_counts=summary.rejected_frames_by_category,
            frame_diagnostics=summary.frame_diagnostics,
            per_view_reprojection_errors_px=tuple(per_view),
        )
        return details, reprojection, scale
