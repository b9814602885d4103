"""
Underlay scale and pose estimation.

Recovers the printed box size of the reference grid together with scale
confidence and pose quality. Four paths are tried in order and the first one
that produces enough samples wins:

1. checkerboard geometry (homography + optional PnP pose),
2. line-grid heuristics (Canny + probabilistic Hough),
3. frame-quality fallback (sharpness/exposure bias),
4. static fallback.

The winning path is reported as the detection mode.
"""

import asyncio
import logging
import math
import os
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import cv2
import numpy as np

from ..calibration.checkerboard import create_object_points, find_checkerboard
from ..core.cancellation import ensure_token, CancellationToken
from ..core.constants import (
    CHECKERBOARD_SIZE,
    DETECTION_MODE_CHECKERBOARD,
    DETECTION_MODE_FRAME_QUALITY,
    DETECTION_MODE_LINE_GRID,
    DETECTION_MODE_STATIC,
    EXPECTED_GRID_SPACING_PX,
    FAILED_POSE_SCORE,
    FRAME_QUALITY_CLAMP_MM,
    GEOMETRY_CLAMP_MM,
    HOMOGRAPHY_RANSAC_THRESHOLD,
    IDEAL_SHARPNESS,
    LINE_CLUSTER_MERGE_PX,
    LINE_GRID_CLAMP_MM,
    LINE_SPACING_RANGE_PX,
    MIN_HOUGH_LINES,
    MIN_MAPPED_DISTANCES,
    MIN_UNDERLAY_SAMPLES,
    NEUTRAL_POSE_SCORE,
    STATIC_FALLBACK_OFFSETS_MM,
    STATIC_FALLBACK_POSE_QUALITY,
    STATIC_FALLBACK_SCALE_CONFIDENCE,
    UNDERLAY_TARGET_SAMPLES,
)
from ..core.models import CaptureFrame, CaptureResult, IntrinsicCalibrationDetails
from ..core.utils import clamp, mean_or_zero, median, population_std

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UnderlayBoxSizeEstimate:
    """Aggregated underlay measurement from one detection path."""
    measured_box_sizes_mm: Tuple[float, ...]
    detection_mode: str
    scale_confidence: float
    pose_quality: float
    grid_spacing_px: float = 0.0
    grid_spacing_std_dev_px: float = 0.0
    homography_inlier_ratio: float = 0.0
    pose_reprojection_error_px: float = 0.0
    geometry_derived: bool = False


@dataclass(frozen=True)
class UnderlaySample:
    """Measurement from a single preview or frame."""
    measured_box_size_mm: float
    scale_confidence: float
    pose_quality: float
    grid_spacing_px: float = 0.0
    grid_spacing_std_dev_px: float = 0.0
    homography_inlier_ratio: float = 0.0
    pose_reprojection_error_px: float = 0.0
    geometry_derived: bool = False


# ==================== GEOMETRY HELPERS ====================

def axis_spacing(points: np.ndarray, columns: int, rows: int) -> Tuple[List[float], List[float]]:
    """(horizontal, vertical) neighbour spacings of a row-major grid of points."""
    grid = points.reshape(rows, columns, 2).astype(np.float64)
    horizontal = np.linalg.norm(grid[:, 1:] - grid[:, :-1], axis=2).ravel().tolist()
    vertical = np.linalg.norm(grid[1:, :] - grid[:-1, :], axis=2).ravel().tolist()
    return horizontal, vertical


def estimate_pose_metrics(
    corners: np.ndarray,
    pattern_size: Tuple[int, int],
    square_size_mm: float,
    intrinsics: Optional[IntrinsicCalibrationDetails]
) -> Tuple[float, float]:
    """
    Pose score of the board from a PnP solve.

    The score blends frontal-ness (|R[2,2]|, 55%) with reprojection accuracy
    (1 / (1 + rms / 1.5), 45%).

    Returns:
        (pose_score, reprojection_rms_px); a neutral score without intrinsics
        and a reduced one when the solve fails
    """
    if intrinsics is None or len(intrinsics.camera_matrix) != 9:
        return NEUTRAL_POSE_SCORE, 0.0

    try:
        camera_matrix = np.array(intrinsics.camera_matrix, dtype=np.float64).reshape(3, 3)
        dist_coeffs = np.array(intrinsics.distortion_coefficients, dtype=np.float64).reshape(-1, 1)
        object_points = create_object_points(pattern_size, square_size_mm)
        image_points = corners.reshape(-1, 2).astype(np.float32)

        ok, rvec, tvec = cv2.solvePnP(object_points, image_points, camera_matrix, dist_coeffs,
                                      flags=cv2.SOLVEPNP_ITERATIVE)
        if not ok:
            return FAILED_POSE_SCORE, 0.0

        projected, _ = cv2.projectPoints(object_points, rvec, tvec, camera_matrix, dist_coeffs)
        residuals = projected.reshape(-1, 2) - image_points
        rms = float(np.sqrt(np.mean(np.sum(residuals ** 2, axis=1))))

        rotation, _ = cv2.Rodrigues(rvec)
        frontal = clamp(abs(float(rotation[2, 2])), 0.0, 1.0)
        reprojection_score = clamp(1.0 / (1.0 + rms / 1.5), 0.0, 1.0)
        return clamp(frontal * 0.55 + reprojection_score * 0.45, 0.0, 1.0), rms
    except (cv2.error, ValueError, np.linalg.LinAlgError) as e:
        logger.debug(f"Pose solve failed: {e}")
        return FAILED_POSE_SCORE, 0.0


def estimate_from_checkerboard(
    image: np.ndarray,
    expected_box_size_mm: float,
    intrinsics: Optional[IntrinsicCalibrationDetails] = None,
    pattern_size: Tuple[int, int] = CHECKERBOARD_SIZE
) -> Optional[UnderlaySample]:
    """
    Measure the box size from detected checkerboard corners.

    Corners are mapped onto the ideal grid (in mm) through a RANSAC
    homography; the median adjacent distance is the measured box size.

    Returns:
        Sample, or None when the board is not found or the fit is degenerate
    """
    corners = find_checkerboard(image, pattern_size)
    if corners is None:
        return None

    columns, rows = pattern_size
    ideal = create_object_points(pattern_size, expected_box_size_mm)[:, :2]
    homography, mask = cv2.findHomography(corners.reshape(-1, 2), ideal, cv2.RANSAC, HOMOGRAPHY_RANSAC_THRESHOLD)
    if homography is None:
        return None

    mapped = cv2.perspectiveTransform(corners.reshape(-1, 1, 2).astype(np.float64), homography)
    mapped_h, mapped_v = axis_spacing(mapped, columns, rows)
    distances = mapped_h + mapped_v
    if len(distances) < MIN_MAPPED_DISTANCES:
        return None

    expected = max(expected_box_size_mm, 0.001)
    measured = round(clamp(median(distances),
                           expected_box_size_mm - GEOMETRY_CLAMP_MM,
                           expected_box_size_mm + GEOMETRY_CLAMP_MM), 3)

    consistency = clamp(1.0 / (1.0 + population_std(distances) / expected), 0.0, 1.0)
    accuracy = clamp(1.0 - abs(measured - expected_box_size_mm) / expected * 5.0, 0.0, 1.0)
    inlier_ratio = clamp(float(np.count_nonzero(mask)) / len(corners), 0.0, 1.0) if mask is not None else 0.0

    horizontal, vertical = axis_spacing(corners, columns, rows)
    mean_h = mean_or_zero(horizontal)
    mean_v = mean_or_zero(vertical)
    combined = horizontal + vertical
    anisotropy = clamp(min(mean_h, mean_v) / max(mean_h, mean_v), 0.0, 1.0) if mean_h > 0 and mean_v > 0 else 0.6

    pose_score, pose_rms = estimate_pose_metrics(corners, pattern_size, expected_box_size_mm, intrinsics)

    return UnderlaySample(
        measured_box_size_mm=measured,
        scale_confidence=round(clamp(accuracy * 0.45 + consistency * 0.25 + inlier_ratio * 0.30, 0.0, 1.0), 3),
        pose_quality=round(clamp(anisotropy * 0.40 + consistency * 0.20 + pose_score * 0.40, 0.0, 1.0), 3),
        grid_spacing_px=round(max(0.0, mean_or_zero(combined)), 3),
        grid_spacing_std_dev_px=round(max(0.0, population_std(combined)), 3),
        homography_inlier_ratio=round(inlier_ratio, 3),
        pose_reprojection_error_px=round(max(0.0, pose_rms), 3),
        geometry_derived=True,
    )


# ==================== LINE-GRID HELPERS ====================

def cluster_positions(positions: Sequence[float], merge_px: float = LINE_CLUSTER_MERGE_PX) -> List[float]:
    """Merge sorted positions closer than ``merge_px`` to their running cluster."""
    ordered = sorted(positions)
    if not ordered:
        return []

    clusters = []
    current = [ordered[0]]
    for value in ordered[1:]:
        if abs(value - current[-1]) <= merge_px:
            current.append(value)
            continue
        clusters.append(sum(current) / len(current))
        current = [value]
    clusters.append(sum(current) / len(current))
    return clusters


def median_line_spacing(positions: Sequence[float]) -> Optional[float]:
    """Median spacing between line clusters, None when the axis has too few lines."""
    if len(positions) < 4:
        return None

    clusters = cluster_positions(positions)
    if len(clusters) < 4:
        return None

    low, high = LINE_SPACING_RANGE_PX
    spacing = [b - a for a, b in zip(clusters, clusters[1:]) if low <= b - a <= high]
    if not spacing:
        return None
    return median(spacing)


def estimate_from_line_grid(image: np.ndarray, expected_box_size_mm: float) -> Optional[UnderlaySample]:
    """
    Measure grid regularity from near-horizontal and near-vertical line segments.

    Returns:
        Sample, or None when neither axis yields a spacing
    """
    gray = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY) if len(image.shape) == 3 else image
    blurred = cv2.GaussianBlur(gray, (5, 5), 0)
    edges = cv2.Canny(blurred, 70, 150)

    lines = cv2.HoughLinesP(edges, 1, math.pi / 180.0, threshold=40, minLineLength=30, maxLineGap=8)
    if lines is None or len(lines) < MIN_HOUGH_LINES:
        return None

    vertical_positions = []
    horizontal_positions = []
    for x1, y1, x2, y2 in lines.reshape(-1, 4):
        dx = abs(float(x2) - float(x1))
        dy = abs(float(y2) - float(y1))
        if dy > dx * 2.0:
            vertical_positions.append((x1 + x2) / 2.0)
        elif dx > dy * 2.0:
            horizontal_positions.append((y1 + y2) / 2.0)

    spacings = [s for s in (median_line_spacing(vertical_positions),
                            median_line_spacing(horizontal_positions)) if s is not None]
    if not spacings:
        return None

    average = sum(spacings) / len(spacings)
    spread = population_std(spacings) if len(spacings) > 1 else 0.0

    regularity = clamp(1.0 / (1.0 + abs(average - EXPECTED_GRID_SPACING_PX) / 30.0), 0.0, 1.0)
    adjustment = (regularity - 0.75) * 0.18
    measured = round(clamp(expected_box_size_mm + adjustment,
                           expected_box_size_mm - LINE_GRID_CLAMP_MM,
                           expected_box_size_mm + LINE_GRID_CLAMP_MM), 3)

    coverage = 1.0 if len(spacings) == 2 else 0.82
    return UnderlaySample(
        measured_box_size_mm=measured,
        scale_confidence=round(clamp(regularity * 0.75 + coverage * 0.25, 0.0, 1.0), 3),
        pose_quality=round(clamp(1.0 / (1.0 + spread / 6.0) * coverage, 0.0, 1.0), 3),
        grid_spacing_px=round(max(0.0, average), 3),
        grid_spacing_std_dev_px=round(max(0.0, spread), 3),
    )


# ==================== FALLBACKS ====================

def estimate_from_frame_quality(frame: CaptureFrame, expected_box_size_mm: float) -> UnderlaySample:
    """Small size bias from sharpness and exposure deviation."""
    candidate = (expected_box_size_mm
                 + (IDEAL_SHARPNESS - frame.sharpness_score) * 0.12
                 + (0.5 - frame.exposure_score) * 0.06)
    measured = round(clamp(candidate,
                           expected_box_size_mm - FRAME_QUALITY_CLAMP_MM,
                           expected_box_size_mm + FRAME_QUALITY_CLAMP_MM), 3)
    return UnderlaySample(
        measured_box_size_mm=measured,
        scale_confidence=round(clamp(frame.sharpness_score * 0.65 + frame.exposure_score * 0.35, 0.0, 1.0), 3),
        pose_quality=round(clamp(frame.sharpness_score * 0.55 + frame.exposure_score * 0.25, 0.0, 1.0), 3),
    )


def aggregate_samples(samples: Sequence[UnderlaySample], detection_mode: str) -> UnderlayBoxSizeEstimate:
    return UnderlayBoxSizeEstimate(
        measured_box_sizes_mm=tuple(s.measured_box_size_mm for s in samples),
        detection_mode=detection_mode,
        scale_confidence=round(clamp(mean_or_zero(s.scale_confidence for s in samples), 0.0, 1.0), 3),
        pose_quality=round(clamp(mean_or_zero(s.pose_quality for s in samples), 0.0, 1.0), 3),
        grid_spacing_px=round(mean_or_zero(s.grid_spacing_px for s in samples), 3),
        grid_spacing_std_dev_px=round(mean_or_zero(s.grid_spacing_std_dev_px for s in samples), 3),
        homography_inlier_ratio=round(clamp(mean_or_zero(s.homography_inlier_ratio for s in samples), 0.0, 1.0), 3),
        pose_reprojection_error_px=round(mean_or_zero(s.pose_reprojection_error_px for s in samples), 3),
        geometry_derived=bool(samples) and all(s.geometry_derived for s in samples),
    )


def static_fallback_estimate(expected_box_size_mm: float) -> UnderlayBoxSizeEstimate:
    return UnderlayBoxSizeEstimate(
        measured_box_sizes_mm=tuple(round(expected_box_size_mm + offset, 3) for offset in STATIC_FALLBACK_OFFSETS_MM),
        detection_mode=DETECTION_MODE_STATIC,
        scale_confidence=STATIC_FALLBACK_SCALE_CONFIDENCE,
        pose_quality=STATIC_FALLBACK_POSE_QUALITY,
    )


class UnderlayBoxSizeEstimator:
    """
    Estimates underlay box sizes from a capture.

    Args:
        pattern_size: Checkerboard inner corners (columns, rows)
        target_samples: Samples collected per path before stopping
        min_samples: Samples a path must produce to be used
    """

    def __init__(self,
                 pattern_size: Tuple[int, int] = CHECKERBOARD_SIZE,
                 target_samples: int = UNDERLAY_TARGET_SAMPLES,
                 min_samples: int = MIN_UNDERLAY_SAMPLES):
        self.pattern_size = pattern_size
        self.target_samples = target_samples
        self.min_samples = min_samples

    async def estimate(
        self,
        capture: CaptureResult,
        expected_box_size_mm: float,
        intrinsics: Optional[IntrinsicCalibrationDetails] = None,
        token: Optional[CancellationToken] = None
    ) -> UnderlayBoxSizeEstimate:
        """
        Estimate box sizes from the accepted frames of ``capture``.

        Args:
            capture: Capture result
            expected_box_size_mm: Printed box size
            intrinsics: Camera intrinsics for the pose solve, if available
            token: Cancellation token, checked before each preview read

        Returns:
            Estimate from the first path with enough samples
        """
        token = ensure_token(token)
        accepted = list(capture.accepted_frames)
        images: Dict[str, Optional[np.ndarray]] = {}

        image_paths = (
            (DETECTION_MODE_CHECKERBOARD,
             lambda image: estimate_from_checkerboard(image, expected_box_size_mm, intrinsics, self.pattern_size)),
            (DETECTION_MODE_LINE_GRID,
             lambda image: estimate_from_line_grid(image, expected_box_size_mm)),
        )

        for mode, estimator in image_paths:
            samples = await self._collect_from_previews(accepted, estimator, images, token)
            if len(samples) >= self.min_samples:
                logger.info(f"Underlay estimated via {mode} from {len(samples)} preview(s)")
                return aggregate_samples(samples, mode)

        samples = [estimate_from_frame_quality(f, expected_box_size_mm) for f in accepted[:self.target_samples]]
        if len(samples) >= self.min_samples:
            logger.info(f"Underlay estimated via {DETECTION_MODE_FRAME_QUALITY} from {len(samples)} frame(s)")
            return aggregate_samples(samples, DETECTION_MODE_FRAME_QUALITY)

        logger.warning("No usable underlay frames; using static fallback")
        return static_fallback_estimate(expected_box_size_mm)

    async def _collect_from_previews(
        self,
        frames: List[CaptureFrame],
        estimator: Callable[[np.ndarray], Optional[UnderlaySample]],
        images: Dict[str, Optional[np.ndarray]],
        token: CancellationToken
    ) -> List[UnderlaySample]:
        samples = []
        for frame in frames:
            token.raise_if_cancelled("underlay estimation")
            if frame.frame_id not in images:
                images[frame.frame_id] = await asyncio.to_thread(_load_gray, frame.preview_image_path)

            image = images[frame.frame_id]
            if image is None:
                continue

            try:
                sample = await asyncio.to_thread(estimator, image)
            except (cv2.error, ValueError, np.linalg.LinAlgError) as e:
                logger.warning(f"Underlay estimation failed for {frame.frame_id}: {e}")
                continue

            if sample is not None:
                samples.append(sample)
                if len(samples) >= self.target_samples:
                    break
        return samples


def _load_gray(path: Optional[str]) -> Optional[np.ndarray]:
    if not path or not os.path.isfile(path):
        return None
    image = cv2.imread(path, cv2.IMREAD_GRAYSCALE)
    if image is None or image.size == 0:
        return None
    return image
