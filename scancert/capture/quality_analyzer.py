"""
Statistical summary of a completed capture.
"""

import logging
from typing import Dict, List

from ..core.constants import (
    EXPOSURE_MIN_FOR_ACCEPTANCE,
    MAX_FRAME_JITTER_MS,
    MIN_ACCEPTED_RATIO,
    MIN_FRAMES_FOR_QUALITY,
    SHARPNESS_MIN_FOR_ACCEPTANCE,
)
from ..core.models import CaptureFrame, CaptureQualitySummary, CaptureResult
from ..core.utils import format_metric, mean_or_zero, population_std

logger = logging.getLogger(__name__)


def rejection_category(frame: CaptureFrame) -> str:
    """First acceptance criterion a rejected frame misses."""
    if frame.sharpness_score < SHARPNESS_MIN_FOR_ACCEPTANCE:
        return "low_sharpness"
    if frame.exposure_score < EXPOSURE_MIN_FOR_ACCEPTANCE:
        return "low_exposure"
    return "manual_reject"


def frame_intervals_ms(frames) -> List[float]:
    """Positive deltas between sorted source timestamps."""
    stamps = sorted(f.source_timestamp_ms for f in frames if f.source_timestamp_ms is not None)
    deltas = [later - earlier for earlier, later in zip(stamps, stamps[1:])]
    return [d for d in deltas if d > 0]


class CaptureQualityAnalyzer:
    """Computes acceptance, timing and lock statistics over a capture."""

    def analyze(self, capture: CaptureResult) -> CaptureQualitySummary:
        frames = capture.frames
        total = len(frames)
        accepted = sum(1 for f in frames if f.accepted)
        accepted_ratio = accepted / total if total else 0.0

        rejection_counts: Dict[str, int] = {}
        for frame in frames:
            if not frame.accepted:
                category = rejection_category(frame)
                rejection_counts[category] = rejection_counts.get(category, 0) + 1

        with_timestamp = sum(1 for f in frames if f.source_timestamp_ms is not None)
        coverage = with_timestamp / total if total else 0.0

        intervals = frame_intervals_ms(frames)
        interval_mean = mean_or_zero(intervals)
        jitter = population_std(intervals) if len(intervals) >= 2 else 0.0

        warnings = []
        if total < MIN_FRAMES_FOR_QUALITY:
            warnings.append(f"total_frames={total} < {MIN_FRAMES_FOR_QUALITY}")
        if accepted_ratio < MIN_ACCEPTED_RATIO:
            warnings.append(f"accepted_ratio={format_metric(accepted_ratio)} < {format_metric(MIN_ACCEPTED_RATIO)}")
        if capture.exposure_lock_requested and capture.exposure_lock_verified is not True:
            warnings.append(f"exposure_lock_not_verified (status={capture.exposure_lock_status})")
        if capture.white_balance_lock_requested and capture.white_balance_lock_verified is not True:
            warnings.append(f"white_balance_lock_not_verified (status={capture.white_balance_lock_status})")
        if not capture.frame_timestamps_monotonic:
            warnings.append("frame_timestamps_not_monotonic")
        if coverage < 1.0:
            warnings.append(f"timestamp_coverage={format_metric(coverage)} < 1")
        if jitter > MAX_FRAME_JITTER_MS:
            warnings.append(f"frame_interval_jitter_ms={format_metric(jitter)} > {format_metric(MAX_FRAME_JITTER_MS)}")
        if not capture.reliability_target_met:
            warnings.append(f"capture_reliability_not_met ({capture.reliability_failure_reason or 'n/a'})")

        reliability_pass = not warnings
        if reliability_pass:
            summary = "Capture quality is acceptable for reconstruction."
        else:
            summary = f"Capture quality may be insufficient; consider retakes: {'; '.join(warnings)}"
            logger.warning(summary)

        return CaptureQualitySummary(
            total_frames=total,
            accepted_frames=accepted,
            accepted_ratio=accepted_ratio,
            mean_sharpness=mean_or_zero(f.sharpness_score for f in frames),
            mean_exposure=mean_or_zero(f.exposure_score for f in frames),
            timestamp_coverage_ratio=coverage,
            frame_interval_mean_ms=interval_mean,
            frame_interval_jitter_ms=jitter,
            rejection_counts=dict(sorted(rejection_counts.items())),
            reliability_pass=reliability_pass,
            reliability_warnings=tuple(warnings),
            summary=summary,
        )
