"""
Underlay (printed reference grid) scale estimation and verification.
"""

from .box_size_estimator import (
    UnderlayBoxSizeEstimate,
    UnderlayBoxSizeEstimator,
    UnderlaySample,
    estimate_from_checkerboard,
    estimate_from_line_grid,
    estimate_from_frame_quality,
    static_fallback_estimate,
)
from .pattern_validator import UnderlayPatternValidator, mad_inliers

__all__ = [
    'UnderlayBoxSizeEstimate',
    'UnderlayBoxSizeEstimator',
    'UnderlaySample',
    'estimate_from_checkerboard',
    'estimate_from_line_grid',
    'estimate_from_frame_quality',
    'static_fallback_estimate',
    'UnderlayPatternValidator',
    'mad_inliers',
]
