"""
Camera calibration: intrinsic solve, residual sampling and quality gates.
"""

from .checkerboard import find_checkerboard, create_object_points
from .intrinsic_calibration import IntrinsicCalibrationService, summarize_intrinsic_diagnostics
from .residuals import CalibrationResidualProvider
from .gate_evaluator import evaluate_calibration_gates

__all__ = [
    'find_checkerboard',
    'create_object_points',
    'IntrinsicCalibrationService',
    'summarize_intrinsic_diagnostics',
    'CalibrationResidualProvider',
    'evaluate_calibration_gates',
]
