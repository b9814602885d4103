"""
End-to-end scan session pipeline.
"""

from .orchestrator import PipelineOrchestrator, expected_box_size_for_pattern, summarize_calibration_quality

__all__ = [
    'PipelineOrchestrator',
    'expected_box_size_for_pattern',
    'summarize_calibration_quality',
]
