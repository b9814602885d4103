"""
Core types shared by every scancert stage.
"""

from .cancellation import CancellationToken, ensure_token
from .models import (
    ScanSession,
    CaptureSettings,
    CameraCaptureMode,
    CameraDeviceInfo,
    SelectedCameraInfo,
    CaptureFrame,
    FrameCaptureDiagnostics,
    FrameCaptureResult,
    CapturePreflightResult,
    CaptureResult,
    CaptureQualitySummary,
    IntrinsicFrameInclusionDiagnostic,
    IntrinsicDiagnosticsSummary,
    IntrinsicCalibrationDetails,
    CalibrationResult,
    CalibrationResidualSamples,
    CalibrationQualitySummary,
    UnderlayVerificationResult,
    DimensionReference,
    MeasurementProfile,
    DimensionMeasurement,
    ValidationReport,
    ScanQualityReport,
    PipelineResult,
)
from .serialization import record_to_dict, record_from_dict

__all__ = [
    'CancellationToken',
    'ensure_token',
    'ScanSession',
    'CaptureSettings',
    'CameraCaptureMode',
    'CameraDeviceInfo',
    'SelectedCameraInfo',
    'CaptureFrame',
    'FrameCaptureDiagnostics',
    'FrameCaptureResult',
    'CapturePreflightResult',
    'CaptureResult',
    'CaptureQualitySummary',
    'IntrinsicFrameInclusionDiagnostic',
    'IntrinsicDiagnosticsSummary',
    'IntrinsicCalibrationDetails',
    'CalibrationResult',
    'CalibrationResidualSamples',
    'CalibrationQualitySummary',
    'UnderlayVerificationResult',
    'DimensionReference',
    'MeasurementProfile',
    'DimensionMeasurement',
    'ValidationReport',
    'ScanQualityReport',
    'PipelineResult',
    'record_to_dict',
    'record_from_dict',
]
