"""
scancert - capture, calibration and quality certification for benchtop 3D scans.

Quick start:
    import asyncio
    from scancert import PipelineOrchestrator, ScanSession, SessionPolicy

    session = ScanSession.create("bootstrap-device")
    policy = SessionPolicy(allow_simulated_backend=True)
    result = asyncio.run(PipelineOrchestrator().execute(session, policy=policy))
    print(result.message)
"""

# Import version from package metadata to maintain single source of truth
try:
    import importlib.metadata
    __version__ = importlib.metadata.version("scancert-sdk")
except (ImportError, importlib.metadata.PackageNotFoundError):
    # Fallback for development installs
    __version__ = "0.1.0"
__author__ = "scancert Team"

from .core import (
    CancellationToken,
    CaptureSettings,
    MeasurementProfile,
    PipelineResult,
    ScanQualityReport,
    ScanSession,
)
from .exceptions import (
    ScanCertException,
    ConfigurationError,
    NoCameraDeviceError,
    UnsupportedBackendError,
    SimulatedBackendDisallowedError,
    CapturePreflightError,
    CaptureError,
    CameraCaptureError,
    ScanCancelledError,
)
from .session_config import CaptureQuality, SessionPolicy, create_capture_preset, default_capture_settings
from .capture import CaptureBackend, build_provider_chain
from .pipeline import PipelineOrchestrator
from .reporting import load_quality_report
from .logging_config import setup_logging, debug_mode, get_logger

__all__ = [
    '__version__',
    'CancellationToken',
    'CaptureSettings',
    'MeasurementProfile',
    'PipelineResult',
    'ScanQualityReport',
    'ScanSession',
    'ScanCertException',
    'ConfigurationError',
    'NoCameraDeviceError',
    'UnsupportedBackendError',
    'SimulatedBackendDisallowedError',
    'CapturePreflightError',
    'CaptureError',
    'CameraCaptureError',
    'ScanCancelledError',
    'CaptureQuality',
    'SessionPolicy',
    'create_capture_preset',
    'default_capture_settings',
    'CaptureBackend',
    'build_provider_chain',
    'PipelineOrchestrator',
    'load_quality_report',
    'setup_logging',
    'debug_mode',
    'get_logger',
]
