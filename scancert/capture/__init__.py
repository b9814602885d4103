"""
Frame acquisition: capability providers, backend resolution, preflight,
the capture reliability loop and capture quality statistics.
"""

from .contracts import DeviceDiscovery, ModeDiscovery, FrameCapture
from .chains import ChainedDeviceDiscovery, ChainedModeDiscovery, ChainedFrameCapture
from .simulated import SimulatedDeviceDiscovery, SimulatedModeDiscovery, SimulatedFrameCapture
from .opencv_provider import OpenCvCameraSource, OpenCvDeviceDiscovery, OpenCvModeDiscovery, OpenCvFrameCapture
from .backend import (
    CaptureBackend,
    CaptureProviders,
    resolve_capture_backend,
    build_capture_providers,
    build_provider_chain,
    infer_backend_from_device_id,
)
from .preflight import CapturePreflightService
from .capture_service import CaptureService
from .quality_analyzer import CaptureQualityAnalyzer

__all__ = [
    'DeviceDiscovery',
    'ModeDiscovery',
    'FrameCapture',
    'ChainedDeviceDiscovery',
    'ChainedModeDiscovery',
    'ChainedFrameCapture',
    'SimulatedDeviceDiscovery',
    'SimulatedModeDiscovery',
    'SimulatedFrameCapture',
    'OpenCvCameraSource',
    'OpenCvDeviceDiscovery',
    'OpenCvModeDiscovery',
    'OpenCvFrameCapture',
    'CaptureBackend',
    'CaptureProviders',
    'resolve_capture_backend',
    'build_capture_providers',
    'build_provider_chain',
    'infer_backend_from_device_id',
    'CapturePreflightService',
    'CaptureService',
    'CaptureQualityAnalyzer',
]
