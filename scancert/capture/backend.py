"""
Capture backend resolution.

A backend is one of a closed set (native, opencv, simulated). Each maps to a
builder that returns its three providers; the default capture stack is a
fallback chain walking the backends in order from the preferred one.
"""

import logging
import platform
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional

import cv2

from ..core.constants import (
    BACKEND_NATIVE,
    BACKEND_OPENCV,
    BACKEND_SIMULATED,
    BACKEND_UNKNOWN,
    SIMULATED_DEVICE_IDS,
)
from ..exceptions import UnsupportedBackendError
from .chains import ChainedDeviceDiscovery, ChainedFrameCapture, ChainedModeDiscovery
from .contracts import DeviceDiscovery, FrameCapture, ModeDiscovery
from .opencv_provider import OpenCvCameraSource, OpenCvDeviceDiscovery, OpenCvFrameCapture, OpenCvModeDiscovery
from .simulated import SimulatedDeviceDiscovery, SimulatedFrameCapture, SimulatedModeDiscovery

logger = logging.getLogger(__name__)


class CaptureBackend(Enum):
    """Capture backends."""
    NATIVE = BACKEND_NATIVE        # OpenCV bound to the platform camera API
    OPENCV = BACKEND_OPENCV        # OpenCV with automatic API selection
    SIMULATED = BACKEND_SIMULATED  # Deterministic frames, no hardware


# Platform camera API used by the native backend
NATIVE_CAMERA_API = {
    "Windows": cv2.CAP_DSHOW,
    "Linux": cv2.CAP_V4L2,
    "Darwin": cv2.CAP_AVFOUNDATION,
}

FALLBACK_ORDER = (CaptureBackend.NATIVE, CaptureBackend.OPENCV, CaptureBackend.SIMULATED)


@dataclass(frozen=True)
class CaptureProviders:
    """The three capability providers of one backend or chain."""
    device_discovery: DeviceDiscovery
    mode_discovery: ModeDiscovery
    frame_capture: FrameCapture


def _current_system(system: Optional[str]) -> str:
    return system if system is not None else platform.system()


def resolve_capture_backend(name: Optional[str], system: Optional[str] = None) -> Optional[CaptureBackend]:
    """
    Resolve a backend name for this platform.

    Args:
        name: Backend name (``native``, ``opencv``, ``simulated``); None or
            ``unknown`` means no preference
        system: Platform name as reported by ``platform.system()``

    Returns:
        The backend, or None when there is no preference

    Raises:
        UnsupportedBackendError: If the name is not a backend or the backend
            cannot run on this platform
    """
    system = _current_system(system)
    if name is None or name.strip().lower() in ("", BACKEND_UNKNOWN):
        return None

    try:
        backend = CaptureBackend(name.strip().lower())
    except ValueError:
        raise UnsupportedBackendError(name, system)

    if backend == CaptureBackend.NATIVE and system not in NATIVE_CAMERA_API:
        raise UnsupportedBackendError(name, system)
    return backend


def _build_native(system: str, preview_dir: Optional[Path], simulated_preview_dir: Optional[Path]) -> CaptureProviders:
    source = OpenCvCameraSource(NATIVE_CAMERA_API[system], BACKEND_NATIVE)
    return CaptureProviders(OpenCvDeviceDiscovery(source), OpenCvModeDiscovery(source),
                            OpenCvFrameCapture(source, preview_dir))


def _build_opencv(system: str, preview_dir: Optional[Path], simulated_preview_dir: Optional[Path]) -> CaptureProviders:
    source = OpenCvCameraSource(cv2.CAP_ANY, BACKEND_OPENCV)
    return CaptureProviders(OpenCvDeviceDiscovery(source), OpenCvModeDiscovery(source),
                            OpenCvFrameCapture(source, preview_dir))


def _build_simulated(system: str, preview_dir: Optional[Path], simulated_preview_dir: Optional[Path]) -> CaptureProviders:
    return CaptureProviders(SimulatedDeviceDiscovery(), SimulatedModeDiscovery(),
                            SimulatedFrameCapture(simulated_preview_dir))


BACKEND_BUILDERS: Dict[CaptureBackend, Callable[..., CaptureProviders]] = {
    CaptureBackend.NATIVE: _build_native,
    CaptureBackend.OPENCV: _build_opencv,
    CaptureBackend.SIMULATED: _build_simulated,
}


def build_capture_providers(
    backend: CaptureBackend,
    system: Optional[str] = None,
    preview_dir: Optional[Path] = None,
    simulated_preview_dir: Optional[Path] = None
) -> CaptureProviders:
    """Providers of a single backend."""
    system = _current_system(system)
    if backend == CaptureBackend.NATIVE and system not in NATIVE_CAMERA_API:
        raise UnsupportedBackendError(backend.value, system)
    return BACKEND_BUILDERS[backend](system, preview_dir, simulated_preview_dir)


def fallback_order(preferred: Optional[CaptureBackend], system: Optional[str] = None) -> List[CaptureBackend]:
    """
    Backends to try, starting at ``preferred``.

    The native backend is left out on platforms without a known camera API.
    """
    system = _current_system(system)
    order = [b for b in FALLBACK_ORDER if b != CaptureBackend.NATIVE or system in NATIVE_CAMERA_API]
    if preferred is not None and preferred in order:
        order = order[order.index(preferred):]
    return order


def build_provider_chain(
    preferred_backend: Optional[str] = None,
    system: Optional[str] = None,
    preview_dir: Optional[Path] = None,
    simulated_preview_dir: Optional[Path] = None
) -> CaptureProviders:
    """
    Fallback chain of providers starting at the preferred backend.

    The simulated backend always closes the chain; whether its frames may be
    used is decided by preflight and the capture loop, not here.
    """
    system = _current_system(system)
    preferred = resolve_capture_backend(preferred_backend, system)
    backends = fallback_order(preferred, system)
    logger.debug(f"Capture backend chain: {[b.value for b in backends]}")

    providers = [build_capture_providers(b, system, preview_dir, simulated_preview_dir) for b in backends]
    return CaptureProviders(
        device_discovery=ChainedDeviceDiscovery([p.device_discovery for p in providers]),
        mode_discovery=ChainedModeDiscovery([p.mode_discovery for p in providers]),
        frame_capture=ChainedFrameCapture([p.frame_capture for p in providers]),
    )


def infer_backend_from_device_id(device_id: str) -> str:
    """
    Backend name implied by a device id.

    ``native-camera-N`` is native; ``opencv-camera-N`` or a bare index is
    opencv; the simulated device ids, ``usb-hd-cam-*`` and ``sim-*`` are
    simulated; anything else is unknown.
    """
    lowered = device_id.strip().lower()
    if lowered.startswith(f"{BACKEND_NATIVE}-camera-"):
        return BACKEND_NATIVE
    if lowered.startswith(f"{BACKEND_OPENCV}-camera-") or lowered.isdigit():
        return BACKEND_OPENCV
    if lowered in SIMULATED_DEVICE_IDS or lowered.startswith("usb-hd-cam-") or lowered.startswith("sim-"):
        return BACKEND_SIMULATED
    return BACKEND_UNKNOWN
