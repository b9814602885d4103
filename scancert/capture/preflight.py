"""
Capture preflight: checks that a session can capture before any frame is taken.
"""

import logging
from typing import List, Optional

from ..core.cancellation import ensure_token, CancellationToken
from ..core.constants import BACKEND_SIMULATED, BACKEND_UNKNOWN, LOCK_VERIFYING_BACKENDS
from ..core.models import (
    CameraDeviceInfo,
    CapturePreflightResult,
    CaptureSettings,
    ScanSession,
    SelectedCameraInfo,
)
from .backend import infer_backend_from_device_id
from .contracts import DeviceDiscovery, ModeDiscovery

logger = logging.getLogger(__name__)


def select_device(devices: List[CameraDeviceInfo], requested_id: str) -> Optional[CameraDeviceInfo]:
    """The requested device when it is available, else the first available device."""
    available = [device for device in devices if device.is_available]
    for device in available:
        if device.device_id.lower() == requested_id.lower():
            return device
    return available[0] if available else None


class CapturePreflightService:
    """
    Evaluates capture readiness for a session.

    Blocking issues make the preflight fail; warnings are informational.
    """

    def __init__(self, device_discovery: DeviceDiscovery, mode_discovery: ModeDiscovery):
        self.device_discovery = device_discovery
        self.mode_discovery = mode_discovery

    async def evaluate(
        self,
        session: ScanSession,
        settings: CaptureSettings,
        token: Optional[CancellationToken] = None
    ) -> CapturePreflightResult:
        """
        Run the readiness checks.

        Args:
            session: Session with the requested camera id
            settings: Capture settings (lock requests, simulation permission)
            token: Cancellation token

        Returns:
            Preflight result; ``passed`` is False when any blocking issue was found
        """
        token = ensure_token(token)
        blocking_issues = []
        warnings = []

        token.raise_if_cancelled("preflight")
        devices = await self.device_discovery.list_available(token)
        selected = select_device(devices, session.camera_device_id)

        if selected is None:
            logger.warning("Preflight found no available camera device")
            return CapturePreflightResult(
                passed=False,
                selected_camera=None,
                mode_list=(),
                backend_candidate=BACKEND_UNKNOWN,
                simulated_fallback_allowed=settings.allow_simulated_fallback,
                exposure_lock_verification_supported=False,
                white_balance_lock_verification_supported=False,
                timestamp_readiness_pass=False,
                blocking_issues=("No available camera device was discovered.",),
                warnings=(),
                summary="Preflight failed: no available camera device.",
            )

        backend = infer_backend_from_device_id(selected.device_id)
        token.raise_if_cancelled("preflight")
        modes = await self.mode_discovery.list_supported_modes(selected.device_id, token)
        simulated = backend == BACKEND_SIMULATED

        if not modes:
            blocking_issues.append("No supported capture modes were discovered for the selected camera.")

        lock_verification_supported = backend in LOCK_VERIFYING_BACKENDS
        timestamp_ready = backend != BACKEND_UNKNOWN

        for requested, label in ((settings.lock_exposure, "Exposure"),
                                 (settings.lock_white_balance, "White balance")):
            if requested and not lock_verification_supported:
                message = f"{label} lock verification is not supported for the selected backend."
                (warnings if simulated else blocking_issues).append(message)

        if not timestamp_ready:
            blocking_issues.append("Frame timestamp source is not known for the selected backend.")

        if simulated:
            if settings.allow_simulated_fallback:
                warnings.append("Running with simulated capture backend (test mode).")
            else:
                blocking_issues.append("Simulated capture backend is not allowed for this run.")

        if selected.device_id.lower() != session.camera_device_id.lower():
            warnings.append(
                f"Requested camera '{session.camera_device_id}' was unavailable; "
                f"selected '{selected.device_id}' instead."
            )

        passed = not blocking_issues
        summary = (
            "Preflight pass: capture backend and camera capabilities satisfy session requirements."
            if passed else
            "Preflight failed: one or more capture readiness checks did not pass."
        )
        logger.info(f"Preflight {'passed' if passed else 'failed'} for {selected.device_id} (backend={backend})")

        return CapturePreflightResult(
            passed=passed,
            selected_camera=SelectedCameraInfo(selected.device_id, selected.display_name),
            mode_list=tuple(modes),
            backend_candidate=backend,
            simulated_fallback_allowed=settings.allow_simulated_fallback,
            exposure_lock_verification_supported=lock_verification_supported,
            white_balance_lock_verification_supported=lock_verification_supported,
            timestamp_readiness_pass=timestamp_ready,
            blocking_issues=tuple(blocking_issues),
            warnings=tuple(warnings),
            summary=summary,
        )
