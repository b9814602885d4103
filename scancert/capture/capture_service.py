"""
Capture reliability loop.

Runs capture attempts against the frame provider until enough frames are
accepted or the attempt budget is spent, and keeps the best attempt.
"""

import logging
from typing import Optional, Sequence

from ..core.cancellation import ensure_token, CancellationToken
from ..core.constants import (
    BACKEND_SIMULATED,
    DEFAULT_FPS,
    DEFAULT_IMAGE_HEIGHT,
    DEFAULT_IMAGE_WIDTH,
    UNKNOWN_PIXEL_FORMAT,
    LockVerificationStatus,
)
from ..core.models import (
    CameraCaptureMode,
    CaptureFrame,
    CaptureResult,
    CaptureSettings,
    FrameCaptureResult,
    ScanSession,
)
from ..exceptions import SimulatedBackendDisallowedError
from .contracts import DeviceDiscovery, FrameCapture, ModeDiscovery
from .preflight import select_device

logger = logging.getLogger(__name__)


def lock_status(requested: bool, verified: Optional[bool]) -> str:
    """Map a lock request and its verification outcome to a status string."""
    if not requested:
        return LockVerificationStatus.NOT_REQUESTED
    if verified is None:
        return LockVerificationStatus.UNKNOWN
    return LockVerificationStatus.VERIFIED if verified else LockVerificationStatus.FAILED


def timestamps_monotonic(frames: Sequence[CaptureFrame]) -> bool:
    return all(later.captured_at >= earlier.captured_at for earlier, later in zip(frames, frames[1:]))


def _flag(value: Optional[bool]) -> str:
    return "unknown" if value is None else str(value)


class CaptureService:
    """
    Drives repeated capture attempts for one session.

    Args:
        device_discovery: Device discovery provider
        mode_discovery: Mode discovery provider
        frame_capture: Frame capture provider
    """

    def __init__(self, device_discovery: DeviceDiscovery, mode_discovery: ModeDiscovery, frame_capture: FrameCapture):
        self.device_discovery = device_discovery
        self.mode_discovery = mode_discovery
        self.frame_capture = frame_capture

    async def capture(
        self,
        session: ScanSession,
        settings: CaptureSettings,
        token: Optional[CancellationToken] = None
    ) -> CaptureResult:
        """
        Capture frames for ``session``.

        Args:
            session: Session with the requested camera id
            settings: Capture settings including the reliability targets
            token: Cancellation token, checked before every attempt

        Returns:
            Capture result built from the attempt with the most accepted frames

        Raises:
            SimulatedBackendDisallowedError: If a provider fell back to the
                simulated backend while simulation is not allowed
            ScanCancelledError: If the token is cancelled
        """
        token = ensure_token(token)

        token.raise_if_cancelled("capture")
        devices = await self.device_discovery.list_available(token)
        selected = select_device(devices, session.camera_device_id)
        device_id = selected.device_id if selected else session.camera_device_id
        device_name = selected.display_name if selected else "SessionCameraFallback"

        token.raise_if_cancelled("capture")
        modes = await self.mode_discovery.list_supported_modes(device_id, token)
        if selected is not None and selected.preferred_mode is not None:
            mode = selected.preferred_mode
        elif modes:
            mode = modes[0]
        else:
            mode = CameraCaptureMode(DEFAULT_IMAGE_WIDTH, DEFAULT_IMAGE_HEIGHT, DEFAULT_FPS, UNKNOWN_PIXEL_FORMAT)

        required = settings.required_accepted_frame_count
        max_attempts = settings.effective_max_attempts
        best: Optional[FrameCaptureResult] = None
        attempts_used = 0

        for attempt in range(1, max_attempts + 1):
            token.raise_if_cancelled("capture")
            attempts_used = attempt

            result = await self.frame_capture.capture_frames(device_id, settings, token)
            if (not settings.allow_simulated_fallback
                    and result.diagnostics.backend_used.lower() == BACKEND_SIMULATED):
                raise SimulatedBackendDisallowedError(device_id)

            accepted = result.accepted_count
            logger.info(f"Capture attempt {attempt}/{max_attempts}: "
                        f"{accepted}/{len(result.frames)} frames accepted (required {required})")

            if best is None or accepted > best.accepted_count:
                best = result
            if best.accepted_count >= required:
                break

        frames = best.frames
        diagnostics = best.diagnostics
        accepted_count = best.accepted_count
        target_met = accepted_count >= required
        failure_reason = None
        if not target_met:
            failure_reason = f"accepted_frames={accepted_count} < required={required} after attempts={attempts_used}"
            logger.warning(f"Capture reliability target not met: {failure_reason}")

        notes = (
            f"device={device_name}; mode={mode}; backend={diagnostics.backend_used}; "
            f"lockExposure={settings.lock_exposure}; exposureLockVerified={_flag(diagnostics.exposure_lock_verified)}; "
            f"lockWhiteBalance={settings.lock_white_balance}; "
            f"whiteBalanceLockVerified={_flag(diagnostics.white_balance_lock_verified)}; "
            f"timestampSource={diagnostics.timestamp_source}; "
            f"underlay={settings.underlay_pattern}; lighting={settings.lighting_profile}"
        )

        return CaptureResult(
            camera_device_id=device_id,
            selected_mode=mode,
            captured_frame_count=len(frames),
            accepted_frame_count=accepted_count,
            required_accepted_frame_count=required,
            capture_attempts_used=attempts_used,
            max_capture_attempts=max_attempts,
            reliability_target_met=target_met,
            reliability_failure_reason=failure_reason,
            frames=frames,
            capture_backend=diagnostics.backend_used,
            exposure_lock_requested=settings.lock_exposure,
            white_balance_lock_requested=settings.lock_white_balance,
            exposure_lock_verified=diagnostics.exposure_lock_verified,
            white_balance_lock_verified=diagnostics.white_balance_lock_verified,
            exposure_lock_status=lock_status(settings.lock_exposure, diagnostics.exposure_lock_verified),
            white_balance_lock_status=lock_status(settings.lock_white_balance, diagnostics.white_balance_lock_verified),
            frame_timestamp_source=diagnostics.timestamp_source,
            frame_timestamps_monotonic=timestamps_monotonic(frames),
            notes=notes,
        )
