"""
Simulated capture backend.

Produces a fixed device list, a fixed mode list and a deterministic frame
burst. When a preview directory is configured the burst also writes
synthetic underlay previews so the calibration and underlay stages run
their image paths.
"""

import asyncio
import logging
from datetime import timedelta
from pathlib import Path
from typing import List, Optional

import cv2

from ..core.cancellation import ensure_token, CancellationToken
from ..core.constants import (
    BACKEND_SIMULATED,
    EXPOSURE_MIN_FOR_ACCEPTANCE,
    MIN_FRAMES_PER_CAPTURE,
    SHARPNESS_MIN_FOR_ACCEPTANCE,
    TIMESTAMP_SOURCE_SIMULATED,
)
from ..core.models import (
    CameraCaptureMode,
    CameraDeviceInfo,
    CaptureFrame,
    CaptureSettings,
    FrameCaptureDiagnostics,
    FrameCaptureResult,
    utc_now,
)
from .contracts import DeviceDiscovery, FrameCapture, ModeDiscovery
from .synthetic import render_checkerboard, render_line_grid

logger = logging.getLogger(__name__)

PREVIEW_PATTERN_CHECKERBOARD = "checkerboard"
PREVIEW_PATTERN_LINE_GRID = "line-grid"


class SimulatedDeviceDiscovery(DeviceDiscovery):
    async def list_available(self, token: Optional[CancellationToken] = None) -> List[CameraDeviceInfo]:
        ensure_token(token).raise_if_cancelled("device discovery")
        return [
            CameraDeviceInfo("bootstrap-device", "Bootstrap USB Camera", True),
            CameraDeviceInfo("usb-hd-cam-01", "USB HD Camera #1", True),
        ]


class SimulatedModeDiscovery(ModeDiscovery):
    async def list_supported_modes(
        self,
        device_id: str,
        token: Optional[CancellationToken] = None
    ) -> List[CameraCaptureMode]:
        ensure_token(token).raise_if_cancelled("mode discovery")
        return [
            CameraCaptureMode(1920, 1080, 30, "MJPG"),
            CameraCaptureMode(1280, 720, 60, "YUY2"),
            CameraCaptureMode(1280, 720, 30, "YUY2"),
        ]


class SimulatedFrameCapture(FrameCapture):
    """
    Deterministic frame burst.

    Sharpness ramps down and exposure cycles so the tail of a long burst is
    rejected. Source timestamps advance by 100 ms per frame.
    """

    def __init__(self, preview_dir: Optional[Path] = None, preview_pattern: str = PREVIEW_PATTERN_CHECKERBOARD):
        """
        Initialize simulated capture.

        Args:
            preview_dir: Directory for synthetic preview images, None for no previews
            preview_pattern: ``checkerboard`` or ``line-grid``
        """
        self.preview_dir = Path(preview_dir) if preview_dir is not None else None
        self.preview_pattern = preview_pattern

    async def capture_frames(
        self,
        device_id: str,
        settings: CaptureSettings,
        token: Optional[CancellationToken] = None
    ) -> FrameCaptureResult:
        token = ensure_token(token)
        frame_count = max(MIN_FRAMES_PER_CAPTURE, settings.target_frame_count)
        started_at = utc_now()
        frames = []

        for index in range(1, frame_count + 1):
            token.raise_if_cancelled("frame capture")

            sharpness = max(0.6, 0.95 - index * 0.02)
            exposure = max(0.75, 0.92 - (index % 4) * 0.03)
            accepted = sharpness >= SHARPNESS_MIN_FOR_ACCEPTANCE and exposure >= EXPOSURE_MIN_FOR_ACCEPTANCE
            frame_id = f"{device_id}-f-{index:03d}"

            preview_path = None
            if self.preview_dir is not None:
                preview_path = await asyncio.to_thread(self._write_preview, frame_id, index)

            frames.append(CaptureFrame(
                frame_id=frame_id,
                captured_at=started_at + timedelta(milliseconds=index * 100),
                sharpness_score=sharpness,
                exposure_score=exposure,
                accepted=accepted,
                source_timestamp_ms=float(index * 100),
                preview_image_path=preview_path,
            ))

        logger.debug(f"Simulated capture produced {len(frames)} frames for {device_id}")
        return FrameCaptureResult(
            frames=tuple(frames),
            diagnostics=FrameCaptureDiagnostics(
                backend_used=BACKEND_SIMULATED,
                exposure_lock_verified=None,
                white_balance_lock_verified=None,
                timestamp_source=TIMESTAMP_SOURCE_SIMULATED,
            ),
        )

    def _write_preview(self, frame_id: str, index: int) -> Optional[str]:
        if self.preview_pattern == PREVIEW_PATTERN_LINE_GRID:
            image = render_line_grid()
        else:
            image = render_checkerboard(index)

        self.preview_dir.mkdir(parents=True, exist_ok=True)
        path = self.preview_dir / f"{frame_id}.png"
        if not cv2.imwrite(str(path), image):
            logger.warning(f"Could not write simulated preview {path}")
            return None
        return str(path)
