"""
OpenCV-backed capture providers.

One set of classes serves both real backends: the ``native`` backend binds
VideoCapture to the platform camera API (DirectShow, V4L2, AVFoundation),
the ``opencv`` backend lets OpenCV choose (``CAP_ANY``). Device ids carry the
backend prefix, e.g. ``native-camera-0`` or ``opencv-camera-2``.
"""

import asyncio
import logging
import tempfile
import uuid
from pathlib import Path
from typing import List, Optional, Tuple

import cv2
import numpy as np

from ..core.cancellation import ensure_token, CancellationToken
from ..core.constants import (
    BACKEND_OPENCV,
    CAMERA_PROBE_LIMIT,
    EXPOSURE_MIN_FOR_ACCEPTANCE,
    LAPLACIAN_VARIANCE_NORMALIZER,
    MIN_FRAMES_PER_CAPTURE,
    PREVIEW_DIR_NAME,
    PREVIEW_JPEG_QUALITY,
    SHARPNESS_MIN_FOR_ACCEPTANCE,
    TIMESTAMP_SOURCE_DEVICE_CLOCK,
    TIMESTAMP_SOURCE_SYSTEM_CLOCK,
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
from ..core.utils import clamp
from ..exceptions import CameraCaptureError, handle_capture_error
from .contracts import DeviceDiscovery, FrameCapture, ModeDiscovery

logger = logging.getLogger(__name__)

# Manual-exposure value understood by V4L2 and DirectShow through OpenCV
MANUAL_EXPOSURE_VALUE = 0.25
READ_RETRY_DELAY_S = 0.01
INTER_FRAME_DELAY_S = 0.02


class OpenCvCameraSource:
    """
    Shared probing and index parsing for one OpenCV API preference.

    Args:
        api_preference: OpenCV VideoCapture API (e.g. ``cv2.CAP_V4L2``)
        backend_name: Backend label reported in diagnostics
        probe_limit: Number of camera indices to probe
    """

    def __init__(self, api_preference: int = cv2.CAP_ANY, backend_name: str = BACKEND_OPENCV,
                 probe_limit: int = CAMERA_PROBE_LIMIT):
        self.api_preference = api_preference
        self.backend_name = backend_name
        self.probe_limit = probe_limit

    @property
    def id_prefix(self) -> str:
        return f"{self.backend_name}-camera-"

    def device_id(self, index: int) -> str:
        return f"{self.id_prefix}{index}"

    def parse_index(self, device_id: str) -> Optional[int]:
        """Camera index for ``device_id``, None when the id belongs to another backend."""
        text = device_id.strip()
        if text.lower().startswith(self.id_prefix):
            text = text[len(self.id_prefix):]
        if not text.isdigit():
            return None
        index = int(text)
        return index if 0 <= index < self.probe_limit else None

    def open(self, index: int) -> Optional[cv2.VideoCapture]:
        capture = cv2.VideoCapture(index, self.api_preference)
        if not capture.isOpened():
            capture.release()
            return None
        return capture

    @staticmethod
    def reported_mode(capture: cv2.VideoCapture) -> CameraCaptureMode:
        width = int(max(640, capture.get(cv2.CAP_PROP_FRAME_WIDTH)))
        height = int(max(480, capture.get(cv2.CAP_PROP_FRAME_HEIGHT)))
        fps = int(max(15, capture.get(cv2.CAP_PROP_FPS)))
        return CameraCaptureMode(width, height, fps, "BGR24")

    def probe(self, index: int) -> Optional[CameraCaptureMode]:
        capture = self.open(index)
        if capture is None:
            return None
        try:
            return self.reported_mode(capture)
        finally:
            capture.release()


class OpenCvDeviceDiscovery(DeviceDiscovery):
    def __init__(self, source: OpenCvCameraSource):
        self.source = source

    async def list_available(self, token: Optional[CancellationToken] = None) -> List[CameraDeviceInfo]:
        token = ensure_token(token)
        devices = []

        for index in range(self.source.probe_limit):
            token.raise_if_cancelled("device discovery")
            mode = await asyncio.to_thread(self.source.probe, index)
            if mode is None:
                continue
            devices.append(CameraDeviceInfo(
                device_id=self.source.device_id(index),
                display_name=f"{self.source.backend_name.capitalize()} Camera #{index}",
                is_available=True,
                preferred_mode=mode,
            ))

        logger.debug(f"{self.source.backend_name} discovery found {len(devices)} camera(s)")
        return devices


class OpenCvModeDiscovery(ModeDiscovery):
    def __init__(self, source: OpenCvCameraSource):
        self.source = source

    async def list_supported_modes(
        self,
        device_id: str,
        token: Optional[CancellationToken] = None
    ) -> List[CameraCaptureMode]:
        index = self.source.parse_index(device_id)
        if index is None:
            return []

        ensure_token(token).raise_if_cancelled("mode discovery")
        mode = await asyncio.to_thread(self.source.probe, index)
        if mode is None:
            return []

        return [
            mode,
            CameraCaptureMode(1280, 720, 30, "BGR24"),
            CameraCaptureMode(640, 480, 30, "BGR24"),
        ]


def evaluate_sharpness(frame: np.ndarray) -> float:
    """Laplacian variance of the gray image, normalized into [0, 1]."""
    gray = cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY) if frame.ndim == 3 else frame
    variance = cv2.Laplacian(gray, cv2.CV_64F).var()
    return clamp(float(variance) / LAPLACIAN_VARIANCE_NORMALIZER, 0.0, 1.0)


def evaluate_exposure(frame: np.ndarray) -> float:
    """1.0 for a mid-gray mean, falling linearly to 0.0 at black or white."""
    gray = cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY) if frame.ndim == 3 else frame
    mean = float(np.mean(gray))
    return clamp(1.0 - abs(mean - 127.5) / 127.5, 0.0, 1.0)


class OpenCvFrameCapture(FrameCapture):
    """
    Frame burst from an OpenCV camera.

    Every frame is scored for sharpness and exposure and written as a JPEG
    preview so later stages can run image analysis on it.
    """

    def __init__(self, source: OpenCvCameraSource, preview_dir: Optional[Path] = None):
        self.source = source
        self.preview_dir = Path(preview_dir) if preview_dir else Path(tempfile.gettempdir()) / PREVIEW_DIR_NAME

    @handle_capture_error
    async def capture_frames(
        self,
        device_id: str,
        settings: CaptureSettings,
        token: Optional[CancellationToken] = None
    ) -> FrameCaptureResult:
        token = ensure_token(token)
        index = self.source.parse_index(device_id)
        if index is None:
            return self._empty_result()

        capture = await asyncio.to_thread(self.source.open, index)
        if capture is None:
            return self._empty_result()

        try:
            exposure_verified, white_balance_verified = await asyncio.to_thread(
                self._apply_locks, capture, settings)

            frame_count = max(MIN_FRAMES_PER_CAPTURE, settings.target_frame_count)
            frames = []
            device_clock = True

            for frame_index in range(1, frame_count + 1):
                token.raise_if_cancelled("frame capture")

                ok, image = await asyncio.to_thread(capture.read)
                if not ok or image is None or image.size == 0:
                    await asyncio.sleep(READ_RETRY_DELAY_S)
                    continue

                captured_at = utc_now()
                position_ms = capture.get(cv2.CAP_PROP_POS_MSEC)
                source_ms = float(position_ms) if position_ms and position_ms > 0 else None
                device_clock = device_clock and source_ms is not None

                sharpness = evaluate_sharpness(image)
                exposure = evaluate_exposure(image)
                frame_id = f"{self.source.backend_name}-cam-{index}-f-{frame_index:03d}"
                preview_path = await asyncio.to_thread(self._save_preview, image, frame_id)

                frames.append(CaptureFrame(
                    frame_id=frame_id,
                    captured_at=captured_at,
                    sharpness_score=sharpness,
                    exposure_score=exposure,
                    accepted=(sharpness >= SHARPNESS_MIN_FOR_ACCEPTANCE
                              and exposure >= EXPOSURE_MIN_FOR_ACCEPTANCE),
                    source_timestamp_ms=source_ms,
                    preview_image_path=preview_path,
                ))

                await asyncio.sleep(INTER_FRAME_DELAY_S)
        finally:
            capture.release()

        if not frames:
            raise CameraCaptureError(device_id, "camera opened but returned no frames")

        timestamp_source = TIMESTAMP_SOURCE_DEVICE_CLOCK if device_clock else TIMESTAMP_SOURCE_SYSTEM_CLOCK
        logger.info(f"Captured {len(frames)} frames from {device_id} via {self.source.backend_name}")
        return FrameCaptureResult(
            frames=tuple(frames),
            diagnostics=FrameCaptureDiagnostics(
                backend_used=self.source.backend_name,
                exposure_lock_verified=exposure_verified,
                white_balance_lock_verified=white_balance_verified,
                timestamp_source=timestamp_source,
            ),
        )

    def _empty_result(self) -> FrameCaptureResult:
        return FrameCaptureResult(
            frames=(),
            diagnostics=FrameCaptureDiagnostics(
                backend_used=self.source.backend_name,
                exposure_lock_verified=None,
                white_balance_lock_verified=None,
                timestamp_source=TIMESTAMP_SOURCE_SYSTEM_CLOCK,
            ),
        )

    @staticmethod
    def _apply_locks(capture: cv2.VideoCapture, settings: CaptureSettings) -> Tuple[Optional[bool], Optional[bool]]:
        """
        Request manual exposure / white balance and read the properties back.

        Returns:
            (exposure_verified, white_balance_verified); None where the lock was
            not requested or the driver rejected the property
        """
        def lock(prop: int, value: float) -> Optional[bool]:
            if not capture.set(prop, value):
                return None
            return abs(capture.get(prop) - value) < 1e-3

        exposure = lock(cv2.CAP_PROP_AUTO_EXPOSURE, MANUAL_EXPOSURE_VALUE) if settings.lock_exposure else None
        white_balance = lock(cv2.CAP_PROP_AUTO_WB, 0.0) if settings.lock_white_balance else None
        return exposure, white_balance

    def _save_preview(self, image: np.ndarray, frame_id: str) -> Optional[str]:
        try:
            self.preview_dir.mkdir(parents=True, exist_ok=True)
            path = self.preview_dir / f"{frame_id}-{uuid.uuid4().hex}.jpg"
            if not cv2.imwrite(str(path), image, [cv2.IMWRITE_JPEG_QUALITY, PREVIEW_JPEG_QUALITY]):
                return None
            return str(path)
        except (OSError, cv2.error) as e:
            logger.warning(f"Could not persist preview for {frame_id}: {e}")
            return None
