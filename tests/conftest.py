"""Pytest configuration and shared fixtures for the scancert test suite.

Provides sessions, capture settings, frame and capture builders, stub
capability providers and synthetic underlay previews rendered with OpenCV.
"""
import logging
from datetime import timedelta
from pathlib import Path
from typing import List, Optional, Sequence

import cv2
import pytest

from scancert.capture.capture_service import lock_status, timestamps_monotonic
from scancert.capture.contracts import DeviceDiscovery, FrameCapture, ModeDiscovery
from scancert.capture.synthetic import render_checkerboard, render_line_grid
from scancert.core.models import (
    CameraCaptureMode,
    CameraDeviceInfo,
    CaptureFrame,
    CaptureResult,
    CaptureSettings,
    FrameCaptureDiagnostics,
    FrameCaptureResult,
    ScanSession,
    utc_now,
)

# Configure logging for tests
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler()]
)


# ==================== BUILDERS ====================

def make_frame(index: int, accepted: bool = True, sharpness: float = 0.9, exposure: float = 0.88,
               timestamped: bool = True, preview_image_path: Optional[str] = None) -> CaptureFrame:
    """Frame ``index``; source timestamps are 100 ms apart when ``timestamped``."""
    return CaptureFrame(
        frame_id=f"frame-{index:03d}",
        captured_at=utc_now() + timedelta(milliseconds=index * 100),
        sharpness_score=sharpness,
        exposure_score=exposure,
        accepted=accepted,
        source_timestamp_ms=float(index * 100) if timestamped else None,
        preview_image_path=preview_image_path,
    )


def make_capture(frames: Sequence[CaptureFrame], required: int = 3, backend: str = "opencv",
                 exposure_verified: Optional[bool] = True, white_balance_verified: Optional[bool] = True,
                 timestamp_source: str = "device_clock_ms") -> CaptureResult:
    """CaptureResult over ``frames`` with consistent reliability bookkeeping."""
    frames = tuple(frames)
    accepted = sum(1 for f in frames if f.accepted)
    met = accepted >= required
    return CaptureResult(
        camera_device_id="opencv-camera-0",
        selected_mode=CameraCaptureMode(1280, 720, 30, "BGR24"),
        captured_frame_count=len(frames),
        accepted_frame_count=accepted,
        required_accepted_frame_count=required,
        capture_attempts_used=1,
        max_capture_attempts=3,
        reliability_target_met=met,
        reliability_failure_reason=None if met else f"accepted_frames={accepted} < required={required} after attempts=1",
        frames=frames,
        capture_backend=backend,
        exposure_lock_requested=True,
        white_balance_lock_requested=True,
        exposure_lock_verified=exposure_verified,
        white_balance_lock_verified=white_balance_verified,
        exposure_lock_status=lock_status(True, exposure_verified),
        white_balance_lock_status=lock_status(True, white_balance_verified),
        frame_timestamp_source=timestamp_source,
        frame_timestamps_monotonic=timestamps_monotonic(frames),
        notes="test capture",
    )


def write_previews(directory: Path, count: int, pattern: str = "checkerboard") -> List[CaptureFrame]:
    """Accepted frames whose previews are synthetic underlay renders."""
    directory.mkdir(parents=True, exist_ok=True)
    frames = []
    for index in range(1, count + 1):
        image = render_line_grid() if pattern == "line-grid" else render_checkerboard(index)
        path = directory / f"preview-{index:03d}.png"
        assert cv2.imwrite(str(path), image)
        frames.append(make_frame(index, preview_image_path=str(path)))
    return frames


# ==================== STUB PROVIDERS ====================

class StubDeviceDiscovery(DeviceDiscovery):
    def __init__(self, devices: Sequence[CameraDeviceInfo]):
        self.devices = list(devices)
        self.calls = 0

    async def list_available(self, token=None):
        self.calls += 1
        return list(self.devices)


class StubModeDiscovery(ModeDiscovery):
    def __init__(self, modes: Sequence[CameraCaptureMode]):
        self.modes = list(modes)

    async def list_supported_modes(self, device_id, token=None):
        return list(self.modes)


class StubFrameCapture(FrameCapture):
    """Returns, per call, a burst with the next scripted accepted-frame count."""

    def __init__(self, accepted_per_attempt: Sequence[int], frames_per_attempt: int = 3,
                 backend: str = "opencv", error: Optional[Exception] = None):
        self.accepted_per_attempt = list(accepted_per_attempt)
        self.frames_per_attempt = frames_per_attempt
        self.backend = backend
        self.error = error
        self.calls = 0

    async def capture_frames(self, device_id, settings, token=None):
        self.calls += 1
        if self.error is not None:
            raise self.error

        accepted = self.accepted_per_attempt[min(self.calls - 1, len(self.accepted_per_attempt) - 1)]
        total = max(self.frames_per_attempt, accepted)
        frames = tuple(make_frame(i, accepted=i <= accepted) for i in range(1, total + 1))
        return FrameCaptureResult(
            frames=frames,
            diagnostics=FrameCaptureDiagnostics(
                backend_used=self.backend,
                exposure_lock_verified=True,
                white_balance_lock_verified=True,
                timestamp_source="device_clock_ms",
            ),
        )


# ==================== FIXTURES ====================

@pytest.fixture
def session():
    """Session that asks for the simulated bootstrap camera."""
    return ScanSession.create("bootstrap-device", operator_notes="test run")


@pytest.fixture
def camera_session():
    return ScanSession.create("opencv-camera-0")


@pytest.fixture
def reliability_settings():
    """Three attempts, three frames, three accepted frames required."""
    return CaptureSettings(
        target_frame_count=3,
        minimum_accepted_frame_count=3,
        max_capture_attempts=3,
        allow_simulated_fallback=False,
    )


@pytest.fixture
def camera_device():
    return CameraDeviceInfo("opencv-camera-0", "Opencv Camera #0", True,
                            CameraCaptureMode(1280, 720, 30, "BGR24"))


@pytest.fixture
def camera_modes():
    return [CameraCaptureMode(1280, 720, 30, "BGR24"), CameraCaptureMode(640, 480, 30, "BGR24")]


@pytest.fixture
def checkerboard_frames(tmp_path):
    """Six accepted frames with checkerboard previews."""
    return write_previews(tmp_path / "checkerboard", 6)


@pytest.fixture
def line_grid_frames(tmp_path):
    """Five accepted frames with ruled-grid previews."""
    return write_previews(tmp_path / "line-grid", 5, pattern="line-grid")
