"""
Capability contracts consumed by the capture stages.

A backend supplies three providers: device discovery, mode discovery and
frame capture. An empty result means "this backend has nothing to offer" and
lets a fallback chain move on to the next provider.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from ..core.cancellation import CancellationToken
from ..core.models import CameraCaptureMode, CameraDeviceInfo, CaptureSettings, FrameCaptureResult


class DeviceDiscovery(ABC):
    """Lists camera devices reachable through one backend."""

    @abstractmethod
    async def list_available(self, token: Optional[CancellationToken] = None) -> List[CameraDeviceInfo]:
        """
        Discover camera devices.

        Args:
            token: Cancellation token checked before each device probe

        Returns:
            Discovered devices, empty when the backend finds none
        """


class ModeDiscovery(ABC):
    """Lists capture modes of a device."""

    @abstractmethod
    async def list_supported_modes(
        self,
        device_id: str,
        token: Optional[CancellationToken] = None
    ) -> List[CameraCaptureMode]:
        """
        Enumerate capture modes for ``device_id``.

        Returns:
            Supported modes, empty when the device is not handled by this backend
        """


class FrameCapture(ABC):
    """Acquires one burst of frames from a device."""

    @abstractmethod
    async def capture_frames(
        self,
        device_id: str,
        settings: CaptureSettings,
        token: Optional[CancellationToken] = None
    ) -> FrameCaptureResult:
        """
        Capture a burst of frames.

        Args:
            device_id: Device to capture from
            settings: Capture settings (frame count, lock requests)
            token: Cancellation token checked before each frame

        Returns:
            Frames in capture order plus backend diagnostics; no frames when
            the device is not handled by this backend
        """
