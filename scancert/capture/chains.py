"""
Ordered fallback chains over capture providers.

Each chain asks its providers in order and returns the first non-empty
answer. Frame capture additionally treats a CaptureError from one provider
as "try the next one"; configuration errors and cancellation propagate.
"""

import logging
from typing import List, Optional, Sequence

from ..core.cancellation import ensure_token, CancellationToken
from ..core.models import CameraCaptureMode, CameraDeviceInfo, CaptureSettings, FrameCaptureResult
from ..exceptions import CaptureError
from .contracts import DeviceDiscovery, FrameCapture, ModeDiscovery

logger = logging.getLogger(__name__)


class ChainedDeviceDiscovery(DeviceDiscovery):
    def __init__(self, providers: Sequence[DeviceDiscovery]):
        if not providers:
            raise ValueError("ChainedDeviceDiscovery needs at least one provider")
        self.providers = list(providers)

    async def list_available(self, token: Optional[CancellationToken] = None) -> List[CameraDeviceInfo]:
        token = ensure_token(token)
        devices: List[CameraDeviceInfo] = []
        for provider in self.providers:
            token.raise_if_cancelled("device discovery")
            devices = await provider.list_available(token)
            if devices:
                return devices
            logger.debug(f"{type(provider).__name__} found no devices, trying next provider")
        return devices


class ChainedModeDiscovery(ModeDiscovery):
    def __init__(self, providers: Sequence[ModeDiscovery]):
        if not providers:
            raise ValueError("ChainedModeDiscovery needs at least one provider")
        self.providers = list(providers)

    async def list_supported_modes(
        self,
        device_id: str,
        token: Optional[CancellationToken] = None
    ) -> List[CameraCaptureMode]:
        token = ensure_token(token)
        modes: List[CameraCaptureMode] = []
        for provider in self.providers:
            token.raise_if_cancelled("mode discovery")
            modes = await provider.list_supported_modes(device_id, token)
            if modes:
                return modes
        return modes


class ChainedFrameCapture(FrameCapture):
    def __init__(self, providers: Sequence[FrameCapture]):
        if not providers:
            raise ValueError("ChainedFrameCapture needs at least one provider")
        self.providers = list(providers)

    async def capture_frames(
        self,
        device_id: str,
        settings: CaptureSettings,
        token: Optional[CancellationToken] = None
    ) -> FrameCaptureResult:
        token = ensure_token(token)
        last_result: Optional[FrameCaptureResult] = None
        last_error: Optional[CaptureError] = None

        for provider in self.providers:
            token.raise_if_cancelled("frame capture")
            try:
                result = await provider.capture_frames(device_id, settings, token)
            except CaptureError as e:
                logger.warning(f"{type(provider).__name__} failed for {device_id}: {e.message}")
                last_error = e
                continue

            if result.frames:
                return result
            last_result = result

        if last_result is not None:
            return last_result
        raise last_error
