"""
Custom exceptions for scancert.

Only configuration errors and cancellation cross stage boundaries. Quality
gate failures are reported in the result records and never raised.
"""

import asyncio
import functools
from typing import Optional, Any


class ScanCertException(Exception):
    """Base exception for all scancert errors."""

    def __init__(self, message: str, details: Optional[Any] = None):
        """
        Initialize scancert exception.

        Args:
            message: Error message
            details: Optional additional details
        """
        super().__init__(message)
        self.message = message
        self.details = details


class ConfigurationError(ScanCertException):
    """Raised when the session cannot run with the discovered setup."""
    pass


class NoCameraDeviceError(ConfigurationError):
    """Raised when no camera device can be discovered."""

    def __init__(self, requested_camera_id: str):
        message = f"No available camera device was discovered (requested '{requested_camera_id}')"
        super().__init__(message, details={'camera_id': requested_camera_id})


class UnsupportedBackendError(ConfigurationError):
    """Raised when the requested capture backend is not available on this platform."""

    def __init__(self, backend: str, system: str):
        message = f"Capture backend '{backend}' is not supported on platform '{system}'"
        super().__init__(message, details={'backend': backend, 'system': system})


class SimulatedBackendDisallowedError(ConfigurationError):
    """Raised when a provider fell back to the simulated backend while simulation is disabled."""

    def __init__(self, camera_id: str):
        message = (
            f"Capture provider for '{camera_id}' fell back to the simulated backend, "
            "but simulated capture is disabled for this run"
        )
        super().__init__(message, details={'camera_id': camera_id})


class CapturePreflightError(ConfigurationError):
    """Raised when capture preflight reports blocking issues."""

    def __init__(self, preflight: Any):
        reasons = " | ".join(preflight.blocking_issues)
        super().__init__(f"Capture preflight failed: {reasons}", details=preflight)
        self.preflight = preflight


class CaptureError(ScanCertException):
    """Base exception for frame acquisition errors."""
    pass


class CameraCaptureError(CaptureError):
    """Raised when a camera cannot be opened or read."""

    def __init__(self, camera_id: str, reason: str):
        message = f"Failed to capture from camera '{camera_id}': {reason}"
        super().__init__(message, details={'camera_id': camera_id, 'reason': reason})


class ScanCancelledError(ScanCertException):
    """Raised when the session's cancellation token has been tripped."""

    def __init__(self, stage: str, reason: str):
        message = f"Scan cancelled during {stage}: {reason}"
        super().__init__(message, details={'stage': stage, 'reason': reason})


def handle_capture_error(func):
    """Decorator for consistent error handling in async capture providers."""
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except (ScanCertException, asyncio.CancelledError):
            raise  # Re-raise our custom exceptions and task cancellation
        except Exception as e:
            # Convert generic exceptions to capture errors
            raise CaptureError(f"Capture operation failed: {str(e)}", details=e) from e
    return wrapper
