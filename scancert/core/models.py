"""
Immutable record types exchanged between pipeline stages.

Every record is a frozen dataclass; "updating" a record means building a new
one with :func:`dataclasses.replace`. Sequences are stored as tuples so a
record cannot be mutated after a stage hands it on.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional, Tuple

from .constants import (
    DEFAULT_MAX_CAPTURE_ATTEMPTS,
    DEFAULT_MIN_ACCEPTED_FRAMES,
    DEFAULT_TARGET_FRAME_COUNT,
    DEFAULT_UNDERLAY_PATTERN,
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ==================== SESSION & SETTINGS ====================

@dataclass(frozen=True)
class ScanSession:
    """Identity of one scan session. Read by every stage."""
    session_id: uuid.UUID
    started_at: datetime
    camera_device_id: str
    operator_notes: str = ""
    units: str = "mm"

    @classmethod
    def create(cls, camera_device_id: str, operator_notes: str = "", units: str = "mm") -> 'ScanSession':
        return cls(uuid.uuid4(), utc_now(), camera_device_id, operator_notes, units)


@dataclass(frozen=True)
class CaptureSettings:
    """Capture configuration for a session."""
    target_frame_count: int = DEFAULT_TARGET_FRAME_COUNT
    lock_exposure: bool = True
    lock_white_balance: bool = True
    underlay_pattern: str = DEFAULT_UNDERLAY_PATTERN
    lighting_profile: str = "diffuse-white-5600k"
    allow_simulated_fallback: bool = False
    preferred_backend: Optional[str] = None
    minimum_accepted_frame_count: int = DEFAULT_MIN_ACCEPTED_FRAMES
    max_capture_attempts: int = DEFAULT_MAX_CAPTURE_ATTEMPTS

    @property
    def required_accepted_frame_count(self) -> int:
        """Minimum accepted frames, clamped to ``[1, target_frame_count]``."""
        upper = max(1, self.target_frame_count)
        return max(1, min(upper, self.minimum_accepted_frame_count))

    @property
    def effective_max_attempts(self) -> int:
        return max(1, self.max_capture_attempts)


# ==================== CAMERA ====================

@dataclass(frozen=True)
class CameraCaptureMode:
    width: int
    height: int
    frames_per_second: int
    pixel_format: str

    def __str__(self) -> str:
        return f"{self.width}x{self.height}@{self.frames_per_second}fps/{self.pixel_format}"


@dataclass(frozen=True)
class CameraDeviceInfo:
    device_id: str
    display_name: str
    is_available: bool
    preferred_mode: Optional[CameraCaptureMode] = None


@dataclass(frozen=True)
class SelectedCameraInfo:
    device_id: str
    display_name: str


@dataclass(frozen=True)
class CaptureFrame:
    """
    One captured frame as reported by a capture provider.

    ``source_timestamp_ms`` is the device clock in milliseconds when the
    backend exposes one.
    """
    frame_id: str
    captured_at: datetime
    sharpness_score: float
    exposure_score: float
    accepted: bool
    source_timestamp_ms: Optional[float] = None
    preview_image_path: Optional[str] = None


@dataclass(frozen=True)
class FrameCaptureDiagnostics:
    backend_used: str
    exposure_lock_verified: Optional[bool]
    white_balance_lock_verified: Optional[bool]
    timestamp_source: str


@dataclass(frozen=True)
class FrameCaptureResult:
    frames: Tuple[CaptureFrame, ...]
    diagnostics: FrameCaptureDiagnostics

    @property
    def accepted_count(self) -> int:
        return sum(1 for frame in self.frames if frame.accepted)


@dataclass(frozen=True)
class CapturePreflightResult:
    passed: bool
    selected_camera: Optional[SelectedCameraInfo]
    mode_list: Tuple[CameraCaptureMode, ...]
    backend_candidate: str
    simulated_fallback_allowed: bool
    exposure_lock_verification_supported: bool
    white_balance_lock_verification_supported: bool
    timestamp_readiness_pass: bool
    blocking_issues: Tuple[str, ...]
    warnings: Tuple[str, ...]
    summary: str


@dataclass(frozen=True)
class CaptureResult:
    """Best capture attempt of a session plus reliability bookkeeping."""
    camera_device_id: str
    selected_mode: CameraCaptureMode
    captured_frame_count: int
    accepted_frame_count: int
    required_accepted_frame_count: int
    capture_attempts_used: int
    max_capture_attempts: int
    reliability_target_met: bool
    reliability_failure_reason: Optional[str]
    frames: Tuple[CaptureFrame, ...]
    capture_backend: str
    exposure_lock_requested: bool
    white_balance_lock_requested: bool
    exposure_lock_verified: Optional[bool]
    white_balance_lock_verified: Optional[bool]
    exposure_lock_status: str
    white_balance_lock_status: str
    frame_timestamp_source: str
    frame_timestamps_monotonic: bool
    notes: str

    def __post_init__(self):
        if self.accepted_frame_count > self.captured_frame_count:
            raise ValueError(
                f"accepted_frame_count ({self.accepted_frame_count}) exceeds "
                f"captured_frame_count ({self.captured_frame_count})"
            )
        if self.reliability_target_met != (self.accepted_frame_count >= self.required_accepted_frame_count):
            raise ValueError("reliability_target_met disagrees with accepted/required frame counts")

    @property
    def accepted_frames(self) -> Tuple[CaptureFrame, ...]:
        return tuple(frame for frame in self.frames if frame.accepted)


@dataclass(frozen=True)
class CaptureQualitySummary:
    total_frames: int
    accepted_frames: int
    accepted_ratio: float
    mean_sharpness: float
    mean_exposure: float
    timestamp_coverage_ratio: float
    frame_interval_mean_ms: float
    frame_interval_jitter_ms: float
    rejection_counts: Dict[str, int]
    reliability_pass: bool
    reliability_warnings: Tuple[str, ...]
    summary: str


# ==================== CALIBRATION ====================

@dataclass(frozen=True)
class IntrinsicFrameInclusionDiagnostic:
    frame_id: str
    included: bool
    reason_code: str
    reason_category: str


@dataclass(frozen=True)
class IntrinsicDiagnosticsSummary:
    total_frames_evaluated: int
    usable_frames: int
    rejected_frames: int
    rejected_frames_by_reason: Dict[str, int]
    rejected_frames_by_category: Dict[str, int]
    frame_diagnostics: Tuple[IntrinsicFrameInclusionDiagnostic, ...]


@dataclass(frozen=True)
class IntrinsicCalibrationDetails:
    """Solved camera intrinsics; ``camera_matrix`` is 3x3 row-major."""
    pattern_type: str
    pattern_columns: int
    pattern_rows: int
    square_size_mm: float
    image_width_px: int
    image_height_px: int
    camera_matrix: Tuple[float, ...]
    distortion_coefficients: Tuple[float, ...]
    used_frame_ids: Tuple[str, ...]
    rejected_frame_reasons: Tuple[str, ...] = ()
    rejected_frame_reason_counts: Dict[str, int] = field(default_factory=dict)
    rejected_frame_category_counts: Dict[str, int] = field(default_factory=dict)
    frame_diagnostics: Tuple[IntrinsicFrameInclusionDiagnostic, ...] = ()
    per_view_reprojection_errors_px: Tuple[float, ...] = ()

    def __post_init__(self):
        if len(self.camera_matrix) != 9:
            raise ValueError(f"camera_matrix must hold 9 values, got {len(self.camera_matrix)}")


@dataclass(frozen=True)
class CalibrationResult:
    calibration_profile_id: str
    calibrated_at: datetime
    reprojection_error_px: float
    scale_error_mm: float
    is_within_tolerance: bool
    notes: str
    calibration_mode: str
    intrinsic_calibration: Optional[IntrinsicCalibrationDetails] = None
    intrinsic_diagnostics: Optional[IntrinsicDiagnosticsSummary] = None

    @property
    def used_intrinsic_frames(self) -> int:
        if self.intrinsic_calibration is None:
            return 0
        return len(self.intrinsic_calibration.used_frame_ids)


@dataclass(frozen=True)
class CalibrationResidualSamples:
    reprojection_residual_samples_px: Tuple[float, ...]
    scale_residual_samples_mm: Tuple[float, ...]
    source: str = "frame-quality"


@dataclass(frozen=True)
class CalibrationQualitySummary:
    reprojection_error_px: float
    scale_error_mm: float
    reprojection_residual_samples_px: Tuple[float, ...]
    scale_residual_samples_mm: Tuple[float, ...]
    gate_pass: bool
    gate_failures: Tuple[str, ...]
    used_intrinsic_frames: int
    minimum_required_intrinsic_frames: int
    intrinsic_frames_evaluated: int
    intrinsic_frames_rejected: int
    intrinsic_rejected_frames_by_reason: Dict[str, int]
    intrinsic_rejected_frames_by_category: Dict[str, int]
    underlay_scale_confidence: float
    underlay_pose_quality: float
    summary: str

    def __post_init__(self):
        if self.gate_pass != (len(self.gate_failures) == 0):
            raise ValueError("gate_pass must be True exactly when gate_failures is empty")


# ==================== UNDERLAY ====================

@dataclass(frozen=True)
class UnderlayVerificationResult:
    performed: bool
    underlay_pattern_id: str
    detection_mode: str
    expected_box_size_mm: float
    measured_box_sizes_mm: Tuple[float, ...]
    inlier_box_sizes_mm: Tuple[float, ...]
    mean_box_size_mm: float
    max_absolute_error_mm: float
    mean_absolute_error_mm: float
    fit_confidence: float
    scale_confidence: float
    pose_quality: float
    tolerance_mm: float
    passed: bool
    notes: str
    grid_spacing_px: float = 0.0
    grid_spacing_std_dev_px: float = 0.0
    homography_inlier_ratio: float = 0.0
    pose_reprojection_error_px: float = 0.0
    geometry_derived: bool = False


# ==================== MEASUREMENT ====================

@dataclass(frozen=True)
class DimensionReference:
    name: str
    reference_mm: float


@dataclass(frozen=True)
class MeasurementProfile:
    references: Tuple[DimensionReference, ...]
    profile_name: str
    units: str = "mm"

    @classmethod
    def baseline(cls) -> 'MeasurementProfile':
        """Reference prismatic part used by the benchtop rig."""
        return cls(
            references=(
                DimensionReference("Width", 44.00),
                DimensionReference("Height", 27.00),
                DimensionReference("Depth", 19.00),
            ),
            profile_name="baseline-prismatic-part",
        )


@dataclass(frozen=True)
class DimensionMeasurement:
    name: str
    reference_mm: float
    measured_mm: float
    absolute_error_mm: float

    def is_within_tolerance(self, tolerance_mm: float) -> bool:
        return self.absolute_error_mm <= tolerance_mm


@dataclass(frozen=True)
class ValidationReport:
    session_id: uuid.UUID
    generated_at: datetime
    tolerance_mm: float
    measurements: Tuple[DimensionMeasurement, ...]
    max_absolute_error_mm: float
    mean_absolute_error_mm: float
    passed: bool
    summary: str


# ==================== REPORTS ====================

@dataclass(frozen=True)
class ScanQualityReport:
    session_id: uuid.UUID
    generated_at: datetime
    capture_preflight: Optional[CapturePreflightResult]
    capture: CaptureResult
    capture_quality: CaptureQualitySummary
    underlay_verification: UnderlayVerificationResult
    calibration: CalibrationResult
    calibration_quality: CalibrationQualitySummary
    validation: ValidationReport


@dataclass(frozen=True)
class PipelineResult:
    success: bool
    capture_preflight: Optional[CapturePreflightResult]
    capture: CaptureResult
    capture_quality: CaptureQualitySummary
    calibration: CalibrationResult
    calibration_quality: CalibrationQualitySummary
    underlay_verification: UnderlayVerificationResult
    validation: ValidationReport
    mesh_path: str
    sketch_paths: Tuple[str, ...]
    validation_report_path: str
    message: str
