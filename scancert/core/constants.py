"""
Constants shared by the capture, calibration, underlay and pipeline stages.
"""

# ==================== CAPTURE CONSTANTS ====================
DEFAULT_TARGET_FRAME_COUNT = 12
DEFAULT_MIN_ACCEPTED_FRAMES = 3
DEFAULT_MAX_CAPTURE_ATTEMPTS = 3
MIN_FRAMES_PER_CAPTURE = 3
CAMERA_PROBE_LIMIT = 6
DEFAULT_IMAGE_WIDTH = 1280
DEFAULT_IMAGE_HEIGHT = 720
DEFAULT_FPS = 30
UNKNOWN_PIXEL_FORMAT = "Unknown"

# Frame acceptance
SHARPNESS_MIN_FOR_ACCEPTANCE = 0.80
EXPOSURE_MIN_FOR_ACCEPTANCE = 0.82
LAPLACIAN_VARIANCE_NORMALIZER = 1000.0

# Preview images written by capture providers
PREVIEW_DIR_NAME = "scancert-preview"
PREVIEW_SUBDIR = "previews"
PREVIEW_JPEG_QUALITY = 92

# ==================== BACKEND CONSTANTS ====================
BACKEND_NATIVE = "native"
BACKEND_OPENCV = "opencv"
BACKEND_SIMULATED = "simulated"
BACKEND_UNKNOWN = "unknown"

TIMESTAMP_SOURCE_SYSTEM_CLOCK = "system_clock_utc"
TIMESTAMP_SOURCE_DEVICE_CLOCK = "device_clock_ms"
TIMESTAMP_SOURCE_SIMULATED = "simulated_clock_ms"

SIMULATED_DEVICE_IDS = ("bootstrap-device", "usb-hd-cam-01")

# Backends that read lock properties back after setting them
LOCK_VERIFYING_BACKENDS = (BACKEND_NATIVE, BACKEND_OPENCV)


class LockVerificationStatus:
    """Outcome of an exposure / white-balance lock request."""
    NOT_REQUESTED = "not_requested"
    VERIFIED = "verified"
    FAILED = "failed"
    UNKNOWN = "unknown"


# ==================== CAPTURE QUALITY CONSTANTS ====================
MIN_FRAMES_FOR_QUALITY = 3
MIN_ACCEPTED_RATIO = 0.5
MAX_FRAME_JITTER_MS = 10.0

# ==================== CALIBRATION CONSTANTS ====================
CHECKERBOARD_SIZE = (9, 6)  # inner corners (columns, rows)
CHECKER_SQUARE_SIZE_MM = 10.0
SUBPIX_WINDOW = (11, 11)
SUBPIX_MAX_ITER = 30
SUBPIX_EPSILON = 0.01
MIN_INTRINSIC_FRAMES = 3

REPROJECTION_TOLERANCE_PX = 0.5
SCALE_TOLERANCE_MM = 0.2
CHECKERBOARD_REPROJECTION_RANGE_PX = (0.03, 1.20)
CHECKERBOARD_SCALE_RANGE_MM = (0.01, 0.19)
HEURISTIC_REPROJECTION_RANGE_PX = (0.05, 0.48)
HEURISTIC_SCALE_RANGE_MM = (0.01, 0.19)

# Path labels carried in calibration notes
CALIBRATION_MODE_CHECKERBOARD = "checkerboard-derived"
CALIBRATION_MODE_FRAME_HEURISTIC = "frame-derived"
CALIBRATION_MODE_STATIC = "fallback-static"

# Residual samples
MAX_RESIDUAL_SAMPLE_FRAMES = 8
MIN_RESIDUAL_SAMPLES = 3
FALLBACK_REPROJECTION_RESIDUALS_PX = (0.31, 0.44, 0.49, 0.42, 0.38)
FALLBACK_SCALE_RESIDUALS_MM = (0.08, 0.12, 0.10, 0.14, 0.11)


class IntrinsicReason:
    """Reason codes for including or excluding a frame from the intrinsic solve."""
    USED = "used_for_intrinsics"
    PREVIEW_MISSING = "preview_missing"
    IMAGE_READ_FAILED = "image_read_failed"
    CORNERS_NOT_FOUND = "corners_not_found"
    PROCESSING_ERROR = "processing_error"


REASON_CATEGORIES = {
    IntrinsicReason.USED: "included",
    IntrinsicReason.PREVIEW_MISSING: "input_missing",
    IntrinsicReason.IMAGE_READ_FAILED: "image_io",
    IntrinsicReason.CORNERS_NOT_FOUND: "detection_failure",
    IntrinsicReason.PROCESSING_ERROR: "processing_error",
}

# ==================== GATE THRESHOLDS ====================
MIN_USABLE_INTRINSIC_FRAMES = 3
MAX_REPROJECTION_ERROR_PX = 0.5
REPROJECTION_ERROR_PERCENTILE = 95
MAX_REPROJECTION_ERROR_PERCENTILE_PX = 0.6
MIN_UNDERLAY_SCALE_CONFIDENCE = 0.7
MIN_UNDERLAY_POSE_QUALITY = 0.45

# ==================== UNDERLAY CONSTANTS ====================
DEFAULT_UNDERLAY_PATTERN = "Mata-10mm-grid"
DEFAULT_UNDERLAY_BOX_SIZE_MM = 10.0
UNDERLAY_TOLERANCE_MM = 0.2
UNDERLAY_TARGET_SAMPLES = 5
MIN_UNDERLAY_SAMPLES = 3

DETECTION_MODE_CHECKERBOARD = "checkerboard-geometry"
DETECTION_MODE_LINE_GRID = "line-grid-heuristic"
DETECTION_MODE_FRAME_QUALITY = "frame-quality-fallback"
DETECTION_MODE_STATIC = "static-fallback"

# Checkerboard geometry path
HOMOGRAPHY_RANSAC_THRESHOLD = 3.0
GEOMETRY_CLAMP_MM = 0.22
MIN_MAPPED_DISTANCES = 8
NEUTRAL_POSE_SCORE = 0.6
FAILED_POSE_SCORE = 0.55

# Line-grid heuristic path
EXPECTED_GRID_SPACING_PX = 40.0
LINE_CLUSTER_MERGE_PX = 6.0
LINE_SPACING_RANGE_PX = (8.0, 140.0)
LINE_GRID_CLAMP_MM = 0.18
MIN_HOUGH_LINES = 8

# Frame-quality fallback path
FRAME_QUALITY_CLAMP_MM = 0.16
IDEAL_SHARPNESS = 0.9
STATIC_FALLBACK_OFFSETS_MM = (-0.04, 0.04, 0.02)
STATIC_FALLBACK_SCALE_CONFIDENCE = 0.25
STATIC_FALLBACK_POSE_QUALITY = 0.20

# Pattern validator
MAD_REJECTION_FACTOR = 3.0
MIN_SAMPLES_FOR_MAD = 4
POSE_FROM_FIT_FACTOR = 0.95

# ==================== MEASUREMENT CONSTANTS ====================
VALIDATION_TOLERANCE_MM = 0.5
MEASUREMENT_ERROR_MULTIPLIERS = (-1.8, 2.2, -1.1, 1.4, -0.9, 0.7)
MIN_MEASUREMENT_SCALE_FACTOR = 0.05
SKETCH_VIEWS = ("front", "back", "left", "right", "top", "bottom")
DEFAULT_OUTPUT_ROOT = "output"
REPORT_FILE_NAME = "validation.json"
MESH_FILE_NAME = "model.obj"

# ==================== POLICY CONSTANTS ====================
ENV_ALLOW_SIMULATED_BACKEND = "SCANCERT_ALLOW_SIMULATED_BACKEND"
ENV_REQUIRE_INTRINSIC_FRAMES = "SCANCERT_REQUIRE_INTRINSIC_FRAMES"
TRUTHY_VALUES = ("1", "true", "yes")

# ==================== DEBUG CONSTANTS ====================
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
MAX_LOG_FILE_SIZE = 10 * 1024 * 1024  # 10MB
