"""
Scan pipeline orchestration.

Runs one session through preflight, capture, calibration, underlay
verification, quality gates, measurement and artifact export. Only
configuration errors (and cancellation) are raised; every quality gate
outcome is reported in the returned PipelineResult.
"""

import logging
import re
from dataclasses import replace
from pathlib import Path
from typing import Optional, Tuple, Union

from ..calibration.gate_evaluator import evaluate_calibration_gates
from ..calibration.intrinsic_calibration import IntrinsicCalibrationService
from ..calibration.residuals import CalibrationResidualProvider
from ..capture.backend import CaptureProviders, build_provider_chain
from ..capture.capture_service import CaptureService
from ..capture.preflight import CapturePreflightService
from ..capture.quality_analyzer import CaptureQualityAnalyzer
from ..core.cancellation import ensure_token, CancellationToken
from ..core.constants import (
    DEFAULT_OUTPUT_ROOT,
    DEFAULT_UNDERLAY_BOX_SIZE_MM,
    MIN_USABLE_INTRINSIC_FRAMES,
    PREVIEW_SUBDIR,
    VALIDATION_TOLERANCE_MM,
)
from ..core.models import (
    CalibrationQualitySummary,
    CalibrationResidualSamples,
    CalibrationResult,
    CaptureSettings,
    MeasurementProfile,
    PipelineResult,
    ScanQualityReport,
    ScanSession,
    UnderlayVerificationResult,
    utc_now,
)
from ..exceptions import CapturePreflightError, NoCameraDeviceError
from ..reporting.measurement_service import MeasurementService, build_validation_report
from ..reporting.mesh_service import MeshExportService
from ..reporting.report_writer import write_quality_report
from ..reporting.sketch_service import SketchExportService
from ..session_config import SessionPolicy, default_capture_settings
from ..underlay.box_size_estimator import UnderlayBoxSizeEstimator
from ..underlay.pattern_validator import UnderlayPatternValidator

logger = logging.getLogger(__name__)

_BOX_SIZE_PATTERN = re.compile(r"(\d+(?:\.\d+)?)\s*mm", re.IGNORECASE)


def expected_box_size_for_pattern(pattern_id: str) -> float:
    """Printed box size encoded in a pattern id such as ``Mata-10mm-grid``."""
    match = _BOX_SIZE_PATTERN.search(pattern_id or "")
    if match is None:
        return DEFAULT_UNDERLAY_BOX_SIZE_MM
    return float(match.group(1))


def summarize_calibration_quality(
    calibration: CalibrationResult,
    residuals: CalibrationResidualSamples,
    underlay: UnderlayVerificationResult,
    failures
) -> CalibrationQualitySummary:
    diagnostics = calibration.intrinsic_diagnostics
    gate_pass = not failures
    summary = ("Calibration quality gates passed." if gate_pass
               else "Calibration quality gate failed: " + "; ".join(failures))

    return CalibrationQualitySummary(
        reprojection_error_px=calibration.reprojection_error_px,
        scale_error_mm=calibration.scale_error_mm,
        reprojection_residual_samples_px=residuals.reprojection_residual_samples_px,
        scale_residual_samples_mm=residuals.scale_residual_samples_mm,
        gate_pass=gate_pass,
        gate_failures=tuple(failures),
        used_intrinsic_frames=calibration.used_intrinsic_frames,
        minimum_required_intrinsic_frames=MIN_USABLE_INTRINSIC_FRAMES,
        intrinsic_frames_evaluated=diagnostics.total_frames_evaluated if diagnostics else 0,
        intrinsic_frames_rejected=diagnostics.rejected_frames if diagnostics else 0,
        intrinsic_rejected_frames_by_reason=dict(diagnostics.rejected_frames_by_reason) if diagnostics else {},
        intrinsic_rejected_frames_by_category=dict(diagnostics.rejected_frames_by_category) if diagnostics else {},
        underlay_scale_confidence=underlay.scale_confidence,
        underlay_pose_quality=underlay.pose_quality,
        summary=summary,
    )


class PipelineOrchestrator:
    """
    Runs scan sessions end to end.

    Args:
        providers: Capture providers to use for every stage; when omitted a
            backend fallback chain is built per session
        output_root: Directory receiving ``<session hex>/`` artifact folders
        preview_dir: Root for per-session camera preview folders; previews go
            under the session output folder when omitted
        simulated_preview_dir: Root for per-session simulated preview folders;
            simulated frames carry no previews when omitted
        system: Platform name used for backend resolution (defaults to the host)
        profile: Reference dimensions to measure
    """

    def __init__(self,
                 providers: Optional[CaptureProviders] = None,
                 output_root: Union[str, Path] = DEFAULT_OUTPUT_ROOT,
                 preview_dir: Optional[Path] = None,
                 simulated_preview_dir: Optional[Path] = None,
                 system: Optional[str] = None,
                 profile: Optional[MeasurementProfile] = None):
        self.providers = providers
        self.output_root = Path(output_root)
        self.preview_dir = preview_dir
        self.simulated_preview_dir = simulated_preview_dir
        self.system = system
        self.profile = profile or MeasurementProfile.baseline()

        self.quality_analyzer = CaptureQualityAnalyzer()
        self.calibration_service = IntrinsicCalibrationService()
        self.residual_provider = CalibrationResidualProvider()
        self.underlay_estimator = UnderlayBoxSizeEstimator()
        self.underlay_validator = UnderlayPatternValidator()
        self.measurement_service = MeasurementService()
        self.mesh_service = MeshExportService()
        self.sketch_service = SketchExportService()

    def session_preview_dirs(self, session: ScanSession) -> Tuple[Path, Optional[Path]]:
        """
        Preview directories owned by one session.

        Camera previews land in ``<preview_dir>/<session hex>``, or in
        ``<output_root>/<session hex>/previews`` when no preview directory is
        configured. Simulated previews are scoped the same way under
        ``simulated_preview_dir`` and stay off when that is unset.

        Returns:
            (camera_preview_dir, simulated_preview_dir)
        """
        key = session.session_id.hex
        if self.preview_dir is not None:
            camera_dir = Path(self.preview_dir) / key
        else:
            camera_dir = self.output_root / key / PREVIEW_SUBDIR
        simulated_dir = Path(self.simulated_preview_dir) / key if self.simulated_preview_dir is not None else None
        return camera_dir, simulated_dir

    def _providers_for(self, backend: Optional[str], session: ScanSession) -> CaptureProviders:
        if self.providers is not None:
            return self.providers
        camera_dir, simulated_dir = self.session_preview_dirs(session)
        return build_provider_chain(backend, self.system, camera_dir, simulated_dir)

    async def execute(
        self,
        session: ScanSession,
        settings: Optional[CaptureSettings] = None,
        token: Optional[CancellationToken] = None,
        policy: Optional[SessionPolicy] = None
    ) -> PipelineResult:
        """
        Execute the pipeline for one session.

        Args:
            session: Scan session
            settings: Capture settings; the standard preset when omitted. The
                simulation permission is always taken from the session policy.
            token: Cancellation token threaded through every stage
            policy: Session policy; resolved from flags, environment and
                operator notes when omitted

        Returns:
            Pipeline result with every intermediate record and artifact path

        Raises:
            NoCameraDeviceError: If preflight found no camera
            CapturePreflightError: If preflight reported blocking issues
            UnsupportedBackendError: If the preferred backend cannot run here
            SimulatedBackendDisallowedError: If capture fell back to simulation while disallowed
            ScanCancelledError: If the token is cancelled
        """
        token = ensure_token(token)
        policy = policy or SessionPolicy.resolve(session)
        settings = replace(settings or default_capture_settings(policy),
                           allow_simulated_fallback=policy.allow_simulated_backend)

        logger.info(f"Starting session {session.session_id.hex} (camera={session.camera_device_id})")

        # ==================== PREFLIGHT ====================
        preflight_providers = self._providers_for(settings.preferred_backend, session)
        preflight = await CapturePreflightService(
            preflight_providers.device_discovery, preflight_providers.mode_discovery
        ).evaluate(session, settings, token)

        if not preflight.passed:
            if preflight.selected_camera is None:
                raise NoCameraDeviceError(session.camera_device_id)
            raise CapturePreflightError(preflight)
        for warning in preflight.warnings:
            logger.warning(f"Preflight: {warning}")

        # ==================== CAPTURE ====================
        capture_session = replace(session, camera_device_id=preflight.selected_camera.device_id)
        capture_providers = self._providers_for(preflight.backend_candidate, session)
        capture = await CaptureService(
            capture_providers.device_discovery,
            capture_providers.mode_discovery,
            capture_providers.frame_capture,
        ).capture(capture_session, settings, token)
        capture_quality = self.quality_analyzer.analyze(capture)

        # ==================== CALIBRATION & UNDERLAY ====================
        calibration = await self.calibration_service.calibrate(session, capture, token)

        expected_box = expected_box_size_for_pattern(settings.underlay_pattern)
        estimate = await self.underlay_estimator.estimate(
            capture, expected_box, calibration.intrinsic_calibration, token)
        underlay = self.underlay_validator.validate_estimate(estimate, settings.underlay_pattern, expected_box)

        residuals = await self.residual_provider.get_residual_samples(calibration, capture, token)
        failures = evaluate_calibration_gates(
            calibration, residuals, underlay, policy.require_strict_intrinsic_gate)
        calibration_quality = summarize_calibration_quality(calibration, residuals, underlay, failures)

        # ==================== MEASUREMENT ====================
        measurements = await self.measurement_service.measure(self.profile, calibration, token)
        validation = build_validation_report(session.session_id, measurements, VALIDATION_TOLERANCE_MM)

        # ==================== ARTIFACTS ====================
        output_dir = self.output_root / session.session_id.hex
        mesh_path = await self.mesh_service.export_mesh(session.session_id, measurements, output_dir, token)
        sketch_paths = await self.sketch_service.export_sketches(
            session.session_id, measurements, output_dir, token)

        report = ScanQualityReport(
            session_id=session.session_id,
            generated_at=utc_now(),
            capture_preflight=preflight,
            capture=capture,
            capture_quality=capture_quality,
            underlay_verification=underlay,
            calibration=calibration,
            calibration_quality=calibration_quality,
            validation=validation,
        )
        report_path = await write_quality_report(report, output_dir, token)

        success = (capture.reliability_target_met
                   and calibration_quality.gate_pass
                   and underlay.passed
                   and validation.passed)

        if success:
            message = ("Pipeline executed. Capture, underlay, calibration, and dimensional checks "
                       "are within configured tolerances.")
        else:
            calibration_detail = "passed" if calibration_quality.gate_pass else " | ".join(failures)
            message = (
                "Pipeline executed with failed quality gates. "
                f"Capture gate detail: {capture.reliability_failure_reason or 'n/a'}; "
                f"Calibration gate detail: {calibration_detail}; "
                f"Underlay pass: {underlay.passed}; "
                f"Validation pass: {validation.passed}"
            )

        logger.info(f"Session {session.session_id.hex} finished (success={success})")
        if not success:
            logger.warning(message)

        return PipelineResult(
            success=success,
            capture_preflight=preflight,
            capture=capture,
            capture_quality=capture_quality,
            calibration=calibration,
            calibration_quality=calibration_quality,
            underlay_verification=underlay,
            validation=validation,
            mesh_path=mesh_path,
            sketch_paths=sketch_paths,
            validation_report_path=report_path,
            message=message,
        )
