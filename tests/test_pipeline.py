"""End-to-end tests for the pipeline orchestrator."""
from dataclasses import replace
from pathlib import Path

import pytest

from scancert.capture.backend import CaptureBackend, CaptureProviders, build_capture_providers
from scancert.core.cancellation import CancellationToken
from scancert.core.constants import (
    CALIBRATION_MODE_CHECKERBOARD,
    CALIBRATION_MODE_FRAME_HEURISTIC,
    DETECTION_MODE_CHECKERBOARD,
    DETECTION_MODE_FRAME_QUALITY,
)
from scancert.core.models import ScanSession
from scancert.exceptions import CapturePreflightError, NoCameraDeviceError, ScanCancelledError
from scancert.pipeline.orchestrator import PipelineOrchestrator, expected_box_size_for_pattern
from scancert.reporting.report_writer import load_quality_report
from scancert.session_config import SessionPolicy, default_capture_settings

from conftest import StubDeviceDiscovery, StubFrameCapture, StubModeDiscovery


@pytest.fixture
def simulated_providers():
    return build_capture_providers(CaptureBackend.SIMULATED, "Linux")


@pytest.fixture
def orchestrator(simulated_providers, tmp_path):
    return PipelineOrchestrator(providers=simulated_providers, output_root=tmp_path / "output")


class TestPipelineOrchestrator:
    """Stage sequencing and success aggregation of PipelineOrchestrator.execute."""

    @pytest.mark.asyncio
    async def test_simulated_session_succeeds(self, orchestrator, session, tmp_path):
        """Operator notes containing 'test' authorize the simulated backend."""
        result = await orchestrator.execute(session, policy=SessionPolicy.resolve(session, environ={}))

        assert result.success is True
        assert result.message.startswith("Pipeline executed. Capture, underlay, calibration")
        assert result.capture.reliability_target_met is True
        assert result.capture.accepted_frame_count == 7
        assert result.calibration.calibration_mode == CALIBRATION_MODE_FRAME_HEURISTIC
        assert result.underlay_verification.detection_mode == DETECTION_MODE_FRAME_QUALITY
        assert result.calibration_quality.gate_pass is True
        assert result.validation.passed is True

        session_dir = tmp_path / "output" / session.session_id.hex
        assert Path(result.mesh_path) == session_dir / "model.obj"
        assert len(result.sketch_paths) == 6
        assert all(Path(p).is_file() for p in result.sketch_paths)
        assert Path(result.validation_report_path) == session_dir / "validation.json"

    @pytest.mark.asyncio
    async def test_report_round_trip(self, orchestrator, session):
        result = await orchestrator.execute(session, policy=SessionPolicy(allow_simulated_backend=True))

        report = load_quality_report(result.validation_report_path)

        assert report.session_id == session.session_id
        assert report.capture == result.capture
        assert report.capture_quality == result.capture_quality
        assert report.calibration == result.calibration
        assert report.calibration_quality == result.calibration_quality
        assert report.underlay_verification == result.underlay_verification
        assert report.validation == result.validation
        assert report.capture_preflight == result.capture_preflight

    @pytest.mark.asyncio
    async def test_checkerboard_previews_drive_image_paths(self, session, tmp_path):
        providers = build_capture_providers(CaptureBackend.SIMULATED, "Linux",
                                            simulated_preview_dir=tmp_path / "previews")
        orchestrator = PipelineOrchestrator(providers=providers, output_root=tmp_path / "output")

        result = await orchestrator.execute(session, policy=SessionPolicy(allow_simulated_backend=True))

        assert result.calibration.calibration_mode == CALIBRATION_MODE_CHECKERBOARD
        assert result.calibration.intrinsic_calibration is not None
        assert result.underlay_verification.detection_mode == DETECTION_MODE_CHECKERBOARD
        assert result.underlay_verification.geometry_derived is True
        assert result.calibration_quality.used_intrinsic_frames >= 3

        report = load_quality_report(result.validation_report_path)
        assert report.calibration.intrinsic_calibration == result.calibration.intrinsic_calibration

    @pytest.mark.asyncio
    async def test_failed_gate_is_reported(self, orchestrator, session):
        policy = SessionPolicy(allow_simulated_backend=True, require_strict_intrinsic_gate=True)

        result = await orchestrator.execute(session, policy=policy)

        assert result.success is False
        assert result.calibration_quality.gate_failures == ("intrinsic_frames=0 < 3",)
        assert result.message == (
            "Pipeline executed with failed quality gates. Capture gate detail: n/a; "
            "Calibration gate detail: intrinsic_frames=0 < 3; Underlay pass: True; Validation pass: True"
        )

    @pytest.mark.asyncio
    async def test_simulation_disallowed_fails_preflight(self, orchestrator):
        session = ScanSession.create("bootstrap-device")

        with pytest.raises(CapturePreflightError) as excinfo:
            await orchestrator.execute(session, policy=SessionPolicy(allow_simulated_backend=False))

        assert "Simulated capture backend is not allowed for this run." in excinfo.value.preflight.blocking_issues

    @pytest.mark.asyncio
    async def test_no_camera_is_a_configuration_error(self, session, tmp_path):
        providers = CaptureProviders(StubDeviceDiscovery([]), StubModeDiscovery([]), StubFrameCapture([3]))
        orchestrator = PipelineOrchestrator(providers=providers, output_root=tmp_path)

        with pytest.raises(NoCameraDeviceError):
            await orchestrator.execute(session, policy=SessionPolicy(allow_simulated_backend=True))

    @pytest.mark.asyncio
    async def test_unmet_reliability_fails_session(self, camera_session, camera_device, camera_modes, tmp_path):
        providers = CaptureProviders(StubDeviceDiscovery([camera_device]), StubModeDiscovery(camera_modes),
                                     StubFrameCapture([1], frames_per_attempt=12))
        orchestrator = PipelineOrchestrator(providers=providers, output_root=tmp_path)

        result = await orchestrator.execute(camera_session, policy=SessionPolicy())

        assert result.success is False
        assert result.capture.capture_attempts_used == 3
        assert "Capture gate detail: accepted_frames=1 < required=6 after attempts=3" in result.message
        assert Path(result.validation_report_path).is_file()

    @pytest.mark.asyncio
    async def test_cancelled_token(self, orchestrator, session):
        token = CancellationToken()
        token.cancel()

        with pytest.raises(ScanCancelledError):
            await orchestrator.execute(session, token=token, policy=SessionPolicy(allow_simulated_backend=True))


class TestSessionPreviews:
    """Preview folders are owned by a single session."""

    def test_camera_previews_default_under_session_output(self, session, tmp_path):
        orchestrator = PipelineOrchestrator(output_root=tmp_path / "output")

        camera_dir, simulated_dir = orchestrator.session_preview_dirs(session)

        assert camera_dir == tmp_path / "output" / session.session_id.hex / "previews"
        assert simulated_dir is None

    def test_configured_roots_get_session_subfolders(self, session, tmp_path):
        orchestrator = PipelineOrchestrator(output_root=tmp_path / "output",
                                            preview_dir=tmp_path / "camera",
                                            simulated_preview_dir=tmp_path / "sim")

        camera_dir, simulated_dir = orchestrator.session_preview_dirs(session)

        assert camera_dir == tmp_path / "camera" / session.session_id.hex
        assert simulated_dir == tmp_path / "sim" / session.session_id.hex

    @pytest.mark.asyncio
    async def test_built_chain_writes_into_session_folder(self, session, tmp_path):
        orchestrator = PipelineOrchestrator(output_root=tmp_path / "output",
                                            simulated_preview_dir=tmp_path / "sim",
                                            system="Linux")
        policy = SessionPolicy(allow_simulated_backend=True)
        settings = replace(default_capture_settings(policy), preferred_backend="simulated")

        result = await orchestrator.execute(session, settings=settings, policy=policy)

        session_dir = tmp_path / "sim" / session.session_id.hex
        previews = [f.preview_image_path for f in result.capture.frames]
        assert previews
        assert all(p is not None and Path(p).parent == session_dir for p in previews)


class TestExpectedBoxSize:
    @pytest.mark.parametrize("pattern,expected", [
        ("Mata-10mm-grid", 10.0),
        ("grid-2.5mm", 2.5),
        ("custom-grid", 10.0),
        ("", 10.0),
    ])
    def test_parsed_from_pattern_id(self, pattern, expected):
        assert expected_box_size_for_pattern(pattern) == expected
