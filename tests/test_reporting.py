"""Tests for measurement, validation and artifact export."""
import uuid
from pathlib import Path
from datetime import datetime, timezone

import pytest

from scancert.core.models import CalibrationResult, DimensionMeasurement, MeasurementProfile
from scancert.core.serialization import record_from_dict, record_to_dict
from scancert.reporting.measurement_service import MeasurementService, build_validation_report
from scancert.reporting.mesh_service import MeshExportService, build_box_obj
from scancert.reporting.sketch_service import SketchExportService


def calibration_with_scale(scale_error_mm: float) -> CalibrationResult:
    return CalibrationResult(
        calibration_profile_id="calib-test",
        calibrated_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
        reprojection_error_px=0.2,
        scale_error_mm=scale_error_mm,
        is_within_tolerance=True,
        notes="",
        calibration_mode="frame-derived",
    )


@pytest.fixture
def session_id():
    return uuid.UUID("12345678123456781234567812345678")


class TestMeasurementService:
    @pytest.mark.asyncio
    async def test_offsets_follow_scale_error(self):
        measurements = await MeasurementService().measure(MeasurementProfile.baseline(), calibration_with_scale(0.1))

        assert [m.name for m in measurements] == ["Width", "Height", "Depth"]
        assert [m.measured_mm for m in measurements] == [43.82, 27.22, 18.89]
        assert [m.absolute_error_mm for m in measurements] == [0.18, 0.22, 0.11]

    @pytest.mark.asyncio
    async def test_scale_floor(self):
        measurements = await MeasurementService().measure(MeasurementProfile.baseline(), calibration_with_scale(0.0))

        assert measurements[0].absolute_error_mm == pytest.approx(0.09)

    @pytest.mark.asyncio
    async def test_validation_report(self, session_id):
        service = MeasurementService()
        good = await service.measure(MeasurementProfile.baseline(), calibration_with_scale(0.1))
        bad = await service.measure(MeasurementProfile.baseline(), calibration_with_scale(0.3))

        passed = build_validation_report(session_id, good)
        failed = build_validation_report(session_id, bad)

        assert passed.passed is True
        assert passed.max_absolute_error_mm == pytest.approx(0.22)
        assert passed.summary == "Validation pass: all measured dimensions are within ±0.5 mm."
        assert failed.passed is False
        assert failed.summary == "Validation fail: one or more measured dimensions exceed ±0.5 mm."

    def test_empty_validation_fails(self, session_id):
        assert build_validation_report(session_id, []).passed is False


class TestArtifacts:
    def test_box_obj_defaults(self, session_id):
        text = build_box_obj(session_id, [])
        lines = text.splitlines()

        assert lines[1] == f"# session {session_id.hex}"
        assert lines[2] == "o scanned_object"
        assert lines[3] == "v -22.000 -13.500 -9.500"
        assert sum(1 for line in lines if line.startswith("v ")) == 8
        assert sum(1 for line in lines if line.startswith("f ")) == 12

    def test_box_obj_uses_measurements(self, session_id):
        measurements = [DimensionMeasurement("Width", 44.0, 40.0, 4.0)]

        assert "v 20.000 13.500 9.500" in build_box_obj(session_id, measurements)

    @pytest.mark.asyncio
    async def test_exports_write_files(self, session_id, tmp_path):
        measurements = [DimensionMeasurement("Width", 44.0, 43.9, 0.1)]

        mesh_path = await MeshExportService().export_mesh(session_id, measurements, tmp_path)
        sketch_paths = await SketchExportService().export_sketches(session_id, measurements, tmp_path)

        assert mesh_path.endswith("model.obj")
        assert [Path(p).name for p in sketch_paths] == [
            "front.svg", "back.svg", "left.svg", "right.svg", "top.svg", "bottom.svg"]
        front = (tmp_path / "sketches" / "front.svg").read_text(encoding="utf-8")
        assert "View: front" in front
        assert "Width: ref 44.00 mm, measured 43.900 mm, error 0.100 mm" in front


class TestSerialization:
    def test_record_round_trip(self, session_id):
        report = build_validation_report(session_id, [DimensionMeasurement("Width", 44.0, 43.9, 0.1)])

        data = record_to_dict(report)
        restored = record_from_dict(type(report), data)

        assert data["session_id"] == str(session_id)
        assert isinstance(data["measurements"], list)
        assert restored == report
