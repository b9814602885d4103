"""
Measurement, validation and artifact export.
"""

from .measurement_service import MeasurementService, build_validation_report
from .mesh_service import MeshExportService, build_box_obj
from .sketch_service import SketchExportService, build_sketch_svg
from .report_writer import (
    write_quality_report,
    load_quality_report,
    report_to_json,
    report_from_json,
)

__all__ = [
    'MeasurementService',
    'build_validation_report',
    'MeshExportService',
    'build_box_obj',
    'SketchExportService',
    'build_sketch_svg',
    'write_quality_report',
    'load_quality_report',
    'report_to_json',
    'report_from_json',
]
