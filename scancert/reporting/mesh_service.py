"""
Placeholder mesh export.

The exported mesh is an axis-aligned box sized from the measured dimensions,
written as Wavefront OBJ.
"""

import asyncio
import logging
import uuid
from pathlib import Path
from typing import Optional, Sequence

from ..core.cancellation import ensure_token, CancellationToken
from ..core.constants import MESH_FILE_NAME
from ..core.models import DimensionMeasurement

logger = logging.getLogger(__name__)

DEFAULT_BOX_DIMENSIONS_MM = {"width": 44.0, "height": 27.0, "depth": 19.0}

BOX_FACES = (
    (1, 2, 3), (1, 3, 4),
    (5, 6, 7), (5, 7, 8),
    (1, 2, 6), (1, 6, 5),
    (2, 3, 7), (2, 7, 6),
    (3, 4, 8), (3, 8, 7),
    (4, 1, 5), (4, 5, 8),
)


def resolve_dimension(measurements: Sequence[DimensionMeasurement], name: str) -> float:
    """Measured value of the dimension called ``name`` (case-insensitive), or its default."""
    for measurement in measurements:
        if measurement.name.lower() == name:
            return measurement.measured_mm
    return DEFAULT_BOX_DIMENSIONS_MM[name]


def build_box_obj(session_id: uuid.UUID, measurements: Sequence[DimensionMeasurement]) -> str:
    """OBJ text of a box centred on the origin."""
    half_w = resolve_dimension(measurements, "width") / 2.0
    half_h = resolve_dimension(measurements, "height") / 2.0
    half_d = resolve_dimension(measurements, "depth") / 2.0

    vertices = (
        (-half_w, -half_h, -half_d),
        (half_w, -half_h, -half_d),
        (half_w, half_h, -half_d),
        (-half_w, half_h, -half_d),
        (-half_w, -half_h, half_d),
        (half_w, -half_h, half_d),
        (half_w, half_h, half_d),
        (-half_w, half_h, half_d),
    )

    lines = [
        "# scancert generated mesh placeholder",
        f"# session {session_id.hex}",
        "o scanned_object",
    ]
    lines.extend(f"v {x:.3f} {y:.3f} {z:.3f}" for x, y, z in vertices)
    lines.extend(f"f {a} {b} {c}" for a, b, c in BOX_FACES)
    return "\n".join(lines) + "\n"


class MeshExportService:
    """Writes the placeholder mesh into a session output directory."""

    async def export_mesh(
        self,
        session_id: uuid.UUID,
        measurements: Sequence[DimensionMeasurement],
        output_dir: Path,
        token: Optional[CancellationToken] = None
    ) -> str:
        """
        Write ``model.obj`` for the session.

        Returns:
            Path of the written mesh
        """
        ensure_token(token).raise_if_cancelled("mesh export")

        path = Path(output_dir) / MESH_FILE_NAME
        text = build_box_obj(session_id, measurements)
        await asyncio.to_thread(_write_text, path, text)

        logger.info(f"Mesh written to {path}")
        return str(path)


def _write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
