"""
Orthographic sketch export (one SVG per view).
"""

import asyncio
import logging
import uuid
from pathlib import Path
from typing import Optional, Sequence, Tuple
from xml.sax.saxutils import escape

from ..core.cancellation import ensure_token, CancellationToken
from ..core.constants import SKETCH_VIEWS
from ..core.models import DimensionMeasurement

logger = logging.getLogger(__name__)

SKETCH_WIDTH = 800
SKETCH_HEIGHT = 600
SKETCH_DIR_NAME = "sketches"


def build_sketch_svg(view: str, session_id: uuid.UUID, measurements: Sequence[DimensionMeasurement]) -> str:
    lines = [
        f'<svg xmlns="http://www.w3.org/2000/svg" width="{SKETCH_WIDTH}" height="{SKETCH_HEIGHT}" '
        f'viewBox="0 0 {SKETCH_WIDTH} {SKETCH_HEIGHT}">',
        f'  <rect x="100" y="100" width="{SKETCH_WIDTH - 200}" height="{SKETCH_HEIGHT - 250}" '
        'fill="none" stroke="black" stroke-width="2"/>',
        f'  <text x="20" y="30" font-family="sans-serif" font-size="18">View: {escape(view)}</text>',
        f'  <text x="20" y="55" font-family="sans-serif" font-size="14">Session: {session_id.hex}</text>',
    ]

    y = SKETCH_HEIGHT - 120
    for measurement in measurements:
        label = (f"{measurement.name}: ref {measurement.reference_mm:.2f} mm, "
                 f"measured {measurement.measured_mm:.3f} mm, "
                 f"error {measurement.absolute_error_mm:.3f} mm")
        lines.append(f'  <text x="20" y="{y}" font-family="monospace" font-size="14">{escape(label)}</text>')
        y += 22

    lines.append("</svg>")
    return "\n".join(lines) + "\n"


class SketchExportService:
    """
    Writes orthographic sketches annotated with the measured dimensions.

    Args:
        views: View names; one ``<view>.svg`` is written per view
    """

    def __init__(self, views: Tuple[str, ...] = SKETCH_VIEWS):
        self.views = views

    async def export_sketches(
        self,
        session_id: uuid.UUID,
        measurements: Sequence[DimensionMeasurement],
        output_dir: Path,
        token: Optional[CancellationToken] = None
    ) -> Tuple[str, ...]:
        """
        Write one SVG per view under ``<output_dir>/sketches``.

        Returns:
            Paths of the written sketches, in view order
        """
        token = ensure_token(token)
        sketch_dir = Path(output_dir) / SKETCH_DIR_NAME

        paths = []
        for view in self.views:
            token.raise_if_cancelled("sketch export")
            path = sketch_dir / f"{view}.svg"
            await asyncio.to_thread(_write_text, path, build_sketch_svg(view, session_id, measurements))
            paths.append(str(path))

        logger.info(f"{len(paths)} sketch(es) written to {sketch_dir}")
        return tuple(paths)


def _write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
