"""
JSON persistence of the scan quality report.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional, Union

from ..core.cancellation import ensure_token, CancellationToken
from ..core.constants import REPORT_FILE_NAME
from ..core.models import ScanQualityReport
from ..core.serialization import record_from_dict, record_to_dict

logger = logging.getLogger(__name__)


def report_to_json(report: ScanQualityReport) -> str:
    return json.dumps(record_to_dict(report), indent=2, ensure_ascii=False)


def report_from_json(text: str) -> ScanQualityReport:
    return record_from_dict(ScanQualityReport, json.loads(text))


async def write_quality_report(
    report: ScanQualityReport,
    output_dir: Union[str, Path],
    token: Optional[CancellationToken] = None
) -> str:
    """
    Write ``validation.json`` for the session.

    Args:
        report: Quality report
        output_dir: Session output directory, created when missing
        token: Cancellation token

    Returns:
        Path of the written report
    """
    ensure_token(token).raise_if_cancelled("report export")

    path = Path(output_dir) / REPORT_FILE_NAME
    text = report_to_json(report)

    def _write():
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")

    await asyncio.to_thread(_write)
    logger.info(f"Quality report written to {path}")
    return str(path)


def load_quality_report(path: Union[str, Path]) -> ScanQualityReport:
    """
    Load a quality report written by :func:`write_quality_report`.

    Raises:
        FileNotFoundError: If the report does not exist
        json.JSONDecodeError: If the file is not valid JSON
    """
    text = Path(path).read_text(encoding="utf-8")
    return report_from_json(text)
