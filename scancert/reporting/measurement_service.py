"""
Dimensional measurement and validation against a reference profile.
"""

import logging
import uuid
from typing import Optional, Sequence

from ..core.cancellation import ensure_token, CancellationToken
from ..core.constants import (
    MEASUREMENT_ERROR_MULTIPLIERS,
    MIN_MEASUREMENT_SCALE_FACTOR,
    VALIDATION_TOLERANCE_MM,
)
from ..core.models import (
    CalibrationResult,
    DimensionMeasurement,
    MeasurementProfile,
    ValidationReport,
    utc_now,
)
from ..core.utils import mean_or_zero

logger = logging.getLogger(__name__)


class MeasurementService:
    """
    Measures the reference dimensions of a profile.

    Reconstruction is a placeholder: each measured value is the reference
    offset by a fixed multiplier of the calibration scale error, so the
    measured error grows with the calibration's uncertainty.
    """

    async def measure(
        self,
        profile: MeasurementProfile,
        calibration: CalibrationResult,
        token: Optional[CancellationToken] = None
    ):
        """
        Measure every reference of ``profile``.

        Args:
            profile: Reference dimensions
            calibration: Calibration whose scale error drives the offsets
            token: Cancellation token

        Returns:
            Tuple of DimensionMeasurement in profile order
        """
        ensure_token(token).raise_if_cancelled("measurement")

        scale = max(MIN_MEASUREMENT_SCALE_FACTOR, calibration.scale_error_mm)
        measurements = []
        for index, reference in enumerate(profile.references):
            multiplier = MEASUREMENT_ERROR_MULTIPLIERS[index % len(MEASUREMENT_ERROR_MULTIPLIERS)]
            delta = round(multiplier * scale, 3)
            measured = round(reference.reference_mm + delta, 3)
            measurements.append(DimensionMeasurement(
                name=reference.name,
                reference_mm=reference.reference_mm,
                measured_mm=measured,
                absolute_error_mm=round(abs(reference.reference_mm - measured), 3),
            ))

        logger.debug(f"Measured {len(measurements)} dimension(s) for {profile.profile_name} "
                     f"(scale factor {scale:.3f} mm)")
        return tuple(measurements)


def build_validation_report(
    session_id: uuid.UUID,
    measurements: Sequence[DimensionMeasurement],
    tolerance_mm: float = VALIDATION_TOLERANCE_MM
) -> ValidationReport:
    """
    Validate measurements against a symmetric tolerance.

    Args:
        session_id: Session the measurements belong to
        measurements: Dimension measurements
        tolerance_mm: Allowed absolute error per dimension

    Returns:
        ValidationReport; passes when every dimension is within tolerance
    """
    errors = [m.absolute_error_mm for m in measurements]
    max_error = max(errors) if errors else 0.0
    passed = bool(measurements) and all(m.is_within_tolerance(tolerance_mm) for m in measurements)

    if passed:
        summary = f"Validation pass: all measured dimensions are within ±{tolerance_mm:g} mm."
    else:
        summary = f"Validation fail: one or more measured dimensions exceed ±{tolerance_mm:g} mm."

    return ValidationReport(
        session_id=session_id,
        generated_at=utc_now(),
        tolerance_mm=tolerance_mm,
        measurements=tuple(measurements),
        max_absolute_error_mm=max_error,
        mean_absolute_error_mm=mean_or_zero(errors),
        passed=passed,
        summary=summary,
    )
