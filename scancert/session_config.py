"""
Per-session configuration: policy toggles and capture presets.

Policy is resolved once at session start and handed to the stages that need
it; nothing downstream reads the environment or the operator notes again.
"""

import os
import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Mapping, Optional

from .core.constants import (
    ENV_ALLOW_SIMULATED_BACKEND,
    ENV_REQUIRE_INTRINSIC_FRAMES,
    DEFAULT_UNDERLAY_PATTERN,
)
from .core.models import CaptureSettings, ScanSession
from .core.utils import parse_bool

logger = logging.getLogger(__name__)

# Operator-note tokens honoured for compatibility with existing rig scripts
SIMULATION_NOTE_TOKENS = ("test",)
STRICT_INTRINSIC_NOTE_TOKENS = ("require-intrinsic", "calibration-strict")


class CaptureQuality(Enum):
    """Capture presets."""
    QUICK = "quick"                  # Bench check, single attempt
    STANDARD = "standard"            # Default certification run
    CERTIFICATION = "certification"  # More frames, more retries


@dataclass(frozen=True)
class SessionPolicy:
    """Boolean policy toggles for one session."""
    allow_simulated_backend: bool = False
    require_strict_intrinsic_gate: bool = False

    @classmethod
    def resolve(
        cls,
        session: ScanSession,
        allow_simulated_backend: Optional[bool] = None,
        require_strict_intrinsic_gate: Optional[bool] = None,
        environ: Optional[Mapping[str, str]] = None,
        honor_operator_notes: bool = True
    ) -> 'SessionPolicy':
        """
        Resolve the policy for ``session``.

        Each toggle is taken from the explicit argument when given, else from
        its environment variable when that is truthy, else from the legacy
        operator-note tokens.

        Args:
            session: Session being configured
            allow_simulated_backend: Explicit simulation permission
            require_strict_intrinsic_gate: Explicit strict intrinsic gate request
            environ: Environment mapping (defaults to ``os.environ``)
            honor_operator_notes: Whether operator-note tokens are consulted

        Returns:
            Resolved policy
        """
        env = os.environ if environ is None else environ
        notes = (session.operator_notes or "").lower() if honor_operator_notes else ""

        def pick(explicit: Optional[bool], env_name: str, tokens) -> bool:
            if explicit is not None:
                return bool(explicit)
            if parse_bool(env.get(env_name)):
                return True
            return any(token in notes for token in tokens)

        policy = cls(
            allow_simulated_backend=pick(
                allow_simulated_backend, ENV_ALLOW_SIMULATED_BACKEND, SIMULATION_NOTE_TOKENS),
            require_strict_intrinsic_gate=pick(
                require_strict_intrinsic_gate, ENV_REQUIRE_INTRINSIC_FRAMES, STRICT_INTRINSIC_NOTE_TOKENS),
        )
        logger.debug(f"Resolved session policy for {session.session_id}: {policy}")
        return policy


def create_capture_preset(quality: CaptureQuality) -> CaptureSettings:
    """
    Create capture settings for a quality preset.

    Args:
        quality: Preset to use

    Returns:
        Capture settings with preset values
    """
    settings = CaptureSettings(
        target_frame_count=12,
        lock_exposure=True,
        lock_white_balance=True,
        underlay_pattern=DEFAULT_UNDERLAY_PATTERN,
        lighting_profile="diffuse-white-5600k",
        minimum_accepted_frame_count=6,
        max_capture_attempts=3,
    )

    if quality == CaptureQuality.QUICK:
        settings = replace(settings, target_frame_count=6, minimum_accepted_frame_count=3, max_capture_attempts=1)
    elif quality == CaptureQuality.CERTIFICATION:
        settings = replace(settings, target_frame_count=24, minimum_accepted_frame_count=12, max_capture_attempts=5)

    return settings


def default_capture_settings(policy: SessionPolicy) -> CaptureSettings:
    """Standard preset with the session's simulation permission applied."""
    return replace(
        create_capture_preset(CaptureQuality.STANDARD),
        allow_simulated_fallback=policy.allow_simulated_backend,
    )
