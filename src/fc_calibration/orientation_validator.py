"""
Orientation Validator - Local gate before confirming a calibration position.

Checks a window of acceleration samples against the body position the
firmware asked for:
- Mean vector magnitude within gravity * (1 +/- tolerance)
- The axis that should be vertical for the position dominates the other two
- (optional) that axis points the way the firmware body frame expects

Passing this check only allows the confirm command to be sent. The firmware
still decides whether the position is accepted.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple, Union

import numpy as np

from .protocol.messages import AccelSample, BodyPosition, STANDARD_GRAVITY

logger = logging.getLogger(__name__)

# Absorbs float rounding of the window mean so the tolerance bounds are inclusive
_BOUND_EPSILON = 1e-9

_AXIS_NAMES = ("X", "Y", "Z")

# (vertical axis index, expected sign in the firmware body frame)
_EXPECTED_AXIS = {
    BodyPosition.LEVEL: (2, 1.0),
    BodyPosition.LEFT: (1, -1.0),
    BodyPosition.RIGHT: (1, 1.0),
    BodyPosition.NOSE_DOWN: (0, 1.0),
    BodyPosition.NOSE_UP: (0, -1.0),
    BodyPosition.INVERTED: (2, -1.0),
}

_CORRECTION_ADVICE = {
    BodyPosition.LEVEL: "Place on a flat surface with all corners touching evenly.",
    BodyPosition.LEFT: "Place on its left side with the nose pointing forward.",
    BodyPosition.RIGHT: "Place on its right side with the nose pointing forward.",
    BodyPosition.NOSE_DOWN: "Tilt forward 90 degrees so the tail points up.",
    BodyPosition.NOSE_UP: "Tilt backward 90 degrees so the tail points down.",
    BodyPosition.INVERTED: "Flip completely upside down so the top faces the ground.",
}


@dataclass(frozen=True)
class OrientationResult:
    """Outcome of validating one sample window."""
    accepted: bool
    reason: str
    position: int
    mean_vector: Optional[Tuple[float, float, float]] = None
    magnitude: Optional[float] = None
    sample_count: int = 0


SampleLike = Union[AccelSample, Sequence[float], np.ndarray]


class OrientationValidator:
    """
    Accept/reject a sample window for a target body position.
    """

    def __init__(
        self,
        gravity: float = STANDARD_GRAVITY,
        tolerance: float = 0.15,
        min_samples: int = 1,
        require_axis_sign: bool = False,
    ):
        self.gravity = gravity
        self.tolerance = tolerance
        self.min_samples = max(1, min_samples)
        self.require_axis_sign = require_axis_sign

    @classmethod
    def from_config(cls, validator_config) -> "OrientationValidator":
        return cls(
            gravity=validator_config.gravity,
            tolerance=validator_config.tolerance,
            min_samples=validator_config.min_samples,
            require_axis_sign=validator_config.require_axis_sign,
        )

    @property
    def bounds(self) -> Tuple[float, float]:
        """Accepted magnitude range in m/s^2."""
        return (self.gravity * (1 - self.tolerance), self.gravity * (1 + self.tolerance))

    def validate(self, samples: Sequence[SampleLike], position: int) -> OrientationResult:
        """
        Validate a window of samples for the requested position.

        Args:
            samples: AccelSample objects or (x, y, z) triples in m/s^2
            position: Target position index (1..6)

        Returns:
            OrientationResult; ``reason`` is shown verbatim to the user
        """
        target = BodyPosition.from_index(position)
        label = f"Position {int(target)} ({target.display_name})"

        vectors = _as_matrix(samples)
        count = len(vectors)
        if count < self.min_samples:
            reason = (
                f"{label}: no acceleration data received "
                f"({count} of {self.min_samples} samples). Check the sensor link and hold still."
            )
            logger.warning(reason)
            return OrientationResult(False, reason, int(target), sample_count=count)

        if not np.all(np.isfinite(vectors)):
            reason = f"{label}: acceleration data contains invalid values. Check the sensor."
            logger.warning(reason)
            return OrientationResult(False, reason, int(target), sample_count=count)

        mean = vectors.mean(axis=0)
        magnitude = float(np.linalg.norm(mean))
        mean_tuple = (float(mean[0]), float(mean[1]), float(mean[2]))
        low, high = self.bounds

        if magnitude < low - _BOUND_EPSILON or magnitude > high + _BOUND_EPSILON:
            reason = (
                f"{label}: gravity magnitude {magnitude:.2f} m/s² outside expected range "
                f"({low:.2f} - {high:.2f} m/s²). Keep the vehicle still and check the sensor."
            )
            logger.warning(reason)
            return OrientationResult(False, reason, int(target), mean_tuple, magnitude, count)

        axis, sign = _EXPECTED_AXIS[target]
        components = np.abs(mean)
        others = np.delete(components, axis)
        dominant = bool(np.all(components[axis] > others))
        signed_ok = (not self.require_axis_sign) or (mean[axis] * sign > 0)

        if not (dominant and signed_ok):
            expected = _AXIS_NAMES[axis]
            if self.require_axis_sign:
                expected = ("+" if sign > 0 else "-") + expected
            reason = (
                f"{label} incorrect: expected gravity on the {expected} axis, measured "
                f"X={mean_tuple[0]:.2f}, Y={mean_tuple[1]:.2f}, Z={mean_tuple[2]:.2f} m/s². "
                f"{_CORRECTION_ADVICE[target]}"
            )
            logger.warning(reason)
            return OrientationResult(False, reason, int(target), mean_tuple, magnitude, count)

        reason = f"{label} verified: |g|={magnitude:.2f} m/s²."
        logger.info(
            f"{label} validation passed: mag={magnitude:.2f}, "
            f"accel=({mean_tuple[0]:.2f}, {mean_tuple[1]:.2f}, {mean_tuple[2]:.2f})"
        )
        return OrientationResult(True, reason, int(target), mean_tuple, magnitude, count)


def _as_matrix(samples: Sequence[SampleLike]) -> np.ndarray:
    """Stack samples into an (N, 3) float array."""
    rows = []
    for sample in samples:
        if isinstance(sample, AccelSample):
            rows.append((sample.x, sample.y, sample.z))
        else:
            rows.append(tuple(float(v) for v in sample))
    if not rows:
        return np.zeros((0, 3))
    return np.asarray(rows, dtype=float).reshape(-1, 3)
