"""
Grid point merger for duplicated Fourier-grid samples.

Merges every raw sample snapped onto the same grid point into one record,
weighting by confidence over snapping distance and measuring how strongly the
contributing phases disagree.
"""

import numpy as np
import logging
from typing import Sequence, Union
from dataclasses import dataclass

from fouriergrid.exceptions import DataValidationError, InvalidGroupError

logger = logging.getLogger(__name__)

EPSILON = 1e-30
TWO_PI = 2.0 * np.pi

ArrayOrFloat = Union[np.ndarray, float]


@dataclass(frozen=True)
class Sample:
    """One raw measurement contributing to a grid point."""

    real_part: float
    imag_part: float
    distance: float
    confidence: float


@dataclass(frozen=True)
class MergedGridPoint:
    """Merged record for one grid point."""

    magnitude: float
    real_part: float
    imag_part: float
    weighted_confidence: float
    weighted_distance: float
    phase_dispersion: float

    @property
    def phase(self) -> float:
        """Representative phase of the weighted complex value, in (-pi, pi]."""
        return float(np.arctan2(self.imag_part, self.real_part))

    def as_complex(self) -> complex:
        return complex(self.real_part, self.imag_part)

    @classmethod
    def sentinel(cls) -> "MergedGridPoint":
        """Record written in place of a group that could not be merged."""
        return cls(*([np.nan] * 6))


def compute_weights(
    confidence: np.ndarray, distance: np.ndarray, epsilon: float = EPSILON
) -> np.ndarray:
    """
    Calculate normalized inverse-distance confidence weights for one group.

    The normalization sum adds epsilon to each confidence while the per-sample
    numerator does not, so the weights sum to slightly less than one when
    confidences are tiny. This matches the reference numerics.

    Args:
        confidence: Per-sample confidence weights, shape (L,)
        distance: Per-sample snapping distances, shape (L,)
        epsilon: Stabilization constant

    Returns:
        Normalized weights, shape (L,)
    """
    confidence = np.asarray(confidence, dtype=np.float64)
    distance = np.asarray(distance, dtype=np.float64)

    score_sum = np.sum((confidence + epsilon) / (distance + epsilon))
    return confidence / (distance + epsilon) / score_sum


def circular_residual(phase: ArrayOrFloat, reference: ArrayOrFloat) -> ArrayOrFloat:
    """
    Shortest angular distance between phase and reference, both in (-pi, pi].

    The wraparound candidate shifts phase by -2*pi when it lies strictly above
    the reference and by +2*pi otherwise; the smaller of the direct and shifted
    differences is returned.
    """
    phase = np.asarray(phase, dtype=np.float64)
    factor = np.where(phase > reference, -TWO_PI, TWO_PI)
    residual1 = np.abs(phase - reference)
    residual2 = np.abs(phase + factor - reference)
    residual = np.minimum(residual1, residual2)
    if residual.ndim == 0:
        return float(residual)
    return residual


def merge_group(samples: Sequence[Sample], epsilon: float = EPSILON) -> MergedGridPoint:
    """
    Merge one group of samples into a single grid point record.

    Args:
        samples: Non-empty ordered sequence of samples sharing a grid point
        epsilon: Stabilization constant

    Returns:
        MergedGridPoint for the group

    Raises:
        InvalidGroupError: If samples is empty
    """
    if len(samples) == 0:
        raise InvalidGroupError("Cannot merge an empty group")

    columns = np.array(
        [(s.real_part, s.imag_part, s.distance, s.confidence) for s in samples],
        dtype=np.float64,
    )
    return merge_sample_arrays(
        columns[:, 0], columns[:, 1], columns[:, 2], columns[:, 3], epsilon
    )


def merge_sample_arrays(
    real_part: np.ndarray,
    imag_part: np.ndarray,
    distance: np.ndarray,
    confidence: np.ndarray,
    epsilon: float = EPSILON,
) -> MergedGridPoint:
    """
    Merge one group given as parallel per-sample arrays.

    Slices of a larger sample arena can be passed directly; nothing is copied
    or modified.
    """
    real_part = np.asarray(real_part, dtype=np.float64)
    imag_part = np.asarray(imag_part, dtype=np.float64)
    distance = np.asarray(distance, dtype=np.float64)
    confidence = np.asarray(confidence, dtype=np.float64)

    arrays = (real_part, imag_part, distance, confidence)
    if any(a.ndim != 1 for a in arrays):
        raise DataValidationError("Sample arrays must be one-dimensional")
    if len({len(a) for a in arrays}) != 1:
        raise DataValidationError("Array length mismatch in sample data")

    n_samples = len(real_part)
    if n_samples == 0:
        raise InvalidGroupError("Cannot merge an empty group")
    if np.any(distance < 0) or np.any(confidence < 0):
        raise DataValidationError("Distances and confidences must be non-negative")

    weights = compute_weights(confidence, distance, epsilon)

    real_out = np.sum(weights * real_part)
    imag_out = np.sum(weights * imag_part)
    magnitude = np.sum(weights * np.sqrt(real_part * real_part + imag_part * imag_part))
    weighted_confidence = np.sum(weights * confidence)
    weighted_distance = np.sum(weights * distance)

    weighted_phase = np.arctan2(imag_out, real_out)
    phase_residuals = circular_residual(np.arctan2(imag_part, real_part), weighted_phase)
    phase_dispersion = _weighted_dispersion(weights, phase_residuals, epsilon)

    logger.debug(
        f"Merged {n_samples} samples: phase={weighted_phase:.4f} rad, "
        f"dispersion={phase_dispersion:.4f} rad"
    )

    return MergedGridPoint(
        magnitude=float(magnitude),
        real_part=float(real_out),
        imag_part=float(imag_out),
        weighted_confidence=float(weighted_confidence),
        weighted_distance=float(weighted_distance),
        phase_dispersion=float(phase_dispersion),
    )


def _weighted_dispersion(
    weights: np.ndarray, phase_residuals: np.ndarray, epsilon: float
) -> float:
    """Weighted RMS of phase residuals, normalized by the accumulated weight sum."""
    sigma_sum = np.sum(weights * phase_residuals * phase_residuals)
    weight_sum = np.sum(weights)
    return float(np.sqrt(sigma_sum / (weight_sum + epsilon)))
