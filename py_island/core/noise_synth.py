"""
Noise sources for contours and terrain.

Two kinds of noise are used:

- periodic harmonic noise, a sum of a few sines around a closed loop. It
  perturbs anchor radii, shoreline offsets and lake/puddle rims.
- 2D gradient noise (OpenSimplex) sampled over the island plane for the
  terrain height field.
"""

import math
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np
import structlog
from opensimplex import OpenSimplex

from ..utils.alea_prng import AleaPRNG
from ..utils.random import create_prng

logger = structlog.get_logger()


@dataclass(frozen=True)
class Harmonic:
    """One sine component of periodic noise."""
    frequency: float
    amplitude: float


DEFAULT_HARMONICS: Tuple[Harmonic, ...] = (
    Harmonic(1, 1.0),    # base shape
    Harmonic(2, 0.5),    # medium detail
    Harmonic(5, 0.25),   # fine detail
    Harmonic(9, 0.125),  # very fine detail
)


def total_amplitude(harmonics: Sequence[Harmonic]) -> float:
    return float(sum(h.amplitude for h in harmonics))


def generate_noise(
    count: int,
    phase_offset: float,
    harmonics: Optional[Sequence[Harmonic]] = None,
    prng: Optional[AleaPRNG] = None,
) -> np.ndarray:
    """
    Generate ``count`` periodic noise samples around a closed loop.

    Each harmonic gets its own random phase jitter on top of
    ``phase_offset``. The sum is divided by the total amplitude so values
    stay roughly in [-1, 1].

    Args:
        count: Number of samples (evenly spaced in angle)
        phase_offset: Phase added to every harmonic
        harmonics: Frequency/amplitude pairs, defaults to DEFAULT_HARMONICS
        prng: Random source for the per-harmonic jitter

    Returns:
        Array of ``count`` floats
    """
    if count < 1:
        return np.zeros(0)
    if prng is None:
        prng = create_prng()

    harmonics = tuple(harmonics) if harmonics else DEFAULT_HARMONICS
    amplitude_sum = total_amplitude(harmonics)
    if amplitude_sum == 0:
        return np.zeros(count)

    angles = np.arange(count, dtype=float) / count * 2 * math.pi
    values = np.zeros(count)
    for harmonic in harmonics:
        phase = phase_offset + prng.angle()
        values += np.sin(angles * harmonic.frequency + phase) * harmonic.amplitude

    return values / amplitude_sum


def evaluate_harmonics(
    angles, harmonics: Sequence[Harmonic], phase_offset: float
) -> np.ndarray:
    """
    Evaluate a fixed harmonic shape at arbitrary angles.

    Unlike :func:`generate_noise` there is no jitter: the phase of each
    harmonic is ``phase_offset * frequency``, so the same shape can be
    queried again later (mud puddle rims are re-evaluated per vertex).
    """
    angles = np.asarray(angles, dtype=float)
    values = np.zeros_like(angles)
    for harmonic in harmonics:
        phase = phase_offset * harmonic.frequency
        values += np.sin(angles * harmonic.frequency + phase) * harmonic.amplitude
    amplitude_sum = total_amplitude(harmonics)
    return values / amplitude_sum if amplitude_sum else values


class HeightNoise:
    """Seeded 2D gradient noise over the island's XZ plane."""

    def __init__(self, seed: int, scale: float):
        self.seed = seed
        self.scale = scale
        self._simplex = OpenSimplex(seed=seed)

    def sample(self, x: float, z: float) -> float:
        """Noise value in roughly [-1, 1] at a single point."""
        return self._simplex.noise2(x * self.scale, z * self.scale)

    def sample_many(self, x, z) -> np.ndarray:
        """Noise values for arrays of coordinates (any matching shape)."""
        x = np.asarray(x, dtype=float)
        z = np.asarray(z, dtype=float)
        xs = (x * self.scale).ravel()
        zs = (z * self.scale).ravel()
        noise2 = self._simplex.noise2
        values = np.fromiter((noise2(a, b) for a, b in zip(xs, zs)), dtype=float, count=len(xs))
        return values.reshape(x.shape)
