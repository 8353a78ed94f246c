"""
Random number generation utilities.

Every generation pass draws from an explicit :class:`AleaPRNG` instance.
There is deliberately no module-level PRNG: parallel callers must each own
their generator.
"""

import uuid
from typing import Optional

from .alea_prng import AleaPRNG


def random_seed() -> str:
    """Return a fresh seed string for an unseeded generation."""
    return uuid.uuid4().hex[:12]


def create_prng(seed: Optional[str] = None) -> AleaPRNG:
    """
    Create an Alea PRNG.

    Args:
        seed: Seed string to use, or None for a random seed

    Returns:
        AleaPRNG instance
    """
    return AleaPRNG(seed if seed is not None else random_seed())


def derive_prng(prng: AleaPRNG, label: str) -> AleaPRNG:
    """
    Fork a child PRNG for an independent sub-stage.

    The child is seeded from the parent seed and a label, so stages that are
    re-run on their own (paths, foliage) stay reproducible without consuming
    draws from the parent.
    """
    return AleaPRNG([str(prng.seed), label, str(prng.draws)])
