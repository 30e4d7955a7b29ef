"""Shared pytest fixtures and configuration for the test suite."""

import numpy as np
import pytest

from fouriergrid.merging import GroupRanges


@pytest.fixture
def sample_arena():
    """Create a sample arena with five groups and a few unowned samples."""
    rng = np.random.default_rng(42)
    n_samples = 20

    arena = {
        "real_part": rng.normal(0.0, 10.0, n_samples),
        "imag_part": rng.normal(0.0, 10.0, n_samples),
        "distance": rng.uniform(0.0, 0.5, n_samples),
        "confidence": rng.uniform(0.1, 2.0, n_samples),
    }
    # A zero distance and a zero confidence inside owned groups
    arena["distance"][4] = 0.0
    arena["confidence"][9] = 0.0

    # Samples 0, 11 and 19 belong to no group
    ranges = GroupRanges(
        starts=np.array([1, 2, 5, 12, 14]),
        ends=np.array([2, 5, 11, 14, 19]),
    )
    grid_indices = np.array([101, 205, 317, 402, 550])
    return arena, ranges, grid_indices
