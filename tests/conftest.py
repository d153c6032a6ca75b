"""Shared fixtures. The test suite runs on the numpy backend.

Reference values are computed with plain numpy, so the backend is pinned
before tensoropt is imported by any test module.
"""

import os

os.environ.setdefault("TENSOROPT_BACKEND", "numpy")

import numpy as np  # noqa: E402
import pytest  # noqa: E402
from tensoropt import Parameter  # noqa: E402


@pytest.fixture
def make_param():
    """Create a float64 Parameter holding a copy of `values`."""

    def _make(values) -> Parameter:
        return Parameter(np.array(values, dtype=np.float64))

    return _make


@pytest.fixture
def quadratic():
    """Target and gradient of `0.5 * ||p - target||**2`."""
    target = np.array([1.0, -2.0, 3.0])

    def grad(p) -> np.ndarray:
        return np.asarray(p) - target

    def loss(p) -> float:
        return float(0.5 * np.sum((np.asarray(p) - target) ** 2))

    return target, grad, loss
