"""
Pytest configuration and shared problems for the VMLMB tests.
"""

import numpy as np
import pytest


class Quadratic:
    """f(x) = ½ (x - c)ᵀ A (x - c) + f_min, counting evaluations."""

    def __init__(self, A, c, f_min=0.0):
        self.A = np.asarray(A, dtype=float)
        self.c = np.asarray(c, dtype=float)
        self.f_min = f_min
        self.calls = 0
        self.values = []

    def __call__(self, x, g):
        self.calls += 1
        r = x - self.c.astype(x.dtype)
        Ar = self.A.astype(x.dtype) @ r
        g[...] = Ar
        f = 0.5 * float(r @ Ar) + self.f_min
        self.values.append(f)
        return f

    def value(self, x):
        r = x - self.c
        return 0.5 * float(r @ self.A @ r) + self.f_min

    def gradient(self, x):
        return self.A @ (x - self.c)


def spd_matrix(n, rng, lo=1.0, hi=4.0):
    """Random symmetric matrix with eigenvalues in [lo, hi]."""
    Q, _ = np.linalg.qr(rng.standard_normal((n, n)))
    return (Q * np.linspace(lo, hi, n)) @ Q.T


@pytest.fixture
def rng():
    return np.random.default_rng(12345)


@pytest.fixture
def quadratic(rng):
    """Strictly convex quadratic in 5 variables with minimizer c."""
    n = 5
    return Quadratic(spd_matrix(n, rng), rng.uniform(-1.0, 1.0, n))


@pytest.fixture
def make_quadratic():
    return Quadratic


@pytest.fixture
def make_spd():
    return spd_matrix
