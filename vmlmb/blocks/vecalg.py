# vecalg.py
# Elementwise vector algebra on arrays of identical shape.
# - Inner products accumulate in float64 whatever the storage precision.
# - Destinations are written in place; nothing is allocated for contiguous
#   float32/float64 arrays (BLAS axpy through scipy).

from __future__ import annotations

from typing import Optional

import numpy as np
from scipy.linalg import get_blas_funcs

_BLAS_TYPES = (np.dtype(np.float32), np.dtype(np.float64))


def _check_shapes(*arrays: np.ndarray) -> None:
    shape = arrays[0].shape
    for a in arrays[1:]:
        if a.shape != shape:
            raise ValueError(f"arrays must have the same shape, got {shape} and {a.shape}")


def inner(a: np.ndarray, b: np.ndarray, w: Optional[np.ndarray] = None) -> float:
    """Return ``Σ a[i]*b[i]``, or ``Σ w[i]*a[i]*b[i]`` when a mask ``w`` is given."""
    if w is None:
        _check_shapes(a, b)
        a, b = a.reshape(-1), b.reshape(-1)
        if a.dtype == np.float64 and b.dtype == np.float64:
            return float(np.dot(a, b))
        return float(np.einsum("i,i->", a, b, dtype=np.float64))
    _check_shapes(w, a, b)
    return float(np.einsum("i,i,i->", w.reshape(-1), a.reshape(-1), b.reshape(-1), dtype=np.float64))


def norm2(a: np.ndarray) -> float:
    """Euclidean norm of ``a``."""
    return float(np.sqrt(inner(a, a)))


def update(dst: np.ndarray, alpha: float, a: np.ndarray) -> np.ndarray:
    """``dst += alpha*a`` in place."""
    _check_shapes(dst, a)
    alpha = float(alpha)
    if alpha == 0.0:
        return dst
    if (
        dst.dtype in _BLAS_TYPES
        and a.dtype == dst.dtype
        and dst.flags.c_contiguous
        and a.flags.c_contiguous
    ):
        y = dst.reshape(-1)
        axpy = get_blas_funcs("axpy", (a, dst))
        z = axpy(a.reshape(-1), y, a=alpha)
        if z is not y:
            y[...] = z
    else:
        dst += alpha * a
    return dst


def combine(
    dst: np.ndarray,
    alpha: float,
    a: np.ndarray,
    beta: Optional[float] = None,
    b: Optional[np.ndarray] = None,
) -> np.ndarray:
    """``dst = alpha*a`` or ``dst = alpha*a + beta*b``; ``dst`` may alias ``a`` or ``b``."""
    if b is None:
        _check_shapes(dst, a)
        np.multiply(a, alpha, out=dst)
        return dst
    _check_shapes(dst, a, b)
    if np.may_share_memory(dst, b):
        if a is b:
            np.multiply(a, alpha + beta, out=dst)
            return dst
        if np.may_share_memory(dst, a):
            np.copyto(dst, alpha * a + beta * b)
            return dst
        # b would be clobbered by the first pass
        np.multiply(b, beta, out=dst)
        return update(dst, alpha, a)
    np.multiply(a, alpha, out=dst)
    return update(dst, beta, b)
