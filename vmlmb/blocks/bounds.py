"""
Bounded feasible sets for the VMLMB driver.

A bounded set exposes the few operators the driver needs to stay feasible
while moving along the projected path ``P(x + alpha*d)``:

    project_variables(x)     : map x onto the set
    project_gradient(x, g)   : drop the components of g whose descent -g
                               would leave the set at an active bound
    project_direction(x, d)  : drop the components of d leaving the set at an
                               active bound
    shortcut_step(x, d)      : step beyond which no component of the
                               projected path moves any more
    initial_step(x, d, slen) : first trial step along a steepest descent

Projections follow numpy's ``out=`` convention; ``out`` may be the input
array itself.

Sets
----
- ``UnconstrainedSet``: the whole space (identity projections).
- ``BoxSet``: separable bounds ``lower <= x <= upper`` with scalar or array
  bounds; ``None`` or infinite entries mean "unbounded".
"""

from __future__ import annotations

from typing import Optional, Tuple

import numpy as np

from .aux import _as_float_array
from .vecalg import norm2


class BoundedSet:
    """Abstract feasible set.  Subclasses implement the projections and the
    step limit; ``initial_step`` is shared."""

    name: str = "abstract"

    def project_variables(self, x: np.ndarray, out: Optional[np.ndarray] = None) -> np.ndarray:
        raise NotImplementedError

    def project_gradient(
        self, x: np.ndarray, g: np.ndarray, out: Optional[np.ndarray] = None
    ) -> np.ndarray:
        raise NotImplementedError

    def project_direction(
        self, x: np.ndarray, d: np.ndarray, out: Optional[np.ndarray] = None
    ) -> np.ndarray:
        raise NotImplementedError

    def shortcut_step(self, x: np.ndarray, d: np.ndarray) -> float:
        raise NotImplementedError

    def initial_step(self, x: np.ndarray, d: np.ndarray, slen: Tuple[float, float]) -> float:
        """
        Length of the first trial step along the steepest descent ``d``.

        The step moves the variables by ``max(slen[0]*‖x‖, slen[1])`` (a unit
        length when this is zero), i.e. ``slen`` is ``(relative, absolute)``.
        Returns 0 when ``d`` is zero.
        """
        dnorm = norm2(d)
        if dnorm <= 0.0:
            return 0.0
        length = max(slen[0] * norm2(x), slen[1])
        if length <= 0.0:
            length = 1.0
        return length / dnorm


def _copy_into(src: np.ndarray, out: Optional[np.ndarray]) -> np.ndarray:
    if out is None:
        return src.copy()
    if out is not src:
        np.copyto(out, src)
    return out


class UnconstrainedSet(BoundedSet):
    """The whole space: every projection is the identity."""

    name = "unconstrained"

    def project_variables(self, x, out=None):
        return _copy_into(x, out)

    def project_gradient(self, x, g, out=None):
        return _copy_into(g, out)

    def project_direction(self, x, d, out=None):
        return _copy_into(d, out)

    def shortcut_step(self, x, d) -> float:
        return np.inf if np.any(d != 0) else 0.0


class BoxSet(BoundedSet):
    """
    Separable box ``lower <= x <= upper``.

    Parameters
    ----------
    lower, upper : float | array_like | None
        Bounds broadcastable to the shape of the variables.  ``None`` stands
        for ``-inf`` (lower) or ``+inf`` (upper).
    """

    name = "box"

    def __init__(self, lower=None, upper=None):
        self.lower = _as_float_array(-np.inf if lower is None else lower)
        self.upper = _as_float_array(np.inf if upper is None else upper)
        if np.any(np.isnan(self.lower)) or np.any(np.isnan(self.upper)):
            raise ValueError("bounds must not contain NaN")
        try:
            bad = np.any(self.lower > self.upper)
        except ValueError:
            raise ValueError(
                f"lower and upper bounds have incompatible shapes "
                f"{self.lower.shape} and {self.upper.shape}"
            )
        if bad:
            raise ValueError("lower bound must not exceed upper bound")
        self._typed = {}

    def __repr__(self) -> str:
        return f"BoxSet(lower={self.lower!r}, upper={self.upper!r})"

    def _bounds(self, x: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        # bounds rounded to the storage type so that clipped values compare equal
        bounds = self._typed.get(x.dtype)
        if bounds is None:
            bounds = (self.lower.astype(x.dtype), self.upper.astype(x.dtype))
            self._typed[x.dtype] = bounds
        return bounds

    def _blocked(self, x: np.ndarray, v: np.ndarray) -> np.ndarray:
        # components at a bound where a move along -v leaves the box
        lower, upper = self._bounds(x)
        return ((x <= lower) & (v > 0)) | ((x >= upper) & (v < 0))

    def project_variables(self, x, out=None):
        if out is None:
            out = np.empty_like(x)
        lower, upper = self._bounds(x)
        return np.clip(x, lower, upper, out=out)

    def project_gradient(self, x, g, out=None):
        blocked = self._blocked(x, g)
        out = _copy_into(g, out)
        out[blocked] = 0
        return out

    def project_direction(self, x, d, out=None):
        # d is a move, not a descent: flip the sign of the test
        blocked = self._blocked(x, -d)
        out = _copy_into(d, out)
        out[blocked] = 0
        return out

    def shortcut_step(self, x, d) -> float:
        """
        Largest step of the projected path ``P(x + alpha*d)``: beyond it every
        moving component sits at the bound it is heading to.  Infinite when a
        moving component is unbounded in its direction; 0 when nothing can
        move.
        """
        lower, upper = self._bounds(x)
        lower = np.broadcast_to(lower, x.shape)
        upper = np.broadcast_to(upper, x.shape)
        pos = d > 0
        neg = d < 0
        smax = 0.0
        if np.any(pos):
            smax = max(smax, float(np.max((upper[pos] - x[pos]) / d[pos])))
        if np.any(neg):
            smax = max(smax, float(np.max((lower[neg] - x[neg]) / d[neg])))
        return smax
