"""
Limited-memory BFGS approximation of the inverse Hessian.

The last ``m`` correction pairs ``s = x - x0``, ``y = g - g0`` live in two
preallocated ring buffers ``S`` and ``Y`` of shape ``(m,) + shape``.  With
``updates`` the total number of pairs ever stored, the pair ``j`` updates
older than the next write position is at

    slot(j) = (updates - j) mod m

so ``slot(0)`` is where the next pair goes, ``slot(1)`` holds the newest
pair and ``slot(mp)`` the oldest valid one (``mp = min(updates, m)`` unless
the memory has been reset).

Search directions come from Strang's two-loop recursion restricted to the
free variables (mask ``w``):

    d = -g
    for newest → oldest pair k with  sty = <w.y_k, s_k> > 0:
        rho_k = 1/sty;  beta_k = rho_k <w.d, s_k>;  d -= beta_k y_k
    d *= gamma          (gamma = sty/<w.y, y> of the newest usable pair)
    for oldest → newest usable pair k:
        d -= (beta_k - rho_k <w.d, y_k>) s_k
    d *= w

Pairs failing the curvature condition are skipped, not discarded.
"""

from __future__ import annotations

import logging
from typing import Optional, Tuple

import numpy as np

from .bounds import BoundedSet
from .vecalg import combine, inner, update


def slot(updates: int, m: int, j: int) -> int:
    """Ring-buffer index of the pair ``j`` updates older than the next write."""
    return (updates - j) % m


class LBFGSMemory:
    """
    Fixed-capacity store of correction pairs plus the two-loop recursion.

    Parameters
    ----------
    m : int
        Number of pairs to memorize (>= 1).
    shape : tuple
        Shape of the variables.
    dtype : numpy dtype
        Storage type of the pairs (the type of the variables).
    """

    def __init__(self, m: int, shape, dtype=np.float64):
        m = int(m)
        if m < 1:
            raise ValueError(f"bad number of variable metric corrections m={m} (must be >= 1)")
        self.m = m
        self.shape = tuple(shape)
        self.S = np.zeros((m,) + self.shape, dtype=dtype)
        self.Y = np.zeros((m,) + self.shape, dtype=dtype)
        self.rho = np.zeros(m)
        self.beta = np.zeros(m)
        self.gamma = 0.0
        self.updates = 0
        self.mp = 0

    def __len__(self) -> int:
        return self.mp

    def slot(self, j: int) -> int:
        return slot(self.updates, self.m, j)

    def reset(self) -> None:
        """Forget the curvature history; stored pairs get overwritten later."""
        self.mp = 0

    def _commit(self) -> None:
        self.updates += 1
        self.mp = min(self.mp + 1, self.m)

    def push(self, s: np.ndarray, y: np.ndarray) -> None:
        """Store the pair ``(s, y)``, replacing the oldest one when full."""
        k = self.slot(0)
        np.copyto(self.S[k], s)
        np.copyto(self.Y[k], y)
        self._commit()

    def push_difference(self, x: np.ndarray, x0: np.ndarray, g: np.ndarray, g0: np.ndarray) -> None:
        """Store ``(x - x0, g - g0)`` without temporaries."""
        k = self.slot(0)
        combine(self.S[k], 1, x, -1, x0)
        combine(self.Y[k], 1, g, -1, g0)
        self._commit()

    def direction(
        self,
        d: np.ndarray,
        g: np.ndarray,
        w: np.ndarray,
        dom: Optional[BoundedSet] = None,
        x: Optional[np.ndarray] = None,
    ) -> Tuple[bool, float]:
        """
        Compute the quasi-Newton direction at ``g`` into ``d``.

        Returns ``(descent, df0)`` with ``df0 = <d, g>`` for the direction
        projected by ``dom`` (when given, ``x`` is the current point).
        ``descent`` is False when there is no usable curvature information
        (``mp`` is left unchanged) or when the projected direction is not a
        descent one (the memory is then reset).  ``d`` is only meaningful
        when ``descent`` is True.
        """
        if self.mp < 1:
            return False, 0.0
        S, Y, rho, beta = self.S, self.Y, self.rho, self.beta

        combine(d, -1, g)
        gamma = 0.0
        for j in range(1, self.mp + 1):
            k = self.slot(j)
            sty = inner(Y[k], S[k], w)
            if sty > 0:
                rho[k] = 1.0 / sty
                beta[k] = rho[k] * inner(d, S[k], w)
                update(d, -beta[k], Y[k])
                if gamma == 0.0:
                    yty = inner(Y[k], Y[k], w)
                    if yty > 0:
                        gamma = sty / yty
            else:
                logging.debug(f"L-BFGS: skipping pair in slot {k} (<s,y>={sty:.3e})")
                rho[k] = 0.0
        self.gamma = gamma
        if gamma <= 0.0:
            logging.debug(f"L-BFGS: no pair with positive curvature among {self.mp}")
            return False, 0.0

        combine(d, gamma, d)
        for j in range(self.mp, 0, -1):
            k = self.slot(j)
            if rho[k] > 0:
                update(d, beta[k] - rho[k] * inner(d, Y[k], w), S[k])

        # stay in the subspace of the free variables
        np.multiply(d, w, out=d)
        if dom is not None:
            dom.project_direction(x, d, out=d)

        df0 = inner(d, g)
        if df0 >= 0:
            logging.debug(f"L-BFGS: not a descent direction (<d,g>={df0:.3e}), resetting memory")
            self.reset()
            return False, df0
        return True, df0
