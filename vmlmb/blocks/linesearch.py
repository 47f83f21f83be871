"""
Line-search strategies for the VMLMB driver.

A line search is a small state machine over the 1-D restriction
``phi(stp) = f(x0 + stp*d)``.  The driver owns the evaluations:

    status, stp = ls.start(f0, df0, stp)      # df0 = phi'(0) < 0
    while status is SEARCHING:
        f, df = <evaluate phi and, if ls.uses_derivative, phi' at stp>
        status, stp = ls.iterate(stp, f, df)

The driver calls ``ls.reset()`` once at the start of every solve.

``CONVERGED`` means that the current trial step is accepted (the returned
step is the trial step itself); ``FAILED`` that no acceptable step was found.

Strategies
----------
- ``BacktrackLineSearch``   : Armijo backtracking with safeguarded quadratic
                              interpolation (default, derivative-free).
- ``NonmonotoneLineSearch`` : backtracking against the worst of the last M
                              line-search origins (Grippo–Lampariello–Lucidi).
- ``WolfeLineSearch``       : weak-Wolfe bracketing by bisection/doubling
                              (uses directional derivatives).
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Optional, Tuple

import numpy as np

from .aux import LineSearchStatus, VMLMBConfig

SEARCHING = LineSearchStatus.SEARCHING
CONVERGED = LineSearchStatus.CONVERGED
FAILED = LineSearchStatus.FAILED


class LineSearch:
    """Interface of a line-search strategy."""

    name: str = "abstract"
    uses_derivative: bool = False

    def __init__(self):
        self.status = FAILED
        self.f0 = 0.0
        self.df0 = 0.0
        self.stpmax = np.inf
        self.trials = 0

    def start(
        self, f0: float, df0: float, stp: float, stpmax: float = np.inf
    ) -> Tuple[LineSearchStatus, float]:
        """Begin a search from ``phi(0) = f0``, ``phi'(0) = df0`` with first
        trial step ``stp``.  The search never proposes steps above ``stpmax``."""
        self.f0 = float(f0)
        self.df0 = float(df0)
        self.stpmax = float(stpmax)
        self.trials = 0
        stp = min(float(stp), self.stpmax)
        if not self.df0 < 0.0:
            logging.debug(f"Line search not started: not a descent direction (df0={self.df0:.3e})")
            self.status = FAILED
        elif not stp > 0.0:
            logging.debug(f"Line search not started: bad initial step (stp={stp:.3e})")
            self.status = FAILED
        else:
            self.status = SEARCHING
        return self.status, stp

    def reset(self) -> None:
        """Forget anything kept from earlier searches (called once per solve)."""
        self.status = FAILED
        self.trials = 0

    def iterate(self, stp: float, f: float, df: float = 0.0) -> Tuple[LineSearchStatus, float]:
        raise NotImplementedError

    def _armijo_reference(self) -> float:
        return self.f0


class BacktrackLineSearch(LineSearch):
    """
    Backtracking line search with the Armijo (sufficient decrease) test

        f(stp) <= fref + ftol*stp*df0

    where ``fref = f0``.  A rejected step is replaced by the minimizer of the
    quadratic interpolating ``f0``, ``df0`` and ``f(stp)``, safeguarded into
    ``[amin*stp, 0.5*stp]``.

    Parameters
    ----------
    ftol : float
        Sufficient decrease factor in (0, 1).
    amin : float
        Smallest reduction factor of the step, in (0, 0.5].
    stpmin : float
        The search fails when the step falls below this value.
    maxiter : int
        The search fails after this many rejected trials.
    """

    name = "backtrack"
    uses_derivative = False

    def __init__(self, ftol: float = 1e-4, amin: float = 0.1, stpmin: float = 1e-20, maxiter: int = 30):
        super().__init__()
        if not 0.0 < ftol < 1.0:
            raise ValueError(f"ftol must be in (0,1), got {ftol}")
        if not 0.0 < amin <= 0.5:
            raise ValueError(f"amin must be in (0,0.5], got {amin}")
        if stpmin < 0.0:
            raise ValueError(f"stpmin must be non-negative, got {stpmin}")
        if maxiter < 1:
            raise ValueError(f"maxiter must be positive, got {maxiter}")
        self.ftol = float(ftol)
        self.amin = float(amin)
        self.stpmin = float(stpmin)
        self.maxiter = int(maxiter)

    def iterate(self, stp, f, df=0.0):
        if self.status is not SEARCHING:
            return self.status, stp
        f = float(f)
        if np.isfinite(f) and f <= self._armijo_reference() + self.ftol * stp * self.df0:
            self.status = CONVERGED
            return self.status, stp

        self.trials += 1
        if not np.isfinite(f):
            new = self.amin * stp
        else:
            # minimizer of q(t) = f0 + df0*t + c*t^2 with q(stp) = f
            c = f - self.f0 - self.df0 * stp
            new = -0.5 * self.df0 * stp * stp / c if c > 0.0 else 0.5 * stp
            new = min(max(new, self.amin * stp), 0.5 * stp)

        if new < self.stpmin:
            logging.debug(f"Line search failed: step size below minimum (stp={new:.2e}) after {self.trials} iters")
            self.status = FAILED
        elif self.trials >= self.maxiter:
            logging.debug(f"Line search failed: max iterations reached (iters={self.trials})")
            self.status = FAILED
        return self.status, new


class NonmonotoneLineSearch(BacktrackLineSearch):
    """
    Backtracking whose Armijo reference is the largest value among the last
    ``mem`` line-search origins, which lets the objective increase
    temporarily.  With ``mem=1`` this is ``BacktrackLineSearch``.
    """

    name = "nonmonotone"

    def __init__(self, mem: int = 5, **kwds):
        super().__init__(**kwds)
        if mem < 1:
            raise ValueError(f"mem must be positive, got {mem}")
        self.f_hist = deque(maxlen=int(mem))

    def reset(self) -> None:
        super().reset()
        self.f_hist.clear()

    def start(self, f0, df0, stp, stpmax=np.inf):
        status, stp = super().start(f0, df0, stp, stpmax)
        if status is SEARCHING:
            self.f_hist.append(self.f0)
        return status, stp

    def _armijo_reference(self) -> float:
        return max(self.f_hist) if self.f_hist else self.f0


class WolfeLineSearch(LineSearch):
    """
    Weak-Wolfe line search by bracketing (Lewis & Overton):

        f(stp)  <= f0 + ftol*stp*df0      (sufficient decrease)
        df(stp) >= gtol*df0               (curvature)

    A step violating the first condition becomes the upper end of the
    bracket; a step violating only the second one becomes the lower end.  The
    next trial is the bracket mid-point, or twice the step while no upper end
    is known (capped by ``stpmax``, where the step is accepted as soon as it
    gives a sufficient decrease).
    """

    name = "wolfe"
    uses_derivative = True

    def __init__(self, ftol: float = 1e-4, gtol: float = 0.9, stpmin: float = 1e-20, maxiter: int = 40):
        super().__init__()
        if not 0.0 < ftol < gtol < 1.0:
            raise ValueError(f"need 0 < ftol < gtol < 1, got ftol={ftol}, gtol={gtol}")
        if maxiter < 1:
            raise ValueError(f"maxiter must be positive, got {maxiter}")
        self.ftol = float(ftol)
        self.gtol = float(gtol)
        self.stpmin = float(stpmin)
        self.maxiter = int(maxiter)
        self.lo = 0.0
        self.hi = np.inf

    def start(self, f0, df0, stp, stpmax=np.inf):
        self.lo = 0.0
        self.hi = np.inf
        return super().start(f0, df0, stp, stpmax)

    def iterate(self, stp, f, df=0.0):
        if self.status is not SEARCHING:
            return self.status, stp
        f = float(f)
        df = float(df)
        if not np.isfinite(f) or f > self.f0 + self.ftol * stp * self.df0:
            self.hi = stp
        elif df < self.gtol * self.df0:
            if stp >= self.stpmax:
                # cannot go further along the path
                self.status = CONVERGED
                return self.status, stp
            self.lo = stp
        else:
            self.status = CONVERGED
            return self.status, stp

        self.trials += 1
        if np.isfinite(self.hi):
            new = 0.5 * (self.lo + self.hi)
        else:
            new = min(2.0 * self.lo, self.stpmax)

        if self.trials >= self.maxiter:
            logging.debug(f"Line search failed: max iterations reached (iters={self.trials})")
            self.status = FAILED
        elif new < self.stpmin:
            logging.debug(f"Line search failed: step size below minimum (stp={new:.2e})")
            self.status = FAILED
        return self.status, new


LINE_SEARCHES = {
    BacktrackLineSearch.name: BacktrackLineSearch,
    NonmonotoneLineSearch.name: NonmonotoneLineSearch,
    WolfeLineSearch.name: WolfeLineSearch,
}


def make_line_search(cfg: Optional[VMLMBConfig] = None) -> LineSearch:
    """Build the line search named by ``cfg.lnsrch`` from the ``ls_*`` fields."""
    cfg = cfg if cfg is not None else VMLMBConfig()
    name = str(getattr(cfg, "lnsrch", "backtrack")).lower()
    if name not in LINE_SEARCHES:
        raise ValueError(f"unknown line search {name!r}, expected one of {sorted(LINE_SEARCHES)}")
    if name == WolfeLineSearch.name:
        return WolfeLineSearch(
            ftol=cfg.ls_ftol, gtol=cfg.ls_gtol, stpmin=cfg.ls_stpmin, maxiter=cfg.ls_max_iter
        )
    kwds = dict(ftol=cfg.ls_ftol, amin=cfg.ls_amin, stpmin=cfg.ls_stpmin, maxiter=cfg.ls_max_iter)
    if name == NonmonotoneLineSearch.name:
        return NonmonotoneLineSearch(mem=cfg.ls_nonmonotone_M, **kwds)
    return BacktrackLineSearch(**kwds)
