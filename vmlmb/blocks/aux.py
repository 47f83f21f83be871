# aux.py
# Shared configuration, status tags and small array helpers for the VMLMB
# driver and its building blocks (bounded sets, line searches, L-BFGS memory).

from __future__ import annotations

# =========================
# Standard library
# =========================
from dataclasses import dataclass
from enum import Enum
from typing import Tuple

# =========================
# Third-party
# =========================
import numpy as np


# ======================================
# Enums
# ======================================
class Status(Enum):
    """States of the VMLMB outer loop.

    ``NEW_ITERATE`` and ``LINE_SEARCH`` are transient; every other tag is
    terminal.  ``CONVERGENCE`` is the only successful terminal state.

    ``LINE_SEARCH_FAILURE`` extends the usual VMLMB terminal states: a failed
    search along an L-BFGS direction only triggers a steepest-descent
    restart, but a failure along the steepest descent itself ends the run.
    """

    NEW_ITERATE = "new_iterate"
    LINE_SEARCH = "line_search"
    CONVERGENCE = "convergence"
    TOO_MANY_ITERATIONS = "too_many_iterations"
    TOO_MANY_EVALUATIONS = "too_many_evaluations"
    WOULD_BLOCK = "would_block"
    LINE_SEARCH_FAILURE = "line_search_failure"


class LineSearchStatus(Enum):
    """Discrete state of a line-search strategy."""

    SEARCHING = "searching"
    CONVERGED = "converged"
    FAILED = "failed"


REASONS = {
    Status.NEW_ITERATE: "a new iterate is available",
    Status.LINE_SEARCH: "line search in progress",
    Status.CONVERGENCE: "convergence",
    Status.TOO_MANY_ITERATIONS: "too many iterations",
    Status.TOO_MANY_EVALUATIONS: "too many evaluations",
    Status.WOULD_BLOCK: "no feasible descent step (variables blocked by the bounds)",
    Status.LINE_SEARCH_FAILURE: "line search failed along the steepest descent",
}


# ======================================
# Global configuration
# ======================================
@dataclass
class VMLMBConfig:
    """
    Options of the VMLMB driver.

    Notes
    -----
    • ``gtol`` is ``(absolute, relative)``: the solver stops when the norm of
      the projected gradient is below ``gtol[0] + gtol[1]*gpnorm0`` where
      ``gpnorm0`` is the norm at the starting point.
    • ``slen`` is ``(relative, absolute)``: scale of the first trial step
      along the steepest descent (see ``BoundedSet.initial_step``).
    • Negative budgets mean "unlimited".
    """

    # ---------------- Budgets ----------------
    maxiter: int = -1
    maxeval: int = -1

    # ---------------- Tolerances ----------------
    gtol: Tuple[float, float] = (0.0, 1e-6)
    slen: Tuple[float, float] = (1.0, 0.0)

    # ---------------- Reporting ----------------
    verb: int = 0  # print every `verb` iterations, 0 = silent

    # ---------------- Line search ----------------
    lnsrch: str = "backtrack"  # {"backtrack","nonmonotone","wolfe"}
    ls_ftol: float = 1e-4  # sufficient decrease (Armijo) factor
    ls_gtol: float = 0.9  # curvature factor (Wolfe only)
    ls_amin: float = 0.1  # smallest backtracking reduction of the step
    ls_stpmin: float = 1e-20
    ls_max_iter: int = 30
    ls_nonmonotone_M: int = 5


def _as_pair(name: str, value) -> Tuple[float, float]:
    try:
        a, b = (float(v) for v in value)
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be a pair of numbers, got {value!r}")
    if not (np.isfinite(a) and np.isfinite(b)) or a < 0 or b < 0:
        raise ValueError(f"{name} must hold two finite non-negative numbers, got {value!r}")
    return a, b


def validate_config(cfg: VMLMBConfig) -> VMLMBConfig:
    """Check and normalize ``cfg`` in place; raise ``ValueError`` if invalid."""
    cfg.maxiter = int(cfg.maxiter)
    cfg.maxeval = int(cfg.maxeval)
    cfg.gtol = _as_pair("gtol", cfg.gtol)
    cfg.slen = _as_pair("slen", cfg.slen)
    cfg.verb = int(cfg.verb)
    if cfg.verb < 0:
        raise ValueError(f"verb must be non-negative, got {cfg.verb}")
    if not 0.0 < cfg.ls_ftol < 1.0:
        raise ValueError(f"ls_ftol must be in (0,1), got {cfg.ls_ftol}")
    if not cfg.ls_ftol < cfg.ls_gtol < 1.0:
        raise ValueError(f"ls_gtol must be in (ls_ftol,1), got {cfg.ls_gtol}")
    if not 0.0 < cfg.ls_amin <= 0.5:
        raise ValueError(f"ls_amin must be in (0,0.5], got {cfg.ls_amin}")
    if cfg.ls_stpmin < 0:
        raise ValueError(f"ls_stpmin must be non-negative, got {cfg.ls_stpmin}")
    if cfg.ls_max_iter < 1:
        raise ValueError(f"ls_max_iter must be positive, got {cfg.ls_max_iter}")
    if cfg.ls_nonmonotone_M < 1:
        raise ValueError(f"ls_nonmonotone_M must be positive, got {cfg.ls_nonmonotone_M}")
    return cfg


# ======================================
# Array helpers
# ======================================
def _as_float_array(a) -> np.ndarray:
    return np.asarray(a, dtype=float)


def _check_variables(x) -> np.ndarray:
    """The variables are updated in place: they must be a writable,
    C-contiguous, floating-point ndarray."""
    if not isinstance(x, np.ndarray) or not np.issubdtype(x.dtype, np.floating):
        raise TypeError("variables must be a floating-point numpy.ndarray")
    if x.size < 1:
        raise ValueError("variables must have at least one element")
    if not x.flags.c_contiguous:
        raise ValueError("variables must be stored in a C-contiguous array")
    if not x.flags.writeable:
        raise ValueError("variables must be writable (they are updated in place)")
    return x
