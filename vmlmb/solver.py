# solver.py
# VMLMB: variable metric, limited memory, bounded.
# - L-BFGS inverse-Hessian approximation (Strang two-loop recursion over a
#   ring buffer of correction pairs) restricted to the free variables
# - projected-gradient convergence test for bound-constrained problems
# - pluggable bounded set and line search, steepest-descent restarts
#
# Reference: É. Thiébaut, "Optimization issues in blind deconvolution
# algorithms", in Astronomical Data Analysis II, SPIE Proc. 4847, 174-183 (2002).
from __future__ import annotations

import dataclasses
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np

from .blocks.aux import (
    REASONS,
    LineSearchStatus,
    Status,
    VMLMBConfig,
    _check_variables,
    validate_config,
)
from .blocks.bounds import BoundedSet, BoxSet, UnconstrainedSet
from .blocks.lbfgs import LBFGSMemory
from .blocks.linesearch import LineSearch, make_line_search
from .blocks.vecalg import combine, inner, norm2

# fg(x, g) -> f, filling g with the gradient at x
ObjectiveGradient = Callable[[np.ndarray, np.ndarray], float]


@dataclass
class VMLMBResult:
    """Outcome of a VMLMB run.  ``x`` is the caller's array (updated in place)."""

    x: np.ndarray
    f: float
    status: Status
    iterations: int
    evaluations: int
    restarts: int
    gpnorm: float
    elapsed: float

    @property
    def converged(self) -> bool:
        return self.status is Status.CONVERGENCE

    @property
    def message(self) -> str:
        return REASONS[self.status]


# =============================================================================
# Driver context
# =============================================================================
@dataclass
class _Context:
    """Working storage and counters of one run of the driver."""

    n: int
    m: int
    x: np.ndarray
    g: np.ndarray
    gp: np.ndarray
    x0: np.ndarray
    g0: np.ndarray
    d: np.ndarray
    w: np.ndarray
    temp: np.ndarray
    f: float = 0.0
    f0: float = np.inf  # no snapshot yet
    df0: float = 0.0
    gpnorm: float = 0.0
    gtest: float = 0.0
    alpha: float = 0.0
    iterations: int = 0
    evaluations: int = 0
    restarts: int = 0
    steepest: bool = False
    t0: float = 0.0

    @classmethod
    def allocate(cls, x: np.ndarray, m: int) -> "_Context":
        def new():
            return np.zeros_like(x)

        return cls(
            n=x.size, m=m, x=x, g=new(), gp=new(), x0=new(), g0=new(),
            d=new(), w=new(), temp=new(), t0=time.perf_counter(),
        )


def _print_progress(ctx: _Context) -> None:
    """One line of the iteration table (with a header on the first evaluation)."""
    if ctx.evaluations == 1:
        print(f"# VMLMB algorithm (N={ctx.n}, M={ctx.m})")
        print(
            f"# {'ITER':>5} {'EVAL':>6} {'RESTART':>8} {'TIME (s)':>10}"
            f" {'PENALTY':>24} {'GRADIENT':>13} {'STEP':>13}"
        )
        print("-" * 86)
    t = time.perf_counter() - ctx.t0
    print(
        f" {ctx.iterations:>6} {ctx.evaluations:>6} {ctx.restarts:>8} {t:>10.3f}"
        f" {ctx.f:>24.16e} {ctx.gpnorm:>13.6e} {ctx.alpha:>13.6e}"
    )


# =============================================================================
# Solver
# =============================================================================
class VMLMBSolver:
    """
    Minimize ``f(x)`` subject to ``x ∈ dom`` with VMLMB.

    Parameters
    ----------
    fg : callable
        ``fg(x, g)`` returns ``f(x)`` and stores the gradient in ``g``.
    m : int
        Number of correction pairs to memorize (>= 1).
    dom : BoundedSet, optional
        Feasible set, unconstrained by default.
    config : VMLMBConfig, optional
        Budgets, tolerances, reporting and line-search options.
    lnsrch : LineSearch, optional
        Line-search strategy; built from ``config`` when omitted.
    """

    def __init__(
        self,
        fg: ObjectiveGradient,
        m: int = 5,
        dom: Optional[BoundedSet] = None,
        config: Optional[VMLMBConfig] = None,
        lnsrch: Optional[LineSearch] = None,
    ):
        if not callable(fg):
            raise ValueError("objective function fg must be callable")
        m = int(m)
        if m < 1:
            raise ValueError(f"bad number of variable metric corrections m={m} (must be >= 1)")
        self.fg = fg
        self.m = m
        self.dom = dom if dom is not None else UnconstrainedSet()
        # validate a copy of the caller's config
        self.cfg = validate_config(dataclasses.replace(config) if config is not None else VMLMBConfig())
        self.lnsrch = lnsrch if lnsrch is not None else make_line_search(self.cfg)

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------
    def solve(self, x: np.ndarray) -> VMLMBResult:
        """Run the algorithm from ``x``, which is overwritten by the solution."""
        x = _check_variables(x)
        cfg, dom, ls = self.cfg, self.dom, self.lnsrch
        ls.reset()
        gtol_abs, gtol_rel = cfg.gtol
        deriv = ls.uses_derivative
        verb = cfg.verb

        ctx = _Context.allocate(x, self.m)
        mem = LBFGSMemory(self.m, x.shape, x.dtype)
        g, gp, x0, g0, d, w, temp = ctx.g, ctx.gp, ctx.x0, ctx.g0, ctx.d, ctx.w, ctx.temp
        state = Status.NEW_ITERATE
        restart = False

        while True:
            # Make sure x is feasible, compute function and gradient at x.
            dom.project_variables(x, out=x)
            ctx.f = float(self.fg(x, g))
            ctx.evaluations += 1

            # Projected gradient and global convergence.
            dom.project_gradient(x, g, out=gp)
            ctx.gpnorm = norm2(gp)
            if ctx.evaluations == 1:
                ctx.gtest = gtol_abs + gtol_rel * ctx.gpnorm
            if ctx.gpnorm <= ctx.gtest:
                if state is Status.LINE_SEARCH:
                    ctx.iterations += 1
                state = Status.CONVERGENCE
                break

            if state is Status.LINE_SEARCH:
                if deriv:
                    # derivative along the effective (projected) step
                    combine(temp, 1, x, -1, x0)
                    df = inner(g, temp) / ctx.alpha
                else:
                    df = 0.0
                lstat, ctx.alpha = ls.iterate(ctx.alpha, ctx.f, df)
                if lstat is LineSearchStatus.CONVERGED:
                    ctx.iterations += 1
                    state = Status.NEW_ITERATE
                    if cfg.maxiter >= 0 and ctx.iterations >= cfg.maxiter:
                        state = Status.TOO_MANY_ITERATIONS
                        break
                elif lstat is LineSearchStatus.FAILED:
                    if ctx.steepest:
                        state = Status.LINE_SEARCH_FAILURE
                        break
                    # Go back to the origin of the search and restart along
                    # the steepest descent.
                    logging.debug(
                        f"VMLMB: line search failed after {ctx.iterations} iterations, restarting"
                    )
                    np.copyto(x, x0)
                    np.copyto(g, g0)
                    ctx.f = ctx.f0
                    dom.project_gradient(x, g, out=gp)
                    ctx.gpnorm = norm2(gp)
                    mem.reset()
                    ctx.restarts += 1
                    restart = True
                    state = Status.NEW_ITERATE

            if state is Status.NEW_ITERATE:
                if verb > 0 and ctx.iterations % verb == 0 and not restart:
                    _print_progress(ctx)

                # Free variables.
                np.not_equal(gp, 0, out=w)

                if ctx.iterations >= 1 and not restart:
                    mem.push_difference(x, x0, g, g0)
                restart = False

                descent = False
                if mem.mp >= 1:
                    descent, ctx.df0 = mem.direction(d, g, w, dom, x)
                    if not descent:
                        ctx.restarts += 1
                if descent:
                    ctx.alpha = 1.0
                    ctx.steepest = False
                else:
                    # (projected) steepest descent
                    combine(d, -1, gp)
                    ctx.df0 = -ctx.gpnorm ** 2
                    ctx.alpha = dom.initial_step(x, d, cfg.slen)
                    ctx.steepest = True

                stpmax = dom.shortcut_step(x, d)
                ctx.alpha = min(ctx.alpha, stpmax)
                if ctx.alpha <= 0:
                    state = Status.WOULD_BLOCK
                    break

                # Start the line search from the current point.
                ctx.f0 = ctx.f
                np.copyto(x0, x)
                np.copyto(g0, g)
                lstat, ctx.alpha = ls.start(ctx.f0, ctx.df0, ctx.alpha, stpmax)
                if lstat is not LineSearchStatus.SEARCHING:
                    state = Status.LINE_SEARCH_FAILURE
                    break
                state = Status.LINE_SEARCH

            if cfg.maxeval >= 0 and ctx.evaluations >= cfg.maxeval:
                state = Status.TOO_MANY_EVALUATIONS
                break

            # Next point to try.
            combine(x, 1, x0, ctx.alpha, d)

        # Never return worse than the last accepted iterate.
        if ctx.f > ctx.f0:
            np.copyto(x, x0)
            np.copyto(g, g0)
            ctx.f = ctx.f0
            dom.project_gradient(x, g, out=gp)
            ctx.gpnorm = norm2(gp)
        if verb > 0:
            _print_progress(ctx)

        return VMLMBResult(
            x=x,
            f=ctx.f,
            status=state,
            iterations=ctx.iterations,
            evaluations=ctx.evaluations,
            restarts=ctx.restarts,
            gpnorm=ctx.gpnorm,
            elapsed=time.perf_counter() - ctx.t0,
        )


def vmlmb(
    fg: ObjectiveGradient,
    x: np.ndarray,
    m: int = 5,
    dom: Optional[BoundedSet] = None,
    *,
    lnsrch: Optional[LineSearch] = None,
    config: Optional[VMLMBConfig] = None,
    lower=None,
    upper=None,
    **options,
) -> float:
    """
    Minimize ``f(x)`` with VMLMB and return the final value of ``f``; ``x``
    is overwritten by the corresponding point.

    ``options`` override the fields of ``config`` (``maxiter``, ``maxeval``,
    ``gtol``, ``slen``, ``verb``, ``lnsrch`` given by name, ``ls_*``...).
    ``lower``/``upper`` build a ``BoxSet`` when ``dom`` is not given.
    Non-convergence is not an error: it is logged as a warning.
    """
    if int(m) < 1:
        raise ValueError(f"bad number of variable metric corrections m={m} (must be >= 1)")
    cfg = config if config is not None else VMLMBConfig()
    if isinstance(lnsrch, str):
        options["lnsrch"] = lnsrch
        lnsrch = None
    unknown = set(options) - {f.name for f in dataclasses.fields(VMLMBConfig)}
    if unknown:
        raise ValueError(f"unknown option(s): {', '.join(sorted(unknown))}")
    cfg = dataclasses.replace(cfg, **options)
    if dom is None and (lower is not None or upper is not None):
        dom = BoxSet(lower, upper)

    res = VMLMBSolver(fg, m, dom, config=cfg, lnsrch=lnsrch).solve(x)
    if not res.converged:
        logging.warning(
            f"VMLMB: {res.message} (iterations={res.iterations}, "
            f"evaluations={res.evaluations}, f={res.f:.6e}, gpnorm={res.gpnorm:.3e})"
        )
    return res.f
