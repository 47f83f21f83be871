# rosenbrock.py
# Small VMLMB runs on Rosenbrock and Branin functions, with and without bounds.

import math

import numpy as np
from scipy.optimize import rosen, rosen_der

from vmlmb.blocks.aux import VMLMBConfig
from vmlmb.blocks.bounds import BoxSet
from vmlmb.solver import VMLMBSolver

# ---------------------------
# Test problems
# ---------------------------

def rosenbrock(x: np.ndarray, g: np.ndarray) -> float:
    """
    Extended Rosenbrock function, global min at (1, ..., 1), f = 0.
    """
    g[...] = rosen_der(x)
    return rosen(x)


def branin(x: np.ndarray, g: np.ndarray) -> float:
    """
    Branin (2D) on domain x1 in [-5, 10], x2 in [0, 15].
    Standard form (global minima ~ 0.397887 at three points).
    """
    x1, x2 = x
    b = 5.1 / (4.0 * math.pi ** 2)
    c = 5.0 / math.pi
    r = 6.0
    s = 10.0
    t = 1.0 / (8.0 * math.pi)
    q = x2 - b * x1 ** 2 + c * x1 - r
    g[0] = 2.0 * q * (c - 2.0 * b * x1) - s * (1 - t) * math.sin(x1)
    g[1] = 2.0 * q
    return q ** 2 + s * (1 - t) * math.cos(x1) + s


# ---------------------------
# Utility to run a single solve
# ---------------------------

def run_solve(name: str,
              fg,
              x0,
              m: int = 5,
              lower=None,
              upper=None,
              lnsrch: str = "backtrack",
              gtol=(1e-8, 0.0),
              verb: int = 1):
    """
    name: label for the run
    fg: objective function fg(x, g) -> f
    x0: starting point
    lower/upper: optional bounds
    """
    print("=" * 80)
    print(f"{name}: m={m} lnsrch={lnsrch} x0={x0}")
    cfg = VMLMBConfig()
    cfg.lnsrch = lnsrch
    cfg.verb = verb

    # Tight enough to see the final superlinear steps
    cfg.gtol = gtol
    cfg.maxeval = 1000

    dom = None
    if lower is not None or upper is not None:
        dom = BoxSet(lower, upper)

    x = np.array(x0, dtype=float)
    res = VMLMBSolver(fg, m, dom, config=cfg).solve(x)

    print(f"-> {name} DONE ({res.message}). x* = {res.x}, f* = {res.f:.9f}")
    print("-" * 80)
    return res


# ---------------------------
# Main: run a few scenarios
# ---------------------------

if __name__ == "__main__":
    np.set_printoptions(precision=6, suppress=True)

    # 1) Rosenbrock (unconstrained)
    run_solve("Rosenbrock", rosenbrock, x0=[-1.2, 1.0])
    run_solve("Rosenbrock (wolfe)", rosenbrock, x0=[-1.2, 1.0], lnsrch="wolfe")
    run_solve("Rosenbrock 10D (m=3)", rosenbrock, x0=np.zeros(10), m=3, verb=10)

    # 2) Rosenbrock with the minimizer outside the box
    run_solve("Rosenbrock in [-2, 0.5]^4", rosenbrock, x0=[0.0, 0.0, 0.0, 0.0],
              lower=-2.0, upper=0.5, gtol=(1e-6, 0.0), verb=5)

    # 3) Branin on its usual domain, multiple starts
    starts = [
        [-3.0, 12.0],
        [3.0, 2.0],
        [9.0, 3.0],
    ]
    for i, x0 in enumerate(starts, 1):
        run_solve(f"Branin #{i}", branin, x0=x0, lower=[-5.0, 0.0], upper=[10.0, 15.0], gtol=(1e-6, 0.0), verb=0)
