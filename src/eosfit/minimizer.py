#########################################################################################
##
##                          NUMERICAL MINIMIZER BACKENDS
##                                (minimizer.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Protocol

import numpy as np
import scipy.optimize as sci_opt


# Methods of scipy.optimize.minimize that accept bounds
_BOUNDED_METHODS = {"L-BFGS-B", "TNC", "SLSQP", "Powell", "trust-constr", "Nelder-Mead", "COBYLA"}


# RESULT ================================================================================

@dataclass
class MinimizerResult:
    """Outcome of a single minimizer call."""

    x: np.ndarray
    converged: bool
    nfev: int = 0
    nit: int = 0
    message: str = ""


# PROTOCOL ==============================================================================

class Minimizer(Protocol):
    """Numerical minimizer capability used by the estimator.

    ``objective`` is a callable returning the scalar cost. It may also expose
    ``objective.residuals(x)`` returning a residual vector whose squared sum
    equals the cost, which least-squares backends use.
    """

    def minimize(
        self,
        objective: Callable[[np.ndarray], float],
        x0: np.ndarray,
        bounds: tuple[np.ndarray, np.ndarray],
        tolerance: float,
        max_iterations: int,
    ) -> MinimizerResult:
        ...


# SCIPY BACKEND =========================================================================

@dataclass
class ScipyMinimizer:
    """SciPy-backed minimizer.

    Parameters
    ----------
    method : str
        ``"least_squares"`` (default) runs ``scipy.optimize.least_squares``
        with the trust-region reflective algorithm on ``objective.residuals``.
        Any other value is passed as ``method=`` to ``scipy.optimize.minimize``
        (e.g. ``"L-BFGS-B"``, ``"SLSQP"``, ``"Nelder-Mead"``).
    options : dict
        Extra keyword arguments for ``least_squares`` (e.g. ``x_scale``), or
        solver options merged into ``options=`` for ``minimize``.

    Notes
    -----
    ``tolerance`` is used as the relative-change-in-objective criterion
    (``ftol`` for ``least_squares``, ``tol`` for ``minimize``).
    ``max_iterations`` caps ``max_nfev`` for ``least_squares`` and ``maxiter``
    for ``minimize``. Gradients are approximated by finite differences.
    """

    method: str = "least_squares"
    options: dict = field(default_factory=dict)


    def minimize(
        self,
        objective: Callable[[np.ndarray], float],
        x0: np.ndarray,
        bounds: tuple[np.ndarray, np.ndarray],
        tolerance: float,
        max_iterations: int,
    ) -> MinimizerResult:
        x0_arr = np.asarray(x0, dtype=float)
        lower = np.asarray(bounds[0], dtype=float)
        upper = np.asarray(bounds[1], dtype=float)

        # ── least_squares path ────────────────────────────────────────────────
        if self.method == "least_squares":
            residuals = getattr(objective, "residuals", None)
            if residuals is None:
                raise ValueError(
                    "method='least_squares' requires an objective with .residuals(x). "
                    "Use a scipy.optimize.minimize method such as 'L-BFGS-B' instead."
                )

            res = sci_opt.least_squares(
                residuals,
                x0=x0_arr,
                bounds=(lower, upper),
                ftol=float(tolerance),
                max_nfev=int(max_iterations),
                **self.options,
            )
            # status 0: max_nfev reached, -1: improper input
            return MinimizerResult(
                x=res.x,
                converged=bool(res.status > 0),
                nfev=int(res.nfev),
                nit=int(res.nfev),
                message=str(res.message),
            )

        # ── scipy.optimize.minimize path ─────────────────────────────────────
        bounds_list = None
        if self.method in _BOUNDED_METHODS:
            bounds_list = [
                (None if not np.isfinite(lo) else lo, None if not np.isfinite(hi) else hi)
                for lo, hi in zip(lower, upper)
            ]

        opts = {"maxiter": int(max_iterations), **self.options}

        res = sci_opt.minimize(
            objective,
            x0=x0_arr,
            method=self.method,
            bounds=bounds_list,
            tol=float(tolerance),
            options=opts,
        )

        return MinimizerResult(
            x=np.asarray(res.x, dtype=float),
            converged=bool(res.success),
            nfev=int(getattr(res, "nfev", 0) or 0),
            nit=int(getattr(res, "nit", 0) or 0),
            message=str(res.message),
        )
