#########################################################################################
##
##                     PARAMETER ESTIMATION OVER EXPERIMENTAL DATA
##                                 (estimator.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

import logging
import warnings
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Sequence

import numpy as np

from .dataset import DataSet
from .exceptions import ConvergenceError, ConvergenceWarning, ModelEvaluationError
from .loss import Loss
from .minimizer import Minimizer, ScipyMinimizer
from .parameter import Parameter


logger = logging.getLogger(__name__)

__all__ = [
    "Estimator",
    "EstimatorResult",
]


# ESTIMATOR RESULT ======================================================================

@dataclass
class EstimatorResult:
    """Parameter estimation result container.

    Unpacks as ``parameters, total_cost, dataset_costs, converged``.
    """

    parameters: np.ndarray
    total_cost: float
    dataset_costs: np.ndarray
    converged: bool
    nfev: int = 0
    n_failed: int = 0
    message: str = ""


    def __iter__(self):
        return iter((self.parameters, self.total_cost, self.dataset_costs, self.converged))


    def raise_for_convergence(self) -> "EstimatorResult":
        """Raise :class:`ConvergenceError` if the run did not converge."""
        if not self.converged:
            raise ConvergenceError(
                f"Estimation did not converge: {self.message} "
                f"(cost={self.total_cost:.4g}, nfev={self.nfev})"
            )
        return self


    def __repr__(self) -> str:
        status = "CONVERGED" if self.converged else "NOT CONVERGED"
        return (
            f"EstimatorResult({status}, cost={self.total_cost:.4g}, "
            f"nfev={self.nfev}, failed={self.n_failed}, x={self.parameters})"
        )


# PENALIZED OBJECTIVE ===================================================================

class _Objective:
    """Bound-clamped, penalized objective handed to the minimizer.

    Components with ``lower == upper`` are held at their bound and hidden
    from the minimizer, which only sees the free components. Trial vectors
    are clipped into the bounds before evaluation. A trial vector the model
    cannot evaluate costs ``penalty`` instead of raising. Keeps track of the
    best evaluable point.
    """

    def __init__(self, estimator: "Estimator", x0, lower, upper, penalty: float):
        self.estimator = estimator
        self.x0 = np.asarray(x0, dtype=float)
        self.free = lower < upper
        self.lower = lower[self.free]
        self.upper = upper[self.free]
        self.penalty = float(penalty)
        self.n_residuals = sum(ds.datapoints for ds in estimator.datasets)

        self.nfev = 0
        self.n_failed = 0
        self.n_trials = 0          # successful evaluations away from x0
        self.best_x: np.ndarray | None = None
        self.best_cost = np.inf
        self.best_dataset_costs: np.ndarray | None = None

        self._cached_x: np.ndarray | None = None
        self._cached: tuple[float, np.ndarray] | None = None

        self.executor = estimator._make_executor()


    @property
    def x0_free(self) -> np.ndarray:
        """Initial vector restricted to the free components."""
        return self.x0[self.free]


    def expand(self, x_free) -> np.ndarray:
        """Full parameter vector with fixed components at their bound."""
        x_full = self.x0.copy()
        x_full[self.free] = np.clip(
            np.asarray(x_free, dtype=float).reshape(-1), self.lower, self.upper
        )
        return x_full


    def close(self) -> None:
        if self.executor is not None:
            self.executor.shutdown(wait=True)
            self.executor = None


    def evaluate(self, x_free) -> tuple[float, np.ndarray]:
        """Return ``(total_cost, stacked_residuals)``; raises on model failure."""
        x_arr = self.expand(x_free)

        if self._cached_x is not None and np.array_equal(x_arr, self._cached_x):
            if self._cached is None:
                raise ModelEvaluationError("model evaluation failed at cached trial point")
            return self._cached

        self.nfev += 1
        self._cached_x = x_arr.copy()
        self._cached = None

        try:
            blocks = self.estimator._residual_blocks(x_arr, self.executor)
        except ModelEvaluationError:
            self.n_failed += 1
            raise

        weights = self.estimator.weights
        dataset_costs = np.array([float(np.dot(r, r)) for r in blocks])
        residuals = np.concatenate([np.sqrt(w) * r for w, r in zip(weights, blocks)])
        total = float(np.dot(weights, dataset_costs))

        self._cached = (total, residuals)

        if not np.array_equal(x_arr, self.x0):
            self.n_trials += 1
        if total < self.best_cost or self.best_x is None:
            self.best_x = x_arr.copy()
            self.best_cost = total
            self.best_dataset_costs = dataset_costs
            self.estimator.current_parameters = x_arr.copy()
        return total, residuals


    def _penalized(self, x_free) -> tuple[float, np.ndarray]:
        try:
            return self.evaluate(x_free)
        except ModelEvaluationError as err:
            logger.debug("penalizing trial point %s: %s", self.expand(x_free), err)
            n = max(self.n_residuals, 1)
            return self.penalty, np.full(n, np.sqrt(self.penalty / n))


    def __call__(self, x_free) -> float:
        return self._penalized(x_free)[0]


    def residuals(self, x_free) -> np.ndarray:
        return self._penalized(x_free)[1]


# ESTIMATOR =============================================================================

class Estimator:
    """Fit model parameters against one or more experimental data sets.

    The objective is the weighted sum of per-data-set losses. Data set
    weights are normalized to sum to one.

    Parameters
    ----------
    datasets : list[DataSet]
        Observation series to fit.
    weights : sequence of float, optional
        Relative weight of each data set; equal weights by default.
    loss : Loss, optional
        Loss applied to every data set; ``Loss.mse()`` by default.
    parameters : list[Parameter], optional
        Named parameters. When given, the initial vector and bounds default
        to theirs and the model receives transformed (model-space) values.
        Without parameters, optimizer and model space coincide.
    minimizer : Minimizer, optional
        Numerical minimizer; ``ScipyMinimizer()`` (trust-region least
        squares) by default.
    tolerance : float
        Default relative change in objective below which a run converges.
    max_iterations : int
        Default iteration (function evaluation) cap of a run.
    penalty : float
        Finite cost assigned to trial vectors the model cannot evaluate.
    max_workers : int, optional
        Evaluate data sets concurrently on this many threads. The model
        evaluators must then be stateless or keep per-call state.

    Notes
    -----
    All vectors passed to the public methods are in optimizer space.

    Example
    -------
    .. code-block:: python

        est = Estimator(
            [vapor_pressure, liquid_density],
            weights=[3.0, 2.0],
            loss=Loss.relative(),
            parameters=[Parameter("m", 1.5, (1.0, 5.0)),
                        Parameter("sigma", 3.5, (2.0, 5.0))],
        )
        result = est.run(tolerance=1e-10)
        params, cost, costs, converged = result
        est.display()
    """

    def __init__(
        self,
        datasets: Sequence[DataSet],
        weights: Sequence[float] | None = None,
        *,
        loss: Loss | None = None,
        parameters: list[Parameter] | None = None,
        minimizer: Minimizer | None = None,
        tolerance: float = 1e-8,
        max_iterations: int = 200,
        penalty: float = 1e10,
        max_workers: int | None = None,
    ):
        self._datasets: list[DataSet] = list(datasets)
        if weights is None:
            weights = [1.0] * len(self._datasets)
        self._weights: list[float] = [float(w) for w in weights]
        if len(self._weights) != len(self._datasets):
            raise ValueError(
                f"{len(self._weights)} weights given for {len(self._datasets)} data sets"
            )

        self.loss = loss if loss is not None else Loss.mse()
        self.parameters: list[Parameter] = list(parameters or [])
        self.minimizer = minimizer if minimizer is not None else ScipyMinimizer()
        self.tolerance = float(tolerance)
        self.max_iterations = int(max_iterations)
        self.penalty = float(penalty)
        self.max_workers = max_workers

        if not np.isfinite(self.penalty) or self.penalty <= 0.0:
            raise ValueError("penalty must be a positive finite number")

        self.current_parameters: np.ndarray | None = (
            np.array([p.value for p in self.parameters], dtype=float)
            if self.parameters else None
        )
        self.result: EstimatorResult | None = None


    # PROPERTIES ------------------------------------------------------------------------

    @property
    def datasets(self) -> list[DataSet]:
        """Registered data sets, in order."""
        return list(self._datasets)


    @property
    def weights(self) -> np.ndarray:
        """Normalized data set weights (sum equals one)."""
        w = np.asarray(self._weights, dtype=float)
        return w / w.sum()


    def add_dataset(self, dataset: DataSet, weight: float = 1.0) -> "Estimator":
        """Register another data set with its relative weight."""
        if not isinstance(dataset, DataSet):
            raise TypeError(f"add_dataset expects DataSet, got {type(dataset).__name__}")
        self._datasets.append(dataset)
        self._weights.append(float(weight))
        return self


    # INTERNAL HELPERS ------------------------------------------------------------------

    def _validate_fit_inputs(self) -> None:
        """Raise early with clear messages for degenerate configurations."""
        if not self._datasets:
            raise ValueError("No data sets configured. Pass datasets= or call add_dataset().")

        w = np.asarray(self._weights, dtype=float)
        if np.any(w < 0.0) or not np.all(np.isfinite(w)):
            raise ValueError("data set weights must be finite and non-negative")
        if w.sum() <= 0.0:
            raise ValueError("data set weights must not all be zero")

        for p in self.parameters:
            lo, hi = p.bounds
            if np.isfinite(lo) and np.isfinite(hi) and lo > hi:
                raise ValueError(
                    f"Parameter '{p.name}': lower bound {lo} > upper bound {hi}"
                )


    def _to_model(self, x) -> np.ndarray:
        """Map an optimizer-space vector to model space."""
        x_arr = np.asarray(x, dtype=float).reshape(-1)
        if not self.parameters:
            return x_arr
        if x_arr.size != len(self.parameters):
            raise ValueError(f"Expected x of length {len(self.parameters)}, got {x_arr.size}")
        return np.array([p.to_model(xi) for p, xi in zip(self.parameters, x_arr)])


    def _make_executor(self) -> ThreadPoolExecutor | None:
        """Thread pool for data set evaluation, or None when running sequentially."""
        if self.max_workers is None or self.max_workers <= 1 or len(self._datasets) <= 1:
            return None
        return ThreadPoolExecutor(max_workers=self.max_workers)


    def _map_datasets(self, func, executor: ThreadPoolExecutor | None = None) -> list:
        """Apply *func* to every data set, concurrently if configured.

        Results are returned in data set order once all evaluations finished.
        Without *executor* a temporary pool is used for this call only.
        """
        if executor is not None:
            futures = [executor.submit(func, ds) for ds in self._datasets]
            return [f.result() for f in futures]

        pool = self._make_executor()
        if pool is None:
            return [func(ds) for ds in self._datasets]
        with pool:
            return self._map_datasets(func, pool)


    def _residual_blocks(self, x, executor: ThreadPoolExecutor | None = None) -> list[np.ndarray]:
        """Unweighted residuals of each data set."""
        params = self._to_model(x)
        return self._map_datasets(lambda ds: ds.residuals(params, self.loss), executor)


    def _initial_vector_and_bounds(self, initial_parameters, bounds):
        if initial_parameters is None:
            if not self.parameters:
                raise ValueError(
                    "No initial parameters. Pass initial_parameters= or register Parameters."
                )
            initial_parameters = [p.value for p in self.parameters]
        x0 = np.asarray(initial_parameters, dtype=float).reshape(-1)

        if self.parameters and x0.size != len(self.parameters):
            raise ValueError(f"Expected x of length {len(self.parameters)}, got {x0.size}")

        if bounds is None:
            if self.parameters:
                lower = np.array([p.bounds[0] for p in self.parameters], dtype=float)
                upper = np.array([p.bounds[1] for p in self.parameters], dtype=float)
            else:
                lower = np.full(x0.size, -np.inf)
                upper = np.full(x0.size, np.inf)
        else:
            lower = np.broadcast_to(np.asarray(bounds[0], dtype=float), x0.shape).copy()
            upper = np.broadcast_to(np.asarray(bounds[1], dtype=float), x0.shape).copy()

        if np.any(lower > upper):
            raise ValueError(f"lower bounds {lower} exceed upper bounds {upper}")

        clipped = np.clip(x0, lower, upper)
        if not np.array_equal(clipped, x0):
            warnings.warn(
                f"initial parameters {x0} outside bounds; clamped to {clipped}",
                UserWarning,
                stacklevel=3,
            )
        return clipped, lower, upper


    # EVALUATION API --------------------------------------------------------------------

    def cost(self, parameters) -> np.ndarray:
        """Unweighted loss of each data set at *parameters*."""
        params = self._to_model(parameters)
        return np.array(self._map_datasets(lambda ds: ds.cost(params, self.loss)))


    def objective(self, parameters) -> float:
        """Weighted total cost at *parameters*."""
        return float(np.dot(self.weights, self.cost(parameters)))


    def residuals(self, parameters) -> np.ndarray:
        """Stacked weighted residuals; their squared sum equals :meth:`objective`."""
        blocks = self._residual_blocks(parameters)
        return np.concatenate([np.sqrt(w) * r for w, r in zip(self.weights, blocks)])


    def predict(self, parameters) -> list[np.ndarray]:
        """Model predictions for each data set (NaN where the model fails)."""
        params = self._to_model(parameters)
        return self._map_datasets(lambda ds: ds.predict(params))


    def relative_difference(self, parameters) -> list[np.ndarray]:
        """Relative difference between prediction and target for each data set."""
        params = self._to_model(parameters)
        return self._map_datasets(lambda ds: ds.relative_difference(params))


    def mean_absolute_relative_difference(self, parameters) -> np.ndarray:
        """Mean absolute relative difference of each data set."""
        params = self._to_model(parameters)
        return np.array(
            self._map_datasets(lambda ds: ds.mean_absolute_relative_difference(params))
        )


    # OPTIMIZATION ENGINE ---------------------------------------------------------------

    def run(
        self,
        initial_parameters: Sequence[float] | None = None,
        bounds: tuple[Sequence[float], Sequence[float]] | None = None,
        tolerance: float | None = None,
        max_iterations: int | None = None,
    ) -> EstimatorResult:
        """Optimize the parameters against all data sets.

        Parameters
        ----------
        initial_parameters : sequence of float, optional
            Initial optimizer-space vector; taken from the registered
            Parameters by default.
        bounds : (lower, upper), optional
            Per-component bounds; taken from the registered Parameters by
            default (unbounded without Parameters). Trial vectors outside
            the bounds are clamped. Components with equal lower and
            upper bound are held fixed and hidden from the minimizer.
        tolerance : float, optional
            Relative change in objective below which the run converges.
        max_iterations : int, optional
            Iteration cap handed to the minimizer.

        Returns
        -------
        EstimatorResult
            Best parameters found, their total cost, the unweighted cost of
            each data set and the convergence flag.

        Raises
        ------
        ModelEvaluationError
            If the model cannot be evaluated at the initial vector.

        Notes
        -----
        Model failures at later trial points are penalized with
        ``self.penalty`` and do not stop the run. A run that did not
        converge issues a :class:`ConvergenceWarning` and returns
        ``converged=False`` together with the best point evaluated.
        """
        self._validate_fit_inputs()

        tol = self.tolerance if tolerance is None else float(tolerance)
        max_iter = self.max_iterations if max_iterations is None else int(max_iterations)
        x0, lower, upper = self._initial_vector_and_bounds(initial_parameters, bounds)

        objective = _Objective(self, x0, lower, upper, self.penalty)
        try:
            # The initial vector must be evaluable
            initial_cost, _ = objective.evaluate(objective.x0_free)
            logger.info(
                "starting estimation: %d data set(s), %d free of %d parameter(s), "
                "initial cost %.6g",
                len(self._datasets), int(objective.free.sum()), x0.size, initial_cost,
            )

            if objective.free.any():
                res = self.minimizer.minimize(
                    objective,
                    objective.x0_free,
                    (objective.lower, objective.upper),
                    tol,
                    max_iter,
                )
                # Make sure the minimizer's final point is part of the best-point search
                objective._penalized(res.x)
                converged = bool(res.converged)
                message = str(res.message)
            else:
                converged = True
                message = "all parameters fixed by their bounds"
        finally:
            objective.close()

        if converged and objective.n_trials == 0 and objective.n_failed > 0:
            converged = False
            message = "model evaluation failed at every trial point"

        x_best = objective.best_x
        dataset_costs = objective.best_dataset_costs.copy()

        self.current_parameters = x_best.copy()
        for p, xi in zip(self.parameters, x_best):
            p.set(float(xi))

        self.result = EstimatorResult(
            parameters=x_best.copy(),
            total_cost=float(objective.best_cost),
            dataset_costs=dataset_costs,
            converged=converged,
            nfev=objective.nfev,
            n_failed=objective.n_failed,
            message=message,
        )

        if converged:
            logger.info(
                "estimation converged: cost %.6g after %d evaluation(s)",
                self.result.total_cost, objective.nfev,
            )
        else:
            logger.warning(
                "estimation did not converge (%s); returning best point with cost %.6g",
                message, self.result.total_cost,
            )
            warnings.warn(
                f"Estimation did not converge: {message}",
                ConvergenceWarning,
                stacklevel=2,
            )
        return self.result


    # SENSITIVITY & IDENTIFIABILITY -----------------------------------------------------

    def sensitivity(self, parameters=None, *, eps: float | None = None):
        """Compute local sensitivity and practical identifiability at *parameters*.

        Evaluates the Jacobian of :meth:`residuals` by forward differences.

        Parameters
        ----------
        parameters : array_like, optional
            Optimizer-space vector; defaults to the vector of the last run.
        eps : float, optional
            Relative finite-difference step. Defaults to
            ``sqrt(machine epsilon)``.

        Returns
        -------
        SensitivityResult
        """
        from .sensitivity import SensitivityResult

        if parameters is None:
            if self.current_parameters is None:
                raise ValueError(
                    "No parameters provided and no previous run available. "
                    "Run run() first or pass parameters explicitly."
                )
            x_arr = np.asarray(self.current_parameters, dtype=float).copy()
        else:
            x_arr = np.asarray(parameters, dtype=float).reshape(-1)

        rel = eps if eps is not None else np.sqrt(np.finfo(float).eps)
        r0 = self.residuals(x_arr)
        jac = np.empty((len(r0), len(x_arr)))
        for j, xj in enumerate(x_arr):
            h = rel * max(1.0, abs(xj))
            xp = x_arr.copy()
            xp[j] += h
            jac[:, j] = (self.residuals(xp) - r0) / h

        names = (
            [p.name for p in self.parameters]
            if self.parameters else [f"p{i}" for i in range(x_arr.size)]
        )
        return SensitivityResult(
            jacobian=jac,
            param_names=names,
            param_values=self._to_model(x_arr),
        )


    # RESULTS AND DISPLAY ---------------------------------------------------------------

    def display(self) -> None:
        """Print a summary of the data sets and the current parameters."""
        print("=" * 60)
        print("Parameter Estimation Results")
        print("=" * 60)

        print("\nData sets:")
        print("-" * 40)
        for ds, w in zip(self._datasets, self.weights):
            print(f"  {ds.target_name:32s}  n={ds.datapoints:<5d}  weight={w:.4g}")

        if self.current_parameters is not None:
            print("\nParameters:")
            print("-" * 40)
            values = self._to_model(self.current_parameters)
            if self.parameters:
                for p, x, val in zip(self.parameters, self.current_parameters, values):
                    if p.transform is not None:
                        print(f"  {p.name:32s}  x={x:.6g}  ->  {val:.6g}")
                    else:
                        print(f"  {p.name:32s}  = {val:.6g}")
            else:
                for i, val in enumerate(values):
                    print(f"  {'p' + str(i):32s}  = {val:.6g}")

        if self.result is not None:
            status = "converged" if self.result.converged else "NOT converged"
            print(f"\n  total cost = {self.result.total_cost:.6g}  ({status})")

        print("=" * 60)


    def _repr_markdown_(self) -> str:
        lines = [
            "|dataset|target|datapoints|weight|",
            "|:-|:-|:-:|:-:|",
        ]
        for i, (ds, w) in enumerate(zip(self._datasets, self.weights)):
            lines.append(f"|{i}|{ds.target_name}|{ds.datapoints}|{w:.4g}|")
        return "\n".join(lines)


    def __repr__(self) -> str:
        return (
            f"Estimator(datasets={len(self._datasets)}, loss={self.loss!r}, "
            f"parameters={[p.name for p in self.parameters]})"
        )
