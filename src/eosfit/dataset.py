#########################################################################################
##
##                        EXPERIMENTAL DATA SET CONTAINER
##                                 (dataset.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

import logging
from typing import Any, Callable, Sequence

import numpy as np

from .exceptions import DimensionMismatchError, ModelEvaluationError
from .loss import Loss


logger = logging.getLogger(__name__)


# HELPERS ===============================================================================

def _as_conditions(conditions, n: int) -> np.ndarray:
    """Normalize conditions to shape ``(n, k)``.

    Accepts a 1D array (one input per point), ``(n, k)`` or ``(k, n)``.
    """
    c = np.asarray(conditions, dtype=float)

    if c.ndim == 1:
        if c.size != n:
            raise DimensionMismatchError(
                f"DataSet has {c.size} conditions but {n} target values"
            )
        return c.reshape(-1, 1)

    if c.ndim == 2:
        if c.shape[0] == n:
            return c
        if c.shape[1] == n:
            return c.T
        raise DimensionMismatchError(
            f"DataSet conditions of shape {c.shape} do not align with {n} target values"
        )

    raise DimensionMismatchError("DataSet supports 1D or 2D conditions only")


def _resolve_evaluator(model) -> Callable[[np.ndarray, np.ndarray], float]:
    """Return a ``f(parameters, condition)`` callable for *model*."""
    evaluate = getattr(model, "evaluate", None)
    if callable(evaluate):
        return evaluate
    if callable(model):
        return model
    raise TypeError(
        f"Unsupported model type {type(model).__name__}. Pass a callable "
        "model(parameters, condition) or an object with .evaluate(parameters, condition)."
    )


# CLASS =================================================================================

class DataSet:
    """Experimental observation series and the model that predicts it.

    Parameters
    ----------
    target : array_like
        Observed property values, shape ``(n,)``.
    conditions : array_like
        Input conditions, one vector per observation. Shape ``(n,)``,
        ``(n, k)`` or ``(k, n)``; stored as ``(n, k)``.
    model : callable or object
        External model evaluator, either ``model(parameters, condition)`` or
        an object exposing ``evaluate(parameters, condition)``. It must return
        a finite float; raising or returning a non-finite value marks the
        point as failed.
    weights : array_like, optional
        Non-negative per-point weights, shape ``(n,)``.
    input_names : sequence of str, optional
        Names of the ``k`` condition columns.
    target_name : str
        Name of the observed property.

    Notes
    -----
    The model is called once per stored condition, in order. Parameters are
    passed as a 1D float array in model space.

    Example
    -------
    .. code-block:: python

        def antoine(params, cond):
            a, b = params
            return np.exp(a - b / cond[0])

        ds = DataSet.vapor_pressure(p_exp, temperature, antoine)
        ds.cost([10.0, 3000.0], Loss.relative())
    """

    def __init__(
        self,
        target,
        conditions,
        model: Any,
        *,
        weights=None,
        input_names: Sequence[str] | None = None,
        target_name: str = "target",
    ):
        y = np.asarray(target, dtype=float)
        if y.ndim != 1:
            raise DimensionMismatchError("DataSet target must be 1D")
        if y.size == 0:
            raise DimensionMismatchError("DataSet requires at least one data point")

        x = _as_conditions(conditions, y.size)

        w = None
        if weights is not None:
            w = np.asarray(weights, dtype=float).reshape(-1)
            if w.size != y.size:
                raise DimensionMismatchError(
                    f"DataSet has {w.size} weights but {y.size} target values"
                )
            if not np.all(np.isfinite(w)) or np.any(w < 0.0):
                raise ValueError("DataSet weights must be finite and non-negative")
            if w.sum() <= 0.0:
                raise ValueError("DataSet weights must not all be zero")

        if input_names is None:
            input_names = [f"x{i}" for i in range(x.shape[1])]
        input_names = [str(n) for n in input_names]
        if len(input_names) != x.shape[1]:
            raise DimensionMismatchError(
                f"{len(input_names)} input names given for {x.shape[1]} condition columns"
            )

        self.target = y
        self.conditions = x
        self.weights = w
        self.model = model
        self.input_names = input_names
        self.target_name = str(target_name)
        self._evaluate_point = _resolve_evaluator(model)


    # NAMED CONSTRUCTORS ----------------------------------------------------------------

    @classmethod
    def vapor_pressure(cls, target, temperature, model, *, weights=None) -> "DataSet":
        """Vapor pressures measured at the given temperatures."""
        return cls(
            target, temperature, model,
            weights=weights,
            input_names=["temperature"],
            target_name="vapor pressure",
        )


    @classmethod
    def liquid_density(cls, target, temperature, pressure, model, *, weights=None) -> "DataSet":
        """Liquid densities measured at given temperatures and pressures."""
        return cls(
            target, _stack_columns(temperature, pressure), model,
            weights=weights,
            input_names=["temperature", "pressure"],
            target_name="liquid density",
        )


    @classmethod
    def equilibrium_liquid_density(cls, target, temperature, model, *, weights=None) -> "DataSet":
        """Saturated liquid densities at vapor-liquid equilibrium."""
        return cls(
            target, temperature, model,
            weights=weights,
            input_names=["temperature"],
            target_name="equilibrium liquid density",
        )


    @classmethod
    def binary_vle_pressure(cls, target, temperature, molefracs, model, *, weights=None) -> "DataSet":
        """Bubble or dew pressures of a binary mixture.

        ``molefracs`` is the mole fraction of the first component in the
        phase whose composition was measured.
        """
        return cls(
            target, _stack_columns(temperature, molefracs), model,
            weights=weights,
            input_names=["temperature", "molefracs"],
            target_name="binary vle pressure",
        )


    # PROPERTIES ------------------------------------------------------------------------

    @property
    def datapoints(self) -> int:
        """Number of observations."""
        return self.target.size


    def __len__(self) -> int:
        return self.target.size


    def get_input(self) -> dict[str, np.ndarray]:
        """Condition columns keyed by input name."""
        return {name: self.conditions[:, i].copy() for i, name in enumerate(self.input_names)}


    # EVALUATION ------------------------------------------------------------------------

    def _evaluate_at(self, params: np.ndarray, i: int) -> float:
        try:
            value = float(self._evaluate_point(params, self.conditions[i]))
        except Exception as err:
            raise ModelEvaluationError(
                f"{self.target_name}: model evaluation failed at point {i} "
                f"({self._format_condition(i)}): {err}",
                index=i,
            ) from err

        if not np.isfinite(value):
            raise ModelEvaluationError(
                f"{self.target_name}: model returned non-finite value {value} at point {i} "
                f"({self._format_condition(i)})",
                index=i,
            )
        return value


    def evaluate(self, parameters) -> np.ndarray:
        """Predict the target property at every stored condition.

        Parameters
        ----------
        parameters : array_like
            Model-space parameter vector.

        Returns
        -------
        np.ndarray
            Predictions, shape ``(n,)``.

        Raises
        ------
        ModelEvaluationError
            If the model fails for any point.
        """
        params = np.asarray(parameters, dtype=float).reshape(-1)
        return np.array([self._evaluate_at(params, i) for i in range(self.datapoints)])


    def predict(self, parameters) -> np.ndarray:
        """Like :meth:`evaluate`, but failed points are returned as NaN."""
        params = np.asarray(parameters, dtype=float).reshape(-1)
        prediction = np.full(self.datapoints, np.nan)
        for i in range(self.datapoints):
            try:
                prediction[i] = self._evaluate_at(params, i)
            except ModelEvaluationError as err:
                logger.debug("%s", err)
        return prediction


    def cost(self, parameters, loss: Loss) -> float:
        """Loss between the model prediction and the observed target."""
        return loss(self.evaluate(parameters), self.target, self.weights)


    def residuals(self, parameters, loss: Loss) -> np.ndarray:
        """Per-point residuals whose squares sum to :meth:`cost`."""
        return loss.residuals(self.evaluate(parameters), self.target, self.weights)


    def relative_difference(self, parameters) -> np.ndarray:
        """``(prediction - target) / target`` for every point."""
        if np.any(self.target == 0.0):
            raise ValueError("relative difference is undefined for zero target values")
        return (self.evaluate(parameters) - self.target) / self.target


    def mean_absolute_relative_difference(self, parameters) -> float:
        """Mean of ``|relative_difference|`` over all points."""
        return float(np.mean(np.abs(self.relative_difference(parameters))))


    # DISPLAY ---------------------------------------------------------------------------

    def _format_condition(self, i: int) -> str:
        return ", ".join(
            f"{name}={self.conditions[i, j]:.6g}" for j, name in enumerate(self.input_names)
        )


    def plot(self, parameters, *, ax=None, input_name: str | None = None):
        """Plot observed values and the model prediction against one input.

        Parameters
        ----------
        parameters : array_like
            Model-space parameter vector.
        ax : matplotlib.axes.Axes, optional
            Existing axes to draw into.
        input_name : str, optional
            Condition column used as abscissa; defaults to the first one.

        Returns
        -------
        matplotlib.axes.Axes
        """
        import matplotlib.pyplot as plt  # lazy import

        name = input_name or self.input_names[0]
        if name not in self.input_names:
            raise KeyError(f"Unknown input {name!r}. Try: {', '.join(self.input_names)}")
        x = self.conditions[:, self.input_names.index(name)]
        order = np.argsort(x)

        if ax is None:
            _, ax = plt.subplots(figsize=(8, 4))

        ax.plot(x, self.target, "o", ms=5, alpha=0.6, label="experiment")
        ax.plot(x[order], self.predict(parameters)[order], "-", lw=2, label="model")
        ax.set_xlabel(name)
        ax.set_ylabel(self.target_name)
        ax.grid(True, alpha=0.3)
        ax.legend()
        return ax


    def __repr__(self) -> str:
        return (
            f"DataSet({self.target_name!r}, datapoints={self.datapoints}, "
            f"inputs={self.input_names})"
        )


def _stack_columns(*columns) -> np.ndarray:
    """Stack equally long 1D inputs into an ``(n, k)`` array."""
    cols = [np.asarray(c, dtype=float).reshape(-1) for c in columns]
    sizes = {c.size for c in cols}
    if len(sizes) != 1:
        raise DimensionMismatchError(
            f"DataSet inputs have different lengths: {[c.size for c in cols]}"
        )
    return np.column_stack(cols)
