#########################################################################################
##
##                               LOSS FUNCTIONS
##                                  (loss.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

import numpy as np

from .exceptions import DimensionMismatchError


LossKind = Literal["mse", "weighted_mse", "relative", "huber"]

_KINDS = ("mse", "weighted_mse", "relative", "huber")


# HELPERS ===============================================================================

def _as_vectors(predicted, observed, weights):
    """Validate and convert loss inputs to float vectors."""
    p = np.asarray(predicted, dtype=float)
    o = np.asarray(observed, dtype=float)

    if p.ndim != 1 or o.ndim != 1:
        raise DimensionMismatchError(
            f"Loss expects 1D sequences, got shapes {p.shape} and {o.shape}"
        )
    if p.size == 0 or o.size == 0:
        raise DimensionMismatchError("Loss requires non-empty sequences")
    if p.size != o.size:
        raise DimensionMismatchError(
            f"predicted has {p.size} values but observed has {o.size}"
        )

    w = None
    if weights is not None:
        w = np.asarray(weights, dtype=float)
        if w.ndim != 1 or w.size != o.size:
            raise DimensionMismatchError(
                f"weights of shape {w.shape} do not match {o.size} observations"
            )
        if np.any(w < 0.0) or not np.all(np.isfinite(w)):
            raise ValueError("weights must be finite and non-negative")
        if w.sum() <= 0.0:
            raise ValueError("weights must not all be zero")

    return p, o, w


def _huber_rho(z: np.ndarray) -> np.ndarray:
    """rho(z) = z for z <= 1, else 2 sqrt(z) - 1."""
    return np.where(z <= 1.0, z, 2.0 * np.sqrt(np.maximum(z, 1.0)) - 1.0)


# LOSS ==================================================================================

@dataclass(frozen=True)
class Loss:
    """Scalar discrepancy between predicted and observed values.

    A closed set of variants selected by ``kind``. Every variant is a weighted
    mean of non-negative per-point terms, so the result is non-negative and
    exactly zero when ``predicted == observed`` elementwise.

    Parameters
    ----------
    kind : {"mse", "weighted_mse", "relative", "huber"}
        Loss variant.
    scaling_factor : float
        Scale ``s`` of the Huber loss. Relative differences with magnitude
        below ``s`` are treated quadratically, larger ones grow linearly.
        Ignored by the other variants.

    Notes
    -----
    ================ ========================================================
    ``mse``          ``mean((p - o)**2)``
    ``weighted_mse`` ``sum(w (p - o)**2) / sum(w)``
    ``relative``     ``mean(((p - o) / o)**2)``
    ``huber``        ``mean(s**2 rho(r**2 / s**2))`` with ``r = (p - o) / o``
                     and ``rho(z) = z if z <= 1 else 2 sqrt(z) - 1``
    ================ ========================================================

    ``mse`` ignores weights. The other variants use the weighted mean
    ``sum(w t) / sum(w)`` of their per-point terms ``t`` when weights are
    passed, and the plain mean otherwise.

    Example
    -------
    .. code-block:: python

        loss = Loss.huber(0.05)
        loss([1.0, 2.1], [1.0, 2.0])
    """

    kind: LossKind = "mse"
    scaling_factor: float = 1.0


    def __post_init__(self) -> None:
        if self.kind not in _KINDS:
            raise ValueError(
                f"Unknown loss kind {self.kind!r}. Try one of {', '.join(_KINDS)}."
            )
        if not np.isfinite(self.scaling_factor) or self.scaling_factor <= 0.0:
            raise ValueError("scaling_factor must be a positive finite number")


    # CONSTRUCTORS ----------------------------------------------------------------------

    @staticmethod
    def mse() -> "Loss":
        """Mean squared error."""
        return Loss("mse")


    @staticmethod
    def weighted_mse() -> "Loss":
        """Weighted mean squared error (uniform weights when none are given)."""
        return Loss("weighted_mse")


    @staticmethod
    def relative() -> "Loss":
        """Mean squared relative error."""
        return Loss("relative")


    @staticmethod
    def huber(scaling_factor: float) -> "Loss":
        """Huber loss applied to relative differences."""
        return Loss("huber", float(scaling_factor))


    @staticmethod
    def from_name(name: str, scaling_factor: float = 1.0) -> "Loss":
        """Build a loss from its kind name, e.g. ``"relative"``."""
        return Loss(name.strip().lower(), float(scaling_factor))


    # EVALUATION ------------------------------------------------------------------------

    @property
    def is_relative(self) -> bool:
        """True for variants defined on relative differences."""
        return self.kind in ("relative", "huber")


    def terms(self, predicted, observed, weights=None) -> np.ndarray:
        """Per-point non-negative loss terms, normalized so that they sum to the loss."""
        p, o, w = _as_vectors(predicted, observed, weights)

        if self.is_relative:
            if np.any(o == 0.0):
                raise ValueError(
                    f"{self.kind} loss is undefined for zero observed values"
                )
            r = (p - o) / o
        else:
            r = p - o

        if self.kind == "huber":
            s2 = self.scaling_factor * self.scaling_factor
            t = s2 * _huber_rho(r * r / s2)
        else:
            t = r * r

        if w is None or self.kind == "mse":
            return t / t.size
        return w * t / w.sum()


    def residuals(self, predicted, observed, weights=None) -> np.ndarray:
        """Per-point residuals ``r`` with ``sum(r**2) == loss``.

        Signs follow ``predicted - observed`` so least-squares solvers see a
        smooth residual vector.
        """
        p = np.asarray(predicted, dtype=float)
        o = np.asarray(observed, dtype=float)
        t = self.terms(p, o, weights)
        return np.sign(p - o) * np.sqrt(t)


    def __call__(self, predicted, observed, weights=None) -> float:
        return float(np.sum(self.terms(predicted, observed, weights)))


    def __repr__(self) -> str:
        if self.kind == "huber":
            return f"Loss.huber({self.scaling_factor:g})"
        return f"Loss.{self.kind}()"
