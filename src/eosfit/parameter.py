#########################################################################################
##
##                            FIT PARAMETER DECLARATION
##                                 (parameter.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

import warnings
from typing import Callable

import numpy as np


# CLASS =================================================================================

class Parameter:
    """Named model parameter fitted by an :class:`~eosfit.estimator.Estimator`.

    The optimizer works on ``value``; the model receives ``p()``, i.e. the
    value after the optional transform. A transform such as ``np.exp`` keeps a
    physical parameter positive while the optimizer moves freely.

    Parameters
    ----------
    name : str
        Parameter identifier, e.g. ``"sigma"`` or ``"epsilon_k"``.
    value : float
        Initial value in optimizer space.
    bounds : tuple[float, float]
        Lower / upper bounds in optimizer space.
    transform : callable, optional
        ``model_value = transform(optimizer_value)``.

    Example
    -------
    .. code-block:: python

        m = Parameter("m", value=1.5, bounds=(1.0, 5.0))
        eps = Parameter("epsilon_k", value=np.log(250.0), transform=np.exp)
        eps()      # 250.0
        eps.value  # 5.52...
    """

    def __init__(
        self,
        name: str,
        value: float = 1.0,
        bounds: tuple[float, float] = (-np.inf, np.inf),
        transform: Callable[[float], float] | None = None,
    ):
        self.name = name
        self.transform = transform

        lo, hi = bounds
        if np.isfinite(lo) and np.isfinite(hi) and lo > hi:
            raise ValueError(
                f"Parameter '{name}': lower bound {lo} > upper bound {hi}"
            )
        self.bounds = (float(lo), float(hi))

        if np.isfinite(lo) and float(value) < lo:
            warnings.warn(
                f"Parameter '{name}': initial value {value} < lower bound {lo}",
                UserWarning,
                stacklevel=2,
            )
        if np.isfinite(hi) and float(value) > hi:
            warnings.warn(
                f"Parameter '{name}': initial value {value} > upper bound {hi}",
                UserWarning,
                stacklevel=2,
            )

        self._value = float(value)


    @property
    def value(self) -> float:
        """Current optimizer-space value."""
        return self._value


    @value.setter
    def value(self, new_value: float) -> None:
        self.set(new_value)


    def set(self, value: float) -> None:
        self._value = float(value)


    def __call__(self) -> float:
        """Return the model-space value (after optional transform)."""
        return self.to_model(self._value)


    def to_model(self, x: float) -> float:
        """Map an optimizer-space value to model space."""
        return float(self.transform(x)) if self.transform is not None else float(x)


    def __repr__(self) -> str:
        return (
            f"Parameter(name={self.name!r}, value={self._value}, "
            f"bounds={self.bounds})"
        )
