#########################################################################################
##
##              EOSFIT: PARAMETER ESTIMATION FOR EQUATIONS OF STATE
##                                (__init__.py)
##
#########################################################################################

import logging
from importlib import metadata

try:
    __version__ = metadata.version("eosfit")
except Exception:
    __version__ = "unknown"

from .exceptions import (
    EstimatorError,
    DimensionMismatchError,
    ModelEvaluationError,
    ConvergenceError,
    ConvergenceWarning,
)
from .loss import Loss
from .dataset import DataSet
from .parameter import Parameter
from .minimizer import Minimizer, MinimizerResult, ScipyMinimizer
from .estimator import Estimator, EstimatorResult
from .sensitivity import SensitivityResult

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "EstimatorError",
    "DimensionMismatchError",
    "ModelEvaluationError",
    "ConvergenceError",
    "ConvergenceWarning",
    "Loss",
    "DataSet",
    "Parameter",
    "Minimizer",
    "MinimizerResult",
    "ScipyMinimizer",
    "Estimator",
    "EstimatorResult",
    "SensitivityResult",
]
