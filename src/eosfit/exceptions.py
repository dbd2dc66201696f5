#########################################################################################
##
##                                ERROR TAXONOMY
##                                (exceptions.py)
##
#########################################################################################


class EstimatorError(Exception):
    """Base class for all errors raised by eosfit."""


class DimensionMismatchError(EstimatorError, ValueError):
    """Raised when data set or loss inputs have inconsistent or empty shapes."""


class ModelEvaluationError(EstimatorError, RuntimeError):
    """Raised when the external model cannot produce a prediction.

    Parameters
    ----------
    message : str
        Human-readable description.
    index : int, optional
        Index of the data point that failed, if known.
    """

    def __init__(self, message: str, index: int | None = None):
        super().__init__(message)
        self.index = index


class ConvergenceError(EstimatorError):
    """Raised on request when an optimization run did not converge."""


class ConvergenceWarning(UserWarning):
    """Issued when an optimization run stops without converging."""
