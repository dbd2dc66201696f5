########################################################################################
##
##                                  TESTS FOR
##                                'dataset.py'
##
########################################################################################

# IMPORTS ==============================================================================

import numpy as np
import pytest

from eosfit.dataset import DataSet
from eosfit.exceptions import DimensionMismatchError, ModelEvaluationError
from eosfit.loss import Loss


# ═══════════════════════════════════════════════════════════════════════════
# Helpers / Fixtures
# ═══════════════════════════════════════════════════════════════════════════

def _line(params, cond):
    """y = a + b * x"""
    return params[0] + params[1] * cond[0]


def _vapor_pressure(params, cond):
    """p = exp(a - b / T)"""
    return np.exp(params[0] - params[1] / cond[0])


class _ModelObject:
    """Model exposing an ``evaluate`` method and counting calls."""

    def __init__(self):
        self.calls = 0

    def evaluate(self, params, cond):
        self.calls += 1
        return params[0] * cond[0] + params[1] * cond[1]


class _FailingModel:
    """Fails at the condition values listed in ``bad``."""

    def __init__(self, bad):
        self.bad = set(bad)

    def __call__(self, params, cond):
        if cond[0] in self.bad:
            raise ArithmeticError("density iteration did not converge")
        return params[0] * cond[0]


@pytest.fixture
def line_data():
    x = np.linspace(0.0, 4.0, 5)
    y = 1.0 + 2.0 * x
    return x, y


# ═══════════════════════════════════════════════════════════════════════════
# Construction
# ═══════════════════════════════════════════════════════════════════════════

class TestDataSetConstruction:

    def test_1d_conditions(self, line_data):
        x, y = line_data
        ds = DataSet(y, x, _line)
        assert ds.conditions.shape == (5, 1)
        assert ds.datapoints == 5
        assert len(ds) == 5
        assert ds.input_names == ["x0"]

    def test_2d_conditions_are_transposed(self):
        cond = np.vstack([np.arange(5.0), np.arange(5.0) + 10.0])   # (2, 5)
        ds = DataSet(np.ones(5), cond, _ModelObject())
        assert ds.conditions.shape == (5, 2)
        np.testing.assert_array_equal(ds.conditions[:, 1], np.arange(5.0) + 10.0)

    def test_length_mismatch_raises(self):
        with pytest.raises(DimensionMismatchError):
            DataSet(np.ones(4), np.ones(5), _line)

    def test_2d_misaligned_raises(self):
        with pytest.raises(DimensionMismatchError, match="do not align"):
            DataSet(np.ones(4), np.ones((3, 5)), _line)

    def test_empty_raises(self):
        with pytest.raises(DimensionMismatchError, match="at least one"):
            DataSet([], [], _line)

    def test_weights_length_mismatch_raises(self, line_data):
        x, y = line_data
        with pytest.raises(DimensionMismatchError, match="weights"):
            DataSet(y, x, _line, weights=[1.0, 2.0])

    def test_negative_weights_raise(self, line_data):
        x, y = line_data
        with pytest.raises(ValueError, match="non-negative"):
            DataSet(y, x, _line, weights=[1.0, 1.0, -1.0, 1.0, 1.0])

    def test_all_zero_weights_raise(self, line_data):
        x, y = line_data
        with pytest.raises(ValueError, match="must not all be zero"):
            DataSet(y, x, _line, weights=np.zeros(5))

    def test_input_names_count_checked(self, line_data):
        x, y = line_data
        with pytest.raises(DimensionMismatchError, match="input names"):
            DataSet(y, x, _line, input_names=["T", "p"])

    def test_unsupported_model_raises(self, line_data):
        x, y = line_data
        with pytest.raises(TypeError, match="Unsupported model"):
            DataSet(y, x, 42)

    def test_repr(self, line_data):
        x, y = line_data
        r = repr(DataSet(y, x, _line, target_name="density"))
        assert "density" in r
        assert "datapoints=5" in r


class TestNamedConstructors:

    def test_vapor_pressure(self):
        t = np.array([300.0, 320.0, 340.0])
        ds = DataSet.vapor_pressure(np.ones(3), t, _vapor_pressure)
        assert ds.target_name == "vapor pressure"
        assert ds.input_names == ["temperature"]
        np.testing.assert_array_equal(ds.get_input()["temperature"], t)

    def test_liquid_density(self):
        t = np.array([300.0, 320.0])
        p = np.array([1e5, 2e5])
        ds = DataSet.liquid_density(np.ones(2), t, p, _ModelObject())
        assert ds.target_name == "liquid density"
        inputs = ds.get_input()
        np.testing.assert_array_equal(inputs["temperature"], t)
        np.testing.assert_array_equal(inputs["pressure"], p)

    def test_liquid_density_mismatched_inputs_raise(self):
        with pytest.raises(DimensionMismatchError, match="different lengths"):
            DataSet.liquid_density(np.ones(2), [300.0, 320.0], [1e5], _ModelObject())

    def test_equilibrium_liquid_density(self):
        ds = DataSet.equilibrium_liquid_density(np.ones(2), [300.0, 310.0], _line)
        assert ds.target_name == "equilibrium liquid density"

    def test_binary_vle_pressure(self):
        ds = DataSet.binary_vle_pressure(np.ones(3), [300.0] * 3, [0.1, 0.5, 0.9], _ModelObject())
        assert ds.input_names == ["temperature", "molefracs"]
        assert ds.conditions.shape == (3, 2)

    def test_get_input_returns_copies(self):
        ds = DataSet.vapor_pressure(np.ones(2), [300.0, 310.0], _vapor_pressure)
        ds.get_input()["temperature"][0] = -1.0
        assert ds.conditions[0, 0] == 300.0


# ═══════════════════════════════════════════════════════════════════════════
# Evaluation
# ═══════════════════════════════════════════════════════════════════════════

class TestDataSetEvaluation:

    def test_evaluate_callable(self, line_data):
        x, y = line_data
        ds = DataSet(y, x, _line)
        np.testing.assert_allclose(ds.evaluate([1.0, 2.0]), y)

    def test_evaluate_model_object(self):
        model = _ModelObject()
        cond = np.array([[1.0, 2.0], [3.0, 4.0], [5.0, 6.0]])
        ds = DataSet(np.zeros(3), cond, model)
        np.testing.assert_allclose(ds.evaluate([1.0, 1.0]), [3.0, 7.0, 11.0])
        assert model.calls == 3

    def test_failure_raises_model_evaluation_error(self):
        ds = DataSet(np.ones(3), [1.0, 2.0, 3.0], _FailingModel(bad=[2.0]))
        with pytest.raises(ModelEvaluationError) as info:
            ds.evaluate([1.0])
        assert info.value.index == 1
        assert isinstance(info.value.__cause__, ArithmeticError)
        assert "did not converge" in str(info.value)

    def test_non_finite_prediction_raises(self):
        ds = DataSet(np.ones(2), [1.0, 2.0], lambda p, c: np.nan if c[0] > 1.5 else 1.0)
        with pytest.raises(ModelEvaluationError, match="non-finite"):
            ds.evaluate([1.0])

    def test_predict_marks_failures_as_nan(self):
        ds = DataSet(np.ones(3), [1.0, 2.0, 3.0], _FailingModel(bad=[2.0]))
        pred = ds.predict([2.0])
        assert pred[0] == 2.0
        assert np.isnan(pred[1])
        assert pred[2] == 6.0

    def test_cost_zero_at_true_parameters(self, line_data):
        x, y = line_data
        ds = DataSet(y, x, _line)
        assert ds.cost([1.0, 2.0], Loss.mse()) == 0.0

    def test_cost_matches_loss(self, line_data):
        x, y = line_data
        ds = DataSet(y, x, _line, weights=np.arange(1.0, 6.0))
        loss = Loss.weighted_mse()
        params = [0.5, 2.5]
        expected = loss(ds.evaluate(params), y, np.arange(1.0, 6.0))
        assert ds.cost(params, loss) == pytest.approx(expected)

    def test_residuals_square_sum_equals_cost(self, line_data):
        x, y = line_data
        ds = DataSet(y, x, _line)
        r = ds.residuals([0.0, 1.0], Loss.mse())
        assert np.sum(r ** 2) == pytest.approx(ds.cost([0.0, 1.0], Loss.mse()))

    def test_cost_propagates_model_failure(self):
        ds = DataSet(np.ones(2), [1.0, 2.0], _FailingModel(bad=[1.0]))
        with pytest.raises(ModelEvaluationError):
            ds.cost([1.0], Loss.mse())

    def test_relative_difference(self):
        ds = DataSet(np.array([2.0, 4.0]), [1.0, 2.0], lambda p, c: p[0] * c[0])
        np.testing.assert_allclose(ds.relative_difference([2.2]), [0.1, 0.1])
        assert ds.mean_absolute_relative_difference([1.8]) == pytest.approx(0.1)

    def test_relative_difference_zero_target_raises(self):
        ds = DataSet(np.array([0.0, 4.0]), [1.0, 2.0], lambda p, c: p[0] * c[0])
        with pytest.raises(ValueError, match="zero target"):
            ds.relative_difference([1.0])


class TestDataSetPlot:

    def test_plot_returns_axes(self, line_data):
        import matplotlib
        matplotlib.use("Agg")
        import matplotlib.pyplot as plt

        x, y = line_data
        ds = DataSet(y, x, _line, input_names=["x"], target_name="y")
        ax = ds.plot([1.0, 2.0])
        assert ax.get_xlabel() == "x"
        assert ax.get_ylabel() == "y"
        plt.close("all")

    def test_plot_unknown_input_raises(self, line_data):
        x, y = line_data
        ds = DataSet(y, x, _line)
        with pytest.raises(KeyError):
            ds.plot([1.0, 2.0], input_name="pressure")
