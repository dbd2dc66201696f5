########################################################################################
##
##                                  TESTS FOR
##                              'sensitivity.py'
##
########################################################################################

# IMPORTS ==============================================================================

import numpy as np
import pytest

from eosfit.sensitivity import SensitivityResult


# ═══════════════════════════════════════════════════════════════════════════
# SensitivityResult
# ═══════════════════════════════════════════════════════════════════════════

class TestSensitivityResult:

    def test_identity_jacobian(self):
        sens = SensitivityResult(np.eye(2), ["a", "b"], [1.0, 2.0])
        np.testing.assert_allclose(sens.fim, np.eye(2))
        np.testing.assert_allclose(sens.covariance, np.eye(2))
        np.testing.assert_allclose(sens.std_errors, [1.0, 1.0])
        np.testing.assert_allclose(sens.correlation, np.eye(2))
        assert sens.condition_number == pytest.approx(1.0)
        assert sens.correlated_pairs() == []

    def test_eigenvalues_sorted_descending(self):
        sens = SensitivityResult(np.diag([1.0, 2.0]), ["a", "b"], [1.0, 1.0])
        np.testing.assert_allclose(sens.eigenvalues, [4.0, 1.0])
        assert sens.condition_number == pytest.approx(4.0)

    def test_singular_fim(self):
        sens = SensitivityResult(np.ones((3, 2)), ["a", "b"], [1.0, 1.0])
        assert sens.condition_number == np.inf
        pairs = sens.correlated_pairs()
        assert len(pairs) == 1
        assert pairs[0][:2] == ("a", "b")
        assert pairs[0][2] == pytest.approx(1.0)

    def test_relative_errors(self):
        sens = SensitivityResult(np.eye(2), ["a", "b"], [2.0, 0.0])
        rel = sens.relative_errors
        assert rel[0] == pytest.approx(0.5)
        assert rel[1] == np.inf

    def test_size_mismatch_raises(self):
        with pytest.raises(ValueError, match="column"):
            SensitivityResult(np.eye(2), ["a"], [1.0, 2.0])

    def test_display(self, capsys):
        SensitivityResult(np.ones((3, 2)), ["m", "sigma"], [1.5, 3.5]).display()
        out = capsys.readouterr().out
        assert "Sensitivity & Identifiability Analysis" in out
        assert "m <-> sigma" in out
        assert "POOR" in out

    def test_plot(self):
        import matplotlib
        matplotlib.use("Agg")
        import matplotlib.pyplot as plt

        sens = SensitivityResult(np.diag([1.0, 10.0, 100.0]), ["a", "b", "c"], [1.0, 1.0, 1.0])
        fig, axes = sens.plot()
        assert len(axes) == 2
        assert axes[1].get_yscale() == "log"
        plt.close(fig)
