########################################################################################
##
##                                  TESTS FOR
##                               'parameter.py'
##
########################################################################################

# IMPORTS ==============================================================================

import numpy as np
import pytest

from eosfit.parameter import Parameter


# ═══════════════════════════════════════════════════════════════════════════
# Parameter tests
# ═══════════════════════════════════════════════════════════════════════════

class TestParameter:

    def test_init(self):
        p = Parameter(name="m", value=2.0, bounds=(1, 5))
        assert p.name == "m"
        assert p.value == 2.0
        assert p() == 2.0
        assert p.bounds == (1.0, 5.0)

    def test_transform(self):
        p = Parameter(name="epsilon_k", value=np.log(250.0), transform=np.exp)
        assert p.value == pytest.approx(np.log(250.0))
        assert p() == pytest.approx(250.0)

    def test_to_model(self):
        p = Parameter(name="k", transform=lambda x: x ** 2)
        assert p.to_model(3.0) == 9.0

    def test_set_and_value_setter(self):
        p = Parameter(name="x", value=1.0)
        p.set(5.0)
        assert p.value == 5.0
        p.value = 7.0
        assert p.value == 7.0

    def test_inverted_bounds_raise(self):
        with pytest.raises(ValueError, match="lower bound"):
            Parameter(name="bad", value=1.0, bounds=(5.0, 1.0))

    def test_value_below_bound_warns(self):
        with pytest.warns(UserWarning, match="< lower bound"):
            Parameter(name="sigma", value=0.5, bounds=(1.0, 5.0))

    def test_value_above_bound_warns(self):
        with pytest.warns(UserWarning, match="> upper bound"):
            Parameter(name="sigma", value=6.0, bounds=(1.0, 5.0))

    def test_repr(self):
        r = repr(Parameter(name="m", value=1.5, bounds=(1.0, 5.0)))
        assert "m" in r
        assert "bounds" in r
