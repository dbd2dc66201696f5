#########################################################################################
##
##        eosfit example: joint vapor pressure & saturated density fit
##
##  Model:   a toy two-property "equation of state"
##
##      ln(p_sat / p_c) = h * (1 - T_c / T)                 (Clausius-Clapeyron)
##      rho_l           = rho_c * Z_c ** -((1 - T / T_c) ** (2/7))     (Rackett)
##
##  Five parameters, T_c shared between both properties:
##
##      ln_pc   ln of critical pressure [Pa]   (log-parameterized)
##      h       vaporization slope      [-]
##      Tc      critical temperature    [K]
##      rho_c   critical density        [mol/m^3]
##      Zc      critical compressibility [-]
##
##  The density model is undefined above T_c. Trial points that push T_c
##  below a measured temperature are penalized and the optimizer moves on.
##
#########################################################################################

# IMPORTS ===============================================================================

import logging

import numpy as np
import matplotlib.pyplot as plt

from eosfit import DataSet, Estimator, Loss, Parameter


# TRUE PARAMETER VALUES =================================================================

TRUE_PC    = 4.6e6     # [Pa]
TRUE_H     = 5.9       # [-]
TRUE_TC    = 190.6     # [K]
TRUE_RHO_C = 10.1e3    # [mol/m^3]
TRUE_ZC    = 0.286     # [-]


# MODEL DEFINITION ======================================================================

class ToyEoS:
    """Property evaluators; parameters come in as [ln_pc, h, Tc, rho_c, Zc]."""

    def vapor_pressure(self, params, cond):
        ln_pc, h, tc = params[0], params[1], params[2]
        return np.exp(ln_pc + h * (1.0 - tc / cond[0]))


    def liquid_density(self, params, cond):
        tc, rho_c, zc = params[2], params[3], params[4]
        tau = 1.0 - cond[0] / tc
        if tau <= 0.0:
            raise ValueError(f"T = {cond[0]:.2f} K is above T_c = {tc:.2f} K")
        return rho_c * zc ** -(tau ** (2.0 / 7.0))


eos = ToyEoS()
true_params = [np.log(TRUE_PC), TRUE_H, TRUE_TC, TRUE_RHO_C, TRUE_ZC]


# Run Example ===========================================================================

if __name__ == '__main__':

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    rng = np.random.default_rng(42)

    # Synthetic measurements with 1% relative noise
    t_vp  = np.linspace(100.0, 185.0, 18)
    p_vp  = np.array([eos.vapor_pressure(true_params, [t]) for t in t_vp])
    p_vp *= 1.0 + 0.01 * rng.standard_normal(t_vp.size)

    t_rho = np.linspace(95.0, 180.0, 12)
    rho   = np.array([eos.liquid_density(true_params, [t]) for t in t_rho])
    rho  *= 1.0 + 0.01 * rng.standard_normal(t_rho.size)

    vp_data  = DataSet.vapor_pressure(p_vp, t_vp, eos.vapor_pressure)
    rho_data = DataSet.equilibrium_liquid_density(rho, t_rho, eos.liquid_density)

    params = [
        Parameter("ln_pc", value=np.log(3.0e6), bounds=(np.log(1e5), np.log(1e8))),
        Parameter("h",     value=5.0,    bounds=(1.0, 20.0)),
        Parameter("Tc",    value=200.0,  bounds=(150.0, 400.0)),
        Parameter("rho_c", value=9.0e3,  bounds=(1.0e3, 5.0e4)),
        Parameter("Zc",    value=0.27,   bounds=(0.1, 0.5)),
    ]

    est = Estimator(
        [vp_data, rho_data],
        weights=[3.0, 2.0],
        loss=Loss.huber(0.05),
        parameters=params,
        tolerance=1e-10,
        max_iterations=500,
    )

    result = est.run()
    est.display()

    print("\nMARD per data set: ", est.mean_absolute_relative_difference(result.parameters))
    print(f"Penalized trial points: {result.n_failed}")

    # Identifiability at the fitted point
    sens = est.sensitivity()
    sens.display()

    # Plots
    # no transforms registered: optimizer and model space coincide
    model_params = result.parameters
    fig, axes = plt.subplots(1, 2, figsize=(11, 4))
    vp_data.plot(model_params, ax=axes[0])
    axes[0].set_yscale("log")
    rho_data.plot(model_params, ax=axes[1])
    fig.tight_layout()

    sens.plot()
    plt.show()
