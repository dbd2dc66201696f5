#########################################################################################
##
##                  LOCAL SENSITIVITY & PARAMETER IDENTIFIABILITY
##                                (sensitivity.py)
##
#########################################################################################

# IMPORTS ===============================================================================

import numpy as np


# thresholds used by display()
_REL_ERROR_LIMIT = 0.5
_CORRELATION_LIMIT = 0.90


# HELPERS ===============================================================================

def _correlation_from_covariance(covariance: np.ndarray, std_errors: np.ndarray) -> np.ndarray:
    """Normalize a covariance matrix; undefined entries are 0 (1 on the diagonal)."""
    denom = np.outer(std_errors, std_errors)
    corr = np.divide(covariance, denom, out=np.zeros_like(covariance), where=denom > 0.0)
    undefined_diag = np.diag(denom) <= 0.0
    corr[np.diag_indices_from(corr)] = np.where(undefined_diag, 1.0, np.diag(corr))
    return corr


def _condition_number(eigenvalues: np.ndarray) -> float:
    """Ratio of largest to smallest eigenvalue; inf if any eigenvalue is non-positive."""
    n_p = eigenvalues.size
    positive = eigenvalues[eigenvalues > 0.0]
    if positive.size != n_p or n_p == 0:
        return np.inf
    return float(positive.max() / positive.min())


# CLASS: SensitivityResult ==============================================================

class SensitivityResult:
    """Local sensitivity and practical identifiability at a parameter vector.

    All statistics derive from the Jacobian **J** of the weighted residual
    vector with respect to the optimizer-space parameters, evaluated at the
    fitted point.

    Parameters
    ----------
    jacobian : np.ndarray, shape (n_residuals, n_params)
        ``d r_i / d x_j`` at the fitted point.
    param_names : list of str
        Parameter names, one per Jacobian column.
    param_values : np.ndarray, shape (n_params,)
        Model-space parameter values.

    Attributes
    ----------
    fim : np.ndarray
        Fisher information ``J^T J``.
    covariance : np.ndarray
        ``pinv(fim)``.
    std_errors : np.ndarray
        ``sqrt(diag(covariance))``, in optimizer space.
    correlation : np.ndarray
        Normalized covariance. Entries near +-1 flag parameter pairs that the
        data cannot separate.
    eigenvalues : np.ndarray
        FIM eigenvalues, descending.
    eigenvectors : np.ndarray
        Matching eigenvectors (columns).
    condition_number : float
        Largest over smallest FIM eigenvalue; ``inf`` when the FIM is
        singular. Values above about 1e6 indicate practical
        non-identifiability.

    Notes
    -----
    The analysis linearizes around the fitted point. With the residual
    weighting of :class:`~eosfit.estimator.Estimator` the covariance is only
    a relative measure unless the loss terms are scaled by the measurement
    variance.
    """

    def __init__(self, jacobian, param_names, param_values):
        self.jacobian = np.atleast_2d(np.asarray(jacobian, dtype=float))
        self.param_names = list(param_names)
        self.param_values = np.asarray(param_values, dtype=float).reshape(-1)

        n_p = self.jacobian.shape[1]
        if len(self.param_names) != n_p or self.param_values.size != n_p:
            raise ValueError(
                f"jacobian has {n_p} column(s) but {len(self.param_names)} name(s) "
                f"and {self.param_values.size} value(s) were given"
            )

        self.fim = self.jacobian.T @ self.jacobian
        self.covariance = np.linalg.pinv(self.fim)
        self.std_errors = np.sqrt(np.maximum(np.diag(self.covariance), 0.0))
        self.correlation = _correlation_from_covariance(self.covariance, self.std_errors)

        eigenvalues, eigenvectors = np.linalg.eigh(self.fim)
        order = np.argsort(eigenvalues)[::-1]
        self.eigenvalues = eigenvalues[order]
        self.eigenvectors = eigenvectors[:, order]
        self.condition_number = _condition_number(self.eigenvalues)


    @property
    def relative_errors(self) -> np.ndarray:
        """``std_error / |value|``; ``inf`` for zero-valued parameters."""
        abs_values = np.abs(self.param_values)
        return np.divide(
            self.std_errors, abs_values,
            out=np.full_like(self.std_errors, np.inf),
            where=abs_values > 1e-15,
        )


    def correlated_pairs(self, limit: float = _CORRELATION_LIMIT) -> list[tuple[str, str, float]]:
        """Parameter pairs with ``|correlation| > limit``."""
        n_p = len(self.param_names)
        return [
            (self.param_names[i], self.param_names[j], float(self.correlation[i, j]))
            for i in range(n_p)
            for j in range(i + 1, n_p)
            if abs(self.correlation[i, j]) > limit
        ]


    # DISPLAY ===========================================================================

    def display(self) -> None:
        """Print parameter uncertainties, condition number and correlated pairs."""
        W = 72
        line = "=" * W
        dash = "-" * W

        print(line)
        print("  Sensitivity & Identifiability Analysis")
        print(line)
        print(f"  {'Parameter':<22} {'Value':>12} {'Std Error':>12} "
              f"{'Rel Error':>10}  {'OK?':>4}")
        print(dash)

        for name, val, se, rel in zip(
            self.param_names, self.param_values, self.std_errors, self.relative_errors
        ):
            rel_str = f"{rel * 100:.2f}%" if np.isfinite(rel) else "N/A"
            flag = "yes" if np.isfinite(rel) and rel < _REL_ERROR_LIMIT else "no"
            print(f"  {name:<22} {val:>12.4g} {se:>12.4g} {rel_str:>10}  {flag:>4}")
        print(dash)

        cn = self.condition_number
        if cn < 1e3:
            label = "excellent"
        elif cn < 1e6:
            label = "acceptable"
        else:
            label = "POOR, parameters may not be uniquely identifiable"
        print(f"\n  FIM condition number : {cn:.3g}  ({label})")

        pairs = self.correlated_pairs()
        if pairs:
            print(f"\n  Highly correlated pairs (|r| > {_CORRELATION_LIMIT:.2f}):")
            for a, b, r in pairs:
                print(f"    {a} <-> {b}  :  r = {r:+.3f}")
        else:
            print(f"  No highly correlated parameter pairs  (|r| <= {_CORRELATION_LIMIT:.2f})")
        print(line)


    # PLOT ==============================================================================

    def plot(self, *, figsize: tuple = (11, 4.5)):
        """Plot the correlation heatmap and the FIM eigenvalue spectrum.

        Returns
        -------
        fig : matplotlib.figure.Figure
        axes : np.ndarray of matplotlib.axes.Axes, shape (2,)
        """
        import matplotlib.colors as mcolors
        import matplotlib.pyplot as plt

        n_p = len(self.param_names)
        fig, axes = plt.subplots(1, 2, figsize=figsize)

        ax = axes[0]
        norm = mcolors.TwoSlopeNorm(vmin=-1.0, vcenter=0.0, vmax=1.0)
        im = ax.imshow(self.correlation, cmap="RdBu_r", norm=norm, aspect="auto")
        fig.colorbar(im, ax=ax, label="Correlation")
        ax.set_xticks(range(n_p))
        ax.set_yticks(range(n_p))
        ax.set_xticklabels(self.param_names, rotation=45, ha="right", fontsize=9)
        ax.set_yticklabels(self.param_names, fontsize=9)
        ax.set_title("Parameter Correlation Matrix")
        for i in range(n_p):
            for j in range(n_p):
                v = self.correlation[i, j]
                ax.text(j, i, f"{v:.2f}", ha="center", va="center", fontsize=8,
                        color="white" if abs(v) > 0.65 else "black")

        ax2 = axes[1]
        ev = self.eigenvalues
        positive = ev > 0.0
        ax2.bar(range(ev.size), np.abs(ev),
                color=["steelblue" if p else "salmon" for p in positive])
        if positive.sum() > 1 and ev[positive].max() / ev[positive].min() > 100.0:
            ax2.set_yscale("log")
        ax2.set_xticks(range(ev.size))
        ax2.set_xticklabels([f"l{i + 1}" for i in range(ev.size)], fontsize=9)
        ax2.set_xlabel("Eigendirection")
        ax2.set_ylabel("Eigenvalue magnitude")
        ax2.set_title("FIM Eigenvalue Spectrum")
        ax2.grid(True, axis="y", alpha=0.3)

        fig.suptitle("Sensitivity & Identifiability Analysis", fontweight="bold")
        fig.tight_layout()
        return fig, axes
