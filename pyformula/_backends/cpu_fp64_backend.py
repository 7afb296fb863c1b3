"""
CPU backend using NumPy + SciPy.

This is the reference implementation validated against R.
"""

import numpy as np
from scipy.linalg import solve_triangular
from typing import Optional

from .base import CPUBackend, LinearModelResult, expand_coef
from .._core.qr import qr_decomposition_with_pivoting


class CPUBackendFP64(CPUBackend):
    """
    CPU backend using NumPy + SciPy.

    Reference implementation for R compatibility.
    Always uses FP64 precision.
    """

    def __init__(self):
        self.name = "cpu_fp64"
        self.precision = "fp64"

    def fit_linear_model(
        self,
        X: np.ndarray,
        y: np.ndarray,
        weights: Optional[np.ndarray] = None,
        offset: Optional[np.ndarray] = None,
        tol: Optional[float] = None,
    ) -> LinearModelResult:
        """
        Fit linear model using NumPy/LAPACK.

        Complete implementation - all computation stays in NumPy.
        """
        X = np.asarray(X, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64)
        n, p = X.shape

        # Adjust for offset
        y_work = y - offset if offset is not None else y.copy()

        # Handle weights
        if weights is not None:
            good = weights > 0
            if not np.any(good):
                raise ValueError("All weights are zero")

            w_sqrt = np.sqrt(weights[good])
            X_work = X[good, :] * w_sqrt[:, np.newaxis]
            y_work = y_work[good] * w_sqrt
            n_good = int(np.sum(good))
        else:
            X_work = X
            n_good = n

        # QR decomposition with limited pivoting (aliased columns last)
        decomp = qr_decomposition_with_pivoting(X_work, tol=tol)
        rank = decomp.rank

        if rank > 0:
            qty = decomp.Q.T @ y_work
            coef_active = solve_triangular(decomp.R, qty, lower=False)
            R_inv = solve_triangular(decomp.R, np.eye(rank), lower=False)
            cov_unscaled = R_inv @ R_inv.T
        else:
            coef_active = np.empty(0)
            cov_unscaled = np.empty((0, 0))

        coef = expand_coef(coef_active, decomp.aliased)

        # Fitted values from the non-aliased columns
        fitted = X[:, ~decomp.aliased] @ coef_active
        if offset is not None:
            fitted = fitted + offset
        residuals = y - fitted

        return LinearModelResult(
            coef=coef,
            residuals=residuals,
            fitted_values=fitted,
            rank=rank,
            df_residual=n_good - rank,
            qr_R=decomp.R,
            qr_pivot=decomp.pivot,
            qr_tol=decomp.tol,
            aliased=decomp.aliased,
            cov_unscaled=cov_unscaled,
        )

    def get_device_info(self) -> dict:
        """Get backend information."""
        import scipy
        return {
            'backend': 'cpu',
            'precision': 'fp64',
            'library': f'NumPy {np.__version__}, SciPy {scipy.__version__}',
        }
