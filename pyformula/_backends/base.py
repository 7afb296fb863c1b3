"""
Abstract base classes for backends.

Defines the interface all backends must implement.
"""

from abc import ABC, abstractmethod
import numpy as np
from typing import Optional
from dataclasses import dataclass


@dataclass
class LinearModelResult:
    """Complete (weighted) least squares results."""
    coef: np.ndarray           # NaN for aliased columns
    residuals: np.ndarray      # y - fitted, unweighted
    fitted_values: np.ndarray
    rank: int
    df_residual: int
    qr_R: np.ndarray           # R of the non-aliased (weighted) columns
    qr_pivot: np.ndarray       # 1-indexed, aliased columns last
    qr_tol: float
    aliased: np.ndarray        # Boolean mask over design columns
    cov_unscaled: np.ndarray   # (X'WX)^-1 over the non-aliased columns


class BackendBase(ABC):
    """Abstract base class for all backends."""

    name: str = ""

    @abstractmethod
    def fit_linear_model(
        self,
        X: np.ndarray,
        y: np.ndarray,
        weights: Optional[np.ndarray] = None,
        offset: Optional[np.ndarray] = None,
        tol: Optional[float] = None,
    ) -> LinearModelResult:
        """
        Fit linear model - complete computation.

        Backends implement ALL computation internally using their
        native types, only converting at entry/exit.

        Parameters
        ----------
        X : ndarray, shape (n, p)
            Design matrix (intercept column included when the model has one)
        y : ndarray, shape (n,)
            Response vector
        weights : ndarray, optional
            Observation weights; rows with zero weight do not enter the fit
        offset : ndarray, optional
            Offset term
        tol : float, optional
            Tolerance for rank determination

        Returns
        -------
        LinearModelResult
            Complete regression results (all numpy arrays)
        """
        pass

    @abstractmethod
    def get_device_info(self) -> dict:
        """Get backend information."""
        pass


class CPUBackend(BackendBase):
    """CPU backend base class (always FP64)."""
    pass


class GPUBackendFP64(BackendBase):
    """GPU backend base class for FP64."""
    pass


def expand_coef(values: np.ndarray, aliased: np.ndarray) -> np.ndarray:
    """Place estimates of the kept columns into a full-length vector, NaN elsewhere."""
    coef = np.full(len(aliased), np.nan, dtype=np.float64)
    coef[~aliased] = values
    return coef
