"""
QR decomposition with limited column pivoting.

Columns are examined left to right; a column whose residual, after
projection onto the columns already accepted, is negligible relative to
its own norm is aliased and moved to the end. This is the behaviour of
R's dqrdc2 (used by lm and glm), so the rightmost member of a linearly
dependent set is the one dropped.
"""

import numpy as np
from typing import Optional
from dataclasses import dataclass
from scipy.linalg import qr


@dataclass
class QRDecomposition:
    """Result of QR decomposition with limited pivoting."""
    Q: np.ndarray            # Orthonormal factor for the kept columns
    R: np.ndarray            # Upper triangular matrix R (rank x rank)
    pivot: np.ndarray        # Pivot indices (1-indexed, R convention)
    rank: int                # Determined rank
    aliased: np.ndarray      # Boolean mask over the input columns
    tol: float               # Tolerance used


def detect_aliased_columns(X: np.ndarray, tol: float = 1e-7) -> np.ndarray:
    """
    Flag columns that are linear combinations of columns to their left.

    Parameters
    ----------
    X : ndarray, shape (n, p)
        Matrix to check (rows with missing values must be removed first)
    tol : float
        Relative tolerance on the residual norm

    Returns
    -------
    aliased : ndarray of bool, shape (p,)
    """
    X = np.asarray(X, dtype=np.float64)
    n, p = X.shape
    aliased = np.zeros(p, dtype=bool)
    basis = np.empty((n, 0))

    for j in range(p):
        col = X[:, j]
        norm = np.linalg.norm(col)
        if norm == 0:
            aliased[j] = True
            continue
        resid = col.copy()
        # Two passes of Gram-Schmidt keep the residual accurate
        for _ in range(2):
            resid -= basis @ (basis.T @ resid)
        resid_norm = np.linalg.norm(resid)
        if resid_norm < tol * norm:
            aliased[j] = True
        else:
            basis = np.column_stack([basis, resid / resid_norm])

    return aliased


def qr_decomposition_with_pivoting(
    X: np.ndarray,
    tol: Optional[float] = None,
) -> QRDecomposition:
    """
    QR decomposition with limited column pivoting.

    Parameters
    ----------
    X : ndarray, shape (n, p)
        Matrix to decompose
    tol : float, optional
        Tolerance for rank determination (default 1e-7, as in R's lm)

    Returns
    -------
    result : QRDecomposition
        QR decomposition of the non-aliased columns, with the aliased ones
        pivoted to the end
    """
    if tol is None:
        tol = 1e-7
    X = np.asarray(X, dtype=np.float64)
    aliased = detect_aliased_columns(X, tol=tol)
    kept = np.flatnonzero(~aliased)
    pivot = np.concatenate([kept, np.flatnonzero(aliased)])

    if len(kept) > 0:
        Q, R = qr(X[:, kept], mode='economic')
    else:
        Q, R = np.empty((X.shape[0], 0)), np.empty((0, 0))

    return QRDecomposition(
        Q=Q,
        R=R,
        pivot=pivot.astype(np.int64) + 1,  # 1-indexed like R
        rank=len(kept),
        aliased=aliased,
        tol=tol,
    )
