"""
Utility functions.
"""

import numpy as np


def check_finite_columns(X, columns, name='design'):
    """Validate a 2-D array, naming the columns that hold NaN or Inf."""
    X = np.asarray(X, dtype=np.float64)
    if X.ndim != 2:
        raise ValueError(f"{name} must be 2-dimensional")
    finite = np.all(np.isfinite(X), axis=0)
    if not np.all(finite):
        bad = [c for c, ok in zip(columns, finite) if not ok]
        raise ValueError(f"{name} columns contain NaN or Inf: {bad}")
    return X


def check_vector(y, name='y', n=None, dtype=np.float64):
    """Validate vector input."""
    y = np.asarray(y, dtype=dtype)
    if y.ndim != 1:
        raise ValueError(f"{name} must be 1-dimensional")
    if n is not None and len(y) != n:
        raise ValueError(f"{name} has length {len(y)}, expected {n}")
    if not np.all(np.isfinite(y)):
        raise ValueError(f"{name} contains NaN or Inf")
    return y
