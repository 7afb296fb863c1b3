"""
Core algorithms (backend-agnostic).

The design module depends on the formula package, which itself needs the
transform registry from here, so it is imported directly rather than
re-exported.
"""

from .qr import QRDecomposition, detect_aliased_columns, qr_decomposition_with_pivoting
from .transforms import get_transform, TRANSFORMS
from .encoding import Factor, CategoricalEncoder, is_categorical
from .families import Family, Gaussian, Binomial, Poisson, get_family
from .fitter import FitResult, fit_model

__all__ = [
    "QRDecomposition",
    "detect_aliased_columns",
    "qr_decomposition_with_pivoting",
    "get_transform",
    "TRANSFORMS",
    "Factor",
    "CategoricalEncoder",
    "is_categorical",
    "Family",
    "Gaussian",
    "Binomial",
    "Poisson",
    "get_family",
    "FitResult",
    "fit_model",
]
