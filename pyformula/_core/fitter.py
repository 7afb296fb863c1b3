"""
Model fitting.

Ordinary least squares goes straight to the backend. GLMs are fit by
iteratively reweighted least squares (R's glm.fit), each iteration being a
weighted least squares solve on the same backend. Aliased columns are
decided by the backend's limited-pivoting QR, so the rightmost member of a
dependent set gets a NaN coefficient.
"""

import warnings
from dataclasses import dataclass
from typing import Optional, Sequence, Union

import numpy as np

from .families import Family, Gaussian
from ..config import FitControl
from ..exceptions import NonConvergenceError, RankDeficiencyWarning, SingularFitError
from .._utils import check_finite_columns, check_vector
from .._logging import get_logger


logger = get_logger(__name__)

# Step halving attempts when the deviance becomes non-finite
MAX_HALVINGS = 25


@dataclass
class FitResult:
    """Numeric result of a single fit."""
    coef: np.ndarray              # NaN for aliased columns
    aliased: np.ndarray           # Boolean mask over design columns
    rank: int
    df_residual: int
    nobs: int
    fitted_values: np.ndarray     # μ (response scale)
    linear_predictors: np.ndarray  # η
    residuals: np.ndarray         # y - μ
    deviance: float               # RSS for OLS
    null_deviance: float
    dispersion: float             # σ² (1 for binomial and poisson)
    cov_unscaled: np.ndarray      # (X'WX)^-1, NaN rows/columns for aliased
    converged: bool = True
    iterations: int = 0
    aic: Optional[float] = None


def _full_cov(cov_active: np.ndarray, aliased: np.ndarray) -> np.ndarray:
    p = len(aliased)
    cov = np.full((p, p), np.nan)
    kept = np.flatnonzero(~aliased)
    cov[np.ix_(kept, kept)] = cov_active
    return cov


def _warn_aliased(aliased: np.ndarray, names: Optional[Sequence[str]]) -> None:
    if not aliased.any():
        return
    if names is None:
        names = [f"x{i}" for i in range(len(aliased))]
    dropped = [n for n, a in zip(names, aliased) if a]
    logger.warning("Aliased coefficients", columns=dropped)
    warnings.warn(
        f"{len(dropped)} coefficient(s) not defined because of singularities: {', '.join(dropped)}",
        RankDeficiencyWarning,
        stacklevel=3,
    )


def _null_deviance(y, weights, offset, family: Family, intercept: bool) -> float:
    if intercept:
        wtdmu = np.full_like(y, np.sum(weights * y) / np.sum(weights))
    else:
        wtdmu = family.linkinv(offset)
    return float(np.sum(family.dev_resids(y, wtdmu, weights)))


def fit_ols(
    X: np.ndarray,
    y: np.ndarray,
    weights: Optional[np.ndarray] = None,
    offset: Optional[np.ndarray] = None,
    control: Optional[FitControl] = None,
    backend=None,
    column_names: Optional[Sequence[str]] = None,
    intercept: bool = True,
) -> FitResult:
    """
    Ordinary (or weighted) least squares.

    Parameters
    ----------
    X : ndarray, shape (n, p)
        Design matrix (intercept column included)
    y : ndarray, shape (n,)
        Response vector
    weights : ndarray, optional
        Observation weights
    offset : ndarray, optional
        Offset term
    control : FitControl, optional
        Rank tolerance
    backend : Backend, optional
        Computational backend
    column_names : sequence of str, optional
        Used in the aliasing warning
    intercept : bool
        Whether X has an intercept (for the null deviance)

    Returns
    -------
    FitResult
    """
    if backend is None:
        from .._backends import get_backend
        backend = get_backend('cpu')
    control = control or FitControl()

    n, p = X.shape
    w = np.ones(n) if weights is None else np.asarray(weights, dtype=np.float64)
    off = np.zeros(n) if offset is None else np.asarray(offset, dtype=np.float64)

    res = backend.fit_linear_model(X, y, weights=weights, offset=offset, tol=control.tol)
    if res.rank == 0 or res.df_residual <= 0:
        raise SingularFitError(res.rank, n, p)
    _warn_aliased(res.aliased, column_names)

    rss = float(np.sum(w * res.residuals ** 2))
    family = Gaussian()
    logger.debug("OLS fit", nobs=n, rank=res.rank, rss=rss)

    return FitResult(
        coef=res.coef,
        aliased=res.aliased,
        rank=res.rank,
        df_residual=res.df_residual,
        nobs=int(np.sum(w > 0)),
        fitted_values=res.fitted_values,
        linear_predictors=res.fitted_values,
        residuals=res.residuals,
        deviance=rss,
        null_deviance=_null_deviance(y - off, w, np.zeros(n), family, intercept),
        dispersion=rss / res.df_residual,
        cov_unscaled=_full_cov(res.cov_unscaled, res.aliased),
        aic=float(family.aic(y, res.fitted_values, w, rss) + 2 * res.rank),
    )


def fit_glm(
    X: np.ndarray,
    y: np.ndarray,
    family: Family,
    weights: Optional[np.ndarray] = None,
    offset: Optional[np.ndarray] = None,
    control: Optional[FitControl] = None,
    backend=None,
    column_names: Optional[Sequence[str]] = None,
    intercept: bool = True,
) -> FitResult:
    """
    Generalized linear model via IRLS.

    Convergence is declared when the relative coefficient change
    ``||b - b_old|| / (||b_old|| + 0.1)`` drops below ``control.epsilon``.

    Raises
    ------
    NonConvergenceError
        If ``control.maxit`` iterations pass without convergence
    SingularFitError
        If the weighted design has rank 0 or no residual degrees of freedom
    """
    if backend is None:
        from .._backends import get_backend
        backend = get_backend('cpu')
    control = control or FitControl()

    X = np.asarray(X, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)
    n, p = X.shape
    w = np.ones(n) if weights is None else np.asarray(weights, dtype=np.float64)
    off = np.zeros(n) if offset is None else np.asarray(offset, dtype=np.float64)

    family.check_response(y)

    mu = family.mustart(y, w)
    eta = family.linkfun(mu)
    dev = float(np.sum(family.dev_resids(y, mu, w)))

    coef_old = None
    change = np.inf
    converged = False
    res = None

    for iteration in range(1, control.maxit + 1):
        mu_eta = family.mu_eta(eta)
        var = family.variance(mu)
        good = (w > 0) & (mu_eta != 0)

        # Working response and weights
        z = (eta - off) + (y - mu) / mu_eta
        wz = w * mu_eta ** 2 / var

        res = backend.fit_linear_model(X[good], z[good], weights=wz[good], tol=control.tol)
        if res.rank == 0 or res.df_residual <= 0:
            raise SingularFitError(res.rank, int(np.sum(good)), p)

        coef = np.nan_to_num(res.coef)
        eta = X @ coef + off
        mu = family.linkinv(eta)
        dev = float(np.sum(family.dev_resids(y, mu, w)))

        halvings = 0
        while not (np.isfinite(dev) and family.validmu(mu)):
            if coef_old is None or halvings >= MAX_HALVINGS:
                raise NonConvergenceError(iteration, res.coef, dev, change)
            halvings += 1
            coef = (coef + coef_old) / 2
            eta = X @ coef + off
            mu = family.linkinv(eta)
            dev = float(np.sum(family.dev_resids(y, mu, w)))

        logger.debug("IRLS iteration", iteration=iteration, deviance=dev, halvings=halvings)

        if coef_old is not None:
            change = float(np.linalg.norm(coef - coef_old) / (np.linalg.norm(coef_old) + 0.1))
            if change < control.epsilon:
                converged = True
                break
        coef_old = coef

    if not converged:
        coef_out = coef.copy()
        coef_out[res.aliased] = np.nan
        raise NonConvergenceError(control.maxit, coef_out, dev, change)

    logger.info("IRLS converged", family=family.name, iterations=iteration, deviance=dev)
    _warn_aliased(res.aliased, column_names)

    coef_out = coef.copy()
    coef_out[res.aliased] = np.nan

    # Dispersion from the working residuals of the last iteration
    mu_eta = family.mu_eta(eta)
    good = (w > 0) & (mu_eta != 0)
    working_resid = (y - mu) / mu_eta
    working_w = w * mu_eta ** 2 / family.variance(mu)
    if family.dispersion_known:
        dispersion = 1.0
    else:
        dispersion = float(np.sum((working_w * working_resid ** 2)[good]) / res.df_residual)

    rank = res.rank
    return FitResult(
        coef=coef_out,
        aliased=res.aliased,
        rank=rank,
        df_residual=int(np.sum(w > 0)) - rank,
        nobs=int(np.sum(w > 0)),
        fitted_values=mu,
        linear_predictors=eta,
        residuals=y - mu,
        deviance=dev,
        null_deviance=_null_deviance(y, w, off, family, intercept),
        dispersion=dispersion,
        cov_unscaled=_full_cov(res.cov_unscaled, res.aliased),
        converged=converged,
        iterations=iteration,
        aic=float(family.aic(y, mu, w, dev) + 2 * rank),
    )


def fit_model(
    design,
    y: np.ndarray,
    family: Union[Family, None] = None,
    weights: Optional[np.ndarray] = None,
    offset: Optional[np.ndarray] = None,
    control: Optional[FitControl] = None,
    backend=None,
) -> FitResult:
    """
    Fit a DesignMatrix: OLS when ``family`` is None, IRLS otherwise.

    The design must not contain missing rows.
    """
    X = check_finite_columns(design.values, design.columns)
    n = X.shape[0]
    y = check_vector(y, "response", n=n)
    if weights is not None:
        weights = check_vector(weights, "weights", n=n)
        if np.any(weights < 0):
            raise ValueError("negative weights not allowed")
    if offset is not None:
        offset = check_vector(offset, "offset", n=n)

    intercept = "(Intercept)" in design.columns
    if family is None:
        return fit_ols(X, y, weights, offset, control, backend, design.columns, intercept)
    return fit_glm(X, y, family, weights, offset, control, backend, design.columns, intercept)


__all__ = ["FitResult", "fit_ols", "fit_glm", "fit_model"]
