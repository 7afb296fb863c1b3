"""
Generalized linear model API.

Main user-facing interface for GLMs.
"""

from typing import Any, Dict, Optional, Sequence, Union

from ._core.families import Family
from .config import FitControl
from .formula import Formula
from .model import FittedModel, ModelKind, fit_formula


def glm(
    formula: Union[str, Formula],
    data,
    family: Union[str, Family] = "gaussian",
    weights=None,
    offset=None,
    levels: Optional[Dict[str, Sequence[Any]]] = None,
    reference: Optional[Dict[str, Any]] = None,
    missing: Optional[str] = None,
    control: Optional[FitControl] = None,
    backend: Optional[str] = None,
) -> FittedModel:
    """
    Fit a generalized linear model by IRLS (like R's glm()).

    Parameters
    ----------
    formula : str or Formula
        Model formula
    data : DataFrame or mapping of columns
        Dataset
    family : str or Family
        'gaussian' (identity link), 'binomial' (logit) or 'poisson' (log)
    weights, offset : str or array, optional
        Prior weights and offset (column name or values). For binomial
        fits with a proportion response the weights are the trial counts.
    levels, reference : dict, optional
        Level order and reference level of categorical variables. A
        two-level categorical response takes its level order from
        ``levels`` too; the second level is the "success".
    missing : {'exclude', 'fail'}, optional
        Fit-time missing-data handling
    control : FitControl, optional
        ``maxit``, ``epsilon`` and rank ``tol``
    backend : str, optional
        Computational backend

    Returns
    -------
    FittedModel

    Raises
    ------
    NonConvergenceError
        IRLS hit ``control.maxit`` without converging
    SingularFitError
        No residual degrees of freedom

    Examples
    --------
    >>> model = glm("survived ~ age + sex", data=passengers, family="binomial")
    >>> model.summarize()
    """
    return fit_formula(
        ModelKind.GLM,
        formula,
        data,
        family=family,
        weights=weights,
        offset=offset,
        levels=levels,
        reference=reference,
        missing=missing,
        control=control,
        backend=backend,
    )
