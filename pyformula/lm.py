"""
Linear regression with R-style formula interface and output.

This is the user-facing API that statisticians actually use.
"""

from typing import Any, Dict, Optional, Sequence, Union

from .config import FitControl
from .formula import Formula
from .model import FittedModel, ModelKind, fit_formula


def lm(
    formula: Union[str, Formula],
    data,
    weights=None,
    offset=None,
    levels: Optional[Dict[str, Sequence[Any]]] = None,
    reference: Optional[Dict[str, Any]] = None,
    missing: Optional[str] = None,
    control: Optional[FitControl] = None,
    backend: Optional[str] = None,
) -> FittedModel:
    """
    Fit linear regression model (like R's lm()).

    Parameters
    ----------
    formula : str or Formula
        Model formula, e.g. ``"rate ~ temp + species"``
    data : DataFrame or mapping of columns
        Dataset containing every column the formula references
    weights : str or array, optional
        Observation weights (column name or values)
    offset : str or array, optional
        Offset term (column name or values)
    levels : dict, optional
        Variable -> level order for categorical variables
    reference : dict, optional
        Variable -> reference level (default: first level)
    missing : {'exclude', 'fail'}, optional
        Rows with missing values are dropped (default) or raise
        MissingDataError
    control : FitControl, optional
        Rank tolerance (default from configuration)
    backend : str, optional
        Computational backend: 'auto', 'cpu', 'pytorch'

    Returns
    -------
    FittedModel
        Fitted model object

    Examples
    --------
    >>> model = lm("rate ~ temp + species", data=crickets,
    ...            reference={"species": "exclamationis"})
    >>> model.coef
    >>> model.summary()
    >>> model.predict(new_crickets)
    """
    return fit_formula(
        ModelKind.LM,
        formula,
        data,
        weights=weights,
        offset=offset,
        levels=levels,
        reference=reference,
        missing=missing,
        control=control,
        backend=backend,
    )
