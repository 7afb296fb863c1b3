"""
Fit one independent model per group of a dataset.

Each group gets its own design (levels and transform states are frozen per
group). Models are read-only, so fitting in threads is safe; process pools
pickle the group frame and the returned model.
"""

from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple, Union

import pandas as pd

from ._core.design import as_frame
from .exceptions import GroupedFitError, PyFormulaError
from .model import FittedModel, ModelKind, fit_formula
from ._logging import get_logger


logger = get_logger(__name__)

EXECUTORS = {
    "thread": ThreadPoolExecutor,
    "process": ProcessPoolExecutor,
}


@dataclass
class GroupedFit:
    """
    Models fit per group, in group order.

    Attributes
    ----------
    models : dict
        Group key -> FittedModel for groups that fit
    errors : dict
        Group key -> exception for groups that failed
    """
    models: Dict[Any, FittedModel] = field(default_factory=dict)
    errors: Dict[Any, Exception] = field(default_factory=dict)

    def __getitem__(self, key) -> FittedModel:
        return self.models[key]

    def __len__(self) -> int:
        return len(self.models)

    def __iter__(self) -> Iterator[Tuple[Any, FittedModel]]:
        return iter(self.models.items())

    @property
    def keys(self) -> List[Any]:
        return list(self.models)

    def coefficients(self) -> pd.DataFrame:
        """One row of coefficients per fitted group (NaN where a group lacks a column)."""
        rows = {key: model.coef for key, model in self.models.items()}
        if not rows:
            return pd.DataFrame()
        frame = pd.DataFrame(rows).T
        if all(isinstance(k, tuple) for k in rows):
            frame.index = pd.MultiIndex.from_tuples(list(rows))
        return frame


def _fit_group(kind, formula, frame, family, kwargs, portable_errors):
    """Worker: fit one group. Errors are returned, not raised."""
    try:
        return fit_formula(kind, formula, frame, family=family, **kwargs), None
    except Exception as e:
        if portable_errors:
            # custom exception signatures do not survive pickling
            return None, PyFormulaError(str(e), context={"error_type": type(e).__name__})
        return None, e


def fit_grouped(
    formula: str,
    data,
    by: Union[str, Sequence[str]],
    family=None,
    max_workers: Optional[int] = None,
    executor: str = "thread",
    raise_on_error: bool = False,
    **kwargs,
) -> GroupedFit:
    """
    Fit ``formula`` separately within each group of ``data``.

    Parameters
    ----------
    formula : str
        Model formula
    data : DataFrame
        Full dataset
    by : str or list of str
        Grouping column(s)
    family : str or Family, optional
        None fits ``lm``; otherwise ``glm`` with this family
    max_workers : int, optional
        Pool size (default: the executor's own default)
    executor : {'thread', 'process'}
        Pool type
    raise_on_error : bool
        Raise GroupedFitError after all groups finish if any failed
    **kwargs
        Passed to the fit (weights, levels, reference, control, ...)

    Returns
    -------
    GroupedFit

    Examples
    --------
    >>> fits = fit_grouped("rate ~ temp", crickets, by="species")
    >>> fits.coefficients()
    """
    if executor not in EXECUTORS:
        raise ValueError(f"executor must be one of {list(EXECUTORS)}, got {executor!r}")
    frame = as_frame(data)
    by_columns = [by] if isinstance(by, str) else list(by)
    missing = [c for c in by_columns if c not in frame.columns]
    if missing:
        raise KeyError(f"Grouping column(s) not found: {missing}")

    unkeyed = frame[by_columns].isna().any(axis=1)
    if unkeyed.any():
        logger.info("Excluding rows with a missing group key", rows=int(unkeyed.sum()), columns=by_columns)

    kind = ModelKind.LM if family is None else ModelKind.GLM
    key_arg = by if isinstance(by, str) else by_columns
    groups = [(key, group) for key, group in frame.groupby(key_arg, sort=True, observed=True)]
    portable = executor == "process"

    logger.info(f"Fitting {len(groups)} groups", formula=str(formula), executor=executor)

    outcomes: Dict[Any, Tuple[Optional[FittedModel], Optional[Exception]]] = {}
    with EXECUTORS[executor](max_workers=max_workers) as pool:
        future_to_key = {
            pool.submit(_fit_group, kind, formula, group, family, kwargs, portable): key
            for key, group in groups
        }
        for future in as_completed(future_to_key):
            key = future_to_key[future]
            model, error = future.result()
            outcomes[key] = (model, error)
            if error is None:
                logger.info("Group fitted", group=key, nobs=model.nobs, rank=model.rank)
            else:
                logger.warning("Group failed", group=key, error=str(error))

    result = GroupedFit()
    for key, _ in groups:
        model, error = outcomes[key]
        if error is None:
            result.models[key] = model
        else:
            result.errors[key] = error

    if result.errors and raise_on_error:
        raise GroupedFitError(result.errors)
    return result


__all__ = ["GroupedFit", "fit_grouped"]
