"""
Categorical encoding.

A ``Factor`` freezes a categorical column's level set and reference level
at fit time. Encoding emits one indicator column per non-reference level,
always from the frozen levels, never from the data being encoded.
"""

from dataclasses import dataclass
from typing import Any, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from pandas.api import types as ptypes

from ..config import UnseenPolicy
from ..exceptions import UnseenLevelError


def is_categorical(values) -> bool:
    """True for object, string, categorical and boolean columns."""
    dtype = getattr(values, "dtype", None)
    if dtype is None:
        values = pd.Series(values)
        dtype = values.dtype
    return (
        isinstance(dtype, pd.CategoricalDtype)
        or ptypes.is_object_dtype(dtype)
        or ptypes.is_string_dtype(dtype)
        or ptypes.is_bool_dtype(dtype)
    )


def _python_scalar(value: Any) -> Any:
    return value.item() if isinstance(value, np.generic) else value


@dataclass(frozen=True)
class Factor:
    """
    Frozen metadata of a categorical column.

    Attributes
    ----------
    name : str
        Column name
    levels : tuple
        Distinct levels in encoding order
    reference : Any
        Level omitted from the encoding
    """
    name: str
    levels: Tuple[Any, ...]
    reference: Any

    def __post_init__(self):
        if len(set(self.levels)) != len(self.levels):
            raise ValueError(f"Levels of '{self.name}' must be distinct: {list(self.levels)}")
        if self.levels and self.reference not in self.levels:
            raise ValueError(
                f"Reference level {self.reference!r} is not a level of '{self.name}' "
                f"(levels: {list(self.levels)})"
            )

    @property
    def indicator_levels(self) -> Tuple[Any, ...]:
        return tuple(lvl for lvl in self.levels if lvl != self.reference)

    @property
    def column_names(self) -> Tuple[str, ...]:
        return tuple(f"{self.name}[{lvl}]" for lvl in self.indicator_levels)

    def encode(self, values, unseen: str = "error") -> np.ndarray:
        """
        Encode values into an (n, k - 1) indicator array.

        Missing values give a NaN row. Levels outside the frozen set raise
        UnseenLevelError unless ``unseen='zero'``, which gives a zero row.
        """
        unseen = UnseenPolicy(unseen)
        values = pd.Series(np.asarray(values, dtype=object))
        missing = values.isna().to_numpy()

        codes = pd.Index(list(self.levels), dtype=object).get_indexer(values)
        unknown = (codes == -1) & ~missing
        if unknown.any() and unseen == UnseenPolicy.ERROR:
            new_levels = [_python_scalar(v) for v in pd.unique(values[unknown])]
            raise UnseenLevelError(self.name, new_levels, self.levels)

        indicators = np.zeros((len(values), len(self.levels) - 1 if self.levels else 0))
        for j, level in enumerate(self.indicator_levels):
            indicators[:, j] = codes == self.levels.index(level)
        indicators[missing] = np.nan
        return indicators

    __call__ = encode

    def to_dict(self) -> dict:
        return {"name": self.name, "levels": list(self.levels), "reference": self.reference}

    @classmethod
    def from_dict(cls, payload: dict) -> "Factor":
        return cls(payload["name"], tuple(payload["levels"]), payload["reference"])


class CategoricalEncoder:
    """
    Fit and apply an indicator encoding for one categorical column.

    Parameters
    ----------
    unseen : {'error', 'zero'}
        What ``apply`` does with a level not seen at fit time. 'zero' must
        be chosen explicitly; it encodes such values as an all-zero row.

    Examples
    --------
    >>> encoder = CategoricalEncoder()
    >>> factor = encoder.fit(pd.Series(["a", "b", "a"], name="g"))
    >>> encoder.apply(pd.Series(["b", "a"])).columns.tolist()
    ['g[b]']
    """

    def __init__(self, unseen: str = "error"):
        self.unseen = UnseenPolicy(unseen).value
        self.factor_: Optional[Factor] = None

    def fit(
        self,
        column,
        levels: Optional[Sequence[Any]] = None,
        reference: Any = None,
        name: Optional[str] = None,
    ) -> Factor:
        """
        Record the level set and reference level.

        Levels are taken, in order of preference, from ``levels``, from the
        declared categories of a pandas Categorical (unused ones dropped), or
        from the order of first appearance. The reference defaults to the
        first level.
        """
        series = column if isinstance(column, pd.Series) else pd.Series(column)
        name = name if name is not None else str(series.name)
        observed = series[series.notna()]

        if levels is not None:
            found = list(levels)
            unknown = [_python_scalar(v) for v in pd.unique(observed) if v not in set(found)]
            if unknown:
                raise UnseenLevelError(name, unknown, found)
        elif isinstance(series.dtype, pd.CategoricalDtype):
            present = set(observed.unique())
            found = [c for c in series.cat.categories if c in present]
        else:
            found = list(pd.unique(observed))

        found = tuple(_python_scalar(v) for v in found)
        if not found:
            raise ValueError(f"Categorical column '{name}' has no observed levels")
        if reference is None:
            reference = found[0]

        self.factor_ = Factor(name=name, levels=found, reference=_python_scalar(reference))
        return self.factor_

    def apply(self, column) -> pd.DataFrame:
        """Emit the k - 1 named indicator columns for ``column``."""
        if self.factor_ is None:
            raise RuntimeError("CategoricalEncoder.apply() called before fit()")
        index = column.index if isinstance(column, pd.Series) else None
        values = self.factor_.encode(column, unseen=self.unseen)
        return pd.DataFrame(values, columns=list(self.factor_.column_names), index=index)


__all__ = ["Factor", "CategoricalEncoder", "is_categorical"]
