"""
Design matrix construction.

``DesignMatrixBuilder.fit`` learns everything data-dependent (factor levels
and references, stateful transform parameters) once and freezes it in a
``DesignInfo``. ``DesignInfo.build`` replays that recipe on any table with
the referenced columns, so fit-time and prediction-time matrices have the
same columns in the same order.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from .encoding import CategoricalEncoder, Factor, is_categorical
from .qr import detect_aliased_columns
from .transforms import get_transform
from ..config import UnseenPolicy
from ..exceptions import ColumnTypeError, DimensionMismatchError, FormulaSyntaxError
from ..formula import Formula, Identity, MainEffect, Term, Transformed, build_formula
from .._logging import get_logger


logger = get_logger(__name__)

INTERCEPT = "(Intercept)"


def as_frame(data) -> pd.DataFrame:
    """Accept a DataFrame or a mapping of column name to values."""
    if isinstance(data, pd.DataFrame):
        return data
    if isinstance(data, Mapping):
        return pd.DataFrame(dict(data))
    raise TypeError(
        f"data must be a pandas DataFrame or a mapping of columns, got {type(data).__name__}"
    )


def state_key(term: Transformed) -> str:
    """Key of a transform's fitted state; equal for equal terms."""
    args = ", ".join(f"{k}={v!r}" for k, v in term.arguments)
    return f"{term.function}({term.expression.text}; {args})"


@dataclass(frozen=True)
class DesignMatrix:
    """
    Named numeric columns, row-aligned with the source table.

    Attributes
    ----------
    values : ndarray, shape (n, p)
        Read-only design values; NaN marks rows with missing inputs
    columns : tuple of str
        Column names in design order
    index : pandas.Index
        Row labels of the source table
    term_slices : dict
        Term label (or '(Intercept)') -> slice of columns
    aliased : tuple of str
        Columns linearly dependent on columns to their left
    """
    values: np.ndarray
    columns: Tuple[str, ...]
    index: pd.Index
    term_slices: Dict[str, slice]
    aliased: Tuple[str, ...] = ()

    @property
    def shape(self) -> Tuple[int, int]:
        return self.values.shape

    @property
    def rank(self) -> int:
        return len(self.columns) - len(self.aliased)

    def __len__(self) -> int:
        return self.values.shape[0]

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self.values, columns=list(self.columns), index=self.index)


class _Evaluator:
    """Computes term blocks for one table under a fixed set of factors and states."""

    def __init__(self, frame, factors, states, unseen):
        self.frame = frame
        self.factors = factors
        self.states = states
        self.unseen = unseen
        self.n = len(frame)
        self._numeric_cache: Dict[str, np.ndarray] = {}

    def numeric(self, variable: str, term: Term) -> np.ndarray:
        if variable in self.factors:
            raise ColumnTypeError(variable, "numeric", term=term.label)
        if variable not in self._numeric_cache:
            series = self.frame[variable]
            if is_categorical(series):
                try:
                    series = pd.to_numeric(series, errors="raise")
                except (ValueError, TypeError) as e:
                    raise ColumnTypeError(variable, "numeric", term=term.label) from e
            self._numeric_cache[variable] = series.to_numpy(dtype=np.float64, na_value=np.nan)
        return self._numeric_cache[variable]

    def expression(self, term: Union[Identity, Transformed]) -> np.ndarray:
        env = {v: self.numeric(v, term) for v in term.expression.variables}
        value = term.expression.evaluate(env)
        return np.broadcast_to(value, (self.n,)).astype(np.float64)

    def block(self, term: Term) -> Tuple[List[str], np.ndarray]:
        """Names and values of a single-factor term."""
        if isinstance(term, MainEffect):
            factor = self.factors.get(term.variable)
            if factor is not None:
                values = factor.encode(self.frame[term.variable], unseen=self.unseen)
                return list(factor.column_names), values
            return [term.variable], self.numeric(term.variable, term)[:, np.newaxis]

        if isinstance(term, Identity):
            return [term.label], self.expression(term)[:, np.newaxis]

        if isinstance(term, Transformed):
            transform = get_transform(term.function)
            x = self.expression(term)
            values = transform.apply(x, term.argument_dict, self.states.get(state_key(term), {}))
            return transform.column_names(term.label, values.shape[1]), values

        raise TypeError(f"Not a single-factor term: {term!r}")

    def term(self, term: Term) -> Tuple[List[str], np.ndarray]:
        names, values = self.block(term.components[0])
        for component in term.components[1:]:
            other_names, other = self.block(component)
            # first factor varies fastest, as in R's model.matrix
            names = [f"{a}:{b}" for b in other_names for a in names]
            values = (values[:, :, np.newaxis] * other[:, np.newaxis, :]).reshape(self.n, -1, order="F")

        missing = np.zeros(self.n, dtype=bool)
        for v in term.variables:
            missing |= self.frame[v].isna().to_numpy()
        if missing.any():
            values = np.array(values, dtype=np.float64)
            values[missing] = np.nan
        return names, values


def _assemble(formula: Formula, evaluator: _Evaluator):
    names: List[str] = []
    blocks: List[np.ndarray] = []
    slices: Dict[str, slice] = {}

    if formula.intercept:
        names.append(INTERCEPT)
        blocks.append(np.ones((evaluator.n, 1)))
        slices[INTERCEPT] = slice(0, 1)

    for term in formula.terms:
        term_names, values = evaluator.term(term)
        slices[term.label] = slice(len(names), len(names) + len(term_names))
        names.extend(term_names)
        blocks.append(np.asarray(values, dtype=np.float64).reshape(evaluator.n, len(term_names)))

    seen = set()
    for name in names:
        if name in seen:
            raise FormulaSyntaxError(
                f"Design column '{name}' is produced by more than one term",
                formula=formula.text,
                suggestions=["Rename the column or the factor level that collides"],
            )
        seen.add(name)

    values = np.hstack(blocks) if blocks else np.empty((evaluator.n, 0))
    return names, slices, values


def _check_columns(frame: pd.DataFrame, variables: Sequence[str]) -> None:
    missing = [v for v in variables if v not in frame.columns]
    if missing:
        raise DimensionMismatchError(missing, available_columns=list(frame.columns))


@dataclass(frozen=True)
class DesignInfo:
    """
    Frozen recipe for building a design matrix.

    Attributes
    ----------
    formula : Formula
        The expanded formula
    factors : dict
        Variable name -> Factor for every categorical variable
    numeric : tuple of str
        Variables treated as numeric
    transform_states : dict
        Fitted parameters of stateful transforms
    column_names : tuple of str
        Design columns in order
    term_slices : dict
        Term label -> slice of ``column_names``
    """
    formula: Formula
    factors: Dict[str, Factor]
    numeric: Tuple[str, ...]
    transform_states: Dict[str, Dict[str, Any]]
    column_names: Tuple[str, ...]
    term_slices: Dict[str, slice] = field(default_factory=dict)

    @property
    def variables(self) -> Tuple[str, ...]:
        return self.formula.variables

    @property
    def intercept(self) -> bool:
        return self.formula.intercept

    def missing_mask(self, data) -> np.ndarray:
        """Rows with a missing value in any referenced variable."""
        frame = as_frame(data)
        _check_columns(frame, self.variables)
        mask = np.zeros(len(frame), dtype=bool)
        for v in self.variables:
            mask |= frame[v].isna().to_numpy()
        return mask

    def check_levels(self, data) -> None:
        """Raise UnseenLevelError if a categorical column holds a level outside its frozen set."""
        frame = as_frame(data)
        _check_columns(frame, self.variables)
        for name, factor in self.factors.items():
            factor.encode(frame[name], unseen="error")

    def build(self, data, unseen: str = "error") -> DesignMatrix:
        """
        Replay the recipe on a table.

        Rows with missing inputs come out as NaN rows; they are never
        dropped here.
        """
        frame = as_frame(data)
        _check_columns(frame, self.variables)
        evaluator = _Evaluator(frame, self.factors, self.transform_states, UnseenPolicy(unseen))
        names, slices, values = _assemble(self.formula, evaluator)
        values.setflags(write=False)
        return DesignMatrix(values=values, columns=self.column_names, index=frame.index, term_slices=slices)

    def to_dict(self) -> dict:
        return {
            "formula": self.formula.text,
            "schema": list(self.formula.schema),
            "factors": [f.to_dict() for f in self.factors.values()],
            "numeric": list(self.numeric),
            "transform_states": self.transform_states,
            "column_names": list(self.column_names),
            "term_slices": {k: [s.start, s.stop] for k, s in self.term_slices.items()},
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "DesignInfo":
        formula = build_formula(payload["formula"], payload["schema"])
        factors = {f["name"]: Factor.from_dict(f) for f in payload["factors"]}
        return cls(
            formula=formula,
            factors=factors,
            numeric=tuple(payload["numeric"]),
            transform_states={k: dict(v) for k, v in payload["transform_states"].items()},
            column_names=tuple(payload["column_names"]),
            term_slices={k: slice(*v) for k, v in payload["term_slices"].items()},
        )


class DesignMatrixBuilder:
    """
    Learn a DesignInfo from fit-time data.

    Parameters
    ----------
    formula : Formula or str
        An expanded formula, or formula text bound to the data's columns
        at fit time
    levels : dict, optional
        Variable -> explicit level order. Listing a numeric variable here
        makes it categorical.
    reference : dict, optional
        Variable -> reference level (default: first level)
    tol : float
        Tolerance of the rank-deficiency check

    Examples
    --------
    >>> builder = DesignMatrixBuilder("rate ~ temp + species", reference={"species": "ex"})
    >>> design = builder.fit_transform(crickets)
    >>> design.columns
    ('(Intercept)', 'temp', 'species[niv]')
    """

    def __init__(
        self,
        formula: Union[Formula, str],
        levels: Optional[Dict[str, Sequence[Any]]] = None,
        reference: Optional[Dict[str, Any]] = None,
        tol: float = 1e-7,
    ):
        self.formula = formula
        self.levels = dict(levels or {})
        self.reference = dict(reference or {})
        self.tol = tol
        self.design_info_: Optional[DesignInfo] = None

    def fit(self, data) -> DesignInfo:
        """Learn factors and transform states; return the frozen DesignInfo."""
        self._fit(data)
        return self.design_info_

    def fit_transform(self, data) -> DesignMatrix:
        """Fit, build the fit-time design and check it for rank deficiency."""
        frame, names, slices, values = self._fit(data)

        complete = np.all(np.isfinite(values), axis=1)
        aliased_mask = detect_aliased_columns(values[complete], tol=self.tol)
        aliased = tuple(n for n, a in zip(names, aliased_mask) if a)
        if aliased:
            logger.warning(
                "Design matrix is rank deficient",
                formula=self.design_info_.formula.text,
                aliased=list(aliased),
            )

        values.setflags(write=False)
        return DesignMatrix(
            values=values,
            columns=tuple(names),
            index=frame.index,
            term_slices=slices,
            aliased=aliased,
        )

    def _fit(self, data):
        frame = as_frame(data)
        formula = self.formula
        if isinstance(formula, str):
            formula = build_formula(formula, [str(c) for c in frame.columns])
        _check_columns(frame, formula.variables)

        unknown = [v for v in list(self.levels) + list(self.reference) if v not in formula.variables]
        if unknown:
            raise DimensionMismatchError(sorted(set(unknown)), available_columns=list(formula.variables))

        factors: Dict[str, Factor] = {}
        numeric: List[str] = []
        for v in formula.variables:
            if v in self.levels or v in self.reference or is_categorical(frame[v]):
                encoder = CategoricalEncoder()
                factors[v] = encoder.fit(
                    frame[v], levels=self.levels.get(v), reference=self.reference.get(v), name=v
                )
            else:
                numeric.append(v)

        evaluator = _Evaluator(frame, factors, {}, UnseenPolicy.ERROR)
        states: Dict[str, Dict[str, Any]] = {}
        for term in formula.terms:
            for component in term.components:
                if isinstance(component, Transformed):
                    transform = get_transform(component.function)
                    key = state_key(component)
                    if transform.stateful and key not in states:
                        x = evaluator.expression(component)
                        states[key] = transform.fit(x, component.argument_dict)
        evaluator.states = states

        names, slices, values = _assemble(formula, evaluator)
        self.design_info_ = DesignInfo(
            formula=formula,
            factors=factors,
            numeric=tuple(numeric),
            transform_states=states,
            column_names=tuple(names),
            term_slices=slices,
        )
        logger.debug(
            "Fitted design",
            formula=formula.text,
            columns=len(names),
            factors=list(factors),
            transforms=len(states),
        )
        return frame, names, slices, values


__all__ = [
    "INTERCEPT",
    "DesignMatrix",
    "DesignInfo",
    "DesignMatrixBuilder",
    "as_frame",
]
