"""
Exception classes for pyformula.

Every error names the offending term or column so the caller can act on it.
"""

from typing import Any, Dict, List, Optional


class PyFormulaError(Exception):
    """
    Base exception for pyformula.

    Carries structured context and optional suggestions, which are
    appended to the message when the error is rendered.
    """

    def __init__(
        self,
        message: str,
        suggestions: Optional[List[str]] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.suggestions = suggestions or []
        self.context = context or {}
        super().__init__(message)

    def __str__(self) -> str:
        message = super().__str__()
        if self.suggestions:
            message += "\n\nSuggestions:"
            for i, suggestion in enumerate(self.suggestions, 1):
                message += f"\n  {i}. {suggestion}"
        return message


class FormulaSyntaxError(PyFormulaError, ValueError):
    """Malformed or unresolvable formula. Raised before any fit is attempted."""

    def __init__(
        self,
        message: str,
        formula: Optional[str] = None,
        position: Optional[int] = None,
        **kwargs,
    ):
        self.formula = formula
        self.position = position
        if formula is not None:
            message = f"{message} in formula '{formula}'"
            if position is not None:
                message += f"\n  {formula}\n  {' ' * position}^"
        context = kwargs.pop("context", {})
        context.update({"formula": formula, "position": position})
        super().__init__(message, context=context, **kwargs)


class UnknownColumnError(FormulaSyntaxError):
    """A formula references a column that is not in the bound schema."""

    def __init__(self, column: str, schema, formula: Optional[str] = None):
        self.column = column
        super().__init__(
            f"Unknown column '{column}'",
            formula=formula,
            suggestions=[
                f"Available columns: {', '.join(schema)}",
                "Check the spelling and case of the column name",
            ],
            context={"column": column},
        )


class UnseenLevelError(PyFormulaError, ValueError):
    """A categorical value was not among the levels frozen at fit time."""

    def __init__(self, column: str, levels, known_levels):
        self.column = column
        self.levels = list(levels)
        super().__init__(
            f"Column '{column}' has level(s) {self.levels} not seen at fit time "
            f"(known levels: {list(known_levels)})",
            suggestions=[
                "Pass unseen='zero' to encode unseen levels as an all-zero indicator row",
            ],
            context={"column": column, "levels": self.levels},
        )


class MissingDataError(PyFormulaError, ValueError):
    """Missing values were found under the 'fail' missing-data policy."""

    def __init__(self, columns, rows):
        self.columns = list(columns)
        self.rows = list(rows)
        shown = self.rows[:10]
        more = "" if len(self.rows) <= 10 else f" (and {len(self.rows) - 10} more)"
        super().__init__(
            f"Missing values in column(s) {self.columns} at row position(s) {shown}{more}",
            suggestions=[
                "Use missing='propagate' or missing='exclude' to return NaN for these rows",
            ],
            context={"columns": self.columns, "rows": self.rows},
        )


class DimensionMismatchError(PyFormulaError, ValueError):
    """New data lacks a column referenced by the formula."""

    def __init__(self, missing_columns, available_columns=None):
        self.missing_columns = list(missing_columns)
        suggestions = []
        if available_columns is not None:
            suggestions.append(f"Available columns: {', '.join(map(str, available_columns))}")
        super().__init__(
            f"Data is missing column(s) referenced by the formula: {self.missing_columns}",
            suggestions=suggestions,
            context={"missing_columns": self.missing_columns},
        )


class ColumnTypeError(PyFormulaError, TypeError):
    """A column has a type the term cannot use (e.g. log() of a categorical)."""

    def __init__(self, column: str, expected: str, term: Optional[str] = None):
        self.column = column
        where = f" in term '{term}'" if term else ""
        super().__init__(
            f"Column '{column}'{where} must be {expected}",
            context={"column": column, "term": term},
        )


class NonConvergenceError(PyFormulaError, RuntimeError):
    """IRLS exhausted its iteration cap without meeting the tolerance."""

    def __init__(self, iterations: int, coef, deviance: float, change: float):
        self.iterations = iterations
        self.coef = coef
        self.deviance = deviance
        self.change = change
        super().__init__(
            f"IRLS did not converge after {iterations} iterations "
            f"(last relative coefficient change {change:.3g}, deviance {deviance:.6g})",
            suggestions=[
                "Increase maxit in FitControl",
                "Check for complete separation in binomial fits",
            ],
            context={"iterations": iterations, "deviance": deviance, "change": change},
        )


class SingularFitError(PyFormulaError, RuntimeError):
    """The whole system is degenerate (rank 0 or no residual degrees of freedom)."""

    def __init__(self, rank: int, nobs: int, n_columns: int):
        self.rank = rank
        self.nobs = nobs
        self.n_columns = n_columns
        super().__init__(
            f"Singular fit: rank {rank} with {nobs} observations and {n_columns} columns "
            f"leaves {nobs - rank} residual degrees of freedom",
            context={"rank": rank, "nobs": nobs, "n_columns": n_columns},
        )


class NotNestedError(PyFormulaError, ValueError):
    """The reduced model's terms are not a subset of the full model's terms."""

    def __init__(self, extra_terms):
        self.extra_terms = list(extra_terms)
        super().__init__(
            f"Models are not nested: term(s) {self.extra_terms} of the reduced model "
            f"are not in the full model",
            context={"extra_terms": self.extra_terms},
        )


class MismatchedDataError(PyFormulaError, ValueError):
    """Two models were not fit on the same observation set."""


class GroupedFitError(PyFormulaError, RuntimeError):
    """One or more groups of a grouped fit failed."""

    def __init__(self, errors):
        self.errors = dict(errors)
        shown = "; ".join(f"{key!r}: {err}" for key, err in list(self.errors.items())[:5])
        super().__init__(
            f"{len(self.errors)} group(s) failed to fit: {shown}",
            context={"groups": list(self.errors)},
        )


class RankDeficiencyWarning(UserWarning):
    """Design matrix columns are linearly dependent; the rightmost ones were aliased."""


__all__ = [
    "PyFormulaError",
    "FormulaSyntaxError",
    "UnknownColumnError",
    "UnseenLevelError",
    "MissingDataError",
    "DimensionMismatchError",
    "ColumnTypeError",
    "NonConvergenceError",
    "SingularFitError",
    "NotNestedError",
    "MismatchedDataError",
    "GroupedFitError",
    "RankDeficiencyWarning",
]
