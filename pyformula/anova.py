"""
Nested model comparison (R's anova(reduced, full)).
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np
import pandas as pd
from scipy import stats

from .exceptions import MismatchedDataError, NotNestedError
from .model import FittedModel, ModelKind
from ._logging import get_logger


logger = get_logger(__name__)

TESTS = ("F", "Chisq")


@dataclass(frozen=True)
class ComparisonResult:
    """
    Outcome of comparing a reduced model against a full model.

    Attributes
    ----------
    test : str
        'F' or 'Chisq'
    df_residual : tuple of int
        Residual degrees of freedom (reduced, full)
    deviance : tuple of float
        RSS for lm fits, deviance for glm fits (reduced, full)
    df : int
        Difference in residual degrees of freedom
    deviance_change : float
        Reduction in RSS or deviance
    statistic : float
        F statistic, or the scaled deviance change for 'Chisq'
    p_value : float
        Upper tail probability of ``statistic``
    dispersion : float
        Dispersion used to scale the change (from the full model)
    """
    test: str
    df_residual: tuple
    deviance: tuple
    df: int
    deviance_change: float
    statistic: float
    p_value: float
    dispersion: float
    kind: ModelKind = ModelKind.LM

    def to_frame(self) -> pd.DataFrame:
        """R-style anova table with one row per model."""
        lm = self.kind == ModelKind.LM
        dev_label, change_label = ("RSS", "Sum of Sq") if lm else ("Resid. Dev", "Deviance")
        stat_label, p_label = ("F", "Pr(>F)") if self.test == "F" else ("Chisq", "Pr(>Chi)")
        columns = {
            "Res.Df": list(self.df_residual),
            dev_label: list(self.deviance),
            "Df": [np.nan, self.df],
            change_label: [np.nan, self.deviance_change],
        }
        if self.test == "F":
            columns[stat_label] = [np.nan, self.statistic]
        columns[p_label] = [np.nan, self.p_value]
        return pd.DataFrame(columns, index=[1, 2])

    def __str__(self):
        return f"Analysis of Deviance Table\n\n{self.to_frame().to_string()}"


class ModelComparer:
    """
    Compare two nested fitted models.

    Parameters
    ----------
    test : {'F', 'Chisq'}
        'F' divides the change per degree of freedom by the full model's
        dispersion; 'Chisq' refers the scaled deviance change to a chi-square
        distribution and is meant for families with known dispersion
    """

    def __init__(self, test: str = "F"):
        if test not in TESTS:
            raise ValueError(f"test must be one of {TESTS}, got {test!r}")
        self.test = test

    def check(self, reduced: FittedModel, full: FittedModel) -> None:
        """Raise if the two models cannot be compared."""
        if reduced.kind != full.kind or reduced.family != full.family:
            raise MismatchedDataError(
                f"Cannot compare a {reduced.kind.value}/{reduced.family} fit with a "
                f"{full.kind.value}/{full.family} fit",
                context={"reduced": reduced.family, "full": full.family},
            )
        if reduced.nobs != full.nobs or reduced.response != full.response:
            raise MismatchedDataError(
                "Models were not fit to the same observations",
                suggestions=[
                    "Fit both models on the same rows (drop missing values beforehand)",
                    "Use the same response column in both formulas",
                ],
                context={
                    "nobs": (reduced.nobs, full.nobs),
                    "response": (reduced.response, full.response),
                },
            )
        if not full.formula.contains(reduced.formula):
            full_terms = set(full.formula.terms)
            extra = [t.label for t in reduced.formula.terms if t not in full_terms]
            if reduced.formula.intercept and not full.formula.intercept:
                extra.insert(0, "(Intercept)")
            raise NotNestedError(extra)

    def compare(self, reduced: FittedModel, full: FittedModel) -> ComparisonResult:
        self.check(reduced, full)

        df = int(reduced.df_residual - full.df_residual)
        change = float(reduced.deviance - full.deviance)
        # RSS / df for lm; the family dispersion for glm
        dispersion = full.dispersion

        if df == 0:
            # identical column spaces
            statistic, p_value = 0.0, 1.0
        elif self.test == "F":
            statistic = (change / df) / dispersion
            p_value = float(stats.f.sf(statistic, df, full.df_residual))
        else:
            statistic = change / dispersion
            p_value = float(stats.chi2.sf(statistic, df))

        logger.debug("Model comparison", test=self.test, df=df, statistic=statistic, p_value=p_value)
        return ComparisonResult(
            test=self.test,
            df_residual=(int(reduced.df_residual), int(full.df_residual)),
            deviance=(float(reduced.deviance), float(full.deviance)),
            df=df,
            deviance_change=change,
            statistic=float(statistic),
            p_value=p_value,
            dispersion=float(dispersion),
            kind=full.kind,
        )


def anova(reduced: FittedModel, full: FittedModel, test: Optional[str] = "F") -> ComparisonResult:
    """
    Nested model comparison.

    Parameters
    ----------
    reduced : FittedModel
        Model whose terms are a subset of ``full``'s
    full : FittedModel
        Larger model, fit to the same observations
    test : {'F', 'Chisq'}
        Test statistic

    Returns
    -------
    ComparisonResult

    Raises
    ------
    MismatchedDataError
        Different observation counts, responses, or model families
    NotNestedError
        ``reduced`` has a term (or intercept) that ``full`` lacks

    Examples
    --------
    >>> small = lm("rate ~ temp", crickets)
    >>> big = lm("rate ~ temp + species", crickets)
    >>> anova(small, big).p_value < 0.05
    True
    """
    return ModelComparer(test=test).compare(reduced, full)


__all__ = ["ComparisonResult", "ModelComparer", "anova"]
