"""
Fitted model artifact and the shared formula fitting pipeline.

A ``FittedModel`` holds only what ``fit`` computed: coefficients, residual
degrees of freedom, dispersion, deviances and the unscaled coefficient
covariance, plus the frozen ``DesignInfo``. Standard errors, test
statistics and p-values are derived on demand by ``summarize``.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from scipy import stats

from ._core.design import DesignInfo, DesignMatrixBuilder, as_frame
from ._core.encoding import CategoricalEncoder, is_categorical
from ._core.families import Family, get_family
from ._core.fitter import fit_model
from .config import FitControl, MissingPolicy, get_config
from .exceptions import ColumnTypeError, DimensionMismatchError, MissingDataError
from .formula import Formula, build_formula
from ._logging import get_logger


logger = get_logger(__name__)

PAYLOAD_VERSION = 1


class ModelKind(str, Enum):
    """Fit family variants."""
    LM = "lm"
    GLM = "glm"


def _readonly(array: Optional[np.ndarray], dtype=np.float64) -> Optional[np.ndarray]:
    if array is None:
        return None
    out = np.array(array, dtype=dtype)
    out.setflags(write=False)
    return out


def _jsonable(array: np.ndarray) -> list:
    """NaN becomes None so the payload is strict JSON."""
    return np.where(np.isnan(array), None, array).tolist()


@dataclass(frozen=True, eq=False)
class FittedModel:
    """
    Result of ``lm`` or ``glm``.

    Read-only: arrays are not writeable and the dataclass is frozen, so a
    model can be shared across threads.

    Attributes
    ----------
    kind : ModelKind
        'lm' or 'glm'
    family : str
        'gaussian', 'binomial' or 'poisson'
    design_info : DesignInfo
        Frozen build recipe (formula, factor levels, transform states)
    coefficient_names : tuple of str
        Design column names
    coefficients : ndarray
        Estimates, NaN for aliased columns
    aliased : ndarray of bool
        True where the column was linearly dependent on earlier columns
    df_residual : int
        Residual degrees of freedom
    sigma : float
        Residual standard error (square root of the dispersion)
    deviance : float
        Residual sum of squares for lm, deviance for glm
    null_deviance : float
        Deviance of the intercept-only (or empty) model
    nobs : int
        Observations used in the fit
    rank : int
        Rank of the design
    cov_unscaled : ndarray
        (X'WX)^-1, NaN rows and columns for aliased coefficients
    response_levels : tuple, optional
        Outcome levels of a binomial fit (failure first)
    converged : bool
        IRLS convergence flag (always True for lm)
    iterations : int
        IRLS iterations (0 for lm)
    aic : float
        Akaike information criterion
    residuals, fitted_values : ndarray, optional
        Fit-time residuals and fitted values (not persisted)
    """
    kind: ModelKind
    family: str
    design_info: DesignInfo
    coefficient_names: Tuple[str, ...]
    coefficients: np.ndarray
    aliased: np.ndarray
    df_residual: int
    sigma: float
    deviance: float
    null_deviance: float
    nobs: int
    rank: int
    cov_unscaled: np.ndarray
    response_levels: Optional[Tuple[Any, ...]] = None
    converged: bool = True
    iterations: int = 0
    aic: float = np.nan
    residuals: Optional[np.ndarray] = field(default=None, repr=False)
    fitted_values: Optional[np.ndarray] = field(default=None, repr=False)

    def __post_init__(self):
        object.__setattr__(self, "kind", ModelKind(self.kind))
        object.__setattr__(self, "coefficients", _readonly(self.coefficients))
        object.__setattr__(self, "aliased", _readonly(self.aliased, dtype=bool))
        object.__setattr__(self, "cov_unscaled", _readonly(self.cov_unscaled))
        object.__setattr__(self, "residuals", _readonly(self.residuals))
        object.__setattr__(self, "fitted_values", _readonly(self.fitted_values))

    # ------------------------------------------------------------------
    # Basic accessors
    # ------------------------------------------------------------------

    @property
    def formula(self) -> Formula:
        return self.design_info.formula

    @property
    def response(self) -> str:
        return self.formula.response

    @property
    def family_object(self) -> Family:
        return get_family(self.family)

    @property
    def coef(self) -> pd.Series:
        """Named coefficients (pandas Series)."""
        return pd.Series(self.coefficients, index=list(self.coefficient_names), name="Estimate")

    @property
    def dispersion(self) -> float:
        return self.sigma ** 2

    @property
    def t_based(self) -> bool:
        """Whether inference uses the t distribution (estimated dispersion)."""
        return self.kind == ModelKind.LM or not self.family_object.dispersion_known

    def vcov(self) -> pd.DataFrame:
        """Variance-covariance matrix of the coefficients."""
        names = list(self.coefficient_names)
        return pd.DataFrame(self.dispersion * self.cov_unscaled, index=names, columns=names)

    # ------------------------------------------------------------------
    # Summaries (derived on demand)
    # ------------------------------------------------------------------

    def summarize(self) -> pd.DataFrame:
        """
        Coefficient table.

        Columns are 'Estimate', 'Std. Error', then 't value' and 'Pr(>|t|)'
        when the dispersion is estimated, or 'z value' and 'Pr(>|z|)' when
        it is known. Aliased rows are NaN.
        """
        se = np.sqrt(np.diag(self.dispersion * self.cov_unscaled))
        with np.errstate(divide="ignore", invalid="ignore"):
            statistic = self.coefficients / se
        if self.t_based:
            pvalues = 2 * stats.t.sf(np.abs(statistic), self.df_residual)
            labels = ("t value", "Pr(>|t|)")
        else:
            pvalues = 2 * stats.norm.sf(np.abs(statistic))
            labels = ("z value", "Pr(>|z|)")

        return pd.DataFrame(
            {
                "Estimate": self.coefficients,
                "Std. Error": se,
                labels[0]: statistic,
                labels[1]: pvalues,
            },
            index=list(self.coefficient_names),
        )

    def conf_int(self, alpha: float = 0.05) -> pd.DataFrame:
        """
        Confidence intervals for coefficients.

        Parameters
        ----------
        alpha : float
            Significance level (default: 0.05 for 95% CI)

        Returns
        -------
        DataFrame
            Confidence intervals with columns 'lower' and 'upper'
        """
        table = self.summarize()
        if self.t_based:
            crit = stats.t.ppf(1 - alpha / 2, self.df_residual)
        else:
            crit = stats.norm.ppf(1 - alpha / 2)
        return pd.DataFrame(
            {
                "lower": table["Estimate"] - crit * table["Std. Error"],
                "upper": table["Estimate"] + crit * table["Std. Error"],
            },
            index=table.index,
        )

    @property
    def _df_intercept(self) -> int:
        return 1 if self.formula.intercept else 0

    @property
    def r_squared(self) -> float:
        if self.null_deviance <= 0:
            return 0.0
        return 1 - self.deviance / self.null_deviance

    @property
    def adj_r_squared(self) -> float:
        return 1 - (1 - self.r_squared) * (self.nobs - self._df_intercept) / self.df_residual

    @property
    def f_statistic(self) -> Tuple[float, int, int]:
        """Overall F statistic with its numerator and denominator df (lm)."""
        df_model = self.rank - self._df_intercept
        if df_model <= 0:
            return np.nan, df_model, self.df_residual
        f = ((self.null_deviance - self.deviance) / df_model) / (self.deviance / self.df_residual)
        return float(f), df_model, self.df_residual

    @property
    def f_pvalue(self) -> float:
        f, df1, df2 = self.f_statistic
        return float(stats.f.sf(f, df1, df2)) if np.isfinite(f) else np.nan

    def summary(self):
        """
        Print summary of regression results (like R's summary.lm / summary.glm).
        """
        table = self.summarize()
        title = "LINEAR REGRESSION RESULTS" if self.kind == ModelKind.LM else "GENERALIZED LINEAR MODEL RESULTS"

        print()
        print("=" * 80)
        print(title)
        print("=" * 80)
        print()

        print(f"Formula: {self.formula}")
        if self.kind == ModelKind.GLM:
            print(f"Family: {self.family} (link = {self.family_object.link})")
        print(f"Number of observations: {self.nobs}")
        print(f"Degrees of freedom: {self.df_residual} (residual), {self.rank - self._df_intercept} (model)")
        print()

        if self.residuals is not None and len(self.residuals) > 0:
            print("Residuals:")
            residual_summary = pd.Series(self.residuals).describe()
            print(f"  Min:    {residual_summary['min']:>10.4f}")
            print(f"  1Q:     {residual_summary['25%']:>10.4f}")
            print(f"  Median: {residual_summary['50%']:>10.4f}")
            print(f"  3Q:     {residual_summary['75%']:>10.4f}")
            print(f"  Max:    {residual_summary['max']:>10.4f}")
            print()

        stat_label, p_label = table.columns[2], table.columns[3]
        print("Coefficients:")
        print("-" * 80)
        print(f"{'Variable':<24} {'Estimate':>12} {'Std. Error':>12} {stat_label:>10} {p_label:>12}")
        print("-" * 80)

        for name, row in table.iterrows():
            p = row[p_label]
            if np.isnan(p):
                print(f"{name:<24} {'NA':>12} {'NA':>12} {'NA':>10} {'NA':>12} (aliased)")
                continue
            if p < 0.001:
                sig = ' ***'
            elif p < 0.01:
                sig = ' **'
            elif p < 0.05:
                sig = ' *'
            elif p < 0.1:
                sig = ' .'
            else:
                sig = ''
            p_str = f"{p:.4f}" if p >= 0.0001 else "<.0001"
            print(f"{name:<24} {row['Estimate']:>12.4f} {row['Std. Error']:>12.4f} "
                  f"{row[stat_label]:>10.3f} {p_str:>12}{sig}")

        print("-" * 80)
        print("Signif. codes:  0 '***' 0.001 '**' 0.01 '*' 0.05 '.' 0.1 ' ' 1")
        print()

        if self.kind == ModelKind.LM:
            print(f"Residual standard error: {self.sigma:.4f} on {self.df_residual} degrees of freedom")
            print(f"Multiple R-squared:      {self.r_squared:.4f}")
            print(f"Adjusted R-squared:      {self.adj_r_squared:.4f}")
            f, df1, df2 = self.f_statistic
            if not np.isnan(f):
                f_pval_str = f"{self.f_pvalue:.4e}" if self.f_pvalue >= 2.2e-16 else "< 2.2e-16"
                print(f"F-statistic:             {f:.2f} on {df1} and {df2} DF, p-value: {f_pval_str}")
        else:
            print(f"(Dispersion parameter for {self.family} family taken to be {self.dispersion:.4f})")
            print(f"Null deviance:     {self.null_deviance:.4f} on {self.nobs - self._df_intercept} degrees of freedom")
            print(f"Residual deviance: {self.deviance:.4f} on {self.df_residual} degrees of freedom")
            print(f"AIC: {self.aic:.4f}")
            print(f"Number of IRLS iterations: {self.iterations}")

        print("=" * 80)
        print()

    # ------------------------------------------------------------------
    # Prediction
    # ------------------------------------------------------------------

    def predict(self, newdata, **kwargs):
        """Predict on new data; see ``pyformula.prediction.predict``."""
        from .prediction import predict
        return predict(self, newdata, **kwargs)

    # ------------------------------------------------------------------
    # Persistence surface
    # ------------------------------------------------------------------

    def to_dict(self) -> dict:
        """JSON-serialisable payload sufficient to predict and summarise."""
        return {
            "version": PAYLOAD_VERSION,
            "kind": self.kind.value,
            "family": self.family,
            "design": self.design_info.to_dict(),
            "coefficient_names": list(self.coefficient_names),
            "coefficients": _jsonable(self.coefficients),
            "aliased": self.aliased.tolist(),
            "df_residual": int(self.df_residual),
            "sigma": float(self.sigma),
            "deviance": float(self.deviance),
            "null_deviance": float(self.null_deviance),
            "nobs": int(self.nobs),
            "rank": int(self.rank),
            "cov_unscaled": [_jsonable(row) for row in self.cov_unscaled],
            "response_levels": None if self.response_levels is None else list(self.response_levels),
            "converged": bool(self.converged),
            "iterations": int(self.iterations),
            "aic": float(self.aic),
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "FittedModel":
        """Rebuild a model from ``to_dict`` output."""
        version = payload.get("version")
        if version != PAYLOAD_VERSION:
            raise ValueError(f"Unsupported payload version: {version!r}")
        levels = payload.get("response_levels")
        return cls(
            kind=ModelKind(payload["kind"]),
            family=payload["family"],
            design_info=DesignInfo.from_dict(payload["design"]),
            coefficient_names=tuple(payload["coefficient_names"]),
            coefficients=np.array(payload["coefficients"], dtype=np.float64),
            aliased=np.array(payload["aliased"], dtype=bool),
            df_residual=payload["df_residual"],
            sigma=payload["sigma"],
            deviance=payload["deviance"],
            null_deviance=payload["null_deviance"],
            nobs=payload["nobs"],
            rank=payload["rank"],
            cov_unscaled=np.array(payload["cov_unscaled"], dtype=np.float64),
            response_levels=None if levels is None else tuple(levels),
            converged=payload["converged"],
            iterations=payload["iterations"],
            aic=payload["aic"],
        )

    def __repr__(self):
        return (
            f"FittedModel(kind={self.kind.value!r}, family={self.family!r}, "
            f"formula='{self.formula}', nobs={self.nobs}, rank={self.rank})"
        )


# ----------------------------------------------------------------------
# Shared fitting pipeline for lm() and glm()
# ----------------------------------------------------------------------

def _column_or_array(value, frame: pd.DataFrame, name: str) -> Optional[np.ndarray]:
    if value is None:
        return None
    if isinstance(value, str):
        if value not in frame.columns:
            raise DimensionMismatchError([value], available_columns=list(frame.columns))
        return frame[value].to_numpy(dtype=np.float64, na_value=np.nan)
    array = np.asarray(value, dtype=np.float64)
    if array.shape != (len(frame),):
        raise ValueError(f"{name} has shape {array.shape}, expected ({len(frame)},)")
    return array


def _response_vector(series: pd.Series, name: str, family: Optional[Family], levels=None):
    """Numeric response and, for binomial fits, its two outcome levels."""
    if family is not None and family.name == "binomial":
        if pd.api.types.is_bool_dtype(series.dtype):
            return series.to_numpy(dtype=np.float64), (False, True)
        if is_categorical(series) or levels is not None:
            factor = CategoricalEncoder().fit(series, levels=levels, name=name)
            if len(factor.levels) != 2:
                raise ColumnTypeError(
                    name, f"a two-level categorical for a binomial fit (found levels {list(factor.levels)})"
                )
            y = (series.to_numpy(dtype=object) == factor.levels[1]).astype(np.float64)
            return y, factor.levels
        return series.to_numpy(dtype=np.float64, na_value=np.nan), (0, 1)

    if is_categorical(series):
        raise ColumnTypeError(name, "numeric", term="response")
    return series.to_numpy(dtype=np.float64, na_value=np.nan), None


def fit_formula(
    kind: ModelKind,
    formula: Union[str, Formula],
    data,
    family: Union[str, Family, None] = None,
    weights=None,
    offset=None,
    levels: Optional[Dict[str, Sequence[Any]]] = None,
    reference: Optional[Dict[str, Any]] = None,
    missing: Optional[str] = None,
    control: Optional[FitControl] = None,
    backend=None,
) -> FittedModel:
    """Parse, expand, encode, build and fit: the pipeline behind lm() and glm()."""
    config = get_config().fit
    frame = as_frame(data)
    control = control or config.control()
    if backend is None:
        backend = config.backend
    from ._backends import get_backend
    backend = get_backend(backend)

    if isinstance(formula, str):
        formula = build_formula(formula, [str(c) for c in frame.columns])
    response = formula.response

    levels = dict(levels or {})
    response_levels = levels.pop(response, None)

    w = _column_or_array(weights, frame, "weights")
    off = _column_or_array(offset, frame, "offset")

    # Fit-time missing data
    policy = MissingPolicy(missing or MissingPolicy.EXCLUDE)
    variables = [response] + [v for v in formula.variables if v != response]
    na = frame[variables].isna()
    mask = na.any(axis=1).to_numpy()
    for extra in (w, off):
        if extra is not None:
            mask = mask | np.isnan(extra)
    if mask.any():
        columns = [v for v in variables if na[v].any()]
        if policy == MissingPolicy.FAIL:
            raise MissingDataError(columns, np.flatnonzero(mask).tolist())
        if policy == MissingPolicy.PROPAGATE:
            raise ValueError("missing='propagate' applies to prediction; use 'exclude' or 'fail' when fitting")
        logger.info("Excluding rows with missing values", rows=int(mask.sum()), columns=columns)
        keep = np.flatnonzero(~mask)
        frame = frame.iloc[keep]
        w = None if w is None else w[keep]
        off = None if off is None else off[keep]

    family_obj = None if kind == ModelKind.LM else get_family(family)
    builder = DesignMatrixBuilder(formula, levels=levels, reference=reference, tol=control.tol)
    design = builder.fit_transform(frame)
    y, outcome_levels = _response_vector(frame[response], response, family_obj, response_levels)

    result = fit_model(design, y, family=family_obj, weights=w, offset=off, control=control, backend=backend)

    logger.debug(
        "Fitted model",
        kind=kind.value,
        formula=formula.text,
        nobs=result.nobs,
        rank=result.rank,
        backend=backend.name,
    )
    return FittedModel(
        kind=kind,
        family="gaussian" if family_obj is None else family_obj.name,
        design_info=builder.design_info_,
        coefficient_names=design.columns,
        coefficients=result.coef,
        aliased=result.aliased,
        df_residual=result.df_residual,
        sigma=float(np.sqrt(result.dispersion)),
        deviance=result.deviance,
        null_deviance=result.null_deviance,
        nobs=result.nobs,
        rank=result.rank,
        cov_unscaled=result.cov_unscaled,
        response_levels=outcome_levels,
        converged=result.converged,
        iterations=result.iterations,
        aic=result.aic,
        residuals=result.residuals,
        fitted_values=result.fitted_values,
    )


__all__ = ["ModelKind", "FittedModel", "fit_formula"]
