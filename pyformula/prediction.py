"""
Prediction engine.

New data flows through the fitted model's frozen ``DesignInfo``; nothing is
re-derived from the new rows. The output always has exactly one row per
input row, in input order and with the input index, whatever the
missing-data policy.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd
from scipy import stats

from ._core.design import as_frame
from .config import MissingPolicy, UnseenPolicy, get_config
from .exceptions import MissingDataError
from .model import FittedModel, ModelKind
from ._logging import get_logger


logger = get_logger(__name__)

PREDICTION_TYPES = ("response", "link")
INTERVALS = ("confidence", "prediction")


@dataclass(frozen=True)
class PredictionRequest:
    """
    New data plus prediction options.

    Attributes
    ----------
    data : DataFrame or mapping of columns
        Rows to predict
    missing : {'fail', 'propagate', 'exclude'}, optional
        Missing-data policy (default from configuration, 'propagate')
    type : {'response', 'link'}
        Scale of the prediction
    unseen : {'error', 'zero'}, optional
        Unseen categorical levels raise (default) or encode as zeros
    interval : {'confidence', 'prediction'}, optional
        Add 'lwr' and 'upr' columns (linear models only)
    level : float
        Interval coverage
    offset : array, optional
        Offset added to the linear predictor, one value per row
    """
    data: Any
    missing: Optional[str] = None
    type: str = "response"
    unseen: Optional[str] = None
    interval: Optional[str] = None
    level: float = 0.95
    offset: Optional[Any] = None


@dataclass(frozen=True)
class PredictionResult:
    """
    Predictions, row-aligned with the request.

    Attributes
    ----------
    frame : DataFrame
        One row per input row, same index; NaN where inputs were missing
    missing_mask : ndarray of bool
        Rows that had a missing value in a referenced column
    policy : MissingPolicy
        Policy that produced the result
    """
    frame: pd.DataFrame
    missing_mask: np.ndarray
    policy: MissingPolicy

    @property
    def columns(self) -> List[str]:
        return list(self.frame.columns)

    def __len__(self) -> int:
        return len(self.frame)

    def __getitem__(self, column: str) -> pd.Series:
        return self.frame[column]

    def to_numpy(self) -> np.ndarray:
        return self.frame.to_numpy()


class PredictionEngine:
    """
    Replays a fitted model's design on new data.

    Examples
    --------
    >>> engine = PredictionEngine(model)
    >>> result = engine.predict(PredictionRequest(new_crickets, missing="exclude"))
    >>> len(result) == len(new_crickets)
    True
    """

    def __init__(self, model: FittedModel):
        self.model = model

    def output_columns(self, type: str = "response", interval: Optional[str] = None) -> List[str]:
        """Column names of the result; fixed per model, type and interval."""
        model = self.model
        if type == "response" and model.family == "binomial":
            return [f"prob[{level}]" for level in model.response_levels]
        if interval is not None:
            return ["fit", "lwr", "upr"]
        return ["fit"]

    def predict(self, request: PredictionRequest) -> PredictionResult:
        model = self.model
        config = get_config().prediction
        policy = MissingPolicy(request.missing or config.missing)
        unseen = UnseenPolicy(request.unseen or config.unseen)
        self._check_options(request)

        frame = as_frame(request.data)
        info = model.design_info
        mask = info.missing_mask(frame)
        offset = self._offset(request.offset, len(frame))

        if policy == MissingPolicy.FAIL and mask.any():
            columns = [v for v in info.variables if frame[v].isna().any()]
            raise MissingDataError(columns, np.flatnonzero(mask).tolist())

        complete = np.flatnonzero(~mask)
        if policy == MissingPolicy.EXCLUDE:
            # missing rows never reach the design
            X = info.build(frame.iloc[complete], unseen=unseen.value).values
        elif mask.any():
            # incomplete rows predict NaN whatever their levels
            if unseen == UnseenPolicy.ERROR:
                info.check_levels(frame.iloc[complete])
            X = info.build(frame, unseen=UnseenPolicy.ZERO.value).values[complete]
        else:
            X = info.build(frame, unseen=unseen.value).values

        values = self._compute(X, offset[complete], request)

        columns = self.output_columns(request.type, request.interval)
        out: Dict[str, np.ndarray] = {}
        for name in columns:
            full = np.full(len(frame), np.nan)
            full[complete] = values[name]
            out[name] = full

        if mask.any():
            logger.debug(
                "Rows with missing inputs predicted as NaN",
                rows=int(mask.sum()),
                policy=policy.value,
            )
        return PredictionResult(
            frame=pd.DataFrame(out, index=frame.index, columns=columns),
            missing_mask=mask,
            policy=policy,
        )

    def _check_options(self, request: PredictionRequest) -> None:
        if request.type not in PREDICTION_TYPES:
            raise ValueError(f"type must be one of {PREDICTION_TYPES}, got {request.type!r}")
        if request.interval is not None:
            if request.interval not in INTERVALS:
                raise ValueError(f"interval must be one of {INTERVALS}, got {request.interval!r}")
            if self.model.kind != ModelKind.LM:
                raise ValueError("Prediction intervals are only available for lm() fits")
        if not 0 < request.level < 1:
            raise ValueError("level must be between 0 and 1")

    def _offset(self, offset, n: int) -> np.ndarray:
        if offset is None:
            return np.zeros(n)
        offset = np.asarray(offset, dtype=np.float64)
        if offset.shape != (n,):
            raise ValueError(f"offset has shape {offset.shape}, expected ({n},)")
        return offset

    def _compute(self, X: np.ndarray, offset: np.ndarray, request: PredictionRequest) -> Dict[str, np.ndarray]:
        model = self.model
        kept = ~model.aliased
        beta = model.coefficients[kept]
        Xk = X[:, kept]
        eta = Xk @ beta + offset

        if request.type == "link":
            return {"fit": eta}

        family = model.family_object
        if model.family == "binomial":
            p = family.linkinv(eta)
            low, high = model.response_levels
            return {f"prob[{low}]": 1 - p, f"prob[{high}]": p}

        fit = family.linkinv(eta)
        if request.interval is None:
            return {"fit": fit}

        # R's predict.lm intervals
        cov = model.cov_unscaled[np.ix_(kept, kept)]
        se_fit = np.sqrt(np.einsum("ij,jk,ik->i", Xk, cov, Xk)) * model.sigma
        if request.interval == "prediction":
            se = np.sqrt(se_fit ** 2 + model.sigma ** 2)
        else:
            se = se_fit
        crit = stats.t.ppf((1 + request.level) / 2, model.df_residual)
        return {"fit": fit, "lwr": fit - crit * se, "upr": fit + crit * se}


def predict(
    model: FittedModel,
    newdata,
    missing: Optional[str] = None,
    type: str = "response",
    unseen: Optional[str] = None,
    interval: Optional[str] = None,
    level: float = 0.95,
    offset=None,
) -> PredictionResult:
    """
    Predict from a fitted model.

    Parameters
    ----------
    model : FittedModel
        Result of ``lm`` or ``glm``
    newdata : DataFrame, mapping of columns, or PredictionRequest
        Rows to predict. When a PredictionRequest is given the other
        keyword arguments are ignored.
    missing : {'fail', 'propagate', 'exclude'}, optional
        'fail' raises MissingDataError if any referenced column has a
        missing value; 'propagate' and 'exclude' both return NaN for such
        rows and numeric predictions elsewhere
    type : {'response', 'link'}
        'response' gives 'fit' (or 'prob[<level>]' columns for binomial
        fits); 'link' gives the linear predictor as 'fit'
    unseen : {'error', 'zero'}, optional
        Unseen categorical levels raise UnseenLevelError unless 'zero'
    interval : {'confidence', 'prediction'}, optional
        Adds 'lwr' and 'upr' (lm only)
    level : float
        Interval coverage
    offset : array, optional
        Offset per row

    Returns
    -------
    PredictionResult
        Same number of rows, order and index as ``newdata``
    """
    if isinstance(newdata, PredictionRequest):
        request = newdata
    else:
        request = PredictionRequest(
            data=newdata,
            missing=missing,
            type=type,
            unseen=unseen,
            interval=interval,
            level=level,
            offset=offset,
        )
    return PredictionEngine(model).predict(request)


__all__ = ["PredictionRequest", "PredictionResult", "PredictionEngine", "predict"]
