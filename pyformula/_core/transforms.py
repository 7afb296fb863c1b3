"""
Transform functions usable as formula terms.

Stateless transforms (``log``, ``sqrt``, ...) are applied elementwise.
Stateful transforms (``scale``, ``poly``, ``bs``) learn their parameters
once at fit time; the learned state is frozen in the DesignInfo and
replayed unchanged on new data.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np
from scipy.interpolate import BSpline

from ..exceptions import PyFormulaError


class TransformError(PyFormulaError, ValueError):
    """A transform cannot be fit or applied to the given column."""


class Transform(ABC):
    """Base class for formula transforms."""

    name: str = ""
    params: Tuple[str, ...] = ()
    defaults: Dict[str, Any] = {}
    stateful: bool = False

    def check_arguments(self, args: Dict[str, Any]) -> Dict[str, Any]:
        """Validate keyword arguments and fill defaults. Raises ValueError."""
        unknown = set(args) - set(self.params)
        if unknown:
            raise ValueError(f"{self.name}() got unexpected argument(s) {sorted(unknown)}")
        checked = dict(self.defaults)
        checked.update(args)
        return checked

    def fit(self, x: np.ndarray, args: Dict[str, Any]) -> Dict[str, Any]:
        """Learn the transform state from fit-time data."""
        return {}

    @abstractmethod
    def apply(self, x: np.ndarray, args: Dict[str, Any], state: Dict[str, Any]) -> np.ndarray:
        """Return an (n, k) array."""

    def column_names(self, label: str, n_columns: int) -> List[str]:
        if n_columns == 1:
            return [label]
        return [f"{label}[{i}]" for i in range(1, n_columns + 1)]


class ElementwiseTransform(Transform):
    """Stateless one-column transform."""

    def __init__(self, name: str, func: Callable):
        self.name = name
        self.func = func

    def apply(self, x, args, state):
        with np.errstate(divide="ignore", invalid="ignore"):
            return self.func(x)[:, np.newaxis]


class Scale(Transform):
    """Centre and/or scale by the fit-time mean and standard deviation (like R's scale)."""

    name = "scale"
    params = ("center", "scale")
    defaults = {"center": True, "scale": True}
    stateful = True

    def check_arguments(self, args):
        checked = super().check_arguments(args)
        for key in self.params:
            if not isinstance(checked[key], bool):
                raise ValueError(f"scale() argument '{key}' must be TRUE or FALSE")
        return checked

    def fit(self, x, args):
        finite = x[np.isfinite(x)]
        center = float(np.mean(finite)) if args["center"] else 0.0
        if args["scale"]:
            if args["center"]:
                scale = float(np.std(finite, ddof=1))
            else:
                # R uses the root mean square when not centring
                scale = float(np.sqrt(np.sum(finite ** 2) / (len(finite) - 1)))
            if scale == 0 or not np.isfinite(scale):
                raise TransformError("scale() needs a non-constant column with at least two values")
        else:
            scale = 1.0
        return {"center": center, "scale": scale}

    def apply(self, x, args, state):
        return ((x - state["center"]) / state["scale"])[:, np.newaxis]


class Center(Transform):
    """Subtract the fit-time mean."""

    name = "center"
    stateful = True

    def fit(self, x, args):
        finite = x[np.isfinite(x)]
        if len(finite) == 0:
            raise TransformError("center() needs at least one finite value")
        return {"center": float(np.mean(finite))}

    def apply(self, x, args, state):
        return (x - state["center"])[:, np.newaxis]


class Poly(Transform):
    """
    Polynomial basis (like R's poly).

    Orthogonal polynomials are built by the three-term recurrence; the
    recurrence coefficients (alpha, norm2) are the frozen state, exactly
    as R stores them in the "coefs" attribute.
    """

    name = "poly"
    params = ("degree", "raw")
    defaults = {"degree": 1, "raw": False}
    stateful = True

    def check_arguments(self, args):
        checked = super().check_arguments(args)
        degree = checked["degree"]
        if isinstance(degree, bool) or not isinstance(degree, int) or degree < 1:
            raise ValueError("poly() 'degree' must be a positive integer")
        if not isinstance(checked["raw"], bool):
            raise ValueError("poly() 'raw' must be TRUE or FALSE")
        return checked

    def fit(self, x, args):
        if args["raw"]:
            return {}
        degree = args["degree"]
        finite = x[np.isfinite(x)]
        if degree >= len(np.unique(finite)):
            raise TransformError("poly(): 'degree' must be less than number of unique points")

        n = len(finite)
        alpha = []
        norm2 = [1.0, float(n)]
        p_prev = np.zeros(n)
        p_curr = np.ones(n)
        for j in range(degree):
            a = float(np.sum(finite * p_curr ** 2) / norm2[-1])
            alpha.append(a)
            p_next = (finite - a) * p_curr - (norm2[-1] / norm2[-2]) * p_prev
            norm2.append(float(np.sum(p_next ** 2)))
            p_prev, p_curr = p_curr, p_next
        return {"alpha": alpha, "norm2": norm2}

    def apply(self, x, args, state):
        degree = args["degree"]
        if args["raw"]:
            return np.column_stack([x ** k for k in range(1, degree + 1)])

        alpha = state["alpha"]
        norm2 = state["norm2"]
        Z = np.ones((len(x), degree + 1))
        Z[:, 1] = x - alpha[0]
        for i in range(1, degree):
            Z[:, i + 1] = (x - alpha[i]) * Z[:, i] - (norm2[i + 1] / norm2[i]) * Z[:, i - 1]
        Z = Z / np.sqrt(np.asarray(norm2[1:]))
        return Z[:, 1:]


class BSplineBasis(Transform):
    """
    B-spline basis without intercept column (like R's splines::bs).

    Interior knots are placed at quantiles of the fit-time data when only
    'df' is given. Values outside the boundary knots are extrapolated from
    the end polynomial pieces.
    """

    name = "bs"
    params = ("df", "knots", "degree")
    defaults = {"df": None, "knots": None, "degree": 3}
    stateful = True

    def check_arguments(self, args):
        checked = super().check_arguments(args)
        degree = checked["degree"]
        if isinstance(degree, bool) or not isinstance(degree, int) or degree < 1:
            raise ValueError("bs() 'degree' must be a positive integer")
        df = checked["df"]
        if df is not None and (isinstance(df, bool) or not isinstance(df, int) or df < degree):
            raise ValueError(f"bs() 'df' must be an integer >= degree ({degree})")
        knots = checked["knots"]
        if knots is not None:
            if isinstance(knots, (int, float)):
                knots = [knots]
            checked["knots"] = sorted(float(k) for k in knots)
        return checked

    def fit(self, x, args):
        finite = x[np.isfinite(x)]
        if len(finite) == 0:
            raise TransformError("bs() needs at least one finite value")
        lower, upper = float(np.min(finite)), float(np.max(finite))
        if args["knots"] is not None:
            knots = list(args["knots"])
        elif args["df"] is not None:
            n_interior = args["df"] - args["degree"]
            probs = np.linspace(0, 1, n_interior + 2)[1:-1]
            knots = [float(q) for q in np.quantile(finite, probs)] if n_interior > 0 else []
        else:
            knots = []
        return {"knots": knots, "boundary": [lower, upper]}

    def apply(self, x, args, state):
        order = args["degree"] + 1
        lower, upper = state["boundary"]
        t = np.concatenate([[lower] * order, state["knots"], [upper] * order])
        n_basis = len(t) - order

        basis = np.full((len(x), n_basis), np.nan)
        finite = np.isfinite(x)
        for j in range(n_basis):
            c = np.zeros(n_basis)
            c[j] = 1.0
            basis[finite, j] = BSpline(t, c, args["degree"], extrapolate=True)(x[finite])
        return basis[:, 1:]


TRANSFORMS: Dict[str, Transform] = {
    "log": ElementwiseTransform("log", np.log),
    "log2": ElementwiseTransform("log2", np.log2),
    "log10": ElementwiseTransform("log10", np.log10),
    "log1p": ElementwiseTransform("log1p", np.log1p),
    "exp": ElementwiseTransform("exp", np.exp),
    "sqrt": ElementwiseTransform("sqrt", np.sqrt),
    "abs": ElementwiseTransform("abs", np.abs),
    "scale": Scale(),
    "center": Center(),
    "poly": Poly(),
    "bs": BSplineBasis(),
}


def get_transform(name: str) -> Optional[Transform]:
    """Look up a transform by function name."""
    return TRANSFORMS.get(name)


__all__ = [
    "Transform",
    "TransformError",
    "ElementwiseTransform",
    "Scale",
    "Center",
    "Poly",
    "BSplineBasis",
    "TRANSFORMS",
    "get_transform",
]
