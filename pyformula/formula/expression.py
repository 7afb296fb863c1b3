"""
Literal arithmetic inside formulas.

``I(x^2 + 1)`` and the variable argument of transform calls are compiled to
a restricted Python expression over placeholder names. Column references
are resolved at parse time, so evaluation never looks names up in an
ambient scope.
"""

import ast
import operator
from dataclasses import dataclass, field
from typing import Callable, Dict, Tuple

import numpy as np

from ..exceptions import FormulaSyntaxError


# Functions allowed inside I() and transform arguments
ARITHMETIC_FUNCTIONS: Dict[str, Callable] = {
    "log": np.log,
    "log2": np.log2,
    "log10": np.log10,
    "log1p": np.log1p,
    "exp": np.exp,
    "sqrt": np.sqrt,
    "abs": np.abs,
    "sin": np.sin,
    "cos": np.cos,
    "tan": np.tan,
}

_BINARY_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.Pow: operator.pow,
    ast.Mod: operator.mod,
}

_UNARY_OPS = {
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
}

_COMPARE_OPS = {
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
}


@dataclass(frozen=True)
class ArithmeticExpression:
    """
    A compiled arithmetic expression.

    Attributes
    ----------
    text : str
        Canonical formula text (whitespace removed), used for labels
    source : str
        Python source over placeholders ``_c0, _c1, ...``
    columns : tuple of str
        Column bound to each placeholder, in order of first reference
    """
    text: str
    source: str
    columns: Tuple[str, ...]
    _tree: ast.Expression = field(init=False, repr=False, compare=False, hash=False)

    def __post_init__(self):
        try:
            tree = ast.parse(self.source, mode="eval")
        except SyntaxError as e:
            raise FormulaSyntaxError(f"Invalid arithmetic expression '{self.text}'") from e
        _validate(tree.body, self.text, len(self.columns))
        object.__setattr__(self, "_tree", tree)

    @property
    def variables(self) -> Tuple[str, ...]:
        return self.columns

    @property
    def is_column(self) -> bool:
        """True if the expression is a bare column reference."""
        return isinstance(self._tree.body, ast.Name)

    def evaluate(self, columns: Dict[str, np.ndarray]) -> np.ndarray:
        """Evaluate against a mapping of column name to float array."""
        env = {f"_c{i}": columns[name] for i, name in enumerate(self.columns)}
        with np.errstate(divide="ignore", invalid="ignore"):
            value = _eval(self._tree.body, env)
        return np.asarray(value, dtype=np.float64)

    def __getstate__(self):
        return {"text": self.text, "source": self.source, "columns": self.columns}

    def __setstate__(self, state):
        object.__setattr__(self, "text", state["text"])
        object.__setattr__(self, "source", state["source"])
        object.__setattr__(self, "columns", state["columns"])
        object.__setattr__(self, "_tree", ast.parse(state["source"], mode="eval"))


def _validate(node, text: str, n_columns: int) -> None:
    if isinstance(node, ast.BinOp):
        if type(node.op) not in _BINARY_OPS:
            raise FormulaSyntaxError(f"Operator not allowed in arithmetic expression '{text}'")
        _validate(node.left, text, n_columns)
        _validate(node.right, text, n_columns)
    elif isinstance(node, ast.UnaryOp):
        if type(node.op) not in _UNARY_OPS:
            raise FormulaSyntaxError(f"Operator not allowed in arithmetic expression '{text}'")
        _validate(node.operand, text, n_columns)
    elif isinstance(node, ast.Compare):
        if len(node.ops) != 1 or type(node.ops[0]) not in _COMPARE_OPS:
            raise FormulaSyntaxError(f"Chained comparison not allowed in '{text}'")
        _validate(node.left, text, n_columns)
        _validate(node.comparators[0], text, n_columns)
    elif isinstance(node, ast.Call):
        if not isinstance(node.func, ast.Name) or node.func.id not in ARITHMETIC_FUNCTIONS:
            raise FormulaSyntaxError(f"Function call not allowed in arithmetic expression '{text}'")
        if node.keywords or len(node.args) != 1:
            raise FormulaSyntaxError(f"Functions in '{text}' take exactly one argument")
        _validate(node.args[0], text, n_columns)
    elif isinstance(node, ast.Name):
        if not node.id.startswith("_c") or not node.id[2:].isdigit() or int(node.id[2:]) >= n_columns:
            raise FormulaSyntaxError(f"Unresolved name '{node.id}' in arithmetic expression '{text}'")
    elif isinstance(node, ast.Constant):
        if isinstance(node.value, bool) or not isinstance(node.value, (int, float)):
            raise FormulaSyntaxError(f"Only numeric constants are allowed in '{text}'")
    else:
        raise FormulaSyntaxError(f"Unsupported syntax in arithmetic expression '{text}'")


def _eval(node, env):
    if isinstance(node, ast.BinOp):
        return _BINARY_OPS[type(node.op)](_eval(node.left, env), _eval(node.right, env))
    if isinstance(node, ast.UnaryOp):
        return _UNARY_OPS[type(node.op)](_eval(node.operand, env))
    if isinstance(node, ast.Compare):
        result = _COMPARE_OPS[type(node.ops[0])](_eval(node.left, env), _eval(node.comparators[0], env))
        return np.asarray(result, dtype=np.float64)
    if isinstance(node, ast.Call):
        return ARITHMETIC_FUNCTIONS[node.func.id](_eval(node.args[0], env))
    if isinstance(node, ast.Name):
        return env[node.id]
    return float(node.value)
