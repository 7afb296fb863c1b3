"""
Formula term representations.

A term is one of four kinds:

- ``MainEffect``: a bare column
- ``Transformed``: a transform call such as ``log(x)`` or ``poly(x, 2)``
- ``Identity``: literal arithmetic escaped with ``I(...)``
- ``Interaction``: two or more of the above multiplied together

Terms compare equal when their kind and their factor set match,
independent of the order in which components were written.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, FrozenSet, Tuple

from .expression import ArithmeticExpression


class TermKind(str, Enum):
    """Kinds of formula terms."""

    MAIN_EFFECT = "main_effect"
    TRANSFORMED = "transformed"
    IDENTITY = "identity"
    INTERACTION = "interaction"


class Term:
    """Base class for formula terms."""

    kind: TermKind

    @property
    def label(self) -> str:
        """Canonical name used for design columns."""
        raise NotImplementedError

    @property
    def variables(self) -> Tuple[str, ...]:
        """Columns referenced by this term, in order of reference."""
        raise NotImplementedError

    @property
    def components(self) -> Tuple["Term", ...]:
        """Single-factor terms this term is a product of."""
        return (self,)

    @property
    def order(self) -> int:
        return len(self.components)

    def _key(self):
        return (self.kind, self.label)

    def __eq__(self, other):
        if not isinstance(other, Term):
            return NotImplemented
        return self._key() == other._key()

    def __hash__(self):
        return hash(self._key())

    def __str__(self):
        return self.label


@dataclass(frozen=True, eq=False)
class MainEffect(Term):
    """A bare column."""

    variable: str
    kind = TermKind.MAIN_EFFECT

    @property
    def label(self) -> str:
        return self.variable

    @property
    def variables(self) -> Tuple[str, ...]:
        return (self.variable,)

    def __repr__(self):
        return f"MainEffect({self.variable!r})"


@dataclass(frozen=True, eq=False)
class Transformed(Term):
    """
    A transform call, e.g. ``log(x + 1)`` or ``poly(x, degree=2)``.

    Attributes
    ----------
    function : str
        Transform name (a key of the transform registry)
    expression : ArithmeticExpression
        The variable argument
    arguments : tuple of (name, value)
        Remaining arguments, normalised to keywords and validated
    text : str
        Canonical call text, e.g. ``poly(x, 2)``
    """

    function: str
    expression: ArithmeticExpression
    arguments: Tuple[Tuple[str, Any], ...]
    text: str
    kind = TermKind.TRANSFORMED

    @property
    def variable(self) -> str:
        return self.expression.text

    @property
    def label(self) -> str:
        return self.text

    @property
    def variables(self) -> Tuple[str, ...]:
        return self.expression.variables

    @property
    def argument_dict(self) -> Dict[str, Any]:
        return dict(self.arguments)

    def _key(self):
        # poly(x, 2) and poly(x, degree = 2) are the same term
        return (self.kind, self.function, self.expression.text, self.arguments)

    def __repr__(self):
        return f"Transformed({self.text!r})"


@dataclass(frozen=True, eq=False)
class Identity(Term):
    """Literal arithmetic, ``I(expr)``."""

    expression: ArithmeticExpression
    kind = TermKind.IDENTITY

    @property
    def label(self) -> str:
        return f"I({self.expression.text})"

    @property
    def variables(self) -> Tuple[str, ...]:
        return self.expression.variables

    def __repr__(self):
        return f"Identity({self.label!r})"


@dataclass(frozen=True, eq=False)
class Interaction(Term):
    """Product of two or more single-factor terms."""

    factors: Tuple[Term, ...]
    kind = TermKind.INTERACTION

    def __post_init__(self):
        if len(self.factors) < 2:
            raise ValueError("An interaction needs at least two factors")
        if any(isinstance(f, Interaction) for f in self.factors):
            raise ValueError("Interaction factors must be single-factor terms")
        if len(set(self.factors)) != len(self.factors):
            raise ValueError(f"Duplicate factors in interaction: {self.factors}")

    @property
    def components(self) -> Tuple[Term, ...]:
        return self.factors

    @property
    def label(self) -> str:
        return ":".join(f.label for f in self.factors)

    @property
    def variables(self) -> Tuple[str, ...]:
        seen = []
        for factor in self.factors:
            for v in factor.variables:
                if v not in seen:
                    seen.append(v)
        return tuple(seen)

    def _key(self):
        return (self.kind, self.factor_set)

    @property
    def factor_set(self) -> FrozenSet[Term]:
        return frozenset(self.factors)

    def __repr__(self):
        return f"Interaction({self.label!r})"


def interact(*terms: Term) -> Term:
    """
    Multiply terms, merging their factor sets.

    Repeated factors collapse (``a:a`` is ``a``), so the result may be a
    single-factor term.
    """
    factors = []
    for term in terms:
        for factor in term.components:
            if factor not in factors:
                factors.append(factor)
    if len(factors) == 1:
        return factors[0]
    return Interaction(tuple(factors))


__all__ = [
    "TermKind",
    "Term",
    "MainEffect",
    "Transformed",
    "Identity",
    "Interaction",
    "interact",
]
