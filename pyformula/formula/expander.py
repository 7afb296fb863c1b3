"""
Term expansion.

Turns a parsed term-expression tree into an explicit, deduplicated and
deterministically ordered term list, wrapped in an immutable ``Formula``.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .parser import (
    BinaryNode,
    DotNode,
    FormulaParser,
    InterceptNode,
    NegateNode,
    Node,
    ParsedFormula,
    PowerNode,
    TermNode,
)
from .terms import Interaction, MainEffect, Term, TermKind, interact
from ..exceptions import FormulaSyntaxError
from .._logging import get_logger


logger = get_logger(__name__)


@dataclass
class _TermSet:
    """Intermediate result while walking the tree."""
    terms: List[Term] = field(default_factory=list)
    removed: List[Term] = field(default_factory=list)
    intercept: Optional[bool] = None


@dataclass(frozen=True)
class Formula:
    """
    An expanded model formula.

    Immutable: parsed once against a schema and never re-resolved.

    Attributes
    ----------
    response : str
        Response column
    terms : tuple of Term
        Ordered, deduplicated terms (intercept not included)
    intercept : bool
        Whether the design has an intercept column
    factor_order : tuple of str
        Factor labels in order of first appearance; drives term ordering
    schema : tuple of str
        Columns the formula was bound to
    text : str
        The formula as written
    """
    response: str
    terms: Tuple[Term, ...]
    intercept: bool
    factor_order: Tuple[str, ...]
    schema: Tuple[str, ...]
    text: str

    @property
    def variables(self) -> Tuple[str, ...]:
        """Columns referenced by the right-hand side, in order of first use."""
        seen: List[str] = []
        for term in self.terms:
            for v in term.variables:
                if v not in seen:
                    seen.append(v)
        return tuple(seen)

    @property
    def term_labels(self) -> Tuple[str, ...]:
        return tuple(t.label for t in self.terms)

    def contains(self, other: "Formula") -> bool:
        """True if every term (and the intercept) of ``other`` is in this formula."""
        if other.intercept and not self.intercept:
            return False
        return set(other.terms) <= set(self.terms)

    def __str__(self) -> str:
        rhs = " + ".join(t.label for t in self.terms)
        if not rhs:
            rhs = "1" if self.intercept else "0"
        elif not self.intercept:
            rhs += " - 1"
        return f"{self.response} ~ {rhs}"


class TermExpander:
    """
    Expand shorthand into an explicit term list.

    ``a*b`` becomes ``a + b + a:b``, ``(a + b + c)^2`` becomes all terms up
    to order two, ``.`` becomes every schema column except the response,
    subtracted terms are removed and duplicates dropped.
    """

    def expand(self, parsed: ParsedFormula) -> Formula:
        """Expand a parsed formula."""
        walker = _TermWalker(parsed)
        result = walker.walk(parsed.tree)
        removed = set(result.removed)
        terms = [t for t in _dedupe(result.terms) if t not in removed]
        intercept = True if result.intercept is None else result.intercept

        factor_order = tuple(walker.factor_order)
        ordered = expand_terms(terms, factor_order=factor_order)

        if not ordered and not intercept:
            raise FormulaSyntaxError("Formula has no terms and no intercept", formula=parsed.text)

        logger.debug(
            "Expanded formula",
            formula=parsed.text,
            terms=len(ordered),
            intercept=intercept,
        )
        return Formula(
            response=parsed.response,
            terms=tuple(ordered),
            intercept=intercept,
            factor_order=factor_order,
            schema=parsed.schema,
            text=parsed.text,
        )


class _TermWalker:
    """Per-call expansion state; factors are noted in order of first appearance."""

    def __init__(self, parsed: ParsedFormula):
        self._schema = parsed.schema
        self._response = parsed.response
        self._text = parsed.text
        self.factor_order: List[str] = []

    def walk(self, node: Node) -> _TermSet:
        return self._walk(node)

    def _note(self, term: Term) -> None:
        for factor in term.components:
            if factor.label not in self.factor_order:
                self.factor_order.append(factor.label)

    def _walk(self, node: Node) -> _TermSet:
        if isinstance(node, TermNode):
            self._note(node.term)
            return _TermSet(terms=[node.term])

        if isinstance(node, InterceptNode):
            return _TermSet(intercept=node.present)

        if isinstance(node, DotNode):
            terms = [MainEffect(c) for c in self._schema if c != self._response]
            for term in terms:
                self._note(term)
            return _TermSet(terms=terms)

        if isinstance(node, NegateNode):
            operand = self._walk(node.operand)
            intercept = None if operand.intercept is None else not operand.intercept
            return _TermSet(removed=list(operand.terms), intercept=intercept)

        if isinstance(node, PowerNode):
            base = self._walk(node.base)
            self._require_terms(base, "^")
            result = _TermSet(terms=list(base.terms))
            for _ in range(node.exponent - 1):
                result = self._cross(result, base)
            return result

        if isinstance(node, BinaryNode):
            left = self._walk(node.left)
            right = self._walk(node.right)
            if node.op == "+":
                return self._add(left, right)
            if node.op == "-":
                kept = [t for t in left.terms if t not in set(right.terms)]
                intercept = left.intercept
                if right.intercept is not None:
                    intercept = not right.intercept
                return _TermSet(terms=kept, removed=list(left.removed), intercept=intercept)
            if node.op == ":":
                self._require_terms(left, ":")
                self._require_terms(right, ":")
                return _TermSet(terms=_dedupe(interact(a, b) for a in left.terms for b in right.terms))
            if node.op == "*":
                self._require_terms(left, "*")
                self._require_terms(right, "*")
                return self._cross(left, right)

        raise FormulaSyntaxError(f"Unsupported formula node {node!r}", formula=self._text)

    def _add(self, left: _TermSet, right: _TermSet) -> _TermSet:
        removed = set(right.removed)
        terms = [t for t in left.terms if t not in removed] + list(right.terms)
        intercept = right.intercept if right.intercept is not None else left.intercept
        return _TermSet(terms=_dedupe(terms), removed=left.removed + right.removed, intercept=intercept)

    def _cross(self, left: _TermSet, right: _TermSet) -> _TermSet:
        products = [interact(a, b) for a in left.terms for b in right.terms]
        return _TermSet(terms=_dedupe(list(left.terms) + list(right.terms) + products))

    def _require_terms(self, operand: _TermSet, op: str) -> None:
        if not operand.terms or operand.removed:
            raise FormulaSyntaxError(
                f"Operator '{op}' needs terms on both sides (intercepts and removals are not allowed)",
                formula=self._text,
            )


def _dedupe(terms: Iterable[Term]) -> List[Term]:
    seen = set()
    result = []
    for term in terms:
        if term not in seen:
            seen.add(term)
            result.append(term)
    return result


def expand_terms(terms: Sequence[Term], factor_order: Sequence[str]) -> List[Term]:
    """
    Deduplicate and order a term list.

    Order: main effects by first appearance of their factor, then
    transformed and ``I()`` terms, then interactions by increasing order and
    by the first-appearance ranks of their factors. Interaction factors are
    themselves put in first-appearance order, so labels are stable.

    ``factor_order`` is the first-appearance order of factor labels in the
    original formula (``Formula.factor_order``); factors it does not list
    are ranked after it in order of appearance. Applying this to its own
    output with the same ``factor_order`` returns the same list with the
    same labels.
    """
    terms = _dedupe(terms)
    ranks: Dict[str, int] = {}
    for label in factor_order:
        ranks.setdefault(label, len(ranks))
    for term in terms:
        for factor in term.components:
            ranks.setdefault(factor.label, len(ranks))

    canonical = []
    for term in terms:
        if isinstance(term, Interaction):
            factors = sorted(term.factors, key=lambda f: ranks[f.label])
            term = Interaction(tuple(factors))
        canonical.append(term)

    def sort_key(term: Term):
        if term.kind == TermKind.MAIN_EFFECT:
            return (0, 0, (ranks[term.label],))
        if term.kind in (TermKind.TRANSFORMED, TermKind.IDENTITY):
            return (1, 0, (ranks[term.label],))
        return (2, term.order, tuple(sorted(ranks[f.label] for f in term.components)))

    return sorted(canonical, key=sort_key)


def build_formula(text: str, schema: Sequence[str]) -> Formula:
    """Parse and expand a formula string against a schema."""
    parsed = FormulaParser(schema).parse(text)
    return TermExpander().expand(parsed)


__all__ = [
    "Formula",
    "TermExpander",
    "expand_terms",
    "build_formula",
]
