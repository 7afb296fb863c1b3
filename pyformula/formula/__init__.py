"""
Formula system: R-style formula parsing and term expansion.
"""

from .expression import ArithmeticExpression
from .terms import TermKind, Term, MainEffect, Transformed, Identity, Interaction
from .parser import FormulaParser, ParsedFormula, parse_formula
from .expander import Formula, TermExpander, expand_terms, build_formula

__all__ = [
    # Main API
    "build_formula",
    "parse_formula",
    "expand_terms",
    # Core classes
    "FormulaParser",
    "ParsedFormula",
    "TermExpander",
    "Formula",
    "ArithmeticExpression",
    # Term types
    "TermKind",
    "Term",
    "MainEffect",
    "Transformed",
    "Identity",
    "Interaction",
]
