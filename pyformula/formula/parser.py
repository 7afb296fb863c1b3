"""
Formula parser.

Turns ``response ~ term-expression`` into a term-expression tree bound to a
fixed column schema. Supported syntax:

- Terms: ``x``, ``` `odd name` ```
- Add / remove: ``a + b``, ``a - b``, ``- 1``, ``+ 0``
- Interactions: ``a:b``; crossing: ``a*b`` (= ``a + b + a:b``)
- Power expansion: ``(a + b + c)^2``
- Wildcard: ``.`` (every schema column except the response)
- Literal arithmetic: ``I(x^2)``, ``I(x > 3)``
- Transforms: ``log(x)``, ``scale(x)``, ``poly(x, 2)``, ``bs(x, df = 4)``

Precedence, from tightest: ``^``, ``:``, ``*``, unary ``-``/``+``,
binary ``+``/``-``.
"""

import ast
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .expression import ARITHMETIC_FUNCTIONS, ArithmeticExpression
from .terms import Identity, MainEffect, Term, Transformed
from .._core.transforms import TRANSFORMS
from ..exceptions import FormulaSyntaxError, UnknownColumnError
from .._logging import get_logger


logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Token:
    type: str   # NAME, QNAME, NUMBER, STRING, OP, DOT, END
    value: str
    pos: int

    @property
    def text(self) -> str:
        if self.type == "QNAME":
            return f"`{self.value}`"
        if self.type == "STRING":
            return repr(self.value)
        return self.value


_NUMBER_RE = re.compile(r"(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?")
_NAME_RE = re.compile(r"[A-Za-z_.][A-Za-z0-9_.]*")
_OPERATORS = ("**", ">=", "<=", "==", "!=", "~", "+", "-", "*", "/", ":", "^",
              "(", ")", ",", "=", "[", "]", ">", "<", "%")


def tokenize(text: str) -> List[Token]:
    """Split formula text into tokens."""
    tokens = []
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch.isspace():
            i += 1
            continue

        if ch == "`":
            end = text.find("`", i + 1)
            if end == -1:
                raise FormulaSyntaxError("Unterminated back-quoted name", formula=text, position=i)
            tokens.append(Token("QNAME", text[i + 1:end], i))
            i = end + 1
            continue

        if ch in "'\"":
            end = text.find(ch, i + 1)
            if end == -1:
                raise FormulaSyntaxError("Unterminated string", formula=text, position=i)
            tokens.append(Token("STRING", text[i + 1:end], i))
            i = end + 1
            continue

        if ch.isdigit() or (ch == "." and i + 1 < n and text[i + 1].isdigit()):
            match = _NUMBER_RE.match(text, i)
            tokens.append(Token("NUMBER", match.group(0), i))
            i = match.end()
            continue

        if ch.isalpha() or ch in "_.":
            match = _NAME_RE.match(text, i)
            value = match.group(0)
            tokens.append(Token("DOT" if value == "." else "NAME", value, i))
            i = match.end()
            continue

        for op in _OPERATORS:
            if text.startswith(op, i):
                tokens.append(Token("OP", op, i))
                i += len(op)
                break
        else:
            raise FormulaSyntaxError(f"Unexpected character '{ch}'", formula=text, position=i)

    tokens.append(Token("END", "", n))
    return tokens


# ---------------------------------------------------------------------------
# Tree
# ---------------------------------------------------------------------------

class Node:
    """Base class for term-expression tree nodes."""


@dataclass(frozen=True)
class TermNode(Node):
    """A single-factor term, already bound to the schema."""
    term: Term


@dataclass(frozen=True)
class InterceptNode(Node):
    """``1`` (present=True) or ``0`` (present=False)."""
    present: bool


@dataclass(frozen=True)
class DotNode(Node):
    """The ``.`` wildcard."""


@dataclass(frozen=True)
class BinaryNode(Node):
    """``+``, ``-``, ``:`` or ``*``."""
    op: str
    left: Node
    right: Node


@dataclass(frozen=True)
class PowerNode(Node):
    """``(expr)^n``."""
    base: Node
    exponent: int


@dataclass(frozen=True)
class NegateNode(Node):
    """Unary minus: the operand's terms are removed."""
    operand: Node


@dataclass(frozen=True)
class ParsedFormula:
    """Result of parsing a formula string against a schema."""
    text: str
    response: str
    tree: Node
    schema: Tuple[str, ...]


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

_LITERAL_NAMES = {
    "TRUE": "True", "T": "True", "True": "True",
    "FALSE": "False", "F": "False", "False": "False",
    "NULL": "None", "None": "None",
}


class FormulaParser:
    """
    Parser for R-style model formulas.

    The parser is bound to a schema: every column a formula mentions must be
    one of ``schema``, and the parsed tree never looks names up again.

    Examples
    --------
    >>> parser = FormulaParser(["rate", "temp", "species"])
    >>> parsed = parser.parse("rate ~ temp * species")
    >>> parsed.response
    'rate'
    """

    def __init__(self, schema: Sequence[str]):
        self.schema = tuple(str(c) for c in schema)
        if len(set(self.schema)) != len(self.schema):
            raise ValueError("Schema column names must be unique")
        self._columns = set(self.schema)

    def parse(self, text: str) -> ParsedFormula:
        """
        Parse a formula string.

        Raises
        ------
        FormulaSyntaxError
            On malformed syntax, unknown columns or transforms, or a missing
            response.
        """
        if not isinstance(text, str) or not text.strip():
            raise FormulaSyntaxError("Formula must be a non-empty string", formula=str(text))
        logger.debug("Parsing formula", formula=text)
        return _FormulaReader(self.schema, self._columns, text).read()


class _FormulaReader:
    """Recursive-descent state for one ``parse`` call."""

    def __init__(self, schema: Tuple[str, ...], columns: set, text: str):
        self.schema = schema
        self._columns = columns
        self._text = text
        self._tokens = tokenize(text)
        self._i = 0

    def read(self) -> ParsedFormula:
        text = self._text
        tildes = [t for t in self._tokens if t.type == "OP" and t.value == "~"]
        if not tildes:
            raise FormulaSyntaxError(
                "Missing '~' separating the response from the terms",
                formula=text,
                suggestions=["Write formulas as 'response ~ terms', e.g. 'y ~ x1 + x2'"],
            )
        if len(tildes) > 1:
            raise FormulaSyntaxError("More than one '~'", formula=text, position=tildes[1].pos)

        response = self._parse_response()
        self._expect("OP", "~")
        if self._peek().type == "END":
            raise FormulaSyntaxError("Empty right-hand side", formula=text, position=len(text))
        tree = self._parse_sum()
        if self._peek().type != "END":
            token = self._peek()
            raise FormulaSyntaxError(f"Unexpected '{token.text}'", formula=text, position=token.pos)

        return ParsedFormula(text=text, response=response, tree=tree, schema=self.schema)

    # -- token helpers -----------------------------------------------------

    def _peek(self, offset: int = 0) -> Token:
        return self._tokens[min(self._i + offset, len(self._tokens) - 1)]

    def _next(self) -> Token:
        token = self._tokens[self._i]
        self._i += 1
        return token

    def _at(self, type_: str, value: Optional[str] = None) -> bool:
        token = self._peek()
        return token.type == type_ and (value is None or token.value == value)

    def _expect(self, type_: str, value: Optional[str] = None) -> Token:
        if not self._at(type_, value):
            token = self._peek()
            wanted = value or type_
            found = token.text or "end of formula"
            raise FormulaSyntaxError(
                f"Expected '{wanted}' but found '{found}'", formula=self._text, position=token.pos
            )
        return self._next()

    def _error(self, message: str, token: Token, **kwargs):
        return FormulaSyntaxError(message, formula=self._text, position=token.pos, **kwargs)

    # -- grammar -----------------------------------------------------------

    def _parse_response(self) -> str:
        token = self._peek()
        if token.type == "OP" and token.value == "~":
            raise self._error(
                "Response omitted",
                token,
                suggestions=["Put the response column on the left of '~'"],
            )
        if token.type not in ("NAME", "QNAME"):
            raise self._error("Response must be a column name", token)
        self._next()
        if not self._at("OP", "~"):
            raise self._error("Response must be a single column name", self._peek())
        if token.value not in self._columns:
            raise UnknownColumnError(token.value, self.schema, formula=self._text)
        return token.value

    def _parse_sum(self) -> Node:
        node = self._parse_unary()
        while self._at("OP", "+") or self._at("OP", "-"):
            op = self._next().value
            right = self._parse_unary()
            node = BinaryNode(op, node, right)
        return node

    def _parse_unary(self) -> Node:
        if self._at("OP", "-"):
            self._next()
            return NegateNode(self._parse_unary())
        if self._at("OP", "+"):
            self._next()
            return self._parse_unary()
        return self._parse_product()

    def _parse_product(self) -> Node:
        node = self._parse_interaction()
        while self._at("OP", "*"):
            self._next()
            node = BinaryNode("*", node, self._parse_interaction())
        return node

    def _parse_interaction(self) -> Node:
        node = self._parse_power()
        while self._at("OP", ":"):
            self._next()
            node = BinaryNode(":", node, self._parse_power())
        return node

    def _parse_power(self) -> Node:
        node = self._parse_atom()
        if self._at("OP", "^") or self._at("OP", "**"):
            op = self._next()
            token = self._peek()
            if token.type != "NUMBER" or not re.fullmatch(r"\d+", token.value) or int(token.value) < 1:
                raise self._error("Exponent must be a positive integer", token)
            self._next()
            node = PowerNode(node, int(token.value))
            if self._at("OP", "^") or self._at("OP", "**"):
                raise self._error("Repeated '^'", self._peek())
        return node

    def _parse_atom(self) -> Node:
        token = self._peek()

        if token.type == "OP" and token.value == "(":
            self._next()
            if self._at("OP", ")"):
                raise self._error("Empty parentheses", self._peek())
            node = self._parse_sum()
            if not self._at("OP", ")"):
                raise self._error("Unbalanced parentheses: missing ')'", self._peek())
            self._next()
            return node

        if token.type == "NUMBER":
            self._next()
            if token.value in ("0", "1"):
                return InterceptNode(token.value == "1")
            raise self._error(
                f"Numeric term '{token.value}' is not allowed",
                token,
                suggestions=["Wrap arithmetic in I(), e.g. I(2 * x)"],
            )

        if token.type == "DOT":
            self._next()
            return DotNode()

        if token.type == "NAME" and self._peek(1).type == "OP" and self._peek(1).value == "(":
            return TermNode(self._parse_call())

        if token.type in ("NAME", "QNAME"):
            self._next()
            if token.value not in self._columns:
                raise UnknownColumnError(token.value, self.schema, formula=self._text)
            return TermNode(MainEffect(token.value))

        if token.type == "OP" and token.value == "/":
            raise self._error("Nesting operator '/' is not supported", token)

        if token.type == "END":
            raise self._error("Formula ends with a dangling operator", token)

        if token.type == "OP" and token.value == ")":
            raise self._error("Unbalanced parentheses: unexpected ')'", token)

        raise self._error(f"Unexpected '{token.text}'", token)

    # -- calls -------------------------------------------------------------

    def _parse_call(self) -> Term:
        name_token = self._next()
        name = name_token.value
        self._next()  # '('
        args = self._collect_arguments(name_token)

        if name == "I":
            if len(args) != 1 or args[0][0] is not None:
                raise self._error("I() takes exactly one expression", name_token)
            return Identity(self._compile_expression(args[0][1], name_token))

        transform = TRANSFORMS.get(name)
        if transform is None:
            raise self._error(
                f"Unknown function '{name}'",
                name_token,
                suggestions=[
                    f"Known transforms: {', '.join(sorted(TRANSFORMS))}",
                    "Wrap arithmetic in I(), e.g. I(x^2)",
                ],
            )

        if not args or args[0][0] is not None:
            raise self._error(f"{name}() needs a variable as its first argument", name_token)
        expression = self._compile_expression(args[0][1], name_token)

        positional = [tokens for key, tokens in args[1:] if key is None]
        keywords = {key: tokens for key, tokens in args[1:] if key is not None}
        if len(positional) > len(transform.params):
            raise self._error(f"{name}() takes at most {len(transform.params) + 1} arguments", name_token)
        if any(key is None for key, _ in args[1:][len(positional):]):
            raise self._error(f"Positional argument follows keyword argument in {name}()", name_token)

        values: Dict[str, Any] = {}
        for param, tokens in zip(transform.params, positional):
            values[param] = self._literal(tokens, name_token)
        for key, tokens in keywords.items():
            if key in values:
                raise self._error(f"{name}() got multiple values for '{key}'", name_token)
            values[key] = self._literal(tokens, name_token)

        try:
            checked = transform.check_arguments(values)
        except ValueError as e:
            raise self._error(str(e), name_token) from e

        arg_texts = [expression.text]
        arg_texts += ["".join(t.text for t in tokens) for tokens in positional]
        arg_texts += [f"{key}={''.join(t.text for t in tokens)}" for key, tokens in keywords.items()]
        text = f"{name}({', '.join(arg_texts)})"

        arguments = tuple(sorted((k, _freeze(v)) for k, v in checked.items()))
        return Transformed(function=name, expression=expression, arguments=arguments, text=text)

    def _collect_arguments(self, name_token: Token) -> List[Tuple[Optional[str], List[Token]]]:
        """Collect comma-separated argument token lists up to the matching ')'."""
        args = []
        current: List[Token] = []
        depth = 0
        while True:
            token = self._next()
            if token.type == "END":
                raise self._error(f"Unbalanced parentheses in call to {name_token.value}()", token)
            if token.type == "OP" and token.value in ("(", "["):
                depth += 1
            elif token.type == "OP" and token.value in (")", "]"):
                if depth == 0:
                    if token.value == "]":
                        raise self._error("Unbalanced ']'", token)
                    if current or args:
                        args.append(current)
                    break
                depth -= 1
            elif token.type == "OP" and token.value == "," and depth == 0:
                if not current:
                    raise self._error("Empty argument", token)
                args.append(current)
                current = []
                continue
            elif token.type == "OP" and token.value == "~":
                raise self._error("'~' is not allowed inside a call", token)
            current.append(token)

        result = []
        for tokens in args:
            if not tokens:
                raise self._error("Empty argument", name_token)
            if (len(tokens) > 2 and tokens[0].type == "NAME"
                    and tokens[1].type == "OP" and tokens[1].value == "="):
                result.append((tokens[0].value, tokens[2:]))
            else:
                result.append((None, tokens))
        return result

    def _compile_expression(self, tokens: List[Token], name_token: Token) -> ArithmeticExpression:
        """Compile an argument into an arithmetic expression over schema columns."""
        columns: List[str] = []
        source = []
        for k, token in enumerate(tokens):
            following = tokens[k + 1] if k + 1 < len(tokens) else None
            is_call = following is not None and following.type == "OP" and following.value == "("
            if token.type == "NAME" and is_call:
                if token.value not in ARITHMETIC_FUNCTIONS:
                    raise self._error(f"Function '{token.value}' is not allowed in arithmetic", token)
                source.append(token.value)
            elif token.type in ("NAME", "QNAME"):
                if token.value not in self._columns:
                    raise UnknownColumnError(token.value, self.schema, formula=self._text)
                if token.value not in columns:
                    columns.append(token.value)
                source.append(f"_c{columns.index(token.value)}")
            elif token.type == "NUMBER":
                source.append(token.value)
            elif token.type == "OP" and token.value in ("+", "-", "*", "/", "^", "**", "(", ")",
                                                       ">", "<", ">=", "<=", "==", "!=", "%"):
                source.append("**" if token.value == "^" else token.value)
            else:
                raise self._error(f"Unexpected '{token.text}' in expression", token)
            source.append(" ")

        text = "".join(t.text for t in tokens)
        try:
            return ArithmeticExpression(text=text, source="".join(source).strip(), columns=tuple(columns))
        except FormulaSyntaxError as e:
            raise self._error(str(e), name_token) from e

    def _literal(self, tokens: List[Token], name_token: Token) -> Any:
        """Evaluate a literal argument (number, logical, string, NULL or vector)."""
        parts = []
        k = 0
        while k < len(tokens):
            token = tokens[k]
            if token.type == "NAME" and token.value == "c" and k + 1 < len(tokens) \
                    and tokens[k + 1].value == "(":
                # R vector: c(1, 2) -> [1, 2]
                depth = 0
                for j in range(k + 1, len(tokens)):
                    if tokens[j].value == "(":
                        depth += 1
                    elif tokens[j].value == ")":
                        depth -= 1
                        if depth == 0:
                            inner = self._literal(tokens[k + 2:j], name_token) if j > k + 2 else []
                            if not isinstance(inner, (list, tuple)):
                                inner = [inner]
                            parts.append(repr(list(inner)))
                            k = j + 1
                            break
                else:
                    raise self._error("Unbalanced parentheses in c()", token)
                continue
            if token.type == "NAME":
                if token.value not in _LITERAL_NAMES:
                    raise self._error(f"Argument '{token.value}' must be a literal value", token)
                parts.append(_LITERAL_NAMES[token.value])
            elif token.type in ("NUMBER", "STRING") or (token.type == "OP" and token.value in "-+,[]()"):
                parts.append(token.text)
            else:
                raise self._error(f"Argument '{token.text}' must be a literal value", token)
            k += 1

        source = "".join(parts)
        try:
            value = ast.literal_eval(source)
        except (ValueError, SyntaxError) as e:
            raise self._error(f"Invalid argument '{source}'", name_token) from e
        if isinstance(value, tuple):
            value = list(value)
        return value


def _freeze(value: Any) -> Any:
    if isinstance(value, list):
        return tuple(_freeze(v) for v in value)
    return value


def parse_formula(text: str, schema: Sequence[str]) -> ParsedFormula:
    """Parse a formula string against a schema (convenience wrapper)."""
    return FormulaParser(schema).parse(text)


__all__ = [
    "Token",
    "tokenize",
    "Node",
    "TermNode",
    "InterceptNode",
    "DotNode",
    "BinaryNode",
    "PowerNode",
    "NegateNode",
    "ParsedFormula",
    "FormulaParser",
    "parse_formula",
]
