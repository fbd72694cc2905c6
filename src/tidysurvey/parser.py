"""
Expression parser (text → Expression AST).

Users write column expressions the way they would in a dplyr pipeline:

    api00 - api99
    stype == "E" & !is.na(api00)
    ifelse(awards == "Yes", 1, 0)
    group_by(stype) |> summarize(api = survey_mean(api00, vartype = "ci"))

Syntax Notes:
    - R-style operators: & (AND), | (OR), ! (NOT), %in%, %%, %/%, ^
    - Precedence follows R: %in%, %% and %/% bind tighter than * and /,
      unary minus tighter still, ^ tightest
    - Python spellings are accepted too: and, or, not, **
    - Dotted identifiers are names (is.na), back quotes allow any name
    - TRUE/FALSE/NA/NULL (and True/False/None) are literals
    - |> and %>% chain verbs; they bind loosest of all
"""

import re
from typing import List, Tuple

from tidysurvey.errors import ExpressionParseError
from tidysurvey.expressions import (
    Expression,
    BinaryExpression,
    BinaryOperator,
    VariableReference,
    Literal,
    UnaryExpression,
    UnaryOperator,
    FunctionCall,
)


_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
    |(?P<number>(?:\d+\.\d*|\.\d+|\d+)(?:[eE][-+]?\d+)?L?)
    |(?P<string>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')
    |(?P<backquoted>`[^`]+`)
    |(?P<special>%in%|%>%|%/%|%%)
    |(?P<op>\|>|\*\*|==|!=|<=|>=|&&|\|\||[-+*/^<>!&|(),=])
    |(?P<name>[A-Za-z_.][A-Za-z0-9_.]*)
    """,
    re.VERBOSE,
)

_KEYWORD_LITERALS = {
    "TRUE": True,
    "True": True,
    "FALSE": False,
    "False": False,
    "NA": None,
    "NULL": None,
    "None": None,
}

_WORD_OPERATORS = {"and": "&", "or": "|", "not": "!"}

_COMPARISONS = {
    "==": BinaryOperator.EQUALS,
    "!=": BinaryOperator.NOT_EQUALS,
    "<": BinaryOperator.LESS_THAN,
    ">": BinaryOperator.GREATER_THAN,
    "<=": BinaryOperator.LESS_EQUAL,
    ">=": BinaryOperator.GREATER_EQUAL,
}

_MULTIPLICATIVE = {
    "*": BinaryOperator.MULTIPLY,
    "/": BinaryOperator.DIVIDE,
}

# R's %any% operators bind tighter than * and /
_SPECIAL = {
    "%in%": BinaryOperator.IN,
    "%%": BinaryOperator.MODULO,
    "%/%": BinaryOperator.INT_DIVIDE,
}


class _Token:
    """A lexed token: kind is one of number, string, name, op."""

    __slots__ = ("kind", "text", "position")

    def __init__(self, kind: str, text: str, position: int):
        self.kind = kind
        self.text = text
        self.position = position

    def __repr__(self) -> str:
        return f"{self.kind}:{self.text!r}"


def _tokenize(text: str) -> List[_Token]:
    """Tokenize expression text."""
    tokens: List[_Token] = []
    pos = 0
    while pos < len(text):
        match = _TOKEN_RE.match(text, pos)
        if match is None:
            raise ExpressionParseError(
                f"Unexpected character {text[pos]!r} at position {pos} in '{text}'"
            )
        kind = match.lastgroup
        value = match.group(kind)
        if kind == "backquoted":
            tokens.append(_Token("name", value[1:-1], pos))
        elif kind in ("special", "op"):
            tokens.append(_Token("op", value, pos))
        elif kind == "name" and value in _WORD_OPERATORS:
            tokens.append(_Token("op", _WORD_OPERATORS[value], pos))
        elif kind != "ws":
            tokens.append(_Token(kind, value, pos))
        pos = match.end()
    return tokens


class _Parser:
    """Recursive-descent parser over a token list."""

    def __init__(self, tokens: List[_Token], text: str):
        self.tokens = tokens
        self.text = text
        self.pos = 0

    def peek(self) -> str:
        if self.pos < len(self.tokens) and self.tokens[self.pos].kind == "op":
            return self.tokens[self.pos].text
        return ""

    def advance(self) -> _Token:
        if self.pos >= len(self.tokens):
            raise ExpressionParseError(f"Unexpected end of expression in '{self.text}'")
        token = self.tokens[self.pos]
        self.pos += 1
        return token

    def expect(self, op: str) -> None:
        if self.peek() != op:
            found = self.tokens[self.pos].text if self.pos < len(self.tokens) else "end of input"
            raise ExpressionParseError(f"Expected '{op}' but found '{found}' in '{self.text}'")
        self.pos += 1

    # -- precedence levels, loosest first ------------------------------------

    def parse_pipe(self) -> Expression:
        left = self.parse_or()
        while self.peek() in ("|>", "%>%"):
            self.pos += 1
            right = self.parse_or()
            left = BinaryExpression(BinaryOperator.PIPE, left, right)
        return left

    def parse_or(self) -> Expression:
        left = self.parse_and()
        while self.peek() in ("|", "||"):
            self.pos += 1
            right = self.parse_and()
            left = BinaryExpression(BinaryOperator.OR, left, right)
        return left

    def parse_and(self) -> Expression:
        left = self.parse_not()
        while self.peek() in ("&", "&&"):
            self.pos += 1
            right = self.parse_not()
            left = BinaryExpression(BinaryOperator.AND, left, right)
        return left

    def parse_not(self) -> Expression:
        if self.peek() == "!":
            self.pos += 1
            return UnaryExpression(UnaryOperator.NOT, self.parse_not())
        return self.parse_comparison()

    def parse_comparison(self) -> Expression:
        left = self.parse_additive()
        if self.peek() in _COMPARISONS:
            op = _COMPARISONS[self.advance().text]
            right = self.parse_additive()
            left = BinaryExpression(op, left, right)
            if self.peek() in _COMPARISONS:
                raise ExpressionParseError(f"Chained comparisons are not supported in '{self.text}'")
        return left

    def parse_additive(self) -> Expression:
        left = self.parse_multiplicative()
        while self.peek() in ("+", "-"):
            op = BinaryOperator.ADD if self.advance().text == "+" else BinaryOperator.SUBTRACT
            right = self.parse_multiplicative()
            left = BinaryExpression(op, left, right)
        return left

    def parse_multiplicative(self) -> Expression:
        left = self.parse_special()
        while self.peek() in _MULTIPLICATIVE:
            op = _MULTIPLICATIVE[self.advance().text]
            right = self.parse_special()
            left = BinaryExpression(op, left, right)
        return left

    def parse_special(self) -> Expression:
        left = self.parse_unary()
        while self.peek() in _SPECIAL:
            op = _SPECIAL[self.advance().text]
            right = self.parse_unary()
            left = BinaryExpression(op, left, right)
        return left

    def parse_unary(self) -> Expression:
        if self.peek() == "-":
            self.pos += 1
            operand = self.parse_unary()
            if isinstance(operand, Literal) and isinstance(operand.value, (int, float)) \
                    and not isinstance(operand.value, bool):
                return Literal(-operand.value)
            return UnaryExpression(UnaryOperator.NEGATE, operand)
        if self.peek() == "+":
            self.pos += 1
            return self.parse_unary()
        return self.parse_power()

    def parse_power(self) -> Expression:
        base = self.parse_primary()
        if self.peek() in ("^", "**"):
            self.pos += 1
            # Right associative, and binds tighter than a unary minus on its left
            exponent = self.parse_unary()
            return BinaryExpression(BinaryOperator.POWER, base, exponent)
        return base

    def parse_primary(self) -> Expression:
        token = self.advance()

        if token.kind == "op" and token.text == "(":
            expr = self.parse_pipe()
            self.expect(")")
            return expr

        if token.kind == "number":
            return Literal(_number(token.text))

        if token.kind == "string":
            return Literal(_unquote(token.text))

        if token.kind == "name":
            if token.text in _KEYWORD_LITERALS and self.peek() != "(":
                return Literal(_KEYWORD_LITERALS[token.text])
            if self.peek() == "(":
                self.pos += 1
                return self.parse_call(token.text)
            return VariableReference(token.text)

        raise ExpressionParseError(f"Unexpected token '{token.text}' in '{self.text}'")

    def parse_call(self, name: str) -> FunctionCall:
        arguments: List[Expression] = []
        keywords: List[Tuple[str, Expression]] = []

        if self.peek() == ")":
            self.pos += 1
            return FunctionCall(name)

        while True:
            if (self.pos + 1 < len(self.tokens)
                    and self.tokens[self.pos].kind == "name"
                    and self.tokens[self.pos + 1].kind == "op"
                    and self.tokens[self.pos + 1].text == "="):
                key = self.tokens[self.pos].text
                self.pos += 2
                keywords.append((key, self.parse_pipe()))
            else:
                if keywords:
                    raise ExpressionParseError(
                        f"Positional argument after keyword argument in call to {name}() in '{self.text}'"
                    )
                arguments.append(self.parse_pipe())

            if self.peek() == ",":
                self.pos += 1
                continue
            if self.peek() == ")":
                self.pos += 1
                break
            raise ExpressionParseError(f"Expected ',' or ')' in call to {name}() in '{self.text}'")

        return FunctionCall(name, tuple(arguments), tuple(keywords))


def _number(text: str):
    text = text.rstrip("L")
    if re.fullmatch(r"\d+", text):
        return int(text)
    return float(text)


def _unquote(text: str) -> str:
    body = text[1:-1]
    return re.sub(r"\\(.)", r"\1", body)


def parse_expression(text: str) -> Expression:
    """
    Parse expression text into an Expression AST.

    Args:
        text: Expression text (see module docstring for syntax)

    Returns:
        Expression AST

    Raises:
        ExpressionParseError: If the text is empty or syntactically invalid
    """
    if text is None or not str(text).strip():
        raise ExpressionParseError("Empty expression")

    text = str(text).strip()
    tokens = _tokenize(text)
    if not tokens:
        raise ExpressionParseError(f"No valid tokens in expression: '{text}'")

    parser = _Parser(tokens, text)
    expr = parser.parse_pipe()
    if parser.pos < len(tokens):
        rest = " ".join(t.text for t in tokens[parser.pos:])
        raise ExpressionParseError(f"Unexpected tokens after parsing: '{rest}' in '{text}'")
    return expr


__all__ = [
    "parse_expression",
    "ExpressionParseError",
]
