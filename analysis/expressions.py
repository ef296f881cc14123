"""
Expression parsing over preprocessing tokens.

Macro replacement lists are token sequences, not declarations, so they never
reach tree-sitter as a standalone expression. This module parses a replacement
list into a small expression tree with C++ operator precedence. The tree is
shared by constant folding (object-like macros) and hazard analysis
(function-like macros).
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, List, Optional, Sequence, Tuple

from analysis.config import ARITHMETIC_TYPE_KEYWORDS
from preprocessor.models import Token, TokenKind, render_tokens

logger = logging.getLogger(__name__)

# Binary operator precedence, higher binds tighter.
BINARY_PRECEDENCE = {
    "*": 13, "/": 13, "%": 13,
    "+": 12, "-": 12,
    "<<": 11, ">>": 11,
    "<=>": 10,
    "<": 9, "<=": 9, ">": 9, ">=": 9,
    "==": 8, "!=": 8,
    "&": 7,
    "^": 6,
    "|": 5,
    "&&": 4,
    "||": 3,
}
CONDITIONAL_PRECEDENCE = 2
ASSIGNMENT_PRECEDENCE = 2
COMMA_PRECEDENCE = 1
UNARY_PRECEDENCE = 14
PRIMARY_PRECEDENCE = 16

ASSIGNMENT_OPERATORS = frozenset({
    "=", "+=", "-=", "*=", "/=", "%=", "<<=", ">>=", "&=", "^=", "|=",
})
UNARY_OPERATORS = frozenset({"+", "-", "!", "~", "*", "&"})
INCREMENT_OPERATORS = frozenset({"++", "--"})
NAMED_CASTS = frozenset({"static_cast", "const_cast", "reinterpret_cast", "dynamic_cast"})

# ISO 646 alternative spellings
ALTERNATIVE_OPERATORS = {
    "and": "&&", "or": "||", "not": "!", "bitand": "&", "bitor": "|",
    "xor": "^", "compl": "~", "not_eq": "!=", "and_eq": "&=", "or_eq": "|=",
    "xor_eq": "^=",
}

_CAST_QUALIFIERS = frozenset({"const", "volatile"})


class ExpressionSyntaxError(ValueError):
    """Raised when a token sequence is not a single C++ expression."""


class ExprKind(str, Enum):
    LITERAL = "literal"
    NAME = "name"
    PAREN = "paren"
    UNARY = "unary"
    BINARY = "binary"
    CONDITIONAL = "conditional"
    ASSIGN = "assign"
    COMMA = "comma"
    CALL = "call"
    SUBSCRIPT = "subscript"
    MEMBER = "member"
    POSTFIX = "postfix"
    CAST = "cast"
    SIZEOF = "sizeof"
    NEW = "new"
    DELETE = "delete"
    THROW = "throw"


@dataclass(frozen=True)
class Expr:
    """Expression tree node.

    Attributes:
        kind: Node kind.
        op: Operator spelling, name text, cast type or member name.
        children: Operand nodes in source order.
        start: Index of the node's first token in the parsed sequence.
        end: Index one past the node's last token.
        tokens: Leaf tokens (literal tokens or the name's tokens).
    """

    kind: ExprKind
    op: str
    children: Tuple["Expr", ...]
    start: int
    end: int
    tokens: Tuple[Token, ...] = ()

    @property
    def precedence(self) -> int:
        if self.kind is ExprKind.BINARY:
            return BINARY_PRECEDENCE[self.op]
        if self.kind is ExprKind.CONDITIONAL:
            return CONDITIONAL_PRECEDENCE
        if self.kind is ExprKind.ASSIGN:
            return ASSIGNMENT_PRECEDENCE
        if self.kind is ExprKind.COMMA:
            return COMMA_PRECEDENCE
        if self.kind in (ExprKind.UNARY, ExprKind.CAST, ExprKind.NEW, ExprKind.DELETE):
            return UNARY_PRECEDENCE
        if self.kind is ExprKind.THROW:
            return ASSIGNMENT_PRECEDENCE
        return PRIMARY_PRECEDENCE

    @property
    def is_primary(self) -> bool:
        """True for expressions that cannot be split by surrounding operators."""
        return self.precedence == PRIMARY_PRECEDENCE


def _op(token: Optional[Token]) -> Optional[str]:
    if token is None:
        return None
    if token.kind is TokenKind.PUNCTUATOR:
        return token.lexeme
    if token.kind is TokenKind.IDENTIFIER and token.lexeme in ALTERNATIVE_OPERATORS:
        return ALTERNATIVE_OPERATORS[token.lexeme]
    return None


class _Parser:
    def __init__(self, tokens: Sequence[Token]) -> None:
        self.tokens = list(tokens)
        self.index = 0

    def peek(self, ahead: int = 0) -> Optional[Token]:
        position = self.index + ahead
        if position < len(self.tokens):
            return self.tokens[position]
        return None

    def advance(self) -> Token:
        token = self.peek()
        if token is None:
            raise ExpressionSyntaxError("unexpected end of expression")
        self.index += 1
        return token

    def expect(self, lexeme: str) -> Token:
        token = self.peek()
        if token is None or not token.is_punct(lexeme):
            found = token.lexeme if token is not None else "end of expression"
            raise ExpressionSyntaxError(f"expected '{lexeme}', found '{found}'")
        return self.advance()

    def parse(self) -> Expr:
        if not self.tokens:
            raise ExpressionSyntaxError("empty expression")
        expr = self.expression()
        if self.index < len(self.tokens):
            raise ExpressionSyntaxError(f"unexpected token '{self.tokens[self.index].lexeme}'")
        return expr

    def expression(self) -> Expr:
        start = self.index
        expr = self.assignment()
        items = [expr]
        while _op(self.peek()) == ",":
            self.advance()
            items.append(self.assignment())
        if len(items) == 1:
            return expr
        return Expr(ExprKind.COMMA, ",", tuple(items), start, self.index)

    def assignment(self) -> Expr:
        start = self.index
        if self.peek() is not None and self.peek().is_identifier("throw"):
            self.advance()
            operand = () if self._at_expression_end() else (self.assignment(),)
            return Expr(ExprKind.THROW, "throw", operand, start, self.index)
        left = self.conditional()
        op = _op(self.peek())
        if op in ASSIGNMENT_OPERATORS:
            self.advance()
            right = self.assignment()
            return Expr(ExprKind.ASSIGN, op, (left, right), start, self.index)
        return left

    def _at_expression_end(self) -> bool:
        return self.peek() is None or _op(self.peek()) in {")", "]", ",", ":"}

    def conditional(self) -> Expr:
        start = self.index
        condition = self.binary(BINARY_PRECEDENCE["||"])
        if _op(self.peek()) != "?":
            return condition
        self.advance()
        when_true = self.expression()
        self.expect(":")
        when_false = self.assignment()
        return Expr(ExprKind.CONDITIONAL, "?:", (condition, when_true, when_false), start, self.index)

    def binary(self, min_precedence: int) -> Expr:
        start = self.index
        left = self.unary()
        while True:
            op = _op(self.peek())
            precedence = BINARY_PRECEDENCE.get(op) if op else None
            if precedence is None or precedence < min_precedence:
                return left
            self.advance()
            right = self.binary(precedence + 1)
            left = Expr(ExprKind.BINARY, op, (left, right), start, self.index)

    def unary(self) -> Expr:
        start = self.index
        token = self.peek()
        if token is None:
            raise ExpressionSyntaxError("unexpected end of expression")
        op = _op(token)
        if op in INCREMENT_OPERATORS or op in UNARY_OPERATORS:
            self.advance()
            operand = self.unary()
            return Expr(ExprKind.UNARY, op, (operand,), start, self.index)
        if token.is_identifier("sizeof") or token.is_identifier("alignof"):
            return self._sizeof()
        if token.is_identifier("new"):
            return self._new()
        if token.is_identifier("delete"):
            self.advance()
            if _op(self.peek()) == "[":
                self.advance()
                self.expect("]")
            operand = self.unary()
            return Expr(ExprKind.DELETE, "delete", (operand,), start, self.index)
        if op == "(":
            cast_type = self._cast_type_ahead()
            if cast_type is not None:
                return self._c_style_cast(cast_type)
        return self.postfix()

    def _cast_type_ahead(self) -> Optional[Tuple[str, int]]:
        """Return ``(type, token_count)`` if a C-style cast to a builtin type follows."""
        words: List[str] = []
        position = self.index + 1
        while position < len(self.tokens):
            token = self.tokens[position]
            if token.is_punct(")"):
                break
            if token.kind is TokenKind.IDENTIFIER and (
                token.lexeme in ARITHMETIC_TYPE_KEYWORDS or token.lexeme in _CAST_QUALIFIERS
            ):
                words.append(token.lexeme)
            elif token.is_punct("*", "&"):
                words.append(token.lexeme)
            else:
                return None
            position += 1
        else:
            return None
        if not any(word in ARITHMETIC_TYPE_KEYWORDS for word in words):
            return None
        if position + 1 >= len(self.tokens):
            return None
        return " ".join(words), position - self.index + 1

    def _c_style_cast(self, cast_type: Tuple[str, int]) -> Expr:
        start = self.index
        type_text, count = cast_type
        self.index += count
        operand = self.unary()
        return Expr(ExprKind.CAST, type_text, (operand,), start, self.index)

    def _sizeof(self) -> Expr:
        start = self.index
        keyword = self.advance().lexeme
        if _op(self.peek()) == "(":
            # Operand is unevaluated; keep it opaque.
            self._skip_balanced("(", ")")
            return Expr(ExprKind.SIZEOF, keyword, (), start, self.index)
        operand = self.unary()
        return Expr(ExprKind.SIZEOF, keyword, (operand,), start, self.index)

    def _new(self) -> Expr:
        start = self.index
        self.advance()
        if _op(self.peek()) == "(":
            self._skip_balanced("(", ")")
        while self.peek() is not None and (
            self.peek().kind is TokenKind.IDENTIFIER or _op(self.peek()) in {"::", "*"}
        ):
            self.advance()
        if _op(self.peek()) == "[":
            self._skip_balanced("[", "]")
        if _op(self.peek()) == "(":
            self._skip_balanced("(", ")")
        elif _op(self.peek()) == "{":
            self._skip_balanced("{", "}")
        return Expr(ExprKind.NEW, "new", (), start, self.index)

    def _skip_balanced(self, opener: str, closer: str) -> None:
        depth = 0
        while True:
            token = self.advance()
            if token.is_punct(opener):
                depth += 1
            elif token.is_punct(closer):
                depth -= 1
                if depth == 0:
                    return

    def postfix(self) -> Expr:
        start = self.index
        expr = self.primary()
        while True:
            op = _op(self.peek())
            if op == "(":
                self.advance()
                args: List[Expr] = []
                if _op(self.peek()) != ")":
                    args.append(self.assignment())
                    while _op(self.peek()) == ",":
                        self.advance()
                        args.append(self.assignment())
                self.expect(")")
                expr = Expr(ExprKind.CALL, "()", (expr, *args), start, self.index)
            elif op == "[":
                self.advance()
                index = self.expression()
                self.expect("]")
                expr = Expr(ExprKind.SUBSCRIPT, "[]", (expr, index), start, self.index)
            elif op in (".", "->"):
                self.advance()
                member = self.advance()
                if member.kind is not TokenKind.IDENTIFIER:
                    raise ExpressionSyntaxError(f"expected member name after '{op}'")
                expr = Expr(ExprKind.MEMBER, op, (expr,), start, self.index, (member,))
            elif op in INCREMENT_OPERATORS:
                self.advance()
                expr = Expr(ExprKind.POSTFIX, op, (expr,), start, self.index)
            else:
                return expr

    def primary(self) -> Expr:
        start = self.index
        token = self.advance()
        if token.kind in (TokenKind.NUMBER, TokenKind.CHAR):
            return Expr(ExprKind.LITERAL, token.lexeme, (), start, self.index, (token,))
        if token.kind is TokenKind.STRING:
            parts = [token]
            while self.peek() is not None and self.peek().kind is TokenKind.STRING:
                parts.append(self.advance())
            return Expr(ExprKind.LITERAL, render_tokens(tuple(parts)), (), start, self.index, tuple(parts))
        if token.is_punct("("):
            inner = self.expression()
            self.expect(")")
            return Expr(ExprKind.PAREN, "()", (inner,), start, self.index)
        if token.kind is TokenKind.IDENTIFIER and token.lexeme in NAMED_CASTS:
            return self._named_cast(start, token)
        if token.kind is TokenKind.IDENTIFIER or token.is_punct("::"):
            parts = [token]
            if token.is_punct("::"):
                parts.append(self._expect_identifier())
            while _op(self.peek()) == "::":
                parts.append(self.advance())
                parts.append(self._expect_identifier())
            text = "".join(part.lexeme for part in parts)
            return Expr(ExprKind.NAME, text, (), start, self.index, tuple(parts))
        raise ExpressionSyntaxError(f"unexpected token '{token.lexeme}'")

    def _expect_identifier(self) -> Token:
        token = self.advance()
        if token.kind is not TokenKind.IDENTIFIER:
            raise ExpressionSyntaxError(f"expected identifier, found '{token.lexeme}'")
        return token

    def _named_cast(self, start: int, keyword: Token) -> Expr:
        self.expect("<")
        words: List[str] = []
        depth = 1
        while True:
            token = self.advance()
            if token.is_punct("<"):
                depth += 1
            elif token.is_punct(">"):
                depth -= 1
                if depth == 0:
                    break
            words.append(token.lexeme)
        self.expect("(")
        operand = self.expression()
        self.expect(")")
        return Expr(ExprKind.CAST, " ".join(words), (operand,), start, self.index, (keyword,))


def parse_expression(tokens: Sequence[Token]) -> Expr:
    """Parse a token sequence as exactly one C++ expression.

    Raises:
        ExpressionSyntaxError: If the tokens are not a single expression.
    """
    return _Parser(tokens).parse()


def iter_nodes(expr: Expr) -> Iterator[Expr]:
    """Yield ``expr`` and all of its descendants in pre-order."""
    stack = [expr]
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.children))


SIDE_EFFECT_KINDS = frozenset({
    ExprKind.ASSIGN,
    ExprKind.POSTFIX,
    ExprKind.CALL,
    ExprKind.NEW,
    ExprKind.DELETE,
    ExprKind.THROW,
})


def side_effect_of(expr: Expr) -> Optional[str]:
    """Describe the first side-effecting subexpression, or None."""
    for node in iter_nodes(expr):
        if node.kind is ExprKind.SIZEOF:
            continue
        if node.kind in SIDE_EFFECT_KINDS:
            return {
                ExprKind.ASSIGN: f"assignment '{node.op}'",
                ExprKind.POSTFIX: f"increment/decrement '{node.op}'",
                ExprKind.CALL: "function call",
                ExprKind.NEW: "'new' expression",
                ExprKind.DELETE: "'delete' expression",
                ExprKind.THROW: "'throw' expression",
            }[node.kind]
        if node.kind is ExprKind.UNARY and node.op in INCREMENT_OPERATORS:
            return f"increment/decrement '{node.op}'"
    return None


def tokens_have_side_effects(tokens: Sequence[Token]) -> bool:
    """Best-effort side-effect check for raw argument tokens."""
    try:
        return side_effect_of(parse_expression(tokens)) is not None
    except ExpressionSyntaxError:
        return any(
            token.kind is TokenKind.PUNCTUATOR
            and (token.lexeme in ASSIGNMENT_OPERATORS or token.lexeme in INCREMENT_OPERATORS)
            for token in tokens
        )
