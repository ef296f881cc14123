"""
Data models for the preprocessing-token stream and macro directives.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple


class TokenKind(str, Enum):
    IDENTIFIER = "identifier"
    NUMBER = "number"
    STRING = "string"
    CHAR = "char"
    PUNCTUATOR = "punctuator"
    OTHER = "other"


class Reachability(str, Enum):
    """Whether code is reached regardless of conditional compilation."""

    UNCONDITIONAL = "unconditional"
    CONDITIONAL = "conditional"
    DISABLED = "disabled"


class DirectiveKind(str, Enum):
    DEFINE = "define"
    UNDEF = "undef"


@dataclass(frozen=True, order=True)
class SourceSpan:
    """A character range in one file.

    Attributes:
        path: File the range belongs to.
        start: Offset of the first character in the decoded file text.
        end: Offset one past the last character.
        line: 1-indexed line of ``start``.
        column: 1-indexed column of ``start``.
    """

    path: str
    start: int
    end: int
    line: int = field(default=0, compare=False)
    column: int = field(default=0, compare=False)

    def overlaps(self, other: "SourceSpan") -> bool:
        if self.path != other.path:
            return False
        if self.start == self.end or other.start == other.end:
            # Zero-width insertions collide only at the same point.
            return self.start == other.start and self.end == other.end
        return self.start < other.end and other.start < self.end


@dataclass(frozen=True)
class Token:
    """A preprocessing token with provenance.

    ``expansion_depth`` is 0 for tokens read from source and grows by one
    each time the token is produced by substituting a macro replacement.
    ``position`` is the ordinal in the translation unit's token sequence and
    is the coordinate macro active-spans are measured in.
    """

    kind: TokenKind
    lexeme: str
    span: SourceSpan
    expansion_depth: int = 0
    at_line_start: bool = False
    has_leading_space: bool = False
    reachability: Reachability = Reachability.UNCONDITIONAL
    position: int = -1

    def is_punct(self, *lexemes: str) -> bool:
        return self.kind is TokenKind.PUNCTUATOR and self.lexeme in lexemes

    def is_identifier(self, name: Optional[str] = None) -> bool:
        if self.kind is not TokenKind.IDENTIFIER:
            return False
        return name is None or self.lexeme == name


@dataclass(frozen=True)
class DirectiveLine:
    """Any preprocessing directive line, recorded so none is dropped."""

    keyword: str
    tokens: Tuple[Token, ...]
    span: SourceSpan
    reachability: Reachability
    position: int


@dataclass(frozen=True)
class Directive:
    """A ``#define`` or ``#undef`` event owned by the macro table."""

    kind: DirectiveKind
    name: str
    span: SourceSpan
    position: int
    parameters: Tuple[str, ...] = ()
    function_like: bool = False
    variadic: bool = False
    replacement: Tuple[Token, ...] = ()
    reachability: Reachability = Reachability.UNCONDITIONAL
    end_position: int = -1

    @property
    def signature(self) -> tuple:
        """Identity used to tell benign redefinitions from conflicting ones."""
        return (
            self.function_like,
            self.parameters,
            self.variadic,
            tuple(token.lexeme for token in self.replacement),
        )

    @property
    def replacement_text(self) -> str:
        return render_tokens(self.replacement)


@dataclass(frozen=True)
class MacroDefinition:
    """One active span of a macro name.

    Attributes:
        name: Macro name.
        define: The Define directive that opened this span.
        events: Every Directive for the name in the unit, in order.
        active_start: First token position after the defining directive line.
        active_end: Position where the span closes, or None at end of unit.
        closed_by: Directive that closed the span, if any.
    """

    name: str
    define: Directive
    events: Tuple[Directive, ...]
    active_start: int
    active_end: Optional[int] = None
    closed_by: Optional[Directive] = None

    @property
    def is_function_like(self) -> bool:
        return self.define.function_like

    @property
    def redefined(self) -> bool:
        return self.closed_by is not None and self.closed_by.kind is DirectiveKind.DEFINE

    def is_active_at(self, position: int) -> bool:
        if position < self.active_start:
            return False
        return self.active_end is None or position < self.active_end

    @property
    def is_nonempty(self) -> bool:
        return self.active_end is None or self.active_end > self.active_start


def render_tokens(tokens: Tuple[Token, ...]) -> str:
    """Render tokens back to text, keeping single spaces where source had them."""
    parts = []
    for index, token in enumerate(tokens):
        if index and token.has_leading_space:
            parts.append(" ")
        parts.append(token.lexeme)
    return "".join(parts)
