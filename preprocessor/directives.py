"""
Directive scanning for a translation unit.

Groups lexer output into logical lines, records every directive line, turns
``#define``/``#undef`` into ``Directive`` events, follows quoted includes and
tracks conditional compilation only far enough to label each token
unconditional, conditional or disabled.
"""

import logging
import os
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from core.errors import ParseError
from preprocessor.config import (
    ALWAYS_FALSE_CONDITIONS,
    ALWAYS_TRUE_CONDITIONS,
    CONDITIONAL_CLOSER,
    CONDITIONAL_CONTINUATIONS,
    CONDITIONAL_OPENERS,
    KNOWN_DIRECTIVES,
    MAX_INCLUDE_DEPTH,
)
from preprocessor.lexer import iter_tokens
from preprocessor.models import (
    Directive,
    DirectiveKind,
    DirectiveLine,
    Reachability,
    SourceSpan,
    Token,
    TokenKind,
)
from preprocessor.source import SourceFile, SourceLoader, decode_source

logger = logging.getLogger(__name__)


class _Branch(Enum):
    ALWAYS = "always"
    NEVER = "never"
    MAYBE = "maybe"


@dataclass
class _ConditionalFrame:
    keyword: str
    line: int
    state: _Branch
    any_always: bool
    all_never: bool
    saw_else: bool = False


@dataclass(frozen=True)
class _IncludeGuard:
    name: str
    endif_index: int


@dataclass(frozen=True)
class TokenStream:
    """Immutable scan result for one translation unit.

    Attributes:
        unit_path: Path of the main file.
        tokens: Every token of the unit in order, directive tokens included.
        code_tokens: Tokens outside directive lines.
        directive_lines: Every directive line, whatever its keyword.
        directives: ``#define``/``#undef`` events in unit order.
        files: Every file scanned for this unit, keyed by path.
        include_guards: Include-guard macro name per guarded file.
        unresolved_includes: Include directives that could not be followed.
    """

    unit_path: str
    tokens: Tuple[Token, ...]
    code_tokens: Tuple[Token, ...]
    directive_lines: Tuple[DirectiveLine, ...]
    directives: Tuple[Directive, ...]
    files: Mapping[str, SourceFile] = field(default_factory=dict)
    include_guards: Mapping[str, str] = field(default_factory=dict)
    unresolved_includes: Tuple[DirectiveLine, ...] = ()

    def conditional_lines(self) -> Iterable[DirectiveLine]:
        for line in self.directive_lines:
            if line.keyword in CONDITIONAL_OPENERS or line.keyword in CONDITIONAL_CONTINUATIONS:
                yield line


def group_logical_lines(tokens: Iterable[Token]) -> List[List[Token]]:
    """Split a token sequence into logical lines."""
    lines: List[List[Token]] = []
    for token in tokens:
        if token.at_line_start or not lines:
            lines.append([token])
        else:
            lines[-1].append(token)
    return lines


def _is_directive_line(line: Sequence[Token]) -> bool:
    return bool(line) and line[0].is_punct("#")


def _directive_keyword(line: Sequence[Token]) -> Tuple[str, Sequence[Token]]:
    rest = line[1:]
    if rest and rest[0].kind is TokenKind.IDENTIFIER:
        return rest[0].lexeme, rest[1:]
    return "", rest


def _static_condition(body: Sequence[Token]) -> _Branch:
    lexemes = [token.lexeme for token in body]
    while len(lexemes) >= 2 and lexemes[0] == "(" and lexemes[-1] == ")":
        lexemes = lexemes[1:-1]
    if len(lexemes) != 1:
        return _Branch.MAYBE
    value = lexemes[0]
    if value in ALWAYS_TRUE_CONDITIONS:
        return _Branch.ALWAYS
    if value in ALWAYS_FALSE_CONDITIONS:
        return _Branch.NEVER
    digits = value.rstrip("uUlL")
    if digits.isdigit():
        return _Branch.ALWAYS if int(digits) != 0 else _Branch.NEVER
    return _Branch.MAYBE


def _guard_operand(keyword: str, body: Sequence[Token]) -> Optional[str]:
    lexemes = [token.lexeme for token in body]
    if keyword == "ifndef" and len(body) == 1 and body[0].kind is TokenKind.IDENTIFIER:
        return body[0].lexeme
    if keyword == "if":
        if len(lexemes) == 3 and lexemes[:2] == ["!", "defined"]:
            return lexemes[2]
        if len(lexemes) == 5 and lexemes[:3] == ["!", "defined", "("] and lexemes[4] == ")":
            return lexemes[3]
    return None


def detect_include_guard(lines: Sequence[Sequence[Token]]) -> Optional[_IncludeGuard]:
    """Detect the ``#ifndef G / #define G ... #endif`` idiom around a whole file."""
    if len(lines) < 3 or not _is_directive_line(lines[0]) or not _is_directive_line(lines[1]):
        return None
    keyword, body = _directive_keyword(lines[0])
    guard = _guard_operand(keyword, body)
    if guard is None:
        return None
    define_keyword, define_body = _directive_keyword(lines[1])
    if define_keyword != "define" or len(define_body) != 1 or define_body[0].lexeme != guard:
        return None

    depth = 0
    for index, line in enumerate(lines):
        if not _is_directive_line(line):
            continue
        line_keyword, _ = _directive_keyword(line)
        if line_keyword in CONDITIONAL_OPENERS:
            depth += 1
        elif line_keyword == CONDITIONAL_CLOSER:
            depth -= 1
            if depth == 0:
                if index == len(lines) - 1:
                    return _IncludeGuard(name=guard, endif_index=index)
                return None
    return None


def _parse_parameters(
    tokens: Sequence[Token],
    path: str,
) -> Tuple[Tuple[str, ...], bool, int]:
    """Parse ``( params )`` starting at ``tokens[0]``.

    Returns:
        Tuple of (parameters, variadic, tokens consumed).
    """
    params: List[str] = []
    variadic = False
    expect_param = True
    index = 1
    while True:
        if index >= len(tokens):
            anchor = tokens[-1].span
            raise ParseError("missing ')' in macro parameter list", path, anchor.line, anchor.column)
        token = tokens[index]
        where = (path, token.span.line, token.span.column)
        if token.is_punct(")"):
            if expect_param and params:
                raise ParseError("expected parameter name before ')'", *where)
            return tuple(params), variadic, index + 1
        if variadic:
            raise ParseError("'...' must be the last macro parameter", *where)
        if expect_param:
            if token.is_punct("..."):
                variadic = True
            elif token.kind is TokenKind.IDENTIFIER:
                if token.lexeme in params:
                    raise ParseError(f"duplicate macro parameter '{token.lexeme}'", *where)
                params.append(token.lexeme)
                nxt = tokens[index + 1] if index + 1 < len(tokens) else None
                if nxt is not None and nxt.is_punct("..."):
                    variadic = True
                    index += 1
            else:
                raise ParseError("expected parameter name in macro parameter list", *where)
            expect_param = False
        elif token.is_punct(","):
            expect_param = True
        else:
            raise ParseError("expected ',' or ')' in macro parameter list", *where)
        index += 1


def _directive_span(line: Sequence[Token]) -> SourceSpan:
    first, last = line[0].span, line[-1].span
    return SourceSpan(
        path=first.path,
        start=first.start,
        end=last.end,
        line=first.line,
        column=first.column,
    )


def parse_define(
    line: Sequence[Token],
    reachability: Reachability = Reachability.UNCONDITIONAL,
) -> Directive:
    """Parse a ``#define`` line (tokens starting with ``#``) into a Directive.

    Raises:
        ParseError: If the directive is malformed.
    """
    span = _directive_span(line)
    _, body = _directive_keyword(line)
    if not body:
        raise ParseError("no macro name given in #define directive", span.path, span.line, span.column)
    name_token = body[0]
    where = (span.path, name_token.span.line, name_token.span.column)
    if name_token.kind is not TokenKind.IDENTIFIER:
        raise ParseError("macro names must be identifiers", *where)
    if name_token.lexeme == "defined":
        raise ParseError("'defined' cannot be used as a macro name", *where)

    rest = body[1:]
    parameters: Tuple[str, ...] = ()
    variadic = False
    function_like = bool(rest) and rest[0].is_punct("(") and not rest[0].has_leading_space
    if function_like:
        parameters, variadic, consumed = _parse_parameters(rest, span.path)
        replacement = tuple(rest[consumed:])
    else:
        replacement = tuple(rest)

    return Directive(
        kind=DirectiveKind.DEFINE,
        name=name_token.lexeme,
        span=span,
        position=line[0].position,
        end_position=line[-1].position,
        parameters=parameters,
        function_like=function_like,
        variadic=variadic,
        replacement=replacement,
        reachability=reachability,
    )


def parse_undef(
    line: Sequence[Token],
    reachability: Reachability = Reachability.UNCONDITIONAL,
) -> Directive:
    """Parse an ``#undef`` line into a Directive.

    Raises:
        ParseError: If no identifier follows ``#undef``.
    """
    span = _directive_span(line)
    _, body = _directive_keyword(line)
    if not body or body[0].kind is not TokenKind.IDENTIFIER:
        raise ParseError("no macro name given in #undef directive", span.path, span.line, span.column)
    if len(body) > 1:
        logger.debug("Extra tokens at end of #undef directive at %s:%d", span.path, span.line)
    return Directive(
        kind=DirectiveKind.UNDEF,
        name=body[0].lexeme,
        span=span,
        position=line[0].position,
        end_position=line[-1].position,
        reachability=reachability,
    )


def _reachability(frames: Sequence[_ConditionalFrame], outer: Reachability) -> Reachability:
    if outer is Reachability.DISABLED or any(f.state is _Branch.NEVER for f in frames):
        return Reachability.DISABLED
    if outer is Reachability.CONDITIONAL or any(f.state is _Branch.MAYBE for f in frames):
        return Reachability.CONDITIONAL
    return Reachability.UNCONDITIONAL


class _UnitScanner:
    """Accumulates the token stream of one translation unit."""

    def __init__(
        self,
        loader: Optional[SourceLoader],
        include_dirs: Sequence[str],
        follow_includes: bool,
    ) -> None:
        self._loader = loader
        self._include_dirs = tuple(include_dirs)
        self._follow_includes = follow_includes and loader is not None
        self._position = 0
        self.tokens: List[Token] = []
        self.code_tokens: List[Token] = []
        self.directive_lines: List[DirectiveLine] = []
        self.directives: List[Directive] = []
        self.files: Dict[str, SourceFile] = {}
        self.include_guards: Dict[str, str] = {}
        self.unresolved: List[DirectiveLine] = []
        self._once: set = set()

    def _place(self, token: Token, reachability: Reachability) -> Token:
        placed = replace(token, position=self._position, reachability=reachability)
        self._position += 1
        self.tokens.append(placed)
        return placed

    def scan_file(self, path: str, text: str, outer: Reachability, depth: int) -> None:
        self.files[path] = SourceFile(path=path, text=text)
        lines = group_logical_lines(iter_tokens(text, path))
        guard = detect_include_guard(lines)
        if guard is not None:
            self.include_guards[path] = guard.name

        frames: List[_ConditionalFrame] = []
        for index, raw_line in enumerate(lines):
            if not _is_directive_line(raw_line):
                reachability = _reachability(frames, outer)
                for token in raw_line:
                    self.code_tokens.append(self._place(token, reachability))
                continue
            is_guard = guard is not None and (index == 0 or index == guard.endif_index)
            self._handle_directive(path, raw_line, frames, outer, depth, is_guard)

        if frames:
            raise ParseError(
                f"unterminated conditional directive #{frames[-1].keyword}",
                path,
                frames[-1].line,
                1,
            )
        if guard is not None:
            self._once.add(path)

    def _handle_directive(
        self,
        path: str,
        raw_line: Sequence[Token],
        frames: List[_ConditionalFrame],
        outer: Reachability,
        depth: int,
        is_guard: bool,
    ) -> None:
        keyword, body = _directive_keyword(raw_line)
        reach_here = _reachability(frames, outer)
        if keyword in CONDITIONAL_CONTINUATIONS or keyword == CONDITIONAL_CLOSER:
            reach_here = _reachability(frames[:-1], outer)

        line = [self._place(token, reach_here) for token in raw_line]
        span = _directive_span(line)
        self.directive_lines.append(
            DirectiveLine(
                keyword=keyword,
                tokens=tuple(line[2:] if keyword else line[1:]),
                span=span,
                reachability=reach_here,
                position=line[0].position,
            )
        )

        if keyword in CONDITIONAL_OPENERS or keyword in CONDITIONAL_CONTINUATIONS or keyword == CONDITIONAL_CLOSER:
            self._handle_conditional(keyword, body, span, frames, reach_here, is_guard)
            return

        if keyword == "define":
            self._record(line, reach_here, parse_define)
        elif keyword == "undef":
            self._record(line, reach_here, parse_undef)
        elif keyword == "include" and reach_here is not Reachability.DISABLED:
            self._include(path, body, self.directive_lines[-1], reach_here, depth)
        elif keyword == "pragma" and body and body[0].lexeme == "once":
            self._once.add(path)
        elif keyword and keyword not in KNOWN_DIRECTIVES and reach_here is not Reachability.DISABLED:
            logger.debug("Unknown directive #%s at %s:%d", keyword, span.path, span.line)

    def _record(self, line: Sequence[Token], reachability: Reachability, parse) -> None:
        try:
            directive = parse(line, reachability)
        except ParseError:
            if reachability is Reachability.DISABLED:
                logger.debug("Ignoring malformed directive in disabled branch at line %d", line[0].span.line)
                return
            raise
        self.directives.append(directive)

    def _handle_conditional(
        self,
        keyword: str,
        body: Sequence[Token],
        span: SourceSpan,
        frames: List[_ConditionalFrame],
        reach_here: Reachability,
        is_guard: bool,
    ) -> None:
        where = (span.path, span.line, span.column)
        live = reach_here is not Reachability.DISABLED

        if keyword in CONDITIONAL_OPENERS:
            if keyword == "if":
                if not body and live:
                    raise ParseError("#if with no expression", *where)
                state = _static_condition(body)
            else:
                if live and (not body or body[0].kind is not TokenKind.IDENTIFIER):
                    raise ParseError(f"no macro name given in #{keyword} directive", *where)
                state = _Branch.MAYBE
            if is_guard:
                state = _Branch.ALWAYS
            frames.append(
                _ConditionalFrame(
                    keyword=keyword,
                    line=span.line,
                    state=state,
                    any_always=state is _Branch.ALWAYS,
                    all_never=state is _Branch.NEVER,
                )
            )
            return

        if not frames:
            raise ParseError(f"#{keyword} without #if", *where)
        frame = frames[-1]

        if keyword == CONDITIONAL_CLOSER:
            frames.pop()
            return

        if frame.saw_else:
            raise ParseError(f"#{keyword} after #else", *where)

        if keyword == "else":
            frame.saw_else = True
            if frame.any_always:
                frame.state = _Branch.NEVER
            elif frame.all_never:
                frame.state = _Branch.ALWAYS
            else:
                frame.state = _Branch.MAYBE
            frame.any_always = True
            return

        # elif / elifdef / elifndef
        if frame.any_always:
            frame.state = _Branch.NEVER
            return
        state = _static_condition(body) if keyword == "elif" else _Branch.MAYBE
        frame.state = state
        frame.any_always = state is _Branch.ALWAYS
        frame.all_never = frame.all_never and state is _Branch.NEVER

    def _include(
        self,
        path: str,
        body: Sequence[Token],
        directive_line: DirectiveLine,
        reachability: Reachability,
        depth: int,
    ) -> None:
        if not self._follow_includes:
            return
        target = _quoted_include_target(body)
        if target is None:
            self.unresolved.append(directive_line)
            return
        if depth + 1 > MAX_INCLUDE_DEPTH:
            span = directive_line.span
            raise ParseError("#include nested too deeply", span.path, span.line, span.column)

        resolved = self._resolve_include(path, target)
        if resolved is None:
            logger.debug("Could not resolve include \"%s\" from %s", target, path)
            self.unresolved.append(directive_line)
            return
        include_path, data = resolved
        if include_path in self._once:
            logger.debug("Skipping repeated include of %s", include_path)
            return
        self.scan_file(include_path, decode_source(data), reachability, depth + 1)

    def _resolve_include(self, including_path: str, target: str) -> Optional[Tuple[str, bytes]]:
        candidates = [os.path.join(os.path.dirname(including_path), target)]
        candidates.extend(os.path.join(directory, target) for directory in self._include_dirs)
        for candidate in candidates:
            candidate = os.path.normpath(candidate)
            try:
                return candidate, self._loader(candidate)
            except OSError:
                continue
        return None


def _quoted_include_target(body: Sequence[Token]) -> Optional[str]:
    if len(body) != 1 or body[0].kind is not TokenKind.STRING:
        return None
    lexeme = body[0].lexeme
    if not lexeme.startswith('"') or len(lexeme) < 2:
        return None
    return lexeme[1:-1]


def scan_translation_unit(
    path: str,
    text: str,
    loader: Optional[SourceLoader] = None,
    include_dirs: Sequence[str] = (),
    follow_includes: bool = True,
) -> TokenStream:
    """Scan one translation unit into an immutable TokenStream.

    Args:
        path: Path of the main file (recorded in spans).
        text: Decoded text of the main file.
        loader: ``(path) -> bytes`` provider used to follow quoted includes.
        include_dirs: Extra directories searched for quoted includes.
        follow_includes: Whether quoted includes are scanned inline.

    Returns:
        The unit's TokenStream.

    Raises:
        ParseError: If a directive is malformed or conditionals are unbalanced.
    """
    scanner = _UnitScanner(loader, include_dirs, follow_includes)
    scanner.scan_file(path, text, Reachability.UNCONDITIONAL, depth=0)
    logger.debug(
        "Scanned %s: %d tokens, %d directive lines, %d define/undef events",
        path,
        len(scanner.tokens),
        len(scanner.directive_lines),
        len(scanner.directives),
    )
    return TokenStream(
        unit_path=path,
        tokens=tuple(scanner.tokens),
        code_tokens=tuple(scanner.code_tokens),
        directive_lines=tuple(scanner.directive_lines),
        directives=tuple(scanner.directives),
        files=dict(scanner.files),
        include_guards=dict(scanner.include_guards),
        unresolved_includes=tuple(scanner.unresolved),
    )
