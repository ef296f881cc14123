"""
Preprocessing-token lexer.

Turns decoded source text into a lazily produced sequence of ``Token``
objects. Comments are discarded, line splices are honored, and every other
character ends up in some token, so no directive text is ever lost.
"""

import logging
from typing import Iterator, Tuple

from core.errors import ParseError
from preprocessor.config import (
    DIGRAPHS,
    IDENTIFIER_RE,
    PP_NUMBER_RE,
    PUNCTUATORS_SORTED,
    RAW_STRING_PREFIXES,
    STRING_PREFIXES,
)
from preprocessor.models import SourceSpan, Token, TokenKind

logger = logging.getLogger(__name__)

_PUNCT_BY_LENGTH = {
    length: frozenset(p for p in PUNCTUATORS_SORTED if len(p) == length)
    for length in (4, 3, 2, 1)
}

_HORIZONTAL_SPACE = frozenset(" \t\r\f\v\ufeff")
_MAX_RAW_DELIMITER = 16


def _is_splice(text: str, index: int) -> int:
    """Return the length of a backslash-newline splice at ``index`` (0 if none)."""
    if text[index] != "\\":
        return 0
    if text.startswith("\n", index + 1):
        return 2
    if text.startswith("\r\n", index + 1):
        return 3
    return 0


def _scan_quoted(text: str, start: int, quote: str) -> int:
    """Return the end offset of a quoted literal opening at ``start``, or -1."""
    index = start + 1
    length = len(text)
    while index < length:
        ch = text[index]
        if ch == "\\":
            index += 2
            continue
        if ch == quote:
            return index + 1
        if ch == "\n":
            return -1
        index += 1
    return -1


def _scan_raw_string(text: str, quote_index: int) -> int:
    """Return the end offset of a raw string whose quote is at ``quote_index``."""
    paren = text.find("(", quote_index + 1)
    if paren < 0 or paren - quote_index - 1 > _MAX_RAW_DELIMITER:
        return -1
    delimiter = text[quote_index + 1:paren]
    if any(ch in delimiter for ch in ' ()\\\t\n"'):
        return -1
    closing = ")" + delimiter + '"'
    end = text.find(closing, paren + 1)
    if end < 0:
        return -1
    return end + len(closing)


def _match_punctuator(text: str, index: int) -> str:
    for length in (4, 3, 2, 1):
        candidate = text[index:index + length]
        if candidate in _PUNCT_BY_LENGTH[length]:
            return candidate
    return ""


def iter_tokens(text: str, path: str = "<memory>") -> Iterator[Token]:
    """Lazily lex ``text`` into preprocessing tokens.

    Args:
        text: Decoded source text.
        path: File path recorded in every token span.

    Yields:
        Tokens in source order. ``at_line_start`` marks the first token of a
        logical line (after splices are removed).

    Raises:
        ParseError: On an unterminated block comment or raw string literal.
    """
    length = len(text)
    index = 0
    line = 1
    line_begin = 0
    at_line_start = True
    leading_space = False

    while index < length:
        ch = text[index]

        splice = _is_splice(text, index)
        if splice:
            index += splice
            line += 1
            line_begin = index
            leading_space = True
            continue

        if ch == "\n":
            index += 1
            line += 1
            line_begin = index
            at_line_start = True
            leading_space = False
            continue

        if ch in _HORIZONTAL_SPACE:
            index += 1
            leading_space = True
            continue

        if text.startswith("//", index):
            # A spliced line comment continues onto the next physical line.
            while index < length and text[index] != "\n":
                splice = _is_splice(text, index)
                if splice:
                    index += splice
                    line += 1
                    line_begin = index
                    continue
                index += 1
            leading_space = True
            continue

        if text.startswith("/*", index):
            end = text.find("*/", index + 2)
            if end < 0:
                raise ParseError(
                    "unterminated /* comment",
                    path,
                    line,
                    index - line_begin + 1,
                )
            newlines = text.count("\n", index, end)
            if newlines:
                line += newlines
                line_begin = text.rfind("\n", index, end) + 1
            index = end + 2
            leading_space = True
            continue

        start = index
        column = index - line_begin + 1
        kind, end = _scan_token(text, index, path, line, column)
        lexeme = text[start:end]
        if kind is TokenKind.PUNCTUATOR:
            lexeme = DIGRAPHS.get(lexeme, lexeme)

        yield Token(
            kind=kind,
            lexeme=lexeme,
            span=SourceSpan(path=path, start=start, end=end, line=line, column=column),
            at_line_start=at_line_start,
            has_leading_space=leading_space,
        )

        newlines = text.count("\n", start, end)
        if newlines:
            line += newlines
            line_begin = text.rfind("\n", start, end) + 1
        index = end
        at_line_start = False
        leading_space = False


def _scan_token(
    text: str,
    index: int,
    path: str,
    line: int,
    column: int,
) -> Tuple[TokenKind, int]:
    """Scan one token starting at ``index`` and return its kind and end offset."""
    ch = text[index]
    length = len(text)

    match = IDENTIFIER_RE.match(text, index)
    if match is not None:
        word = match.group(0)
        after = match.end()
        if after < length and text[after] == '"' and word in RAW_STRING_PREFIXES:
            end = _scan_raw_string(text, after)
            if end < 0:
                raise ParseError("unterminated raw string literal", path, line, column)
            return TokenKind.STRING, end
        if after < length and text[after] in "\"'" and word in STRING_PREFIXES:
            quote = text[after]
            end = _scan_quoted(text, after, quote)
            if end > 0:
                kind = TokenKind.STRING if quote == '"' else TokenKind.CHAR
                return kind, end
        return TokenKind.IDENTIFIER, after

    if ch.isdigit() or (ch == "." and index + 1 < length and text[index + 1].isdigit()):
        number = PP_NUMBER_RE.match(text, index)
        if number is not None:
            return TokenKind.NUMBER, number.end()

    if ch in "\"'":
        end = _scan_quoted(text, index, ch)
        if end > 0:
            return (TokenKind.STRING if ch == '"' else TokenKind.CHAR), end
        logger.debug("Unterminated %s literal at %s:%d:%d", ch, path, line, column)
        return TokenKind.OTHER, index + 1

    punct = _match_punctuator(text, index)
    if punct:
        return TokenKind.PUNCTUATOR, index + len(punct)

    return TokenKind.OTHER, index + 1


def lex(text: str, path: str = "<memory>") -> Tuple[Token, ...]:
    """Eagerly lex ``text`` into a tuple of tokens."""
    return tuple(iter_tokens(text, path))
