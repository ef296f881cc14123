"""
Token Stream Model and Macro Table.

Lexes C/C++ source into preprocessing tokens, scans directives with
conditional reachability and include following, and records every
``#define``/``#undef`` with its active span.
"""

from preprocessor.models import (
    Directive,
    DirectiveKind,
    DirectiveLine,
    MacroDefinition,
    Reachability,
    SourceSpan,
    Token,
    TokenKind,
    render_tokens,
)
from preprocessor.source import SourceFile, SourceLoader, decode_source, read_source_file
from preprocessor.lexer import iter_tokens, lex
from preprocessor.directives import TokenStream, parse_define, parse_undef, scan_translation_unit
from preprocessor.macro_table import MacroTable

__all__ = [
    # Data models
    "Directive",
    "DirectiveKind",
    "DirectiveLine",
    "MacroDefinition",
    "Reachability",
    "SourceSpan",
    "Token",
    "TokenKind",
    "TokenStream",
    "render_tokens",
    # Source loading
    "SourceFile",
    "SourceLoader",
    "decode_source",
    "read_source_file",
    # Lexing and scanning
    "iter_tokens",
    "lex",
    "parse_define",
    "parse_undef",
    "scan_translation_unit",
    # Macro table
    "MacroTable",
]
