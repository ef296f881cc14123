"""
Configuration constants for C/C++ preprocessing-token scanning.

Defines punctuators, directive keywords and literal prefixes used by the
lexer and directive scanner.
"""

import re
from typing import FrozenSet, Set, Tuple

# C and C++ punctuators, including digraphs. Sorted longest-first below.
PUNCTUATORS: Tuple[str, ...] = (
    "%:%:",
    "...",
    "<=>",
    "->*",
    ">>=",
    "<<=",
    "::",
    "->",
    ".*",
    "++",
    "--",
    "&&",
    "||",
    "<=",
    ">=",
    "==",
    "!=",
    "+=",
    "-=",
    "*=",
    "/=",
    "%=",
    "&=",
    "|=",
    "^=",
    "<<",
    ">>",
    "##",
    "<:",
    ":>",
    "<%",
    "%>",
    "%:",
    "[",
    "]",
    "(",
    ")",
    "{",
    "}",
    ".",
    "&",
    "*",
    "+",
    "-",
    "~",
    "!",
    "/",
    "%",
    "<",
    ">",
    "^",
    "|",
    "?",
    ":",
    ";",
    "=",
    ",",
    "#",
)

PUNCTUATORS_SORTED: Tuple[str, ...] = tuple(sorted(PUNCTUATORS, key=len, reverse=True))

# Digraph spellings normalized to their primary form.
DIGRAPHS: dict = {
    "<:": "[",
    ":>": "]",
    "<%": "{",
    "%>": "}",
    "%:": "#",
    "%:%:": "##",
}

# Encoding prefixes that may precede a string or character literal.
STRING_PREFIXES: FrozenSet[str] = frozenset({"L", "u", "U", "u8"})
RAW_STRING_PREFIXES: FrozenSet[str] = frozenset({"R", "LR", "uR", "UR", "u8R"})

IDENTIFIER_RE = re.compile(r"[^\W\d]\w*")

# pp-number: digits, identifier characters, periods, exponent signs and
# C++14 digit separators.
PP_NUMBER_RE = re.compile(r"\.?[0-9](?:[eEpP][+-]|'[0-9A-Za-z_]|[0-9A-Za-z_.])*")

# Conditional directives that open, continue and close a group.
CONDITIONAL_OPENERS: Set[str] = {"if", "ifdef", "ifndef"}
CONDITIONAL_CONTINUATIONS: Set[str] = {"elif", "elifdef", "elifndef", "else"}
CONDITIONAL_CLOSER: str = "endif"

# Directives recognized by the scanner. Anything else is recorded as-is.
KNOWN_DIRECTIVES: Set[str] = (
    CONDITIONAL_OPENERS
    | CONDITIONAL_CONTINUATIONS
    | {CONDITIONAL_CLOSER, "define", "undef", "include", "include_next",
       "import", "line", "error", "warning", "pragma", "ident", "sccs"}
)

# Maximum nesting of followed #include directives.
MAX_INCLUDE_DEPTH: int = 64

# Condition spellings with a statically known value.
ALWAYS_TRUE_CONDITIONS: Set[str] = {"1", "true"}
ALWAYS_FALSE_CONDITIONS: Set[str] = {"0", "false"}

# C++ source file extensions
CPP_EXTENSIONS: Set[str] = {
    ".cpp",
    ".cc",
    ".cxx",
    ".c",
    ".h",
    ".hpp",
    ".hxx",
}

HEADER_EXTENSIONS: Set[str] = {".h", ".hpp", ".hxx", ".hh"}
