"""Error taxonomy for the macro rewrite engine.

``ParseError`` aborts the analysis of one translation unit. The other errors
are raised inside a component and converted into a per-macro disposition at
that component's boundary, so no single macro can abort a run.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Stable error codes surfaced in reports."""

    PARSE_ERROR = "parse_error"
    AMBIGUOUS_DEFINITION = "ambiguous_definition"
    UNSAFE_REWRITE_REJECTED = "unsafe_rewrite_rejected"
    CONFLICTING_EDITS = "conflicting_edits"


class MacroRewriteError(Exception):
    """Base class for engine errors."""

    kind: ErrorKind


class ParseError(MacroRewriteError):
    """Raised for a malformed directive or unlexable source."""

    kind = ErrorKind.PARSE_ERROR

    def __init__(
        self,
        message: str,
        path: str = "<memory>",
        line: int = 0,
        column: int = 0,
    ) -> None:
        super().__init__(f"{path}:{line}:{column}: {message}")
        self.message = message
        self.path = path
        self.line = line
        self.column = column


class AmbiguousDefinitionError(MacroRewriteError):
    """Raised when one name carries conflicting definitions in a unit."""

    kind = ErrorKind.AMBIGUOUS_DEFINITION

    def __init__(self, macro_name: str, detail: str) -> None:
        super().__init__(f"{macro_name}: {detail}")
        self.macro_name = macro_name
        self.detail = detail


class UnsafeRewriteRejected(MacroRewriteError):
    """Raised when no behavior-preserving replacement can be synthesized."""

    kind = ErrorKind.UNSAFE_REWRITE_REJECTED

    def __init__(self, macro_name: str, reason: str) -> None:
        super().__init__(f"{macro_name}: {reason}")
        self.macro_name = macro_name
        self.reason = reason


class ConflictingEditsError(MacroRewriteError):
    """Raised when an edit plan with unresolved conflicts is consumed."""

    kind = ErrorKind.CONFLICTING_EDITS

    def __init__(self, count: int, first_path: Optional[str] = None) -> None:
        where = f" (first in {first_path})" if first_path else ""
        super().__init__(f"Edit plan has {count} unresolved conflict(s){where}")
        self.count = count
        self.first_path = first_path
