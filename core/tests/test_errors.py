"""Tests for the engine error taxonomy."""

from core.errors import (
    AmbiguousDefinitionError,
    ConflictingEditsError,
    ErrorKind,
    MacroRewriteError,
    ParseError,
    UnsafeRewriteRejected,
)


def test_parse_error_carries_location() -> None:
    error = ParseError("unterminated #if", path="a.h", line=3, column=1)
    assert str(error) == "a.h:3:1: unterminated #if"
    assert error.kind is ErrorKind.PARSE_ERROR
    assert isinstance(error, MacroRewriteError)


def test_per_macro_errors_carry_names() -> None:
    ambiguous = AmbiguousDefinitionError("N", "conflicting definitions at lines 1, 2")
    assert ambiguous.macro_name == "N"
    assert ambiguous.kind is ErrorKind.AMBIGUOUS_DEFINITION
    unsafe = UnsafeRewriteRejected("F", "name collides")
    assert unsafe.reason == "name collides"
    assert unsafe.kind is ErrorKind.UNSAFE_REWRITE_REJECTED


def test_conflicting_edits_message() -> None:
    error = ConflictingEditsError(2, "a.cpp")
    assert "2 unresolved conflict(s)" in str(error)
    assert "a.cpp" in str(error)
    assert error.kind.value == "conflicting_edits"
