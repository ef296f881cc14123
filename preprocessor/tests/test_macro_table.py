"""Tests for macro active spans, redefinition and ambiguity tracking."""

import pytest

from core.errors import AmbiguousDefinitionError, ErrorKind
from preprocessor.directives import scan_translation_unit
from preprocessor.macro_table import MacroTable


def build(text: str) -> tuple:
    stream = scan_translation_unit("unit.cpp", text)
    return stream, MacroTable.from_directives(stream.directives)


def position_of(stream, lexeme: str, occurrence: int = 0) -> int:
    matches = [t.position for t in stream.code_tokens if t.lexeme == lexeme]
    return matches[occurrence]


def test_active_definition_spans_define_to_end_of_unit() -> None:
    stream, table = build("int before;\n#define LIMIT 4\nint after;\n")
    assert table.active_definition_at("LIMIT", position_of(stream, "before")) is None
    definition = table.active_definition_at("LIMIT", position_of(stream, "after"))
    assert definition is not None
    assert definition.active_end is None
    assert definition.define.replacement_text == "4"


def test_unknown_name_is_not_an_error() -> None:
    _, table = build("int x;\n")
    assert table.active_definition_at("NOPE", 0) is None


def test_undef_closes_span() -> None:
    stream, table = build("#define A 1\nint inside;\n#undef A\nint outside;\n")
    assert table.active_definition_at("A", position_of(stream, "inside")) is not None
    assert table.active_definition_at("A", position_of(stream, "outside")) is None
    (definition,) = table.definitions_for("A")
    assert definition.closed_by is not None
    assert not definition.redefined
    assert len(definition.events) == 2


def test_redefinition_closes_previous_span_with_warning() -> None:
    stream, table = build("#define A 1\nint first;\n#define A 2\nint second;\n")
    first = table.active_definition_at("A", position_of(stream, "first"))
    second = table.active_definition_at("A", position_of(stream, "second"))
    assert first.define.replacement_text == "1"
    assert second.define.replacement_text == "2"
    assert first.redefined
    assert len(table.warnings) == 1
    assert "redefined" in table.warnings[0]


def test_at_most_one_active_definition_per_position() -> None:
    stream, table = build("#define A 1\n#define A 2\n#undef A\n#define A 3\nint x;\n")
    for token in stream.tokens:
        active = [d for d in table.definitions_for("A") if d.is_active_at(token.position)]
        assert len(active) <= 1


def test_ambiguity_requires_distinct_signatures() -> None:
    _, identical = build("#define A 1\n#define A 1\n")
    assert not identical.is_ambiguous("A")
    identical.ensure_unambiguous("A")

    _, conflicting = build("#define A 1\n#define A 2\n")
    assert conflicting.is_ambiguous("A")
    with pytest.raises(AmbiguousDefinitionError) as excinfo:
        conflicting.ensure_unambiguous("A")
    assert excinfo.value.kind is ErrorKind.AMBIGUOUS_DEFINITION


def test_disabled_defines_do_not_make_a_name_ambiguous() -> None:
    _, table = build("#if 0\n#define A 2\n#endif\n#define A 1\n")
    assert not table.is_ambiguous("A")
    assert len(table.history("A")) == 2


def test_undefine_unknown_name_is_noop() -> None:
    table = MacroTable()
    table.undefine("MISSING", 10)
    assert table.names() == []
    assert "MISSING" not in table


def test_names_in_definition_order() -> None:
    _, table = build("#undef Z\n#define B 1\n#define A 2\n#define B 1\n")
    assert table.names() == ["B", "A"]
    assert len(table) == 2


def test_define_immediately_undefined_has_empty_span() -> None:
    _, table = build("#define A 1\n#undef A\nint x;\n")
    (definition,) = table.definitions_for("A")
    assert not definition.is_nonempty


def test_disabled_define_does_not_close_live_span() -> None:
    stream, table = build("#define A 1\n#if 0\n#define A 2\n#endif\nint after;\n")
    active = table.active_definition_at("A", position_of(stream, "after"))
    assert active is not None
    assert active.define.replacement_text == "1"
    assert not active.redefined
    assert table.warnings == ()
    disabled = [d for d in table.definitions_for("A") if d.define.replacement_text == "2"]
    assert len(disabled) == 1
    assert not disabled[0].is_nonempty
