"""Tests for edit plan aggregation and merging."""

import pytest

from analysis.models import ClassificationResult, Hazard, HazardKind, PatternTag
from core.errors import ConflictingEditsError
from core.proposal_contract import Confidence, SafetyTier
from preprocessor.models import Directive, DirectiveKind, MacroDefinition, SourceSpan
from rewrite.edit_plan import EditPlan, apply_edits_to_text, build_edit_plan, merge_edit_plans
from rewrite.models import Edit, EditKind, RewriteProposal


def make_proposal(name, edits, tier=SafetyTier.HIGH, hazards=(), reason=None, proposal_id=None):
    proposal_id = proposal_id or f"unit.cpp::{name}::SimpleConstant::L1"
    result = ClassificationResult(
        macro_name=name,
        tag=PatternTag.SIMPLE_CONSTANT,
        confidence=Confidence.HIGH,
        hazards=tuple(hazards),
    )
    return RewriteProposal(
        proposal_id=proposal_id,
        macro_name=name,
        classification=result,
        declaration=f"const int {name} = 1;",
        edits=tuple(
            Edit(path, start, end, text, proposal_id, kind)
            for path, start, end, text, kind in edits
        ),
        tier=tier,
        reason=reason,
    )


def replace_edit(path, start, end, text):
    return (path, start, end, text, EditKind.REPLACE)


def test_edits_are_grouped_and_ordered() -> None:
    late = make_proposal("LATE", [replace_edit("a.cpp", 40, 50, "x")])
    early = make_proposal("EARLY", [replace_edit("a.cpp", 0, 10, "y"), replace_edit("b.cpp", 5, 6, "z")])
    plan = build_edit_plan([late, early])
    assert [edit.start for edit in plan.edits_for("a.cpp")] == [0, 40]
    assert [edit.start for edit in plan.edits_for("b.cpp")] == [5]
    assert plan.edit_count == 3
    assert plan.emitted_ids == {late.proposal_id, early.proposal_id}
    assert plan.conflicts == []


def test_tier_below_threshold_is_reported() -> None:
    medium = make_proposal("MED", [replace_edit("a.cpp", 0, 5, "m")], tier=SafetyTier.MEDIUM)
    assert build_edit_plan([medium]).edit_count == 1

    plan = build_edit_plan([medium], min_confidence=SafetyTier.HIGH)
    assert plan.edit_count == 0
    assert plan.report[0].macro_name == "MED"
    assert "below the emit threshold high" in plan.report[0].reason_unrewritable
    assert medium.proposal_id in plan.withheld


def test_low_proposal_reason_is_reported() -> None:
    low = make_proposal("LOW_ONE", [], tier=SafetyTier.LOW, reason="pointee type of the pointer constant is unknown")
    plan = build_edit_plan([low])
    assert plan.to_dict()["report"] == [
        {"macroName": "LOW_ONE", "reasonUnrewritable": "pointee type of the pointer constant is unknown"}
    ]


def test_unclassified_results_and_hazards_are_reported() -> None:
    unclassified = ClassificationResult(
        macro_name="LIMIT",
        tag=PatternTag.UNCLASSIFIED,
        confidence=Confidence.UNREWRITABLE,
        reason="ambiguous redefinition: conflicting definitions at lines 1, 3",
    )
    hazard = Hazard(HazardKind.REPEATED_EVALUATION, "parameter 'a' is evaluated 2 times", "a")
    proposal = make_proposal("MAX", [replace_edit("a.cpp", 0, 3, "t")], hazards=[hazard])
    plan = build_edit_plan([proposal], [unclassified])
    entries = [entry.to_dict() for entry in plan.report]
    assert {"macroName": "LIMIT", "reasonUnrewritable": unclassified.reason} in entries
    assert {"macroName": "MAX", "warning": "parameter 'a' is evaluated 2 times"} in entries
    assert plan.edit_count == 1


def test_overlapping_edits_withhold_both_proposals() -> None:
    first = make_proposal("A", [replace_edit("a.cpp", 0, 10, "a"), replace_edit("a.cpp", 20, 25, "a2")])
    second = make_proposal("B", [replace_edit("a.cpp", 5, 12, "b")])
    third = make_proposal("C", [replace_edit("a.cpp", 30, 31, "c")])
    plan = build_edit_plan([first, second, third])

    assert len(plan.conflicts) == 1
    assert set(plan.conflicts[0].proposal_ids) == {first.proposal_id, second.proposal_id}
    assert plan.emitted_ids == {third.proposal_id}
    assert [edit.proposal_id for edit in plan.edits_for("a.cpp")] == [third.proposal_id]
    reasons = {entry.macro_name: entry.reason_unrewritable for entry in plan.report}
    assert reasons["A"] == f"conflicting edits with {second.proposal_id}"
    assert reasons["B"] == f"conflicting edits with {first.proposal_id}"
    with pytest.raises(ConflictingEditsError) as excinfo:
        plan.require_conflict_free()
    assert excinfo.value.count == 1


def test_overlapping_edits_within_one_proposal_are_rejected() -> None:
    proposal = make_proposal(
        "K",
        [
            replace_edit("k.h", 0, 11, "const int K = 3;"),
            ("k.h", 0, 11, "", EditKind.DELETE),
        ],
    )
    plan = build_edit_plan([proposal])
    assert plan.edit_count == 0
    assert len(plan.conflicts) == 1
    assert plan.conflicts[0].proposal_ids == (proposal.proposal_id, proposal.proposal_id)
    assert proposal.proposal_id in plan.withheld
    assert plan.report[0].reason_unrewritable == "overlapping edits within the proposal"


def test_identical_edits_from_two_proposals_are_kept_once() -> None:
    first = make_proposal("A", [replace_edit("a.cpp", 0, 4, "same")])
    second = make_proposal("B", [replace_edit("a.cpp", 0, 4, "same")])
    plan = build_edit_plan([first, second])
    assert plan.conflicts == []
    assert plan.edit_count == 1


def test_adjacent_edits_do_not_conflict() -> None:
    first = make_proposal("A", [replace_edit("a.cpp", 0, 4, "a")])
    second = make_proposal("B", [replace_edit("a.cpp", 4, 8, "b")])
    plan = build_edit_plan([first, second])
    assert plan.conflicts == []
    assert plan.edit_count == 2


def test_append_edits_sort_last_and_never_conflict() -> None:
    proposal = make_proposal(
        "PI",
        [
            ("circle.cpp", 0, 0, "\nconst double Circle::PI = 3.14;\n", EditKind.APPEND),
            replace_edit("circle.cpp", 0, 4, "x"),
        ],
    )
    other = make_proposal("E", [replace_edit("circle.cpp", 10, 12, "y")])
    plan = build_edit_plan([proposal, other])
    kinds = [edit.kind for edit in plan.edits_for("circle.cpp")]
    assert kinds == [EditKind.REPLACE, EditKind.REPLACE, EditKind.APPEND]


def test_merge_deduplicates_identical_header_proposals() -> None:
    header_id = "config.h::BUFFER_SIZE::SimpleConstant::L1"
    left = make_proposal("BUFFER_SIZE", [replace_edit("config.h", 0, 24, "const int BUFFER_SIZE = 512;")], proposal_id=header_id)
    right = make_proposal("BUFFER_SIZE", [replace_edit("config.h", 0, 24, "const int BUFFER_SIZE = 512;")], proposal_id=header_id)
    merged = merge_edit_plans([build_edit_plan([left]), build_edit_plan([right])])
    assert merged.conflicts == []
    assert merged.edit_count == 1
    assert [proposal.proposal_id for proposal in merged.proposals] == [header_id]


def test_merge_unions_call_sites_from_different_units() -> None:
    header_id = "util.h::SQUARE::FunctionLikeMacro::L1"
    definition = replace_edit("util.h", 0, 30, "template<...>")
    left = make_proposal("SQUARE", [definition, replace_edit("a.cpp", 10, 16, "square")], proposal_id=header_id)
    right = make_proposal(
        "SQUARE",
        [definition, replace_edit("b.cpp", 20, 26, "square")],
        tier=SafetyTier.MEDIUM,
        proposal_id=header_id,
    )
    merged = merge_edit_plans([build_edit_plan([left]), build_edit_plan([right])])
    assert merged.conflicts == []
    assert sorted(merged.edits) == ["a.cpp", "b.cpp", "util.h"]
    assert merged.proposals[0].tier is SafetyTier.MEDIUM
    assert len(merged.proposals[0].edits) == 3


def test_merge_escalates_divergent_proposals() -> None:
    header_id = "config.h::SCALE::SimpleConstant::L1"
    left = make_proposal("SCALE", [replace_edit("config.h", 0, 16, "const int SCALE = 2;")], proposal_id=header_id)
    right = make_proposal("SCALE", [replace_edit("config.h", 0, 16, "const long SCALE = 2;")], proposal_id=header_id)
    merged = merge_edit_plans([build_edit_plan([left]), build_edit_plan([right])])
    assert len(merged.conflicts) == 1
    assert merged.edit_count == 0
    assert header_id in merged.withheld
    reasons = [entry.reason_unrewritable for entry in merged.report]
    assert "differing proposals for the same definition across translation units" in reasons


def test_merge_respects_proposals_withheld_by_another_unit() -> None:
    header_id = "util.h::TWICE::FunctionLikeMacro::L1"
    definition = replace_edit("util.h", 0, 20, "template<...>")
    emitted = make_proposal("TWICE", [definition], proposal_id=header_id)
    withheld = make_proposal("TWICE", [definition], tier=SafetyTier.LOW, proposal_id=header_id)
    merged = merge_edit_plans([build_edit_plan([emitted]), build_edit_plan([withheld])])
    assert merged.edit_count == 0
    assert "withheld in another translation unit" in [entry.reason_unrewritable for entry in merged.report]


def test_merge_withholds_definition_unclassified_in_another_unit() -> None:
    header_id = "shared.h::SIZE::SimpleConstant::L1"
    emitted = make_proposal("SIZE", [replace_edit("shared.h", 0, 25, "const int SIZE = (BASE * 2);")], proposal_id=header_id)
    definition = MacroDefinition(
        name="SIZE",
        define=Directive(DirectiveKind.DEFINE, "SIZE", SourceSpan("shared.h", 0, 25, 1, 1), position=5),
        events=(),
        active_start=6,
    )
    unclassified = ClassificationResult(
        macro_name="SIZE",
        tag=PatternTag.UNCLASSIFIED,
        confidence=Confidence.UNREWRITABLE,
        reason="depends on Unclassified macro 'BASE'",
        definition=definition,
    )
    blocking = build_edit_plan([], [unclassified])
    assert blocking.blocked == {("shared.h", "SIZE", 1): "depends on Unclassified macro 'BASE'"}

    for plans in ([build_edit_plan([emitted]), blocking], [blocking, build_edit_plan([emitted])]):
        merged = merge_edit_plans(plans)
        assert merged.edit_count == 0
        assert merged.proposals == []
        assert header_id in merged.withheld
        reasons = [entry.reason_unrewritable for entry in merged.report]
        assert "Unclassified in another translation unit: depends on Unclassified macro 'BASE'" in reasons


def test_merge_of_nothing_is_empty() -> None:
    merged = merge_edit_plans([])
    assert isinstance(merged, EditPlan)
    assert merged.to_dict() == {"files": {}, "conflicts": [], "report": [], "proposals": []}


def test_apply_edits_to_text() -> None:
    text = "#define N 3\nint a[N];\n"
    edits = [
        Edit("u.cpp", 0, 11, "const int n = 3;", "p"),
        Edit("u.cpp", 18, 19, "n", "p"),
        Edit("u.cpp", 0, 0, "// end\n", "p", EditKind.APPEND),
    ]
    assert apply_edits_to_text(text, edits) == "const int n = 3;\nint a[n];\n// end\n"


def test_apply_edits_rejects_overlap() -> None:
    edits = [Edit("u.cpp", 0, 5, "a", "p"), Edit("u.cpp", 3, 8, "b", "q")]
    with pytest.raises(ValueError):
        apply_edits_to_text("0123456789", edits)
