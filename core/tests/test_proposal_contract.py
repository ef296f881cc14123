"""Tests for proposal identifiers, confidence and tier helpers."""

import pytest

from core.proposal_contract import (
    Confidence,
    SafetyTier,
    create_proposal_id,
    lower_confidence,
    lower_tier,
    make_content_hash,
    normalize_replacement_text,
    parse_proposal_id,
    parse_safety_tier,
    tier_for_confidence,
)


def test_create_and_parse_proposal_id_round_trip() -> None:
    proposal_id = create_proposal_id("src/a.h", "LIMIT", "SimpleConstant", 12)
    assert proposal_id == "src/a.h::LIMIT::SimpleConstant::L12"
    parsed = parse_proposal_id(proposal_id)
    assert parsed["file_path"] == "src/a.h"
    assert parsed["macro_name"] == "LIMIT"
    assert parsed["pattern_tag"] == "SimpleConstant"
    assert parsed["line"] == 12


def test_parse_proposal_id_keeps_separator_inside_path() -> None:
    parsed = parse_proposal_id("weird::dir/a.h::X::EnumHackCandidate::L3")
    assert parsed["file_path"] == "weird::dir/a.h"
    assert parsed["macro_name"] == "X"


@pytest.mark.parametrize("bad", ["a.h::X::L1", "a.h::X::Tag::line1"])
def test_parse_proposal_id_rejects_malformed(bad: str) -> None:
    with pytest.raises(ValueError):
        parse_proposal_id(bad)


def test_lower_confidence_and_tier_take_weaker() -> None:
    assert lower_confidence(Confidence.HIGH, Confidence.MEDIUM) is Confidence.MEDIUM
    assert lower_confidence(Confidence.UNREWRITABLE, Confidence.HIGH) is Confidence.UNREWRITABLE
    assert lower_tier(SafetyTier.MEDIUM, SafetyTier.HIGH) is SafetyTier.MEDIUM
    assert lower_tier(SafetyTier.HIGH, SafetyTier.LOW) is SafetyTier.LOW


def test_tier_for_confidence() -> None:
    assert tier_for_confidence(Confidence.HIGH) is SafetyTier.HIGH
    assert tier_for_confidence(Confidence.MEDIUM) is SafetyTier.MEDIUM
    assert tier_for_confidence(Confidence.UNREWRITABLE) is SafetyTier.LOW


def test_parse_safety_tier_is_case_insensitive() -> None:
    assert parse_safety_tier("High") is SafetyTier.HIGH
    assert parse_safety_tier(" medium ") is SafetyTier.MEDIUM
    assert parse_safety_tier("unrewritable") is SafetyTier.LOW
    assert parse_safety_tier(SafetyTier.LOW) is SafetyTier.LOW
    with pytest.raises(ValueError):
        parse_safety_tier("maybe")


def test_content_hash_ignores_whitespace_differences() -> None:
    assert normalize_replacement_text("  const  int\tX =\n1; ") == "const int X = 1;"
    assert make_content_hash("const int X = 1;") == make_content_hash("const int  X = 1;")
    assert make_content_hash("").startswith("sha_")
    assert make_content_hash("a") != make_content_hash("b")
