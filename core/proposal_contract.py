"""Proposal identity and confidence contract shared by analysis and rewrite layers."""

from __future__ import annotations

import hashlib
import re
from enum import Enum
from typing import TypedDict

PROPOSAL_ID_SEPARATOR = "::"


class Confidence(str, Enum):
    """Classifier certainty that a macro matches its pattern safely."""

    HIGH = "high"
    MEDIUM = "medium"
    UNREWRITABLE = "unrewritable"

    @property
    def rank(self) -> int:
        return _CONFIDENCE_RANK[self]


class SafetyTier(str, Enum):
    """Synthesizer certainty that a proposal preserves behavior."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _TIER_RANK[self]


_CONFIDENCE_RANK = {
    Confidence.UNREWRITABLE: 0,
    Confidence.MEDIUM: 1,
    Confidence.HIGH: 2,
}

_TIER_RANK = {
    SafetyTier.LOW: 0,
    SafetyTier.MEDIUM: 1,
    SafetyTier.HIGH: 2,
}


class ParsedProposalId(TypedDict):
    """Parsed proposal identifier payload."""

    file_path: str
    macro_name: str
    pattern_tag: str
    line: int


_WHITESPACE_RE = re.compile(r"\s+")
_LINE_TOKEN_RE = re.compile(r"^L([0-9]+)$")


def lower_confidence(current: Confidence, cap: Confidence) -> Confidence:
    """Return the weaker of two confidence levels."""
    return current if current.rank <= cap.rank else cap


def lower_tier(current: SafetyTier, cap: SafetyTier) -> SafetyTier:
    """Return the weaker of two safety tiers."""
    return current if current.rank <= cap.rank else cap


def tier_for_confidence(confidence: Confidence) -> SafetyTier:
    """Map classifier confidence onto the proposal safety tier."""
    if confidence is Confidence.HIGH:
        return SafetyTier.HIGH
    if confidence is Confidence.MEDIUM:
        return SafetyTier.MEDIUM
    return SafetyTier.LOW


def parse_safety_tier(value: str | SafetyTier) -> SafetyTier:
    """Parse a tier name (case-insensitive, ``unrewritable`` maps to LOW).

    Raises:
        ValueError: If the value names no tier.
    """
    if isinstance(value, SafetyTier):
        return value
    text = str(value).strip().lower()
    if text == "unrewritable":
        return SafetyTier.LOW
    try:
        return SafetyTier(text)
    except ValueError as exc:
        raise ValueError(f"Unknown safety tier: {value!r}") from exc


def normalize_replacement_text(text: str) -> str:
    """Collapse whitespace runs so textually equivalent proposals compare equal."""
    return _WHITESPACE_RE.sub(" ", text).strip()


def make_content_hash(text: str, digest_length: int = 12) -> str:
    """Create a stable short hash token for proposal content comparison."""
    canonical = normalize_replacement_text(text)
    if not canonical:
        canonical = "<empty>"
    length = max(8, min(digest_length, 40))
    digest = hashlib.sha1(canonical.encode("utf-8")).hexdigest()[:length]
    return f"sha_{digest}"


def create_proposal_id(
    file_path: str,
    macro_name: str,
    pattern_tag: str,
    line: int,
) -> str:
    """Create a proposal identifier.

    The identifier is stable across translation units that include the same
    header, which is what lets the final merge deduplicate proposals.

    Returns:
        Identifier in format ``FilePath::MacroName::PatternTag::L<line>``.
    """
    return PROPOSAL_ID_SEPARATOR.join(
        [file_path, macro_name, pattern_tag, f"L{line}"]
    )


def parse_proposal_id(proposal_id: str) -> ParsedProposalId:
    """Parse a proposal identifier into components.

    Raises:
        ValueError: If the identifier does not contain required components.
    """
    parts = proposal_id.split(PROPOSAL_ID_SEPARATOR)
    if len(parts) < 4:
        raise ValueError(f"Malformed proposal id: {proposal_id}")
    match = _LINE_TOKEN_RE.match(parts[-1])
    if match is None:
        raise ValueError(f"Malformed proposal id line token: {proposal_id}")
    # The last three parts are fixed; anything before them is the path.
    return ParsedProposalId(
        file_path=PROPOSAL_ID_SEPARATOR.join(parts[:-3]),
        macro_name=parts[-3],
        pattern_tag=parts[-2],
        line=int(match.group(1)),
    )
