"""
Data models for rewrite proposals, edits and diagnostics.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from analysis.models import ClassificationResult, Hazard
from core.proposal_contract import Confidence, SafetyTier


class EditKind(str, Enum):
    REPLACE = "replace"
    DELETE = "delete"
    APPEND = "append"


@dataclass(frozen=True)
class Edit:
    """One text edit.

    Offsets are character offsets into the decoded file text. A REPLACE with
    ``start == end`` is an insertion. APPEND edits add text at the end of the
    file and carry no span of their own (``start == end == 0``).
    """

    path: str
    start: int
    end: int
    replacement_text: str
    proposal_id: str
    kind: EditKind = EditKind.REPLACE

    @property
    def is_append(self) -> bool:
        return self.kind is EditKind.APPEND

    @property
    def sort_key(self) -> Tuple[str, bool, int, int]:
        return (self.path, self.is_append, self.start, self.end)

    def same_change(self, other: "Edit") -> bool:
        return (self.path, self.start, self.end, self.replacement_text, self.kind) == (
            other.path,
            other.start,
            other.end,
            other.replacement_text,
            other.kind,
        )

    def overlaps(self, other: "Edit") -> bool:
        if self.path != other.path or self.is_append or other.is_append:
            return False
        if self.start == self.end or other.start == other.end:
            # Insertions collide only at the same point or strictly inside a range.
            point, span = (self, other) if self.start == self.end else (other, self)
            if span.start == span.end:
                return point.start == span.start
            return span.start < point.start < span.end
        return self.start < other.end and other.start < self.end

    def to_dict(self) -> Dict[str, Any]:
        return {
            "span": {"start": self.start, "end": self.end},
            "replacementText": self.replacement_text,
            "proposalId": self.proposal_id,
            "kind": self.kind.value,
        }


@dataclass(frozen=True)
class RewriteProposal:
    """Replacement for one macro: declaration text plus every edit it needs.

    Attributes:
        proposal_id: Stable identifier (see ``core.proposal_contract``).
        macro_name: Macro being replaced.
        classification: The classification the proposal was built from.
        declaration: Primary synthesized declaration text.
        edits: Definition and call-site edits, in the order they were produced.
        tier: Safety tier of the whole proposal.
        alternatives: Other declarations the user may prefer.
        notes: Assumptions the tier depends on.
        reason: Why the proposal is LOW, when it is.
    """

    proposal_id: str
    macro_name: str
    classification: ClassificationResult
    declaration: Optional[str]
    edits: Tuple[Edit, ...]
    tier: SafetyTier
    alternatives: Tuple[str, ...] = ()
    notes: Tuple[str, ...] = ()
    reason: Optional[str] = None

    @property
    def is_rewrite(self) -> bool:
        return self.tier is not SafetyTier.LOW and bool(self.edits)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "proposalId": self.proposal_id,
            "macroName": self.macro_name,
            "tag": self.classification.tag.value,
            "tier": self.tier.value,
            "declaration": self.declaration,
            "alternatives": list(self.alternatives),
            "notes": list(self.notes),
            "reason": self.reason,
            "edits": [edit.to_dict() for edit in self.edits],
        }


class Disposition(str, Enum):
    REWRITTEN = "rewritten"
    REPORTED_ONLY = "reported_only"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class DiagnosticEntry:
    """Per-macro diagnostic record: one per macro name per unit."""

    macro_name: str
    path: Optional[str]
    definition_lines: Tuple[int, ...]
    tag: str
    confidence: Confidence
    rationale: str
    disposition: Disposition
    hazards: Tuple[Hazard, ...] = ()
    unit: Optional[str] = None
    proposal_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "macro_name": self.macro_name,
            "path": self.path,
            "definition_lines": list(self.definition_lines),
            "tag": self.tag,
            "confidence": self.confidence.value,
            "rationale": self.rationale,
            "disposition": self.disposition.value,
            "hazards": [hazard.to_dict() for hazard in self.hazards],
            "unit": self.unit,
            "proposal_id": self.proposal_id,
        }


@dataclass(frozen=True)
class ReportEntry:
    """A macro that is not rewritten, or a warning attached to one."""

    macro_name: str
    reason_unrewritable: Optional[str] = None
    warning: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        entry: Dict[str, Any] = {"macroName": self.macro_name}
        if self.reason_unrewritable is not None:
            entry["reasonUnrewritable"] = self.reason_unrewritable
        if self.warning is not None:
            entry["warning"] = self.warning
        return entry


@dataclass(frozen=True)
class EditConflict:
    """Two overlapping edits; no proposal involved is applied."""

    path: str
    first: Edit
    second: Edit

    @property
    def proposal_ids(self) -> Tuple[str, str]:
        return self.first.proposal_id, self.second.proposal_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "proposalIds": list(self.proposal_ids),
            "spans": [
                {"start": self.first.start, "end": self.first.end},
                {"start": self.second.start, "end": self.second.end},
            ],
        }


def group_edits_by_path(edits: List[Edit]) -> Dict[str, List[Edit]]:
    grouped: Dict[str, List[Edit]] = {}
    for edit in edits:
        grouped.setdefault(edit.path, []).append(edit)
    return grouped
