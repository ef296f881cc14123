"""
Edit plan aggregation.

Collects the edits of every emitted proposal into per-file lists ordered by
position. Overlapping edits are never resolved automatically: every proposal
involved is withheld and the overlap is reported as a conflict.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from analysis.models import ClassificationResult
from core.errors import ConflictingEditsError
from core.proposal_contract import SafetyTier, lower_tier, parse_proposal_id
from rewrite.models import Edit, EditConflict, ReportEntry, RewriteProposal, group_edits_by_path

logger = logging.getLogger(__name__)

# (file path, macro name, line) of a #define directive.
DefinitionSite = Tuple[str, str, int]


@dataclass
class EditPlan:
    """Conflict-checked edits, conflicts and report entries.

    Attributes:
        edits: Non-overlapping edits per file, ordered by position; APPEND
            edits come last.
        conflicts: Overlapping edits, within or across proposals.
        report: Unrewritten macros with reasons, and warnings.
        proposals: Proposals whose edits are part of ``edits``.
        withheld: Ids of proposals synthesized but not emitted.
        blocked: Definition sites classified Unclassified, with the reason.
            A header definition blocked in one unit is not rewritten for any.
    """

    edits: Dict[str, List[Edit]] = field(default_factory=dict)
    conflicts: List[EditConflict] = field(default_factory=list)
    report: List[ReportEntry] = field(default_factory=list)
    proposals: List[RewriteProposal] = field(default_factory=list)
    withheld: Set[str] = field(default_factory=set)
    blocked: Dict[DefinitionSite, str] = field(default_factory=dict)

    @property
    def emitted_ids(self) -> Set[str]:
        return {proposal.proposal_id for proposal in self.proposals}

    @property
    def edit_count(self) -> int:
        return sum(len(edits) for edits in self.edits.values())

    def edits_for(self, path: str) -> List[Edit]:
        return list(self.edits.get(path, ()))

    def require_conflict_free(self) -> None:
        """Raise if the plan carries unresolved conflicts.

        Raises:
            ConflictingEditsError: When ``conflicts`` is not empty.
        """
        if self.conflicts:
            raise ConflictingEditsError(len(self.conflicts), self.conflicts[0].path)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "files": {
                path: [edit.to_dict() for edit in edits]
                for path, edits in sorted(self.edits.items())
            },
            "conflicts": [conflict.to_dict() for conflict in self.conflicts],
            "report": [entry.to_dict() for entry in self.report],
            "proposals": [proposal.to_dict() for proposal in self.proposals],
        }


def _add_report(report: List[ReportEntry], entry: ReportEntry) -> None:
    if entry not in report:
        report.append(entry)


def _find_conflicts(edits: Sequence[Edit]) -> List[EditConflict]:
    """Pairwise overlap check over one file's edits sorted by position."""
    conflicts = []
    for index, edit in enumerate(edits):
        for other in edits[index + 1:]:
            if other.start > edit.end:
                break
            if not edit.overlaps(other):
                continue
            conflicts.append(EditConflict(edit.path, edit, other))
    return conflicts


def _assemble(
    candidates: Sequence[RewriteProposal],
    report: List[ReportEntry],
    conflicts: List[EditConflict],
) -> EditPlan:
    pool: List[Edit] = []
    for proposal in candidates:
        for edit in proposal.edits:
            if any(existing.same_change(edit) for existing in pool):
                continue
            pool.append(edit)

    by_path = group_edits_by_path(pool)
    for path in by_path:
        by_path[path].sort(key=lambda edit: edit.sort_key)
        conflicts.extend(_find_conflicts([e for e in by_path[path] if not e.is_append]))

    partners: Dict[str, str] = {}
    for conflict in conflicts:
        first, second = conflict.proposal_ids
        partners.setdefault(first, second)
        partners.setdefault(second, first)
    if conflicts:
        logger.warning("Edit plan has %d conflict(s); withholding %d proposal(s)", len(conflicts), len(partners))

    accepted = []
    for proposal in candidates:
        if proposal.proposal_id in partners:
            partner = partners[proposal.proposal_id]
            if partner == proposal.proposal_id:
                reason = "overlapping edits within the proposal"
            else:
                reason = f"conflicting edits with {partner}"
            _add_report(report, ReportEntry(proposal.macro_name, reason_unrewritable=reason))
            continue
        accepted.append(proposal)
    accepted_ids = {proposal.proposal_id for proposal in accepted}

    plan_edits: Dict[str, List[Edit]] = {}
    for path, edits in sorted(by_path.items()):
        kept = [edit for edit in edits if edit.proposal_id in accepted_ids]
        if kept:
            plan_edits[path] = kept
    return EditPlan(
        edits=plan_edits,
        conflicts=conflicts,
        report=report,
        proposals=accepted,
        withheld=set(partners),
    )


def build_edit_plan(
    proposals: Iterable[RewriteProposal],
    classifications: Iterable[ClassificationResult] = (),
    min_confidence: SafetyTier = SafetyTier.MEDIUM,
    warnings: Iterable[ReportEntry] = (),
) -> EditPlan:
    """Aggregate one unit's proposals into an EditPlan.

    Args:
        proposals: Proposals from the synthesizer.
        classifications: Every classification of the unit; Unclassified ones
            become report entries with their disqualifying reason.
        min_confidence: Lowest safety tier whose edits are emitted.
        warnings: Additional warnings (redefinitions) to report.

    Returns:
        The unit's EditPlan.
    """
    report: List[ReportEntry] = []
    blocked: Dict[DefinitionSite, str] = {}
    for result in classifications:
        if result.is_classified:
            continue
        _add_report(report, ReportEntry(result.macro_name, reason_unrewritable=result.reason))
        if result.definition is not None and not result.skipped:
            define = result.definition.define
            blocked[(define.span.path, result.macro_name, define.span.line)] = result.reason or "Unclassified"

    candidates = []
    skipped: Set[str] = set()
    for proposal in proposals:
        for hazard in proposal.classification.hazards:
            _add_report(report, ReportEntry(proposal.macro_name, warning=hazard.detail))
        if not proposal.edits:
            _add_report(report, ReportEntry(
                proposal.macro_name,
                reason_unrewritable=proposal.reason or "no edits synthesized",
            ))
            skipped.add(proposal.proposal_id)
            continue
        if proposal.tier.rank < min_confidence.rank:
            _add_report(report, ReportEntry(
                proposal.macro_name,
                reason_unrewritable=(
                    f"safety tier {proposal.tier.value} is below the emit threshold {min_confidence.value}"
                ),
            ))
            skipped.add(proposal.proposal_id)
            continue
        candidates.append(proposal)

    for entry in warnings:
        _add_report(report, entry)
    plan = _assemble(candidates, report, [])
    plan.withheld |= skipped
    plan.blocked = blocked
    return plan


def merge_edit_plans(plans: Iterable[EditPlan]) -> EditPlan:
    """Merge per-unit plans keyed by file path.

    A header included by several units yields the same proposal more than
    once. Edits in files both copies touch must agree; edits in files only
    one unit sees (its own call sites) are unioned. Copies that disagree on a
    shared file are escalated to conflicts. A proposal withheld by any unit,
    or whose definition another unit left Unclassified, is withheld from the
    merged plan.
    """
    report: List[ReportEntry] = []
    conflicts: List[EditConflict] = []
    by_id: Dict[str, RewriteProposal] = {}
    diverged: Set[str] = set()
    withheld: Set[str] = set()
    blocked: Dict[DefinitionSite, str] = {}
    order: List[str] = []

    for plan in plans:
        for entry in plan.report:
            _add_report(report, entry)
        conflicts.extend(conflict for conflict in plan.conflicts if conflict not in conflicts)
        withheld.update(plan.withheld)
        for site, reason in plan.blocked.items():
            blocked.setdefault(site, reason)
        for proposal in plan.proposals:
            existing = by_id.get(proposal.proposal_id)
            if existing is None:
                by_id[proposal.proposal_id] = proposal
                order.append(proposal.proposal_id)
                continue
            if _shared_paths_agree(existing, proposal):
                by_id[proposal.proposal_id] = _union_edits(existing, proposal)
                continue
            logger.warning("Proposal %s differs between translation units", proposal.proposal_id)
            diverged.add(proposal.proposal_id)
            first = _first_difference(existing, proposal) or _first_difference(proposal, existing)
            if first is not None:
                conflicts.append(first)

    candidates = []
    for proposal_id in order:
        proposal = by_id[proposal_id]
        if proposal_id in diverged:
            _add_report(report, ReportEntry(
                proposal.macro_name,
                reason_unrewritable="differing proposals for the same definition across translation units",
            ))
            continue
        if proposal_id in withheld:
            _add_report(report, ReportEntry(
                proposal.macro_name,
                reason_unrewritable="withheld in another translation unit",
            ))
            continue
        site = _definition_site(proposal_id)
        if site in blocked:
            logger.warning("Proposal %s is Unclassified in another translation unit", proposal_id)
            withheld.add(proposal_id)
            _add_report(report, ReportEntry(
                proposal.macro_name,
                reason_unrewritable=f"Unclassified in another translation unit: {blocked[site]}",
            ))
            continue
        candidates.append(proposal)
    plan = _assemble(candidates, report, conflicts)
    plan.withheld |= (withheld | diverged) - plan.emitted_ids
    plan.blocked = blocked
    return plan


def _definition_site(proposal_id: str) -> DefinitionSite:
    parsed = parse_proposal_id(proposal_id)
    return parsed["file_path"], parsed["macro_name"], parsed["line"]


def _shared_paths_agree(left: RewriteProposal, right: RewriteProposal) -> bool:
    shared = {edit.path for edit in left.edits} & {edit.path for edit in right.edits}
    mine = [edit for edit in left.edits if edit.path in shared]
    theirs = [edit for edit in right.edits if edit.path in shared]
    if len(mine) != len(theirs):
        return False
    return all(any(a.same_change(b) for b in theirs) for a in mine)


def _union_edits(left: RewriteProposal, right: RewriteProposal) -> RewriteProposal:
    extra = tuple(edit for edit in right.edits if not any(edit.same_change(other) for other in left.edits))
    tier = lower_tier(left.tier, right.tier)
    if not extra and tier is left.tier:
        return left
    return replace(left, edits=left.edits + extra, tier=tier)


def _first_difference(left: RewriteProposal, right: RewriteProposal) -> Optional[EditConflict]:
    shared = {edit.path for edit in left.edits}
    for edit in right.edits:
        if edit.path in shared and not any(edit.same_change(other) for other in left.edits):
            partner = next(other for other in left.edits if other.path == edit.path)
            return EditConflict(edit.path, partner, edit)
    return None


def apply_edits_to_text(text: str, edits: Iterable[Edit]) -> str:
    """Render non-overlapping edits of one file into new text.

    Raises:
        ValueError: If two edits overlap.
    """
    ordered = sorted(edits, key=lambda edit: edit.sort_key)
    spans = [edit for edit in ordered if not edit.is_append]
    for index in range(1, len(spans)):
        if spans[index - 1].overlaps(spans[index]):
            raise ValueError(
                f"Overlapping edits at {spans[index].start} in {spans[index].path}"
            )
    for edit in reversed(spans):
        text = text[: edit.start] + edit.replacement_text + text[edit.end:]
    for edit in ordered:
        if edit.is_append:
            text += edit.replacement_text
    return text
