"""
Engine orchestration: per-unit analysis, the worker pool and the final merge.

Each translation unit is scanned, classified, synthesized and planned on its
own; units share no mutable state. A unit that fails is abandoned wholesale
and reported, and the surviving unit plans are merged by file path.
"""

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from contextvars import copy_context
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Optional, Sequence

from analysis.classifier import MacroClassifier
from analysis.context_resolver import DeclarationContextResolver
from analysis.models import ClassificationResult
from core.engine_config import EngineConfig
from core.errors import ParseError
from core.run_artifacts import write_diagnostics_jsonl, write_run_report
from core.structured_logging import get_run_id, phase_scope, unit_scope
from preprocessor.config import CPP_EXTENSIONS, HEADER_EXTENSIONS
from preprocessor.directives import TokenStream, scan_translation_unit
from preprocessor.macro_table import MacroTable
from preprocessor.source import SourceLoader, decode_source, read_source_file
from rewrite.edit_plan import EditPlan, build_edit_plan, merge_edit_plans
from rewrite.models import DiagnosticEntry, Disposition, ReportEntry, RewriteProposal
from rewrite.synthesizer import RewriteSynthesizer

logger = logging.getLogger(__name__)

SKIPPED_DIRECTORIES = {
    'build', 'cmake-build-debug', 'cmake-build-release',
    'node_modules', 'venv', '__pycache__', 'dist', 'out',
}


class AnalysisStats:
    """Statistics for an analysis run."""

    def __init__(self):
        self.units_processed = 0
        self.units_failed = 0
        self.macros_seen = 0
        self.macros_rewritten = 0
        self.macros_reported = 0
        self.macros_skipped = 0
        self.edits_emitted = 0
        self.conflicts = 0

    def record_unit(self, diagnostics: Iterable[DiagnosticEntry]) -> None:
        self.units_processed += 1
        for entry in diagnostics:
            self.macros_seen += 1
            if entry.disposition is Disposition.REWRITTEN:
                self.macros_rewritten += 1
            elif entry.disposition is Disposition.SKIPPED:
                self.macros_skipped += 1
            else:
                self.macros_reported += 1

    def to_dict(self) -> Dict[str, int]:
        """Convert stats to dictionary."""
        return {
            "units_processed": self.units_processed,
            "units_failed": self.units_failed,
            "macros_seen": self.macros_seen,
            "macros_rewritten": self.macros_rewritten,
            "macros_reported": self.macros_reported,
            "macros_skipped": self.macros_skipped,
            "edits_emitted": self.edits_emitted,
            "conflicts": self.conflicts,
        }

    def __str__(self) -> str:
        return (
            f"AnalysisStats(units={self.units_processed}, failed={self.units_failed}, "
            f"macros={self.macros_seen}, rewritten={self.macros_rewritten}, "
            f"reported={self.macros_reported}, skipped={self.macros_skipped}, "
            f"edits={self.edits_emitted}, conflicts={self.conflicts})"
        )


@dataclass
class UnitAnalysis:
    """Everything produced for one translation unit."""

    unit_path: str
    stream: TokenStream
    table: MacroTable
    classifications: List[ClassificationResult]
    proposals: List[RewriteProposal]
    plan: EditPlan
    diagnostics: List[DiagnosticEntry]

    def classification_of(self, name: str) -> Optional[ClassificationResult]:
        for result in self.classifications:
            if result.macro_name == name:
                return result
        return None

    def proposal_for(self, name: str) -> Optional[RewriteProposal]:
        for proposal in self.proposals:
            if proposal.macro_name == name:
                return proposal
        return None


@dataclass(frozen=True)
class UnitFailure:
    """A translation unit whose analysis was abandoned."""

    unit_path: str
    error_kind: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"unit": self.unit_path, "error_kind": self.error_kind, "message": self.message}


@dataclass
class EngineResult:
    """Merged result of a multi-unit run."""

    plan: EditPlan
    diagnostics: List[DiagnosticEntry] = field(default_factory=list)
    failures: List[UnitFailure] = field(default_factory=list)
    stats: AnalysisStats = field(default_factory=AnalysisStats)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "edit_plan": self.plan.to_dict(),
            "diagnostics": [entry.to_dict() for entry in self.diagnostics],
            "failures": [failure.to_dict() for failure in self.failures],
            "stats": self.stats.to_dict(),
        }

    def write_report(self, output_dir: str = "output/macro_reports") -> str:
        """Write the JSON run report and the JSONL diagnostics stream.

        Returns:
            Path of the JSON run report.
        """
        run_id = get_run_id()
        if run_id == "-":
            run_id = "local"
        stats = self.stats.to_dict()
        stats["failures"] = [failure.to_dict() for failure in self.failures]
        path = write_run_report(
            self.plan.to_dict(),
            [entry.to_dict() for entry in self.diagnostics],
            run_id,
            stats=stats,
            output_dir=output_dir,
        )
        write_diagnostics_jsonl(
            (entry.to_dict() for entry in self.diagnostics),
            os.path.join(output_dir, f"{run_id}.diagnostics.jsonl"),
        )
        logger.info(f"Wrote run report to {path}")
        return path


def _redefinition_warnings(table: MacroTable) -> List[ReportEntry]:
    warnings = []
    for name in table.names():
        live = table.live_defines(name)
        if len(live) > 1 and not table.is_ambiguous(name):
            lines = ", ".join(str(define.span.line) for define in live)
            warnings.append(ReportEntry(name, warning=f"redefined identically at lines {lines}"))
    return warnings


def _diagnostics(
    unit_path: str,
    classifications: Sequence[ClassificationResult],
    proposals: Sequence[RewriteProposal],
    plan: EditPlan,
) -> List[DiagnosticEntry]:
    """Exactly one disposition per macro name."""
    by_name = {proposal.macro_name: proposal for proposal in proposals}
    emitted = plan.emitted_ids
    entries = []
    for result in classifications:
        proposal = by_name.get(result.macro_name)
        if result.skipped:
            disposition = Disposition.SKIPPED
        elif proposal is not None and proposal.proposal_id in emitted:
            disposition = Disposition.REWRITTEN
        else:
            disposition = Disposition.REPORTED_ONLY
        rationale = result.rationale()
        if disposition is Disposition.REPORTED_ONLY and proposal is not None and proposal.reason:
            rationale = proposal.reason
        entries.append(DiagnosticEntry(
            macro_name=result.macro_name,
            path=result.definition_path,
            definition_lines=result.definition_lines,
            tag=result.tag.value,
            confidence=result.confidence,
            rationale=rationale,
            disposition=disposition,
            hazards=result.hazards,
            unit=unit_path,
            proposal_id=proposal.proposal_id if proposal is not None else None,
        ))
    return entries


def _reconcile(entry: DiagnosticEntry, plan: EditPlan) -> DiagnosticEntry:
    """Report a unit's rewrite that the merged plan withholds."""
    if entry.disposition is not Disposition.REWRITTEN or entry.proposal_id not in plan.withheld:
        return entry
    return replace(entry, disposition=Disposition.REPORTED_ONLY, rationale="withheld when merging translation units")

def analyze_source(
    path: str,
    text: str,
    config: Optional[EngineConfig] = None,
    loader: Optional[SourceLoader] = None,
) -> UnitAnalysis:
    """Analyze one translation unit given its decoded text.

    Args:
        path: Path of the main file.
        text: Decoded text of the main file.
        config: Engine configuration; defaults apply when None.
        loader: Provider used to follow quoted includes.

    Returns:
        The unit's classifications, proposals, plan and diagnostics.

    Raises:
        ParseError: If a directive of the unit is malformed.
    """
    config = config or EngineConfig()
    with phase_scope("scan"):
        stream = scan_translation_unit(
            path,
            text,
            loader=loader,
            include_dirs=config.include_dirs,
            follow_includes=config.follow_includes,
        )
        table = MacroTable.from_directives(stream.directives)

    with phase_scope("classify"):
        resolver = DeclarationContextResolver(stream)
        classifications = MacroClassifier(stream, table, resolver, config).classify_all()

    with phase_scope("synthesize"):
        proposals = RewriteSynthesizer(stream, config).synthesize_all(classifications)

    with phase_scope("plan"):
        plan = build_edit_plan(
            proposals,
            classifications,
            min_confidence=config.min_confidence_to_emit,
            warnings=_redefinition_warnings(table),
        )
        diagnostics = _diagnostics(path, classifications, proposals, plan)

    logger.info(
        "Analyzed %s: %d macro(s), %d proposal(s), %d edit(s)",
        path,
        len(classifications),
        len(proposals),
        plan.edit_count,
    )
    return UnitAnalysis(path, stream, table, classifications, proposals, plan, diagnostics)


def analyze_unit(
    path: str,
    loader: SourceLoader = read_source_file,
    config: Optional[EngineConfig] = None,
) -> UnitAnalysis:
    """Load and analyze one translation unit.

    Raises:
        ParseError: If the unit cannot be scanned.
        FileNotFoundError: If the loader cannot find ``path``.
    """
    text = decode_source(loader(path))
    return analyze_source(path, text, config=config, loader=loader)


def _analyze_in_scope(path: str, loader: SourceLoader, config: EngineConfig) -> UnitAnalysis:
    with unit_scope(path):
        return analyze_unit(path, loader, config)


def analyze_units(
    paths: Iterable[str],
    loader: SourceLoader = read_source_file,
    config: Optional[EngineConfig] = None,
) -> EngineResult:
    """Analyze several translation units concurrently and merge their plans.

    Failed units are discarded and listed in ``EngineResult.failures``; they
    never abort the run.

    Example:
        >>> result = analyze_units(["src/a.cpp", "src/b.cpp"])
        >>> print(result.stats)
    """
    config = config or EngineConfig()
    paths = list(paths)
    stats = AnalysisStats()
    units: List[UnitAnalysis] = []
    failures: List[UnitFailure] = []

    with ThreadPoolExecutor(max_workers=max(1, config.max_workers)) as executor:
        futures = {
            path: executor.submit(copy_context().run, _analyze_in_scope, path, loader, config)
            for path in paths
        }
        for path, future in futures.items():
            try:
                units.append(future.result())
            except ParseError as e:
                logger.error(f"Parse error in {path}: {e}")
                failures.append(UnitFailure(path, e.kind.value, str(e)))
            except Exception as e:
                logger.error(f"Unexpected error analyzing {path}: {e}", exc_info=True)
                failures.append(UnitFailure(path, type(e).__name__, str(e)))

    with phase_scope("merge"):
        plan = merge_edit_plans(unit.plan for unit in units)

    diagnostics = []
    for unit in units:
        entries = [_reconcile(entry, plan) for entry in unit.diagnostics]
        stats.record_unit(entries)
        diagnostics.extend(entries)
    stats.units_failed = len(failures)
    stats.edits_emitted = plan.edit_count
    stats.conflicts = len(plan.conflicts)

    logger.info(f"Analysis complete: {stats}")
    return EngineResult(plan=plan, diagnostics=diagnostics, failures=failures, stats=stats)


def discover_cpp_files(directory: str, include_headers: bool = False) -> List[str]:
    """Recursively discover C/C++ translation units in a directory.

    Args:
        directory: Root directory to search.
        include_headers: Also return header files as units of their own.

    Returns:
        Sorted list of absolute paths.
    """
    found = []
    directory = os.path.abspath(directory)
    extensions = set(CPP_EXTENSIONS)
    if not include_headers:
        extensions -= HEADER_EXTENSIONS

    logger.info(f"Discovering C++ files in {directory}")
    for root, dirs, files in os.walk(directory):
        dirs[:] = [d for d in dirs if not d.startswith('.') and d not in SKIPPED_DIRECTORIES]
        for file in files:
            if os.path.splitext(file)[1] in extensions:
                found.append(os.path.join(root, file))

    logger.info(f"Found {len(found)} C++ files")
    return sorted(found)


def analyze_directory(
    directory: str,
    config: Optional[EngineConfig] = None,
    include_headers: bool = False,
) -> EngineResult:
    """Analyze every translation unit under ``directory``.

    Raises:
        FileNotFoundError: If directory does not exist.
    """
    directory = os.path.abspath(directory)
    if not os.path.isdir(directory):
        raise FileNotFoundError(f"Directory not found: {directory}")

    paths = discover_cpp_files(directory, include_headers=include_headers)
    if not paths:
        logger.warning(f"No C++ files found in {directory}")
    return analyze_units(paths, config=config)


