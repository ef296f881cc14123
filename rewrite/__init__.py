"""
Rewrite Synthesizer, Edit Plan aggregation and engine orchestration.

Turns classified macros into replacement declarations plus call-site edits,
aggregates them into conflict-checked per-file edit plans, and drives the
per-unit pipeline across a worker pool.
"""

from rewrite.models import (
    DiagnosticEntry,
    Disposition,
    Edit,
    EditConflict,
    EditKind,
    ReportEntry,
    RewriteProposal,
)
from rewrite.synthesizer import RewriteSynthesizer, camel_case, synthesize_proposals
from rewrite.edit_plan import EditPlan, apply_edits_to_text, build_edit_plan, merge_edit_plans
from rewrite.engine import (
    AnalysisStats,
    EngineResult,
    UnitAnalysis,
    UnitFailure,
    analyze_directory,
    analyze_source,
    analyze_unit,
    analyze_units,
    discover_cpp_files,
)

__all__ = [
    # Data models
    "DiagnosticEntry",
    "Disposition",
    "Edit",
    "EditConflict",
    "EditKind",
    "ReportEntry",
    "RewriteProposal",
    # Synthesis
    "RewriteSynthesizer",
    "camel_case",
    "synthesize_proposals",
    # Edit plans
    "EditPlan",
    "apply_edits_to_text",
    "build_edit_plan",
    "merge_edit_plans",
    # Engine
    "AnalysisStats",
    "EngineResult",
    "UnitAnalysis",
    "UnitFailure",
    "analyze_directory",
    "analyze_source",
    "analyze_unit",
    "analyze_units",
    "discover_cpp_files",
]
