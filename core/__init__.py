"""Core shared contracts and utilities."""

from core.proposal_contract import (
    PROPOSAL_ID_SEPARATOR,
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
from core.structured_logging import (
    configure_structured_logging,
    get_phase,
    get_run_id,
    get_unit,
    phase_scope,
    set_run_id,
    unit_scope,
)
from core.engine_config import (
    ClassConstantStyle,
    ConfigValidationError,
    EngineConfig,
    FunctionNaming,
    load_engine_config,
    parse_engine_config,
    resolve_strict_config_validation,
)
from core.errors import (
    AmbiguousDefinitionError,
    ConflictingEditsError,
    ErrorKind,
    MacroRewriteError,
    ParseError,
    UnsafeRewriteRejected,
)
from core.run_artifacts import write_diagnostics_jsonl, write_run_report

__all__ = [
    "PROPOSAL_ID_SEPARATOR",
    "Confidence",
    "SafetyTier",
    "create_proposal_id",
    "lower_confidence",
    "lower_tier",
    "make_content_hash",
    "normalize_replacement_text",
    "parse_proposal_id",
    "parse_safety_tier",
    "tier_for_confidence",
    "configure_structured_logging",
    "get_phase",
    "get_run_id",
    "get_unit",
    "phase_scope",
    "set_run_id",
    "unit_scope",
    "ClassConstantStyle",
    "ConfigValidationError",
    "EngineConfig",
    "FunctionNaming",
    "load_engine_config",
    "parse_engine_config",
    "resolve_strict_config_validation",
    "AmbiguousDefinitionError",
    "ConflictingEditsError",
    "ErrorKind",
    "MacroRewriteError",
    "ParseError",
    "UnsafeRewriteRejected",
    "write_diagnostics_jsonl",
    "write_run_report",
]
