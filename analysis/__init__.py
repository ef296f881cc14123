"""
Declaration Context Resolver and Macro Classifier.

Tree-sitter based scope resolution for macro definition and usage sites,
expression parsing and typed constant folding of replacement lists, and the
pattern classifier that decides which idiom can replace each macro.
"""

from analysis.models import (
    Access,
    ClassificationResult,
    ConstantPayload,
    DeclarationContext,
    FunctionPayload,
    Hazard,
    HazardKind,
    PatternTag,
    PointerPayload,
    QualifiedUsage,
    ScopeFrame,
    ScopeKind,
    StrayReference,
    UsageSite,
)
from analysis.parser import CPP_LANGUAGE, count_error_nodes, parse_source_file
from analysis.expressions import Expr, ExprKind, ExpressionSyntaxError, parse_expression
from analysis.literals import NotConstantFoldable, TypedValue, ValueCategory, fold_constant
from analysis.context_resolver import DeclarationContextResolver, ScopeIndex
from analysis.usage import UsageIndex, collect_usages
from analysis.classifier import MacroClassifier, classify_unit

__all__ = [
    # Data models
    "Access",
    "ClassificationResult",
    "ConstantPayload",
    "DeclarationContext",
    "FunctionPayload",
    "Hazard",
    "HazardKind",
    "PatternTag",
    "PointerPayload",
    "QualifiedUsage",
    "ScopeFrame",
    "ScopeKind",
    "StrayReference",
    "UsageSite",
    # Low-level parsing
    "CPP_LANGUAGE",
    "parse_source_file",
    "count_error_nodes",
    "Expr",
    "ExprKind",
    "ExpressionSyntaxError",
    "parse_expression",
    # Constant folding
    "NotConstantFoldable",
    "TypedValue",
    "ValueCategory",
    "fold_constant",
    # Scope and usage resolution
    "DeclarationContextResolver",
    "ScopeIndex",
    "UsageIndex",
    "collect_usages",
    # Classification
    "MacroClassifier",
    "classify_unit",
]
