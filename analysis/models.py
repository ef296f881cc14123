"""
Data models for declaration contexts, usage sites and classification results.
"""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

from core.proposal_contract import Confidence
from preprocessor.models import MacroDefinition, Reachability, SourceSpan, Token, render_tokens


class ScopeKind(str, Enum):
    GLOBAL = "global"
    NAMESPACE = "namespace"
    CLASS = "class"
    FUNCTION = "function"
    BLOCK = "block"


class Access(str, Enum):
    PUBLIC = "public"
    PROTECTED = "protected"
    PRIVATE = "private"


@dataclass(frozen=True)
class ScopeFrame:
    """One enclosing scope of a source position.

    Attributes:
        kind: Scope kind (never GLOBAL; the global scope has no frame).
        name: Namespace or class name, None for anonymous scopes and blocks.
        path: File the scope lives in.
        start: Character offset of the scope's opening brace.
        end: Character offset one past the scope's closing brace.
        access: Member access in effect at the queried position (CLASS only).
        owner: Class named by an out-of-class member function (FUNCTION only).
        class_key: ``class``, ``struct`` or ``union`` (CLASS only).
        statement_end: Character offset one past the ``;`` ending the class
            declaration, when known (CLASS only).
    """

    kind: ScopeKind
    name: Optional[str]
    path: str
    start: int
    end: int
    access: Optional[Access] = None
    owner: Optional[str] = None
    class_key: Optional[str] = None
    statement_end: Optional[int] = None

    def contains(self, path: str, offset: int) -> bool:
        return self.path == path and self.start <= offset < self.end

    @property
    def is_transparent(self) -> bool:
        """Anonymous namespaces do not hide their names from the enclosing scope."""
        return self.kind is ScopeKind.NAMESPACE and not self.name

    def same_scope(self, other: "ScopeFrame") -> bool:
        return (self.kind, self.name, self.path, self.start, self.end) == (
            other.kind,
            other.name,
            other.path,
            other.start,
            other.end,
        )


@dataclass(frozen=True)
class DeclarationContext:
    """Enclosing declaration context of a source position.

    ``chain`` holds every enclosing frame, outermost first. ``kind`` is the
    kind of the innermost namespace or class frame (GLOBAL when there is
    none), so a position inside a member function body still reports the
    class that function belongs to lexically.
    """

    kind: ScopeKind
    name: Optional[str] = None
    access: Optional[Access] = None
    chain: Tuple[ScopeFrame, ...] = ()
    resolver: str = "tree-sitter"
    resolvers_disagree: bool = False

    @property
    def innermost(self) -> Optional[ScopeFrame]:
        return self.chain[-1] if self.chain else None

    @property
    def scope_frame(self) -> Optional[ScopeFrame]:
        """Innermost frame a declaration placed at this position belongs to."""
        for frame in reversed(self.chain):
            if not frame.is_transparent:
                return frame
        return None

    @property
    def class_frame(self) -> Optional[ScopeFrame]:
        frame = self.scope_frame
        if frame is not None and frame.kind is ScopeKind.CLASS:
            return frame
        return None

    @property
    def scope_path(self) -> Tuple[str, ...]:
        """Names of the enclosing named namespaces and classes."""
        return tuple(
            frame.name
            for frame in self.chain
            if frame.kind in (ScopeKind.NAMESPACE, ScopeKind.CLASS) and frame.name
        )

    @property
    def qualified_name(self) -> str:
        return "::".join(self.scope_path)

    @property
    def in_function_body(self) -> bool:
        return any(frame.kind in (ScopeKind.FUNCTION, ScopeKind.BLOCK) for frame in self.chain)

    def member_function_owner(self) -> Optional[str]:
        for frame in reversed(self.chain):
            if frame.kind is ScopeKind.FUNCTION and frame.owner:
                return frame.owner
        return None

    def describe(self) -> str:
        if self.kind is ScopeKind.GLOBAL:
            return "global namespace"
        if self.kind is ScopeKind.NAMESPACE:
            return f"namespace {self.qualified_name or '<anonymous>'}"
        access = f", {self.access.value}" if self.access else ""
        return f"class {self.qualified_name or '<anonymous>'}{access}"


GLOBAL_CONTEXT = DeclarationContext(kind=ScopeKind.GLOBAL)


@dataclass(frozen=True)
class UsageSite:
    """One resolved use of a macro in code.

    ``span`` covers the name and, for function-like macros, the argument list.
    """

    name: str
    definition: MacroDefinition
    name_token: Token
    span: SourceSpan
    arguments: Tuple[Tuple[Token, ...], ...] = ()
    context: DeclarationContext = GLOBAL_CONTEXT
    reachability: Reachability = Reachability.UNCONDITIONAL
    in_constant_expression: bool = False
    within_defining_class: bool = True

    @property
    def line(self) -> int:
        return self.span.line

    def argument_texts(self) -> Tuple[str, ...]:
        return tuple(render_tokens(argument) for argument in self.arguments)


@dataclass(frozen=True)
class StrayReference:
    """A macro name appearing in code where it does not expand."""

    name: str
    token: Token
    reason: str


class HazardKind(str, Enum):
    REPEATED_EVALUATION = "repeated_evaluation"
    PRECEDENCE = "precedence"
    PARAMETER_MUTATION = "parameter_mutation"
    FREE_VARIABLE = "free_variable"
    SIDE_EFFECT_ARGUMENT = "side_effect_argument"
    USAGE_PRECEDENCE = "usage_precedence"


@dataclass(frozen=True)
class Hazard:
    kind: HazardKind
    detail: str
    parameter: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "parameter": self.parameter, "detail": self.detail}


class PatternTag(str, Enum):
    """Closed set of macro patterns."""

    SIMPLE_CONSTANT = "SimpleConstant"
    POINTER_CONSTANT = "PointerConstant"
    CLASS_SCOPED_CONSTANT = "ClassScopedConstant"
    ENUM_HACK_CANDIDATE = "EnumHackCandidate"
    FUNCTION_LIKE_MACRO = "FunctionLikeMacro"
    UNCLASSIFIED = "Unclassified"


@dataclass(frozen=True)
class ConstantPayload:
    """Typed constant folded from an object-like replacement list."""

    type_name: str
    initializer: str
    integral: bool
    value: Union[int, float, None] = None


@dataclass(frozen=True)
class PointerPayload:
    """String or pointer literal replacement."""

    char_type: Optional[str]
    initializer: str
    string_type: Optional[str] = None

    @property
    def pointee_known(self) -> bool:
        return self.char_type is not None

    @property
    def pointer_type(self) -> str:
        return f"const {self.char_type} * const"


@dataclass(frozen=True)
class FunctionPayload:
    """Single-expression body of a function-like macro."""

    parameters: Tuple[str, ...]
    body: str
    mutated_parameters: Tuple[str, ...] = ()
    free_variables: Tuple[str, ...] = ()


Payload = Union[ConstantPayload, PointerPayload, FunctionPayload, None]


@dataclass(frozen=True)
class QualifiedUsage:
    """A usage outside the defining scope that needs a qualified name."""

    usage: UsageSite
    qualifier: str


@dataclass(frozen=True)
class ClassificationResult:
    """Pattern assigned to one macro name in one translation unit."""

    macro_name: str
    tag: PatternTag
    confidence: Confidence
    evidence: Tuple[str, ...] = ()
    hazards: Tuple[Hazard, ...] = ()
    reason: Optional[str] = None
    definition: Optional[MacroDefinition] = None
    context: Optional[DeclarationContext] = None
    payload: Payload = None
    usages: Tuple[UsageSite, ...] = ()
    qualified_usages: Tuple[QualifiedUsage, ...] = field(default_factory=tuple)
    referenced_by: Tuple[str, ...] = ()
    skipped: bool = False

    @property
    def is_classified(self) -> bool:
        return self.tag is not PatternTag.UNCLASSIFIED

    @property
    def definition_lines(self) -> Tuple[int, ...]:
        if self.definition is None:
            return ()
        return tuple(
            event.span.line for event in self.definition.events if event.kind.value == "define"
        )

    @property
    def definition_path(self) -> Optional[str]:
        if self.definition is None:
            return None
        return self.definition.define.span.path

    def rationale(self) -> str:
        """Human-readable one-line summary of why the pattern was chosen."""
        if self.reason:
            return self.reason
        parts = list(self.evidence)
        parts.extend(hazard.detail for hazard in self.hazards)
        return "; ".join(parts) if parts else self.tag.value

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self.payload) if self.payload is not None else None
        return {
            "macro_name": self.macro_name,
            "tag": self.tag.value,
            "confidence": self.confidence.value,
            "evidence": list(self.evidence),
            "hazards": [hazard.to_dict() for hazard in self.hazards],
            "reason": self.reason,
            "path": self.definition_path,
            "definition_lines": list(self.definition_lines),
            "context": self.context.describe() if self.context else None,
            "payload": payload,
            "usage_count": len(self.usages),
        }
