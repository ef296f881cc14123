"""
Rewrite synthesis.

Turns each classification into a RewriteProposal: the replacement
declaration text, every edit needed to install it (the definition itself,
extra directives for the same name, qualified or renamed call sites), and a
safety tier. Synthesis never raises; a macro that cannot be rewritten safely
gets a LOW proposal with the reason, so one failure never blocks the rest.
"""

import logging
import os
import re
from typing import Iterable, List, Optional, Sequence

from analysis.models import (
    ClassificationResult,
    ConstantPayload,
    DeclarationContext,
    FunctionPayload,
    PatternTag,
    PointerPayload,
    ScopeKind,
)
from core.engine_config import EngineConfig, FunctionNaming
from core.errors import UnsafeRewriteRejected
from core.proposal_contract import (
    Confidence,
    SafetyTier,
    create_proposal_id,
    lower_tier,
    tier_for_confidence,
)
from preprocessor.config import HEADER_EXTENSIONS
from preprocessor.directives import TokenStream
from preprocessor.models import DirectiveKind, Reachability
from rewrite.models import Edit, EditKind, RewriteProposal

logger = logging.getLogger(__name__)

_CAMEL_SPLIT_RE = re.compile(r"_+")


def camel_case(name: str) -> str:
    """``CALL_WITH_MAX`` -> ``callWithMax``; a single all-caps word is lowercased."""
    parts = [part for part in _CAMEL_SPLIT_RE.split(name) if part]
    if not parts:
        return name
    if len(parts) == 1:
        return parts[0].lower() if parts[0].isupper() else parts[0]
    head, rest = parts[0].lower(), parts[1:]
    return head + "".join(part[:1].upper() + part[1:].lower() for part in rest)


def is_header(path: str) -> bool:
    return os.path.splitext(path)[1].lower() in HEADER_EXTENSIONS


class _Draft:
    """Mutable state while one proposal is assembled."""

    def __init__(self, result: ClassificationResult) -> None:
        self.result = result
        self.tier = tier_for_confidence(result.confidence)
        self.edits: List[Edit] = []
        self.notes: List[str] = []
        self.alternatives: List[str] = []
        self.declaration: Optional[str] = None

    def cap(self, tier: SafetyTier, note: str) -> None:
        self.tier = lower_tier(self.tier, tier)
        self.note(note)

    def note(self, note: str) -> None:
        if note not in self.notes:
            self.notes.append(note)


class RewriteSynthesizer:
    """Synthesize proposals for the classifications of one unit.

    Args:
        stream: Scanned translation unit (used for identifier collision checks).
        config: Engine configuration.
    """

    def __init__(self, stream: TokenStream, config: Optional[EngineConfig] = None) -> None:
        self.stream = stream
        self.config = config or EngineConfig()
        self._identifiers = {token.lexeme for token in stream.code_tokens if token.is_identifier()}

    def synthesize_all(self, results: Iterable[ClassificationResult]) -> List[RewriteProposal]:
        proposals = []
        for result in results:
            proposal = self.synthesize(result)
            if proposal is not None:
                proposals.append(proposal)
        return proposals

    def synthesize(self, result: ClassificationResult) -> Optional[RewriteProposal]:
        """Build the proposal for one classification.

        Returns:
            None for Unclassified macros, otherwise a proposal. Proposals that
            cannot be applied safely have tier LOW, no edits and a reason.
        """
        if not result.is_classified or result.definition is None:
            return None
        define = result.definition.define
        proposal_id = create_proposal_id(define.span.path, result.macro_name, result.tag.value, define.span.line)

        if result.confidence is Confidence.UNREWRITABLE:
            return self._reported_only(proposal_id, result, result.reason or result.rationale())

        draft = _Draft(result)
        try:
            self._build(draft, proposal_id)
        except UnsafeRewriteRejected as exc:
            logger.info("Rewrite of %s rejected: %s", result.macro_name, exc.reason)
            return self._reported_only(proposal_id, result, exc.reason, draft.notes)
        except Exception as exc:
            logger.error("Synthesis failed for %s: %s", result.macro_name, exc, exc_info=True)
            return self._reported_only(proposal_id, result, f"synthesis failed: {exc}", draft.notes)

        return RewriteProposal(
            proposal_id=proposal_id,
            macro_name=result.macro_name,
            classification=result,
            declaration=draft.declaration,
            edits=tuple(draft.edits),
            tier=draft.tier,
            alternatives=tuple(draft.alternatives),
            notes=tuple(draft.notes),
        )

    @staticmethod
    def _reported_only(
        proposal_id: str,
        result: ClassificationResult,
        reason: str,
        notes: Sequence[str] = (),
    ) -> RewriteProposal:
        return RewriteProposal(
            proposal_id=proposal_id,
            macro_name=result.macro_name,
            classification=result,
            declaration=None,
            edits=(),
            tier=SafetyTier.LOW,
            notes=tuple(notes),
            reason=reason,
        )

    def _build(self, draft: _Draft, proposal_id: str) -> None:
        result = draft.result
        tag = result.tag
        new_name = result.macro_name

        if tag is PatternTag.SIMPLE_CONSTANT:
            draft.declaration = self._simple_constant(draft)
        elif tag is PatternTag.POINTER_CONSTANT:
            draft.declaration = self._pointer_constant(draft)
        elif tag is PatternTag.CLASS_SCOPED_CONSTANT:
            draft.declaration = self._class_constant(draft, proposal_id)
        elif tag is PatternTag.ENUM_HACK_CANDIDATE:
            draft.declaration = self._enum_hack(draft)
        elif tag is PatternTag.FUNCTION_LIKE_MACRO:
            new_name = self._function_name(draft)
            draft.declaration = self._function(draft, new_name)
        else:
            raise UnsafeRewriteRejected(result.macro_name, f"no synthesis for pattern {tag.value}")

        define = result.definition.define
        draft.edits.insert(0, Edit(define.span.path, define.span.start, define.span.end, draft.declaration, proposal_id))
        self._directive_edits(draft, proposal_id)
        self._usage_edits(draft, proposal_id, new_name)

    # Declarations

    @staticmethod
    def _constant_payload(draft: _Draft) -> ConstantPayload:
        payload = draft.result.payload
        if not isinstance(payload, ConstantPayload):
            raise UnsafeRewriteRejected(draft.result.macro_name, "no typed constant to declare")
        return payload

    def _simple_constant(self, draft: _Draft) -> str:
        payload = self._constant_payload(draft)
        if payload.type_name == "std::size_t":
            draft.note("declaration type std::size_t requires <cstddef>")
        return f"const {payload.type_name} {draft.result.macro_name} = {payload.initializer};"

    def _pointer_constant(self, draft: _Draft) -> str:
        payload = draft.result.payload
        name = draft.result.macro_name
        if not isinstance(payload, PointerPayload) or not payload.pointee_known:
            raise UnsafeRewriteRejected(name, "pointee type of the pointer constant is unknown")
        pointer_form = f"{payload.pointer_type} {name} = {payload.initializer};"
        if self.config.prefer_string_type and payload.string_type:
            draft.alternatives.append(pointer_form)
            draft.cap(SafetyTier.MEDIUM, f"{payload.string_type} requires #include <string>")
            draft.note(f"use sites see a {payload.string_type} instead of a {payload.char_type} array")
            return f"const {payload.string_type} {name}({payload.initializer});"
        if payload.string_type:
            draft.alternatives.append(f"const {payload.string_type} {name}({payload.initializer});")
        return pointer_form

    def _class_constant(self, draft: _Draft, proposal_id: str) -> str:
        result = draft.result
        name = result.macro_name
        context = result.context
        frame = context.class_frame if context is not None else None
        if frame is None:
            raise UnsafeRewriteRejected(name, "class scope of the definition is unknown")
        draft.note(f"declared in the {frame.access.value if frame.access else 'default'} section of {frame.name}")

        payload = result.payload
        if isinstance(payload, ConstantPayload) and payload.integral:
            draft.alternatives.append(f"static constexpr {payload.type_name} {name} = {payload.initializer};")
            return f"static const {payload.type_name} {name} = {payload.initializer};"

        if isinstance(payload, ConstantPayload):
            member_type, initializer = f"const {payload.type_name}", f" = {payload.initializer}"
        elif isinstance(payload, PointerPayload) and payload.pointee_known:
            if self.config.prefer_string_type and payload.string_type:
                member_type, initializer = f"const {payload.string_type}", f"({payload.initializer})"
                draft.cap(SafetyTier.MEDIUM, f"{payload.string_type} requires #include <string>")
            else:
                member_type, initializer = payload.pointer_type, f" = {payload.initializer}"
        else:
            raise UnsafeRewriteRejected(name, "class constant has no declarable type")

        draft.alternatives.append(f"static inline {member_type} {name}{initializer};")
        self._out_of_class_definition(draft, proposal_id, context, member_type, initializer)
        return f"static {member_type} {name};"

    def _out_of_class_definition(
        self,
        draft: _Draft,
        proposal_id: str,
        context: DeclarationContext,
        member_type: str,
        initializer: str,
    ) -> None:
        name = draft.result.macro_name
        class_frames = [frame for frame in context.chain if frame.kind is ScopeKind.CLASS]
        if any(frame.name is None for frame in class_frames):
            raise UnsafeRewriteRejected(name, "an enclosing class is unnamed")
        define_path = draft.result.definition.define.span.path

        if is_header(define_path):
            qualified = "::".join(context.scope_path + (name,))
            companion = os.path.splitext(define_path)[0] + self.config.companion_source_suffix
            text = f"\n{member_type} {qualified}{initializer};\n"
            draft.edits.append(Edit(companion, 0, 0, text, proposal_id, EditKind.APPEND))
            draft.cap(SafetyTier.MEDIUM, f"out-of-class definition appended to {companion}")
            return

        outermost = class_frames[0]
        if outermost.statement_end is None:
            raise UnsafeRewriteRejected(name, f"cannot locate the end of class {outermost.name}")
        qualified = "::".join([frame.name for frame in class_frames] + [name])
        text = f"\n{member_type} {qualified}{initializer};"
        draft.edits.append(Edit(outermost.path, outermost.statement_end, outermost.statement_end, text, proposal_id))
        draft.note(f"out-of-class definition placed after class {outermost.name}")

    def _enum_hack(self, draft: _Draft) -> str:
        payload = self._constant_payload(draft)
        name = draft.result.macro_name
        if not payload.integral:
            raise UnsafeRewriteRejected(name, "enumerators must be integral")
        draft.alternatives.append(f"static const {payload.type_name} {name} = {payload.initializer};")
        draft.note(
            "an in-class initialized static const is not accepted as a constant "
            "expression by every compiler; the enum form always is"
        )
        if payload.type_name not in ("int", "bool", "char", "short"):
            draft.note(f"enumerator type is implementation-chosen; the constant was {payload.type_name}")
        return f"enum {{ {name} = {payload.initializer} }};"

    def _function_name(self, draft: _Draft) -> str:
        name = draft.result.macro_name
        if self.config.function_naming is not FunctionNaming.CAMEL_CASE:
            return name
        renamed = camel_case(name)
        if renamed != name and renamed in self._identifiers:
            raise UnsafeRewriteRejected(name, f"renamed function '{renamed}' collides with an existing identifier")
        if renamed != name and draft.result.referenced_by:
            referrers = ", ".join(f"'{macro}'" for macro in draft.result.referenced_by)
            raise UnsafeRewriteRejected(
                name,
                f"cannot rename to {renamed}: called from the replacement list of macro {referrers}",
            )
        if renamed != name:
            draft.note(f"renamed to {renamed}; every call site is edited")
        return renamed

    def _function(self, draft: _Draft, new_name: str) -> str:
        result = draft.result
        payload = result.payload
        if not isinstance(payload, FunctionPayload):
            raise UnsafeRewriteRejected(result.macro_name, "no single-expression body")
        type_params = [f"T{index}" for index in range(1, len(payload.parameters) + 1)]
        params = []
        for type_param, parameter in zip(type_params, payload.parameters):
            if parameter in payload.mutated_parameters:
                params.append(f"{type_param}& {parameter}")
            else:
                params.append(f"const {type_param}& {parameter}")
        for parameter in payload.mutated_parameters:
            draft.note(f"parameter '{parameter}' is taken by non-const reference")
        for identifier in payload.free_variables:
            draft.note(f"'{identifier}' now binds where the function is declared")

        in_class = result.context is not None and result.context.class_frame is not None
        specifier = "static" if in_class else "inline"
        template = ", ".join(f"typename {type_param}" for type_param in type_params)
        body = payload.body
        return (
            f"template<{template}> {specifier} auto {new_name}({', '.join(params)}) "
            f"-> decltype({body}) {{ return {body}; }}"
        )

    # Edits

    def _directive_edits(self, draft: _Draft, proposal_id: str) -> None:
        definition = draft.result.definition
        seen = {(definition.define.span.path, definition.define.span.start)}
        for event in definition.events:
            site = (event.span.path, event.span.start)
            if site in seen:
                continue
            seen.add(site)
            if event.reachability is Reachability.DISABLED:
                draft.note(
                    f"#{event.kind.value} at line {event.span.line} is in a disabled branch and left in place"
                )
                continue
            draft.edits.append(Edit(event.span.path, event.span.start, event.span.end, "", proposal_id, EditKind.DELETE))
            if event.kind is DirectiveKind.DEFINE:
                draft.note(f"identical redefinition at line {event.span.line} removed")

    def _usage_edits(self, draft: _Draft, proposal_id: str, new_name: str) -> None:
        result = draft.result
        qualified = {id(item.usage): item.qualifier for item in result.qualified_usages}
        for usage in result.usages:
            qualifier = qualified.get(id(usage))
            replacement = f"{qualifier}::{new_name}" if qualifier else new_name
            if replacement == usage.name:
                continue
            span = usage.name_token.span
            draft.edits.append(Edit(span.path, span.start, span.end, replacement, proposal_id))


def synthesize_proposals(
    stream: TokenStream,
    results: Iterable[ClassificationResult],
    config: Optional[EngineConfig] = None,
) -> List[RewriteProposal]:
    """Synthesize proposals for every classified result of one unit."""
    return RewriteSynthesizer(stream, config).synthesize_all(results)
