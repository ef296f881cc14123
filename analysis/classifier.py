"""
Macro classification.

Assigns every macro name of a unit exactly one pattern tag with a confidence
level, the evidence that fired, and a pattern-specific payload for the
rewrite synthesizer. Classification is memoized per name so macros whose
replacement lists reference other macros are classified once, and cycles are
detected and reported instead of recursing.
"""

import logging
from typing import Dict, List, Optional, Sequence, Set, Tuple

from analysis.config import CPP_KEYWORDS, NULL_POINTER_NAMES, STATEMENT_KEYWORDS
from analysis.context_resolver import DeclarationContextResolver
from analysis.expressions import (
    ASSIGNMENT_OPERATORS,
    BINARY_PRECEDENCE,
    INCREMENT_OPERATORS,
    NAMED_CASTS,
    UNARY_PRECEDENCE,
    Expr,
    ExprKind,
    ExpressionSyntaxError,
    iter_nodes,
    parse_expression,
    tokens_have_side_effects,
)
from analysis.literals import STRING_TYPES, NotConstantFoldable, TypedValue, ValueCategory, fold_constant
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
    ScopeKind,
    UsageSite,
)
from analysis.usage import UsageIndex, collect_usages, usage_within_scope
from core.engine_config import ClassConstantStyle, EngineConfig
from core.errors import AmbiguousDefinitionError
from core.proposal_contract import Confidence, lower_confidence
from preprocessor.directives import TokenStream
from preprocessor.macro_table import MacroTable
from preprocessor.models import DirectiveKind, MacroDefinition, Reachability, Token, TokenKind

logger = logging.getLogger(__name__)

_POSTFIX_FOLLOWERS = frozenset({"(", "[", ".", "->", "++", "--", "::"})
_UNARY_ONLY = frozenset({"!", "~", "++", "--"})


class _DependencyUnclassified(NotConstantFoldable):
    """A referenced macro is itself Unclassified."""


class _Verdict:
    """Accumulates confidence downgrades for one macro."""

    def __init__(self) -> None:
        self.confidence = Confidence.HIGH
        self.evidence: List[str] = []
        self.hazards: List[Hazard] = []
        self.blockers: List[str] = []

    def note(self, message: str) -> None:
        if message not in self.evidence:
            self.evidence.append(message)

    def cap(self, confidence: Confidence, message: str) -> None:
        self.confidence = lower_confidence(self.confidence, confidence)
        self.note(message)
        if confidence is Confidence.UNREWRITABLE and message not in self.blockers:
            self.blockers.append(message)

    def absorb(self, value: TypedValue) -> None:
        for item in value.evidence:
            self.note(item)
        if value.confidence is not Confidence.HIGH:
            self.cap(value.confidence, value.evidence[0] if value.evidence else "constant typing is uncertain")

    @property
    def reason(self) -> Optional[str]:
        return "; ".join(self.blockers) if self.blockers else None


def _strip_parens(expr: Expr) -> Expr:
    while expr.kind is ExprKind.PAREN:
        expr = expr.children[0]
    return expr


def _has_top_level_operator(expr: Expr) -> bool:
    return not expr.is_primary


def _unparenthesized(tokens: Sequence[Token], index: int) -> bool:
    before = tokens[index - 1] if index > 0 else None
    after = tokens[index + 1] if index + 1 < len(tokens) else None
    guarded_before = before is not None and before.is_punct("(", ",")
    guarded_after = after is not None and after.is_punct(")", ",")
    return not (guarded_before and guarded_after)


class MacroClassifier:
    """Classify the macros of one translation unit.

    Args:
        stream: Scanned translation unit.
        table: Macro table built from ``stream.directives``.
        resolver: Declaration context resolver for ``stream``.
        config: Engine configuration (class constant style).
        usages: Precomputed usage index; collected when omitted.
    """

    def __init__(
        self,
        stream: TokenStream,
        table: MacroTable,
        resolver: Optional[DeclarationContextResolver] = None,
        config: Optional[EngineConfig] = None,
        usages: Optional[UsageIndex] = None,
    ) -> None:
        self.stream = stream
        self.table = table
        self.resolver = resolver or DeclarationContextResolver(stream)
        self.config = config or EngineConfig()
        self.usages = usages if usages is not None else collect_usages(stream, table, self.resolver)
        self._results: Dict[str, ClassificationResult] = {}
        self._in_progress: Set[str] = set()
        self._code: Optional[Tuple[List[Token], Dict[int, int]]] = None
        self._references: Optional[Dict[str, List[str]]] = None

    def classify_all(self) -> List[ClassificationResult]:
        """Classify every defined macro name in order of first definition."""
        return [self.classify(name) for name in self.table.names()]

    def classify(self, name: str) -> ClassificationResult:
        if name in self._results:
            return self._results[name]
        if name in self._in_progress:
            return self._unclassified(name, "recursive macro reference")
        self._in_progress.add(name)
        try:
            result = self._classify(name)
        finally:
            self._in_progress.discard(name)
        self._results[name] = result
        logger.debug(
            "Classified %s as %s (%s)%s",
            name,
            result.tag.value,
            result.confidence.value,
            f": {result.reason}" if result.reason else "",
        )
        return result

    def _unclassified(
        self,
        name: str,
        reason: str,
        definition: Optional[MacroDefinition] = None,
        skipped: bool = False,
        hazards: Sequence[Hazard] = (),
    ) -> ClassificationResult:
        context = self.resolver.context_for_definition(definition) if definition is not None else None
        return ClassificationResult(
            macro_name=name,
            tag=PatternTag.UNCLASSIFIED,
            confidence=Confidence.UNREWRITABLE,
            reason=reason,
            definition=definition,
            context=context,
            hazards=tuple(hazards),
            usages=self.usages.usages_of(name),
            skipped=skipped,
        )

    def _classify(self, name: str) -> ClassificationResult:
        definitions = self.table.definitions_for(name)
        first = definitions[0] if definitions else None
        try:
            self.table.ensure_unambiguous(name)
        except AmbiguousDefinitionError as exc:
            return self._unclassified(name, f"ambiguous redefinition: {exc.detail}", first)

        live = [d for d in definitions if d.define.reachability is not Reachability.DISABLED]
        if not live:
            return self._unclassified(name, "defined only in a disabled branch", first, skipped=True)
        definition = live[0]
        if self.stream.include_guards.get(definition.define.span.path) == name:
            return self._unclassified(name, "include guard", definition, skipped=True)
        if not any(d.is_nonempty for d in live):
            return self._unclassified(name, "active span is empty", definition, skipped=True)

        directive = definition.define
        replacement = directive.replacement
        if not replacement:
            return self._unclassified(name, "empty replacement list", definition, skipped=True)
        if any(token.is_punct("##", "%:%:") for token in replacement):
            return self._unclassified(name, "relies on token pasting", definition)
        if any(token.is_punct("#", "%:") for token in replacement):
            return self._unclassified(name, "relies on stringizing", definition)
        if any(
            token.is_punct(";", "{", "}") or (token.is_identifier() and token.lexeme in STATEMENT_KEYWORDS)
            for token in replacement
        ):
            return self._unclassified(name, "multi-statement body", definition)
        invoked = self._invoked_function_macro(replacement, directive.parameters)
        if invoked is not None:
            return self._unclassified(name, f"replacement invokes function-like macro '{invoked}'", definition)

        if directive.function_like:
            return self._classify_function(name, definition)
        return self._classify_object(name, definition)

    def _invoked_function_macro(self, replacement: Sequence[Token], parameters: Sequence[str]) -> Optional[str]:
        for index, token in enumerate(replacement):
            if not token.is_identifier() or token.lexeme in parameters or token.lexeme not in self.table:
                continue
            nxt = replacement[index + 1] if index + 1 < len(replacement) else None
            if nxt is None or not nxt.is_punct("("):
                continue
            if any(d.is_function_like for d in self.table.definitions_for(token.lexeme)):
                return token.lexeme
        return None

    def _usage_downgrades(self, name: str, definition: MacroDefinition, verdict: _Verdict) -> None:
        if definition.define.reachability is Reachability.CONDITIONAL:
            verdict.cap(Confidence.MEDIUM, "defined under conditional compilation")
        for line in self.usages.tested_by(name):
            verdict.cap(Confidence.UNREWRITABLE, f"tested by #{line.keyword} at line {line.span.line}")
        for stray in self.usages.stray_of(name):
            verdict.cap(
                Confidence.UNREWRITABLE,
                f"identifier {stray.reason} at line {stray.token.span.line}",
            )
        for unresolved in self.usages.unresolved_of(name):
            verdict.cap(
                Confidence.UNREWRITABLE,
                f"unresolvable usage at line {unresolved.token.span.line}: {unresolved.reason}",
            )
        context = self.resolver.context_for_definition(definition)
        if context.resolvers_disagree:
            verdict.cap(Confidence.MEDIUM, "scope resolvers disagree on the definition site")
        if any(d.redefined for d in self.table.definitions_for(name)):
            verdict.note("identical redefinitions are merged into one declaration")
        sites = [
            (event.span.path, event.span.start)
            for event in definition.events
            if event.kind is DirectiveKind.DEFINE and event.reachability is not Reachability.DISABLED
        ]
        if len(set(sites)) < len(sites):
            # One directive seen twice: its file is included again without a guard.
            verdict.cap(
                Confidence.UNREWRITABLE,
                f"defined in {definition.define.span.path} which is included more than once without an include guard",
            )

    def _dependency_check(self, name: str, dependency: str, definition: MacroDefinition, verdict: _Verdict) -> None:
        """Downgrade for a replacement-list reference to another classified macro."""
        result = self.classify(dependency)
        position = definition.define.position
        if self.table.active_definition_at(dependency, position) is None:
            verdict.cap(Confidence.UNREWRITABLE, f"depends on '{dependency}' which is defined later")
        home = self.resolver.context_for_definition(definition)
        if result.context is not None and not usage_within_scope(result.context, home):
            verdict.cap(
                Confidence.UNREWRITABLE,
                f"depends on '{dependency}' declared in {result.context.describe()}",
            )
        if result.confidence is not Confidence.HIGH:
            verdict.cap(Confidence.MEDIUM, f"depends on '{dependency}' classified with {result.confidence.value} confidence")
        else:
            verdict.note(f"references constant macro '{dependency}'")

    def _scope_escape(
        self,
        name: str,
        context: DeclarationContext,
        usages: Sequence[UsageSite],
        verdict: _Verdict,
        function_like: bool,
    ) -> Tuple[QualifiedUsage, ...]:
        frame = context.scope_frame
        if frame is None:
            return ()
        self._expansion_escape(name, context, verdict)
        if frame.kind in (ScopeKind.FUNCTION, ScopeKind.BLOCK):
            if function_like:
                verdict.cap(Confidence.UNREWRITABLE, "function-like macro defined inside a function body")
            for usage in usages:
                if not usage_within_scope(context, usage.context):
                    verdict.cap(
                        Confidence.UNREWRITABLE,
                        f"used outside the block it is defined in at line {usage.line}",
                    )
            return ()

        qualified: List[QualifiedUsage] = []
        for usage in usages:
            if usage_within_scope(context, usage.context):
                continue
            if frame.kind is ScopeKind.CLASS and frame.access in (Access.PRIVATE, Access.PROTECTED):
                verdict.cap(
                    Confidence.UNREWRITABLE,
                    f"{frame.access.value} class constant used outside class {frame.name} at line {usage.line}",
                )
                continue
            target = context.scope_path
            here = usage.context.scope_path
            shared = 0
            while shared < min(len(target), len(here)) and target[shared] == here[shared]:
                shared += 1
            qualifier = "::".join(target[shared:])
            if not qualifier:
                verdict.cap(
                    Confidence.UNREWRITABLE,
                    f"used outside unnamed {frame.kind.value} scope at line {usage.line}",
                )
                continue
            verdict.cap(
                Confidence.MEDIUM,
                f"used outside {context.describe()} at line {usage.line}; pollutes the enclosing namespace",
            )
            qualified.append(QualifiedUsage(usage, qualifier))
        return tuple(qualified)

    def _macro_references(self) -> Dict[str, List[str]]:
        """Map each macro name to the macros whose replacement lists mention it."""
        if self._references is None:
            references: Dict[str, List[str]] = {}
            for macro in self.table.names():
                for define in self.table.live_defines(macro):
                    for token in define.replacement:
                        referenced = token.lexeme
                        if (
                            not token.is_identifier()
                            or referenced == macro
                            or referenced in define.parameters
                            or referenced not in self.table
                        ):
                            continue
                        referrers = references.setdefault(referenced, [])
                        if macro not in referrers:
                            referrers.append(macro)
            self._references = references
        return self._references

    def _expansion_sites(self, name: str) -> List[Tuple[str, Optional[UsageSite]]]:
        """Usage sites of every macro that expands to ``name``, directly or through a chain.

        A referring macro with no usages and no referrers of its own yields
        ``(macro, None)``: where it expands cannot be seen from this unit.
        """
        references = self._macro_references()
        sites: List[Tuple[str, Optional[UsageSite]]] = []
        seen = {name}
        pending = list(references.get(name, ()))
        while pending:
            via = pending.pop(0)
            if via in seen:
                continue
            seen.add(via)
            usages = self.usages.usages_of(via)
            sites.extend((via, usage) for usage in usages)
            if not usages and not references.get(via):
                sites.append((via, None))
            pending.extend(references.get(via, ()))
        return sites

    def _expansion_escape(self, name: str, context: DeclarationContext, verdict: _Verdict) -> None:
        """Block scoped macros that other macros carry out of their scope.

        Such references expand to the bare name at the referring macro's use
        site, so they can be neither checked nor qualified there.
        """
        for via, usage in self._expansion_sites(name):
            if usage is None:
                verdict.cap(
                    Confidence.UNREWRITABLE,
                    f"referenced by macro '{via}' whose expansion sites are unknown",
                )
            elif not usage_within_scope(context, usage.context):
                verdict.cap(
                    Confidence.UNREWRITABLE,
                    f"expanded outside {_scope_label(context)} through macro '{via}' at line {usage.line}",
                )

    def _live_code(self) -> Tuple[List[Token], Dict[int, int]]:
        if self._code is None:
            code = [t for t in self.stream.code_tokens if t.reachability is not Reachability.DISABLED]
            self._code = (code, {token.position: index for index, token in enumerate(code)})
        return self._code

    def _usage_precedence(
        self,
        body: Expr,
        usages: Sequence[UsageSite],
        verdict: _Verdict,
        blocking: bool,
    ) -> None:
        """Check whether operators around each usage bind into an unparenthesized body."""
        if not _has_top_level_operator(body):
            return
        body_precedence = body.precedence
        code, by_position = self._live_code()
        unsafe_lines = []
        for usage in usages:
            start = by_position.get(usage.name_token.position)
            if start is None:
                continue
            end = start
            if usage.arguments:
                while end < len(code) and code[end].span.end < usage.span.end:
                    end += 1
            before = code[start - 1] if start > 0 else None
            after = code[end + 1] if end + 1 < len(code) else None
            if _binds_tighter(before, after, body):
                unsafe_lines.append(usage.line)
        if not unsafe_lines:
            verdict.note(f"replacement list has an unparenthesized top-level operator (precedence {body_precedence})")
            if not blocking:
                return
            verdict.cap(Confidence.MEDIUM, "unparenthesized compound replacement list")
            return
        lines = ", ".join(str(line) for line in unsafe_lines)
        detail = f"surrounding operators bind into the replacement list at line(s) {lines}"
        verdict.hazards.append(Hazard(HazardKind.USAGE_PRECEDENCE, detail))
        if blocking:
            verdict.cap(Confidence.UNREWRITABLE, f"rewrite would change the value of usages at line(s) {lines}")
        else:
            verdict.cap(Confidence.MEDIUM, f"rewrite changes the grouping of calls at line(s) {lines}")

    # Object-like macros

    def _classify_object(self, name: str, definition: MacroDefinition) -> ClassificationResult:
        directive = definition.define
        try:
            body = parse_expression(directive.replacement)
        except ExpressionSyntaxError as exc:
            return self._unclassified(name, f"replacement is not a single expression: {exc}", definition)
        if body.kind is ExprKind.COMMA:
            return self._unclassified(name, "top-level comma operator", definition)

        verdict = _Verdict()
        dependencies: List[str] = []

        def resolve(dependency: str) -> TypedValue:
            if dependency not in self.table or not self.table.live_defines(dependency):
                raise NotConstantFoldable(f"references non-macro identifier '{dependency}'")
            result = self.classify(dependency)
            if not result.is_classified:
                raise _DependencyUnclassified(
                    f"depends on Unclassified macro '{dependency}' ({result.reason})"
                )
            payload = result.payload
            if not isinstance(payload, ConstantPayload):
                raise NotConstantFoldable(f"references non-arithmetic macro '{dependency}'")
            dependencies.append(dependency)
            category = ValueCategory.INTEGRAL if payload.integral else ValueCategory.FLOATING
            return TypedValue(payload.type_name, category, payload.value)

        try:
            value = fold_constant(body, resolve)
        except _DependencyUnclassified as exc:
            return self._unclassified(name, exc.reason, definition)
        except NotConstantFoldable as exc:
            return self._unclassified(name, f"not constant-foldable: {exc.reason}", definition)

        verdict.absorb(value)
        for dependency in dict.fromkeys(dependencies):
            self._dependency_check(name, dependency, definition, verdict)
        self._usage_downgrades(name, definition, verdict)

        context = self.resolver.context_for_definition(definition)
        usages = self.usages.usages_of(name)
        qualified = self._scope_escape(name, context, usages, verdict, function_like=False)
        self._usage_precedence(body, usages, verdict, blocking=True)

        initializer = directive.replacement_text
        if value.category in (ValueCategory.STRING, ValueCategory.POINTER):
            payload = PointerPayload(
                char_type=value.type_name,
                initializer=initializer,
                string_type=_string_type(value.type_name),
            )
            if value.category is ValueCategory.POINTER:
                verdict.cap(Confidence.UNREWRITABLE, f"null pointer constant '{initializer}' has no known pointee type")
        else:
            payload = ConstantPayload(
                type_name=value.type_name,
                initializer=initializer,
                integral=value.is_integral,
                value=value.value,
            )
            verdict.note(f"folds to {value.type_name}" + (f" {value.value!r}" if value.value is not None else ""))

        tag = self._object_tag(context, payload, usages, verdict)
        return ClassificationResult(
            macro_name=name,
            tag=tag,
            confidence=verdict.confidence,
            evidence=tuple(verdict.evidence),
            hazards=tuple(verdict.hazards),
            reason=verdict.reason,
            definition=definition,
            context=context,
            payload=payload,
            usages=usages,
            qualified_usages=qualified,
            referenced_by=tuple(self._macro_references().get(name, ())),
        )

    def _object_tag(
        self,
        context: DeclarationContext,
        payload,
        usages: Sequence[UsageSite],
        verdict: _Verdict,
    ) -> PatternTag:
        frame = context.scope_frame
        if frame is None or frame.kind is not ScopeKind.CLASS:
            if isinstance(payload, PointerPayload):
                verdict.note("string or pointer literal needs a const pointee and a const pointer")
                return PatternTag.POINTER_CONSTANT
            return PatternTag.SIMPLE_CONSTANT

        verdict.note(f"defined inside {context.describe()}")
        if not isinstance(payload, ConstantPayload) or not payload.integral:
            return PatternTag.CLASS_SCOPED_CONSTANT

        style = self.config.class_constant_style
        if style is ClassConstantStyle.STATIC_CONST_IN_CLASS:
            return PatternTag.CLASS_SCOPED_CONSTANT
        if style is ClassConstantStyle.ENUM_HACK:
            verdict.note("class constant style forces the enum hack")
            return PatternTag.ENUM_HACK_CANDIDATE
        for usage in usages:
            innermost = usage.context.innermost
            if usage.in_constant_expression and innermost is not None and innermost.same_scope(frame):
                verdict.note(f"used in a constant expression inside the class body at line {usage.line}")
                return PatternTag.ENUM_HACK_CANDIDATE
        return PatternTag.CLASS_SCOPED_CONSTANT

    # Function-like macros

    def _classify_function(self, name: str, definition: MacroDefinition) -> ClassificationResult:
        directive = definition.define
        parameters = directive.parameters
        if directive.variadic:
            return self._unclassified(name, "variadic parameter list", definition)
        if not parameters:
            return self._unclassified(name, "function-like macro without parameters", definition)

        replacement = directive.replacement
        verdict = _Verdict()
        hazards = verdict.hazards
        occurrences: Dict[str, int] = {parameter: 0 for parameter in parameters}
        unguarded: Dict[str, int] = {parameter: 0 for parameter in parameters}
        for index, token in enumerate(replacement):
            if not token.is_identifier() or token.lexeme not in occurrences:
                continue
            occurrences[token.lexeme] += 1
            if _unparenthesized(replacement, index):
                unguarded[token.lexeme] += 1
            misuse = _parameter_misuse(replacement, index)
            if misuse is not None:
                verdict.cap(Confidence.UNREWRITABLE, f"parameter '{token.lexeme}' {misuse}")

        for parameter in parameters:
            if occurrences[parameter] > 1:
                hazards.append(Hazard(
                    HazardKind.REPEATED_EVALUATION,
                    f"parameter '{parameter}' is evaluated {occurrences[parameter]} times",
                    parameter,
                ))
            if unguarded[parameter]:
                hazards.append(Hazard(
                    HazardKind.PRECEDENCE,
                    f"parameter '{parameter}' is not parenthesized ({unguarded[parameter]} occurrence(s))",
                    parameter,
                ))

        try:
            body = parse_expression(replacement)
        except ExpressionSyntaxError as exc:
            return self._unclassified(name, f"replacement is not a single expression: {exc}", definition, hazards=hazards)
        if body.kind is ExprKind.COMMA:
            return self._unclassified(name, "top-level comma operator", definition, hazards=hazards)
        if not body.is_primary:
            hazards.append(Hazard(HazardKind.PRECEDENCE, "replacement list is not enclosed in parentheses"))

        mutated: List[str] = []
        free: List[str] = []
        callees = {
            id(node.children[0]) for node in iter_nodes(body) if node.kind is ExprKind.CALL
        }
        for node in iter_nodes(body):
            target = None
            if node.kind is ExprKind.ASSIGN or (
                node.kind in (ExprKind.UNARY, ExprKind.POSTFIX) and node.op in INCREMENT_OPERATORS
            ):
                target = _strip_parens(node.children[0])
            if target is not None and target.kind is ExprKind.NAME and target.op in parameters:
                if target.op not in mutated:
                    mutated.append(target.op)
            if node.kind is not ExprKind.NAME or id(node) in callees:
                continue
            identifier = node.op
            if identifier == "this":
                verdict.cap(Confidence.UNREWRITABLE, "replacement list uses 'this'")
            elif identifier in parameters or identifier in CPP_KEYWORDS or identifier in NULL_POINTER_NAMES:
                continue
            elif identifier in self.table and self.table.live_defines(identifier):
                result = self.classify(identifier)
                if not result.is_classified:
                    return self._unclassified(
                        name,
                        f"depends on Unclassified macro '{identifier}' ({result.reason})",
                        definition,
                        hazards=hazards,
                    )
                self._dependency_check(name, identifier, definition, verdict)
            elif "::" not in identifier and identifier not in free:
                free.append(identifier)

        for parameter in mutated:
            hazards.append(Hazard(
                HazardKind.PARAMETER_MUTATION,
                f"parameter '{parameter}' is modified by the replacement list",
                parameter,
            ))
            verdict.cap(Confidence.MEDIUM, f"parameter '{parameter}' is modified; taken by non-const reference")
        for identifier in free:
            hazards.append(Hazard(
                HazardKind.FREE_VARIABLE,
                f"'{identifier}' is resolved at each call site",
                None,
            ))
            verdict.cap(Confidence.MEDIUM, f"free variable '{identifier}' binds at the definition instead of each call site")

        usages = self.usages.usages_of(name)
        repeated = [p for p in parameters if occurrences[p] > 1]
        for usage in usages:
            for parameter, argument in zip(parameters, usage.arguments):
                if parameter in repeated and tokens_have_side_effects(argument):
                    hazards.append(Hazard(
                        HazardKind.SIDE_EFFECT_ARGUMENT,
                        f"call at line {usage.line} passes side-effecting argument "
                        f"'{' '.join(t.lexeme for t in argument)}' to repeated parameter '{parameter}'",
                        parameter,
                    ))

        self._usage_downgrades(name, definition, verdict)
        context = self.resolver.context_for_definition(definition)
        qualified = self._scope_escape(name, context, usages, verdict, function_like=True)
        self._usage_precedence(body, usages, verdict, blocking=False)
        verdict.note(f"single-expression body over {len(parameters)} parameter(s)")

        payload = FunctionPayload(
            parameters=tuple(parameters),
            body=directive.replacement_text,
            mutated_parameters=tuple(mutated),
            free_variables=tuple(free),
        )
        return ClassificationResult(
            macro_name=name,
            tag=PatternTag.FUNCTION_LIKE_MACRO,
            confidence=verdict.confidence,
            evidence=tuple(verdict.evidence),
            hazards=tuple(hazards),
            reason=verdict.reason,
            definition=definition,
            context=context,
            payload=payload,
            usages=usages,
            qualified_usages=qualified,
            referenced_by=tuple(self._macro_references().get(name, ())),
        )


def _scope_label(context: DeclarationContext) -> str:
    frame = context.scope_frame
    if frame is not None and frame.kind in (ScopeKind.FUNCTION, ScopeKind.BLOCK):
        return "the block it is defined in"
    return context.describe()


def _string_type(char_type: Optional[str]) -> Optional[str]:
    return STRING_TYPES.get(char_type) if char_type else None


def _parameter_misuse(tokens: Sequence[Token], index: int) -> Optional[str]:
    before = tokens[index - 1] if index > 0 else None
    after = tokens[index + 1] if index + 1 < len(tokens) else None
    if before is not None and before.is_punct(".", "->", "::"):
        return "is used as a member name"
    if after is not None and after.is_punct("::"):
        return "is used as a scope qualifier"
    if before is not None and before.is_identifier("new"):
        return "is used as a type"
    if after is not None and after.kind is TokenKind.IDENTIFIER and after.lexeme not in CPP_KEYWORDS:
        return "is used as a type"
    if before is not None and before.is_punct("<") and index > 1 and tokens[index - 2].lexeme in NAMED_CASTS:
        return "is used as a type"
    return None


def _operator_precedence(token: Optional[Token], prefix: bool) -> Optional[int]:
    if token is None or token.kind is not TokenKind.PUNCTUATOR:
        if token is not None and token.is_identifier("sizeof"):
            return UNARY_PRECEDENCE
        return None
    lexeme = token.lexeme
    if prefix and lexeme in _UNARY_ONLY:
        return UNARY_PRECEDENCE
    if not prefix and lexeme in _POSTFIX_FOLLOWERS:
        return UNARY_PRECEDENCE + 2
    if lexeme in BINARY_PRECEDENCE:
        return BINARY_PRECEDENCE[lexeme]
    if lexeme in ASSIGNMENT_OPERATORS or lexeme in ("?", ":"):
        return 2
    return None


def _binds_tighter(before: Optional[Token], after: Optional[Token], body: Expr) -> bool:
    """True when a neighbouring operator would regroup the textual expansion."""
    precedence = body.precedence
    left = _operator_precedence(before, prefix=True)
    right = _operator_precedence(after, prefix=False)
    if left is not None and left >= precedence and not (before.lexeme in ASSIGNMENT_OPERATORS or before.is_punct("?", ":")):
        return True
    if right is not None:
        if right > precedence:
            return True
        if right == precedence and body.kind is ExprKind.CONDITIONAL and after.is_punct("?"):
            return True
    return False


def classify_unit(
    stream: TokenStream,
    config: Optional[EngineConfig] = None,
    table: Optional[MacroTable] = None,
) -> Tuple[MacroTable, DeclarationContextResolver, List[ClassificationResult]]:
    """Build the macro table and classify every macro of ``stream``."""
    table = table or MacroTable.from_directives(stream.directives)
    resolver = DeclarationContextResolver(stream)
    classifier = MacroClassifier(stream, table, resolver, config)
    return table, resolver, classifier.classify_all()
