"""
Usage-site collection.

Walks the code tokens of a unit and resolves every identifier that names a
macro to the definition active at that token position. Function-like
invocations have their argument lists split the way the preprocessor does
it: on top-level commas, counting parentheses only.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from analysis.context_resolver import DeclarationContextResolver
from analysis.models import DeclarationContext, ScopeFrame, ScopeKind, StrayReference, UsageSite
from preprocessor.directives import TokenStream
from preprocessor.macro_table import MacroTable
from preprocessor.models import DirectiveLine, MacroDefinition, Reachability, SourceSpan, Token

logger = logging.getLogger(__name__)


class ArgumentListError(ValueError):
    """Raised when a function-like invocation has no terminated argument list."""


def split_arguments(tokens: Sequence[Token], open_index: int) -> Tuple[Tuple[Tuple[Token, ...], ...], int]:
    """Split the argument list starting at ``tokens[open_index]`` (a ``(``).

    Returns:
        Tuple of (arguments, index of the closing parenthesis).

    Raises:
        ArgumentListError: If the list is not terminated.
    """
    arguments: List[List[Token]] = [[]]
    depth = 0
    for index in range(open_index, len(tokens)):
        token = tokens[index]
        if token.is_punct("("):
            depth += 1
            if depth == 1:
                continue
        elif token.is_punct(")"):
            depth -= 1
            if depth == 0:
                return tuple(tuple(argument) for argument in arguments), index
        elif token.is_punct(",") and depth == 1:
            arguments.append([])
            continue
        arguments[-1].append(token)
    raise ArgumentListError("unterminated argument list")


def usage_within_class(frame: ScopeFrame, context: DeclarationContext) -> bool:
    """True when a position with ``context`` can name members of ``frame`` unqualified.

    The class body, classes nested in it and out-of-class member function
    bodies of the class all qualify.
    """
    if any(enclosing.same_scope(frame) for enclosing in context.chain):
        return True
    owner = context.member_function_owner()
    return owner is not None and frame.name is not None and owner == frame.name.split("::")[-1]


def usage_within_scope(home: DeclarationContext, context: DeclarationContext) -> bool:
    """True when a position with ``context`` sees the scope a macro was defined in."""
    frame = home.scope_frame
    if frame is None:
        return True
    if frame.kind is ScopeKind.CLASS:
        return usage_within_class(frame, context)
    if any(enclosing.same_scope(frame) for enclosing in context.chain):
        return True
    if frame.kind is ScopeKind.NAMESPACE:
        # Reopened namespaces share the qualified name.
        return context.scope_path[: len(home.scope_path)] == home.scope_path
    return False


@dataclass
class UsageIndex:
    """Usage sites, stray references and conditional tests per macro name."""

    usages: Dict[str, List[UsageSite]] = field(default_factory=dict)
    stray: Dict[str, List[StrayReference]] = field(default_factory=dict)
    unresolved: Dict[str, List[StrayReference]] = field(default_factory=dict)
    tested: Dict[str, List[DirectiveLine]] = field(default_factory=dict)

    def usages_of(self, name: str) -> Tuple[UsageSite, ...]:
        return tuple(self.usages.get(name, ()))

    def stray_of(self, name: str) -> Tuple[StrayReference, ...]:
        return tuple(self.stray.get(name, ()))

    def unresolved_of(self, name: str) -> Tuple[StrayReference, ...]:
        return tuple(self.unresolved.get(name, ()))

    def tested_by(self, name: str) -> Tuple[DirectiveLine, ...]:
        return tuple(self.tested.get(name, ()))


def names_in_conditionals(stream: TokenStream) -> Dict[str, List[DirectiveLine]]:
    """Identifiers tested by ``#if``/``#ifdef``/``#ifndef``/``#elif`` lines.

    Include guards are excluded: the guarded file tests its own guard.
    """
    guards = set(stream.include_guards.values())
    tested: Dict[str, List[DirectiveLine]] = {}
    for line in stream.conditional_lines():
        if line.reachability is Reachability.DISABLED:
            continue
        for token in line.tokens:
            if not token.is_identifier() or token.lexeme == "defined":
                continue
            if token.lexeme in guards and line.keyword in ("ifndef", "if"):
                continue
            tested.setdefault(token.lexeme, []).append(line)
    return tested


class UsageCollector:
    """Resolve identifier tokens of a unit to macro usage sites."""

    def __init__(
        self,
        stream: TokenStream,
        table: MacroTable,
        resolver: DeclarationContextResolver,
    ) -> None:
        self.stream = stream
        self.table = table
        self.resolver = resolver

    def collect(self) -> UsageIndex:
        index = UsageIndex(tested=names_in_conditionals(self.stream))
        tokens = [t for t in self.stream.code_tokens if t.reachability is not Reachability.DISABLED]
        position = 0
        while position < len(tokens):
            token = tokens[position]
            position += 1
            if not token.is_identifier() or token.lexeme not in self.table:
                continue
            name = token.lexeme
            definition = self.table.active_definition_at(name, token.position)
            if definition is None:
                if self.table.live_defines(name):
                    index.stray.setdefault(name, []).append(
                        StrayReference(name, token, "reused outside active span")
                    )
                continue
            if not definition.is_function_like:
                index.usages.setdefault(name, []).append(self._usage(definition, token, token.span))
                continue

            if position >= len(tokens) or not tokens[position].is_punct("("):
                index.stray.setdefault(name, []).append(
                    StrayReference(name, token, "function-like macro name without arguments")
                )
                continue
            try:
                arguments, close = split_arguments(tokens, position)
            except ArgumentListError as exc:
                index.unresolved.setdefault(name, []).append(StrayReference(name, token, str(exc)))
                continue
            problem = _arity_problem(definition, arguments)
            if problem is not None:
                index.unresolved.setdefault(name, []).append(StrayReference(name, token, problem))
                continue
            closing = tokens[close]
            span = SourceSpan(
                path=token.span.path,
                start=token.span.start,
                end=closing.span.end,
                line=token.span.line,
                column=token.span.column,
            )
            index.usages.setdefault(name, []).append(self._usage(definition, token, span, arguments))

        logger.debug(
            "Collected %d usage sites for %d macro names in %s",
            sum(len(sites) for sites in index.usages.values()),
            len(index.usages),
            self.stream.unit_path,
        )
        return index

    def _usage(
        self,
        definition: MacroDefinition,
        token: Token,
        span: SourceSpan,
        arguments: Tuple[Tuple[Token, ...], ...] = (),
    ) -> UsageSite:
        context = self.resolver.context_at(span.path, span.start)
        home = self.resolver.context_for_definition(definition).class_frame
        return UsageSite(
            name=definition.name,
            definition=definition,
            name_token=token,
            span=span,
            arguments=arguments,
            context=context,
            reachability=token.reachability,
            in_constant_expression=self.resolver.is_constant_expression_position(
                span.path, span.start, span.end
            ),
            within_defining_class=home is None or usage_within_class(home, context),
        )


def _arity_problem(
    definition: MacroDefinition,
    arguments: Tuple[Tuple[Token, ...], ...],
) -> Optional[str]:
    parameters = definition.define.parameters
    if not parameters and arguments == ((),):
        return None
    if definition.define.variadic:
        if len(arguments) < len(parameters):
            return f"expected at least {len(parameters)} arguments, got {len(arguments)}"
        return None
    if len(arguments) != len(parameters):
        return f"expected {len(parameters)} arguments, got {len(arguments)}"
    if any(not argument for argument in arguments):
        return "empty macro argument"
    return None


def collect_usages(
    stream: TokenStream,
    table: MacroTable,
    resolver: Optional[DeclarationContextResolver] = None,
) -> UsageIndex:
    """Collect usage sites for every macro of ``table`` in ``stream``."""
    return UsageCollector(stream, table, resolver or DeclarationContextResolver(stream)).collect()
