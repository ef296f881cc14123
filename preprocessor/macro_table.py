"""
Macro table: the definition history and active spans of every macro name.

Macro visibility is global and time-ordered in the preprocessor. The table
turns that into an explicit record per name: each ``#define`` opens an active
span that lasts until a matching ``#undef``, a redefinition, or the end of the
translation unit.
"""

import logging
from dataclasses import replace
from typing import Dict, Iterable, List, Optional, Tuple

from core.errors import AmbiguousDefinitionError
from preprocessor.models import Directive, DirectiveKind, MacroDefinition, Reachability

logger = logging.getLogger(__name__)


class MacroTable:
    """Pure accumulator of ``#define``/``#undef`` events for one unit."""

    def __init__(self) -> None:
        self._history: Dict[str, List[Directive]] = {}
        self._closed: Dict[str, List[MacroDefinition]] = {}
        self._active: Dict[str, MacroDefinition] = {}
        self._warnings: List[str] = []

    @classmethod
    def from_directives(cls, directives: Iterable[Directive]) -> "MacroTable":
        table = cls()
        for directive in directives:
            table.record(directive)
        return table

    def record(self, directive: Directive) -> None:
        """Append a directive to its name's history and update active spans."""
        self._history.setdefault(directive.name, []).append(directive)
        if directive.reachability is Reachability.DISABLED:
            # Never takes effect; kept as an empty span so it can be reported.
            if directive.kind is DirectiveKind.DEFINE:
                start = max(directive.position, directive.end_position) + 1
                self._closed.setdefault(directive.name, []).append(
                    MacroDefinition(
                        name=directive.name,
                        define=directive,
                        events=(),
                        active_start=start,
                        active_end=start,
                    )
                )
            return
        if directive.kind is DirectiveKind.UNDEF:
            self._close(directive.name, directive.position, directive)
            return

        previous = self._active.get(directive.name)
        if previous is not None:
            if previous.define.signature != directive.signature:
                message = (
                    f"'{directive.name}' redefined at line {directive.span.line} "
                    f"(previous definition at line {previous.define.span.line})"
                )
            else:
                message = f"'{directive.name}' redefined identically at line {directive.span.line}"
            self._warnings.append(message)
            logger.warning("Macro %s", message)
            self._close(directive.name, directive.position, directive)

        self._active[directive.name] = MacroDefinition(
            name=directive.name,
            define=directive,
            events=(),
            active_start=max(directive.position, directive.end_position) + 1,
        )

    def undefine(self, name: str, position: int) -> None:
        """Close the active span of ``name`` at ``position``."""
        self._close(name, position, None)

    def _close(self, name: str, position: int, closed_by: Optional[Directive]) -> None:
        current = self._active.pop(name, None)
        if current is None:
            if closed_by is None or closed_by.kind is DirectiveKind.UNDEF:
                logger.debug("Undefining '%s' which is not defined at position %d", name, position)
            return
        self._closed.setdefault(name, []).append(
            replace(current, active_end=position, closed_by=closed_by)
        )

    def definitions_for(self, name: str) -> Tuple[MacroDefinition, ...]:
        """Every active span of ``name`` in unit order, events attached."""
        spans = list(self._closed.get(name, ()))
        if name in self._active:
            spans.append(self._active[name])
        spans.sort(key=lambda span: span.define.position)
        events = tuple(self._history.get(name, ()))
        return tuple(replace(span, events=events) for span in spans)

    def active_definition_at(self, name: str, position: int) -> Optional[MacroDefinition]:
        """Return the definition of ``name`` active at ``position``, or None."""
        for definition in self.definitions_for(name):
            if definition.is_active_at(position):
                return definition
        return None

    def history(self, name: str) -> Tuple[Directive, ...]:
        return tuple(self._history.get(name, ()))

    def names(self) -> List[str]:
        """Names with at least one define, in order of first definition."""
        ordered = sorted(
            (events[0].position, name)
            for name, events in self._history.items()
            if any(event.kind is DirectiveKind.DEFINE for event in events)
        )
        return [name for _, name in ordered]

    @property
    def warnings(self) -> Tuple[str, ...]:
        return tuple(self._warnings)

    def live_defines(self, name: str) -> List[Directive]:
        return [
            event
            for event in self._history.get(name, ())
            if event.kind is DirectiveKind.DEFINE and event.reachability is not Reachability.DISABLED
        ]

    def is_ambiguous(self, name: str) -> bool:
        """True when ``name`` carries more than one distinct live definition."""
        return len({define.signature for define in self.live_defines(name)}) > 1

    def ensure_unambiguous(self, name: str) -> None:
        """Raise if ``name`` has conflicting definitions in this unit.

        Raises:
            AmbiguousDefinitionError: On conflicting redefinitions.
        """
        defines = self.live_defines(name)
        if len({define.signature for define in defines}) <= 1:
            return
        lines = ", ".join(str(define.span.line) for define in defines)
        raise AmbiguousDefinitionError(
            name, f"conflicting definitions at lines {lines}"
        )

    def __contains__(self, name: str) -> bool:
        return name in self._history

    def __len__(self) -> int:
        return len(self.names())
