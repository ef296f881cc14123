"""
Declaration context resolution.

Macros have no lexical scope, so "which class does this macro belong to" has
no ground truth. The resolver reconstructs it: a macro defined between a
class's braces is attributed to that class. Scopes come from a tree-sitter
parse of each file; when the tree contains syntax errors a backward scan over
the file's tokens is consulted as well and wins when the two disagree.
"""

import logging
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Sequence, Tuple

from tree_sitter import Node, Parser, Tree

from analysis.config import (
    ACCESS_KEYWORDS,
    ACCESS_SPECIFIER_NODE,
    BLOCK_NODE,
    CLASS_NODE_TYPES,
    CONSTANT_EXPRESSION_FIELDS,
    CPP_KEYWORDS,
    DECLARATOR_WRAPPERS,
    DEFAULT_ACCESS,
    FUNCTION_NODE,
    NAMESPACE_NODE,
    STATEMENT_KEYWORDS,
)
from analysis.models import Access, DeclarationContext, ScopeFrame, ScopeKind
from analysis.parser import CPP_LANGUAGE, parse_source_file
from preprocessor.directives import TokenStream
from preprocessor.models import MacroDefinition, Reachability, Token, TokenKind
from preprocessor.source import SourceFile

logger = logging.getLogger(__name__)

TREE_SITTER_RESOLVER = "tree-sitter"
LEXICAL_RESOLVER = "lexical"

_CLASS_KEYS = ("class", "struct", "union")
_CLASS_NAME_SKIP = frozenset({"final", "alignas", "__declspec", "__attribute__"})


@dataclass(frozen=True)
class _Region:
    kind: ScopeKind
    name: Optional[str]
    start: int
    end: int
    class_key: Optional[str] = None
    access_markers: Tuple[Tuple[int, Access], ...] = ()
    owner: Optional[str] = None

    def frame(self, path: str, offset: int, statement_end: Optional[int] = None) -> ScopeFrame:
        access = None
        if self.kind is ScopeKind.CLASS:
            access = Access(DEFAULT_ACCESS.get(self.class_key or "class", "private"))
            for marker_offset, marker_access in self.access_markers:
                if marker_offset <= offset:
                    access = marker_access
        return ScopeFrame(
            kind=self.kind,
            name=self.name,
            path=path,
            start=self.start,
            end=self.end,
            access=access,
            owner=self.owner,
            class_key=self.class_key,
            statement_end=statement_end,
        )


def _node_text(node: Optional[Node]) -> Optional[str]:
    if node is None or node.text is None:
        return None
    text = node.text.decode("utf-8", errors="replace").strip()
    return " ".join(text.split()) or None


def _function_declarator(node: Node) -> Optional[Node]:
    declarator = node.child_by_field_name("declarator")
    while declarator is not None and declarator.type in DECLARATOR_WRAPPERS:
        declarator = declarator.child_by_field_name("declarator")
    if declarator is not None and declarator.type == "function_declarator":
        return declarator
    return None


def _member_owner(function_node: Node) -> Tuple[Optional[str], Optional[str]]:
    """Return ``(function name, owning class)`` of a function definition."""
    declarator = _function_declarator(function_node)
    if declarator is None:
        return None, None
    name_node = declarator.child_by_field_name("declarator")
    if name_node is None:
        return None, None
    if name_node.type == "qualified_identifier":
        scope = _node_text(name_node.child_by_field_name("scope"))
        if scope:
            scope = scope.split("<", 1)[0].split("::")[-1] or None
        return _node_text(name_node), scope
    return _node_text(name_node), None


def _looks_like_broken_class(node: Node) -> Optional[str]:
    """Detect ``class EXPORT Name {`` misparsed as a function_definition."""
    text = (node.text or b"").decode("utf-8", errors="ignore").lstrip()
    for key in _CLASS_KEYS:
        if text.startswith(key + " "):
            return key
    return None


class ScopeIndex:
    """Scope regions of one file, in character offsets."""

    def __init__(self, path: str, regions: Sequence[_Region], has_errors: bool = False) -> None:
        self.path = path
        self.regions = sorted(regions, key=lambda region: (region.start, -region.end))
        self.has_errors = has_errors

    @classmethod
    def from_tree(cls, source_file: SourceFile, tree: Tree) -> "ScopeIndex":
        """Build a scope index from a tree-sitter parse of ``source_file``."""
        regions: List[_Region] = []
        to_char = source_file.char_offset
        stack = [tree.root_node]
        while stack:
            node = stack.pop()
            stack.extend(reversed(node.children))
            body = node.child_by_field_name("body")
            if body is None:
                continue
            start, end = to_char(body.start_byte), to_char(body.end_byte)

            if node.type == NAMESPACE_NODE:
                name = _node_text(node.child_by_field_name("name"))
                regions.append(_Region(ScopeKind.NAMESPACE, name, start, end))
            elif node.type in CLASS_NODE_TYPES:
                key = node.type[: -len("_specifier")]
                markers = []
                for child in body.children:
                    if child.type == ACCESS_SPECIFIER_NODE:
                        text = _node_text(child) or ""
                        if text in ACCESS_KEYWORDS:
                            markers.append((to_char(child.end_byte), Access(text)))
                name = _node_text(node.child_by_field_name("name"))
                regions.append(_Region(ScopeKind.CLASS, name, start, end, key, tuple(markers)))
            elif node.type == FUNCTION_NODE:
                broken_key = _looks_like_broken_class(node)
                if broken_key is not None and _function_declarator(node) is None:
                    name = _node_text(node.child_by_field_name("declarator"))
                    logger.debug("Treating misparsed %s '%s' as a class scope", broken_key, name)
                    regions.append(_Region(ScopeKind.CLASS, name, start, end, broken_key))
                    continue
                name, owner = _member_owner(node)
                regions.append(_Region(ScopeKind.FUNCTION, name, start, end, owner=owner))
            elif body.type == BLOCK_NODE:
                regions.append(_Region(ScopeKind.BLOCK, None, start, end))

        seen = {(region.start, region.end) for region in regions}
        for node in _iter_blocks(tree.root_node):
            start, end = to_char(node.start_byte), to_char(node.end_byte)
            if (start, end) not in seen:
                regions.append(_Region(ScopeKind.BLOCK, None, start, end))

        return cls(source_file.path, regions, has_errors=tree.root_node.has_error)

    def regions_at(self, offset: int) -> List[_Region]:
        return [region for region in self.regions if region.start < offset < region.end]


def _iter_blocks(root: Node):
    """Yield compound statements that are not a function body."""
    stack = [root]
    while stack:
        node = stack.pop()
        stack.extend(node.children)
        if node.type == BLOCK_NODE:
            parent = node.parent
            if parent is None or parent.child_by_field_name("body") != node:
                yield node


def _context_from_frames(frames: Sequence[ScopeFrame], resolver: str) -> DeclarationContext:
    kind, name, access = ScopeKind.GLOBAL, None, None
    for frame in frames:
        if frame.kind in (ScopeKind.NAMESPACE, ScopeKind.CLASS) and not frame.is_transparent:
            kind, name, access = frame.kind, frame.name, frame.access
    return DeclarationContext(
        kind=kind,
        name=name,
        access=access,
        chain=tuple(frames),
        resolver=resolver,
    )


class LexicalScanner:
    """Backward scan over a file's tokens through unmatched ``{`` delimiters."""

    def __init__(self, path: str, tokens: Sequence[Token], text_length: int) -> None:
        self.path = path
        self.tokens = [t for t in tokens if t.reachability is not Reachability.DISABLED]
        self.text_length = text_length

    def _index_before(self, offset: int) -> int:
        low, high = 0, len(self.tokens)
        while low < high:
            mid = (low + high) // 2
            if self.tokens[mid].span.start < offset:
                low = mid + 1
            else:
                high = mid
        return low - 1

    def frames_at(self, offset: int) -> Tuple[ScopeFrame, ...]:
        frames: List[ScopeFrame] = []
        depth = 0
        index = self._index_before(offset)
        while index >= 0:
            token = self.tokens[index]
            if token.is_punct("}"):
                depth += 1
            elif token.is_punct("{"):
                if depth:
                    depth -= 1
                else:
                    frame = self._classify_opener(index, offset)
                    if frame is not None:
                        frames.append(frame)
            index -= 1
        frames.reverse()
        return tuple(frames)

    def _header(self, index: int) -> List[Token]:
        header: List[Token] = []
        cursor = index - 1
        while cursor >= 0 and not self.tokens[cursor].is_punct(";", "{", "}"):
            header.append(self.tokens[cursor])
            cursor -= 1
        header.reverse()
        return header

    def _matching_close(self, index: int) -> int:
        depth = 0
        for token in self.tokens[index:]:
            if token.is_punct("{"):
                depth += 1
            elif token.is_punct("}"):
                depth -= 1
                if depth == 0:
                    return token.span.end
        return self.text_length

    def _classify_opener(self, index: int, offset: int) -> Optional[ScopeFrame]:
        header = self._header(index)
        words = [t.lexeme for t in header]
        start = self.tokens[index].span.start
        end = self._matching_close(index)

        if "namespace" in words:
            after = words[words.index("namespace") + 1:]
            name = "".join(word for word in after if word != "inline") or None
            return ScopeFrame(ScopeKind.NAMESPACE, name, self.path, start, end)
        if "enum" in words:
            return None
        if words[:1] == ["extern"] and len(header) == 2 and header[1].kind is TokenKind.STRING:
            return None

        key_index = self._class_key_index(header)
        if key_index is not None and not any(t.is_punct(")") for t in header[key_index:]):
            key = words[key_index]
            name = None
            for token in header[key_index + 1:]:
                if token.is_punct(":"):
                    break
                if token.kind is TokenKind.IDENTIFIER and token.lexeme not in _CLASS_NAME_SKIP:
                    name = token.lexeme
            access = Access(DEFAULT_ACCESS[key])
            depth = 0
            for position in range(index + 1, len(self.tokens)):
                token = self.tokens[position]
                if token.span.start >= offset:
                    break
                if token.is_punct("{"):
                    depth += 1
                elif token.is_punct("}"):
                    depth -= 1
                elif depth == 0 and token.lexeme in ACCESS_KEYWORDS:
                    nxt = self.tokens[position + 1] if position + 1 < len(self.tokens) else None
                    if nxt is not None and nxt.is_punct(":"):
                        access = Access(token.lexeme)
            return ScopeFrame(ScopeKind.CLASS, name, self.path, start, end, access=access, class_key=key)

        paren = next((i for i, t in enumerate(header) if t.is_punct("(")), None)
        if paren is not None and paren > 0:
            callee = header[paren - 1]
            if callee.kind is TokenKind.IDENTIFIER and callee.lexeme not in STATEMENT_KEYWORDS | CPP_KEYWORDS:
                owner = None
                if paren >= 3 and header[paren - 2].is_punct("::") and header[paren - 3].kind is TokenKind.IDENTIFIER:
                    owner = header[paren - 3].lexeme
                name = f"{owner}::{callee.lexeme}" if owner else callee.lexeme
                return ScopeFrame(ScopeKind.FUNCTION, name, self.path, start, end, owner=owner)
        return ScopeFrame(ScopeKind.BLOCK, None, self.path, start, end)

    @staticmethod
    def _class_key_index(header: Sequence[Token]) -> Optional[int]:
        angle = 0
        found = None
        for position, token in enumerate(header):
            if token.is_punct("<"):
                angle += 1
            elif token.is_punct(">"):
                angle = max(0, angle - 1)
            elif angle == 0 and token.lexeme in _CLASS_KEYS:
                found = position
        return found

    def is_constant_expression_position(self, start: int) -> bool:
        """Heuristic: inside ``[...]``, ``<...>``, after ``case`` or ``static_assert(``."""
        index = self._index_before(start)
        square = angle = paren = 0
        while index >= 0:
            token = self.tokens[index]
            if token.is_punct(";", "{", "}"):
                if token.is_punct("{"):
                    header = [t.lexeme for t in self._header(index)]
                    return "enum" in header and self._after_equals(index, start)
                return False
            if token.is_punct("]"):
                square += 1
            elif token.is_punct("["):
                if square == 0:
                    return True
                square -= 1
            elif token.is_punct(">"):
                angle += 1
            elif token.is_punct("<"):
                if angle == 0 and index > 0 and self.tokens[index - 1].kind is TokenKind.IDENTIFIER:
                    return True
                angle = max(0, angle - 1)
            elif token.is_punct(")"):
                paren += 1
            elif token.is_punct("("):
                if paren == 0 and index > 0 and self.tokens[index - 1].is_identifier("static_assert"):
                    return True
                paren = max(0, paren - 1)
            elif token.is_identifier("case"):
                return True
            index -= 1
        return False

    def _after_equals(self, brace_index: int, start: int) -> bool:
        seen_equals = False
        for token in self.tokens[brace_index + 1:]:
            if token.span.start >= start:
                return seen_equals
            if token.is_punct(","):
                seen_equals = False
            elif token.is_punct("="):
                seen_equals = True
        return seen_equals


class DeclarationContextResolver:
    """Resolve declaration contexts and constant-expression positions for one unit."""

    def __init__(self, stream: TokenStream) -> None:
        self.stream = stream
        self._indexes: Dict[str, ScopeIndex] = {}
        self._trees: Dict[str, Tree] = {}
        self._parser: Optional[Parser] = None
        self._scanners: Dict[str, LexicalScanner] = {}
        self._definition_contexts: Dict[Tuple[str, int], DeclarationContext] = {}
        self._tokens_by_path: Dict[str, List[Token]] = {}
        for token in stream.code_tokens:
            self._tokens_by_path.setdefault(token.span.path, []).append(token)

    def _source(self, path: str) -> SourceFile:
        return self.stream.files[path]

    def tree_for(self, path: str) -> Tree:
        if path not in self._trees:
            if self._parser is None:
                self._parser = Parser(CPP_LANGUAGE)
            self._trees[path] = parse_source_file(self._source(path), self._parser)
        return self._trees[path]

    def index_for(self, path: str) -> ScopeIndex:
        if path not in self._indexes:
            self._indexes[path] = ScopeIndex.from_tree(self._source(path), self.tree_for(path))
        return self._indexes[path]

    def scanner_for(self, path: str) -> LexicalScanner:
        if path not in self._scanners:
            self._scanners[path] = LexicalScanner(
                path, self._tokens_by_path.get(path, []), len(self._source(path).text)
            )
        return self._scanners[path]

    def statement_end_after(self, path: str, offset: int) -> Optional[int]:
        """End offset of the first ``;`` token at or after ``offset``."""
        for token in self._tokens_by_path.get(path, []):
            if token.span.start >= offset and token.is_punct(";"):
                return token.span.end
        return None

    def _tree_frames(self, path: str, offset: int) -> Tuple[ScopeFrame, ...]:
        frames = []
        for region in self.index_for(path).regions_at(offset):
            statement_end = None
            if region.kind is ScopeKind.CLASS:
                statement_end = self.statement_end_after(path, region.end)
            frames.append(region.frame(path, offset, statement_end))
        return tuple(frames)

    def context_at(self, path: str, offset: int) -> DeclarationContext:
        """Resolve the declaration context of a character offset in ``path``."""
        if path not in self.stream.files:
            return DeclarationContext(kind=ScopeKind.GLOBAL)
        tree_context = _context_from_frames(self._tree_frames(path, offset), TREE_SITTER_RESOLVER)
        if not self.index_for(path).has_errors:
            return tree_context

        lexical_frames = []
        for frame in self.scanner_for(path).frames_at(offset):
            if frame.kind is ScopeKind.CLASS:
                frame = replace(frame, statement_end=self.statement_end_after(path, frame.end))
            lexical_frames.append(frame)
        lexical_context = _context_from_frames(lexical_frames, LEXICAL_RESOLVER)
        if (tree_context.kind, tree_context.qualified_name) == (
            lexical_context.kind,
            lexical_context.qualified_name,
        ):
            return tree_context
        logger.info(
            "Scope resolvers disagree at %s:%d (tree-sitter: %s, lexical: %s); using lexical result",
            path,
            offset,
            tree_context.describe(),
            lexical_context.describe(),
        )
        return replace(lexical_context, resolvers_disagree=True)

    def context_for_definition(self, definition: MacroDefinition) -> DeclarationContext:
        span = definition.define.span
        key = (span.path, span.start)
        if key not in self._definition_contexts:
            self._definition_contexts[key] = self.context_at(span.path, span.start)
        return self._definition_contexts[key]

    def is_constant_expression_position(self, path: str, start: int, end: int) -> bool:
        """True when ``[start, end)`` sits where a compile-time constant is required."""
        if path not in self.stream.files:
            return False
        source = self._source(path)
        tree = self.tree_for(path)
        node = tree.root_node.descendant_for_byte_range(source.byte_offset(start), source.byte_offset(end))
        child = node
        parent = node.parent if node is not None else None
        while parent is not None:
            if parent.type in CONSTANT_EXPRESSION_FIELDS:
                field_name = CONSTANT_EXPRESSION_FIELDS[parent.type]
                if field_name is None:
                    return True
                target = parent.child_by_field_name(field_name)
                if target is not None and target.start_byte <= child.start_byte and child.end_byte <= target.end_byte:
                    return True
            child, parent = parent, parent.parent
        if tree.root_node.has_error:
            return self.scanner_for(path).is_constant_expression_position(start)
        return False
