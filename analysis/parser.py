"""
Tree-sitter parsing of the files that take part in a translation unit.

Only the scope structure of the tree is consumed (namespaces, classes, access
specifiers and function bodies), so trees with syntax errors are still used;
the error count is logged for the unit's diagnostics.
"""

import logging
from typing import Optional

import tree_sitter_cpp as tscpp
from tree_sitter import Language, Node, Parser, Tree

from preprocessor.source import SourceFile

logger = logging.getLogger(__name__)

CPP_LANGUAGE = Language(tscpp.language())


def parse_source_file(source_file: SourceFile, parser: Optional[Parser] = None) -> Tree:
    """Parse one file of a translation unit.

    Parsers are not shared between threads; callers that parse several files
    of one unit pass their own ``parser`` to reuse it.

    Args:
        source_file: Decoded file text with its path.
        parser: C++ parser to reuse. A new one is created when omitted.

    Returns:
        The parsed tree. Byte offsets in the tree refer to ``source_file.data``.
    """
    parser = parser or Parser(CPP_LANGUAGE)
    tree = parser.parse(source_file.data)
    if tree.root_node.has_error:
        logger.info(
            "File %s contains syntax errors (%d error nodes)",
            source_file.path,
            count_error_nodes(tree),
        )
    return tree


def count_error_nodes(tree: Tree) -> int:
    """Count ERROR and MISSING nodes in a tree."""
    count = 0
    stack = [tree.root_node]
    while stack:
        node: Node = stack.pop()
        if node.is_error or node.is_missing:
            count += 1
        stack.extend(node.children)
    return count
