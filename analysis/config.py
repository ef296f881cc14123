"""
Configuration constants for declaration-context resolution and expression analysis.

Defines the tree-sitter node type strings used to build scope indexes and to
recognize constant-expression positions, plus C++ keyword tables.
"""

from typing import Dict, FrozenSet, Set

# Scope-introducing node types
NAMESPACE_NODE: str = "namespace_definition"
CLASS_NODE_TYPES: Set[str] = {
    "class_specifier",
    "struct_specifier",
    "union_specifier",
}
FUNCTION_NODE: str = "function_definition"
ACCESS_SPECIFIER_NODE: str = "access_specifier"
BLOCK_NODE: str = "compound_statement"

# Declarators that may wrap a function_declarator
DECLARATOR_WRAPPERS: Set[str] = {
    "pointer_declarator",
    "reference_declarator",
    "parenthesized_declarator",
    "attributed_declarator",
}

# (ancestor node type, field holding the constant expression). A field of
# None means the whole ancestor is a constant-expression context.
CONSTANT_EXPRESSION_FIELDS: Dict[str, object] = {
    "array_declarator": "size",
    "enumerator": "value",
    "template_argument_list": None,
    "bitfield_clause": None,
    "static_assert_declaration": "condition",
    "case_statement": "value",
}

# Default member access by class-key
DEFAULT_ACCESS: Dict[str, str] = {
    "class_specifier": "private",
    "struct_specifier": "public",
    "union_specifier": "public",
    "class": "private",
    "struct": "public",
    "union": "public",
}

ACCESS_KEYWORDS: FrozenSet[str] = frozenset({"public", "private", "protected"})

# Builtin arithmetic type keywords accepted in casts
ARITHMETIC_TYPE_KEYWORDS: FrozenSet[str] = frozenset({
    "bool",
    "char",
    "wchar_t",
    "char8_t",
    "char16_t",
    "char32_t",
    "short",
    "int",
    "long",
    "signed",
    "unsigned",
    "float",
    "double",
})

# Keywords that can never be free variables of a macro body
CPP_KEYWORDS: FrozenSet[str] = frozenset({
    "alignas", "alignof", "and", "and_eq", "asm", "auto", "bitand", "bitor",
    "bool", "break", "case", "catch", "char", "char8_t", "char16_t",
    "char32_t", "class", "compl", "concept", "const", "consteval",
    "constexpr", "constinit", "const_cast", "continue", "co_await",
    "co_return", "co_yield", "decltype", "default", "delete", "do", "double",
    "dynamic_cast", "else", "enum", "explicit", "export", "extern", "false",
    "float", "for", "friend", "goto", "if", "inline", "int", "long",
    "mutable", "namespace", "new", "noexcept", "not", "not_eq", "nullptr",
    "operator", "or", "or_eq", "private", "protected", "public", "register",
    "reinterpret_cast", "requires", "return", "short", "signed", "sizeof",
    "static", "static_assert", "static_cast", "struct", "switch", "template",
    "this", "thread_local", "throw", "true", "try", "typedef", "typeid",
    "typename", "union", "unsigned", "using", "virtual", "void", "volatile",
    "wchar_t", "while", "xor", "xor_eq",
})

# Keywords that turn a replacement list into statements rather than an expression
STATEMENT_KEYWORDS: FrozenSet[str] = frozenset({
    "break", "case", "continue", "default", "do", "else", "for", "goto",
    "if", "return", "switch", "try", "while",
})

# Identifiers treated as null pointer constants
NULL_POINTER_NAMES: FrozenSet[str] = frozenset({"nullptr", "NULL"})
