"""
Unit tests for expressions.py

Tests the replacement-list expression parser, precedence reporting and
side-effect detection.
"""

import unittest

from analysis.expressions import (
    ExprKind,
    ExpressionSyntaxError,
    iter_nodes,
    parse_expression,
    side_effect_of,
    tokens_have_side_effects,
)
from preprocessor.lexer import lex


def parse(text):
    return parse_expression(lex(text))


class TestParseExpression(unittest.TestCase):
    """Test expression tree shapes."""

    def test_literal_is_primary(self):
        expr = parse("1.653")
        self.assertIs(expr.kind, ExprKind.LITERAL)
        self.assertTrue(expr.is_primary)

    def test_binary_precedence(self):
        expr = parse("1 + 2 * 3")
        self.assertIs(expr.kind, ExprKind.BINARY)
        self.assertEqual(expr.op, "+")
        self.assertEqual(expr.children[1].op, "*")
        self.assertFalse(expr.is_primary)

    def test_left_associativity(self):
        expr = parse("8 - 4 - 2")
        self.assertEqual(expr.op, "-")
        self.assertIs(expr.children[0].kind, ExprKind.BINARY)
        self.assertIs(expr.children[1].kind, ExprKind.LITERAL)

    def test_parenthesized_expression_is_primary(self):
        expr = parse("(a + b)")
        self.assertIs(expr.kind, ExprKind.PAREN)
        self.assertTrue(expr.is_primary)

    def test_conditional_with_call(self):
        expr = parse("f((a)>(b) ? (a):(b))")
        self.assertIs(expr.kind, ExprKind.CALL)
        self.assertEqual(expr.children[0].op, "f")
        self.assertIs(expr.children[1].kind, ExprKind.CONDITIONAL)

    def test_top_level_comma(self):
        self.assertIs(parse("a, b").kind, ExprKind.COMMA)

    def test_casts(self):
        c_style = parse("(unsigned long)1")
        self.assertIs(c_style.kind, ExprKind.CAST)
        self.assertEqual(c_style.op, "unsigned long")
        named = parse("static_cast<int>(2.5)")
        self.assertIs(named.kind, ExprKind.CAST)
        self.assertEqual(named.op, "int")

    def test_parenthesized_name_is_not_a_cast(self):
        expr = parse("(x) - 1")
        self.assertIs(expr.kind, ExprKind.BINARY)

    def test_sizeof_operand_is_opaque(self):
        expr = parse("sizeof(struct Widget)")
        self.assertIs(expr.kind, ExprKind.SIZEOF)
        self.assertEqual(expr.children, ())

    def test_qualified_name(self):
        expr = parse("std::numeric_limits")
        self.assertIs(expr.kind, ExprKind.NAME)
        self.assertEqual(expr.op, "std::numeric_limits")

    def test_adjacent_strings_concatenate(self):
        expr = parse('"abc" "def"')
        self.assertIs(expr.kind, ExprKind.LITERAL)
        self.assertEqual(len(expr.tokens), 2)

    def test_iter_nodes_preorder(self):
        kinds = [node.kind for node in iter_nodes(parse("-(1 + x)"))]
        self.assertEqual(kinds[0], ExprKind.UNARY)
        self.assertIn(ExprKind.NAME, kinds)


class TestExpressionErrors(unittest.TestCase):
    """Test rejection of token sequences that are not one expression."""

    def test_empty(self):
        with self.assertRaises(ExpressionSyntaxError):
            parse_expression(())

    def test_trailing_tokens(self):
        with self.assertRaises(ExpressionSyntaxError):
            parse("1 2")

    def test_statement_body(self):
        with self.assertRaises(ExpressionSyntaxError):
            parse("do { x(); } while (0)")

    def test_unbalanced_parenthesis(self):
        with self.assertRaises(ExpressionSyntaxError):
            parse("(1 + 2")


class TestSideEffects(unittest.TestCase):
    """Test side-effect detection."""

    def test_pure_expressions(self):
        self.assertIsNone(side_effect_of(parse("(a) > (b) ? a : b")))
        self.assertIsNone(side_effect_of(parse("sizeof(x++)")))

    def test_increment_and_assignment(self):
        self.assertIn("increment", side_effect_of(parse("++a")))
        self.assertIn("increment", side_effect_of(parse("a--")))
        self.assertIn("assignment", side_effect_of(parse("a += 2")))

    def test_call_is_a_side_effect(self):
        self.assertEqual(side_effect_of(parse("f(1)")), "function call")

    def test_argument_tokens(self):
        self.assertTrue(tokens_have_side_effects(lex("++a")))
        self.assertFalse(tokens_have_side_effects(lex("b")))
        # Unparseable argument text falls back to an operator scan.
        self.assertTrue(tokens_have_side_effects(lex("int x = 1")))


if __name__ == "__main__":
    unittest.main()
